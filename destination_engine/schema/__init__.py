from destination_engine.schema.conditions import DeleteCondition, DeleteConditions
from destination_engine.schema.deduplication import deduplicate
from destination_engine.schema.table import (
    Column,
    SQLTypeOverride,
    Table,
    build_constraint_name,
)

__all__ = [
    "Column",
    "DeleteCondition",
    "DeleteConditions",
    "SQLTypeOverride",
    "Table",
    "build_constraint_name",
    "deduplicate",
]
