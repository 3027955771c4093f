"""
Delete conditions applied before a bulk write, in the same transaction.
"""

from dataclasses import dataclass, field
from typing import Any, List

JOIN_AND = "AND"
JOIN_OR = "OR"


@dataclass(frozen=True)
class DeleteCondition:
    field: str
    clause: str
    value: Any


@dataclass
class DeleteConditions:
    conditions: List[DeleteCondition] = field(default_factory=list)
    join_condition: str = JOIN_AND

    def __post_init__(self) -> None:
        self.join_condition = self.join_condition.upper()
        if self.join_condition not in (JOIN_AND, JOIN_OR):
            raise ValueError(
                f"Unsupported join condition '{self.join_condition}'. "
                f"Available: {[JOIN_AND, JOIN_OR]}"
            )

    def is_empty(self) -> bool:
        return not self.conditions

    @classmethod
    def single(cls, field_name: str, clause: str, value: Any) -> "DeleteConditions":
        return cls([DeleteCondition(field_name, clause, value)])
