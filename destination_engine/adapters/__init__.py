from destination_engine.adapters.base import EventContext, SQLAdapter
from destination_engine.adapters.factory import create_adapter, parse_config
from destination_engine.adapters.relational import RelationalAdapter

__all__ = [
    "EventContext",
    "RelationalAdapter",
    "SQLAdapter",
    "create_adapter",
    "parse_config",
]
