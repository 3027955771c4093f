"""
Split a row batch into buckets with unique primary keys.

A multi-row upsert that targets the same key twice fails (or is undefined)
on most destinations, so every bucket is key-unique. Buckets are applied in
order, so the last occurrence of a key is written last.
"""

from typing import Any, Dict, Iterable, List, Sequence

Row = Dict[str, Any]


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def composite_key(pk_fields: Sequence[str], row: Row) -> str:
    """Concatenation of the string forms of the primary key values, in field order."""
    return "".join(_format_value(row.get(name)) for name in pk_fields)


def deduplicate(pk_fields: Iterable[str], rows: Sequence[Row]) -> List[List[Row]]:
    """
    Partition rows into key-unique buckets.

    Args:
        pk_fields: Primary key column names; sorted to fix the key order
        rows: Row batch in arrival order

    Returns:
        Ordered list of buckets. Without primary key fields (or duplicates)
        a single bucket holding every row is returned.
    """
    if not rows:
        return []

    fields = sorted(pk_fields)
    if not fields:
        return [list(rows)]

    buckets: List[List[Row]] = []
    pending = list(rows)
    while pending:
        seen = set()
        bucket: List[Row] = []
        deferred: List[Row] = []
        for row in pending:
            key = composite_key(fields, row)
            if key in seen:
                deferred.append(row)
                continue
            seen.add(key)
            bucket.append(row)
        buckets.append(bucket)
        pending = deferred

    return buckets
