"""
Relational destination engine.

Keeps destination table schemas in sync with incoming batches and writes
rows transactionally to Postgres, Redshift, MySQL, ClickHouse and Snowflake.
"""

__version__ = "0.1.0"
