"""Repository for the append-only ``activity`` audit table.

Statements are templates rendered by the connection's dialect, so each one
has a SQLite and a PostgreSQL spelling.
"""

from typing import Any, Dict, List, Mapping

COLUMNS = ("id", "action", "user", "target", "type", "metadata", "timestamp", "createdAt")

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS activity (
        {id} TEXT PRIMARY KEY,
        {action} TEXT NOT NULL,
        {user} TEXT NOT NULL,
        {target} TEXT,
        {type} TEXT NOT NULL,
        {metadata} TEXT,
        {timestamp} TEXT NOT NULL,
        {createdAt} TEXT NOT NULL
    )
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS ix_activity_timestamp ON activity ({timestamp})"

_INSERT = """
    INSERT INTO activity ({id}, {action}, {user}, {target}, {type}, {metadata}, {timestamp}, {createdAt})
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
"""

_SELECT_PAGE = """
    SELECT {id}, {action}, {user}, {target}, {type}, {metadata}, {timestamp}, {createdAt}
    FROM activity
    ORDER BY {timestamp} DESC, {id} DESC
    LIMIT %s OFFSET %s
"""


def create_schema(conn) -> None:
    """Create the activity table and its timestamp index when missing."""
    conn.execute(conn.dialect.render(_CREATE_TABLE, COLUMNS))
    conn.execute(conn.dialect.render(_CREATE_INDEX, COLUMNS))


def insert_activity(conn, row: Mapping[str, Any]) -> int:
    """Insert one audit row and return the affected row count."""
    sql = conn.dialect.render(_INSERT, COLUMNS)
    return conn.execute(sql, [row[column] for column in COLUMNS])


def list_activities(conn, limit: int, offset: int) -> List[Dict[str, Any]]:
    """Return one page of audit rows, newest first."""
    sql = conn.dialect.render(_SELECT_PAGE, COLUMNS)
    return conn.query(sql, [limit, offset])
