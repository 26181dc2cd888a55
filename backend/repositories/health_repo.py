"""Repository helpers for health checks."""

from sqlalchemy import text

from extensions import db


def check_identity_database() -> bool:
    """Execute a lightweight ping against the identity database."""
    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True
