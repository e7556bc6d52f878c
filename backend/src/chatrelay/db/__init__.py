"""Database access."""

from chatrelay.db.postgres import Database, db

__all__ = ["Database", "db"]
