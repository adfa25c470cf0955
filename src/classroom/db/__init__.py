"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for gradebook, documents and generation jobs
"""

from classroom.db.database import get_db, get_db_path, init_db

__all__ = ["get_db", "get_db_path", "init_db"]
