"""SQLite database connection and schema management.

Local stand-in for the hosted relational schema the platform reads and
writes: rosters, assignments, grades, gradebook settings, standards,
lessons, progress, knowledge-base documents and generation jobs.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

from classroom.config.app_config import DATA_DIR_ENV, load_app_config

logger = structlog.get_logger(__name__)

# Default database location (overridden by paths.db_path or CLASSROOM_DATA_DIR)
DEFAULT_DB_PATH = Path("db/classroom.db")
DB_FILE_NAME = "classroom.db"

# Current database file (module-level for simplicity in CLI context)
_db_path: Path | None = None


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to the configured location
    """
    global _db_path
    _db_path = db_path or _default_db_path()

    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


def _default_db_path() -> Path:
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir) / DB_FILE_NAME
    return Path(load_app_config().paths.get("db_path", str(DEFAULT_DB_PATH)))


def get_db_path() -> Path:
    """Path of the database file currently in use."""
    return _db_path or _default_db_path()


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM assignments").fetchall()
    """
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS profiles (
            user_id TEXT PRIMARY KEY,
            first_name TEXT NOT NULL DEFAULT '',
            last_name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            avatar_url TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS base_classes (
            id TEXT PRIMARY KEY,
            organisation_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS class_instances (
            id TEXT PRIMARY KEY,
            base_class_id TEXT NOT NULL REFERENCES base_classes(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            enrollment_code TEXT NOT NULL UNIQUE,
            settings TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS rosters (
            class_instance_id TEXT NOT NULL REFERENCES class_instances(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
            role TEXT NOT NULL DEFAULT 'student',
            joined_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (class_instance_id, user_id)
        );

        CREATE TABLE IF NOT EXISTS assignments (
            id TEXT PRIMARY KEY,
            class_instance_id TEXT NOT NULL REFERENCES class_instances(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            type TEXT NOT NULL DEFAULT 'homework',
            category TEXT NOT NULL DEFAULT '',
            points_possible REAL NOT NULL DEFAULT 100,
            due_date TEXT,
            order_index INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- One grade per (student, assignment); the upsert relies on this UNIQUE
        CREATE TABLE IF NOT EXISTS grades (
            id TEXT PRIMARY KEY,
            student_id TEXT NOT NULL,
            assignment_id TEXT NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
            class_instance_id TEXT NOT NULL,
            points_earned REAL,
            percentage REAL,
            letter_grade TEXT,
            status TEXT NOT NULL DEFAULT 'graded'
                CHECK(status IN ('graded', 'missing', 'late', 'excused', 'pending')),
            feedback TEXT,
            submitted_at TEXT,
            graded_at TEXT,
            graded_by TEXT,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE (student_id, assignment_id)
        );

        CREATE TABLE IF NOT EXISTS gradebook_settings (
            class_instance_id TEXT PRIMARY KEY REFERENCES class_instances(id) ON DELETE CASCADE,
            settings TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS standards (
            id TEXT PRIMARY KEY,
            organisation_id TEXT NOT NULL,
            code TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS assignment_standards (
            assignment_id TEXT NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
            standard_id TEXT NOT NULL REFERENCES standards(id) ON DELETE CASCADE,
            PRIMARY KEY (assignment_id, standard_id)
        );

        CREATE TABLE IF NOT EXISTS lessons (
            id TEXT PRIMARY KEY,
            base_class_id TEXT NOT NULL REFERENCES base_classes(id) ON DELETE CASCADE,
            path_title TEXT NOT NULL DEFAULT '',
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            order_index INTEGER NOT NULL DEFAULT 0,
            content TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS assessments (
            id TEXT PRIMARY KEY,
            base_class_id TEXT NOT NULL REFERENCES base_classes(id) ON DELETE CASCADE,
            lesson_id TEXT REFERENCES lessons(id) ON DELETE CASCADE,
            title TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS progress (
            user_id TEXT NOT NULL,
            item_type TEXT NOT NULL CHECK(item_type IN ('lesson', 'assessment')),
            item_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'not_started',
            progress_percentage REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, item_type, item_id)
        );

        CREATE TABLE IF NOT EXISTS documents (
            id TEXT PRIMARY KEY,
            base_class_id TEXT NOT NULL,
            organisation_id TEXT NOT NULL,
            uploaded_by TEXT,
            file_name TEXT NOT NULL,
            file_type TEXT,
            file_size INTEGER,
            storage_path TEXT,
            status TEXT NOT NULL DEFAULT 'queued'
                CHECK(status IN ('queued', 'processing', 'completed', 'error')),
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
        );

        CREATE TABLE IF NOT EXISTS document_chunks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
            chunk_index INTEGER NOT NULL,
            content TEXT NOT NULL,
            token_count INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS generation_jobs (
            id TEXT PRIMARY KEY,
            base_class_id TEXT NOT NULL,
            job_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'queued'
                CHECK(status IN ('queued', 'running', 'completed', 'failed')),
            progress_percentage INTEGER,
            tasks TEXT NOT NULL DEFAULT '[]',
            result_data TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_assignments_instance ON assignments(class_instance_id);
        CREATE INDEX IF NOT EXISTS idx_grades_instance ON grades(class_instance_id);
        CREATE INDEX IF NOT EXISTS idx_documents_base_class ON documents(base_class_id);
        CREATE INDEX IF NOT EXISTS idx_lessons_base_class ON lessons(base_class_id);
        """
    )
