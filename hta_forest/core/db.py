"""
SQLite foundation for the document store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import DB_PATH, ensure_data_directory

REQUIRED_TABLES = ['path_documents', 'project_documents']


@contextmanager
def get_db(db_path: str = None, timeout: float = 5.0) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or DB_PATH, timeout=timeout)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    ensure_data_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Documents scoped to a (project, path) pair, e.g. the HTA snapshot
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS path_documents (
                project_id TEXT NOT NULL,
                path_name TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                revision INTEGER NOT NULL DEFAULT 1,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (project_id, path_name, kind)
            )
        ''')

        # Documents scoped to a project only, e.g. the project config
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS project_documents (
                project_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                revision INTEGER NOT NULL DEFAULT 1,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (project_id, kind)
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_path_documents_project ON path_documents(project_id)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
