"""
Database module for Poker Cards Distributor.

Keeps an audit trail of every hand: when it started, how each phase was
revealed (query or execution path) and how the showdown ended.
Uses SQLite for simplicity and reliability.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .hand_log_db import HandLogDatabaseMixin


class DatabaseManager(HandLogDatabaseMixin):
    """Manages SQLite database operations for the hand log."""

    def __init__(self, db_path: str = "hand_log.db"):
        self.db_path = Path(db_path).resolve()
        self._local = threading.local()
        self._init_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection.execute("PRAGMA journal_mode = WAL")
        return self._local.connection

    @contextmanager
    def get_cursor(self):
        """Get a database cursor with automatic commit/rollback."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def close(self):
        connection = getattr(self._local, 'connection', None)
        if connection is not None:
            connection.close()
            del self._local.connection

    def _init_database(self):
        """Initialize database tables."""
        with self.get_cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS hands (
                    table_id INTEGER NOT NULL,
                    hand_ref INTEGER NOT NULL,
                    players TEXT NOT NULL,
                    started_at REAL NOT NULL,
                    resolved_at REAL,
                    outcome TEXT,
                    PRIMARY KEY (table_id, hand_ref)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS phase_reveals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    table_id INTEGER NOT NULL,
                    hand_ref INTEGER NOT NULL,
                    phase TEXT NOT NULL,
                    status TEXT NOT NULL,
                    path TEXT NOT NULL,
                    cards TEXT,
                    error TEXT,
                    fallback_reason TEXT,
                    timestamp REAL NOT NULL,
                    FOREIGN KEY (table_id, hand_ref) REFERENCES hands (table_id, hand_ref)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS showdowns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    table_id INTEGER NOT NULL,
                    hand_ref INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    path TEXT NOT NULL,
                    winners TEXT,
                    details TEXT,
                    timestamp REAL NOT NULL,
                    FOREIGN KEY (table_id, hand_ref) REFERENCES hands (table_id, hand_ref)
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_reveals_hand ON phase_reveals (table_id, hand_ref)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_showdowns_hand ON showdowns (table_id, hand_ref)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_hands_started ON hands (started_at)")

        logging.info(f"Database initialized at {self.db_path}")


# Global database instance
_db_manager: Optional[DatabaseManager] = None


def get_database() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db_manager


def init_database(db_path: str = "hand_log.db") -> DatabaseManager:
    """Initialize the global database manager."""
    global _db_manager
    _db_manager = DatabaseManager(db_path)
    return _db_manager
