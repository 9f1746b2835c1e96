"""
SQLite database connection and schema management.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from fluxo.errors import BackendUnavailableError, FluxoError, ValidationError

logger = logging.getLogger(__name__)

# Parent tables first; import and reset rely on this order.
TABLES = (
    "users",
    "plan_configs",
    "contacts",
    "opportunities",
    "expenses",
    "activities",
    "notifications",
    "user_settings",
    "bot_configs",
)


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        # Shared with the reminder scheduler thread; access goes through _lock.
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run statements atomically.

        Nested blocks join the outermost transaction, which commits on
        success and rolls back everything on failure.

        Raises:
            ValidationError: On constraint violations
            BackendUnavailableError: When SQLite cannot serve the request
        """
        with self._lock:
            connection = self.connection
            outermost = self._depth == 0
            self._depth += 1
            try:
                yield connection.cursor()
                if outermost:
                    connection.commit()
            except BaseException as e:
                if outermost:
                    connection.rollback()
                if isinstance(e, FluxoError) or not isinstance(e, sqlite3.Error):
                    raise
                if isinstance(e, sqlite3.IntegrityError):
                    raise ValidationError(f"Constraint violated: {e}") from e
                logger.error(f"Database error on {self.db_path}: {e}")
                raise BackendUnavailableError(f"Database unavailable: {e}") from e
            finally:
                self._depth -= 1

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL DEFAULT 'USER',
                plan TEXT NOT NULL DEFAULT 'BASIC',
                is_active INTEGER NOT NULL DEFAULT 1,
                avatar TEXT,
                password_hash TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS plan_configs (
                type TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price REAL NOT NULL,
                max_contacts INTEGER NOT NULL,
                max_opportunities INTEGER NOT NULL,
                feature_expenses INTEGER NOT NULL DEFAULT 0,
                feature_ai_assistant INTEGER NOT NULL DEFAULT 0,
                feature_voice_commands INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS contacts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                company TEXT NOT NULL DEFAULT '',
                email TEXT NOT NULL DEFAULT '',
                phone TEXT NOT NULL DEFAULT '',
                address TEXT,
                last_interaction TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS opportunities (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                contact_id TEXT NOT NULL,
                contact_name TEXT NOT NULL,
                product TEXT NOT NULL,
                value REAL NOT NULL CHECK (value >= 0),
                status TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (contact_id) REFERENCES contacts(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                description TEXT NOT NULL,
                amount REAL NOT NULL CHECK (amount >= 0),
                category TEXT NOT NULL,
                date TIMESTAMP NOT NULL,
                type TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                opportunity_id TEXT,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                date TIMESTAMP NOT NULL,
                completed INTEGER NOT NULL DEFAULT 0,
                notified INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (opportunity_id) REFERENCES opportunities(id) ON DELETE SET NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                timestamp TIMESTAMP NOT NULL,
                type TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_settings (
                user_id TEXT PRIMARY KEY,
                notifications_enabled INTEGER NOT NULL DEFAULT 0,
                activity_alert_minutes INTEGER NOT NULL DEFAULT 15
                    CHECK (activity_alert_minutes > 0),
                google_api_key TEXT,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bot_configs (
                user_id TEXT PRIMARY KEY,
                whatsapp_number TEXT NOT NULL DEFAULT '',
                bot_name TEXT NOT NULL DEFAULT '',
                business_description TEXT,
                products_and_prices TEXT,
                operating_hours TEXT,
                communication_tone TEXT,
                system_instructions TEXT NOT NULL DEFAULT '',
                is_connected INTEGER NOT NULL DEFAULT 0,
                last_connection TIMESTAMP,
                connection_status TEXT NOT NULL DEFAULT 'disconnected',
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        # Create indexes for common queries
        for table in ("contacts", "opportunities", "expenses", "activities"):
            cursor.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_user ON {table}(user_id)"
            )
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_opportunities_contact
            ON opportunities(contact_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_activities_opportunity
            ON activities(opportunity_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_user_timestamp
            ON notifications(user_id, timestamp)
        """)

        self.connection.commit()

    def columns(self, table: str) -> list[str]:
        """Column names of a known table, in schema order."""
        if table not in TABLES:
            raise ValidationError(f"Unknown table: {table}")
        with self.transaction() as cursor:
            cursor.execute(f"PRAGMA table_info({table})")
            return [row["name"] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
