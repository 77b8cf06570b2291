"""
autoledger - Database access

A Database hands out one fresh connection per unit of work, the same way the
engine always has: open, do the work, commit or roll back, close in finally.

Two backends share one SQL dialect written with `?` placeholders:

- sqlite: write transactions begin with BEGIN IMMEDIATE, which takes the
  database write lock before the first read. Every read-modify-write of an
  account row is therefore serialized against all other writers; `FOR UPDATE`
  is not needed (and not supported).
- mysql: transactions use InnoDB row locks; reads that precede a write append
  `cursor.for_update` (" FOR UPDATE"). Placeholders are rewritten to `%s`.

Monetary columns are TEXT in SQLite (exact decimal strings) and DECIMAL in
MySQL; both come back through calculations.to_decimal().
"""

import datetime
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path

import mysql.connector

# SQLite cannot bind Decimal or (since 3.12, without warnings) date values.
sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime.date, lambda d: d.isoformat())
sqlite3.register_adapter(datetime.datetime, lambda dt: dt.strftime('%Y-%m-%d %H:%M:%S'))

SQLITE_BUSY_TIMEOUT_SECONDS = 30


class Cursor:
    """Thin wrapper giving both drivers dict rows and `?` placeholders."""

    def __init__(self, raw, dialect):
        self._raw = raw
        self.dialect = dialect

    @property
    def for_update(self):
        return " FOR UPDATE" if self.dialect == "mysql" else ""

    def execute(self, sql, params=()):
        if self.dialect == "mysql":
            sql = sql.replace("?", "%s")
        self._raw.execute(sql, tuple(params))
        return self

    def fetchone(self):
        row = self._raw.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self):
        return [dict(row) for row in self._raw.fetchall()]

    @property
    def lastrowid(self):
        return self._raw.lastrowid

    @property
    def rowcount(self):
        return self._raw.rowcount

    def close(self):
        self._raw.close()


class Database:
    """
    Connection factory and transaction boundary.

    Example:
        db = Database.sqlite("ledger.db")
        with db.transaction() as cursor:
            cursor.execute("UPDATE accounts SET balance = ? WHERE id = ?", (balance, 1))
    """

    def __init__(self, dialect, sqlite_path=None, mysql_config=None):
        if dialect not in ("sqlite", "mysql"):
            raise ValueError(f"Unsupported database backend: {dialect}")
        self.dialect = dialect
        self.sqlite_path = sqlite_path
        self.mysql_config = mysql_config or {}

    @classmethod
    def sqlite(cls, path):
        return cls("sqlite", sqlite_path=str(path))

    @classmethod
    def from_settings(cls, settings):
        if settings.db_backend == "mysql":
            return cls("mysql", mysql_config=settings.mysql)
        return cls("sqlite", sqlite_path=str(settings.db_path))

    # =============================================================================
    # CONNECTIONS
    # =============================================================================

    def _connect(self):
        """
        Open a new connection.

        Returns:
            tuple: (connection, Cursor) - caller must close both.
        """
        if self.dialect == "mysql":
            conn = mysql.connector.connect(**self.mysql_config)
            conn.autocommit = False
            return conn, Cursor(conn.cursor(dictionary=True, buffered=True), "mysql")

        Path(self.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        conn = sqlite3.connect(
            self.sqlite_path,
            timeout=SQLITE_BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
        )
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.row_factory = sqlite3.Row
        return conn, Cursor(conn.cursor(), "sqlite")

    def _begin(self, conn, cursor):
        if self.dialect == "mysql":
            conn.start_transaction()
        else:
            cursor.execute("BEGIN IMMEDIATE")

    @contextmanager
    def transaction(self, cursor=None):
        """
        Run a block as one all-or-nothing unit of work.

        When `cursor` is given the block joins that outer unit of work and the
        outer owner decides commit or rollback.
        """
        if cursor is not None:
            yield cursor
            return

        conn, cursor = self._connect()
        try:
            self._begin(conn, cursor)
            yield cursor
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @contextmanager
    def read(self, cursor=None):
        """Lock-free read; joins `cursor` when one is passed."""
        if cursor is not None:
            yield cursor
            return

        conn, cursor = self._connect()
        try:
            yield cursor
        finally:
            cursor.close()
            conn.close()

    def executescript(self, statements):
        """Execute DDL statements, one per item, outside any data transaction."""
        conn, cursor = self._connect()
        try:
            for statement in statements:
                cursor.execute(statement)
            conn.commit()
        finally:
            cursor.close()
            conn.close()


# =============================================================================
# ROW VALUE CONVERSION
# =============================================================================

def to_date(value):
    """Convert a DATE column (date, datetime or ISO text) to datetime.date."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def to_datetime(value):
    """Convert a DATETIME column (datetime or text) to datetime.datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    text = str(value)
    try:
        return datetime.datetime.strptime(text, '%Y-%m-%d %H:%M:%S')
    except ValueError:
        return datetime.datetime.fromisoformat(text)
