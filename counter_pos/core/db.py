"""SQLite helpers wired for durable counter storage."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from .paths import layout_for

_VALID_SYNC = {"OFF", "NORMAL", "FULL", "EXTRA"}
_DEFAULT_SYNC = "FULL"


def normalize_sync(mode: Optional[str]) -> str:
    value = str(mode or _DEFAULT_SYNC).upper()
    return value if value in _VALID_SYNC else _DEFAULT_SYNC


class Database:
    """One SQLite file behind a SQLAlchemy engine, used through raw DB-API connections."""

    __slots__ = ("path", "synchronous", "_engine")

    def __init__(self, path: Union[str, Path, None] = None, *, synchronous: str = _DEFAULT_SYNC) -> None:
        if path is None:
            path = layout_for().ensure().db_path
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.synchronous = normalize_sync(synchronous)
        self._engine: Engine = create_engine(
            f"sqlite:///{self.path.as_posix()}",
            connect_args={"check_same_thread": False},
        )
        event.listen(self._engine, "connect", self._apply_pragmas)

    def _apply_pragmas(self, dbapi_conn, _):  # pragma: no cover - exercised via runtime
        dbapi_conn.row_factory = sqlite3.Row
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys = ON;")
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute(f"PRAGMA synchronous={self.synchronous};")
            cursor.execute("PRAGMA temp_store=MEMORY;")
        finally:
            cursor.close()

    def get_conn(self):
        conn = self._engine.raw_connection()
        conn.driver_connection.isolation_level = None  # explicit transactions via BEGIN
        return conn

    @contextmanager
    def transaction(self, begin_stmt: str = "BEGIN IMMEDIATE") -> Iterator[sqlite3.Connection]:
        conn = self.get_conn()
        try:
            conn.execute(begin_stmt)
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self) -> None:
        self._engine.dispose()

    def init_schema(self) -> None:
        conn = self.get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """CREATE TABLE IF NOT EXISTS products(
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        price_cents INTEGER NOT NULL CHECK(price_cents >= 0),
                        active INTEGER NOT NULL DEFAULT 1,
                        category TEXT,
                        description TEXT,
                        created_at TEXT NOT NULL
                    )"""
            )
            cur.execute(
                """CREATE TABLE IF NOT EXISTS orders(
                        id TEXT PRIMARY KEY,
                        order_code TEXT NOT NULL UNIQUE,
                        created_at TEXT NOT NULL,
                        created_by TEXT NOT NULL,
                        customer_name TEXT NOT NULL,
                        customer_email TEXT,
                        customer_phone TEXT NOT NULL,
                        staff_name TEXT NOT NULL,
                        deposit_cents INTEGER NOT NULL DEFAULT 0 CHECK(deposit_cents >= 0),
                        items TEXT NOT NULL DEFAULT '[]',
                        subtotal_cents INTEGER NOT NULL DEFAULT 0,
                        balance_cents INTEGER NOT NULL DEFAULT 0 CHECK(balance_cents >= 0),
                        is_complete INTEGER NOT NULL DEFAULT 0,
                        notes TEXT
                    )"""
            )
            cur.execute(
                """CREATE TABLE IF NOT EXISTS users(
                        username TEXT PRIMARY KEY,
                        email TEXT UNIQUE,
                        password_hash TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )"""
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_orders_created ON orders(created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_products_active ON products(active)")
            _ensure_order_columns(cur)
        finally:
            conn.close()

    def run_integrity_check(self) -> str:
        conn = self.get_conn()
        try:
            cur = conn.cursor()
            cur.execute("PRAGMA integrity_check;")
            row = cur.fetchone()
            return row[0] if row else "error"
        finally:
            conn.close()


def _ensure_order_columns(cur) -> None:
    cur.execute("PRAGMA table_info(orders)")
    cols = {row[1] for row in cur.fetchall()}
    if "notes" not in cols:
        cur.execute("ALTER TABLE orders ADD COLUMN notes TEXT")
    if "created_by" not in cols:
        cur.execute("ALTER TABLE orders ADD COLUMN created_by TEXT NOT NULL DEFAULT ''")


def unique_violation_column(exc: sqlite3.IntegrityError) -> Optional[str]:
    """Return ``table.column`` named by a UNIQUE failure, if that is what *exc* is."""
    message = str(exc)
    marker = "UNIQUE constraint failed:"
    if marker not in message:
        return None
    return message.split(marker, 1)[1].strip().split(",")[0].strip()
