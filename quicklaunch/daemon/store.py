"""DuckDB backend store for open history and the application index."""

import asyncio
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import duckdb
from loguru import logger

from .error_handling import StoreError
from .models import AppInfo, HistoryEntry
from .paths import display_name_for, is_system_folder, is_web_url, normalize


class BackendStore(ABC):
    """
    Contract the history cache and launch dispatcher expect from persistence.

    The store owns use_count increments and last_used stamping.
    """

    @abstractmethod
    async def add_use(self, path: str) -> None:
        """Record one use event."""

    @abstractmethod
    async def delete_history(self, path: str) -> None:
        """Remove a history record. Raises StoreError when absent."""

    @abstractmethod
    async def list_all_history(self) -> List[HistoryEntry]:
        """Authoritative snapshot, most recently used first."""

    @abstractmethod
    async def remove_from_index(self, path: str) -> None:
        """Remove an application index entry. Raises StoreError when absent."""

    @abstractmethod
    async def list_apps(self) -> List[AppInfo]:
        """All indexed applications."""


class DuckDBStore(BackendStore):
    """
    Manages DuckDB tables for:
    - open_history: one row per normalized path with use count and last use
    - app_index: launchable applications with pinyin transliterations
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the DuckDB connection and create tables."""
        self.conn = duckdb.connect(str(self.db_path))
        self._create_tables()
        logger.info(f"History store initialized at {self.db_path}")

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _create_tables(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS open_history (
                key TEXT PRIMARY KEY,   -- normalized path
                path TEXT,              -- path as first used
                name TEXT,
                last_used DOUBLE,       -- epoch seconds
                use_count INTEGER,
                is_folder BOOLEAN
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS app_index (
                key TEXT PRIMARY KEY,
                path TEXT,
                name TEXT,
                icon TEXT,
                name_pinyin TEXT,
                name_pinyin_initials TEXT
            )
        """)

    def _require_conn(self):
        if self.conn is None:
            raise StoreError("Store is not initialized")
        return self.conn

    async def add_use(self, path: str) -> None:
        key = normalize(path)
        if not key:
            raise StoreError("Cannot record a use for an empty path")

        now = time.time()
        async with self._lock:
            conn = self._require_conn()
            try:
                existing = conn.execute(
                    "SELECT use_count FROM open_history WHERE key = ?", [key]
                ).fetchone()
                if existing:
                    conn.execute(
                        "UPDATE open_history SET use_count = ?, last_used = ? WHERE key = ?",
                        [existing[0] + 1, now, key]
                    )
                else:
                    conn.execute(
                        """
                        INSERT INTO open_history (key, path, name, last_used, use_count, is_folder)
                        VALUES (?, ?, ?, ?, 1, ?)
                        """,
                        [
                            key,
                            path.strip(),
                            display_name_for(path),
                            now,
                            self._detect_folder(path),
                        ]
                    )
            except duckdb.Error as e:
                raise StoreError(f"Failed to record use of {path}: {e}") from e

        logger.debug(f"Recorded use of {path}")

    @staticmethod
    def _detect_folder(path: str) -> Optional[bool]:
        if is_web_url(path):
            return False
        if is_system_folder(path):
            return True
        try:
            candidate = Path(path)
            if candidate.exists():
                return candidate.is_dir()
        except (OSError, ValueError):
            pass
        return None

    async def delete_history(self, path: str) -> None:
        key = normalize(path)
        async with self._lock:
            conn = self._require_conn()
            try:
                row = conn.execute(
                    "SELECT 1 FROM open_history WHERE key = ?", [key]
                ).fetchone()
                if row is None:
                    raise StoreError(f"No history record for {path}")
                conn.execute("DELETE FROM open_history WHERE key = ?", [key])
            except duckdb.Error as e:
                raise StoreError(f"Failed to delete history for {path}: {e}") from e

    async def list_all_history(self) -> List[HistoryEntry]:
        async with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(
                    """
                    SELECT path, name, last_used, use_count, is_folder
                    FROM open_history
                    ORDER BY last_used DESC
                    """
                ).fetchall()
            except duckdb.Error as e:
                raise StoreError(f"Failed to list history: {e}") from e

        return [
            HistoryEntry(
                path=row[0],
                name=row[1] or display_name_for(row[0]),
                last_used=float(row[2] or 0),
                use_count=int(row[3] or 0),
                is_folder=row[4],
            )
            for row in rows
        ]

    async def upsert_app(self, app: AppInfo) -> None:
        key = normalize(app.path)
        if not key:
            raise StoreError("Cannot index an application without a path")

        async with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("DELETE FROM app_index WHERE key = ?", [key])
                conn.execute(
                    """
                    INSERT INTO app_index (key, path, name, icon, name_pinyin, name_pinyin_initials)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [key, app.path, app.name, app.icon, app.name_pinyin, app.name_pinyin_initials]
                )
            except duckdb.Error as e:
                raise StoreError(f"Failed to index {app.path}: {e}") from e

    async def remove_from_index(self, path: str) -> None:
        key = normalize(path)
        async with self._lock:
            conn = self._require_conn()
            try:
                row = conn.execute(
                    "SELECT 1 FROM app_index WHERE key = ?", [key]
                ).fetchone()
                if row is None:
                    raise StoreError(f"No index entry for {path}")
                conn.execute("DELETE FROM app_index WHERE key = ?", [key])
            except duckdb.Error as e:
                raise StoreError(f"Failed to remove {path} from index: {e}") from e

        logger.info(f"Removed {path} from application index")

    async def list_apps(self) -> List[AppInfo]:
        async with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(
                    """
                    SELECT name, path, icon, name_pinyin, name_pinyin_initials
                    FROM app_index
                    ORDER BY name
                    """
                ).fetchall()
            except duckdb.Error as e:
                raise StoreError(f"Failed to list applications: {e}") from e

        return [
            AppInfo(
                name=row[0],
                path=row[1],
                icon=row[2],
                name_pinyin=row[3],
                name_pinyin_initials=row[4],
            )
            for row in rows
        ]
