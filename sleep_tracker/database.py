import logging
import sqlite3
import threading
from typing import Callable

import aiosqlite

from sleep_tracker.config import Settings, settings as default_settings
from sleep_tracker.errors import StorageError
from sleep_tracker.models import SleepNight

logger = logging.getLogger(__name__)

TABLE = "daily_sleep_quality_table"

CREATE_NIGHTS = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    night_id INTEGER PRIMARY KEY AUTOINCREMENT,
    start_time_milli INTEGER NOT NULL,
    end_time_milli INTEGER NOT NULL,
    quality_rating INTEGER NOT NULL DEFAULT -1
)
"""

_DDL = [CREATE_NIGHTS]

# A migration upgrades the schema from its key version to key + 1.
Migration = Callable[[sqlite3.Connection], None]


def get_sync_conn(db_path: str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Synchronous connection, used only while preparing the schema."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    return conn


class SleepDatabase:
    """Owns the sleep history store and hands out its DAO.

    Use ``get_instance()`` to share one handle across the process.  The
    schema is prepared once, when the instance is created:

    * a fresh file is created at ``settings.schema_version``;
    * an older or newer file is walked through ``migrations`` one version
      at a time;
    * if any step is missing, every table is dropped and the schema is
      recreated empty.  All stored nights are lost in that case.
    """

    _instance: "SleepDatabase | None" = None
    _lock = threading.Lock()

    def __init__(
        self,
        settings: Settings | None = None,
        migrations: dict[int, Migration] | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.db_path = self.settings.db_path
        self.version = self.settings.schema_version
        self.migrations = dict(migrations or {})
        self._prepare()
        self.dao = SleepDatabaseDao(self.db_path, self.settings.busy_timeout_ms)

    @classmethod
    def get_instance(
        cls,
        settings: Settings | None = None,
        migrations: dict[int, Migration] | None = None,
    ) -> "SleepDatabase":
        """Return the process-wide instance, creating it on the first call."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(settings, migrations)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        with cls._lock:
            cls._instance = None

    # ------------------------------------------------------------------
    # Schema preparation
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        conn = get_sync_conn(self.db_path, self.settings.busy_timeout_ms)
        try:
            stored = conn.execute("PRAGMA user_version").fetchone()[0]
            if stored == 0 and not self._has_tables(conn):
                self._create(conn)
            elif stored != self.version:
                if not self._migrate(conn, stored):
                    logger.warning(
                        "No migration path from schema version %d to %d for %s, "
                        "recreating the database (all data discarded)",
                        stored, self.version, self.db_path,
                    )
                    self._drop_all(conn)
                    self._create(conn)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _has_tables(conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchone()
        return row[0] > 0

    def _create(self, conn: sqlite3.Connection) -> None:
        for stmt in _DDL:
            conn.execute(stmt)
        conn.execute(f"PRAGMA user_version = {int(self.version)}")

    def _migrate(self, conn: sqlite3.Connection, stored: int) -> bool:
        """Apply migrations from *stored* up to the declared version.

        Returns False, without touching the file, when the chain is
        incomplete or the store is newer than the declared version.
        """
        if stored > self.version:
            return False
        steps = list(range(stored, self.version))
        if any(v not in self.migrations for v in steps):
            return False
        for v in steps:
            logger.info("Migrating %s from schema version %d to %d", self.db_path, v, v + 1)
            self.migrations[v](conn)
        conn.execute(f"PRAGMA user_version = {int(self.version)}")
        return True

    @staticmethod
    def _drop_all(conn: sqlite3.Connection) -> None:
        rows = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        for row in rows:
            conn.execute(f'DROP TABLE IF EXISTS "{row["name"]}"')


class SleepDatabaseDao:
    """Async data access for ``SleepNight`` rows.

    Every call opens its own aiosqlite connection and closes it before
    returning.  Driver errors surface as ``StorageError``.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path)
        await conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        conn.row_factory = aiosqlite.Row
        return conn

    async def insert(self, night: SleepNight) -> int:
        """Insert *night* and store the assigned id on it."""
        try:
            conn = await self._connect()
            try:
                cursor = await conn.execute(
                    f"INSERT INTO {TABLE} "
                    "(start_time_milli, end_time_milli, quality_rating) "
                    "VALUES (?, ?, ?)",
                    (night.start_time_milli, night.end_time_milli, night.sleep_quality),
                )
                await conn.commit()
                night.night_id = cursor.lastrowid
                return night.night_id
            finally:
                await conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"insert failed: {e}") from e

    async def update(self, night: SleepNight) -> None:
        try:
            conn = await self._connect()
            try:
                await conn.execute(
                    f"UPDATE {TABLE} SET start_time_milli = ?, end_time_milli = ?, "
                    "quality_rating = ? WHERE night_id = ?",
                    (
                        night.start_time_milli,
                        night.end_time_milli,
                        night.sleep_quality,
                        night.night_id,
                    ),
                )
                await conn.commit()
            finally:
                await conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"update of night {night.night_id} failed: {e}") from e

    async def clear(self) -> None:
        """Delete every night."""
        try:
            conn = await self._connect()
            try:
                await conn.execute(f"DELETE FROM {TABLE}")
                await conn.commit()
            finally:
                await conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"clear failed: {e}") from e

    async def get(self, key: int) -> SleepNight | None:
        rows = await self._fetch(f"SELECT * FROM {TABLE} WHERE night_id = ?", (key,))
        return rows[0] if rows else None

    async def get_tonight(self) -> SleepNight | None:
        """Most recently inserted night, open or not."""
        rows = await self._fetch(
            f"SELECT * FROM {TABLE} ORDER BY night_id DESC LIMIT 1"
        )
        return rows[0] if rows else None

    async def get_all_nights(self) -> list[SleepNight]:
        return await self._fetch(f"SELECT * FROM {TABLE} ORDER BY night_id DESC")

    async def _fetch(self, sql: str, params: tuple = ()) -> list[SleepNight]:
        try:
            conn = await self._connect()
            try:
                rows = await conn.execute(sql, params)
                return [SleepNight.from_row(row) for row in await rows.fetchall()]
            finally:
                await conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"query failed: {e}") from e
