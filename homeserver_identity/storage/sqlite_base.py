# homeserver_identity/storage/sqlite_base.py
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiosqlite

logger = logging.getLogger(__name__)


class PoolTimedOut(Exception):
    """No connection became available within the acquire timeout."""


class PoolClosed(Exception):
    """The pool has been closed and hands out no more connections."""


class SQLiteConnectionPool:
    """
    Bounded pool of aiosqlite connections shared by concurrent requests.

    At most ``max_size`` connections are open at once. ``acquire`` waits for
    a free slot for ``acquire_timeout`` seconds and raises PoolTimedOut
    instead of blocking indefinitely. A connection whose borrower raised is
    closed rather than returned, so a half-finished transaction never leaks
    into the next request.
    """

    def __init__(self, db_path: str, max_size: int = 5, acquire_timeout: float = 5.0):
        if max_size < 1:
            raise ValueError("Pool max_size must be at least 1.")
        self.db_path = db_path
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self._slots = asyncio.Semaphore(max_size)
        self._idle: List[aiosqlite.Connection] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _open_connection(self) -> aiosqlite.Connection:
        db_path = Path(self.db_path).resolve()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Opening SQLite connection to {db_path}")
        conn = await aiosqlite.connect(str(db_path), timeout=self.acquire_timeout)
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
        except Exception:
            await conn.close()
            raise
        return conn

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        if self._closed:
            raise PoolClosed("SQLite connection pool is closed.")
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"SQLite pool exhausted: no connection free after {self.acquire_timeout}s "
                f"(max_size={self.max_size})."
            )
            raise PoolTimedOut(
                f"Timed out after {self.acquire_timeout}s waiting for a database connection."
            ) from None

        conn: Optional[aiosqlite.Connection] = None
        try:
            conn = self._idle.pop() if self._idle else await self._open_connection()
            yield conn
        except BaseException:
            if conn is not None:
                await conn.close()
                conn = None
            raise
        finally:
            if conn is not None:
                if self._closed:
                    await conn.close()
                else:
                    self._idle.append(conn)
            self._slots.release()

    async def close(self) -> None:
        """Close idle connections; connections still borrowed are closed on return."""
        self._closed = True
        idle, self._idle = self._idle, []
        for conn in idle:
            await conn.close()
        logger.info(f"SQLite connection pool for {self.db_path} closed.")


SCHEMA_STATEMENTS = (
    '''
    CREATE TABLE IF NOT EXISTS accounts (
        localpart TEXT PRIMARY KEY,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS account_profiles (
        localpart TEXT PRIMARY KEY REFERENCES accounts(localpart) ON DELETE CASCADE,
        display_name TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS devices (
        localpart TEXT NOT NULL REFERENCES accounts(localpart) ON DELETE CASCADE,
        device_id TEXT NOT NULL,
        display_name TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (localpart, device_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS account_otps (
        localpart TEXT NOT NULL REFERENCES accounts(localpart) ON DELETE CASCADE,
        otp_hash TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        PRIMARY KEY (localpart, otp_hash)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS account_threepids (
        medium TEXT NOT NULL,
        address TEXT NOT NULL,
        localpart TEXT NOT NULL REFERENCES accounts(localpart) ON DELETE CASCADE,
        PRIMARY KEY (medium, address)
    )
    ''',
)


async def init_sqlite_schema(conn: aiosqlite.Connection) -> None:
    """
    Create every table the SQLite store needs.

    Uses IF NOT EXISTS so repeated initialization is harmless.
    """
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
    await conn.commit()
    logger.info("SQLite identity schema initialized/verified.")
