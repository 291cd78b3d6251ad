# homeserver_identity/storage/sqlite_store.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional

import aiosqlite

from .errors import StoreError, RecordNotFoundError, from_sqlite_error
from .sqlite_base import SQLiteConnectionPool, init_sqlite_schema
from .storage_interfaces import AbstractStore
from ..identity.credentials import hash_otp
from ..identity.models import (
    Account,
    Device,
    UserId,
    UserIdentifier,
    UserIdentifierThirdParty,
    resolve_user_localpart,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore(AbstractStore):
    """
    Relational implementation of the store on SQLite.

    Queries bind every user-supplied value as a parameter. All native
    failures are translated by ``from_sqlite_error`` before they leave
    this class.
    """

    def __init__(
        self,
        db_path: str,
        server_name: str,
        pool_size: int = 5,
        pool_timeout: float = 5.0
    ):
        self.server_name = server_name
        self._pool = SQLiteConnectionPool(db_path, max_size=pool_size, acquire_timeout=pool_timeout)

    def get_type(self) -> str:
        return "SQLiteStore"

    async def initialize(self) -> None:
        async with self._connection("initialize") as conn:
            await init_sqlite_schema(conn)
        logger.info(f"SQLiteStore initialized at {self._pool.db_path} (pool size {self._pool.max_size}).")

    async def teardown(self) -> None:
        await self._pool.close()
        logger.info("SQLiteStore teardown complete.")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a pooled connection, translating any failure into a StoreError."""
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except StoreError:
            raise
        except Exception as e:
            error = from_sqlite_error(e)
            logger.error(
                f"SQLite failure during '{operation}' mapped to {error.code.value}: {e}",
                exc_info=True
            )
            raise error from e

    async def _execute(self, operation: str, query: str, params: tuple = ()) -> int:
        """Run a write statement in its own transaction and return the affected row count."""
        async with self._connection(operation) as conn:
            logger.debug(f"Executing SQL for '{operation}': {query.strip()}")
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def _fetchone(self, operation: str, query: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        async with self._connection(operation) as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def _fetchall(self, operation: str, query: str, params: tuple = ()) -> List[aiosqlite.Row]:
        async with self._connection(operation) as conn:
            cursor = await conn.execute(query, params)
            return list(await cursor.fetchall())

    async def check_username_exists(self, username: str) -> bool:
        row = await self._fetchone(
            "check_username_exists",
            "SELECT COUNT(*) FROM accounts WHERE localpart = ?",
            (username,)
        )
        return row[0] > 0

    async def fetch_user_id(self, identifier: UserIdentifier) -> Optional[UserId]:
        if isinstance(identifier, UserIdentifierThirdParty):
            row = await self._fetchone(
                "fetch_user_id",
                "SELECT localpart FROM account_threepids WHERE medium = ? AND address = ?",
                (identifier.medium, identifier.address)
            )
            if row is None:
                return None
            return UserId(localpart=row["localpart"], server_name=self.server_name)

        localpart = resolve_user_localpart(identifier.user, self.server_name)
        if localpart is None or not await self.check_username_exists(localpart):
            return None
        return UserId(localpart=localpart, server_name=self.server_name)

    async def fetch_password_hash(self, user_id: UserId) -> str:
        row = await self._fetchone(
            "fetch_password_hash",
            "SELECT password_hash FROM accounts WHERE localpart = ?",
            (user_id.localpart,)
        )
        if row is None:
            raise RecordNotFoundError(f"No credential for {user_id}.")
        return row["password_hash"]

    async def fetch_display_name(self, user_id: UserId) -> str:
        row = await self._fetchone(
            "fetch_display_name",
            "SELECT display_name FROM account_profiles WHERE localpart = ?",
            (user_id.localpart,)
        )
        if row is None:
            raise RecordNotFoundError(f"No profile for {user_id}.")
        return row["display_name"]

    async def create_account(
        self,
        localpart: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> Account:
        user_id = self.local_user_id(localpart)
        created_at = _now_iso()
        display_name = display_name or localpart
        async with self._connection("create_account") as conn:
            await conn.execute(
                "INSERT INTO accounts (localpart, password_hash, created_at) VALUES (?, ?, ?)",
                (localpart, password_hash, created_at)
            )
            await conn.execute(
                "INSERT INTO account_profiles (localpart, display_name) VALUES (?, ?)",
                (localpart, display_name)
            )
            await conn.commit()
        logger.info(f"Created account '{localpart}'.")
        return Account(
            user_id=user_id,
            display_name=display_name,
            created_at=created_at
        )

    async def set_display_name(self, user_id: UserId, display_name: str) -> None:
        updated = await self._execute(
            "set_display_name",
            "UPDATE account_profiles SET display_name = ? WHERE localpart = ?",
            (display_name, user_id.localpart)
        )
        if updated == 0:
            raise RecordNotFoundError(f"No profile for {user_id}.")
        logger.info(f"Updated display name for {user_id}.")

    async def add_threepid(self, user_id: UserId, medium: str, address: str) -> None:
        await self._execute(
            "add_threepid",
            '''
            INSERT INTO account_threepids (medium, address, localpart) VALUES (?, ?, ?)
            ON CONFLICT(medium, address) DO UPDATE SET localpart = excluded.localpart
            ''',
            (medium, address, user_id.localpart)
        )
        logger.info(f"Bound {medium} third-party id to {user_id}.")

    async def add_otp(self, user_id: UserId, otp: str, ttl_seconds: int) -> None:
        expires_at = (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()
        await self._execute(
            "add_otp",
            '''
            INSERT INTO account_otps (localpart, otp_hash, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(localpart, otp_hash) DO UPDATE SET expires_at = excluded.expires_at
            ''',
            (user_id.localpart, hash_otp(otp), expires_at)
        )
        logger.info(f"Issued one-time password for {user_id} (ttl {ttl_seconds}s).")

    async def check_otp_exists(self, user_id: UserId, otp: str) -> bool:
        row = await self._fetchone(
            "check_otp_exists",
            "SELECT COUNT(*) FROM account_otps WHERE localpart = ? AND otp_hash = ? AND expires_at > ?",
            (user_id.localpart, hash_otp(otp), _now_iso())
        )
        return row[0] > 0

    async def consume_otp(self, user_id: UserId, otp: str) -> bool:
        async with self._connection("consume_otp") as conn:
            cursor = await conn.execute(
                "DELETE FROM account_otps WHERE localpart = ? AND otp_hash = ? AND expires_at > ?",
                (user_id.localpart, hash_otp(otp), _now_iso())
            )
            consumed = cursor.rowcount > 0
            # Expired codes for this account are dead weight
            await conn.execute(
                "DELETE FROM account_otps WHERE localpart = ? AND expires_at <= ?",
                (user_id.localpart, _now_iso())
            )
            await conn.commit()
        return consumed

    async def check_device_id_exists(self, user_id: UserId, device_id: str) -> bool:
        row = await self._fetchone(
            "check_device_id_exists",
            "SELECT COUNT(*) FROM devices WHERE localpart = ? AND device_id = ?",
            (user_id.localpart, device_id)
        )
        return row[0] > 0

    async def list_devices(self, user_id: UserId) -> List[Device]:
        rows = await self._fetchall(
            "list_devices",
            "SELECT device_id, display_name, created_at FROM devices WHERE localpart = ? ORDER BY device_id",
            (user_id.localpart,)
        )
        return [
            Device(
                user_id=user_id,
                device_id=row["device_id"],
                display_name=row["display_name"],
                created_at=row["created_at"]
            )
            for row in rows
        ]

    async def set_device(
        self,
        user_id: UserId,
        device_id: str,
        display_name: Optional[str] = None
    ) -> None:
        await self._execute(
            "set_device",
            '''
            INSERT INTO devices (localpart, device_id, display_name, created_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(localpart, device_id) DO UPDATE SET
                display_name = COALESCE(excluded.display_name, devices.display_name)
            ''',
            (user_id.localpart, device_id, display_name, _now_iso())
        )
        logger.info(f"Set device '{device_id}' for {user_id}.")

    async def remove_device_id(self, user_id: UserId, device_id: str) -> None:
        removed = await self._execute(
            "remove_device_id",
            "DELETE FROM devices WHERE localpart = ? AND device_id = ?",
            (user_id.localpart, device_id)
        )
        logger.info(f"Removed device '{device_id}' for {user_id} ({removed} row(s)).")

    async def remove_all_device_ids(self, user_id: UserId) -> None:
        removed = await self._execute(
            "remove_all_device_ids",
            "DELETE FROM devices WHERE localpart = ?",
            (user_id.localpart,)
        )
        logger.info(f"Removed all devices for {user_id} ({removed} row(s)).")
