# homeserver_identity/storage/redis_store.py
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

import redis.asyncio as aioredis
import redis.exceptions as redis_exceptions
from redis.asyncio.connection import SSLConnection

from .errors import (
    StoreError,
    ConnectionFailedError,
    InvalidSyntaxError,
    RecordNotFoundError,
    from_redis_error,
)
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

# KEYS[1] account hash; ARGV password_hash, display_name, created_at
CREATE_ACCOUNT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'password_hash', ARGV[1], 'display_name', ARGV[2], 'created_at', ARGV[3])
return 1
"""

# KEYS[1] device id set; ARGV[1] device record key prefix
REMOVE_ALL_DEVICES_SCRIPT = """
local device_ids = redis.call('SMEMBERS', KEYS[1])
for _, device_id in ipairs(device_ids) do
    redis.call('DEL', ARGV[1] .. device_id)
end
redis.call('DEL', KEYS[1])
return #device_ids
"""


class RedisStore(AbstractStore):
    """
    Redis implementation of the store.

    Layout under ``<prefix>``:
      account:<localpart>              hash  password_hash, display_name, created_at
      devices:<localpart>              set   device ids
      device:<localpart>:<device_id>   hash  display_name, created_at
      otp:<localpart>:<otp_hash>       str   expires through the key TTL
      threepid:<medium>:<address_hash> str   owning localpart; address as sha256 hex

    Connections come from a BlockingConnectionPool so pool exhaustion turns
    into a ConnectionFailedError after ``pool_timeout`` seconds.

    Writes that span several commands run as server-side Lua scripts so a
    failure or a concurrent writer never observes half of them.
    """

    def __init__(
        self,
        server_name: str,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        ssl: bool = False,
        key_prefix: str = "hs",
        pool_size: int = 10,
        pool_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None
    ):
        self.server_name = server_name
        self.key_prefix = key_prefix
        self._connection_params = {
            "host": host,
            "port": port,
            "db": db,
            "max_connections": pool_size,
            "timeout": pool_timeout,
            "decode_responses": True,
        }
        if password:
            self._connection_params["password"] = password
        if ssl:
            self._connection_params["connection_class"] = SSLConnection
        self._redis_client: Optional[aioredis.Redis] = client
        self._script_shas: Dict[str, str] = {}

    def get_type(self) -> str:
        return "RedisStore"

    async def initialize(self) -> None:
        """Connect using the configured pool and check the server answers."""
        async with self._translating("initialize"):
            if self._redis_client is None:
                logger.info(
                    f"Connecting to Redis at {self._connection_params['host']}:"
                    f"{self._connection_params['port']}, DB: {self._connection_params['db']}"
                )
                pool = aioredis.BlockingConnectionPool(**self._connection_params)
                self._redis_client = aioredis.Redis(connection_pool=pool)
            await self._redis_client.ping()
        logger.info("RedisStore connected and pinged.")

    async def teardown(self) -> None:
        if self._redis_client is not None:
            logger.info("Closing Redis connection.")
            await self._redis_client.aclose()
            self._redis_client = None
        else:
            logger.info("No active Redis connection to close.")

    @asynccontextmanager
    async def _translating(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except StoreError:
            raise
        except Exception as e:
            error = from_redis_error(e)
            logger.error(
                f"Redis failure during '{operation}' mapped to {error.code.value}: {e}",
                exc_info=True
            )
            raise error from e

    def _client(self) -> aioredis.Redis:
        if self._redis_client is None:
            raise ConnectionFailedError("RedisStore not initialized. Call initialize() first.")
        return self._redis_client

    async def _run_script(self, client: aioredis.Redis, script: str, keys: List[str], args: List[str]):
        """Run a Lua script through EVALSHA, loading it on first use and after a server flush."""
        sha = self._script_shas.get(script)
        if sha is not None:
            try:
                return await client.evalsha(sha, len(keys), *keys, *args)
            except redis_exceptions.NoScriptError:
                logger.info("Redis script cache was flushed; reloading script.")
        sha = await client.script_load(script)
        self._script_shas[script] = sha
        return await client.evalsha(sha, len(keys), *keys, *args)

    def _key(self, *parts: str) -> str:
        return ":".join((self.key_prefix,) + parts)

    def _account_key(self, localpart: str) -> str:
        return self._key("account", localpart)

    def _devices_key(self, localpart: str) -> str:
        return self._key("devices", localpart)

    def _device_key(self, localpart: str, device_id: str) -> str:
        return self._key("device", localpart, device_id)

    def _otp_key(self, localpart: str, otp: str) -> str:
        return self._key("otp", localpart, hash_otp(otp))

    def _threepid_key(self, medium: str, address: str) -> str:
        # The address may contain ':'; its fixed-width digest keeps keys unambiguous
        address_hash = hashlib.sha256(address.encode("utf-8")).hexdigest()
        return self._key("threepid", medium, address_hash)

    async def _require_account(self, client: aioredis.Redis, localpart: str) -> None:
        if not await client.exists(self._account_key(localpart)):
            raise InvalidSyntaxError(f"Account '{localpart}' does not exist.")

    async def check_username_exists(self, username: str) -> bool:
        async with self._translating("check_username_exists"):
            return await self._client().exists(self._account_key(username)) > 0

    async def fetch_user_id(self, identifier: UserIdentifier) -> Optional[UserId]:
        async with self._translating("fetch_user_id"):
            client = self._client()
            if isinstance(identifier, UserIdentifierThirdParty):
                localpart = await client.get(
                    self._threepid_key(identifier.medium, identifier.address)
                )
            else:
                localpart = resolve_user_localpart(identifier.user, self.server_name)
            if localpart is None or not await client.exists(self._account_key(localpart)):
                return None
            return UserId(localpart=localpart, server_name=self.server_name)

    async def fetch_password_hash(self, user_id: UserId) -> str:
        async with self._translating("fetch_password_hash"):
            value = await self._client().hget(self._account_key(user_id.localpart), "password_hash")
        if value is None:
            raise RecordNotFoundError(f"No credential for {user_id}.")
        return value

    async def fetch_display_name(self, user_id: UserId) -> str:
        async with self._translating("fetch_display_name"):
            value = await self._client().hget(self._account_key(user_id.localpart), "display_name")
        if value is None:
            raise RecordNotFoundError(f"No profile for {user_id}.")
        return value

    async def create_account(
        self,
        localpart: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> Account:
        account = Account(
            user_id=self.local_user_id(localpart),
            display_name=display_name or localpart
        )
        async with self._translating("create_account"):
            created = await self._run_script(
                self._client(),
                CREATE_ACCOUNT_SCRIPT,
                [self._account_key(localpart)],
                [password_hash, account.display_name, account.created_at.isoformat()]
            )
            if not created:
                raise InvalidSyntaxError(f"Account '{localpart}' already exists.")
        logger.info(f"Created account '{localpart}'.")
        return account

    async def set_display_name(self, user_id: UserId, display_name: str) -> None:
        async with self._translating("set_display_name"):
            client = self._client()
            key = self._account_key(user_id.localpart)
            if not await client.exists(key):
                raise RecordNotFoundError(f"No profile for {user_id}.")
            await client.hset(key, "display_name", display_name)
        logger.info(f"Updated display name for {user_id}.")

    async def add_threepid(self, user_id: UserId, medium: str, address: str) -> None:
        async with self._translating("add_threepid"):
            client = self._client()
            await self._require_account(client, user_id.localpart)
            await client.set(self._threepid_key(medium, address), user_id.localpart)
        logger.info(f"Bound {medium} third-party id to {user_id}.")

    async def add_otp(self, user_id: UserId, otp: str, ttl_seconds: int) -> None:
        async with self._translating("add_otp"):
            client = self._client()
            await self._require_account(client, user_id.localpart)
            await client.set(self._otp_key(user_id.localpart, otp), "1", ex=ttl_seconds)
        logger.info(f"Issued one-time password for {user_id} (ttl {ttl_seconds}s).")

    async def check_otp_exists(self, user_id: UserId, otp: str) -> bool:
        async with self._translating("check_otp_exists"):
            return await self._client().exists(self._otp_key(user_id.localpart, otp)) > 0

    async def consume_otp(self, user_id: UserId, otp: str) -> bool:
        async with self._translating("consume_otp"):
            return await self._client().delete(self._otp_key(user_id.localpart, otp)) > 0

    async def check_device_id_exists(self, user_id: UserId, device_id: str) -> bool:
        async with self._translating("check_device_id_exists"):
            return bool(await self._client().sismember(self._devices_key(user_id.localpart), device_id))

    async def list_devices(self, user_id: UserId) -> List[Device]:
        async with self._translating("list_devices"):
            client = self._client()
            device_ids = sorted(await client.smembers(self._devices_key(user_id.localpart)))
            if not device_ids:
                return []
            pipe = client.pipeline(transaction=False)
            for device_id in device_ids:
                pipe.hgetall(self._device_key(user_id.localpart, device_id))
            records = await pipe.execute()
        return [
            Device(
                user_id=user_id,
                device_id=device_id,
                display_name=record.get("display_name"),
                created_at=record.get("created_at") or datetime.now(timezone.utc)
            )
            for device_id, record in zip(device_ids, records)
        ]

    async def set_device(
        self,
        user_id: UserId,
        device_id: str,
        display_name: Optional[str] = None
    ) -> None:
        async with self._translating("set_device"):
            client = self._client()
            await self._require_account(client, user_id.localpart)
            device_key = self._device_key(user_id.localpart, device_id)
            pipe = client.pipeline(transaction=True)
            pipe.sadd(self._devices_key(user_id.localpart), device_id)
            pipe.hsetnx(device_key, "created_at", datetime.now(timezone.utc).isoformat())
            if display_name is not None:
                pipe.hset(device_key, "display_name", display_name)
            await pipe.execute()
        logger.info(f"Set device '{device_id}' for {user_id}.")

    async def remove_device_id(self, user_id: UserId, device_id: str) -> None:
        async with self._translating("remove_device_id"):
            pipe = self._client().pipeline(transaction=True)
            pipe.srem(self._devices_key(user_id.localpart), device_id)
            pipe.delete(self._device_key(user_id.localpart, device_id))
            await pipe.execute()
        logger.info(f"Removed device '{device_id}' for {user_id}.")

    async def remove_all_device_ids(self, user_id: UserId) -> None:
        async with self._translating("remove_all_device_ids"):
            removed = await self._run_script(
                self._client(),
                REMOVE_ALL_DEVICES_SCRIPT,
                [self._devices_key(user_id.localpart)],
                [self._device_key(user_id.localpart, "")]
            )
        logger.info(f"Removed all devices for {user_id} ({removed} device(s)).")
