# homeserver_identity/storage/memory_store.py
import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from .errors import InvalidSyntaxError, RecordNotFoundError
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

# Operations whose outcome can be scripted with with_response/with_responses
STORE_OPERATIONS = frozenset({
    "check_username_exists",
    "fetch_user_id",
    "fetch_password_hash",
    "fetch_display_name",
    "create_account",
    "set_display_name",
    "add_threepid",
    "add_otp",
    "check_otp_exists",
    "consume_otp",
    "check_device_id_exists",
    "list_devices",
    "set_device",
    "remove_device_id",
    "remove_all_device_ids",
})

_UNSET = object()


class MemoryStore(AbstractStore):
    """
    Store that keeps every record in process memory.

    Used for tests of the layers above the store and for throwaway local
    runs. Besides behaving like a real backend, each operation's outcome can
    be scripted::

        store = MemoryStore().with_response("check_device_id_exists", True)
        store.with_responses("fetch_display_name", ConnectionFailedError("down"), "Alice")

    A scripted value that is an exception is raised, anything else is
    returned as the operation's result. One-shot responses queued with
    ``with_responses`` are consumed first, then the sticky ``with_response``
    value, then the in-memory state.
    """

    def __init__(self, server_name: str = "localhost"):
        self.server_name = server_name
        self._lock = asyncio.Lock()
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._devices: Dict[str, Dict[str, Device]] = {}
        self._otps: Dict[Tuple[str, str], datetime] = {}
        self._threepids: Dict[Tuple[str, str], str] = {}
        self._sticky: Dict[str, Any] = {}
        self._queued: Dict[str, Deque[Any]] = {}
        self.calls: List[Tuple[str, tuple]] = []

    def get_type(self) -> str:
        return "MemoryStore"

    async def initialize(self) -> None:
        logger.info("MemoryStore initialized.")

    async def teardown(self) -> None:
        logger.info("MemoryStore teardown (nothing to release).")

    # Response scripting

    def _check_operation(self, operation: str) -> None:
        if operation not in STORE_OPERATIONS:
            raise ValueError(f"Unknown store operation: '{operation}'")

    def with_response(self, operation: str, result: Any) -> "MemoryStore":
        """Make every call of ``operation`` return (or raise) ``result``."""
        self._check_operation(operation)
        self._sticky[operation] = result
        return self

    def with_responses(self, operation: str, *results: Any) -> "MemoryStore":
        """Queue one-shot results for the next calls of ``operation``."""
        self._check_operation(operation)
        self._queued.setdefault(operation, deque()).extend(results)
        return self

    def clear_responses(self, operation: Optional[str] = None) -> "MemoryStore":
        """Drop scripted responses for one operation, or for all of them."""
        if operation is None:
            self._sticky.clear()
            self._queued.clear()
        else:
            self._sticky.pop(operation, None)
            self._queued.pop(operation, None)
        return self

    def _scripted(self, operation: str, *args: Any) -> Any:
        self.calls.append((operation, args))
        queue = self._queued.get(operation)
        if queue:
            result = queue.popleft()
        elif operation in self._sticky:
            result = self._sticky[operation]
        else:
            return _UNSET
        if isinstance(result, Exception):
            raise result
        return result

    def _require_account(self, localpart: str) -> None:
        if localpart not in self._accounts:
            raise InvalidSyntaxError(f"Account '{localpart}' does not exist.")

    # Accounts and credentials

    async def check_username_exists(self, username: str) -> bool:
        result = self._scripted("check_username_exists", username)
        if result is not _UNSET:
            return result
        async with self._lock:
            return username in self._accounts

    async def fetch_user_id(self, identifier: UserIdentifier) -> Optional[UserId]:
        result = self._scripted("fetch_user_id", identifier)
        if result is not _UNSET:
            return result
        async with self._lock:
            if isinstance(identifier, UserIdentifierThirdParty):
                localpart = self._threepids.get((identifier.medium, identifier.address))
            else:
                localpart = resolve_user_localpart(identifier.user, self.server_name)
            if localpart is None or localpart not in self._accounts:
                return None
            return UserId(localpart=localpart, server_name=self.server_name)

    async def fetch_password_hash(self, user_id: UserId) -> str:
        result = self._scripted("fetch_password_hash", user_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            account = self._accounts.get(user_id.localpart)
            if account is None:
                raise RecordNotFoundError(f"No credential for {user_id}.")
            return account["password_hash"]

    async def fetch_display_name(self, user_id: UserId) -> str:
        result = self._scripted("fetch_display_name", user_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            account = self._accounts.get(user_id.localpart)
            if account is None:
                raise RecordNotFoundError(f"No profile for {user_id}.")
            return account["display_name"]

    async def create_account(
        self,
        localpart: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> Account:
        result = self._scripted("create_account", localpart, password_hash, display_name)
        if result is not _UNSET:
            return result
        user_id = self.local_user_id(localpart)
        async with self._lock:
            if localpart in self._accounts:
                raise InvalidSyntaxError(f"Account '{localpart}' already exists.")
            account = Account(user_id=user_id, display_name=display_name or localpart)
            self._accounts[localpart] = {
                "password_hash": password_hash,
                "display_name": account.display_name,
                "created_at": account.created_at,
            }
            self._devices[localpart] = {}
        logger.info(f"Created account '{localpart}'.")
        return account

    async def set_display_name(self, user_id: UserId, display_name: str) -> None:
        result = self._scripted("set_display_name", user_id, display_name)
        if result is not _UNSET:
            return result
        async with self._lock:
            account = self._accounts.get(user_id.localpart)
            if account is None:
                raise RecordNotFoundError(f"No profile for {user_id}.")
            account["display_name"] = display_name

    async def add_threepid(self, user_id: UserId, medium: str, address: str) -> None:
        result = self._scripted("add_threepid", user_id, medium, address)
        if result is not _UNSET:
            return result
        async with self._lock:
            self._require_account(user_id.localpart)
            self._threepids[(medium, address)] = user_id.localpart

    # One-time passwords

    async def add_otp(self, user_id: UserId, otp: str, ttl_seconds: int) -> None:
        result = self._scripted("add_otp", user_id, otp, ttl_seconds)
        if result is not _UNSET:
            return result
        async with self._lock:
            self._require_account(user_id.localpart)
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
            self._otps[(user_id.localpart, hash_otp(otp))] = expires_at

    async def check_otp_exists(self, user_id: UserId, otp: str) -> bool:
        result = self._scripted("check_otp_exists", user_id, otp)
        if result is not _UNSET:
            return result
        async with self._lock:
            expires_at = self._otps.get((user_id.localpart, hash_otp(otp)))
            return expires_at is not None and expires_at > datetime.now(timezone.utc)

    async def consume_otp(self, user_id: UserId, otp: str) -> bool:
        result = self._scripted("consume_otp", user_id, otp)
        if result is not _UNSET:
            return result
        async with self._lock:
            expires_at = self._otps.pop((user_id.localpart, hash_otp(otp)), None)
            return expires_at is not None and expires_at > datetime.now(timezone.utc)

    # Devices

    async def check_device_id_exists(self, user_id: UserId, device_id: str) -> bool:
        result = self._scripted("check_device_id_exists", user_id, device_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            return device_id in self._devices.get(user_id.localpart, {})

    async def list_devices(self, user_id: UserId) -> List[Device]:
        result = self._scripted("list_devices", user_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            devices = self._devices.get(user_id.localpart, {})
            return [devices[device_id] for device_id in sorted(devices)]

    async def set_device(
        self,
        user_id: UserId,
        device_id: str,
        display_name: Optional[str] = None
    ) -> None:
        result = self._scripted("set_device", user_id, device_id, display_name)
        if result is not _UNSET:
            return result
        async with self._lock:
            self._require_account(user_id.localpart)
            devices = self._devices[user_id.localpart]
            existing = devices.get(device_id)
            if existing is None:
                devices[device_id] = Device(
                    user_id=user_id, device_id=device_id, display_name=display_name
                )
            elif display_name is not None:
                devices[device_id] = existing.model_copy(update={"display_name": display_name})

    async def remove_device_id(self, user_id: UserId, device_id: str) -> None:
        result = self._scripted("remove_device_id", user_id, device_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            self._devices.get(user_id.localpart, {}).pop(device_id, None)

    async def remove_all_device_ids(self, user_id: UserId) -> None:
        result = self._scripted("remove_all_device_ids", user_id)
        if result is not _UNSET:
            return result
        async with self._lock:
            if user_id.localpart in self._devices:
                self._devices[user_id.localpart] = {}
