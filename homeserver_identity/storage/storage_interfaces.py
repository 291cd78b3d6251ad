# homeserver_identity/storage/storage_interfaces.py
from abc import ABC, abstractmethod
from typing import List, Optional

from .errors import InvalidSyntaxError
from ..identity.models import Account, Device, UserId, UserIdentifier


class AbstractStore(ABC):
    """
    Storage contract for accounts, credentials, one-time passwords and devices.

    Every backend implements this interface and nothing above it may depend
    on a concrete backend type. Implementations must be safe to call
    concurrently from many in-flight requests; the only state they hold is
    the backend handle (connection pool, client) itself.

    Errors: every failure is raised as a ``StoreError`` subclass from
    ``storage.errors``. Existence checks never raise ``RecordNotFoundError``;
    absence is reported as ``False``. Mutations of devices are idempotent so
    that retried requests are safe to resend.
    """

    # Domain of the user ids this store hands out
    server_name: str

    def local_user_id(self, localpart: str) -> UserId:
        """The user id of ``localpart`` on this server; raises InvalidSyntaxError if it is not valid."""
        try:
            return UserId(localpart=localpart, server_name=self.server_name)
        except ValueError as e:
            raise InvalidSyntaxError(f"Invalid localpart for {self.server_name}.") from e

    @abstractmethod
    def get_type(self) -> str:
        """Short backend name, used in logs."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and ensure the schema exists."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Release every backend resource."""
        pass

    # Accounts and credentials

    @abstractmethod
    async def check_username_exists(self, username: str) -> bool:
        """True iff an account with this localpart exists."""
        pass

    @abstractmethod
    async def fetch_user_id(self, identifier: UserIdentifier) -> Optional[UserId]:
        """
        Resolve a login identifier to the canonical user id.

        Returns None when the identifier does not resolve to a local account;
        that is a normal result, not an error.
        """
        pass

    @abstractmethod
    async def fetch_password_hash(self, user_id: UserId) -> str:
        """Return the stored password hash. Raises RecordNotFoundError if absent."""
        pass

    @abstractmethod
    async def fetch_display_name(self, user_id: UserId) -> str:
        """Return the current display name. Raises RecordNotFoundError if absent."""
        pass

    @abstractmethod
    async def create_account(
        self,
        localpart: str,
        password_hash: str,
        display_name: Optional[str] = None
    ) -> Account:
        """
        Create an account; the display name defaults to the localpart.
        A duplicate or invalid localpart raises InvalidSyntaxError; nothing is
        written in either case.
        """
        pass

    @abstractmethod
    async def set_display_name(self, user_id: UserId, display_name: str) -> None:
        """Update the display name. Raises RecordNotFoundError if the account is absent."""
        pass

    @abstractmethod
    async def add_threepid(self, user_id: UserId, medium: str, address: str) -> None:
        """Bind a third-party identifier (email, msisdn) to an account."""
        pass

    # One-time passwords

    @abstractmethod
    async def add_otp(self, user_id: UserId, otp: str, ttl_seconds: int) -> None:
        """Issue a one-time password valid for ttl_seconds."""
        pass

    @abstractmethod
    async def check_otp_exists(self, user_id: UserId, otp: str) -> bool:
        """
        True iff this exact OTP is currently valid for the account.
        Never-issued, consumed and expired OTPs all read as False.
        """
        pass

    @abstractmethod
    async def consume_otp(self, user_id: UserId, otp: str) -> bool:
        """Invalidate the OTP. Returns whether a valid OTP was consumed."""
        pass

    # Devices

    @abstractmethod
    async def check_device_id_exists(self, user_id: UserId, device_id: str) -> bool:
        """True iff the device is registered to the account."""
        pass

    @abstractmethod
    async def list_devices(self, user_id: UserId) -> List[Device]:
        """All devices of the account ordered by device id; empty for unknown accounts."""
        pass

    @abstractmethod
    async def set_device(
        self,
        user_id: UserId,
        device_id: str,
        display_name: Optional[str] = None
    ) -> None:
        """
        Insert or update a device, leaving exactly one record for (user_id, device_id).
        A None display name keeps the stored one on update.
        """
        pass

    @abstractmethod
    async def remove_device_id(self, user_id: UserId, device_id: str) -> None:
        """Delete one device. Succeeds when the device does not exist."""
        pass

    @abstractmethod
    async def remove_all_device_ids(self, user_id: UserId) -> None:
        """Delete every device of the account. Succeeds when there are none."""
        pass
