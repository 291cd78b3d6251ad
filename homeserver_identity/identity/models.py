# homeserver_identity/identity/models.py
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Literal, Optional, Union, Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

LOCALPART_PATTERN = re.compile(r"^[a-z0-9._=\-/]+$")
MAX_USER_ID_LENGTH = 255
DEVICE_ID_LENGTH = 10


def validate_localpart(localpart: str, server_name: Optional[str] = None) -> str:
    """
    Return the localpart unchanged if it fits the user id grammar, else raise ValueError.

    With a server name, the full ``@localpart:server_name`` id must also fit
    within MAX_USER_ID_LENGTH.
    """
    if not localpart:
        raise ValueError("Localpart must not be empty.")
    if not LOCALPART_PATTERN.match(localpart):
        raise ValueError(
            f"Localpart '{localpart}' may only contain a-z, 0-9, '.', '_', '=', '-' and '/'."
        )
    if server_name is not None and len(localpart) + len(server_name) + 2 > MAX_USER_ID_LENGTH:
        raise ValueError(f"User id exceeds {MAX_USER_ID_LENGTH} characters.")
    return localpart


class UserId(BaseModel):
    """A fully qualified user id of the form ``@localpart:server_name``."""
    model_config = ConfigDict(frozen=True)

    localpart: str
    server_name: str

    @model_validator(mode="after")
    def _check_grammar(self) -> "UserId":
        if not self.server_name:
            raise ValueError("Server name must not be empty.")
        validate_localpart(self.localpart, self.server_name)
        return self

    @classmethod
    def parse(cls, value: str) -> "UserId":
        """Parse ``@localpart:server_name``. Raises ValueError on malformed input."""
        if not value.startswith("@") or ":" not in value:
            raise ValueError(f"'{value}' is not a valid user id.")
        localpart, _, server_name = value[1:].partition(":")
        return cls(localpart=localpart, server_name=server_name)

    def __str__(self) -> str:
        return f"@{self.localpart}:{self.server_name}"


class Account(BaseModel):
    """A registered account. The password hash is never part of this model."""
    user_id: UserId
    display_name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Device(BaseModel):
    """A device registered to an account; device ids are unique per account only."""
    user_id: UserId
    device_id: str
    display_name: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Principal(BaseModel):
    """The validated identity attached to an authenticated request."""
    model_config = ConfigDict(frozen=True)

    user_id: UserId
    device_id: Optional[str] = None


class UserIdentifierUser(BaseModel):
    type: Literal["m.id.user"] = "m.id.user"
    user: str


class UserIdentifierThirdParty(BaseModel):
    type: Literal["m.id.thirdparty"] = "m.id.thirdparty"
    medium: str
    address: str


UserIdentifier = Annotated[
    Union[UserIdentifierUser, UserIdentifierThirdParty],
    Field(discriminator="type"),
]


def resolve_user_localpart(user: str, server_name: str) -> Optional[str]:
    """
    Turn the ``user`` field of an ``m.id.user`` identifier into a local localpart.

    Accepts a bare localpart or a full user id. Returns None for ids that
    belong to another server or that do not fit the grammar.
    """
    value = user.strip()
    if value.startswith("@"):
        localpart, _, value_server = value[1:].partition(":")
        if value_server != server_name:
            return None
        value = localpart
    localpart = value.lower()
    try:
        return validate_localpart(localpart, server_name)
    except ValueError:
        return None


def generate_device_id() -> str:
    """Server-generated device id used when the client does not supply one."""
    return "".join(secrets.choice(string.ascii_uppercase) for _ in range(DEVICE_ID_LENGTH))
