"""
Identity data model: user ids, accounts, devices, principals and the
credential helpers that keep secrets out of the store in plaintext.
"""

from .models import (
    UserId,
    Account,
    Device,
    Principal,
    UserIdentifier,
    UserIdentifierUser,
    UserIdentifierThirdParty,
    validate_localpart,
    resolve_user_localpart,
    generate_device_id,
)
from .credentials import (
    AbstractPasswordHasher,
    Pbkdf2PasswordHasher,
    generate_otp,
    hash_otp,
)

__all__ = [
    "UserId",
    "Account",
    "Device",
    "Principal",
    "UserIdentifier",
    "UserIdentifierUser",
    "UserIdentifierThirdParty",
    "validate_localpart",
    "resolve_user_localpart",
    "generate_device_id",
    "AbstractPasswordHasher",
    "Pbkdf2PasswordHasher",
    "generate_otp",
    "hash_otp",
]
