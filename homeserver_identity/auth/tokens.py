# homeserver_identity/auth/tokens.py
import json
import logging
from base64 import urlsafe_b64decode
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..identity.models import Principal, UserId

logger = logging.getLogger(__name__)


def generate_access_token_key() -> str:
    """Generates a new Fernet key suitable for ACCESS_TOKEN_KEY."""
    return Fernet.generate_key().decode('utf-8')


class AccessTokenManager:
    """
    Issues and verifies sealed access tokens.

    A token is a Fernet token over ``{"sub": <user id>, "device_id": <device>}``,
    so it cannot be read or forged without the key. Revocation happens by
    removing the device: the request dependency rejects tokens whose device
    is no longer registered.
    """

    def __init__(self, key: Optional[str], lifetime_seconds: Optional[int] = None):
        """
        Args:
            key: Base64-encoded Fernet key. When missing an ephemeral key is
                generated and every token dies with the process.
            lifetime_seconds: Maximum token age, or None for no expiry.
        """
        if not key:
            logger.critical(
                "CRITICAL: ACCESS_TOKEN_KEY is not set. Using an ephemeral key; "
                "issued access tokens will not survive a restart."
            )
            key = generate_access_token_key()

        key_bytes = key.encode('utf-8')
        # Fernet keys must decode to exactly 32 bytes
        try:
            decoded = urlsafe_b64decode(key_bytes)
        except ValueError as e:
            raise ValueError(f"Invalid ACCESS_TOKEN_KEY: {e}") from e
        if len(decoded) != 32:
            raise ValueError(
                f"Invalid ACCESS_TOKEN_KEY length after base64 decoding. "
                f"Expected 32 bytes, got {len(decoded)}."
            )
        self._fernet = Fernet(key_bytes)
        self.lifetime_seconds = lifetime_seconds

    def issue(self, principal: Principal) -> str:
        payload = {"sub": str(principal.user_id), "device_id": principal.device_id}
        return self._fernet.encrypt(json.dumps(payload).encode('utf-8')).decode('utf-8')

    def verify(self, token: str) -> Optional[Principal]:
        """Return the principal sealed in the token, or None if it is invalid or expired."""
        try:
            raw = self._fernet.decrypt(token.encode('utf-8'), ttl=self.lifetime_seconds)
        except InvalidToken:
            logger.debug("Access token rejected: invalid signature or expired.")
            return None
        try:
            payload = json.loads(raw)
            return Principal(
                user_id=UserId.parse(payload["sub"]),
                device_id=payload.get("device_id")
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Access token carried a malformed payload: {e}")
            return None
