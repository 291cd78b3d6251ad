# homeserver_identity/identity/credentials.py
import base64
import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod

PBKDF2_ITERATIONS = 310_000
PBKDF2_SALT_BYTES = 16
OTP_BYTES_LENGTH = 24


class AbstractPasswordHasher(ABC):
    """Interface for the hashing capability that owns password comparison."""

    @abstractmethod
    def hash_password(self, password: str) -> str:
        """Return an encoded hash suitable for storage."""
        pass

    @abstractmethod
    def verify_password(self, password: str, password_hash: str) -> bool:
        """Check a plaintext password against a stored hash."""
        pass


class Pbkdf2PasswordHasher(AbstractPasswordHasher):
    """
    Salted PBKDF2-SHA256 hasher.

    Hashes are encoded as ``pbkdf2_sha256$<iterations>$<salt>$<digest>`` with
    base64 salt and digest, so the iteration count can be raised later without
    invalidating stored credentials.
    """

    ALGORITHM = "pbkdf2_sha256"

    def __init__(self, iterations: int = PBKDF2_ITERATIONS):
        self.iterations = iterations

    def hash_password(self, password: str) -> str:
        salt = secrets.token_bytes(PBKDF2_SALT_BYTES)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self.iterations)
        return "$".join([
            self.ALGORITHM,
            str(self.iterations),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ])

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            algorithm, iterations, salt_b64, digest_b64 = password_hash.split("$")
            if algorithm != self.ALGORITHM:
                return False
            salt = base64.b64decode(salt_b64)
            expected = base64.b64decode(digest_b64)
            candidate = hashlib.pbkdf2_hmac(
                "sha256", password.encode("utf-8"), salt, int(iterations)
            )
        except ValueError:
            return False
        # Constant-time comparison
        return hmac.compare_digest(candidate, expected)


def generate_otp(length: int = OTP_BYTES_LENGTH) -> str:
    """Generate a URL-safe one-time password."""
    return secrets.token_urlsafe(length)


def hash_otp(otp: str) -> str:
    """OTPs are only ever persisted as SHA-256 digests."""
    return hashlib.sha256(otp.encode("utf-8")).hexdigest()
