# tests/conftest.py
import httpx
import pytest

from homeserver_identity.auth.tokens import AccessTokenManager, generate_access_token_key
from homeserver_identity.identity.credentials import Pbkdf2PasswordHasher
from homeserver_identity.identity.models import UserId
from homeserver_identity.main import create_app
from homeserver_identity.storage.memory_store import MemoryStore
from homeserver_identity.storage.sqlite_store import SQLiteStore

SERVER_NAME = "example.org"


def user(localpart: str) -> UserId:
    return UserId(localpart=localpart, server_name=SERVER_NAME)


@pytest.fixture
def alice() -> UserId:
    return user("alice")


@pytest.fixture
def bob() -> UserId:
    return user("bob")


@pytest.fixture
async def memory_store():
    store = MemoryStore(server_name=SERVER_NAME)
    await store.initialize()
    yield store
    await store.teardown()


@pytest.fixture
async def sqlite_store(tmp_path):
    store = SQLiteStore(
        str(tmp_path / "identity.sqlite3"),
        server_name=SERVER_NAME,
        pool_size=3,
        pool_timeout=1.0
    )
    await store.initialize()
    yield store
    await store.teardown()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Every backend that can run without an external server."""
    if request.param == "memory":
        backend = MemoryStore(server_name=SERVER_NAME)
    else:
        backend = SQLiteStore(str(tmp_path / "contract.sqlite3"), server_name=SERVER_NAME)
    await backend.initialize()
    yield backend
    await backend.teardown()


@pytest.fixture
def password_hasher() -> Pbkdf2PasswordHasher:
    # Few iterations keep the suite fast; the format is the same
    return Pbkdf2PasswordHasher(iterations=1_000)


@pytest.fixture
def token_manager() -> AccessTokenManager:
    return AccessTokenManager(generate_access_token_key())


@pytest.fixture
def app(memory_store, token_manager, password_hasher):
    return create_app(store=memory_store, token_manager=token_manager, password_hasher=password_hasher)


@pytest.fixture
async def http_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
