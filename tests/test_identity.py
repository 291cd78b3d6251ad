# tests/test_identity.py
import json
import time

import pytest
from cryptography.fernet import Fernet
from pydantic import TypeAdapter, ValidationError

from homeserver_identity.auth.tokens import AccessTokenManager, generate_access_token_key
from homeserver_identity.identity.credentials import generate_otp, hash_otp
from homeserver_identity.identity.models import (
    Principal,
    UserId,
    UserIdentifier,
    UserIdentifierThirdParty,
    UserIdentifierUser,
    generate_device_id,
    resolve_user_localpart,
    validate_localpart,
)

from .conftest import SERVER_NAME


class TestUserId:

    def test_parse_and_render(self):
        user_id = UserId.parse("@alice:example.org")
        assert user_id.localpart == "alice"
        assert user_id.server_name == "example.org"
        assert str(user_id) == "@alice:example.org"

    def test_server_name_may_carry_a_port(self):
        assert UserId.parse("@alice:example.org:8448").server_name == "example.org:8448"

    @pytest.mark.parametrize("raw", ["alice", "@alice", "@:example.org", "@Alice:example.org", "@a b:x"])
    def test_malformed_ids_are_rejected(self, raw):
        with pytest.raises(ValueError):
            UserId.parse(raw)

    def test_overlong_id_is_rejected(self):
        with pytest.raises(ValidationError):
            UserId(localpart="a" * 300, server_name="example.org")

    def test_localpart_length_counts_the_whole_user_id(self):
        fits = "a" * (255 - len(SERVER_NAME) - 2)
        assert validate_localpart(fits, SERVER_NAME) == fits
        with pytest.raises(ValueError):
            validate_localpart(fits + "a", SERVER_NAME)
        # Without a server name only the characters are checked
        assert validate_localpart(fits + "a") == fits + "a"

    def test_equal_ids_are_interchangeable(self):
        assert UserId.parse("@alice:example.org") == UserId(localpart="alice", server_name="example.org")
        assert len({UserId.parse("@alice:example.org"), UserId.parse("@alice:example.org")}) == 1


class TestResolveUserLocalpart:

    @pytest.mark.parametrize("raw, expected", [
        ("alice", "alice"),
        ("Alice", "alice"),
        (" alice ", "alice"),
        (f"@alice:{SERVER_NAME}", "alice"),
        (f"@ALICE:{SERVER_NAME}", "alice"),
        ("@alice:elsewhere.net", None),
        ("al ice", None),
        ("", None),
        ("a" * 250, None),
    ])
    def test_resolution(self, raw, expected):
        assert resolve_user_localpart(raw, SERVER_NAME) == expected


def test_identifier_is_discriminated_by_type():
    adapter = TypeAdapter(UserIdentifier)
    assert isinstance(adapter.validate_python({"type": "m.id.user", "user": "alice"}), UserIdentifierUser)
    assert isinstance(
        adapter.validate_python({"type": "m.id.thirdparty", "medium": "email", "address": "a@b.c"}),
        UserIdentifierThirdParty
    )
    with pytest.raises(ValidationError):
        adapter.validate_python({"type": "m.id.phone", "country": "GB", "phone": "123"})


def test_generated_device_ids_are_uppercase_and_distinct():
    ids = {generate_device_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(d) == 10 and d.isalpha() and d.isupper() for d in ids)


class TestPasswordHasher:

    def test_round_trip(self, password_hasher):
        stored = password_hasher.hash_password("correct horse")
        assert stored.startswith("pbkdf2_sha256$1000$")
        assert "correct horse" not in stored
        assert password_hasher.verify_password("correct horse", stored) is True
        assert password_hasher.verify_password("wrong horse", stored) is False

    def test_hashes_are_salted(self, password_hasher):
        assert password_hasher.hash_password("same") != password_hasher.hash_password("same")

    @pytest.mark.parametrize("stored", ["", "plaintext", "md5$1$a$b", "pbkdf2_sha256$x$y$z", "a$b$c$d$e"])
    def test_malformed_hashes_never_verify(self, password_hasher, stored):
        assert password_hasher.verify_password("anything", stored) is False


def test_otps_are_random_and_stored_hashed():
    first, second = generate_otp(), generate_otp()
    assert first != second
    assert hash_otp(first) == hash_otp(first)
    assert hash_otp(first) != first
    assert len(hash_otp(first)) == 64


class TestAccessTokenManager:

    def test_issue_and_verify(self, token_manager, alice):
        principal = Principal(user_id=alice, device_id="DEV1")
        assert token_manager.verify(token_manager.issue(principal)) == principal

    def test_tokens_from_another_key_are_rejected(self, token_manager, alice):
        other = AccessTokenManager(generate_access_token_key())
        token = other.issue(Principal(user_id=alice, device_id="DEV1"))
        assert token_manager.verify(token) is None

    def test_garbage_is_rejected(self, token_manager):
        assert token_manager.verify("not-a-token") is None
        assert token_manager.verify("") is None

    def test_expired_token_is_rejected(self, alice):
        key = generate_access_token_key()
        manager = AccessTokenManager(key, lifetime_seconds=60)
        payload = json.dumps({"sub": str(alice), "device_id": "DEV1"}).encode("utf-8")
        stale = Fernet(key.encode("utf-8")).encrypt_at_time(payload, int(time.time()) - 3600)
        assert manager.verify(stale.decode("utf-8")) is None

    def test_malformed_payload_is_rejected(self):
        key = generate_access_token_key()
        manager = AccessTokenManager(key)
        token = Fernet(key.encode("utf-8")).encrypt(b'{"sub": "not a user id"}')
        assert manager.verify(token.decode("utf-8")) is None

    def test_missing_key_falls_back_to_ephemeral(self, alice):
        manager = AccessTokenManager(None)
        principal = Principal(user_id=alice)
        assert manager.verify(manager.issue(principal)) == principal

    @pytest.mark.parametrize("key", ["short", "dG9vIHNob3J0"])
    def test_invalid_key_is_rejected(self, key):
        with pytest.raises(ValueError):
            AccessTokenManager(key)
