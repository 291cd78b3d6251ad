# tests/test_store_contract.py
"""Behaviour every store backend must share, run against each local backend."""
import asyncio

import pytest

from homeserver_identity.identity.models import UserIdentifierThirdParty, UserIdentifierUser
from homeserver_identity.storage.errors import InvalidSyntaxError, RecordNotFoundError

from .conftest import SERVER_NAME, user


class TestAccounts:

    @pytest.mark.asyncio
    async def test_username_exists_only_after_creation(self, store):
        assert await store.check_username_exists("alice") is False
        await store.create_account("alice", "hash")
        assert await store.check_username_exists("alice") is True
        assert await store.check_username_exists("bob") is False

    @pytest.mark.asyncio
    async def test_create_account_defaults_display_name_to_localpart(self, store, alice):
        account = await store.create_account("alice", "hash")
        assert account.user_id == alice
        assert account.display_name == "alice"
        assert await store.fetch_display_name(alice) == "alice"

    @pytest.mark.asyncio
    async def test_duplicate_account_is_rejected(self, store):
        await store.create_account("alice", "hash")
        with pytest.raises(InvalidSyntaxError):
            await store.create_account("alice", "other-hash")

    @pytest.mark.asyncio
    async def test_overlong_localpart_is_rejected_without_writing(self, store):
        localpart = "a" * 250
        with pytest.raises(InvalidSyntaxError):
            await store.create_account(localpart, "hash")
        assert await store.check_username_exists(localpart) is False
        assert await store.fetch_user_id(UserIdentifierUser(user=localpart)) is None

    @pytest.mark.asyncio
    async def test_fetch_password_hash(self, store, alice):
        await store.create_account("alice", "pbkdf2_sha256$1$salt$digest")
        assert await store.fetch_password_hash(alice) == "pbkdf2_sha256$1$salt$digest"

    @pytest.mark.asyncio
    async def test_lookups_on_missing_account_raise_record_not_found(self, store, alice):
        with pytest.raises(RecordNotFoundError):
            await store.fetch_password_hash(alice)
        with pytest.raises(RecordNotFoundError):
            await store.fetch_display_name(alice)
        with pytest.raises(RecordNotFoundError):
            await store.set_display_name(alice, "Alice")

    @pytest.mark.asyncio
    async def test_set_display_name(self, store, alice):
        await store.create_account("alice", "hash", display_name="Alice")
        assert await store.fetch_display_name(alice) == "Alice"
        await store.set_display_name(alice, "Alice Liddell")
        assert await store.fetch_display_name(alice) == "Alice Liddell"


class TestFetchUserId:

    @pytest.mark.asyncio
    async def test_resolves_bare_and_full_user_ids(self, store, alice):
        await store.create_account("alice", "hash")
        assert await store.fetch_user_id(UserIdentifierUser(user="alice")) == alice
        assert await store.fetch_user_id(UserIdentifierUser(user="ALICE")) == alice
        assert await store.fetch_user_id(UserIdentifierUser(user=f"@alice:{SERVER_NAME}")) == alice

    @pytest.mark.asyncio
    async def test_unresolvable_identifiers_are_empty_not_errors(self, store):
        await store.create_account("alice", "hash")
        assert await store.fetch_user_id(UserIdentifierUser(user="nobody")) is None
        assert await store.fetch_user_id(UserIdentifierUser(user="@alice:elsewhere.net")) is None
        assert await store.fetch_user_id(UserIdentifierUser(user="not valid!")) is None
        assert await store.fetch_user_id(
            UserIdentifierThirdParty(medium="email", address="alice@example.org")
        ) is None

    @pytest.mark.asyncio
    async def test_resolves_bound_third_party_ids(self, store, alice):
        await store.create_account("alice", "hash")
        await store.add_threepid(alice, "email", "alice@example.org")
        identifier = UserIdentifierThirdParty(medium="email", address="alice@example.org")
        assert await store.fetch_user_id(identifier) == alice


class TestOneTimePasswords:

    @pytest.mark.asyncio
    async def test_never_issued_otp_does_not_exist(self, store, alice):
        await store.create_account("alice", "hash")
        assert await store.check_otp_exists(alice, "123456") is False

    @pytest.mark.asyncio
    async def test_otp_for_unknown_account_is_false_not_an_error(self, store, alice):
        assert await store.check_otp_exists(alice, "123456") is False

    @pytest.mark.asyncio
    async def test_consumed_otp_reads_like_never_issued(self, store, alice):
        await store.create_account("alice", "hash")
        await store.add_otp(alice, "s3cret-otp", ttl_seconds=600)
        assert await store.check_otp_exists(alice, "s3cret-otp") is True
        assert await store.check_otp_exists(alice, "other-otp") is False

        assert await store.consume_otp(alice, "s3cret-otp") is True
        assert await store.check_otp_exists(alice, "s3cret-otp") is False
        assert await store.consume_otp(alice, "s3cret-otp") is False

    @pytest.mark.asyncio
    async def test_expired_otp_does_not_exist(self, store, alice):
        await store.create_account("alice", "hash")
        await store.add_otp(alice, "stale", ttl_seconds=0)
        assert await store.check_otp_exists(alice, "stale") is False
        assert await store.consume_otp(alice, "stale") is False

    @pytest.mark.asyncio
    async def test_otp_is_bound_to_its_account(self, store, alice, bob):
        await store.create_account("alice", "hash")
        await store.create_account("bob", "hash")
        await store.add_otp(alice, "for-alice", ttl_seconds=600)
        assert await store.check_otp_exists(bob, "for-alice") is False


class TestDevices:

    @pytest.mark.asyncio
    async def test_register_device_then_revoke_all(self, store, alice):
        await store.create_account("alice", "hash")
        assert await store.check_username_exists("alice") is True
        assert await store.check_device_id_exists(alice, "dev1") is False

        await store.set_device(alice, "dev1", "Phone")
        assert await store.check_device_id_exists(alice, "dev1") is True

        await store.remove_all_device_ids(alice)
        assert await store.check_device_id_exists(alice, "dev1") is False

    @pytest.mark.asyncio
    async def test_remove_device_id_is_idempotent(self, store, alice):
        await store.create_account("alice", "hash")
        await store.set_device(alice, "dev1")

        await store.remove_device_id(alice, "dev1")
        assert await store.check_device_id_exists(alice, "dev1") is False
        await store.remove_device_id(alice, "dev1")
        assert await store.check_device_id_exists(alice, "dev1") is False

    @pytest.mark.asyncio
    async def test_removing_unknown_devices_succeeds(self, store, alice):
        await store.remove_device_id(alice, "never-registered")
        await store.remove_all_device_ids(alice)
        await store.create_account("alice", "hash")
        await store.remove_all_device_ids(alice)

    @pytest.mark.asyncio
    async def test_remove_all_device_ids_removes_every_device(self, store, alice):
        await store.create_account("alice", "hash")
        device_ids = ["dev1", "dev2", "dev3"]
        for device_id in device_ids:
            await store.set_device(alice, device_id)

        await store.remove_all_device_ids(alice)

        for device_id in device_ids:
            assert await store.check_device_id_exists(alice, device_id) is False
        assert await store.list_devices(alice) == []

    @pytest.mark.asyncio
    async def test_set_device_is_idempotent(self, store, alice):
        await store.create_account("alice", "hash")
        await store.set_device(alice, "dev1", "Phone")
        after_one = [d.model_dump() for d in await store.list_devices(alice)]

        for _ in range(3):
            await store.set_device(alice, "dev1", "Phone")

        assert [d.model_dump() for d in await store.list_devices(alice)] == after_one

    @pytest.mark.asyncio
    async def test_set_device_updates_instead_of_duplicating(self, store, alice):
        await store.create_account("alice", "hash")
        await store.set_device(alice, "dev1", "Phone")
        await store.set_device(alice, "dev1", "Laptop")

        devices = await store.list_devices(alice)
        assert len(devices) == 1
        assert devices[0].device_id == "dev1"
        assert devices[0].display_name == "Laptop"

    @pytest.mark.asyncio
    async def test_set_device_without_name_keeps_existing_name(self, store, alice):
        await store.create_account("alice", "hash")
        await store.set_device(alice, "dev1", "Phone")
        await store.set_device(alice, "dev1")

        devices = await store.list_devices(alice)
        assert devices[0].display_name == "Phone"

    @pytest.mark.asyncio
    async def test_set_device_for_unknown_account_is_rejected(self, store, alice):
        with pytest.raises(InvalidSyntaxError):
            await store.set_device(alice, "dev1", "Phone")

    @pytest.mark.asyncio
    async def test_device_ids_are_scoped_per_account(self, store, alice, bob):
        await store.create_account("alice", "hash")
        await store.create_account("bob", "hash")
        await store.set_device(alice, "shared", "Alice's phone")
        await store.set_device(bob, "shared", "Bob's phone")

        await store.remove_all_device_ids(alice)

        assert await store.check_device_id_exists(alice, "shared") is False
        assert await store.check_device_id_exists(bob, "shared") is True
        assert (await store.list_devices(bob))[0].display_name == "Bob's phone"

    @pytest.mark.asyncio
    async def test_list_devices_is_ordered_by_device_id(self, store, alice):
        await store.create_account("alice", "hash")
        for device_id in ["ZZZ", "AAA", "MMM"]:
            await store.set_device(alice, device_id)

        devices = await store.list_devices(alice)
        assert [d.device_id for d in devices] == ["AAA", "MMM", "ZZZ"]
        assert all(d.user_id == alice for d in devices)

    @pytest.mark.asyncio
    async def test_list_devices_of_unknown_account_is_empty(self, store):
        assert await store.list_devices(user("ghost")) == []

    @pytest.mark.asyncio
    async def test_concurrent_device_registration(self, store, alice):
        await store.create_account("alice", "hash")
        device_ids = [f"dev{i}" for i in range(20)]

        await asyncio.gather(*(store.set_device(alice, d, "Phone") for d in device_ids))
        await asyncio.gather(*(store.set_device(alice, d, "Laptop") for d in device_ids))

        devices = await store.list_devices(alice)
        assert sorted(d.device_id for d in devices) == sorted(device_ids)
        assert {d.display_name for d in devices} == {"Laptop"}
