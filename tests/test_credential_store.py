try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import time

import pytest

from broker_gateway.clients.kv_store import SQLiteKVStore
from broker_gateway.core.errors import IdentityMissing
from broker_gateway.models.credentials import Identity
from broker_gateway.services.credential_store import CredentialStore


class _ExplodingBackend:
    def get(self, key):
        raise RuntimeError("backend offline")

    def put(self, key, value, *, ttl_seconds=None):
        raise RuntimeError("backend offline")


def test_derive_key_prefers_canonical_id(credential_store: CredentialStore) -> None:
    both = Identity(canonical_id="u1", fallback_id="c1")

    assert credential_store.derive_key(both) == "token:u1"
    assert credential_store.derive_key(both) == credential_store.derive_key(both)
    assert credential_store.derive_key(Identity(fallback_id="c1")) == "token:c1"
    assert credential_store.derive_key(Identity(canonical_id="u1")) == "token:u1"


def test_derive_key_rejects_empty_identity(credential_store: CredentialStore) -> None:
    with pytest.raises(IdentityMissing):
        credential_store.derive_key(Identity())


def test_derive_key_treats_empty_strings_as_absent(credential_store: CredentialStore) -> None:
    assert credential_store.derive_key(Identity(canonical_id="", fallback_id="c1")) == "token:c1"
    with pytest.raises(IdentityMissing):
        credential_store.derive_key(Identity(canonical_id="", fallback_id=""))


@pytest.mark.anyio
async def test_load_returns_none_when_absent(credential_store: CredentialStore) -> None:
    assert await credential_store.load(Identity(canonical_id="nobody")) is None


@pytest.mark.anyio
async def test_save_overwrites_and_encrypts_at_rest(
    credential_store: CredentialStore, kv_store: SQLiteKVStore, make_record
) -> None:
    identity = Identity(canonical_id="u1")

    await credential_store.save(identity, make_record("first"))
    await credential_store.save(identity, make_record("second"))

    loaded = await credential_store.load(identity)
    assert loaded is not None
    assert loaded.access_token == "second"
    raw = kv_store.get("token:u1")
    assert raw is not None
    assert "second" not in raw


@pytest.mark.anyio
async def test_migrate_copies_into_empty_target(
    credential_store: CredentialStore, make_record
) -> None:
    source = Identity(fallback_id="c1")
    target = Identity(canonical_id="u1")
    await credential_store.save(source, make_record("from-client"))

    assert await credential_store.migrate(source, target) is True

    migrated = await credential_store.load(target)
    assert migrated is not None
    assert migrated.access_token == "from-client"
    # Source is left in place.
    assert await credential_store.load(source) is not None


@pytest.mark.anyio
async def test_migrate_never_overwrites_existing_target(
    credential_store: CredentialStore, make_record
) -> None:
    source = Identity(fallback_id="c1")
    target = Identity(canonical_id="u1")
    await credential_store.save(source, make_record("stale"))
    await credential_store.save(target, make_record("authoritative"))

    assert await credential_store.migrate(source, target) is False

    kept = await credential_store.load(target)
    assert kept is not None
    assert kept.access_token == "authoritative"


@pytest.mark.anyio
async def test_migrate_without_source_returns_false(credential_store: CredentialStore) -> None:
    assert await credential_store.migrate(Identity(fallback_id="c1"), Identity(canonical_id="u1")) is False


@pytest.mark.anyio
async def test_migrate_same_key_is_noop(credential_store: CredentialStore, make_record) -> None:
    identity = Identity(canonical_id="u1", fallback_id="c1")
    await credential_store.save(identity, make_record())

    assert await credential_store.migrate(identity, Identity(canonical_id="u1")) is False


@pytest.mark.anyio
async def test_migrate_if_needed_swallows_backend_errors(test_logger) -> None:
    store = CredentialStore(_ExplodingBackend(), logger=test_logger, ttl_seconds=60)

    await store.migrate_if_needed(Identity(fallback_id="c1"), Identity(canonical_id="u1"))


@pytest.mark.anyio
async def test_migrate_if_needed_logs_when_nothing_copied(
    credential_store: CredentialStore, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level("WARNING"):
        await credential_store.migrate_if_needed(
            Identity(fallback_id="c1"), Identity(canonical_id="u1")
        )

    assert "Token migration was not needed or failed" in caplog.text


@pytest.mark.anyio
async def test_record_saved_under_both_keys_resolves_from_either(
    credential_store: CredentialStore, make_record
) -> None:
    record = make_record("shared")
    await credential_store.save(Identity(canonical_id="u1"), record)
    await credential_store.save(Identity(fallback_id="c1"), record)

    by_user = await credential_store.load(Identity(canonical_id="u1", fallback_id="c1"))
    by_client = await credential_store.load(Identity(fallback_id="c1"))

    assert by_user == by_client == record


def test_kv_store_expires_entries(kv_store: SQLiteKVStore) -> None:
    kv_store.put("short", "value", ttl_seconds=-1)
    kv_store.put("long", "value", ttl_seconds=60)
    kv_store.put("forever", "value")

    assert kv_store.get("short") is None
    assert kv_store.get("long") == "value"
    assert kv_store.get("forever") == "value"


def test_kv_store_put_if_absent_and_pop(kv_store: SQLiteKVStore) -> None:
    assert kv_store.put_if_absent("nonce:a", "1", ttl_seconds=60) is True
    assert kv_store.put_if_absent("nonce:a", "2", ttl_seconds=60) is False
    assert kv_store.get("nonce:a") == "1"

    assert kv_store.pop("nonce:a") == "1"
    assert kv_store.pop("nonce:a") is None

    kv_store.put("grant:x", "payload")
    kv_store.delete("grant:x")
    assert kv_store.get("grant:x") is None


def test_kv_store_put_if_absent_replaces_expired_entry(kv_store: SQLiteKVStore) -> None:
    kv_store.put("nonce:b", "old", ttl_seconds=-1)
    time.sleep(0.01)

    assert kv_store.put_if_absent("nonce:b", "new", ttl_seconds=60) is True
    assert kv_store.get("nonce:b") == "new"
