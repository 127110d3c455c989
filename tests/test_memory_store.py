"""Tests for the in-memory session store used in tests and local runs."""

from umiauth.storage.memory import MemorySessionStore, MemoryUserStore
from umiauth.storage.models import RefreshTokenRecord, User


async def test_values_expire_against_clock(store, clock):
    await store.set("k", "v", 10)
    clock.advance(9)
    assert await store.get("k") == "v"

    clock.advance(1)

    assert await store.get("k") is None
    assert not await store.exists("k")


async def test_values_without_ttl_persist(store, clock):
    await store.set("k", "v")
    clock.advance(10**9)

    assert await store.get("k") == "v"
    assert store.ttl("k") is None


async def test_take_returns_once(store):
    await store.set("k", "v", 10)

    assert await store.take("k") == "v"
    assert await store.take("k") is None


async def test_take_ignores_expired_value(store, clock):
    await store.set("k", "v", 1)
    clock.advance(2)

    assert await store.take("k") is None


async def test_delete_counts_removed_keys(store):
    await store.set("a", "1")
    await store.sadd("s", "x")

    assert await store.delete("a", "s", "missing") == 2
    assert await store.delete() == 0


async def test_set_operations(store):
    assert await store.sadd("s", "a", "b") == 2
    assert await store.sadd("s", "b") == 0
    assert await store.smembers("s") == {"a", "b"}

    assert await store.srem("s", "a", "zzz") == 1
    assert await store.srem("s", "b") == 1

    # Empty sets disappear like in Redis
    assert not await store.exists("s")
    assert await store.scan_prefix("s") == []
    assert await store.srem("s", "b") == 0


async def test_smembers_returns_copy(store):
    await store.sadd("s", "a")

    members = await store.smembers("s")
    members.add("b")

    assert await store.smembers("s") == {"a"}


async def test_scan_prefix_skips_expired_keys(store, clock):
    await store.set("user_sessions_x", "1")
    await store.set("refresh_token:a", "1", 5)
    await store.set("refresh_token:b", "1", 50)
    await store.sadd("user_sessions:u1", "f")
    clock.advance(10)

    assert await store.scan_prefix("refresh_token:") == ["refresh_token:b"]
    assert await store.scan_prefix("user_sessions:") == ["user_sessions:u1"]


async def test_scan_prefix_is_literal(store):
    await store.sadd("ns[1]:user_sessions:u1", "f")
    await store.sadd("ns1:user_sessions:u2", "f")

    assert await store.scan_prefix("ns[1]:user_sessions:") == ["ns[1]:user_sessions:u1"]
    assert await store.scan_prefix("ns*") == []


async def test_close_clears_state(store):
    await store.set("k", "v")
    await store.sadd("s", "a")

    await store.close()

    assert await store.scan_prefix("") == []


def test_verify_connection_is_noop():
    MemorySessionStore().verify_connection()


def test_refresh_record_json_uses_platform_keys():
    record = RefreshTokenRecord(
        user_id="u1",
        token_family="f1",
        created_at=1000,
        last_used_at=2000,
        user_agent="curl/8",
    )

    raw = record.to_json()

    assert '"userId":"u1"' in raw
    assert '"tokenFamily":"f1"' in raw
    assert "ipAddress" not in raw
    assert RefreshTokenRecord.from_json(raw) == record


def test_user_store_lookup_is_case_insensitive():
    users = MemoryUserStore()
    user = users.add_user(User.new("Mixed@Example.com"), "hash")

    assert users.get_user_by_email("mixed@example.com ") is user
    assert users.get_user(user.id) is user
    assert users.get_password_hash(user.id) == "hash"
    assert users.get_user_by_email("other@example.com") is None
