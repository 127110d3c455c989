"""Tests for the Redis store wrapper that need no running server."""

import pytest

from umiauth.storage import redis_store
from umiauth.storage.redis_store import RedisSessionStore, escape_glob


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("user_sessions:", "user_sessions:"),
        ("tenant[1]:user_sessions:", "tenant\\[1\\]:user_sessions:"),
        ("a*b?c", "a\\*b\\?c"),
        ("back\\slash:", "back\\\\slash:"),
    ],
)
def test_escape_glob(raw, expected):
    assert escape_glob(raw) == expected


async def test_scan_prefix_matches_prefix_literally(monkeypatch):
    store = RedisSessionStore("redis://localhost:6379/0")
    calls = []

    async def fake_scan_iter(**kwargs):
        calls.append(kwargs)
        for key in ("ns[1]:user_sessions:u1", "ns[1]:user_sessions:u2"):
            yield key

    monkeypatch.setattr(store.client, "scan_iter", fake_scan_iter)

    keys = await store.scan_prefix("ns[1]:user_sessions:")

    assert keys == ["ns[1]:user_sessions:u1", "ns[1]:user_sessions:u2"]
    assert calls == [
        {"match": "ns\\[1\\]:user_sessions:*", "count": RedisSessionStore.SCAN_BATCH_SIZE}
    ]


def test_verify_connection_uses_socket_timeouts(monkeypatch):
    created = []

    class FakeRedis:
        def __init__(self, kwargs):
            self.kwargs = kwargs
            self.pinged = False
            self.closed = False

        def ping(self):
            self.pinged = True
            return True

        def close(self):
            self.closed = True

    def fake_from_url(url, **kwargs):
        client = FakeRedis(kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(redis_store.Redis, "from_url", staticmethod(fake_from_url))
    store = RedisSessionStore("redis://cache:6379/0", socket_timeout=1.5)

    store.verify_connection()

    (client,) = created
    assert client.pinged and client.closed
    assert client.kwargs["socket_timeout"] == 1.5
    assert client.kwargs["socket_connect_timeout"] == 1.5
