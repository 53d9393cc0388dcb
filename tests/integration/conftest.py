"""Fixtures for tests that talk to a real Redis server."""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import pytest
import redis
from redis.exceptions import RedisError

REDIS_ADDR = os.environ.get("KVSINK_REDIS_ADDR", "localhost:6379")


def _split(addr: str) -> tuple[str, int]:
    host, _, port = addr.rpartition(":")
    return host, int(port)


@pytest.fixture(scope="session")
def redis_addr() -> str:
    """Address of the test server; skips the session if it is not reachable."""
    host, port = _split(REDIS_ADDR)
    client = redis.Redis(host=host, port=port, socket_connect_timeout=1)
    try:
        client.ping()
    except RedisError as exc:
        pytest.skip(f"Redis not reachable at {REDIS_ADDR}: {exc}")
    finally:
        client.close()
    return REDIS_ADDR


@pytest.fixture
def raw_redis(redis_addr: str) -> Iterator[redis.Redis]:
    host, port = _split(redis_addr)
    client = redis.Redis(host=host, port=port, db=0, decode_responses=True)
    yield client
    client.close()


@pytest.fixture
def key_prefix(raw_redis: redis.Redis) -> Iterator[str]:
    """Unique key prefix per test; every key under it is removed afterwards."""
    prefix = f"kvsink-test:{uuid.uuid4().hex}:"
    yield prefix
    keys = list(raw_redis.scan_iter(match=f"{prefix}*"))
    if keys:
        raw_redis.delete(*keys)
