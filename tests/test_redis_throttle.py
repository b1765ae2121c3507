import logging
from unittest.mock import AsyncMock

import pytest
from redis import RedisError

from adminkit.application.auth_rate_limit import lockout_key
from adminkit.infra.redis import RedisLoginThrottle, get_async_redis_client

EMAIL = "admin@example.com"


def make_throttle(redis_client) -> RedisLoginThrottle:
    return RedisLoginThrottle(redis_client, max_attempts=3, lockout_seconds=600)


def test_get_async_redis_client_requires_url() -> None:
    with pytest.raises(ValueError):
        get_async_redis_client(None)


@pytest.mark.anyio
async def test_is_locked_compares_counter() -> None:
    redis_client = AsyncMock()
    throttle = make_throttle(redis_client)

    redis_client.get.return_value = "2"
    assert not await throttle.is_locked(EMAIL)

    redis_client.get.return_value = "3"
    assert await throttle.is_locked(EMAIL)

    redis_client.get.return_value = None
    assert not await throttle.is_locked(EMAIL)
    redis_client.get.assert_awaited_with(f"adminkit:{lockout_key(EMAIL)}")


@pytest.mark.anyio
async def test_first_failure_sets_expiry() -> None:
    redis_client = AsyncMock()
    redis_client.incr.return_value = 1
    throttle = make_throttle(redis_client)

    await throttle.record_failure(EMAIL)

    key = f"adminkit:{lockout_key(EMAIL)}"
    redis_client.incr.assert_awaited_once_with(key)
    redis_client.expire.assert_awaited_once_with(key, 600)


@pytest.mark.anyio
async def test_later_failures_keep_window(caplog: pytest.LogCaptureFixture) -> None:
    redis_client = AsyncMock()
    redis_client.incr.return_value = 3
    throttle = make_throttle(redis_client)

    with caplog.at_level(logging.WARNING, logger="adminkit.redis"):
        await throttle.record_failure(EMAIL)

    redis_client.expire.assert_not_awaited()
    assert "Login lockout engaged" in caplog.text
    assert EMAIL not in caplog.text


@pytest.mark.anyio
async def test_reset_deletes_key() -> None:
    redis_client = AsyncMock()
    throttle = make_throttle(redis_client)

    await throttle.reset(EMAIL)

    redis_client.delete.assert_awaited_once_with(f"adminkit:{lockout_key(EMAIL)}")


@pytest.mark.anyio
async def test_redis_errors_never_lock_out(caplog: pytest.LogCaptureFixture) -> None:
    redis_client = AsyncMock()
    redis_client.get.side_effect = RedisError("connection refused")
    redis_client.incr.side_effect = RedisError("connection refused")
    redis_client.delete.side_effect = RedisError("connection refused")
    throttle = make_throttle(redis_client)

    with caplog.at_level(logging.ERROR, logger="adminkit.redis"):
        await throttle.record_failure(EMAIL)
        assert not await throttle.is_locked(EMAIL)
        await throttle.reset(EMAIL)

    assert caplog.text.count("Redis operation failed") == 3


@pytest.mark.anyio
async def test_corrupt_counter_is_ignored() -> None:
    redis_client = AsyncMock()
    redis_client.get.return_value = "not-a-number"
    throttle = make_throttle(redis_client)

    assert not await throttle.is_locked(EMAIL)


@pytest.mark.anyio
async def test_close_is_idempotent() -> None:
    redis_client = AsyncMock()
    throttle = make_throttle(redis_client)

    await throttle.close()
    await throttle.close()

    redis_client.aclose.assert_awaited_once()


@pytest.mark.anyio
async def test_close_logs_redis_errors(caplog: pytest.LogCaptureFixture) -> None:
    redis_client = AsyncMock()
    redis_client.aclose.side_effect = RedisError("connection reset")
    throttle = make_throttle(redis_client)

    with caplog.at_level(logging.ERROR, logger="adminkit.redis"):
        await throttle.close()

    assert "operation=CLOSE" in caplog.text
