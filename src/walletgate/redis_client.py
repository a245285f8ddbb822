"""Connection to the Redis database that backs LocalStore.

Every LocalStore in the process shares one client and one pool. The
client is created on first use; concurrent first uses wait for the same
connection attempt instead of opening pools of their own.
"""

import asyncio
import time
from typing import Any, Optional, Sequence, Tuple

from loguru import logger
from redis import asyncio as aioredis

from .config import Config

_store_client: Optional[aioredis.Redis] = None
_connect_lock: Optional[asyncio.Lock] = None
_connect_lock_loop: Optional[asyncio.AbstractEventLoop] = None

_CONNECT_ERRORS = (aioredis.ConnectionError, aioredis.TimeoutError)


class StoreRedis(aioredis.Redis):
    """Redis client that names the store key of any slow command."""

    async def execute_command(self, *args: Any, **options: Any) -> Any:
        started = time.perf_counter()
        try:
            return await super().execute_command(*args, **options)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            if elapsed_ms > Config.STORE_SLOW_COMMAND_MS:
                command, key = describe_command(args)
                logger.warning(
                    f"Slow local store command {command} on {key} ({elapsed_ms:.1f} ms)"
                )


def describe_command(args: Sequence[Any]) -> Tuple[str, str]:
    """Return the command name and the key it addresses ("-" for keyless commands)."""
    if not args:
        return "?", "-"
    command = str(args[0]).upper()
    key = str(args[1]) if len(args) > 1 else "-"
    return command, key


def backoff_delay(attempt: int) -> float:
    """Delay before retrying after a failed attempt (1-based), capped at the max delay."""
    delay = Config.REDIS_CONNECT_RETRY_DELAY * (2 ** (attempt - 1))
    return min(delay, Config.REDIS_CONNECT_RETRY_MAX_DELAY)


def _lock() -> asyncio.Lock:
    global _connect_lock, _connect_lock_loop
    loop = asyncio.get_running_loop()
    if _connect_lock is None or _connect_lock_loop is not loop:
        _connect_lock = asyncio.Lock()
        _connect_lock_loop = loop
    return _connect_lock


async def _open_client() -> aioredis.Redis:
    pool = aioredis.ConnectionPool.from_url(
        Config.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=Config.REDIS_MAX_CONNECTIONS,
        socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
        socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
    )
    client = StoreRedis(connection_pool=pool)
    try:
        await client.ping()
    except BaseException:
        await client.aclose()
        await pool.disconnect()
        raise
    return client


async def get_redis_client() -> aioredis.Redis:
    """
    Return the shared store client, connecting on first use.

    A failed connection is retried up to Config.REDIS_CONNECT_RETRIES
    times, waiting backoff_delay() between attempts.

    Raises:
        redis.asyncio.ConnectionError: When every attempt fails
        redis.asyncio.TimeoutError: When every attempt fails
    """
    global _store_client

    if _store_client is not None:
        return _store_client

    async with _lock():
        if _store_client is not None:
            return _store_client
        retries = Config.REDIS_CONNECT_RETRIES
        attempt = 1
        while True:
            try:
                _store_client = await _open_client()
            except _CONNECT_ERRORS as e:
                if attempt >= retries:
                    logger.error(
                        f"Local store unreachable at {Config.REDIS_URL} after {retries} attempts"
                    )
                    raise
                delay = backoff_delay(attempt)
                logger.warning(
                    f"Local store connection attempt {attempt}/{retries} failed ({e}); "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1
            else:
                logger.debug(f"Local store connected at {Config.REDIS_URL}")
                return _store_client


async def close_redis_client() -> None:
    """Close the shared store client and its pool."""
    global _store_client

    client, _store_client = _store_client, None
    if client is not None:
        await client.aclose(close_connection_pool=True)


async def check_redis_health() -> Tuple[bool, str]:
    """Check that the local store answers a ping; never raises."""
    try:
        client = await get_redis_client()
        answer = await client.ping()
    except _CONNECT_ERRORS as e:
        return False, f"Local store unreachable: {e}"
    except Exception as e:
        return False, f"Local store health check error: {e}"
    if answer is True or answer == "PONG":
        return True, "Local store reachable"
    return False, f"Unexpected ping reply from local store: {answer!r}"
