"""
Shared counter store contract and its Redis adapters.

The gate only relies on three capabilities: registering the synchronization
script, executing it by handle, and checking whether a handle is still known.
Redis provides all three through SCRIPT LOAD, EVALSHA and SCRIPT EXISTS.
"""

from typing import Any, List, Optional, Protocol, Sequence

import redis
import redis.asyncio as aioredis
from redis.exceptions import NoScriptError, RedisError

from shared.config import get_config
from shared.errors import CounterDecodeError, CounterStoreError, ScriptMissingError


# INCR the window counter and arm a one second expiry on the first hit.
SYNC_SCRIPT = """
local count = redis.call("INCR", KEYS[1])
if tonumber(count) == 1 then
    redis.call("EXPIRE", KEYS[1], 1)
end
return count
"""


class SharedCounterStore(Protocol):
    """Blocking counter store used by QuotaGate."""

    def register_script(self, source: str) -> str:
        ...

    def execute(self, handle: str, keys: Sequence[str], *args: Any) -> Any:
        ...

    def script_exists(self, *handles: str) -> List[bool]:
        ...


class AsyncSharedCounterStore(Protocol):
    """Asyncio counter store used by AsyncQuotaGate."""

    async def register_script(self, source: str) -> str:
        ...

    async def execute(self, handle: str, keys: Sequence[str], *args: Any) -> Any:
        ...

    async def script_exists(self, *handles: str) -> List[bool]:
        ...


def decode_counter(value: Any) -> int:
    """Return the window counter as an int, rejecting anything else."""
    # bool is an int subclass but never a legitimate counter reply
    if isinstance(value, bool) or not isinstance(value, int):
        raise CounterDecodeError(
            "Counter store returned a non-integer value",
            {"value": repr(value), "type": type(value).__name__}
        )
    return value


def _redis_options(**kwargs) -> dict:
    options = {
        "socket_connect_timeout": 5,
        "socket_timeout": 5,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }
    options.update(kwargs)
    return options


class RedisCounterStore:
    """SharedCounterStore backed by a blocking redis-py client."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisCounterStore":
        """Create a store with connection defaults suited to a hot path."""
        return cls(redis.Redis.from_url(redis_url, **_redis_options(**kwargs)))

    def register_script(self, source: str) -> str:
        try:
            return self.client.script_load(source)
        except RedisError as e:
            raise CounterStoreError("redis", f"SCRIPT LOAD failed: {e}") from e

    def execute(self, handle: str, keys: Sequence[str], *args: Any) -> Any:
        try:
            return self.client.evalsha(handle, len(keys), *keys, *args)
        except NoScriptError as e:
            raise ScriptMissingError(details={"handle": handle}) from e
        except RedisError as e:
            raise CounterStoreError("redis", f"EVALSHA failed: {e}") from e

    def script_exists(self, *handles: str) -> List[bool]:
        try:
            return [bool(flag) for flag in self.client.script_exists(*handles)]
        except RedisError as e:
            raise CounterStoreError("redis", f"SCRIPT EXISTS failed: {e}") from e

    def close(self) -> None:
        self.client.close()


class AsyncRedisCounterStore:
    """AsyncSharedCounterStore backed by redis.asyncio."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "AsyncRedisCounterStore":
        """Create a store; from_url is sync and does not connect yet."""
        return cls(aioredis.from_url(redis_url, **_redis_options(**kwargs)))

    async def register_script(self, source: str) -> str:
        try:
            return await self.client.script_load(source)
        except RedisError as e:
            raise CounterStoreError("redis", f"SCRIPT LOAD failed: {e}") from e

    async def execute(self, handle: str, keys: Sequence[str], *args: Any) -> Any:
        try:
            return await self.client.evalsha(handle, len(keys), *keys, *args)
        except NoScriptError as e:
            raise ScriptMissingError(details={"handle": handle}) from e
        except RedisError as e:
            raise CounterStoreError("redis", f"EVALSHA failed: {e}") from e

    async def script_exists(self, *handles: str) -> List[bool]:
        try:
            flags = await self.client.script_exists(*handles)
        except RedisError as e:
            raise CounterStoreError("redis", f"SCRIPT EXISTS failed: {e}") from e
        return [bool(flag) for flag in flags]

    async def close(self) -> None:
        await self.client.aclose()


def create_store(redis_url: Optional[str] = None) -> RedisCounterStore:
    """Build a blocking store from an explicit URL or the configured one."""
    if redis_url is None:
        redis_url = get_config().redis_url
    return RedisCounterStore.from_url(redis_url)
