"""
Distributed admission control for (service, method) endpoints.

Each process keeps a QuotaGate per monitored endpoint. Gates admit calls out
of a local token batch and refill it from a Redis window counter shared by
every instance, which keeps the aggregate rate under a common ceiling.
"""

from .gate import AsyncQuotaGate, QuotaGate, new_quota_gate
from .keys import QuotaKey
from .registry import QuotaGateRegistry
from .store import (
    SYNC_SCRIPT,
    AsyncRedisCounterStore,
    AsyncSharedCounterStore,
    RedisCounterStore,
    SharedCounterStore,
    create_store,
    decode_counter,
)

__all__ = [
    "AsyncQuotaGate",
    "AsyncRedisCounterStore",
    "AsyncSharedCounterStore",
    "QuotaGate",
    "QuotaGateRegistry",
    "QuotaKey",
    "RedisCounterStore",
    "SYNC_SCRIPT",
    "SharedCounterStore",
    "create_store",
    "decode_counter",
    "new_quota_gate",
]
