"""
Two-tier admission gate for a monitored (service, method) pair.

Calls reaching this process spend tokens from a small local batch. When the
batch is empty the gate asks the shared window counter for another one: the
counter is bumped atomically and, as long as the instances sharing the key
have not exceeded ``limit_per_window`` batches in the current second, a fresh
batch of ``batch_size`` tokens is granted.

    qps ~= limit_per_window * batch_size

Remote synchronizations are self-throttled (``min_sync_interval_ns``) so an
exhausted or unreachable store is never hammered. Any doubt about the remote
state results in a denial.

All state, including the remote round-trip, sits behind one lock per gate.
The remote path is rare enough that the coarse lock is acceptable, but a hung
store call stalls every caller of the key until the client times out.
"""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from shared.config import QuotaGateConfig, get_config
from shared.errors import (
    ConstructionError,
    CounterDecodeError,
    RateLimitError,
    ScriptMissingError,
    ScriptRegistrationError,
)
from shared.logging import get_logger
from shared.metrics import GateMetrics, get_gate_metrics
from shared.retry import RetryConfig, RetryError, retry_call, retry_on_exception

from .keys import QuotaKey
from .store import SYNC_SCRIPT, AsyncSharedCounterStore, SharedCounterStore, decode_counter


class _GateState:
    """State and decisions shared by the blocking and asyncio gates."""

    def __init__(self,
                 service: str,
                 method: str,
                 store: Any,
                 limit_per_window: int,
                 config: Optional[QuotaGateConfig] = None,
                 clock: Optional[Callable[[], int]] = None,
                 metrics: Optional[GateMetrics] = None):
        self.key = QuotaKey(service, method)
        if store is None:
            raise ConstructionError("Counter store is required", {"key": str(self.key)})
        if isinstance(limit_per_window, bool) or not isinstance(limit_per_window, int) or limit_per_window <= 0:
            raise ConstructionError(
                "Limit per window must be a positive integer",
                {"key": str(self.key), "limit_per_window": limit_per_window}
            )

        self.config = config if config is not None else get_config()
        self.store = store
        self.limit_per_window = limit_per_window
        self.batch_size = self.config.batch_size
        self.min_sync_interval_ns = self.config.min_sync_interval_ns
        self.redis_key = self.key.redis_key(self.config.key_prefix)
        self.logger = get_logger("quota_gate.gate")
        self.metrics = metrics if metrics is not None else get_gate_metrics()

        self._clock = clock or time.monotonic_ns
        self._label = str(self.key)
        self._local_tokens = 0
        self._last_sync_at_ns: Optional[int] = None
        self._script_handle: Optional[str] = None

    @property
    def local_tokens(self) -> int:
        return self._local_tokens

    @property
    def last_sync_at_ns(self) -> Optional[int]:
        return self._last_sync_at_ns

    @property
    def script_handle(self) -> Optional[str]:
        return self._script_handle

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "key": self._label,
            "redis_key": self.redis_key,
            "limit_per_window": self.limit_per_window,
            "batch_size": self.batch_size,
            "local_tokens": self._local_tokens,
            "last_sync_at_ns": self._last_sync_at_ns,
        }

    def _registration_failed(self, error: Exception) -> ConstructionError:
        self.logger.error(
            "Failed to register synchronization script",
            key=self.redis_key,
            error=str(error)
        )
        return ConstructionError(
            "Synchronization script registration failed",
            {"key": self._label, "error": str(error)}
        )

    def _registered(self, handle: str) -> None:
        self._script_handle = handle
        self.logger.info(
            "Quota gate created",
            key=self.redis_key,
            limit_per_window=self.limit_per_window,
            batch_size=self.batch_size
        )

    def _take_local_token(self) -> bool:
        # Strict check: a synchronization is worth exactly batch_size admissions
        if self._local_tokens > 0:
            self._local_tokens -= 1
            self.metrics.record_decision(self._label, "admitted_local")
            return True
        return False

    def _admit_from_new_batch(self) -> bool:
        self._local_tokens = self.batch_size - 1
        self.metrics.record_decision(self._label, "admitted_sync")
        return True

    def _deny(self) -> bool:
        self.metrics.record_decision(self._label, "denied")
        return False

    def _throttled(self) -> bool:
        if self._last_sync_at_ns is None:
            return False
        if self._clock() - self._last_sync_at_ns < self.min_sync_interval_ns:
            self.metrics.record_sync(self._label, "throttled")
            return True
        return False

    def _judge(self, raw: Any) -> bool:
        try:
            count = decode_counter(raw)
        except CounterDecodeError as e:
            self.logger.error("Invalid value in shared counter", key=self.redis_key, **e.details)
            self.metrics.record_sync(self._label, "decode_error")
            return False

        if count >= self.limit_per_window:
            self.logger.debug(
                "Window budget exhausted",
                key=self.redis_key,
                count=count,
                limit_per_window=self.limit_per_window
            )
            self.metrics.record_sync(self._label, "over_limit")
            return False

        self.metrics.record_sync(self._label, "ok")
        return True

    def _sync_failed(self, error: Exception) -> bool:
        self.logger.warning("Quota synchronization failed", key=self.redis_key, error=str(error))
        self.metrics.record_sync(self._label, "error")
        return False

    def _existence_check_failed(self, error: Exception) -> bool:
        # An unanswerable existence check is treated as "missing"
        self.logger.warning("Script existence check failed", key=self.redis_key, error=str(error))
        return True

    @staticmethod
    def _reported_missing(flags: List[bool]) -> bool:
        return not flags or not flags[0]

    def _retry_config(self) -> RetryConfig:
        return RetryConfig(self.config.script_retry_attempts, self.config.script_retry_delay_seconds)

    def _reloaded(self, handle: str) -> str:
        self.logger.info("Synchronization script reloaded", key=self.redis_key, handle=handle)
        self.metrics.record_script_reload(self._label, "ok")
        return handle

    def _reload_failed(self, error: RetryError) -> ScriptRegistrationError:
        self.logger.error(
            "Failed to reload synchronization script",
            key=self.redis_key,
            attempts=error.attempts,
            error=str(error.last_exception)
        )
        self.metrics.record_script_reload(self._label, "failed")
        return ScriptRegistrationError(
            details={"key": self._label, "attempts": error.attempts, "error": str(error.last_exception)}
        )

    def _rate_limit_error(self) -> RateLimitError:
        return RateLimitError(details={
            "service": self.key.service,
            "method": self.key.method,
            "limit_per_window": self.limit_per_window,
        })


class QuotaGate(_GateState):
    """Thread-safe admission gate backed by a blocking counter store."""

    def __init__(self,
                 service: str,
                 method: str,
                 store: SharedCounterStore,
                 limit_per_window: int,
                 *,
                 config: Optional[QuotaGateConfig] = None,
                 clock: Optional[Callable[[], int]] = None,
                 metrics: Optional[GateMetrics] = None):
        super().__init__(service, method, store, limit_per_window, config, clock, metrics)
        self._lock = threading.Lock()

        try:
            handle = self.store.register_script(SYNC_SCRIPT)
        except Exception as e:
            raise self._registration_failed(e) from e
        self._registered(handle)

    def can_pass(self) -> bool:
        """Return True if the current call may proceed."""
        with self._lock:
            if self._take_local_token():
                return True
            if not self._try_synchronize():
                return self._deny()
            return self._admit_from_new_batch()

    def require_pass(self) -> None:
        """Raise RateLimitError unless the current call may proceed."""
        if not self.can_pass():
            raise self._rate_limit_error()

    def get_state(self) -> Dict[str, Any]:
        """Get current gate state."""
        with self._lock:
            return self._snapshot()

    def _try_synchronize(self) -> bool:
        if self._throttled():
            return False

        try:
            with self.metrics.time_sync(self._label):
                raw = self._execute()
        except Exception as e:
            return self._sync_failed(e)
        finally:
            self._last_sync_at_ns = self._clock()

        return self._judge(raw)

    def _execute(self) -> Any:
        try:
            return self.store.execute(self._script_handle, [self.redis_key])
        except ScriptMissingError:
            if not self._script_missing():
                raise
            self._script_handle = self._reload_script()
            return self.store.execute(self._script_handle, [self.redis_key])

    def _script_missing(self) -> bool:
        try:
            flags = self.store.script_exists(self._script_handle)
        except Exception as e:
            return self._existence_check_failed(e)
        return self._reported_missing(flags)

    def _reload_script(self) -> str:
        try:
            handle = retry_call(self.store.register_script, SYNC_SCRIPT, config=self._retry_config())
        except RetryError as e:
            raise self._reload_failed(e) from e
        return self._reloaded(handle)


class AsyncQuotaGate(_GateState):
    """Admission gate for asyncio callers, backed by an async counter store.

    Build instances with ``await AsyncQuotaGate.create(...)`` so the
    synchronization script is registered before the first call.
    """

    def __init__(self,
                 service: str,
                 method: str,
                 store: AsyncSharedCounterStore,
                 limit_per_window: int,
                 *,
                 config: Optional[QuotaGateConfig] = None,
                 clock: Optional[Callable[[], int]] = None,
                 metrics: Optional[GateMetrics] = None):
        super().__init__(service, method, store, limit_per_window, config, clock, metrics)
        self._lock = asyncio.Lock()

    @classmethod
    async def create(cls,
                     service: str,
                     method: str,
                     store: AsyncSharedCounterStore,
                     limit_per_window: int,
                     **kwargs) -> "AsyncQuotaGate":
        """Construct a gate and register its synchronization script."""
        gate = cls(service, method, store, limit_per_window, **kwargs)
        try:
            handle = await gate.store.register_script(SYNC_SCRIPT)
        except Exception as e:
            raise gate._registration_failed(e) from e
        gate._registered(handle)
        return gate

    async def can_pass(self) -> bool:
        """Return True if the current call may proceed."""
        async with self._lock:
            if self._take_local_token():
                return True
            if not await self._try_synchronize():
                return self._deny()
            return self._admit_from_new_batch()

    async def require_pass(self) -> None:
        """Raise RateLimitError unless the current call may proceed."""
        if not await self.can_pass():
            raise self._rate_limit_error()

    def get_state(self) -> Dict[str, Any]:
        """Get current gate state."""
        return self._snapshot()

    async def _try_synchronize(self) -> bool:
        if self._throttled():
            return False

        try:
            with self.metrics.time_sync(self._label):
                raw = await self._execute()
        except Exception as e:
            return self._sync_failed(e)
        finally:
            self._last_sync_at_ns = self._clock()

        return self._judge(raw)

    async def _execute(self) -> Any:
        try:
            return await self.store.execute(self._script_handle, [self.redis_key])
        except ScriptMissingError:
            if not await self._script_missing():
                raise
            self._script_handle = await self._reload_script()
            return await self.store.execute(self._script_handle, [self.redis_key])

    async def _script_missing(self) -> bool:
        try:
            flags = await self.store.script_exists(self._script_handle)
        except Exception as e:
            return self._existence_check_failed(e)
        return self._reported_missing(flags)

    async def _reload_script(self) -> str:
        @retry_on_exception((Exception,), self._retry_config())
        async def register_script() -> str:
            return await self.store.register_script(SYNC_SCRIPT)

        try:
            handle = await register_script()
        except RetryError as e:
            raise self._reload_failed(e) from e
        return self._reloaded(handle)


def new_quota_gate(service: str,
                   method: str,
                   store: Optional[SharedCounterStore],
                   limit_per_window: int,
                   **kwargs) -> Optional[QuotaGate]:
    """Create a gate, or return None when it cannot be built.

    Callers getting None must treat the endpoint as unprotected or refuse to
    start.
    """
    try:
        return QuotaGate(service, method, store, limit_per_window, **kwargs)
    except ConstructionError as e:
        get_logger("quota_gate.gate").error(
            "Quota gate construction failed",
            service=service,
            method=method,
            error=e.message,
            details=e.details
        )
        return None
