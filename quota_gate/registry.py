"""
Process-wide lookup of quota gates.
"""

import threading
from typing import Any, Callable, Dict, Optional

from shared.config import QuotaGateConfig
from shared.errors import ConstructionError
from shared.logging import get_logger
from shared.metrics import GateMetrics

from .gate import QuotaGate
from .keys import QuotaKey
from .store import SharedCounterStore


class QuotaGateRegistry:
    """Hands every caller of an endpoint the same gate instance."""

    def __init__(self,
                 store: SharedCounterStore,
                 config: Optional[QuotaGateConfig] = None,
                 metrics: Optional[GateMetrics] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.config = config
        self.metrics = metrics
        self.clock = clock
        self.gates: Dict[QuotaKey, QuotaGate] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("quota_gate.registry")

    def get_gate(self, service: str, method: str, limit_per_window: int) -> QuotaGate:
        """Get or create the gate for a (service, method) pair."""
        key = QuotaKey(service, method)
        with self._lock:
            gate = self.gates.get(key)
            if gate is None:
                gate = QuotaGate(
                    service,
                    method,
                    self.store,
                    limit_per_window,
                    config=self.config,
                    clock=self.clock,
                    metrics=self.metrics
                )
                self.gates[key] = gate
                self.logger.info("Registered quota gate", key=str(key), limit_per_window=limit_per_window)
            elif gate.limit_per_window != limit_per_window:
                raise ConstructionError(
                    "Quota gate already exists with a different limit",
                    {
                        "key": str(key),
                        "limit_per_window": gate.limit_per_window,
                        "requested_limit_per_window": limit_per_window,
                    }
                )
            return gate

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all gates."""
        with self._lock:
            gates = list(self.gates.items())
        return {str(key): gate.get_state() for key, gate in gates}

    def __len__(self) -> int:
        with self._lock:
            return len(self.gates)
