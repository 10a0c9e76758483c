"""
Composite identity of a monitored (service, method) pair.
"""

from dataclasses import dataclass
from urllib.parse import quote

from shared.errors import ConstructionError


@dataclass(frozen=True)
class QuotaKey:
    """A (service, method) pair sharing one aggregate limit."""
    service: str
    method: str = ""

    def __post_init__(self):
        if not isinstance(self.service, str) or not self.service:
            raise ConstructionError("Service name must be a non-empty string", {"service": self.service})
        if not isinstance(self.method, str):
            raise ConstructionError("Method name must be a string", {"method": self.method})

    def redis_key(self, prefix: str = "quota") -> str:
        """Render the counter key; components are percent-encoded so ':' never collides."""
        return f"{prefix}:{quote(self.service, safe='')}:{quote(self.method, safe='')}"

    def __str__(self) -> str:
        # Encoded like redis_key so a '/' inside a name cannot merge two keys
        return f"{quote(self.service, safe='')}/{quote(self.method, safe='')}"
