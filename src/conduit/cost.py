"""Cost accounting from token usage."""

from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from conduit.config import Tier
    from conduit.messages import Usage

_PER_MILLION = 1_000_000


@dataclass(frozen=True)
class TokenRates:
    """USD per million tokens."""

    input: float
    output: float
    cache_read: float
    cache_write: float


# Fast/economy tier priced like Haiku, flagship tier like Sonnet.
RATES: dict[Tier, TokenRates] = {
    "small": TokenRates(input=0.8, output=4.0, cache_read=0.08, cache_write=1.0),
    "large": TokenRates(input=3.0, output=15.0, cache_read=0.3, cache_write=3.75),
}


def compute_cost(usage: Usage, tier: Tier) -> float:
    """Return the USD cost of *usage* at *tier* rates."""
    rates = RATES[tier]
    return (
        usage.input_tokens / _PER_MILLION * rates.input
        + usage.output_tokens / _PER_MILLION * rates.output
        + usage.cache_read_input_tokens / _PER_MILLION * rates.cache_read
        + usage.cache_creation_input_tokens / _PER_MILLION * rates.cache_write
    )


@runtime_checkable
class CostSink(Protocol):
    """Receives the cost of every completed call."""

    def add_cost(self, amount_usd: float, duration_ms: float) -> None: ...  # noqa: D102


class CostTracker:
    """Running session totals. Safe to call from concurrent queries."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_cost_usd = 0.0
        self._total_duration_ms = 0.0
        self._calls = 0

    def add_cost(self, amount_usd: float, duration_ms: float) -> None:
        with self._lock:
            self._total_cost_usd += amount_usd
            self._total_duration_ms += duration_ms
            self._calls += 1

    @property
    def total_cost_usd(self) -> float:
        with self._lock:
            return self._total_cost_usd

    @property
    def total_duration_ms(self) -> float:
        with self._lock:
            return self._total_duration_ms

    @property
    def calls(self) -> int:
        with self._lock:
            return self._calls
