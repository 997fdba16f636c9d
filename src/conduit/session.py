"""Session-level error and credential state.

One ``SessionState`` lives as long as its orchestrator. Credential selection
reads the failed-key sets; the orchestrator records failures here. Keys are
never un-marked within a session.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conduit.config import Tier

logger = logging.getLogger(__name__)

_TIERS: tuple[Tier, ...] = ("small", "large")


@dataclass(frozen=True)
class ApiErrorRecord:
    """The most recent API failure, kept for diagnostics."""

    provider: str
    base_url: str
    message: str
    status_code: int | None = None
    details: Any = None
    timestamp: float = 0.0

    @classmethod
    def from_error(
        cls, error: BaseException, *, provider: str, base_url: str
    ) -> ApiErrorRecord:
        return cls(
            provider=provider,
            base_url=base_url,
            message=str(error),
            status_code=getattr(error, "status_code", None),
            details=error,
            timestamp=time.time(),
        )


class SessionState:
    """Lock-guarded record of credential health and the last API error."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current_key_index: dict[Tier, int] = {t: -1 for t in _TIERS}
        self._failed_keys: dict[Tier, set[int]] = {t: set() for t in _TIERS}
        self._last_api_error: ApiErrorRecord | None = None

    def select_api_key(self, tier: Tier, keys: Sequence[str]) -> str | None:
        """Return the first usable key for *tier* and remember its index.

        Keys whose index was marked failed are skipped. Returns None (and
        resets the current index to -1) when no usable key remains.
        """
        with self._lock:
            failed = self._failed_keys[tier]
            for idx, key in enumerate(keys):
                if idx in failed or not key:
                    continue
                self._current_key_index[tier] = idx
                return key
            self._current_key_index[tier] = -1
            return None

    def current_key_index(self, tier: Tier) -> int:
        with self._lock:
            return self._current_key_index[tier]

    def mark_key_failed(self, tier: Tier, index: int | None = None) -> bool:
        """Mark a key unusable for the rest of the session.

        Defaults to the currently selected key. Returns True only when the key
        was newly marked, so repeated reports of one failure are no-ops.
        """
        with self._lock:
            idx = self._current_key_index[tier] if index is None else index
            if idx < 0 or idx in self._failed_keys[tier]:
                return False
            self._failed_keys[tier].add(idx)
        logger.warning("Marked %s-tier API key #%d as failed", tier, idx)
        return True

    def failed_key_indices(self, tier: Tier) -> frozenset[int]:
        with self._lock:
            return frozenset(self._failed_keys[tier])

    def record_api_error(self, record: ApiErrorRecord) -> None:
        """Overwrite the last API error."""
        with self._lock:
            self._last_api_error = record

    @property
    def last_api_error(self) -> ApiErrorRecord | None:
        with self._lock:
            return self._last_api_error

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of the state for diagnostics views."""
        with self._lock:
            return {
                "current_key_index": dict(self._current_key_index),
                "failed_keys": {t: sorted(s) for t, s in self._failed_keys.items()},
                "last_api_error": self._last_api_error,
            }
