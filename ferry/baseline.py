from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any

from ferry.models import PairMap


class Baseline:
    """Pair map remembered from the previous pass.

    Starts empty and ``initial``; the first pass only absorbs what it sees. At the end
    of every pass ``replace`` swaps in that pass's map wholesale. Lives for the process
    lifetime only.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pairs: PairMap = {}
        self._passes = 0
        self._replaced_at: datetime | None = None

    @property
    def is_initial(self) -> bool:
        return self._passes == 0

    @property
    def passes(self) -> int:
        return self._passes

    @property
    def pairs(self) -> PairMap:
        return self._pairs

    def replace(self, pair_map: PairMap) -> None:
        with self._lock:
            self._pairs = pair_map
            self._passes += 1
            self._replaced_at = datetime.now(timezone.utc)

    def reset(self) -> None:
        with self._lock:
            self._pairs = {}
            self._passes = 0
            self._replaced_at = None

    def summary(self) -> dict[str, Any]:
        with self._lock:
            pairs = dict(self._pairs)
            passes = self._passes
            replaced_at = self._replaced_at
        states: dict[str, int] = {}
        for pair in pairs.values():
            states[pair.state] = states.get(pair.state, 0) + 1
        return {
            "passes": passes,
            "replaced_at": replaced_at.isoformat() if replaced_at else None,
            "size": len(pairs),
            "states": states,
            "pairs": {key: pair.to_dict() for key, pair in sorted(pairs.items())},
        }
