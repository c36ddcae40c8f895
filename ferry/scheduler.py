from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ferry.baseline import Baseline
from ferry.config_manager import ConfigManager
from ferry.models import SyncResult
from ferry.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

PASS_IN_PROGRESS = "previous pass still running"


class SyncScheduler:
    def __init__(
        self,
        sync_engine: SyncEngine,
        config_manager: ConfigManager,
        baseline: Baseline | None = None,
    ) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self.baseline = baseline if baseline is not None else Baseline()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()
        self._pass_lock = threading.Lock()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="ferry-sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def run_pass(self, trigger: str) -> SyncResult:
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Previous sync pass still running; skipping %s tick", trigger)
            return SyncResult(
                status="skipped",
                message=PASS_IN_PROGRESS,
                duration_ms=0,
                changes_applied=0,
                conflicts=0,
                errors=0,
                trigger=trigger,
                run_at=datetime.now(timezone.utc),
            )
        try:
            return self.sync_engine.run_once(self.baseline, trigger=trigger)
        finally:
            self._pass_lock.release()

    def _tick(self, trigger: str) -> None:
        try:
            self.run_pass(trigger)
        except Exception:
            logger.exception("Sync pass crashed (%s); waiting for the next tick", trigger)

    def _loop(self) -> None:
        # Run one sync at startup so the baseline is primed quickly.
        self._tick("startup")

        while not self._stop_event.is_set():
            try:
                interval_seconds = max(10, int(self.config_manager.load().sync.interval_seconds))
            except Exception:
                logger.exception("Could not load config; using the default interval")
                interval_seconds = 40
            manual = self._manual_trigger_event.wait(timeout=interval_seconds)
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._tick("manual" if manual else "scheduled")
