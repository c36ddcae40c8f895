from __future__ import annotations

import logging
import traceback
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from ferry.baseline import Baseline
from ferry.config_manager import ConfigManager
from ferry.matcher import build_pair_map
from ferry.models import AppConfig, SyncResult, sync_window
from ferry.morgen_client import MorgenService
from ferry.notion_client import NotionService
from ferry.reconciler import SIDE_A, ReconcileReport, Reconciler
from ferry.state_store import StateStore

logger = logging.getLogger(__name__)

STORE_A = "notion"
STORE_B = "morgen"


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _report_message(report: ReconcileReport, pairs: int) -> str:
    return (
        f"{pairs} pairs; created={report.created} updated={report.updated} "
        f"deleted={report.deleted} conflicts={report.conflicts} errors={report.errors}"
    )


class SyncEngine:
    def __init__(self, config_manager: ConfigManager, state_store: StateStore) -> None:
        self.config_manager = config_manager
        self.state_store = state_store

    def _build_services(self, config: AppConfig) -> tuple[Any, Any]:
        return NotionService(config.notion), MorgenService(config.morgen)

    def _skip(self, trigger: str, started_at: datetime, message: str) -> SyncResult:
        duration_ms = _elapsed_ms(started_at)
        self.state_store.record_sync_run(
            trigger=trigger,
            status="skipped",
            message=message,
            duration_ms=duration_ms,
            changes_applied=0,
            conflicts=0,
        )
        logger.warning(message)
        return SyncResult(
            status="skipped",
            message=message,
            duration_ms=duration_ms,
            changes_applied=0,
            conflicts=0,
            errors=0,
            trigger=trigger,
        )

    def _audit_report(self, run_id: int, report: ReconcileReport) -> None:
        for action in report.actions:
            self.state_store.record_audit_event(
                run_id=run_id,
                store=STORE_A if action.side == SIDE_A else STORE_B,
                ref=action.ref,
                action=action.action if action.ok else f"{action.action}_failed",
                details=action.to_dict(),
            )

    def run_once(self, baseline: Baseline, trigger: str = "manual") -> SyncResult:
        """Run one fetch, match, diff and reconcile pass against ``baseline``.

        The baseline is replaced with this pass's pair map once reconciliation has run,
        even when individual actions failed. A failed fetch leaves it untouched.
        """
        started_at = datetime.now(timezone.utc)
        config = self.config_manager.load()
        if not config.notion.is_configured() or not config.morgen.is_configured():
            return self._skip(trigger, started_at, "Notion/Morgen config incomplete. Sync skipped.")

        run_id = self.state_store.start_sync_run(trigger=trigger)
        try:
            window_start, window_end = sync_window(started_at, config.sync)
            notion, morgen = self._build_services(config)
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ferry-fetch") as pool:
                tasks_future = pool.submit(notion.fetch, window_start, window_end)
                events_future = pool.submit(morgen.fetch, window_start, window_end)
                tasks = tasks_future.result()
                events = events_future.result()
            logger.info(
                "Fetched %d tasks and %d events between %s and %s",
                len(tasks),
                len(events),
                window_start.isoformat(),
                window_end.isoformat(),
            )

            new_map = build_pair_map(tasks, events)
            first_pass = baseline.is_initial
            report = Reconciler(notion, morgen, name_a="Notion", name_b="Morgen").reconcile(new_map, baseline)
            baseline.replace(new_map)
            self._audit_report(run_id, report)

            status = "partial" if report.errors else "success"
            message = _report_message(report, len(new_map))
            if first_pass:
                message = f"initial pass, creation suppressed; {message}"
            duration_ms = _elapsed_ms(started_at)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status=status,
                message=message,
                duration_ms=duration_ms,
                changes_applied=report.changes_applied,
                conflicts=report.conflicts,
                errors=report.errors,
            )
            logger.info("Sync pass %s (%s): %s", status, trigger, message)
            return SyncResult(
                status=status,
                message=message,
                duration_ms=duration_ms,
                changes_applied=report.changes_applied,
                conflicts=report.conflicts,
                errors=report.errors,
                trigger=trigger,
                run_at=started_at,
            )
        except Exception as exc:
            duration_ms = _elapsed_ms(started_at)
            message = f"{type(exc).__name__}: {exc}"
            logger.error("Sync pass failed (%s): %s", trigger, message)
            self.state_store.record_audit_event(
                run_id=run_id,
                store="engine",
                ref="run",
                action="sync_error",
                details={"trigger": trigger, "error": message, "traceback": traceback.format_exc()},
            )
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="error",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                conflicts=0,
                errors=1,
            )
            return SyncResult(
                status="error",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                conflicts=0,
                errors=1,
                trigger=trigger,
                run_at=started_at,
            )
