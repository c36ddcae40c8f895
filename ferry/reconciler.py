"""Per-pass reconciliation between the task store (A) and the calendar store (B).

Stores passed to :class:`Reconciler` expose ``create(record) -> ref``,
``update(ref, record)``, ``delete(ref)`` and ``link(ref, counterpart_ref, record)``.
Any of them may raise; every failure is logged, reported and the pass continues.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from ferry.baseline import Baseline
from ferry.differ import APPEARED, CHANGED, KeyChange, classify, records_equal
from ferry.matcher import pair_key
from ferry.models import Pair, PairMap, UniversalRecord

logger = logging.getLogger(__name__)

SIDE_A = "a"
SIDE_B = "b"


@dataclass
class ActionRecord:
    action: str
    side: str
    key: str
    ref: str
    title: str
    ok: bool
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconcileReport:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: int = 0
    errors: int = 0
    actions: list[ActionRecord] = field(default_factory=list)

    @property
    def changes_applied(self) -> int:
        return self.created + self.updated + self.deleted

    def record(self, action: ActionRecord) -> None:
        self.actions.append(action)
        if not action.ok:
            self.errors += 1


def choose_truth(pair: Pair) -> str:
    """Last write wins on the raw ISO-8601 strings; ties go to A."""
    if pair.a is None or pair.b is None:
        raise ValueError("conflict resolution needs both sides")
    if (pair.b.last_modified or "") > (pair.a.last_modified or ""):
        return SIDE_B
    return SIDE_A


def _other(side: str) -> str:
    return SIDE_B if side == SIDE_A else SIDE_A


def _ref(record: UniversalRecord, side: str) -> str:
    return (record.ref_a if side == SIDE_A else record.ref_b) or ""


class Reconciler:
    def __init__(self, store_a: Any, store_b: Any, name_a: str = "A", name_b: str = "B") -> None:
        self._stores = {SIDE_A: store_a, SIDE_B: store_b}
        self._names = {SIDE_A: name_a, SIDE_B: name_b}

    def reconcile(self, new_map: PairMap, baseline: Baseline) -> ReconcileReport:
        report = ReconcileReport()
        old_map = baseline.pairs
        first_pass = baseline.is_initial
        for change in classify(new_map, old_map):
            if change.kind == CHANGED:
                self._resolve_conflict(change, new_map, report)
            elif change.kind == APPEARED:
                if first_pass:
                    continue
                self._create_counterpart(change, new_map, report)
        self._propagate_deletions(old_map, new_map, report)
        return report

    def _call(
        self,
        report: ReconcileReport,
        *,
        action: str,
        side: str,
        key: str,
        ref: str,
        title: str,
        method: str,
        args: tuple[Any, ...],
    ) -> Any:
        store_name = self._names[side]
        try:
            result = getattr(self._stores[side], method)(*args)
        except Exception as exc:
            logger.error("%s on %s failed for %r (%s): %s", action, store_name, title, ref or key, exc)
            report.record(
                ActionRecord(action=action, side=side, key=key, ref=ref, title=title, ok=False, error=str(exc))
            )
            return None
        report.record(
            ActionRecord(
                action=action,
                side=side,
                key=key,
                ref=str(result) if method == "create" else ref,
                title=title,
                ok=True,
            )
        )
        return result if method == "create" else True

    def _resolve_conflict(self, change: KeyChange, new_map: PairMap, report: ReconcileReport) -> None:
        pair = change.pair
        if not pair.matched:
            # One-sided pairs are only created when they first appear, or deleted below.
            return
        if records_equal(pair.a, pair.b):
            # Sides already agree, e.g. a pair that was one-sided last pass and matched again.
            return
        report.conflicts += 1
        truth_side = choose_truth(pair)
        target_side = _other(truth_side)
        truth: UniversalRecord = getattr(pair, truth_side)
        target: UniversalRecord = getattr(pair, target_side)
        source = truth.with_updates(ref_a=pair.a.ref_a or pair.b.ref_a, ref_b=pair.b.ref_b or pair.a.ref_b)
        logger.info(
            "Resolving %r: %s is newer, updating %s",
            source.title,
            self._names[truth_side],
            self._names[target_side],
        )
        ok = self._call(
            report,
            action=f"update_{target_side}",
            side=target_side,
            key=change.key,
            ref=_ref(target, target_side),
            title=source.title,
            method="update",
            args=(_ref(target, target_side), source),
        )
        if ok:
            report.updated += 1
            synced = source.with_updates(ref_a=target.ref_a, ref_b=target.ref_b)
            setattr(new_map[change.key], target_side, synced)

    def _create_counterpart(self, change: KeyChange, new_map: PairMap, report: ReconcileReport) -> None:
        pair = change.pair
        if not pair.one_sided:
            return
        origin_side = SIDE_A if pair.a is not None else SIDE_B
        target_side = _other(origin_side)
        source: UniversalRecord = getattr(pair, origin_side)
        linked_ref = _ref(source, target_side)
        if linked_ref:
            # Its counterpart exists but is outside the window; wait for it instead of duplicating.
            logger.info(
                "%r is already linked to %s %s; not creating another",
                source.title,
                self._names[target_side],
                linked_ref,
            )
            return

        new_ref = self._call(
            report,
            action=f"create_{target_side}",
            side=target_side,
            key=change.key,
            ref="",
            title=source.title,
            method="create",
            args=(source,),
        )
        if not new_ref:
            return
        report.created += 1
        new_ref = str(new_ref)
        created = source.with_updates(**{f"ref_{target_side}": new_ref})

        linked = self._call(
            report,
            action=f"link_{origin_side}",
            side=origin_side,
            key=change.key,
            ref=_ref(source, origin_side),
            title=source.title,
            method="link",
            args=(_ref(source, origin_side), new_ref, source),
        )
        if not linked:
            # The origin keeps its one-sided entry; the created record sits under its own key
            # so the next pass sees two stable one-sided pairs rather than a deletion.
            created_pair = Pair(**{target_side: created})
            new_map[pair_key(created_pair)] = created_pair
            return

        merged = Pair(**{origin_side: created, target_side: created})
        del new_map[change.key]
        new_map[pair_key(merged)] = merged

    def _propagate_deletions(self, old_map: PairMap, new_map: PairMap, report: ReconcileReport) -> None:
        for key, previous in old_map.items():
            current = new_map.get(key)
            if current is None or not previous.matched or not current.one_sided:
                continue
            survivor_side = SIDE_A if current.a is not None else SIDE_B
            survivor: UniversalRecord = getattr(current, survivor_side)
            ref = _ref(survivor, survivor_side)
            if not ref:
                continue
            logger.info(
                "%r vanished from %s; deleting it from %s",
                survivor.title,
                self._names[_other(survivor_side)],
                self._names[survivor_side],
            )
            if self._call(
                report,
                action=f"delete_{survivor_side}",
                side=survivor_side,
                key=key,
                ref=ref,
                title=survivor.title,
                method="delete",
                args=(ref,),
            ):
                report.deleted += 1
