from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ferry.models import Pair, PairMap, UniversalRecord, calendar_date, has_time, serialize_occurrence

logger = logging.getLogger(__name__)

UNCHANGED = "unchanged"
CHANGED = "changed"
APPEARED = "appeared"


@dataclass
class Discrepancy:
    field: str
    before: str
    after: str


@dataclass
class KeyChange:
    key: str
    kind: str
    pair: Pair
    previous: Pair | None = None
    discrepancies: list[Discrepancy] = field(default_factory=list)


def record_discrepancies(before: UniversalRecord, after: UniversalRecord) -> list[Discrepancy]:
    found: list[Discrepancy] = []
    if before.title != after.title:
        found.append(Discrepancy("title", before.title, after.title))

    before_description = (before.description or "").strip()
    after_description = (after.description or "").strip()
    if before_description != after_description:
        found.append(Discrepancy("description", before_description, after_description))

    if before.occurs_at is None or after.occurs_at is None:
        if before.occurs_at != after.occurs_at:
            found.append(
                Discrepancy(
                    "date",
                    serialize_occurrence(before.occurs_at) or "",
                    serialize_occurrence(after.occurs_at) or "",
                )
            )
        return found

    before_date = calendar_date(before.occurs_at)
    after_date = calendar_date(after.occurs_at)
    if before_date != after_date:
        found.append(Discrepancy("date", before_date.isoformat(), after_date.isoformat()))
    # All-day records match timed records on the date alone.
    if has_time(before.occurs_at) and has_time(after.occurs_at) and before.occurs_at != after.occurs_at:
        found.append(
            Discrepancy(
                "time",
                serialize_occurrence(before.occurs_at) or "",
                serialize_occurrence(after.occurs_at) or "",
            )
        )
    return found


def records_equal(before: UniversalRecord, after: UniversalRecord) -> bool:
    return not record_discrepancies(before, after)


def pair_discrepancies(before: Pair, after: Pair) -> list[Discrepancy]:
    """Differences between two snapshots of one pair.

    A pair that is not matched on both snapshots always yields a ``presence``
    discrepancy, so one-sided pairs never compare as unchanged.
    """
    if not (before.matched and after.matched):
        return [Discrepancy("presence", before.state, after.state)]
    found: list[Discrepancy] = []
    for side, old_record, new_record in (("a", before.a, after.a), ("b", before.b, after.b)):
        for item in record_discrepancies(old_record, new_record):
            found.append(Discrepancy(f"{side}.{item.field}", item.before, item.after))
    return found


def pairs_equal(before: Pair, after: Pair) -> bool:
    return not pair_discrepancies(before, after)


def classify(new_map: PairMap, old_map: PairMap) -> list[KeyChange]:
    changes: list[KeyChange] = []
    for key, pair in new_map.items():
        previous = old_map.get(key)
        if previous is None:
            changes.append(KeyChange(key=key, kind=APPEARED, pair=pair))
            continue
        discrepancies = pair_discrepancies(previous, pair)
        if not discrepancies:
            changes.append(KeyChange(key=key, kind=UNCHANGED, pair=pair, previous=previous))
            continue
        title = pair.title() or previous.title()
        for item in discrepancies:
            logger.log(
                logging.DEBUG if item.field == "presence" else logging.INFO,
                "Discrepancy found in %s for %r: before=%r after=%r",
                item.field,
                title,
                item.before,
                item.after,
            )
        changes.append(
            KeyChange(key=key, kind=CHANGED, pair=pair, previous=previous, discrepancies=discrepancies)
        )
    return changes
