from __future__ import annotations

import logging
from typing import Iterable

from ferry.models import KEY_SEPARATOR, Pair, PairMap, UniversalRecord

logger = logging.getLogger(__name__)


def record_key(record: UniversalRecord) -> str:
    return f"{record.ref_b or ''}{KEY_SEPARATOR}{record.ref_a or ''}"


def pair_key(pair: Pair) -> str:
    # Either side carries both identifiers once matched; prefer B like the matcher does.
    if pair.b is not None:
        return record_key(pair.b)
    if pair.a is not None:
        return record_key(pair.a)
    raise ValueError("pair has neither side")


def build_pair_map(
    a_records: Iterable[UniversalRecord],
    b_records: Iterable[UniversalRecord],
) -> PairMap:
    pair_map: PairMap = {}
    for record in a_records:
        key = record_key(record)
        if key in pair_map:
            logger.error(
                "Duplicate task key %r: %r and %r share cross-references; dropping the latter",
                key,
                pair_map[key].a.title if pair_map[key].a else "",
                record.title,
            )
            continue
        pair_map[key] = Pair(a=record)

    for record in b_records:
        key = record_key(record)
        existing = pair_map.get(key)
        if existing is None:
            pair_map[key] = Pair(b=record)
            continue
        if existing.b is not None:
            logger.error("Duplicate event key %r: dropping %r", key, record.title)
            continue
        existing.b = record
    return pair_map
