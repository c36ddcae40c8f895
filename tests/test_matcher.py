import unittest
from datetime import date

from ferry.matcher import build_pair_map, pair_key, record_key
from ferry.models import Pair, UniversalRecord


def _task(page_id: str, event_id: str | None = None, title: str = "Task") -> UniversalRecord:
    return UniversalRecord(
        ref_a=page_id,
        ref_b=event_id,
        title=title,
        occurs_at=date(2026, 3, 2),
        last_modified="2026-03-01T10:00:00.000Z",
    )


def _event(event_id: str, page_id: str | None = None, title: str = "Task") -> UniversalRecord:
    return UniversalRecord(
        ref_a=page_id,
        ref_b=event_id,
        title=title,
        occurs_at=date(2026, 3, 2),
        last_modified="2026-03-01T10:00:00Z",
    )


class MatcherTests(unittest.TestCase):
    def test_record_key_uses_only_identifiers(self) -> None:
        record = _task("page-1", "evt-1", title="Before")
        edited = record.with_updates(title="After", description="changed", occurs_at=date(2026, 4, 1))
        self.assertEqual(record_key(record), "evt-1|page-1")
        self.assertEqual(record_key(edited), record_key(record))
        self.assertEqual(record_key(UniversalRecord(ref_a="page-2")), "|page-2")
        self.assertEqual(record_key(UniversalRecord(ref_b="evt-2")), "evt-2|")

    def test_matched_records_share_one_pair(self) -> None:
        pair_map = build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        self.assertEqual(list(pair_map), ["evt-1|page-1"])
        self.assertTrue(pair_map["evt-1|page-1"].matched)

    def test_unlinked_records_stay_one_sided(self) -> None:
        pair_map = build_pair_map([_task("page-1")], [_event("evt-9")])
        self.assertEqual(pair_map["|page-1"].state, "a_only")
        self.assertEqual(pair_map["evt-9|"].state, "b_only")

    def test_duplicate_task_keys_drop_the_later_record(self) -> None:
        first = _task("page-1", "evt-1", title="First")
        second = _task("page-1", "evt-1", title="Second")
        with self.assertLogs("ferry.matcher", level="ERROR"):
            pair_map = build_pair_map([first, second], [])
        self.assertEqual(len(pair_map), 1)
        self.assertEqual(pair_map["evt-1|page-1"].a.title, "First")

    def test_duplicate_event_keys_drop_the_later_record(self) -> None:
        first = _event("evt-1", "page-1", title="First")
        second = _event("evt-1", "page-1", title="Second")
        with self.assertLogs("ferry.matcher", level="ERROR"):
            pair_map = build_pair_map([_task("page-1", "evt-1")], [first, second])
        self.assertEqual(len(pair_map), 1)
        self.assertTrue(pair_map["evt-1|page-1"].matched)
        self.assertEqual(pair_map["evt-1|page-1"].b.title, "First")

    def test_matching_is_idempotent(self) -> None:
        tasks = [_task("page-1", "evt-1"), _task("page-2")]
        events = [_event("evt-1", "page-1"), _event("evt-3")]
        self.assertEqual(build_pair_map(tasks, events), build_pair_map(tasks, events))

    def test_pair_key_for_merged_pair(self) -> None:
        pair = Pair(a=_task("page-1", "evt-1"), b=_event("evt-1", "page-1"))
        self.assertEqual(pair_key(pair), "evt-1|page-1")
        with self.assertRaises(ValueError):
            pair_key(Pair())


if __name__ == "__main__":
    unittest.main()
