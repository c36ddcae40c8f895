import unittest
from datetime import date

from ferry.baseline import Baseline
from ferry.matcher import build_pair_map
from ferry.models import Pair, UniversalRecord
from ferry.reconciler import SIDE_A, SIDE_B, Reconciler, choose_truth


class _FakeStore:
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self._counter = 0

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise RuntimeError(f"{method} failed")

    def create(self, record: UniversalRecord) -> str:
        self.calls.append(("create", record))
        self._maybe_fail("create")
        self._counter += 1
        return f"{self.prefix}-new-{self._counter}"

    def update(self, ref: str, record: UniversalRecord) -> None:
        self.calls.append(("update", ref, record))
        self._maybe_fail("update")

    def delete(self, ref: str) -> None:
        self.calls.append(("delete", ref))
        self._maybe_fail("delete")

    def link(self, ref: str, counterpart_ref: str, record: UniversalRecord) -> None:
        self.calls.append(("link", ref, counterpart_ref))
        self._maybe_fail("link")

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]


def _task(page_id: str, event_id: str | None = None, **kwargs) -> UniversalRecord:
    values = {
        "ref_a": page_id,
        "ref_b": event_id,
        "title": "X",
        "description": "notes",
        "occurs_at": date(2026, 3, 2),
        "last_modified": "2026-03-01T10:00:00.000Z",
    }
    values.update(kwargs)
    return UniversalRecord(**values)


def _event(event_id: str, page_id: str | None = None, **kwargs) -> UniversalRecord:
    values = {
        "ref_a": page_id,
        "ref_b": event_id,
        "title": "X",
        "description": "notes",
        "occurs_at": date(2026, 3, 2),
        "last_modified": "2026-03-01T10:00:00Z",
    }
    values.update(kwargs)
    return UniversalRecord(**values)


def _primed_baseline(pair_map) -> Baseline:
    baseline = Baseline()
    baseline.replace(pair_map)
    return baseline


class ConflictRuleTests(unittest.TestCase):
    def test_newer_b_wins(self) -> None:
        pair = Pair(a=_task("p", "e", last_modified="T1"), b=_event("e", "p", last_modified="T2"))
        self.assertEqual(choose_truth(pair), SIDE_B)

    def test_newer_a_wins(self) -> None:
        pair = Pair(a=_task("p", "e", last_modified="T2"), b=_event("e", "p", last_modified="T1"))
        self.assertEqual(choose_truth(pair), SIDE_A)

    def test_tie_favours_a(self) -> None:
        pair = Pair(a=_task("p", "e", last_modified="T1"), b=_event("e", "p", last_modified="T1"))
        self.assertEqual(choose_truth(pair), SIDE_A)


class ReconcilerScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.notion = _FakeStore("page")
        self.morgen = _FakeStore("evt")
        self.reconciler = Reconciler(self.notion, self.morgen)

    def test_first_pass_absorbs_one_sided_pair_without_creating(self) -> None:
        baseline = Baseline()
        new_map = build_pair_map([_task("page-1")], [])
        report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(report.changes_applied, 0)
        self.assertEqual(new_map["|page-1"].state, "a_only")

    def test_one_sided_pair_already_in_baseline_is_left_alone(self) -> None:
        baseline = _primed_baseline(build_pair_map([_task("page-1")], []))
        new_map = build_pair_map([_task("page-1")], [])
        report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(report.conflicts, 0)
        self.assertEqual(new_map["|page-1"].state, "a_only")

    def test_newer_calendar_event_overwrites_task(self) -> None:
        baseline = _primed_baseline(
            build_pair_map(
                [_task("page-1", "evt-1", title="X", last_modified="2026-03-01T10:00:00Z")],
                [_event("evt-1", "page-1", title="X", last_modified="2026-03-01T10:00:00Z")],
            )
        )
        new_map = build_pair_map(
            [_task("page-1", "evt-1", title="X", last_modified="2026-03-01T10:00:00Z")],
            [_event("evt-1", "page-1", title="Y", last_modified="2026-03-01T12:00:00Z")],
        )
        report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.notion.methods(), ["update"])
        _, ref, source = self.notion.calls[0]
        self.assertEqual(ref, "page-1")
        self.assertEqual(source.title, "Y")
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(report.updated, 1)
        self.assertEqual(report.conflicts, 1)
        self.assertEqual(new_map["evt-1|page-1"].a.title, "Y")
        self.assertEqual(new_map["evt-1|page-1"].a.ref_a, "page-1")

    def test_newer_task_overwrites_event(self) -> None:
        baseline = _primed_baseline(
            build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        )
        new_map = build_pair_map(
            [_task("page-1", "evt-1", description="changed", last_modified="2026-03-02T09:00:00Z")],
            [_event("evt-1", "page-1", last_modified="2026-03-01T10:00:00Z")],
        )
        self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.morgen.methods(), ["update"])
        _, ref, source = self.morgen.calls[0]
        self.assertEqual(ref, "evt-1")
        self.assertEqual(source.description, "changed")
        self.assertEqual(source.ref_a, "page-1")

    def test_failed_update_is_reported_and_pass_continues(self) -> None:
        self.morgen.fail_on.add("update")
        baseline = _primed_baseline(
            build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        )
        new_map = build_pair_map(
            [_task("page-1", "evt-1", title="Z", last_modified="2026-03-02T09:00:00Z")],
            [_event("evt-1", "page-1")],
        )
        with self.assertLogs("ferry.reconciler", level="ERROR"):
            report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(report.errors, 1)
        self.assertEqual(report.updated, 0)
        self.assertEqual(new_map["evt-1|page-1"].b.title, "X")

    def test_vanished_event_deletes_task(self) -> None:
        baseline = _primed_baseline(
            build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        )
        new_map = build_pair_map([_task("page-1", "evt-1")], [])
        report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.notion.calls, [("delete", "page-1")])
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(report.deleted, 1)

    def test_vanished_task_deletes_event(self) -> None:
        baseline = _primed_baseline(
            build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        )
        new_map = build_pair_map([], [_event("evt-1", "page-1")])
        self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.morgen.calls, [("delete", "evt-1")])
        self.assertEqual(self.notion.calls, [])

    def test_pair_gone_from_both_sides_needs_no_action(self) -> None:
        baseline = _primed_baseline(
            build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        )
        report = self.reconciler.reconcile({}, baseline)
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(report.actions, [])

    def test_deletion_runs_once_per_pass(self) -> None:
        baseline = _primed_baseline(
            build_pair_map(
                [_task("page-1", "evt-1"), _task("page-2", "evt-2"), _task("page-3", "evt-3")],
                [_event("evt-1", "page-1"), _event("evt-2", "page-2"), _event("evt-3", "page-3")],
            )
        )
        new_map = build_pair_map(
            [_task("page-1", "evt-1"), _task("page-2", "evt-2"), _task("page-3", "evt-3")],
            [_event("evt-3", "page-3")],
        )
        self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(sorted(self.notion.calls), [("delete", "page-1"), ("delete", "page-2")])

    def test_new_task_creates_event_and_links_back(self) -> None:
        baseline = _primed_baseline({})
        new_map = build_pair_map([_task("page-7", title="Fresh")], [])
        report = self.reconciler.reconcile(new_map, baseline)

        self.assertEqual(self.morgen.methods(), ["create"])
        self.assertEqual(self.morgen.calls[0][1].ref_a, "page-7")
        self.assertEqual(self.notion.calls, [("link", "page-7", "evt-new-1")])
        self.assertEqual(report.created, 1)
        self.assertNotIn("|page-7", new_map)
        merged = new_map["evt-new-1|page-7"]
        self.assertTrue(merged.matched)
        self.assertEqual(merged.a.ref_b, "evt-new-1")
        self.assertEqual(merged.b.ref_a, "page-7")
        self.assertEqual(merged.b.title, "Fresh")

    def test_new_event_creates_task_and_links_back(self) -> None:
        baseline = _primed_baseline({})
        new_map = build_pair_map([], [_event("evt-4", title="From calendar")])
        self.reconciler.reconcile(new_map, baseline)

        self.assertEqual(self.notion.methods(), ["create"])
        self.assertEqual(self.notion.calls[0][1].ref_b, "evt-4")
        self.assertEqual(self.morgen.calls, [("link", "evt-4", "page-new-1")])
        merged = new_map["evt-4|page-new-1"]
        self.assertTrue(merged.matched)
        self.assertEqual(merged.a.title, "From calendar")

    def test_created_pair_is_unchanged_on_next_pass(self) -> None:
        baseline = _primed_baseline({})
        new_map = build_pair_map([_task("page-7")], [])
        self.reconciler.reconcile(new_map, baseline)
        baseline.replace(new_map)

        next_map = build_pair_map([_task("page-7", "evt-new-1")], [_event("evt-new-1", "page-7")])
        report = self.reconciler.reconcile(next_map, baseline)
        self.assertEqual(report.actions, [])
        self.assertEqual(self.morgen.methods(), ["create"])

    def test_failed_create_keeps_pair_one_sided(self) -> None:
        self.morgen.fail_on.add("create")
        baseline = _primed_baseline({})
        new_map = build_pair_map([_task("page-7")], [])
        with self.assertLogs("ferry.reconciler", level="ERROR"):
            report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(report.created, 0)
        self.assertEqual(report.errors, 1)
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(new_map["|page-7"].state, "a_only")

    def test_failed_link_keeps_both_records_one_sided(self) -> None:
        self.notion.fail_on.add("link")
        baseline = _primed_baseline({})
        new_map = build_pair_map([_task("page-7")], [])
        with self.assertLogs("ferry.reconciler", level="ERROR"):
            report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(report.created, 1)
        self.assertEqual(report.errors, 1)
        self.assertEqual(new_map["|page-7"].state, "a_only")
        self.assertEqual(new_map["evt-new-1|page-7"].state, "b_only")

        baseline.replace(new_map)
        next_map = build_pair_map([_task("page-7")], [_event("evt-new-1", "page-7")])
        self.notion.calls.clear()
        self.morgen.calls.clear()
        self.reconciler.reconcile(next_map, baseline)
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(self.morgen.calls, [])

    def test_linked_task_whose_event_is_outside_window_is_not_duplicated(self) -> None:
        baseline = _primed_baseline({})
        new_map = build_pair_map([_task("page-1", "evt-1")], [])
        with self.assertLogs("ferry.reconciler", level="INFO"):
            report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(report.actions, [])
        self.assertEqual(new_map["evt-1|page-1"].state, "a_only")

        # Once the event enters the window the pair matches again without any writes.
        baseline.replace(new_map)
        next_map = build_pair_map([_task("page-1", "evt-1")], [_event("evt-1", "page-1")])
        report = self.reconciler.reconcile(next_map, baseline)
        self.assertEqual(report.changes_applied, 0)
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(self.morgen.calls, [])

    def test_tagged_event_whose_task_is_outside_window_is_not_duplicated(self) -> None:
        baseline = _primed_baseline({})
        new_map = build_pair_map([], [_event("evt-1", "page-1")])
        report = self.reconciler.reconcile(new_map, baseline)
        self.assertEqual(self.notion.calls, [])
        self.assertEqual(self.morgen.calls, [])
        self.assertEqual(report.created, 0)


if __name__ == "__main__":
    unittest.main()
