from __future__ import annotations

from agentwire.engine.text_reconciler import TextReconciler


def _deltas_by_id(results):
    out: dict[str, str] = {}
    for r in results:
        if r is not None:
            out[r.text_id] = out.get(r.text_id, "") + r.delta
    return out


def test_prefix_extensions_concatenate_to_final_snapshot() -> None:
    reconciler = TextReconciler()
    snapshots = ["H", "Hel", "Hello", "Hello", "Hello, wor", "Hello, world!"]
    results = [reconciler.reconcile("p1", s) for s in snapshots]

    assert _deltas_by_id(results) == {"p1": "Hello, world!"}
    assert results[0].started is True
    assert all(r is None or not r.started for r in results[1:])


def test_unchanged_snapshot_yields_nothing() -> None:
    reconciler = TextReconciler()
    reconciler.reconcile("p1", "Hello")
    assert reconciler.reconcile("p1", "Hello") is None


def test_hello_world_scenario() -> None:
    reconciler = TextReconciler()
    first = reconciler.reconcile("p1", "Hello")
    second = reconciler.reconcile("p1", "Hello world")

    assert (first.text_id, first.delta) == ("p1", "Hello")
    assert (second.text_id, second.delta) == ("p1", " world")


def test_empty_snapshot_is_ignored() -> None:
    reconciler = TextReconciler()
    assert reconciler.reconcile("p1", "") is None
    assert len(reconciler) == 0


def test_replacement_closes_old_id_and_restarts_with_full_text() -> None:
    reconciler = TextReconciler()
    reconciler.reconcile("p1", "Draft answer")
    replaced = reconciler.reconcile("p1", "Final answer")

    assert replaced.closed_text_id == "p1"
    assert replaced.started is True
    assert replaced.text_id == "p1#2"
    assert replaced.delta == "Final answer"

    more = reconciler.reconcile("p1", "Final answer, extended")
    assert (more.text_id, more.delta) == ("p1#2", ", extended")
    assert reconciler.text_of("p1") == "Final answer, extended"


def test_replacement_keeps_per_id_concatenation_invariant() -> None:
    reconciler = TextReconciler()
    results = [
        reconciler.reconcile("p1", s)
        for s in ["abc", "abcd", "xyz", "xyz!", "q", "qr"]
    ]
    assert _deltas_by_id(results) == {"p1": "abcd", "p1#2": "xyz!", "p1#3": "qr"}


def test_parts_are_tracked_independently() -> None:
    reconciler = TextReconciler()
    reconciler.reconcile("a", "one")
    reconciler.reconcile("b", "two")
    assert reconciler.reconcile("a", "one more").delta == " more"
    assert sorted(reconciler.open_text_ids()) == ["a", "b"]


def test_close_and_close_all_release_entries() -> None:
    reconciler = TextReconciler()
    reconciler.reconcile("a", "x")
    reconciler.reconcile("b", "y")
    reconciler.reconcile("b", "z")  # replaced -> b#2

    assert reconciler.close("a") == "a"
    assert reconciler.close("a") is None
    assert reconciler.close_all() == ["b#2"]
    assert len(reconciler) == 0
