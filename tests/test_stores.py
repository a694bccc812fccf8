from __future__ import annotations

import json

from agentwire.shared.services.persistence import JsonTurnStore
from agentwire.shared.services.preferences import SqlitePreferenceStore


def test_session_id_round_trip(tmp_path) -> None:
    store = JsonTurnStore(tmp_path / "transcripts")
    assert store.load_session_id("chat-1") is None
    store.persist_session_id("chat-1", "ses_1")
    assert store.load_session_id("chat-1") == "ses_1"
    assert JsonTurnStore(tmp_path / "transcripts").load_session_id("chat-1") == "ses_1"


def test_turns_append_and_cap(tmp_path) -> None:
    store = JsonTurnStore(tmp_path, max_turns=2)
    for n in range(3):
        store.persist_turn("chat-1", {"turn_id": f"t{n}", "session_id": "ses_9"})
    assert [t["turn_id"] for t in store.load_turns("chat-1")] == ["t1", "t2"]
    assert store.load_session_id("chat-1") == "ses_9"
    assert not list(tmp_path.glob("*.tmp"))


def test_unsafe_slot_ids_stay_inside_base_dir(tmp_path) -> None:
    store = JsonTurnStore(tmp_path)
    store.persist_session_id("../../etc/passwd", "ses_1")
    files = list(tmp_path.iterdir())
    assert len(files) == 1
    assert files[0].parent == tmp_path
    assert store.load_session_id("../../etc/passwd") == "ses_1"


def test_corrupt_slot_file_starts_fresh(tmp_path) -> None:
    store = JsonTurnStore(tmp_path)
    (tmp_path / "chat-1.json").write_text("{not json")
    assert store.load_session_id("chat-1") is None
    store.persist_turn("chat-1", {"turn_id": "t1"})
    data = json.loads((tmp_path / "chat-1.json").read_text())
    assert data["slot_id"] == "chat-1"
    assert len(data["turns"]) == 1


def test_preference_upsert_and_usage(tmp_path) -> None:
    store = SqlitePreferenceStore(tmp_path / "db" / "preferences.db")
    assert store.get_preference("chat-1", "Which database?") is None

    created = store.upsert_preference(
        "chat-1", "Which database?", "PostgreSQL (Recommended)",
        question_header="Database", session_id="ses_1", request_id="que_1",
    )
    assert created.used_count == 0
    assert created.last_used_at is None

    used = store.upsert_preference(
        "chat-1", "Which database?", "PostgreSQL (Recommended)", increment_usage=True,
    )
    assert used.id == created.id
    assert used.used_count == 1
    assert used.last_used_at is not None
    assert used.question_header == "Database"
    assert used.session_id == "ses_1"


def test_preferences_are_per_slot(tmp_path) -> None:
    store = SqlitePreferenceStore(tmp_path / "preferences.db")
    store.upsert_preference("a", "Continue?", "yes")
    store.upsert_preference("b", "Continue?", "no")
    assert store.get_preference("a", "Continue?").answer_text == "yes"
    assert store.get_preference("b", "Continue?").answer_text == "no"

    assert store.delete_preferences("a") == 1
    assert store.get_preference("a", "Continue?") is None
    assert store.get_preference("b", "Continue?") is not None
