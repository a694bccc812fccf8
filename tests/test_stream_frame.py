from __future__ import annotations

from agentwire.engine.models import (
    ConversationTurn,
    ImageAttachment,
    StreamFrame,
    TurnMode,
    split_model,
)


def test_enveloped_frame_takes_session_from_part() -> None:
    frame = StreamFrame.from_payload({
        "directory": "/work",
        "payload": {
            "type": "message.part.updated",
            "properties": {"part": {"id": "p1", "sessionID": "ses_1", "type": "text", "text": "hi"}},
        },
    })
    assert frame.type == "message.part.updated"
    assert frame.session_id == "ses_1"
    assert frame.directory == "/work"
    assert frame.is_text_part
    assert frame.part["text"] == "hi"


def test_flat_frame_and_info_session() -> None:
    frame = StreamFrame.from_payload({
        "type": "message.updated",
        "properties": {"info": {"id": "msg_1", "sessionID": "ses_2", "role": "assistant"}},
    })
    assert frame.session_id == "ses_2"
    assert frame.dedup_key == "message.updated:msg_1"
    assert not frame.is_text_part


def test_properties_session_id_wins() -> None:
    frame = StreamFrame.from_payload({
        "payload": {"type": "session.idle", "properties": {"sessionID": "ses_3"}},
    })
    assert frame.session_id == "ses_3"
    assert frame.dedup_key == "session.idle:"


def test_frame_without_session() -> None:
    frame = StreamFrame.from_payload({"payload": {"type": "server.connected", "properties": None}})
    assert frame.session_id is None
    assert frame.properties == {}


def test_question_dedup_key_uses_request_id() -> None:
    frame = StreamFrame.from_payload({
        "payload": {"type": "question.asked", "properties": {"id": "que_1", "sessionID": "s"}},
    })
    assert frame.dedup_key == "question.asked:que_1"


def test_tool_dedup_key_includes_phase() -> None:
    frame = StreamFrame.from_payload({
        "payload": {"type": "message.part.updated", "properties": {"part": {
            "callID": "call_1", "type": "tool", "sessionID": "s",
            "state": {"status": "completed"},
        }}},
    })
    assert frame.dedup_key == "message.part.updated.tool.completed:call_1"


def test_mode_maps_onto_backend_modes() -> None:
    assert TurnMode.PLAN.backend_mode == "plan"
    assert {m.backend_mode for m in TurnMode if m is not TurnMode.PLAN} == {"build"}


def test_split_model() -> None:
    assert split_model("openai/gpt-4o", "opencode", "glm-4.7-free") == ("openai", "gpt-4o")
    assert split_model("gpt-4o", "opencode", "glm-4.7-free") == ("opencode", "gpt-4o")
    assert split_model(None, "opencode", "glm-4.7-free") == ("opencode", "glm-4.7-free")
    assert split_model("a/b/c", "x", "y") == ("a", "b/c")


def test_image_part_and_turn_defaults() -> None:
    image = ImageAttachment(base64_data="AAAA", media_type="image/png", filename="a.png")
    assert image.to_part() == {"type": "image", "mime": "image/png", "data": "AAAA"}
    turn = ConversationTurn(slot_id="s", prompt_text="hi")
    assert turn.mode is TurnMode.BUILD
    assert turn.turn_id
