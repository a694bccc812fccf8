from __future__ import annotations

import pytest

from agentwire.engine.tool_translator import (
    ToolCallTranslator,
    detect_preview_url,
    language_for_path,
    normalize_tool_name,
)


@pytest.mark.parametrize(
    ("raw", "canonical"),
    [
        ("write_file", "Write"),
        ("force_write_to_file", "Write"),
        ("replace_file_content", "Edit"),
        ("multi_replace_file_content", "Edit"),
        ("read", "Read"),
        ("list_dir", "Glob"),
        ("find_by_name", "Glob"),
        ("grep_search", "Grep"),
        ("run_command", "Bash"),
        ("todowrite", "TodoWrite"),
        ("todoread", "TodoRead"),
        ("plan_enter", "PlanWrite"),
        ("exit_plan_mode", "ExitPlanMode"),
        ("webfetch", "WebFetch"),
        ("web_search", "WebSearch"),
        ("browser_subagent", "Task"),
        ("question", "AskUserQuestion"),
        ("preview_browser", "OpenBrowserPreview"),
        ("notebook_edit", "NotebookEdit"),
        ("reasoning", "Thinking"),
        ("codesearch", "CodeSearch"),
        ("context_summary", "ContextSummary"),
    ],
)
def test_alias_table(raw: str, canonical: str) -> None:
    assert normalize_tool_name(raw) == canonical


def test_lookup_is_case_insensitive_and_strips_mcp_prefix() -> None:
    assert normalize_tool_name("Write_File") == "Write"
    assert normalize_tool_name("mcp__orchestrator__file_read") == "Read"
    assert normalize_tool_name("TodoWrite") == "TodoWrite"


def test_unknown_names_pass_through() -> None:
    assert normalize_tool_name("frobnicate") == "frobnicate"
    assert normalize_tool_name("mcp__custom__deploy_app") == "deploy_app"


def test_translate_edit_normalizes_fields_and_keeps_originals() -> None:
    call = ToolCallTranslator().translate({
        "type": "tool", "tool": "replace_file_content", "callID": "call_1",
        "state": {"status": "running", "input": {
            "TargetFile": "/src/app.py",
            "targetContent": "old()",
            "replacementContent": "new()",
        }},
    })
    assert call.call_id == "call_1"
    assert call.canonical_name == "Edit"
    assert call.raw_name == "replace_file_content"
    assert call.normalized_input["file_path"] == "/src/app.py"
    assert call.normalized_input["old_string"] == "old()"
    assert call.normalized_input["new_string"] == "new()"
    assert call.normalized_input["targetContent"] == "old()"
    assert call.normalized_output is None


def test_read_output_gets_language() -> None:
    call = ToolCallTranslator().translate({
        "tool": "read", "callID": "c2",
        "state": {"status": "completed", "input": {"filePath": "/a/b/main.ts"}, "output": "export {}"},
    })
    assert call.normalized_output == {
        "content": "export {}", "path": "/a/b/main.ts", "language": "typescript",
    }


def test_error_state_sets_is_error() -> None:
    call = ToolCallTranslator().translate({
        "tool": "bash", "callID": "c3",
        "state": {"status": "error", "input": {"command": "false"}, "error": "exit 1"},
    })
    assert call.is_error is True
    assert call.normalized_output == {"error": "exit 1"}


def test_call_id_falls_back_to_part_id_then_message() -> None:
    translator = ToolCallTranslator()
    assert translator.translate({"tool": "read", "id": "prt_9"}).call_id == "prt_9"
    running = translator.translate({
        "tool": "read", "messageID": "msg_1", "state": {"status": "running"},
    })
    completed = translator.translate({
        "tool": "read", "messageID": "msg_1", "state": {"status": "completed", "output": "x"},
    })
    assert running.call_id == completed.call_id == "call-msg_1-read"


def test_string_input_is_parsed_as_json() -> None:
    call = ToolCallTranslator().translate({
        "tool": "bash", "callID": "c4", "state": {"status": "pending", "input": '{"cmd": "ls"}'},
    })
    assert call.normalized_input["command"] == "ls"


def test_browser_preview_signal_uses_port_then_default() -> None:
    translator = ToolCallTranslator()
    with_port = translator.translate({
        "tool": "open_browser_preview", "callID": "c5", "state": {"input": {"port": 8080}},
    })
    assert [s.url for s in with_port.signals] == ["http://localhost:8080"]

    bare = translator.translate({"tool": "browser_preview", "callID": "c6", "state": {"input": {}}})
    assert [s.url for s in bare.signals] == ["http://localhost:3000"]


def test_bash_output_port_detection_emits_signal() -> None:
    call = ToolCallTranslator().translate({
        "tool": "bash", "callID": "c7",
        "state": {"status": "completed", "input": {"command": "npm run dev"},
                  "output": "VITE ready\n  Local: http://localhost:5173/"},
    })
    assert [(s.kind, s.url) for s in call.signals] == [("preview_url", "http://localhost:5173")]


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("Server listening on port 8000", "http://localhost:8000"),
        ("App started on port 4200", "http://localhost:4200"),
        ("running on port 3001", "http://localhost:3001"),
        ({"stdout": "listening on 9000"}, "http://localhost:9000"),
        ("port 80 is privileged", None),
        ("nothing to see", None),
        (None, None),
    ],
)
def test_detect_preview_url(output, expected) -> None:
    assert detect_preview_url(output) == expected


@pytest.mark.parametrize(
    ("path", "language"),
    [
        ("x.py", "python"),
        ("x.TSX", "typescript"),
        ("x.yml", "yaml"),
        ("script.sh", "bash"),
        ("Makefile", "plaintext"),
    ],
)
def test_language_for_path(path: str, language: str) -> None:
    assert language_for_path(path) == language
