"""Normalizes backend tool calls into the canonical tool vocabulary.

The agent server reports tools under whatever name the underlying
model or plugin chose (``write_file``, ``replace_file_content``,
``mcp__fs__read``...). The UI only knows one name per capability, so
ingestion goes through an exhaustive alias table with an explicit
pass-through default for names we have never seen.

Adding a capability-specific argument normalizer requires only a single
decorated function:

    @input_normalizer(CanonicalTool.MY_TOOL)
    def _normalize_my_tool(args):
        return {"target": _first(args, "target", "Target")}
"""
from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CanonicalTool(str, Enum):
    """Tool names the UI renders."""
    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    GREP = "Grep"
    GLOB = "Glob"
    WEB_SEARCH = "WebSearch"
    WEB_FETCH = "WebFetch"
    TODO_WRITE = "TodoWrite"
    TODO_READ = "TodoRead"
    PLAN_WRITE = "PlanWrite"
    EXIT_PLAN_MODE = "ExitPlanMode"
    TASK = "Task"
    THINKING = "Thinking"
    ASK_USER_QUESTION = "AskUserQuestion"
    OPEN_BROWSER_PREVIEW = "OpenBrowserPreview"
    NOTEBOOK_EDIT = "NotebookEdit"
    SKILL = "Skill"
    PATCH = "Patch"
    BATCH = "Batch"
    CODE_SEARCH = "CodeSearch"
    LSP = "Lsp"
    CONTEXT_SUMMARY = "ContextSummary"


_TOOL_NAME_ALIASES: dict[str, CanonicalTool] = {
    # User interaction
    "question": CanonicalTool.ASK_USER_QUESTION,
    "askuserquestion": CanonicalTool.ASK_USER_QUESTION,
    "ask_user": CanonicalTool.ASK_USER_QUESTION,
    "request_user_input": CanonicalTool.ASK_USER_QUESTION,
    # File operations
    "write": CanonicalTool.WRITE,
    "write_file": CanonicalTool.WRITE,
    "file_write": CanonicalTool.WRITE,
    "write_to_file": CanonicalTool.WRITE,
    "force_write_to_file": CanonicalTool.WRITE,
    "create_file": CanonicalTool.WRITE,
    "edit": CanonicalTool.EDIT,
    "edit_file": CanonicalTool.EDIT,
    "file_edit": CanonicalTool.EDIT,
    "multiedit": CanonicalTool.EDIT,
    "replace_string": CanonicalTool.EDIT,
    "replace_file_content": CanonicalTool.EDIT,
    "multi_replace_file_content": CanonicalTool.EDIT,
    "read": CanonicalTool.READ,
    "read_file": CanonicalTool.READ,
    "file_read": CanonicalTool.READ,
    "read_file_content": CanonicalTool.READ,
    "view_file": CanonicalTool.READ,
    "glob": CanonicalTool.GLOB,
    "list": CanonicalTool.GLOB,
    "ls": CanonicalTool.GLOB,
    "list_files": CanonicalTool.GLOB,
    "list_dir": CanonicalTool.GLOB,
    "list_directory": CanonicalTool.GLOB,
    "find_files": CanonicalTool.GLOB,
    "find_by_name": CanonicalTool.GLOB,
    # Search
    "grep": CanonicalTool.GREP,
    "grep_search": CanonicalTool.GREP,
    "search_files": CanonicalTool.GREP,
    # Terminal
    "bash": CanonicalTool.BASH,
    "run_bash": CanonicalTool.BASH,
    "run_command": CanonicalTool.BASH,
    "run_shell_command": CanonicalTool.BASH,
    "send_command_input": CanonicalTool.BASH,
    "shell": CanonicalTool.BASH,
    # Planning & todos
    "todowrite": CanonicalTool.TODO_WRITE,
    "todo_write": CanonicalTool.TODO_WRITE,
    "todo": CanonicalTool.TODO_WRITE,
    "create_todo": CanonicalTool.TODO_WRITE,
    "update_todo": CanonicalTool.TODO_WRITE,
    "todoread": CanonicalTool.TODO_READ,
    "todo_read": CanonicalTool.TODO_READ,
    "plan": CanonicalTool.PLAN_WRITE,
    "plan_enter": CanonicalTool.PLAN_WRITE,
    "create_plan": CanonicalTool.PLAN_WRITE,
    "update_plan": CanonicalTool.PLAN_WRITE,
    "plan_exit": CanonicalTool.EXIT_PLAN_MODE,
    "exit_plan_mode": CanonicalTool.EXIT_PLAN_MODE,
    "exitplanmode": CanonicalTool.EXIT_PLAN_MODE,
    # Web
    "websearch": CanonicalTool.WEB_SEARCH,
    "web_search": CanonicalTool.WEB_SEARCH,
    "search_web": CanonicalTool.WEB_SEARCH,
    "webfetch": CanonicalTool.WEB_FETCH,
    "web_fetch": CanonicalTool.WEB_FETCH,
    "fetch_url": CanonicalTool.WEB_FETCH,
    "read_url_content": CanonicalTool.WEB_FETCH,
    # Sub-agents
    "task": CanonicalTool.TASK,
    "agent": CanonicalTool.TASK,
    "browser_subagent": CanonicalTool.TASK,
    # Browser preview
    "open_browser_preview": CanonicalTool.OPEN_BROWSER_PREVIEW,
    "browser_preview": CanonicalTool.OPEN_BROWSER_PREVIEW,
    "preview_browser": CanonicalTool.OPEN_BROWSER_PREVIEW,
    # Notebook
    "notebook_edit": CanonicalTool.NOTEBOOK_EDIT,
    "notebookedit": CanonicalTool.NOTEBOOK_EDIT,
    # System
    "reasoning": CanonicalTool.THINKING,
    "thinking": CanonicalTool.THINKING,
    "skill": CanonicalTool.SKILL,
    "patch": CanonicalTool.PATCH,
    "apply_patch": CanonicalTool.PATCH,
    "batch": CanonicalTool.BATCH,
    "codesearch": CanonicalTool.CODE_SEARCH,
    "code_search": CanonicalTool.CODE_SEARCH,
    "lsp": CanonicalTool.LSP,
    "context_summary": CanonicalTool.CONTEXT_SUMMARY,
}


def normalize_tool_name(tool_name: str) -> str:
    """Map a backend tool identifier to its canonical name.

    Strips ``mcp__<server>__`` prefixes and matches case-insensitively.
    Unknown identifiers pass through unchanged.
    """
    if not tool_name:
        return ""
    bare_name = tool_name
    if bare_name.startswith("mcp__") and bare_name.count("__") >= 2:
        bare_name = bare_name.split("__", 2)[2]
    canonical = _TOOL_NAME_ALIASES.get(bare_name.lower())
    if canonical is not None:
        return canonical.value
    # Already-canonical names ("Read", "TodoWrite") map to themselves.
    for member in CanonicalTool:
        if member.value.lower() == bare_name.lower():
            return member.value
    return bare_name


# ── Output helpers ──

_LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "php": "php",
    "swift": "swift",
    "kt": "kotlin",
    "md": "markdown",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "xml": "xml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sql": "sql",
    "sh": "bash",
    "bash": "bash",
}


def language_for_path(file_path: str) -> str:
    """Syntax-highlighting language for *file_path* (``plaintext`` if unknown)."""
    _, ext = os.path.splitext(file_path or "")
    return _LANGUAGE_BY_EXTENSION.get(ext.lstrip(".").lower(), "plaintext")


# Dev-server announcements, most specific first.
_PORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"listening on (?:port )?(\d+)", re.IGNORECASE),
    re.compile(r"started on port (\d+)", re.IGNORECASE),
    re.compile(r"running on (?:http://localhost:|port )(\d+)", re.IGNORECASE),
    re.compile(r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0):(\d+)", re.IGNORECASE),
    re.compile(r"localhost:(\d+)", re.IGNORECASE),
    re.compile(r":(\d{4,5})\b"),
)

DEFAULT_PREVIEW_URL = "http://localhost:3000"


def detect_preview_url(output: Any) -> str | None:
    """Best-effort dev-server URL from command output. Never raises."""
    try:
        text = _output_text(output)
        if not text:
            return None
        for pattern in _PORT_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            port = int(match.group(1))
            if 1000 <= port <= 65535:
                return f"http://localhost:{port}"
    except Exception:
        logger.debug("Preview URL detection failed", exc_info=True)
    return None


def _output_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        for key in ("stdout", "output", "stderr", "content"):
            value = output.get(key)
            if isinstance(value, str) and value:
                return value
        return ""
    return str(output)


def _first(args: dict[str, Any], *keys: str) -> Any:
    """First present, non-empty value among *keys*."""
    for key in keys:
        value = args.get(key)
        if value is not None and value != "":
            return value
    return None


# ── Input normalizer registry ──

_NORMALIZERS: dict[CanonicalTool, Callable[[dict[str, Any]], dict[str, Any]]] = {}


def input_normalizer(tool: CanonicalTool):
    """Decorator to register an argument normalizer for a canonical tool."""

    def decorator(fn: Callable[[dict[str, Any]], dict[str, Any]]):
        _NORMALIZERS[tool] = fn
        return fn

    return decorator


@input_normalizer(CanonicalTool.READ)
def _normalize_read(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "file_path": _first(args, "filePath", "file_path", "path", "AbsolutePath", "target_file"),
        "offset": _first(args, "offset", "StartLine"),
        "limit": _first(args, "limit"),
    }


@input_normalizer(CanonicalTool.WRITE)
def _normalize_write(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "file_path": _first(args, "filePath", "file_path", "path", "TargetFile", "target_file"),
        "content": _first(args, "content", "contents", "CodeContent", "text"),
    }


@input_normalizer(CanonicalTool.EDIT)
def _normalize_edit(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "file_path": _first(args, "filePath", "file_path", "path", "TargetFile", "target_file"),
        "old_string": _first(args, "oldString", "old_string", "targetContent", "TargetContent"),
        "new_string": _first(
            args, "newString", "new_string", "replacementContent", "ReplacementContent",
        ),
        "replace_all": bool(_first(args, "replaceAll", "replace_all", "AllowMultiple") or False),
    }


@input_normalizer(CanonicalTool.BASH)
def _normalize_bash(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "command": _first(args, "command", "cmd", "CommandLine", "input", "Input"),
        "description": _first(args, "description", "Description"),
        "cwd": _first(args, "workdir", "cwd", "Cwd"),
        "timeout": _first(args, "timeout", "WaitMsBeforeAsync"),
    }


@input_normalizer(CanonicalTool.GREP)
def _normalize_grep(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "pattern": _first(args, "pattern", "query", "Query", "regex"),
        "path": _first(args, "path", "SearchPath", "directory"),
        "include": _first(args, "include", "glob", "Includes"),
    }


@input_normalizer(CanonicalTool.GLOB)
def _normalize_glob(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "pattern": _first(args, "pattern", "glob", "Pattern"),
        "path": _first(
            args, "path", "directory", "DirectoryPath", "SearchDirectory", "dir",
        ),
    }


@input_normalizer(CanonicalTool.WEB_SEARCH)
def _normalize_web_search(args: dict[str, Any]) -> dict[str, Any]:
    return {"query": _first(args, "query", "Query", "q")}


@input_normalizer(CanonicalTool.WEB_FETCH)
def _normalize_web_fetch(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "url": _first(args, "url", "Url", "uri"),
        "format": _first(args, "format"),
        "prompt": _first(args, "prompt"),
    }


@input_normalizer(CanonicalTool.TODO_WRITE)
def _normalize_todo_write(args: dict[str, Any]) -> dict[str, Any]:
    raw_todos = _first(args, "todos", "items", "Todos")
    todos: list[dict[str, Any]] = []
    if isinstance(raw_todos, list):
        for index, item in enumerate(raw_todos):
            if isinstance(item, str):
                todos.append({"id": str(index + 1), "content": item, "status": "pending"})
            elif isinstance(item, dict):
                todos.append({
                    "id": str(_first(item, "id") or index + 1),
                    "content": _first(item, "content", "text", "title") or "",
                    "status": _first(item, "status", "state") or "pending",
                    "priority": _first(item, "priority"),
                })
    return {"todos": todos}


@input_normalizer(CanonicalTool.TASK)
def _normalize_task(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "description": _first(args, "description", "Description", "TaskName"),
        "prompt": _first(args, "prompt", "Task", "task"),
        "subagent_type": _first(args, "subagentType", "subagent_type", "agent"),
    }


@input_normalizer(CanonicalTool.OPEN_BROWSER_PREVIEW)
def _normalize_browser_preview(args: dict[str, Any]) -> dict[str, Any]:
    url = _first(args, "url", "url_path", "Url")
    port = _first(args, "port", "Port")
    if not url and port:
        url = f"http://localhost:{port}"
    return {"url": url or DEFAULT_PREVIEW_URL}


# ── Translation ──


@dataclass
class ToolSignal:
    """Out-of-band side effect the UI must react to while the turn streams."""
    kind: str
    url: str | None = None


@dataclass
class TranslatedToolCall:
    call_id: str
    canonical_name: str
    raw_name: str
    normalized_input: dict[str, Any] = field(default_factory=dict)
    normalized_output: Any = None
    status: str = ""
    is_error: bool = False
    title: str | None = None
    signals: list[ToolSignal] = field(default_factory=list)

    @property
    def has_output(self) -> bool:
        return self.normalized_output is not None


class ToolCallTranslator:
    """Stateless translator from raw tool parts to canonical tool calls."""

    def translate(self, raw_tool: dict[str, Any]) -> TranslatedToolCall:
        raw_name = str(raw_tool.get("tool") or raw_tool.get("name") or "unknown")
        canonical_name = normalize_tool_name(raw_name)
        call_id = str(raw_tool.get("callID") or raw_tool.get("id") or self._fallback_call_id(raw_tool, raw_name))
        state = raw_tool.get("state")
        if not isinstance(state, dict):
            state = {}
        raw_input = state.get("input", raw_tool.get("input"))
        raw_input = self._coerce_input(raw_input)
        status = str(state.get("status") or "")

        normalized_input = self.normalize_input(canonical_name, raw_input)
        call = TranslatedToolCall(
            call_id=call_id,
            canonical_name=canonical_name,
            raw_name=raw_name,
            normalized_input=normalized_input,
            status=status,
            title=state.get("title"),
        )

        if status == "error":
            call.is_error = True
            call.normalized_output = {"error": str(state.get("error") or "Tool call failed")}
        elif state.get("output") is not None:
            call.normalized_output = self.normalize_output(
                canonical_name, normalized_input, state["output"],
            )

        call.signals = self._signals(call)
        return call

    @staticmethod
    def _fallback_call_id(raw_tool: dict[str, Any], raw_name: str) -> str:
        # Stable across updates of the same part so they merge into one call.
        message_id = raw_tool.get("messageID") or raw_tool.get("sessionID") or "unknown"
        return f"call-{message_id}-{raw_name}"

    @staticmethod
    def _coerce_input(raw_input: Any) -> dict[str, Any]:
        if raw_input is None:
            return {}
        if isinstance(raw_input, dict):
            return raw_input
        if isinstance(raw_input, str):
            try:
                parsed = json.loads(raw_input)
            except (json.JSONDecodeError, TypeError):
                return {"_raw": raw_input}
            if isinstance(parsed, dict):
                return parsed
        return {"_raw": raw_input}

    @staticmethod
    def normalize_input(canonical_name: str, raw_input: dict[str, Any]) -> dict[str, Any]:
        """Merge canonical fields over the raw arguments.

        Raw fields are kept so nothing the backend sent is lost; canonical
        fields that resolved to nothing are omitted.
        """
        try:
            tool = CanonicalTool(canonical_name)
        except ValueError:
            return dict(raw_input)
        normalizer = _NORMALIZERS.get(tool)
        if normalizer is None:
            return dict(raw_input)
        canonical = {k: v for k, v in normalizer(raw_input).items() if v is not None}
        return {**raw_input, **canonical}

    @staticmethod
    def normalize_output(
        canonical_name: str,
        normalized_input: dict[str, Any],
        output: Any,
    ) -> Any:
        if canonical_name == CanonicalTool.READ.value and isinstance(output, str):
            file_path = normalized_input.get("file_path") or "file"
            return {
                "content": output,
                "path": file_path,
                "language": language_for_path(str(file_path)),
            }
        if canonical_name == CanonicalTool.BASH.value and isinstance(output, str):
            return {"stdout": output}
        return output

    @staticmethod
    def _signals(call: TranslatedToolCall) -> list[ToolSignal]:
        if call.canonical_name == CanonicalTool.OPEN_BROWSER_PREVIEW.value:
            return [ToolSignal(kind="preview_url", url=call.normalized_input.get("url"))]
        if call.canonical_name == CanonicalTool.BASH.value and call.has_output:
            url = detect_preview_url(call.normalized_output)
            if url:
                logger.info("Detected dev server %s in %s output", url, call.call_id)
                return [ToolSignal(kind="preview_url", url=url)]
        return []
