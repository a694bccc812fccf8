"""YAML configuration loader.

Loads a single YAML file on top of the ClientConfig defaults. When no
YAML is provided, env vars work exactly as before.

Example YAML:
    server:
      url: http://localhost:4096
      request_timeout_seconds: 30
      health_check_retries: 30
      health_check_delay_seconds: 1

    auth:
      username: opencode
      password: "${OPENCODE_SERVER_PASSWORD}"

    turn:
      default_model: anthropic/claude-sonnet-4-5
      default_provider: opencode
      session_title: Chat Session
      quiet_period_seconds: 30
      system_preamble: |
        Prefer small, reviewable changes.

    questions:
      cancel_reply_message: Cancelled by user
      positive_keywords: [recommended, stable, yes, continue]
      negative_keywords: [experimental, skip, cancel]

    storage:
      data_dir: ~/.agentwire

    logging:
      level: DEBUG
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import yaml

from .config import ClientConfig

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: str | None) -> str | None:
    """Expand ``${VAR}`` references from the environment.

    Unset variables expand to the empty string; an entirely empty result
    becomes None so unset credentials stay unset.
    """
    if value is None:
        return None
    expanded = _ENV_REF_RE.sub(lambda m: os.environ.get(m.group(1), ""), str(value))
    return expanded or None


def _keyword_list(raw: object, fallback: list[str]) -> list[str]:
    if raw is None:
        return list(fallback)
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        logger.warning("Ignoring non-list keyword setting: %r", raw)
        return list(fallback)
    cleaned: list[str] = []
    for item in raw:
        word = str(item).strip().lower()
        if word and word not in cleaned:
            cleaned.append(word)
    return cleaned


def load_yaml_config(path: str | Path) -> ClientConfig:
    """Load and parse a YAML config file into a ClientConfig."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error(
            "load_yaml_config: YAML parse error in %s: %s",
            path, exc
        )
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    defaults = ClientConfig()

    # ── Server ─────────────────────────────────────────────────
    server_raw = raw.get("server", {}) or {}
    auth_raw = raw.get("auth", {}) or {}
    turn_raw = raw.get("turn", {}) or {}
    questions_raw = raw.get("questions", {}) or {}
    storage_raw = raw.get("storage", {}) or {}
    logging_raw = raw.get("logging", {}) or {}

    data_dir = storage_raw.get("data_dir")
    if data_dir:
        data_dir = str(Path(os.path.expanduser(str(data_dir))))

    config = ClientConfig(
        server_url=str(server_raw.get("url", defaults.server_url)).rstrip("/"),
        request_timeout_seconds=float(server_raw.get(
            "request_timeout_seconds", defaults.request_timeout_seconds
        )),
        health_check_retries=int(server_raw.get(
            "health_check_retries", defaults.health_check_retries
        )),
        health_check_delay_seconds=float(server_raw.get(
            "health_check_delay_seconds", defaults.health_check_delay_seconds
        )),
        # ── Auth ───────────────────────────────────────────────
        username=_expand_env(auth_raw.get("username")),
        password=_expand_env(auth_raw.get("password")),
        # ── Turn ───────────────────────────────────────────────
        default_model=str(turn_raw.get("default_model", defaults.default_model)),
        default_provider=str(turn_raw.get(
            "default_provider", defaults.default_provider
        )),
        session_title=str(turn_raw.get("session_title", defaults.session_title)),
        quiet_period_seconds=float(turn_raw.get(
            "quiet_period_seconds", defaults.quiet_period_seconds
        )),
        system_preamble=turn_raw.get("system_preamble") or None,
        # ── Questions ──────────────────────────────────────────
        cancel_reply_message=str(questions_raw.get(
            "cancel_reply_message", defaults.cancel_reply_message
        )),
        positive_keywords=_keyword_list(
            questions_raw.get("positive_keywords"), defaults.positive_keywords
        ),
        negative_keywords=_keyword_list(
            questions_raw.get("negative_keywords"), defaults.negative_keywords
        ),
        # ── Storage / logging ──────────────────────────────────
        data_dir=data_dir or defaults.data_dir,
        log_level=str(logging_raw.get("level", defaults.log_level)),
    )

    logger.info(
        "Config loaded from %s: server=%s auth=%s model=%s/%s quiet_period=%ss data_dir=%s",
        path.name,
        config.server_url,
        "basic" if config.username and config.password else "none",
        config.default_provider,
        config.default_model,
        config.quiet_period_seconds,
        config.data_dir,
    )
    return config
