"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via AGENTWIRE_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


DEFAULT_POSITIVE_KEYWORDS: tuple[str, ...] = (
    "standard", "recommended", "default", "stable",
    "production", "yes", "proceed", "continue",
)
DEFAULT_NEGATIVE_KEYWORDS: tuple[str, ...] = (
    "experimental", "beta", "skip", "no", "cancel", "unsafe",
)


@dataclass
class ClientConfig:
    """Streaming client configuration."""

    # Agent server
    server_url: str = "http://localhost:4096"
    username: str | None = None
    password: str | None = field(default=None, repr=False)

    # Model used when a turn does not name one. "provider/model" or bare id.
    default_model: str = "glm-4.7-free"
    default_provider: str = "opencode"
    session_title: str = "Chat Session"
    # Prepended to the turn's system prompt override when set.
    system_preamble: str | None = None

    # Per-request timeout for the short request/response calls.
    request_timeout_seconds: float = 30.0
    # Quiet period before a stalled turn gets a one-time advisory.
    quiet_period_seconds: float = 30.0
    # Readiness probing against /global/health.
    health_check_retries: int = 30
    health_check_delay_seconds: float = 1.0

    # Question auto-responder
    cancel_reply_message: str = "Cancelled by user"
    positive_keywords: list[str] = field(
        default_factory=lambda: list(DEFAULT_POSITIVE_KEYWORDS)
    )
    negative_keywords: list[str] = field(
        default_factory=lambda: list(DEFAULT_NEGATIVE_KEYWORDS)
    )

    # Storage for transcripts, session ids and question preferences
    data_dir: str = str(Path.home() / ".agentwire")

    # Logging
    log_level: str = "INFO"

    @property
    def transcripts_dir(self) -> Path:
        return Path(self.data_dir) / "transcripts"

    @property
    def preferences_db_path(self) -> Path:
        return Path(self.data_dir) / "preferences.db"

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load configuration from AGENTWIRE_* environment variables."""
        wire_vars = sorted(
            k for k in os.environ if k.startswith("AGENTWIRE_")
        )
        if wire_vars:
            # Names only; values may hold credentials.
            logger.info(
                "ClientConfig.from_env: AGENTWIRE_* env overrides: %s",
                ", ".join(wire_vars),
            )
        else:
            logger.debug("ClientConfig.from_env: no AGENTWIRE_* env vars set, using defaults")

        config = cls(
            server_url=os.getenv(
                "AGENTWIRE_SERVER_URL", cls.server_url
            ).rstrip("/"),
            username=os.getenv("AGENTWIRE_USERNAME") or None,
            password=os.getenv("AGENTWIRE_PASSWORD") or None,
            default_model=os.getenv(
                "AGENTWIRE_DEFAULT_MODEL", cls.default_model
            ),
            default_provider=os.getenv(
                "AGENTWIRE_DEFAULT_PROVIDER", cls.default_provider
            ),
            session_title=os.getenv(
                "AGENTWIRE_SESSION_TITLE", cls.session_title
            ),
            system_preamble=os.getenv("AGENTWIRE_SYSTEM_PREAMBLE") or None,
            request_timeout_seconds=float(os.getenv(
                "AGENTWIRE_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            quiet_period_seconds=float(os.getenv(
                "AGENTWIRE_QUIET_PERIOD", str(cls.quiet_period_seconds)
            )),
            health_check_retries=int(os.getenv(
                "AGENTWIRE_HEALTH_RETRIES", str(cls.health_check_retries)
            )),
            health_check_delay_seconds=float(os.getenv(
                "AGENTWIRE_HEALTH_DELAY", str(cls.health_check_delay_seconds)
            )),
            data_dir=os.getenv("AGENTWIRE_DATA_DIR") or str(Path.home() / ".agentwire"),
            log_level=os.getenv("AGENTWIRE_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ClientConfig.from_env: server=%s model=%s/%s data_dir=%s log_level=%s",
            config.server_url, config.default_provider, config.default_model,
            config.data_dir, config.log_level,
        )
        return config
