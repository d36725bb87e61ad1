"""PeerClaw configuration.

Changes:
  - 2026-03-02: Nested circular/conversation policies so thresholds are tunable per deployment.
  - 2026-02-20: Initial settings model. JSON file in ~/.peerclaw/config.json, env overrides.

Settings are resolved from (highest priority first):
  1. PEERCLAW_* environment variables (nested fields use "__", e.g. PEERCLAW_CIRCULAR__HIGH=5)
  2. ~/.peerclaw/config.json
  3. Defaults below
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


def get_config_dir() -> Path:
    """Get (and create) the PeerClaw state directory."""
    override = os.environ.get("PEERCLAW_HOME")
    config_dir = Path(override) if override else Path.home() / ".peerclaw"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


class CircularPolicy(BaseModel):
    """Thresholds for the circular-conversation heuristic.

    ``low``/``medium``/``high`` are the number of trailing acknowledgment-only
    messages needed to reach each confidence level, looking at most ``window``
    messages back. Levels listed in ``hard_block`` stop a response outright;
    anything lower is advisory.
    """

    window: int = 6
    low: int = 2
    medium: int = 3
    high: int = 4
    hard_block: list[str] = Field(default_factory=lambda: ["medium", "high"])


class ConversationPolicy(BaseModel):
    """Exit-pressure limits for casual (non work-linked) conversations."""

    max_our_replies: int = 4
    max_depth: int = 12
    disengaged_after_seconds: int = 30 * 60
    no_response_seconds: int = 60 * 60
    prune_after_seconds: int = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """PeerClaw settings."""

    model_config = SettingsConfigDict(
        env_prefix="PEERCLAW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Identity
    agent_name: str = "peerclaw"
    social_handle: str = ""
    code_host_login: str = ""
    owner_handle: str = ""
    peers: list[str] = Field(default_factory=list)  # code-host logins of peer agents
    social_peers: list[str] = Field(default_factory=list)  # social handles of peer agents

    # Work
    watched_repos: list[str] = Field(default_factory=list)  # "owner/repo"
    plan_label: str = "plan"
    self_repo_path: str | None = None
    announce_plan_completion: bool = True

    # Loop intervals (seconds, before jitter)
    awareness_interval: int = 45
    code_host_awareness_interval: int = 2 * 60
    plan_awareness_interval: int = 3 * 60
    session_refresh_interval: int = 15 * 60
    heartbeat_interval: int = 5 * 60
    version_check_interval: int = 5 * 60
    version_check_initial_delay: int = 30
    engagement_check_interval: int = 15 * 60
    expression_check_interval: int = 5 * 60
    reflection_check_interval: int = 30 * 60
    commitment_interval: int = 15

    # Expression / reflection pacing
    expression_min_gap: int = 3 * 60 * 60
    expression_max_gap: int = 4 * 60 * 60
    quiet_hours_start: int = 23
    quiet_hours_end: int = 7
    reflection_interval: int = 6 * 60 * 60
    notification_limit: int = 25
    seen_notifications_cap: int = 1000

    # Task pipeline
    stuck_task_timeout: int = 30 * 60
    max_task_retries: int = 3
    stuck_tracker_max_entries: int = 100
    test_timeout: int = 120
    git_timeout: int = 120

    # Commitments
    commitment_max_attempts: int = 3
    commitment_stale_after: int = 24 * 60 * 60
    commitment_retention: int = 7 * 24 * 60 * 60

    # Remote version check (empty URL disables the check)
    version_url: str = ""
    version_request_timeout: float = 15.0

    # Policies
    circular: CircularPolicy = Field(default_factory=CircularPolicy)
    conversation: ConversationPolicy = Field(default_factory=ConversationPolicy)

    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment beats values loaded from config.json
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)

    @property
    def state_dir(self) -> Path:
        return get_config_dir()

    @property
    def workrepos_dir(self) -> Path:
        path = self.state_dir / "workrepos"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @classmethod
    def load(cls) -> Settings:
        """Load settings from config.json, with env overrides applied on top."""
        path = get_config_path()
        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Failed to read %s, using defaults: %s", path, e)
                data = {}
        return cls(**data)

    def save(self) -> None:
        """Persist settings to config.json."""
        path = get_config_path()
        path.write_text(json.dumps(self.model_dump(mode="json"), indent=2))
        logger.info("Saved settings to %s", path)


_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None or force_reload:
        _settings = Settings.load()
    return _settings
