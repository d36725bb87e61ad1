"""Versioned JSON state files.

Each local state document (conversations, commitments, session bookkeeping)
lives in its own file with a ``version`` stamp. A missing, unreadable or
differently-versioned file is replaced by a fresh default.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class VersionedStateFile:
    """Load/save a JSON document guarded by a schema version."""

    def __init__(self, path: Path, version: int, default_factory: Callable[[], dict[str, Any]]):
        self.path = Path(path)
        self.version = version
        self._default_factory = default_factory

    def default(self) -> dict[str, Any]:
        data = self._default_factory()
        data["version"] = self.version
        return data

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return self.default()
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable state file %s, resetting: %s", self.path, e)
            return self.default()
        if not isinstance(data, dict) or data.get("version") != self.version:
            logger.warning(
                "State file %s has version %r (expected %d), resetting",
                self.path,
                data.get("version") if isinstance(data, dict) else None,
                self.version,
            )
            return self.default()
        return data

    def save(self, data: dict[str, Any]) -> None:
        data = dict(data)
        data["version"] = self.version
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


# ============================================================================
# Session / ritual bookkeeping
# ============================================================================

SESSION_STATE_VERSION = 1


@dataclass
class SessionState:
    """Timestamps the scheduler needs across restarts (epoch seconds)."""

    last_post_at: float = 0.0
    last_reflection_at: float = 0.0
    last_heartbeat_at: float = 0.0
    last_engagement_check_at: float = 0.0
    engagement_likes: int = 0
    engagement_reposts: int = 0
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_post_at": self.last_post_at,
            "last_reflection_at": self.last_reflection_at,
            "last_heartbeat_at": self.last_heartbeat_at,
            "last_engagement_check_at": self.last_engagement_check_at,
            "engagement_likes": self.engagement_likes,
            "engagement_reposts": self.engagement_reposts,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        return cls(
            last_post_at=data.get("last_post_at", 0.0),
            last_reflection_at=data.get("last_reflection_at", 0.0),
            last_heartbeat_at=data.get("last_heartbeat_at", 0.0),
            last_engagement_check_at=data.get("last_engagement_check_at", 0.0),
            engagement_likes=data.get("engagement_likes", 0),
            engagement_reposts=data.get("engagement_reposts", 0),
            started_at=data.get("started_at", time.time()),
        )


class SessionStore:
    def __init__(self, path: Path):
        self._file = VersionedStateFile(path, SESSION_STATE_VERSION, dict)
        self.state = SessionState.from_dict(self._file.load())

    def save(self) -> None:
        self._file.save(self.state.to_dict())
