"""Single active mode.

The scheduler runs on one event loop, so exclusion is cooperative: a loop
that wants to change state calls ``try_enter`` and simply skips its cycle
when another mode already holds the controller.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    IDLE = "idle"
    AWARENESS = "awareness"
    RESPONDING = "responding"
    EXPRESSING = "expressing"
    REFLECTING = "reflecting"
    IMPROVING = "improving"
    PLATFORM_B_RESPONDING = "platformB_responding"
    TASK_EXECUTING = "task_executing"


class ModeController:
    """Holds the current mode. Only idle can be left; nothing overrides a busy mode."""

    def __init__(self):
        self._mode = Mode.IDLE

    @property
    def current(self) -> Mode:
        return self._mode

    @property
    def idle(self) -> bool:
        return self._mode == Mode.IDLE

    def try_enter(self, mode: Mode) -> bool:
        if mode == Mode.IDLE:
            raise ValueError("Use exit() to return to idle")
        if self._mode != Mode.IDLE:
            logger.debug("Mode %s busy, skipping %s", self._mode.value, mode.value)
            return False
        self._mode = mode
        return True

    def switch(self, current: Mode, new: Mode) -> bool:
        """Hand over from ``current`` to ``new`` without passing through idle."""
        if self._mode != current or new == Mode.IDLE:
            return False
        self._mode = new
        return True

    def exit(self, mode: Mode) -> None:
        if self._mode != mode:
            logger.warning("exit(%s) while in %s, ignoring", mode.value, self._mode.value)
            return
        self._mode = Mode.IDLE

    @asynccontextmanager
    async def active(self, mode: Mode) -> AsyncIterator[bool]:
        """Hold ``mode`` for the block. Yields False (and holds nothing) if busy."""
        entered = self.try_enter(mode)
        try:
            yield entered
        finally:
            if entered:
                self._mode = Mode.IDLE
