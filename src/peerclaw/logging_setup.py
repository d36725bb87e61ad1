"""
Console logging setup using Rich.

Created: 2026-02-20
Changes:
  - 2026-02-24: SecretFilter covers code-host tokens and social app passwords.
  - Initial setup with Rich console handler.
"""

import logging
import re

from rich.console import Console
from rich.logging import RichHandler

# Patterns that match known token / credential formats
_SECRET_PATTERNS = [
    re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"),  # GitHub classic tokens
    re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),  # GitHub fine-grained tokens
    re.compile(r"\b[a-z0-9]{4}-[a-z0-9]{4}-[a-z0-9]{4}-[a-z0-9]{4}\b"),  # app passwords
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]{16,}"),
    re.compile(r"sk-ant-[a-zA-Z0-9_-]+"),  # Anthropic
    re.compile(r"sk-[a-zA-Z0-9_-]{20,}"),  # OpenAI
]

REDACTED = "***REDACTED***"


def scrub(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


class SecretFilter(logging.Filter):
    """Scrub credential patterns from log output."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(scrub(a) if isinstance(a, str) else a for a in record.args)
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure logging with a Rich handler on stderr.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    console = Console(stderr=True)
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        markup=False,
    )
    # Handler-level so records propagated from module loggers are scrubbed too
    handler.addFilter(SecretFilter())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
