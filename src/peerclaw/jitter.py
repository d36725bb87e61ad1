"""Deterministic per-agent jitter.

Peers share notifications and plans, so identical timers would make them
poll and reply in lockstep. Each agent derives stable offsets from its own
name instead: same agent, same offsets, every restart.
"""

from __future__ import annotations

TIMER_JITTER_FRACTION = 0.12
RESPONSE_JITTER_MIN_MS = 15_000
RESPONSE_JITTER_SPAN_MS = 75_000


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _djb2(text: str) -> int:
    h = 5381
    for ch in text:
        h = _to_int32((h << 5) + h + ord(ch))
    return h


def timer_jitter(agent: str, timer: str, base: float) -> int:
    """Return ``base`` shifted by a stable offset within +/-12%.

    >>> timer_jitter("a", "awareness", 45_000) == timer_jitter("a", "awareness", 45_000)
    True
    """
    h = _djb2(f"{agent}:{timer}")
    normalized = (abs(h) % 2001 - 1000) / 1000
    return int(base + round(base * TIMER_JITTER_FRACTION * normalized))


def response_jitter_ms(agent: str) -> int:
    """Delay before composing a reply when peers may answer the same thread (15-90s)."""
    h = 0
    for ch in agent:
        h = _to_int32((h << 5) - h + ord(ch))
    return RESPONSE_JITTER_MIN_MS + abs(h) % RESPONSE_JITTER_SPAN_MS
