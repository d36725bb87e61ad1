"""PeerClaw - control core for a self-coordinating social and coding agent.

Independent agent processes ("peers") share no database. They coordinate through
plan issues on the code host, stagger themselves with deterministic jitter, and
keep local JSON state for conversations and promised follow-ups.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
