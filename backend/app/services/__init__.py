"""Application service helpers."""

from . import identity, pagination, sessions, messages, groups

__all__ = ["identity", "pagination", "sessions", "messages", "groups"]
