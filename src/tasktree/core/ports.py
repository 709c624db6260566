# src/tasktree/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) at the edges of the core.

Date resolution is a pure function handed to the metadata parser and the
synchronizer, so tests can pin "today" or swap the resolver entirely.
"""

from datetime import date
from typing import Protocol


class DateResolver(Protocol):
    """Map a due-date token (without '@') to an absolute date, or None."""

    def __call__(self, token: str, today: date | None = None) -> date | None: ...
