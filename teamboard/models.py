"""Domain models for users, projects and project teams."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the application database."""

    id: int
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class TeamEntry:
    """A single reference from a project's team list to a user.

    ``cached_name`` is the user's name captured when the entry was added and
    is never refreshed afterwards. ``display_name`` is resolved from the user
    table at read time and falls back to the cached value when the user row
    cannot be found.
    """

    user_id: int
    cached_name: str
    display_name: str


@dataclass(frozen=True)
class Project:
    """A project owned by a single manager."""

    id: int
    manager_id: int
    name: str
    description: str
    price: Optional[float]
    completed_jobs: str
    start_date: Optional[date]
    end_date: Optional[date]
    is_archived: bool
    created_at: datetime
    team: Tuple[TeamEntry, ...] = field(default_factory=tuple)


__all__ = ["Project", "TeamEntry", "User"]
