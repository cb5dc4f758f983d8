"""Session context and project role checks.

Handlers never read identity from shared state. The web layer resolves a
:class:`SessionContext` from the signed session cookie for each request and
passes it explicitly to the checks below, which decide access from the
project record alone rather than from the URL that was used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import AccessDeniedError, NotAuthenticatedError
from .models import Project


@dataclass(frozen=True)
class SessionContext:
    """Authenticated identity attached to a single request."""

    user_id: Optional[int] = None

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None

    @classmethod
    def anonymous(cls) -> "SessionContext":
        return cls(user_id=None)


def require_session(session: SessionContext) -> int:
    """Return the caller's user id or raise :class:`NotAuthenticatedError`."""

    if session.user_id is None:
        raise NotAuthenticatedError("Login required")
    return session.user_id


def is_manager(user_id: Optional[int], project: Project) -> bool:
    return user_id is not None and project.manager_id == user_id


def is_member(user_id: Optional[int], project: Project) -> bool:
    return user_id is not None and any(entry.user_id == user_id for entry in project.team)


def ensure_manager(session: SessionContext, project: Project) -> int:
    """Require the caller to manage ``project`` (full edit, delete, team changes)."""

    user_id = require_session(session)
    if not is_manager(user_id, project):
        raise AccessDeniedError(f"Only the project manager may modify project {project.id}")
    return user_id


def ensure_member(session: SessionContext, project: Project) -> int:
    """Require the caller to be on the team of ``project`` (completed-jobs edit)."""

    user_id = require_session(session)
    if not is_member(user_id, project):
        raise AccessDeniedError(f"Only team members may update project {project.id}")
    return user_id


__all__ = [
    "SessionContext",
    "ensure_manager",
    "ensure_member",
    "is_manager",
    "is_member",
    "require_session",
]
