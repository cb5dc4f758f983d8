"""Exception types raised by the TeamBoard data and access layers."""

from __future__ import annotations


class TeamBoardError(Exception):
    """Base class for domain errors mapped to HTTP responses by the web layer."""


class NotAuthenticatedError(TeamBoardError):
    """Raised when an operation requires a logged-in session."""


class AccessDeniedError(TeamBoardError, PermissionError):
    """Raised when the caller lacks the role required for a project."""


class ProjectNotFoundError(TeamBoardError, KeyError):
    def __init__(self, project_id: object) -> None:
        super().__init__(project_id)
        self.project_id = project_id

    def __str__(self) -> str:
        return f"Project {self.project_id!r} not found"


class UserNotFoundError(TeamBoardError, KeyError):
    def __init__(self, user_id: object) -> None:
        super().__init__(user_id)
        self.user_id = user_id

    def __str__(self) -> str:
        return f"User {self.user_id!r} not found"


class DuplicateEmailError(TeamBoardError, ValueError):
    """Raised when registering an email address that is already in use."""


__all__ = [
    "AccessDeniedError",
    "DuplicateEmailError",
    "NotAuthenticatedError",
    "ProjectNotFoundError",
    "TeamBoardError",
    "UserNotFoundError",
]
