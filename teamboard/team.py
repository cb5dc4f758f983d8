"""Team membership updates for projects."""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence, Tuple

from .access import SessionContext, ensure_manager, require_session
from .database import Database
from .errors import UserNotFoundError
from .models import Project, User

logger = logging.getLogger("teamboard.team")

TEAM_MEMBER_FIELD_PREFIX = "teamMember_"


def extract_candidate_ids(form_items: Iterable[Tuple[str, object]]) -> List[str]:
    """Return the values of every ``teamMember_*`` field in submission order."""

    candidates: List[str] = []
    for key, value in form_items:
        if not key.startswith(TEAM_MEMBER_FIELD_PREFIX):
            continue
        if not isinstance(value, str):
            continue
        cleaned = value.strip()
        if cleaned:
            candidates.append(cleaned)
    return candidates


def _resolve_user(database: Database, candidate: object) -> User:
    try:
        user_id = int(candidate)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        raise UserNotFoundError(candidate) from None
    user = database.get_user(user_id)
    if user is None:
        raise UserNotFoundError(candidate)
    return user


def add_members(
    database: Database,
    project_id: int,
    session: SessionContext,
    candidate_ids: Sequence[object],
) -> Project:
    """Append the candidate users to the project's team.

    Every candidate is resolved before anything is written, so an unknown id
    leaves the team unchanged. Duplicate references are kept as submitted.
    """

    require_session(session)
    project = database.require_project(project_id)
    user_id = ensure_manager(session, project)

    users = [_resolve_user(database, candidate) for candidate in candidate_ids]
    if not users:
        return project

    updated = database.add_team_members(project.id, users)
    logger.info(
        "User %s added %d team member(s) to project %s: %s",
        user_id,
        len(users),
        project.id,
        ", ".join(str(user.id) for user in users),
    )
    return updated


__all__ = ["TEAM_MEMBER_FIELD_PREFIX", "add_members", "extract_candidate_ids"]
