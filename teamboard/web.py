"""Browser-based interface for TeamBoard projects and teams."""
from __future__ import annotations

import logging
import math
import sqlite3
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from fastapi import Depends, FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from .access import SessionContext, ensure_manager, ensure_member, is_manager, is_member, require_session
from .config import AppSettings, load_settings
from .database import Database
from .errors import (
    AccessDeniedError,
    DuplicateEmailError,
    NotAuthenticatedError,
    ProjectNotFoundError,
    TeamBoardError,
    UserNotFoundError,
)
from .models import Project
from .team import add_members, extract_candidate_ids

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

_TRUTHY_FLAGS = {"yes", "true", "on", "1"}

logger = logging.getLogger("teamboard.web")


def format_calendar_date(value: Optional[date]) -> str:
    """Render a date as ``YYYY-MM-DD`` for ``<input type="date">`` fields."""

    if value is None:
        return ""
    return value.isoformat()


def _form_text(form: Mapping[str, Any], key: str) -> Optional[str]:
    value = form.get(key)
    if value is None or not isinstance(value, str):
        return None
    return value


def _parse_price(raw: str) -> Optional[float]:
    cleaned = raw.strip()
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        raise ValueError("Price must be a number.") from None
    if not math.isfinite(value):
        raise ValueError("Price must be a finite number.")
    if value < 0:
        raise ValueError("Price must not be negative.")
    return value


def _parse_date(raw: str, label: str) -> Optional[date]:
    cleaned = raw.strip()
    if not cleaned:
        return None
    try:
        # Accept full ISO timestamps as well; the time of day is dropped.
        return date.fromisoformat(cleaned[:10])
    except ValueError:
        raise ValueError(f"{label} must be a date in YYYY-MM-DD format.") from None


def _parse_archived(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY_FLAGS


def parse_project_form(
    form: Mapping[str, Any], existing: Optional[Project] = None
) -> Dict[str, object]:
    """Extract the project fields present in ``form``.

    Fields that were not submitted are left out so that updates only touch
    what the user actually sent. When ``existing`` is given, a date that was
    not submitted is taken from it for the end-before-start check.
    """

    fields: Dict[str, object] = {}

    for key in ("name", "description", "completed_jobs"):
        value = _form_text(form, key)
        if value is not None:
            fields[key] = value.strip()

    price = _form_text(form, "price")
    if price is not None:
        fields["price"] = _parse_price(price)

    for key, label in (("start_date", "Start date"), ("end_date", "End date")):
        value = _form_text(form, key)
        if value is not None:
            fields[key] = _parse_date(value, label)

    archived = _form_text(form, "is_archived")
    if archived is not None:
        fields["is_archived"] = _parse_archived(archived)

    start = fields.get("start_date")
    end = fields.get("end_date")
    if existing is not None:
        if "start_date" not in fields:
            start = existing.start_date
        if "end_date" not in fields:
            end = existing.end_date
    if isinstance(start, date) and isinstance(end, date) and end < start:
        raise ValueError("End date must not be before the start date.")

    return fields


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[AppSettings] = None,
    session_secret: Optional[str] = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the TeamBoard web application."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if session_secret is None:
        session_secret = settings.session_secret
    if not session_secret:
        raise RuntimeError("TEAMBOARD_SESSION_SECRET must be configured to use the web interface")

    app = FastAPI(
        title="TeamBoard",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.settings = settings

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie=settings.session_cookie,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=settings.session_max_age,
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["calendar_date"] = format_calendar_date
    templates.env.globals["is_manager"] = is_manager
    templates.env.globals["is_member"] = is_member

    def _current_session(request: Request) -> SessionContext:
        if not request.session.get("is_logged_in"):
            return SessionContext.anonymous()
        try:
            user_id = int(request.session.get("user_id"))
        except (TypeError, ValueError):
            request.session.clear()
            return SessionContext.anonymous()
        if database.get_user(user_id) is None:
            request.session.clear()
            return SessionContext.anonymous()
        return SessionContext(user_id=user_id)

    def _redirect(request: Request, route_name: str) -> RedirectResponse:
        return RedirectResponse(
            request.url_for(route_name),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    def _redirect_to_login(request: Request) -> RedirectResponse:
        return _redirect(request, "show_login")

    def _error_response(request: Request, exc: Exception, *, action: str) -> Response:
        if isinstance(exc, NotAuthenticatedError):
            return _redirect_to_login(request)
        if isinstance(exc, ProjectNotFoundError):
            return PlainTextResponse("Project not found", status_code=status.HTTP_404_NOT_FOUND)
        if isinstance(exc, UserNotFoundError):
            return PlainTextResponse("User not found", status_code=status.HTTP_404_NOT_FOUND)
        if isinstance(exc, AccessDeniedError):
            return PlainTextResponse(str(exc), status_code=status.HTTP_403_FORBIDDEN)
        if isinstance(exc, DuplicateEmailError):
            return PlainTextResponse(
                "User with this email already exists.",
                status_code=status.HTTP_409_CONFLICT,
            )
        if isinstance(exc, ValueError):
            return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)
        logger.exception("Error %s", action)
        return PlainTextResponse(
            "Internal Server Error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    def _render_projects(
        request: Request,
        template: str,
        projects: List[Project],
        user_id: int,
        *,
        empty_message: str,
    ):
        return templates.TemplateResponse(
            request,
            template,
            {"projects": projects, "user_id": user_id, "empty_message": empty_message},
        )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse, name="index")
    async def index(request: Request, session: SessionContext = Depends(_current_session)):
        if not session.is_logged_in:
            return _redirect_to_login(request)
        user = database.get_user(session.user_id)
        return templates.TemplateResponse(request, "index.html", {"user": user})

    @app.get("/my-projects", response_class=HTMLResponse, name="my_projects")
    async def my_projects(request: Request, session: SessionContext = Depends(_current_session)):
        try:
            user_id = require_session(session)
            projects = database.list_projects_for_manager(user_id)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching managed projects")
        return _render_projects(
            request,
            "my_projects.html",
            projects,
            user_id,
            empty_message="You have not created any projects yet.",
        )

    @app.get("/part-of-projects", response_class=HTMLResponse, name="part_of_projects")
    async def part_of_projects(
        request: Request, session: SessionContext = Depends(_current_session)
    ):
        try:
            user_id = require_session(session)
            projects = database.list_projects_for_member(user_id)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching team projects")
        return _render_projects(
            request,
            "part_of_projects.html",
            projects,
            user_id,
            empty_message="You are not on any project teams.",
        )

    @app.get("/register", response_class=HTMLResponse, name="show_register")
    async def register_form(request: Request, session: SessionContext = Depends(_current_session)):
        if session.is_logged_in:
            return _redirect(request, "index")
        return templates.TemplateResponse(request, "register.html", {})

    @app.post("/register", name="process_register")
    async def process_register(
        request: Request,
        name: str = Form(...),
        email: str = Form(...),
        password: str = Form(...),
    ):
        try:
            user = database.create_user(name, email, password)
        except (ValueError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="registering user")

        logger.info("User %s registered successfully (%s)", user.id, user.email)
        return _redirect_to_login(request)

    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request, session: SessionContext = Depends(_current_session)):
        if session.is_logged_in:
            return _redirect(request, "index")
        return templates.TemplateResponse(request, "login.html", {})

    @app.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(...), password: str = Form(...)):
        try:
            user = database.get_user_by_email(email)
            if user is None:
                return PlainTextResponse("User not found", status_code=status.HTTP_404_NOT_FOUND)
            if not database.verify_user_password(user.id, password):
                return PlainTextResponse(
                    "Wrong email or password",
                    status_code=status.HTTP_401_UNAUTHORIZED,
                )
        except sqlite3.Error as exc:
            return _error_response(request, exc, action="logging in")

        request.session.clear()
        request.session["is_logged_in"] = True
        request.session["user_id"] = user.id
        logger.info("User %s logged in successfully", user.id)
        return _redirect(request, "index")

    @app.get("/logout", name="logout")
    async def logout(request: Request):
        request.session.clear()
        return _redirect_to_login(request)

    @app.get("/add-project", response_class=HTMLResponse, name="show_add_project")
    async def add_project_form(
        request: Request, session: SessionContext = Depends(_current_session)
    ):
        if not session.is_logged_in:
            return _redirect_to_login(request)
        return templates.TemplateResponse(request, "add_project.html", {})

    @app.post("/add-project", name="process_add_project")
    async def process_add_project(
        request: Request, session: SessionContext = Depends(_current_session)
    ):
        try:
            manager_id = require_session(session)
            fields = parse_project_form(await request.form())
            if not fields.get("name"):
                raise ValueError("Project name must not be empty.")
            project = database.create_project(manager_id, **fields)
        except (TeamBoardError, ValueError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="saving project")

        logger.info("User %s created project %s", manager_id, project.id)
        return _redirect(request, "my_projects")

    @app.get("/edit-project/{project_id}", response_class=HTMLResponse, name="show_edit_project")
    async def edit_project_form(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            ensure_manager(session, project)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching project for edit")
        return templates.TemplateResponse(
            request,
            "edit_project.html",
            {
                "project": project,
                "start_date": format_calendar_date(project.start_date),
                "end_date": format_calendar_date(project.end_date),
            },
        )

    @app.post("/edit-project/{project_id}", name="process_edit_project")
    async def process_edit_project(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            user_id = ensure_manager(session, project)
            fields = parse_project_form(await request.form(), project)
            if "name" in fields and not fields["name"]:
                raise ValueError("Project name must not be empty.")
            database.update_project(project.id, **fields)
        except (TeamBoardError, ValueError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="updating project")

        logger.info("User %s updated project %s (%s)", user_id, project.id, ", ".join(sorted(fields)))
        return _redirect(request, "my_projects")

    @app.get(
        "/edit-project-user/{project_id}",
        response_class=HTMLResponse,
        name="show_edit_project_user",
    )
    async def edit_project_user_form(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            ensure_member(session, project)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching project")
        return templates.TemplateResponse(
            request,
            "edit_project_user.html",
            {
                "project": project,
                "start_date": format_calendar_date(project.start_date),
                "end_date": format_calendar_date(project.end_date),
            },
        )

    @app.post("/edit-project-user/{project_id}", name="process_edit_project_user")
    async def process_edit_project_user(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            user_id = ensure_member(session, project)
            form = await request.form()
            # Team members may only change the completed-jobs notes.
            completed_jobs = _form_text(form, "completed_jobs")
            if completed_jobs is not None:
                database.update_project(project.id, completed_jobs=completed_jobs.strip())
        except (TeamBoardError, ValueError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="updating project")

        logger.info("Team member %s updated completed jobs on project %s", user_id, project.id)
        return _redirect(request, "part_of_projects")

    @app.get("/archive", response_class=HTMLResponse, name="archive")
    async def archive(request: Request, session: SessionContext = Depends(_current_session)):
        try:
            user_id = require_session(session)
            projects = database.list_archived_projects(user_id)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching archived projects")
        return _render_projects(
            request,
            "archive.html",
            projects,
            user_id,
            empty_message="No archived projects.",
        )

    @app.post("/delete-project/{project_id}", name="delete_project")
    async def delete_project(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            user_id = ensure_manager(session, project)
            database.delete_project(project.id)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="deleting project")

        logger.info("User %s deleted project %s", user_id, project.id)
        return _redirect(request, "my_projects")

    @app.get(
        "/add-team-member/{project_id}",
        response_class=HTMLResponse,
        name="show_add_team_member",
    )
    async def add_team_member_form(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            project = database.require_project(project_id)
            ensure_manager(session, project)
            users = database.list_users()
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="fetching users")
        return templates.TemplateResponse(
            request,
            "add_team_member.html",
            {"project": project, "users": users},
        )

    @app.post("/add-team-member/{project_id}", name="process_add_team_member")
    async def process_add_team_member(
        request: Request,
        project_id: int,
        session: SessionContext = Depends(_current_session),
    ):
        try:
            require_session(session)
            form = await request.form()
            candidates = extract_candidate_ids(form.multi_items())
            add_members(database, project_id, session, candidates)
        except (TeamBoardError, sqlite3.Error) as exc:
            return _error_response(request, exc, action="adding team members")
        return _redirect(request, "my_projects")

    return app


__all__ = ["create_app", "format_calendar_date", "parse_project_form"]
