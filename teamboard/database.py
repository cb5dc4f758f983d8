"""SQLite-backed persistence for users, projects and project teams."""
from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from passlib.context import CryptContext

from .errors import DuplicateEmailError, ProjectNotFoundError
from .models import Project, TeamEntry, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "teamboard.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _serialize_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# SQLite stores integers as signed 64-bit values.
_SQLITE_MAX_INTEGER = 2**63 - 1


def _is_storable_id(value: int) -> bool:
    return -_SQLITE_MAX_INTEGER - 1 <= value <= _SQLITE_MAX_INTEGER


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _normalize_email(email: str) -> str:
    return email.strip().lower()


_PROJECT_COLUMNS = {
    "name": "name",
    "description": "description",
    "price": "price",
    "completed_jobs": "completed_jobs",
    "start_date": "start_date",
    "end_date": "end_date",
    "is_archived": "is_archived",
}


class Database:
    """Simple wrapper around SQLite for persisting users and projects."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS projects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    manager_id INTEGER NOT NULL REFERENCES users(id),
                    name TEXT NOT NULL DEFAULT '',
                    description TEXT NOT NULL DEFAULT '',
                    price REAL,
                    completed_jobs TEXT NOT NULL DEFAULT '',
                    start_date TEXT,
                    end_date TEXT,
                    is_archived INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS project_team (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    user_name TEXT NOT NULL,
                    added_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_projects_manager_id ON projects(manager_id);
                CREATE INDEX IF NOT EXISTS idx_project_team_project_id ON project_team(project_id);
                CREATE INDEX IF NOT EXISTS idx_project_team_user_id ON project_team(user_id);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, password: str) -> User:
        """Create a new user account and return it."""

        cleaned_name = name.strip()
        if not cleaned_name:
            raise ValueError("Name must not be empty")
        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")
        if not password:
            raise ValueError("Password must not be empty")

        created_at = _current_timestamp()
        password_hash = _hash_password(password)

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        cleaned_name,
                        normalized_email,
                        password_hash,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        return User(id=user_id, name=cleaned_name, email=normalized_email, created_at=created_at)

    def get_user(self, user_id: int) -> Optional[User]:
        if not _is_storable_id(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY name, id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def verify_user_password(self, user_id: int, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        if not _is_storable_id(user_id):
            return False
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        if row is None:
            return False

        return _verify_password(password, row["password_hash"])

    # ------------------------------------------------------------------
    # Project management
    # ------------------------------------------------------------------
    def create_project(
        self,
        manager_id: int,
        *,
        name: str = "",
        description: str = "",
        price: Optional[float] = None,
        completed_jobs: str = "",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        is_archived: bool = False,
    ) -> Project:
        created_at = _current_timestamp()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO projects (
                    manager_id, name, description, price, completed_jobs,
                    start_date, end_date, is_archived, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    manager_id,
                    name,
                    description,
                    price,
                    completed_jobs,
                    _serialize_date(start_date),
                    _serialize_date(end_date),
                    int(bool(is_archived)),
                    _serialize_datetime(created_at),
                ),
            )
            project_id = cursor.lastrowid

        project = self.get_project(project_id)
        if project is None:
            raise RuntimeError("Failed to load project after creation")
        return project

    def get_project(self, project_id: int) -> Optional[Project]:
        if not _is_storable_id(project_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            if row is None:
                return None
            return self._rows_to_projects(conn, [row])[0]

    def require_project(self, project_id: int) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list_projects_for_manager(self, manager_id: int) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE manager_id = ? ORDER BY id",
                (manager_id,),
            ).fetchall()
            return self._rows_to_projects(conn, rows)

    def list_projects_for_member(self, user_id: int) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM projects
                 WHERE id IN (SELECT project_id FROM project_team WHERE user_id = ?)
                 ORDER BY id
                """,
                (user_id,),
            ).fetchall()
            return self._rows_to_projects(conn, rows)

    def list_archived_projects(self, user_id: int) -> List[Project]:
        """Return archived projects the user manages or belongs to."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM projects
                 WHERE is_archived = 1
                   AND (
                        manager_id = ?
                        OR id IN (SELECT project_id FROM project_team WHERE user_id = ?)
                   )
                 ORDER BY id
                """,
                (user_id, user_id),
            ).fetchall()
            return self._rows_to_projects(conn, rows)

    def update_project(self, project_id: int, **fields: object) -> Project:
        """Overwrite the supplied project fields, leaving the team list untouched."""

        unknown = set(fields) - set(_PROJECT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        if not _is_storable_id(project_id):
            raise ProjectNotFoundError(project_id)

        updates: List[str] = []
        values: List[object] = []
        for key, column in _PROJECT_COLUMNS.items():
            if key not in fields:
                continue
            value = fields[key]
            if column in {"start_date", "end_date"}:
                value = _serialize_date(value)  # type: ignore[arg-type]
            elif column == "is_archived":
                value = int(bool(value))
            elif value is None and column != "price":
                continue
            updates.append(f"{column} = ?")
            values.append(value)

        if updates:
            values.append(project_id)
            query = f"UPDATE projects SET {', '.join(updates)} WHERE id = ?"
            with self._connect() as conn:
                cursor = conn.execute(query, values)
                if cursor.rowcount == 0:
                    raise ProjectNotFoundError(project_id)

        return self.require_project(project_id)

    def delete_project(self, project_id: int) -> bool:
        if not _is_storable_id(project_id):
            return False
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return cursor.rowcount > 0

    def add_team_members(self, project_id: int, users: Sequence[User]) -> Project:
        """Append team entries for ``users`` in a single transaction."""

        if not _is_storable_id(project_id):
            raise ProjectNotFoundError(project_id)
        added_at = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            if exists is None:
                raise ProjectNotFoundError(project_id)
            conn.executemany(
                """
                INSERT INTO project_team (project_id, user_id, user_name, added_at)
                VALUES (?, ?, ?, ?)
                """,
                [(project_id, user.id, user.name, added_at) for user in users],
            )

        return self.require_project(project_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_teams(
        self, conn: sqlite3.Connection, project_ids: Iterable[int]
    ) -> Dict[int, List[TeamEntry]]:
        ids = list(project_ids)
        teams: Dict[int, List[TeamEntry]] = {project_id: [] for project_id in ids}
        if not ids:
            return teams

        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            f"""
            SELECT t.project_id, t.user_id, t.user_name, u.name AS current_name
              FROM project_team AS t
              LEFT JOIN users AS u ON u.id = t.user_id
             WHERE t.project_id IN ({placeholders})
             ORDER BY t.id
            """,
            ids,
        ).fetchall()

        for row in rows:
            cached = str(row["user_name"])
            current = row["current_name"]
            teams[int(row["project_id"])].append(
                TeamEntry(
                    user_id=int(row["user_id"]),
                    cached_name=cached,
                    display_name=str(current) if current is not None else cached,
                )
            )
        return teams

    def _rows_to_projects(
        self, conn: sqlite3.Connection, rows: Sequence[sqlite3.Row]
    ) -> List[Project]:
        teams = self._load_teams(conn, (int(row["id"]) for row in rows))
        return [self._row_to_project(row, teams[int(row["id"])]) for row in rows]

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_project(self, row: sqlite3.Row, team: Sequence[TeamEntry]) -> Project:
        price = row["price"]
        return Project(
            id=int(row["id"]),
            manager_id=int(row["manager_id"]),
            name=str(row["name"]),
            description=str(row["description"]),
            price=float(price) if price is not None else None,
            completed_jobs=str(row["completed_jobs"]),
            start_date=_parse_date(row["start_date"]),
            end_date=_parse_date(row["end_date"]),
            is_archived=bool(row["is_archived"]),
            created_at=_parse_datetime(str(row["created_at"])),
            team=tuple(team),
        )


__all__ = ["Database", "resolve_database_path"]
