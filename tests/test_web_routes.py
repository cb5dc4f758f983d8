from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from teamboard.config import AppSettings
from teamboard.database import Database
from teamboard.web import create_app


ALICE = ("Alice", "alice@example.com", "alice-password")
BOB = ("Bob", "bob@example.com", "bob-password")


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "teamboard.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def app(database: Database):
    settings = AppSettings(database_path=database.path)
    return create_app(database=database, settings=settings, session_secret="tests-secret-key")


def _login(client: TestClient, email: str, password: str):
    return client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=False,
    )


def _register_and_login(database: Database, client: TestClient, account):
    name, email, password = account
    user = database.create_user(name, email, password)
    response = _login(client, email, password)
    assert response.status_code == 303
    return user


@pytest.mark.parametrize(
    "path",
    ["/", "/my-projects", "/part-of-projects", "/add-project", "/archive"],
)
def test_pages_redirect_to_login_without_session(app, path: str) -> None:
    with TestClient(app) as client:
        response = client.get(path, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/login")


@pytest.mark.parametrize(
    ("method", "path", "data"),
    [
        ("GET", "/edit-project/{id}", None),
        ("POST", "/edit-project/{id}", {"name": "Changed", "is_archived": "Yes"}),
        ("GET", "/edit-project-user/{id}", None),
        ("POST", "/edit-project-user/{id}", {"completed_jobs": "Changed"}),
        ("GET", "/add-team-member/{id}", None),
        ("POST", "/add-team-member/{id}", {"teamMember_0": "{user}"}),
        ("POST", "/delete-project/{id}", None),
    ],
)
def test_project_routes_redirect_to_login_without_session(
    app, database: Database, method: str, path: str, data
) -> None:
    alice = database.create_user(*ALICE)
    project = database.create_project(alice.id, name="Garage", completed_jobs="")
    if data is not None:
        data = {key: value.format(user=alice.id) for key, value in data.items()}

    with TestClient(app) as client:
        response = client.request(
            method,
            path.format(id=project.id),
            data=data,
            follow_redirects=False,
        )

    assert response.status_code == 303
    assert response.headers["location"].endswith("/login")
    assert database.require_project(project.id) == project


def test_register_then_login(app, database: Database) -> None:
    with TestClient(app) as client:
        registered = client.post(
            "/register",
            data={"name": "Alice", "email": "alice@example.com", "password": "alice-password"},
            follow_redirects=False,
        )
        assert registered.status_code == 303
        assert registered.headers["location"].endswith("/login")
        assert len(database.list_users()) == 1

        login = _login(client, "alice@example.com", "alice-password")
        assert login.status_code == 303
        assert login.headers["location"].endswith("/")

        index = client.get("/")
        assert index.status_code == 200
        assert "Welcome, Alice" in index.text

        # Logged-in users are sent away from the login and register forms.
        assert client.get("/login", follow_redirects=False).status_code == 303
        assert client.get("/register", follow_redirects=False).status_code == 303


def test_register_duplicate_email_conflicts(app, database: Database) -> None:
    database.create_user(*ALICE)

    with TestClient(app) as client:
        response = client.post(
            "/register",
            data={"name": "Other", "email": "ALICE@example.com", "password": "whatever-pw"},
            follow_redirects=False,
        )

    assert response.status_code == 409
    assert "already exists" in response.text
    assert len(database.list_users()) == 1


def test_login_failures_leave_session_logged_out(app, database: Database) -> None:
    database.create_user(*ALICE)

    with TestClient(app) as client:
        unknown = _login(client, "nobody@example.com", "alice-password")
        assert unknown.status_code == 404
        assert unknown.text == "User not found"

        wrong = _login(client, "alice@example.com", "not-the-password")
        assert wrong.status_code == 401
        assert wrong.text == "Wrong email or password"

        follow = client.get("/my-projects", follow_redirects=False)
        assert follow.status_code == 303
        assert follow.headers["location"].endswith("/login")


def test_logout_clears_session(app, database: Database) -> None:
    with TestClient(app) as client:
        _register_and_login(database, client, ALICE)
        assert client.get("/", follow_redirects=False).status_code == 200

        logout = client.get("/logout", follow_redirects=False)
        assert logout.status_code == 303
        assert client.get("/", follow_redirects=False).status_code == 303


def test_project_visibility_follows_team_membership(app, database: Database) -> None:
    with TestClient(app) as alice_client, TestClient(app) as bob_client:
        alice = _register_and_login(database, alice_client, ALICE)
        bob = _register_and_login(database, bob_client, BOB)

        created = alice_client.post(
            "/add-project",
            data={
                "name": "Bathroom remodel",
                "description": "Second floor",
                "price": "4200",
                "start_date": "2024-05-01",
                "end_date": "2024-06-30",
                "is_archived": "No",
            },
            follow_redirects=False,
        )
        assert created.status_code == 303
        assert created.headers["location"].endswith("/my-projects")

        (project,) = database.list_projects_for_manager(alice.id)
        assert project.price == 4200.0
        assert project.start_date == date(2024, 5, 1)

        assert "Bathroom remodel" in alice_client.get("/my-projects").text
        assert "Bathroom remodel" not in bob_client.get("/my-projects").text
        assert "Bathroom remodel" not in bob_client.get("/part-of-projects").text

        added = alice_client.post(
            f"/add-team-member/{project.id}",
            data={"teamMember_0": str(bob.id)},
            follow_redirects=False,
        )
        assert added.status_code == 303

        part_of = bob_client.get("/part-of-projects")
        assert "Bathroom remodel" in part_of.text
        assert "Bob" in part_of.text
        assert "Bathroom remodel" not in bob_client.get("/my-projects").text


def test_add_team_member_form_lists_users(app, database: Database) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        database.create_user(*BOB)
        project = database.create_project(alice.id, name="Fence")

        response = client.get(f"/add-team-member/{project.id}")

    assert response.status_code == 200
    assert "bob@example.com" in response.text
    assert "teamMember_" in response.text


def test_add_team_member_missing_user_is_atomic(app, database: Database) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        bob = database.create_user(*BOB)
        project = database.create_project(alice.id, name="Fence")

        response = client.post(
            f"/add-team-member/{project.id}",
            data={"teamMember_0": str(bob.id), "teamMember_1": "9999"},
            follow_redirects=False,
        )

    assert response.status_code == 404
    assert response.text == "User not found"
    assert database.require_project(project.id).team == ()


def test_add_team_member_unknown_project(app, database: Database) -> None:
    with TestClient(app) as client:
        _register_and_login(database, client, ALICE)
        response = client.get("/add-team-member/77", follow_redirects=False)

    assert response.status_code == 404
    assert response.text == "Project not found"


def test_full_edit_is_restricted_to_manager(app, database: Database) -> None:
    with TestClient(app) as alice_client, TestClient(app) as bob_client:
        alice = _register_and_login(database, alice_client, ALICE)
        bob = _register_and_login(database, bob_client, BOB)
        project = database.create_project(
            alice.id,
            name="Porch",
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 20),
        )
        database.add_team_members(project.id, [bob])

        form = alice_client.get(f"/edit-project/{project.id}")
        assert form.status_code == 200
        assert 'value="2024-03-01"' in form.text
        assert 'value="2024-03-20"' in form.text

        denied = bob_client.post(
            f"/edit-project/{project.id}",
            data={"name": "Hijacked"},
            follow_redirects=False,
        )
        assert denied.status_code == 403
        assert bob_client.get(f"/edit-project/{project.id}").status_code == 403
        assert database.require_project(project.id).name == "Porch"

        saved = alice_client.post(
            f"/edit-project/{project.id}",
            data={"name": "Front porch", "price": "300", "end_date": "2024-04-01"},
            follow_redirects=False,
        )
        assert saved.status_code == 303

    updated = database.require_project(project.id)
    assert updated.name == "Front porch"
    assert updated.price == 300.0
    assert updated.start_date == date(2024, 3, 1)
    assert updated.end_date == date(2024, 4, 1)
    assert [entry.user_id for entry in updated.team] == [bob.id]


def test_full_edit_rejects_invalid_values(app, database: Database) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        project = database.create_project(alice.id, name="Porch")

        response = client.post(
            f"/edit-project/{project.id}",
            data={"price": "lots"},
            follow_redirects=False,
        )

    assert response.status_code == 400
    assert database.require_project(project.id).price is None


@pytest.mark.parametrize("price", ["nan", "inf", "-inf"])
def test_full_edit_rejects_non_finite_price(app, database: Database, price: str) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        project = database.create_project(alice.id, name="Porch", price=150.0)

        response = client.post(
            f"/edit-project/{project.id}",
            data={"price": price},
            follow_redirects=False,
        )

    assert response.status_code == 400
    assert database.require_project(project.id).price == 150.0


def test_full_edit_checks_dates_against_stored_values(app, database: Database) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        project = database.create_project(
            alice.id,
            name="Porch",
            start_date=date(2024, 5, 1),
            end_date=date(2024, 6, 1),
        )

        early_end = client.post(
            f"/edit-project/{project.id}",
            data={"end_date": "2024-01-01"},
            follow_redirects=False,
        )
        late_start = client.post(
            f"/edit-project/{project.id}",
            data={"start_date": "2024-07-01"},
            follow_redirects=False,
        )

    assert early_end.status_code == 400
    assert late_start.status_code == 400
    stored = database.require_project(project.id)
    assert stored.start_date == date(2024, 5, 1)
    assert stored.end_date == date(2024, 6, 1)


def test_out_of_range_ids_are_not_found(app, database: Database) -> None:
    huge = "99999999999999999999"

    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        project = database.create_project(alice.id, name="Fence")

        missing_project = client.get(f"/edit-project/{huge}", follow_redirects=False)
        missing_user = client.post(
            f"/add-team-member/{project.id}",
            data={"teamMember_0": huge},
            follow_redirects=False,
        )

    assert missing_project.status_code == 404
    assert missing_project.text == "Project not found"
    assert missing_user.status_code == 404
    assert missing_user.text == "User not found"
    assert database.require_project(project.id).team == ()


def test_member_edit_only_changes_completed_jobs(app, database: Database) -> None:
    with TestClient(app) as alice_client, TestClient(app) as bob_client:
        alice = _register_and_login(database, alice_client, ALICE)
        bob = _register_and_login(database, bob_client, BOB)
        project = database.create_project(alice.id, name="Shed", description="Garden shed")
        database.add_team_members(project.id, [bob])

        assert bob_client.get(f"/edit-project-user/{project.id}").status_code == 200

        response = bob_client.post(
            f"/edit-project-user/{project.id}",
            data={"completed_jobs": "Poured foundation", "name": "Bob's shed"},
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"].endswith("/part-of-projects")

        # The manager is not on the team, so the member path is closed to them.
        assert alice_client.get(f"/edit-project-user/{project.id}").status_code == 403

    updated = database.require_project(project.id)
    assert updated.completed_jobs == "Poured foundation"
    assert updated.name == "Shed"


def test_archive_listing_tracks_flag(app, database: Database) -> None:
    with TestClient(app) as client:
        alice = _register_and_login(database, client, ALICE)
        project = database.create_project(alice.id, name="Attic")

        assert "Attic" not in client.get("/archive").text

        client.post(
            f"/edit-project/{project.id}",
            data={"is_archived": "Yes"},
            follow_redirects=False,
        )
        assert "Attic" in client.get("/archive").text

        client.post(
            f"/edit-project/{project.id}",
            data={"is_archived": "No"},
            follow_redirects=False,
        )
        assert "Attic" not in client.get("/archive").text


def test_delete_project_requires_manager(app, database: Database) -> None:
    with TestClient(app) as alice_client, TestClient(app) as bob_client:
        alice = _register_and_login(database, alice_client, ALICE)
        bob = _register_and_login(database, bob_client, BOB)
        project = database.create_project(alice.id, name="Garage")
        database.add_team_members(project.id, [bob])

        denied = bob_client.post(f"/delete-project/{project.id}", follow_redirects=False)
        assert denied.status_code == 403
        assert database.get_project(project.id) is not None

        deleted = alice_client.post(f"/delete-project/{project.id}", follow_redirects=False)
        assert deleted.status_code == 303
        assert deleted.headers["location"].endswith("/my-projects")

        assert database.get_project(project.id) is None
        assert "Garage" not in alice_client.get("/my-projects").text
        assert "Garage" not in bob_client.get("/part-of-projects").text
        missing = alice_client.get(f"/edit-project/{project.id}")
        assert missing.status_code == 404


def test_delete_without_session_redirects(app, database: Database) -> None:
    alice = database.create_user(*ALICE)
    project = database.create_project(alice.id, name="Garage")

    with TestClient(app) as client:
        response = client.post(f"/delete-project/{project.id}", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/login")
    assert database.get_project(project.id) is not None


def test_healthcheck(app) -> None:
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_app_requires_session_secret(database: Database) -> None:
    with pytest.raises(RuntimeError):
        create_app(database=database, settings=AppSettings(database_path=database.path))
