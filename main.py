"""Command-line interface for the TeamBoard web application."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from teamboard.config import AppSettings, load_settings
from teamboard.database import Database

logger = logging.getLogger("teamboard.main")

PASSWORD_MIN_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TeamBoard project management utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML settings file (default: TEAMBOARD_CONFIG or config/teamboard.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the application database")

    serve_parser = subparsers.add_parser("serve", help="Start the web application")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the web server")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the web server (default: 8000)",
    )

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db"}

    # Global options come before the subcommand; skip over them when looking for it.
    index = 0
    while index < len(args_list):
        if args_list[index] == "--config":
            index += 2
        elif args_list[index].startswith("--config="):
            index += 1
        else:
            break

    if index >= len(args_list):
        args_list = [*args_list, "serve"]
    else:
        first = args_list[index]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = [*args_list[:index], "serve", *args_list[index:]]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> AppSettings:
    return load_settings(Path(config).expanduser() if config else None)


def _initialise_database(settings: AppSettings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, database: Database, settings: AppSettings, host: str, port: int) -> None:
    from teamboard import create_app
    import uvicorn

    logger.info("Starting TeamBoard on http://%s:%s", host, port)

    try:
        app = create_app(database=database, settings=settings)
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc
    uvicorn.run(app, host=host, port=port, log_level="info")


def _run_admin_cli(database: Database) -> None:
    """Provide an interactive console for administrators."""

    print("TeamBoard Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new user")
            print("  3) Show a user's projects")
            print("  4) Exit")

            choice = input("Enter choice [1-4]: ").strip()

            if choice == "1":
                _list_users(database)
            elif choice == "2":
                _add_user(database)
            elif choice == "3":
                _show_projects(database)
            elif choice == "4":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {created}")


def _add_user(database: Database) -> None:
    print("\nCreate a new user (leave the name blank to cancel).")
    name = input("Name: ").strip()
    if not name:
        print("User creation cancelled.")
        return

    email = input("Email address: ").strip()
    if not email:
        print("An email address is required to log in. User creation cancelled.")
        return

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return

    try:
        user = database.create_user(name, email, password)
    except ValueError as exc:
        print(f"Failed to create user: {exc}")
        return

    print(f"Created user #{user.id}: {user.name} <{user.email}>")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _show_projects(database: Database) -> None:
    email = input("Email address: ").strip()
    user = database.get_user_by_email(email) if email else None
    if user is None:
        print("No user is registered with that email address.")
        return

    managed = database.list_projects_for_manager(user.id)
    member_of = database.list_projects_for_member(user.id)

    print(f"{user.name} manages {len(managed)} project(s):")
    for project in managed:
        flag = " (archived)" if project.is_archived else ""
        print(f"- #{project.id} {project.name}{flag}, team of {len(project.team)}")

    print(f"{user.name} is on the team of {len(member_of)} project(s):")
    for project in member_of:
        flag = " (archived)" if project.is_archived else ""
        print(f"- #{project.id} {project.name}{flag}")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = _load_settings(args.config or os.getenv("TEAMBOARD_CONFIG"))
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(database=database, settings=settings, host=args.host, port=args.port)
    elif args.command == "admin":
        _run_admin_cli(database)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
