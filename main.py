"""Command-line interface for the user management service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    root = Path(__file__).resolve().parent
    venv_dir = root / ".venv"
    if not venv_dir.is_dir():
        return

    candidates = (
        venv_dir / "bin" / "python",
        venv_dir / "bin" / "python3",
        venv_dir / "Scripts" / "python.exe",
        venv_dir / "Scripts" / "python",
    )

    script = str(Path(__file__).resolve())
    for candidate in candidates:
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


if __name__ == "__main__":
    _bootstrap_virtualenv()

import anyio

from usermgmt.config import ServiceConfig, load_config
from usermgmt.database import Database, StorageError
from usermgmt.models import AuthenticatedActor, Role, UserUpdate
from usermgmt.users import UserRecordService, UserServiceError

logger = logging.getLogger("usermgmt.main")

# Console mutations run as an operator that is not tied to any stored account.
_CONSOLE_ACTOR = AuthenticatedActor(id=0, role=Role.ADMIN)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERMGMT_CONFIG)",
    )

    parser = argparse.ArgumentParser(description="User management utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", parents=[common], help="Initialise the user database")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP user API")
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: 8000)",
    )

    subparsers.add_parser(
        "admin", parents=[common], help="Launch the interactive administration console"
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(config: ServiceConfig) -> Database:
    database = Database(config.database_path)
    database.initialize()
    logger.info("Database initialised at %s", config.database_path)
    return database


def _serve(*, database: Database, host: str, port: int, log_level: str) -> None:
    from usermgmt.api import create_app
    import uvicorn

    logger.info("Starting user API on http://%s:%s", host, port)

    app = create_app(database=database)
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


def _run_admin_cli(database: Database) -> None:
    """Provide an interactive management console for administrators."""

    service = UserRecordService(database)

    print("User Management Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new user")
            print("  3) Change a user's role")
            print("  4) Delete a user")
            print("  5) Exit")

            choice = input("Enter choice [1-5]: ").strip()

            if choice == "1":
                _list_users(service)
            elif choice == "2":
                _add_user(database)
            elif choice == "3":
                _change_role(service)
            elif choice == "4":
                _delete_user(service)
            elif choice == "5":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_users(service: UserRecordService) -> None:
    users = anyio.run(service.list_users)
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Role':<6}  Updated")
    print("-" * 72)
    for user in users:
        updated = user.updated_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.role.value:<6}  {updated}")


def _add_user(database: Database) -> None:
    print("\nCreate a new user (leave the name blank to cancel).")
    name = input("Name: ").strip()
    if not name:
        print("User creation cancelled.")
        return

    email = input("Email address: ").strip()
    if not email:
        print("An email address is required.")
        return

    role = _prompt_for_role(default=Role.USER)
    if role is None:
        return

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return

    try:
        user = database.create_user(name, email, password, role=role)
    except (ValueError, StorageError) as exc:
        print(f"Failed to create user: {exc}")
        return

    print(f"Created user #{user.id}: {user.name} <{user.email}> ({user.role.value})")


def _prompt_for_user_id() -> int | None:
    raw = input("User ID: ").strip()
    try:
        user_id = int(raw)
    except ValueError:
        print("User ID must be a positive integer.")
        return None
    if user_id < 1:
        print("User ID must be a positive integer.")
        return None
    return user_id


def _prompt_for_role(*, default: Role | None = None) -> Role | None:
    hint = f" [{default.value}]" if default is not None else ""
    raw = input(f"Role (user/admin){hint}: ").strip().lower()
    if not raw and default is not None:
        return default
    if raw not in (Role.USER.value, Role.ADMIN.value):
        print("Role must be either 'user' or 'admin'.")
        return None
    return Role(raw)


def _change_role(service: UserRecordService) -> None:
    user_id = _prompt_for_user_id()
    if user_id is None:
        return
    role = _prompt_for_role()
    if role is None:
        return

    try:
        user = anyio.run(service.update_user, _CONSOLE_ACTOR, user_id, UserUpdate(role=role))
    except (UserServiceError, StorageError) as exc:
        print(f"Failed to update user: {exc}")
        return

    print(f"User #{user.id} ({user.name}) now has role '{user.role.value}'.")


def _delete_user(service: UserRecordService) -> None:
    user_id = _prompt_for_user_id()
    if user_id is None:
        return

    confirmation = input(f"Delete user #{user_id}? Type 'yes' to confirm: ").strip().lower()
    if confirmation != "yes":
        print("Deletion cancelled.")
        return

    try:
        deleted = anyio.run(service.delete_user, _CONSOLE_ACTOR, user_id)
    except (UserServiceError, StorageError) as exc:
        print(f"Failed to delete user: {exc}")
        return

    print(f"Deleted user #{deleted.id}.")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Password (min 8 characters): ")
        if len(password) < 8:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    config_arg = getattr(args, "config", None)
    config = load_config(Path(config_arg).expanduser() if config_arg else None)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    database = _initialise_database(config)

    if args.command == "serve":
        _serve(
            database=database,
            host=args.host or config.host,
            port=args.port or config.port,
            log_level=config.log_level,
        )
    elif args.command == "admin":
        _run_admin_cli(database)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
