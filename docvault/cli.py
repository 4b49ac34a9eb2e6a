"""
DocVault CLI — Bootstrap and management commands.

Commands:
- docvault init       — Create DB schema and the secure upload directory
- docvault run        — Start the HTTP server (uvicorn)
- docvault validate   — Load docvault.yaml + environment and report problems
- docvault add-user   — Create an approved user (e.g. the first ADMIN)
"""

from __future__ import annotations

import argparse
import getpass
import logging
from typing import Optional

logger = logging.getLogger("docvault.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="docvault",
        description="DocVault — role-based document vault",
    )
    parser.add_argument("--config", default=None, help="Path to docvault.yaml (default: auto-discover)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init", help="Create database tables and storage directory")

    run_parser = subparsers.add_parser("run", help="Start the HTTP server")
    run_parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    run_parser.add_argument("--port", type=int, default=3000, help="Port (default: 3000)")
    run_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    subparsers.add_parser("validate", help="Validate configuration")

    user_parser = subparsers.add_parser("add-user", help="Create an approved user")
    user_parser.add_argument("email", help="User email")
    user_parser.add_argument("--name", default="", help="Display name")
    user_parser.add_argument(
        "--role", choices=["CUSTOMER", "MANAGER", "ADMIN"], default="CUSTOMER", help="Role (default: CUSTOMER)"
    )
    user_parser.add_argument("--password", help="Password (prompted if not provided)")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "run":
        return cmd_run(args)
    elif args.command == "validate":
        return cmd_validate(args)
    elif args.command == "add-user":
        return cmd_add_user(args)
    else:
        parser.print_help()
        return 0


def _load(args: argparse.Namespace):
    from docvault.engine.config import load_config
    from docvault.engine.errors import DocVaultConfigError

    try:
        return load_config(args.config)
    except DocVaultConfigError as e:
        print(f"[ERROR] {e.message}")
        return None


def cmd_init(args: argparse.Namespace) -> int:
    """Create tables and, for the local backend, the storage root."""
    config = _load(args)
    if config is None:
        return 1

    from sqlalchemy.exc import SQLAlchemyError

    from docvault.db.session import init_db

    try:
        init_db(config.database.url, create_tables=True)
        print("[OK] Database tables created")
    except SQLAlchemyError as e:
        print(f"[ERROR] Database initialization failed: {e}")
        return 1

    if config.storage.backend == "local":
        from docvault.storage.local import LocalFileStore

        store = LocalFileStore(config.storage.local_root)
        print(f"[OK] Storage directory ready: {store.root}")
    else:
        print(f"[OK] Remote storage bucket '{config.storage.bucket}' at {config.storage.url}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Start uvicorn with the application factory."""
    import uvicorn

    print(f"Starting DocVault on {args.host}:{args.port} ...")
    try:
        uvicorn.run(
            "docvault.api.app:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            reload=args.reload,
        )
    except KeyboardInterrupt:
        print("\nServer stopped.")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    print(f"[OK] {config.name} ({config.environment})")
    print(f"     database:   {config.database.url.split('@')[-1]}")
    print(f"     storage:    {config.storage.backend}")
    print(f"     rate limit: {'off' if not config.rate_limit.enabled else config.rate_limit.backend}")
    if not config.security.admin_password:
        print("[WARN] ADMIN_PASSWORD not set; admin login is disabled")
    return 0


def cmd_add_user(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    from sqlalchemy.exc import IntegrityError

    from docvault.accounts.service import hash_password
    from docvault.db.base import utcnow
    from docvault.db.models import User
    from docvault.db.session import init_db, session_scope

    password = args.password
    if password is None and args.role != "CUSTOMER":
        password = getpass.getpass(f"Password for {args.email}: ")

    factory = init_db(config.database.url, create_tables=config.database.create_tables)
    try:
        with session_scope(factory) as session:
            user = User(
                name=args.name or args.email.split("@")[0],
                email=args.email,
                password_hash=hash_password(password) if password else "",
                role=args.role,
                status="APPROVED",
                approved_at=utcnow(),
            )
            session.add(user)
            session.flush()
            user_id = user.id
    except IntegrityError:
        print(f"[ERROR] A user with email {args.email} already exists")
        return 1

    print(f"[OK] Created {args.role} user {args.email} (id={user_id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
