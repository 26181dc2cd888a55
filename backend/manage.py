"""Management commands.

Wraps the setup workflow, identity seeding and Flask-Migrate so the project
can be operated without invoking the Flask CLI directly.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

import click
import structlog
from app import app
from extensions import config_store, connection_manager, db, setup_gate
from flask_migrate import upgrade as flask_migrate_upgrade  # type: ignore[import]
from repositories import users_repo
from security import ValidationError, issue_access_token
from services import setup_service
from services.common import activity_log
from werkzeug.security import generate_password_hash

logger = structlog.get_logger("steward.manage")
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


@click.group()
def cli():
    """Operate the Steward backend."""


def _run_setup(descriptor: dict) -> None:
    with app.app_context():
        try:
            result = setup_service.complete_setup(
                descriptor,
                config_store=config_store,
                connection_manager=connection_manager,
                activity_log=activity_log,
                gate=setup_gate,
            )
        except ValidationError as exc:
            raise click.ClickException(f"{exc.message} {exc.details or ''}".strip()) from exc
    click.echo(f"Setup complete: {result['databaseConfig']}")


@cli.command("configure-sqlite")
@click.argument("path", type=click.Path(dir_okay=False))
def configure_sqlite(path: str) -> None:
    """Store audit events in an embedded SQLite file."""
    _run_setup({"type": "embedded", "path": str(Path(path).resolve())})


@cli.command("configure-postgres")
@click.option("--host", required=True)
@click.option("--port", default=5432, show_default=True, type=int)
@click.option("--database", required=True)
@click.option("--user", "user", required=True)
@click.option("--password", prompt=True, hide_input=True, default="")
@click.option("--schema", default=None, help="Schema to place the activity table in.")
@click.option("--ssl/--no-ssl", default=False, show_default=True)
def configure_postgres(
    host: str,
    port: int,
    database: str,
    user: str,
    password: str,
    schema: Optional[str],
    ssl: bool,
) -> None:
    """Store audit events in a PostgreSQL database."""
    _run_setup(
        {
            "type": "client-server",
            "host": host,
            "port": port,
            "database": database,
            "user": user,
            "password": password,
            "schema": schema,
            "ssl": ssl,
        }
    )


@cli.command("create-schema")
def create_schema_command() -> None:
    """Create identity tables, through migrations when they exist."""
    with app.app_context():
        if (MIGRATIONS_DIR / "env.py").exists():
            flask_migrate_upgrade(directory=str(MIGRATIONS_DIR))
        else:
            db.create_all()
    click.echo("Identity schema ready.")


def _create_user(email: str, password: str, name: str, role: str) -> str:
    existing = users_repo.get_user_by_email(email)
    if existing:
        click.echo(f"User {email} already exists – skipping.")
        return existing["id"]
    return users_repo.create_user(
        uuid.uuid4().hex, email, name, generate_password_hash(password), role=role
    )


@cli.command("seed")
def seed_command() -> None:
    """Create an example administrator and regular user."""
    with app.app_context():
        db.create_all()
        _create_user("admin@example.com", "admin123", "Admin User", "admin")
        _create_user("user@example.com", "user123", "Regular User", "user")
    click.echo("Seeded admin@example.com (admin) and user@example.com (user).")


@cli.command("list-users")
def list_users_command() -> None:
    """Print every identity row."""
    with app.app_context():
        users = users_repo.list_all_users()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "banned" if user["banned"] else "active"
        click.echo(f"{user['id']}  {user['email']:<32} {user['role']:<6} {status}")


@cli.command("set-role")
@click.argument("email")
@click.argument("role", type=click.Choice(["admin", "user"]))
def set_role_command(email: str, role: str) -> None:
    """Change the role of the user with EMAIL."""
    with app.app_context():
        user = users_repo.get_user_by_email(email)
        if not user:
            raise click.ClickException(f"User '{email}' not found.")
        users_repo.update_user(user["id"], {"role": role})
    logger.info("manage.role_updated", email=email, role=role)
    click.echo(f"{email} is now {role}.")


@cli.command("issue-token")
@click.argument("email")
def issue_token_command(email: str) -> None:
    """Mint an access token (and CSRF token) for the user with EMAIL."""
    with app.app_context():
        user = users_repo.get_user_by_email(email)
        if not user:
            raise click.ClickException(f"User '{email}' not found.")
        tokens = issue_access_token(user)
    click.echo(f"access_token: {tokens['access_token']}")
    click.echo(f"csrf_token:   {tokens['csrf_token']}")


if __name__ == "__main__":
    cli()
