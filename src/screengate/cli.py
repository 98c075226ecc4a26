"""Operator CLI for ScreenGate.

Example: screengate init-db && screengate seed
"""

import json
from typing import Optional

import typer
from loguru import logger

from .config import get_config
from .database import init_db
from .db import get_user_balance, list_jobs, seed_demo_data
from .errors import ScreenGateError
from .pairing import PairingService
from .stores.sql import SqlJobStore, SqlLinkStore
from .utils import setup_logger

app = typer.Typer(
    name="screengate",
    help="Admission control and job lifecycle for a metered screening service"
)


def _pairing() -> PairingService:
    return PairingService(SqlLinkStore(), ttl_seconds=get_config().sg_link_ttl_seconds)


def _fail(error: ScreenGateError) -> None:
    logger.error(f"{error.code}: {error.detail}")
    typer.echo(json.dumps(error.to_dict()))
    raise typer.Exit(1)


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    setup_logger(level="DEBUG" if verbose else get_config().sg_log_level)


@app.command(name="init-db")
def init_database():
    """
    Create all tables on the configured database.

    Example: screengate init-db
    """
    init_db()
    logger.info("✓ Database initialized")


@app.command()
def seed():
    """
    Insert the reference packages and one demo user per role.

    Example: screengate seed
    """
    created = seed_demo_data()
    for row in created:
        typer.echo(f"{row['email']}\t{row['user_id']}\t{row['api_key']}")
    logger.info(f"✓ Seeded {len(created)} users")


@app.command()
def balance(user_id: str = typer.Argument(..., help="User id")):
    """
    Show a user's subscriptions and active credits.

    Example: screengate balance 0f2d5b6a-...
    """
    typer.echo(json.dumps(get_user_balance(user_id), indent=2))


@app.command()
def jobs(
    user_id: Optional[str] = typer.Option(None, "--user", help="Only this user's jobs"),
    limit: int = typer.Option(10, help="Maximum jobs to list"),
):
    """
    List recent screening jobs.

    Example: screengate jobs --user 0f2d5b6a-... --limit 20
    """
    for job in list_jobs(user_id=user_id, limit=limit):
        typer.echo(f"{job['id']}\t{job['status']}\t{job['file_name']}\t{job['created_at']}")


@app.command()
def job(job_id: str = typer.Argument(..., help="Job id")):
    """
    Show one job with its debug payload.

    Example: screengate job 6a2b5c3d-...
    """
    record = SqlJobStore().get(job_id)
    if record is None:
        logger.error(f"Job not found: {job_id}")
        raise typer.Exit(1)
    typer.echo(record.model_dump_json(indent=2))


@app.command()
def issue_link(user_id: str = typer.Argument(..., help="User to pair a device with")):
    """
    Issue a pairing code and PIN for a user.

    Example: screengate issue-link 0f2d5b6a-...
    """
    code, pin = _pairing().issue_link(user_id)
    typer.echo(f"code={code} pin={pin}")


@app.command()
def redeem_link(
    code: str = typer.Argument(..., help="Pairing code"),
    pin: str = typer.Argument(..., help="4-digit PIN"),
):
    """
    Redeem a pairing code and print the paired user id.

    Example: screengate redeem-link ABCD2345 1234
    """
    try:
        user_id = _pairing().redeem(code, pin)
    except ScreenGateError as e:
        _fail(e)
    typer.echo(user_id)


@app.command()
def purge_links():
    """
    Delete expired pairing links.

    Example: screengate purge-links
    """
    removed = _pairing().purge_expired()
    logger.info(f"✓ Removed {removed} expired links")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
