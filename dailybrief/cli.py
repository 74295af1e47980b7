"""
dailybrief CLI - Command line interface for running delivery passes.

Usage:
    dailybrief --help                     Show all commands
    dailybrief send-briefings             Run one scheduled delivery pass
    dailybrief send-briefings --dry-run   Show who is due without sending
    dailybrief set-schedule USER_ID ...   Save a user's delivery settings
    dailybrief test-briefing USER_ID      Send a test briefing now
"""

import asyncio
import uuid
from datetime import UTC, datetime

import typer
from pydantic import ValidationError

app = typer.Typer(
    name="dailybrief",
    help="dailybrief CLI - scheduled daily briefing delivery",
    no_args_is_help=True,
)


# --- Step printer helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_skipped(message: str) -> None:
    """Print a skipped step message."""
    typer.echo(f"  ⏭️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _parse_weekdays(value: str) -> list[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise typer.BadParameter("Use comma-separated numbers 0-6 (0=Sunday)") from e


def _parse_user_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise typer.BadParameter(f"Not a UUID: {value}") from e


@app.command()
def send_briefings(
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Show decisions without claiming or sending"
    ),
):
    """Run one scheduled delivery pass over every enabled user."""
    from dailybrief.config import get_config
    from dailybrief.core.database import AsyncSessionLocal
    from dailybrief.core.errors import ScheduleStoreError
    from dailybrief.core.logging import setup_logging
    from dailybrief.scheduling.planner import plan_batch
    from dailybrief.schemas.schedule import OutcomeStatus
    from dailybrief.services.briefing_dispatch import build_pipeline, run_scheduled_briefings
    from dailybrief.services.schedule_store import SqlScheduleStore

    setup_logging()
    store = SqlScheduleStore(AsyncSessionLocal)

    async def preview() -> None:
        schedule_config = get_config().schedule
        now = datetime.now(UTC)
        records = await store.list_enabled()
        planned = plan_batch(
            records,
            now,
            on_time_minutes=schedule_config.on_time_window_minutes,
            catch_up_minutes=schedule_config.catch_up_window_minutes,
        )
        typer.echo(f"\n🕒 {now:%Y-%m-%d %H:%M} UTC, {len(planned)} enabled schedule(s)")
        for item in planned:
            line = f"{item.record.user_id} {item.record.delivery_time_utc or '--:--'} UTC"
            if item.is_due:
                late = f" ({item.minutes_late} min late)" if item.is_catch_up else ""
                _print_success(f"{line} due{late} -> {item.record.recipient_address}")
            else:
                _print_skipped(f"{line} {item.decision.value}")

    try:
        if dry_run:
            asyncio.run(preview())
            return
        report = asyncio.run(run_scheduled_briefings(store, build_pipeline(AsyncSessionLocal)))
    except ScheduleStoreError as e:
        _print_error(f"Database error: {e}")
        raise typer.Exit(1) from e

    for outcome in report.results:
        if outcome.status == OutcomeStatus.SENT:
            _print_success(f"{outcome.user_id} sent to {outcome.sent_to}")
        elif outcome.status == OutcomeStatus.SKIPPED:
            _print_skipped(f"{outcome.user_id} {outcome.reason}")
        else:
            _print_error(f"{outcome.user_id} {outcome.error}")

    typer.echo(f"\nProcessed {report.processed}, sent {report.sent}, failed {report.failed}\n")


@app.command()
def set_schedule(
    user_id: str = typer.Argument(..., help="User UUID"),
    delivery_time: str = typer.Option("08:00", "--time", "-t", help="Local time HH:MM"),
    weekdays: str = typer.Option(
        "1,2,3,4,5", "--weekdays", "-w", help="Local weekdays, 0=Sunday (e.g. 1,2,3,4,5)"
    ),
    delivery_email: str = typer.Option(..., "--email", "-e", help="Recipient(s), comma-separated"),
    timezone: str = typer.Option("UTC", "--timezone", "-z", help="IANA timezone"),
    account_email: str | None = typer.Option(
        None, "--account-email", help="Account email, used for the reply-to address"
    ),
):
    """Save a user's delivery settings (converted to UTC on save)."""
    from dailybrief.core.database import AsyncSessionLocal
    from dailybrief.core.errors import InvalidScheduleSettings
    from dailybrief.core.logging import setup_logging
    from dailybrief.schemas.schedule import ScheduleSettingsUpdate
    from dailybrief.services.schedule_store import SqlScheduleStore

    setup_logging()
    uid = _parse_user_id(user_id)

    try:
        update = ScheduleSettingsUpdate(
            delivery_time=delivery_time,
            weekdays=_parse_weekdays(weekdays),
            delivery_email=delivery_email,
            timezone=timezone,
        )
    except ValidationError as e:
        for err in e.errors():
            _print_error(str(err["msg"]))
        raise typer.Exit(1) from e

    store = SqlScheduleStore(AsyncSessionLocal)
    today = datetime.now(UTC).date()

    try:
        record = asyncio.run(store.save_settings(uid, update, today, account_email=account_email))
    except InvalidScheduleSettings as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    _print_success(
        f"{record.user_id}: {record.delivery_time_local} {record.timezone} "
        f"= {record.delivery_time_utc} UTC on weekdays {sorted(record.enabled_weekdays)}"
    )


@app.command()
def test_briefing(
    user_id: str = typer.Argument(..., help="User UUID"),
):
    """Generate and send a test briefing now, ignoring the schedule."""
    from dailybrief.core.database import AsyncSessionLocal
    from dailybrief.core.errors import DailyBriefError
    from dailybrief.core.logging import setup_logging
    from dailybrief.services.briefing_dispatch import build_pipeline, send_test_briefing
    from dailybrief.services.schedule_store import SqlScheduleStore

    setup_logging()
    uid = _parse_user_id(user_id)

    typer.echo("\n📧 Sending test briefing...")

    store = SqlScheduleStore(AsyncSessionLocal)
    try:
        outcome = asyncio.run(send_test_briefing(store, build_pipeline(AsyncSessionLocal), uid))
    except DailyBriefError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    _print_success(f"Test briefing sent to {outcome.sent_to}")
    typer.echo("")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    from alembic import command
    from alembic.config import Config as AlembicConfig

    command.upgrade(AlembicConfig("alembic.ini"), "head")
    _print_success("Database is at the latest revision")


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "dailybrief.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
