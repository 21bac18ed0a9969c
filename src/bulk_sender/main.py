"""CLI entrypoint for bulk-sender."""

import logging
from pathlib import Path

import rich_click as click

from bulk_sender import __version__
from bulk_sender.dispatch.controllers import (
    CheckCommand,
    DispatchCliController,
    NormalizeCommand,
    SendCommand,
)

click.rich_click.USE_MARKDOWN = True
DISPATCH_CONTROLLER = DispatchCliController()


@click.group()
@click.version_option(version=__version__, prog_name="bulk-sender")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def bulk_sender(log_level: str) -> None:
    """Send one message to many WhatsApp Web recipients, one at a time.

    Uses a persistent browser profile: log in once with `bulk-sender check`.
    """

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@bulk_sender.command("send")
@click.option(
    "--to",
    "targets",
    multiple=True,
    help="Recipient number(s) with country code; commas allowed. Can be repeated.",
)
@click.option(
    "--targets-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File with one recipient per line (or comma separated).",
)
@click.option("--message", "-m", required=True, help="Message text to send.")
@click.option(
    "--delay",
    "delay_seconds",
    type=click.FloatRange(min=0),
    default=5.0,
    show_default=True,
    help="Seconds to wait between recipients.",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=False,
    show_default=True,
    help="Run the whole pipeline against a simulated surface, without a browser.",
)
@click.option(
    "--events-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Append every progress event to this JSONL file.",
)
@click.option(
    "--skip-delivered/--no-skip-delivered",
    default=False,
    show_default=True,
    help="Skip recipients already marked sent in --events-path.",
)
@click.option(
    "--user-data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Browser profile directory holding the WhatsApp Web session.",
)
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
def send(  # noqa: PLR0913
    targets: tuple[str, ...],
    targets_file: Path | None,
    message: str,
    delay_seconds: float,
    dry_run: bool,
    events_path: Path | None,
    skip_delivered: bool,
    user_data_dir: Path | None,
    yes: bool,
) -> None:
    """Deliver `--message` to every recipient in order."""

    command = SendCommand(
        targets=targets,
        targets_file=targets_file,
        message=message,
        delay_ms=round(delay_seconds * 1000),
        dry_run=dry_run,
        events_path=events_path,
        skip_delivered=skip_delivered,
        user_data_dir=user_data_dir,
    )
    try:
        plan = DISPATCH_CONTROLLER.plan(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(plan.lines)
    if plan.needs_confirmation and not yes:
        click.confirm(
            f"Send to {len(plan.job.targets)} recipients? "
            f"This will take approximately {plan.eta_minutes} minute(s).",
            abort=True,
        )

    try:
        result = DISPATCH_CONTROLLER.send(command, plan, progress=click.echo)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    click.echo(result.lines[-1])
    if not result.success:
        raise click.ClickException("Some recipients were not delivered.")


@bulk_sender.command("normalize")
@click.option("--to", "targets", multiple=True, help="Recipient number(s). Can be repeated.")
@click.option(
    "--targets-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File with one recipient per line (or comma separated).",
)
def normalize(targets: tuple[str, ...], targets_file: Path | None) -> None:
    """Show how recipients will be normalized and deduplicated."""

    _emit_lines(
        DISPATCH_CONTROLLER.normalize(
            NormalizeCommand(targets=targets, targets_file=targets_file),
        ),
    )


@bulk_sender.command("check")
@click.option(
    "--user-data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Browser profile directory holding the WhatsApp Web session.",
)
def check(user_data_dir: Path | None) -> None:
    """Open the surface and report whether it is logged in and ready."""

    try:
        result = DISPATCH_CONTROLLER.check(CheckCommand(user_data_dir=user_data_dir))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Surface is not ready.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    bulk_sender()
