"""CLI entrypoint for tdl-relay."""

import logging
from pathlib import Path

import rich_click as click

from tdl_relay import __version__
from tdl_relay.bot.controllers import (
    ExecCommand,
    RelayCliController,
    RunBotCommand,
    StatusCommand,
)
from tdl_relay.http.telegram import TelegramApiError

click.rich_click.USE_MARKDOWN = True
RELAY_CONTROLLER = RelayCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="tdl-relay")
def tdl_relay() -> None:
    """Telegram bot that forwards links through `tdl.sh`, one task at a time."""


@tdl_relay.command("run")
@click.option(
    "--script-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Runner script (default: `TDL_RELAY_SCRIPT_PATH` or `tdl.sh`).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def run_bot(script_path: Path | None, log_level: str) -> None:
    """Start the bot and long-poll Telegram until interrupted."""

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    try:
        lines = RELAY_CONTROLLER.run_bot(RunBotCommand(script_path=script_path))
    except (ValueError, TelegramApiError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tdl_relay.command("status")
@click.option(
    "--script-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Runner script to check instead of the resolved default.",
)
def status(script_path: Path | None) -> None:
    """Show resolved configuration and runner script presence."""

    try:
        lines = RELAY_CONTROLLER.status(StatusCommand(script_path=script_path))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tdl_relay.command("exec")
@click.argument("target")
@click.option(
    "--script-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Runner script (default: `TDL_RELAY_SCRIPT_PATH` or `tdl.sh`).",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Override the task timeout in seconds.",
)
def exec_target(target: str, script_path: Path | None, timeout_seconds: float | None) -> None:
    """Run one target through the executor and print every display update."""

    try:
        lines = RELAY_CONTROLLER.exec_target(
            ExecCommand(target=target, script_path=script_path, timeout_seconds=timeout_seconds),
            emit=click.echo,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    tdl_relay()
