"""Command-line entry point for wilt."""

import sys
from typing import NoReturn

import click
import structlog

from wilt import logging as wilt_logging
from wilt.app import WiltApp
from wilt.config import Config
from wilt.engine import Engine
from wilt.errors import StartupError, TerminalError
from wilt.registry import Registry

log = structlog.get_logger()


def _fail(exc: Exception) -> NoReturn:
    click.secho(f"wilt: {exc}", fg="red", err=True)
    sys.exit(1)


@click.command()
@click.version_option(package_name="wilt")
@click.argument("name")
def main(name: str) -> None:
    """Observe memory, cpu, and disk I/O for processes matching NAME.

    To clear and reset all entries, press `r`. Use `C` and `E` to collapse and
    expand all entries, respectively. Exit with `^C` or `q`.
    """
    if not name:
        raise click.BadParameter("must not be empty", param_hint="NAME")

    try:
        config = Config.load()
    except ValueError as exc:
        _fail(StartupError(str(exc)))

    wilt_logging.configure(config)

    engine = Engine(
        name,
        registry=Registry(history_capacity=config.sampling.history_capacity),
        interval=config.sampling.tick_interval,
        read_timeout=config.sampling.read_timeout,
    )
    try:
        engine.start()
    except StartupError as exc:
        log.error("startup_failed", error=str(exc))
        _fail(exc)

    app = WiltApp(engine, refresh_interval=config.tui.refresh_interval)
    try:
        app.run()
    except Exception as exc:
        log.exception("terminal_failed")
        _fail(TerminalError(str(exc)))

    sys.exit(app.return_code or 0)
