"""tosc-inject -- command-line entry point.

Usage:
    tosc-inject [OPTIONS] [PROJECT_FILE]

Without PROJECT_FILE the operator is asked to drag one into the terminal.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from tosc_injector import __version__
from tosc_injector.config import InjectorConfig, setup_logging
from tosc_injector.display import Display
from tosc_injector.orchestrator import WatchOrchestrator

logger = logging.getLogger("tosc_injector")

PROMPT = "Drag a .tosc file into this window, then press enter"


def ask_for_project_path() -> str:
    """Prompt until the operator enters something."""
    answer = ""
    while not answer.strip():
        answer = click.prompt(PROMPT, default="", show_default=False)
    return answer


def apply_cli_overrides(
    config: InjectorConfig,
    *,
    project_file: str | None = None,
    debug: bool = False,
    once: bool = False,
    debounce: float | None = None,
    scripts_dir: str | None = None,
    log_file: str | None = None,
    verbose: bool = False,
) -> InjectorConfig:
    """Apply CLI arguments to the config, overriding env/defaults."""
    if project_file:
        config.project_file = project_file
    if debug:
        config.debug = True
        config.log_level = "DEBUG"
    if once:
        config.watch = False
    if debounce is not None:
        config.debounce_seconds = debounce
    if scripts_dir:
        config.scripts_dir_name = scripts_dir
    if log_file:
        config.log_file = log_file
    if verbose:
        config.log_level = "DEBUG"
    return config


@click.command()
@click.argument("project_file", required=False)
@click.option("--debug", is_flag=True, help="Write _DEBUG.json/_DEBUG.tosc dumps and log verbosely.")
@click.option("--once", is_flag=True, help="Inject and write once, then exit without watching.")
@click.option("--debounce", type=float, help="Quiescence window for script saves, in seconds.")
@click.option("--scripts-dir", help="Scripts directory name beside the project file.")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Log to file in addition to stdout.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(__version__, prog_name="tosc-inject")
def main(
    project_file: str | None,
    debug: bool,
    once: bool,
    debounce: float | None,
    scripts_dir: str | None,
    log_file: str | None,
    verbose: bool,
) -> None:
    """Inject scripts/*.lua into a TouchOSC project and keep it in sync."""
    config = apply_cli_overrides(
        InjectorConfig(),
        project_file=project_file,
        debug=debug,
        once=once,
        debounce=debounce,
        scripts_dir=scripts_dir,
        log_file=log_file,
        verbose=verbose,
    )
    setup_logging(config)

    raw_path = config.project_file or ask_for_project_path()
    project_path = config.resolve_project_path(raw_path)
    logger.info("Project file: %s", project_path)

    orchestrator = WatchOrchestrator(
        config,
        project_path,
        display=Display(clear=not config.debug),
        ask_path=ask_for_project_path,
    )
    try:
        asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
