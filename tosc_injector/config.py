"""tosc-injector configuration -- layered: CLI flags > env vars > defaults."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("tosc_injector.config")

_TRUTHY = ("true", "1", "yes")


def _env(key: str, default: str = "") -> str:
    """Look up a TOSC_INJECT_* environment variable, falling back to ``default``."""
    val = os.environ.get(key)
    if val:
        return val
    return default


@dataclass
class InjectorConfig:
    """Configuration for a tosc-injector run."""

    # Project
    project_file: str = field(
        default_factory=lambda: _env("TOSC_INJECT_PROJECT_FILE")
    )
    scripts_dir_name: str = field(
        default_factory=lambda: _env("TOSC_INJECT_SCRIPTS_DIR", "scripts")
    )
    script_extension: str = field(
        default_factory=lambda: _env("TOSC_INJECT_SCRIPT_EXT", ".lua")
    )
    artifact_suffix: str = field(
        default_factory=lambda: _env("TOSC_INJECT_ARTIFACT_SUFFIX", "_INJECTED")
    )

    # Timing
    debounce_seconds: float = field(
        default_factory=lambda: float(_env("TOSC_INJECT_DEBOUNCE", "0.2"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(_env("TOSC_INJECT_RETRY_DELAY", "2.5"))
    )

    # Behaviour
    debug: bool = field(
        default_factory=lambda: _env("TOSC_INJECT_DEBUG").lower() in _TRUTHY
    )
    watch: bool = field(
        default_factory=lambda: _env("TOSC_INJECT_WATCH", "true").lower() in _TRUTHY
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: _env("TOSC_INJECT_LOG_LEVEL", "INFO")
    )
    log_file: str | None = field(
        default_factory=lambda: os.environ.get("TOSC_INJECT_LOG_FILE")
    )

    def __post_init__(self) -> None:
        if self.script_extension and not self.script_extension.startswith("."):
            self.script_extension = "." + self.script_extension

    def resolve_project_path(self, raw: str, base: Path | None = None) -> Path:
        """Turn operator input into an absolute project path.

        Dragging a file into a terminal pastes it quoted on some platforms,
        and relative paths are taken relative to ``base`` (default: CWD).
        """
        cleaned = raw.strip().strip("'\"")
        if cleaned.startswith("./"):
            cleaned = cleaned[2:]
        path = Path(cleaned).expanduser()
        if not path.is_absolute():
            path = (base or Path.cwd()) / path
        return path

    def scripts_dir(self, project_path: Path) -> Path:
        """Scripts live in a directory beside the project file."""
        return Path(project_path).parent / self.scripts_dir_name


def setup_logging(config: InjectorConfig) -> None:
    """Configure Python logging."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    fmt = "%(asctime)s %(name)-28s %(levelname)-5s %(message)s"
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(max(level, logging.INFO))
