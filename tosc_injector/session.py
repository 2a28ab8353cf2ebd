"""Per-load state: the live Document plus everything derived from it."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from tosc_injector.cache import InjectionLog, ScriptCache
from tosc_injector.document import Document


@dataclass
class Session:
    """Everything that is discarded when the project file changes.

    Owned by the orchestrator; the strategist receives it by reference.
    """

    project_path: Path
    scripts_dir: Path
    artifact_path: Path
    document: Document
    script_extension: str = ".lua"
    cache: ScriptCache = field(default_factory=ScriptCache)
    log: InjectionLog = field(default_factory=InjectionLog)
    globals_text: str | None = None

    def script_path(self, identifier: str) -> Path:
        return self.scripts_dir / f"{identifier}{self.script_extension}"

    def is_script(self, path: Path) -> bool:
        return Path(path).suffix == self.script_extension

    def clear(self) -> None:
        self.cache.clear()
        self.log.clear()
        self.globals_text = None
