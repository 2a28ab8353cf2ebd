"""Pydantic models for orchestrator state and pass reporting."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


# ── Orchestrator States ───────────────────────────────────────────────

class WatchState(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    WATCHING = "WATCHING"
    PATCHING = "PATCHING"
    REBUILDING = "REBUILDING"
    RESTARTING = "RESTARTING"
    STOPPED = "STOPPED"


class StateTransition(BaseModel):
    state: str
    entered_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class SessionState(BaseModel):
    """Bookkeeping for one orchestrator run (across restarts)."""

    current_state: str = WatchState.IDLE.value
    state_transitions: list[StateTransition] = []
    loads: int = 0
    failed_loads: int = 0
    artifact_writes: int = 0
    quick_patches: int = 0


# ── Update Results ────────────────────────────────────────────────────

class RebuildRequirement(str, Enum):
    NONE = "none"
    QUICK_PATCHED = "quick_patched"
    FULL_REBUILD_NEEDED = "full_rebuild_needed"


class ApplyResult(BaseModel):
    """Outcome of applying one script file."""

    identifier: str
    requirement: RebuildRequirement
    count: int = 0

    @property
    def needs_write(self) -> bool:
        return self.requirement is RebuildRequirement.FULL_REBUILD_NEEDED


class PassReport(BaseModel):
    """Summary of a full pass over the scripts directory."""

    scripts_found: int = 0
    globals_found: bool = False
    requires_rebuild: bool = False
    results: list[ApplyResult] = []
    counts: dict[str, int] = {}

    @property
    def orphans(self) -> list[str]:
        return sorted(k for k, v in self.counts.items() if v == 0)
