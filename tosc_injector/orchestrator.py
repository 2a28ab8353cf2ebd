"""Watch orchestrator -- load, inject, then keep the artifact in sync.

Two loops run per session: one over the scripts directory and one over the
project file. Every Document mutation happens inside the scripts loop's task;
debounce timers only post the path back onto that loop's work queue. When the
project file changes, the scripts loop is cancelled and awaited before the
session is discarded and a new one is loaded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from tosc_injector import codec, fs
from tosc_injector.config import InjectorConfig
from tosc_injector.display import Display
from tosc_injector.errors import InjectorError
from tosc_injector.fs import CREATE, MODIFY, FsEvent
from tosc_injector.models import RebuildRequirement, SessionState, StateTransition, WatchState
from tosc_injector.selectors import GLOBALS_ID
from tosc_injector.session import Session
from tosc_injector.strategist import UpdateStrategist

logger = logging.getLogger("tosc_injector.orchestrator")

# Returns an async-iterable watcher with a close() method
WatchFactory = Callable[[Path], Any]
PathProvider = Callable[[], str]


@dataclass
class DebouncedChange:
    """A script path whose quiescence window has elapsed."""

    path: Path


@dataclass
class WatcherStopped:
    """The scripts watcher's event stream ended, with ``error`` if it raised."""

    error: Exception | None = None


class WatchOrchestrator:
    """Drives load -> inject -> write, then watches for changes until stopped."""

    def __init__(
        self,
        config: InjectorConfig,
        project_path: Path,
        *,
        display: Display | None = None,
        ask_path: PathProvider | None = None,
        watch_factory: WatchFactory = fs.watch,
    ) -> None:
        self.config = config
        self.project_path = Path(project_path)
        self.display = display or Display()
        self.ask_path = ask_path
        self.watch_factory = watch_factory

        self.state = SessionState()
        self.session: Session | None = None
        self._timers: dict[Path, asyncio.Task] = {}
        self._stop_event = asyncio.Event()

    # ── State ────────────────────────────────────────────────────────

    @property
    def current_state(self) -> WatchState:
        return WatchState(self.state.current_state)

    def _set_state(self, new_state: WatchState) -> None:
        if self.state.current_state == new_state.value:
            return
        self.state.state_transitions.append(StateTransition(state=new_state.value))
        self.state.current_state = new_state.value
        logger.debug("State -> %s", new_state.value)

    def stop(self) -> None:
        """Ask the orchestrator to finish after the current event."""
        self._stop_event.set()

    # ── Top level ────────────────────────────────────────────────────

    async def run(self) -> None:
        """Load and watch until stopped, restarting when the project file changes."""
        try:
            while not self._stop_event.is_set():
                self.display.banner()
                session = await self._load_with_retry()
                if session is None or not self.config.watch:
                    break
                if not await self._watch(session):
                    break
        finally:
            self._cancel_timers()
            self.session = None
            self._set_state(WatchState.STOPPED)

    async def _load_with_retry(self) -> Session | None:
        """Load the project, reporting failures and retrying after a delay."""
        while not self._stop_event.is_set():
            try:
                return await self.load()
            except (InjectorError, OSError) as exc:
                self.state.failed_loads += 1
                logger.error("Loading %s failed: %s", self.project_path, exc)
                self.display.failure(str(exc), self.config.retry_delay)
                await asyncio.sleep(self.config.retry_delay)
                if self.ask_path is not None:
                    raw = await fs.run_blocking(self.ask_path)
                    self.project_path = self.config.resolve_project_path(raw)
        return None

    async def load(self) -> Session:
        """Decode, parse, inject every script and write the artifact.

        Raises:
            InjectorError: If the project file cannot be decoded or parsed, or
                has no usable file name.
        """
        self._set_state(WatchState.LOADING)
        project_path = self.project_path
        artifact = codec.artifact_path(project_path, self.config.artifact_suffix)

        document = await fs.run_blocking(codec.load_document, project_path)
        if self.config.debug:
            await fs.run_blocking(codec.write_debug_files, document, project_path)

        scripts_dir = self.config.scripts_dir(project_path)
        if not await fs.exists(scripts_dir):
            await fs.run_blocking(lambda: scripts_dir.mkdir(parents=True, exist_ok=True))
            logger.info("Created scripts directory %s", scripts_dir)

        session = Session(
            project_path=project_path,
            scripts_dir=scripts_dir,
            artifact_path=artifact,
            document=document,
            script_extension=self.config.script_extension,
        )
        report = await UpdateStrategist(session).apply_all()
        self.display.results(report.counts)
        await self._write(session)

        self.session = session
        self.state.loads += 1
        return session

    async def _write(self, session: Session) -> bool:
        try:
            await fs.run_blocking(codec.write_document, session.document, session.artifact_path)
        except OSError as exc:
            logger.error("Writing %s failed: %s", session.artifact_path, exc)
            return False
        self.state.artifact_writes += 1
        self.display.written(session.artifact_path)
        return True

    # ── Watching ─────────────────────────────────────────────────────

    async def _watch(self, session: Session) -> bool:
        """Run both loops for one session. Returns True when a restart is due."""
        self._set_state(WatchState.WATCHING)
        watchers: list[Any] = []
        try:
            watchers.append(self.watch_factory(session.scripts_dir))
            watchers.append(self.watch_factory(session.project_path.parent))
        except Exception as exc:
            logger.error("Could not watch %s: %s", session.scripts_dir, exc)
            self.display.failure(str(exc), self.config.retry_delay)
            for watcher in watchers:
                watcher.close()
            session.clear()
            self.session = None
            await asyncio.sleep(self.config.retry_delay)
            return self._restart_due()
        scripts_watcher, project_watcher = watchers
        self.display.watching(session.scripts_dir, session.project_path)

        scripts_task = asyncio.create_task(self._scripts_loop(session, scripts_watcher))
        project_task = asyncio.create_task(self._project_loop(session, project_watcher))
        stop_task = asyncio.create_task(self._stop_event.wait())
        restart = False
        try:
            done, _ = await asyncio.wait(
                {scripts_task, project_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if project_task in done:
                exc = project_task.exception()
                if exc is not None:
                    logger.error("Project watcher stopped unexpectedly: %s", exc)
                restart = exc is not None or project_task.result()
            elif scripts_task in done:
                exc = scripts_task.exception()
                logger.error("Scripts watcher stopped unexpectedly: %s", exc)
                restart = True
        finally:
            # Nothing else may touch the session until the scripts loop is gone
            for task in (scripts_task, project_task, stop_task):
                task.cancel()
            await asyncio.gather(scripts_task, project_task, stop_task, return_exceptions=True)
            self._cancel_timers()
            scripts_watcher.close()
            project_watcher.close()
            session.clear()
            self.session = None

        return restart and self._restart_due()

    def _restart_due(self) -> bool:
        if self._stop_event.is_set():
            return False
        self._set_state(WatchState.RESTARTING)
        logger.info("Reloading %s", self.project_path)
        return True

    def _cancel_timers(self) -> None:
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def _project_loop(self, session: Session, watcher: Any) -> bool:
        target = session.project_path.resolve()
        async for event in watcher:
            if event.kind not in (MODIFY, CREATE):
                continue
            if any(Path(p).resolve() == target for p in event.paths):
                return True
        return False

    async def _scripts_loop(self, session: Session, watcher: Any) -> None:
        strategist = UpdateStrategist(session)
        work: asyncio.Queue[FsEvent | DebouncedChange | WatcherStopped] = asyncio.Queue()
        forward = asyncio.create_task(self._forward(watcher, work))
        try:
            while True:
                item = await work.get()
                if isinstance(item, WatcherStopped):
                    if item.error is not None:
                        raise item.error
                    return
                if isinstance(item, DebouncedChange):
                    await self._apply_change(strategist, item.path)
                else:
                    await self._on_script_event(strategist, item, work)
        finally:
            forward.cancel()

    @staticmethod
    async def _forward(watcher: Any, work: asyncio.Queue) -> None:
        """Move watcher events onto the work queue, then report how the stream ended."""
        try:
            async for event in watcher:
                work.put_nowait(event)
        except Exception as exc:
            work.put_nowait(WatcherStopped(exc))
        else:
            work.put_nowait(WatcherStopped())

    async def _on_script_event(
        self,
        strategist: UpdateStrategist,
        event: FsEvent,
        work: asyncio.Queue,
    ) -> None:
        session = strategist.session
        for path in event.paths:
            path = Path(path)
            if not session.is_script(path):
                logger.debug("Ignoring non-script file: %s", path)
                continue
            if path.stem == GLOBALS_ID:
                await self._apply_globals(strategist, path)
            else:
                self._debounce(path, work)

    def _debounce(self, path: Path, work: asyncio.Queue) -> None:
        """(Re)start the quiescence timer for ``path``; the last event wins."""
        pending = self._timers.pop(path, None)
        if pending is not None:
            pending.cancel()
        self._timers[path] = asyncio.create_task(self._fire_later(path, work))

    async def _fire_later(self, path: Path, work: asyncio.Queue) -> None:
        await asyncio.sleep(self.config.debounce_seconds)
        if self._timers.get(path) is asyncio.current_task():
            del self._timers[path]
        work.put_nowait(DebouncedChange(path))

    async def _apply_change(self, strategist: UpdateStrategist, path: Path) -> None:
        session = strategist.session
        self.display.change(path)
        self._set_state(WatchState.PATCHING)
        try:
            result = await strategist.apply_change(path)
        except Exception as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            self._set_state(WatchState.WATCHING)
            return

        if result is not None:
            if result.requirement is RebuildRequirement.QUICK_PATCHED:
                self.state.quick_patches += 1
            elif result.needs_write:
                self._set_state(WatchState.REBUILDING)
                self.display.results(session.log.current)
                await self._write(session)
        self._set_state(WatchState.WATCHING)

    async def _apply_globals(self, strategist: UpdateStrategist, path: Path) -> None:
        self.display.change(path)
        logger.info("Globals script changed, re-injecting all scripts")
        self._set_state(WatchState.REBUILDING)
        try:
            report = await strategist.apply_all()
        except Exception as exc:
            logger.warning("Skipping globals update: %s", exc)
            self._set_state(WatchState.WATCHING)
            return
        if report.requires_rebuild:
            self.display.results(report.counts)
            await self._write(strategist.session)
        self._set_state(WatchState.WATCHING)
