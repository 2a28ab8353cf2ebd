"""Unit tests for the watch orchestrator (fake filesystem event streams)."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest
from rich.console import Console

from tosc_injector.codec import parse
from tosc_injector.config import InjectorConfig
from tosc_injector.display import Display
from tosc_injector.fs import CREATE, DELETE, MODIFY, FsEvent
from tosc_injector.models import WatchState
from tosc_injector.orchestrator import WatchOrchestrator


class FakeWatcher:
    """Stands in for fs.FsWatcher; tests push events onto ``queue``.

    Pushing an exception instance makes the iteration raise it.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.queue: asyncio.Queue[FsEvent | Exception] = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self) -> None:
        self.closed = True


class FakeWatchFactory:
    def __init__(self) -> None:
        self.created: list[FakeWatcher] = []
        self.failures: list[Exception] = []

    def __call__(self, path: Path) -> FakeWatcher:
        if self.failures:
            raise self.failures.pop(0)
        watcher = FakeWatcher(Path(path))
        self.created.append(watcher)
        return watcher

    def latest(self, path: Path) -> FakeWatcher:
        for watcher in reversed(self.created):
            if watcher.path == Path(path):
                return watcher
        raise AssertionError(f"no watcher for {path}")


async def wait_until(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> InjectorConfig:
    cfg = InjectorConfig()
    cfg.debounce_seconds = 0.05
    cfg.retry_delay = 0.01
    cfg.debug = False
    cfg.watch = True
    return cfg


@pytest.fixture
def display() -> Display:
    return Display(Console(file=io.StringIO()), clear=False)


@pytest.fixture
def factory() -> FakeWatchFactory:
    return FakeWatchFactory()


@pytest.fixture
def artifact(project: Path) -> Path:
    return project.with_name("layout_INJECTED.tosc")


def _node_script(artifact: Path, name: str) -> str | None:
    doc = parse(artifact.read_text(encoding="utf-8"))
    for node in doc.root.walk():
        if node.has_property("name", name):
            return node.script
    raise AssertionError(f"no node named {name}")


async def _start(orchestrator: WatchOrchestrator) -> asyncio.Task:
    task = asyncio.create_task(orchestrator.run())
    await wait_until(lambda: orchestrator.current_state is WatchState.WATCHING)
    return task


async def _shutdown(orchestrator: WatchOrchestrator, task: asyncio.Task) -> None:
    orchestrator.stop()
    await asyncio.wait_for(task, timeout=3.0)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    @pytest.mark.asyncio
    async def test_single_run_writes_artifact(self, config, display, factory, project, scripts_dir, artifact):
        (scripts_dir / "A.lua").write_text("print(1)")
        config.watch = False
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)

        await orchestrator.run()

        assert _node_script(artifact, "A") == "print(1)"
        assert orchestrator.state.loads == 1
        assert orchestrator.state.artifact_writes == 1
        assert orchestrator.current_state is WatchState.STOPPED
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_debug_files_written(self, config, display, factory, project):
        config.watch = False
        config.debug = True
        await WatchOrchestrator(config, project, display=display, watch_factory=factory).run()
        assert (project.parent / "layout_DEBUG.json").exists()
        assert (project.parent / "layout_DEBUG.tosc").exists()

    @pytest.mark.asyncio
    async def test_scripts_dir_created(self, config, display, factory, tmp_path, sample_xml):
        project = tmp_path / "fresh.tosc"
        project.write_text(sample_xml)
        config.watch = False
        await WatchOrchestrator(config, project, display=display, watch_factory=factory).run()
        assert (tmp_path / "scripts").is_dir()

    @pytest.mark.asyncio
    async def test_failed_load_retries_with_new_path(self, config, display, factory, tmp_path, project):
        broken = tmp_path / "broken.tosc"
        broken.write_bytes(b"\x00\x01 definitely not a project")
        config.watch = False
        asked: list[str] = []

        def ask_path() -> str:
            asked.append("x")
            return str(project)

        orchestrator = WatchOrchestrator(
            config, broken, display=display, ask_path=ask_path, watch_factory=factory
        )
        await orchestrator.run()

        assert asked == ["x"]
        assert orchestrator.project_path == project
        assert orchestrator.state.failed_loads == 1
        assert orchestrator.state.loads == 1

    @pytest.mark.asyncio
    async def test_state_transitions(self, config, display, factory, project):
        config.watch = False
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        await orchestrator.run()
        states = [t.state for t in orchestrator.state.state_transitions]
        assert states == ["LOADING", "STOPPED"]

    @pytest.mark.asyncio
    async def test_undecodable_globals_does_not_abort_load(self, config, display, factory, project, scripts_dir, artifact):
        (scripts_dir / "_globals.lua").write_bytes(b"\xff\xfe bad")
        (scripts_dir / "A.lua").write_text("a()")
        config.watch = False
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)

        await orchestrator.run()

        assert orchestrator.state.loads == 1
        assert orchestrator.state.failed_loads == 0
        assert _node_script(artifact, "A") == "a()"


# ---------------------------------------------------------------------------
# Watching scripts
# ---------------------------------------------------------------------------


class TestScriptsWatcher:
    @pytest.mark.asyncio
    async def test_burst_of_saves_is_debounced(self, config, display, factory, project, scripts_dir, artifact):
        script = scripts_dir / "A.lua"
        script.write_text("print(1)")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            script.write_text("print(2)")
            watcher = factory.latest(scripts_dir)
            for _ in range(3):
                watcher.queue.put_nowait(FsEvent(MODIFY, [script]))

            await wait_until(lambda: orchestrator.state.quick_patches >= 1)
            await asyncio.sleep(config.debounce_seconds * 4)

            assert orchestrator.state.quick_patches == 1
            assert orchestrator.state.artifact_writes == 1
            assert _node_script(artifact, "A") == "print(2)"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_separate_windows_apply_in_order(self, config, display, factory, project, scripts_dir, artifact):
        script = scripts_dir / "A.lua"
        script.write_text("v1")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            watcher = factory.latest(scripts_dir)
            script.write_text("v2")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: orchestrator.state.quick_patches == 1)
            script.write_text("v3")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: orchestrator.state.quick_patches == 2)
            assert _node_script(artifact, "A") == "v3"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_new_script_triggers_rebuild(self, config, display, factory, project, scripts_dir, artifact):
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            script = scripts_dir / "tag_knob.lua"
            script.write_text("k()")
            factory.latest(scripts_dir).queue.put_nowait(FsEvent(CREATE, [script]))
            await wait_until(lambda: orchestrator.state.artifact_writes == 2)
            assert _node_script(artifact, "A") == "k()"
            assert _node_script(artifact, "C") == "k()"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_deletion_clears_script(self, config, display, factory, project, scripts_dir, artifact):
        script = scripts_dir / "A.lua"
        script.write_text("print(1)")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            script.unlink()
            factory.latest(scripts_dir).queue.put_nowait(FsEvent(DELETE, [script]))
            await wait_until(lambda: orchestrator.state.artifact_writes == 2)
            assert _node_script(artifact, "A") == ""
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_non_script_files_ignored(self, config, display, factory, project, scripts_dir):
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            notes = scripts_dir / "A.txt"
            notes.write_text("hello")
            factory.latest(scripts_dir).queue.put_nowait(FsEvent(MODIFY, [notes]))
            await asyncio.sleep(config.debounce_seconds * 4)
            assert orchestrator.state.artifact_writes == 1
            assert orchestrator._timers == {}
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_globals_change_reinjects_everything(self, config, display, factory, project, scripts_dir, artifact):
        (scripts_dir / "_globals.lua").write_text("G = 1")
        (scripts_dir / "A.lua").write_text("a()")
        (scripts_dir / "C.lua").write_text("c()")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            globals_path = scripts_dir / "_globals.lua"
            globals_path.write_text("G = 2")
            factory.latest(scripts_dir).queue.put_nowait(FsEvent(MODIFY, [globals_path]))
            await wait_until(lambda: orchestrator.state.artifact_writes == 2)
            assert _node_script(artifact, "A") == "G = 2\n\na()"
            assert _node_script(artifact, "C") == "G = 2\n\nc()"
            assert orchestrator.state.quick_patches == 0
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_updates_after_globals_change_use_new_globals(
        self, config, display, factory, project, scripts_dir, artifact
    ):
        (scripts_dir / "_globals.lua").write_text("G = 1")
        script = scripts_dir / "A.lua"
        script.write_text("a()")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            watcher = factory.latest(scripts_dir)
            globals_path = scripts_dir / "_globals.lua"
            globals_path.write_text("G = 2")
            watcher.queue.put_nowait(FsEvent(MODIFY, [globals_path]))
            await wait_until(lambda: orchestrator.state.artifact_writes == 2)

            script.write_text("a(2)")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: orchestrator.state.quick_patches == 1)
            assert _node_script(artifact, "A") == "G = 2\n\na(2)"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_undecodable_change_is_skipped(self, config, display, factory, project, scripts_dir, artifact):
        script = scripts_dir / "A.lua"
        script.write_text("a()")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            watcher = factory.latest(scripts_dir)
            script.write_bytes(b"\xff\xfe bad")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await asyncio.sleep(config.debounce_seconds * 4)
            assert orchestrator.current_state is WatchState.WATCHING
            assert orchestrator.state.artifact_writes == 1
            assert _node_script(artifact, "A") == "a()"

            script.write_text("a(2)")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: orchestrator.state.quick_patches == 1)
            assert _node_script(artifact, "A") == "a(2)"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_undecodable_globals_change_is_skipped(
        self, config, display, factory, project, scripts_dir, artifact
    ):
        globals_path = scripts_dir / "_globals.lua"
        globals_path.write_text("G = 1")
        script = scripts_dir / "A.lua"
        script.write_text("a()")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            watcher = factory.latest(scripts_dir)
            globals_path.write_bytes(b"\xff\xfe bad")
            watcher.queue.put_nowait(FsEvent(MODIFY, [globals_path]))
            await wait_until(lambda: orchestrator.state.artifact_writes == 2)
            assert _node_script(artifact, "A") == "a()"

            script.write_text("a(2)")
            watcher.queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: orchestrator.state.quick_patches == 1)
            assert _node_script(artifact, "A") == "a(2)"
        finally:
            await _shutdown(orchestrator, task)


# ---------------------------------------------------------------------------
# Watching the project file
# ---------------------------------------------------------------------------


class TestProjectWatcher:
    @pytest.mark.asyncio
    async def test_project_change_restarts(self, config, display, factory, project, scripts_dir, artifact):
        script = scripts_dir / "A.lua"
        script.write_text("print(1)")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            first_scripts = factory.latest(scripts_dir)
            first_project = factory.latest(project.parent)

            first_project.queue.put_nowait(FsEvent(MODIFY, [project]))
            await wait_until(lambda: orchestrator.state.loads == 2)
            await wait_until(lambda: orchestrator.current_state is WatchState.WATCHING)

            assert first_scripts.closed and first_project.closed
            assert factory.latest(scripts_dir) is not first_scripts
            states = [t.state for t in orchestrator.state.state_transitions]
            assert "RESTARTING" in states
            # Fresh session: caches were rebuilt from scratch
            assert orchestrator.session.cache.get("A") == "print(1)"
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_artifact_write_does_not_restart(self, config, display, factory, project, artifact):
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            factory.latest(project.parent).queue.put_nowait(FsEvent(MODIFY, [artifact]))
            await asyncio.sleep(0.1)
            assert orchestrator.state.loads == 1
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_pending_timers_dropped_on_restart(self, config, display, factory, project, scripts_dir):
        config.debounce_seconds = 5.0
        script = scripts_dir / "A.lua"
        script.write_text("print(1)")
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            factory.latest(scripts_dir).queue.put_nowait(FsEvent(MODIFY, [script]))
            await wait_until(lambda: bool(orchestrator._timers))
            factory.latest(project.parent).queue.put_nowait(FsEvent(MODIFY, [project]))
            await wait_until(lambda: orchestrator.state.loads == 2)
            assert orchestrator._timers == {}
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, config, display, factory, project):
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        await _shutdown(orchestrator, task)
        assert task.done()
        assert orchestrator.current_state is WatchState.STOPPED
        assert all(w.closed for w in factory.created)

    @pytest.mark.asyncio
    async def test_scripts_watcher_failure_restarts(self, config, display, factory, project, scripts_dir):
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = await _start(orchestrator)
        try:
            first_scripts = factory.latest(scripts_dir)
            first_scripts.queue.put_nowait(RuntimeError("inotify went away"))
            await wait_until(lambda: orchestrator.state.loads == 2)
            await wait_until(lambda: orchestrator.current_state is WatchState.WATCHING)
            assert first_scripts.closed
            assert factory.latest(scripts_dir) is not first_scripts
        finally:
            await _shutdown(orchestrator, task)

    @pytest.mark.asyncio
    async def test_watch_start_failure_restarts(self, config, display, factory, project, scripts_dir):
        factory.failures.append(FileNotFoundError("scripts directory vanished"))
        orchestrator = WatchOrchestrator(config, project, display=display, watch_factory=factory)
        task = asyncio.create_task(orchestrator.run())
        try:
            await wait_until(lambda: orchestrator.state.loads == 2 and len(factory.created) == 2)
            await wait_until(lambda: orchestrator.current_state is WatchState.WATCHING)
            states = [t.state for t in orchestrator.state.state_transitions]
            assert "RESTARTING" in states
            assert not task.done()
        finally:
            await _shutdown(orchestrator, task)
