"""Filesystem collaborator -- async file I/O and watchdog event streams."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

logger = logging.getLogger("tosc_injector.fs")

CREATE = "create"
MODIFY = "modify"
DELETE = "delete"


@dataclass
class FsEvent:
    """A filesystem change: ``kind`` is create, modify or delete."""

    kind: str
    paths: list[Path] = field(default_factory=list)


async def _blocking(fn: Callable, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, fn, *args)


async def exists(path: Path) -> bool:
    return await _blocking(Path(path).exists)


async def read_text(path: Path) -> str:
    return await _blocking(lambda: Path(path).read_text(encoding="utf-8"))


async def write_text(path: Path, content: str) -> None:
    await _blocking(lambda: Path(path).write_text(content, encoding="utf-8"))


async def run_blocking(fn: Callable, *args):
    """Run a blocking callable in the default executor."""
    return await _blocking(fn, *args)


class _QueueHandler(FileSystemEventHandler):
    """Hands watchdog events (observer thread) to an asyncio queue."""

    def __init__(self, watcher: FsWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.post(FsEvent(CREATE, [Path(event.src_path)]))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.post(FsEvent(MODIFY, [Path(event.src_path)]))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.post(FsEvent(DELETE, [Path(event.src_path)]))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if not event.is_directory:
            self._watcher.post(FsEvent(DELETE, [Path(event.src_path)]))
            self._watcher.post(FsEvent(CREATE, [Path(event.dest_path)]))


class FsWatcher:
    """Watches a directory with watchdog and yields FsEvents asynchronously.

    Usage::

        watcher = FsWatcher(path)
        watcher.start()
        async for event in watcher:
            ...
        watcher.close()
    """

    def __init__(self, path: Path, *, recursive: bool = False) -> None:
        self.path = Path(path)
        self.recursive = recursive
        self.event_queue: asyncio.Queue[FsEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_QueueHandler(self), str(self.path), recursive=self.recursive)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.debug("Watching %s (recursive=%s)", self.path, self.recursive)

    def post(self, event: FsEvent) -> None:
        """Thread-safe: enqueue an event from the observer thread."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.event_queue.put_nowait, event)

    @property
    def running(self) -> bool:
        return self._observer is not None

    def close(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            logger.debug("Stopped watching %s", self.path)

    def __aiter__(self) -> AsyncIterator[FsEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[FsEvent]:
        while True:
            yield await self.event_queue.get()


def watch(path: Path, *, recursive: bool = False) -> FsWatcher:
    """Create and start a watcher for ``path``."""
    watcher = FsWatcher(path, recursive=recursive)
    watcher.start()
    return watcher
