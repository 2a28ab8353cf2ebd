"""Script cache and injection log -- bookkeeping for the update strategist."""

from __future__ import annotations


class ScriptCache:
    """Last-applied effective text per script identifier.

    Identifiers whose backing file was deleted are remembered in ``removed``
    so a later re-creation is not mistaken for an orphan selector.
    """

    def __init__(self) -> None:
        self._texts: dict[str, str] = {}
        self.removed: set[str] = set()

    def get(self, identifier: str) -> str | None:
        return self._texts.get(identifier)

    def set(self, identifier: str, text: str) -> None:
        self._texts[identifier] = text
        self.removed.discard(identifier)

    def forget(self, identifier: str) -> None:
        """Drop the record for a deleted script file."""
        self._texts.pop(identifier, None)
        self.removed.add(identifier)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._texts

    def __len__(self) -> int:
        return len(self._texts)

    def clear(self) -> None:
        self._texts.clear()
        self.removed.clear()


class InjectionLog:
    """Match counts per selector log key, kept in two generations.

    ``previous`` is the snapshot from the last completed pass and is what the
    strategist consults; ``current`` accumulates the pass in progress.
    """

    def __init__(self) -> None:
        self.previous: dict[str, int] = {}
        self.current: dict[str, int] = {}

    def begin_pass(self) -> None:
        """Start a full pass over all scripts.

        The snapshot keeps counts merged in by single-file updates as well as
        the working log, so every selector known so far is carried over.
        """
        self.previous = {**self.previous, **self.current}
        self.current = {}

    def end_pass(self) -> None:
        self.previous = dict(self.current)

    def begin_update(self) -> None:
        """Start a single-file update; the snapshot is kept."""
        self.current = {}

    def commit_update(self) -> None:
        self.previous.update(self.current)

    def record(self, key: str, count: int) -> None:
        self.current[key] = count

    def previous_count(self, key: str) -> int | None:
        return self.previous.get(key)

    def is_orphan(self, key: str) -> bool:
        return self.previous.get(key) == 0

    def clear(self) -> None:
        self.previous.clear()
        self.current.clear()
