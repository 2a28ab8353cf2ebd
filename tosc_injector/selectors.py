"""Script file name -> injection target.

The naming contract with script authors:

    _root.lua      the document's root node
    tag_<x>.lua    every node whose ``tag`` property is ``<x>``
    <name>.lua     every node whose ``name`` property is ``<name>``

``_globals.lua`` is not a target; its text is prepended to every other script.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ROOT_ID = "_root"
GLOBALS_ID = "_globals"
TAG_PREFIX = "tag_"


class SelectorKind(str, Enum):
    ROOT = "root"
    TAG = "tag"
    NAME = "name"


@dataclass(frozen=True, slots=True)
class Selector:
    kind: SelectorKind
    value: str | None = None

    @property
    def property_key(self) -> str | None:
        """Node property compared against ``value`` (None for ROOT)."""
        if self.kind is SelectorKind.ROOT:
            return None
        return self.kind.value

    @property
    def log_key(self) -> str:
        if self.kind is SelectorKind.ROOT:
            return ROOT_ID
        return f"{self.kind.value}: {self.value}"

    def __str__(self) -> str:
        return self.log_key


ROOT = Selector(SelectorKind.ROOT)


def is_globals(identifier: str) -> bool:
    return identifier == GLOBALS_ID


def resolve_selector(identifier: str) -> Selector:
    """Map a script identifier (file name without extension) to a Selector."""
    if identifier == ROOT_ID:
        return ROOT
    if identifier.startswith(TAG_PREFIX):
        return Selector(SelectorKind.TAG, identifier[len(TAG_PREFIX):])
    return Selector(SelectorKind.NAME, identifier)
