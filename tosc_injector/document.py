"""In-memory model of a TouchOSC layout document."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SCRIPT_KEY = "script"


class PropertyType(str, Enum):
    BOOLEAN = "b"
    STRING = "s"
    INTEGER = "i"
    FLOAT = "f"
    COLOR = "c"
    FRAME = "r"


# Component order for composite property values
COMPOSITE_FIELDS: dict[str, tuple[str, ...]] = {
    PropertyType.COLOR.value: ("r", "g", "b", "a"),
    PropertyType.FRAME.value: ("x", "y", "w", "h"),
}


@dataclass(slots=True)
class Property:
    """A typed key/value pair on a node.

    Scalar values keep their serialized text; color and frame values are
    component maps in document order.
    """

    key: str
    type: str
    value: str | dict[str, str]

    @property
    def is_composite(self) -> bool:
        return isinstance(self.value, dict)

    def typed_value(self) -> Any:
        """Return the value converted to the Python type its tag names."""
        if isinstance(self.value, dict):
            return {k: float(v) for k, v in self.value.items()}
        if self.type == PropertyType.BOOLEAN.value:
            return self.value == "1"
        if self.type == PropertyType.INTEGER.value:
            return int(self.value)
        if self.type == PropertyType.FLOAT.value:
            return float(self.value)
        return self.value


@dataclass(slots=True)
class Value:
    """One entry of a node's value-descriptor block."""

    key: str
    fields: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Node:
    """A control or container in the layout tree.

    ``children`` is ``None`` for leaf controls. ``extra`` holds child elements
    the model does not interpret (``messages`` and the like) so they survive a
    round trip.
    """

    id: str
    type: str
    properties: list[Property] = field(default_factory=list)
    values: list[Value] = field(default_factory=list)
    children: list[Node] | None = None
    extra: list[ET.Element] = field(default_factory=list)

    @property
    def is_container(self) -> bool:
        return self.children is not None

    def get_property(self, key: str) -> Property | None:
        for prop in self.properties:
            if prop.key == key:
                return prop
        return None

    def has_property(self, key: str, value: str) -> bool:
        return any(p.key == key and p.value == value for p in self.properties)

    @property
    def script(self) -> str | None:
        prop = self.get_property(SCRIPT_KEY)
        return prop.value if prop is not None and isinstance(prop.value, str) else None

    def walk(self):
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children or ():
            yield from child.walk()


@dataclass
class Document:
    """A parsed project: the root container plus format version markers."""

    root: Node
    xml_version: str = "1.0"
    encoding: str = "UTF-8"
    lexml_version: str = "3"

    def find_all(self, key: str, value: str) -> list[Node]:
        return [n for n in self.root.walk() if n.has_property(key, value)]

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view of the document, used for debug dumps."""
        return {
            "xml": {"version": self.xml_version, "encoding": self.encoding},
            "lexml": {"version": self.lexml_version, "node": _node_to_dict(self.root)},
        }


def _node_to_dict(node: Node) -> dict[str, Any]:
    data: dict[str, Any] = {
        "ID": node.id,
        "type": node.type,
        "properties": [
            {"type": p.type, "key": p.key, "value": p.value} for p in node.properties
        ],
        "values": [{"key": v.key, **v.fields} for v in node.values],
    }
    if node.children is not None:
        data["children"] = [_node_to_dict(c) for c in node.children]
    return data
