"""Injection engine -- upserts a script property on every node a selector matches."""

from __future__ import annotations

import dataclasses

from tosc_injector.document import SCRIPT_KEY, Node, Property, PropertyType
from tosc_injector.selectors import Selector, SelectorKind


def matches(node: Node, selector: Selector, *, is_root: bool = False) -> bool:
    """Check whether ``node`` is a target of ``selector``.

    ROOT matches only the node the injection started from.
    """
    if selector.kind is SelectorKind.ROOT:
        return is_root
    return node.has_property(selector.property_key, selector.value)


def upsert_script(properties: list[Property], script: str) -> list[Property]:
    """Return a new property list carrying exactly one ``script`` property.

    An existing ``script`` property is replaced in place; otherwise the new one
    is appended. The input list is not modified.
    """
    new_prop = Property(key=SCRIPT_KEY, type=PropertyType.STRING.value, value=script)
    replaced = False
    result: list[Property] = []
    for prop in properties:
        if prop.key == SCRIPT_KEY:
            if not replaced:
                result.append(new_prop)
                replaced = True
            continue
        result.append(prop)
    if not replaced:
        result.append(new_prop)
    return result


def inject(node: Node, script: str, selector: Selector) -> tuple[Node, int]:
    """Inject ``script`` into every node below (and including) ``node``.

    Copy-on-write: a node is rebuilt only when it or a descendant matched, so
    untouched subtrees are returned as the very same objects.

    Returns:
        The rewritten subtree and the number of nodes updated. A count of 0
        means the selector matched nothing (an orphan script).
    """
    return _inject(node, script, selector, is_root=True)


def _inject(node: Node, script: str, selector: Selector, *, is_root: bool) -> tuple[Node, int]:
    count = 0
    new_children = node.children

    # Post-order: children first
    if node.children:
        rebuilt: list[Node] = []
        changed = False
        for child in node.children:
            new_child, child_count = _inject(child, script, selector, is_root=False)
            count += child_count
            changed = changed or new_child is not child
            rebuilt.append(new_child)
        if changed:
            new_children = rebuilt

    if matches(node, selector, is_root=is_root):
        count += 1
        return (
            dataclasses.replace(
                node,
                properties=upsert_script(node.properties, script),
                children=new_children,
            ),
            count,
        )

    if new_children is not node.children:
        return dataclasses.replace(node, children=new_children), count
    return node, count
