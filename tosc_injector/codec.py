"""Codec boundary -- .tosc container <-> Document.

A .tosc file is either plain XML or zlib-compressed XML. The serializer writes
``key`` and ``value`` text as CDATA, the way TouchOSC itself does, and keeps
script text byte for byte so the artifact can be patched textually later.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
import zlib
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

from tosc_injector.document import COMPOSITE_FIELDS, Document, Node, Property, Value
from tosc_injector.errors import ConfigurationError, DecodeError, ParseError
from tosc_injector.timing import Stopwatch

logger = logging.getLogger("tosc_injector.codec")

DEFAULT_ARTIFACT_SUFFIX = "_INJECTED"
DEBUG_SUFFIX = "_DEBUG"
PROJECT_EXTENSION = ".tosc"

_XML_DECL = re.compile(
    r"""^\s*<\?xml\s+version=["']([^"']+)["'](?:\s+encoding=["']([^"']+)["'])?"""
)
_CDATA_TAGS = {"key", "value"}


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def project_stem(project_path: Path) -> str:
    """File name of the project without its extension.

    Raises:
        ConfigurationError: If no stem can be determined from the path.
    """
    stem = Path(project_path).stem
    if not stem or stem in (".", ".."):
        raise ConfigurationError(f"Could not determine file name from {project_path!s}")
    return stem


def artifact_path(project_path: Path, suffix: str = DEFAULT_ARTIFACT_SUFFIX) -> Path:
    """Sibling path the injected project is written to."""
    project_path = Path(project_path)
    return project_path.with_name(f"{project_stem(project_path)}{suffix}{PROJECT_EXTENSION}")


# ---------------------------------------------------------------------------
# Decode / parse
# ---------------------------------------------------------------------------


def decode_bytes(raw: bytes) -> str:
    """Turn raw .tosc bytes into XML text, inflating when needed."""
    probe = raw.lstrip(b"\xef\xbb\xbf \t\r\n")
    if probe.startswith(b"<?xml") or probe.startswith(b"<lexml"):
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Project file is not valid UTF-8: {exc}") from exc

    try:
        inflated = zlib.decompress(raw)
    except zlib.error as exc:
        raise DecodeError(f"Failed to inflate project file: {exc}") from exc
    try:
        return inflated.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Failed to decode inflated content: {exc}") from exc


def decode(path: Path) -> str:
    """Read a project file and return its XML text.

    Raises:
        DecodeError: If the file cannot be read, inflated or decoded.
    """
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise DecodeError(f"Failed to read {path}: {exc}") from exc
    text = decode_bytes(raw)
    logger.debug("Decoded %s (%d bytes -> %d chars)", path, len(raw), len(text))
    return text


def parse(text: str) -> Document:
    """Parse layout XML into a Document.

    Raises:
        ParseError: If the text is not well-formed or has no root node.
    """
    try:
        root_elem = ET.fromstring(text)
    except ET.ParseError as exc:
        raise ParseError(f"Could not parse XML: {exc}") from exc

    if root_elem.tag != "lexml":
        raise ParseError(f"Expected <lexml> document element, found <{root_elem.tag}>")
    node_elem = root_elem.find("node")
    if node_elem is None:
        raise ParseError("Document has no root <node>")

    decl = _XML_DECL.match(text)
    return Document(
        root=_parse_node(node_elem),
        xml_version=decl.group(1) if decl else "1.0",
        encoding=(decl.group(2) if decl and decl.group(2) else "UTF-8"),
        lexml_version=root_elem.get("version", "3"),
    )


def _text(elem: ET.Element | None) -> str:
    if elem is None or elem.text is None:
        return ""
    return elem.text


def _parse_node(elem: ET.Element) -> Node:
    node = Node(id=elem.get("ID", ""), type=elem.get("type", ""))
    for child in elem:
        if child.tag == "properties":
            node.properties = [_parse_property(p) for p in child.findall("property")]
        elif child.tag == "values":
            node.values = [_parse_value(v) for v in child.findall("value")]
        elif child.tag == "children":
            node.children = [_parse_node(n) for n in child.findall("node")]
        else:
            child.tail = None
            node.extra.append(child)
    return node


def _parse_property(elem: ET.Element) -> Property:
    value_elem = elem.find("value")
    value: str | dict[str, str]
    if value_elem is not None and len(value_elem):
        value = {part.tag: _text(part).strip() for part in value_elem}
    else:
        value = _text(value_elem)
    return Property(key=_text(elem.find("key")).strip(), type=elem.get("type", "s"), value=value)


def _parse_value(elem: ET.Element) -> Value:
    entry = Value(key="")
    for part in elem:
        if part.tag == "key":
            entry.key = _text(part).strip()
        else:
            entry.fields[part.tag] = _text(part).strip()
    return entry


# ---------------------------------------------------------------------------
# Serialize
# ---------------------------------------------------------------------------


def cdata_body(text: str) -> str:
    """Text as it appears between CDATA delimiters in the serialized output."""
    return text.replace("]]>", "]]]]><![CDATA[>")


def cdata(text: str) -> str:
    """Wrap text in a CDATA section, splitting any embedded terminator."""
    if not text:
        return ""
    return "<![CDATA[" + cdata_body(text) + "]]>"


def _leaf(tag: str, text: str) -> str:
    body = cdata(text) if tag in _CDATA_TAGS else escape(text)
    return f"<{tag}>{body}</{tag}>"


def serialize(document: Document) -> str:
    """Encode a Document as .tosc XML text (no indentation)."""
    parts: list[str] = [
        f"<?xml version={quoteattr(document.xml_version)} "
        f"encoding={quoteattr(document.encoding)}?>\n",
        f"<lexml version={quoteattr(document.lexml_version)}>",
    ]
    _serialize_node(document.root, parts)
    parts.append("</lexml>\n")
    return "".join(parts)


def _serialize_node(node: Node, parts: list[str]) -> None:
    parts.append(f"<node ID={quoteattr(node.id)} type={quoteattr(node.type)}>")

    parts.append("<properties>")
    for prop in node.properties:
        parts.append(f"<property type={quoteattr(prop.type)}>")
        parts.append(_leaf("key", prop.key))
        if isinstance(prop.value, dict):
            order = COMPOSITE_FIELDS.get(prop.type, tuple(prop.value))
            keys = [k for k in order if k in prop.value] + [
                k for k in prop.value if k not in order
            ]
            parts.append("<value>")
            parts.extend(f"<{k}>{escape(prop.value[k])}</{k}>" for k in keys)
            parts.append("</value>")
        else:
            parts.append(_leaf("value", prop.value))
        parts.append("</property>")
    parts.append("</properties>")

    parts.append("<values>")
    for entry in node.values:
        parts.append("<value>")
        parts.append(_leaf("key", entry.key))
        parts.extend(_leaf(tag, text) for tag, text in entry.fields.items())
        parts.append("</value>")
    parts.append("</values>")

    for elem in node.extra:
        parts.append(ET.tostring(elem, encoding="unicode"))

    if node.children is not None:
        parts.append("<children>")
        for child in node.children:
            _serialize_node(child, parts)
        parts.append("</children>")

    parts.append("</node>")


# ---------------------------------------------------------------------------
# Quick-patch support
# ---------------------------------------------------------------------------


def normalize_script(text: str) -> str:
    """Strip the leading indentation of every line, then trim.

    Mirrors editors that re-save the project with script indentation removed;
    must be kept in line with how such artifacts actually format scripts.
    """
    return "\n".join(line.lstrip(" \t") for line in text.split("\n")).strip()


# ---------------------------------------------------------------------------
# File-level helpers
# ---------------------------------------------------------------------------


def load_document(project_path: Path) -> Document:
    """Decode and parse a project file, logging how long each step took."""
    watch = Stopwatch()
    logger.info("Reading %s", project_path)
    text = decode(project_path)
    logger.info("Decoded project file (took %d ms)", watch.tick())
    document = parse(text)
    logger.info("XML successfully parsed (took %d ms)", watch.tick())
    return document


def write_document(document: Document, path: Path) -> Path:
    """Serialize ``document`` and write it to ``path``."""
    watch = Stopwatch()
    text = serialize(document)
    logger.info("XML encoding done (took %d ms)", watch.tick())
    Path(path).write_text(text, encoding="utf-8")
    logger.info("Project file written to %s (took %d ms)", path, watch.tick())
    return Path(path)


def write_debug_files(document: Document, project_path: Path) -> list[Path]:
    """Dump the parsed document as JSON and as re-encoded XML beside the project."""
    project_path = Path(project_path)
    stem = project_stem(project_path)
    json_path = project_path.with_name(f"{stem}{DEBUG_SUFFIX}.json")
    xml_path = project_path.with_name(f"{stem}{DEBUG_SUFFIX}{PROJECT_EXTENSION}")

    json_path.write_text(json.dumps(document.to_dict(), indent=2), encoding="utf-8")
    logger.info("Wrote JSON debug dump to %s", json_path)
    xml_path.write_text(serialize(document), encoding="utf-8")
    logger.info("Wrote XML debug dump to %s", xml_path)
    return [json_path, xml_path]
