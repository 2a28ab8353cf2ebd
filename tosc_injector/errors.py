"""Exceptions raised by tosc-injector."""

from __future__ import annotations


class InjectorError(Exception):
    """Base class for all tosc-injector errors."""


class DecodeError(InjectorError):
    """The project file could not be read or decompressed."""


class ParseError(InjectorError):
    """The decoded project text is not a valid layout document."""


class ConfigurationError(InjectorError):
    """A path or setting makes the current pipeline attempt impossible."""
