"""tosc-injector -- keeps scripts/*.lua in sync with a TouchOSC project file."""

__version__ = "0.3.0"
