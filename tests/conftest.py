"""Shared fixtures: a small TouchOSC project with a scripts directory."""

from __future__ import annotations

from pathlib import Path

import pytest

SAMPLE_TOSC = """<?xml version="1.0" encoding="UTF-8"?>
<lexml version="3">
<node ID="root-id" type="GROUP">
<properties>
<property type="s"><key><![CDATA[name]]></key><value><![CDATA[root]]></value></property>
<property type="r"><key><![CDATA[frame]]></key><value><x>0</x><y>0</y><w>1024</w><h>768</h></value></property>
</properties>
<values>
<value><key><![CDATA[touch]]></key><locked>0</locked><lockedDefaultCurrent>0</lockedDefaultCurrent><default><![CDATA[false]]></default><defaultPull>0</defaultPull></value>
</values>
<children>
<node ID="a-id" type="BUTTON">
<properties>
<property type="s"><key><![CDATA[name]]></key><value><![CDATA[A]]></value></property>
<property type="s"><key><![CDATA[tag]]></key><value><![CDATA[knob]]></value></property>
<property type="c"><key><![CDATA[color]]></key><value><r>1</r><g>0</g><b>0</b><a>1</a></value></property>
<property type="b"><key><![CDATA[interactive]]></key><value>1</value></property>
</properties>
<values/>
<messages><osc><enabled>1</enabled><send>1</send></osc></messages>
</node>
<node ID="b-id" type="GROUP">
<properties>
<property type="s"><key><![CDATA[name]]></key><value><![CDATA[B]]></value></property>
</properties>
<values/>
<children>
<node ID="c-id" type="FADER">
<properties>
<property type="s"><key><![CDATA[name]]></key><value><![CDATA[C]]></value></property>
<property type="s"><key><![CDATA[tag]]></key><value><![CDATA[knob]]></value></property>
<property type="s"><key><![CDATA[script]]></key><value><![CDATA[old()]]></value></property>
</properties>
<values/>
</node>
</children>
</node>
</children>
</node>
</lexml>
"""


@pytest.fixture
def sample_xml() -> str:
    return SAMPLE_TOSC


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A plain-XML project file with an empty scripts/ directory beside it."""
    path = tmp_path / "layout.tosc"
    path.write_text(SAMPLE_TOSC, encoding="utf-8")
    (tmp_path / "scripts").mkdir()
    return path


@pytest.fixture
def scripts_dir(project: Path) -> Path:
    return project.parent / "scripts"
