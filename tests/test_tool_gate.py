#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Tests for tool availability and version gating.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import pytest

from assemblyflow.advisories import AdvisoryKind
from assemblyflow.exceptions import ToolNotFoundError
from assemblyflow.tools.tool_gate import (
    VERSION_PROBES,
    Criticality,
    DottedVersion,
    ToolGate,
)

from conftest import FAKE_VERSION_OUTPUT, fake_tool_gate


class TestDottedVersion:
    """Test dotted version parsing and ordering."""

    def test_parse(self):
        assert DottedVersion.parse('1.14.6').parts == (1, 14, 6)
        assert DottedVersion.parse('v2.5.1').parts == (2, 5, 1)
        assert DottedVersion.parse('0.7.17-r1188').parts == (0, 7, 17)

    def test_unparseable(self):
        assert DottedVersion.parse('not a version') is None
        assert DottedVersion.parse('') is None
        assert DottedVersion.parse(None) is None

    def test_zero_padding(self):
        assert DottedVersion.parse('1.10') == DottedVersion.parse('1.10.0')
        assert hash(DottedVersion.parse('1.10')) == hash(DottedVersion.parse('1.10.0'))

    def test_numeric_ordering(self):
        assert DottedVersion.parse('1.9') < DottedVersion.parse('1.10')
        assert DottedVersion.parse('0.20.0') < DottedVersion.parse('0.23.4')
        assert DottedVersion.parse('2.0') > DottedVersion.parse('1.99.99')


class TestVersionProbes:
    """Each tool's version text is recognised."""

    @pytest.mark.parametrize('tool, executable, expected', [
        ('fastp', 'fastp', '0.23.4'),
        ('quast', 'quast', '5.2.0'),
        ('bwa', 'bwa', '0.7.17'),
        ('samtools', 'samtools', '1.17'),
        ('seqkit', 'seqkit', '2.5.1'),
        ('prokka', 'prokka', '1.14.6'),
        ('megahit', 'megahit', '1.2.9'),
        ('spades', 'spades.py', '3.15.5'),
        ('pilon', 'pilon', '1.24'),
    ])
    def test_extract(self, tool, executable, expected):
        version = VERSION_PROBES[tool].extract(FAKE_VERSION_OUTPUT[executable])
        assert str(version) == expected

    def test_bwa_queried_without_arguments(self):
        seen = []
        gate = ToolGate(which=lambda exe: f"/bin/{exe}",
                        run_version=lambda argv: seen.append(argv) or FAKE_VERSION_OUTPUT['bwa'])
        gate.detect_version('bwa', '/bin/bwa')
        assert seen == [['/bin/bwa']]


class TestToolGate:
    """Test gate outcomes."""

    def test_compatible_version(self):
        result = fake_tool_gate().check('samtools', '1.10', Criticality.REQUIRED)
        assert result.available
        assert result.meets_minimum
        assert result.version == '1.17'
        assert result.advisories == ()

    def test_outdated_version_is_advisory(self):
        gate = fake_tool_gate(versions={'samtools': 'samtools 1.9\nUsing htslib 1.9'})
        result = gate.check('samtools', '1.10', Criticality.REQUIRED)
        assert result.available
        assert not result.meets_minimum
        assert [a.kind for a in result.advisories] == [AdvisoryKind.TOOL_VERSION]

    def test_unparseable_version_is_advisory_not_error(self):
        gate = fake_tool_gate(versions={'quast': 'something went sideways'})
        result = gate.check('quast', '5.0.0', Criticality.REQUIRED)
        assert result.available
        assert result.version is None
        assert not result.meets_minimum
        assert 'unknown' in result.advisories[0].message

    def test_missing_required_tool_raises(self):
        gate = fake_tool_gate(missing={'prokka'})
        with pytest.raises(ToolNotFoundError) as excinfo:
            gate.check('prokka', '1.14.0', Criticality.REQUIRED)
        assert 'prokka' in str(excinfo.value)

    def test_missing_optional_tool(self):
        gate = fake_tool_gate(missing={'pilon'})
        result = gate.check('pilon', '1.24', Criticality.OPTIONAL)
        assert not result.available
        assert result.advisories[0].kind is AdvisoryKind.TOOL_UNAVAILABLE

    def test_custom_executable(self):
        result = fake_tool_gate().check('spades', '3.15.0', Criticality.REQUIRED,
                                        executable='spades.py')
        assert result.executable == '/opt/tools/bin/spades.py'
        assert result.version == '3.15.5'

    def test_version_command_error(self):
        def broken(argv):
            raise OSError("exec format error")
        gate = ToolGate(which=lambda exe: f"/bin/{exe}", run_version=broken)
        result = gate.check('fastp', '0.20.0', Criticality.REQUIRED)
        assert result.available
        assert not result.meets_minimum

# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
