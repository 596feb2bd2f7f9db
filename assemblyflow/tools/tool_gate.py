#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Tool gate — verifies an external tool is invocable and reports whether it
meets a minimum version. Version checks only ever produce advisories;
only a missing Required tool is fatal.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import functools
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..advisories import Advisory, AdvisoryKind, advise
from ..exceptions import ToolNotFoundError

logger = logging.getLogger(__name__)


# ============================================================================
#                         VERSIONS
# ============================================================================

@functools.total_ordering
@dataclass(frozen=True)
class DottedVersion:
    """Dotted-numeric version; comparison pads the shorter side with zeros."""
    parts: Tuple[int, ...]

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional['DottedVersion']:
        if not text:
            return None
        match = re.match(r'^\s*v?(\d+(?:\.\d+)*)', str(text))
        if not match:
            return None
        return cls(tuple(int(p) for p in match.group(1).split('.')))

    def _padded(self, width: int) -> Tuple[int, ...]:
        return self.parts + (0,) * (width - len(self.parts))

    def __eq__(self, other):
        if not isinstance(other, DottedVersion):
            return NotImplemented
        width = max(len(self.parts), len(other.parts))
        return self._padded(width) == other._padded(width)

    def __lt__(self, other):
        if not isinstance(other, DottedVersion):
            return NotImplemented
        width = max(len(self.parts), len(other.parts))
        return self._padded(width) < other._padded(width)

    def __hash__(self):
        parts = list(self.parts)
        while len(parts) > 1 and parts[-1] == 0:
            parts.pop()
        return hash(tuple(parts))

    def __str__(self):
        return '.'.join(str(p) for p in self.parts)


UNKNOWN_VERSION = DottedVersion((0, 0, 0))


@dataclass(frozen=True)
class VersionProbe:
    """
    How to ask one tool for its version and pull the number out of the text.

    Attributes:
        args: Arguments that make the tool print its version
        pattern: Regex whose first group captures the dotted version
        first_line_only: Only search the first non-empty line of output
    """
    args: Tuple[str, ...]
    pattern: str
    first_line_only: bool = False

    def extract(self, output: str) -> Optional[DottedVersion]:
        text = output or ''
        if self.first_line_only:
            lines = [line for line in text.splitlines() if line.strip()]
            text = lines[0] if lines else ''
        match = re.search(self.pattern, text)
        if not match:
            return None
        return DottedVersion.parse(match.group(1))


# Each tool reports its version differently; stdout and stderr are searched together.
VERSION_PROBES: Dict[str, VersionProbe] = {
    'fastp': VersionProbe(('--version',), r'(\d+\.\d+\.\d+)', first_line_only=True),
    'quast': VersionProbe(('--version',), r'QUAST v(\d+\.\d+\.\d+)'),
    'bwa': VersionProbe((), r'Version: (\d+\.\d+\.\d+)'),
    'samtools': VersionProbe(('--version',), r'(\d+\.\d+(?:\.\d+)?)', first_line_only=True),
    'seqkit': VersionProbe(('version',), r'v(\d+\.\d+\.\d+)'),
    'prokka': VersionProbe(('--version',), r'(?:version|prokka)\s+v?(\d+\.\d+(?:\.\d+)?)'),
    'megahit': VersionProbe(('--version',), r'(\d+\.\d+\.\d+)'),
    'spades': VersionProbe(('--version',), r'(\d+\.\d+\.\d+)'),
    'pilon': VersionProbe(('--version',), r'(\d+\.\d+(?:\.\d+)?)'),
}

GENERIC_PROBE = VersionProbe(('--version',), r'(\d+(?:\.\d+)+)')


def _run_version_command(argv: Sequence[str]) -> str:
    """Run a version command and return stdout + stderr (exit status ignored)."""
    result = subprocess.run(
        list(argv),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=30,
    )
    return f"{result.stdout}\n{result.stderr}"


# ============================================================================
#                         GATE
# ============================================================================

class Criticality(Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class GateResult:
    """Outcome of checking one tool."""
    tool: str
    available: bool
    version: Optional[str] = None
    meets_minimum: bool = False
    executable: Optional[str] = None
    min_version: Optional[str] = None
    advisories: Tuple[Advisory, ...] = field(default_factory=tuple)

    def to_dict(self):
        return {
            'tool': self.tool,
            'available': self.available,
            'version': self.version,
            'meets_minimum': self.meets_minimum,
            'executable': self.executable,
            'min_version': self.min_version,
        }


class ToolGate:
    """
    Check external tools before the run starts.

    Args:
        which: Locates an executable (defaults to ``shutil.which``)
        run_version: Runs a version command and returns its combined output
        probes: Per-tool version extraction rules
    """

    def __init__(
        self,
        which: Callable[[str], Optional[str]] = shutil.which,
        run_version: Callable[[Sequence[str]], str] = _run_version_command,
        probes: Optional[Dict[str, VersionProbe]] = None,
    ):
        self.which = which
        self.run_version = run_version
        self.probes = dict(VERSION_PROBES if probes is None else probes)

    def detect_version(self, tool: str, path: str) -> Optional[DottedVersion]:
        """Return the tool's version, or None when it cannot be determined."""
        probe = self.probes.get(tool, GENERIC_PROBE)
        try:
            output = self.run_version([path, *probe.args])
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Version query for {tool} failed: {e}")
            return None
        return probe.extract(output)

    def check(
        self,
        tool: str,
        min_version: str,
        criticality: Criticality,
        executable: Optional[str] = None,
    ) -> GateResult:
        """
        Check that *tool* is available and report its version.

        Raises:
            ToolNotFoundError: if a Required tool is absent
        """
        executable = executable or tool
        path = self.which(executable)

        if path is None:
            if criticality is Criticality.REQUIRED:
                raise ToolNotFoundError(tool, executable)
            advisory = advise(
                'ToolGate', AdvisoryKind.TOOL_UNAVAILABLE,
                f"Optional tool not found: {tool} ('{executable}')", logger,
            )
            return GateResult(tool=tool, available=False, executable=executable,
                              min_version=min_version, advisories=(advisory,))

        detected = self.detect_version(tool, path)
        effective = detected or UNKNOWN_VERSION
        required = DottedVersion.parse(min_version) or UNKNOWN_VERSION
        meets = detected is not None and effective >= required

        advisories = ()
        if not meets:
            current = str(detected) if detected else f"unknown (treated as {UNKNOWN_VERSION})"
            advisories = (advise(
                'ToolGate', AdvisoryKind.TOOL_VERSION,
                f"{tool} version is outdated: current {current}, required {min_version}+",
                logger,
            ),)
        else:
            logger.info(f"{tool} version compatible: {detected}")

        return GateResult(
            tool=tool,
            available=True,
            version=str(detected) if detected else None,
            meets_minimum=meets,
            executable=path,
            min_version=min_version,
            advisories=advisories,
        )


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
