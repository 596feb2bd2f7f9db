#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Advisories — non-fatal signals (clamped resources, outdated tools,
undersized outputs, low disk space, polishing fallbacks).

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AdvisoryKind(Enum):
    RESOURCE_CLAMP = "resource_clamp"
    LOW_MEMORY = "low_memory"
    TOOL_VERSION = "tool_version"
    TOOL_UNAVAILABLE = "tool_unavailable"
    OUTPUT_EMPTY = "output_empty"
    OUTPUT_TOO_SMALL = "output_too_small"
    DISK_SPACE = "disk_space"
    POLISHING = "polishing"


@dataclass(frozen=True)
class Advisory:
    """A warning surfaced to the user that never blocks progress."""
    source: str
    kind: AdvisoryKind
    message: str

    def to_dict(self):
        return {'source': self.source, 'kind': self.kind.value, 'message': self.message}


def advise(source: str, kind: AdvisoryKind, message: str,
           logger: Optional[logging.Logger] = None) -> Advisory:
    """Create an advisory and log it as a warning."""
    (logger or logging.getLogger(__name__)).warning(f"[{source}] {message}")
    return Advisory(source=source, kind=kind, message=message)


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
