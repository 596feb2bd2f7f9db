#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Fatal error taxonomy. Anything raised from here aborts the run with a
non-zero exit; recoverable conditions are reported as advisories instead.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from pathlib import Path
from typing import Optional


class AssemblyFlowError(Exception):
    """Base class for errors that terminate a pipeline run."""

    stage: Optional[str] = None


class ConfigValidationError(AssemblyFlowError):
    """Raised when configuration validation fails."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(
            "Invalid configuration:\n" + "\n".join(f"  • {e}" for e in self.errors)
        )


class ToolNotFoundError(AssemblyFlowError):
    """A required external tool is not on the search path."""

    def __init__(self, tool: str, executable: str):
        self.tool = tool
        self.executable = executable
        super().__init__(
            f"Tool not found: {tool} ('{executable}'), please ensure it is installed"
        )


class StageFailedError(AssemblyFlowError):
    """A stage exited non-zero or did not produce its declared output."""

    def __init__(self, result):
        self.result = result
        self.stage = result.stage
        super().__init__(f"{result.stage} failed: {result.message}")


class MissingDependencyError(AssemblyFlowError):
    """A stage's declared input is absent, so the stage is never invoked."""

    def __init__(self, stage: str, path: Path):
        self.stage = stage
        self.path = Path(path)
        super().__init__(f"{stage}: missing dependency {self.path}")


class OutputDirectoryExistsError(AssemblyFlowError):
    """The output directory exists and overwriting was not requested."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(
            f"Output directory '{self.path}' already exists (use --force to overwrite)"
        )


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
