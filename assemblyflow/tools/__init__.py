"""
External tool wrappers for AssemblyFlow.

- tool_gate.py - availability and version checks
- stage_runner.py - stage execution and output validation
- commands.py - command lines for each pipeline stage
"""

from .stage_runner import (
    StageSpec,
    StageStatus,
    StageResult,
    StageRunner,
    run_command,
)
from .tool_gate import (
    Criticality,
    DottedVersion,
    GateResult,
    ToolGate,
)

__all__ = [
    'StageSpec',
    'StageStatus',
    'StageResult',
    'StageRunner',
    'run_command',
    'Criticality',
    'DottedVersion',
    'GateResult',
    'ToolGate',
]
