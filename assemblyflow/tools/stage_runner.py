#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Stage runner — executes one pipeline stage as external command(s), times
it, and validates the declared output artifact.

Outcome classification:
    non-zero exit        -> FAILED            (fatal)
    output missing       -> OUTPUT_MISSING    (fatal)
    output size 0        -> OUTPUT_EMPTY      (advisory)
    0 < size < minimum   -> OUTPUT_TOO_SMALL  (advisory)
    otherwise            -> SUCCESS

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..advisories import Advisory, AdvisoryKind, advise
from ..exceptions import MissingDependencyError, StageFailedError

logger = logging.getLogger(__name__)

# Number of stderr lines kept from a failed command
_STDERR_TAIL = 20


# ============================================================================
#                         DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class StageSpec:
    """
    Stateless description of one stage.

    Attributes:
        name: Human readable stage name used in logs and errors
        commands: argv lists executed in order; each must exit 0
        output: Declared output artifact validated after the commands run
        inputs: Declared input artifacts that must exist before running
        min_size: Minimum acceptable output size in bytes
        products: Additional files the stage writes (not validated)
        stdout: Redirect the last command's stdout to this file
        key: Machine-readable stage identifier (e.g. 'polish.correct')
    """
    name: str
    commands: Tuple[Tuple[str, ...], ...]
    output: Optional[Path] = None
    inputs: Tuple[Path, ...] = ()
    min_size: int = 0
    products: Tuple[Path, ...] = ()
    stdout: Optional[Path] = None
    key: str = ''
    cwd: Optional[Path] = None

    def command_line(self) -> str:
        text = ' && '.join(shlex.join(cmd) for cmd in self.commands)
        if self.stdout is not None:
            text += f" > {shlex.quote(str(self.stdout))}"
        return text


class StageStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    OUTPUT_MISSING = "output_missing"
    OUTPUT_EMPTY = "output_empty"
    OUTPUT_TOO_SMALL = "output_too_small"

    @property
    def is_fatal(self) -> bool:
        return self in (StageStatus.FAILED, StageStatus.OUTPUT_MISSING)


@dataclass(frozen=True)
class StageResult:
    """Outcome of one StageRunner invocation."""
    stage: str
    status: StageStatus
    duration_seconds: float
    artifact: Optional[Path] = None
    size_bytes: Optional[int] = None
    returncode: Optional[int] = None
    message: str = ''
    key: str = ''
    advisories: Tuple[Advisory, ...] = field(default_factory=tuple)

    @property
    def is_fatal(self) -> bool:
        return self.status.is_fatal

    def to_dict(self):
        return {
            'stage': self.stage,
            'key': self.key,
            'status': self.status.value,
            'duration_seconds': round(self.duration_seconds, 2),
            'artifact': str(self.artifact) if self.artifact else None,
            'size_bytes': self.size_bytes,
            'returncode': self.returncode,
            'message': self.message,
        }


@dataclass(frozen=True)
class CommandOutcome:
    returncode: int
    stderr: str = ''


def run_command(argv: Sequence[str], stdout: Optional[Path] = None,
                cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> CommandOutcome:
    """Run one command synchronously; no timeout is imposed."""
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    try:
        if stdout is not None:
            with open(stdout, 'w') as out:
                result = subprocess.run(list(argv), stdout=out, stderr=subprocess.PIPE,
                                        text=True, cwd=cwd, env=full_env)
        else:
            result = subprocess.run(list(argv), stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                    text=True, cwd=cwd, env=full_env)
    except OSError as e:
        return CommandOutcome(returncode=127, stderr=str(e))
    return CommandOutcome(returncode=result.returncode, stderr=result.stderr or '')


# ============================================================================
#                         RUNNER
# ============================================================================

def classify_output(path: Optional[Path], min_size: int) -> Tuple[StageStatus, Optional[int]]:
    """Classify a declared output artifact by existence and size."""
    if path is None:
        return StageStatus.SUCCESS, None
    path = Path(path)
    if not path.is_file():
        return StageStatus.OUTPUT_MISSING, None
    size = path.stat().st_size
    if size == 0:
        return StageStatus.OUTPUT_EMPTY, size
    if size < min_size:
        return StageStatus.OUTPUT_TOO_SMALL, size
    return StageStatus.SUCCESS, size


class StageRunner:
    """
    Execute stages one at a time and validate their declared outputs.

    Fatal outcomes raise StageFailedError; a missing declared input raises
    MissingDependencyError before anything is executed.
    """

    def __init__(
        self,
        executor: Callable[..., CommandOutcome] = run_command,
        env: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.env = env
        self.clock = clock

    def run(self, spec: StageSpec) -> StageResult:
        for required in spec.inputs:
            if not Path(required).exists():
                logger.error(f"{spec.name}: declared input missing: {required}")
                raise MissingDependencyError(spec.name, required)

        logger.info(f"Starting: {spec.name}")
        logger.debug(f"Command: {spec.command_line()}")
        start = self.clock()

        for i, argv in enumerate(spec.commands):
            redirect = spec.stdout if i == len(spec.commands) - 1 else None
            outcome = self.executor(argv, stdout=redirect, cwd=spec.cwd, env=self.env)
            if outcome.returncode != 0:
                duration = self.clock() - start
                tail = '\n'.join(outcome.stderr.strip().splitlines()[-_STDERR_TAIL:])
                if tail:
                    logger.debug(f"{spec.name} stderr:\n{tail}")
                result = StageResult(
                    stage=spec.name,
                    key=spec.key,
                    status=StageStatus.FAILED,
                    duration_seconds=duration,
                    returncode=outcome.returncode,
                    message=f"'{argv[0]}' exited with status {outcome.returncode} "
                            f"(runtime: {duration:.0f} seconds)",
                )
                logger.error(f"{spec.name} failed: {result.message}")
                raise StageFailedError(result)

        duration = self.clock() - start
        logger.info(f"Completed: {spec.name} (duration: {duration:.0f} seconds)")

        status, size = classify_output(spec.output, spec.min_size)
        advisories = ()
        if status is StageStatus.OUTPUT_MISSING:
            result = StageResult(
                stage=spec.name, key=spec.key, status=status, duration_seconds=duration,
                returncode=0, message=f"Output file not found: {spec.output}",
            )
            logger.error(result.message)
            raise StageFailedError(result)
        elif status is StageStatus.OUTPUT_EMPTY:
            message = f"Output file is empty: {spec.output}"
            advisories = (advise(spec.name, AdvisoryKind.OUTPUT_EMPTY, message, logger),)
        elif status is StageStatus.OUTPUT_TOO_SMALL:
            message = f"Output file is too small: {spec.output} ({size} bytes)"
            advisories = (advise(spec.name, AdvisoryKind.OUTPUT_TOO_SMALL, message, logger),)
        else:
            message = 'ok'
            if spec.output is not None:
                message = f"Output validation passed: {spec.output} ({size} bytes)"
                logger.info(message)

        return StageResult(
            stage=spec.name,
            key=spec.key,
            status=status,
            duration_seconds=duration,
            artifact=Path(spec.output) if spec.output is not None else None,
            size_bytes=size,
            returncode=0,
            message=message,
            advisories=advisories,
        )


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
