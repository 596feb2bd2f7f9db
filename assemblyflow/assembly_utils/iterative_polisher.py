#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Iterative polisher — multi-round align → correct → evaluate loop.

Each round maps the trimmed reads against the current genome, runs Pilon
on the alignment and counts the edits it made. The loop stops when the
round budget is spent, when a round after the first makes no changes, or
when a round fails, in which case the best earlier genome is kept.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..advisories import Advisory, AdvisoryKind, advise
from ..config.schema import RunConfig
from ..exceptions import MissingDependencyError, StageFailedError
from ..tools import commands
from ..tools.stage_runner import StageResult, StageRunner
from ..utils.hardware_management import DiskEstimate, free_disk_bytes, estimate_disk
from .assembly_evaluation import count_changes, mean_depth

logger = logging.getLogger(__name__)

# Host policy consulted when scratch space looks insufficient; True = polish anyway
DiskPolicy = Callable[[DiskEstimate], bool]


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class PolishPhase(Enum):
    IDLE = "idle"
    ALIGNING = "aligning"
    CORRECTING = "correcting"
    EVALUATING = "evaluating"


class PolishStatus(Enum):
    STOPPED_EARLY = "stopped_early"
    STOPPED_BY_BUDGET = "stopped_by_budget"
    FALLBACK_TO_PREVIOUS = "fallback_to_previous"
    FALLBACK_TO_ORIGINAL = "fallback_to_original"

    @property
    def is_fallback(self) -> bool:
        return self in (PolishStatus.FALLBACK_TO_PREVIOUS, PolishStatus.FALLBACK_TO_ORIGINAL)


@dataclass(frozen=True)
class GenomeState:
    """
    Genome carried from round to round.

    ``history`` holds the polished artifact of every completed round in
    order; the latest genome is its last entry (or the original assembly
    before any round completes).
    """
    original: Path
    current_artifact: Path
    round: int = 0
    change_counts: Tuple[Optional[int], ...] = ()
    history: Tuple[Path, ...] = ()

    @classmethod
    def initial(cls, genome: Path) -> 'GenomeState':
        genome = Path(genome)
        return cls(original=genome, current_artifact=genome)

    def advance(self, artifact: Path, change_count: Optional[int]) -> 'GenomeState':
        return replace(
            self,
            current_artifact=Path(artifact),
            round=self.round + 1,
            change_counts=self.change_counts + (change_count,),
            history=self.history + (Path(artifact),),
        )

    def rewind_to_existing(self) -> 'GenomeState':
        """Drop trailing rounds whose artifact no longer exists on disk."""
        state = self
        while state.history and not state.current_artifact.exists():
            history = state.history[:-1]
            state = replace(
                state,
                history=history,
                change_counts=state.change_counts[:-1],
                round=state.round - 1,
                current_artifact=history[-1] if history else state.original,
            )
        return state

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original': str(self.original),
            'current_artifact': str(self.current_artifact),
            'round': self.round,
            'change_counts': list(self.change_counts),
            'history': [str(p) for p in self.history],
        }


@dataclass(frozen=True)
class PolishingRound:
    """Record of one completed polishing round."""
    round_number: int
    genome: Path
    alignment: Path
    changes_file: Path
    change_count: Optional[int]
    mean_coverage: Optional[float]
    duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'round': self.round_number,
            'genome': str(self.genome),
            'alignment': str(self.alignment),
            'changes_file': str(self.changes_file),
            'change_count': self.change_count,
            'mean_coverage': self.mean_coverage,
            'duration_seconds': round(self.duration_seconds, 2),
        }


@dataclass(frozen=True)
class PolishingSummary:
    """How the loop terminated and which genome it handed back."""
    status: PolishStatus
    genome_state: GenomeState
    max_rounds: int
    rounds: Tuple[PolishingRound, ...] = ()
    failed_round: Optional[int] = None
    reason: str = ''
    stage_results: Tuple[StageResult, ...] = ()
    advisories: Tuple[Advisory, ...] = ()

    @property
    def final_artifact(self) -> Path:
        return self.genome_state.current_artifact

    @property
    def rounds_completed(self) -> int:
        return self.genome_state.round

    def describe(self) -> str:
        k = self.genome_state.round
        if self.status is PolishStatus.STOPPED_EARLY:
            return f"Stopped early at round {k} of {self.max_rounds} (no further changes)"
        if self.status is PolishStatus.STOPPED_BY_BUDGET:
            return f"Completed all {self.max_rounds} polishing round(s)"
        if self.status is PolishStatus.FALLBACK_TO_PREVIOUS:
            return (f"Round {self.failed_round} failed; fell back to the round {k} result"
                    + (f" ({self.reason})" if self.reason else ''))
        return ("Fell back to pre-polish assembly"
                + (f" ({self.reason})" if self.reason else ''))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'description': self.describe(),
            'max_rounds': self.max_rounds,
            'rounds_completed': self.rounds_completed,
            'failed_round': self.failed_round,
            'reason': self.reason,
            'final_artifact': str(self.final_artifact),
            'genome_state': self.genome_state.to_dict(),
            'rounds': [r.to_dict() for r in self.rounds],
        }


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

class PolishLoop:
    """
    Pilon-based iterative polishing with convergence detection.

    Usage
    -----
    >>> loop = PolishLoop(config, StageRunner(), reads, align_dir, polish_dir)
    >>> summary = loop.run(raw_assembly)
    >>> summary.final_artifact   # always exists on disk

    Args:
        config: Run configuration (threads, memory, rounds, tools)
        runner: Executes the per-round stages
        reads: Trimmed read pair used as evidence
        align_dir: Where round alignments are written
        polish_dir: Where round genomes and change logs are written
        disk_policy: Decides whether to polish when scratch space looks short;
            defaults to ``config.allow_polishing_under_low_disk``
    """

    def __init__(
        self,
        config: RunConfig,
        runner: StageRunner,
        reads: Sequence[Path],
        align_dir: Path,
        polish_dir: Path,
        disk_policy: Optional[DiskPolicy] = None,
        free_space: Callable[[Path], Optional[int]] = free_disk_bytes,
    ):
        self.config = config
        self.runner = runner
        self.reads = tuple(Path(r) for r in reads)
        self.align_dir = Path(align_dir)
        self.polish_dir = Path(polish_dir)
        self.max_rounds = config.max_polish_rounds
        self.disk_policy = disk_policy or (lambda _estimate: config.allow_polishing_under_low_disk)
        self.free_space = free_space
        self.phase = PolishPhase.IDLE

        self._stage_results: List[StageResult] = []
        self._advisories: List[Advisory] = []
        self._rounds: List[PolishingRound] = []

    def _set_phase(self, phase: PolishPhase):
        self.phase = phase
        logger.debug(f"Polishing phase: {phase.value}")

    def _run_stage(self, spec) -> StageResult:
        result = self.runner.run(spec)
        self._stage_results.append(result)
        self._advisories.extend(result.advisories)
        return result

    def _advise(self, message: str):
        self._advisories.append(advise('PolishLoop', AdvisoryKind.POLISHING, message, logger))

    def _summary(self, status: PolishStatus, state: GenomeState,
                 failed_round: Optional[int] = None, reason: str = '') -> PolishingSummary:
        self._set_phase(PolishPhase.IDLE)
        return PolishingSummary(
            status=status,
            genome_state=state,
            max_rounds=self.max_rounds,
            rounds=tuple(self._rounds),
            failed_round=failed_round,
            reason=reason,
            stage_results=tuple(self._stage_results),
            advisories=tuple(self._advisories),
        )

    # -- disk guard ---------------------------------------------------------

    def check_disk(self) -> bool:
        """Return True if polishing should proceed."""
        multiplier = self.config.section('polishing').get('scratch_multiplier', 3)
        estimate = estimate_disk(self.polish_dir, [self.config.read1, self.config.read2],
                                 multiplier=multiplier, free_space=self.free_space)
        if estimate.sufficient:
            return True

        self._advisories.append(advise(
            'PolishLoop', AdvisoryKind.DISK_SPACE,
            f"Disk space may be insufficient for Pilon correction ({estimate.describe()})",
            logger,
        ))
        proceed = bool(self.disk_policy(estimate))
        if not proceed:
            logger.info("Skipping Pilon correction because of low disk space")
        return proceed

    def _clear_previous_rounds(self):
        for pattern in ('pilon_round*.fasta', 'pilon_round*.changes'):
            for stale in self.polish_dir.glob(pattern):
                stale.unlink()

    # -- per round ---------------------------------------------------------

    def _align(self, genome: Path, round_number: int) -> Tuple[Path, Optional[float]]:
        self._set_phase(PolishPhase.ALIGNING)
        spec = commands.alignment_stage(self.config, genome, self.reads, self.align_dir, round_number)
        result = self._run_stage(spec)
        sam, bam = commands.round_alignment_paths(self.align_dir, round_number)
        if not self.config.keep_intermediates and sam.exists():
            sam.unlink()

        coverage = None
        depth = commands.depth_stage(self.config, bam, self.align_dir, round_number)
        try:
            self._run_stage(depth)
            coverage = mean_depth(depth.output)
        except (StageFailedError, MissingDependencyError, ValueError) as e:
            self._advise(f"Round {round_number} coverage calculation failed: {e}")
        if coverage is not None:
            logger.info(f"  Round {round_number} average coverage: {coverage:.1f}")
        return result.artifact or bam, coverage

    def _correct(self, genome: Path, bam: Path, round_number: int) -> Path:
        self._set_phase(PolishPhase.CORRECTING)
        spec = commands.correction_stage(self.config, genome, bam, self.polish_dir, round_number)
        result = self._run_stage(spec)
        return result.artifact or spec.output

    def _fallback(self, state: GenomeState, round_number: int, reason: str) -> PolishingSummary:
        state = state.rewind_to_existing()
        if state.round >= 1:
            status = PolishStatus.FALLBACK_TO_PREVIOUS
            self._advise(f"Round {round_number} failed ({reason}); "
                         f"using round {state.round} result: {state.current_artifact}")
        else:
            status = PolishStatus.FALLBACK_TO_ORIGINAL
            self._advise(f"Round {round_number} failed ({reason}); "
                         f"using original assembly: {state.current_artifact}")
        return self._summary(status, state, failed_round=round_number, reason=reason)

    def run(self, initial_genome: Path) -> PolishingSummary:
        """
        Polish *initial_genome* for up to ``max_rounds`` rounds.

        Raises:
            MissingDependencyError: if the initial genome does not exist
        """
        initial_genome = Path(initial_genome)
        if not initial_genome.is_file():
            raise MissingDependencyError('Pilon correction', initial_genome)

        state = GenomeState.initial(initial_genome)
        self.align_dir.mkdir(parents=True, exist_ok=True)
        self.polish_dir.mkdir(parents=True, exist_ok=True)
        if self.config.force:
            self._clear_previous_rounds()

        if not self.check_disk():
            return self._summary(PolishStatus.FALLBACK_TO_ORIGINAL, state,
                                 reason='skipped: insufficient disk space')

        logger.info(f"Starting Pilon correction ({self.max_rounds} rounds)...")

        for i in range(1, self.max_rounds + 1):
            logger.info(f"Pilon correction round {i}/{self.max_rounds}...")
            started = time.monotonic()

            try:
                bam, coverage = self._align(state.current_artifact, i)
                new_genome = self._correct(state.current_artifact, bam, i)
            except (StageFailedError, MissingDependencyError) as e:
                return self._fallback(state, i, str(e))

            self._set_phase(PolishPhase.EVALUATING)
            if not Path(new_genome).is_file():
                return self._fallback(state, i, f"polished genome not found: {new_genome}")

            _, changes_file = commands.round_genome_paths(self.polish_dir, i)
            changes = count_changes(changes_file)
            if changes is None:
                self._advise(f"Round {i} did not generate changes file")
            else:
                logger.info(f"  Round {i} correction completed, number of changes: {changes}")

            state = state.advance(new_genome, changes)
            self._rounds.append(PolishingRound(
                round_number=i,
                genome=Path(new_genome),
                alignment=Path(bam),
                changes_file=changes_file,
                change_count=changes,
                mean_coverage=coverage,
                duration_seconds=time.monotonic() - started,
            ))

            # Budget is checked first: a zero-change final round still ends "by budget"
            if i == self.max_rounds:
                return self._summary(PolishStatus.STOPPED_BY_BUDGET, state)
            if changes == 0 and i >= 2:
                logger.info("  No further changes, ending Pilon correction early")
                return self._summary(PolishStatus.STOPPED_EARLY, state)

        # Unreachable for max_rounds >= 1
        return self._summary(PolishStatus.STOPPED_BY_BUDGET, state)


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
