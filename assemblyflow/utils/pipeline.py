#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Pipeline driver. Sequences the complete workflow:
- QC: read trimming (fastp)
- Assembly: SPAdes, or MEGAHIT in low-memory mode
- Evaluation: QUAST on the raw assembly
- Polishing: iterative Pilon rounds (optional)
- Comparative evaluation: QUAST on raw vs. final assembly
- Finishing: contig renaming (seqkit), annotation (Prokka), statistics, report

Key principles:
- Stages run strictly one after another; each stage's declared output is
  the next stage's declared input.
- A stage whose declared input is missing is never invoked.
- Every step returns a new PipelineState; nothing is shared or mutated.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, Callable
import logging
import shutil
from datetime import datetime
from dataclasses import dataclass, field, replace

from ..advisories import Advisory, AdvisoryKind, advise
from ..assembly_utils.assembly_evaluation import parse_quast_report
from ..assembly_utils.iterative_polisher import (
    DiskPolicy,
    GenomeState,
    PolishingSummary,
    PolishLoop,
)
from ..config.schema import RunConfig
from ..exceptions import AssemblyFlowError, OutputDirectoryExistsError, ToolNotFoundError
from ..io_utils.output_layout import OutputLayout
from ..io_utils.report import ReportEmitter
from ..tools import commands
from ..tools.stage_runner import StageResult, StageRunner
from ..tools.tool_gate import Criticality, GateResult, ToolGate
from .hardware_management import ResourceProbe, check_run_disk_space, free_disk_bytes

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
PACKAGE_LOGGER = 'assemblyflow'


# ============================================================================
# Logging
# ============================================================================

def attach_run_log(log_path: Path, level: str = 'INFO') -> Tuple[logging.Handler, int]:
    """
    Append the package's log records to *log_path* for the duration of a run.

    Only the file handler takes *level*; the package logger is lowered just
    far enough to feed it, so console handlers keep their own thresholds.

    Returns:
        (handler, previous package logger level) for ``detach_run_log``
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    previous = package_logger.level
    file_level = getattr(logging, level, logging.INFO)
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(file_level)
    package_logger.addHandler(handler)
    package_logger.setLevel(min(package_logger.getEffectiveLevel(), file_level))
    return handler, previous


def detach_run_log(handler: logging.Handler, previous_level: int):
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.removeHandler(handler)
    package_logger.setLevel(previous_level)
    handler.close()


# ============================================================================
# Pipeline State
# ============================================================================

@dataclass(frozen=True)
class PipelineState:
    """
    Everything known about a run so far.

    Owned by the driver; each step hands back a new instance. Read-only
    once the run completes and consumed by the report emitter.
    """
    config: RunConfig
    layout: OutputLayout
    started_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec='seconds'))
    finished_at: Optional[str] = None
    stage_results: Tuple[StageResult, ...] = ()
    gate_results: Tuple[GateResult, ...] = ()
    advisories: Tuple[Advisory, ...] = ()
    polisher_available: bool = False
    initial_assembly: Optional[Path] = None
    polishing: Optional[PolishingSummary] = None
    polish_skipped_reason: Optional[str] = None
    final_assembly: Optional[Path] = None
    renamed_genome: Optional[Path] = None
    annotation: Optional[Path] = None
    assembly_stats: Optional[Path] = None
    evaluation: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    comparison: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    report_path: Optional[Path] = None

    def with_stage(self, result: StageResult) -> 'PipelineState':
        return replace(
            self,
            stage_results=self.stage_results + (result,),
            advisories=self.advisories + tuple(result.advisories),
        )

    def with_advisories(self, advisories) -> 'PipelineState':
        return replace(self, advisories=self.advisories + tuple(advisories))

    @property
    def genome_state(self) -> Optional[GenomeState]:
        """Final genome state (pristine assembly when polishing did not run)."""
        if self.polishing is not None:
            return self.polishing.genome_state
        if self.initial_assembly is not None:
            return GenomeState.initial(self.initial_assembly)
        return None

    @property
    def polish_description(self) -> str:
        if self.polishing is not None:
            return self.polishing.describe()
        if self.polish_skipped_reason:
            return f"Polishing skipped ({self.polish_skipped_reason})"
        return "Polishing not run"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'config': self.config.to_dict(),
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'assembler': self.config.assembler,
            'initial_assembly': str(self.initial_assembly) if self.initial_assembly else None,
            'final_assembly': str(self.final_assembly) if self.final_assembly else None,
            'renamed_genome': str(self.renamed_genome) if self.renamed_genome else None,
            'annotation': str(self.annotation) if self.annotation else None,
            'polishing': self.polishing.to_dict() if self.polishing else None,
            'polish_skipped_reason': self.polish_skipped_reason,
            'polish_description': self.polish_description,
            'stages': [r.to_dict() for r in self.stage_results],
            'tools': [g.to_dict() for g in self.gate_results],
            'advisories': [a.to_dict() for a in self.advisories],
            'evaluation': self.evaluation,
            'comparison': self.comparison,
        }


# ============================================================================
# Tool requirements
# ============================================================================

def tool_requirements(config: RunConfig) -> List[Tuple[str, Criticality]]:
    """Tools the run needs, in pipeline order, with their criticality."""
    required = [
        ('fastp', Criticality.REQUIRED),
        (config.assembler, Criticality.REQUIRED),
        ('quast', Criticality.REQUIRED),
    ]
    if not config.skip_polish:
        required.extend([
            ('bwa', Criticality.REQUIRED),
            ('samtools', Criticality.REQUIRED),
        ])
        if config.section('tools').get('pilon_jar'):
            required.append(('java', Criticality.OPTIONAL))
        else:
            required.append(('pilon', Criticality.OPTIONAL))
    required.extend([
        ('seqkit', Criticality.REQUIRED),
        ('prokka', Criticality.REQUIRED),
    ])
    return required


def check_tools(config: RunConfig, gate: ToolGate, strict: bool = True) -> Tuple[List[GateResult], bool]:
    """
    Gate every tool the run needs.

    Args:
        strict: Raise on a missing Required tool (otherwise report it as unavailable)

    Returns:
        (gate results, whether the polisher can run)
    """
    results = []
    for tool, criticality in tool_requirements(config):
        try:
            result = gate.check(tool, config.min_version(tool), criticality,
                                executable=config.tool(tool))
        except ToolNotFoundError:
            if strict:
                raise
            result = GateResult(tool=tool, available=False, executable=config.tool(tool),
                                min_version=config.min_version(tool))
        results.append(result)

    polisher_available = any(r.tool in ('pilon', 'java') and r.available for r in results)
    return results, polisher_available


# ============================================================================
# Driver
# ============================================================================

class PipelineDriver:
    """
    Run the complete assembly workflow for one RunConfig.

    Args:
        config: Immutable run configuration
        runner: Stage executor (external commands)
        tool_gate: Tool availability/version checker
        probe: Host resource probe used to clamp threads/memory
        disk_policy: Consulted by the polishing loop when scratch space is short
        overwrite_policy: Consulted when the output directory already has
            content and ``force`` is off; returning True behaves like ``force``
        free_space: Free-space lookup (bytes) for disk estimates
        reporter: Report emitter
    """

    def __init__(
        self,
        config: RunConfig,
        runner: Optional[StageRunner] = None,
        tool_gate: Optional[ToolGate] = None,
        probe: Optional[ResourceProbe] = None,
        disk_policy: Optional[DiskPolicy] = None,
        overwrite_policy: Optional[Callable[[Path], bool]] = None,
        free_space: Callable[[Path], Optional[int]] = free_disk_bytes,
        reporter: Optional[ReportEmitter] = None,
    ):
        self.config = config
        self.runner = runner or StageRunner()
        self.tool_gate = tool_gate or ToolGate()
        self.probe = probe or ResourceProbe(
            low_memory_threshold_gb=config.section('resources').get('low_memory_threshold_gb', 8)
        )
        self.disk_policy = disk_policy
        self.overwrite_policy = overwrite_policy or (lambda _path: False)
        self.free_space = free_space
        self.reporter = reporter or ReportEmitter()
        self.layout = OutputLayout(Path(config.output_dir))

    def _prepare_output_dir(self) -> RunConfig:
        root = self.layout.root
        config = self.config
        if root.exists() and any(root.iterdir()):
            if config.force:
                logger.info("Using --force, will overwrite existing directory")
            elif self.overwrite_policy(root):
                config = replace(config, force=True)
            else:
                raise OutputDirectoryExistsError(root)
        self.layout.create()
        return config

    def run(self) -> PipelineState:
        """
        Execute every stage in order.

        Returns:
            Final PipelineState (also rendered to the report)

        Raises:
            AssemblyFlowError: on any fatal condition
        """
        config = self._prepare_output_dir()
        log_settings = config.section('output').get('logging', {})
        handler, previous_level = attach_run_log(
            self.layout.root / log_settings.get('log_file', 'analysis.log'),
            log_settings.get('level', 'INFO'),
        )

        try:
            logger.info("=" * 60)
            logger.info("Starting AssemblyFlow pipeline")
            logger.info("=" * 60)
            logger.info(f"Input files: {config.read1}, {config.read2}")
            logger.info(f"Output directory: {config.output_dir}")
            logger.info(f"Parameters: threads={config.threads}, memory={config.memory_gb}G, "
                        f"polish rounds={config.max_polish_rounds}")

            state = PipelineState(config=config, layout=self.layout)
            for step in (
                self._detect_resources,
                self._check_disk,
                self._check_tools,
                self._stage_raw_data,
                self._trim,
                self._assemble,
                self._evaluate_initial,
                self._polish,
                self._evaluate_final,
                self._rename,
                self._annotate,
                self._summarise,
            ):
                state = step(state)

            state = replace(state, finished_at=datetime.now().isoformat(timespec='seconds'))
            state = self.reporter.write(state)

            logger.info("=== Genome Assembly Pipeline Completed ===")
            logger.info(f"Final assembly: {state.final_assembly}")
            logger.info(f"Polishing: {state.polish_description}")
            logger.info(f"Complete report: {state.report_path}")
            return state

        except AssemblyFlowError as e:
            logger.error(f"Pipeline aborted: {e}")
            raise
        finally:
            detach_run_log(handler, previous_level)

    # -- preflight ----------------------------------------------------------

    def _detect_resources(self, state: PipelineState) -> PipelineState:
        config, advisories = self.probe.adjust(state.config)
        return replace(state, config=config).with_advisories(advisories)

    def _check_disk(self, state: PipelineState) -> PipelineState:
        return state.with_advisories(check_run_disk_space(state.config, free_space=self.free_space))

    def _check_tools(self, state: PipelineState) -> PipelineState:
        results, polisher_available = check_tools(state.config, self.tool_gate)
        advisories = [a for r in results for a in r.advisories]
        return replace(
            state,
            gate_results=tuple(results),
            polisher_available=polisher_available,
        ).with_advisories(advisories)

    def _raw_reads(self, config: RunConfig) -> Tuple[Path, Path]:
        """Destinations of the read pair under 00_raw_data; same-named files are kept apart."""
        read1, read2 = config.read1, config.read2
        if read1.name == read2.name:
            return (self.layout.raw_data / f"R1_{read1.name}",
                    self.layout.raw_data / f"R2_{read2.name}")
        return self.layout.raw_data / read1.name, self.layout.raw_data / read2.name

    def _stage_raw_data(self, state: PipelineState) -> PipelineState:
        logger.info("Preparing raw data...")
        sources = (state.config.read1, state.config.read2)
        for source, dest in zip(sources, self._raw_reads(state.config)):
            if dest.exists() and dest.resolve() == source.resolve():
                continue
            shutil.copy2(source, dest)
        return state

    # -- stages -------------------------------------------------------------

    def _trim(self, state: PipelineState) -> PipelineState:
        raw1, raw2 = self._raw_reads(state.config)
        spec = commands.trim_stage(state.config, self.layout, raw1, raw2)
        return state.with_stage(self.runner.run(spec))

    def _assemble(self, state: PipelineState) -> PipelineState:
        if state.config.low_memory:
            logger.warning("Using low memory mode (MEGAHIT)")
        spec = commands.assembly_stage(state.config, self.layout)
        result = self.runner.run(spec)
        return replace(state.with_stage(result), initial_assembly=spec.output)

    def _evaluate_initial(self, state: PipelineState) -> PipelineState:
        outdir = self.layout.evaluation / 'quast'
        spec = commands.evaluation_stage(state.config, [state.initial_assembly], outdir)
        state = state.with_stage(self.runner.run(spec))
        return replace(state, evaluation=parse_quast_report(outdir / 'report.tsv'))

    def _polish(self, state: PipelineState) -> PipelineState:
        config = state.config
        reason = None
        if config.skip_polish:
            reason = 'disabled by configuration'
        elif not state.polisher_available:
            reason = 'Pilon not available'

        if reason:
            advisory = advise('PipelineDriver', AdvisoryKind.POLISHING,
                              f"Skipping Pilon correction step ({reason})", logger)
            return replace(
                state,
                polish_skipped_reason=reason,
                final_assembly=state.initial_assembly,
            ).with_advisories([advisory])

        loop = PolishLoop(
            config,
            self.runner,
            self.layout.trimmed_reads,
            self.layout.polish_align,
            self.layout.polish_output,
            disk_policy=self.disk_policy,
            free_space=self.free_space,
        )
        summary = loop.run(state.initial_assembly)
        return replace(
            state,
            polishing=summary,
            final_assembly=summary.final_artifact,
            stage_results=state.stage_results + summary.stage_results,
            advisories=state.advisories + summary.advisories,
        )

    def _evaluate_final(self, state: PipelineState) -> PipelineState:
        outdir = self.layout.evaluation / 'quast_compare'
        spec = commands.evaluation_stage(
            state.config,
            [state.initial_assembly, state.final_assembly],
            outdir,
            labels=['Initial_assembly', 'Final_assembly'],
            name='Final quality assessment',
            key='evaluate.compare',
        )
        state = state.with_stage(self.runner.run(spec))
        return replace(state, comparison=parse_quast_report(outdir / 'report.tsv'))

    def _rename(self, state: PipelineState) -> PipelineState:
        spec = commands.rename_stage(state.config, state.final_assembly)
        return replace(state.with_stage(self.runner.run(spec)), renamed_genome=spec.output)

    def _annotate(self, state: PipelineState) -> PipelineState:
        spec = commands.annotation_stage(state.config, self.layout, state.renamed_genome)
        return replace(state.with_stage(self.runner.run(spec)), annotation=spec.output)

    def _summarise(self, state: PipelineState) -> PipelineState:
        out = self.layout.evaluation / 'assembly_stats.txt'
        spec = commands.stats_stage(state.config, [state.initial_assembly, state.final_assembly], out)
        state = replace(state.with_stage(self.runner.run(spec)), assembly_stats=out)

        prefix = state.config.section('annotation').get('prefix', 'annotated_genome')
        summary = self.layout.annotation / f"{prefix}.txt"
        if summary.exists():
            shutil.copy2(summary, self.layout.evaluation / 'annotation_summary.txt')
        return state


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
