#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

End-to-end tests for the pipeline driver using scripted tools.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import json
import logging
from pathlib import Path

import pytest

from assemblyflow.advisories import AdvisoryKind
from assemblyflow.assembly_utils.iterative_polisher import PolishStatus
from assemblyflow.exceptions import (
    MissingDependencyError,
    OutputDirectoryExistsError,
    StageFailedError,
    ToolNotFoundError,
)
from assemblyflow.tools.tool_gate import Criticality
from assemblyflow.utils.pipeline import PipelineDriver, check_tools, tool_requirements

from conftest import ScriptedRunner, fake_probe, fake_tool_gate, plenty_of_space


@pytest.fixture
def make_driver(make_config):
    def _make(runner=None, tool_gate=None, probe=None, config=None, **kwargs):
        return PipelineDriver(
            config or make_config(),
            runner=runner or ScriptedRunner(changes=[5, 0, 0]),
            tool_gate=tool_gate or fake_tool_gate(),
            probe=probe or fake_probe(),
            free_space=kwargs.pop('free_space', plenty_of_space),
            **kwargs,
        )
    return _make


STAGE_ORDER = [
    'trim', 'assemble', 'evaluate',
    'polish.align', 'polish.depth', 'polish.correct',
    'evaluate.compare', 'rename', 'annotate', 'stats',
]


class TestPipelineRun:
    """Test a complete scripted run."""

    def test_full_run(self, make_driver, make_config):
        runner = ScriptedRunner(changes=[5])
        state = make_driver(runner=runner).run()
        root = state.layout.root

        assert runner.keys == STAGE_ORDER
        assert state.polishing.status is PolishStatus.STOPPED_BY_BUDGET
        assert state.final_assembly == root / '03_assembly' / 'pilon_output' / 'pilon_round1.fasta'
        assert state.renamed_genome.name == 'pilon_round1.renamed.fasta'
        assert state.annotation == root / '05_annotation' / 'annotated_genome.gff'
        assert (root / '00_raw_data' / 'sample_R1.fastq').exists()
        assert (root / '04_assembly_evaluation' / 'assembly_stats.txt').exists()
        assert (root / '04_assembly_evaluation' / 'annotation_summary.txt').exists()
        assert state.report_path == root / 'assembly_report.html'
        assert state.report_path.exists()

    def test_stage_results_in_order(self, make_driver):
        state = make_driver(runner=ScriptedRunner(changes=[5])).run()
        assert [r.key for r in state.stage_results] == STAGE_ORDER
        assert all(not r.is_fatal for r in state.stage_results)

    def test_each_output_feeds_next_stage(self, make_driver):
        runner = ScriptedRunner(changes=[5])
        state = make_driver(runner=runner).run()
        initial = str(state.initial_assembly)

        quast = next(argv for argv in runner.commands if argv[0] == 'quast')
        assert quast[1] == initial
        bwa_index = next(argv for argv in runner.commands if argv[:2] == ('bwa', 'index'))
        assert bwa_index[2] == initial
        seqkit_replace = next(argv for argv in runner.commands if argv[:2] == ('seqkit', 'replace'))
        assert seqkit_replace[-1] == str(state.final_assembly)
        prokka = next(argv for argv in runner.commands if argv[0] == 'prokka')
        assert prokka[-1] == str(state.renamed_genome)

    def test_quast_metrics_collected(self, make_driver):
        state = make_driver(runner=ScriptedRunner(changes=[5])).run()
        assert state.evaluation['contigs']['N50'] == 131220
        assert set(state.comparison) == {'Initial_assembly', 'Final_assembly'}

    def test_run_summary_written(self, make_driver):
        state = make_driver(runner=ScriptedRunner(changes=[5, 0, 0])).run()
        summary = json.loads((state.layout.root / 'run_summary.json').read_text())

        assert summary['polishing']['status'] == 'stopped_by_budget'
        assert summary['assembler'] == 'spades'
        assert summary['final_assembly'] == str(state.final_assembly)
        assert len(summary['stages']) == len(state.stage_results)

    def test_multi_round_early_stop(self, make_driver, make_config):
        runner = ScriptedRunner(changes=[8, 0, 4])
        state = make_driver(runner=runner, config=make_config(max_polish_rounds=3)).run()

        assert state.polishing.status is PolishStatus.STOPPED_EARLY
        assert state.final_assembly.name == 'pilon_round2.fasta'
        assert runner.calls['polish.correct'] == 2

    def test_run_log_written_and_detached(self, make_driver):
        state = make_driver(runner=ScriptedRunner(changes=[5])).run()
        log_file = state.layout.root / 'analysis.log'

        assert 'Starting AssemblyFlow pipeline' in log_file.read_text()
        handlers = logging.getLogger('assemblyflow').handlers
        assert not any(getattr(h, 'baseFilename', None) == str(log_file.resolve()) for h in handlers)

    def test_run_log_leaves_console_threshold(self, make_driver):
        package_logger = logging.getLogger('assemblyflow')
        console = logging.StreamHandler()
        console.setLevel(logging.ERROR)
        package_logger.addHandler(console)
        package_logger.setLevel(logging.ERROR)

        state = make_driver(runner=ScriptedRunner(changes=[5])).run()

        assert 'Starting AssemblyFlow pipeline' in (state.layout.root / 'analysis.log').read_text()
        assert console.level == logging.ERROR
        assert package_logger.level == logging.ERROR

    def test_same_named_reads_kept_apart(self, make_driver, make_config, temp_output_dir):
        lane_a = temp_output_dir / 'lane_a'
        lane_b = temp_output_dir / 'lane_b'
        lane_a.mkdir()
        lane_b.mkdir()
        (lane_a / 'reads.fastq').write_text("@fwd1\nACGT\n+\nIIII\n")
        (lane_b / 'reads.fastq').write_text("@rev1\nTGCA\n+\nIIII\n")
        runner = ScriptedRunner(changes=[5])

        make_driver(runner=runner, config=make_config(read1=lane_a / 'reads.fastq',
                                                      read2=lane_b / 'reads.fastq')).run()

        fastp = runner.commands[0]
        forward = Path(fastp[fastp.index('-i') + 1])
        reverse = Path(fastp[fastp.index('-I') + 1])
        assert forward != reverse
        assert forward.read_text().startswith('@fwd1')
        assert reverse.read_text().startswith('@rev1')

    def test_resources_clamped_before_stages(self, make_driver, make_config):
        runner = ScriptedRunner(changes=[5])
        state = make_driver(runner=runner, config=make_config(threads=64),
                            probe=fake_probe(memory_gb=16, cores=8)).run()

        assert state.config.threads == 8
        fastp = runner.commands[0]
        assert fastp[fastp.index('--thread') + 1] == '8'
        assert [a.kind for a in state.advisories].count(AdvisoryKind.RESOURCE_CLAMP) == 1

    def test_low_memory_mode(self, make_driver, make_config):
        runner = ScriptedRunner(changes=[5])
        state = make_driver(runner=runner, config=make_config(low_memory=True)).run()

        assert state.initial_assembly.name == 'final.contigs.fa'
        assert any(argv[0] == 'megahit' for argv in runner.commands)
        prokka = next(argv for argv in runner.commands if argv[0] == 'prokka')
        assert '--mincontiglen' in prokka


class TestPolishingSkipped:
    """Test runs where polishing does not happen."""

    def test_pilon_missing_skips_polishing(self, make_driver):
        runner = ScriptedRunner()
        state = make_driver(runner=runner, tool_gate=fake_tool_gate(missing={'pilon'})).run()

        assert state.polishing is None
        assert state.polish_skipped_reason == 'Pilon not available'
        assert state.final_assembly == state.initial_assembly
        assert not any(key.startswith('polish') for key in runner.keys)
        assert any(a.kind is AdvisoryKind.TOOL_UNAVAILABLE for a in state.advisories)
        assert any(a.kind is AdvisoryKind.POLISHING for a in state.advisories)

    def test_skip_polish_flag(self, make_driver, make_config):
        gate = fake_tool_gate(missing={'pilon', 'bwa', 'samtools'})
        state = make_driver(tool_gate=gate, config=make_config(skip_polish=True)).run()

        assert state.polish_skipped_reason == 'disabled by configuration'
        assert state.final_assembly == state.initial_assembly

    def test_polishing_failure_falls_back_and_run_completes(self, make_driver):
        runner = ScriptedRunner(fail={'polish.correct': 1})
        state = make_driver(runner=runner).run()

        assert state.polishing.status is PolishStatus.FALLBACK_TO_ORIGINAL
        assert state.final_assembly == state.initial_assembly
        assert state.annotation.exists()


class TestPipelineAborts:
    """Test fatal conditions."""

    def test_missing_assembly_output(self, make_driver):
        runner = ScriptedRunner(omit={'assemble'})
        with pytest.raises(StageFailedError) as excinfo:
            make_driver(runner=runner).run()

        assert 'Genome assembly' in str(excinfo.value)
        assert runner.keys == ['trim', 'assemble']

    def test_missing_declared_input(self, make_driver):
        runner = ScriptedRunner(omit={'trimmed_2.fastq.gz'})
        with pytest.raises(MissingDependencyError) as excinfo:
            make_driver(runner=runner).run()

        assert excinfo.value.path.name == 'trimmed_2.fastq.gz'
        # The assembler was never invoked
        assert runner.keys == ['trim', 'assemble']
        assert not any(argv[0] == 'spades.py' for argv in runner.commands)

    def test_failed_command(self, make_driver):
        runner = ScriptedRunner(fail={'trim': 1})
        with pytest.raises(StageFailedError):
            make_driver(runner=runner).run()
        assert runner.keys == ['trim']

    def test_required_tool_missing(self, make_driver):
        runner = ScriptedRunner()
        with pytest.raises(ToolNotFoundError):
            make_driver(runner=runner, tool_gate=fake_tool_gate(missing={'prokka'})).run()
        assert runner.keys == []

    def test_abort_detaches_run_log(self, make_driver):
        with pytest.raises(StageFailedError):
            make_driver(runner=ScriptedRunner(omit={'assemble'})).run()
        assert not any(isinstance(h, logging.FileHandler)
                       for h in logging.getLogger('assemblyflow').handlers)


class TestOutputDirectory:
    """Test handling of an existing output directory."""

    def test_existing_directory_without_force(self, make_driver, make_config):
        config = make_config()
        config.output_dir.mkdir(parents=True)
        (config.output_dir / 'old.txt').write_text('previous run')

        with pytest.raises(OutputDirectoryExistsError):
            make_driver(config=config).run()

    def test_empty_directory_is_fine(self, make_driver, make_config):
        config = make_config()
        config.output_dir.mkdir(parents=True)
        state = make_driver(config=config).run()
        assert state.report_path.exists()

    def test_overwrite_policy_accepts(self, make_driver, make_config):
        config = make_config()
        config.output_dir.mkdir(parents=True)
        (config.output_dir / 'old.txt').write_text('previous run')
        asked = []

        state = make_driver(config=config,
                            overwrite_policy=lambda path: asked.append(path) or True).run()

        assert asked == [config.output_dir]
        assert state.config.force is True

    def test_force(self, make_driver, make_config):
        config = make_config(force=True)
        config.output_dir.mkdir(parents=True)
        (config.output_dir / 'old.txt').write_text('previous run')
        state = make_driver(config=config).run()
        assert state.report_path.exists()


class TestToolRequirements:
    """Test tool criticality selection."""

    def test_pilon_is_optional(self, make_config):
        requirements = dict(tool_requirements(make_config()))
        assert requirements['pilon'] is Criticality.OPTIONAL
        assert requirements['bwa'] is Criticality.REQUIRED
        assert requirements['spades'] is Criticality.REQUIRED

    def test_skip_polish_drops_alignment_tools(self, make_config):
        requirements = dict(tool_requirements(make_config(skip_polish=True)))
        assert 'bwa' not in requirements
        assert 'pilon' not in requirements

    def test_pilon_jar_uses_java(self, make_config):
        config = make_config(settings={'tools': {'pilon_jar': '/opt/pilon.jar'}})
        requirements = dict(tool_requirements(config))
        assert 'java' in requirements
        assert 'pilon' not in requirements

    def test_non_strict_reports_missing(self, make_config):
        results, polisher = check_tools(make_config(), fake_tool_gate(missing={'quast'}), strict=False)
        quast = next(r for r in results if r.tool == 'quast')
        assert not quast.available
        assert polisher is True

# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
