#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Pytest configuration and shared fixtures.

External tools are never invoked: stages run through ScriptedRunner,
which writes plausible outputs for each stage key, and the tool gate and
host probe are given fake lookups.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import copy
import logging
import shutil
import tempfile
from collections import Counter
from pathlib import Path

import pytest

from assemblyflow.config.schema import DEFAULT_CONFIG, RunConfig
from assemblyflow.tools.stage_runner import CommandOutcome, StageRunner
from assemblyflow.tools.tool_gate import ToolGate
from assemblyflow.utils.hardware_management import GB, ResourceProbe


SIMPLE_FASTA = ">NODE_1_length_40_cov_12.5\nATCGATCGATCGATCGATCGATCGATCGATCGATCGATCG\n"

SIMPLE_FASTQ = """@read1
ATCGATCGATCG
+
IIIIIIIIIIII
@read2
GCTAGCTAGCTA
+
IIIIIIIIIIII
"""

FAKE_VERSION_OUTPUT = {
    'fastp': "fastp 0.23.4",
    'spades.py': "SPAdes genome assembler v3.15.5",
    'megahit': "MEGAHIT v1.2.9",
    'quast': "QUAST v5.2.0 (build 17.04.2023)",
    'bwa': "\nProgram: bwa (alignment via Burrows-Wheeler transformation)\nVersion: 0.7.17-r1188\n",
    'samtools': "samtools 1.17\nUsing htslib 1.17",
    'pilon': "Pilon version 1.24 Thu Jan 28 13:00:45 2021 -0500",
    'java': 'openjdk version "17.0.8" 2023-07-18',
    'seqkit': "seqkit v2.5.1",
    'prokka': "prokka 1.14.6",
}


# ============================================================================
# Fakes
# ============================================================================

class ScriptedRunner(StageRunner):
    """
    StageRunner whose executor writes fake outputs instead of running tools.

    Args:
        changes: Pilon change counts per correction call (None = no .changes file)
        fail: {stage key: invocation number} that exits non-zero
        omit: Stage keys whose declared output is not written, or
            file names of products to leave out
    """

    def __init__(self, changes=(), fail=None, omit=()):
        super().__init__(executor=self._execute)
        self.changes = list(changes)
        self.fail = dict(fail or {})
        self.omit = set(omit)
        self.calls = Counter()
        self.keys = []
        self.commands = []
        self._spec = None

    def run(self, spec):
        self._spec = spec
        self.calls[spec.key] += 1
        self.keys.append(spec.key)
        return super().run(spec)

    def _execute(self, argv, stdout=None, cwd=None, env=None):
        spec = self._spec
        self.commands.append(tuple(argv))
        if self.fail.get(spec.key) == self.calls[spec.key]:
            return CommandOutcome(returncode=1, stderr=f"{argv[0]}: simulated failure")
        if tuple(argv) == spec.commands[-1]:
            self._materialize(spec, argv, stdout)
        return CommandOutcome(returncode=0)

    def _materialize(self, spec, argv, stdout):
        key = spec.key
        if stdout is not None:
            if key in self.omit:
                return
            Path(stdout).parent.mkdir(parents=True, exist_ok=True)
            Path(stdout).write_text(self._payload(key, spec, argv))
            return

        if spec.output is not None and key not in self.omit:
            _write(spec.output, self._payload(key, spec, argv))
        for product in spec.products:
            if Path(product).name in self.omit:
                continue
            if str(product).endswith('.changes'):
                count = self._change_count()
                if count is not None:
                    _write(product, ''.join(f"contig_1:{i + 1} contig_1_pilon:{i + 1} A T\n"
                                            for i in range(count)))
            elif str(product).endswith('report.tsv'):
                _write(product, _quast_tsv(spec, argv))
            else:
                _write(product, SIMPLE_FASTA)

    def _change_count(self):
        index = self.calls['polish.correct'] - 1
        if index < len(self.changes):
            return self.changes[index]
        return 0

    def _payload(self, key, spec, argv):
        if key == 'polish.depth':
            return "contig_1\t1\t30\ncontig_1\t2\t32\ncontig_1\t3\t28\n"
        if key == 'stats':
            return "file\tformat\ttype\tnum_seqs\tsum_len\n"
        if key == 'annotate':
            return "##gff-version 3\ncontig_1\tProdigal\tCDS\t1\t40\t.\t+\t0\tID=X_00001\n"
        if key.startswith('evaluate'):
            return "All statistics are based on contigs of size >= 500 bp\n"
        return SIMPLE_FASTA


def _write(path, text):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _quast_tsv(spec, argv):
    argv = list(argv)
    if '--labels' in argv:
        labels = argv[argv.index('--labels') + 1].split(',')
    else:
        labels = [Path(p).stem for p in spec.inputs]
    header = "Assembly\t" + "\t".join(labels)
    rows = [
        ("# contigs", "12"),
        ("Largest contig", "250431"),
        ("Total length", "4821554"),
        ("N50", "131220"),
        ("L50", "14"),
        ("GC (%)", "50.79"),
    ]
    lines = [header] + [f"{name}\t" + "\t".join(value for _ in labels) for name, value in rows]
    return "\n".join(lines) + "\n"


def fake_tool_gate(missing=(), versions=None):
    """ToolGate that finds every executable except *missing*."""
    outputs = dict(FAKE_VERSION_OUTPUT)
    outputs.update(versions or {})

    def which(executable):
        return None if executable in missing else f"/opt/tools/bin/{executable}"

    def run_version(argv):
        return outputs.get(Path(argv[0]).name, '')

    return ToolGate(which=which, run_version=run_version)


def fake_probe(memory_gb=16, cores=8):
    return ResourceProbe(memory_reader=lambda: memory_gb * GB, cpu_counter=lambda: cores)


def plenty_of_space(_path):
    return 500 * GB


def no_space(_path):
    return 0


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_package_logger():
    """Remove handlers and levels the CLI leaves on the package logger."""
    yield
    package_logger = logging.getLogger('assemblyflow')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_output_dir():
    """Create temporary output directory for tests."""
    temp_dir = tempfile.mkdtemp(prefix="assemblyflow_test_")
    yield Path(temp_dir)
    # Cleanup after test
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def simple_fasta():
    """Generate simple FASTA sequence for testing."""
    return SIMPLE_FASTA


@pytest.fixture
def simple_fastq():
    """Generate simple FASTQ reads for testing."""
    return SIMPLE_FASTQ


@pytest.fixture
def read_pair(temp_output_dir):
    """Tiny paired-end read files."""
    reads = temp_output_dir / 'reads'
    reads.mkdir()
    read1 = reads / 'sample_R1.fastq'
    read2 = reads / 'sample_R2.fastq'
    read1.write_text(SIMPLE_FASTQ)
    read2.write_text(SIMPLE_FASTQ)
    return read1, read2


@pytest.fixture
def test_settings():
    """Default settings with output size thresholds disabled."""
    settings = copy.deepcopy(DEFAULT_CONFIG)
    for artifact in settings['validation']:
        settings['validation'][artifact] = 0
    return settings


@pytest.fixture
def make_config(read_pair, temp_output_dir, test_settings):
    """Factory for RunConfig objects pointing at the tiny read pair."""
    def _make(**overrides):
        settings = copy.deepcopy(test_settings)
        for section, values in overrides.pop('settings', {}).items():
            settings[section].update(values)
        fields = dict(
            read1=read_pair[0],
            read2=read_pair[1],
            output_dir=temp_output_dir / 'results',
            threads=4,
            memory_gb=8,
            settings=settings,
        )
        fields.update(overrides)
        return RunConfig(**fields)
    return _make


@pytest.fixture
def genome_file(temp_output_dir):
    """A pre-polish assembly on disk."""
    path = temp_output_dir / 'contigs.fasta'
    path.write_text(SIMPLE_FASTA)
    return path

# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
