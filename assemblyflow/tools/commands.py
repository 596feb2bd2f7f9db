#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Stage builders — one StageSpec per external tool invocation, filled in
from the run configuration.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from pathlib import Path
from typing import Optional, Sequence, Tuple

from ..config.schema import RunConfig
from ..io_utils.output_layout import OutputLayout
from .stage_runner import StageSpec


# ============================================================================
#                         QC / ASSEMBLY / EVALUATION
# ============================================================================

def trim_stage(config: RunConfig, layout: OutputLayout, raw1: Path, raw2: Path) -> StageSpec:
    """Adapter/quality trimming of the raw read pair with fastp."""
    out1, out2 = layout.trimmed_reads
    html = layout.quality_control / 'fastp_report.html'
    json_report = layout.quality_control / 'fastp_report.json'
    command = (
        config.tool('fastp'),
        '-i', str(raw1), '-I', str(raw2),
        '-o', str(out1), '-O', str(out2),
        '-q', str(config.quality),
        '-l', str(config.min_length),
        *config.section('trimming').get('extra_args', []),
        '--thread', str(config.threads),
        '--html', str(html),
        '--json', str(json_report),
    )
    return StageSpec(
        name='Quality control',
        key='trim',
        commands=(command,),
        inputs=(Path(raw1), Path(raw2)),
        output=out1,
        products=(out2, html, json_report),
        min_size=config.min_size('trimmed_reads'),
    )


def assembly_output(config: RunConfig, layout: OutputLayout) -> Path:
    if config.low_memory:
        return layout.assembly / 'megahit' / 'final.contigs.fa'
    return layout.assembly / 'spades' / 'contigs.fasta'


def assembly_stage(config: RunConfig, layout: OutputLayout) -> StageSpec:
    """SPAdes (standard) or MEGAHIT (low-memory) assembly of the trimmed reads."""
    read1, read2 = layout.trimmed_reads
    settings = config.section('assembly')

    if config.low_memory:
        command = [
            config.tool('megahit'),
            '-1', str(read1), '-2', str(read2),
            '-o', str(layout.assembly / 'megahit'),
            '-t', str(config.threads),
            '--min-contig-len', str(settings.get('megahit_min_contig_len', 1000)),
        ]
        if config.force:
            command.append('--force')
        name = 'Genome assembly (MEGAHIT)'
    else:
        command = [
            config.tool('spades'),
            '-1', str(read1), '-2', str(read2),
            '-o', str(layout.assembly / 'spades'),
            '-t', str(config.threads),
            '-m', str(config.memory_gb),
            *settings.get('spades_extra_args', []),
        ]
        name = 'Genome assembly (SPAdes)'

    return StageSpec(
        name=name,
        key='assemble',
        commands=(tuple(command),),
        inputs=(read1, read2),
        output=assembly_output(config, layout),
        min_size=config.min_size('assembly'),
    )


def evaluation_stage(
    config: RunConfig,
    assemblies: Sequence[Path],
    outdir: Path,
    labels: Optional[Sequence[str]] = None,
    name: str = 'Assembly quality assessment',
    key: str = 'evaluate',
) -> StageSpec:
    """QUAST evaluation of one or more contig sets."""
    command = [config.tool('quast'), *[str(a) for a in assemblies],
               '-o', str(outdir), '--threads', str(config.threads)]
    if labels:
        command.extend(['--labels', ','.join(labels)])
    command.append('--gene-finding')
    return StageSpec(
        name=name,
        key=key,
        commands=(tuple(command),),
        inputs=tuple(Path(a) for a in assemblies),
        output=Path(outdir) / 'report.txt',
        products=(Path(outdir) / 'report.tsv',),
        min_size=config.min_size('evaluation'),
    )


# ============================================================================
#                         POLISHING ROUNDS
# ============================================================================

def round_alignment_paths(align_dir: Path, round_number: int) -> Tuple[Path, Path]:
    """(unsorted SAM, sorted BAM) for a polishing round."""
    prefix = Path(align_dir) / f"aln_round{round_number}"
    return prefix.with_suffix('.sam'), Path(f"{prefix}.sorted.bam")


def round_genome_paths(polish_dir: Path, round_number: int) -> Tuple[Path, Path]:
    """(polished FASTA, change log) written by Pilon for a round."""
    prefix = Path(polish_dir) / f"pilon_round{round_number}"
    return prefix.with_suffix('.fasta'), prefix.with_suffix('.changes')


def alignment_stage(config: RunConfig, genome: Path, reads: Sequence[Path],
                    align_dir: Path, round_number: int) -> StageSpec:
    """Index the genome, map the read pair, and produce a sorted, indexed BAM."""
    bwa = config.tool('bwa')
    samtools = config.tool('samtools')
    sam, bam = round_alignment_paths(align_dir, round_number)
    threads = str(config.threads)
    commands = (
        (bwa, 'index', str(genome)),
        (bwa, 'mem', '-t', threads, '-o', str(sam), str(genome), *[str(r) for r in reads]),
        (samtools, 'sort', '-@', threads, '-o', str(bam), str(sam)),
        (samtools, 'index', str(bam)),
    )
    return StageSpec(
        name=f"Round {round_number} read alignment",
        key='polish.align',
        commands=commands,
        inputs=(Path(genome), *[Path(r) for r in reads]),
        output=bam,
        products=(sam, Path(f"{bam}.bai")),
        min_size=config.min_size('alignment'),
    )


def depth_stage(config: RunConfig, bam: Path, align_dir: Path, round_number: int) -> StageSpec:
    out = Path(align_dir) / f"depth_round{round_number}.txt"
    return StageSpec(
        name=f"Round {round_number} coverage calculation",
        key='polish.depth',
        commands=((config.tool('samtools'), 'depth', str(bam)),),
        inputs=(Path(bam),),
        stdout=out,
        output=out,
    )


def correction_stage(config: RunConfig, genome: Path, bam: Path,
                     polish_dir: Path, round_number: int) -> StageSpec:
    """Pilon correction of *genome* using the round's alignment."""
    fasta, changes = round_genome_paths(polish_dir, round_number)
    jar = config.section('tools').get('pilon_jar')
    if jar:
        launcher = [config.tool('java'), f"-Xmx{config.memory_gb}G", '-jar', str(jar)]
    else:
        launcher = [config.tool('pilon'), f"-Xmx{config.memory_gb}G"]

    command = (
        *launcher,
        '--genome', str(genome),
        '--frags', str(bam),
        '--output', fasta.stem,
        '--outdir', str(polish_dir),
        '--threads', str(config.threads),
        '--changes',
    )
    return StageSpec(
        name=f"Round {round_number} Pilon correction",
        key='polish.correct',
        commands=(command,),
        inputs=(Path(genome), Path(bam)),
        output=fasta,
        products=(changes,),
        min_size=config.min_size('polished_genome'),
    )


# ============================================================================
#                         FINISHING
# ============================================================================

def renamed_genome_path(final_assembly: Path) -> Path:
    final_assembly = Path(final_assembly)
    return final_assembly.with_name(f"{final_assembly.stem}.renamed.fasta")


def rename_stage(config: RunConfig, final_assembly: Path) -> StageSpec:
    """Normalise sequence identifiers to contig_1, contig_2, ..."""
    renamed = renamed_genome_path(final_assembly)
    return StageSpec(
        name='Renaming contig IDs',
        key='rename',
        commands=((config.tool('seqkit'), 'replace', '-p', '(.+)', '-r', 'contig_{nr}',
                   str(final_assembly)),),
        inputs=(Path(final_assembly),),
        stdout=renamed,
        output=renamed,
        min_size=config.min_size('renamed_genome'),
    )


def annotation_stage(config: RunConfig, layout: OutputLayout, renamed: Path) -> StageSpec:
    """Prokka annotation of the normalised genome."""
    settings = config.section('annotation')
    prefix = settings.get('prefix', 'annotated_genome')
    command = [
        config.tool('prokka'),
        '--outdir', str(layout.annotation),
        '--prefix', prefix,
        '--cpus', str(config.threads),
        '--kingdom', settings.get('kingdom', 'Bacteria'),
        *settings.get('extra_args', []),
    ]
    if config.low_memory:
        command.extend(['--mincontiglen', str(settings.get('low_memory_min_contig_len', 500))])
    if config.force or layout.annotation.exists():
        command.append('--force')
    command.append(str(renamed))

    return StageSpec(
        name='Genome annotation',
        key='annotate',
        commands=(tuple(command),),
        inputs=(Path(renamed),),
        output=layout.annotation / f"{prefix}.gff",
        products=(layout.annotation / f"{prefix}.faa", layout.annotation / f"{prefix}.txt"),
        min_size=config.min_size('annotation'),
    )


def stats_stage(config: RunConfig, assemblies: Sequence[Path], out: Path) -> StageSpec:
    """seqkit stats table for the initial and final assemblies."""
    unique = list(dict.fromkeys(str(a) for a in assemblies))
    return StageSpec(
        name='Generating assembly statistics',
        key='stats',
        commands=((config.tool('seqkit'), 'stats', *unique),),
        inputs=tuple(Path(a) for a in unique),
        stdout=Path(out),
        output=Path(out),
    )


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
