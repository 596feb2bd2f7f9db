#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Command-line interface for AssemblyFlow.

This module provides the main CLI entry point and all subcommands for
the AssemblyFlow prokaryotic genome assembly pipeline.
"""

import logging
import sys
from pathlib import Path

import click
import yaml

from .version import __version__
from .config.schema import (
    VALID_TEMPLATES,
    RunConfig,
    load_config,
    parse_memory_gb,
    save_config_template,
    validate_config,
)
from .exceptions import AssemblyFlowError
from .assembly_utils.iterative_polisher import PolishLoop
from .tools.stage_runner import StageRunner
from .tools.tool_gate import Criticality, ToolGate
from .utils.hardware_management import GB, ResourceProbe
from .utils.pipeline import LOG_FORMAT, PACKAGE_LOGGER, PipelineDriver, check_tools

CONSOLE_HANDLER = 'assemblyflow-console'


def _configure_logging(verbose: bool, quiet: bool):
    """Console output for the package; run logs are attached per run."""
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in [h for h in package_logger.handlers if h.get_name() == CONSOLE_HANDLER]:
        package_logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.set_name(CONSOLE_HANDLER)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console.setLevel(level)
    package_logger.addHandler(console)
    package_logger.setLevel(level)


def _memory_option(ctx, param, value):
    if value is None:
        return None
    try:
        return parse_memory_gb(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _build_config(config_file, read1, read2, output, overrides) -> RunConfig:
    """Merge defaults, the optional YAML file and command-line overrides."""
    config = load_config(Path(config_file) if config_file else None)
    sections = {
        'threads': ('resources', 'threads'),
        'memory': ('resources', 'memory_gb'),
        'quality': ('trimming', 'quality'),
        'min_length': ('trimming', 'min_length'),
        'rounds': ('polishing', 'rounds'),
    }
    for option, (section, key) in sections.items():
        if overrides.get(option) is not None:
            config[section][key] = overrides[option]
    if overrides.get('low_memory'):
        config['assembly']['low_memory'] = True
    if overrides.get('skip_polish'):
        config['polishing']['enabled'] = False
    if overrides.get('allow_low_disk_polish'):
        config['polishing']['allow_under_low_disk'] = True
    if overrides.get('force'):
        config['output']['force'] = True
    if overrides.get('keep_intermediates'):
        config['output']['keep_intermediates'] = True
    if overrides.get('pilon_jar'):
        config['tools']['pilon_jar'] = overrides['pilon_jar']
    return RunConfig.from_config(config, read1, read2, output)


def _fail(error: Exception):
    click.echo(f"✗ {error}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
@click.pass_context
def main(ctx, verbose, quiet):
    """
    AssemblyFlow: Prokaryotic Genome Assembly Pipeline

    Paired-end Illumina reads in, annotated draft genome out:
    fastp trimming, SPAdes/MEGAHIT assembly, QUAST evaluation,
    iterative Pilon polishing and Prokka annotation.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet
    _configure_logging(verbose, quiet)


# ============================================================================
# Configuration Management Commands
# ============================================================================

@main.group()
def config():
    """Configuration management commands."""
    pass


@config.command('init')
@click.option('--output', '-o', type=click.Path(), default='assemblyflow_config.yaml',
              help='Output configuration file path')
@click.option('--template', '-t', type=click.Choice(VALID_TEMPLATES),
              default='default', help='Configuration template type')
def config_init(output, template):
    """Generate a template configuration file with all available parameters."""
    click.echo(f"Generating {template} configuration template: {output}")

    try:
        save_config_template(Path(output), template=template)
    except (OSError, ValueError) as e:
        click.echo(f"✗ Error creating configuration: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Configuration file created: {output}")
    click.echo("\nThe configuration file includes:")
    click.echo("  • Tool executables and minimum versions")
    click.echo("  • Thread and memory budgets")
    click.echo("  • Trimming, assembly, polishing and annotation parameters")
    click.echo("  • Output validation thresholds")
    click.echo("\nEdit this file to customize your assembly pipeline.")


@config.command('validate')
@click.argument('config_file', type=click.Path(exists=True))
def config_validate(config_file):
    """Validate a configuration file."""
    click.echo(f"Validating configuration file: {config_file}")

    try:
        config = load_config(Path(config_file))
    except AssemblyFlowError as e:
        _fail(e)

    errors = validate_config(config)
    if errors:
        click.echo("\n✗ Configuration validation failed:")
        for error in errors:
            click.echo(f"  • {error}", err=True)
        sys.exit(1)

    click.echo("✓ Configuration is valid")
    click.echo("\nKey Settings:")
    click.echo(f"  Assembler: {'MEGAHIT (low memory)' if config['assembly']['low_memory'] else 'SPAdes'}")
    click.echo(f"  Polishing: {config['polishing']['rounds'] if config['polishing']['enabled'] else 'DISABLED'}"
               f"{' round(s)' if config['polishing']['enabled'] else ''}")
    click.echo(f"  Resources: {config['resources']['threads']} threads, {config['resources']['memory_gb']}G")


@config.command('show')
@click.argument('config_file', type=click.Path(exists=True))
@click.option('--format', '-f', type=click.Choice(['yaml', 'summary']), default='summary',
              help='Output format')
def config_show(config_file, format):
    """Display configuration settings."""
    try:
        config = load_config(Path(config_file))
    except AssemblyFlowError as e:
        _fail(e)

    if format == 'yaml':
        click.echo(yaml.dump(config, default_flow_style=False, sort_keys=False))
        return

    click.echo(f"Configuration from: {config_file}")
    click.echo("=" * 60)

    click.echo("\nResources:")
    click.echo(f"  Threads: {config['resources']['threads']}")
    click.echo(f"  Memory: {config['resources']['memory_gb']}G")

    click.echo("\nTrimming:")
    click.echo(f"  Quality threshold: {config['trimming']['quality']}")
    click.echo(f"  Minimum length: {config['trimming']['min_length']}")

    click.echo("\nAssembly:")
    click.echo(f"  Low memory mode: {config['assembly']['low_memory']}")

    click.echo("\nPolishing:")
    click.echo(f"  Enabled: {config['polishing']['enabled']}")
    click.echo(f"  Rounds: {config['polishing']['rounds']}")

    click.echo("\nTools:")
    for tool, executable in config['tools'].items():
        if executable:
            click.echo(f"  {tool}: {executable} (>= {config['min_versions'].get(tool, 'any')})")


# ============================================================================
# Pipeline Commands
# ============================================================================

@main.command()
@click.option('-1', '--read1', required=True, type=click.Path(),
              help='Forward reads (FASTQ, may be gzipped)')
@click.option('-2', '--read2', required=True, type=click.Path(),
              help='Reverse reads (FASTQ, may be gzipped)')
@click.option('--output', '-o', required=True, type=click.Path(),
              help='Output directory')
@click.option('--threads', '-t', type=int, default=None,
              help='Number of CPU threads (default: 8)')
@click.option('--memory', '-m', default=None, callback=_memory_option,
              help='Memory budget in GB, e.g. 16 or 16G (default: 8)')
@click.option('--rounds', '-p', type=int, default=None,
              help='Maximum Pilon polishing rounds (default: 1)')
@click.option('--quality', '-q', type=int, default=None,
              help='Trimming quality threshold (default: 20)')
@click.option('--min-length', '-l', type=int, default=None,
              help='Minimum read length after trimming (default: 50)')
@click.option('--low-memory', is_flag=True,
              help='Use MEGAHIT instead of SPAdes')
@click.option('--skip-polish', is_flag=True,
              help='Skip Pilon polishing')
@click.option('--force', is_flag=True,
              help='Overwrite an existing output directory')
@click.option('--allow-low-disk-polish', is_flag=True,
              help='Polish even when scratch space looks insufficient')
@click.option('--keep-intermediates', is_flag=True,
              help='Keep per-round SAM files')
@click.option('--pilon-jar', type=click.Path(), default=None,
              help='Run Pilon from a jar via java instead of the pilon wrapper')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True),
              help='Configuration file (YAML)')
@click.pass_context
def run(ctx, read1, read2, output, threads, memory, rounds, quality, min_length,
        low_memory, skip_polish, force, allow_low_disk_polish, keep_intermediates,
        pilon_jar, config_file):
    """
    Run the complete assembly pipeline.

    Examples:
        assemblyflow run -1 reads_R1.fastq.gz -2 reads_R2.fastq.gz -o results/

        # Small machine: MEGAHIT, 4 threads, 8G
        assemblyflow run -1 R1.fq.gz -2 R2.fq.gz -o results/ -t 4 -m 8G --low-memory

        # Up to three polishing rounds
        assemblyflow run -1 R1.fq.gz -2 R2.fq.gz -o results/ -p 3
    """
    try:
        run_config = _build_config(config_file, read1, read2, output, {
            'threads': threads,
            'memory': memory,
            'rounds': rounds,
            'quality': quality,
            'min_length': min_length,
            'low_memory': low_memory,
            'skip_polish': skip_polish,
            'force': force,
            'allow_low_disk_polish': allow_low_disk_polish,
            'keep_intermediates': keep_intermediates,
            'pilon_jar': pilon_jar,
        })

        def confirm_overwrite(path):
            return click.confirm(f"Output directory {path} already exists. Overwrite?", default=False)

        def confirm_low_disk(estimate):
            return click.confirm(f"Disk space may be insufficient for Pilon ({estimate.describe()}). "
                                 f"Continue anyway?", default=False)

        driver = PipelineDriver(
            run_config,
            overwrite_policy=confirm_overwrite,
            disk_policy=None if run_config.allow_polishing_under_low_disk else confirm_low_disk,
        )
        state = driver.run()
    except AssemblyFlowError as e:
        _fail(e)

    if ctx.obj.get('QUIET'):
        return
    click.echo("\n✓ Genome assembly pipeline completed")
    click.echo(f"  • Final assembly: {state.final_assembly}")
    click.echo(f"  • Polishing: {state.polish_description}")
    if state.annotation:
        click.echo(f"  • Annotation: {state.annotation}")
    click.echo(f"  • Complete report: {state.report_path}")
    if state.advisories:
        click.echo(f"\n{len(state.advisories)} advisory message(s) recorded in the report")


@main.command()
@click.option('--assembly', '-a', 'genome', required=True, type=click.Path(exists=True),
              help='Assembly to polish (FASTA)')
@click.option('-1', '--read1', required=True, type=click.Path(exists=True),
              help='Forward reads')
@click.option('-2', '--read2', required=True, type=click.Path(exists=True),
              help='Reverse reads')
@click.option('--output', '-o', required=True, type=click.Path(),
              help='Output directory for polishing rounds')
@click.option('--rounds', '-p', type=int, default=None, help='Maximum polishing rounds')
@click.option('--threads', '-t', type=int, default=None, help='Number of CPU threads')
@click.option('--memory', '-m', default=None, callback=_memory_option, help='Memory budget in GB')
@click.option('--force', is_flag=True, help='Remove results of earlier polishing runs')
@click.option('--allow-low-disk-polish', is_flag=True,
              help='Polish even when scratch space looks insufficient')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True),
              help='Configuration file (YAML)')
def polish(genome, read1, read2, output, rounds, threads, memory, force,
           allow_low_disk_polish, config_file):
    """Polish an existing assembly with iterative Pilon rounds."""
    try:
        run_config = _build_config(config_file, read1, read2, output, {
            'threads': threads,
            'memory': memory,
            'rounds': rounds,
            'force': force,
            'allow_low_disk_polish': allow_low_disk_polish,
        })
        run_config, advisories = ResourceProbe().adjust(run_config)
        for advisory in advisories:
            click.echo(f"⚠ {advisory.message}")
        gate = ToolGate()
        polisher = 'java' if run_config.section('tools').get('pilon_jar') else 'pilon'
        for tool in ('bwa', 'samtools', polisher):
            gate.check(tool, run_config.min_version(tool), Criticality.REQUIRED,
                       executable=run_config.tool(tool))
        loop = PolishLoop(run_config, StageRunner(), (Path(read1), Path(read2)),
                          Path(output) / 'pilon_align', Path(output) / 'pilon_output')
        summary = loop.run(Path(genome))
    except AssemblyFlowError as e:
        _fail(e)

    symbol = '⚠' if summary.status.is_fallback else '✓'
    click.echo(f"{symbol} {summary.describe()}")
    click.echo(f"  Polished genome: {summary.final_artifact}")
    for r in summary.rounds:
        click.echo(f"  Round {r.round_number}: "
                   f"{r.change_count if r.change_count is not None else 'unknown'} change(s)")


@main.command('check-tools')
@click.option('--low-memory', is_flag=True, help='Check the low-memory assembler (MEGAHIT)')
@click.option('--skip-polish', is_flag=True, help='Do not check polishing tools')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True),
              help='Configuration file (YAML)')
def check_tools_command(low_memory, skip_polish, config_file):
    """Report availability and versions of the external tools."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except AssemblyFlowError as e:
        _fail(e)
    if low_memory:
        config['assembly']['low_memory'] = True
    if skip_polish:
        config['polishing']['enabled'] = False

    # Placeholder read paths; only tool settings are consulted
    run_config = RunConfig(
        read1=Path('R1'), read2=Path('R2'), output_dir=Path('.'),
        low_memory=bool(config['assembly']['low_memory']),
        skip_polish=not config['polishing']['enabled'],
        settings=config,
    )
    results, polisher_available = check_tools(run_config, ToolGate(), strict=False)

    missing = False
    for result in results:
        if not result.available:
            click.echo(f"  ✗ {result.tool}: not found ({result.executable})")
            missing = missing or result.tool not in ('pilon', 'java')
        elif result.meets_minimum:
            click.echo(f"  ✓ {result.tool}: {result.version}")
        else:
            click.echo(f"  ⚠ {result.tool}: {result.version or 'unknown'} "
                       f"(>= {result.min_version} recommended)")

    if not skip_polish and not polisher_available:
        click.echo("\nPilon not available: polishing will be skipped")
    if missing:
        click.echo("\n✗ Required tools are missing", err=True)
        sys.exit(1)


@main.command()
@click.option('--threads', '-t', type=int, default=8, help='Requested threads')
@click.option('--memory', '-m', default='8', callback=_memory_option, help='Requested memory in GB')
def resources(threads, memory):
    """Show host resources and how a request would be clamped."""
    probe = ResourceProbe()
    host = probe.probe()
    memory_text = f"{host.total_memory_bytes / GB:.1f}GB" if host.total_memory_bytes else 'unknown'
    click.echo(f"Memory: {memory_text}")
    click.echo(f"CPU cores: {host.core_count or 'unknown'}")

    requested = RunConfig(read1=Path('R1'), read2=Path('R2'), output_dir=Path('.'),
                          threads=threads, memory_gb=memory)
    adjusted, advisories = probe.adjust(requested)
    click.echo(f"\nRequested: {threads} threads, {memory}G")
    click.echo(f"Effective: {adjusted.threads} threads, {adjusted.memory_gb}G")
    for advisory in advisories:
        click.echo(f"  ⚠ {advisory.message}")


if __name__ == '__main__':
    sys.exit(main())
