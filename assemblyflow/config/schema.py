"""
AssemblyFlow v0.1.0

Configuration schema for AssemblyFlow.

Defines all available configuration parameters with defaults and validation,
and the immutable RunConfig handed to the pipeline driver.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import copy
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

import yaml

from ..exceptions import ConfigValidationError


# Default configuration values
DEFAULT_CONFIG = {
    # ========================================================================
    # External tools (names on PATH or absolute paths)
    # ========================================================================
    'tools': {
        'fastp': 'fastp',
        'spades': 'spades.py',
        'megahit': 'megahit',
        'quast': 'quast',
        'bwa': 'bwa',
        'samtools': 'samtools',
        'pilon': 'pilon',
        'pilon_jar': None,  # Run "java -jar" instead of the wrapper if set
        'java': 'java',
        'prokka': 'prokka',
        'seqkit': 'seqkit',
    },

    'min_versions': {
        'fastp': '0.20.0',
        'quast': '5.0.0',
        'bwa': '0.7.0',
        'samtools': '1.10',
        'seqkit': '2.0.0',
        'prokka': '1.14.0',
        'megahit': '1.2.0',
        'spades': '3.15.0',
        'pilon': '1.24',
    },

    # ========================================================================
    # Hardware
    # ========================================================================
    'resources': {
        'threads': 8,
        'memory_gb': 8,
        'low_memory_threshold_gb': 8,  # Recommend low-memory mode below this
    },

    # ========================================================================
    # Read trimming (fastp)
    # ========================================================================
    'trimming': {
        'quality': 20,
        'min_length': 50,
        'extra_args': ['--detect_adapter_for_pe', '-u', '30', '-n', '5'],
    },

    # ========================================================================
    # Assembly
    # ========================================================================
    'assembly': {
        'low_memory': False,  # MEGAHIT instead of SPAdes
        'spades_extra_args': ['--careful'],
        'megahit_min_contig_len': 1000,
    },

    # ========================================================================
    # Polishing (Pilon)
    # ========================================================================
    'polishing': {
        'enabled': True,
        'rounds': 1,
        'allow_under_low_disk': False,
        'scratch_multiplier': 3,  # Scratch space ~ N x raw read size
    },

    # ========================================================================
    # Annotation (Prokka)
    # ========================================================================
    'annotation': {
        'prefix': 'annotated_genome',
        'kingdom': 'Bacteria',
        'extra_args': ['--compliant'],
        'low_memory_min_contig_len': 500,
    },

    # ========================================================================
    # Output validation (minimum sizes in bytes)
    # ========================================================================
    'validation': {
        'trimmed_reads': 1000000,
        'assembly': 10000,
        'evaluation': 1000,
        'alignment': 1000000,
        'polished_genome': 10000,
        'renamed_genome': 10000,
        'annotation': 10000,
    },

    'disk': {
        'read_size_multiplier': 5,
        'buffer_gb': 2,
        'safety_fraction': 0.2,
    },

    # ========================================================================
    # Output
    # ========================================================================
    'output': {
        'force': False,
        'keep_intermediates': False,
        'report': 'assembly_report.html',
        'summary': 'run_summary.json',
        'logging': {
            'level': 'INFO',  # 'DEBUG', 'INFO', 'WARNING', 'ERROR'
            'log_file': 'analysis.log',
        },
    },
}

VALID_TEMPLATES = ['default', 'low-memory', 'fast', 'thorough']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']

_VERSION_RE = re.compile(r'^\d+(\.\d+)*$')
_MEMORY_RE = re.compile(r'^(\d+)\s*[gG]?[bB]?$')


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from file or return defaults.

    Args:
        config_path: Path to YAML config file (None = use defaults)

    Returns:
        Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigValidationError([f"Configuration file not found: {config_path}"])
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ConfigValidationError([f"Configuration file is not a mapping: {config_path}"])

        # Deep merge user config into defaults
        config = _deep_merge(config, user_config)

    return config


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def parse_memory_gb(value: Union[int, str]) -> int:
    """Parse a memory budget given as 8, '8', '8G' or '8GB' into whole gigabytes."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid memory value: {value!r}")
    if isinstance(value, int):
        return value
    match = _MEMORY_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid memory value: {value!r} (expected e.g. 8 or 8G)")
    return int(match.group(1))


def save_config_template(output_path: Path, template: str = 'default'):
    """
    Save a configuration template to file.

    Args:
        output_path: Output file path
        template: Template type ('default', 'low-memory', 'fast', 'thorough')
    """
    if template not in VALID_TEMPLATES:
        raise ValueError(f"Unknown template: {template} (choose from {', '.join(VALID_TEMPLATES)})")

    config = copy.deepcopy(DEFAULT_CONFIG)

    if template == 'low-memory':
        config['assembly']['low_memory'] = True
        config['resources']['memory_gb'] = 4

    elif template == 'fast':
        config['polishing']['enabled'] = False

    elif template == 'thorough':
        config['polishing']['rounds'] = 3
        config['polishing']['allow_under_low_disk'] = True
        config['output']['keep_intermediates'] = True

    with open(output_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration dictionary.

    Args:
        config: Configuration to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    resources = config.get('resources', {})
    if not _is_positive_int(resources.get('threads')):
        errors.append(f"resources.threads must be a positive integer, got {resources.get('threads')!r}")
    try:
        if parse_memory_gb(resources.get('memory_gb')) < 1:
            errors.append("resources.memory_gb must be at least 1")
    except (TypeError, ValueError) as e:
        errors.append(f"resources.memory_gb: {e}")

    trimming = config.get('trimming', {})
    quality = trimming.get('quality')
    if not isinstance(quality, int) or isinstance(quality, bool) or not 0 <= quality <= 60:
        errors.append(f"trimming.quality must be an integer between 0 and 60, got {quality!r}")
    if not _is_positive_int(trimming.get('min_length')):
        errors.append(f"trimming.min_length must be a positive integer, got {trimming.get('min_length')!r}")

    if not _is_positive_int(config.get('polishing', {}).get('rounds')):
        errors.append(
            f"polishing.rounds must be a positive integer, got {config.get('polishing', {}).get('rounds')!r}"
        )

    for tool, executable in config.get('tools', {}).items():
        if tool == 'pilon_jar':
            if executable is not None and not Path(executable).exists():
                errors.append(f"Pilon jar not found: {executable}")
            continue
        if not isinstance(executable, str) or not executable.strip():
            errors.append(f"tools.{tool} must be a non-empty executable name")

    for tool, version in config.get('min_versions', {}).items():
        if not _VERSION_RE.match(str(version)):
            errors.append(f"min_versions.{tool} is not a dotted version: {version!r}")

    for key, size in config.get('validation', {}).items():
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            errors.append(f"validation.{key} must be a non-negative integer, got {size!r}")

    level = config.get('output', {}).get('logging', {}).get('level', 'INFO')
    if level not in VALID_LOG_LEVELS:
        errors.append(f"Invalid logging level: {level}")

    return errors


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable input to one pipeline execution.

    Built once at startup by ``from_config``; ResourceProbe hands back a
    replaced copy rather than editing it.
    """
    read1: Path
    read2: Path
    output_dir: Path
    threads: int = 8
    memory_gb: int = 8
    quality: int = 20
    min_length: int = 50
    max_polish_rounds: int = 1
    low_memory: bool = False
    skip_polish: bool = False
    force: bool = False
    allow_polishing_under_low_disk: bool = False
    keep_intermediates: bool = False
    settings: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG),
                                     repr=False, compare=False)

    @classmethod
    def from_config(cls, config: Dict[str, Any], read1: Union[str, Path],
                    read2: Union[str, Path], output_dir: Union[str, Path]) -> 'RunConfig':
        """
        Build a RunConfig from a merged configuration dictionary.

        Raises:
            ConfigValidationError: if the configuration or the inputs are invalid
        """
        errors = validate_config(config)
        for label, path in (('Forward reads', read1), ('Reverse reads', read2)):
            if not path:
                errors.append(f"{label} file not specified")
            elif not Path(path).is_file():
                errors.append(f"{label} file not found: {path}")
        if not output_dir:
            errors.append("Output directory not specified")
        if errors:
            raise ConfigValidationError(errors)

        return cls(
            read1=Path(read1),
            read2=Path(read2),
            output_dir=Path(output_dir),
            threads=config['resources']['threads'],
            memory_gb=parse_memory_gb(config['resources']['memory_gb']),
            quality=config['trimming']['quality'],
            min_length=config['trimming']['min_length'],
            max_polish_rounds=config['polishing']['rounds'],
            low_memory=bool(config['assembly']['low_memory']),
            skip_polish=not config['polishing']['enabled'],
            force=bool(config['output']['force']),
            allow_polishing_under_low_disk=bool(config['polishing']['allow_under_low_disk']),
            keep_intermediates=bool(config['output']['keep_intermediates']),
            settings=config,
        )

    def with_resources(self, threads: int, memory_gb: int) -> 'RunConfig':
        return replace(self, threads=threads, memory_gb=memory_gb)

    def tool(self, name: str) -> str:
        """Executable configured for *name* (falls back to the name itself)."""
        return self.settings.get('tools', {}).get(name) or name

    def min_version(self, name: str) -> str:
        return str(self.settings.get('min_versions', {}).get(name, '0.0.0'))

    def min_size(self, artifact: str) -> int:
        return int(self.settings.get('validation', {}).get(artifact, 0))

    def section(self, name: str) -> Dict[str, Any]:
        return self.settings.get(name, {})

    @property
    def assembler(self) -> str:
        return 'megahit' if self.low_memory else 'spades'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'read1': str(self.read1),
            'read2': str(self.read2),
            'output_dir': str(self.output_dir),
            'threads': self.threads,
            'memory_gb': self.memory_gb,
            'quality': self.quality,
            'min_length': self.min_length,
            'max_polish_rounds': self.max_polish_rounds,
            'low_memory': self.low_memory,
            'skip_polish': self.skip_polish,
            'force': self.force,
            'allow_polishing_under_low_disk': self.allow_polishing_under_low_disk,
            'keep_intermediates': self.keep_intermediates,
        }


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
