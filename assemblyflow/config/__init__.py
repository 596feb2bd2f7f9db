"""
AssemblyFlow v0.1.0

Configuration management for AssemblyFlow.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from .schema import (
    DEFAULT_CONFIG,
    RunConfig,
    load_config,
    parse_memory_gb,
    save_config_template,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "RunConfig",
    "load_config",
    "parse_memory_gb",
    "save_config_template",
    "validate_config",
]
