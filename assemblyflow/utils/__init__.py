"""
Utilities module for AssemblyFlow.

This module provides host-level helpers for the pipeline:
- Hardware management (memory/CPU detection, budget clamping)
- Disk space estimates

The pipeline driver lives in ``assemblyflow.utils.pipeline`` and is
imported from there directly.
"""

from .hardware_management import (
    GB,
    HostResources,
    ResourceProbe,
    DiskEstimate,
    estimate_disk,
    free_disk_bytes,
    check_run_disk_space,
)

__all__ = [
    'GB',
    'HostResources',
    'ResourceProbe',
    'DiskEstimate',
    'estimate_disk',
    'free_disk_bytes',
    'check_run_disk_space',
]
