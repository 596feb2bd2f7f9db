#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Hardware management — host memory/CPU detection, clamping of requested
thread and memory budgets, and disk-space estimates.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from ..advisories import Advisory, AdvisoryKind, advise
from ..config.schema import RunConfig

logger = logging.getLogger(__name__)

GB = 1024 ** 3


# ============================================================================
#                         HOST INTROSPECTION
# ============================================================================

def _read_total_memory() -> Optional[int]:
    """Total physical memory in bytes, or None if it cannot be determined."""
    try:
        return os.sysconf('SC_PAGE_SIZE') * os.sysconf('SC_PHYS_PAGES')
    except (AttributeError, ValueError, OSError):
        pass

    meminfo = Path('/proc/meminfo')
    if meminfo.exists():
        for line in meminfo.read_text().splitlines():
            if line.startswith('MemTotal:'):
                return int(line.split()[1]) * 1024
    return None


def free_disk_bytes(path: Path) -> Optional[int]:
    """Free space on the filesystem holding *path* (or its nearest existing parent)."""
    path = Path(path).resolve()
    while not path.exists() and path != path.parent:
        path = path.parent
    try:
        return shutil.disk_usage(path).free
    except OSError:
        return None


@dataclass(frozen=True)
class HostResources:
    """Detected host capacity. ``None`` means the value could not be probed."""
    total_memory_bytes: Optional[int]
    core_count: Optional[int]

    @property
    def total_memory_gb(self) -> Optional[int]:
        if self.total_memory_bytes is None:
            return None
        return self.total_memory_bytes // GB


class ResourceProbe:
    """
    Inspect host memory/CPU and clamp requested budgets to what is available.

    Never fails: if introspection is unavailable the requested values are
    assumed acceptable.
    """

    def __init__(
        self,
        memory_reader: Callable[[], Optional[int]] = _read_total_memory,
        cpu_counter: Callable[[], Optional[int]] = os.cpu_count,
        low_memory_threshold_gb: int = 8,
    ):
        self.memory_reader = memory_reader
        self.cpu_counter = cpu_counter
        self.low_memory_threshold_gb = low_memory_threshold_gb

    def probe(self) -> HostResources:
        try:
            memory = self.memory_reader()
        except (OSError, ValueError) as e:
            logger.debug(f"Memory detection failed: {e}")
            memory = None
        try:
            cores = self.cpu_counter()
        except (OSError, NotImplementedError) as e:
            logger.debug(f"CPU detection failed: {e}")
            cores = None

        host = HostResources(total_memory_bytes=memory, core_count=cores)
        logger.info(
            f"System detected: "
            f"{host.total_memory_gb if memory is not None else 'unknown'}GB RAM, "
            f"{cores if cores is not None else 'unknown'} cores"
        )
        return host

    def adjust(self, requested: RunConfig) -> Tuple[RunConfig, List[Advisory]]:
        """
        Clamp threads and memory to host capacity.

        Returns:
            (adjusted config, advisories): one advisory per clamp, plus a
            low-memory-mode recommendation on small hosts.
        """
        host = self.probe()
        advisories = []
        threads = requested.threads
        memory_gb = requested.memory_gb

        if host.core_count is not None and threads > host.core_count:
            advisories.append(advise(
                'ResourceProbe', AdvisoryKind.RESOURCE_CLAMP,
                f"Requested threads ({threads}) exceeds available cores "
                f"({host.core_count}), adjusting to {host.core_count}",
                logger,
            ))
            threads = host.core_count

        total_gb = host.total_memory_gb
        if total_gb is not None and total_gb >= 1 and memory_gb > total_gb:
            advisories.append(advise(
                'ResourceProbe', AdvisoryKind.RESOURCE_CLAMP,
                f"Requested memory ({memory_gb}G) exceeds system memory "
                f"({total_gb}G), adjusting to {total_gb}G",
                logger,
            ))
            memory_gb = total_gb

        if (total_gb is not None and total_gb < self.low_memory_threshold_gb
                and not requested.low_memory):
            advisories.append(advise(
                'ResourceProbe', AdvisoryKind.LOW_MEMORY,
                f"System memory is limited ({total_gb}GB), consider using --low-memory mode",
                logger,
            ))

        if (threads, memory_gb) == (requested.threads, requested.memory_gb):
            return requested, advisories
        return requested.with_resources(threads, memory_gb), advisories


# ============================================================================
#                         DISK SPACE
# ============================================================================

@dataclass(frozen=True)
class DiskEstimate:
    """Estimated space requirement versus free space at a location."""
    required_bytes: int
    available_bytes: Optional[int]

    @property
    def sufficient(self) -> bool:
        return self.available_bytes is None or self.available_bytes >= self.required_bytes

    def describe(self) -> str:
        available = ('unknown' if self.available_bytes is None
                     else f"{self.available_bytes / GB:.1f}GB")
        return f"required ~{self.required_bytes / GB:.1f}GB, available {available}"


def total_size(paths: Iterable[Path]) -> int:
    return sum(Path(p).stat().st_size for p in paths if Path(p).exists())


def estimate_disk(
    location: Path,
    inputs: Iterable[Path],
    multiplier: float,
    buffer_bytes: int = 0,
    free_space: Callable[[Path], Optional[int]] = free_disk_bytes,
) -> DiskEstimate:
    """Scratch space estimate of ``multiplier x input size + buffer`` at *location*."""
    required = int(total_size(inputs) * multiplier) + buffer_bytes
    return DiskEstimate(required_bytes=required, available_bytes=free_space(location))


def check_run_disk_space(config: RunConfig, free_space=free_disk_bytes) -> List[Advisory]:
    """Whole-run disk check. Produces advisories only."""
    disk = config.section('disk')
    estimate = estimate_disk(
        config.output_dir,
        [config.read1, config.read2],
        multiplier=disk.get('read_size_multiplier', 5),
        buffer_bytes=int(disk.get('buffer_gb', 2) * GB),
        free_space=free_space,
    )
    logger.info(f"Disk space check: {estimate.describe()}")

    if estimate.available_bytes is None:
        return [advise('DiskCheck', AdvisoryKind.DISK_SPACE,
                       "Cannot check disk space for the output directory", logger)]
    if not estimate.sufficient:
        return [advise('DiskCheck', AdvisoryKind.DISK_SPACE,
                       f"Insufficient disk space ({estimate.describe()})", logger)]

    usable = estimate.available_bytes * (1 - disk.get('safety_fraction', 0.2))
    if estimate.required_bytes > usable:
        return [advise('DiskCheck', AdvisoryKind.DISK_SPACE,
                       "Disk space is limited, consider freeing more space "
                       "or using --low-memory mode", logger)]
    logger.info("Disk space sufficient")
    return []


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
