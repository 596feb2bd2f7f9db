#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Output directory layout. One run owns the whole tree.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class OutputLayout:
    """Fixed directory structure under the output root."""
    root: Path

    @property
    def raw_data(self) -> Path:
        return self.root / '00_raw_data'

    @property
    def trimmed(self) -> Path:
        return self.root / '01_trimmed'

    @property
    def quality_control(self) -> Path:
        return self.root / '02_quality_control'

    @property
    def assembly(self) -> Path:
        return self.root / '03_assembly'

    @property
    def evaluation(self) -> Path:
        return self.root / '04_assembly_evaluation'

    @property
    def annotation(self) -> Path:
        # Created by Prokka itself, which refuses an existing folder without --force
        return self.root / '05_annotation'

    @property
    def polish_align(self) -> Path:
        return self.assembly / 'pilon_align'

    @property
    def polish_output(self) -> Path:
        return self.assembly / 'pilon_output'

    @property
    def trimmed_reads(self):
        return (self.trimmed / 'trimmed_1.fastq.gz', self.trimmed / 'trimmed_2.fastq.gz')

    def create(self):
        for directory in (self.raw_data, self.trimmed, self.quality_control,
                          self.assembly, self.evaluation):
            directory.mkdir(parents=True, exist_ok=True)

    def relative(self, path: Path) -> str:
        """Path relative to the root for report links (absolute if outside)."""
        try:
            return Path(path).resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return Path(path).resolve().as_posix()


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
