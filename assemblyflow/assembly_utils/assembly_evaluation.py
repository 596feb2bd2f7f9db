#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Readers for tool outputs used in decisions and reporting: Pilon change
logs, samtools depth tables and QUAST report tables.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# QUAST rows shown in the report
QUAST_METRICS = ['# contigs', 'Largest contig', 'Total length', 'N50', 'L50', 'GC (%)']


def count_changes(changes_file: Path) -> Optional[int]:
    """
    Number of edits in a Pilon ``.changes`` file (one per non-blank line).

    Returns None when the file does not exist.
    """
    changes_file = Path(changes_file)
    if not changes_file.is_file():
        return None
    with open(changes_file) as f:
        return sum(1 for line in f if line.strip())


def mean_depth(depth_file: Path) -> Optional[float]:
    """Average coverage from ``samtools depth`` output (chrom, pos, depth)."""
    depth_file = Path(depth_file)
    if not depth_file.is_file() or depth_file.stat().st_size == 0:
        return None
    depths = np.loadtxt(depth_file, usecols=2, ndmin=1, dtype=float)
    if depths.size == 0:
        return None
    return float(np.mean(depths))


def _coerce(value: Any) -> Any:
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    return value


def parse_quast_report(report_tsv: Path) -> Dict[str, Dict[str, Any]]:
    """
    Parse a QUAST ``report.tsv`` into ``{assembly label: {metric: value}}``.

    Missing or unreadable reports yield an empty dict.
    """
    report_tsv = Path(report_tsv)
    if not report_tsv.is_file():
        return {}
    try:
        table = pd.read_csv(report_tsv, sep='\t', index_col=0, dtype=str)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning(f"Could not parse QUAST report {report_tsv}: {e}")
        return {}

    metrics = {}
    for label in table.columns:
        column = table[label]
        metrics[label] = {
            name: _coerce(column[name])
            for name in QUAST_METRICS
            if name in column.index and pd.notna(column[name])
        }
    return metrics


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
