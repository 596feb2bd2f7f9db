"""
Assembly Utilities module for AssemblyFlow.

This module provides:
- Iterative Pilon polishing with convergence detection
- Readers for polishing and evaluation outputs (change logs, depth, QUAST)
"""

from .assembly_evaluation import (
    QUAST_METRICS,
    count_changes,
    mean_depth,
    parse_quast_report,
)

from .iterative_polisher import (
    GenomeState,
    PolishingRound,
    PolishingSummary,
    PolishLoop,
    PolishPhase,
    PolishStatus,
)

__all__ = [
    'QUAST_METRICS',
    'count_changes',
    'mean_depth',
    'parse_quast_report',
    'GenomeState',
    'PolishingRound',
    'PolishingSummary',
    'PolishLoop',
    'PolishPhase',
    'PolishStatus',
]
