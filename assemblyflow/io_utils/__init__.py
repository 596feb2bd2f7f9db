"""
AssemblyFlow v0.1.0

I/O Module for AssemblyFlow.

Module structure:
1. output_layout.py - Fixed output directory tree
2. report.py - HTML report and JSON run summary
"""

from .output_layout import OutputLayout

__all__ = ['OutputLayout']
