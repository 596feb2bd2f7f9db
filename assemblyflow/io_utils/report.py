#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AssemblyFlow v0.1.0

Run report — renders the HTML summary and the machine-readable JSON run
summary from a completed PipelineState.

Every link in the HTML report points at an artifact that exists in the
output tree; the final assembly link follows the genome the polishing
loop actually handed back.

Author: AssemblyFlow Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Template

from ..assembly_utils.assembly_evaluation import QUAST_METRICS
from ..version import __version__

logger = logging.getLogger(__name__)


REPORT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Genome Assembly Report - {{ sample }}</title>
<style>
    body { font-family: Arial, sans-serif; margin: 40px; line-height: 1.6; }
    h1 { color: #2c3e50; border-bottom: 2px solid #3498db; padding-bottom: 10px; }
    h2 { color: #2980b9; margin-top: 30px; }
    .section { margin-bottom: 30px; }
    .summary { background: #f8f9fa; padding: 20px; border-radius: 5px; }
    .advisory { color: #b9770e; }
    table { border-collapse: collapse; }
    th, td { border: 1px solid #ddd; padding: 6px 12px; text-align: right; }
    th:first-child, td:first-child { text-align: left; }
    .footer { margin-top: 50px; font-size: 0.9em; color: #7f8c8d; }
</style>
</head>
<body>
<h1>Prokaryotic Genome Assembly Report</h1>

<div class="section summary">
    <h2>Analysis Summary</h2>
    <p><strong>Sample Name:</strong> {{ sample }}</p>
    <p><strong>Analysis Date:</strong> {{ started_at }}{% if finished_at %} - {{ finished_at }}{% endif %}</p>
    <p><strong>Sequencing Data:</strong> {{ read1 }} / {{ read2 }}</p>
    <p><strong>Operation Mode:</strong> {{ mode }} | {{ correction }}</p>
    <p><strong>Resources:</strong> {{ threads }} threads, {{ memory_gb }}G memory</p>
</div>

<div class="section">
    <h2>Analysis Pipeline</h2>
    <ol>
    {% for step in steps %}
        <li>{{ step.name }} ({{ step.status }}{% if step.duration is not none %}, {{ step.duration }}s{% endif %})</li>
    {% endfor %}
    </ol>
</div>

<div class="section">
    <h2>Polishing</h2>
    <p>{{ polish_description }}</p>
    {% if rounds %}
    <table>
        <tr><th>Round</th><th>Changes</th><th>Mean coverage</th></tr>
        {% for r in rounds %}
        <tr>
            <td>{{ r.round }}</td>
            <td>{{ r.change_count if r.change_count is not none else 'n/a' }}</td>
            <td>{{ '%.1f'|format(r.mean_coverage) if r.mean_coverage is not none else 'n/a' }}</td>
        </tr>
        {% endfor %}
    </table>
    {% endif %}
</div>

{% if metrics %}
<div class="section">
    <h2>Assembly Metrics</h2>
    <table>
        <tr><th>Metric</th>{% for label in metric_labels %}<th>{{ label }}</th>{% endfor %}</tr>
        {% for name in metric_names %}
        <tr><td>{{ name }}</td>{% for label in metric_labels %}<td>{{ metrics[label].get(name, '') }}</td>{% endfor %}</tr>
        {% endfor %}
    </table>
</div>
{% endif %}

<div class="section">
    <h2>Result Files</h2>
    <ul>
    {% for title, href in result_links %}
        <li><a href="{{ href }}">{{ title }}</a></li>
    {% endfor %}
    </ul>
</div>

<div class="section">
    <h2>Key Results</h2>
    <ul>
    {% for title, href in key_links %}
        <li><a href="{{ href }}">{{ title }}</a></li>
    {% endfor %}
    </ul>
</div>

{% if advisories %}
<div class="section">
    <h2>Advisories</h2>
    <ul>
    {% for a in advisories %}
        <li class="advisory">[{{ a.source }}] {{ a.message }}</li>
    {% endfor %}
    </ul>
</div>
{% endif %}

<div class="section">
    <h2>Next Steps</h2>
    <ul>
        <li>Check QUAST report to confirm assembly quality</li>
        <li>Review annotation results to understand gene functions</li>
        <li>Perform comparative genomics analysis (if needed)</li>
        <li>Validate key genes (e.g., resistance genes, virulence factors)</li>
    </ul>
</div>

<div class="footer">
    <p>Generated by AssemblyFlow v{{ version }}</p>
</div>
</body>
</html>
"""


class ReportEmitter:
    """
    Write ``assembly_report.html`` and ``run_summary.json`` into the output root.

    Args:
        template: Jinja2 template source for the HTML report
    """

    def __init__(self, template: str = REPORT_TEMPLATE):
        self.template = Template(template, autoescape=True)

    def _links(self, state, candidates: List[Tuple[str, Optional[Path]]]) -> List[Tuple[str, str]]:
        links = []
        for title, path in candidates:
            if path is not None and Path(path).exists():
                links.append((title, state.layout.relative(path)))
            else:
                logger.debug(f"Report link omitted, artifact missing: {title}")
        return links

    def context(self, state) -> Dict[str, Any]:
        """Template variables for *state*."""
        config = state.config
        layout = state.layout
        prefix = config.section('annotation').get('prefix', 'annotated_genome')
        genome_state = state.genome_state

        result_links = self._links(state, [
            ('Quality-controlled sequencing data', layout.trimmed),
            ('Quality control report', layout.quality_control / 'fastp_report.html'),
            ('Assembly results', layout.assembly),
            ('Assembly quality report', layout.evaluation / 'quast' / 'report.html'),
            ('Assembly comparison report', layout.evaluation / 'quast_compare' / 'report.html'),
            ('Genome annotation results', layout.annotation),
            ('Run log', layout.root / config.section('output').get('logging', {}).get('log_file', 'analysis.log')),
        ])
        key_links = self._links(state, [
            ('Initial assembly result', state.initial_assembly),
            ('Final assembly result', genome_state.current_artifact if genome_state else None),
            ('Renamed genome', state.renamed_genome),
            ('Genome annotation file (GFF)', state.annotation),
            ('Protein sequence file', layout.annotation / f"{prefix}.faa"),
            ('Assembly statistics', state.assembly_stats),
        ])

        metrics = state.comparison or state.evaluation
        metric_labels = list(metrics)
        metric_names = [m for m in QUAST_METRICS
                        if any(m in values for values in metrics.values())]

        if config.skip_polish:
            correction = 'Skipped Correction'
        elif state.polishing is None:
            correction = 'Correction Unavailable'
        else:
            correction = 'Pilon Correction'

        return {
            'sample': layout.root.resolve().name,
            'started_at': state.started_at,
            'finished_at': state.finished_at,
            'read1': config.read1.name,
            'read2': config.read2.name,
            'mode': 'Low Memory' if config.low_memory else 'Standard',
            'correction': correction,
            'threads': config.threads,
            'memory_gb': config.memory_gb,
            'steps': [
                {'name': r.stage, 'status': r.status.value,
                 'duration': round(r.duration_seconds) if r.duration_seconds is not None else None}
                for r in state.stage_results
            ],
            'polish_description': state.polish_description,
            'rounds': [r.to_dict() for r in state.polishing.rounds] if state.polishing else [],
            'metrics': metrics,
            'metric_labels': metric_labels,
            'metric_names': metric_names,
            'result_links': result_links,
            'key_links': key_links,
            'advisories': [a.to_dict() for a in state.advisories],
            'version': __version__,
        }

    def render(self, state) -> str:
        return self.template.render(**self.context(state))

    def write(self, state):
        """
        Write both report files and return the state with ``report_path`` set.
        """
        output = state.config.section('output')
        report_path = state.layout.root / output.get('report', 'assembly_report.html')
        summary_path = state.layout.root / output.get('summary', 'run_summary.json')

        with open(report_path, 'w') as f:
            f.write(self.render(state))
        logger.info(f"HTML report written to {report_path}")

        state = replace(state, report_path=report_path)
        summary = state.to_dict()
        summary['report'] = str(report_path)
        summary['version'] = __version__
        with open(summary_path, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Run summary written to {summary_path}")

        return state


# AssemblyFlow v0.1.0
# Any usage is subject to this software's license.
