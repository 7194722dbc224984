"""
Preview of a scenario against production.

Computes every job's timeline in production and in the scenario view and
shows which jobs the scenario adds, modifies or deletes and how far each
job end moves, without making any changes.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from kitplan.datetime_utils import format_duration, to_iso
from kitplan.logging_config import get_logger
from kitplan.scheduling.calculator import Timeline
from kitplan.scheduling.service import get_all_schedules, get_scenario_or_404

logger = get_logger(__name__)


def timeline_frame(timeline: Timeline) -> pd.DataFrame:
    """One row per scheduled item (route steps and delays) of a timeline."""
    return pd.DataFrame(
        [
            {
                "Kind": item.step.kind.value,
                "Name": item.step.name,
                "Step Order": item.step.step_order,
                "Duration (s)": item.step.duration_seconds,
                "Duration": format_duration(item.step.duration_seconds),
                "Start": item.start,
                "End": item.end,
                "Segments": len(item.segments),
                "Scenario": item.step.scenario_id,
            }
            for item in timeline.items
        ],
        columns=["Kind", "Name", "Step Order", "Duration (s)", "Duration", "Start", "End", "Segments", "Scenario"],
    ).astype({"Step Order": "Int64"})


def preview_scenario(
    scenario_id: str,
    reference_date: Optional[date] = None,
    show_all: bool = False,
) -> Dict[str, Any]:
    """
    Compare production and scenario timelines job by job.

    Args:
        scenario_id: Scenario to preview
        reference_date: Start date for jobs without a scheduled date (defaults to today)
        show_all: If True, include unchanged jobs

    Returns:
        dict: ``jobs`` rows (state, both ends, delta) and a ``summary``
    """
    if reference_date is None:
        reference_date = date.today()

    scenario = get_scenario_or_404(scenario_id)
    logger.info("Previewing scenario", scenario_id=scenario_id, reference_date=reference_date.isoformat())

    production = get_all_schedules(reference_date=reference_date)
    scenario_view = get_all_schedules(scenario_id=scenario_id, reference_date=reference_date)

    rows: List[Dict[str, Any]] = []
    counts = {'added': 0, 'modified': 0, 'deleted': 0, 'unchanged': 0, 'moved': 0}

    for job_id in list(production) + [jid for jid in scenario_view if jid not in production]:
        before = production.get(job_id)
        after = scenario_view.get(job_id)

        if after is None:
            state = 'deleted'
        elif before is None:
            state = 'added'
        else:
            state = after.scenario_state or 'unchanged'

        delta = None
        if before is not None and after is not None:
            delta = int((after.job_end - before.job_end).total_seconds())
            if delta != 0:
                counts['moved'] += 1
        counts[state] += 1

        if not show_all and state == 'unchanged' and not delta:
            continue

        rows.append({
            'job_id': job_id,
            'state': state,
            'production_start': to_iso(before.job_start) if before else None,
            'production_end': to_iso(before.job_end) if before else None,
            'scenario_start': to_iso(after.job_start) if after else None,
            'scenario_end': to_iso(after.job_end) if after else None,
            'delta_seconds': delta,
        })

    return {
        'scenario_id': scenario_id,
        'scenario_name': scenario.name,
        'total_jobs': len(set(production) | set(scenario_view)),
        'jobs': rows,
        'summary': {
            **counts,
            'reference_date': reference_date.isoformat(),
        },
    }


def preview_frame(preview_results: Dict[str, Any]) -> pd.DataFrame:
    """Tabular form of ``preview_scenario`` output."""
    return pd.DataFrame(
        [
            {
                "Job": row['job_id'],
                "State": row['state'],
                "Production End": row['production_end'],
                "Scenario End": row['scenario_end'],
                "Delta": format_duration(abs(row['delta_seconds'])) if row['delta_seconds'] else '',
                "Delta (s)": row['delta_seconds'],
            }
            for row in preview_results.get('jobs', [])
        ],
        columns=["Job", "State", "Production End", "Scenario End", "Delta", "Delta (s)"],
    )


def print_preview(preview_results: Dict[str, Any], detailed: bool = True):
    """Print a formatted preview of scenario changes."""
    summary = preview_results.get('summary', {})

    print("\n" + "=" * 80)
    print(f"SCENARIO PREVIEW - {preview_results.get('scenario_name')}")
    print("=" * 80)
    print(f"\nTotal Jobs: {preview_results.get('total_jobs', 0)}")
    print(f"Added: {summary.get('added', 0)}")
    print(f"Modified: {summary.get('modified', 0)}")
    print(f"Deleted: {summary.get('deleted', 0)}")
    print(f"End Time Moved: {summary.get('moved', 0)}")
    print(f"Reference Date: {summary.get('reference_date', 'N/A')}")

    frame = preview_frame(preview_results)
    if detailed and not frame.empty:
        print("\n" + frame.to_string(index=False))
    print("\n" + "=" * 80)


def run_preview_script(scenario_id: str, reference_date_str: Optional[str] = None,
                       show_all: bool = False, detailed: bool = True) -> Dict[str, Any]:
    """
    Entry point for the command-line preview.

    Raises:
        ValueError: If ``reference_date_str`` is not YYYY-MM-DD
    """
    reference_date = None
    if reference_date_str:
        reference_date = datetime.strptime(reference_date_str, '%Y-%m-%d').date()

    preview_results = preview_scenario(scenario_id, reference_date=reference_date, show_all=show_all)
    print_preview(preview_results, detailed=detailed)
    return preview_results
