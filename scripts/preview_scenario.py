#!/usr/bin/env python3
"""
Command-line script to preview a scenario against production.

Usage:
    python scripts/preview_scenario.py SCENARIO_ID [--reference-date YYYY-MM-DD] [--show-all] [--summary-only]

Options:
    --reference-date YYYY-MM-DD  Start date for jobs without a scheduled date (defaults to today)
    --show-all                   Show all jobs, not just those the scenario affects
    --summary-only               Show only summary, not the per-job table
"""

import sys
import os
import argparse

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from kitplan import create_app
from kitplan.errors import KitplanError
from kitplan.scheduling.preview import run_preview_script


def main():
    parser = argparse.ArgumentParser(
        description='Preview scenario changes without updating the database'
    )
    parser.add_argument('scenario_id', help='Scenario to preview')
    parser.add_argument(
        '--reference-date',
        type=str,
        help='Reference date for calculations (YYYY-MM-DD format, defaults to today)'
    )
    parser.add_argument(
        '--show-all',
        action='store_true',
        help='Show all jobs, not just those with changes'
    )
    parser.add_argument(
        '--summary-only',
        action='store_true',
        help='Show only summary statistics, not detailed diffs'
    )

    args = parser.parse_args()

    # Create Flask app context
    app = create_app()

    with app.app_context():
        try:
            run_preview_script(
                args.scenario_id,
                reference_date_str=args.reference_date,
                show_all=args.show_all,
                detailed=not args.summary_only
            )
        except (KitplanError, ValueError) as e:
            print(f"\nFatal error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == '__main__':
    main()
