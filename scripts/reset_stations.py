#!/usr/bin/env python3
"""
Reset every job's station counter to zero.

Manual recovery when execution stations were closed without releasing
their station number (browser crash, network loss).

Usage:
    python scripts/reset_stations.py [--dry-run]
"""

import sys
import os
import argparse

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from kitplan import create_app
from kitplan.models import JobProgress
from kitplan.stations.coordinator import reset_all_stations


def main():
    parser = argparse.ArgumentParser(description='Reset all station counters to zero')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Only list jobs with open stations'
    )
    args = parser.parse_args()

    app = create_app()

    with app.app_context():
        open_jobs = JobProgress.query.filter(JobProgress.next_station_number > 0).all()
        print(f"Jobs with open stations: {len(open_jobs)}")
        for progress in open_jobs:
            print(f"  - {progress.job_id}: {progress.next_station_number} open")

        if args.dry_run:
            print("\nDry run: no changes made")
            return

        reset = reset_all_stations()
        print(f"\n✓ Reset {reset} station counter(s)")


if __name__ == '__main__':
    main()
