"""
Migration script to create the kitting scheduler tables.

Creates shifts, kitting_jobs, route_steps, scenarios, scenario_changes,
job_delays, job_progress and kit_executions, skipping any table that
already exists.

Run this script with:
    python migrations/create_kitting_tables.py

Or from the app context:
    from migrations.create_kitting_tables import migrate
    migrate()
"""

import sys
import os

# Add parent directory to path to import kitplan modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kitplan import create_app
from kitplan.models import (
    db,
    Shift,
    KittingJob,
    RouteStep,
    Scenario,
    ScenarioChange,
    JobDelay,
    JobProgress,
    KitExecution,
)
from sqlalchemy import inspect

# Parents before children so foreign keys resolve
MODELS = [Shift, KittingJob, RouteStep, Scenario, ScenarioChange, JobDelay, JobProgress, KitExecution]


def table_exists(table_name):
    """Check if a table exists in the database."""
    inspector = inspect(db.engine)
    return table_name in inspector.get_table_names()


def create_missing_tables():
    """
    Create every kitting table that does not exist yet.

    Must run inside an app context.

    Returns:
        list: Names of the tables that were created
    """
    created = []
    for model in MODELS:
        table_name = model.__tablename__
        if table_exists(table_name):
            print(f"✓ Table '{table_name}' already exists.")
            continue

        print(f"Creating '{table_name}' table...")
        model.__table__.create(db.engine, checkfirst=True)
        created.append(table_name)
        print(f"✓ Successfully created '{table_name}' table")
    return created


def migrate(database_uri=None):
    """Create the kitting tables if they don't exist."""
    app = create_app(database_uri=database_uri)

    with app.app_context():
        try:
            created = create_missing_tables()
        except Exception as e:
            print(f"✗ ERROR: Failed to create tables: {e}")
            db.session.rollback()
            return False

        # Verify every table is present
        missing = [model.__tablename__ for model in MODELS if not table_exists(model.__tablename__)]
        if missing:
            print(f"✗ ERROR: Table creation verification failed for: {', '.join(missing)}")
            return False

        if created:
            inspector = inspect(db.engine)
            print("\nTable structure:")
            for table_name in created:
                print(f"  {table_name}")
                for col in inspector.get_columns(table_name):
                    print(f"    - {col['name']}: {col['type']}")
        else:
            print("✓ All kitting tables already exist. Migration not needed.")

        return True


if __name__ == "__main__":
    success = migrate()
    sys.exit(0 if success else 1)
