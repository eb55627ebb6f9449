"""
Migrate legacy recurring tasks to recurring patterns.

Usage:
    python -m planner.migrate_recurring [USER_ID ...] [--dry-run]

Without user ids every user that still owns legacy recurring tasks is
migrated. Exits with status 1 when any task failed to migrate.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from planner import config
from planner.db.config import build_engine
from planner.db.init import init_db
from planner.repositories.sql import SqlPlannerRepository
from planner.schemas.pattern import MigrationResult
from planner.services.migrator import LegacyMigrator
from planner.services.state import PlannerState

logger = logging.getLogger("planner.migrate_recurring")


async def run_migration(repository: SqlPlannerRepository, user_ids: List[str], dry_run: bool = False):
    results = {}
    for user_id in user_ids:
        logger.info(f"Processing user: {user_id}")
        migrator = LegacyMigrator(PlannerState(user_id), repository)
        results[user_id] = await migrator.migrate_all(dry_run=dry_run)
    return results


def print_summary(results: dict, dry_run: bool = False):
    prefix = "[DRY-RUN] " if dry_run else ""
    totals = MigrationResult()
    print("=" * 60)
    print(f"{prefix}Migration Summary")
    print("=" * 60)
    for user_id, result in results.items():
        print(f"\nUser: {user_id}")
        print(f"  Tasks processed: {result.tasks_processed}")
        print(f"  Patterns created: {result.patterns_created}")
        print(f"  Instances generated: {result.instances_generated}")
        print(f"  Instances updated: {result.instances_updated}")
        for error in result.errors:
            print(f"    - {error}")
        totals.tasks_processed += result.tasks_processed
        totals.patterns_created += result.patterns_created
        totals.instances_generated += result.instances_generated
        totals.instances_updated += result.instances_updated
        totals.errors.extend(result.errors)

    print("\n" + "-" * 60)
    print("Totals:")
    print(f"  Tasks processed: {totals.tasks_processed}")
    print(f"  Patterns created: {totals.patterns_created}")
    print(f"  Instances generated: {totals.instances_generated}")
    print(f"  Instances updated: {totals.instances_updated}")
    print(f"  Errors: {len(totals.errors)}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        prog="planner-migrate-recurring",
        description="Convert legacy recurring tasks into recurring patterns.",
    )
    ap.add_argument("user_ids", nargs="*", help="Users to migrate (default: all users with legacy recurring tasks)")
    ap.add_argument("--dry-run", action="store_true", help="Count changes without writing anything")
    ap.add_argument("--database-url", default=None, help=f"Database URL (default: {config.DATABASE_URL})")
    args = ap.parse_args(argv)

    logging.basicConfig(level=config.get_log_level(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    engine = build_engine(args.database_url)
    init_db(engine)
    repository = SqlPlannerRepository(engine)

    user_ids = args.user_ids or repository.get_users_with_recurring_tasks()
    if not user_ids:
        print("No legacy recurring tasks to migrate.")
        return 0

    results = asyncio.run(run_migration(repository, user_ids, dry_run=args.dry_run))
    print_summary(results, dry_run=args.dry_run)
    if args.dry_run:
        print("\nThis was a dry run. No changes were made.")
    return 1 if any(result.errors for result in results.values()) else 0


if __name__ == "__main__":
    sys.exit(main())
