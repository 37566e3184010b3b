"""
=============================================================================
Sync Maintenance Entry Point for Offline Dental Field Records
=============================================================================

Operator script for a screening device or a laptop holding a copy of the
local store:
1. Open (and if needed upgrade) the local store
2. Show pending record counts
3. Push the outbox and/or pull the remote sheet
4. Optionally export student histories to JSON

Usage:
    python run_sync.py [--push] [--pull] [--export FILE] [--purge] [--env FILE]

Examples:
    python run_sync.py                 # status, then push and pull
    python run_sync.py --push          # only send pending records
    python run_sync.py --export students.json

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import argparse
import asyncio
import os
import sys

from config import load_settings, setup_logging
from context import ClinicContext
from errors import StorageUnavailable
from export_utils import export_students_json


async def run(args) -> int:
    """Run the requested steps; returns the process exit code"""
    settings = load_settings(args.env)
    if args.data_dir:
        settings.data_dir = args.data_dir
    if args.url:
        settings.remote_url = args.url

    setup_logging(settings.log_file, settings.log_level)

    # Print configuration
    print("Configuration:")
    print(f"  Local store:     {os.path.abspath(settings.db_path)}")
    print(f"  Store version:   {settings.store_version}")
    print(f"  Remote endpoint: {settings.remote_url or '(not configured)'}")
    print()

    try:
        ctx = ClinicContext.create(settings)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    try:
        await ctx.store.open()
    except StorageUnavailable as e:
        print(f"Error: {e}")
        return 1

    exit_code = 0
    try:
        pending = await ctx.outbox.count_unsynced()
        students = await ctx.store.count('students')
        exams = await ctx.store.count('exams')
        print("-" * 70)
        print("Local Store Status")
        print("-" * 70)
        print(f"  Students:        {students}")
        print(f"  Exams:           {exams}")
        print(f"  Pending records: {pending}")
        if ctx.store.last_backup:
            print(f"  Upgrade backup:  {ctx.store.last_backup}")
        print()

        do_push = args.push or not (args.push or args.pull or args.export or args.purge)
        do_pull = args.pull or not (args.push or args.pull or args.export or args.purge)

        if (do_push or do_pull) and not settings.remote_url:
            print("Error: remote endpoint not configured (set DENTAL_REMOTE_URL or pass --url)")
            return 1

        if do_push:
            print("-" * 70)
            print("Pushing pending records")
            print("-" * 70)
            report = await ctx.engine.push()
            print(f"✓ {report.summary()}")
            for error in report.errors:
                print(f"  - {error}")
            if report.fail_count:
                exit_code = 2
            print()

        if do_pull:
            print("-" * 70)
            print("Pulling remote records")
            print("-" * 70)
            pull = await ctx.engine.pull()
            if pull.error:
                print(f"⚠ Pull failed: {pull.error}")
                exit_code = 2
            else:
                print(f"✓ Rows received:    {pull.rows_received}")
                print(f"✓ Students updated: {pull.students_upserted}")
                print(f"✓ New exams:        {pull.exams_imported}")
                print(f"  Already known:    {pull.exams_skipped}")
                if pull.groups_failed:
                    print(f"⚠ Students failed:  {pull.groups_failed}")
                    exit_code = 2
            print()

        if args.purge:
            removed = await ctx.outbox.purge_synced()
            print(f"✓ Removed {removed} synced outbox entries")
            print()

        if args.export:
            count = await export_students_json(ctx.store, args.export)
            print(f"✓ Exported {count} students to {args.export}")
            print()
    finally:
        await ctx.close()

    return exit_code


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Sync the offline dental records store with the remote sheet',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show status, push pending records, refresh local cache
  python run_sync.py

  # Only send pending records
  python run_sync.py --push

  # Export every student with their visit history
  python run_sync.py --export students.json
        """
    )

    parser.add_argument('--push', action='store_true', help='Push pending records')
    parser.add_argument('--pull', action='store_true', help='Pull all remote records')
    parser.add_argument('--purge', action='store_true', help='Delete outbox entries already synced')
    parser.add_argument('--export', metavar='FILE', help='Export students and visits to a JSON file')
    parser.add_argument('--data-dir', help='Directory of the local store (overrides DENTAL_DATA_DIR)')
    parser.add_argument('--url', help='Remote endpoint (overrides DENTAL_REMOTE_URL)')
    parser.add_argument('--env', help='.env file to load')

    args = parser.parse_args()

    print()
    print("=" * 70)
    print(" " * 15 + "Dental Field Records - Sync Maintenance")
    print("=" * 70)
    print()

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print()
        print("INTERRUPTED BY USER")
        print("Records not yet acknowledged stay queued; it is safe to run again.")
        sys.exit(0)

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
