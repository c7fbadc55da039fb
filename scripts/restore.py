#!/usr/bin/env python3
"""
Command-line utility to list and restore template backups.

Every patch leaves a copy of the template it replaced under the backup
directory; this script lists those copies and puts one back.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from livecms.core.backup import list_backups, restore_from_backup, RestoreError
from livecms.core.cache import invalidate
from livecms.core.errors import ValidationError


def main():
    parser = argparse.ArgumentParser(
        description="List or restore backups of an editable template",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s templates/index.html --list          # Show available backups
  %(prog)s templates/index.html                 # Restore the newest backup
  %(prog)s templates/index.html --timestamp 2026-01-05_10-12-33-000123
  %(prog)s templates/index.html --dry-run       # Show what would be restored

The current template is backed up before it is overwritten, so a restore can
itself be undone.

Environment variables:
- CMS_PROJECT_ROOT=... (templates are resolved against it)
- CMS_BACKUP_DIR=... (where backups live)
        """
    )

    parser.add_argument(
        "file_path",
        help="Template path, relative to the project root"
    )

    parser.add_argument(
        "--list", "-l",
        action="store_true",
        help="List backups instead of restoring"
    )

    parser.add_argument(
        "--timestamp", "-t",
        help="Restore the backup taken at this timestamp (default: newest)"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Show the backup that would be restored without writing"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip the confirmation prompt"
    )

    args = parser.parse_args()

    try:
        backups = list_backups(args.file_path)
    except ValidationError as e:
        print(f"ERROR: {e.message}")
        return 1

    if not backups:
        print(f"No backups found for {args.file_path}")
        return 1

    if args.list:
        print(f"Backups for {args.file_path} (newest first):")
        for entry in backups:
            print(f"  {entry.timestamp}  {entry.size:>8} bytes  {entry.checksum[:12]}")
        return 0

    if args.timestamp:
        matches = [entry for entry in backups if entry.timestamp == args.timestamp]
        if not matches:
            print(f"ERROR: No backup with timestamp {args.timestamp}")
            return 1
        chosen = matches[0]
    else:
        chosen = backups[0]

    print("Backup Information:")
    print(f"  Timestamp: {chosen.timestamp}")
    print(f"  File: {chosen.file}")
    print(f"  Size: {chosen.size} bytes")
    print()

    if args.dry_run:
        print("DRY RUN - nothing written")
        return 0

    if not args.force:
        response = input("Overwrite the current template with this backup? (type 'yes' to continue): ")
        if response.lower() != 'yes':
            print("Operation cancelled by user.")
            return 0

    try:
        result = restore_from_backup(chosen.file, args.file_path)
    except (RestoreError, ValidationError) as e:
        print(f"ERROR: Restore failed: {e}")
        return 1

    invalidate(Path(result["file"]))
    print("Restore completed successfully")
    print(f"Safety backup of the replaced file: {result['safety_backup']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
