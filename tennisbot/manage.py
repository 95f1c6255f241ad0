"""Database maintenance commands: migrations, backups, restore and health."""
import argparse
import sys

from tennisbot.core.config import get_settings
from tennisbot.core.exceptions import BookingServiceError
from tennisbot.core.logging_config import configure_logging
from tennisbot.db.backup import BackupManager
from tennisbot.db.migrate import MigrationManager
from tennisbot.db.repository import BookingStore
from tennisbot.db.session import Database


def cmd_migrate(database, args):
    applied = MigrationManager(database).run_migrations()
    if applied:
        for migration in applied:
            print(f"Applied {migration.version:03d} {migration.name}")
    else:
        print("Database is up to date.")


def cmd_rollback(database, args):
    rolled_back = MigrationManager(database).rollback(args.target)
    if not rolled_back:
        print("Nothing to roll back.")
    for migration in rolled_back:
        print(f"Rolled back {migration.version:03d} {migration.name}")


def cmd_status(database, args):
    for row in MigrationManager(database).status():
        state = f"applied {row['executed_at']}" if row["applied"] else "pending"
        print(f"{row['version']:03d} {row['name']:<28} {state}")


def cmd_backup(database, args):
    manager = BackupManager.from_settings(database, args.settings)
    if args.action == "create":
        info = manager.create_backup()
        print(f"Backup created: {info.path} ({info.size} bytes, sha256 {info.checksum})")
        return
    backups = manager.list_backups()
    if not backups:
        print("No backups found.")
    for info in backups:
        print(f"{info.timestamp.isoformat()}  {info.size:>10}  {info.filename}")


def cmd_restore(database, args):
    if not args.yes:
        answer = input(f"Replace the live database with {args.path}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Restore aborted.")
            return
    manager = BackupManager.from_settings(database, args.settings)
    safety = manager.restore(args.path)
    if safety:
        print(f"Previous database saved as {safety.path}")
    print(f"Database restored from {args.path}")


def cmd_health(database, args):
    health = database.health_check()
    print(f"Database: {health['status']}")
    for key, value in health["details"].items():
        print(f"  {key}: {value}")
    if health["status"] != "healthy":
        return 1
    stats = BookingStore(database, args.settings.tz).get_booking_statistics(args.days)
    print(f"Bookings in the last {stats.window_days} days: {stats.total_bookings}")
    print(f"  active: {stats.active_bookings}")
    print(f"  cancelled: {stats.cancelled_bookings}")
    print(f"  completed: {stats.completed_bookings}")
    print(f"  unique users: {stats.unique_users}")
    print(f"  completion rate: {stats.completion_rate:.0%}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tennisbot-db", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", aliases=["init"], help="apply pending migrations").set_defaults(func=cmd_migrate)

    rollback = sub.add_parser("rollback", help="roll back to a version (exclusive)")
    rollback.add_argument("target", type=int)
    rollback.set_defaults(func=cmd_rollback)

    sub.add_parser("status", help="show migration status").set_defaults(func=cmd_status)

    backup = sub.add_parser("backup", help="create or list backups")
    backup.add_argument("action", choices=["create", "list"])
    backup.set_defaults(func=cmd_backup)

    restore = sub.add_parser("restore", help="restore the database from a backup")
    restore.add_argument("path")
    restore.add_argument("--yes", action="store_true", help="do not ask for confirmation")
    restore.set_defaults(func=cmd_restore)

    health = sub.add_parser("health", help="check the database and print statistics")
    health.add_argument("--days", type=int, default=30)
    health.set_defaults(func=cmd_health)
    return parser


def main(argv=None, settings=None) -> int:
    args = build_parser().parse_args(argv)
    args.settings = settings or get_settings()
    configure_logging(args.settings.log_level, json_output=False)

    database = Database.from_settings(args.settings)
    try:
        return args.func(database, args) or 0
    except BookingServiceError as e:
        print(f"Error: {e}")
        return 1
    finally:
        database.dispose()


if __name__ == "__main__":
    sys.exit(main())
