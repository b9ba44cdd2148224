import argparse
import logging
from pathlib import Path

from rowledger.config import get_settings
from rowledger.database import build_session_factory
from rowledger.definitions import load_definitions
from rowledger.errors import MigrateConfigError
from rowledger.reporting import format_migration, map_status
from rowledger.runner import MigrationRunner
from rowledger.scheduler import start_scheduler


logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run row-level migrations with an identifier map")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="import one or more migrations")
    import_parser.add_argument("migrations", nargs="*", help="migration ids; dependencies are imported first")
    import_parser.add_argument("--all", action="store_true", help="import every defined migration")
    import_parser.add_argument("--update", action="store_true", help="reprocess rows that were already imported")
    import_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    rollback_parser = subparsers.add_parser("rollback", help="delete imported records and their map entries")
    rollback_parser.add_argument("migrations", nargs="*", help="migration ids")
    rollback_parser.add_argument("--all", action="store_true", help="roll back every defined migration")

    status_parser = subparsers.add_parser("status", help="show identifier map counts")
    status_parser.add_argument("migrations", nargs="*", help="migration ids (default: all)")

    messages_parser = subparsers.add_parser("messages", help="show messages recorded for a migration")
    messages_parser.add_argument("migration", help="migration id")

    describe_parser = subparsers.add_parser("describe", help="show source, process and destination of a migration")
    describe_parser.add_argument("migration", help="migration id")

    schedule_parser = subparsers.add_parser("schedule", help="import all migrations daily")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args(argv)


def _selected(args: argparse.Namespace) -> list[str] | None:
    if args.all:
        return None
    if not args.migrations:
        raise MigrateConfigError("name at least one migration or pass --all")
    return list(args.migrations)


def run_command(args: argparse.Namespace, runner: MigrationRunner) -> int:
    if args.command == "import":
        summaries = runner.import_all(_selected(args), update=args.update, trigger_source=args.trigger_source)
        for summary in summaries:
            print(
                "migration={migration} run_id={run_id} status={status} processed={processed} imported={imported} "
                "skipped={skipped} unchanged={unchanged} failed={failed}".format(
                    migration=summary.migration_id,
                    run_id=summary.run_id,
                    status=summary.status,
                    processed=summary.processed,
                    imported=summary.imported,
                    skipped=summary.skipped,
                    unchanged=summary.unchanged,
                    failed=summary.failed,
                )
            )
            for message in summary.messages:
                key = list(message.source_key) if message.source_key is not None else "-"
                print(f"  {key}: {message.message}")
            if summary.error:
                print(f"  error: {summary.error}")
        return 0 if all(summary.status == "succeeded" for summary in summaries) else 1

    if args.command == "rollback":
        for result in runner.rollback_all(_selected(args)):
            print(f"migration={result.migration_id} rolled_back={result.rolled_back}")
        return 0

    if args.command == "status":
        for migration_id in args.migrations or sorted(runner.definitions):
            report = map_status(runner.migration(migration_id))
            print(" ".join(f"{key}={value}" for key, value in report.items()))
        return 0

    if args.command == "messages":
        for message in runner.migration(args.migration).id_map.messages():
            print(f"{list(message.source_key)} {message.level}: {message.message}")
        return 0

    if args.command == "describe":
        print(format_migration(runner.migration(args.migration)))
        return 0

    raise ValueError(f"unhandled command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        definitions = load_definitions(Path(settings.migrations_dir))
        session_factory = build_session_factory(settings.database_url)
        if args.command == "schedule":
            start_scheduler(settings, session_factory, definitions, run_now=args.run_now)
            return
        runner = MigrationRunner(settings, session_factory, definitions)
        exit_code = run_command(args, runner)
    except MigrateConfigError as exc:
        logger.error("invalid migration configuration: %s", exc)
        print(f"error: {exc}")
        raise SystemExit(2) from exc

    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
