from collections.abc import Mapping
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from rowledger.config import Settings
from rowledger.definitions import MigrationDefinition
from rowledger.runner import MigrationRunner


logger = logging.getLogger(__name__)


def _run_all_migrations(
    settings: Settings,
    session_factory: sessionmaker[Session],
    definitions: Mapping[str, MigrationDefinition],
) -> None:
    runner = MigrationRunner(settings, session_factory, definitions)
    for summary in runner.import_all(trigger_source="scheduled"):
        log = logger.error if summary.status != "succeeded" else logger.info
        log(
            "scheduled migration run completed",
            extra={
                "migration_id": summary.migration_id,
                "status": summary.status,
                "imported": summary.imported,
                "skipped": summary.skipped,
                "failed": summary.failed,
            },
        )


def start_scheduler(
    settings: Settings,
    session_factory: sessionmaker[Session],
    definitions: Mapping[str, MigrationDefinition],
    *,
    run_now: bool = False,
) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_all_migrations,
        "cron",
        args=[settings, session_factory, definitions],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_migrations",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "migrations": len(definitions),
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_all_migrations(settings, session_factory, definitions)

    scheduler.start()
