from sqlalchemy import select
from sqlalchemy.orm import Session

from rowledger.db_models import MigrationRun, utc_now
from rowledger.schemas import RunCounts


def create_run(db: Session, *, migration_id: str, trigger_source: str) -> MigrationRun:
    run = MigrationRun(migration_id=migration_id, trigger_source=trigger_source, status="running", started_at=utc_now())
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def _apply_counts(run: MigrationRun, counts: RunCounts) -> None:
    run.processed_rows = counts.processed
    run.imported_rows = counts.imported
    run.skipped_rows = counts.skipped
    run.unchanged_rows = counts.unchanged
    run.failed_rows = counts.failed


def mark_run_finished(db: Session, run: MigrationRun, counts: RunCounts, *, stopped: bool = False) -> None:
    if stopped:
        run.status = "stopped"
    elif counts.failed:
        run.status = "completed_with_errors"
    else:
        run.status = "succeeded"
    _apply_counts(run, counts)
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(db: Session, run: MigrationRun, counts: RunCounts, *, error: str) -> None:
    run.status = "failed"
    run.error = error
    _apply_counts(run, counts)
    run.completed_at = utc_now()
    db.commit()


def latest_run(db: Session, migration_id: str) -> MigrationRun | None:
    stmt = (
        select(MigrationRun)
        .where(MigrationRun.migration_id == migration_id)
        .order_by(MigrationRun.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()
