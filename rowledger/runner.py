from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging

from sqlalchemy.orm import Session, sessionmaker

from rowledger.config import Settings
from rowledger.db_models import MigrationRun
from rowledger.definitions import MigrationDefinition, order_by_dependencies
from rowledger.destinations import Destination, create_destination
from rowledger.errors import DestinationError, IdMapError, MigrateConfigError, MigrateError
from rowledger.id_map import IdMap, MapStatus
from rowledger.process_pipeline import ProcessPipeline
from rowledger.process_plugins import MigrationLookup, ProcessContext
from rowledger.retry import write_with_retries
from rowledger.row import Row
from rowledger.run_store import create_run, mark_run_failed, mark_run_finished
from rowledger.schemas import RollbackResult, RowMessage, RunCounts, RunSummary
from rowledger.sources import Source, create_source


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    definition: MigrationDefinition
    source: Source
    pipeline: ProcessPipeline
    destination: Destination
    id_map: IdMap
    record_skipped_rows: bool

    @property
    def id(self) -> str:
        return self.definition.id


class MigrationRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        definitions: Mapping[str, MigrationDefinition],
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.definitions = dict(definitions)
        self._migrations: dict[str, Migration] = {}
        self._stop_requested = False

    def request_stop(self) -> None:
        """Stop after the row currently in flight has been recorded."""
        self._stop_requested = True

    def migration(self, migration_id: str) -> Migration:
        if migration_id in self._migrations:
            return self._migrations[migration_id]
        definition = self.definitions.get(migration_id)
        if definition is None:
            raise MigrateConfigError(f"unknown migration: {migration_id}")

        pipeline = ProcessPipeline(definition.process)
        for destination_field, chain in pipeline.chains.items():
            for step in chain:
                if isinstance(step.plugin, MigrationLookup) and step.plugin.configuration["migration"] not in self.definitions:
                    raise MigrateConfigError(
                        f"{migration_id}: '{destination_field}' looks up unknown migration "
                        f"'{step.plugin.configuration['migration']}'"
                    )

        record_skipped_rows = definition.record_skipped_rows
        if record_skipped_rows is None:
            record_skipped_rows = self.settings.record_skipped_rows

        migration = Migration(
            definition=definition,
            source=create_source(definition.source, definition.base_dir),
            pipeline=pipeline,
            destination=create_destination(
                definition.destination,
                session_factory=self.session_factory,
                migration_id=migration_id,
            ),
            id_map=IdMap(self.session_factory, migration_id),
            record_skipped_rows=record_skipped_rows,
        )
        self._migrations[migration_id] = migration
        return migration

    def _lookup_destination(self, migration_id: str, source_key: tuple[object, ...]) -> tuple[object, ...] | None:
        return IdMap(self.session_factory, migration_id).lookup_destination(source_key)

    def import_migration(self, migration_id: str, *, update: bool = False, trigger_source: str = "manual") -> RunSummary:
        # Configuration errors surface here, before a run is recorded.
        migration = self.migration(migration_id)
        self._stop_requested = False
        context = ProcessContext(migration_id=migration_id, lookup_destination=self._lookup_destination)

        with self.session_factory() as db:
            run = create_run(db, migration_id=migration_id, trigger_source=trigger_source)
            counts = RunCounts()
            stopped = False

            try:
                if update:
                    flagged = migration.id_map.prepare_update()
                    logger.info("map entries flagged for update", extra={"migration_id": migration_id, "entries": flagged})

                for row in migration.source:
                    if self._stop_requested:
                        stopped = True
                        logger.info("migration stopped on request", extra={"migration_id": migration_id})
                        break
                    self._import_row(migration, row, context, counts)
            except Exception as exc:
                mark_run_failed(db, run, counts, error=str(exc))
                logger.exception("migration run failed", extra={"migration_id": migration_id})
                return self._summary(run, counts)

            mark_run_finished(db, run, counts, stopped=stopped)
            logger.info(
                "migration run finished",
                extra={
                    "migration_id": migration_id,
                    "status": run.status,
                    "processed": counts.processed,
                    "imported": counts.imported,
                    "skipped": counts.skipped,
                    "unchanged": counts.unchanged,
                    "failed": counts.failed,
                },
            )
            return self._summary(run, counts)

    def import_all(
        self,
        migration_ids: Iterable[str] | None = None,
        *,
        update: bool = False,
        trigger_source: str = "manual",
    ) -> list[RunSummary]:
        summaries: list[RunSummary] = []
        for definition in order_by_dependencies(self.definitions, migration_ids):
            summary = self.import_migration(definition.id, update=update, trigger_source=trigger_source)
            summaries.append(summary)
            if summary.status in ("failed", "stopped"):
                # Later migrations may require this one.
                logger.error(
                    "halting remaining migrations",
                    extra={"migration_id": definition.id, "status": summary.status},
                )
                break
        return summaries

    def _import_row(self, migration: Migration, row: Row, context: ProcessContext, counts: RunCounts) -> None:
        counts.processed += 1
        id_map = migration.id_map
        try:
            source_key = row.source_key()
        except MigrateError as exc:
            counts.failed += 1
            counts.messages.append(RowMessage(None, str(exc)))
            logger.warning("row without identifier skipped", extra={"migration_id": migration.id, "error": str(exc)})
            return

        row_hash = row.hash()
        try:
            if not id_map.needs_update(source_key, row_hash):
                counts.unchanged += 1
                return
            row.existing_destination_key = id_map.lookup_destination(source_key)
            id_map.clear_messages(source_key)
            outcome = migration.pipeline.process_row(row, context)
        except IdMapError as exc:
            self._map_failure(migration, counts, source_key, exc)
            return

        if outcome.skipped:
            counts.skipped += 1
            message = outcome.skip.message
            if message:
                counts.messages.append(RowMessage(source_key, message))
            record = outcome.skip.record if outcome.skip.record is not None else migration.record_skipped_rows
            if record:
                self._record(
                    migration, counts, source_key, row.existing_destination_key, MapStatus.IGNORED, row_hash, message
                )
            elif message:
                try:
                    id_map.save_message(source_key, message, level="info")
                except IdMapError as exc:
                    logger.error(
                        "skip message not saved",
                        extra={"migration_id": migration.id, "source_key": list(source_key), "error": str(exc)},
                    )
            return

        def log_retry(attempt: int, exc: DestinationError) -> None:
            logger.warning(
                "destination write failed, retrying",
                extra={"migration_id": migration.id, "source_key": list(source_key), "attempt": attempt, "error": str(exc)},
            )

        try:
            destination_key = write_with_retries(
                lambda: migration.destination.import_row(row, row.existing_destination_key),
                max_retries=self.settings.max_import_retries,
                backoff_seconds=self.settings.retry_backoff_seconds,
                on_attempt_failure=log_retry,
            )
        except DestinationError as exc:
            counts.failed += 1
            counts.messages.append(RowMessage(source_key, str(exc)))
            logger.warning(
                "destination write failed",
                extra={"migration_id": migration.id, "source_key": list(source_key), "error": str(exc)},
            )
            self._record(migration, counts, source_key, row.existing_destination_key, MapStatus.FAILED, row_hash, str(exc))
            return

        if self._record(migration, counts, source_key, destination_key, MapStatus.IMPORTED, row_hash, None):
            counts.imported += 1
            return

        counts.failed += 1
        if row.existing_destination_key is None:
            # Unmapped records would be created again on the next run.
            try:
                migration.destination.rollback(destination_key)
            except DestinationError:
                logger.exception(
                    "unmapped destination record left in place",
                    extra={"migration_id": migration.id, "destination_key": list(destination_key)},
                )

    def _map_failure(
        self,
        migration: Migration,
        counts: RunCounts,
        source_key: tuple[object, ...],
        exc: IdMapError,
    ) -> None:
        counts.failed += 1
        counts.messages.append(RowMessage(source_key, str(exc)))
        logger.error(
            "identifier map access failed",
            extra={"migration_id": migration.id, "source_key": list(source_key), "error": str(exc)},
        )

    def _record(
        self,
        migration: Migration,
        counts: RunCounts,
        source_key: tuple[object, ...],
        destination_key: tuple[object, ...] | None,
        status: MapStatus,
        row_hash: str,
        message: str | None,
    ) -> bool:
        try:
            migration.id_map.record_status(source_key, destination_key, status, row_hash, message=message)
        except IdMapError as exc:
            counts.messages.append(RowMessage(source_key, str(exc)))
            logger.error(
                "identifier map write failed",
                extra={"migration_id": migration.id, "source_key": list(source_key), "error": str(exc)},
            )
            return False
        return True

    def rollback(self, migration_id: str) -> RollbackResult:
        migration = self.migration(migration_id)
        rolled_back = migration.id_map.rollback(migration.destination)
        return RollbackResult(migration_id=migration_id, rolled_back=rolled_back)

    def rollback_all(self, migration_ids: Iterable[str] | None = None) -> list[RollbackResult]:
        selected = set(migration_ids) if migration_ids is not None else set(self.definitions)
        ordered = [definition for definition in order_by_dependencies(self.definitions, sorted(selected)) if definition.id in selected]
        # Dependents go first so lookups never point at deleted records.
        return [self.rollback(definition.id) for definition in reversed(ordered)]

    def _summary(self, run: MigrationRun, counts: RunCounts) -> RunSummary:
        return RunSummary(
            run_id=run.id,
            migration_id=run.migration_id,
            trigger_source=run.trigger_source,
            status=run.status,
            processed=counts.processed,
            imported=counts.imported,
            skipped=counts.skipped,
            unchanged=counts.unchanged,
            failed=counts.failed,
            messages=list(counts.messages),
            error=run.error,
        )
