"""Persistent identifier map between source keys and destination keys.

One :class:`IdMap` covers one migration. Every write is committed on its own
so a failure while recording one row never touches rows recorded before it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
import hashlib
import json
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rowledger.comparison import canonical_form
from rowledger.db_models import MapEntry, MapMessage, utc_now
from rowledger.destinations import Destination
from rowledger.errors import DestinationError, IdMapError
from rowledger.row import canonical_json


logger = logging.getLogger(__name__)


class MapStatus(StrEnum):
    IMPORTED = "imported"
    NEEDS_UPDATE = "needs_update"
    IGNORED = "ignored"
    FAILED = "failed"


class RollbackAction(StrEnum):
    DELETE = "delete"
    PRESERVE = "preserve"


@dataclass(frozen=True)
class MapRecord:
    source_key: tuple[object, ...]
    destination_key: tuple[object, ...] | None
    status: MapStatus
    row_hash: str | None
    rollback_action: RollbackAction
    last_imported: datetime


@dataclass(frozen=True)
class MessageRecord:
    source_key: tuple[object, ...] | None
    level: str
    message: str


def encode_key(key: Sequence[object]) -> str:
    return canonical_json(list(key))


def decode_key(text: str | None) -> tuple[object, ...] | None:
    if text is None:
        return None
    return tuple(json.loads(text))


def key_hash(key: Sequence[object]) -> str:
    # ("1",) and (1,) name the same source row.
    normalized = canonical_json([canonical_form(value) for value in key])
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class IdMap:
    def __init__(self, session_factory: sessionmaker[Session], migration_id: str) -> None:
        self.session_factory = session_factory
        self.migration_id = migration_id

    def _entry(self, db: Session, source_key: Sequence[object]) -> MapEntry | None:
        stmt = select(MapEntry).where(
            MapEntry.migration_id == self.migration_id,
            MapEntry.source_ids_hash == key_hash(source_key),
        )
        return db.execute(stmt).scalar_one_or_none()

    def get_entry(self, source_key: Sequence[object]) -> MapRecord | None:
        with self.session_factory() as db:
            entry = self._entry(db, source_key)
            if entry is None:
                return None
            return MapRecord(
                source_key=decode_key(entry.source_ids),
                destination_key=decode_key(entry.destination_ids),
                status=MapStatus(entry.status),
                row_hash=entry.row_hash,
                rollback_action=RollbackAction(entry.rollback_action),
                last_imported=entry.last_imported,
            )

    def lookup_destination(self, source_key: Sequence[object]) -> tuple[object, ...] | None:
        with self.session_factory() as db:
            try:
                entry = self._entry(db, source_key)
            except SQLAlchemyError as exc:
                raise IdMapError(f"could not look up map entry for {list(source_key)!r}: {exc}") from exc
            if entry is None:
                return None
            return decode_key(entry.destination_ids)

    def lookup_source(self, destination_key: Sequence[object]) -> tuple[object, ...] | None:
        stmt = (
            select(MapEntry.source_ids)
            .where(
                MapEntry.migration_id == self.migration_id,
                MapEntry.destination_ids == encode_key(destination_key),
            )
            .limit(1)
        )
        with self.session_factory() as db:
            try:
                return decode_key(db.execute(stmt).scalar_one_or_none())
            except SQLAlchemyError as exc:
                raise IdMapError(f"could not look up source for {list(destination_key)!r}: {exc}") from exc

    def record_status(
        self,
        source_key: Sequence[object],
        destination_key: Sequence[object] | None,
        status: MapStatus,
        row_hash: str | None,
        message: str | None = None,
        rollback_action: RollbackAction | None = None,
    ) -> None:
        with self.session_factory() as db:
            try:
                entry = self._entry(db, source_key)
                if entry is None:
                    entry = MapEntry(
                        migration_id=self.migration_id,
                        source_ids_hash=key_hash(source_key),
                        source_ids=encode_key(source_key),
                        rollback_action=str(rollback_action or RollbackAction.DELETE),
                    )
                    db.add(entry)
                elif rollback_action is not None:
                    entry.rollback_action = str(rollback_action)

                entry.destination_ids = encode_key(destination_key) if destination_key is not None else None
                entry.status = str(status)
                entry.row_hash = row_hash
                entry.last_imported = utc_now()

                if message:
                    level = "error" if status == MapStatus.FAILED else "info"
                    db.add(self._message(source_key, message, level))
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise IdMapError(f"could not record map entry for {list(source_key)!r}: {exc}") from exc

    def needs_update(self, source_key: Sequence[object], row_hash: str) -> bool:
        with self.session_factory() as db:
            try:
                entry = self._entry(db, source_key)
            except SQLAlchemyError as exc:
                raise IdMapError(f"could not read map entry for {list(source_key)!r}: {exc}") from exc
        if entry is None:
            return True
        if entry.status in (MapStatus.NEEDS_UPDATE, MapStatus.FAILED):
            return True
        return entry.row_hash != row_hash

    def _message(self, source_key: Sequence[object], message: str, level: str) -> MapMessage:
        return MapMessage(
            migration_id=self.migration_id,
            source_ids_hash=key_hash(source_key),
            source_ids=encode_key(source_key),
            level=level,
            message=message,
        )

    def save_message(self, source_key: Sequence[object], message: str, level: str = "error") -> None:
        with self.session_factory() as db:
            try:
                db.add(self._message(source_key, message, level))
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise IdMapError(f"could not save message for {list(source_key)!r}: {exc}") from exc

    def clear_messages(self, source_key: Sequence[object]) -> None:
        with self.session_factory() as db:
            try:
                db.execute(
                    delete(MapMessage).where(
                        MapMessage.migration_id == self.migration_id,
                        MapMessage.source_ids_hash == key_hash(source_key),
                    )
                )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise IdMapError(f"could not clear messages for {list(source_key)!r}: {exc}") from exc

    def messages(self) -> list[MessageRecord]:
        stmt = (
            select(MapMessage.level, MapMessage.message, MapMessage.source_ids)
            .where(MapMessage.migration_id == self.migration_id)
            .order_by(MapMessage.id)
        )
        with self.session_factory() as db:
            return [
                MessageRecord(source_key=decode_key(source_ids), level=level, message=message)
                for level, message, source_ids in db.execute(stmt).all()
            ]

    def prepare_update(self) -> int:
        """Flag every entry of the migration for reprocessing."""
        with self.session_factory() as db:
            result = db.execute(
                update(MapEntry)
                .where(MapEntry.migration_id == self.migration_id)
                .values(status=str(MapStatus.NEEDS_UPDATE))
            )
            db.commit()
            return result.rowcount

    def status_counts(self) -> dict[str, int]:
        stmt = (
            select(MapEntry.status, func.count(MapEntry.id))
            .where(MapEntry.migration_id == self.migration_id)
            .group_by(MapEntry.status)
        )
        counts = {str(status): 0 for status in MapStatus}
        with self.session_factory() as db:
            for status, count in db.execute(stmt).all():
                counts[status] = count
        return counts

    def processed_count(self) -> int:
        return sum(self.status_counts().values())

    def rollback(self, destination: Destination) -> int:
        """Delete destination records and map entries for this migration.

        Each entry is removed in its own transaction after its destination
        record is gone, so an interrupted rollback can simply be run again.
        """
        stmt = select(MapEntry.id).where(MapEntry.migration_id == self.migration_id).order_by(MapEntry.id)
        with self.session_factory() as db:
            entry_ids = list(db.execute(stmt).scalars().all())

        rolled_back = 0
        for entry_id in entry_ids:
            with self.session_factory() as db:
                entry = db.get(MapEntry, entry_id)
                if entry is None:
                    continue
                destination_key = decode_key(entry.destination_ids)
                if destination_key is not None and entry.rollback_action == RollbackAction.DELETE:
                    try:
                        destination.rollback(destination_key)
                    except DestinationError:
                        logger.exception(
                            "destination rollback failed",
                            extra={"migration_id": self.migration_id, "destination_key": list(destination_key)},
                        )
                        continue
                db.execute(
                    delete(MapMessage).where(
                        MapMessage.migration_id == self.migration_id,
                        MapMessage.source_ids_hash == entry.source_ids_hash,
                    )
                )
                db.delete(entry)
                db.commit()
                rolled_back += 1

        logger.info("migration rolled back", extra={"migration_id": self.migration_id, "entries": rolled_back})
        return rolled_back
