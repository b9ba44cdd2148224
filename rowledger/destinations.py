from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
import json

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rowledger.db_models import DestinationRecord, utc_now
from rowledger.errors import DestinationError, MigrateConfigError
from rowledger.row import Row


class Destination(ABC):
    plugin_id = ""

    def __init__(self, configuration: Mapping[str, object]) -> None:
        self.configuration = dict(configuration)

    def fields(self) -> dict[str, str]:
        return {str(name): str(description) for name, description in (self.configuration.get("fields") or {}).items()}

    @abstractmethod
    def import_row(self, row: Row, existing_key: tuple[object, ...] | None = None) -> tuple[object, ...]:
        """Write the row's destination values and return the destination key."""

    @abstractmethod
    def rollback(self, destination_key: tuple[object, ...]) -> None:
        """Remove a record written by this destination; absent records are ignored."""


class TableDestination(Destination):
    """Stores destination values as JSON documents in ``destination_records``."""

    plugin_id = "table"

    def __init__(self, configuration: Mapping[str, object], *, session_factory: sessionmaker[Session], migration_id: str) -> None:
        super().__init__(configuration)
        self.session_factory = session_factory
        self.collection = str(self.configuration.get("collection") or migration_id)
        required = self.configuration.get("required") or []
        if not isinstance(required, list):
            raise MigrateConfigError("table destination 'required' must be a list of field names")
        self.required = [str(name) for name in required]

    def import_row(self, row: Row, existing_key: tuple[object, ...] | None = None) -> tuple[object, ...]:
        missing = [name for name in self.required if row.destination.get(name) in (None, "")]
        if missing:
            raise DestinationError(f"missing required destination values: {', '.join(missing)}")

        payload = json.dumps(row.destination, sort_keys=True, default=str)
        with self.session_factory() as db:
            try:
                record = db.get(DestinationRecord, existing_key[0]) if existing_key else None
                if record is None:
                    record = DestinationRecord(collection=self.collection, payload=payload)
                    db.add(record)
                else:
                    record.payload = payload
                    record.updated_at = utc_now()
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise DestinationError(f"could not write destination record: {exc}") from exc
            return (record.id,)

    def get(self, destination_key: tuple[object, ...]) -> dict[str, object] | None:
        with self.session_factory() as db:
            record = db.get(DestinationRecord, destination_key[0])
            if record is None or record.collection != self.collection:
                return None
            return json.loads(record.payload)

    def rollback(self, destination_key: tuple[object, ...]) -> None:
        with self.session_factory() as db:
            try:
                record = db.get(DestinationRecord, destination_key[0])
                if record is None:
                    return
                db.delete(record)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise DestinationError(f"could not delete destination record {list(destination_key)!r}: {exc}") from exc


DestinationFactory = Callable[..., Destination]

DESTINATION_PLUGINS: dict[str, DestinationFactory] = {
    TableDestination.plugin_id: TableDestination,
}


def create_destination(
    configuration: Mapping[str, object],
    *,
    session_factory: sessionmaker[Session],
    migration_id: str,
) -> Destination:
    plugin_id = configuration.get("plugin")
    try:
        factory = DESTINATION_PLUGINS[str(plugin_id)]
    except KeyError:
        raise MigrateConfigError(f"unknown destination plugin: {plugin_id}") from None
    return factory(configuration, session_factory=session_factory, migration_id=migration_id)
