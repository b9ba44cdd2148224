from collections.abc import Mapping, Sequence
import hashlib
import json
from types import MappingProxyType

from rowledger.errors import MigrateError


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


class Row:
    """One source record on its way through a migration.

    Source values are read-only once the row exists; the process pipeline only
    writes destination values.
    """

    def __init__(self, source: Mapping[str, object], source_id_fields: Sequence[str]) -> None:
        self._source = MappingProxyType(dict(source))
        self.source_id_fields = tuple(source_id_fields)
        self.destination: dict[str, object] = {}
        # Destination key from a previous run, set before an update.
        self.existing_destination_key: tuple[object, ...] | None = None

    @property
    def source(self) -> Mapping[str, object]:
        return self._source

    def get(self, name: str) -> object:
        """Read a source value, or a destination value when prefixed with ``@``."""
        if name.startswith("@"):
            return self.destination.get(name[1:])
        return self._source.get(name)

    def set_destination(self, name: str, value: object) -> None:
        self.destination[name] = value

    def source_key(self) -> tuple[object, ...]:
        missing = [name for name in self.source_id_fields if self._source.get(name) in (None, "")]
        if missing:
            raise MigrateError(f"source row is missing identifier values: {', '.join(missing)}")
        return tuple(self._source[name] for name in self.source_id_fields)

    def hash(self) -> str:
        return hashlib.sha256(canonical_json(dict(self._source)).encode("utf-8")).hexdigest()

    def __repr__(self) -> str:
        return f"Row(source_key={tuple(self._source.get(name) for name in self.source_id_fields)!r})"
