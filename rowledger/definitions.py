from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from pathlib import Path

import yaml

from rowledger.errors import MigrateConfigError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationDefinition:
    id: str
    label: str
    source: dict[str, object]
    process: dict[str, object]
    destination: dict[str, object]
    base_dir: Path
    required_dependencies: list[str] = field(default_factory=list)
    optional_dependencies: list[str] = field(default_factory=list)
    # None means the setting from the environment applies.
    record_skipped_rows: bool | None = None


def _section(document: Mapping[str, object], name: str, origin: str) -> dict[str, object]:
    value = document.get(name)
    if not isinstance(value, Mapping) or not value:
        raise MigrateConfigError(f"{origin}: '{name}' must be a non-empty mapping")
    return dict(value)


def _name_list(value: object, what: str, origin: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise MigrateConfigError(f"{origin}: {what} must be a list of migration ids")
    return list(value)


def parse_definition(document: object, base_dir: Path, origin: str = "<definition>") -> MigrationDefinition:
    if not isinstance(document, Mapping):
        raise MigrateConfigError(f"{origin}: migration definition must be a mapping")

    migration_id = document.get("id")
    if not isinstance(migration_id, str) or not migration_id:
        raise MigrateConfigError(f"{origin}: 'id' is required")

    dependencies = document.get("migration_dependencies") or {}
    if not isinstance(dependencies, Mapping):
        raise MigrateConfigError(f"{origin}: 'migration_dependencies' must be a mapping")

    record_skipped_rows = document.get("record_skipped_rows")
    if record_skipped_rows is not None and not isinstance(record_skipped_rows, bool):
        raise MigrateConfigError(f"{origin}: 'record_skipped_rows' must be a boolean")

    return MigrationDefinition(
        id=migration_id,
        label=str(document.get("label") or migration_id),
        source=_section(document, "source", origin),
        process=_section(document, "process", origin),
        destination=_section(document, "destination", origin),
        base_dir=base_dir,
        required_dependencies=_name_list(dependencies.get("required"), "required dependencies", origin),
        optional_dependencies=_name_list(dependencies.get("optional"), "optional dependencies", origin),
        record_skipped_rows=record_skipped_rows,
    )


def load_definition(path: Path) -> MigrationDefinition:
    with path.open("r", encoding="utf-8") as infile:
        try:
            document = yaml.safe_load(infile)
        except yaml.YAMLError as exc:
            raise MigrateConfigError(f"{path}: invalid YAML: {exc}") from exc
    return parse_definition(document, path.parent, origin=str(path))


def load_definitions(directory: Path) -> dict[str, MigrationDefinition]:
    if not directory.is_dir():
        raise MigrateConfigError(f"migrations directory not found: {directory}")

    definitions: dict[str, MigrationDefinition] = {}
    for path in sorted([*directory.glob("*.yml"), *directory.glob("*.yaml")]):
        definition = load_definition(path)
        if definition.id in definitions:
            raise MigrateConfigError(f"{path}: duplicate migration id '{definition.id}'")
        definitions[definition.id] = definition
    logger.debug("migration definitions loaded", extra={"count": len(definitions), "directory": str(directory)})
    return definitions


def order_by_dependencies(
    definitions: Mapping[str, MigrationDefinition],
    selected: Iterable[str] | None = None,
) -> list[MigrationDefinition]:
    """Return the selected migrations with every required dependency first.

    Required dependencies are pulled in even when not selected. Optional
    dependencies only affect ordering when both migrations are present.
    """
    wanted = list(selected) if selected is not None else list(definitions)
    ordered: list[MigrationDefinition] = []
    state: dict[str, str] = {}

    def visit(migration_id: str, chain: tuple[str, ...]) -> None:
        if state.get(migration_id) == "done":
            return
        if state.get(migration_id) == "visiting":
            cycle = " -> ".join((*chain, migration_id))
            raise MigrateConfigError(f"migration dependency cycle: {cycle}")
        definition = definitions.get(migration_id)
        if definition is None:
            if chain:
                raise MigrateConfigError(f"migration '{chain[-1]}' requires unknown migration '{migration_id}'")
            raise MigrateConfigError(f"unknown migration: {migration_id}")

        state[migration_id] = "visiting"
        for dependency in definition.required_dependencies:
            visit(dependency, (*chain, migration_id))
        for dependency in definition.optional_dependencies:
            if dependency in wanted and state.get(dependency) != "visiting":
                visit(dependency, (*chain, migration_id))
        state[migration_id] = "done"
        ordered.append(definition)

    for migration_id in wanted:
        visit(migration_id, ())
    return ordered
