"""Plain-data reports describing a migration and its identifier map."""

from dataclasses import dataclass

from rowledger.runner import Migration


@dataclass(frozen=True)
class ProcessLine:
    destination: str
    source: str
    plugins: str
    default: str


def overview(migration: Migration) -> dict[str, object]:
    definition = migration.definition
    report: dict[str, object] = {"id": definition.id, "label": definition.label}
    if definition.required_dependencies:
        report["dependencies"] = ", ".join(definition.required_dependencies)
    if definition.optional_dependencies:
        report["soft_dependencies"] = ", ".join(definition.optional_dependencies)
    return report


def source_fields(migration: Migration) -> dict[str, object]:
    return {
        "plugin": migration.source.plugin_id,
        "query": migration.source.describe(),
        "ids": list(migration.source.ids),
        "fields": migration.source.fields(),
    }


def process_lines(migration: Migration) -> list[ProcessLine]:
    lines: list[ProcessLine] = []
    for destination_field, steps in migration.pipeline.lines.items():
        first = steps[0]
        source = first.get("source", "")
        if isinstance(source, list):
            source = ", ".join(source)
        default = first.get("default_value")
        lines.append(
            ProcessLine(
                destination=destination_field,
                source=str(source),
                plugins=", ".join(str(step["plugin"]) for step in steps),
                default="" if default is None else str(default),
            )
        )
    return lines


def destination_fields(migration: Migration) -> dict[str, object]:
    return {"type": migration.destination.plugin_id, "fields": migration.destination.fields()}


def map_status(migration: Migration) -> dict[str, object]:
    counts = migration.id_map.status_counts()
    return {"id": migration.id, "total": sum(counts.values()), **counts}


def format_migration(migration: Migration) -> str:
    lines = ["Overview"]
    for key, value in overview(migration).items():
        lines.append(f"  {key}: {value}")

    source = source_fields(migration)
    lines.extend(["", "Source", f"  query: {source['query']}", f"  ids: {', '.join(source['ids'])}"])
    lines.extend(_field_table(source["fields"]))

    lines.extend(["", "Process"])
    process = process_lines(migration)
    if not process:
        lines.append("  No process defined.")
    for line in process:
        text = f"  {line.destination} <- {line.source or '-'} [{line.plugins}]"
        if line.default:
            text += f" default={line.default}"
        lines.append(text)

    destination = destination_fields(migration)
    lines.extend(["", "Destination", f"  type: {destination['type']}"])
    lines.extend(_field_table(destination["fields"]))
    return "\n".join(lines)


def _field_table(fields: dict[str, str]) -> list[str]:
    if not fields:
        return ["  No fields"]
    width = max(len(name) for name in fields)
    return [f"  {name.ljust(width)}  {description}".rstrip() for name, description in fields.items()]
