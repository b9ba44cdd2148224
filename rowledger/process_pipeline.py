from collections.abc import Mapping
from dataclasses import dataclass
import logging

from rowledger.errors import MigrateConfigError
from rowledger.process_plugins import ProcessContext, ProcessPlugin, create_plugin
from rowledger.row import Row
from rowledger.signals import SkipRow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessStep:
    plugin: ProcessPlugin
    source: str | tuple[str, ...] | None = None


@dataclass(frozen=True)
class RowOutcome:
    row: Row
    skip: SkipRow | None = None
    skipped_at: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip is not None


def normalize_process(process: Mapping[str, object]) -> dict[str, list[dict[str, object]]]:
    """Expand shorthand process configuration into explicit step lists.

    ``title: name`` becomes ``[{"plugin": "get", "source": "name"}]`` and a
    single step mapping becomes a one-element list.
    """
    lines: dict[str, list[dict[str, object]]] = {}
    for destination_field, line in process.items():
        if isinstance(line, str):
            steps = [{"plugin": "get", "source": line}]
        elif isinstance(line, Mapping):
            steps = [dict(line)]
        elif isinstance(line, list) and line:
            steps = []
            for step in line:
                if not isinstance(step, Mapping):
                    raise MigrateConfigError(f"process step for '{destination_field}' must be a mapping")
                steps.append(dict(step))
        else:
            raise MigrateConfigError(f"invalid process configuration for '{destination_field}'")
        lines[str(destination_field)] = steps
    return lines


def _step_source(destination_field: str, step: Mapping[str, object]) -> str | tuple[str, ...] | None:
    source = step.get("source")
    if source is None or isinstance(source, str):
        return source
    if isinstance(source, list) and all(isinstance(name, str) for name in source):
        return tuple(source)
    raise MigrateConfigError(f"source for '{destination_field}' must be a field name or a list of field names")


class ProcessPipeline:
    """Runs the configured plugin chains over a row, field by field."""

    def __init__(self, process: Mapping[str, object]) -> None:
        self.lines = normalize_process(process)
        self.chains: dict[str, list[ProcessStep]] = {
            destination_field: [ProcessStep(create_plugin(step), _step_source(destination_field, step)) for step in steps]
            for destination_field, steps in self.lines.items()
        }

    @property
    def destination_fields(self) -> list[str]:
        return list(self.chains)

    def process_row(self, row: Row, context: ProcessContext) -> RowOutcome:
        for destination_field, chain in self.chains.items():
            value: object = None
            for step in chain:
                if isinstance(step.source, str):
                    value = row.get(step.source)
                elif step.source is not None:
                    value = [row.get(name) for name in step.source]

                result = step.plugin.transform(value, row, destination_field, context)
                if result.skipped:
                    logger.info(
                        "row skipped",
                        extra={
                            "migration_id": context.migration_id,
                            "destination_field": destination_field,
                            "plugin": step.plugin.plugin_id,
                            "skip_message": result.signal.message,
                        },
                    )
                    return RowOutcome(row=row, skip=result.signal, skipped_at=destination_field)

                value = result.value
                if result.stopped:
                    break

            row.set_destination(destination_field, value)

        return RowOutcome(row=row)
