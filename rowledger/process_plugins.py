"""Process plugins and the registry the pipeline builds them from.

Plugins are stateless: ``transform`` returns a :class:`ProcessResult` holding
the new value and a control signal, so a single instance can be shared by
every row of a migration.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import logging

from rowledger.comparison import is_scalar, loose_contains, loose_equals
from rowledger.errors import MigrateConfigError
from rowledger.row import Row
from rowledger.signals import CONTINUE, STOP_FIELD, ProcessResult, SkipRow


logger = logging.getLogger(__name__)

SKIP_METHODS = ("row", "process")

LookupFn = Callable[[str, tuple[object, ...]], tuple[object, ...] | None]


@dataclass(frozen=True)
class ProcessContext:
    migration_id: str
    lookup_destination: LookupFn | None = None


class ProcessPlugin:
    plugin_id = ""
    required_keys: tuple[str, ...] = ()

    def __init__(self, configuration: Mapping[str, object]) -> None:
        self.configuration = dict(configuration)
        missing = [key for key in self.required_keys if key not in self.configuration]
        if missing:
            raise MigrateConfigError(f"{self.plugin_id} plugin requires configuration: {', '.join(missing)}")

    def transform(
        self,
        value: object,
        row: Row,
        destination_field: str,
        context: ProcessContext,
    ) -> ProcessResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.configuration!r})"


PROCESS_PLUGINS: dict[str, type[ProcessPlugin]] = {}


def register(plugin_id: str) -> Callable[[type[ProcessPlugin]], type[ProcessPlugin]]:
    def deco(cls: type[ProcessPlugin]) -> type[ProcessPlugin]:
        if plugin_id in PROCESS_PLUGINS:
            raise ValueError(f"process plugin already registered: {plugin_id}")
        cls.plugin_id = plugin_id
        PROCESS_PLUGINS[plugin_id] = cls
        return cls

    return deco


def create_plugin(configuration: Mapping[str, object]) -> ProcessPlugin:
    plugin_id = configuration.get("plugin")
    if not isinstance(plugin_id, str) or not plugin_id:
        raise MigrateConfigError("process step is missing a 'plugin' name")
    try:
        plugin_cls = PROCESS_PLUGINS[plugin_id]
    except KeyError:
        raise MigrateConfigError(f"unknown process plugin: {plugin_id}") from None
    return plugin_cls(configuration)


class _SkipPlugin(ProcessPlugin):
    """Shared handling of the ``method``, ``message`` and ``save_to_map`` options."""

    required_keys = ("method",)

    def __init__(self, configuration: Mapping[str, object]) -> None:
        super().__init__(configuration)
        self.method = self.configuration["method"]
        if self.method not in SKIP_METHODS:
            raise MigrateConfigError(
                f"{self.plugin_id} method must be one of {', '.join(SKIP_METHODS)}, got {self.method!r}"
            )
        message = self.configuration.get("message")
        if message is not None and not isinstance(message, str):
            raise MigrateConfigError(f"{self.plugin_id} message must be a string")
        self.message = message
        save_to_map = self.configuration.get("save_to_map")
        if save_to_map is not None and not isinstance(save_to_map, bool):
            raise MigrateConfigError(f"{self.plugin_id} save_to_map must be a boolean")
        self.save_to_map = save_to_map

    def _halt(self, value: object, destination_field: str) -> ProcessResult:
        if self.method == "process":
            return ProcessResult(value, STOP_FIELD)
        logger.debug(
            "row skipped by process plugin",
            extra={"plugin": self.plugin_id, "destination_field": destination_field},
        )
        return ProcessResult(value, SkipRow(message=self.message, record=self.save_to_map))


@register("skip_on_value")
class SkipOnValue(_SkipPlugin):
    """Stop the field or skip the row when the value matches ``value``.

    ``value`` is a scalar or a list of scalars compared with
    :func:`rowledger.comparison.loose_equals`; ``not_equals`` inverts the
    match.
    """

    required_keys = ("method", "value")

    def __init__(self, configuration: Mapping[str, object]) -> None:
        super().__init__(configuration)
        configured = self.configuration["value"]
        if isinstance(configured, (list, tuple)):
            if not all(is_scalar(item) for item in configured):
                raise MigrateConfigError("skip_on_value value list may only contain scalars")
            self.values: tuple[object, ...] | None = tuple(configured)
            self.value = None
        elif is_scalar(configured):
            self.values = None
            self.value = configured
        else:
            raise MigrateConfigError(
                f"skip_on_value value must be a scalar or a list of scalars, got {type(configured).__name__}"
            )
        self.not_equals = bool(self.configuration.get("not_equals", False))

    def matches(self, value: object) -> bool:
        if self.values is not None:
            matched = loose_contains(self.values, value)
        else:
            matched = loose_equals(value, self.value)
        return matched != self.not_equals

    def transform(self, value, row, destination_field, context):
        if not self.matches(value):
            return ProcessResult(value)
        return self._halt(value, destination_field)


@register("skip_on_empty")
class SkipOnEmpty(_SkipPlugin):
    def transform(self, value, row, destination_field, context):
        if value is None or value == "" or (isinstance(value, (list, tuple, dict)) and not value):
            return self._halt(value, destination_field)
        return ProcessResult(value)


@register("get")
class Get(ProcessPlugin):
    def transform(self, value, row, destination_field, context):
        return ProcessResult(value)


@register("default_value")
class DefaultValue(ProcessPlugin):
    required_keys = ("default_value",)

    def transform(self, value, row, destination_field, context):
        if self.configuration.get("strict", False):
            replace = value is None
        else:
            replace = value is None or value == "" or value == [] or value == {}
        if replace:
            return ProcessResult(self.configuration["default_value"])
        return ProcessResult(value)


@register("migration_lookup")
class MigrationLookup(ProcessPlugin):
    """Translate a source key of another migration into its destination key."""

    required_keys = ("migration",)

    def transform(self, value, row, destination_field, context):
        if value is None or value == "":
            return ProcessResult(None)
        if context.lookup_destination is None:
            raise MigrateConfigError("migration_lookup needs an identifier map lookup in its context")

        source_key = tuple(value) if isinstance(value, (list, tuple)) else (value,)
        destination_key = context.lookup_destination(str(self.configuration["migration"]), source_key)
        if destination_key is None:
            return ProcessResult(None)
        if len(destination_key) == 1:
            return ProcessResult(destination_key[0])
        return ProcessResult(list(destination_key))
