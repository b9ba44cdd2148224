from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
import csv
import json
from pathlib import Path
from xml.etree import ElementTree as ET

from rowledger.errors import MigrateConfigError, MigrateError
from rowledger.row import Row


class Source(ABC):
    plugin_id = ""

    def __init__(self, configuration: Mapping[str, object], base_dir: Path) -> None:
        self.configuration = dict(configuration)
        ids = self.configuration.get("ids")
        if not isinstance(ids, list) or not ids or not all(isinstance(name, str) for name in ids):
            raise MigrateConfigError(f"{self.plugin_id} source requires 'ids', a list of field names")
        self.ids: list[str] = ids

        path = self.configuration.get("path")
        if not isinstance(path, str) or not path:
            raise MigrateConfigError(f"{self.plugin_id} source requires a 'path'")
        self.path = Path(path) if Path(path).is_absolute() else base_dir / path

    def fields(self) -> dict[str, str]:
        configured = self.configuration.get("fields")
        if configured:
            return {str(name): str(description) for name, description in configured.items()}
        # Fall back to the keys of the first record.
        try:
            for row in self:
                return {name: "" for name in row.source}
        except FileNotFoundError as exc:
            raise MigrateConfigError(f"cannot list fields of {self.plugin_id} source: {exc}") from exc
        return {}

    def describe(self) -> str:
        return f"{self.plugin_id}: {self.path}"

    def __iter__(self) -> Iterator[Row]:
        if not self.path.exists():
            raise FileNotFoundError(f"source file not found: {self.path}")
        for record in self._records():
            yield Row(record, self.ids)

    @abstractmethod
    def _records(self) -> Iterator[dict[str, object]]:
        ...


class JsonlSource(Source):
    plugin_id = "jsonl"

    def _records(self) -> Iterator[dict[str, object]]:
        with self.path.open("r", encoding="utf-8") as infile:
            for line in infile:
                line = line.strip()
                if not line:
                    continue
                yield json.loads(line)


class CsvSource(Source):
    plugin_id = "csv"

    def _records(self) -> Iterator[dict[str, object]]:
        delimiter = str(self.configuration.get("delimiter", ","))
        with self.path.open("r", encoding="utf-8", newline="") as infile:
            yield from csv.DictReader(infile, delimiter=delimiter)


class XmlSource(Source):
    """Rows from repeated XML elements.

    ``item_selector`` picks the elements that become rows, either as an
    absolute path starting at the document element (``/response/item``) or as
    an ElementTree path relative to it (``.//item``). Each entry of ``fields``
    has a ``name``, an optional ``label`` and a ``selector`` relative to the
    item: a child path (``title``), an attribute (``@id``) or a child's
    attribute (``author/@ref``). A selector matching several elements gives a
    list of their texts.
    """

    plugin_id = "xml"

    def __init__(self, configuration: Mapping[str, object], base_dir: Path) -> None:
        super().__init__(configuration, base_dir)
        item_selector = self.configuration.get("item_selector")
        if not isinstance(item_selector, str) or not item_selector:
            raise MigrateConfigError("xml source requires an 'item_selector'")
        self.item_selector = item_selector

        fields = self.configuration.get("fields")
        if not isinstance(fields, list) or not fields:
            raise MigrateConfigError("xml source requires 'fields', a list of name/selector mappings")
        self.field_selectors: dict[str, str] = {}
        self.field_labels: dict[str, str] = {}
        for field in fields:
            if not isinstance(field, Mapping) or not isinstance(field.get("name"), str) or not isinstance(field.get("selector"), str):
                raise MigrateConfigError("each xml source field needs a 'name' and a 'selector'")
            self.field_selectors[field["name"]] = field["selector"]
            self.field_labels[field["name"]] = str(field.get("label") or "")

    def fields(self) -> dict[str, str]:
        return dict(self.field_labels)

    def describe(self) -> str:
        return f"{self.plugin_id}: {self.path} {self.item_selector}"

    def _items(self, root: ET.Element) -> list[ET.Element]:
        if self.item_selector.startswith("//"):
            return root.findall(f".{self.item_selector}")
        if not self.item_selector.startswith("/"):
            return root.findall(self.item_selector)
        root_tag, _, path = self.item_selector.strip("/").partition("/")
        if root_tag != root.tag:
            return []
        return root.findall(path) if path else [root]

    @staticmethod
    def _select(item: ET.Element, selector: str) -> object:
        if selector.startswith("@"):
            return item.get(selector[1:])
        path, _, attribute = selector.partition("/@")
        matches = item.findall(path)
        if attribute:
            values = [element.get(attribute) for element in matches]
        else:
            values = [(element.text or "").strip() for element in matches]
        if not values:
            return None
        return values[0] if len(values) == 1 else values

    def _records(self) -> Iterator[dict[str, object]]:
        try:
            root = ET.parse(self.path).getroot()
        except ET.ParseError as exc:
            raise MigrateError(f"invalid XML in {self.path}: {exc}") from exc
        for item in self._items(root):
            yield {name: self._select(item, selector) for name, selector in self.field_selectors.items()}


SOURCE_PLUGINS: dict[str, type[Source]] = {
    JsonlSource.plugin_id: JsonlSource,
    CsvSource.plugin_id: CsvSource,
    XmlSource.plugin_id: XmlSource,
}


def create_source(configuration: Mapping[str, object], base_dir: Path) -> Source:
    plugin_id = configuration.get("plugin")
    try:
        source_cls = SOURCE_PLUGINS[str(plugin_id)]
    except KeyError:
        raise MigrateConfigError(f"unknown source plugin: {plugin_id}") from None
    return source_cls(configuration, base_dir)
