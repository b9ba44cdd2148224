from pathlib import Path

import pytest

from rowledger.errors import MigrateConfigError, MigrateError
from rowledger.sources import XmlSource, create_source


FEED = """<?xml version="1.0"?>
<feed>
  <entries>
    <entry key="a1" lang="en"><name>Alpha</name><link href="/a"/></entry>
    <entry key="b2"><name>Beta</name></entry>
  </entries>
  <archive>
    <entry key="c3"><name>Gamma</name></entry>
  </archive>
</feed>
"""


def xml_configuration(**overrides: object) -> dict[str, object]:
    configuration: dict[str, object] = {
        "plugin": "xml",
        "path": "feed.xml",
        "ids": ["key"],
        "item_selector": "/feed/entries/entry",
        "fields": [
            {"name": "key", "label": "Entry key", "selector": "@key"},
            {"name": "name", "label": "Name", "selector": "name"},
            {"name": "link", "selector": "link/@href"},
        ],
    }
    configuration.update(overrides)
    return configuration


@pytest.fixture()
def feed_dir(tmp_path: Path) -> Path:
    (tmp_path / "feed.xml").write_text(FEED, encoding="utf-8")
    return tmp_path


def test_xml_source_reads_items_and_keys(feed_dir: Path) -> None:
    source = create_source(xml_configuration(), feed_dir)

    rows = list(source)

    assert isinstance(source, XmlSource)
    assert [row.source_key() for row in rows] == [("a1",), ("b2",)]
    assert dict(rows[0].source) == {"key": "a1", "name": "Alpha", "link": "/a"}
    assert rows[1].source["link"] is None
    assert source.fields() == {"key": "Entry key", "name": "Name", "link": ""}


@pytest.mark.parametrize(
    ("selector", "keys"),
    [
        ("//entry", ["a1", "b2", "c3"]),
        ("archive/entry", ["c3"]),
        ("/other/entry", []),
    ],
)
def test_xml_item_selector_forms(feed_dir: Path, selector: str, keys: list[str]) -> None:
    source = create_source(xml_configuration(item_selector=selector), feed_dir)

    assert [row.source["key"] for row in source] == keys


@pytest.mark.parametrize(
    "overrides",
    [
        {"item_selector": ""},
        {"fields": []},
        {"fields": [{"name": "key"}]},
        {"fields": {"key": "Entry key"}},
    ],
)
def test_xml_source_rejects_incomplete_configuration(feed_dir: Path, overrides: dict[str, object]) -> None:
    with pytest.raises(MigrateConfigError):
        create_source(xml_configuration(**overrides), feed_dir)


def test_malformed_xml_is_a_migrate_error(tmp_path: Path) -> None:
    (tmp_path / "feed.xml").write_text("<feed><entry>", encoding="utf-8")
    source = create_source(xml_configuration(), tmp_path)

    with pytest.raises(MigrateError):
        list(source)


def test_fields_of_missing_file_is_a_config_error(tmp_path: Path) -> None:
    source = create_source({"plugin": "jsonl", "path": "missing.jsonl", "ids": ["id"]}, tmp_path)

    with pytest.raises(MigrateConfigError, match="source file not found"):
        source.fields()


def test_configured_fields_do_not_read_the_file(tmp_path: Path) -> None:
    source = create_source(
        {"plugin": "csv", "path": "missing.csv", "ids": ["id"], "fields": {"id": "Identifier"}},
        tmp_path,
    )

    assert source.fields() == {"id": "Identifier"}
