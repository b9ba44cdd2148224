from pathlib import Path

import pytest

from conftest import write_definition
from rowledger.definitions import load_definitions, order_by_dependencies, parse_definition
from rowledger.errors import MigrateConfigError


def minimal(migration_id: str, required: list[str] | None = None, optional: list[str] | None = None) -> dict[str, object]:
    return {
        "id": migration_id,
        "migration_dependencies": {"required": required or [], "optional": optional or []},
        "source": {"plugin": "jsonl", "path": f"{migration_id}.jsonl", "ids": ["id"]},
        "process": {"title": "title"},
        "destination": {"plugin": "table"},
    }


def definitions_for(*documents: dict[str, object]):
    return {document["id"]: parse_definition(document, Path(".")) for document in documents}


def test_load_definitions_reads_yaml_files(temp_workspace: Path) -> None:
    migrations_dir = temp_workspace / "migrations"
    write_definition(migrations_dir, minimal("users"))
    write_definition(migrations_dir, minimal("articles", required=["users"]))

    definitions = load_definitions(migrations_dir)

    assert sorted(definitions) == ["articles", "users"]
    assert definitions["articles"].required_dependencies == ["users"]
    assert definitions["users"].label == "users"
    assert definitions["users"].base_dir == migrations_dir
    assert definitions["users"].record_skipped_rows is None


def test_duplicate_ids_are_rejected(temp_workspace: Path) -> None:
    migrations_dir = temp_workspace / "migrations"
    write_definition(migrations_dir, minimal("users"))
    (migrations_dir / "copy.yaml").write_text((migrations_dir / "users.yml").read_text(), encoding="utf-8")

    with pytest.raises(MigrateConfigError, match="duplicate"):
        load_definitions(migrations_dir)


def test_invalid_yaml_is_a_config_error(temp_workspace: Path) -> None:
    (temp_workspace / "migrations" / "broken.yml").write_text("id: [unclosed", encoding="utf-8")

    with pytest.raises(MigrateConfigError, match="invalid YAML"):
        load_definitions(temp_workspace / "migrations")


@pytest.mark.parametrize("missing", ["id", "source", "process", "destination"])
def test_required_sections(missing: str) -> None:
    document = minimal("users")
    del document[missing]

    with pytest.raises(MigrateConfigError):
        parse_definition(document, Path("."))


def test_order_puts_required_dependencies_first() -> None:
    definitions = definitions_for(
        minimal("comments", required=["articles"]),
        minimal("articles", required=["users"], optional=["tags"]),
        minimal("users"),
        minimal("tags"),
    )

    ordered = [definition.id for definition in order_by_dependencies(definitions)]
    assert ordered.index("users") < ordered.index("articles") < ordered.index("comments")
    assert ordered.index("tags") < ordered.index("articles")

    selected = [definition.id for definition in order_by_dependencies(definitions, ["comments"])]
    assert selected == ["users", "articles", "comments"]


def test_dependency_cycle_is_rejected() -> None:
    definitions = definitions_for(minimal("a", required=["b"]), minimal("b", required=["a"]))

    with pytest.raises(MigrateConfigError, match="cycle"):
        order_by_dependencies(definitions)


def test_unknown_required_dependency_is_rejected() -> None:
    definitions = definitions_for(minimal("a", required=["missing"]))

    with pytest.raises(MigrateConfigError, match="unknown migration 'missing'"):
        order_by_dependencies(definitions)
