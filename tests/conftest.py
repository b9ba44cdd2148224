from collections.abc import Callable
import json
from pathlib import Path

import pytest
import yaml
from sqlalchemy.orm import Session, sessionmaker

from rowledger.config import Settings
from rowledger.database import build_session_factory
from rowledger.definitions import load_definitions
from rowledger.runner import MigrationRunner


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "migrations").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="rowledger",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        migrations_dir=str(temp_workspace / "migrations"),
        max_import_retries=1,
        retry_backoff_seconds=0,
        record_skipped_rows=True,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


def write_jsonl(path: Path, rows: list[dict[str, object]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row))
            outfile.write("\n")


def write_definition(migrations_dir: Path, definition: dict[str, object]) -> Path:
    path = migrations_dir / f"{definition['id']}.yml"
    with path.open("w", encoding="utf-8") as outfile:
        yaml.safe_dump(definition, outfile, sort_keys=False)
    return path


@pytest.fixture()
def make_runner(test_settings: Settings, session_factory: sessionmaker[Session]) -> Callable[..., MigrationRunner]:
    def build(settings: Settings | None = None) -> MigrationRunner:
        settings = settings or test_settings
        definitions = load_definitions(Path(settings.migrations_dir))
        return MigrationRunner(settings, session_factory, definitions)

    return build
