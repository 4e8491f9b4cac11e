from pathlib import Path

import pytest

from app.config import load_settings

pytestmark = pytest.mark.unit

ENV_VARS = ("ARCHIVE_ROOT", "DATABASE_URL", "DICOMWEB_SORT_INSTANCES", "LOG_LEVEL", "HOST", "PORT")


def test_defaults(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.archive_root == Path("/data/xnat/archive")
    assert settings.database_url == "sqlite:///./archive.db"
    assert settings.sort_instances is False
    assert settings.log_level == "INFO"
    assert (settings.host, settings.port) == ("127.0.0.1", 8000)


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("ARCHIVE_ROOT", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", "postgresql://archive@db/archive")
    monkeypatch.setenv("DICOMWEB_SORT_INSTANCES", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("HOST", "0.0.0.0")
    monkeypatch.setenv("PORT", "8042")

    settings = load_settings()

    assert settings.archive_root == tmp_path
    assert settings.database_url == "postgresql://archive@db/archive"
    assert settings.sort_instances is True
    assert settings.log_level == "DEBUG"
    assert (settings.host, settings.port) == ("0.0.0.0", 8042)


@pytest.mark.parametrize("value", ["1", "TRUE", " yes ", "on"])
def test_sort_flag_truthy_values(monkeypatch, value):
    monkeypatch.setenv("DICOMWEB_SORT_INSTANCES", value)
    assert load_settings().sort_instances is True
