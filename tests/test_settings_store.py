import json

import pytest
from pydantic import ValidationError

from simple_file_server.services import settings_store
from simple_file_server.services.settings_store import (
    Settings,
    SettingsNotFoundError,
    SettingsParseError,
    StartupStatus,
)


def test_defaults():
    settings = settings_store.defaults()

    assert settings.folder_path == "./uploads"
    assert settings.size_limit == 128
    assert settings.single_file_size_limit == 8
    assert settings.read_only is False
    assert settings.forbidden_extensions == [".html"]


def test_save_writes_pascal_case_keys(workdir):
    settings_store.save(settings_store.defaults(), "settings.json")

    data = json.loads((workdir / "settings.json").read_text())
    assert data == {
        "FolderPath": "./uploads",
        "SizeLimit": 128,
        "SingleFileSizeLimit": 8,
        "ReadOnly": False,
        "ForbiddenExtensions": [".html"],
    }


def test_save_then_load_is_idempotent(workdir, make_settings):
    original = make_settings(folder_path="./drop", read_only=True, forbidden_extensions=[".html", ".exe"])
    path = workdir / "settings.json"

    settings_store.save(original, path)
    first = settings_store.load(path)
    second = settings_store.load(path)

    assert first == second == original


def test_save_overwrites(workdir, make_settings):
    path = workdir / "settings.json"
    settings_store.save(make_settings(size_limit=50), path)
    settings_store.save(make_settings(size_limit=60), path)

    assert settings_store.load(path).size_limit == 60


def test_load_missing_file(workdir):
    with pytest.raises(SettingsNotFoundError):
        settings_store.load(workdir / "settings.json")


@pytest.mark.parametrize("content", [
    "not json at all",
    '{"SizeLimit": "lots"}',
    '{"SizeLimit": -1}',
    '{"SizeLimit": 4, "SingleFileSizeLimit": 8}',
    '{"ForbiddenExtensions": ["html"]}',
])
def test_load_invalid_file(workdir, content):
    path = workdir / "settings.json"
    path.write_text(content)

    with pytest.raises(SettingsParseError):
        settings_store.load(path)


def test_load_partial_file_uses_defaults(workdir):
    path = workdir / "settings.json"
    path.write_text('{"FolderPath": "/srv/drop", "ReadOnly": true}')

    settings = settings_store.load(path)
    assert settings.folder_path == "/srv/drop"
    assert settings.read_only is True
    assert settings.size_limit == 128
    assert settings.single_file_size_limit == 8


def test_settings_are_immutable(make_settings):
    settings = make_settings()
    with pytest.raises(ValidationError):
        settings.read_only = True


def test_is_forbidden_ignores_case():
    settings = Settings(forbidden_extensions=[".html", ".PHP"])

    assert settings.is_forbidden(".HTML")
    assert settings.is_forbidden(".php")
    assert not settings.is_forbidden(".htm")
    assert not settings.is_forbidden("")


def test_load_or_bootstrap_writes_defaults(workdir):
    result = settings_store.load_or_bootstrap(workdir / "settings.json")

    assert result.status is StartupStatus.RAN_WITH_DEFAULTS
    assert result.settings == settings_store.defaults()
    assert settings_store.load(workdir / "settings.json") == settings_store.defaults()


def test_load_or_bootstrap_loads_existing(workdir, make_settings):
    path = workdir / "settings.json"
    settings_store.save(make_settings(size_limit=20), path)

    result = settings_store.load_or_bootstrap(path)

    assert result.status is StartupStatus.LOADED_EXISTING
    assert result.settings.size_limit == 20


def test_load_or_bootstrap_propagates_parse_errors(workdir):
    path = workdir / "settings.json"
    path.write_text("{")

    with pytest.raises(SettingsParseError):
        settings_store.load_or_bootstrap(path)
