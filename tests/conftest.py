import logging
from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from simple_file_server.logger_config import disable_file_logging
from simple_file_server.main import create_app
from simple_file_server.pages import ensure_default_pages
from simple_file_server.services.settings_store import Settings


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run every test from an isolated working directory."""
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    disable_file_logging()


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = {
            "folder_path": "./uploads",
            "size_limit": 10,
            "single_file_size_limit": 8,
            "read_only": False,
            "forbidden_extensions": [".html"],
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def make_client(workdir, make_settings):
    """Start the app (lifespan included) for the given settings."""
    stack = ExitStack()

    def _make(settings=None, **kwargs):
        settings = settings or make_settings()
        ensure_default_pages(workdir / "www")
        app = create_app(settings, **kwargs)
        return stack.enter_context(TestClient(app))

    yield _make
    stack.close()


@pytest.fixture
def server_logs(caplog):
    caplog.set_level(logging.DEBUG, logger="simple_file_server")
    return caplog
