import logging

import pytest
from rich.console import Console

from cctmerge.common.console import get_console
from cctmerge.common.settings import reset_settings_cache


@pytest.fixture
def console() -> Console:
    return get_console("info")


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    for name in (
        "CCTMERGE_MAX_PROFILES",
        "CCTMERGE_LOG_VERBOSITY",
        "CCTMERGE_PROFILE",
        "CCTMERGE_DB_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture(autouse=True)
def _detached_cli_logging():
    yield
    logger = logging.getLogger("cctmerge")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
