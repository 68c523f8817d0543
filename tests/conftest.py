import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
from loguru import logger
from pytest import LogCaptureFixture

from tags_sync.config import RunConfig
from tests.helpers import FakeRepositoryAccess, make_access, make_config

# Environment variable prefixes that must not leak from the developer's shell or CI into the tests
_ENV_PREFIXES_TO_CLEAR = ("TAGS_SYNC_", "GITHUB_")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate every test from TAGS_SYNC_*/GITHUB_* variables and from any `.env` in the working directory."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES_TO_CLEAR):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def caplog(caplog: LogCaptureFixture) -> Generator[LogCaptureFixture, None, None]:
    """Override the default caplog fixture to work with loguru.

    See https://loguru.readthedocs.io/en/stable/resources/migration.html#migration-caplog for more information.
    """
    handler_id = logger.add(caplog.handler, format="{message}")
    yield caplog
    logger.remove(handler_id)


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Set up logging for tests."""
    logger.remove()
    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "format": "{time:YYYY-MM-DD HH:mm:ss} | {name}:{function}:{line} | {level} | {message}",
                "level": "DEBUG",
            },
        ],
    )


@pytest.fixture
def access() -> FakeRepositoryAccess:
    """The three-tag scenario: base has v1.0, v1.1 and v2.0, the fork already has v1.0."""
    return make_access(["v1.0", "v1.1", "v2.0"], ["main", "v1.0"])


@pytest.fixture
def run_config(tmp_path: Path) -> RunConfig:
    return make_config(tmp_path)

