"""
Pytest fixtures for identity sync testing.
Provides in-memory session fakes, recording reporters and option handling.
"""

import os
from collections.abc import Callable
from datetime import datetime

import pytest

from home_inventory.core.config import get_settings
from tests.fakes import FIXED_NOW, FakeSessionFactory, RecordingReporter, UserTable


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def user_table() -> UserTable:
    return UserTable()


@pytest.fixture
def session_factory(user_table: UserTable) -> FakeSessionFactory:
    return FakeSessionFactory(user_table)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that require a PostgreSQL database.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_integration = bool(
        config.getoption("--run-integration") or os.getenv("RUN_INTEGRATION") == "1"
    )

    if not run_integration:
        skip_integration = pytest.mark.skip(
            reason="integration tests require --run-integration or RUN_INTEGRATION=1"
        )
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)
