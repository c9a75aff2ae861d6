from typing import Iterator

import pytest
import structlog
from prometheus_client import CollectorRegistry


@pytest.fixture()
def registry() -> "CollectorRegistry":
    return CollectorRegistry()


@pytest.fixture(autouse=True)
def _reset_structlog() -> "Iterator[None]":
    # the CLI tests call setup_logging, which configures structlog globally
    yield
    structlog.reset_defaults()
