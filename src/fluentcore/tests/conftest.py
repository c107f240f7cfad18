"""Test configuration."""
import os
from pathlib import Path
from typing import Generator

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parents[3] / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from fluentcore.services.backends import SqlAlchemyBackend  # noqa: E402
from fluentcore.services.backup_service import LocalBackup  # noqa: E402
from fluentcore.services.storage_service import PersistentStore  # noqa: E402


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend() -> Generator[SqlAlchemyBackend, None, None]:
    """Create a backend on a fresh in-memory database."""
    backend = SqlAlchemyBackend.from_url("sqlite:///:memory:")
    yield backend
    backend.close()


@pytest.fixture
def backup(tmp_path: Path) -> LocalBackup:
    """Create a local backup inside the test's temporary directory."""
    return LocalBackup(tmp_path / "failed_writes.json")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(backend: SqlAlchemyBackend, backup: LocalBackup, clock: FakeClock) -> PersistentStore:
    """Create a store with a short batch delay."""
    return PersistentStore(
        backend,
        backup=backup,
        batch_delay=0.01,
        max_retries=3,
        retry_delays=[1, 2, 4],
        clock=clock,
    )
