"""Shared fixtures for Vigil tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vigil_cli.database.connection import Database
from vigil_cli.scheduler.catalog import JobCatalog
from vigil_cli.scheduler.lock_manager import LockManager
from vigil_cli.scheduler.registry import HandlerRegistry
from vigil_cli.scheduler.runner import JobRunner
from vigil_cli.scheduler.state_machine import JobStateMachine


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "vigil.db"


@pytest.fixture
def database(db_path: Path):
    """File-backed SQLite database so threads see each other's writes."""
    db = Database(f"sqlite:///{db_path}")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def lock_manager(database, clock) -> LockManager:
    return LockManager(database, default_max_duration=300, instance_id="test", clock=clock)


@pytest.fixture
def state_machine(database, clock) -> JobStateMachine:
    return JobStateMachine(database, clock=clock)


@pytest.fixture
def catalog(database, clock) -> JobCatalog:
    return JobCatalog(database, clock=clock)


@pytest.fixture
def runner(database, registry, lock_manager, state_machine, clock) -> JobRunner:
    return JobRunner(
        database,
        registry,
        lock_manager,
        state_machine=state_machine,
        max_duration=300,
        clock=clock,
    )


@pytest.fixture
def cli_env(tmp_path):
    """Point the CLI's global config and database at a temporary directory."""
    from vigil_cli.config import VigilConfig, clear_config_cache, set_config
    from vigil_cli.database.connection import set_database

    config = VigilConfig(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
    config.scheduler.load_entry_points = False
    set_config(config)
    db = Database(config.database_url)
    db.create_tables()
    set_database(db)
    yield config, db
    set_database(None)
    clear_config_cache()
    db.dispose()


@pytest.fixture(autouse=True)
def reset_globals():
    """Commands like 'vigil run' install a global config; drop it after each test."""
    yield
    from vigil_cli.config import clear_config_cache
    from vigil_cli.database.connection import set_database

    clear_config_cache()
    set_database(None)
