"""
Root test configuration and fixtures.

Provides database fixtures that can be used by all tests.

Shared fixtures:
- db_session: Session joined to an outer transaction rolled back per test
- temp_config_dir / make_yaml_config: YAML config files in a temp dir
- change_tracking_config: Points the config singleton at a temp YAML file
- panel_factory / view_factory: Build Panels and Views directly
"""

import os
import tempfile
import pytest
import yaml
from pathlib import Path
from typing import Generator

from sqlalchemy import text
from sqlalchemy.orm import Session

from panels.database.session import create_panels_engine, normalize_database_url
from panels.config.change_tracking import (
    get_change_tracking_config,
    reset_change_tracking_config,
)

# Set test environment
os.environ.setdefault("ENV", "test")

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
OWNER_ID = "user-owner"
OTHER_USER_ID = "user-other"


def _get_test_database_url() -> str:
    """Get database URL for tests."""
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        return normalize_database_url(database_url)

    # Default to SQLite for unit tests if no PostgreSQL available
    return "sqlite:///:memory:"


def _is_postgres() -> bool:
    """Check if using PostgreSQL."""
    return _get_test_database_url().startswith("postgresql")


@pytest.fixture(scope="session")
def db_engine():
    """
    Create database engine for tests.

    Uses PostgreSQL if DATABASE_URL is set, otherwise SQLite in-memory.
    """
    database_url = _get_test_database_url()

    if _is_postgres():
        try:
            engine = create_panels_engine(database_url)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            pytest.skip(
                f"PostgreSQL not available. Set DATABASE_URL or use SQLite. Error: {e}"
            )
    else:
        engine = create_panels_engine(database_url)

    from panels.db_base import Base
    import panels.models  # noqa: F401 - registers all model metadata

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Service commits and rollbacks act on a SAVEPOINT inside the outer
    transaction, which is rolled back after the test.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    session = Session(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: mark test as HTTP integration test")


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_config():
    """Every test starts from the repository's change_tracking.yml."""
    reset_change_tracking_config()
    yield
    reset_change_tracking_config()


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("change_tracking.yml", {"pagination": {...}})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make


@pytest.fixture
def change_tracking_config(make_yaml_config):
    """
    Factory that loads the config singleton from the given dict.

    Usage:
        change_tracking_config({"propagation": {"inline": False}})
    """
    def _load(config: dict):
        path = make_yaml_config("change_tracking.yml", config)
        reset_change_tracking_config()
        return get_change_tracking_config(str(path))
    return _load


# =============================================================================
# Model Factories
# =============================================================================


@pytest.fixture
def panel_factory(db_session):
    """Create a Panel (optionally with columns) and flush it."""
    from panels.models import Panel, DataSource, BaseColumn

    def _make(
        name: str = "Diabetes cohort",
        tenant_id: str = TENANT_ID,
        user_id: str = OWNER_ID,
        columns=(),
    ) -> Panel:
        panel = Panel(tenant_id=tenant_id, user_id=user_id, name=name)
        db_session.add(panel)
        db_session.flush()

        if columns:
            source = DataSource(panel_id=panel.id, type="database", config={"table": "patients"})
            db_session.add(source)
            db_session.flush()
            for column_name in columns:
                panel.base_columns.append(
                    BaseColumn(
                        id=column_name,
                        name=column_name.title(),
                        type="text",
                        data_source_id=source.id,
                        source_field=column_name,
                        properties={},
                    )
                )
            db_session.flush()

        db_session.commit()
        return panel

    return _make


@pytest.fixture
def view_factory(db_session):
    """Create a View of a Panel, published or not."""
    from panels.models import View, ViewFilter, ViewSort

    def _make(
        panel,
        name: str = "My view",
        visible_columns=(),
        published: bool = False,
        owner_user_id: str = OWNER_ID,
        filters=(),
        sorts=(),
    ) -> View:
        view = View(
            tenant_id=panel.tenant_id,
            panel_id=panel.id,
            owner_user_id=owner_user_id,
            name=name,
            visible_columns=list(visible_columns),
        )
        for column_id in filters:
            view.filters.append(ViewFilter(column_id=column_id, operator="is_not_null"))
        for position, column_id in enumerate(sorts):
            view.sorts.append(ViewSort(column_id=column_id, direction="asc", position=position))
        if published:
            view.publish()
        db_session.add(view)
        db_session.commit()
        return view

    return _make
