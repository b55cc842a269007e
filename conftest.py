"""
Shared fixtures for the sensorhub tests
"""

import pytest
from unittest.mock import Mock

from sensorhub.database import Database
from sensorhub.events import EventPublisher
from sensorhub.hierarchy_store import HierarchyStore


@pytest.fixture
def database(tmp_path):
    """Initialized database in a temporary file, without connection retries"""
    db = Database(path=str(tmp_path / "sensorhub.db"), retry_delay_ms=0, max_retries=0)
    db.init_schema()
    return db


@pytest.fixture
def publisher():
    return Mock(spec=EventPublisher)


@pytest.fixture
def store(database, publisher):
    return HierarchyStore(database, publisher=publisher)
