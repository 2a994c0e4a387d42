"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
- Config fixtures: NSX connection and sync settings
- Mock fixtures: NSX client with async methods mocked
- Data fixtures: custom resources and parent configuration

Plain builders live in ``tests/factories.py``.
"""

from unittest.mock import AsyncMock

import pytest

from src.nsxsync.config import NSXConfig, SyncConfig
from src.nsxsync.core.allocator import RealizedStatePoller
from src.nsxsync.models.crs import ChildSubnet
from src.nsxsync.models.parent_config import ParentConfig
from src.nsxsync.nsx.client import NSXClient
from src.nsxsync.observability.metrics import reset_global_collector
from tests.factories import CLUSTER, make_child_subnet, make_parent_config, realized_entities


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Give every test its own metrics collector."""
    reset_global_collector()
    yield
    reset_global_collector()


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def nsx_config() -> NSXConfig:
    return NSXConfig(
        base_url="https://nsx.example.com",
        username="admin",
        password="secret",
        cluster=CLUSTER,
    )


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(realize_max_retries=3, realize_interval=0)


# =============================================================================
# Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_client() -> AsyncMock:
    """NSX client whose coroutine methods are AsyncMocks returning nothing."""
    client = AsyncMock(spec=NSXClient)
    client.search_resources.return_value = []
    client.patch_infra.return_value = None
    client.patch_org_root.return_value = None
    client.list_realized_entities.return_value = realized_entities()
    return client


@pytest.fixture
def poller(mock_client: AsyncMock) -> RealizedStatePoller:
    return RealizedStatePoller(mock_client, max_retries=3, interval=0, sleep=AsyncMock())


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def child_subnet() -> ChildSubnet:
    return make_child_subnet()


@pytest.fixture
def parent_config() -> ParentConfig:
    return make_parent_config()
