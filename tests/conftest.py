"""Shared test fixtures and configuration for consentkeeper tests."""

import sys
from pathlib import Path

import pytest

# Add project root and the tests directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from consentkeeper.config import ConfigLoader, ConsentKeeperConfig
from consentkeeper.cookies.models import CookieRecord, Preferences
from consentkeeper.cookies.store import MemoryCookieStore
from consentkeeper.service.background import BackgroundService
from consentkeeper.service.client import ServiceClient
from consentkeeper.storage import JsonStateStore

CONFIG_DIR = Path(__file__).parent.parent / "config"


@pytest.fixture
def test_config() -> ConsentKeeperConfig:
    """Configuration with the fast test timings."""
    return ConfigLoader(CONFIG_DIR).load_config("test")


@pytest.fixture
def state():
    """In-memory shared state."""
    return JsonStateStore()


@pytest.fixture
def cookie_store():
    return MemoryCookieStore()


@pytest.fixture
async def service(test_config, cookie_store, state):
    """Running background service over the memory cookie store."""
    background = BackgroundService(test_config, cookie_store, state)
    await background.start()
    yield background
    await background.stop()


@pytest.fixture
def client(service):
    return ServiceClient(service, timeout_s=2.0)


@pytest.fixture
def strict_preferences():
    """Preferences allowing only essential cookies."""
    return Preferences()


@pytest.fixture
def make_cookie():
    """Factory for cookie records."""
    def _make(name, domain="example.com", value="v", partition_id="default", **kwargs):
        return CookieRecord(name=name, domain=domain, value=value, partition_id=partition_id, **kwargs)
    return _make
