"""
Shared pytest fixtures for ride telemetry tests.
"""

import os
import sys
import pytest
import tempfile
import json

# Add project root to path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from ride_telemetry.config import EngineConfig  # noqa: E402
from ride_telemetry.data.blob_store import MemoryBlobStore  # noqa: E402
from ride_telemetry.utils.clock import ManualClock  # noqa: E402
from tests.fixtures.ride_test_data import START_MS, FakeLocator  # noqa: E402


@pytest.fixture
def temp_settings_file():
    """Create a temporary settings file for testing SettingsManager."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        f.write('{}')
        temp_path = f.name
    yield temp_path
    # Cleanup
    for path in (temp_path, temp_path + '.tmp'):
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture
def temp_settings_with_data():
    """Create a temporary settings file with engine overrides."""
    test_data = {
        "ride": {
            "warmup_timeout_s": 20,
            "hysteresis_mps": 0.25,
            "storage_key": "rides",
            "debug": True
        },
        "display": {
            "units": "metric"
        }
    }
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(test_data, f)
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def clock():
    """Manual clock parked at the test epoch."""
    return ManualClock(START_MS)


@pytest.fixture
def locator(clock):
    """Locator that grants permission and is driven by the test."""
    return FakeLocator(clock)


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def engine_config():
    """Default config with a short warm-up so failing tests stay fast."""
    return EngineConfig(warmup_timeout_s=5.0)


@pytest.fixture
def engine(locator, blob_store, clock, engine_config):
    from ride_telemetry.engine import RideEngine
    return RideEngine(locator, blob_store, clock, engine_config)
