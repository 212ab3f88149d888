"""
Pytest configuration and shared fixtures for climalog tests.
Provides mock configuration, logger and performance monitor objects.
"""

import pytest
from datetime import timedelta, timezone
from pathlib import Path
from unittest.mock import Mock, MagicMock

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from climalog.utils.config import Config
from climalog.utils.logging import ProductionLogger, PerformanceMonitor
from tests.fixtures.sensor_data import SensorDataFixtures


@pytest.fixture
def mock_config():
    """Create a mock configuration for testing."""
    config = Mock(spec=Config)

    # Sensor configuration
    config.sensor_name_marker = "LYWSD02"
    config.sensor_count_char_uuid = "ebe0ccb9-7a0a-4b0c-8a1a-6ff2997da3a6"
    config.sensor_data_char_uuid = "ebe0ccbc-7a0a-4b0c-8a1a-6ff2997da3a6"
    config.sensor_utc_offset_minutes = 480
    config.timezone = timezone(timedelta(hours=8))

    # BLE configuration
    config.ble_adapter = "auto"
    config.ble_scan_timeout = 2.0
    config.ble_connect_timeout = 2.0
    config.ble_notify_timeout = 0.5

    # Log store configuration
    config.log_backup_extension = ".bak"
    config.log_lock_timeout = 0

    return config


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock(spec=ProductionLogger)
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    # Component loggers resolve to the same mock so calls stay observable
    logger.get_logger = Mock(return_value=logger)
    return logger


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    monitor = Mock(spec=PerformanceMonitor)
    monitor.record_metric = Mock()
    monitor.log_sync = Mock()
    monitor.measure_time = Mock()

    # Mock the context manager for measure_time
    mock_context = MagicMock()
    mock_context.__enter__ = Mock(return_value=mock_context)
    mock_context.__exit__ = Mock(return_value=None)
    monitor.measure_time.return_value = mock_context

    return monitor


@pytest.fixture
def fixtures():
    return SensorDataFixtures()


@pytest.fixture
def utc8():
    return timezone(timedelta(hours=8))


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.path):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.path):
            item.add_marker(pytest.mark.integration)
