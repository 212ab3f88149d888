"""
climalog - history sync and reporting for BLE temperature/humidity sensors.

Pulls the records a LYWSD02-class sensor has stored since the last sync,
appends them to a compact binary log and rolls the log up into nested
Year/Month/Day min/max summaries.

Features:
- Resumable history download over BLE
- Backup-then-append log persistence
- Generic hierarchical min/max rollup
- HTML report and command-line interface
- Configuration via environment variables and .env files
"""

__version__ = "1.0.0"
__description__ = "BLE sensor history sync and min/max reporting"

from .utils.config import Config, ConfigurationError
from .utils.logging import ProductionLogger, PerformanceMonitor
from .storage.record import Reading, MalformedRecord, decode, encode, decode_log
from .storage.log_store import LogStore, LogIoError
from .ble.sensor_link import (
    SensorLink,
    SensorLinkError,
    AdapterUnavailable,
    SensorNotFound,
    CharacteristicMissing,
    TransportError
)
from .rollup.engine import Summary, Day, Month, Year, rollup, summarize, summarize_log

__all__ = [
    "Config",
    "ConfigurationError",
    "ProductionLogger",
    "PerformanceMonitor",
    "Reading",
    "MalformedRecord",
    "decode",
    "encode",
    "decode_log",
    "LogStore",
    "LogIoError",
    "SensorLink",
    "SensorLinkError",
    "AdapterUnavailable",
    "SensorNotFound",
    "CharacteristicMissing",
    "TransportError",
    "Summary",
    "Day",
    "Month",
    "Year",
    "rollup",
    "summarize",
    "summarize_log"
]
