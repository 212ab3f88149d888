"""
Environment-driven settings for climalog.
A .env file, when present, seeds the process environment; every value is read
lazily through a typed getter so tests can change the environment at will.
"""

import os
import uuid
from datetime import timedelta, timezone, tzinfo
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union
from dotenv import load_dotenv
import logging

V = TypeVar('V')

_TRUTHY = ('true', '1', 'yes', 'on', 'enabled')
_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigurationError(Exception):
    """A setting is missing, unparsable or out of range."""
    pass


class Config:
    """
    Typed view over the environment.

    Sensor, BLE, log store, report and logging settings are exposed as
    properties; each read goes back to os.environ.
    """

    def __init__(self, env_file: Optional[str] = None):
        """
        Args:
            env_file: .env file to load; defaults to .env in the working directory.
                Variables already set in the environment win over the file.
        """
        self.logger = logging.getLogger(__name__)

        env_path = Path(env_file) if env_file is not None else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            self.logger.info(f"Loaded settings from {env_path}")
        else:
            self.logger.debug(f"No settings file at {env_path}, reading the environment only")

    def _lookup(self, key: str, default: Optional[V], convert: Callable[[str], V], kind: str) -> V:
        raw = os.getenv(key)
        if raw is None:
            if default is None:
                raise ConfigurationError(f"Setting '{key}' is required but not set")
            return default
        try:
            return convert(raw)
        except ValueError:
            raise ConfigurationError(f"Setting '{key}' must be {kind}, got '{raw}'")

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        return self._lookup(key, default, str, "a string")

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        return self._lookup(key, default, int, "an integer")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        return self._lookup(key, default, float, "a number")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        return self._lookup(key, default, lambda raw: raw.strip().lower() in _TRUTHY, "a boolean")

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Path setting; relative values resolve against the working directory."""
        path = Path(self._lookup(key, None if default is None else str(default), str, "a path")).expanduser()
        return path if path.is_absolute() else Path.cwd() / path

    # Sensor
    @property
    def sensor_name_marker(self) -> str:
        return self.get_str("SENSOR_NAME_MARKER", "LYWSD02")

    @property
    def sensor_count_char_uuid(self) -> str:
        return self.get_str("SENSOR_COUNT_CHAR_UUID", "ebe0ccb9-7a0a-4b0c-8a1a-6ff2997da3a6").lower()

    @property
    def sensor_data_char_uuid(self) -> str:
        return self.get_str("SENSOR_DATA_CHAR_UUID", "ebe0ccbc-7a0a-4b0c-8a1a-6ff2997da3a6").lower()

    @property
    def sensor_utc_offset_minutes(self) -> int:
        return self.get_int("SENSOR_UTC_OFFSET_MINUTES", 480)

    @property
    def timezone(self) -> tzinfo:
        """Fixed-offset zone the sensor clock and the calendar buckets use."""
        return timezone(timedelta(minutes=self.sensor_utc_offset_minutes))

    # BLE
    @property
    def ble_adapter(self) -> str:
        return self.get_str("BLE_ADAPTER", "auto")

    @property
    def ble_scan_timeout(self) -> float:
        return self.get_float("BLE_SCAN_TIMEOUT", 30.0)

    @property
    def ble_connect_timeout(self) -> float:
        return self.get_float("BLE_CONNECT_TIMEOUT", 20.0)

    @property
    def ble_notify_timeout(self) -> float:
        return self.get_float("BLE_NOTIFY_TIMEOUT", 10.0)

    # Log store
    @property
    def log_file_path(self) -> Path:
        return self.get_path("LOG_FILE_PATH", "./data/sensor.mi")

    @property
    def log_backup_extension(self) -> str:
        return self.get_str("LOG_BACKUP_EXTENSION", ".bak")

    @property
    def log_lock_timeout(self) -> int:
        return self.get_int("LOG_LOCK_TIMEOUT", 30)

    # Report
    @property
    def report_path(self) -> Path:
        return self.get_path("REPORT_PATH", "./index.html")

    @property
    def report_title(self) -> str:
        return self.get_str("REPORT_TITLE", "Sensor history")

    # Logging
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    def _sensor_problems(self) -> List[str]:
        problems = []
        if not self.sensor_name_marker.strip():
            problems.append("SENSOR_NAME_MARKER cannot be empty")
        for key, value in (("SENSOR_COUNT_CHAR_UUID", self.sensor_count_char_uuid),
                           ("SENSOR_DATA_CHAR_UUID", self.sensor_data_char_uuid)):
            try:
                uuid.UUID(value)
            except ValueError:
                problems.append(f"{key} must be a UUID, got '{value}'")
        if abs(self.sensor_utc_offset_minutes) >= 24 * 60:
            problems.append("SENSOR_UTC_OFFSET_MINUTES must be within +/- 24 hours")
        return problems

    def _ble_problems(self) -> List[str]:
        timeouts = (("BLE_SCAN_TIMEOUT", self.ble_scan_timeout),
                    ("BLE_CONNECT_TIMEOUT", self.ble_connect_timeout),
                    ("BLE_NOTIFY_TIMEOUT", self.ble_notify_timeout))
        return [f"{key} must be positive, got {value}" for key, value in timeouts if value <= 0]

    def _log_store_problems(self) -> List[str]:
        problems = []
        extension = self.log_backup_extension
        if not extension.startswith(".") or len(extension) < 2:
            problems.append(f"LOG_BACKUP_EXTENSION must look like '.bak', got '{extension}'")
        if self.log_lock_timeout < 0:
            problems.append("LOG_LOCK_TIMEOUT cannot be negative")
        return problems

    def _logging_problems(self) -> List[str]:
        if self.log_level not in _LOG_LEVELS:
            return [f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}, got '{self.log_level}'"]
        return []

    def validate_configuration(self) -> bool:
        """
        Check every section and report all problems at once.

        Returns:
            bool: True when nothing is wrong

        Raises:
            ConfigurationError: Listing each problem found
        """
        problems = []
        for check in (self._sensor_problems, self._ble_problems,
                      self._log_store_problems, self._logging_problems):
            try:
                problems.extend(check())
            except ConfigurationError as e:
                problems.append(str(e))

        if problems:
            raise ConfigurationError("Invalid settings:\n" + "\n".join(f"- {problem}" for problem in problems))

        return True

    def get_summary(self) -> dict:
        """Effective settings grouped by section, for display."""
        return {
            'sensor': {
                'name_marker': self.sensor_name_marker,
                'count_char_uuid': self.sensor_count_char_uuid,
                'data_char_uuid': self.sensor_data_char_uuid,
                'utc_offset_minutes': self.sensor_utc_offset_minutes,
            },
            'ble': {
                'adapter': self.ble_adapter,
                'scan_timeout': self.ble_scan_timeout,
                'connect_timeout': self.ble_connect_timeout,
                'notify_timeout': self.ble_notify_timeout,
            },
            'log_store': {
                'file_path': str(self.log_file_path),
                'backup_extension': self.log_backup_extension,
                'lock_timeout': self.log_lock_timeout,
            },
            'report': {
                'path': str(self.report_path),
                'title': self.report_title,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
            },
        }
