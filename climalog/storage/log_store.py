"""
Append-only binary log of sensor records.
Refreshes a sibling backup, then appends the records fetched from the sensor
in a single write.
"""

import asyncio
import fcntl
import os
import shutil
import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .record import RECORD_SIZE, MalformedRecord, decode
from ..ble.sensor_link import SensorLink
from ..utils.config import Config
from ..utils.logging import ProductionLogger, PerformanceMonitor


class LogStoreError(Exception):
    """Base exception for log store operations."""
    pass


class LogIoError(LogStoreError):
    """Exception for log file open, lock, seek, copy or write failures."""
    pass


class LogStore:
    """
    Owns the on-disk log and its backup during a sync.

    Features:
    - Exclusive file lock so syncs of one log never interleave
    - Backup refreshed before every sync (fail closed)
    - Resume point taken from the final stored record
    - All-or-nothing append of the downloaded records
    """

    def __init__(self, config: Config, logger: ProductionLogger,
                 performance_monitor: PerformanceMonitor, link: SensorLink):
        """
        Initialize log store.

        Args:
            config: Application configuration
            logger: Logger instance
            performance_monitor: Performance monitoring instance
            link: Sensor link used to download new records
        """
        self.config = config
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.link = link
        self.tz = config.timezone
        self.backup_extension = config.log_backup_extension
        self.lock_timeout = config.log_lock_timeout

    def backup_path(self, path: Union[str, Path]) -> Path:
        return Path(path).with_suffix(self.backup_extension)

    @asynccontextmanager
    async def _locked_log(self, path: Path):
        """
        Open the log for reading and appending under an exclusive lock.

        The lock is polled without blocking the event loop.

        Yields:
            file: Handle positioned at the end of the log
        """
        lock_acquired = False
        file_handle = None

        try:
            try:
                file_handle = open(path, 'a+b')
            except OSError as e:
                raise LogIoError(f"Cannot open log {path}: {e}") from e

            start_time = time.monotonic()
            while True:
                try:
                    fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start_time >= self.lock_timeout:
                        raise LogIoError(f"Could not lock {path} within {self.lock_timeout} seconds")
                    await asyncio.sleep(0.1)

            yield file_handle

        finally:
            if file_handle:
                if lock_acquired:
                    fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
                file_handle.close()

    def _create_backup(self, path: Path) -> Path:
        """Copy the log to its backup sibling; any failure aborts the sync."""
        backup_path = self.backup_path(path)
        try:
            shutil.copy2(path, backup_path)
        except OSError as e:
            raise LogIoError(f"Failed to back up {path} to {backup_path}: {e}") from e
        self.logger.debug(f"Created backup: {backup_path}")
        return backup_path

    def _read_last_timestamp(self, file_handle: BinaryIO, path: Path) -> Optional[datetime]:
        try:
            size = file_handle.seek(0, os.SEEK_END)
            if size == 0:
                return None
            if size % RECORD_SIZE:
                raise MalformedRecord(
                    f"Log {path} is {size} bytes, not a whole number of {RECORD_SIZE}-byte records"
                )
            file_handle.seek(size - RECORD_SIZE)
            tail = file_handle.read(RECORD_SIZE)
        except OSError as e:
            raise LogIoError(f"Cannot read last record of {path}: {e}") from e

        return decode(tail, self.tz).timestamp

    def last_timestamp(self, path: Union[str, Path]) -> Optional[datetime]:
        """
        Timestamp of the final stored record.

        Returns:
            Optional[datetime]: None for an empty or missing log
        """
        path = Path(path)
        if not path.exists():
            return None
        try:
            with open(path, 'rb') as f:
                return self._read_last_timestamp(f, path)
        except OSError as e:
            raise LogIoError(f"Cannot open log {path}: {e}") from e

    def read_log(self, path: Union[str, Path]) -> bytes:
        """Whole log contents; a missing log reads as empty."""
        path = Path(path)
        if not path.exists():
            self.logger.warning(f"Log {path} does not exist yet")
            return b""
        try:
            return path.read_bytes()
        except OSError as e:
            raise LogIoError(f"Cannot read log {path}: {e}") from e

    async def sync(self, path: Union[str, Path]) -> int:
        """
        Append the records the sensor holds beyond the last stored one.

        Args:
            path: Log file; created empty if missing. An existing log is
                backed up before anything is appended.

        Returns:
            int: Number of records appended

        Raises:
            LogIoError: If the log cannot be opened, locked, backed up or written
            MalformedRecord: If the log or the download is not whole records
            SensorLinkError: If the download fails; the log is left untouched
        """
        path = Path(path)
        start_time = time.monotonic()
        appended = 0
        success = False

        try:
            existed = path.exists()
            async with self._locked_log(path) as log:
                if existed:
                    self._create_backup(path)
                else:
                    self.logger.info(f"Created new log {path}, nothing to back up")

                since = self._read_last_timestamp(log, path)
                if since is None:
                    self.logger.info(f"Log {path} is empty, fetching full history")
                else:
                    self.logger.info(f"Resuming after {since.isoformat()}")

                data = await self.link.fetch(since)
                if len(data) % RECORD_SIZE:
                    raise MalformedRecord(f"Downloaded {len(data)} bytes, not whole {RECORD_SIZE}-byte records")

                if data:
                    try:
                        log.seek(0, os.SEEK_END)
                        log.write(data)
                        log.flush()
                        os.fsync(log.fileno())
                    except OSError as e:
                        raise LogIoError(f"Failed to append to {path}: {e}") from e

                appended = len(data) // RECORD_SIZE
                self.logger.info(f"Appended {appended} records to {path}")
                success = True
                return appended
        finally:
            self.performance_monitor.log_sync(time.monotonic() - start_time, appended, success)
