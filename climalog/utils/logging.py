"""
Logging setup for climalog.
Colored console output, a rotating application log, a separate rotating trace
for the BLE link, and a small monitor for sync timings and counters.
"""

import logging
import logging.handlers
import sys
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
import colorlog

CONSOLE_FORMAT = '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s'
FILE_FORMAT = '%(asctime)s [%(levelname)8s] %(name)s [%(process)d] %(message)s'
BLE_FORMAT = '%(asctime)s [%(levelname)s] BLE: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LEVEL_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}


class ProductionLogger:
    """
    Installs the handlers on the root logger and logs on behalf of the app.

    climalog.log receives everything at or above log_level; sensor_link.log
    additionally keeps the climalog.ble records on their own.
    """

    def __init__(self,
                 app_name: str = "climalog",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5,
                 enable_console: bool = True):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self._logger = logging.getLogger(app_name)

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._install_root_handlers()
        self._install_ble_trace()

    def _rotating_handler(self, filename: str, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        handler.setFormatter(formatter)
        return handler

    def _install_root_handlers(self):
        root = logging.getLogger()
        root.setLevel(self.log_level)
        root.handlers.clear()

        if self.enable_console:
            console = colorlog.StreamHandler(sys.stderr)
            console.setLevel(self.log_level)
            console.setFormatter(colorlog.ColoredFormatter(
                CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LEVEL_COLORS
            ))
            root.addHandler(console)

        app_file = self._rotating_handler(
            f"{self.app_name}.log", logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
        )
        app_file.setLevel(self.log_level)
        root.addHandler(app_file)

    def _install_ble_trace(self):
        """Transfer traces from climalog.ble also go to their own file."""
        ble = logging.getLogger('climalog.ble')
        ble.handlers.clear()
        ble.addHandler(self._rotating_handler("sensor_link.log", logging.Formatter(BLE_FORMAT)))

    def get_logger(self, name: str = None) -> logging.Logger:
        """Named logger under the installed handlers; the root logger when name is empty."""
        return logging.getLogger(name) if name else logging.getLogger()

    def debug(self, message: str, *args, **kwargs):
        self._logger.debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        self._logger.info(message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self._logger.warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self._logger.error(message, *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        self._logger.critical(message, *args, **kwargs)


class PerformanceMonitor:
    """
    In-memory timings and counters for one process.

    Every metric is a list of {'value', 'timestamp'} samples; sync runs are
    kept separately with their outcome.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger('climalog.performance')
        self.started_at = datetime.now()
        self.sync_runs = []
        self.samples = defaultdict(list)

    def log_sync(self, duration: float, records_appended: int, success: bool):
        """Record the outcome of one LogStore sync."""
        self.sync_runs.append({
            'duration': duration,
            'records_appended': records_appended,
            'success': success,
            'timestamp': datetime.now()
        })
        self.logger.info(f"SYNC duration={duration:.2f}s records={records_appended} success={success}")

    def record_metric(self, metric_name: str, value: float):
        self.samples[metric_name].append({'value': value, 'timestamp': datetime.now()})
        self.logger.debug(f"METRIC {metric_name}={value}")

    @contextmanager
    def measure_time(self, operation_name: str):
        """Record the wall time of the block as <operation_name>_duration, even if it raises."""
        started = time.monotonic()
        try:
            yield
        finally:
            elapsed = time.monotonic() - started
            self.record_metric(f"{operation_name}_duration", elapsed)
            self.logger.info(f"TIMING {operation_name}={elapsed:.3f}s")

    def get_performance_summary(self) -> dict:
        succeeded = [run for run in self.sync_runs if run['success']]
        return {
            'uptime_seconds': (datetime.now() - self.started_at).total_seconds(),
            'syncs': {
                'total': len(self.sync_runs),
                'successful': len(succeeded),
                'records_appended': sum(run['records_appended'] for run in succeeded),
                'avg_duration': sum(run['duration'] for run in succeeded) / len(succeeded) if succeeded else 0,
            }
        }

    def get_metrics(self) -> dict:
        """Snapshot of every sample list, sync runs included under 'sync_runs'."""
        metrics = {name: list(values) for name, values in self.samples.items()}
        metrics['sync_runs'] = list(self.sync_runs)
        return metrics


def setup_logging(config) -> ProductionLogger:
    """Build the ProductionLogger described by config."""
    return ProductionLogger(
        log_dir=str(config.log_dir),
        log_level=config.log_level,
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console
    )
