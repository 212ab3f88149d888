"""
Command-line interface for climalog.
Provides sync, report, show and config commands using click and rich.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..ble.sensor_link import SensorLink, SensorLinkError
from ..report.html import format_temperature, write_report
from ..rollup.engine import Year, summarize_log
from ..storage.log_store import LogStore, LogStoreError
from ..storage.record import RecordError
from ..utils.config import Config, ConfigurationError
from ..utils.logging import PerformanceMonitor, ProductionLogger, setup_logging


class CLIError(Exception):
    """Base exception for CLI operations."""
    pass


class ClimalogCLI:
    """
    Wires configuration, logging, the sensor link and the log store together
    for the click commands.
    """

    def __init__(self, env_file: Optional[str] = None):
        self.console = Console()
        self.env_file = env_file
        self.config: Optional[Config] = None
        self.logger: Optional[ProductionLogger] = None
        self.performance_monitor: Optional[PerformanceMonitor] = None
        self.log_store: Optional[LogStore] = None

    def initialize(self):
        """Initialize all components with error handling."""
        try:
            self.config = Config(self.env_file)
            self.config.validate_configuration()

            self.logger = setup_logging(self.config)
            self.performance_monitor = PerformanceMonitor()

            link = SensorLink(self.config, self.logger, self.performance_monitor)
            self.log_store = LogStore(self.config, self.logger, self.performance_monitor, link)

            self.logger.debug("CLI components initialized successfully")

        except ConfigurationError as e:
            raise CLIError(f"Configuration error: {e}") from e
        except OSError as e:
            raise CLIError(f"Initialization error: {e}") from e

    def _log_path(self, log: Optional[str]) -> Path:
        return Path(log) if log else self.config.log_file_path

    def _load_summaries(self, log: Optional[str]) -> List[Year]:
        data = self.log_store.read_log(self._log_path(log))
        return summarize_log(data, self.config.timezone)

    def sync(self, log: Optional[str]):
        path = self._log_path(log)
        with self.console.status(f"[bold blue]Syncing {path} from sensor..."):
            appended = asyncio.run(self.log_store.sync(path))
        self.console.print(f"[green]Appended {appended} records to {path}[/green]")

    def report(self, log: Optional[str], output: Optional[str]):
        years = self._load_summaries(log)
        path = write_report(years, output or self.config.report_path, self.config.report_title)
        self.console.print(f"[green]Report written to {path}[/green]")

    def show(self, log: Optional[str]):
        path = self._log_path(log)
        years = self._load_summaries(log)
        if not years:
            self.console.print("[yellow]Log is empty[/yellow]")
            return

        table = Table(title="Monthly extrema")
        table.add_column("Month", style="cyan")
        table.add_column("Days", justify="right")
        table.add_column("Readings", justify="right")
        table.add_column("Max °C", justify="right", style="red")
        table.add_column("Min °C", justify="right", style="blue")
        table.add_column("Max %", justify="right")
        table.add_column("Min %", justify="right")

        for year in years:
            for month in year.details:
                s = month.summary
                table.add_row(
                    s.timestamp.strftime("%Y-%m"),
                    str(len(month.details)),
                    str(sum(1 for _ in month.leaves())),
                    format_temperature(s.max_temperature),
                    format_temperature(s.min_temperature),
                    str(s.max_humidity),
                    str(s.min_humidity),
                )
        self.console.print(table)

        last = self.log_store.last_timestamp(path)
        self.console.print(f"Next sync resumes after [bold]{last.isoformat()}[/bold]")

    def show_configuration(self):
        table = Table(title="Configuration")
        table.add_column("Section", style="cyan")
        table.add_column("Key")
        table.add_column("Value", style="green")
        for section, values in self.config.get_summary().items():
            for key, value in values.items():
                table.add_row(section, key, str(value))
        self.console.print(table)


def _run(ctx: click.Context, action):
    app: ClimalogCLI = ctx.obj
    try:
        app.initialize()
        action(app)
    except (CLIError, SensorLinkError, LogStoreError, RecordError) as e:
        app.console.print(Panel.fit(f"[red]{type(e).__name__}: {e}[/red]", border_style="red"))
        ctx.exit(1)


@click.group()
@click.version_option(version="1.0.0", prog_name="climalog")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Path to .env file")
@click.pass_context
def cli(ctx, env_file):
    """Sensor history sync and reporting."""
    ctx.obj = ClimalogCLI(env_file)


@cli.command()
@click.option("--log", "-l", type=click.Path(dir_okay=False), default=None, help="Log file (default: LOG_FILE_PATH)")
@click.pass_context
def sync(ctx, log):
    """Append new records from the sensor to the log."""
    _run(ctx, lambda app: app.sync(log))


@cli.command()
@click.option("--log", "-l", type=click.Path(dir_okay=False), default=None, help="Log file (default: LOG_FILE_PATH)")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="HTML file (default: REPORT_PATH)")
@click.pass_context
def report(ctx, log, output):
    """Render the log as a nested HTML report."""
    _run(ctx, lambda app: app.report(log, output))


@cli.command()
@click.option("--log", "-l", type=click.Path(dir_okay=False), default=None, help="Log file (default: LOG_FILE_PATH)")
@click.pass_context
def show(ctx, log):
    """Print monthly extrema."""
    _run(ctx, lambda app: app.show(log))


@cli.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration."""
    _run(ctx, lambda app: app.show_configuration())


def main():
    cli()
