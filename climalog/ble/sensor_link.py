"""
BLE link to a LYWSD02-class temperature/humidity sensor.
Discovers the sensor, negotiates its history characteristics and pulls the
stored records newer than a resume point.
"""

import asyncio
import struct
from contextlib import contextmanager
from datetime import datetime
from typing import AsyncIterator, Optional, Set, Tuple

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from ..storage.record import RECORD_SIZE, MalformedRecord, record_timestamp
from ..utils.config import Config
from ..utils.logging import ProductionLogger, PerformanceMonitor

# Each history notification is a 4-byte index followed by one record.
NOTIFICATION_PREFIX_SIZE = 4

DiscoveryEvent = Tuple[BLEDevice, AdvertisementData]


class SensorLinkError(Exception):
    """Base exception for sensor link operations."""
    pass


class AdapterUnavailable(SensorLinkError):
    """No usable Bluetooth adapter."""
    pass


class SensorNotFound(SensorLinkError):
    """Discovery ended without a device matching the name marker."""
    pass


class CharacteristicMissing(SensorLinkError):
    """A required GATT characteristic is absent or lacks the needed property."""

    def __init__(self, which: str, uuid: str, prop: str):
        self.which = which
        self.uuid = uuid
        super().__init__(f"Can't find '{which}' characteristic {uuid} supporting {prop}")


class TransportError(SensorLinkError):
    """A connect, read, subscribe or notification step failed."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage} failed: {message}")


def parse_record_count(payload: bytes) -> int:
    """Total stored records, from bytes [4:8] of the count characteristic."""
    if len(payload) < 8:
        raise TransportError("read count", f"expected at least 8 bytes, got {len(payload)}")
    return struct.unpack_from('<I', payload, 4)[0]


class SensorLink:
    """
    Resumable history download from the sensor.

    Features:
    - Name-marker discovery with concurrent probes and a scan deadline
    - Characteristic negotiation by UUID and property
    - Resume threshold filtering of the notification stream
    - Disconnect on every exit path
    """

    def __init__(self, config: Config, logger: ProductionLogger, performance_monitor: PerformanceMonitor):
        """
        Initialize the sensor link.

        Args:
            config: Application configuration
            logger: Logger instance
            performance_monitor: Performance monitoring instance
        """
        self.config = config
        self.logger = logger.get_logger("climalog.ble")
        self.performance_monitor = performance_monitor

        self.name_marker = config.sensor_name_marker
        self.count_char_uuid = config.sensor_count_char_uuid.lower()
        self.data_char_uuid = config.sensor_data_char_uuid.lower()
        self.adapter = config.ble_adapter
        self.scan_timeout = config.ble_scan_timeout
        self.connect_timeout = config.ble_connect_timeout
        self.notify_timeout = config.ble_notify_timeout

    @contextmanager
    def _transport_stage(self, stage: str):
        """Translate bleak, OS and timeout failures of one step into TransportError."""
        try:
            yield
        except asyncio.TimeoutError as e:
            raise TransportError(stage, "timed out") from e
        except (BleakError, OSError) as e:
            raise TransportError(stage, str(e) or type(e).__name__) from e

    async def fetch(self, since: Optional[datetime] = None) -> bytes:
        """
        Download the records stored on the sensor.

        Args:
            since: Resume point; only records strictly newer are returned.
                None returns the full history.

        Returns:
            bytes: Concatenated records in device order

        Raises:
            SensorLinkError: On any discovery, negotiation or transfer failure
            MalformedRecord: If a notification does not carry exactly one record
        """
        with self.performance_monitor.measure_time("sensor_fetch"):
            device = await self.discover()
            return await self.download(device, since)

    async def discover(self) -> BLEDevice:
        """Scan until a device advertising the name marker is confirmed."""
        adapter = None if self.adapter == "auto" else self.adapter
        self.logger.info(f"Scanning for '{self.name_marker}' (adapter: {self.adapter}, timeout: {self.scan_timeout}s)")

        try:
            async with BleakScanner(adapter=adapter) as scanner:
                device = await asyncio.wait_for(
                    self.find_sensor(scanner.advertisement_data()),
                    timeout=self.scan_timeout
                )
        except asyncio.TimeoutError as e:
            raise SensorNotFound(f"No '{self.name_marker}' device seen within {self.scan_timeout}s") from e
        except (BleakError, OSError) as e:
            raise AdapterUnavailable(f"Bluetooth adapter unavailable: {e}") from e

        self.logger.info(f"Found sensor {device.address} ({device.name})")
        return device

    async def find_sensor(self, events: AsyncIterator[DiscoveryEvent]) -> BLEDevice:
        """
        Consume discovery events until a probe confirms the sensor.

        Every newly seen address gets its own probe task. Probes report
        matches through a one-slot queue, and a queued match is always taken
        before the next scan event.

        Args:
            events: Async stream of (device, advertisement) pairs

        Returns:
            BLEDevice: First confirmed sensor

        Raises:
            SensorNotFound: If the stream ends and no probe matched
        """
        matches: asyncio.Queue = asyncio.Queue(maxsize=1)
        probes: Set[asyncio.Task] = set()
        seen: Set[str] = set()
        next_event: Optional[asyncio.Future] = None
        next_match: Optional[asyncio.Future] = None

        try:
            while True:
                if not matches.empty():
                    return matches.get_nowait()

                if next_event is None:
                    next_event = asyncio.ensure_future(events.__anext__())
                if next_match is None:
                    next_match = asyncio.ensure_future(matches.get())

                done, _ = await asyncio.wait({next_event, next_match}, return_when=asyncio.FIRST_COMPLETED)
                if next_match in done:
                    return next_match.result()

                event, next_event = next_event, None
                try:
                    device, advertisement = event.result()
                except StopAsyncIteration:
                    break

                if device.address in seen:
                    continue
                seen.add(device.address)
                self.logger.debug(f"Discovered {device.address}, probing")

                probe = asyncio.ensure_future(self._probe(device, advertisement, matches))
                probes.add(probe)
                probe.add_done_callback(probes.discard)

            # Stream exhausted: probes already running still get to report.
            # The pending get() is cancelled first so a late match stays queued.
            next_match.cancel()
            next_match = None
            for outcome in await asyncio.gather(*probes, return_exceptions=True):
                if isinstance(outcome, Exception):
                    self.logger.warning(f"Probe failed: {outcome}")
            if not matches.empty():
                return matches.get_nowait()
            raise SensorNotFound(f"Scan ended without a '{self.name_marker}' device ({len(seen)} devices seen)")

        finally:
            for future in (next_event, next_match):
                if future is not None and not future.done():
                    future.cancel()
            for probe in list(probes):
                probe.cancel()

    async def _probe(self, device: BLEDevice, advertisement: AdvertisementData, matches: asyncio.Queue):
        """Report device through matches if its advertised name carries the marker."""
        name = advertisement.local_name or device.name
        if not name or self.name_marker not in name:
            return

        try:
            matches.put_nowait(device)
        except asyncio.QueueFull:
            self.logger.debug(f"Dropping match {device.address}, another sensor was confirmed first")

    def find_characteristics(self, client: BleakClient) -> Tuple[BleakGATTCharacteristic, BleakGATTCharacteristic]:
        """
        Locate the record-count and record-data characteristics.

        Returns:
            Tuple of (count characteristic, data characteristic)

        Raises:
            CharacteristicMissing: If either is absent
        """
        count_char = None
        data_char = None

        for char in client.services.characteristics.values():
            uuid = str(char.uuid).lower()
            if uuid == self.data_char_uuid and "notify" in char.properties:
                data_char = char
            elif uuid == self.count_char_uuid and "read" in char.properties:
                count_char = char

        if count_char is None:
            raise CharacteristicMissing("count", self.count_char_uuid, "read")
        if data_char is None:
            raise CharacteristicMissing("data", self.data_char_uuid, "notify")

        return count_char, data_char

    async def download(self, device: BLEDevice, since: Optional[datetime] = None) -> bytes:
        """Connect to device and collect its records newer than since."""
        client = BleakClient(device, timeout=self.connect_timeout)

        try:
            if not client.is_connected:
                with self._transport_stage("connect"):
                    await client.connect()
                self.logger.info(f"Connected to {device.address}")

            count_char, data_char = self.find_characteristics(client)

            with self._transport_stage("read count"):
                count = parse_record_count(await client.read_gatt_char(count_char))
            self.logger.info(f"Sensor holds {count} records")

            return await self._collect(client, data_char, count, since)

        finally:
            try:
                await client.disconnect()
                self.logger.debug(f"Disconnected from {device.address}")
            except Exception as e:
                self.logger.warning(f"Error disconnecting from {device.address}: {e}")

    async def _collect(self, client: BleakClient, data_char: BleakGATTCharacteristic,
                       count: int, since: Optional[datetime]) -> bytes:
        """Consume exactly count notifications, keeping records newer than since."""
        if count == 0:
            return b""

        threshold = int(since.timestamp()) if since is not None else None
        notifications: asyncio.Queue = asyncio.Queue()

        def on_notify(_: BleakGATTCharacteristic, data: bytearray):
            notifications.put_nowait(bytes(data))

        with self._transport_stage("subscribe"):
            await client.start_notify(data_char, on_notify)

        buffer = bytearray()
        skipped = 0
        try:
            for index in range(count):
                with self._transport_stage(f"notification {index + 1}/{count}"):
                    payload = await asyncio.wait_for(notifications.get(), timeout=self.notify_timeout)

                record = payload[NOTIFICATION_PREFIX_SIZE:]
                if len(record) != RECORD_SIZE:
                    raise MalformedRecord(
                        f"Notification {index + 1} carries {len(record)} record bytes, expected {RECORD_SIZE}"
                    )

                if threshold is not None and record_timestamp(record) <= threshold:
                    skipped += 1
                    continue
                buffer.extend(record)
        finally:
            try:
                await client.stop_notify(data_char)
            except Exception as e:
                self.logger.warning(f"Error stopping notifications: {e}")

        kept = len(buffer) // RECORD_SIZE
        self.logger.info(f"Collected {kept} new records ({skipped} already stored)")
        self.performance_monitor.record_metric("records_downloaded", kept)
        return bytes(buffer)
