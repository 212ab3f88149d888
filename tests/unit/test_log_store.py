"""
Unit tests for the append-only log store.
Tests backup, resume threshold, all-or-nothing append and locking.
"""

import asyncio
import fcntl
import pytest
from unittest.mock import AsyncMock, Mock, patch

from climalog.ble.sensor_link import SensorNotFound, TransportError
from climalog.storage.log_store import LogIoError, LogStore
from climalog.storage.record import MalformedRecord
from tests.fixtures.sensor_data import encode_all


@pytest.fixture
def link():
    link = Mock()
    link.fetch = AsyncMock(return_value=b"")
    return link


@pytest.fixture
def store(mock_config, mock_logger, mock_performance_monitor, link):
    return LogStore(mock_config, mock_logger, mock_performance_monitor, link)


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "sensor.mi"


class TestPaths:
    def test_backup_path_replaces_extension(self, store, log_path):
        assert store.backup_path(log_path) == log_path.parent / "sensor.bak"


class TestLastTimestamp:
    def test_missing_log(self, store, log_path):
        assert store.last_timestamp(log_path) is None

    def test_empty_log(self, store, log_path):
        log_path.write_bytes(b"")
        assert store.last_timestamp(log_path) is None

    def test_final_record(self, store, log_path, fixtures):
        readings = fixtures.example_readings()
        log_path.write_bytes(encode_all(readings))
        assert store.last_timestamp(log_path) == readings[-1].timestamp

    def test_trailing_fragment(self, store, log_path, fixtures):
        log_path.write_bytes(encode_all(fixtures.example_readings()) + bytes(9))
        with pytest.raises(MalformedRecord):
            store.last_timestamp(log_path)


class TestReadLog:
    def test_missing_log_reads_empty(self, store, log_path):
        assert store.read_log(log_path) == b""

    def test_reads_contents(self, store, log_path, fixtures):
        data = encode_all(fixtures.example_readings())
        log_path.write_bytes(data)
        assert store.read_log(log_path) == data

    def test_directory_is_io_error(self, store, tmp_path):
        with pytest.raises(LogIoError):
            store.read_log(tmp_path)


class TestSync:
    """Backup-then-append sync."""

    @pytest.mark.asyncio
    async def test_empty_log_fetches_full_history(self, store, link, log_path, fixtures):
        log_path.write_bytes(b"")
        data = encode_all(fixtures.example_readings())
        link.fetch.return_value = data

        appended = await store.sync(log_path)

        assert appended == 3
        link.fetch.assert_awaited_once_with(None)
        assert log_path.read_bytes() == data
        assert store.backup_path(log_path).read_bytes() == b""

    @pytest.mark.asyncio
    async def test_missing_log_is_created_without_backup(self, store, link, log_path, fixtures):
        data = encode_all(fixtures.example_readings())
        link.fetch.return_value = data

        assert await store.sync(log_path) == 3
        link.fetch.assert_awaited_once_with(None)
        assert log_path.read_bytes() == data
        assert not store.backup_path(log_path).exists()

    @pytest.mark.asyncio
    async def test_resumes_after_last_record(self, store, link, log_path, fixtures):
        r1, r2, r3 = fixtures.example_readings()
        existing = encode_all([r1, r2])
        log_path.write_bytes(existing)
        link.fetch.return_value = encode_all([r3])

        assert await store.sync(log_path) == 1

        link.fetch.assert_awaited_once_with(r2.timestamp)
        assert log_path.read_bytes() == existing + encode_all([r3])
        assert store.backup_path(log_path).read_bytes() == existing

    @pytest.mark.asyncio
    async def test_no_new_records_still_refreshes_backup(self, store, link, log_path, fixtures):
        existing = encode_all(fixtures.example_readings())
        log_path.write_bytes(existing)
        store.backup_path(log_path).write_bytes(b"stale")

        assert await store.sync(log_path) == 0

        assert log_path.read_bytes() == existing
        assert store.backup_path(log_path).read_bytes() == existing

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [SensorNotFound("gone"), TransportError("subscribe", "boom")])
    async def test_fetch_failure_leaves_log_untouched(self, store, link, log_path, fixtures,
                                                      mock_performance_monitor, error):
        existing = encode_all(fixtures.example_readings()[:2])
        log_path.write_bytes(existing)
        link.fetch.side_effect = error

        with pytest.raises(type(error)):
            await store.sync(log_path)

        assert log_path.read_bytes() == existing
        assert store.backup_path(log_path).read_bytes() == existing
        mock_performance_monitor.log_sync.assert_called_once()
        assert mock_performance_monitor.log_sync.call_args[0][1:] == (0, False)

    @pytest.mark.asyncio
    async def test_backup_failure_aborts_before_fetch(self, store, link, log_path, fixtures):
        existing = encode_all(fixtures.example_readings())
        log_path.write_bytes(existing)

        with patch("climalog.storage.log_store.shutil.copy2", side_effect=PermissionError("denied")):
            with pytest.raises(LogIoError):
                await store.sync(log_path)

        link.fetch.assert_not_awaited()
        assert log_path.read_bytes() == existing

    @pytest.mark.asyncio
    async def test_malformed_log_aborts_before_fetch(self, store, link, log_path, fixtures):
        existing = encode_all(fixtures.example_readings()) + bytes(9)
        log_path.write_bytes(existing)

        with pytest.raises(MalformedRecord):
            await store.sync(log_path)

        link.fetch.assert_not_awaited()
        assert log_path.read_bytes() == existing

    @pytest.mark.asyncio
    async def test_partial_download_is_not_appended(self, store, link, log_path, fixtures):
        existing = encode_all(fixtures.example_readings()[:1])
        log_path.write_bytes(existing)
        link.fetch.return_value = encode_all(fixtures.example_readings()[1:])[:-1]

        with pytest.raises(MalformedRecord):
            await store.sync(log_path)

        assert log_path.read_bytes() == existing

    @pytest.mark.asyncio
    async def test_missing_directory(self, store, tmp_path):
        with pytest.raises(LogIoError):
            await store.sync(tmp_path / "absent" / "sensor.mi")

    @pytest.mark.asyncio
    async def test_locked_log(self, store, link, log_path, fixtures):
        existing = encode_all(fixtures.example_readings())
        log_path.write_bytes(existing)

        with open(log_path, "rb") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            try:
                with pytest.raises(LogIoError):
                    await store.sync(log_path)
            finally:
                fcntl.flock(holder.fileno(), fcntl.LOCK_UN)

        link.fetch.assert_not_awaited()
        assert log_path.read_bytes() == existing

    @pytest.mark.asyncio
    async def test_success_is_recorded(self, store, link, log_path, fixtures, mock_performance_monitor):
        link.fetch.return_value = encode_all(fixtures.example_readings())

        await store.sync(log_path)

        assert mock_performance_monitor.log_sync.call_args[0][1:] == (3, True)

    @pytest.mark.asyncio
    async def test_lock_wait_keeps_event_loop_running(self, store, link, log_path, fixtures):
        log_path.write_bytes(b"")
        link.fetch.return_value = encode_all(fixtures.example_readings())
        store.lock_timeout = 5
        loop = asyncio.get_running_loop()
        ticks = []

        async def heartbeat():
            while True:
                ticks.append(loop.time())
                await asyncio.sleep(0.02)

        with open(log_path, "rb") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            # Released by the loop itself; a blocked loop would never run this
            loop.call_later(0.3, fcntl.flock, holder.fileno(), fcntl.LOCK_UN)
            beating = asyncio.ensure_future(heartbeat())
            try:
                assert await store.sync(log_path) == 3
            finally:
                beating.cancel()

        assert len(ticks) >= 5
        assert log_path.read_bytes() == encode_all(fixtures.example_readings())
