"""
Tests for the main scheduler loop that ties together scanning, decoding and sinks.
"""
import asyncio
import logging
import time
from unittest.mock import MagicMock
import pytest

from blu_exporter.main import scan_loop
from blu_exporter.scanner import MockScanner, ScanRecord
from blu_exporter.config import AppConfig
from blu_exporter.exporter import StatusTracker
from blu_exporter.metrics import battery_gauge, motion_gauge
from blu_exporter.parser import SHELLY_MANUFACTURER_ID


HALLWAY = "B0:C7:DE:7E:77:A0"
HALLWAY_SUFFIX = bytes([0xA0, 0x77, 0x7E, 0xDE, 0xC7, 0xB0])
GARAGE = "B0:C7:DE:11:22:33"
GARAGE_SUFFIX = bytes([0x33, 0x22, 0x11, 0xDE, 0xC7, 0xB0])


@pytest.fixture
def mock_config():
    """Create a test configuration."""
    return AppConfig(
        scan_interval_seconds=30,
        scan_duration_seconds=5,
        listen_port=8000,
        devices={
            HALLWAY: "hallway",
            GARAGE: "garage",
        },
        log_file="/tmp/test.log"
    )


@pytest.fixture
def mock_logger():
    """Create a mock logger."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def status_tracker():
    """Create a fresh StatusTracker for each test."""
    return StatusTracker(
        scan_interval_seconds=30,
        scan_duration_seconds=5
    )


def shelly_record(address, body, suffix):
    return ScanRecord(address, manufacturer_data={SHELLY_MANUFACTURER_ID: body + suffix})


async def run_once(*args, **kwargs):
    """Run scan_loop for one iteration then cancel it."""
    task = asyncio.create_task(scan_loop(*args, **kwargs))
    await asyncio.sleep(0.1)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@pytest.mark.asyncio
async def test_scan_loop_updates_metrics_by_default(mock_config, mock_logger, status_tracker):
    """Test that without an explicit sink readings go to Prometheus gauges."""
    scanner = MockScanner(data=[
        shelly_record(HALLWAY, bytes([0x01, 0x4B, 0x21, 0x01]), HALLWAY_SUFFIX)
    ])

    await run_once(scanner, mock_config, status_tracker, mock_logger)

    assert battery_gauge.labels(device="hallway")._value.get() == 75.0
    assert motion_gauge.labels(device="hallway")._value.get() == 1.0


@pytest.mark.asyncio
async def test_scan_loop_publishes_to_injected_sink(mock_config, mock_logger, status_tracker):
    """Test that readings are handed to the injected sink with the friendly name."""
    sink = MagicMock()
    scanner = MockScanner(data=[
        shelly_record(HALLWAY, bytes([0x05, 0x10, 0x02, 0x00]), HALLWAY_SUFFIX)
    ])

    await run_once(scanner, mock_config, status_tracker, mock_logger, sink=sink)

    sink.assert_called_once()
    device_name, reading = sink.call_args[0]
    assert device_name == "hallway"
    assert reading.device_id == HALLWAY
    assert reading.illuminance == pytest.approx(5.28)


@pytest.mark.asyncio
async def test_scan_loop_updates_status_tracker(mock_config, mock_logger, status_tracker):
    """Test that scan loop updates the status tracker and latest readings."""
    scanner = MockScanner(data=[
        shelly_record(HALLWAY, bytes([0x01, 0x4B]), HALLWAY_SUFFIX)
    ])
    start_time = int(time.time())

    await run_once(scanner, mock_config, status_tracker, mock_logger, sink=MagicMock())

    assert status_tracker.devices_seen == 1
    assert status_tracker.last_scan_timestamp >= start_time
    assert status_tracker.last_readings["hallway"]["battery"] == 75
    assert status_tracker.last_readings["hallway"]["timestamp"] == status_tracker.last_scan_timestamp


@pytest.mark.asyncio
async def test_scan_loop_ignores_unknown_devices(mock_config, mock_logger, status_tracker):
    """Test that scan loop ignores devices not in config."""
    sink = MagicMock()
    unknown_suffix = bytes([0xFF, 0xEE, 0xDD, 0xCC, 0xBB, 0xAA])
    scanner = MockScanner(data=[shelly_record("AA:BB:CC:DD:EE:FF", bytes([0x01, 0x10]), unknown_suffix)])

    await run_once(scanner, mock_config, status_tracker, mock_logger, sink=sink)

    assert status_tracker.devices_seen == 0
    sink.assert_not_called()


@pytest.mark.asyncio
async def test_scan_loop_multiple_devices(mock_config, mock_logger, status_tracker):
    """Test that scan loop handles multiple devices in one scan."""
    sink = MagicMock()
    scanner = MockScanner(data=[
        shelly_record(HALLWAY, bytes([0x01, 0x10]), HALLWAY_SUFFIX),
        shelly_record(GARAGE, bytes([0x01, 0x20]), GARAGE_SUFFIX),
    ])

    await run_once(scanner, mock_config, status_tracker, mock_logger, sink=sink)

    assert status_tracker.devices_seen == 2
    names = sorted(call.args[0] for call in sink.call_args_list)
    assert names == ["garage", "hallway"]


@pytest.mark.asyncio
async def test_scan_loop_merges_alternating_packets(mock_config, mock_logger, status_tracker):
    """Test that one device sending two advertisements counts once with merged fields."""
    sink = MagicMock()
    scanner = MockScanner(data=[
        shelly_record(HALLWAY, bytes([0x01, 0x10, 0x21, 0x00]), HALLWAY_SUFFIX),
        shelly_record(HALLWAY, bytes([0x3A, 0x02, 0x00]), HALLWAY_SUFFIX),
    ])

    await run_once(scanner, mock_config, status_tracker, mock_logger, sink=sink)

    assert status_tracker.devices_seen == 1
    reading = sink.call_args[0][1]
    assert reading.battery == 0x10
    assert reading.motion is False
    assert reading.button_event == 2


@pytest.mark.asyncio
async def test_scan_loop_warns_on_negative_sleep(mock_logger, status_tracker):
    """Test that scan loop warns when interval < duration."""
    bad_config = AppConfig(
        scan_interval_seconds=3,
        scan_duration_seconds=5,
        listen_port=8000,
        devices={},
        log_file="/tmp/test.log"
    )

    await run_once(MockScanner(data=[]), bad_config, status_tracker, mock_logger)

    assert any(
        'scan_interval_seconds' in str(call)
        for call in mock_logger.warning.call_args_list
    )


@pytest.mark.asyncio
async def test_scan_loop_logs_scanner_errors(mock_config, mock_logger, status_tracker):
    """Test that scanner failures are logged and the loop keeps running."""
    scanner = MagicMock()

    async def failing_scan(duration_s):
        raise RuntimeError("BLE scan failed: No Bluetooth adapter found")

    scanner.scan = failing_scan

    task = asyncio.create_task(scan_loop(scanner, mock_config, status_tracker, mock_logger))
    await asyncio.sleep(0.1)

    assert not task.done()
    mock_logger.error.assert_called()
    assert "No Bluetooth adapter found" in mock_logger.error.call_args[0][0]

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
