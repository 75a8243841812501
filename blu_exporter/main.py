# ABOUTME: Main entry point for the Shelly BLU Prometheus exporter
# ABOUTME: Wires together scanner, decoder, reading sinks and HTTP server
import argparse
import asyncio
import time
from typing import Optional
from aiohttp import web

from blu_exporter.config import load_config
from blu_exporter.logger import get_logger
from blu_exporter.scanner import ScanRecord, get_scanner
from blu_exporter.parser import SHELLY_MANUFACTURER_ID, SensorReading, read_advertisement
from blu_exporter.metrics import update_metrics
from blu_exporter.sinks import FanOutSink, LogSink, ReadingSink
from blu_exporter.exporter import create_app, StatusTracker


def aggregate_scan_results(
    scan_results: list[ScanRecord],
    known_devices: set[str],
    logger,
    timestamp: int,
    log_raw: bool = False
) -> dict[str, SensorReading]:
    """
    Decode and merge readings by device id within a scan period.

    A device is identified by the id embedded in its payload, falling back to
    the advertising address when the payload is too short to carry one.

    Args:
        scan_results: Records returned by the scanner
        known_devices: Device ids from config
        logger: Logger instance for warnings and raw dumps
        timestamp: Seconds since epoch stamped on every reading
        log_raw: Log manufacturer data of other vendors at DEBUG level

    Returns:
        Dictionary mapping device id to its merged SensorReading

    Behavior:
        - Unknown devices are dropped
        - Later records win for fields reported more than once
        - Warns if a known device advertised but nothing decoded
    """
    aggregated: dict[str, SensorReading] = {}
    seen_devices = set()

    for record in scan_results:
        if log_raw:
            for company_id, data in record.manufacturer_data.items():
                if company_id != SHELLY_MANUFACTURER_ID:
                    logger.debug(
                        f"Device {record.address} manufacturer 0x{company_id:04X}: {data.hex()}"
                    )

        reading = read_advertisement(record.manufacturer_data, record.service_data, timestamp)
        address = record.address.upper()

        if reading is None:
            if address in known_devices:
                seen_devices.add(address)
            continue

        device_id = reading.device_id or address
        if device_id not in known_devices:
            continue

        seen_devices.add(device_id)
        if device_id in aggregated:
            reading = aggregated[device_id].merge(reading)
        aggregated[device_id] = reading

    for device_id in seen_devices - set(aggregated):
        logger.warning(
            f"Device {device_id} seen but no Shelly BLU data could be decoded. "
            f"Check that the device advertises BTHome data."
        )

    return aggregated


async def scan_loop(scanner, config, status_tracker, logger, sink: Optional[ReadingSink] = None):
    """
    Background task that continuously scans, decodes and publishes readings.

    Args:
        scanner: Scanner instance (MockScanner or BleakScannerImpl)
        config: Application configuration
        status_tracker: StatusTracker for updating scan metadata
        logger: Logger instance
        sink: Receives (device_name, reading) for each known device; defaults to Prometheus metrics
    """
    if sink is None:
        sink = update_metrics

    while True:
        try:
            logger.info(f"Starting BLE scan for {config.scan_duration_seconds}s")
            results = await scanner.scan(config.scan_duration_seconds)

            timestamp = int(time.time())
            aggregated = aggregate_scan_results(
                results,
                set(config.devices.keys()),
                logger,
                timestamp,
                log_raw=config.log_raw_advertisements
            )

            # aggregate_scan_results only returns configured devices
            for device_id, reading in aggregated.items():
                device_name = config.devices[device_id]
                sink(device_name, reading)
                status_tracker.record_reading(device_name, reading)

            devices_seen = len(aggregated)
            status_tracker.update(timestamp, devices_seen)

            logger.info(f"Scan complete: {devices_seen} devices updated")

            sleep_duration = config.scan_interval_seconds - config.scan_duration_seconds
            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)
            else:
                logger.warning(
                    f"scan_interval_seconds ({config.scan_interval_seconds}) "
                    f"is less than scan_duration_seconds ({config.scan_duration_seconds}). "
                    f"Running scans back-to-back."
                )

        except Exception as e:
            logger.error(f"Error in scan loop: {e}", exc_info=True)
            await asyncio.sleep(5)


async def start_background_tasks(app):
    """
    Startup handler that launches the background scan loop.

    Args:
        app: aiohttp Application instance
    """
    app['scan_task'] = asyncio.create_task(
        scan_loop(
            app['scanner'],
            app['config'],
            app['status_tracker'],
            app['logger'],
            app.get('sink')
        )
    )


async def cleanup_background_tasks(app):
    """
    Cleanup handler that cancels the background scan loop.

    Args:
        app: aiohttp Application instance
    """
    app['scan_task'].cancel()
    try:
        await app['scan_task']
    except asyncio.CancelledError:
        pass  # Expected when cancelling the task


def main():
    """
    Main entry point. Parses CLI arguments, loads config, and starts the server.
    """
    parser = argparse.ArgumentParser(
        description='Shelly BLU Prometheus Exporter'
    )
    parser.add_argument(
        '--config',
        type=str,
        required=True,
        help='Path to config YAML file'
    )
    parser.add_argument(
        '--mock-scanner',
        action='store_true',
        help='Use MockScanner instead of real BLE scanner (for testing)'
    )

    args = parser.parse_args()

    config = load_config(args.config)

    logger = get_logger(config)
    logger.info("Starting Shelly BLU Prometheus Exporter")
    logger.info(f"Config loaded from {args.config}")

    scanner = get_scanner(use_mock=args.mock_scanner)
    if args.mock_scanner:
        logger.info("Using MockScanner (no real BLE hardware)")
    else:
        logger.info("Using BleakScanner for real BLE devices")

    status_tracker = StatusTracker(
        scan_interval_seconds=config.scan_interval_seconds,
        scan_duration_seconds=config.scan_duration_seconds
    )

    app = create_app(config, status_tracker)

    app['scanner'] = scanner
    app['config'] = config
    app['status_tracker'] = status_tracker
    app['logger'] = logger
    app['sink'] = FanOutSink(update_metrics, LogSink(logger))

    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(cleanup_background_tasks)

    logger.info(f"Starting HTTP server on port {config.listen_port}")
    web.run_app(app, host='0.0.0.0', port=config.listen_port)


if __name__ == '__main__':
    main()
