# ABOUTME: HTTP server for exposing metrics, health and latest readings
# ABOUTME: Provides /healthz, /metrics, /status and /readings endpoints via aiohttp
from dataclasses import asdict, dataclass, field
from typing import Any, Optional
from aiohttp import web

from prometheus_client import generate_latest

from blu_exporter.config import AppConfig
from blu_exporter.parser import SensorReading


@dataclass
class StatusTracker:
    """Tracks scan status and the latest reading per device."""
    scan_interval_seconds: int
    scan_duration_seconds: int
    last_scan_timestamp: int = 0
    devices_seen: int = 0
    last_readings: dict[str, dict[str, Any]] = field(default_factory=dict)

    def update(self, timestamp: int, num_devices: int) -> None:
        """Record when a scan finished and how many configured sensors it updated."""
        self.last_scan_timestamp = timestamp
        self.devices_seen = num_devices

    def record_reading(self, device_name: str, reading: SensorReading) -> None:
        """Remember the most recent reading for a device."""
        self.last_readings[device_name] = asdict(reading)


# AppKey for type-safe access to config and status
CONFIG_KEY = web.AppKey('config', AppConfig)
STATUS_KEY = web.AppKey('status', StatusTracker)


async def healthz_handler(request: web.Request) -> web.Response:
    """Health check endpoint, always 200 "ok"."""
    return web.Response(text="ok", status=200)


async def metrics_handler(request: web.Request) -> web.Response:
    """Shelly BLU gauges in Prometheus text format."""
    return web.Response(
        body=generate_latest(),
        content_type='text/plain',
        charset='utf-8'
    )


async def status_handler(request: web.Request) -> web.Response:
    """Scan timing plus when the last scan finished and how many sensors it updated."""
    status = request.app[STATUS_KEY]

    status_data = {
        "scan_interval_seconds": status.scan_interval_seconds,
        "scan_duration_seconds": status.scan_duration_seconds,
        "last_scan_timestamp": status.last_scan_timestamp,
        "devices_seen": status.devices_seen
    }

    return web.json_response(status_data)


async def readings_handler(request: web.Request) -> web.Response:
    """Latest decoded reading per configured device, keyed by friendly name."""
    status = request.app[STATUS_KEY]
    return web.json_response(status.last_readings)


def create_app(config: AppConfig, status_tracker: Optional[StatusTracker] = None) -> web.Application:
    """
    Build the exporter web app.

    A StatusTracker is created from the config scan timing when none is
    passed; the scan loop must share the same tracker for /status and
    /readings to show its results.
    """
    app = web.Application()

    app[CONFIG_KEY] = config

    if status_tracker is None:
        status_tracker = StatusTracker(
            scan_interval_seconds=config.scan_interval_seconds,
            scan_duration_seconds=config.scan_duration_seconds
        )
    app[STATUS_KEY] = status_tracker

    app.router.add_get('/healthz', healthz_handler)
    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/status', status_handler)
    app.router.add_get('/readings', readings_handler)

    return app
