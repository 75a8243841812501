# ABOUTME: Prometheus metrics registry for Shelly BLU sensor data
# ABOUTME: Defines gauges for motion, illuminance, battery, button events and tracking metadata
from prometheus_client import Gauge

from blu_exporter.parser import SensorReading


motion_gauge = Gauge(
    'shelly_blu_motion',
    'Motion state reported by the sensor (1 = motion detected)',
    ['device']
)

illuminance_gauge = Gauge(
    'shelly_blu_illuminance_lux',
    'Illuminance reading in lux',
    ['device']
)

battery_gauge = Gauge(
    'shelly_blu_battery_percent',
    'Battery level in percent as reported by the device',
    ['device']
)

button_event_gauge = Gauge(
    'shelly_blu_button_event',
    'Last raw button event code',
    ['device']
)

last_update_gauge = Gauge(
    'shelly_blu_last_update_timestamp_seconds',
    'Unix timestamp of last sensor reading',
    ['device']
)

seen_gauge = Gauge(
    'shelly_blu_seen',
    'Constant value 1 indicating device was seen in latest scan',
    ['device']
)


def update_metrics(device_name: str, reading: SensorReading) -> None:
    """
    Update Prometheus metrics for a specific device.

    Only fields present in the reading are written; absent fields keep their
    previous value.

    Args:
        device_name: Friendly name of the device (used as 'device' label)
        reading: Decoded sensor reading
    """
    if reading.motion is not None:
        motion_gauge.labels(device=device_name).set(1 if reading.motion else 0)

    if reading.illuminance is not None:
        illuminance_gauge.labels(device=device_name).set(reading.illuminance)

    if reading.battery is not None:
        battery_gauge.labels(device=device_name).set(reading.battery)

    if reading.button_event is not None:
        button_event_gauge.labels(device=device_name).set(reading.button_event)

    last_update_gauge.labels(device=device_name).set(reading.timestamp)
    seen_gauge.labels(device=device_name).set(1)
