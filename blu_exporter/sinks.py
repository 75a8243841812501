# ABOUTME: Destinations for decoded sensor readings
# ABOUTME: Defines the ReadingSink protocol and sinks for logging and fan-out
import logging
from typing import Protocol

from blu_exporter.parser import SensorReading


class ReadingSink(Protocol):
    """Anything that accepts a decoded reading for a named device."""

    def __call__(self, device_name: str, reading: SensorReading) -> None: ...


class LogSink:
    """Writes each reading to a logger at INFO level."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def __call__(self, device_name: str, reading: SensorReading) -> None:
        self.logger.info(
            f"Reading from {device_name} ({reading.device_id}) "
            f"at {reading.timestamp}: {reading.measurements()}"
        )


class FanOutSink:
    """Forwards every reading to several sinks in order."""

    def __init__(self, *sinks: ReadingSink):
        self.sinks = sinks

    def __call__(self, device_name: str, reading: SensorReading) -> None:
        for sink in self.sinks:
            sink(device_name, reading)
