# ABOUTME: BLE scanning abstraction for passive advertisement listening
# ABOUTME: Provides Protocol interface, bleak implementation and MockScanner for testing
from dataclasses import dataclass, field
from typing import Protocol, Optional
import asyncio
from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData


@dataclass
class ScanRecord:
    """Advertisement contents captured for one peripheral."""
    address: str
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)
    service_data: dict[str, bytes] = field(default_factory=dict)
    name: Optional[str] = None
    rssi: Optional[int] = None


class AbstractScanner(Protocol):
    """Protocol for BLE scanners that return captured advertisement records."""

    async def scan(self, duration_s: int) -> list[ScanRecord]:
        """
        Scan for BLE advertisements for the specified duration.

        Args:
            duration_s: Duration to scan in seconds

        Returns:
            List of ScanRecord, one per advertising address
        """
        ...


class BleakScannerImpl:
    """
    Real BLE scanner implementation using bleak library.

    Collects every advertisement carrying manufacturer or service data. A
    device may send several advertisements per scan window (Shelly BLU sends
    sensor state and button presses separately), so nothing is overwritten.
    """

    def __init__(self):
        self.advertisements: list[ScanRecord] = []

    def _detection_callback(self, device: BLEDevice, advertisement_data: AdvertisementData):
        """
        Callback invoked when a BLE advertisement is detected.

        Args:
            device: BLE device information
            advertisement_data: Advertisement data including manufacturer and service data
        """
        manufacturer_data = advertisement_data.manufacturer_data or {}
        service_data = advertisement_data.service_data or {}
        if not manufacturer_data and not service_data:
            return

        # bleak reuses its buffers, copy them out
        self.advertisements.append(ScanRecord(
            address=device.address.upper(),
            manufacturer_data={company_id: bytes(data) for company_id, data in manufacturer_data.items()},
            service_data={str(uuid): bytes(data) for uuid, data in service_data.items()},
            name=advertisement_data.local_name,
            rssi=advertisement_data.rssi
        ))

    async def scan(self, duration_s: int) -> list[ScanRecord]:
        """
        Scan for BLE advertisements using bleak.

        Args:
            duration_s: Duration to scan in seconds

        Returns:
            List of ScanRecord collected during the scan window

        Raises:
            RuntimeError: If BLE adapter is unavailable or scanning fails
        """
        self.advertisements = []

        try:
            scanner = BleakScanner(detection_callback=self._detection_callback)
            await scanner.start()
            await asyncio.sleep(duration_s)
            await scanner.stop()
        except Exception as e:
            raise RuntimeError(f"BLE scan failed: {e}") from e

        return list(self.advertisements)


class MockScanner:
    """
    Mock BLE scanner for testing without hardware.

    Returns preconfigured list of ScanRecord on each scan() call.
    """

    def __init__(self, data: Optional[list[ScanRecord]] = None):
        self.data = data or []

    async def scan(self, duration_s: int) -> list[ScanRecord]:
        # Simulate async behavior with small delay
        await asyncio.sleep(0.01)
        return self.data.copy()


def get_scanner(use_mock: bool = False, data: Optional[list[ScanRecord]] = None) -> AbstractScanner:
    """
    Factory function to get appropriate scanner implementation.

    Args:
        use_mock: If True, return MockScanner; otherwise return BleakScannerImpl
        data: Test data for MockScanner (only used when use_mock=True)

    Returns:
        Scanner instance implementing AbstractScanner protocol
    """
    if use_mock:
        return MockScanner(data)
    else:
        return BleakScannerImpl()
