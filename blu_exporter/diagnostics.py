# ABOUTME: BLE diagnostic tool for troubleshooting Shelly BLU advertisements
# ABOUTME: Monitors one address, dumps raw advertisement data and the decoded BTHome reading
import argparse
import asyncio
import json
import time
from datetime import datetime
from typing import Optional
from dataclasses import dataclass, asdict

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from blu_exporter.parser import (
    SHELLY_MANUFACTURER_ID,
    SHELLY_SERVICE_UUID,
    read_advertisement,
)


SHELLY_NAME_MARKERS = ("SBM", "Shelly")


@dataclass
class Advertisement:
    """Single BLE advertisement capture."""
    timestamp: str
    rssi: int
    local_name: Optional[str]
    service_data: dict[str, str]  # UUID -> hex string
    manufacturer_data: dict[int, str]  # Company ID -> hex string
    shelly_candidate: bool
    reading: Optional[dict]  # decoded SensorReading or None


def is_shelly_candidate(
    local_name: Optional[str],
    manufacturer_data: dict[int, bytes],
    service_data: dict[str, bytes]
) -> bool:
    """Guess whether an advertisement comes from a Shelly BLU device."""
    if SHELLY_MANUFACTURER_ID in manufacturer_data:
        return True
    if any(str(uuid).lower() == SHELLY_SERVICE_UUID for uuid in service_data):
        return True
    return bool(local_name) and any(marker in local_name for marker in SHELLY_NAME_MARKERS)


class DiagnosticScanner:
    """
    BLE scanner for diagnostic purposes.

    Captures all advertisement data from a specific address including RSSI,
    local name, manufacturer and service data, and attempts BTHome decoding.
    """

    def __init__(self, target_mac: str, quiet: bool = False):
        """
        Initialize diagnostic scanner.

        Args:
            target_mac: Address of the device to monitor (case-insensitive)
            quiet: If True, suppress console output
        """
        self.target_mac = target_mac.upper()
        self.quiet = quiet
        self.advertisements: list[Advertisement] = []
        self.running = True

    def _detection_callback(self, device: BLEDevice, advertisement_data: AdvertisementData):
        if device.address.upper() != self.target_mac:
            return

        manufacturer_data = {
            company_id: bytes(data)
            for company_id, data in (advertisement_data.manufacturer_data or {}).items()
        }
        service_data = {
            str(uuid): bytes(data)
            for uuid, data in (advertisement_data.service_data or {}).items()
        }
        local_name = advertisement_data.local_name

        reading = read_advertisement(manufacturer_data, service_data, int(time.time()))

        ad = Advertisement(
            timestamp=datetime.now().isoformat(timespec='milliseconds'),
            rssi=advertisement_data.rssi or 0,
            local_name=local_name,
            service_data={uuid: data.hex() for uuid, data in service_data.items()},
            manufacturer_data={company_id: data.hex() for company_id, data in manufacturer_data.items()},
            shelly_candidate=is_shelly_candidate(local_name, manufacturer_data, service_data),
            reading=asdict(reading) if reading is not None else None
        )
        self.advertisements.append(ad)

        if not self.quiet:
            self._display_advertisement(ad)

    def _display_advertisement(self, ad: Advertisement):
        print(f"\n[{ad.timestamp}] RSSI: {ad.rssi} dBm")

        if ad.local_name:
            print(f"  Name: {ad.local_name}")

        for company_id, hex_data in ad.manufacturer_data.items():
            print(f"  Manufacturer ID: 0x{company_id:04X}")
            print(f"    Data (hex): {hex_data}")

        for uuid, hex_data in ad.service_data.items():
            print(f"  Service UUID: {uuid}")
            print(f"    Data (hex): {hex_data}")

        if ad.shelly_candidate:
            print("  *** POTENTIAL SHELLY BLU DEVICE ***")

        if ad.reading is None:
            print("    BTHome decode: no Shelly BLU record")
            return

        print(f"    BTHome decode: device {ad.reading['device_id'] or 'unknown'}")
        if ad.reading['motion'] is not None:
            print(f"      - Motion: {'DETECTED' if ad.reading['motion'] else 'No Motion'}")
        if ad.reading['illuminance'] is not None:
            print(f"      - Illuminance: {ad.reading['illuminance']:.2f} lux")
        if ad.reading['battery'] is not None:
            print(f"      - Battery: {ad.reading['battery']}%")
        if ad.reading['button_event'] is not None:
            print(f"      - Button event: 0x{ad.reading['button_event']:04X}")

    async def scan(self, duration: Optional[int] = None):
        """
        Start scanning for advertisements.

        Args:
            duration: Optional duration in seconds. If None, scan until interrupted.
        """
        print(f"Monitoring MAC: {self.target_mac}")
        if duration:
            print(f"Duration: {duration} seconds")
        else:
            print("Duration: Continuous (Ctrl+C to stop)")
        print("=" * 60)

        scanner = BleakScanner(detection_callback=self._detection_callback)

        try:
            await scanner.start()

            if duration:
                await asyncio.sleep(duration)
            else:
                while self.running:
                    await asyncio.sleep(1)

        except KeyboardInterrupt:
            if not self.quiet:
                print("\n\nScan interrupted by user")
        finally:
            await scanner.stop()

    def get_statistics(self) -> dict:
        """
        Calculate statistics from collected advertisements.

        Returns:
            Dictionary containing statistics
        """
        total = len(self.advertisements)
        if total == 0:
            return {
                "total_advertisements": 0,
                "decode_success_rate": 0.0,
                "successful_decodes": 0,
                "failed_decodes": 0,
                "average_rssi": 0.0,
                "service_uuids_seen": [],
                "manufacturer_ids_seen": []
            }

        successful = sum(1 for ad in self.advertisements if ad.reading is not None)

        service_uuids = set()
        manufacturer_ids = set()
        for ad in self.advertisements:
            service_uuids.update(ad.service_data.keys())
            manufacturer_ids.update(ad.manufacturer_data.keys())

        return {
            "total_advertisements": total,
            "decode_success_rate": round(successful / total, 2),
            "successful_decodes": successful,
            "failed_decodes": total - successful,
            "average_rssi": round(sum(ad.rssi for ad in self.advertisements) / total, 1),
            "service_uuids_seen": sorted(service_uuids),
            "manufacturer_ids_seen": sorted(manufacturer_ids)
        }

    def save_json(self, filename: Optional[str] = None) -> str:
        """
        Save captured advertisements to JSON file.

        Args:
            filename: Optional filename. If None, auto-generate with timestamp.

        Returns:
            Path to saved file
        """
        if filename is None:
            # e.g. blu_diagnostics_B0C7DE7E77A0_20251103_142315.json
            mac_sanitized = self.target_mac.replace(":", "")
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"blu_diagnostics_{mac_sanitized}_{timestamp}.json"

        data = {
            "mac_address": self.target_mac,
            "scan_start": self.advertisements[0].timestamp if self.advertisements else None,
            "scan_end": self.advertisements[-1].timestamp if self.advertisements else None,
            "advertisements": [asdict(ad) for ad in self.advertisements],
            "statistics": self.get_statistics()
        }

        with open(filename, 'w') as f:
            json.dump(data, f, indent=2)

        return filename


def main():
    """Main entry point for diagnostic tool."""
    parser = argparse.ArgumentParser(
        description='Shelly BLU Diagnostic Tool - Monitor and decode BLE advertisements',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Monitor for 30 seconds
  python -m blu_exporter.diagnostics B0:C7:DE:7E:77:A0 --duration 30

  # Continuous monitoring with JSON output
  python -m blu_exporter.diagnostics B0:C7:DE:7E:77:A0 --json

  # Custom JSON filename, quiet mode
  python -m blu_exporter.diagnostics B0:C7:DE:7E:77:A0 --json debug.json --quiet
        """
    )

    parser.add_argument(
        'mac_address',
        help='Address of the BLE device to monitor (e.g., B0:C7:DE:7E:77:A0)'
    )
    parser.add_argument(
        '--duration',
        type=int,
        metavar='SECONDS',
        help='Scan duration in seconds (default: continuous until Ctrl+C)'
    )
    parser.add_argument(
        '--json',
        nargs='?',
        const='',
        metavar='FILENAME',
        help='Save results to JSON file (auto-generates filename if not provided)'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress console output (useful with --json)'
    )

    args = parser.parse_args()

    scanner = DiagnosticScanner(args.mac_address, quiet=args.quiet)

    try:
        asyncio.run(scanner.scan(duration=args.duration))
    except KeyboardInterrupt:
        pass

    if not args.quiet:
        print("\n" + "=" * 60)
        print("STATISTICS")
        print("=" * 60)
        stats = scanner.get_statistics()
        print(f"Total advertisements: {stats['total_advertisements']}")
        print(f"Successful decodes: {stats['successful_decodes']}")
        print(f"Failed decodes: {stats['failed_decodes']}")
        print(f"Decode success rate: {stats['decode_success_rate'] * 100:.1f}%")
        print(f"Average RSSI: {stats['average_rssi']} dBm")
        for company_id in stats['manufacturer_ids_seen']:
            print(f"  Manufacturer ID seen: 0x{company_id:04X}")
        for uuid in stats['service_uuids_seen']:
            print(f"  Service UUID seen: {uuid}")

    if args.json is not None:
        filename = args.json if args.json else None
        saved_path = scanner.save_json(filename)
        print(f"\nResults saved to: {saved_path}")


if __name__ == '__main__':
    main()
