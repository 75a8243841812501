# ABOUTME: BTHome decoder for Shelly BLU advertisements
# ABOUTME: Decodes motion, illuminance, battery and button events plus the device id
import struct
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, NamedTuple, Optional
from uuid import UUID


# Alterco Robotics (Shelly) company identifier, 0x0BA9
SHELLY_MANUFACTURER_ID = 2985
SHELLY_SERVICE_UUID = "0000fcd2-0000-1000-8000-00805f9b34fb"
MIN_PAYLOAD_LENGTH = 8
# Device info byte (encryption flag, trigger flag, BTHome version) before the objects
BTHOME_INFO_LENGTH = 1


class TagField(NamedTuple):
    """Fixed-width BTHome object. Fields without a converter are skipped."""
    name: Optional[str]
    width: int
    convert: Optional[Callable[[bytes], Any]]


def _uint24_lux(raw: bytes) -> float:
    lux_raw = struct.unpack('<I', raw + b'\x00')[0]
    return round(lux_raw * 0.01, 2)


TAG_FIELDS: dict[int, TagField] = {
    0x00: TagField('packet_id', 1, None),
    0x01: TagField('battery', 1, lambda raw: raw[0]),
    0x05: TagField('illuminance', 3, _uint24_lux),
    0x21: TagField('motion', 1, lambda raw: raw[0] != 0),
    0x3A: TagField('button_event', 2, lambda raw: struct.unpack('<H', raw)[0]),
}

# Unknown tags carry no length, assume one data byte to resynchronise
UNKNOWN_FIELD = TagField(None, 1, None)


@dataclass(frozen=True)
class BTHomeFields:
    """Sensor fields found in one BTHome payload. None means not reported."""
    motion: Optional[bool] = None
    illuminance: Optional[float] = None
    battery: Optional[int] = None
    button_event: Optional[int] = None


_REPORTED_FIELDS = {f.name for f in fields(BTHomeFields)}


@dataclass(frozen=True)
class SensorReading:
    """Decoded Shelly BLU advertisement, timestamped by the caller."""
    device_id: Optional[str]
    timestamp: int
    motion: Optional[bool] = None
    illuminance: Optional[float] = None
    battery: Optional[int] = None
    button_event: Optional[int] = None

    def measurements(self) -> dict[str, Any]:
        """Return only the sensor fields that were reported."""
        return {
            key: value
            for key, value in asdict(self).items()
            if key not in ('device_id', 'timestamp') and value is not None
        }

    def merge(self, other: 'SensorReading') -> 'SensorReading':
        """
        Combine two readings of the same device.

        Fields present in ``other`` win; its timestamp is kept. Our device id
        is kept when set, ``other``'s only fills it in.
        """
        return replace(
            self,
            device_id=self.device_id or other.device_id,
            timestamp=other.timestamp,
            **other.measurements()
        )


def decode_field(payload: bytes, offset: int) -> Optional[tuple[Optional[str], Any, int]]:
    """
    Decode the tag-prefixed field starting at ``offset``.

    Args:
        payload: Raw BTHome bytes
        offset: Index of the tag byte

    Returns:
        ``(name, value, consumed)`` where ``consumed`` includes the tag byte.
        ``name`` and ``value`` are None for skipped fields (packet id and unknown
        tags). Returns None when ``offset`` is outside the payload or a field's
        data runs past its end.
    """
    if not 0 <= offset < len(payload):
        return None

    field = TAG_FIELDS.get(payload[offset], UNKNOWN_FIELD)
    start = offset + 1
    consumed = 1 + field.width

    if field.convert is None:
        return None, None, consumed

    if start + field.width > len(payload):
        return None

    return field.name, field.convert(payload[start:start + field.width]), consumed


def decode_bthome(payload: bytes) -> BTHomeFields:
    """
    Decode a BTHome tag-value stream.

    Unknown tags skip one data byte. A truncated field ends the scan and is
    left unset. Never raises: a malformed payload just yields fewer fields.

    Args:
        payload: Raw BTHome bytes (manufacturer or service data)

    Returns:
        BTHomeFields with every field that was fully present
    """
    found: dict[str, Any] = {}
    idx = 0

    while idx < len(payload):
        decoded = decode_field(payload, idx)
        if decoded is None:
            break

        name, value, consumed = decoded
        if name in _REPORTED_FIELDS:
            found[name] = value
        idx += consumed

    return BTHomeFields(**found)


def extract_device_id(payload: bytes) -> Optional[str]:
    """
    Build the device address from the trailing six payload bytes.

    The device stores its address little-endian at the end of the payload, so
    the bytes are reversed for display.

    Returns:
        Address like "B0:C7:DE:7E:77:A0", or None for payloads under 8 bytes
    """
    if len(payload) < MIN_PAYLOAD_LENGTH:
        return None
    return ':'.join(f'{b:02X}' for b in reversed(payload[-6:]))


def select_vendor_payload(manufacturer_data: dict[int, bytes]) -> Optional[bytes]:
    """Return the Shelly manufacturer payload if present and long enough."""
    payload = manufacturer_data.get(SHELLY_MANUFACTURER_ID)
    if payload is None or len(payload) < MIN_PAYLOAD_LENGTH:
        return None
    return bytes(payload)


def select_service_payload(service_data: dict[Any, bytes]) -> Optional[bytes]:
    """Return the payload advertised under the Shelly BTHome service UUID."""
    for uuid, payload in service_data.items():
        key = str(uuid) if isinstance(uuid, UUID) else uuid
        if isinstance(key, str) and key.lower() == SHELLY_SERVICE_UUID:
            return bytes(payload)
    return None


def _build_reading(payload: bytes, timestamp: int, device_id: Optional[str]) -> SensorReading:
    decoded = decode_bthome(payload)
    return SensorReading(
        device_id=device_id,
        timestamp=timestamp,
        **asdict(decoded)
    )


def read_manufacturer_data(manufacturer_data: dict[int, bytes], timestamp: int) -> Optional[SensorReading]:
    """Decode the Shelly manufacturer record, or None if there is none."""
    payload = select_vendor_payload(manufacturer_data)
    if payload is None:
        return None
    return _build_reading(payload, timestamp, extract_device_id(payload))


def read_service_data(service_data: dict[Any, bytes], timestamp: int) -> Optional[SensorReading]:
    """
    Decode the Shelly service data record, or None if there is none.

    BTHome v2 service data starts with a device info byte, which is skipped.
    Service data carries no address, so the reading has no device id.
    """
    payload = select_service_payload(service_data)
    if payload is None:
        return None
    return _build_reading(payload[BTHOME_INFO_LENGTH:], timestamp, device_id=None)


def read_advertisement(
    manufacturer_data: dict[int, bytes],
    service_data: dict[Any, bytes],
    timestamp: int
) -> Optional[SensorReading]:
    """
    Decode one advertisement from both of its data sources.

    Service data fields override manufacturer data fields when both are
    present.

    Returns:
        Merged SensorReading, or None if neither source belongs to a Shelly BLU device
    """
    from_vendor = read_manufacturer_data(manufacturer_data or {}, timestamp)
    from_service = read_service_data(service_data or {}, timestamp)

    if from_vendor is None:
        return from_service
    if from_service is None:
        return from_vendor
    return from_vendor.merge(from_service)
