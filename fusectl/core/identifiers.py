"""Service and characteristic identifiers understood by the device.

Standard services use 16-bit Bluetooth SIG identifiers; the vendor "sport"
service family uses 128-bit identifiers. Both are normalized to the lowercase
128-bit string form so callers can compare them without caring about width.
"""

from __future__ import annotations

from bleak.uuids import normalize_uuid_16, normalize_uuid_str, uuidstr_to_str

from fusectl.core.errors import UnknownIdentifierError
from fusectl.core.model import CharacteristicDescriptor, ServiceDescriptor, ServiceRequirement

_READ = frozenset({"read"})
_NOTIFY = frozenset({"notify"})
_READ_NOTIFY = frozenset({"read", "notify"})
_READ_WRITE = frozenset({"read", "write"})


def uuid16(value: int) -> str:
    return normalize_uuid_16(value)


def uuid128(value: str) -> str:
    return normalize_uuid_str(value)


# Standard
SERVICE_BATTERY = ServiceDescriptor("battery", "Battery", uuid16(0x180F))
CHAR_BATTERY = CharacteristicDescriptor("level", "Battery Level", uuid16(0x2A19), "battery", _READ_NOTIFY)

SERVICE_HEART_RATE = ServiceDescriptor("heart_rate", "Heart Rate", uuid16(0x180D))
CHAR_HEART_RATE = CharacteristicDescriptor(
    "measurement", "Heart Rate Measurement", uuid16(0x2A37), "heart_rate", _NOTIFY
)
CHAR_BODY_SENSOR = CharacteristicDescriptor(
    "body_sensor_location", "Body Sensor Location", uuid16(0x2A38), "heart_rate", _READ
)

SERVICE_DEVICE_INFO = ServiceDescriptor("device_information", "Device Information", uuid16(0x180A))
CHAR_MANUFACTURER = CharacteristicDescriptor(
    "manufacturer", "Manufacturer Name String", uuid16(0x2A29), "device_information", _READ
)
CHAR_MODEL = CharacteristicDescriptor("model", "Model Number String", uuid16(0x2A24), "device_information", _READ)
CHAR_SERIAL = CharacteristicDescriptor("serial", "Serial Number String", uuid16(0x2A25), "device_information", _READ)
CHAR_HARDWARE_REV = CharacteristicDescriptor(
    "hardware_revision", "Hardware Revision String", uuid16(0x2A27), "device_information", _READ
)
CHAR_FIRMWARE_REV = CharacteristicDescriptor(
    "firmware_revision", "Firmware Revision String", uuid16(0x2A26), "device_information", _READ
)
CHAR_SOFTWARE_REV = CharacteristicDescriptor(
    "software_revision", "Software Revision String", uuid16(0x2A28), "device_information", _READ
)

# Vendor
SERVICE_SPORT = ServiceDescriptor("sport", "Mio Sport", uuid128("6C721838-5BF1-4F64-9170-381C08EC57EE"))
CHAR_SPORT_MSG = CharacteristicDescriptor(
    "message", "Sport Message", uuid128("6C722A80-5BF1-4F64-9170-381C08EC57EE"), "sport", _READ_WRITE
)
CHAR_SPORT_UNKNOWN = CharacteristicDescriptor(
    "unknown", "Sport Unknown", uuid128("6C722A81-5BF1-4F64-9170-381C08EC57EE"), "sport", _READ_WRITE
)
CHAR_SPORT_MSG_RESP = CharacteristicDescriptor(
    "message_response", "Sport Message Response", uuid128("6C722A82-5BF1-4F64-9170-381C08EC57EE"), "sport", _READ_NOTIFY
)
CHAR_SENSOR = CharacteristicDescriptor(
    "sensor", "Sensor Data", uuid128("6C722A83-5BF1-4F64-9170-381C08EC57EE"), "sport", _READ_NOTIFY
)
CHAR_RECORD = CharacteristicDescriptor(
    "record", "Record Data", uuid128("6C722A84-5BF1-4F64-9170-381C08EC57EE"), "sport", _READ_NOTIFY
)

SERVICES: dict[str, ServiceDescriptor] = {
    s.key: s for s in (SERVICE_BATTERY, SERVICE_HEART_RATE, SERVICE_SPORT, SERVICE_DEVICE_INFO)
}

CHARACTERISTICS: dict[tuple[str, str], CharacteristicDescriptor] = {
    (c.service, c.key): c
    for c in (
        CHAR_BATTERY,
        CHAR_HEART_RATE,
        CHAR_BODY_SENSOR,
        CHAR_SPORT_MSG,
        CHAR_SPORT_UNKNOWN,
        CHAR_SPORT_MSG_RESP,
        CHAR_SENSOR,
        CHAR_RECORD,
        CHAR_MANUFACTURER,
        CHAR_MODEL,
        CHAR_SERIAL,
        CHAR_HARDWARE_REV,
        CHAR_FIRMWARE_REV,
        CHAR_SOFTWARE_REV,
    )
}

_BY_UUID = {d.uuid: d for d in (*SERVICES.values(), *CHARACTERISTICS.values())}


def resolve_service(name: str) -> ServiceDescriptor:
    service = SERVICES.get(name)
    if service is None:
        available = ", ".join(sorted(SERVICES))
        raise UnknownIdentifierError(f"Unknown service '{name}'. Available: {available}")
    return service


def resolve_characteristic(service: str | ServiceDescriptor, name: str) -> CharacteristicDescriptor:
    service_key = service.key if isinstance(service, ServiceDescriptor) else resolve_service(service).key
    characteristic = CHARACTERISTICS.get((service_key, name))
    if characteristic is None:
        available = ", ".join(sorted(key for svc, key in CHARACTERISTICS if svc == service_key))
        raise UnknownIdentifierError(
            f"Unknown characteristic '{name}' in service '{service_key}'. Available: {available}"
        )
    return characteristic


def describe(uuid: str) -> str:
    """Human-readable name for an identifier, falling back to the SIG registry."""
    descriptor = _BY_UUID.get(normalize_uuid_str(uuid))
    if descriptor is not None:
        return descriptor.name
    name = uuidstr_to_str(uuid)
    return uuid if name == "Unknown" else name


def requirement(service: str, *characteristics: str, required: bool = False) -> ServiceRequirement:
    descriptor = resolve_service(service)
    return ServiceRequirement(
        service=descriptor,
        characteristics=tuple(resolve_characteristic(descriptor, c) for c in characteristics),
        required=required,
    )


# Battery always comes first: it is the minimum viability probe.
BATTERY_PLAN: tuple[ServiceRequirement, ...] = (requirement("battery", "level", required=True),)

FULL_PLAN: tuple[ServiceRequirement, ...] = (
    *BATTERY_PLAN,
    requirement("heart_rate", "measurement", "body_sensor_location"),
    requirement("sport", "message", "message_response", "sensor", "record"),
    requirement(
        "device_information",
        "manufacturer",
        "model",
        "serial",
        "hardware_revision",
        "firmware_revision",
        "software_revision",
    ),
)

# Writing commands needs the sport message characteristic on top of the battery probe.
COMMAND_PLAN: tuple[ServiceRequirement, ...] = (
    *BATTERY_PLAN,
    requirement("sport", "message", "message_response", required=True),
)
