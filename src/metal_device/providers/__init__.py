"""Provisioning API adapters."""

from .device_adapter import DeviceAdapter, PacketDeviceAdapter, parse_device
from .in_memory import InMemoryDeviceAdapter
from .packet_client import (
    PacketAPIError,
    PacketClient,
    PacketNotFoundError,
    PacketTimeoutError,
    PacketTransportError,
)

__all__ = [
    "DeviceAdapter",
    "InMemoryDeviceAdapter",
    "PacketAPIError",
    "PacketClient",
    "PacketDeviceAdapter",
    "PacketNotFoundError",
    "PacketTimeoutError",
    "PacketTransportError",
    "parse_device",
]
