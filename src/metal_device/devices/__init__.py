"""Device specification, observed record, and pre-flight validation."""

from .model import (
    CUSTOM_IPXE,
    DEFAULT_PUBLIC_IPV4_SUBNET_SIZE,
    DeviceRecord,
    DeviceSpec,
    IpAllocation,
)
from .validation import (
    DEFAULT_POLICY,
    ValidationPolicy,
    collect_violations,
    ensure_valid,
    validate,
)

__all__ = [
    'CUSTOM_IPXE',
    'DEFAULT_POLICY',
    'DEFAULT_PUBLIC_IPV4_SUBNET_SIZE',
    'DeviceRecord',
    'DeviceSpec',
    'IpAllocation',
    'ValidationPolicy',
    'collect_violations',
    'ensure_valid',
    'validate',
]
