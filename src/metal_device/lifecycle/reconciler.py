"""Read-back of remote device state and drift detection.

The remote record is authoritative: a refresh replaces the locally
cached attribute set wholesale. A device the caller still tracks but
the provider no longer knows is reported as ``DeviceGone``; re-creating
it is the caller's decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from metal_device.devices.model import DeviceRecord, DeviceSpec
from metal_device.errors import DeviceNotFoundError
from metal_device.observability.logging import get_logger
from metal_device.providers.device_adapter import DeviceAdapter

logger = get_logger(__name__)

_DRIFT_FIELDS = (
    'hostname',
    'plan',
    'facility',
    'operating_system',
    'billing_cycle',
    'project_id',
    'public_ipv4_subnet_size',
    'ipxe_script_url',
    'always_pxe',
    'user_data',
    'description',
    'tags',
    'locked',
)


@dataclass(frozen=True, slots=True)
class DeviceGone:
    """Refresh outcome for a device the provider no longer has."""

    device_id: str


@dataclass(frozen=True, slots=True)
class FieldDrift:
    field: str
    desired: Any
    observed: Any


@dataclass(frozen=True, slots=True)
class RefreshResult:
    """Outcome of a read: either a fresh record or ``gone``."""

    device_id: str
    record: DeviceRecord | None
    drift: tuple[FieldDrift, ...] = ()

    @property
    def gone(self) -> bool:
        return self.record is None

    @property
    def attributes(self) -> dict[str, Any]:
        """Replacement attribute set; empty when the device is gone."""
        if self.record is None:
            return {}
        return self.record.to_attributes()

    @property
    def has_drift(self) -> bool:
        return bool(self.drift)


class DeviceReconciler:
    """Maps remote device state back onto the caller's view."""

    def __init__(self, adapter: DeviceAdapter) -> None:
        self._adapter = adapter

    async def refresh(self, device_id: str) -> DeviceRecord | DeviceGone:
        """Fetch the current remote record.

        Not-found becomes ``DeviceGone``; every other adapter error
        propagates to the caller.
        """
        try:
            record = await self._adapter.get_device(device_id)
        except DeviceNotFoundError:
            logger.info('device_gone', device_id=device_id)
            return DeviceGone(device_id)
        logger.debug('device_refreshed', device_id=device_id, remote_state=record.state)
        return record

    async def read(
        self,
        device_id: str,
        *,
        spec: DeviceSpec | None = None,
    ) -> RefreshResult:
        """Refresh ``device_id`` and compare it with ``spec`` when given."""
        outcome = await self.refresh(device_id)
        if isinstance(outcome, DeviceGone):
            return RefreshResult(device_id=device_id, record=None)

        drift = detect_drift(spec, outcome) if spec is not None else ()
        if drift:
            logger.info(
                'device_drift_detected',
                device_id=device_id,
                fields=[d.field for d in drift],
            )
        return RefreshResult(device_id=device_id, record=outcome, drift=drift)


def detect_drift(spec: DeviceSpec, record: DeviceRecord) -> tuple[FieldDrift, ...]:
    """Fields whose remote value differs from the desired one."""
    drift: list[FieldDrift] = []
    for name in _DRIFT_FIELDS:
        desired = spec.effective(name)
        observed = getattr(record, name)
        if name == 'tags':
            if sorted(desired) != sorted(observed):
                drift.append(FieldDrift(name, desired, observed))
        elif desired != observed:
            drift.append(FieldDrift(name, desired, observed))
    return tuple(drift)

