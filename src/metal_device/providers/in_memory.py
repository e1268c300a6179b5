"""Scriptable in-memory ``DeviceAdapter`` for tests and dry runs.

Simulates the provider's asynchronous provisioning: a created device is
``queued``, moves to ``provisioning`` on the first poll and reaches its
final state after ``polls_until_active`` polls. Deletion likewise takes
``polls_until_gone`` polls before the device disappears. Scripted
exceptions can be injected per call to exercise error paths.
"""

from __future__ import annotations

import itertools
import secrets
from dataclasses import dataclass, replace
from typing import Any, Iterable

from metal_device.devices.model import (
    ACTIVE_STATE,
    DEFAULT_PUBLIC_IPV4_SUBNET_SIZE,
    DeviceRecord,
    DeviceSpec,
    IpAllocation,
)
from metal_device.errors import DeviceNotFoundError, RemoteRejectedError


@dataclass(slots=True)
class _Tracked:
    record: DeviceRecord
    polls: int = 0
    deleting: bool = False
    polls_until_gone: int = 0


class InMemoryDeviceAdapter:
    """Test adapter that tracks calls and simulates provider latency."""

    def __init__(
        self,
        *,
        projects: Iterable[str] | None = None,
        polls_until_active: int = 2,
        final_state: str = ACTIVE_STATE,
        polls_until_gone: int = 1,
        create_error: Exception | None = None,
        get_errors: Iterable[Exception] = (),
        delete_error: Exception | None = None,
    ) -> None:
        self.projects = set(projects) if projects is not None else None
        self.polls_until_active = polls_until_active
        self.final_state = final_state
        self.polls_until_gone = polls_until_gone
        self.create_error = create_error
        self.get_errors = list(get_errors)
        self.delete_error = delete_error
        self.calls: list[tuple[str, str]] = []
        self._devices: dict[str, _Tracked] = {}
        self._seq = itertools.count(1)

    # ── DeviceAdapter ───────────────────────────────────────────────

    async def create_device(self, spec: DeviceSpec) -> DeviceRecord:
        self.calls.append(('create_device', spec.hostname))
        if self.create_error is not None:
            raise self.create_error
        if self.projects is not None and spec.project_id not in self.projects:
            raise RemoteRejectedError(
                f'project {spec.project_id} not found', status_code=422,
            )

        n = next(self._seq)
        device_id = f'dev-{n:04d}-{secrets.token_hex(4)}'
        subnet = spec.public_ipv4_subnet_size or DEFAULT_PUBLIC_IPV4_SUBNET_SIZE
        record = DeviceRecord(
            id=device_id,
            hostname=spec.hostname,
            state='queued',
            plan=spec.plan,
            facility=spec.facility,
            operating_system=spec.operating_system,
            billing_cycle=spec.billing_cycle,
            project_id=spec.project_id,
            public_ipv4_subnet_size=subnet,
            ipxe_script_url=spec.ipxe_script_url,
            always_pxe=spec.always_pxe,
            user_data=spec.user_data,
            description=spec.description,
            tags=spec.tags,
            locked=spec.locked,
            network=(
                IpAllocation(f'147.75.{n // 256}.{n % 256}', cidr=subnet),
                IpAllocation(f'2604:1380::{n:x}', cidr=127, family=6),
                IpAllocation(f'10.80.{n // 256}.{n % 256}', cidr=31, public=False),
            ),
        )
        self._devices[device_id] = _Tracked(record=record)
        return record

    async def get_device(self, device_id: str) -> DeviceRecord:
        self.calls.append(('get_device', device_id))
        if self.get_errors:
            raise self.get_errors.pop(0)

        tracked = self._require(device_id)
        tracked.polls += 1

        if tracked.deleting:
            tracked.polls_until_gone -= 1
            if tracked.polls_until_gone <= 0:
                del self._devices[device_id]
                raise DeviceNotFoundError('Not found', device_id=device_id, status_code=404)
            return tracked.record

        if tracked.record.state in ('queued', 'provisioning'):
            if tracked.polls >= self.polls_until_active:
                tracked.record = self._finish(tracked.record)
            else:
                tracked.record = replace(tracked.record, state='provisioning')
        return tracked.record

    async def update_device(self, device_id: str, changes: dict[str, Any]) -> DeviceRecord:
        self.calls.append(('update_device', device_id))
        tracked = self._require(device_id)
        tracked.record = replace(tracked.record, **changes)
        return tracked.record

    async def delete_device(self, device_id: str) -> None:
        self.calls.append(('delete_device', device_id))
        if self.delete_error is not None:
            raise self.delete_error
        tracked = self._require(device_id)
        if tracked.record.locked:
            raise RemoteRejectedError(
                'Cannot delete a locked device', device_id=device_id, status_code=422,
            )
        if self.polls_until_gone <= 0:
            del self._devices[device_id]
            return
        tracked.deleting = True
        tracked.polls_until_gone = self.polls_until_gone
        tracked.record = replace(tracked.record, state='deprovisioning')

    async def list_project_devices(self, project_id: str) -> list[DeviceRecord]:
        self.calls.append(('list_project_devices', project_id))
        return [
            t.record for t in self._devices.values()
            if t.record.project_id == project_id
        ]

    # ── Out-of-band manipulation (drift, external deletion) ─────────

    def set_remote(self, device_id: str, **changes: Any) -> None:
        """Change the remote record behind the engine's back."""
        tracked = self._require(device_id)
        tracked.record = replace(tracked.record, **changes)

    def remove(self, device_id: str) -> None:
        """Delete a device behind the engine's back."""
        self._devices.pop(device_id, None)

    def exists(self, device_id: str) -> bool:
        return device_id in self._devices

    def _require(self, device_id: str) -> _Tracked:
        tracked = self._devices.get(device_id)
        if tracked is None:
            raise DeviceNotFoundError('Not found', device_id=device_id, status_code=404)
        return tracked

    def _finish(self, record: DeviceRecord) -> DeviceRecord:
        if self.final_state == ACTIVE_STATE:
            return replace(
                record,
                state=ACTIVE_STATE,
                root_password=secrets.token_urlsafe(12),
            )
        return replace(record, state=self.final_state)
