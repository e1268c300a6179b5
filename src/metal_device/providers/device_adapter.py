"""Provisioning adapter contract and its Packet-backed implementation.

The lifecycle engine talks only to ``DeviceAdapter``. Implementations
return typed ``DeviceRecord`` values and raise structured adapter errors
so the engine can tell not-found from transient I/O from a permanent
rejection without inspecting message text.
"""

from __future__ import annotations

from typing import Any, Protocol

from metal_device.devices.model import (
    WIRE_FIELD_NAMES,
    DeviceRecord,
    DeviceSpec,
    IpAllocation,
    public_ipv4_subnet_size,
)
from metal_device.errors import (
    AdapterError,
    DeviceNotFoundError,
    RemoteRejectedError,
    TransientAdapterError,
)
from metal_device.observability.logging import get_logger

from .packet_client import PacketAPIError, PacketClient, PacketNotFoundError

logger = get_logger(__name__)


class DeviceAdapter(Protocol):
    """Typed CRUD calls against the provisioning API."""

    async def create_device(self, spec: DeviceSpec) -> DeviceRecord:
        """Submit a device; the returned record is usually not yet active."""
        ...

    async def get_device(self, device_id: str) -> DeviceRecord:
        """Fetch a device. Raises ``DeviceNotFoundError`` when absent."""
        ...

    async def update_device(self, device_id: str, changes: dict[str, Any]) -> DeviceRecord:
        """Apply in-place changes to a device."""
        ...

    async def delete_device(self, device_id: str) -> None:
        """Request deletion. Raises ``DeviceNotFoundError`` when absent."""
        ...

    async def list_project_devices(self, project_id: str) -> list[DeviceRecord]:
        """List every device of a project."""
        ...


def parse_device(data: dict[str, Any]) -> DeviceRecord:
    """Build a ``DeviceRecord`` from a Packet device document."""
    network = tuple(
        IpAllocation(
            address=str(ip.get('address', '')),
            gateway=str(ip.get('gateway') or ''),
            cidr=int(ip.get('cidr') or 0),
            family=int(ip.get('address_family') or 4),
            public=bool(ip.get('public', False)),
            management=bool(ip.get('management', False)),
        )
        for ip in data.get('ip_addresses') or ()
    )
    return DeviceRecord(
        id=str(data['id']),
        hostname=str(data.get('hostname') or ''),
        state=str(data.get('state') or 'unknown'),
        plan=_slug(data.get('plan')),
        facility=_slug(data.get('facility'), key='code'),
        operating_system=_slug(data.get('operating_system')),
        billing_cycle=str(data.get('billing_cycle') or ''),
        project_id=_project_id(data),
        root_password=str(data.get('root_password') or ''),
        public_ipv4_subnet_size=public_ipv4_subnet_size(network),
        ipxe_script_url=str(data.get('ipxe_script_url') or ''),
        always_pxe=bool(data.get('always_pxe', False)),
        user_data=str(data.get('userdata') or ''),
        description=str(data.get('description') or ''),
        tags=tuple(data.get('tags') or ()),
        locked=bool(data.get('locked', False)),
        network=network,
        created_at=str(data.get('created_at') or ''),
        updated_at=str(data.get('updated_at') or ''),
    )


def _slug(value: Any, *, key: str = 'slug') -> str:
    if isinstance(value, dict):
        return str(value.get(key) or value.get('slug') or '')
    return str(value or '')


def _project_id(data: dict[str, Any]) -> str:
    if data.get('project_id'):
        return str(data['project_id'])
    project = data.get('project')
    if isinstance(project, dict):
        if project.get('id'):
            return str(project['id'])
        href = str(project.get('href') or '')
        return href.rstrip('/').rsplit('/', 1)[-1]
    return ''


def _translate(exc: PacketAPIError, *, device_id: str | None = None) -> AdapterError:
    if isinstance(exc, PacketNotFoundError):
        return DeviceNotFoundError(exc.message, device_id=device_id, status_code=404)
    if exc.retryable:
        return TransientAdapterError(
            exc.message, device_id=device_id, status_code=exc.status_code or None,
        )
    return RemoteRejectedError(
        exc.message, device_id=device_id, status_code=exc.status_code or None,
    )


class PacketDeviceAdapter:
    """``DeviceAdapter`` backed by ``PacketClient``."""

    def __init__(self, client: PacketClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_device(self, spec: DeviceSpec) -> DeviceRecord:
        payload = spec.to_create_payload()
        try:
            data = await self._client.create_device(spec.project_id, payload)
        except PacketAPIError as exc:
            raise _translate(exc) from exc
        return parse_device(data)

    async def get_device(self, device_id: str) -> DeviceRecord:
        try:
            data = await self._client.get_device(device_id)
        except PacketAPIError as exc:
            raise _translate(exc, device_id=device_id) from exc
        return parse_device(data)

    async def update_device(self, device_id: str, changes: dict[str, Any]) -> DeviceRecord:
        payload = {
            WIRE_FIELD_NAMES.get(k, k): list(v) if isinstance(v, tuple) else v
            for k, v in changes.items()
        }
        try:
            data = await self._client.update_device(device_id, payload)
        except PacketAPIError as exc:
            raise _translate(exc, device_id=device_id) from exc
        return parse_device(data)

    async def delete_device(self, device_id: str) -> None:
        try:
            await self._client.delete_device(device_id)
        except PacketAPIError as exc:
            raise _translate(exc, device_id=device_id) from exc

    async def list_project_devices(self, project_id: str) -> list[DeviceRecord]:
        try:
            documents = await self._client.list_project_devices(project_id)
        except PacketAPIError as exc:
            raise _translate(exc) from exc
        logger.debug(
            'project_devices_listed',
            project_id=project_id,
            count=len(documents),
        )
        return [parse_device(doc) for doc in documents]
