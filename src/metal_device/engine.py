"""Device resource engine: validate, create, read, update, delete.

The engine is the entry point a desired-state front end calls. It owns
no state between calls; each operation builds its own provisioner or
teardown controller over the injected adapter, so independent callers
can drive different devices concurrently.

Usage::

    engine = build_engine(EngineSettings.from_env())
    record = await engine.create(spec, timeout_seconds=1800)
    result = await engine.read(record.id, spec=spec)
    await engine.delete(record.id, timeout_seconds=600)
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any

import httpx
from structlog.contextvars import bound_contextvars

from metal_device.config.settings import EngineSettings, EngineSettingsError
from metal_device.devices.model import (
    REPLACEMENT_FIELDS,
    UPDATABLE_FIELDS,
    DeviceRecord,
    DeviceSpec,
)
from metal_device.devices.validation import DEFAULT_POLICY, ValidationPolicy, ensure_valid
from metal_device.errors import DeviceGoneError, DeviceNotFoundError, RequiresReplacementError
from metal_device.lifecycle.clock import Clock, SystemClock
from metal_device.lifecycle.provisioner import DeviceProvisioner, ProvisioningResult
from metal_device.lifecycle.reconciler import DeviceGone, DeviceReconciler, RefreshResult
from metal_device.lifecycle.teardown import DeviceTeardown, TeardownResult
from metal_device.observability.logging import configure_logging, get_logger
from metal_device.providers.device_adapter import DeviceAdapter, PacketDeviceAdapter
from metal_device.providers.packet_client import PacketClient

logger = get_logger(__name__)


class DeviceEngine:
    """Lifecycle operations for bare-metal devices.

    Args:
        adapter: Provisioning API adapter (injected, never global).
        clock: Time source for poll loops.
        policy: Allowed values used by the validator.
        poll_interval_seconds: Poll delay while waiting for ``active``.
        teardown_poll_interval_seconds: Poll delay while waiting for removal.
    """

    def __init__(
        self,
        adapter: DeviceAdapter,
        *,
        clock: Clock | None = None,
        policy: ValidationPolicy = DEFAULT_POLICY,
        poll_interval_seconds: float = 10.0,
        teardown_poll_interval_seconds: float = 5.0,
    ) -> None:
        self._adapter = adapter
        self._clock = clock or SystemClock()
        self._policy = policy
        self._poll_interval = poll_interval_seconds
        self._teardown_poll_interval = teardown_poll_interval_seconds
        self._reconciler = DeviceReconciler(adapter)

    @property
    def adapter(self) -> DeviceAdapter:
        return self._adapter

    async def aclose(self) -> None:
        close = getattr(self._adapter, 'aclose', None)
        if close is not None:
            await close()

    # ── Create ──────────────────────────────────────────────────────

    async def provision(self, spec: DeviceSpec, *, timeout_seconds: float) -> ProvisioningResult:
        """Validate and run the create flow, returning the raw outcome."""
        ensure_valid(spec, self._policy)
        provisioner = DeviceProvisioner(
            self._adapter,
            clock=self._clock,
            poll_interval_seconds=self._poll_interval,
        )
        return await provisioner.provision(spec, timeout_seconds=timeout_seconds)

    async def create(self, spec: DeviceSpec, *, timeout_seconds: float) -> DeviceRecord:
        """Create a device and return its reconciled record once active.

        Raises:
            DeviceValidationError: Before any remote call.
            RemoteRejectedError: The provider refused the create request.
            ProvisioningFailedError: The provider reported ``failed``.
            ProvisioningTimeoutError: Not active within ``timeout_seconds``.
            ProvisioningCancelledError: The wait was cancelled after submission.
            DeviceGoneError: Vanished between ``active`` and read-back.
        """
        with bound_contextvars(operation='create', hostname=spec.hostname):
            result = await self.provision(spec, timeout_seconds=timeout_seconds)
            device_id = result.raise_for_error().id

            with bound_contextvars(device_id=device_id):
                outcome = await self._reconciler.refresh(device_id)
                if isinstance(outcome, DeviceGone):
                    raise DeviceGoneError(device_id)
                return outcome

    # ── Read ────────────────────────────────────────────────────────

    async def read(self, device_id: str, *, spec: DeviceSpec | None = None) -> RefreshResult:
        """Refresh a tracked device; ``result.gone`` signals external deletion."""
        with bound_contextvars(operation='read', device_id=device_id):
            return await self._reconciler.read(device_id, spec=spec)

    # ── Update ──────────────────────────────────────────────────────

    async def update(
        self,
        device_id: str,
        spec: DeviceSpec,
        *,
        previous: DeviceSpec,
    ) -> DeviceRecord:
        """Apply the in-place changes between ``previous`` and ``spec``.

        Raises:
            DeviceValidationError: Before any remote call.
            RequiresReplacementError: A field that forces re-creation changed.
            DeviceGoneError: The device no longer exists.
        """
        with bound_contextvars(operation='update', device_id=device_id):
            changed = changed_fields(previous, spec)
            if changed:
                ensure_valid(spec, self._policy)

                replacing = [name for name in changed if name in REPLACEMENT_FIELDS]
                if replacing:
                    raise RequiresReplacementError(device_id, replacing)

                changes: dict[str, Any] = {
                    name: getattr(spec, name) for name in changed if name in UPDATABLE_FIELDS
                }
                try:
                    await self._adapter.update_device(device_id, changes)
                except DeviceNotFoundError as exc:
                    raise DeviceGoneError(device_id) from exc
                logger.info('device_updated', fields=sorted(changes))

            outcome = await self._reconciler.refresh(device_id)
            if isinstance(outcome, DeviceGone):
                raise DeviceGoneError(device_id)
            return outcome

    # ── Delete ──────────────────────────────────────────────────────

    async def delete(self, device_id: str, *, timeout_seconds: float) -> TeardownResult:
        """Delete a device and wait for it to disappear (idempotent)."""
        with bound_contextvars(operation='delete', device_id=device_id):
            teardown = DeviceTeardown(
                self._adapter,
                clock=self._clock,
                poll_interval_seconds=self._teardown_poll_interval,
            )
            return await teardown.destroy(device_id, timeout_seconds=timeout_seconds)

    # ── List ────────────────────────────────────────────────────────

    async def list_project_devices(self, project_id: str) -> list[DeviceRecord]:
        return await self._adapter.list_project_devices(project_id)


def changed_fields(previous: DeviceSpec, current: DeviceSpec) -> list[str]:
    """Names of spec fields whose effective value differs, in declaration order."""
    return [
        f.name for f in fields(DeviceSpec)
        if previous.effective(f.name) != current.effective(f.name)
    ]


def build_engine(
    settings: EngineSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
    setup_logging: bool = True,
) -> DeviceEngine:
    """Wire client, adapter and engine from settings.

    Raises:
        EngineSettingsError: If settings are invalid.
    """
    errors = settings.validate()
    if errors:
        raise EngineSettingsError(errors)

    if setup_logging:
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_format == 'json',
        )

    client = PacketClient(
        auth_token=settings.auth_token,
        base_url=settings.api_base_url,
        http_client=http_client,
        timeout_seconds=settings.request_timeout_seconds,
        max_retries=settings.max_retries,
    )
    return DeviceEngine(
        PacketDeviceAdapter(client),
        clock=clock,
        policy=settings.validation_policy,
        poll_interval_seconds=settings.poll_interval_seconds,
        teardown_poll_interval_seconds=settings.teardown_poll_interval_seconds,
    )
