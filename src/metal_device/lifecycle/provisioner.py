"""Create-flow driver: submit a device and wait until it is active.

The provisioner advances one ``DeviceLifecycle`` snapshot through the
state machine:

  1. ``submitting``: one create call. Any adapter error is terminal and
     returned unchanged; retrying belongs to the transport.
  2. ``awaiting_active``: poll ``get_device`` every ``poll_interval``
     until the device is active, the provider reports ``failed``, or the
     caller's deadline passes. Transient poll errors (and not-found while
     the new device propagates through the provider) are retried; only
     the deadline bounds the loop.

Outcomes are returned as a ``ProvisioningResult`` rather than raised so
callers can inspect the final snapshot; ``raise_for_error()`` converts a
failed result into its exception. Cancelling the wait is the one outcome
that is raised: ``ProvisioningCancelledError`` carries the accepted
``device_id`` so the caller can still clean the device up.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from metal_device.devices.model import DeviceRecord, DeviceSpec
from metal_device.errors import (
    AdapterError,
    DeviceEngineError,
    DeviceNotFoundError,
    ProvisioningCancelledError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    TransientAdapterError,
)
from metal_device.observability.logging import get_logger
from metal_device.observability.metrics import POLLS_TOTAL, PROVISION_DURATION_SECONDS
from metal_device.providers.device_adapter import DeviceAdapter

from . import state_machine as sm
from .clock import Clock, Deadline, SystemClock

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
CANCELLED_CODE = 'cancelled'


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    """Outcome of one create-flow run."""

    lifecycle: sm.DeviceLifecycle
    record: DeviceRecord | None = None
    error: DeviceEngineError | None = None

    @property
    def success(self) -> bool:
        return self.lifecycle.phase == sm.ACTIVE

    @property
    def device_id(self) -> str | None:
        return self.lifecycle.device_id

    def raise_for_error(self) -> DeviceRecord:
        """Raise the failure, or return the active device record."""
        if self.error is not None:
            raise self.error
        if self.record is None:
            raise ValueError(f'no device record in phase {self.lifecycle.phase!r}')
        return self.record


class DeviceProvisioner:
    """Drives a single device from submission to ``active``.

    Args:
        adapter: Provisioning API adapter.
        clock: Time source for polling. Defaults to the system clock.
        poll_interval_seconds: Delay between status polls.
    """

    def __init__(
        self,
        adapter: DeviceAdapter,
        *,
        clock: Clock | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError('poll_interval_seconds must be > 0')
        self._adapter = adapter
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval_seconds

    async def provision(
        self,
        spec: DeviceSpec,
        *,
        timeout_seconds: float,
    ) -> ProvisioningResult:
        """Submit ``spec`` and wait up to ``timeout_seconds`` for it to be active."""
        deadline = Deadline(self._clock, timeout_seconds)
        lifecycle = sm.start(spec.hostname, now=self._clock.monotonic())
        lifecycle = sm.begin_submit(lifecycle, now=self._clock.monotonic())

        try:
            record = await self._adapter.create_device(spec)
        except AdapterError as exc:
            lifecycle = sm.mark_failed(
                lifecycle,
                now=self._clock.monotonic(),
                error_code=exc.code,
                error_detail=str(exc),
            )
            logger.error(
                'device_submit_failed',
                hostname=spec.hostname,
                error_code=exc.code,
                error=str(exc),
            )
            return ProvisioningResult(lifecycle=lifecycle, error=exc)

        lifecycle = sm.accept_submission(
            lifecycle,
            device_id=record.id,
            remote_state=record.state,
            now=self._clock.monotonic(),
        )
        logger.info(
            'device_submitted',
            device_id=record.id,
            hostname=spec.hostname,
            remote_state=record.state,
        )
        return await self.await_active(lifecycle, record, deadline)

    async def await_active(
        self,
        lifecycle: sm.DeviceLifecycle,
        record: DeviceRecord,
        deadline: Deadline,
    ) -> ProvisioningResult:
        """Poll an accepted device until it reaches a terminal phase."""
        device_id = lifecycle.device_id
        if device_id is None:
            raise ValueError('await_active requires an accepted submission')
        submitted_at = self._clock.monotonic()

        try:
            while True:
                if record.is_active:
                    lifecycle = sm.mark_active(lifecycle, now=self._clock.monotonic())
                    elapsed = self._clock.monotonic() - submitted_at
                    PROVISION_DURATION_SECONDS.observe(elapsed)
                    logger.info(
                        'device_active',
                        device_id=device_id,
                        hostname=record.hostname,
                        polls=lifecycle.polls,
                        elapsed_seconds=round(elapsed, 1),
                    )
                    return ProvisioningResult(lifecycle=lifecycle, record=record)

                if record.is_failed:
                    error = ProvisioningFailedError(device_id, record.state)
                    lifecycle = sm.mark_failed(
                        lifecycle,
                        now=self._clock.monotonic(),
                        error_code=error.code,
                        error_detail=str(error),
                        remote_state=record.state,
                    )
                    logger.error(
                        'device_provisioning_failed',
                        device_id=device_id,
                        remote_state=record.state,
                    )
                    return ProvisioningResult(lifecycle=lifecycle, record=record, error=error)

                if deadline.expired:
                    return self._timed_out(lifecycle, record, deadline)

                await self._clock.sleep(min(self._poll_interval, deadline.remaining()))

                try:
                    record = await self._adapter.get_device(device_id)
                except (TransientAdapterError, DeviceNotFoundError) as exc:
                    POLLS_TOTAL.labels(operation='await_active', outcome=exc.kind.value).inc()
                    lifecycle = sm.record_transient_error(
                        lifecycle,
                        error_code=exc.code,
                        error_detail=str(exc),
                    )
                    logger.warning(
                        'device_poll_failed',
                        device_id=device_id,
                        error_code=exc.code,
                        error=str(exc),
                        remaining_seconds=round(deadline.remaining(), 1),
                    )
                    continue
                except AdapterError as exc:
                    POLLS_TOTAL.labels(operation='await_active', outcome=exc.kind.value).inc()
                    lifecycle = sm.mark_failed(
                        lifecycle,
                        now=self._clock.monotonic(),
                        error_code=exc.code,
                        error_detail=str(exc),
                    )
                    logger.error(
                        'device_poll_rejected',
                        device_id=device_id,
                        error_code=exc.code,
                        error=str(exc),
                    )
                    if exc.device_id is None:
                        exc.device_id = device_id
                    return ProvisioningResult(lifecycle=lifecycle, record=record, error=exc)

                POLLS_TOTAL.labels(operation='await_active', outcome='ok').inc()
                lifecycle = sm.record_poll(lifecycle, remote_state=record.state)
                logger.debug(
                    'device_polled',
                    device_id=device_id,
                    remote_state=record.state,
                    polls=lifecycle.polls,
                )
        except asyncio.CancelledError as exc:
            # The remote request stays accepted; only the local wait stops.
            lifecycle = sm.mark_timed_out(
                lifecycle,
                now=self._clock.monotonic(),
                error_code=CANCELLED_CODE,
                error_detail='wait for active cancelled by caller',
            )
            logger.warning(
                'device_wait_cancelled',
                device_id=device_id,
                phase=lifecycle.phase,
                remote_state=record.state,
            )
            raise ProvisioningCancelledError(device_id, last_state=record.state) from exc

    def _timed_out(
        self,
        lifecycle: sm.DeviceLifecycle,
        record: DeviceRecord,
        deadline: Deadline,
    ) -> ProvisioningResult:
        error = ProvisioningTimeoutError(
            record.id,
            timeout_seconds=deadline.timeout_seconds,
            last_state=record.state,
        )
        lifecycle = sm.mark_timed_out(
            lifecycle,
            now=self._clock.monotonic(),
            error_code=error.code,
            error_detail=str(error),
        )
        logger.error(
            'device_provisioning_timed_out',
            device_id=record.id,
            remote_state=record.state,
            polls=lifecycle.polls,
            timeout_seconds=deadline.timeout_seconds,
        )
        return ProvisioningResult(lifecycle=lifecycle, record=record, error=error)
