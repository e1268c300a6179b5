"""Teardown controller: delete a device and wait for it to disappear.

Delete is idempotent: a device the provider no longer knows counts as
already deleted. After the delete request the controller polls until
``get_device`` reports not-found or the caller's deadline passes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable

from metal_device.errors import (
    AdapterError,
    DeviceNotFoundError,
    DeviceStillExistsError,
    TeardownTimeoutError,
    TransientAdapterError,
)
from metal_device.observability.logging import get_logger
from metal_device.observability.metrics import POLLS_TOTAL
from metal_device.providers.device_adapter import DeviceAdapter

from .clock import Clock, Deadline, SystemClock

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class TeardownResult:
    device_id: str
    already_gone: bool = False
    polls: int = 0


class DeviceTeardown:
    """Issues delete for one device and confirms its absence."""

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

    async def destroy(self, device_id: str, *, timeout_seconds: float) -> TeardownResult:
        """Delete ``device_id`` and wait until the provider no longer has it.

        Raises:
            TeardownTimeoutError: The device was still present at the deadline.
            AdapterError: The delete request itself failed.
        """
        deadline = Deadline(self._clock, timeout_seconds)
        try:
            await self._adapter.delete_device(device_id)
        except DeviceNotFoundError:
            logger.info('device_already_deleted', device_id=device_id)
            return TeardownResult(device_id=device_id, already_gone=True)

        logger.info('device_delete_requested', device_id=device_id)
        polls = 0
        last_state: str | None = None
        try:
            while not deadline.expired:
                await self._clock.sleep(min(self._poll_interval, deadline.remaining()))
                polls += 1
                try:
                    record = await self._adapter.get_device(device_id)
                except DeviceNotFoundError:
                    POLLS_TOTAL.labels(operation='await_gone', outcome='not_found').inc()
                    logger.info('device_deleted', device_id=device_id, polls=polls)
                    return TeardownResult(device_id=device_id, polls=polls)
                except TransientAdapterError as exc:
                    POLLS_TOTAL.labels(operation='await_gone', outcome='transient').inc()
                    logger.warning(
                        'device_poll_failed',
                        device_id=device_id,
                        error_code=exc.code,
                        error=str(exc),
                        remaining_seconds=round(deadline.remaining(), 1),
                    )
                    continue
                POLLS_TOTAL.labels(operation='await_gone', outcome='present').inc()
                last_state = record.state
        except asyncio.CancelledError:
            logger.warning('device_teardown_wait_cancelled', device_id=device_id, polls=polls)
            raise

        logger.error(
            'device_teardown_timed_out',
            device_id=device_id,
            remote_state=last_state,
            polls=polls,
        )
        raise TeardownTimeoutError(
            device_id,
            timeout_seconds=deadline.timeout_seconds,
            last_state=last_state,
        )


async def check_destroyed(adapter: DeviceAdapter, device_ids: Iterable[str]) -> None:
    """Confirm every id is gone from the provider.

    Raises:
        DeviceStillExistsError: Listing every id that is still found.
    """
    survivors: list[str] = []
    for device_id in device_ids:
        try:
            await adapter.get_device(device_id)
        except DeviceNotFoundError:
            continue
        except AdapterError:
            logger.error('destroy_check_failed', device_id=device_id)
            raise
        survivors.append(device_id)
    if survivors:
        raise DeviceStillExistsError(survivors)
