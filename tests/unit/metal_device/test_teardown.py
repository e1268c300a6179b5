"""Delete-flow tests: idempotent delete, absence polling, check_destroyed."""

from __future__ import annotations

from dataclasses import replace

import pytest

from metal_device.devices.model import DeviceSpec
from metal_device.errors import (
    DeviceStillExistsError,
    RemoteRejectedError,
    TeardownTimeoutError,
    TransientAdapterError,
)
from metal_device.lifecycle.clock import FakeClock
from metal_device.lifecycle.teardown import DeviceTeardown, check_destroyed
from metal_device.providers.in_memory import InMemoryDeviceAdapter


def _spec(**overrides) -> DeviceSpec:
    spec = DeviceSpec(
        hostname='test-device',
        plan='baremetal_0',
        facility='sjc1',
        operating_system='ubuntu_16_04',
        billing_cycle='hourly',
        project_id='proj-7f3c',
    )
    return replace(spec, **overrides)


def _make_teardown(
    adapter: InMemoryDeviceAdapter,
) -> tuple[DeviceTeardown, FakeClock]:
    clock = FakeClock()
    return DeviceTeardown(adapter, clock=clock, poll_interval_seconds=5.0), clock


# ── destroy ──────────────────────────────────────────────────────────


class TestDestroy:
    @pytest.mark.asyncio
    async def test_waits_until_not_found(self):
        adapter = InMemoryDeviceAdapter(polls_until_gone=3)
        record = await adapter.create_device(_spec())
        teardown, clock = _make_teardown(adapter)

        result = await teardown.destroy(record.id, timeout_seconds=300)

        assert result.already_gone is False
        assert result.polls == 3
        assert clock.sleeps == [5.0, 5.0, 5.0]
        assert not adapter.exists(record.id)

    @pytest.mark.asyncio
    async def test_immediate_removal(self):
        adapter = InMemoryDeviceAdapter(polls_until_gone=0)
        record = await adapter.create_device(_spec())
        teardown, _ = _make_teardown(adapter)

        result = await teardown.destroy(record.id, timeout_seconds=300)

        assert result.polls == 1
        assert not adapter.exists(record.id)

    @pytest.mark.asyncio
    async def test_second_destroy_is_a_no_op(self):
        adapter = InMemoryDeviceAdapter()
        record = await adapter.create_device(_spec())
        teardown, _ = _make_teardown(adapter)

        await teardown.destroy(record.id, timeout_seconds=300)
        result = await teardown.destroy(record.id, timeout_seconds=300)

        assert result.already_gone is True
        assert result.polls == 0

    @pytest.mark.asyncio
    async def test_unknown_device_counts_as_deleted(self):
        teardown, clock = _make_teardown(InMemoryDeviceAdapter())

        result = await teardown.destroy('dev-never-existed', timeout_seconds=300)

        assert result.already_gone is True
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_transient_poll_errors_are_retried(self):
        adapter = InMemoryDeviceAdapter(polls_until_gone=1)
        record = await adapter.create_device(_spec())
        adapter.get_errors = [TransientAdapterError('503')]
        teardown, _ = _make_teardown(adapter)

        result = await teardown.destroy(record.id, timeout_seconds=300)

        assert result.polls == 2

    @pytest.mark.asyncio
    async def test_times_out_when_device_lingers(self):
        adapter = InMemoryDeviceAdapter(polls_until_gone=100)
        record = await adapter.create_device(_spec())
        teardown, clock = _make_teardown(adapter)

        with pytest.raises(TeardownTimeoutError) as exc_info:
            await teardown.destroy(record.id, timeout_seconds=12)

        assert exc_info.value.device_id == record.id
        assert exc_info.value.last_state == 'deprovisioning'
        assert 'not removed in time' in str(exc_info.value)
        assert clock.sleeps == [5.0, 5.0, 2.0]
        assert adapter.exists(record.id)

    @pytest.mark.asyncio
    async def test_locked_device_is_rejected(self):
        adapter = InMemoryDeviceAdapter()
        record = await adapter.create_device(_spec(locked=True))
        teardown, _ = _make_teardown(adapter)

        with pytest.raises(RemoteRejectedError, match='locked'):
            await teardown.destroy(record.id, timeout_seconds=300)

        assert adapter.exists(record.id)


def test_rejects_non_positive_poll_interval():
    with pytest.raises(ValueError, match='poll_interval_seconds'):
        DeviceTeardown(InMemoryDeviceAdapter(), poll_interval_seconds=-1)


# ── check_destroyed ──────────────────────────────────────────────────


class TestCheckDestroyed:
    @pytest.mark.asyncio
    async def test_passes_when_all_gone(self):
        adapter = InMemoryDeviceAdapter()

        await check_destroyed(adapter, ['dev-a', 'dev-b'])

    @pytest.mark.asyncio
    async def test_lists_survivors(self):
        adapter = InMemoryDeviceAdapter()
        first = await adapter.create_device(_spec(hostname='a'))
        second = await adapter.create_device(_spec(hostname='b'))
        adapter.remove(first.id)

        with pytest.raises(DeviceStillExistsError, match='device still exists') as exc_info:
            await check_destroyed(adapter, [first.id, second.id])

        assert exc_info.value.device_ids == (second.id,)

    @pytest.mark.asyncio
    async def test_adapter_errors_propagate(self):
        adapter = InMemoryDeviceAdapter(get_errors=[TransientAdapterError('503')])

        with pytest.raises(TransientAdapterError):
            await check_destroyed(adapter, ['dev-a'])
