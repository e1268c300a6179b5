"""Shared fixtures for device engine tests."""

from __future__ import annotations

import pytest

from metal_device.engine import DeviceEngine
from metal_device.lifecycle.clock import FakeClock
from metal_device.providers.in_memory import InMemoryDeviceAdapter

PROJECT_ID = 'proj-7f3c'


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapter() -> InMemoryDeviceAdapter:
    return InMemoryDeviceAdapter(projects={PROJECT_ID})


@pytest.fixture
def engine(adapter: InMemoryDeviceAdapter, clock: FakeClock) -> DeviceEngine:
    return DeviceEngine(
        adapter,
        clock=clock,
        poll_interval_seconds=10,
        teardown_poll_interval_seconds=5,
    )
