"""Device lifecycle: provisioning, reconciliation, and teardown."""

from .clock import Clock, Deadline, FakeClock, SystemClock
from .provisioner import DeviceProvisioner, ProvisioningResult
from .reconciler import DeviceGone, DeviceReconciler, FieldDrift, RefreshResult, detect_drift
from .state_machine import (
    ACTIVE,
    AWAITING_ACTIVE,
    FAILED,
    PENDING,
    SUBMITTING,
    TIMED_OUT,
    DeviceLifecycle,
)
from .teardown import DeviceTeardown, TeardownResult, check_destroyed

__all__ = [
    'ACTIVE',
    'AWAITING_ACTIVE',
    'Clock',
    'Deadline',
    'DeviceGone',
    'DeviceLifecycle',
    'DeviceProvisioner',
    'DeviceReconciler',
    'DeviceTeardown',
    'FAILED',
    'FakeClock',
    'FieldDrift',
    'PENDING',
    'ProvisioningResult',
    'RefreshResult',
    'SUBMITTING',
    'SystemClock',
    'TIMED_OUT',
    'TeardownResult',
    'check_destroyed',
    'detect_drift',
]
