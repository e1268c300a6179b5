"""Device lifecycle state machine.

Implements the create flow:
  pending -> submitting -> awaiting_active -> active

And the terminal error transitions:
  submitting -> failed
  awaiting_active -> failed | timed_out

``timed_out`` is distinct from ``failed``: the provider may still finish
provisioning a device after the local wait gave up on it. Transitions
return new immutable snapshots and count each entered phase in
``metal_device_lifecycle_transitions_total``; the provisioner owns the
snapshot of exactly one device at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType

from metal_device.errors import InvalidStateTransition
from metal_device.observability.metrics import LIFECYCLE_TRANSITIONS_TOTAL

PENDING = 'pending'
SUBMITTING = 'submitting'
AWAITING_ACTIVE = 'awaiting_active'
ACTIVE = 'active'
FAILED = 'failed'
TIMED_OUT = 'timed_out'

TERMINAL_PHASES = frozenset({ACTIVE, FAILED, TIMED_OUT})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        PENDING: frozenset({SUBMITTING}),
        SUBMITTING: frozenset({AWAITING_ACTIVE, FAILED}),
        AWAITING_ACTIVE: frozenset({ACTIVE, FAILED, TIMED_OUT}),
        ACTIVE: frozenset(),
        FAILED: frozenset(),
        TIMED_OUT: frozenset(),
    }
)


@dataclass(frozen=True, slots=True)
class DeviceLifecycle:
    """Snapshot of one device's progress through the create flow."""

    hostname: str
    phase: str = PENDING
    device_id: str | None = None
    remote_state: str | None = None
    polls: int = 0
    transient_errors: int = 0
    phase_entered_at: float | None = None
    last_error_code: str | None = None
    last_error_detail: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


def start(hostname: str, *, now: float | None = None) -> DeviceLifecycle:
    """Create a pending lifecycle snapshot."""
    return DeviceLifecycle(hostname=hostname, phase_entered_at=now)


def begin_submit(lifecycle: DeviceLifecycle, *, now: float) -> DeviceLifecycle:
    return _transition(lifecycle, to_phase=SUBMITTING, now=now)


def accept_submission(
    lifecycle: DeviceLifecycle,
    *,
    device_id: str,
    remote_state: str,
    now: float,
) -> DeviceLifecycle:
    """Remote side accepted the create request and assigned an id."""
    if not device_id:
        raise ValueError('device_id is required')
    return _transition(
        lifecycle,
        to_phase=AWAITING_ACTIVE,
        now=now,
        device_id=device_id,
        remote_state=remote_state,
    )


def record_poll(lifecycle: DeviceLifecycle, *, remote_state: str) -> DeviceLifecycle:
    """Note one successful poll without changing phase."""
    if lifecycle.phase != AWAITING_ACTIVE:
        raise InvalidStateTransition(lifecycle.phase, AWAITING_ACTIVE)
    return replace(lifecycle, polls=lifecycle.polls + 1, remote_state=remote_state)


def record_transient_error(
    lifecycle: DeviceLifecycle,
    *,
    error_code: str,
    error_detail: str,
) -> DeviceLifecycle:
    """Note one failed poll; the phase stays ``awaiting_active``."""
    if lifecycle.phase != AWAITING_ACTIVE:
        raise InvalidStateTransition(lifecycle.phase, AWAITING_ACTIVE)
    return replace(
        lifecycle,
        polls=lifecycle.polls + 1,
        transient_errors=lifecycle.transient_errors + 1,
        last_error_code=error_code,
        last_error_detail=error_detail,
    )


def mark_active(lifecycle: DeviceLifecycle, *, now: float) -> DeviceLifecycle:
    return _transition(
        lifecycle,
        to_phase=ACTIVE,
        now=now,
        remote_state='active',
        clear_error=True,
    )


def mark_failed(
    lifecycle: DeviceLifecycle,
    *,
    now: float,
    error_code: str,
    error_detail: str,
    remote_state: str | None = None,
) -> DeviceLifecycle:
    return _transition(
        lifecycle,
        to_phase=FAILED,
        now=now,
        remote_state=remote_state,
        error_code=error_code,
        error_detail=error_detail,
    )


def mark_timed_out(
    lifecycle: DeviceLifecycle,
    *,
    now: float,
    error_code: str,
    error_detail: str,
) -> DeviceLifecycle:
    return _transition(
        lifecycle,
        to_phase=TIMED_OUT,
        now=now,
        error_code=error_code,
        error_detail=error_detail,
    )


def _transition(
    lifecycle: DeviceLifecycle,
    *,
    to_phase: str,
    now: float,
    device_id: str | None = None,
    remote_state: str | None = None,
    error_code: str | None = None,
    error_detail: str | None = None,
    clear_error: bool = False,
) -> DeviceLifecycle:
    allowed = ALLOWED_TRANSITIONS.get(lifecycle.phase, frozenset())
    if to_phase not in allowed:
        raise InvalidStateTransition(lifecycle.phase, to_phase)

    LIFECYCLE_TRANSITIONS_TOTAL.labels(phase=to_phase).inc()
    return replace(
        lifecycle,
        phase=to_phase,
        phase_entered_at=now,
        device_id=device_id or lifecycle.device_id,
        remote_state=remote_state or lifecycle.remote_state,
        last_error_code=None if clear_error else (error_code or lifecycle.last_error_code),
        last_error_detail=None if clear_error else (error_detail or lifecycle.last_error_detail),
    )
