"""Device lifecycle state-machine tests."""

from __future__ import annotations

import pytest

from metal_device.errors import InvalidStateTransition
from metal_device.lifecycle import state_machine as sm


def _awaiting() -> sm.DeviceLifecycle:
    lifecycle = sm.start('test-device', now=0.0)
    lifecycle = sm.begin_submit(lifecycle, now=1.0)
    return sm.accept_submission(lifecycle, device_id='dev-1', remote_state='queued', now=2.0)


class TestStart:
    def test_defaults(self):
        lifecycle = sm.start('test-device')
        assert lifecycle.phase == sm.PENDING
        assert lifecycle.device_id is None
        assert lifecycle.polls == 0
        assert lifecycle.is_terminal is False


class TestHappyPath:
    def test_pending_to_active(self):
        lifecycle = _awaiting()
        assert lifecycle.phase == sm.AWAITING_ACTIVE
        assert lifecycle.device_id == 'dev-1'
        assert lifecycle.remote_state == 'queued'

        lifecycle = sm.record_poll(lifecycle, remote_state='provisioning')
        assert lifecycle.polls == 1
        assert lifecycle.phase == sm.AWAITING_ACTIVE

        lifecycle = sm.mark_active(lifecycle, now=30.0)
        assert lifecycle.phase == sm.ACTIVE
        assert lifecycle.remote_state == 'active'
        assert lifecycle.phase_entered_at == 30.0
        assert lifecycle.is_terminal

    def test_accept_requires_device_id(self):
        lifecycle = sm.begin_submit(sm.start('h'), now=0.0)
        with pytest.raises(ValueError, match='device_id is required'):
            sm.accept_submission(lifecycle, device_id='', remote_state='queued', now=1.0)


class TestErrorTransitions:
    def test_submitting_to_failed(self):
        lifecycle = sm.begin_submit(sm.start('h'), now=0.0)
        lifecycle = sm.mark_failed(
            lifecycle, now=1.0, error_code='remote_rejected', error_detail='bad plan',
        )
        assert lifecycle.phase == sm.FAILED
        assert lifecycle.device_id is None
        assert lifecycle.last_error_code == 'remote_rejected'

    def test_awaiting_to_failed_keeps_device_id(self):
        lifecycle = sm.mark_failed(
            _awaiting(),
            now=5.0,
            error_code='provisioning_failed',
            error_detail='boom',
            remote_state='failed',
        )
        assert lifecycle.device_id == 'dev-1'
        assert lifecycle.remote_state == 'failed'

    def test_awaiting_to_timed_out(self):
        lifecycle = sm.mark_timed_out(
            _awaiting(), now=9.0, error_code='provisioning_timed_out', error_detail='late',
        )
        assert lifecycle.phase == sm.TIMED_OUT
        assert lifecycle.is_terminal

    def test_transient_errors_do_not_change_phase(self):
        lifecycle = sm.record_transient_error(
            _awaiting(), error_code='transient_io', error_detail='503',
        )
        lifecycle = sm.record_transient_error(
            lifecycle, error_code='transient_io', error_detail='timeout',
        )
        assert lifecycle.phase == sm.AWAITING_ACTIVE
        assert lifecycle.transient_errors == 2
        assert lifecycle.polls == 2
        assert lifecycle.last_error_detail == 'timeout'

    def test_active_clears_transient_error(self):
        lifecycle = sm.record_transient_error(
            _awaiting(), error_code='transient_io', error_detail='503',
        )
        lifecycle = sm.mark_active(lifecycle, now=3.0)
        assert lifecycle.last_error_code is None
        assert lifecycle.transient_errors == 1


class TestInvalidTransitions:
    def test_pending_cannot_go_active(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            sm.mark_active(sm.start('h'), now=0.0)
        assert exc_info.value.from_phase == sm.PENDING
        assert exc_info.value.to_phase == sm.ACTIVE

    def test_submitting_cannot_time_out(self):
        lifecycle = sm.begin_submit(sm.start('h'), now=0.0)
        with pytest.raises(InvalidStateTransition):
            sm.mark_timed_out(lifecycle, now=1.0, error_code='x', error_detail='y')

    @pytest.mark.parametrize('terminal', ['active', 'failed', 'timed_out'])
    def test_terminal_phases_are_final(self, terminal):
        lifecycle = _awaiting()
        if terminal == 'active':
            lifecycle = sm.mark_active(lifecycle, now=1.0)
        elif terminal == 'failed':
            lifecycle = sm.mark_failed(lifecycle, now=1.0, error_code='x', error_detail='y')
        else:
            lifecycle = sm.mark_timed_out(lifecycle, now=1.0, error_code='x', error_detail='y')

        with pytest.raises(InvalidStateTransition):
            sm.mark_failed(lifecycle, now=2.0, error_code='x', error_detail='y')
        with pytest.raises(InvalidStateTransition):
            sm.record_poll(lifecycle, remote_state='active')

    def test_poll_before_submission(self):
        with pytest.raises(InvalidStateTransition):
            sm.record_poll(sm.start('h'), remote_state='queued')
