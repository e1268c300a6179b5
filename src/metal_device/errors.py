"""Error taxonomy for the device lifecycle engine.

Every terminal failure the engine can report is a ``DeviceEngineError``
carrying a machine-checkable ``code`` so callers branch on kind rather
than message text. Two message phrases are part of the public contract
and are matched literally by callers:

  - ``conflicts with``       (mutually exclusive fields)
  - ``must be provided when`` (conditionally required fields)

Errors raised after the remote side accepted a create request carry the
``device_id`` so the caller knows the device partially exists and can
decide whether to tear it down.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class DeviceEngineError(Exception):
    """Base class for every error surfaced by the engine."""

    code = 'device_engine_error'

    def __init__(self, message: str, *, device_id: str | None = None) -> None:
        self.message = message
        self.device_id = device_id
        super().__init__(message)

    @property
    def partially_exists(self) -> bool:
        """True when the remote device was created before the failure."""
        return self.device_id is not None


# ── Validation (local, pre-flight) ───────────────────────────────────


class ValidationErrorKind(str, Enum):
    CONFLICT = 'conflict'
    REQUIRED_MISSING = 'required_missing'
    INVALID_ENUM = 'invalid_enum'
    INVALID_RANGE = 'invalid_range'
    INVALID_FORMAT = 'invalid_format'


class DeviceValidationError(DeviceEngineError, ValueError):
    """A device specification violates a cross-field or value constraint."""

    code = 'validation_failed'
    kind: ValidationErrorKind = ValidationErrorKind.INVALID_ENUM

    def __init__(self, message: str, *, fields: Iterable[str] = ()) -> None:
        self.fields = tuple(fields)
        super().__init__(message)


class ConflictingFieldsError(DeviceValidationError):
    kind = ValidationErrorKind.CONFLICT

    def __init__(self, a: str, b: str, message: str | None = None) -> None:
        self.a = a
        self.b = b
        super().__init__(message or f'{a} conflicts with {b}', fields=(a, b))


class RequiredFieldMissingError(DeviceValidationError):
    kind = ValidationErrorKind.REQUIRED_MISSING

    def __init__(
        self,
        field: str,
        condition: str | None = None,
        message: str | None = None,
    ) -> None:
        self.field = field
        self.condition = condition
        if message is None:
            if condition:
                message = f'{field} must be provided when {condition}'
            else:
                message = f'{field} is required'
        super().__init__(message, fields=(field,))


class InvalidEnumError(DeviceValidationError):
    kind = ValidationErrorKind.INVALID_ENUM

    def __init__(self, field: str, value: object, allowed: Iterable[object]) -> None:
        self.field = field
        self.value = value
        self.allowed = tuple(allowed)
        if self.allowed:
            choices = ', '.join(str(a) for a in self.allowed)
            message = f'{field} {value!r} is not one of: {choices}'
        else:
            message = f'{field} {value!r} is not a valid value'
        super().__init__(message, fields=(field,))


class InvalidRangeError(DeviceValidationError):
    kind = ValidationErrorKind.INVALID_RANGE

    def __init__(self, field: str, value: object, allowed: Iterable[object]) -> None:
        self.field = field
        self.value = value
        self.allowed = tuple(allowed)
        choices = ', '.join(str(a) for a in self.allowed)
        super().__init__(
            f'{field} {value!r} is out of range (allowed: {choices})',
            fields=(field,),
        )


class InvalidFormatError(DeviceValidationError):
    kind = ValidationErrorKind.INVALID_FORMAT

    def __init__(self, field: str, value: object, expected: str) -> None:
        self.field = field
        self.value = value
        super().__init__(
            f'{field} {value!r} is not {expected}',
            fields=(field,),
        )


# ── Adapter (remote API) ─────────────────────────────────────────────


class AdapterErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    TRANSIENT = 'transient'
    REJECTED = 'rejected'


class AdapterError(DeviceEngineError):
    """Structured error returned by a provisioning adapter call."""

    code = 'adapter_error'
    kind: AdapterErrorKind = AdapterErrorKind.REJECTED

    def __init__(
        self,
        message: str,
        *,
        device_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, device_id=device_id)


class DeviceNotFoundError(AdapterError):
    code = 'device_not_found'
    kind = AdapterErrorKind.NOT_FOUND

    @property
    def partially_exists(self) -> bool:
        return False


class TransientAdapterError(AdapterError):
    """Retryable I/O noise (timeouts, 429, 5xx, dropped connections)."""

    code = 'transient_io'
    kind = AdapterErrorKind.TRANSIENT


class RemoteRejectedError(AdapterError):
    """The API refused a request; surfaced verbatim, never retried here."""

    code = 'remote_rejected'
    kind = AdapterErrorKind.REJECTED


# ── Lifecycle ────────────────────────────────────────────────────────


class ProvisioningFailedError(DeviceEngineError):
    code = 'provisioning_failed'

    def __init__(self, device_id: str, remote_state: str) -> None:
        self.remote_state = remote_state
        super().__init__(
            f'device {device_id} entered state {remote_state!r} while provisioning',
            device_id=device_id,
        )


class ProvisioningTimeoutError(DeviceEngineError):
    code = 'provisioning_timed_out'

    def __init__(
        self,
        device_id: str,
        *,
        timeout_seconds: float,
        last_state: str | None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.last_state = last_state
        super().__init__(
            f'device {device_id} did not become active within '
            f'{timeout_seconds:g}s deadline (last state: {last_state or "unknown"})',
            device_id=device_id,
        )


class ProvisioningCancelledError(DeviceEngineError):
    """The caller cancelled the wait after the create request was accepted.

    The remote device is left as it is; ``device_id`` tells the caller
    what to clean up.
    """

    code = 'provisioning_cancelled'

    def __init__(self, device_id: str, *, last_state: str | None) -> None:
        self.last_state = last_state
        super().__init__(
            f'wait for device {device_id} cancelled '
            f'(last state: {last_state or "unknown"})',
            device_id=device_id,
        )


class TeardownTimeoutError(DeviceEngineError):
    code = 'teardown_timed_out'

    def __init__(
        self,
        device_id: str,
        *,
        timeout_seconds: float,
        last_state: str | None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.last_state = last_state
        super().__init__(
            f'device {device_id} not removed in time '
            f'({timeout_seconds:g}s, last state: {last_state or "unknown"})',
            device_id=device_id,
        )


class DeviceGoneError(DeviceEngineError):
    """An expected-present device no longer exists on the remote side."""

    code = 'device_gone'

    def __init__(self, device_id: str) -> None:
        super().__init__(f'device {device_id} no longer exists', device_id=device_id)

    @property
    def partially_exists(self) -> bool:
        return False


class DeviceStillExistsError(DeviceEngineError):
    code = 'device_still_exists'

    def __init__(self, device_ids: Iterable[str]) -> None:
        self.device_ids = tuple(device_ids)
        super().__init__(
            f'device still exists: {", ".join(self.device_ids)}',
            device_id=self.device_ids[0] if self.device_ids else None,
        )


class RequiresReplacementError(DeviceEngineError):
    """Requested change touches fields that cannot be updated in place."""

    code = 'requires_replacement'

    def __init__(self, device_id: str, fields: Iterable[str]) -> None:
        self.fields = tuple(fields)
        super().__init__(
            f'device {device_id} cannot change {", ".join(self.fields)} in place; '
            'destroy and re-create it',
            device_id=device_id,
        )


class InvalidStateTransition(DeviceEngineError, ValueError):
    code = 'invalid_state_transition'

    def __init__(self, from_phase: str, to_phase: str) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f'invalid lifecycle transition: {from_phase!r} -> {to_phase!r}')
