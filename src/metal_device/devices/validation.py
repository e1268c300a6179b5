"""Pre-flight validation of device specifications.

Rules are evaluated in a fixed order against a ``ValidationPolicy`` and
never touch the network:

  1. user_data vs ipxe_script_url                  (conflict)
  2. custom-iPXE-only fields on a stock OS          (conflict)
  3. always_pxe needs something to boot             (conditional requirement)
  4. required identity fields                       (requirement)
  5. operating_system / billing_cycle / subnet size (enum, range)
  6. ipxe_script_url shape                          (format)

``validate()`` reports the first violation, ``collect_violations()``
reports all of them in rule order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlparse

from metal_device.errors import (
    ConflictingFieldsError,
    DeviceValidationError,
    InvalidEnumError,
    InvalidFormatError,
    InvalidRangeError,
    RequiredFieldMissingError,
)

from .model import BILLING_CYCLES, CUSTOM_IPXE, PUBLIC_IPV4_SUBNET_SIZES, DeviceSpec

_OS_SLUG_RE = re.compile(r'^[a-z0-9_]+$')

_REQUIRED_FIELDS = (
    'hostname',
    'plan',
    'facility',
    'operating_system',
    'billing_cycle',
    'project_id',
)


@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """Provider-specific allowed values."""

    subnet_sizes: tuple[int, ...] = PUBLIC_IPV4_SUBNET_SIZES
    billing_cycles: tuple[str, ...] = BILLING_CYCLES
    operating_systems: tuple[str, ...] = ()
    """Explicit OS allow-list; empty accepts any well-formed slug."""


DEFAULT_POLICY = ValidationPolicy()

Check = Callable[[DeviceSpec, ValidationPolicy], DeviceValidationError | None]


@dataclass(frozen=True, slots=True)
class ValidationRule:
    name: str
    check: Check


# ── Rule checks ──────────────────────────────────────────────────────


def _user_data_conflicts_with_ipxe_url(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if spec.user_data and spec.ipxe_script_url:
        return ConflictingFieldsError('user_data', 'ipxe_script_url')
    return None


def _ipxe_url_requires_custom_ipxe(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if spec.ipxe_script_url and not spec.is_custom_ipxe:
        return ConflictingFieldsError(
            'ipxe_script_url',
            'operating_system',
            f'ipxe_script_url conflicts with operating_system '
            f'{spec.operating_system!r}; only valid when operating_system '
            f'is {CUSTOM_IPXE!r}',
        )
    return None


def _always_pxe_requires_custom_ipxe(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if spec.always_pxe and not spec.is_custom_ipxe:
        return ConflictingFieldsError(
            'always_pxe',
            'operating_system',
            f'always_pxe conflicts with operating_system '
            f'{spec.operating_system!r}; only valid when operating_system '
            f'is {CUSTOM_IPXE!r}',
        )
    return None


def _always_pxe_needs_boot_source(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if spec.always_pxe and not (spec.ipxe_script_url or spec.user_data):
        return RequiredFieldMissingError(
            'ipxe_script_url or user_data',
            'always_pxe is true',
        )
    return None


def _required_fields_present(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    for name in _REQUIRED_FIELDS:
        if not str(getattr(spec, name) or '').strip():
            return RequiredFieldMissingError(name)
    return None


def _operating_system_known(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    os_slug = spec.operating_system
    if policy.operating_systems:
        allowed = set(policy.operating_systems) | {CUSTOM_IPXE}
        if os_slug not in allowed:
            return InvalidEnumError('operating_system', os_slug, sorted(allowed))
    elif not _OS_SLUG_RE.match(os_slug):
        return InvalidEnumError('operating_system', os_slug, ())
    return None


def _billing_cycle_known(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if spec.billing_cycle not in policy.billing_cycles:
        return InvalidEnumError('billing_cycle', spec.billing_cycle, policy.billing_cycles)
    return None


def _subnet_size_allowed(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    size = spec.public_ipv4_subnet_size
    if size is None:
        return None
    # bool is an int subclass; True must not pass as /1.
    if isinstance(size, bool) or size not in policy.subnet_sizes:
        return InvalidRangeError('public_ipv4_subnet_size', size, policy.subnet_sizes)
    return None


def _ipxe_url_well_formed(
    spec: DeviceSpec, policy: ValidationPolicy
) -> DeviceValidationError | None:
    if not spec.ipxe_script_url:
        return None
    parsed = urlparse(spec.ipxe_script_url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return InvalidFormatError(
            'ipxe_script_url', spec.ipxe_script_url, 'an absolute http(s) URL'
        )
    return None


RULES: tuple[ValidationRule, ...] = (
    ValidationRule('user_data_conflicts_with_ipxe_script_url', _user_data_conflicts_with_ipxe_url),
    ValidationRule('ipxe_script_url_requires_custom_ipxe', _ipxe_url_requires_custom_ipxe),
    ValidationRule('always_pxe_requires_custom_ipxe', _always_pxe_requires_custom_ipxe),
    ValidationRule('always_pxe_needs_boot_source', _always_pxe_needs_boot_source),
    ValidationRule('required_fields_present', _required_fields_present),
    ValidationRule('operating_system_known', _operating_system_known),
    ValidationRule('billing_cycle_known', _billing_cycle_known),
    ValidationRule('public_ipv4_subnet_size_allowed', _subnet_size_allowed),
    ValidationRule('ipxe_script_url_well_formed', _ipxe_url_well_formed),
)


# ── Public API ───────────────────────────────────────────────────────


def collect_violations(
    spec: DeviceSpec,
    policy: ValidationPolicy = DEFAULT_POLICY,
) -> list[DeviceValidationError]:
    """Return every violation in rule order. Empty means valid."""
    violations: list[DeviceValidationError] = []
    for rule in RULES:
        error = rule.check(spec, policy)
        if error is not None:
            violations.append(error)
    return violations


def validate(
    spec: DeviceSpec,
    policy: ValidationPolicy = DEFAULT_POLICY,
) -> DeviceValidationError | None:
    """Return the first violation, or ``None`` when the spec is valid."""
    for rule in RULES:
        error = rule.check(spec, policy)
        if error is not None:
            return error
    return None


def ensure_valid(
    spec: DeviceSpec,
    policy: ValidationPolicy = DEFAULT_POLICY,
) -> None:
    """Raise the first violation."""
    error = validate(spec, policy)
    if error is not None:
        raise error
