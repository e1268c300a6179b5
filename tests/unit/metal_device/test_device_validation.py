"""Device specification validation tests."""

from __future__ import annotations

from dataclasses import replace

import pytest

from metal_device.devices.model import DeviceSpec
from metal_device.devices.validation import (
    RULES,
    ValidationPolicy,
    collect_violations,
    ensure_valid,
    validate,
)
from metal_device.errors import (
    ConflictingFieldsError,
    DeviceValidationError,
    InvalidEnumError,
    InvalidFormatError,
    InvalidRangeError,
    RequiredFieldMissingError,
    ValidationErrorKind,
)

CONFLICTS_WITH = r'.* conflicts with .*'
MUST_BE_PROVIDED = r'.* must be provided when .*'
IPXE_URL = 'https://boot.netboot.xyz'


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


class TestValidSpecs:
    def test_basic_stock_os(self):
        assert validate(_spec()) is None

    def test_explicit_subnet_size(self):
        assert validate(_spec(public_ipv4_subnet_size=29)) is None

    def test_custom_ipxe_with_script_url(self):
        assert validate(_spec(operating_system='custom_ipxe', ipxe_script_url=IPXE_URL)) is None

    def test_custom_ipxe_always_pxe_with_script_url(self):
        spec = _spec(operating_system='custom_ipxe', ipxe_script_url=IPXE_URL, always_pxe=True)
        assert validate(spec) is None

    def test_custom_ipxe_always_pxe_with_user_data(self):
        spec = _spec(
            operating_system='custom_ipxe',
            user_data='#!ipxe\nchain https://boot.netboot.xyz',
            always_pxe=True,
        )
        assert validate(spec) is None

    def test_stock_os_with_user_data(self):
        assert validate(_spec(user_data='#cloud-config\npackages: [htop]')) is None

    def test_ensure_valid_returns_none(self):
        assert ensure_valid(_spec()) is None


class TestConflicts:
    def test_user_data_and_ipxe_url_conflict(self):
        spec = _spec(
            operating_system='custom_ipxe',
            user_data='#!ipxe\nset conflict ipxe_script_url',
            ipxe_script_url=IPXE_URL,
            always_pxe=True,
        )
        error = validate(spec)
        assert isinstance(error, ConflictingFieldsError)
        assert error.kind is ValidationErrorKind.CONFLICT
        assert (error.a, error.b) == ('user_data', 'ipxe_script_url')

    def test_conflict_message_matches_contract(self):
        spec = _spec(operating_system='custom_ipxe', user_data='x', ipxe_script_url=IPXE_URL)
        with pytest.raises(DeviceValidationError, match=CONFLICTS_WITH):
            ensure_valid(spec)

    @pytest.mark.parametrize(
        'extra',
        [
            {},
            {'always_pxe': True},
            {'public_ipv4_subnet_size': 7},
            {'billing_cycle': 'weekly'},
            {'operating_system': 'centos_7'},
        ],
    )
    def test_user_data_conflict_wins_regardless_of_other_fields(self, extra):
        spec = _spec(user_data='x', ipxe_script_url=IPXE_URL, **extra)
        with pytest.raises(ConflictingFieldsError, match=CONFLICTS_WITH):
            ensure_valid(spec)

    def test_ipxe_url_on_stock_os_conflicts(self):
        error = validate(_spec(ipxe_script_url=IPXE_URL))
        assert isinstance(error, ConflictingFieldsError)
        assert error.fields == ('ipxe_script_url', 'operating_system')
        assert 'conflicts with' in str(error)

    def test_always_pxe_on_stock_os_conflicts(self):
        error = validate(_spec(always_pxe=True))
        assert isinstance(error, ConflictingFieldsError)
        assert error.a == 'always_pxe'
        assert 'conflicts with' in str(error)

    @pytest.mark.parametrize('os_slug', ['ubuntu_16_04', 'centos_7', 'debian_9', 'coreos_stable'])
    @pytest.mark.parametrize(
        'fields',
        [
            {'ipxe_script_url': IPXE_URL},
            {'always_pxe': True},
            {'always_pxe': True, 'ipxe_script_url': IPXE_URL},
            {'always_pxe': True, 'user_data': '#!ipxe'},
        ],
    )
    def test_custom_ipxe_only_fields_always_rejected_on_stock_os(self, os_slug, fields):
        error = validate(_spec(operating_system=os_slug, **fields))
        assert isinstance(error, ConflictingFieldsError)


class TestConditionalRequirement:
    def test_always_pxe_without_boot_source(self):
        spec = _spec(operating_system='custom_ipxe', always_pxe=True)
        error = validate(spec)
        assert isinstance(error, RequiredFieldMissingError)
        assert error.kind is ValidationErrorKind.REQUIRED_MISSING
        assert error.condition == 'always_pxe is true'

    def test_message_matches_contract(self):
        spec = _spec(operating_system='custom_ipxe', always_pxe=True)
        with pytest.raises(DeviceValidationError, match=MUST_BE_PROVIDED):
            ensure_valid(spec)

    def test_empty_strings_count_as_missing(self):
        spec = _spec(
            operating_system='custom_ipxe',
            always_pxe=True,
            ipxe_script_url='',
            user_data='',
        )
        assert isinstance(validate(spec), RequiredFieldMissingError)


class TestRequiredFields:
    @pytest.mark.parametrize(
        'field',
        ['hostname', 'plan', 'facility', 'operating_system', 'billing_cycle', 'project_id'],
    )
    def test_blank_required_field(self, field):
        error = validate(_spec(**{field: '  '}))
        assert isinstance(error, RequiredFieldMissingError)
        assert error.field == field
        assert str(error) == f'{field} is required'


class TestEnumsAndRanges:
    def test_unknown_billing_cycle(self):
        error = validate(_spec(billing_cycle='weekly'))
        assert isinstance(error, InvalidEnumError)
        assert error.field == 'billing_cycle'
        assert 'hourly' in str(error)

    def test_malformed_os_slug(self):
        error = validate(_spec(operating_system='Ubuntu 16.04'))
        assert isinstance(error, InvalidEnumError)
        assert error.field == 'operating_system'

    def test_os_allow_list(self):
        policy = ValidationPolicy(operating_systems=('ubuntu_16_04',))
        assert validate(_spec(), policy) is None
        assert validate(_spec(operating_system='custom_ipxe', ipxe_script_url=IPXE_URL), policy) is None
        error = validate(_spec(operating_system='centos_7'), policy)
        assert isinstance(error, InvalidEnumError)

    @pytest.mark.parametrize('size', [31, 30, 29, 28])
    def test_allowed_subnet_sizes(self, size):
        assert validate(_spec(public_ipv4_subnet_size=size)) is None

    @pytest.mark.parametrize('size', [0, 24, 27, 32, 33])
    def test_disallowed_subnet_sizes(self, size):
        error = validate(_spec(public_ipv4_subnet_size=size))
        assert isinstance(error, InvalidRangeError)
        assert error.kind is ValidationErrorKind.INVALID_RANGE

    def test_bool_is_not_a_subnet_size(self):
        assert isinstance(validate(_spec(public_ipv4_subnet_size=True)), InvalidRangeError)

    def test_policy_widens_subnet_sizes(self):
        policy = ValidationPolicy(subnet_sizes=(31, 29, 28, 27))
        assert validate(_spec(public_ipv4_subnet_size=27), policy) is None


class TestFormat:
    @pytest.mark.parametrize('url', ['boot.netboot.xyz', 'ftp://boot.netboot.xyz', 'https://'])
    def test_bad_ipxe_url(self, url):
        error = validate(_spec(operating_system='custom_ipxe', ipxe_script_url=url))
        assert isinstance(error, InvalidFormatError)


class TestOrdering:
    def test_rule_table_order(self):
        names = [rule.name for rule in RULES]
        assert names.index('user_data_conflicts_with_ipxe_script_url') < names.index(
            'always_pxe_needs_boot_source'
        )
        assert names.index('always_pxe_needs_boot_source') < names.index('billing_cycle_known')

    def test_collect_reports_all_in_order(self):
        spec = _spec(
            user_data='x',
            ipxe_script_url=IPXE_URL,
            always_pxe=True,
            billing_cycle='weekly',
            public_ipv4_subnet_size=12,
        )
        kinds = [type(e) for e in collect_violations(spec)]
        assert kinds == [
            ConflictingFieldsError,
            ConflictingFieldsError,
            ConflictingFieldsError,
            InvalidEnumError,
            InvalidRangeError,
        ]

    def test_first_violation_matches_collect_head(self):
        spec = _spec(operating_system='custom_ipxe', always_pxe=True, billing_cycle='weekly')
        first = validate(spec)
        assert type(first) is type(collect_violations(spec)[0])
        assert isinstance(first, RequiredFieldMissingError)

    def test_valid_spec_collects_nothing(self):
        assert collect_violations(_spec()) == []
