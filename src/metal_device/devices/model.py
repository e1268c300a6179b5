"""Desired and observed device state.

``DeviceSpec`` is what the caller asks for; ``DeviceRecord`` is what the
provider reports back. Records are never merged into specs field by
field: a refresh replaces the whole attribute set with the remote view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CUSTOM_IPXE = 'custom_ipxe'

DEFAULT_PUBLIC_IPV4_SUBNET_SIZE = 31
PUBLIC_IPV4_SUBNET_SIZES = (31, 30, 29, 28)
BILLING_CYCLES = ('hourly', 'daily', 'monthly', 'yearly')

ACTIVE_STATE = 'active'
FAILED_STATE = 'failed'

# Fields the provider accepts on update; everything else forces re-creation.
UPDATABLE_FIELDS = (
    'hostname',
    'description',
    'tags',
    'locked',
    'user_data',
    'ipxe_script_url',
    'always_pxe',
)
REPLACEMENT_FIELDS = (
    'plan',
    'facility',
    'operating_system',
    'billing_cycle',
    'project_id',
    'public_ipv4_subnet_size',
)

# Spec fields whose key in Packet device documents differs.
WIRE_FIELD_NAMES = {'user_data': 'userdata'}


@dataclass(frozen=True, slots=True)
class DeviceSpec:
    """Desired state of one bare-metal device."""

    hostname: str
    plan: str
    facility: str
    operating_system: str
    billing_cycle: str
    project_id: str
    public_ipv4_subnet_size: int | None = None
    ipxe_script_url: str = ''
    always_pxe: bool = False
    user_data: str = ''
    description: str = ''
    tags: tuple[str, ...] = ()
    locked: bool = False

    @property
    def is_custom_ipxe(self) -> bool:
        return self.operating_system == CUSTOM_IPXE

    def effective(self, name: str) -> Any:
        """Value the provider ends up with for field ``name``.

        An unset subnet size means the provider default, so None and 31
        describe the same device.
        """
        value = getattr(self, name)
        if name == 'public_ipv4_subnet_size' and value is None:
            return DEFAULT_PUBLIC_IPV4_SUBNET_SIZE
        return value

    def to_create_payload(self) -> dict[str, Any]:
        """Request body for the provider's create call.

        Optional fields are omitted when unset so the provider applies
        its own defaults (notably the /31 public subnet).
        """
        payload: dict[str, Any] = {
            'hostname': self.hostname,
            'plan': self.plan,
            'facility': self.facility,
            'operating_system': self.operating_system,
            'billing_cycle': self.billing_cycle,
            'project_id': self.project_id,
        }
        if self.public_ipv4_subnet_size is not None:
            payload['public_ipv4_subnet_size'] = self.public_ipv4_subnet_size
        if self.ipxe_script_url:
            payload['ipxe_script_url'] = self.ipxe_script_url
        if self.always_pxe:
            payload['always_pxe'] = True
        if self.user_data:
            payload['userdata'] = self.user_data
        if self.description:
            payload['description'] = self.description
        if self.tags:
            payload['tags'] = list(self.tags)
        if self.locked:
            payload['locked'] = True
        return payload


@dataclass(frozen=True, slots=True)
class IpAllocation:
    """One IP address assigned to a device."""

    address: str
    gateway: str = ''
    cidr: int = 0
    family: int = 4
    public: bool = True
    management: bool = False


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    """Observed remote state of one device."""

    id: str
    hostname: str
    state: str
    plan: str = ''
    facility: str = ''
    operating_system: str = ''
    billing_cycle: str = ''
    project_id: str = ''
    root_password: str = ''
    public_ipv4_subnet_size: int | None = None
    ipxe_script_url: str = ''
    always_pxe: bool = False
    user_data: str = ''
    description: str = ''
    tags: tuple[str, ...] = ()
    locked: bool = False
    network: tuple[IpAllocation, ...] = field(default_factory=tuple)
    created_at: str = ''
    updated_at: str = ''

    @property
    def is_active(self) -> bool:
        return self.state == ACTIVE_STATE

    @property
    def is_failed(self) -> bool:
        return self.state == FAILED_STATE

    @property
    def access_public_ipv4(self) -> str:
        return _first_address(self.network, family=4, public=True)

    @property
    def access_public_ipv6(self) -> str:
        return _first_address(self.network, family=6, public=True)

    @property
    def access_private_ipv4(self) -> str:
        return _first_address(self.network, family=4, public=False)

    def to_attributes(self) -> dict[str, Any]:
        """Flat attribute set written back to the caller's local state."""
        return {
            'id': self.id,
            'hostname': self.hostname,
            'state': self.state,
            'plan': self.plan,
            'facility': self.facility,
            'operating_system': self.operating_system,
            'billing_cycle': self.billing_cycle,
            'project_id': self.project_id,
            'root_password': self.root_password,
            'public_ipv4_subnet_size': self.public_ipv4_subnet_size,
            'ipxe_script_url': self.ipxe_script_url,
            'always_pxe': self.always_pxe,
            'user_data': self.user_data,
            'description': self.description,
            'tags': list(self.tags),
            'locked': self.locked,
            'access_public_ipv4': self.access_public_ipv4,
            'access_public_ipv6': self.access_public_ipv6,
            'access_private_ipv4': self.access_private_ipv4,
            'network': [
                {
                    'address': ip.address,
                    'gateway': ip.gateway,
                    'cidr': ip.cidr,
                    'family': ip.family,
                    'public': ip.public,
                }
                for ip in self.network
            ],
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


def _first_address(
    network: tuple[IpAllocation, ...],
    *,
    family: int,
    public: bool,
) -> str:
    for ip in network:
        if ip.family == family and ip.public == public:
            return ip.address
    return ''


def public_ipv4_subnet_size(network: tuple[IpAllocation, ...]) -> int | None:
    """Subnet size of the first public IPv4 allocation, if any."""
    for ip in network:
        if ip.family == 4 and ip.public:
            return ip.cidr
    return None
