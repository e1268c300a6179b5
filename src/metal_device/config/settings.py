"""Device engine configuration settings.

EngineSettings is the single configuration object accepted by
build_engine(). It is a plain dataclass (not env-coupled) so tests can
inject config without touching os.environ; ``from_env`` is the
production factory.

Deadlines are deliberately absent: every create and delete call takes
its own timeout from the caller.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from metal_device.devices.model import BILLING_CYCLES, PUBLIC_IPV4_SUBNET_SIZES
from metal_device.devices.validation import ValidationPolicy
from metal_device.providers.packet_client import DEFAULT_BASE_URL


class EngineSettingsError(ValueError):
    """Raised when engine configuration is invalid."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__('invalid engine settings: ' + '; '.join(errors))


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Configuration for the device lifecycle engine."""

    # ── Provider API ───────────────────────────────────────────────
    api_base_url: str = DEFAULT_BASE_URL
    """Base URL of the bare-metal provisioning API."""

    auth_token: str = ""
    """API token sent as X-Auth-Token. Never log this."""

    request_timeout_seconds: float = 30.0
    """Per-request HTTP timeout."""

    max_retries: int = 3
    """Transport-level retries for 429/5xx/timeouts."""

    # ── Polling ────────────────────────────────────────────────────
    poll_interval_seconds: float = 10.0
    """Delay between status polls while waiting for active."""

    teardown_poll_interval_seconds: float = 5.0
    """Delay between status polls while waiting for removal."""

    # ── Validation ─────────────────────────────────────────────────
    subnet_sizes: tuple[int, ...] = PUBLIC_IPV4_SUBNET_SIZES
    billing_cycles: tuple[str, ...] = BILLING_CYCLES
    operating_systems: tuple[str, ...] = ()
    """Optional OS allow-list; empty accepts any well-formed slug."""

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def validation_policy(self) -> ValidationPolicy:
        return ValidationPolicy(
            subnet_sizes=self.subnet_sizes,
            billing_cycles=self.billing_cycles,
            operating_systems=self.operating_systems,
        )

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.auth_token:
            errors.append("auth_token is required")
        if not self.api_base_url.startswith(("http://", "https://")):
            errors.append(f"api_base_url must be an http(s) URL: {self.api_base_url!r}")
        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be > 0")
        if self.max_retries < 0:
            errors.append("max_retries must be >= 0")
        if self.poll_interval_seconds <= 0:
            errors.append("poll_interval_seconds must be > 0")
        if self.teardown_poll_interval_seconds <= 0:
            errors.append("teardown_poll_interval_seconds must be > 0")
        if not self.subnet_sizes:
            errors.append("subnet_sizes must not be empty")
        elif any(not 0 < s <= 32 for s in self.subnet_sizes):
            errors.append(f"subnet_sizes must be CIDR sizes 1-32: {self.subnet_sizes}")
        if not self.billing_cycles:
            errors.append("billing_cycles must not be empty")
        if self.log_format not in ("json", "console"):
            errors.append(f"log_format must be json or console: {self.log_format!r}")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> EngineSettings:
        """Build settings from environment variables.

        Tests should construct EngineSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        return cls(
            api_base_url=env.get("PACKET_API_URL", DEFAULT_BASE_URL),
            auth_token=env.get("PACKET_AUTH_TOKEN", ""),
            request_timeout_seconds=float(env.get("PACKET_REQUEST_TIMEOUT_SECONDS", "30")),
            max_retries=int(env.get("PACKET_MAX_RETRIES", "3")),
            poll_interval_seconds=float(env.get("DEVICE_POLL_INTERVAL_SECONDS", "10")),
            teardown_poll_interval_seconds=float(
                env.get("DEVICE_TEARDOWN_POLL_INTERVAL_SECONDS", "5")
            ),
            subnet_sizes=_csv(env.get("DEVICE_SUBNET_SIZES"), int) or PUBLIC_IPV4_SUBNET_SIZES,
            billing_cycles=_csv(env.get("DEVICE_BILLING_CYCLES"), str) or BILLING_CYCLES,
            operating_systems=_csv(env.get("DEVICE_OPERATING_SYSTEMS"), str),
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
        )


def _csv(raw: str | None, cast: type) -> tuple:
    if not raw:
        return ()
    return tuple(cast(part.strip()) for part in raw.split(",") if part.strip())
