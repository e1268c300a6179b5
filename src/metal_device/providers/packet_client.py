"""Async HTTP client for the Packet bare-metal API.

Provides create, get, update, delete, and list operations for devices.
Auth uses a static API token sent in the ``X-Auth-Token`` header.
Includes exponential backoff with jitter for transient errors and
Retry-After header respect for 429 responses.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import httpx

from metal_device.observability.logging import get_logger

logger = get_logger(__name__)

# Status codes eligible for automatic retry.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Default retry configuration.
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 30.0  # seconds

DEFAULT_BASE_URL = 'https://api.packet.net'


# ── Exception hierarchy ─────────────────────────────────────────


class PacketAPIError(Exception):
    """Base exception for Packet API errors."""

    def __init__(
        self,
        status_code: int,
        message: str = '',
        *,
        response_body: str = '',
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f'Packet API error {status_code}: {message}')

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class PacketNotFoundError(PacketAPIError):
    """Resource not found (404)."""

    def __init__(self, message: str = 'Not found', **kwargs: Any) -> None:
        super().__init__(404, message, **kwargs)


class PacketTimeoutError(PacketAPIError):
    """Request to the Packet API timed out."""

    def __init__(self, message: str = 'Request timed out') -> None:
        super().__init__(0, message)

    @property
    def retryable(self) -> bool:
        return True


class PacketTransportError(PacketAPIError):
    """Connection-level failure before any HTTP response arrived."""

    def __init__(self, message: str = 'Transport error') -> None:
        super().__init__(0, message)

    @property
    def retryable(self) -> bool:
        return True


# ── Client ───────────────────────────────────────────────────────


class PacketClient:
    """Async HTTP client for Packet device endpoints."""

    def __init__(
        self,
        *,
        auth_token: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
    ) -> None:
        if not auth_token:
            raise ValueError('auth_token is required')

        self._auth_token = auth_token
        self._base_url = base_url.rstrip('/')
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> PacketClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            'X-Auth-Token': self._auth_token,
            'Accept': 'application/json',
        }

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f'HTTP {resp.status_code}'

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                errors = payload.get('errors')
                if isinstance(errors, list) and errors:
                    message = '; '.join(str(e) for e in errors)
                else:
                    message = payload.get('error', payload.get('message', message))
        except (ValueError, KeyError):
            pass

        if resp.status_code == 404:
            raise PacketNotFoundError(message=message, response_body=body)

        raise PacketAPIError(
            status_code=resp.status_code,
            message=message,
            response_body=body,
        )

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential backoff retry for transient errors."""
        url = f'{self._base_url}{path}'
        headers = self._headers()

        last_exc: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if isinstance(e, httpx.TimeoutException):
                    last_exc = PacketTimeoutError(str(e))
                else:
                    last_exc = PacketTransportError(str(e))
                if attempt < self._max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        'packet_request_retry',
                        method=method,
                        path=path,
                        reason=type(e).__name__,
                        attempt=attempt + 1,
                        max_attempts=self._max_retries + 1,
                        delay=round(delay, 2),
                    )
                    await asyncio.sleep(delay)
                    continue
                raise last_exc from e

            if resp.status_code not in RETRYABLE_STATUS_CODES:
                return resp

            # Retryable status: compute delay.
            if attempt < self._max_retries:
                delay = self._retry_after_delay(resp, attempt)
                logger.warning(
                    'packet_request_retry',
                    method=method,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_attempts=self._max_retries + 1,
                    delay=round(delay, 2),
                )
                await asyncio.sleep(delay)
            else:
                return resp

        # Should not reach here, but guard against it.
        if last_exc:
            raise last_exc
        raise PacketAPIError(0, 'exhausted retries with no response')

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return random.uniform(0, delay)

    def _retry_after_delay(self, resp: httpx.Response, attempt: int) -> float:
        """Use Retry-After header if present, otherwise exponential backoff."""
        retry_after = resp.headers.get('retry-after')
        if retry_after:
            try:
                return max(float(retry_after), 0.1)
            except ValueError:
                pass
        return self._backoff_delay(attempt)

    # ── Public API ───────────────────────────────────────────────

    async def create_device(
        self,
        project_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Submit a device creation request.

        Returns the device document as accepted by the API; provisioning
        continues asynchronously on the provider side.
        """
        resp = await self._request_with_retry(
            'POST', f'/projects/{project_id}/devices', json=payload,
        )
        self._raise_for_status(resp)

        result = resp.json()
        logger.info(
            'packet_device_created',
            device_id=result.get('id'),
            hostname=payload.get('hostname'),
            project_id=project_id,
        )
        return result

    async def get_device(self, device_id: str) -> dict[str, Any]:
        """Get a device document.

        Raises PacketNotFoundError if the device doesn't exist.
        """
        resp = await self._request_with_retry(
            'GET', f'/devices/{device_id}', params={'include': 'facility'},
        )
        self._raise_for_status(resp)
        return resp.json()

    async def update_device(
        self,
        device_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Update the in-place mutable fields of a device."""
        resp = await self._request_with_retry(
            'PUT', f'/devices/{device_id}', json=payload,
        )
        self._raise_for_status(resp)
        logger.info(
            'packet_device_updated',
            device_id=device_id,
            fields=sorted(payload),
        )
        return resp.json()

    async def delete_device(self, device_id: str) -> None:
        """Delete a device.

        Raises PacketNotFoundError if the device doesn't exist.
        """
        resp = await self._request_with_retry('DELETE', f'/devices/{device_id}')
        self._raise_for_status(resp)
        logger.info('packet_device_delete_requested', device_id=device_id)

    async def list_project_devices(self, project_id: str) -> list[dict[str, Any]]:
        """List every device of a project, following pagination."""
        devices: list[dict[str, Any]] = []
        page = 1
        while True:
            resp = await self._request_with_retry(
                'GET',
                f'/projects/{project_id}/devices',
                params={'page': str(page), 'per_page': '100'},
            )
            self._raise_for_status(resp)

            result = resp.json()
            if not isinstance(result, dict) or not isinstance(result.get('devices'), list):
                raise PacketAPIError(
                    status_code=0,
                    message=(
                        f'Expected device list from /projects/{project_id}/devices, '
                        f'got {type(result).__name__}'
                    ),
                )
            devices.extend(result['devices'])

            meta = result.get('meta') or {}
            if not meta.get('next'):
                return devices
            page += 1
