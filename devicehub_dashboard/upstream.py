"""HTTP client for the main service (fleet counters and device listing)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar

import httpx
from pydantic import ValidationError

from .config import CredentialTransport, Settings
from .errors import UpstreamError
from .models import DeviceRecord, StatsSnapshot

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Fetched(Generic[T]):
    """Outcome of one upstream call: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: UpstreamError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    async def capture(cls, call: Awaitable[T]) -> "Fetched[T]":
        """Await *call*, turning an ``UpstreamError`` into a failed result."""
        try:
            return cls(value=await call)
        except UpstreamError as exc:
            return cls(error=exc)


class UpstreamClient:
    """Authenticated GETs against the main service.

    The stats token and admin token are attached here and nowhere else, so
    they never leave the server process.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    def _stats_auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (params, headers) carrying the stats token."""
        s = self._settings
        if s.token_transport is CredentialTransport.HEADER:
            return {}, {s.stats_token_header: s.stats_token}
        return {"token": s.stats_token}, {}

    async def _get_json(
        self,
        path: str,
        params: dict[str, str],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        # Logged URLs never include the query string, which may hold the token.
        url = self._settings.api_base + path
        try:
            resp = await self._client.get(
                url,
                params=params,
                headers={"Accept": "application/json", **headers},
                timeout=self._settings.upstream_timeout,
            )
        except httpx.TimeoutException as exc:
            log.warning("Upstream %s timed out", url)
            raise UpstreamError(f"timeout contacting main service: {exc!r}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            log.warning("Upstream %s unreachable: %r", url, exc)
            raise UpstreamError(f"main service unreachable: {exc!r}") from exc

        if not resp.is_success:
            log.warning("Upstream %s answered HTTP %s", url, resp.status_code)
            try:
                error_body = resp.json()
            except ValueError:
                error_body = None
            raise UpstreamError(
                f"main service answered HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=error_body if isinstance(error_body, dict) else None,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamError("main service answered with a non-JSON body") from exc
        if not isinstance(body, dict):
            raise UpstreamError("main service answered with a non-object body")
        return body

    async def fetch_stats(self) -> StatsSnapshot:
        """GET the fleet counters.

        Raises:
            UpstreamError: non-2xx status, non-object body, network failure
                or timeout. A counter of the wrong type becomes ``None``
                on its own and is not an error.
        """
        params, headers = self._stats_auth()
        body = await self._get_json(self._settings.stats_path, params, headers)
        return StatsSnapshot.model_validate(body)

    async def fetch_devices(self) -> list[DeviceRecord]:
        """GET the device listing.

        Returns ``[]`` without any request when no admin token is configured.

        Raises:
            UpstreamError: non-2xx status, malformed body, network failure
                or timeout.
        """
        s = self._settings
        if not s.devices_enabled:
            return []

        body = await self._get_json(
            s.devices_path, {}, {s.admin_token_header: s.admin_token or ""}
        )
        items = body.get("devices")
        if not isinstance(items, list):
            raise UpstreamError("device listing has no 'devices' array")

        devices: list[DeviceRecord] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                devices.append(DeviceRecord.model_validate(item))
            except ValidationError as exc:
                raise UpstreamError(f"malformed device record: {exc.error_count()} invalid field(s)") from exc
        return devices
