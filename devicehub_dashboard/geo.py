"""IP -> location lookups with an in-memory, time-limited cache.

The provider (ipapi.co by default) is rate limited per client, so every
successful lookup is kept for ``ttl_seconds`` (7 days by default). Failed
lookups are never cached: the next request for the same IP tries again.

Entries are not swept in the background. A stale entry stays in place until
the next ``resolve`` for its IP replaces it, and the least recently used
entry is dropped once ``max_entries`` is reached.

There is no per-key locking. Two concurrent misses for the same IP both call
the provider and the later answer overwrites the earlier one.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from .errors import GeoLookupError
from .models import GeoResult

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60

_DOTTED_QUAD_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


def is_ipv4(value: Any) -> bool:
    """Return True for dotted-decimal IPv4 strings such as ``203.0.113.7``."""
    if not isinstance(value, str) or not _DOTTED_QUAD_RE.match(value):
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class GeoCacheEntry:
    result: GeoResult
    fetched_at: float


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _normalise(body: dict) -> GeoResult:
    """Map the provider's field names onto ``GeoResult``."""
    return GeoResult(
        city=str(body.get("city") or ""),
        country=str(body.get("country_name") or body.get("country") or ""),
        latitude=_as_float(body.get("latitude")),
        longitude=_as_float(body.get("longitude")),
    )


class GeoCache:
    """Resolves IPv4 addresses to a city/country, caching successful answers."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://ipapi.co",
        timeout: float = 3.0,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, GeoCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ip: object) -> bool:
        return ip in self._entries

    def _fresh(self, ip: str) -> GeoResult | None:
        entry = self._entries.get(ip)
        if entry is None:
            return None
        # A clock that stepped backwards yields a negative age; treat it as zero.
        age = max(0.0, self._clock() - entry.fetched_at)
        if age >= self._ttl:
            return None
        self._entries.move_to_end(ip)
        return entry.result

    def _store(self, ip: str, result: GeoResult) -> None:
        self._entries[ip] = GeoCacheEntry(result=result, fetched_at=self._clock())
        self._entries.move_to_end(ip)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def _lookup(self, ip: str) -> GeoResult:
        url = f"{self._base_url}/{ip}/json/"
        try:
            resp = await self._client.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise GeoLookupError(f"request failed: {exc!r}") from exc

        if not resp.is_success:
            raise GeoLookupError(f"provider answered HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise GeoLookupError("provider answered with a non-JSON body") from exc
        if not isinstance(body, dict):
            raise GeoLookupError("provider answered with a non-object body")
        if body.get("error"):
            raise GeoLookupError(f"provider error: {body.get('reason') or 'unknown'}")
        return _normalise(body)

    async def resolve(self, ip: str) -> GeoResult | None:
        """Return the location for *ip*, or ``None`` when it cannot be resolved.

        Non-IPv4 input returns ``None`` without contacting the provider.
        Lookup failures are logged at DEBUG level and never raised.
        """
        if not is_ipv4(ip):
            return None

        cached = self._fresh(ip)
        if cached is not None:
            return cached

        try:
            result = await self._lookup(ip)
        except GeoLookupError as exc:
            log.debug("Geo lookup for %s failed: %s", ip, exc)
            return None

        self._store(ip, result)
        return result
