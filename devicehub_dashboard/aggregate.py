"""Composes counters, devices and geolocation into one browser payload.

Degrade policy for ``/data``:

- stats call fails   -> all four counters are ``None``
- device call fails  -> ``devices`` is ``[]``
- geo lookup fails   -> that device has empty ``country`` / ``city``

Nothing here raises for upstream trouble; the browser always gets a payload.
"""

from __future__ import annotations

import asyncio
import logging
import time

from .geo import GeoCache, is_ipv4
from .models import AggregatedPayload, DeviceRecord, DeviceView, GeoResult, StatsSnapshot
from .upstream import Fetched, UpstreamClient

log = logging.getLogger(__name__)

GEO_LOOKUP_LIMIT = 10


def now_ms() -> int:
    return int(time.time() * 1000)


def sanitize(device: DeviceRecord, geo: GeoResult | None = None) -> DeviceView:
    """Build the browser view of *device*; the IP address is never copied."""
    return DeviceView(
        id=device.id,
        country=geo.country if geo else "",
        city=geo.city if geo else "",
        os=device.os,
        username=device.username,
        hostname=device.hostname,
        last_seen=device.last_seen,
        online=device.online,
    )


class Aggregator:
    def __init__(
        self,
        upstream: UpstreamClient,
        geo: GeoCache,
        geo_lookup_limit: int = GEO_LOOKUP_LIMIT,
    ) -> None:
        self.upstream = upstream
        self.geo = geo
        self.geo_lookup_limit = geo_lookup_limit

    async def _locate(self, devices: list[DeviceRecord]) -> dict[int, GeoResult]:
        """Resolve the IPs of the first ``geo_lookup_limit`` devices that have one.

        Returns a map of list index -> location. Only devices in the looked-up
        slots are enriched, even if a later device shares one of their IPs.
        """
        slots = [i for i, d in enumerate(devices) if is_ipv4(d.ip)][: self.geo_lookup_limit]
        ips = list(dict.fromkeys(devices[i].ip for i in slots))
        if not ips:
            return {}
        results = await asyncio.gather(*(self.geo.resolve(ip) for ip in ips))
        located = {ip: geo for ip, geo in zip(ips, results) if geo is not None}
        return {i: located[devices[i].ip] for i in slots if devices[i].ip in located}

    async def handle_request(self) -> AggregatedPayload:
        stats_res, devices_res = await asyncio.gather(
            Fetched.capture(self.upstream.fetch_stats()),
            Fetched.capture(self.upstream.fetch_devices()),
        )

        if stats_res.ok:
            stats = stats_res.value
        else:
            log.warning("Stats unavailable: %s", stats_res.error)
            stats = StatsSnapshot()

        if devices_res.ok:
            devices = devices_res.value or []
        else:
            log.warning("Device list unavailable: %s", devices_res.error)
            devices = []

        located = await self._locate(devices)

        return AggregatedPayload(
            ts=now_ms(),
            **stats.model_dump(),
            devices=[sanitize(d, located.get(i)) for i, d in enumerate(devices)],
        )
