"""Tests for the main-service client (stats and device listing).

Run with:  python -m pytest tests/  or  python -m unittest discover tests/
"""

import unittest

import httpx

from devicehub_dashboard.config import CredentialTransport, Settings
from devicehub_dashboard.errors import UpstreamError
from devicehub_dashboard.models import StatsSnapshot
from devicehub_dashboard.upstream import Fetched, UpstreamClient

COUNTS = {"installed": 100, "active": 40, "offline": 55, "deleted": 5}


def _settings(**overrides) -> Settings:
    base = dict(api_base="https://main.test/api", stats_token="s3cr3t")
    base.update(overrides)
    return Settings(**base)


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status=200, body=None):
        self.status = status
        self.body = COUNTS if body is None else body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, Exception):
            raise self.body
        if isinstance(self.body, str):
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.body)


class UpstreamTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.recorder = Recorder()
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.recorder))

    async def asyncTearDown(self):
        await self.client.aclose()

    def upstream(self, **overrides) -> UpstreamClient:
        return UpstreamClient(self.client, _settings(**overrides))


# ── fetch_stats ───────────────────────────────────────────────────────────────

class TestFetchStats(UpstreamTestCase):

    async def test_counts_returned_unchanged(self):
        snapshot = await self.upstream().fetch_stats()
        self.assertEqual(snapshot, StatsSnapshot(installed=100, active=40, offline=55, deleted=5))

    async def test_query_transport_sends_token_param(self):
        await self.upstream().fetch_stats()
        req = self.recorder.requests[0]
        self.assertEqual(req.url.path, "/api/stats")
        self.assertEqual(req.url.params["token"], "s3cr3t")
        self.assertNotIn("x-stats-token", req.headers)
        self.assertEqual(req.headers["accept"], "application/json")

    async def test_header_transport_sends_token_header(self):
        await self.upstream(token_transport=CredentialTransport.HEADER).fetch_stats()
        req = self.recorder.requests[0]
        self.assertEqual(req.headers["x-stats-token"], "s3cr3t")
        self.assertNotIn("token", req.url.params)

    async def test_custom_header_name(self):
        await self.upstream(token_transport=CredentialTransport.HEADER,
                            stats_token_header="x-admin-token").fetch_stats()
        self.assertEqual(self.recorder.requests[0].headers["x-admin-token"], "s3cr3t")

    async def test_missing_fields_are_none(self):
        self.recorder.body = {"installed": 3}
        snapshot = await self.upstream().fetch_stats()
        self.assertEqual(snapshot.installed, 3)
        self.assertIsNone(snapshot.active)
        self.assertIsNone(snapshot.deleted)

    async def test_wrong_typed_counter_only_nulls_itself(self):
        self.recorder.body = {"installed": 100, "active": "n/a", "offline": 55, "deleted": 5}
        snapshot = await self.upstream().fetch_stats()
        self.assertEqual(snapshot, StatsSnapshot(installed=100, active=None, offline=55, deleted=5))

    async def test_numeric_strings_and_whole_floats_accepted(self):
        self.recorder.body = {"installed": "100", "active": 40.0, "offline": 5.5, "deleted": True}
        snapshot = await self.upstream().fetch_stats()
        self.assertEqual(snapshot.installed, 100)
        self.assertEqual(snapshot.active, 40)
        self.assertIsNone(snapshot.offline)
        self.assertIsNone(snapshot.deleted)

    async def test_error_status_raises_with_code(self):
        self.recorder.status, self.recorder.body = 401, {"error": "bad token"}
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream().fetch_stats()
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.body, {"error": "bad token"})

    async def test_error_status_with_text_body_has_no_body(self):
        self.recorder.status, self.recorder.body = 502, "Bad Gateway"
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream().fetch_stats()
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertIsNone(ctx.exception.body)

    async def test_timeout_raises_without_code(self):
        self.recorder.body = httpx.ReadTimeout("slow")
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream().fetch_stats()
        self.assertIsNone(ctx.exception.status_code)

    async def test_network_error_raises(self):
        self.recorder.body = httpx.ConnectError("refused")
        with self.assertRaises(UpstreamError):
            await self.upstream().fetch_stats()

    async def test_unusable_base_url_raises(self):
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream(api_base="http://main.test:notaport").fetch_stats()
        self.assertIsNone(ctx.exception.status_code)
        self.assertEqual(self.recorder.requests, [])

    async def test_non_json_body_raises(self):
        self.recorder.body = "<html>maintenance</html>"
        with self.assertRaises(UpstreamError):
            await self.upstream().fetch_stats()

    async def test_token_not_in_error_message(self):
        self.recorder.status = 503
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream().fetch_stats()
        self.assertNotIn("s3cr3t", str(ctx.exception))


# ── fetch_devices ─────────────────────────────────────────────────────────────

class TestFetchDevices(UpstreamTestCase):

    async def test_no_admin_token_returns_empty_without_request(self):
        devices = await self.upstream().fetch_devices()
        self.assertEqual(devices, [])
        self.assertEqual(self.recorder.requests, [])

    async def test_admin_token_sent_in_header(self):
        self.recorder.body = {"devices": []}
        await self.upstream(admin_token="adm1n").fetch_devices()
        req = self.recorder.requests[0]
        self.assertEqual(req.url.path, "/api/admin/devices")
        self.assertEqual(req.headers["x-admin-token"], "adm1n")
        self.assertNotIn("token", req.url.params)

    async def test_records_parsed(self):
        self.recorder.body = {"devices": [
            {"deviceId": "d-1", "ip": "203.0.113.7", "os": "Android 14", "username": "ana",
             "hostname": "pixel", "lastSeen": 1_700_000_000_000, "online": True, "fcmToken": "x"},
            {"_id": 42, "os": "iOS"},
            "garbage",
        ]}
        devices = await self.upstream(admin_token="adm1n").fetch_devices()
        self.assertEqual(len(devices), 2)
        self.assertEqual(devices[0].id, "d-1")
        self.assertEqual(devices[0].ip, "203.0.113.7")
        self.assertEqual(devices[0].last_seen, 1_700_000_000_000)
        self.assertTrue(devices[0].online)
        self.assertEqual(devices[1].id, "42")
        self.assertIsNone(devices[1].ip)
        self.assertFalse(devices[1].online)

    async def test_error_status_raises(self):
        self.recorder.status, self.recorder.body = 500, {"error": "boom"}
        with self.assertRaises(UpstreamError) as ctx:
            await self.upstream(admin_token="adm1n").fetch_devices()
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_missing_devices_array_raises(self):
        self.recorder.body = {"items": []}
        with self.assertRaises(UpstreamError):
            await self.upstream(admin_token="adm1n").fetch_devices()


# ── Fetched ───────────────────────────────────────────────────────────────────

class TestFetched(unittest.IsolatedAsyncioTestCase):

    async def test_success(self):
        async def ok():
            return 7
        res = await Fetched.capture(ok())
        self.assertTrue(res.ok)
        self.assertEqual(res.value, 7)

    async def test_upstream_error_captured(self):
        async def fail():
            raise UpstreamError("down", status_code=502)
        res = await Fetched.capture(fail())
        self.assertFalse(res.ok)
        self.assertIsNone(res.value)
        self.assertEqual(res.error.status_code, 502)

    async def test_other_errors_propagate(self):
        async def bug():
            raise KeyError("x")
        with self.assertRaises(KeyError):
            await Fetched.capture(bug())


if __name__ == "__main__":
    unittest.main()
