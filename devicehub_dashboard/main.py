"""DeviceHub dashboard: FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .aggregate import Aggregator
from .config import Settings, load_settings
from .errors import ConfigurationError
from .geo import GeoCache
from .routers import NO_STORE, stats
from .upstream import UpstreamClient

log = logging.getLogger(__name__)


# ── Dashboard page ────────────────────────────────────────────────────────────

_DASHBOARD_HTML = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>DeviceHub &mdash; Live Stats</title>
<style>
  :root { color-scheme: dark light; }
  body { font-family: system-ui, -apple-system, Segoe UI, Roboto, Ubuntu, sans-serif;
         margin: 24px; background: #0b0f14; color: #e6edf3; }
  h1 { margin: 0; font-size: 1.5rem; }
  .topbar { display: flex; gap: 12px; align-items: center; justify-content: space-between;
            margin-bottom: 16px; }
  .grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(220px, 1fr)); gap: 16px; }
  .card { background: #0f1720; border: 1px solid #1f2a37; border-radius: 12px; padding: 16px; }
  .num { font-size: 36px; font-weight: 700; margin-top: 8px; }
  .muted { color: #9fb2c8; font-size: 13px; }
  canvas.spark { width: 100%; height: 36px; margin-top: 8px; display: block; }
  #error { color: #ef4444; display: none; margin-bottom: 12px; }
  table { width: 100%; border-collapse: collapse; margin-top: 8px; }
  th { text-align: left; padding: 8px; font-size: 12px; color: #9fb2c8; text-transform: uppercase;
       letter-spacing: 0.05em; border-bottom: 1px solid #1f2a37; }
  td { padding: 8px; font-size: 14px; border-bottom: 1px solid #141d28; }
  .dot { display: inline-block; width: 8px; height: 8px; border-radius: 50%; margin-right: 6px; }
  .on  { background: #22c55e; }
  .off { background: #64748b; }
  .empty { text-align: center; padding: 2rem; color: #64748b; }
</style>
</head>
<body>
  <div class="topbar">
    <h1>DeviceHub &mdash; Live Stats</h1>
    <div class="muted">Auto-refreshing every __POLL_SECONDS__s</div>
  </div>

  <div id="error"></div>

  <div class="grid">
    <div class="card"><div class="muted">Installed (ever seen)</div><div id="installed" class="num">&mdash;</div><canvas class="spark" id="spark-installed"></canvas></div>
    <div class="card"><div class="muted">Active (online)</div><div id="active" class="num">&mdash;</div><canvas class="spark" id="spark-active"></canvas></div>
    <div class="card"><div class="muted">Offline</div><div id="offline" class="num">&mdash;</div><canvas class="spark" id="spark-offline"></canvas></div>
    <div class="card"><div class="muted">Deleted</div><div id="deleted" class="num">&mdash;</div><canvas class="spark" id="spark-deleted"></canvas></div>
  </div>

  <div class="card" style="margin-top:16px">
    <div class="muted">Last Updated</div>
    <div id="updated" style="margin-top:4px">&mdash;</div>
  </div>

  <div class="card" style="margin-top:16px">
    <div class="muted">Devices</div>
    <div id="devices"></div>
  </div>

<script>
const POLL_MS = __POLL_SECONDS__ * 1000;
const WINDOW = 60;
const FIELDS = ["installed", "active", "offline", "deleted"];
const history = Object.fromEntries(FIELDS.map(f => [f, []]));
const $ = id => document.getElementById(id);

function esc(s) {
  return String(s ?? "")
    .replace(/&/g, "&amp;").replace(/</g, "&lt;").replace(/>/g, "&gt;")
    .replace(/"/g, "&quot;");
}
function dash(v) { return (v === null || v === undefined || v === "") ? "\\u2014" : v; }

function spark(id, points) {
  const c = $(id);
  const w = c.width = c.clientWidth, h = c.height = c.clientHeight;
  const ctx = c.getContext("2d");
  ctx.clearRect(0, 0, w, h);
  const vals = points.filter(v => v !== null);
  if (vals.length < 2) return;
  const lo = Math.min(...vals), hi = Math.max(...vals), span = (hi - lo) || 1;
  ctx.strokeStyle = "#38bdf8"; ctx.lineWidth = 2; ctx.beginPath();
  vals.forEach((v, i) => {
    const x = i * (w / (WINDOW - 1)), y = h - 2 - ((v - lo) / span) * (h - 4);
    i ? ctx.lineTo(x, y) : ctx.moveTo(x, y);
  });
  ctx.stroke();
}

function renderDevices(devices) {
  if (!devices.length) {
    $("devices").innerHTML = '<div class="empty">No device data.</div>';
    return;
  }
  $("devices").innerHTML = `
  <table>
    <thead><tr><th>Hostname</th><th>User</th><th>OS</th><th>Location</th><th>Last Seen</th></tr></thead>
    <tbody>
    ${devices.map(d => `
      <tr>
        <td><span class="dot ${d.online ? "on" : "off"}"></span>${esc(dash(d.hostname))}</td>
        <td>${esc(dash(d.username))}</td>
        <td>${esc(dash(d.os))}</td>
        <td>${esc(dash([d.city, d.country].filter(Boolean).join(", ")))}</td>
        <td>${d.last_seen ? esc(new Date(d.last_seen).toLocaleString()) : "\\u2014"}</td>
      </tr>`).join("")}
    </tbody>
  </table>`;
}

async function load() {
  try {
    const r = await fetch("/data", { cache: "no-store" });
    const j = await r.json();
    if (!r.ok) { throw new Error((j && j.error) || r.status); }
    for (const f of FIELDS) {
      $(f).textContent = dash(j[f]);
      history[f].push(j[f] ?? null);
      if (history[f].length > WINDOW) history[f].shift();
      spark("spark-" + f, history[f]);
    }
    $("updated").textContent = new Date(j.ts).toLocaleString();
    renderDevices(j.devices || []);
    $("error").style.display = "none";
    $("error").textContent = "";
  } catch (e) {
    $("error").style.display = "block";
    $("error").textContent = "Failed to load stats: " + (e.message || e);
  }
}
load();
setInterval(load, POLL_MS);
</script>
</body>
</html>
"""


def render_dashboard(poll_interval_seconds: int) -> str:
    return _DASHBOARD_HTML.replace("__POLL_SECONDS__", str(int(poll_interval_seconds)))


# ── Application ───────────────────────────────────────────────────────────────

def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the dashboard application.

    Args:
        settings: Resolved settings. Loaded from the environment when omitted,
            which raises ``ConfigurationError`` if API_BASE or STATS_TOKEN is
            missing (unless unconfigured mode is enabled).
        transport: Optional httpx transport for all outbound calls.
    """
    if settings is None:
        settings = load_settings()
    if not settings.is_configured:
        log.warning(
            "Starting unconfigured (%s missing); data endpoints will answer "
            "dashboard_not_configured",
            ", ".join(settings.missing_required),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(transport=transport) as client:
            geo = GeoCache(
                client,
                base_url=settings.geo_url,
                timeout=settings.geo_timeout,
                ttl_seconds=settings.geo_ttl_seconds,
                max_entries=settings.geo_cache_max_entries,
            )
            app.state.aggregator = Aggregator(
                UpstreamClient(client, settings),
                geo,
                geo_lookup_limit=settings.geo_lookup_limit,
            )
            log.info(
                "Dashboard ready: upstream=%s devices=%s transport=%s",
                settings.api_base or "-",
                "on" if settings.devices_enabled else "off",
                settings.token_transport.value,
            )
            yield

    app = FastAPI(
        title="DeviceHub Dashboard",
        description=(
            "Read-only live status page for the DeviceHub fleet. The browser "
            "polls `/data`; tokens for the main service stay on this server."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.include_router(stats.router)

    # ── Error handling ────────────────────────────────────────────────────────

    @app.exception_handler(ConfigurationError)
    async def not_configured(request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "dashboard_not_configured"},
            headers=NO_STORE,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        detail = "Not found" if exc.status_code == status.HTTP_404_NOT_FOUND else str(exc.detail)
        return PlainTextResponse(detail, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "server_error", "detail": str(exc)},
        )

    # ── Page and health check ─────────────────────────────────────────────────

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def dashboard() -> HTMLResponse:
        return HTMLResponse(render_dashboard(settings.poll_interval_seconds), headers=NO_STORE)

    @app.get("/healthz", response_class=PlainTextResponse, tags=["meta"], summary="Health check")
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("OK", headers=NO_STORE)

    return app
