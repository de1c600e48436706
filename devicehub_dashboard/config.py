"""Settings loader for the dashboard server.

Resolution order (first match wins, per key):
  1. Environment variables (``PORT``, ``API_BASE``, ``STATS_TOKEN``, ...)
  2. YAML file given with ``--config`` or the ``DASHBOARD_CONFIG`` env var
  3. Built-in defaults (``_DEFAULTS``)

The YAML file mirrors the layout of ``_DEFAULTS``::

    upstream:
      api_base: https://main.example.com/api
      stats_token: s3cr3t
      token_transport: header
    geo:
      lookup_limit: 5
    logging:
      format: json

Empty environment values count as unset, so ``STATS_TOKEN=`` behaves the same
as not exporting the variable at all.

``API_BASE`` and ``STATS_TOKEN`` are required. When either is missing
``load_settings`` raises ``ConfigurationError`` unless
``DASHBOARD_ALLOW_UNCONFIGURED`` is set, in which case the server starts and
every data request answers ``dashboard_not_configured``.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import httpx

from .errors import ConfigurationError

log = logging.getLogger(__name__)

_CONFIG_ENV = "DASHBOARD_CONFIG"


class CredentialTransport(str, enum.Enum):
    """How the stats token travels to the main service."""

    QUERY = "query"     # ?token=...
    HEADER = "header"   # x-stats-token: ...


# Default config tree with all supported keys and their default values.
_DEFAULTS: dict[str, Any] = {
    "server": {
        "host":                  "0.0.0.0",
        "port":                  8080,
        "poll_interval_seconds": 5,
        "allow_unconfigured":    False,
    },
    "upstream": {
        "api_base":           None,   # required
        "stats_token":        None,   # required
        "admin_token":        None,   # enables the device listing
        "token_transport":    "query",
        "stats_token_header": "x-stats-token",
        "admin_token_header": "x-admin-token",
        "stats_path":         "/stats",
        "devices_path":       "/admin/devices",
        "timeout":            5.0,
    },
    "geo": {
        "url":          "https://ipapi.co",
        "timeout":      3.0,
        "ttl_seconds":  7 * 24 * 60 * 60,
        "max_entries":  10_000,
        "lookup_limit": 10,
    },
    "logging": {
        "level":  "INFO",
        "format": "text",   # text | json
    },
}

# (section, key) -> environment variable name
_ENV_VARS: dict[tuple[str, str], str] = {
    ("server", "host"):                  "HOST",
    ("server", "port"):                  "PORT",
    ("server", "poll_interval_seconds"): "POLL_INTERVAL_SECONDS",
    ("server", "allow_unconfigured"):    "DASHBOARD_ALLOW_UNCONFIGURED",
    ("upstream", "api_base"):            "API_BASE",
    ("upstream", "stats_token"):         "STATS_TOKEN",
    ("upstream", "admin_token"):         "ADMIN_TOKEN",
    ("upstream", "token_transport"):     "STATS_TOKEN_TRANSPORT",
    ("upstream", "stats_token_header"):  "STATS_TOKEN_HEADER",
    ("upstream", "admin_token_header"):  "ADMIN_TOKEN_HEADER",
    ("upstream", "stats_path"):          "STATS_PATH",
    ("upstream", "devices_path"):        "DEVICES_PATH",
    ("upstream", "timeout"):             "UPSTREAM_TIMEOUT",
    ("geo", "url"):                      "GEO_URL",
    ("geo", "timeout"):                  "GEO_TIMEOUT",
    ("geo", "ttl_seconds"):              "GEO_TTL_SECONDS",
    ("geo", "max_entries"):              "GEO_CACHE_MAX_ENTRIES",
    ("geo", "lookup_limit"):             "GEO_LOOKUP_LIMIT",
    ("logging", "level"):                "LOG_LEVEL",
    ("logging", "format"):               "LOG_FORMAT",
}

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class Settings:
    api_base: str = ""
    stats_token: str = ""
    admin_token: str | None = None
    token_transport: CredentialTransport = CredentialTransport.QUERY
    stats_token_header: str = "x-stats-token"
    admin_token_header: str = "x-admin-token"
    stats_path: str = "/stats"
    devices_path: str = "/admin/devices"
    upstream_timeout: float = 5.0

    geo_url: str = "https://ipapi.co"
    geo_timeout: float = 3.0
    geo_ttl_seconds: float = 7 * 24 * 60 * 60
    geo_cache_max_entries: int = 10_000
    geo_lookup_limit: int = 10

    host: str = "0.0.0.0"
    port: int = 8080
    poll_interval_seconds: int = 5
    allow_unconfigured: bool = False

    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def missing_required(self) -> list[str]:
        """Environment variable names of required settings that are unset."""
        missing = []
        if not self.api_base:
            missing.append("API_BASE")
        if not self.stats_token:
            missing.append("STATS_TOKEN")
        return missing

    @property
    def is_configured(self) -> bool:
        return not self.missing_required

    @property
    def devices_enabled(self) -> bool:
        return bool(self.admin_token)


# ── YAML loading ──────────────────────────────────────────────────────────────

def _load_yaml(path: Path) -> dict:
    """Load a YAML file and return its top-level mapping."""
    import yaml
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config must be a YAML mapping, got {type(data).__name__}: {path}"
        )
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Return a new dict with override merged recursively into base."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env(tree: dict, environ: Mapping[str, str]) -> dict:
    result = _deep_merge(tree, {})
    for (section, key), name in _ENV_VARS.items():
        value = environ.get(name)
        if value is None or value == "":
            continue
        result.setdefault(section, {})
        result[section] = dict(result[section], **{key: value})
    return result


# ── coercion ──────────────────────────────────────────────────────────────────

def _as_int(value: Any, name: str, minimum: int = 0, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    if maximum is not None and number > maximum:
        raise ConfigurationError(f"{name} must be <= {maximum}, got {number}")
    return number


def _as_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {number}")
    return number


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _as_str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _as_url(value: Any, name: str) -> str:
    """Return an http(s) base URL without trailing slash; empty stays empty."""
    text = _as_str(value).rstrip("/")
    if not text:
        return ""
    try:
        url = httpx.URL(text)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"{name} is not a valid URL: {exc}") from None
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"{name} must be an http(s) URL with a host, got {text!r}")
    return text


def _as_path(value: Any) -> str:
    path = _as_str(value)
    return path if path.startswith("/") else "/" + path


def _settings_from_tree(tree: dict) -> Settings:
    server   = tree.get("server") or {}
    upstream = tree.get("upstream") or {}
    geo      = tree.get("geo") or {}
    logcfg   = tree.get("logging") or {}

    transport_raw = _as_str(upstream.get("token_transport")).lower()
    try:
        transport = CredentialTransport(transport_raw)
    except ValueError:
        choices = ", ".join(t.value for t in CredentialTransport)
        raise ConfigurationError(
            f"STATS_TOKEN_TRANSPORT must be one of {choices}, got {transport_raw!r}"
        ) from None

    log_format = _as_str(logcfg.get("format")).lower()
    if log_format not in ("text", "json"):
        raise ConfigurationError(f"LOG_FORMAT must be text or json, got {log_format!r}")

    return Settings(
        api_base=_as_url(upstream.get("api_base"), "API_BASE"),
        stats_token=_as_str(upstream.get("stats_token")),
        admin_token=_as_str(upstream.get("admin_token")) or None,
        token_transport=transport,
        stats_token_header=_as_str(upstream.get("stats_token_header")),
        admin_token_header=_as_str(upstream.get("admin_token_header")),
        stats_path=_as_path(upstream.get("stats_path")),
        devices_path=_as_path(upstream.get("devices_path")),
        upstream_timeout=_as_float(upstream.get("timeout"), "UPSTREAM_TIMEOUT"),
        geo_url=_as_url(geo.get("url"), "GEO_URL") or _DEFAULTS["geo"]["url"],
        geo_timeout=_as_float(geo.get("timeout"), "GEO_TIMEOUT"),
        geo_ttl_seconds=_as_float(geo.get("ttl_seconds"), "GEO_TTL_SECONDS"),
        geo_cache_max_entries=_as_int(geo.get("max_entries"), "GEO_CACHE_MAX_ENTRIES", minimum=1),
        geo_lookup_limit=_as_int(geo.get("lookup_limit"), "GEO_LOOKUP_LIMIT"),
        host=_as_str(server.get("host")),
        port=_as_int(server.get("port"), "PORT", minimum=1, maximum=65535),
        poll_interval_seconds=_as_int(server.get("poll_interval_seconds"), "POLL_INTERVAL_SECONDS", minimum=1),
        allow_unconfigured=_as_bool(server.get("allow_unconfigured"), "DASHBOARD_ALLOW_UNCONFIGURED"),
        log_level=_as_str(logcfg.get("level")).upper() or "INFO",
        log_format=log_format,
    )


# ── public API ────────────────────────────────────────────────────────────────

def load_settings(
    explicit_path: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load, validate, and return the resolved dashboard settings.

    Args:
        explicit_path: Path passed via ``--config``. When provided it must
            exist. If ``None`` the ``DASHBOARD_CONFIG`` env var is consulted.
        environ: Environment mapping; defaults to ``os.environ``.

    Raises:
        ConfigurationError: A required value is missing (and unconfigured
            mode is off), a value is malformed, or the config file is unusable.
    """
    if environ is None:
        environ = os.environ

    raw: dict = {}
    if explicit_path is not None:
        p = Path(explicit_path)
        if not p.exists():
            raise ConfigurationError(f"Config file not found: {p}")
        raw = _load_yaml(p)
    else:
        env_path = environ.get(_CONFIG_ENV)
        if env_path:
            p = Path(env_path)
            if p.exists():
                raw = _load_yaml(p)
            else:
                log.warning("%s points to missing file: %s", _CONFIG_ENV, p)

    tree = _apply_env(_deep_merge(_DEFAULTS, raw), environ)
    settings = _settings_from_tree(tree)

    if settings.missing_required and not settings.allow_unconfigured:
        raise ConfigurationError(
            "Dashboard is not configured; set "
            + " and ".join(settings.missing_required)
        )
    return settings
