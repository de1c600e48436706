"""Pydantic models for upstream data and the dashboard API."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ── Upstream ──────────────────────────────────────────────────────────────────

class StatsSnapshot(BaseModel):
    """Fleet counters as reported by the main service.

    Each counter is ``None`` when the upstream did not report it or sent
    something that is not a whole number.
    """

    installed: int | None = None
    active:    int | None = None
    offline:   int | None = None
    deleted:   int | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("installed", "active", "offline", "deleted", mode="before")
    @classmethod
    def _unusable_counter_is_none(cls, value: object) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if value.is_integer() else None
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return None
        return None


class DeviceRecord(BaseModel):
    """One device as listed by the main service.

    Field names vary between main-service versions, so the camelCase and
    snake_case spellings are both accepted.
    """

    id:        str = Field(
        default="",
        validation_alias=AliasChoices("id", "deviceId", "device_id", "_id"),
    )
    ip:        str | None = None
    os:        str | None = None
    username:  str | None = None
    hostname:  str | None = None
    last_seen: int | None = Field(
        default=None,
        validation_alias=AliasChoices("lastSeen", "last_seen"),
    )
    online:    bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("ip", mode="before")
    @classmethod
    def _blank_ip_is_none(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("online", mode="before")
    @classmethod
    def _null_online_is_false(cls, value: object) -> object:
        return False if value is None else value


# ── Geolocation ───────────────────────────────────────────────────────────────

class GeoResult(BaseModel):
    city:      str = ""
    country:   str = ""
    latitude:  float | None = None
    longitude: float | None = None

    model_config = ConfigDict(frozen=True)


# ── Browser-facing payloads ───────────────────────────────────────────────────

class DeviceView(BaseModel):
    """A device record with the IP address removed, safe to send to a browser."""

    id:        str
    country:   str = ""
    city:      str = ""
    os:        str | None = None
    username:  str | None = None
    hostname:  str | None = None
    last_seen: int | None = None
    online:    bool = False


class StatsResponse(StatsSnapshot):
    ts: int


class AggregatedPayload(StatsResponse):
    devices: list[DeviceView] = []


class ErrorResponse(BaseModel):
    error:    str
    detail:   str | None = None
    upstream: dict[str, Any] | None = None   # error body forwarded from the main service
