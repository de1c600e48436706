"""Browser-facing data endpoints: GET /data and GET /stats."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from ..aggregate import Aggregator, now_ms
from ..errors import ConfigurationError, UpstreamError
from ..models import AggregatedPayload, ErrorResponse, StatsResponse
from . import NO_STORE

router = APIRouter(tags=["stats"])


async def require_configured(request: Request) -> None:
    """FastAPI dependency: refuse data requests when API_BASE/STATS_TOKEN are unset.

    Only reachable when the server was started in unconfigured mode; the
    ``ConfigurationError`` is turned into ``dashboard_not_configured`` by the
    app-level handler.
    """
    settings = request.app.state.settings
    if not settings.is_configured:
        raise ConfigurationError(
            "missing " + ", ".join(settings.missing_required)
        )


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


@router.get(
    "/data",
    response_model=AggregatedPayload,
    summary="Counters, devices and locations in one payload",
    description=(
        "Fetches fleet counters and the device listing from the main service "
        "concurrently, adds city/country for up to ten device IPs and returns "
        "the result without any IP address. Upstream failures degrade to null "
        "counters or an empty device list."
    ),
    responses={500: {"model": ErrorResponse}},
)
async def get_data(
    response: Response,
    _: None = Depends(require_configured),
    aggregator: Aggregator = Depends(get_aggregator),
) -> AggregatedPayload:
    response.headers.update(NO_STORE)
    return await aggregator.handle_request()


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Fleet counters only",
    description=(
        "Proxies the main service's counters. On upstream failure the upstream "
        "status code is mirrored (500 when none was received) and its JSON "
        "error body is forwarded under ``upstream``."
    ),
    responses={500: {"model": ErrorResponse}},
)
async def get_stats(
    response: Response,
    _: None = Depends(require_configured),
    aggregator: Aggregator = Depends(get_aggregator),
):
    try:
        snapshot = await aggregator.upstream.fetch_stats()
    except UpstreamError as exc:
        return JSONResponse(
            status_code=exc.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="dashboard_fetch_failed",
                detail=str(exc),
                upstream=exc.body,
            ).model_dump(exclude_none=True),
            headers=NO_STORE,
        )
    response.headers.update(NO_STORE)
    return StatsResponse(ts=now_ms(), **snapshot.model_dump())
