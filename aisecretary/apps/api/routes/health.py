from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_kv_store
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.core.errors import StoreUnavailable
from aisecretary.persistence.store import KeyValueStore
from aisecretary.services.telemetry import counters_snapshot, external_failure_ratio, latency_by_route_class


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

METRICS_WINDOW_S = 300
INTEGRATIONS = ("llm.openai", "chat.line", "calendar.google.token", "calendar.google.events")


class HealthResponse(BaseModel):
    status: str
    store: str


class MetricsResponse(BaseModel):
    window_s: int
    counters: dict[str, int]
    p95_latency_ms: dict[str, float]
    external_failure_ratio: dict[str, float | None]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, store: KeyValueStore = Depends(get_kv_store)) -> dict:
    # Report store reachability without failing the probe itself.
    try:
        reachable = await store.ping()
    except StoreUnavailable:
        logger.warning("health_store_unreachable")
        reachable = False
    payload = HealthResponse(status="ok" if reachable else "degraded", store="ok" if reachable else "unavailable")
    return success_response(request=request, data=payload)


@router.get("/health/metrics", response_model=SuccessEnvelope[MetricsResponse])
async def metrics(request: Request) -> dict:
    payload = MetricsResponse(
        window_s=METRICS_WINDOW_S,
        counters=counters_snapshot(),
        p95_latency_ms=latency_by_route_class(METRICS_WINDOW_S),
        external_failure_ratio={name: external_failure_ratio(name, METRICS_WINDOW_S) for name in INTEGRATIONS},
    )
    return success_response(request=request, data=payload)
