"""
Fleet API routes — CRUD endpoints for Fleet CRDs.

Features:
  - Rate limiting per-IP via slowapi
  - Prometheus metrics exposition
  - Activity feed read from the operator's Redis Stream
"""

import logging
from typing import Optional

import redis
from fastapi import APIRouter, HTTPException, Query, Request, Response
from kubernetes.client import ApiException
from prometheus_client import Counter, Gauge
from slowapi import Limiter
from slowapi.util import get_remote_address

from fleet_operator.events import stream_key

from ..config import settings
from ..models import (
    ErrorResponse,
    FleetCreateRequest,
    FleetEvent,
    FleetEventsResponse,
    FleetListResponse,
    FleetResponse,
    FleetUpdateRequest,
)
from ..services.kubernetes_service import (
    PHASES,
    count_fleets_by_phase,
    create_fleet,
    delete_fleet,
    get_fleet,
    list_fleets,
    update_fleet,
)

logger = logging.getLogger("fleets")

router = APIRouter(prefix="/fleets", tags=["fleets"])
limiter = Limiter(key_func=get_remote_address)


# --- Redis client (optional) ---
_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    """Lazy-init Redis. Returns None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    try:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_URL}")
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        _redis_client = None
        return None


# --- Prometheus metrics ---
FLEETS_CREATED = Counter(
    "fleet_api_fleets_created_total",
    "Total Fleets created through the API",
)
FLEETS_UPDATED = Counter(
    "fleet_api_fleets_updated_total",
    "Total Fleet spec replacements",
)
FLEETS_DELETED = Counter(
    "fleet_api_fleets_deleted_total",
    "Total Fleets deleted",
)
REQUEST_FAILURES = Counter(
    "fleet_api_request_failures_total",
    "Kubernetes API failures seen by the intent API",
    ["action"],
)
FLEETS_TOTAL = Gauge(
    "fleet_api_fleets_total",
    "Current Fleets by phase",
    ["phase"],
)


def update_gauges():
    try:
        counts = count_fleets_by_phase()
    except ApiException as e:
        logger.warning(f"Could not count Fleets for metrics: {e.reason}")
        return
    for phase in PHASES:
        FLEETS_TOTAL.labels(phase=phase).set(counts.get(phase, 0))


def _api_error(action: str, target: str, e: ApiException) -> HTTPException:
    REQUEST_FAILURES.labels(action=action).inc()
    logger.error(f"Failed to {action} Fleet {target}: {e.status} {e.reason}")
    if e.status in (409, 422):
        return HTTPException(status_code=e.status, detail=f"Failed to {action} Fleet: {e.reason}")
    return HTTPException(status_code=500, detail=f"Failed to {action} Fleet: {e.reason}")


# =========================================================================
# REST Endpoints
# =========================================================================

@router.post("", response_model=FleetResponse, status_code=201,
             responses={422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def create_fleet_endpoint(req: FleetCreateRequest, request: Request, response: Response):
    """Create a Fleet. Idempotent — returns the existing Fleet (200) if the name matches."""
    namespace = req.namespace or settings.DEFAULT_NAMESPACE
    try:
        fleet, created = create_fleet(namespace, req.name, req.spec)
    except ApiException as e:
        raise _api_error("create", f"{namespace}/{req.name}", e)
    if created:
        FLEETS_CREATED.inc()
    else:
        response.status_code = 200
    return fleet


@router.get("", response_model=FleetListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_fleets_endpoint(
    request: Request,
    namespace: Optional[str] = Query(None, description="Only Fleets in this namespace"),
):
    """List Fleets, cluster-wide unless a namespace is given."""
    try:
        fleets = list_fleets(namespace=namespace)
    except ApiException as e:
        raise _api_error("list", namespace or "*", e)
    return FleetListResponse(fleets=fleets, total=len(fleets))


@router.get("/{namespace}/{name}", response_model=FleetResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_fleet_endpoint(namespace: str, name: str, request: Request):
    """Get a Fleet with its phase, per-service status and conditions."""
    fleet = get_fleet(namespace, name)
    if not fleet:
        raise HTTPException(status_code=404, detail=f"Fleet '{namespace}/{name}' not found")
    return fleet


@router.put("/{namespace}/{name}", response_model=FleetResponse,
            responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def update_fleet_endpoint(namespace: str, name: str, req: FleetUpdateRequest, request: Request):
    """Replace a Fleet's spec; the operator converges on its next pass."""
    try:
        fleet = update_fleet(namespace, name, req.spec)
    except ApiException as e:
        raise _api_error("update", f"{namespace}/{name}", e)
    if not fleet:
        raise HTTPException(status_code=404, detail=f"Fleet '{namespace}/{name}' not found")
    FLEETS_UPDATED.inc()
    return fleet


@router.delete("/{namespace}/{name}", status_code=202,
               responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def delete_fleet_endpoint(namespace: str, name: str, request: Request):
    """Delete a Fleet. Returns 202 Accepted; owned objects are garbage-collected."""
    try:
        deleted = delete_fleet(namespace, name)
    except ApiException as e:
        raise _api_error("delete", f"{namespace}/{name}", e)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Fleet '{namespace}/{name}' not found")
    FLEETS_DELETED.inc()
    return {"message": f"Fleet '{namespace}/{name}' deletion initiated", "status": "accepted"}


@router.get("/{namespace}/{name}/events", response_model=FleetEventsResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_fleet_events(
    namespace: str,
    name: str,
    request: Request,
    limit: int = Query(50, ge=1, le=100, description="Most recent entries to return"),
):
    """
    Activity feed for a Fleet, oldest first.
    Empty when Redis is not configured.
    """
    if not get_fleet(namespace, name):
        raise HTTPException(status_code=404, detail=f"Fleet '{namespace}/{name}' not found")

    events = []
    r = get_redis()
    if r:
        try:
            entries = r.xrevrange(stream_key(namespace, name), count=limit)
            for _entry_id, data in reversed(entries):
                events.append(FleetEvent(
                    timestamp=data.get("timestamp", ""),
                    type=data.get("type", ""),
                    message=data.get("message", ""),
                    phase=data.get("phase", ""),
                ))
        except redis.RedisError as e:
            logger.debug(f"Redis stream read failed: {e}")

    return FleetEventsResponse(fleet=f"{namespace}/{name}", events=events)
