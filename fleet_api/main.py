"""
Fleet Intent API entrypoint.

The API only writes Fleet objects; the operator does the converging. The
health check therefore reports whether the Fleet CRD can be reached,
plus the state of the optional activity feed.
"""

import logging

import redis
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import settings
from .routers.fleets import get_redis, limiter, router as fleets_router, update_gauges
from .services import kubernetes_service as k8s

logger = logging.getLogger("fleet-api")


def activity_feed_state() -> str:
    if not settings.REDIS_URL:
        return "disabled"
    r = get_redis()
    if r is None:
        return "unavailable"
    try:
        r.ping()
    except redis.RedisError as e:
        logger.warning(f"Activity feed ping failed: {e}")
        return "unavailable"
    return "connected"


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fleet Intent API",
        description="Declare and inspect Fleets of cluster-tester services",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.include_router(fleets_router, prefix="/api")

    @app.get("/health")
    def health():
        """503 while Fleets cannot be read; the activity feed is optional."""
        reachable = k8s.fleets_reachable()
        body = {
            "status": "ok" if reachable else "degraded",
            "fleetCrd": f"{settings.CRD_PLURAL}.{settings.CRD_GROUP}/{settings.CRD_VERSION}",
            "fleetsReachable": reachable,
            "activityFeed": activity_feed_state(),
        }
        return JSONResponse(body, status_code=200 if reachable else 503)

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics():
        update_gauges()
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")


if __name__ == "__main__":
    main()
