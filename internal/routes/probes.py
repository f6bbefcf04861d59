"""Kubernetes probe endpoints.

These endpoints are internal-only - not exposed via ingress.
Ingress only routes /api/* paths, so these root-level paths are only
reachable by k8s probes hitting the pod IP directly.
"""

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from common.core.otel_axiom_exporter import get_logger
from common.db.scoped import get_session

logger = get_logger(__name__)

router = APIRouter(tags=["internal"])


@router.get("/healthz")
async def healthz():
    """Liveness probe - is the process alive?"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(response: Response):
    """Readiness probe - can we reach the database?"""
    try:
        async with get_session(readonly=True) as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable"}
    return {"status": "ok"}
