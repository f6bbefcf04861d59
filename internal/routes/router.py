"""Internal routes aggregator.

Routes in this module are mounted at root level (not under /api/v1).
They are not exposed via ingress - only reachable inside the cluster.
"""

from fastapi import APIRouter

from internal.routes import billing, probes

internal_router = APIRouter()

# K8s probe endpoints
internal_router.include_router(probes.router)

# Service-to-service billing operations
internal_router.include_router(billing.router)
