"""
Health check router for liveness and readiness checks.
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the controller process is running.
    """
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check with dependencies",
)
async def readiness_check(request: Request):
    """
    Readiness check that verifies MongoDB and the reconcile workers.
    Returns 503 when one of them is not usable.
    """
    checks = {
        "mongodb": "unknown",
        "scheduler": "unknown",
    }

    # Check MongoDB through the client the reconciler uses
    collection_client = getattr(request.app.state, "collection_client", None)
    if collection_client is None:
        checks["mongodb"] = "unhealthy: not started"
    else:
        try:
            await collection_client.ping()
            checks["mongodb"] = "healthy"
        except Exception as e:
            checks["mongodb"] = f"unhealthy: {str(e)}"

    # Check the reconcile workers
    scheduler = getattr(request.app.state, "scheduler", None)
    stats = {}
    if scheduler is None:
        checks["scheduler"] = "unhealthy: not started"
    else:
        stats = scheduler.stats()
        checks["scheduler"] = "healthy" if scheduler.running else "unhealthy: stopped"

    all_healthy = all(v == "healthy" for v in checks.values())

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if all_healthy else "degraded",
            "checks": checks,
            "reconciles": stats,
        },
    )
