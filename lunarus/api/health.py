"""
Health check and readiness probe endpoints.
Provides liveness and readiness checks for container orchestration and monitoring.
"""
import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lunarus import __version__
from lunarus.api.dependencies import get_db, get_registry
from lunarus.api.metrics import update_gateway_metrics
from lunarus.gateway.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def check_database(db: Session) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"healthy": True, "message": "Database connection OK"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"healthy": False, "message": f"Database connection failed: {str(e)}"}


def gateway_stats(registry: ConnectionRegistry) -> Dict[str, Any]:
    """Live gateway connection counts."""
    update_gateway_metrics(registry)
    return {"connections": len(registry), "users": registry.user_count()}


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Liveness probe endpoint.

    Example Response:
        {"ok": true}
    """
    return {"ok": True}


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry)
):
    """
    Readiness probe endpoint.

    Returns 200 when the database answers, 503 otherwise. Gateway
    connection counts are included either way.

    Example Response:
        {
            "status": "ready",
            "version": "2.0.0",
            "checks": {"database": {"healthy": true, "message": "Database connection OK"}},
            "gateway": {"connections": 3, "users": 2}
        }
    """
    checks = {"database": check_database(db)}
    body = {
        "status": "ready",
        "version": __version__,
        "checks": checks,
        "gateway": gateway_stats(registry),
    }

    if not all(check["healthy"] for check in checks.values()):
        logger.warning("Readiness check failed for database")
        body["status"] = "not_ready"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=body)

    return body
