"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from spai.core.logging import get_logger
from spai.services.ai.orchestration import Orchestrator, get_orchestrator

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Liveness check."""
    return {
        "status": "ok",
        "message": "API is running",
    }


@router.get("/orchestration")
def orchestration_health(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """
    State of the orchestration layer.

    Returns:
        - status: "degraded" when any circuit is not closed, otherwise "ok"
        - circuits: per-domain breaker state and recent error rate
        - rate_limits: per-subject window counters
        - cache: entry count per namespace
    """
    stats = orchestrator.get_stats()
    open_circuits = sorted(
        name for name, circuit in stats["circuits"].items() if circuit["state"] != "closed"
    )
    if open_circuits:
        logger.info("orchestration_health_degraded", circuits=open_circuits)
    return {
        "status": "degraded" if open_circuits else "ok",
        **stats,
    }
