"""
Admin endpoints for the orchestration layer.

POST /admin/cache/clear
POST /admin/circuits/{name}/reset
"""
from fastapi import APIRouter, Depends, HTTPException

from spai.core.logging import get_logger
from spai.services.ai.orchestration import Orchestrator, get_orchestrator

logger = get_logger(__name__)

router = APIRouter()


@router.post("/cache/clear")
def clear_cache(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """
    Flush every cache namespace now (same effect as the scheduled flush).

    Security: Should require admin authentication in production.
    """
    evicted = orchestrator.clear_cache()
    logger.info("admin_cache_cleared", evicted=evicted)
    return {"status": "cleared", "evicted": evicted}


@router.post("/circuits/{name}/reset")
def reset_circuit(name: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Force one domain's circuit breaker back to CLOSED."""
    try:
        orchestrator.reset_circuit(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown circuit: {name}") from None
    logger.info("admin_circuit_reset", circuit=name)
    return {"status": "reset", "circuit": name}
