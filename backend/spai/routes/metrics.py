"""
Prometheus scrape endpoint.

GET /metrics
"""
from fastapi import APIRouter, Response

from spai.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("")
def metrics() -> Response:
    """Default-registry exposition; CPU and memory gauges are refreshed per scrape."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
