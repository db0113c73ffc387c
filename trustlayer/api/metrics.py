"""
Metrics endpoints
"""
import logging

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import PlainTextResponse

from ..auth.deps import get_services, require_admin

router = APIRouter(tags=["Metrics"])


@router.get("/metrics", dependencies=[Depends(require_admin)])
async def get_metrics(spans: int = Query(50, ge=0, le=1000), services=Depends(get_services)):
    obs = services.observability
    return {
        "metrics": obs.get_metrics(),
        "spans": obs.recent_spans(spans) if spans else [],
    }


@router.get("/metrics/prometheus", summary="Prometheus metrics")
async def get_prometheus_metrics(services=Depends(get_services)) -> Response:
    """Metrics in Prometheus exposition format."""
    prometheus = services.observability.prometheus
    try:
        return PlainTextResponse(content=prometheus.get_metrics(), media_type=prometheus.get_content_type())
    except Exception as e:
        logging.getLogger("trustlayer").error("Failed to get metrics: %s", e)
        return PlainTextResponse(content="# Metrics temporarily unavailable\n", media_type="text/plain")
