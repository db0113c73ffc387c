"""
Recent log records from the in-memory ring buffer
"""
from fastapi import APIRouter, Depends, Query

from ..auth.deps import require_admin
from ..logging_config import memory_handler

router = APIRouter(tags=["Logs"])


@router.get("/logs", dependencies=[Depends(require_admin)])
async def get_logs(limit: int = Query(100, ge=1, le=1000)):
    """Tail of the records captured by ``setup_logging``."""
    logs = memory_handler.get_logs(limit)
    return {"logs": logs, "total": len(logs)}
