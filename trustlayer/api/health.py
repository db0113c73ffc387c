"""
Health check endpoint - no authentication required
"""
from fastapi import APIRouter

from ..config import SERVICE_NAME

router = APIRouter()


@router.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok", "service": SERVICE_NAME}
