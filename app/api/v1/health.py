import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.dependencies import get_supabase_client
from app.core.realtime import bus
from app.infrastructure.supabase import SupabaseClient

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: Literal["ok", "error"] = Field(..., description="The status of the health check")
    cache: Literal["ok", "unavailable"] = Field("ok", description="Redis availability")


@router.get("/health", tags=["health"], response_model=HealthResponse)
async def health(client: SupabaseClient = Depends(get_supabase_client)):
    try:
        await client.count("system_settings")
    except Exception as e:
        logger.error(f"Error checking health: {e}")
        raise HTTPException(status_code=503, detail=f"Failed to check health: {e!s}") from None

    cache_status: Literal["ok", "unavailable"] = "ok"
    try:
        if bus.redis_client is None or not await bus.redis_client.ping():
            cache_status = "unavailable"
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        cache_status = "unavailable"

    return HealthResponse(status="ok", cache=cache_status)
