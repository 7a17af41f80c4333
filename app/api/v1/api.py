from fastapi import APIRouter

from app.api.v1 import health
from app.api.v1.endpoints import admin, agents, hospitals, sessions
from app.schemas import COMMON_RESPONSES

# Router principal avec réponses RFC 9457 par défaut
router = APIRouter(responses=COMMON_RESPONSES)

router.include_router(health.router, tags=["health"])
router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(hospitals.router, prefix="/hospitals", tags=["hospitals"])
router.include_router(agents.router, prefix="/agents", tags=["agents"])
