from opentelemetry.instrumentation import auto_instrumentation

auto_instrumentation.initialize()

import logging
from contextlib import asynccontextmanager

import fastapi_problem_details as problem
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from app.api.v1 import api as api_v1
from app.core.config import settings
from app.core.realtime import lifespan as realtime_lifespan
from app.infrastructure.supabase import close_supabase_client, initialize_supabase_client

# Import des services portant des handlers temps reel statiques (@subscribe)
from app.services import activity_service  # noqa: F401
from app.services.session_scheduler import SessionScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gère le cycle de vie de l'application:
    - Initialise le client du backend distant (httpx async).
    - Initialise le bus temps réel (Redis Pub/Sub).
    - Démarre le balayage des sessions programmées (APScheduler).
    - Arrête proprement les services.
    """
    logger.info("=== Application Startup ===")

    # 1. Initialiser le client distant (singleton module-level)
    app.state.supabase_client = await initialize_supabase_client(
        base_url=str(settings.SUPABASE_URL),
        api_key=settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_ANON_KEY,
    )
    logger.info(f"Client Supabase initialisé: {settings.SUPABASE_URL}")

    # 2. Utiliser le lifespan du bus temps réel (Redis Pub/Sub)
    async with realtime_lifespan(app):
        scheduler: SessionScheduler | None = None
        try:
            # 3. Démarrer le scheduler des sessions programmées
            if settings.SCHEDULER_ENABLED:
                scheduler = SessionScheduler(app.state.supabase_client, app.state.realtime_bus)
                scheduler.start()

            logger.info("=== Application Startup Complete ===")
            yield

        finally:
            logger.info("=== Application Shutdown ===")
            if scheduler is not None:
                scheduler.shutdown()
            await close_supabase_client()
            logger.info("Client Supabase fermé")
            logger.info("=== Application Shutdown Complete ===")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.get_api_prefix()}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Exception handlers RFC 9457 Problem Details
problem.init_app(app, include_exc_info_in_response=settings.DEBUG)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.ALLOWED_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware Trusted Hosts
if settings.ENVIRONMENT != "development":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.TRUSTED_HOSTS,
    )

# Include API v1 (current version)
app.include_router(api_v1.router, prefix=settings.get_api_prefix("v1"))
