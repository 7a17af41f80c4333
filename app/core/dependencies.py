"""Dependances FastAPI pour l'injection de services."""

from fastapi.requests import HTTPConnection

from app.core.realtime_interface import RealtimeBusInterface
from app.infrastructure.supabase.client import SupabaseClient


def get_supabase_client(request: HTTPConnection) -> SupabaseClient:
    """
    Recupere le client du backend distant depuis l'etat de l'application.

    Le client est initialise dans le lifespan de l'application (main.py)
    et stocke dans app.state.supabase_client.

    Args:
        request: Requete HTTP ou WebSocket contenant l'application

    Returns:
        Instance du client distant

    Raises:
        RuntimeError: Si le client n'est pas initialise
    """
    client = getattr(request.app.state, "supabase_client", None)
    if client is None:
        raise RuntimeError(
            "Supabase client not initialized. "
            "Ensure the application lifespan properly initializes app.state.supabase_client"
        )
    return client


def get_realtime_bus(request: HTTPConnection) -> RealtimeBusInterface:
    """Recupere le bus temps reel attache par le lifespan (app.state.realtime_bus)."""
    realtime_bus = getattr(request.app.state, "realtime_bus", None)
    if realtime_bus is None:
        raise RuntimeError(
            "Realtime bus not initialized. "
            "Ensure the application lifespan properly initializes app.state.realtime_bus"
        )
    return realtime_bus
