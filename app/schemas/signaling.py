"""Schémas de la signalisation WebRTC échangée sur ``webrtc_<sessionId>``."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

SignalEvent = Literal["ready", "ready-ack", "offer", "answer", "ice-candidate", "call-ended"]
ParticipantRole = Literal["patient", "physician"]


class ConnectionState(str, Enum):
    """Miroir de ``RTCPeerConnection.connectionState``."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    UNKNOWN = "unknown"


class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str


class SignalMessage(BaseModel):
    """Message broadcast de signalisation."""

    event: SignalEvent
    from_user: str = Field(..., description="Identifiant de l'émetteur")
    role: ParticipantRole | None = None
    offer: SessionDescription | None = None
    answer: SessionDescription | None = None
    candidate: dict[str, Any] | None = None


class CallState(BaseModel):
    """Instantané de l'état d'un appel côté participant."""

    session_id: str
    user_id: str
    role: ParticipantRole
    connection_state: ConnectionState = ConnectionState.NEW
    is_call_active: bool = False
    is_connecting: bool = False
    video_enabled: bool = True
    audio_enabled: bool = True
    is_screen_sharing: bool = False
    error: str | None = None
