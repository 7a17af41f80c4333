"""Signalisation WebRTC d'une consultation video sur le bus temps reel.

Les deux participants partagent le canal broadcast ``webrtc_<sessionId>`` et
y echangent ``ready`` / ``ready-ack``, l'offre SDP, la reponse et les
candidats ICE. L'offre n'est creee qu'une fois la presence du pair distant
observee (``ready`` ou ``ready-ack``), et au plus une fois par appel.

La couche media (``PeerConnection``, ``MediaProvider``) est abstraite:
le runtime navigateur reste hors du service et les tests injectent des faux.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import MediaAccessError
from app.core.realtime_interface import RealtimeBusInterface, Subscription
from app.infrastructure.supabase import SupabaseClient, SupabaseError
from app.infrastructure.supabase.filters import eq
from app.schemas.signaling import (
    CallState,
    ConnectionQuality,
    ConnectionState,
    ParticipantRole,
    SessionDescription,
    SignalMessage,
)
from app.services.session_logger import SessionLogger

logger = logging.getLogger(__name__)

MEDIA_ERROR = "Failed to access camera/microphone"
POOR_PACKET_LOSS = 0.05
GOOD_PACKET_LOSS = 0.02


def signaling_channel(session_id: str) -> str:
    return f"webrtc_{session_id}"


async def relay_client_signal(
    bus: RealtimeBusInterface,
    session_id: str,
    user_id: str,
    role: ParticipantRole,
    raw: dict[str, Any],
) -> SignalMessage:
    """
    Valide un message de signalisation recu d'un client et le diffuse.

    L'emetteur et son role sont imposes par la connexion authentifiee, jamais
    repris du message.

    Raises:
        pydantic.ValidationError: Si le message est invalide
    """
    message = SignalMessage.model_validate({**raw, "from_user": user_id, "role": role})
    payload = message.model_dump(mode="json", exclude_none=True, exclude={"event"})
    await bus.broadcast(signaling_channel(session_id), message.event, payload)
    return message


# =============================================================================
# Couche media abstraite
# =============================================================================


class MediaTrack(ABC):
    """Piste audio ou video locale."""

    kind: str
    enabled: bool = True

    @abstractmethod
    def stop(self) -> None:
        """Libere la capture."""


@dataclass
class MediaStream:
    tracks: list[MediaTrack] = field(default_factory=list)

    def video_tracks(self) -> list[MediaTrack]:
        return [t for t in self.tracks if t.kind == "video"]

    def audio_tracks(self) -> list[MediaTrack]:
        return [t for t in self.tracks if t.kind == "audio"]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


StateChangeCallback = Callable[[ConnectionState], Awaitable[None]]
IceCandidateCallback = Callable[[dict[str, Any]], Awaitable[None]]


class PeerConnection(ABC):
    """Equivalent abstrait de ``RTCPeerConnection``."""

    connection_state: ConnectionState = ConnectionState.NEW
    on_state_change: StateChangeCallback | None = None
    on_ice_candidate: IceCandidateCallback | None = None

    @property
    @abstractmethod
    def remote_description(self) -> SessionDescription | None: ...

    @abstractmethod
    async def create_offer(self) -> SessionDescription: ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription: ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None: ...

    @abstractmethod
    def add_track(self, track: MediaTrack, stream: MediaStream) -> None: ...

    @abstractmethod
    async def replace_track(self, kind: str, track: MediaTrack) -> None:
        """Remplace la piste emise du type ``kind`` sans renegociation."""

    @abstractmethod
    async def get_stats(self) -> list[dict[str, Any]]:
        """Rapports de statistiques (``type``, ``packetsLost``, ``packetsReceived``...)."""

    @abstractmethod
    async def close(self) -> None: ...


class MediaProvider(ABC):
    """Equivalent abstrait de ``navigator.mediaDevices``."""

    @abstractmethod
    async def get_user_media(self, video: bool = True, audio: bool = True) -> MediaStream: ...

    @abstractmethod
    async def get_display_media(self) -> MediaStream: ...


PeerConnectionFactory = Callable[[list[str]], PeerConnection]


def classify_packet_loss(lost: int, received: int) -> ConnectionQuality:
    """Qualite de connexion a partir des compteurs inbound-rtp."""
    total = lost + received
    if total <= 0:
        return ConnectionQuality.UNKNOWN
    loss_rate = lost / total
    if loss_rate > POOR_PACKET_LOSS:
        return ConnectionQuality.POOR
    if loss_rate > GOOD_PACKET_LOSS:
        return ConnectionQuality.GOOD
    return ConnectionQuality.EXCELLENT


# =============================================================================
# Pair de signalisation
# =============================================================================


class SignalingPeer:
    """
    Un participant (patient ou medecin) d'un appel video.

    Le medecin est l'initiateur; entre deux pairs de meme role, c'est celui
    qui recoit le ``ready`` de l'autre (donc arrive en premier) qui offre.

    Example:
        ```python
        peer = SignalingPeer(session_id, user_id, "physician", bus, factory, media)
        await peer.start_call()
        ...
        await peer.end_call()
        ```
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        role: ParticipantRole,
        bus: RealtimeBusInterface,
        peer_factory: PeerConnectionFactory,
        media_provider: MediaProvider,
        client: SupabaseClient | None = None,
        session_logger: SessionLogger | None = None,
        on_connected: Callable[[], Any] | None = None,
        stun_servers: list[str] | None = None,
        reconnect_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.role = role
        self.bus = bus
        self.peer_factory = peer_factory
        self.media_provider = media_provider
        self.client = client
        self.session_logger = session_logger
        self.on_connected = on_connected
        self.stun_servers = stun_servers or list(settings.WEBRTC_STUN_SERVERS)
        self.reconnect_delay = (
            reconnect_delay
            if reconnect_delay is not None
            else settings.WEBRTC_RECONNECT_DELAY_SECONDS
        )
        self._sleep = sleep

        self.channel = signaling_channel(session_id)
        self.state = CallState(session_id=session_id, user_id=user_id, role=role)
        self.offers_sent = 0

        self._pc: PeerConnection | None = None
        self._local_stream: MediaStream | None = None
        self._screen_stream: MediaStream | None = None
        self._subscription: Subscription | None = None
        self._reset_negotiation()
        self._connected_notified = False

    def _reset_negotiation(self) -> None:
        self._remote_user: str | None = None
        self._remote_role: ParticipantRole | None = None
        self._remote_ready = asyncio.Event()
        self._offer_sent = False
        self._answered = False
        self._answer_applied = False
        self._pending_candidates: list[dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Cycle d'appel
    # ------------------------------------------------------------------

    async def start_call(self) -> None:
        """
        Demarre l'appel: media local, connexion pair, abonnement, ``ready``.

        Raises:
            MediaAccessError: Si la camera / le micro sont inaccessibles
        """
        self.state = self.state.model_copy(update={"is_connecting": True, "error": None})
        self._connected_notified = False
        self._reset_negotiation()

        try:
            self._local_stream = await self.media_provider.get_user_media(video=True, audio=True)
        except Exception as e:
            logger.error(f"Failed to get user media for session {self.session_id}: {e}")
            self.state = self.state.model_copy(
                update={"error": MEDIA_ERROR, "is_connecting": False}
            )
            if self.session_logger is not None:
                await self.session_logger.log_system_error(
                    e, "media_access", self.session_id, self.user_id
                )
            raise MediaAccessError() from e

        self._ensure_peer_connection()
        self._subscription = await self.bus.subscribe(self.channel, self._on_message)
        await self._send("ready")
        await self._mark_room(joined=True)
        logger.info(f"[{self.role}] {self.user_id} ready on {self.channel}")

    async def end_call(self) -> None:
        """Libere le media, ferme la connexion, se desabonne et marque la salle."""
        was_active = self._subscription is not None
        if self._local_stream is not None:
            self._local_stream.stop()
            self._local_stream = None
        if self._screen_stream is not None:
            self._screen_stream.stop()
            self._screen_stream = None
        if self._pc is not None:
            await self._pc.close()
            self._pc = None

        if self._subscription is not None:
            try:
                await self._send("call-ended")
            except Exception as e:
                logger.warning(f"Failed to announce call end on {self.channel}: {e}")
            await self.bus.unsubscribe(self._subscription)
            self._subscription = None

        self.state = CallState(
            session_id=self.session_id,
            user_id=self.user_id,
            role=self.role,
            connection_state=ConnectionState.CLOSED,
        )
        self._reset_negotiation()

        if was_active:
            await self._mark_room(joined=False)
            if self.session_logger is not None:
                await self.session_logger.log_video_call_end(
                    self.session_id, self.user_id, "ended"
                )

    async def reconnect(self) -> None:
        await self.end_call()
        await self._sleep(self.reconnect_delay)
        await self.start_call()

    async def wait_for_remote(self, timeout: float | None = None) -> bool:
        """Attend le ``ready`` / ``ready-ack`` du pair distant."""
        timeout = timeout if timeout is not None else settings.WEBRTC_READY_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(self._remote_ready.wait(), timeout)
            return True
        except TimeoutError:
            if self.session_logger is not None:
                await self.session_logger.log_connection_issue(
                    self.session_id, self.user_id, "Remote participant did not join"
                )
            return False

    # ------------------------------------------------------------------
    # Controles media
    # ------------------------------------------------------------------

    def toggle_video(self) -> bool:
        tracks = self._local_stream.video_tracks() if self._local_stream else []
        if not tracks:
            return self.state.video_enabled
        enabled = not tracks[0].enabled
        for track in tracks:
            track.enabled = enabled
        self.state = self.state.model_copy(update={"video_enabled": enabled})
        return enabled

    def toggle_audio(self) -> bool:
        tracks = self._local_stream.audio_tracks() if self._local_stream else []
        if not tracks:
            return self.state.audio_enabled
        enabled = not tracks[0].enabled
        for track in tracks:
            track.enabled = enabled
        self.state = self.state.model_copy(update={"audio_enabled": enabled})
        return enabled

    async def start_screen_share(self) -> None:
        if self._pc is None or self._local_stream is None:
            return
        try:
            self._screen_stream = await self.media_provider.get_display_media()
        except Exception as e:
            logger.error(f"Failed to start screen share: {e}")
            raise MediaAccessError("Could not start screen sharing") from e
        screen_tracks = self._screen_stream.video_tracks()
        if screen_tracks:
            await self._pc.replace_track("video", screen_tracks[0])
            self.state = self.state.model_copy(update={"is_screen_sharing": True})

    async def stop_screen_share(self) -> None:
        if self._pc is not None and self._local_stream is not None:
            camera_tracks = self._local_stream.video_tracks()
            if camera_tracks:
                await self._pc.replace_track("video", camera_tracks[0])
        if self._screen_stream is not None:
            self._screen_stream.stop()
            self._screen_stream = None
        self.state = self.state.model_copy(update={"is_screen_sharing": False})

    async def connection_quality(self) -> ConnectionQuality:
        if self._pc is None:
            return ConnectionQuality.UNKNOWN
        lost = received = 0
        for report in await self._pc.get_stats():
            if report.get("type") == "inbound-rtp":
                lost += int(report.get("packetsLost") or 0)
                received += int(report.get("packetsReceived") or 0)
        return classify_packet_loss(lost, received)

    # ------------------------------------------------------------------
    # Messages entrants
    # ------------------------------------------------------------------

    async def _on_message(self, data: dict[str, Any]) -> None:
        try:
            message = SignalMessage.model_validate(
                {"event": data.get("event"), **(data.get("payload") or {})}
            )
        except ValidationError as e:
            logger.warning(f"Invalid signaling message on {self.channel}: {e}")
            return

        if message.from_user == self.user_id:
            return

        if message.event in ("ready", "ready-ack"):
            await self._handle_ready(message)
        elif message.event == "offer" and message.offer is not None:
            await self.handle_offer(message.offer, message.from_user)
        elif message.event == "answer" and message.answer is not None:
            await self.handle_answer(message.answer)
        elif message.event == "ice-candidate" and message.candidate is not None:
            await self.handle_ice_candidate(message.candidate)
        elif message.event == "call-ended":
            await self._handle_remote_left(message.from_user)

    async def _handle_ready(self, message: SignalMessage) -> None:
        self._remote_user = message.from_user
        self._remote_role = message.role
        first_to_observe = message.event == "ready"
        if first_to_observe:
            await self._send("ready-ack")
        self._remote_ready.set()
        if self._is_initiator(first_to_observe):
            await self._send_offer()

    def _is_initiator(self, first_to_observe: bool) -> bool:
        if self._remote_role is not None and self._remote_role != self.role:
            return self.role == "physician"
        return first_to_observe

    async def _send_offer(self) -> None:
        if self._offer_sent or self._answered:
            return
        self._offer_sent = True
        pc = self._ensure_peer_connection()
        offer = await pc.create_offer()
        await pc.set_local_description(offer)
        self.offers_sent += 1
        await self._send("offer", offer=offer)
        logger.info(f"[{self.role}] offer sent on {self.channel}")

    async def handle_offer(self, offer: SessionDescription, from_user: str | None = None) -> None:
        if self._offer_sent and not self._answer_applied:
            # Offres croisees: le plus petit identifiant garde son offre
            if from_user is not None and self.user_id < from_user:
                logger.info(f"[{self.role}] glare on {self.channel}, keeping local offer")
                return
            self._offer_sent = False
        if self._answered:
            logger.debug(f"[{self.role}] duplicate offer ignored on {self.channel}")
            return

        pc = self._ensure_peer_connection()
        self._answered = True
        self._remote_ready.set()
        await pc.set_remote_description(offer)
        await self._flush_candidates()
        answer = await pc.create_answer()
        await pc.set_local_description(answer)
        await self._send("answer", answer=answer)

    async def handle_answer(self, answer: SessionDescription) -> None:
        if self._pc is None or not self._offer_sent or self._answer_applied:
            logger.debug(f"[{self.role}] unexpected or duplicate answer ignored")
            return
        self._answer_applied = True
        await self._pc.set_remote_description(answer)
        await self._flush_candidates()

    async def handle_ice_candidate(self, candidate: dict[str, Any]) -> None:
        if self._pc is None or self._pc.remote_description is None:
            self._pending_candidates.append(candidate)
            return
        await self._pc.add_ice_candidate(candidate)

    async def _flush_candidates(self) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._pc.add_ice_candidate(candidate)

    async def _handle_remote_left(self, from_user: str) -> None:
        logger.info(f"[{self.role}] remote participant {from_user} left {self.channel}")
        if self._pc is not None:
            await self._pc.close()
            self._pc = None
        self._reset_negotiation()
        self._connected_notified = False
        self.state = self.state.model_copy(
            update={
                "connection_state": ConnectionState.DISCONNECTED,
                "is_call_active": False,
                "is_connecting": False,
            }
        )

    # ------------------------------------------------------------------
    # Connexion pair
    # ------------------------------------------------------------------

    def _ensure_peer_connection(self) -> PeerConnection:
        if self._pc is None:
            pc = self.peer_factory(self.stun_servers)
            pc.on_state_change = self._on_state_change
            pc.on_ice_candidate = self._on_local_candidate
            if self._local_stream is not None:
                for track in self._local_stream.tracks:
                    pc.add_track(track, self._local_stream)
            self._pc = pc
        return self._pc

    async def _on_local_candidate(self, candidate: dict[str, Any]) -> None:
        await self._send("ice-candidate", candidate=candidate)

    async def _on_state_change(self, state: ConnectionState) -> None:
        update: dict[str, Any] = {"connection_state": state}
        if state == ConnectionState.CONNECTED:
            update.update(is_call_active=True, is_connecting=False)
        elif state == ConnectionState.CONNECTING:
            update["is_connecting"] = True
        elif state in (
            ConnectionState.FAILED,
            ConnectionState.DISCONNECTED,
            ConnectionState.CLOSED,
        ):
            update.update(is_call_active=False, is_connecting=False)
        self.state = self.state.model_copy(update=update)
        logger.info(f"[{self.role}] connection state: {state.value}")

        if state == ConnectionState.CONNECTED and not self._connected_notified:
            self._connected_notified = True
            if self.session_logger is not None:
                await self.session_logger.log_video_call_start(self.session_id, self.user_id)
            if self.on_connected is not None:
                result = self.on_connected()
                if inspect.isawaitable(result):
                    await result
        elif state in (ConnectionState.FAILED, ConnectionState.DISCONNECTED):
            if self.session_logger is not None:
                await self.session_logger.log_connection_issue(
                    self.session_id, self.user_id, f"Peer connection {state.value}"
                )

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def _send(self, event: str, **fields: Any) -> None:
        message = SignalMessage(event=event, from_user=self.user_id, role=self.role, **fields)
        payload = message.model_dump(mode="json", exclude_none=True, exclude={"event"})
        await self.bus.broadcast(self.channel, event, payload)

    async def _mark_room(self, joined: bool) -> None:
        if self.client is None:
            return
        values: dict[str, Any] = {f"{self.role}_joined": joined}
        if joined:
            values["room_status"] = "active"
        try:
            await self.client.update(
                "consultation_rooms", values, [eq("session_id", self.session_id)]
            )
        except SupabaseError as e:
            logger.error(f"Failed to update room for session {self.session_id}: {e}")
