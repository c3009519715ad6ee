"""
Session — one peer connection, one room, one lifecycle.

Composes role negotiation, the handshake, and the data channel, and turns
peer-connection notifications into lifecycle events:

    connect                 connection reached "connected" (also after recovery)
    disconnect              DisconnectEvent; ICE failure, channel loss, or a transient blip
    close                   session closed (fires once)
    connectionstatechange   ConnectionStateChange
    statechange             (old LifecycleState, new LifecycleState)
    negotiationstate        NegotiationState
    datachannelopen / datachannelclose
    message / json / data / chunk
    track                   remote media track
    error                   PeerLinkError or channel error detail

Depends on: config, channel, diagnostics, errors, events, models, negotiation, signaling
"""

import asyncio
import json
import secrets
import sys
from typing import Callable, Iterable, Optional, Union

import httpx
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

from peerlink.channel import ChannelManager
from peerlink.config import ROOM_ID_BYTES, ROOM_ID_MAX_LENGTH, SessionConfig
from peerlink.diagnostics import collect_stats, ice_candidates
from peerlink.errors import (
    AlreadyConnected,
    ChannelClosedUnexpectedly,
    ConnectionFailure,
    IceNegotiationFailed,
    NegotiationTimeout,
    NotConnected,
    PeerLinkError,
    SessionClosed,
)
from peerlink.events import EventRegistry, Subscription
from peerlink.models import (
    LIFECYCLE_TRANSITIONS,
    ConnectionStateChange,
    DisconnectEvent,
    LifecycleState,
    NegotiationState,
    Role,
)
from peerlink.negotiation import (
    CandidateGatherer,
    RoleNegotiator,
    SessionNegotiationStateMachine,
)
from peerlink.signaling.transport import SignalingTransport


def generate_room_id() -> str:
    """12 random hex characters."""
    return secrets.token_hex(ROOM_ID_BYTES)


def normalize_room_id(room_id: str) -> str:
    if not isinstance(room_id, str) or not room_id.strip():
        raise ValueError("room_id must be a non-empty string")
    return room_id.strip()[:ROOM_ID_MAX_LENGTH]


def _coerce_role(role: Union[Role, str, bool, None]) -> Optional[Role]:
    """Accept a Role, its value, or the is-offerer boolean."""
    if role is None:
        return None
    if isinstance(role, bool):
        return Role.INITIATOR if role else Role.RESPONDER
    return Role(role)


def default_peer_connection(config: SessionConfig) -> RTCPeerConnection:
    """Build an aiortc RTCPeerConnection from the session's ICE servers."""
    rtc_config = RTCConfiguration(
        iceServers=[RTCIceServer(**s) for s in config.ice_servers]
    )
    return RTCPeerConnection(configuration=rtc_config)


class Session:
    """A peer-to-peer session negotiated through the signaling relay."""

    def __init__(self, config: Optional[SessionConfig] = None, *,
                 signaling: Optional[SignalingTransport] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.config = config or SessionConfig()
        self.events = EventRegistry()
        self.room_id: Optional[str] = None
        self.role: Optional[Role] = None
        self.state = LifecycleState.IDLE
        self.pc = None
        self.negotiation: Optional[SessionNegotiationStateMachine] = None
        self.local_tracks: list = []
        self.remote_tracks: list = []
        self.last_failure: Optional[PeerLinkError] = None

        self._owns_signaling = signaling is None
        self.signaling = signaling or SignalingTransport.from_config(self.config, client=http_client)
        self.channel = ChannelManager(
            self.events,
            state_getter=lambda: self.state,
            on_unexpected_close=self._on_channel_lost,
            debug=self.config.debug,
        )
        self._data_enabled = True
        self._handshake_task: Optional[asyncio.Task] = None
        self._closing = False

    def _log(self, msg: str) -> None:
        if self.config.debug:
            print(f"[PeerLink] {msg}", file=sys.stderr)

    # -- Events --

    def on(self, event: str, fn: Callable) -> Subscription:
        return self.events.on(event, fn)

    def once(self, event: str, fn: Callable) -> Subscription:
        return self.events.once(event, fn)

    @property
    def is_connected(self) -> bool:
        return self.state is LifecycleState.CONNECTED

    @property
    def queued(self) -> list:
        """Payloads still waiting for the channel, oldest first."""
        return [m.payload for m in self.channel.queue]

    def _transition(self, new: LifecycleState) -> bool:
        old = self.state
        if new is old or new not in LIFECYCLE_TRANSITIONS[old]:
            return False
        self.state = new
        self._log(f"Lifecycle {old.value} -> {new.value}")
        self.events.emit("statechange", old, new)
        return True

    # -- Setup --

    async def init(self, room_id: str, role: Union[Role, str, bool, None] = None, *,
                   tracks: Iterable = (), enable_data: bool = True,
                   receive_media: bool = False) -> None:
        """Negotiate a session in room_id. Returns once the handshake is complete.

        Raises the handshake's SignalingError/HandshakeFailed, NegotiationTimeout
        when the overall deadline passes, or SessionClosed if close() interrupts it.
        """
        if self.state is LifecycleState.CLOSED:
            raise SessionClosed("Session is closed; create a new one")
        if self.state is not LifecycleState.IDLE or self.pc is not None:
            raise AlreadyConnected("Already connected. Call close() first.")

        self.room_id = normalize_room_id(room_id)
        self._data_enabled = enable_data
        self._transition(LifecycleState.NEGOTIATING)
        self._log(f"Initializing in room: {self.room_id}")

        task = asyncio.ensure_future(
            self._negotiate(_coerce_role(role), list(tracks), enable_data, receive_media)
        )
        self._handshake_task = task
        timeout = self.config.negotiation_timeout
        try:
            if timeout:
                await asyncio.wait_for(task, timeout=timeout)
            else:
                await task
        except asyncio.CancelledError:
            if self._closing:
                raise SessionClosed("Session closed during negotiation") from None
            self._transition(LifecycleState.FAILED)
            await self._teardown()
            raise
        except asyncio.TimeoutError:
            error = NegotiationTimeout(f"Negotiation did not finish within {timeout:g}s")
            await self._fail(error)
            raise error from None
        except Exception as e:
            await self._fail(e)
            raise
        finally:
            self._handshake_task = None

        self._log("Signaling completed successfully")

    async def _negotiate(self, explicit_role: Optional[Role], tracks: list,
                         enable_data: bool, receive_media: bool) -> None:
        negotiator = RoleNegotiator(self.signaling, self.config.probe_timeout, debug=self.config.debug)
        self.role = await negotiator.decide_role(self.room_id, explicit=explicit_role)

        factory = self.config.peer_connection_factory or default_peer_connection
        self.pc = factory(self.config)
        self._setup_connection_handlers(self.pc)

        for track in tracks:
            self.pc.addTrack(track)
            self.local_tracks.append(track)
            self._log(f"Added local track: {track.kind}")
        if receive_media and self.role is Role.INITIATOR:
            sending = {t.kind for t in tracks}
            for kind in ("audio", "video"):
                if kind not in sending:
                    self.pc.addTransceiver(kind, direction="recvonly")

        if enable_data:
            self.channel.open(self.pc, self.role)

        self.negotiation = SessionNegotiationStateMachine(
            self.pc, self.role, self.room_id, self.signaling,
            CandidateGatherer(debug=self.config.debug),
            gather_timeout=self.config.ice_gathering_timeout,
            wait_timeout=self.config.round_trip_timeout,
            on_state=lambda s: self.events.emit("negotiationstate", s),
            debug=self.config.debug,
        )
        await self.negotiation.run()

    def _setup_connection_handlers(self, pc) -> None:
        pc.on("connectionstatechange", self._on_connection_state_change)
        pc.on("track", self._on_track)

    # -- Peer connection events --

    def _on_connection_state_change(self) -> None:
        pc = self.pc
        if pc is None:
            return
        state = pc.connectionState
        self._log(f"Connection state changed: {state}")
        self.events.emit("connectionstatechange", ConnectionStateChange(
            state=state,
            ice_state=getattr(pc, "iceConnectionState", None),
            signaling_state=getattr(pc, "signalingState", None),
        ))

        if state == "connected":
            if self._transition(LifecycleState.CONNECTED):
                self.events.emit("connect")
                self.channel.flush()
        elif state == "failed":
            self._handle_connection_failure(IceNegotiationFailed())
        elif state == "disconnected":
            if self._transition(LifecycleState.DISCONNECTED):
                self.events.emit("disconnect", DisconnectEvent(
                    reason="Connection interrupted", transient=True,
                ))
        elif state == "closed":
            self._log("Peer connection closed")

    def _on_track(self, track) -> None:
        self.remote_tracks.append(track)
        self._log(f"Remote track received: {track.kind}")
        self.events.emit("track", track)

    def _on_channel_lost(self) -> None:
        self._handle_connection_failure(ChannelClosedUnexpectedly())

    def _handle_connection_failure(self, error: ConnectionFailure) -> None:
        """ICE failure ends the session; channel loss only disconnects it."""
        if isinstance(error, IceNegotiationFailed):
            changed = self._transition(LifecycleState.FAILED)
        else:
            changed = self._transition(LifecycleState.DISCONNECTED)
        print(f"[PeerLink] Connection failure: {error.reason}", file=sys.stderr)
        if changed:
            self.last_failure = error
            self.events.emit("disconnect", DisconnectEvent(reason=error.reason, error=error))

    # -- Outbound --

    def send(self, data) -> None:
        """Send str or bytes; queued while the channel is not yet usable."""
        if not self._data_enabled:
            raise NotConnected("Data channel disabled for this session")
        self.channel.send(data)

    def send_json(self, obj) -> None:
        if not isinstance(obj, (dict, list)):
            raise TypeError("send_json requires an object parameter")
        self.send(json.dumps(obj))

    def send_chunk(self, data) -> None:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError("send_chunk requires a bytes-like parameter")
        self.send(bytes(data))

    def replace_track(self, kind: str, track) -> None:
        """Swap the outgoing track of one kind without renegotiating."""
        if self.pc is None:
            raise NotConnected("Cannot replace track: no peer connection")
        for sender in self.pc.getSenders():
            if sender.track is not None and sender.track.kind == kind:
                sender.replaceTrack(track)
                self.local_tracks = [t for t in self.local_tracks if t.kind != kind] + [track]
                self._log(f"Replaced {kind} track")
                return
        raise ValueError(f"No outgoing {kind} track to replace")

    # -- Diagnostics --

    async def get_stats(self) -> Optional[dict]:
        return await collect_stats(self.pc, self.channel.ready_state)

    def get_ice_candidates(self) -> dict:
        return ice_candidates(self.pc)

    # -- Teardown --

    async def _fail(self, error: Exception) -> None:
        print(f"[PeerLink] Signaling failed: {error}", file=sys.stderr)
        if isinstance(error, PeerLinkError):
            self.last_failure = error
        self._transition(LifecycleState.FAILED)
        await self._teardown()
        self.events.emit("error", error)

    async def _teardown(self) -> None:
        """Close channel and peer connection. Safe to call any number of times."""
        self.channel.close()
        pc, self.pc = self.pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception as e:
                print(f"[PeerLink] Peer connection close failed: {e}", file=sys.stderr)

    async def close(self) -> None:
        """Tear everything down and move to the terminal closed state. Idempotent."""
        if self.state is LifecycleState.CLOSED:
            return
        self._log("Closing connection...")
        self._closing = True
        task = self._handshake_task
        if task is not None and not task.done():
            task.cancel()
        await self._teardown()
        if not self._transition(LifecycleState.CLOSED):
            return  # another close() finished first
        self.local_tracks = []
        self.remote_tracks = []
        if self._owns_signaling:
            await self.signaling.aclose()
        self.events.emit("close")
        self._log("Connection closed")

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


# =============================================================================
# Room helpers
# =============================================================================

async def _start(session: Session, room_id: str, role: Role, init_kwargs: dict) -> None:
    """init() for a session the caller has no handle on yet; closed again if it fails."""
    try:
        await session.init(room_id, role=role, **init_kwargs)
    except BaseException:
        await session.close()
        raise


async def create_room(config: Optional[SessionConfig] = None, room_id: Optional[str] = None,
                      **init_kwargs) -> tuple[Session, str]:
    """Start a session as initiator in a fresh (or given) room.

    Returns after the answer arrived, so the room id must reach the other
    side beforehand; pass room_id to choose it up front.
    """
    room_id = room_id or generate_room_id()
    session = Session(config, http_client=init_kwargs.pop("http_client", None))
    await _start(session, room_id, Role.INITIATOR, init_kwargs)
    return session, room_id


async def join_room(room_id: str, config: Optional[SessionConfig] = None, **init_kwargs) -> Session:
    """Start a session as responder in an existing room."""
    session = Session(config, http_client=init_kwargs.pop("http_client", None))
    await _start(session, room_id, Role.RESPONDER, init_kwargs)
    return session
