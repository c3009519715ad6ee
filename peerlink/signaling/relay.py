"""
Reference signaling relay — HTTP long-poll mailbox per room.

POST /signal/send stores or hands over one envelope; GET /signal/wait parks
until an envelope from the other peer exists. Rooms that sit idle are
garbage-collected and their parked waiters get 410.

Depends on: config, schemas
"""

import asyncio
import contextlib
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from peerlink.config import (
    RELAY_MAX_ROOMS,
    RELAY_ROOM_TTL,
    RELAY_SWEEP_INTERVAL,
    RELAY_WAIT_TIMEOUT,
    SIGNAL_HEALTH_PATH,
    SIGNAL_SEND_PATH,
    SIGNAL_WAIT_PATH,
)
from peerlink.schemas import SignalSendInput, SignalWaitInput


def _is_other(sender: Optional[str], peer_id: Optional[str]) -> bool:
    """Anonymous senders or receivers match anyone."""
    return sender is None or peer_id is None or sender != peer_id


def _conflicts(a: Optional[str], b: Optional[str]) -> bool:
    """Two known, different peers."""
    return a is not None and b is not None and a != b


# =============================================================================
# Room store
# =============================================================================

@dataclass
class Waiter:
    peer_id: Optional[str]
    future: asyncio.Future
    peek: bool = False


@dataclass
class Room:
    pending: list[tuple[Optional[str], Any]] = field(default_factory=list)
    waiters: list[Waiter] = field(default_factory=list)
    last_accessed: float = 0.0


@dataclass
class Outcome:
    status: int
    message: Any = None
    detail: str = ""


class SignalingRelay:
    """In-memory rooms shared by every request of one relay process."""

    def __init__(self, *, max_rooms: int = RELAY_MAX_ROOMS,
                 wait_timeout: float = RELAY_WAIT_TIMEOUT,
                 room_ttl: float = RELAY_ROOM_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.max_rooms = max_rooms
        self.wait_timeout = wait_timeout
        self.room_ttl = room_ttl
        self._clock = clock
        self.rooms: dict[str, Room] = {}

    def _room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            if len(self.rooms) >= self.max_rooms:
                self._evict_oldest()
            room = self.rooms[room_id] = Room()
        room.last_accessed = self._clock()
        return room

    def _drop_if_empty(self, room_id: str) -> None:
        room = self.rooms.get(room_id)
        if room is not None and not room.pending and not room.waiters:
            del self.rooms[room_id]

    def _expire(self, room_id: str) -> None:
        room = self.rooms.pop(room_id, None)
        if room is None:
            return
        for w in room.waiters:
            if not w.future.done():
                w.future.set_result(Outcome(410, detail="Room expired"))
        room.waiters.clear()

    def _evict_oldest(self) -> None:
        oldest = min(self.rooms, key=lambda r: self.rooms[r].last_accessed, default=None)
        if oldest is not None:
            self._expire(oldest)
            print(f"[PeerLink] Cleaned oldest room due to capacity: {oldest}", file=sys.stderr)

    def deliver(self, room_id: str, peer_id: Optional[str], message: Any) -> Outcome:
        """Hand message to a parked waiter from the other peer, or store it."""
        room = self._room(room_id)

        if any(_conflicts(sender, peer_id) for sender, _ in room.pending):
            return Outcome(409, detail="Room already has a pending offer")

        for w in list(room.waiters):
            if w.peek and _is_other(w.peer_id, peer_id) and not w.future.done():
                w.future.set_result(Outcome(200, message=message))
                room.waiters.remove(w)

        for w in list(room.waiters):
            if not w.peek and _is_other(w.peer_id, peer_id) and not w.future.done():
                w.future.set_result(Outcome(200, message=message))
                room.waiters.remove(w)
                self._drop_if_empty(room_id)
                return Outcome(200, detail="Message delivered")

        # A newer message from the same sender replaces the older one
        room.pending = [(peer_id, message)]
        return Outcome(200, detail="Message stored")

    async def wait(self, room_id: str, peer_id: Optional[str],
                   timeout: Optional[float] = None, peek: bool = False) -> Outcome:
        """Return the other peer's message, parking up to timeout seconds."""
        room = self._room(room_id)

        for i, (sender, message) in enumerate(room.pending):
            if _is_other(sender, peer_id):
                if not peek:
                    del room.pending[i]
                    self._drop_if_empty(room_id)
                return Outcome(200, message=message)

        if not peek and any(
            not w.peek and not w.future.done() and _conflicts(w.peer_id, peer_id)
            for w in room.waiters
        ):
            return Outcome(409, detail="Another peer is already waiting in this room")

        limit = self.wait_timeout if timeout is None else min(timeout, self.wait_timeout)
        waiter = Waiter(peer_id=peer_id, future=asyncio.get_running_loop().create_future(), peek=peek)
        room.waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter.future, timeout=limit)
        except asyncio.TimeoutError:
            return Outcome(408, detail="Signaling timeout")
        finally:
            current = self.rooms.get(room_id)
            if current is not None and waiter in current.waiters:
                current.waiters.remove(waiter)
                self._drop_if_empty(room_id)

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Expire rooms idle for longer than room_ttl. Returns their ids."""
        now = self._clock() if now is None else now
        expired = [rid for rid, room in self.rooms.items() if now - room.last_accessed > self.room_ttl]
        for rid in expired:
            self._expire(rid)
            print(f"[PeerLink] Cleaned expired room: {rid}", file=sys.stderr)
        return expired


# =============================================================================
# HTTP handlers
# =============================================================================

def _outcome_response(outcome: Outcome) -> Response:
    if outcome.status == 200 and outcome.detail == "":
        return JSONResponse({"message": outcome.message})
    return PlainTextResponse(outcome.detail, status_code=outcome.status)


async def handle_signal_send(request: Request) -> Response:
    """Deliver or store one envelope.

    POST /signal/send
    Body: {roomId, message, peerId?}
    """
    relay: SignalingRelay = request.app.state.relay
    try:
        data = await request.json()
    except Exception:
        return PlainTextResponse("Invalid JSON payload", status_code=400)
    if not isinstance(data, dict):
        return PlainTextResponse("Invalid JSON payload", status_code=400)

    try:
        body = SignalSendInput.model_validate(data)
    except ValidationError:
        return PlainTextResponse("Invalid roomId or message", status_code=400)

    return _outcome_response(relay.deliver(body.room_id, body.peer_id, body.message))


async def handle_signal_wait(request: Request) -> Response:
    """Long-poll for the counterpart's envelope.

    GET /signal/wait?roomId=<id>[&peerId=<id>&timeout=<s>&peek=1]
    Returns: 200 {message} | 408 | 409 | 410, or 499 if the client hung up first
    """
    relay: SignalingRelay = request.app.state.relay
    try:
        query = SignalWaitInput.model_validate(dict(request.query_params))
    except ValidationError:
        return PlainTextResponse("Missing roomId parameter", status_code=400)

    wait = asyncio.ensure_future(relay.wait(query.room_id, query.peer_id, query.timeout, query.peek))
    watch = asyncio.ensure_future(_watch_disconnect(request))
    try:
        done, _ = await asyncio.wait({wait, watch}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watch.cancel()
        await asyncio.gather(watch, return_exceptions=True)
        if not wait.done():
            wait.cancel()
            await asyncio.gather(wait, return_exceptions=True)

    if wait in done:
        return _outcome_response(wait.result())
    # Waiter already removed; nobody is left to read this
    print(f"[PeerLink] Waiter left room {query.room_id} before delivery", file=sys.stderr)
    return PlainTextResponse("Client disconnected", status_code=499)


async def _watch_disconnect(request: Request) -> None:
    """Return once the client hangs up on a parked long-poll."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def handle_health(request: Request) -> JSONResponse:
    relay: SignalingRelay = request.app.state.relay
    return JSONResponse({"status": "ok", "rooms": len(relay.rooms)})


# =============================================================================
# App factory
# =============================================================================

async def sweep_loop(relay: SignalingRelay, interval: float) -> None:
    """Periodically garbage-collect idle rooms."""
    while True:
        await asyncio.sleep(interval)
        try:
            relay.sweep()
        except Exception as e:
            print(f"[PeerLink] Room sweep failed: {e}", file=sys.stderr)


def create_relay_app(relay: Optional[SignalingRelay] = None,
                     sweep_interval: float = RELAY_SWEEP_INTERVAL) -> Starlette:
    """Build the relay ASGI app. The sweeper only runs under a lifespan-aware server."""
    relay = relay or SignalingRelay()

    @contextlib.asynccontextmanager
    async def lifespan(app):
        task = asyncio.create_task(sweep_loop(relay, sweep_interval))
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = Starlette(
        routes=[
            Route(SIGNAL_SEND_PATH, handle_signal_send, methods=["POST"]),
            Route(SIGNAL_WAIT_PATH, handle_signal_wait, methods=["GET"]),
            Route(SIGNAL_HEALTH_PATH, handle_health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.relay = relay
    return app
