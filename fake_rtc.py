"""
In-memory stand-in for aiortc's RTCPeerConnection, for the PeerLink test scripts.

Mirrors the slice of the aiortc API the session uses (createOffer/createAnswer,
set*Description, createDataChannel, addTrack, getStats, pyee events). Two fake
peers connect once the initiator applies an answer created by the other one,
through the FakeNetwork they share. Nothing touches real sockets.
"""

import asyncio
import itertools
from types import SimpleNamespace
from typing import Optional

import httpx
from aiortc import RTCSessionDescription
from httpx import ASGITransport
from pyee.asyncio import AsyncIOEventEmitter

from peerlink.signaling.relay import SignalingRelay, create_relay_app

RELAY_URL = "http://relay"

HOST_CANDIDATE = "a=candidate:1 1 udp 2130706431 192.168.1.10 50000 typ host"


def relay_client(relay: Optional[SignalingRelay] = None) -> tuple[SignalingRelay, httpx.AsyncClient]:
    """A fresh in-process relay and an httpx client wired to it."""
    relay = relay or SignalingRelay()
    app = create_relay_app(relay)
    client = httpx.AsyncClient(transport=ASGITransport(app=app), base_url=RELAY_URL)
    return relay, client


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate() until it is truthy or timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


class FakeTrack:
    def __init__(self, kind: str, name: str = ""):
        self.kind = kind
        self.name = name or kind


class FakeSender:
    def __init__(self, track):
        self.track = track

    def replaceTrack(self, track) -> None:
        self.track = track


class FakeDataChannel(AsyncIOEventEmitter):

    def __init__(self, label: str, ordered: bool = True, maxRetransmits: Optional[int] = None):
        super().__init__()
        self.label = label
        self.ordered = ordered
        self.maxRetransmits = maxRetransmits
        self.readyState = "connecting"
        self.peer: Optional["FakeDataChannel"] = None
        self.sent: list = []
        self.bytes_sent = 0
        self.bytes_received = 0

    def _open(self) -> None:
        if self.readyState == "connecting":
            self.readyState = "open"
            self.emit("open")

    def send(self, data) -> None:
        if self.readyState != "open":
            raise RuntimeError(f"Data channel is {self.readyState}")
        self.sent.append(data)
        self.bytes_sent += len(data)
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer._receive, data)

    def _receive(self, data) -> None:
        if self.readyState == "open":
            self.bytes_received += len(data)
            self.emit("message", data)

    def close(self) -> None:
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")
        peer, self.peer = self.peer, None
        if peer is not None:
            peer.peer = None
            asyncio.get_running_loop().call_soon(peer.close)


class FakePeerConnection(AsyncIOEventEmitter):
    """
    gather_delay: seconds until ICE gathering completes after
    setLocalDescription; 0 completes inline, None never completes.
    """

    def __init__(self, network: Optional["FakeNetwork"] = None, *,
                 candidates: tuple = (HOST_CANDIDATE,),
                 gather_delay: Optional[float] = 0):
        super().__init__()
        self.network = network or FakeNetwork()
        self.candidates = list(candidates)
        self.gather_delay = gather_delay
        self.connectionState = "new"
        self.iceConnectionState = "new"
        self.iceGatheringState = "new"
        self.signalingState = "stable"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.channels: list[FakeDataChannel] = []
        self.senders: list[FakeSender] = []
        self.transceivers: list[tuple[str, str]] = []
        self.remote: Optional["FakePeerConnection"] = None
        self.close_calls = 0

    # -- Descriptions --

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=self.network.next_sdp("offer"), type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        if self.remoteDescription is None or self.remoteDescription.type != "offer":
            raise RuntimeError("Cannot create answer without a remote offer")
        return RTCSessionDescription(sdp=self.network.next_sdp("answer"), type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description
        self.network.by_sdp[description.sdp] = self
        self.signalingState = "have-local-offer" if description.type == "offer" else "stable"
        self._set_gathering("gathering")
        if self.gather_delay == 0:
            self._finish_gathering()
        elif self.gather_delay is not None:
            asyncio.get_running_loop().call_later(self.gather_delay, self._finish_gathering)

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        if not description.sdp or "malformed" in description.sdp:
            raise ValueError("Invalid SDP")
        if description.type == "answer" and self.signalingState != "have-local-offer":
            raise RuntimeError(f"Cannot apply answer in signaling state {self.signalingState}")
        self.remoteDescription = description
        if description.type == "offer":
            self.signalingState = "have-remote-offer"
        else:
            self.signalingState = "stable"
            peer = self.network.by_sdp.get(description.sdp)
            if peer is not None:
                self.network.link(self, peer)

    def _set_gathering(self, state: str) -> None:
        self.iceGatheringState = state
        self.emit("icegatheringstatechange")

    def _finish_gathering(self) -> None:
        if self.iceGatheringState != "gathering":
            return
        desc = self.localDescription
        if desc is not None and self.candidates:
            sdp = desc.sdp + "\r\n" + "\r\n".join(self.candidates)
            self.localDescription = RTCSessionDescription(sdp=sdp, type=desc.type)
            self.network.by_sdp[sdp] = self
        self._set_gathering("complete")

    # -- Media and data --

    def createDataChannel(self, label: str, ordered: bool = True,
                          maxRetransmits: Optional[int] = None) -> FakeDataChannel:
        channel = FakeDataChannel(label, ordered=ordered, maxRetransmits=maxRetransmits)
        self.channels.append(channel)
        return channel

    def addTrack(self, track) -> FakeSender:
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def addTransceiver(self, kind: str, direction: str = "sendrecv"):
        self.transceivers.append((kind, direction))

    def getSenders(self) -> list[FakeSender]:
        return list(self.senders)

    async def getStats(self) -> dict:
        sent = sum(c.bytes_sent for c in self.channels)
        received = sum(c.bytes_received for c in self.channels)
        return {
            "transport_1": SimpleNamespace(type="transport", bytesSent=sent, bytesReceived=received),
            "outbound_1": SimpleNamespace(type="outbound-rtp", bytesSent=100),
            "inbound_1": SimpleNamespace(type="inbound-rtp", bytesReceived=40),
        }

    # -- State forcing --

    def set_connection_state(self, state: str) -> None:
        self.connectionState = state
        self.iceConnectionState = state
        self.emit("connectionstatechange")

    async def close(self) -> None:
        self.close_calls += 1
        if self.connectionState == "closed":
            return
        for channel in self.channels:
            channel.close()
        self.signalingState = "closed"
        self.set_connection_state("closed")


class FakeNetwork:
    """Links fake peers by the SDP they exchanged."""

    def __init__(self, **pc_options):
        self.pc_options = pc_options
        self.peers: list[FakePeerConnection] = []
        self.by_sdp: dict[str, FakePeerConnection] = {}
        self._counters = {"offer": itertools.count(1), "answer": itertools.count(1)}

    def next_sdp(self, kind: str) -> str:
        return f"{kind}-{next(self._counters[kind])}"

    def factory(self, config=None) -> FakePeerConnection:
        """Usable as SessionConfig.peer_connection_factory."""
        pc = FakePeerConnection(self, **self.pc_options)
        self.peers.append(pc)
        return pc

    def link(self, initiator: FakePeerConnection, responder: FakePeerConnection) -> None:
        initiator.remote = responder
        responder.remote = initiator
        loop = asyncio.get_running_loop()
        loop.call_soon(self._connect, initiator, responder)

    def _connect(self, initiator: FakePeerConnection, responder: FakePeerConnection) -> None:
        for pc in (initiator, responder):
            if pc.connectionState != "closed":
                pc.set_connection_state("connected")
        for a, b in ((initiator, responder), (responder, initiator)):
            for sender in a.senders:
                b.emit("track", sender.track)
        for channel in initiator.channels:
            remote = FakeDataChannel(channel.label, ordered=channel.ordered,
                                     maxRetransmits=channel.maxRetransmits)
            channel.peer = remote
            remote.peer = channel
            responder.channels.append(remote)
            responder.emit("datachannel", remote)
            channel._open()
            remote._open()
