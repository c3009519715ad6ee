"""
Data channel ownership — open/adopt the channel, classify inbound payloads,
queue outbound payloads until the channel is usable.

Depends on: config, errors, events, models
"""

import json
import sys
from collections import deque
from typing import Any, Callable, Optional

from peerlink.config import DATA_CHANNEL_LABEL, DATA_CHANNEL_MAX_RETRANSMITS
from peerlink.errors import NotConnected
from peerlink.events import EventRegistry
from peerlink.models import (
    InboundMessage,
    LifecycleState,
    OutboundMessage,
    PayloadKind,
    Role,
)

# Session states in which send() may queue instead of failing
QUEUEING_STATES = frozenset({
    LifecycleState.NEGOTIATING,
    LifecycleState.CONNECTED,
    LifecycleState.DISCONNECTED,
})


def classify_payload(data: Any) -> InboundMessage:
    """Tag an inbound payload. Text is never dropped: JSON or plain text."""
    if isinstance(data, str):
        try:
            return InboundMessage(PayloadKind.STRUCTURED, json.loads(data))
        except ValueError:
            return InboundMessage(PayloadKind.PLAIN_TEXT, data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return InboundMessage(PayloadKind.BINARY_CHUNK, bytes(data))
    return InboundMessage(PayloadKind.PLAIN_TEXT, data)


def _describe(payload) -> str:
    if isinstance(payload, str):
        return payload[:50]
    return f"{len(payload)} bytes"


class ChannelManager:
    """Owns the reliable ordered channel of one session."""

    def __init__(self, events: EventRegistry, *,
                 state_getter: Callable[[], LifecycleState],
                 on_unexpected_close: Callable[[], None],
                 debug: bool = False):
        self.events = events
        self._state = state_getter
        self._on_unexpected_close = on_unexpected_close
        self.debug = debug
        self.channel = None
        self.queue: deque[OutboundMessage] = deque()
        self._closing = False

    # -- Setup --

    def open(self, pc, role: Role) -> None:
        """Initiator creates the channel now; responder adopts the incoming one."""
        if Role(role) is Role.INITIATOR:
            channel = pc.createDataChannel(
                DATA_CHANNEL_LABEL,
                ordered=True,
                maxRetransmits=DATA_CHANNEL_MAX_RETRANSMITS,
            )
            self.attach(channel)
        else:
            pc.on("datachannel", self.attach)

    def attach(self, channel) -> None:
        self.channel = channel
        channel.on("open", self._on_open)
        channel.on("message", self._on_message)
        channel.on("close", lambda: self._on_close(channel))
        channel.on("error", self._on_error)
        if channel.readyState == "open":
            self._on_open()

    @property
    def ready_state(self) -> str:
        if self.channel is None:
            return "none"
        return self.channel.readyState

    @property
    def is_open(self) -> bool:
        return self.ready_state == "open"

    # -- Channel events --

    def _on_open(self) -> None:
        if self.debug:
            print("[PeerLink] Data channel opened", file=sys.stderr)
        self.events.emit("datachannelopen")
        if self._state() is LifecycleState.CONNECTED:
            self.flush()

    def _on_message(self, data: Any) -> None:
        inbound = classify_payload(data)
        self.events.emit("message", inbound)
        self.events.emit(inbound.kind.value, inbound.payload)

    def _on_close(self, channel) -> None:
        if channel is not self.channel or self._closing:
            return
        if self.debug:
            print("[PeerLink] Data channel closed", file=sys.stderr)
        self.events.emit("datachannelclose")
        if self._state() is LifecycleState.CONNECTED:
            self._on_unexpected_close()

    def _on_error(self, error: Any) -> None:
        print(f"[PeerLink] Data channel error: {error}", file=sys.stderr)
        self.events.emit("error", error)

    # -- Outbound --

    def send(self, payload) -> None:
        """Transmit now, queue for later, or raise NotConnected."""
        if isinstance(payload, (bytearray, memoryview)):
            payload = bytes(payload)
        if not isinstance(payload, (str, bytes)):
            raise TypeError(f"Payload must be str or bytes, not {type(payload).__name__}")
        state = self._state()
        if state is LifecycleState.CONNECTED and self.is_open:
            if not self.queue:
                self._transmit(payload)
                return
            # Earlier flush stopped part way; queue behind it and drain again
            self.queue.append(OutboundMessage(payload))
            self.flush()
            return
        if state in QUEUEING_STATES:
            self.queue.append(OutboundMessage(payload))
            if self.debug:
                print("[PeerLink] Message queued (channel not ready)", file=sys.stderr)
            return
        print("[PeerLink] Cannot send: Not connected", file=sys.stderr)
        raise NotConnected(f"Cannot send while session is {state.value}")

    def flush(self) -> int:
        """Drain the queue in order while the channel stays open. Returns items sent.

        A failed transmit stops the drain and is reported through the `error`
        event; the failed item and everything behind it stay queued for the
        next flush. Never raises, since it runs inside transport callbacks.
        """
        sent = 0
        while self.queue and self.is_open:
            item = self.queue[0]
            try:
                self._transmit(item.payload)
            except Exception as e:
                self.events.emit("error", e)
                break
            self.queue.popleft()
            sent += 1
        if sent and self.debug:
            print(f"[PeerLink] Flushed {sent} queued message(s), {len(self.queue)} left", file=sys.stderr)
        return sent

    def _transmit(self, payload) -> None:
        try:
            self.channel.send(payload)
        except Exception as e:
            print(f"[PeerLink] Send failed: {e}", file=sys.stderr)
            raise
        if self.debug:
            print(f"[PeerLink] Data sent: {_describe(payload)}", file=sys.stderr)

    # -- Teardown --

    def close(self) -> None:
        """Close the channel without reporting it as a failure, and drop the queue."""
        self._closing = True
        channel, self.channel = self.channel, None
        if channel is not None:
            try:
                channel.close()
            except Exception as e:
                print(f"[PeerLink] Data channel close failed: {e}", file=sys.stderr)
        self.queue.clear()
