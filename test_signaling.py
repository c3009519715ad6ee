#!/usr/bin/env python3
"""
PeerLink signaling tests — relay mailbox semantics and the HTTP client.

The relay runs in-process through httpx.ASGITransport, so no ports are bound.
Standalone async script; the test_* coroutines also run under pytest.

Usage:
    python3 test_signaling.py
"""

import asyncio
import sys
import time

import httpx

from fake_rtc import RELAY_URL, relay_client, wait_until
from peerlink.errors import (
    RelayRejected,
    RelayUnreachable,
    RoomConflict,
    RoomExpired,
    SignalingTimeout,
)
from peerlink.signaling import SignalingRelay, SignalingTransport, create_relay_app, strip_base_url

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

GREEN = "\033[92m"
RED = "\033[91m"
BOLD = "\033[1m"
RESET = "\033[0m"

results: list[tuple[str, bool, str]] = []
_standalone = False


def report(name: str, passed: bool, detail: str = "") -> None:
    mark = f"{GREEN}✓{RESET}" if passed else f"{RED}✗{RESET}"
    print(f"  {mark} {name}")
    if detail and not passed:
        print(f"      {detail}")
    results.append((name, passed, detail))
    if not passed and not _standalone:
        raise AssertionError(f"{name}: {detail}")


def peer(client: httpx.AsyncClient, peer_id: str, **kwargs) -> SignalingTransport:
    return SignalingTransport(RELAY_URL, peer_id=peer_id, client=client, **kwargs)


def parked(relay: SignalingRelay, room_id: str, count: int = 1):
    return lambda: (relay.rooms.get(room_id) is not None
                    and len(relay.rooms[room_id].waiters) >= count)


# ---------------------------------------------------------------------------
# Mailbox
# ---------------------------------------------------------------------------

async def test_send_then_wait() -> None:
    relay, client = relay_client()
    async with client:
        alice, bob = peer(client, "alice"), peer(client, "bob")
        offer = {"type": "offer", "sdp": "offer-1"}
        await alice.send_envelope("abc123", offer)
        report("stored message keeps the room alive", "abc123" in relay.rooms)

        received = await bob.await_envelope("abc123", timeout=1)
        report("waiter receives stored message", received == offer, str(received))
        report("delivered message is consumed", "abc123" not in relay.rooms)


async def test_wait_then_send() -> None:
    relay, client = relay_client()
    async with client:
        alice, bob = peer(client, "alice"), peer(client, "bob")
        task = asyncio.ensure_future(bob.await_envelope("room-1", timeout=2))
        report("waiter parks", await wait_until(parked(relay, "room-1")))

        await alice.send_envelope("room-1", {"type": "offer", "sdp": "offer-1"})
        received = await asyncio.wait_for(task, 2)
        report("parked waiter gets the message", received == {"type": "offer", "sdp": "offer-1"})
        report("handed-over message is not stored", "room-1" not in relay.rooms)


async def test_own_message_not_echoed() -> None:
    relay, client = relay_client()
    async with client:
        alice = peer(client, "alice")
        await alice.send_envelope("room-2", {"type": "offer", "sdp": "offer-1"})
        try:
            await alice.await_envelope("room-2", timeout=0.2)
            report("sender does not receive its own offer", False, "message was echoed")
        except SignalingTimeout as e:
            report("sender does not receive its own offer", True)
            report("relay reported the timeout (408)", e.relay_reported is True)
        report("offer still waiting for the other peer", len(relay.rooms["room-2"].pending) == 1)


async def test_probe_does_not_consume() -> None:
    relay, client = relay_client()
    async with client:
        alice, bob = peer(client, "alice"), peer(client, "bob")
        report("empty room probes as unoccupied", await bob.probe("room-3", 0.1) is False)

        await alice.send_envelope("room-3", {"type": "offer", "sdp": "offer-1"})
        report("occupied room probes as occupied", await bob.probe("room-3", 0.1) is True)
        received = await bob.await_envelope("room-3", timeout=1)
        report("probe left the offer in place", received["sdp"] == "offer-1")


async def test_probe_wakes_on_send() -> None:
    relay, client = relay_client()
    async with client:
        alice, bob = peer(client, "alice"), peer(client, "bob")
        probe = asyncio.ensure_future(bob.probe("room-4", 2))
        await wait_until(parked(relay, "room-4"))
        await alice.send_envelope("room-4", {"type": "offer", "sdp": "offer-1"})
        report("parked probe answered by a send", await asyncio.wait_for(probe, 2) is True)
        report("message stored despite the probe", len(relay.rooms["room-4"].pending) == 1)


async def test_conflicting_sender() -> None:
    relay, client = relay_client()
    async with client:
        alice, carol = peer(client, "alice"), peer(client, "carol")
        await alice.send_envelope("room-5", {"type": "offer", "sdp": "offer-1"})
        try:
            await carol.send_envelope("room-5", {"type": "offer", "sdp": "offer-2"})
            report("second offerer rejected", False, "no RoomConflict")
        except RoomConflict as e:
            report("second offerer rejected", e.status == 409)

        await alice.send_envelope("room-5", {"type": "offer", "sdp": "offer-3"})
        bob = peer(client, "bob")
        received = await bob.await_envelope("room-5", timeout=1)
        report("same sender replaces its undelivered message", received["sdp"] == "offer-3")


async def test_second_waiter_conflict() -> None:
    relay, client = relay_client()
    async with client:
        bob, carol = peer(client, "bob"), peer(client, "carol")
        task = asyncio.ensure_future(bob.await_envelope("room-6", timeout=2))
        await wait_until(parked(relay, "room-6"))
        try:
            await carol.await_envelope("room-6", timeout=1)
            report("second waiter rejected", False, "no RoomConflict")
        except RoomConflict:
            report("second waiter rejected", True)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        report("cancelled waiter removed", await wait_until(lambda: "room-6" not in relay.rooms))


async def test_expired_room() -> None:
    relay, client = relay_client()
    async with client:
        bob = peer(client, "bob")
        task = asyncio.ensure_future(bob.await_envelope("room-7", timeout=5))
        await wait_until(parked(relay, "room-7"))

        expired = relay.sweep(now=time.monotonic() + relay.room_ttl + 1)
        report("sweep expires idle room", expired == ["room-7"], str(expired))
        try:
            await asyncio.wait_for(task, 2)
            report("parked waiter gets 410", False, "no RoomExpired")
        except RoomExpired as e:
            report("parked waiter gets 410", e.status == 410)


async def test_capacity_eviction() -> None:
    relay, client = relay_client(SignalingRelay(max_rooms=1))
    async with client:
        alice, bob = peer(client, "alice"), peer(client, "bob")
        task = asyncio.ensure_future(bob.await_envelope("old-room", timeout=5))
        await wait_until(parked(relay, "old-room"))

        await alice.send_envelope("new-room", {"type": "offer", "sdp": "offer-1"})
        report("oldest room evicted at capacity", list(relay.rooms) == ["new-room"])
        try:
            await asyncio.wait_for(task, 2)
            report("evicted waiter gets 410", False, "no RoomExpired")
        except RoomExpired:
            report("evicted waiter gets 410", True)


async def test_relay_wait_caps_timeout() -> None:
    relay = SignalingRelay(wait_timeout=0.1)
    start = time.monotonic()
    outcome = await relay.wait("room-8", "bob", timeout=30)
    report("relay caps the wait at its own limit", outcome.status == 408)
    report("capped wait returns promptly", time.monotonic() - start < 1.0)
    report("timed-out room dropped", "room-8" not in relay.rooms)


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------

async def test_abandoned_wait_released() -> None:
    """A long-poll whose client hangs up leaves the room straight away."""
    relay = SignalingRelay()
    app = create_relay_app(relay)
    hang_up = asyncio.Event()
    request_read = False
    sent: list = []

    async def receive():
        nonlocal request_read
        if not request_read:
            request_read = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await hang_up.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/signal/wait",
        "raw_path": b"/signal/wait",
        "root_path": "",
        "query_string": b"roomId=room-9&peerId=bob&timeout=5",
        "headers": [],
        "client": ("127.0.0.1", 50000),
        "server": ("relay", 80),
    }
    task = asyncio.ensure_future(app(scope, receive, send))
    report("waiter parks", await wait_until(parked(relay, "room-9")))

    hang_up.set()
    await asyncio.wait_for(task, 2)
    report("abandoned waiter removed", "room-9" not in relay.rooms)
    statuses = [m["status"] for m in sent if m["type"] == "http.response.start"]
    report("handler answered 499", statuses == [499], str(statuses))

    outcome = relay.deliver("room-9", "alice", {"type": "offer", "sdp": "offer-1"})
    report("later offer is stored, not handed to the gone waiter",
           outcome.detail == "Message stored", outcome.detail)


async def test_invalid_requests() -> None:
    relay, client = relay_client()
    async with client:
        resp = await client.post("/signal/send", content=b"not json",
                                 headers={"content-type": "application/json"})
        report("non-JSON body → 400", resp.status_code == 400 and resp.text == "Invalid JSON payload")

        resp = await client.post("/signal/send", json={"roomId": "  ", "message": "x"})
        report("blank roomId → 400", resp.status_code == 400, resp.text)

        resp = await client.post("/signal/send", json={"roomId": "r"})
        report("missing message → 400", resp.status_code == 400, resp.text)

        resp = await client.get("/signal/wait")
        report("wait without roomId → 400", resp.status_code == 400 and resp.text == "Missing roomId parameter")


async def test_room_id_truncated() -> None:
    relay, client = relay_client()
    async with client:
        resp = await client.post("/signal/send", json={"roomId": "x" * 150, "message": "hello"})
        report("send accepted", resp.status_code == 200 and resp.text == "Message stored", resp.text)
        report("room token cut to 100 characters", list(relay.rooms) == ["x" * 100])


async def test_health() -> None:
    relay, client = relay_client()
    async with client:
        await client.post("/signal/send", json={"roomId": "r1", "message": "m"})
        resp = await client.get("/signal/health")
        report("health reports room count", resp.json() == {"status": "ok", "rooms": 1}, resp.text)


# ---------------------------------------------------------------------------
# Client failure mapping
# ---------------------------------------------------------------------------

async def test_relay_unreachable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        alice = peer(client, "alice")
        try:
            await alice.send_envelope("room", {"type": "offer", "sdp": "offer-1"})
            report("connection error → RelayUnreachable", False)
        except RelayUnreachable:
            report("connection error → RelayUnreachable", True)
        report("probe treats unreachable relay as empty room", await alice.probe("room", 0.1) is False)


async def test_client_deadline() -> None:
    async def stall(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={"message": None})

    async with httpx.AsyncClient(transport=httpx.MockTransport(stall)) as client:
        alice = peer(client, "alice", round_trip_timeout=0.1)
        try:
            await alice.send_envelope("room", {"type": "offer", "sdp": "offer-1"})
            report("silent relay → SignalingTimeout", False)
        except SignalingTimeout as e:
            report("silent relay → SignalingTimeout", True)
            report("timeout is client-side", e.relay_reported is False)


async def test_relay_rejected() -> None:
    async def fail(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text="not json")
        return httpx.Response(500, text="boom")

    async with httpx.AsyncClient(transport=httpx.MockTransport(fail)) as client:
        alice = peer(client, "alice")
        try:
            await alice.send_envelope("room", "x")
            report("5xx → RelayRejected", False)
        except RelayRejected as e:
            report("5xx → RelayRejected", e.status == 500 and e.detail == "boom")
        try:
            await alice.await_envelope("room", timeout=1)
            report("malformed wait body → RelayRejected", False)
        except RelayRejected:
            report("malformed wait body → RelayRejected", True)


async def test_app_factory() -> None:
    from peerlink.app import create_app
    from peerlink.config import RELAY_MAX_ROOMS, RELAY_WAIT_TIMEOUT

    app = create_app()
    relay = app.state.relay
    report("relay limits from settings", relay.max_rooms == RELAY_MAX_ROOMS
           and relay.wait_timeout == RELAY_WAIT_TIMEOUT)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=RELAY_URL) as client:
        resp = await client.get("/signal/health")
        report("served app answers health", resp.status_code == 200 and resp.json()["rooms"] == 0)


async def test_strip_base_url() -> None:
    report("trailing slash stripped", strip_base_url("http://h:8300/") == "http://h:8300")
    report("/signal suffix stripped", strip_base_url("http://h:8300/signal") == "http://h:8300")
    report("/signal/ suffix stripped", strip_base_url("http://h:8300/signal/") == "http://h:8300")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

TESTS = [
    ("Send then wait", test_send_then_wait),
    ("Wait then send", test_wait_then_send),
    ("No echo to sender", test_own_message_not_echoed),
    ("Non-consuming probe", test_probe_does_not_consume),
    ("Probe woken by send", test_probe_wakes_on_send),
    ("Conflicting sender", test_conflicting_sender),
    ("Second waiter", test_second_waiter_conflict),
    ("Room expiry", test_expired_room),
    ("Capacity eviction", test_capacity_eviction),
    ("Relay wait cap", test_relay_wait_caps_timeout),
    ("Abandoned wait", test_abandoned_wait_released),
    ("Invalid requests", test_invalid_requests),
    ("Room token truncation", test_room_id_truncated),
    ("Health", test_health),
    ("Unreachable relay", test_relay_unreachable),
    ("Client deadline", test_client_deadline),
    ("Relay rejection", test_relay_rejected),
    ("App factory", test_app_factory),
    ("Base URL", test_strip_base_url),
]


async def main() -> None:
    global _standalone
    _standalone = True
    print(f"\n{BOLD}PeerLink Signaling Tests{RESET}")
    print("=" * 50)

    for i, (title, test) in enumerate(TESTS, 1):
        print(f"\n{BOLD}{i}. {title}{RESET}")
        try:
            await test()
        except Exception as e:
            report(title, False, f"EXCEPTION: {e!r}")

    passed = sum(1 for _, ok, _ in results if ok)
    total = len(results)
    print(f"\n{'=' * 50}")
    if passed == total:
        print(f"{GREEN}{BOLD}All {total} checks passed.{RESET}")
    else:
        print(f"{BOLD}Results: {GREEN}{passed} passed{RESET}, {RED}{total - passed} failed{RESET}")
    sys.exit(0 if passed == total else 1)


if __name__ == "__main__":
    asyncio.run(main())
