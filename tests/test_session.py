import asyncio

import pytest

from conftest import settle, wait_until
from sessionhub.modules.errors import AlreadyExists, CollaboratorError
from sessionhub.modules.events import EventKind
from sessionhub.modules.session import SessionOptions, SessionRegistry, SessionState


@pytest.fixture
def registry(fake_collaborator, emitted):
    """Create a SessionRegistry recording emitted events."""
    return SessionRegistry(fake_collaborator, emitted.append, teardown_timeout=0.2)


def kinds(events, profile_id="p1"):
    return [event.kind for event in events if event.profile_id == profile_id]


@pytest.mark.asyncio
async def test_create_stores_handle(registry):
    """Test that create returns and stores a fresh handle."""
    handle = await registry.create("p1", "u1")

    assert registry.get("p1") is handle
    assert handle.state == SessionState.INITIALIZING
    assert handle.user_id == "u1"
    assert registry.count() == 1
    assert "p1" in registry


@pytest.mark.asyncio
async def test_get_absent_profile(registry):
    assert registry.get("missing") is None


@pytest.mark.asyncio
async def test_create_rejects_live_duplicate(registry):
    """Test that a live handle is never replaced."""
    first = await registry.create("p1", "u1")

    with pytest.raises(AlreadyExists):
        await registry.create("p1", "u2")

    assert registry.get("p1") is first
    assert registry.count() == 1


@pytest.mark.asyncio
async def test_concurrent_create_yields_single_handle(registry):
    """Test that racing creates for one profile produce exactly one handle."""
    results = await asyncio.gather(
        registry.create("p1", "u1"),
        registry.create("p1", "u1"),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, AlreadyExists)]
    assert len(created) == 1
    assert len(rejected) == 1
    assert registry.get("p1") is created[0]


@pytest.mark.asyncio
async def test_create_replaces_terminal_handle(registry, fake_collaborator):
    """Test that an auth-failed handle is torn down and replaced."""
    first = await registry.create("p1", "u1")
    first.start()
    fake_collaborator.push("p1", "auth_failure")
    await wait_until(lambda: first.state == SessionState.AUTH_FAILED)

    second = await registry.create("p1", "u1")

    assert second is not first
    assert registry.get("p1") is second
    assert second.state == SessionState.INITIALIZING
    assert first.closed
    assert fake_collaborator.destroyed == ["p1"]


@pytest.mark.asyncio
async def test_remove_is_idempotent(registry):
    await registry.create("p1", "u1")

    await registry.remove("p1")
    await registry.remove("p1")

    assert registry.get("p1") is None


@pytest.mark.asyncio
async def test_qr_then_ready_flow(registry, fake_collaborator, emitted):
    """Test QR issuance followed by a successful scan."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "qr", qr="QR-1")
    await wait_until(lambda: handle.state == SessionState.AWAITING_QR)

    fake_collaborator.push("p1", "authenticated")
    fake_collaborator.push("p1", "ready", phoneNumber="15551234567", displayName="Alice")
    await wait_until(lambda: handle.connected)

    assert kinds(emitted) == [EventKind.QR_UPDATED, EventKind.CONNECTED]
    assert emitted[0].payload == {"qr": "QR-1"}
    assert emitted[1].payload == {"phoneNumber": "15551234567", "displayName": "Alice"}
    assert emitted[1].user_id == "u1"
    assert handle.phone_number == "15551234567"
    assert fake_collaborator.connect_calls == [("p1", False, None)]


@pytest.mark.asyncio
async def test_qr_refresh_emits_each_code(registry, fake_collaborator, emitted):
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "qr", qr="QR-1")
    fake_collaborator.push("p1", "qr", qr="QR-2")
    await wait_until(lambda: len(emitted) == 2)

    assert [event.payload["qr"] for event in emitted] == ["QR-1", "QR-2"]
    assert handle.state == SessionState.AWAITING_QR


@pytest.mark.asyncio
async def test_pairing_flow(registry, fake_collaborator, emitted):
    """Test pairing-code linking passes the caller's phone number through."""
    options = SessionOptions(use_pairing=True, phone_number="15551234567")
    handle = await registry.create("p1", "u1", options)
    handle.start()

    fake_collaborator.push("p1", "pairing-code", pairingCode="ABCD-EFGH")
    await wait_until(lambda: handle.state == SessionState.AWAITING_PAIRING)

    assert fake_collaborator.connect_calls == [("p1", True, "15551234567")]
    assert emitted[0].kind == EventKind.PAIRING_CODE
    assert emitted[0].payload == {"pairingCode": "ABCD-EFGH"}


@pytest.mark.asyncio
async def test_restored_session_connects_without_qr(registry, fake_collaborator, emitted):
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1555", displayName="Bob")
    await wait_until(lambda: handle.connected)

    assert kinds(emitted) == [EventKind.CONNECTED]


@pytest.mark.asyncio
async def test_qr_after_connected_is_ignored(registry, fake_collaborator, emitted):
    """Test that out-of-order collaborator events do not move the state back."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1555", displayName="Bob")
    fake_collaborator.push("p1", "qr", qr="late")
    await wait_until(lambda: handle.connected)
    await settle()

    assert handle.state == SessionState.CONNECTED
    assert kinds(emitted) == [EventKind.CONNECTED]


@pytest.mark.asyncio
async def test_auth_failure_keeps_terminal_handle(registry, fake_collaborator, emitted):
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "auth_failure", message="bad session")
    await wait_until(lambda: handle.state == SessionState.AUTH_FAILED)

    assert registry.get("p1") is handle
    assert not handle.is_live
    assert emitted[-1].kind == EventKind.AUTH_FAILURE
    assert emitted[-1].payload == {"error": "bad session"}


@pytest.mark.asyncio
async def test_collaborator_error_surfaces_as_auth_failure(registry, fake_collaborator, emitted):
    """Test that a failing handshake is reported as an event, not raised."""
    fake_collaborator.connect_error = CollaboratorError("handshake timeout")
    handle = await registry.create("p1", "u1")
    handle.start()

    await wait_until(lambda: handle.state == SessionState.AUTH_FAILED)

    assert emitted[-1].kind == EventKind.AUTH_FAILURE
    assert emitted[-1].payload == {"error": "handshake timeout"}


@pytest.mark.asyncio
async def test_collaborator_disconnect_removes_handle(registry, fake_collaborator, emitted):
    """Test that a disconnected event destroys and forgets the handle."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1555", displayName="Bob")
    fake_collaborator.push("p1", "disconnected", reason="LOGOUT")
    await wait_until(lambda: registry.get("p1") is None)
    await wait_until(lambda: fake_collaborator.destroyed == ["p1"])

    assert handle.state == SessionState.DISCONNECTED
    assert kinds(emitted) == [EventKind.CONNECTED, EventKind.DISCONNECTED]
    assert emitted[-1].payload == {"reason": "LOGOUT"}


@pytest.mark.asyncio
async def test_stream_end_counts_as_disconnect(registry, fake_collaborator, emitted):
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1555", displayName="Bob")
    fake_collaborator.end("p1")
    await wait_until(lambda: registry.get("p1") is None)

    assert handle.state == SessionState.DISCONNECTED
    assert emitted[-1].payload == {"reason": "event stream closed"}


@pytest.mark.asyncio
async def test_destroy_during_qr_wait_drops_later_events(registry, fake_collaborator, emitted):
    """Test that events arriving after a disconnect are never emitted."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "qr", qr="QR-1")
    await wait_until(lambda: handle.state == SessionState.AWAITING_QR)

    existed = await registry.destroy_and_remove("p1")
    fake_collaborator.push("p1", "qr", qr="QR-2")
    await settle()

    assert existed is True
    assert registry.get("p1") is None
    assert handle.state == SessionState.DISCONNECTED
    assert kinds(emitted) == [EventKind.QR_UPDATED, EventKind.DISCONNECTED]
    assert emitted[-1].payload == {"reason": "requested"}
    assert fake_collaborator.destroyed == ["p1"]


@pytest.mark.asyncio
async def test_destroy_absent_profile(registry, fake_collaborator):
    assert await registry.destroy_and_remove("missing") is False
    assert fake_collaborator.destroyed == []


@pytest.mark.asyncio
async def test_destroy_removes_even_when_teardown_fails(registry, fake_collaborator):
    """Test that collaborator teardown errors never leak registry entries."""
    fake_collaborator.destroy_error = CollaboratorError("browser crashed")
    handle = await registry.create("p1", "u1")
    handle.start()

    await registry.destroy_and_remove("p1")

    assert registry.get("p1") is None
    assert handle.closed


@pytest.mark.asyncio
async def test_destroy_removes_when_teardown_times_out(registry, fake_collaborator):
    fake_collaborator.destroy_delay = 5.0
    await registry.create("p1", "u1")

    await asyncio.wait_for(registry.destroy_and_remove("p1"), timeout=2.0)

    assert registry.get("p1") is None


@pytest.mark.asyncio
async def test_ping_is_answered(registry, fake_collaborator):
    """Test that an incoming !ping message gets a pong reply."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1555", displayName="Bob")
    fake_collaborator.push("p1", "message", **{"from": "1666@c.us", "body": "!ping"})
    fake_collaborator.push("p1", "message", **{"from": "1666@c.us", "body": "hello"})
    await wait_until(lambda: len(fake_collaborator.sent) == 1)
    await settle()

    assert fake_collaborator.sent == [("p1", "1666@c.us", "pong!")]


@pytest.mark.asyncio
async def test_shutdown_destroys_every_session(registry, fake_collaborator):
    for profile_id in ("p1", "p2", "p3"):
        handle = await registry.create(profile_id, "u1")
        handle.start()

    await registry.shutdown()

    assert registry.count() == 0
    assert sorted(fake_collaborator.destroyed) == ["p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_handles_are_independent(registry, fake_collaborator, emitted):
    """Test that one profile's events never touch another profile's handle."""
    collaborator = fake_collaborator
    p1 = await registry.create("p1", "u1")
    p2 = await registry.create("p2", "u2")
    p1.start()
    p2.start()

    collaborator.push("p1", "ready", phoneNumber="1", displayName="A")
    collaborator.push("p2", "qr", qr="QR")
    await wait_until(lambda: p1.connected and p2.state == SessionState.AWAITING_QR)

    assert kinds(emitted, "p1") == [EventKind.CONNECTED]
    assert kinds(emitted, "p2") == [EventKind.QR_UPDATED]


@pytest.mark.asyncio
async def test_to_dict(registry):
    handle = await registry.create("p1", "u1")

    data = handle.to_dict()

    assert data["profileId"] == "p1"
    assert data["userId"] == "u1"
    assert data["state"] == "initializing"
    assert data["connected"] is False
    assert "createdAt" in data


@pytest.mark.asyncio
async def test_stream_failure_after_connected_disconnects(registry, fake_collaborator, emitted):
    """Test that a broken stream on a connected session ends it instead of leaving it connected."""
    handle = await registry.create("p1", "u1")
    handle.start()

    fake_collaborator.push("p1", "ready", phoneNumber="1", displayName="A")
    fake_collaborator.fail("p1", CollaboratorError("bridge stream dropped"))
    await wait_until(lambda: registry.get("p1") is None)
    await wait_until(lambda: fake_collaborator.destroyed == ["p1"])

    assert handle.state == SessionState.DISCONNECTED
    assert not handle.connected
    assert kinds(emitted) == [EventKind.CONNECTED, EventKind.DISCONNECTED]
    assert emitted[-1].payload == {"reason": "bridge stream dropped"}


@pytest.mark.asyncio
async def test_locks_released_for_unknown_profiles(registry):
    """Test that per-profile locks do not accumulate for profiles without sessions."""
    for index in range(1000):
        assert await registry.destroy_and_remove(f"x{index}") is False

    assert registry.count() == 0
    assert registry._locks == {}


@pytest.mark.asyncio
async def test_locks_released_after_session_lifecycle(registry):
    await registry.create("p1", "u1")
    await registry.create("p2", "u2")
    await registry.destroy_and_remove("p1")
    await registry.remove("p2")

    assert registry._locks == {}


@pytest.mark.asyncio
async def test_lock_kept_while_operation_waits(registry):
    """Test that a waiting operation still serializes against the holder."""
    results = await asyncio.gather(
        registry.create("p1", "u1"),
        registry.create("p1", "u1"),
        registry.destroy_and_remove("p1"),
        return_exceptions=True,
    )

    assert results[0].closed
    assert isinstance(results[1], AlreadyExists)
    assert results[2] is True
    assert registry.get("p1") is None
    assert registry._locks == {}
