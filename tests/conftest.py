"""
Shared pytest fixtures for sessionhub tests.

This module provides common fixtures including:
- FakeCollaborator: Scripted messaging collaborator
- Redis mocks for journal tests
- Sink transport recording webhook requests
"""

import asyncio
import json
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import httpx
import pytest

from sessionhub.modules.collaborator import CollaboratorEvent
from sessionhub.modules.config import ConfigModule


# =============================================================================
# Collaborator Mocking Infrastructure
# =============================================================================

class FakeCollaborator:
    """
    Messaging collaborator driven by the test.

    Each profile's stream first yields its scripted events, then whatever
    the test pushes, and ends when the test calls end().

    Usage:
        async def test_qr(fake_collaborator, registry):
            handle = await registry.create("p1", "u1")
            handle.start()
            fake_collaborator.push("p1", "qr", qr="QR-1")
            await wait_until(lambda: handle.state == SessionState.AWAITING_QR)
    """

    def __init__(self, script: Optional[Dict[str, List[CollaboratorEvent]]] = None):
        self.script = script or {}
        self.connect_calls: List[Tuple[str, bool, Optional[str]]] = []
        self.destroyed: List[str] = []
        self.sent: List[Tuple[str, str, str]] = []
        self.connect_error: Optional[Exception] = None
        self.destroy_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.destroy_delay = 0.0
        self._queues: Dict[str, asyncio.Queue] = {}

    def _queue(self, profile_id: str) -> asyncio.Queue:
        if profile_id not in self._queues:
            self._queues[profile_id] = asyncio.Queue()
        return self._queues[profile_id]

    def push(self, profile_id: str, kind: str, **data) -> None:
        self._queue(profile_id).put_nowait(CollaboratorEvent(kind=kind, data=data))

    def end(self, profile_id: str) -> None:
        self._queue(profile_id).put_nowait(None)

    def fail(self, profile_id: str, error: Exception) -> None:
        """Make the profile's stream raise error at this point."""
        self._queue(profile_id).put_nowait(error)

    async def connect(self, profile_id, *, use_pairing=False, phone_number=None):
        self.connect_calls.append((profile_id, use_pairing, phone_number))
        if self.connect_error is not None:
            raise self.connect_error

        for event in self.script.get(profile_id, []):
            yield event

        queue = self._queue(profile_id)
        while True:
            event = await queue.get()
            if event is None:
                return
            if isinstance(event, Exception):
                raise event
            yield event

    async def destroy(self, profile_id: str) -> None:
        if self.destroy_delay:
            await asyncio.sleep(self.destroy_delay)
        if self.destroy_error is not None:
            raise self.destroy_error
        self.destroyed.append(profile_id)

    async def send_message(self, profile_id: str, recipient: str, body: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((profile_id, recipient, body))


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_collaborator():
    return FakeCollaborator()


@pytest.fixture
def emitted():
    """List collecting every emitted lifecycle event."""
    return []


# =============================================================================
# Sink Mocking Infrastructure
# =============================================================================

class RecordingSink:
    """
    httpx MockTransport handler recording webhook deliveries.

    responses: status codes (or exceptions) returned in order; the last one
    repeats once the list is exhausted.
    """

    def __init__(self, responses: Optional[list] = None):
        self.responses = list(responses or [200])
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"ok": outcome < 400})

    @property
    def bodies(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def sink():
    return RecordingSink()


# =============================================================================
# Redis Mocking Infrastructure
# =============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client for async operations."""
    redis = AsyncMock()
    redis.lpush = AsyncMock()
    redis.ltrim = AsyncMock()
    redis.lrange = AsyncMock(return_value=[])
    redis.publish = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    return redis


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def settings(monkeypatch):
    """Configuration built from defaults only, ignoring any local .env file."""
    for var in ("WEBHOOK_URL", "WEBHOOK_SECRET", "REDIS_URL", "DEFAULT_PROFILE_ID"):
        monkeypatch.delenv(var, raising=False)
    config = ConfigModule(env_file="/nonexistent/.env")
    config.set("webhook_url", "http://sink.test/hook")
    config.set("webhook_backoff", 0.0)
    config.set("teardown_timeout", 0.5)
    return config


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring infrastructure"
    )
