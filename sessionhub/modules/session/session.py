import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from sessionhub.modules.collaborator import (
    CollaboratorEvent,
    CollaboratorEventKind,
    MessagingCollaborator,
)
from sessionhub.modules.errors import AlreadyExists, CollaboratorError
from sessionhub.modules.events import EventKind, LifecycleEvent

logger = logging.getLogger("sessionhub.session")


class SessionState(str, Enum):
    """Lifecycle state of a session handle."""

    INITIALIZING = "initializing"
    AWAITING_QR = "awaiting_qr"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


TERMINAL_STATES = {SessionState.AUTH_FAILED, SessionState.DISCONNECTED}

# Restored credentials go straight from initializing to connected.
# QR codes and pairing codes are refreshed while waiting for a scan.
TRANSITIONS = {
    SessionState.INITIALIZING: {
        SessionState.AWAITING_QR,
        SessionState.AWAITING_PAIRING,
        SessionState.CONNECTED,
        SessionState.AUTH_FAILED,
        SessionState.DISCONNECTED,
    },
    SessionState.AWAITING_QR: {
        SessionState.AWAITING_QR,
        SessionState.CONNECTED,
        SessionState.AUTH_FAILED,
        SessionState.DISCONNECTED,
    },
    SessionState.AWAITING_PAIRING: {
        SessionState.AWAITING_PAIRING,
        SessionState.CONNECTED,
        SessionState.AUTH_FAILED,
        SessionState.DISCONNECTED,
    },
    SessionState.CONNECTED: {SessionState.DISCONNECTED},
    SessionState.AUTH_FAILED: {SessionState.DISCONNECTED},
    SessionState.DISCONNECTED: set(),
}

PING_BODY = "!ping"
PONG_BODY = "pong!"


@dataclass(frozen=True)
class SessionOptions:
    """How a session links its device."""

    use_pairing: bool = False
    phone_number: Optional[str] = None


class SessionHandle:
    """
    One connection attempt/session with the messaging collaborator.

    State changes only come from the collaborator's event stream, consumed by
    a single task per handle. Once closed, a handle emits nothing further.
    """

    def __init__(
        self,
        profile_id: str,
        user_id: str,
        options: SessionOptions,
        collaborator: MessagingCollaborator,
        emit: Callable[[LifecycleEvent], Any],
        on_terminated: Optional[Callable[["SessionHandle"], None]] = None,
    ):
        self.profile_id = profile_id
        self.user_id = user_id
        self.options = options
        self.state = SessionState.INITIALIZING
        self.created_at = datetime.now(UTC)
        self.updated_at = self.created_at
        self.phone_number: Optional[str] = None
        self.display_name: Optional[str] = None
        self.closed = False

        self._collaborator = collaborator
        self._emit = emit
        self._on_terminated = on_terminated
        self._task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    @property
    def is_live(self) -> bool:
        """True while the handle can still reach connected."""
        return not self.closed and self.state not in TERMINAL_STATES

    def start(self) -> None:
        """Begin consuming the collaborator's event stream in the background."""
        if self.closed or self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"session:{self.profile_id}")
        logger.info(f"Initializing session for profile {self.profile_id} (user {self.user_id})")

    async def close(self, reason: str = "requested") -> None:
        """
        Stop the handle: emit a final disconnected event, then cancel the
        event task so nothing it receives afterwards is forwarded.
        """
        if not self.closed:
            self._transition(SessionState.DISCONNECTED, EventKind.DISCONNECTED, {"reason": reason})
            self.closed = True

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def teardown(self) -> None:
        """Ask the collaborator to release the session."""
        await self._collaborator.destroy(self.profile_id)

    async def send(self, recipient: str, body: str) -> None:
        await self._collaborator.send_message(self.profile_id, recipient, body)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "userId": self.user_id,
            "state": self.state.value,
            "connected": self.connected,
            "phoneNumber": self.phone_number,
            "displayName": self.display_name,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def _transition(
        self,
        new_state: SessionState,
        kind: Optional[EventKind] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if self.closed:
            return False
        if new_state not in TRANSITIONS[self.state]:
            logger.warning(
                f"Ignoring {self.state.value} -> {new_state.value} for profile {self.profile_id}"
            )
            return False

        if new_state != self.state:
            logger.info(f"Profile {self.profile_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.updated_at = datetime.now(UTC)

        if kind is not None:
            self._emit(
                LifecycleEvent(
                    profile_id=self.profile_id,
                    user_id=self.user_id,
                    kind=kind,
                    payload=payload or {},
                )
            )
        return True

    async def _run(self) -> None:
        events = self._collaborator.connect(
            self.profile_id,
            use_pairing=self.options.use_pairing,
            phone_number=self.options.phone_number,
        )
        try:
            try:
                async for event in events:
                    if self.closed:
                        break
                    await self._handle(event)
                    if self.state == SessionState.DISCONNECTED:
                        break
                else:
                    if self.is_live:
                        self._disconnected("event stream closed")
            finally:
                aclose = getattr(events, "aclose", None)
                if aclose is not None:
                    await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, CollaboratorError) else CollaboratorError(str(e))
            logger.error(f"Session for profile {self.profile_id} failed: {error.message}")
            if self.connected:
                self._disconnected(error.message)
            else:
                self._transition(
                    SessionState.AUTH_FAILED, EventKind.AUTH_FAILURE, {"error": error.message}
                )

        if self.state == SessionState.DISCONNECTED and not self.closed:
            self.closed = True
            if self._on_terminated:
                self._on_terminated(self)
            try:
                await self.teardown()
            except Exception as e:
                logger.warning(f"Teardown after disconnect failed for {self.profile_id}: {e}")

    async def _handle(self, event: CollaboratorEvent) -> None:
        data = event.data

        if event.kind == CollaboratorEventKind.QR:
            self._transition(SessionState.AWAITING_QR, EventKind.QR_UPDATED, {"qr": data.get("qr")})

        elif event.kind == CollaboratorEventKind.PAIRING_CODE:
            self._transition(
                SessionState.AWAITING_PAIRING,
                EventKind.PAIRING_CODE,
                {"pairingCode": data.get("pairingCode") or data.get("code")},
            )

        elif event.kind == CollaboratorEventKind.AUTHENTICATED:
            logger.info(f"Profile {self.profile_id} authenticated")

        elif event.kind == CollaboratorEventKind.READY:
            self.phone_number = data.get("phoneNumber")
            self.display_name = data.get("displayName")
            self._transition(
                SessionState.CONNECTED,
                EventKind.CONNECTED,
                {"phoneNumber": self.phone_number, "displayName": self.display_name},
            )

        elif event.kind == CollaboratorEventKind.AUTH_FAILURE:
            payload = {"error": data["message"]} if data.get("message") else {}
            self._transition(SessionState.AUTH_FAILED, EventKind.AUTH_FAILURE, payload)

        elif event.kind == CollaboratorEventKind.DISCONNECTED:
            self._disconnected(data.get("reason") or "disconnected")

        elif event.kind == CollaboratorEventKind.MESSAGE:
            await self._on_message(data)

        else:
            logger.debug(f"Unhandled collaborator event {event.kind} for {self.profile_id}")

    def _disconnected(self, reason: str) -> None:
        self._transition(SessionState.DISCONNECTED, EventKind.DISCONNECTED, {"reason": reason})

    async def _on_message(self, data: Dict[str, Any]) -> None:
        sender = data.get("from")
        body = data.get("body")
        logger.info(f"Message received on {self.profile_id} from {sender}: {body}")

        if body == PING_BODY and sender:
            try:
                await self.send(sender, PONG_BODY)
            except CollaboratorError as e:
                logger.error(f"Failed to answer ping on {self.profile_id}: {e.message}")


class SessionRegistry:
    """
    In-memory map from profile id to its session handle.

    create/remove/destroy_and_remove for one profile are serialized by a
    per-profile lock, so a profile never has two handles.
    """

    def __init__(
        self,
        collaborator: MessagingCollaborator,
        emit: Callable[[LifecycleEvent], Any],
        teardown_timeout: float = 10.0,
    ):
        """
        Initialize session registry.

        Args:
            collaborator: Messaging collaborator handed to every new handle
            emit: Non-blocking sink for lifecycle events
            teardown_timeout: Seconds allowed for a graceful teardown
        """
        self.collaborator = collaborator
        self.emit = emit
        self.teardown_timeout = teardown_timeout
        self._handles: Dict[str, SessionHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, profile_id: str) -> AsyncIterator[None]:
        """Hold the profile's lock; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(profile_id)
        if lock is None:
            lock = self._locks[profile_id] = asyncio.Lock()
        self._lock_users[profile_id] = self._lock_users.get(profile_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[profile_id] -= 1
            if not self._lock_users[profile_id]:
                del self._lock_users[profile_id]
                del self._locks[profile_id]

    async def create(
        self, profile_id: str, user_id: str, options: Optional[SessionOptions] = None
    ) -> SessionHandle:
        """
        Create and store a handle for a profile.

        A terminal handle (auth_failed/disconnected) left in the registry is
        torn down and replaced.

        Raises:
            AlreadyExists: If the profile already has a live handle
        """
        async with self._locked(profile_id):
            existing = self._handles.get(profile_id)
            if existing is not None:
                if existing.is_live:
                    raise AlreadyExists(f"Profile {profile_id} already has a live session")
                await self._destroy(existing, reason="replaced")
                self._handles.pop(profile_id, None)

            handle = SessionHandle(
                profile_id,
                user_id,
                options or SessionOptions(),
                self.collaborator,
                emit=self.emit,
                on_terminated=self._discard,
            )
            self._handles[profile_id] = handle
            return handle

    def get(self, profile_id: str) -> Optional[SessionHandle]:
        return self._handles.get(profile_id)

    async def remove(self, profile_id: str) -> None:
        """Drop a profile's handle without teardown. No-op if absent."""
        async with self._locked(profile_id):
            self._handles.pop(profile_id, None)

    async def destroy_and_remove(self, profile_id: str, reason: str = "requested") -> bool:
        """
        Tear a profile's session down and remove it, even if teardown fails.

        Returns:
            True if a handle existed
        """
        async with self._locked(profile_id):
            handle = self._handles.get(profile_id)
            if handle is None:
                return False
            try:
                await self._destroy(handle, reason=reason)
            finally:
                self._handles.pop(profile_id, None)
            return True

    async def shutdown(self) -> None:
        """Destroy every session (process shutdown)."""
        profile_ids = list(self._handles)
        if profile_ids:
            logger.info(f"Closing {len(profile_ids)} sessions")
        await asyncio.gather(
            *(self.destroy_and_remove(pid, reason="shutdown") for pid in profile_ids)
        )

    def handles(self) -> List[SessionHandle]:
        return list(self._handles.values())

    def count(self) -> int:
        return len(self._handles)

    def __contains__(self, profile_id: str) -> bool:
        return profile_id in self._handles

    async def _destroy(self, handle: SessionHandle, reason: str) -> None:
        await handle.close(reason=reason)
        try:
            await asyncio.wait_for(handle.teardown(), self.teardown_timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Teardown of {handle.profile_id} timed out after {self.teardown_timeout}s"
            )
        except Exception as e:
            logger.error(f"Teardown of {handle.profile_id} failed: {e}")

    def _discard(self, handle: SessionHandle) -> None:
        """Forget a handle that disconnected on its own."""
        if self._handles.get(handle.profile_id) is handle:
            del self._handles[handle.profile_id]
            logger.info(f"Profile {handle.profile_id} removed after disconnect")
