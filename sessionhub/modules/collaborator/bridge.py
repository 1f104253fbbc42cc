"""
HTTP bridge collaborator.

Talks to a sidecar process that owns the browser automation. Session
events arrive as server-sent events (decoded by httpx-sse), one JSON
object per event.
"""

import json
import logging
from typing import AsyncIterator, Optional

import httpx
from httpx_sse import ServerSentEvent, aconnect_sse

from sessionhub.modules.errors import CollaboratorError

from .interfaces import CollaboratorEvent

logger = logging.getLogger("sessionhub.collaborator")


class HttpBridgeCollaborator:
    """MessagingCollaborator backed by an HTTP bridge."""

    def __init__(
        self,
        base_url: str = "http://localhost:8081",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize bridge collaborator.

        Args:
            base_url: Bridge base URL
            client: Optional preconfigured client (its base_url wins)
            timeout: Request timeout in seconds for non-streaming calls
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def connect(
        self,
        profile_id: str,
        *,
        use_pairing: bool = False,
        phone_number: Optional[str] = None,
    ) -> AsyncIterator[CollaboratorEvent]:
        payload = {"profileId": profile_id, "usePairing": use_pairing}
        if phone_number:
            payload["phoneNumber"] = phone_number

        try:
            response = await self.client.post("/sessions", json=payload)
            response.raise_for_status()
            logger.info(f"Bridge session requested for {profile_id}")

            # The handshake can wait minutes for a scan, so reads never time out
            stream_timeout = httpx.Timeout(self.timeout, read=None)
            async with aconnect_sse(
                self.client, "GET", f"/sessions/{profile_id}/events", timeout=stream_timeout
            ) as event_source:
                event_source.response.raise_for_status()
                async for sse in event_source.aiter_sse():
                    event = self._build_event(sse)
                    if event:
                        yield event
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Bridge session for {profile_id} failed: {e}") from e

    async def destroy(self, profile_id: str) -> None:
        try:
            response = await self.client.delete(f"/sessions/{profile_id}")
            if response.status_code == 404:
                logger.debug(f"Bridge session {profile_id} already gone")
                return
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Bridge teardown for {profile_id} failed: {e}") from e

    async def send_message(self, profile_id: str, recipient: str, body: str) -> None:
        try:
            response = await self.client.post(
                f"/sessions/{profile_id}/messages", json={"to": recipient, "body": body}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Sending message via {profile_id} failed: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client if this collaborator created it."""
        if self._owns_client:
            await self.client.aclose()

    def _build_event(self, sse: ServerSentEvent) -> Optional[CollaboratorEvent]:
        """Turn one server-sent event into a CollaboratorEvent."""
        try:
            data = sse.json()
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse bridge event data: {e}")
            return None

        if not isinstance(data, dict):
            data = {"value": data}
        # Unnamed events carry their kind in the payload
        kind = sse.event if sse.event and sse.event != "message" else data.pop("event", None)
        if not kind:
            logger.warning("Bridge event without a name dropped")
            return None
        return CollaboratorEvent(kind=kind, data=data)
