import logging
from typing import Any, Dict, List, Optional

from sessionhub.modules.errors import AlreadyExists, InvalidArgument, NotReady
from sessionhub.modules.session import SessionOptions, SessionRegistry, SessionState

from .recipients import DEFAULT_SUFFIX, normalize_recipient

logger = logging.getLogger("sessionhub.control")

INIT_EXISTING = "existing"
INIT_INITIALIZING = "initializing"


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{name} is required")
    return str(value).strip()


class ControlService:
    def __init__(
        self,
        registry: SessionRegistry,
        default_profile_id: str = "default",
        recipient_suffix: str = DEFAULT_SUFFIX,
    ):
        """
        Initialize control service.

        Args:
            registry: Session registry to operate on
            default_profile_id: Profile used by send_message when none is given
            recipient_suffix: Suffix appended to bare phone numbers
        """
        self.registry = registry
        self.default_profile_id = default_profile_id
        self.recipient_suffix = recipient_suffix

    async def init(
        self,
        profile_id: Optional[str],
        user_id: Optional[str],
        use_pairing: bool = False,
        phone_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a session for a profile.

        Returns immediately: "initializing" means the handshake started, its
        outcome arrives later as lifecycle events. A profile with a live
        handle is left untouched and reported as "existing".

        Raises:
            InvalidArgument: Missing profile/user id, or pairing without a phone number
        """
        profile_id = _require(profile_id, "profileId")
        user_id = _require(user_id, "userId")
        if use_pairing:
            phone_number = _require(phone_number, "phoneNumber")
            phone_number = "".join(ch for ch in phone_number if ch.isdigit())
            if not phone_number:
                raise InvalidArgument("phoneNumber must contain digits")

        options = SessionOptions(use_pairing=use_pairing, phone_number=phone_number)
        try:
            handle = await self.registry.create(profile_id, user_id, options)
        except AlreadyExists:
            logger.info(f"Init for {profile_id} ignored, session already live")
            return {"success": True, "status": INIT_EXISTING, "profileId": profile_id}

        handle.start()
        return {"success": True, "status": INIT_INITIALIZING, "profileId": profile_id}

    async def disconnect(self, profile_id: Optional[str]) -> Dict[str, Any]:
        """Tear a profile's session down. Succeeds whether or not one existed."""
        profile_id = _require(profile_id, "profileId")
        existed = await self.registry.destroy_and_remove(profile_id)
        if existed:
            logger.info(f"Profile {profile_id} disconnected on request")
        return {"success": True, "profileId": profile_id}

    def status(self, profile_id: str) -> Dict[str, Any]:
        """Last known state of a profile; absent profiles report disconnected."""
        handle = self.registry.get(profile_id)
        if handle is None:
            return {
                "profileId": profile_id,
                "connected": False,
                "state": SessionState.DISCONNECTED.value,
            }
        return {
            "profileId": profile_id,
            "connected": handle.connected,
            "state": handle.state.value,
        }

    async def send_message(
        self,
        recipient: Optional[str],
        message: Optional[str],
        profile_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a text message through a connected profile.

        Raises:
            InvalidArgument: Missing recipient or message
            NotReady: The profile has no connected session
            CollaboratorError: The collaborator failed to send
        """
        recipient = _require(recipient, "number")
        if message is None or message == "":
            raise InvalidArgument("message is required")
        profile_id = profile_id or self.default_profile_id

        handle = self.registry.get(profile_id)
        if handle is None or not handle.connected:
            raise NotReady(f"Client not ready for profile {profile_id}")

        to = normalize_recipient(recipient, self.recipient_suffix)
        await handle.send(to, message)
        logger.info(f"Message sent from {profile_id} to {to}")
        return {"success": True, "profileId": profile_id, "to": to}

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [handle.to_dict() for handle in self.registry.handles()]

    def health(self) -> Dict[str, Any]:
        return {"status": "healthy", "activeSessionCount": self.registry.count()}
