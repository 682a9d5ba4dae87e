from typing import Dict, Optional, Set
import logging

from aiohttp import ClientSession
from mautrix.api import HTTPAPI, Method, Path
from mautrix.client import Client, ClientAPI
from mautrix.errors import MForbidden, MUserInUse
from mautrix.types import EventID, EventType, RoomID, UserID

from .errors import ApiError, ErrCode


class PuppetIntent:
    """Acts as one appservice-namespaced user, using the appservice token."""

    def __init__(self, mxid: UserID, api: HTTPAPI, bot: Client) -> None:
        self.mxid = mxid
        self.client = ClientAPI(mxid, api=api)
        self.bot = bot
        self._registered = False
        self._joined: Set[RoomID] = set()

    async def ensure_registered(self) -> None:
        if self._registered:
            return
        localpart, _ = ClientAPI.parse_user_id(self.mxid)
        try:
            await self.client.api.request(
                Method.POST, Path.v3.register,
                {"username": localpart, "type": "m.login.application_service"},
            )
        except MUserInUse:
            pass
        self._registered = True

    async def ensure_joined(self, room_id: RoomID) -> None:
        if room_id in self._joined:
            return
        await self.ensure_registered()
        try:
            await self.client.join_room_by_id(room_id)
        except MForbidden:
            await self.bot.invite_user(room_id, self.mxid)
            await self.client.join_room_by_id(room_id)
        self._joined.add(room_id)

    async def get_displayname(self, user_id: UserID) -> Optional[str]:
        return await self.client.get_displayname(user_id)

    async def set_displayname(self, displayname: str) -> None:
        await self.client.set_displayname(displayname)

    async def send_message_event(self, room_id: RoomID, event_type: EventType, content) -> EventID:
        await self.ensure_joined(room_id)
        return await self.client.send_message_event(room_id, event_type, content)


class IdentityDirectory:
    """Maps a sender mxid to something that can act as that user."""

    def __init__(
        self,
        bot: Client,
        homeserver: Optional[str] = None,
        as_token: Optional[str] = None,
        client_session: Optional[ClientSession] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.bot = bot
        self.homeserver = homeserver
        self.as_token = as_token
        self.client_session = client_session
        self.log = log or logging.getLogger("maubot.generichook.identity")
        self._intents: Dict[UserID, PuppetIntent] = {}

    @property
    def bot_mxid(self) -> UserID:
        return self.bot.mxid

    @property
    def can_puppet(self) -> bool:
        return bool(self.homeserver and self.as_token)

    def intent_for(self, user_id: str):
        if user_id == self.bot_mxid:
            return self.bot
        if not self.can_puppet:
            raise ApiError(f"Cannot act as {user_id} without an appservice token", ErrCode.DISABLED_FEATURE)
        user_id = UserID(user_id)
        intent = self._intents.get(user_id)
        if intent is None:
            api = HTTPAPI(
                self.homeserver, self.as_token,
                client_session=self.client_session,
                as_user_id=user_id,
                log=self.log.getChild("puppet"),
            )
            intent = self._intents[user_id] = PuppetIntent(user_id, api, self.bot)
        return intent
