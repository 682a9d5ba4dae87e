from typing import Any, Dict, Optional

from mautrix.client import Client
from mautrix.errors import MNotFound
from mautrix.types import EventID, EventType, RoomID


def state_event_type(event_type: str) -> EventType:
    return EventType.find(event_type, t_class=EventType.Class.STATE)


def account_data_type(event_type: str) -> EventType:
    return EventType.find(event_type, t_class=EventType.Class.ACCOUNT_DATA)


def content_to_dict(content: Any) -> Dict[str, Any]:
    if content is None:
        return {}
    if isinstance(content, dict):
        return content
    if hasattr(content, "serialize"):
        return content.serialize()
    return dict(getattr(content, "__dict__", {}) or {})


class RoomStore:
    """Room state events and room-scoped account data, read and written as the bot."""

    def __init__(self, client: Client) -> None:
        self.client = client

    async def get_state(self, room_id: str, event_type: str, state_key: str) -> Optional[Dict[str, Any]]:
        try:
            content = await self.client.get_state_event(RoomID(room_id), state_event_type(event_type), state_key)
        except MNotFound:
            return None
        return content_to_dict(content)

    async def set_state(self, room_id: str, event_type: str, state_key: str, content: Dict[str, Any]) -> EventID:
        return await self.client.send_state_event(
            RoomID(room_id), state_event_type(event_type), content, state_key=state_key
        )

    async def get_room_account_data(self, room_id: str, event_type: str) -> Dict[str, Any]:
        try:
            data = await self.client.get_account_data(account_data_type(event_type), RoomID(room_id))
        except MNotFound:
            return {}
        return content_to_dict(data)

    async def set_room_account_data(self, room_id: str, event_type: str, data: Dict[str, Any]) -> None:
        await self.client.set_account_data(account_data_type(event_type), data, RoomID(room_id))
