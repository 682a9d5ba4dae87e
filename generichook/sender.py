from typing import Any, Dict, Optional, Union

from mautrix.types import EventID, EventType, MessageEventContent, MessageType, RoomID, TextMessageEventContent

from .identity import IdentityDirectory


class MessageSenderClient:
    def __init__(self, identity: IdentityDirectory) -> None:
        self.identity = identity

    async def send_matrix_message(
        self,
        room_id: str,
        content: Union[MessageEventContent, Dict[str, Any]],
        event_type: str = "m.room.message",
        sender: Optional[str] = None,
    ) -> EventID:
        intent = self.identity.intent_for(sender or self.identity.bot_mxid)
        return await intent.send_message_event(
            RoomID(room_id), EventType.find(event_type, t_class=EventType.Class.MESSAGE), content
        )

    async def send_matrix_text(self, room_id: str, text: str, msgtype: str = "m.notice") -> EventID:
        content = TextMessageEventContent(msgtype=MessageType(msgtype), body=text)
        return await self.send_matrix_message(room_id, content)
