"""Shared fakes for the bridge collaborators."""

from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from generichook.config import GenericWebhooksConfig
from generichook.connection import ConnectionContext

BOT_MXID = "@hookbot:example.com"
ROOM_ID = "!room:example.com"


class FakeRoomStore:
    def __init__(self) -> None:
        self.state: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.account_data: Dict[Tuple[str, str], Dict[str, Any]] = {}
        # ("state"|"account_data", room_id, event_type, ...) in write order
        self.writes: List[Tuple] = []

    async def get_state(self, room_id: str, event_type: str, state_key: str) -> Optional[Dict[str, Any]]:
        content = self.state.get((room_id, event_type, state_key))
        return dict(content) if content is not None else None

    async def set_state(self, room_id: str, event_type: str, state_key: str, content: Dict[str, Any]) -> str:
        self.state[(room_id, event_type, state_key)] = dict(content)
        self.writes.append(("state", room_id, event_type, state_key))
        return "$event"

    async def get_room_account_data(self, room_id: str, event_type: str) -> Dict[str, Any]:
        return dict(self.account_data.get((room_id, event_type), {}))

    async def set_room_account_data(self, room_id: str, event_type: str, data: Dict[str, Any]) -> None:
        self.account_data[(room_id, event_type)] = dict(data)
        self.writes.append(("account_data", room_id, event_type))


class FakeMessageSender:
    def __init__(self) -> None:
        self.messages: List[SimpleNamespace] = []
        self.texts: List[Tuple[str, str]] = []

    async def send_matrix_message(self, room_id, content, event_type="m.room.message", sender=None):
        self.messages.append(SimpleNamespace(room_id=room_id, content=content, event_type=event_type, sender=sender))
        return "$message"

    async def send_matrix_text(self, room_id, text, msgtype="m.notice"):
        self.texts.append((room_id, text))
        return "$text"


class FakeIdentity:
    def __init__(self, bot_mxid: str = BOT_MXID) -> None:
        self.bot_mxid = bot_mxid
        self.intents: Dict[str, SimpleNamespace] = {}

    def intent_for(self, user_id: str) -> SimpleNamespace:
        if user_id not in self.intents:
            self.intents[user_id] = SimpleNamespace(
                get_displayname=AsyncMock(return_value=None),
                set_displayname=AsyncMock(),
                ensure_registered=AsyncMock(),
            )
        return self.intents[user_id]


def state_event(content: Dict[str, Any], state_key: str = "my-hook",
                event_type: str = "uk.half-shot.matrix-hookshot.generic.hook") -> SimpleNamespace:
    return SimpleNamespace(type=event_type, state_key=state_key, content=content, room_id=ROOM_ID)


@pytest.fixture
def store():
    return FakeRoomStore()


@pytest.fixture
def sender():
    return FakeMessageSender()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def make_ctx(store, sender, identity):
    def _make(**config: Any) -> ConnectionContext:
        return ConnectionContext(
            store=store,
            message_client=sender,
            identity=identity,
            config=GenericWebhooksConfig(**config),
        )
    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx(url_prefix="https://hooks.example.com/webhook/")


@pytest.fixture
def script_ctx(make_ctx):
    return make_ctx(allow_js_transformation_functions=True, url_prefix="https://hooks.example.com/webhook/")
