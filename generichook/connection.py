from typing import Any, Dict, Mapping, Optional, Tuple, Union
import hashlib
import logging
import re
import uuid

from mautrix.types import Format, MessageType, TextMessageEventContent
from mautrix.util import markdown
import attr

from .config import GenericWebhooksConfig
from .errors import ApiError, ErrCode
from .formatter import HookMessage, format_hook_data
from .identity import IdentityDirectory
from .sanitize import sanitize
from .sender import MessageSenderClient
from .state import (
    CANONICAL_EVENT_TYPE,
    EVENT_TYPES,
    LEGACY_EVENT_TYPE,
    GenericHookState,
    ensure_room_account_data,
    find_hook_id,
    validate_state,
)
from .store import RoomStore, content_to_dict
from .transform import TransformationCompileError, TransformationFunction

WEBHOOK_DATA_KEY = "uk.half-shot.hookshot.webhook_data"
SERVICE_CATEGORY = "webhooks"
BASE_PRIORITY = -1
TRANSFORMATION_FAILED_TEXT = "Webhook received but failed to process via transformation function"

log = logging.getLogger("maubot.generichook.connection")


@attr.dataclass
class ConnectionContext:
    """Everything a connection needs from the bridge hosting it."""
    store: RoomStore
    message_client: MessageSenderClient
    identity: IdentityDirectory
    config: GenericWebhooksConfig


@attr.dataclass(frozen=True)
class NoTransform:
    pass


@attr.dataclass(frozen=True)
class HasTransform:
    function: TransformationFunction


TransformState = Union[NoTransform, HasTransform]


class GenericHookConnection:
    """Handles a room connected to a generic webhook."""

    validate_state = staticmethod(validate_state)
    ensure_room_account_data = staticmethod(ensure_room_account_data)

    transform: TransformState
    _cached_displayname: Optional[str]

    def __init__(
        self,
        room_id: str,
        state: GenericHookState,
        hook_id: str,
        state_key: str,
        ctx: ConnectionContext,
    ) -> None:
        self.room_id = room_id
        self.state = state
        self.hook_id = hook_id
        self.state_key = state_key
        self.ctx = ctx
        self.connection_id = hashlib.sha256(
            f"{room_id}{CANONICAL_EVENT_TYPE}{state_key}".encode("utf-8")
        ).hexdigest()
        self.transform = NoTransform()
        self._cached_displayname = None
        if state.transformation_function and ctx.config.allow_js_transformation_functions:
            try:
                self.transform = HasTransform(TransformationFunction(state.transformation_function))
            except TransformationCompileError as e:
                log.warning(f"Could not compile transformation function of {self}: {e}")

    # ---- factories ----

    @classmethod
    async def create_connection_for_state(
        cls, room_id: str, state_key: str, content: Mapping[str, Any], ctx: ConnectionContext
    ) -> "GenericHookConnection":
        if not ctx.config.enabled:
            raise ApiError("Generic webhooks are not configured", ErrCode.DISABLED_FEATURE)
        account_data = await ctx.store.get_room_account_data(room_id, CANONICAL_EVENT_TYPE)
        state = validate_state(content)
        hook_id = find_hook_id(account_data, state_key)
        if not hook_id:
            hook_id = str(uuid.uuid4())
            log.warning(f"hookId for {room_id} not set in accountData, setting to {hook_id}")
            await ensure_room_account_data(ctx.store, room_id, hook_id, state_key)
        return cls(room_id, state, hook_id, state_key, ctx)

    @classmethod
    async def provision_connection(
        cls, room_id: str, user_id: str, data: Mapping[str, Any], ctx: ConnectionContext
    ) -> Tuple["GenericHookConnection", Dict[str, Any]]:
        if not ctx.config.enabled:
            raise ApiError("Generic webhooks are not configured", ErrCode.DISABLED_FEATURE)
        hook_id = str(uuid.uuid4())
        state = validate_state(data, ctx.config.allow_js_transformation_functions)
        for event_type in EVENT_TYPES:
            existing = await ctx.store.get_state(room_id, event_type, state.name)
            if existing and not existing.get("disabled"):
                raise ApiError(f"A webhook named {state.name} already exists in this room", ErrCode.BAD_VALUE)
        # Not transactional: if the state write fails the account data entry stays behind
        await ensure_room_account_data(ctx.store, room_id, hook_id, state.name)
        content = state.serialize()
        await ctx.store.set_state(room_id, CANONICAL_EVENT_TYPE, state.name, content)
        log.info(f"{user_id} provisioned webhook {state.name} in {room_id}")
        return cls(room_id, state, hook_id, state.name, ctx), content

    @staticmethod
    def service_details(bot_user_id: str) -> Dict[str, Any]:
        return {
            "service": "generic",
            "eventType": CANONICAL_EVENT_TYPE,
            "type": "Webhook",
            "botUserId": bot_user_id,
        }

    # ---- properties ----

    @property
    def priority(self) -> int:
        return self.state.priority if self.state.priority is not None else BASE_PRIORITY

    @property
    def has_transformation(self) -> bool:
        return isinstance(self.transform, HasTransform)

    def is_interested_in_state_event(self, event_type: str, state_key: str) -> bool:
        return event_type in EVENT_TYPES and self.state_key == state_key

    def get_user_id(self) -> str:
        bot_mxid = self.ctx.identity.bot_mxid
        prefix = self.ctx.config.user_id_prefix
        if not prefix:
            return bot_mxid
        _, domain = bot_mxid.split(":", 1)
        name = re.sub(r"[^a-z0-9\-.=_]+", "", self.state.name.lower())
        return f"@{prefix}{name or 'bot'}:{domain}"

    async def ensure_displayname(self) -> None:
        if not self.state.name:
            return
        sender = self.get_user_id()
        if sender == self.ctx.identity.bot_mxid:
            # The bot's global displayname is never touched
            return
        intent = self.ctx.identity.intent_for(sender)
        expected = f"{self.state.name} (Webhook)"
        if self._cached_displayname == expected:
            return
        try:
            self._cached_displayname = await intent.get_displayname(sender)
        except Exception as e:
            log.debug(f"Couldn't fetch displayname of {sender}: {e}")
            self._cached_displayname = None
        if self._cached_displayname is None:
            # No profile yet, the user may not be registered
            await intent.ensure_registered()
        if self._cached_displayname != expected:
            await intent.set_displayname(expected)
            self._cached_displayname = expected

    # ---- events ----

    async def on_state_update(self, event: Any) -> None:
        state = validate_state(
            content_to_dict(event.content), self.ctx.config.allow_js_transformation_functions
        )
        if state.transformation_function:
            try:
                self.transform = HasTransform(TransformationFunction(state.transformation_function))
            except TransformationCompileError as e:
                self.transform = NoTransform()
                await self.ctx.message_client.send_matrix_text(
                    self.room_id, f"Could not compile transformation function: {e}"
                )
        else:
            self.transform = NoTransform()
        self.state = state

    async def on_generic_hook(self, data: Any) -> bool:
        """
        Process one incoming webhook payload (a string or parsed JSON).

        Returns False only when the transformation function failed; the room
        still gets a message saying so.
        """
        log.info(f"on_generic_hook {self.room_id} {self.hook_id}")
        transform = self.transform
        success = True
        if isinstance(transform, HasTransform):
            try:
                content = await transform.function.execute(data)
            except Exception as e:
                log.warning(f"Failed to run transformation function of {self}: {e}")
                content = HookMessage(plain=TRANSFORMATION_FAILED_TEXT)
                success = False
            else:
                if content is None:
                    # The script explicitly asked for no message
                    return True
        else:
            content = format_hook_data(data)

        sender = self.get_user_id()
        await self.ensure_displayname()

        message = TextMessageEventContent(
            msgtype=content.msgtype or MessageType.NOTICE,
            body=content.plain,
            format=Format.HTML,
            formatted_body=content.html or markdown.render(content.plain).strip(),
        )
        # Matrix JSON can't carry floats
        message[WEBHOOK_DATA_KEY] = sanitize(data)
        await self.ctx.message_client.send_matrix_message(self.room_id, message, "m.room.message", sender)
        return success

    # ---- provisioning ----

    def get_provisioner_details(self, show_secrets: bool = False) -> Dict[str, Any]:
        details = {
            **self.service_details(self.ctx.identity.bot_mxid),
            "id": self.connection_id,
            "config": {
                "transformationFunction": self.state.transformation_function,
                "name": self.state.name,
            },
        }
        if show_secrets:
            details["secrets"] = {
                "url": str(self.ctx.config.hook_url(self.hook_id)),
                "hookId": self.hook_id,
            }
        return details

    async def provisioner_update_config(self, user_id: str, config: Mapping[str, Any]) -> None:
        state = validate_state(config, self.ctx.config.allow_js_transformation_functions)
        # In-memory state follows once the state event comes back through on_state_update
        await self.ctx.store.set_state(
            self.room_id, CANONICAL_EVENT_TYPE, self.state_key,
            {**state.serialize(), "hookId": self.hook_id},
        )
        log.info(f"{user_id} updated config of {self}")

    async def on_remove(self) -> None:
        log.info(f"Removing {self} for {self.room_id}")
        store = self.ctx.store
        if await store.get_state(self.room_id, CANONICAL_EVENT_TYPE, self.state_key) is not None:
            await store.set_state(self.room_id, CANONICAL_EVENT_TYPE, self.state_key, {"disabled": True})
        elif await store.get_state(self.room_id, LEGACY_EVENT_TYPE, self.state_key) is not None:
            await store.set_state(self.room_id, LEGACY_EVENT_TYPE, self.state_key, {"disabled": True})
        else:
            raise ApiError(f"No state event found for {self}", ErrCode.NOT_FOUND)
        await ensure_room_account_data(store, self.room_id, self.hook_id, self.state_key, remove=True)

    def __str__(self) -> str:
        return f"GenericHookConnection {self.hook_id}"
