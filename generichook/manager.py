from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from .connection import ConnectionContext, GenericHookConnection
from .errors import ApiError, ErrCode
from .state import EVENT_TYPES
from .store import content_to_dict

log = logging.getLogger("maubot.generichook.manager")


def is_disabled(content: Mapping[str, Any]) -> bool:
    return not content or bool(content.get("disabled"))


class ConnectionManager:
    """Live webhook connections, looked up by room/state key or by hook ID."""

    def __init__(self, ctx: ConnectionContext) -> None:
        self.ctx = ctx
        self._connections: List[GenericHookConnection] = []

    # ---- lookups ----

    def connections_for_room(self, room_id: str) -> List[GenericHookConnection]:
        conns = [c for c in self._connections if c.room_id == room_id]
        return sorted(conns, key=lambda c: c.priority, reverse=True)

    def find_by_hook_id(self, hook_id: str) -> Optional[GenericHookConnection]:
        return next((c for c in self._connections if c.hook_id == hook_id), None)

    def find_for_state(self, room_id: str, event_type: str, state_key: str) -> Optional[GenericHookConnection]:
        return next(
            (c for c in self._connections
             if c.room_id == room_id and c.is_interested_in_state_event(event_type, state_key)),
            None,
        )

    def find_by_name(self, room_id: str, name: str) -> Optional[GenericHookConnection]:
        return next(
            (c for c in self._connections if c.room_id == room_id and name in (c.state.name, c.state_key)),
            None,
        )

    def add(self, conn: GenericHookConnection) -> None:
        # A provisioned connection can race with the echo of its own state event
        self._connections = [
            c for c in self._connections
            if not (c.room_id == conn.room_id and c.state_key == conn.state_key)
        ]
        self._connections.append(conn)

    def discard(self, conn: GenericHookConnection) -> None:
        self._connections = [c for c in self._connections if c is not conn]

    # ---- state ----

    async def load_room_state(self, room_id: str, events: Iterable[Any]) -> int:
        """Create connections for every active hook state event of a room."""
        loaded = 0
        for evt in events:
            event_type = str(evt.type)
            if event_type not in EVENT_TYPES:
                continue
            content = content_to_dict(evt.content)
            if is_disabled(content):
                continue
            try:
                conn = await GenericHookConnection.create_connection_for_state(
                    room_id, evt.state_key, content, self.ctx
                )
            except ApiError as e:
                log.warning(f"Skipping {event_type}/{evt.state_key} in {room_id}: {e.message}")
                continue
            self.add(conn)
            loaded += 1
        return loaded

    async def on_state_event(self, room_id: str, evt: Any) -> Optional[GenericHookConnection]:
        event_type = str(evt.type)
        if event_type not in EVENT_TYPES:
            return None
        content = content_to_dict(evt.content)
        existing = self.find_for_state(room_id, event_type, evt.state_key)
        if is_disabled(content):
            if existing:
                log.info(f"{existing} in {room_id} was disabled")
                self.discard(existing)
            return None
        if existing:
            await existing.on_state_update(evt)
            return existing
        conn = await GenericHookConnection.create_connection_for_state(
            room_id, evt.state_key, content, self.ctx
        )
        self.add(conn)
        return conn

    # ---- hooks ----

    async def on_generic_hook(self, hook_id: str, data: Any) -> bool:
        conn = self.find_by_hook_id(hook_id)
        if not conn:
            raise ApiError("Unknown webhook", ErrCode.NOT_FOUND)
        return await conn.on_generic_hook(data)

    # ---- provisioning ----

    async def provision(self, room_id: str, user_id: str, data: Mapping[str, Any]) -> GenericHookConnection:
        conn, _ = await GenericHookConnection.provision_connection(room_id, user_id, data, self.ctx)
        self.add(conn)
        return conn

    async def remove(self, room_id: str, name: str) -> GenericHookConnection:
        conn = self.find_by_name(room_id, name)
        if not conn:
            raise ApiError(f"No webhook named {name} in this room", ErrCode.NOT_FOUND)
        await conn.on_remove()
        self.discard(conn)
        return conn

    def details_for_room(self, room_id: str, show_secrets: bool = False) -> List[Dict[str, Any]]:
        return [c.get_provisioner_details(show_secrets) for c in self.connections_for_room(room_id)]
