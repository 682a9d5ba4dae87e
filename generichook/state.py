from typing import Any, Dict, Mapping, Optional
import logging

import attr

from .errors import ApiError, ErrCode
from .store import RoomStore

CANONICAL_EVENT_TYPE = "uk.half-shot.matrix-hookshot.generic.hook"
LEGACY_EVENT_TYPE = "uk.half-shot.matrix-github.generic.hook"
EVENT_TYPES = (CANONICAL_EVENT_TYPE, LEGACY_EVENT_TYPE)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 64

log = logging.getLogger("maubot.generichook.state")


@attr.dataclass(frozen=True)
class GenericHookState:
    # Only ever built by validate_state()
    name: str
    transformation_function: Optional[str] = None
    priority: Optional[int] = None

    def serialize(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.transformation_function:
            data["transformationFunction"] = self.transformation_function
        if self.priority is not None:
            data["priority"] = self.priority
        return data


def validate_state(state: Mapping[str, Any], allow_scripts: Optional[bool] = None) -> GenericHookState:
    """
    Validate raw connection config from a state event or a provisioning request.

    ``allow_scripts=None`` means the caller does not enforce the script policy,
    which is how configs already stored in the room are read back.
    """
    name = state.get("name")
    transformation_function = state.get("transformationFunction")
    priority = state.get("priority")

    if transformation_function:
        if allow_scripts is not None and not allow_scripts:
            raise ApiError("Transformation functions are not allowed", ErrCode.DISABLED_FEATURE)
        if not isinstance(transformation_function, str):
            raise ApiError("Transformation functions must be a string", ErrCode.BAD_VALUE)
    else:
        transformation_function = None
    if not name:
        raise ApiError("Missing name", ErrCode.BAD_VALUE)
    if not isinstance(name, str) or not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ApiError(
            f"'name' must be a string between {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters long",
            ErrCode.BAD_VALUE,
        )
    if priority is not None and (isinstance(priority, bool) or not isinstance(priority, int)):
        raise ApiError("'priority' must be an integer", ErrCode.BAD_VALUE)
    return GenericHookState(name=name, transformation_function=transformation_function, priority=priority)


def find_hook_id(account_data: Mapping[str, str], state_key: str) -> Optional[str]:
    # The account data maps hook_id -> state_key
    return next((hook_id for hook_id, key in account_data.items() if key == state_key), None)


async def ensure_room_account_data(
    store: RoomStore, room_id: str, hook_id: str, state_key: str, remove: bool = False
) -> None:
    """
    Make the room's account data agree with (hook_id, state_key). Writes only on change.

    When adding, any other hook id mapped to the same state key is dropped so
    that a state key resolves to exactly one hook id.
    """
    current = await store.get_room_account_data(room_id, CANONICAL_EVENT_TYPE)
    if remove:
        if current.get(hook_id) != state_key:
            return
        data = {k: v for k, v in current.items() if k != hook_id}
    else:
        data = {k: v for k, v in current.items() if v != state_key}
        data[hook_id] = state_key
        if data == dict(current):
            return
    await store.set_room_account_data(room_id, CANONICAL_EVENT_TYPE, data)
