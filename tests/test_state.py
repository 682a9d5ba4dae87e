"""Tests for connection config validation and account data reconciliation."""

import pytest

from generichook.errors import ApiError, ErrCode
from generichook.state import (
    CANONICAL_EVENT_TYPE,
    GenericHookState,
    ensure_room_account_data,
    find_hook_id,
    validate_state,
)
from tests.conftest import ROOM_ID


def test_name_bounds():
    with pytest.raises(ApiError) as exc:
        validate_state({"name": "ab"})
    assert exc.value.errcode == ErrCode.BAD_VALUE
    assert exc.value.status == 400
    assert validate_state({"name": "abc"}) == GenericHookState(name="abc")
    assert validate_state({"name": "x" * 64}).name == "x" * 64
    with pytest.raises(ApiError):
        validate_state({"name": "x" * 65})


@pytest.mark.parametrize("raw", [{}, {"name": ""}, {"name": None}, {"name": 12345}])
def test_missing_or_bad_name(raw):
    with pytest.raises(ApiError) as exc:
        validate_state(raw)
    assert exc.value.errcode == ErrCode.BAD_VALUE


def test_transformation_function_policy():
    raw = {"name": "okay", "transformationFunction": "{% set result = 'x' %}"}
    with pytest.raises(ApiError) as exc:
        validate_state(raw, False)
    assert exc.value.errcode == ErrCode.DISABLED_FEATURE
    assert validate_state(raw, True).transformation_function == raw["transformationFunction"]
    # Configs read back from the room are not subject to the policy
    assert validate_state(raw).transformation_function == raw["transformationFunction"]


def test_transformation_function_must_be_string():
    with pytest.raises(ApiError) as exc:
        validate_state({"name": "okay", "transformationFunction": ["nope"]}, True)
    assert exc.value.errcode == ErrCode.BAD_VALUE


def test_empty_transformation_function_is_ignored():
    assert validate_state({"name": "okay", "transformationFunction": ""}, False).transformation_function is None


def test_priority():
    assert validate_state({"name": "okay", "priority": 5}).priority == 5
    with pytest.raises(ApiError):
        validate_state({"name": "okay", "priority": "high"})
    with pytest.raises(ApiError):
        validate_state({"name": "okay", "priority": True})


def test_serialize_drops_empty_fields():
    assert GenericHookState(name="okay").serialize() == {"name": "okay"}
    assert GenericHookState(name="okay", transformation_function="s", priority=2).serialize() == {
        "name": "okay", "transformationFunction": "s", "priority": 2,
    }


def test_find_hook_id():
    assert find_hook_id({"h1": "a", "h2": "b"}, "b") == "h2"
    assert find_hook_id({"h1": "a"}, "b") is None


@pytest.mark.asyncio
async def test_ensure_room_account_data_is_idempotent(store):
    await ensure_room_account_data(store, ROOM_ID, "h1", "hook")
    await ensure_room_account_data(store, ROOM_ID, "h1", "hook")
    assert store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)] == {"h1": "hook"}
    assert len(store.writes) == 1


@pytest.mark.asyncio
async def test_ensure_room_account_data_remove(store):
    store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)] = {"h1": "hook", "h2": "other"}
    await ensure_room_account_data(store, ROOM_ID, "h1", "wrong-key", remove=True)
    assert store.writes == []
    await ensure_room_account_data(store, ROOM_ID, "h1", "hook", remove=True)
    assert store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)] == {"h2": "other"}
    assert len(store.writes) == 1


@pytest.mark.asyncio
async def test_ensure_room_account_data_drops_stale_hook_ids(store):
    store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)] = {"old": "hook", "other": "elsewhere"}
    await ensure_room_account_data(store, ROOM_ID, "new", "hook")
    assert store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)] == {"other": "elsewhere", "new": "hook"}
    assert find_hook_id(store.account_data[(ROOM_ID, CANONICAL_EVENT_TYPE)], "hook") == "new"
