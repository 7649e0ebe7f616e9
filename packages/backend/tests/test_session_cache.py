"""Session cache + durable key/value storage tests.

Learn: The cache never raises on read. Whatever sits in storage under
cv_bank_auth (nothing, garbage, a half-written object) reads back as
either a complete SessionState or Empty.
"""

import json

import pytest

from cvbank.auth.session_cache import AUTH_KEY, DEFAULT_USER_NAME, SessionCache
from cvbank.errors import NotAuthenticatedError
from cvbank.schemas.profile import UserRole
from cvbank.schemas.session import SessionState
from cvbank.storage import FileKeyValueStore, MemoryKeyValueStore


def _state(role=UserRole.USER, **overrides) -> SessionState:
    values = {"token": "tok-1", "user_id": "u-1", "user_name": "Ana", "role": role}
    values.update(overrides)
    return SessionState(**values)


# ═══════════════════════════════════════════════════════════
# Session cache
# ═══════════════════════════════════════════════════════════


def test_empty_cache(cache):
    assert cache.get() is None
    assert cache.is_authenticated() is False
    assert cache.is_admin() is False
    assert cache.user_name() == DEFAULT_USER_NAME
    with pytest.raises(NotAuthenticatedError):
        cache.current_user_id()


def test_set_then_get(cache):
    cache.set(_state())
    state = cache.get()
    assert state == _state()
    assert cache.is_authenticated() is True
    assert cache.is_admin() is False
    assert cache.current_user_id() == "u-1"
    assert cache.user_name() == "Ana"


def test_admin_role(cache):
    cache.set(_state(role=UserRole.ADMIN))
    assert cache.is_admin() is True


def test_set_replaces_whole_value(cache):
    cache.set(_state(role=UserRole.ADMIN))
    cache.set(_state(token="tok-2", user_id="u-2", user_name="Luis"))
    state = cache.get()
    assert (state.token, state.user_id, state.role) == ("tok-2", "u-2", UserRole.USER)


def test_clear(cache):
    cache.set(_state())
    cache.clear()
    assert cache.get() is None
    cache.clear()  # clearing an empty cache is fine


def test_corrupt_value_reads_as_empty():
    storage = MemoryKeyValueStore({AUTH_KEY: "{not json"})
    assert SessionCache(storage).get() is None


@pytest.mark.parametrize(
    "value",
    [
        {"user_id": "u-1", "user_name": "Ana", "role": "user"},
        {"token": "", "user_id": "u-1", "user_name": "Ana", "role": "user"},
        {"token": "t", "user_id": "u-1", "user_name": "Ana", "role": "superuser"},
        ["not", "an", "object"],
    ],
)
def test_partial_value_reads_as_empty(value):
    storage = MemoryKeyValueStore({AUTH_KEY: json.dumps(value)})
    cache = SessionCache(storage)
    assert cache.get() is None
    assert cache.is_authenticated() is False


def test_empty_user_name_falls_back(cache):
    cache.set(_state(user_name=""))
    assert cache.user_name() == DEFAULT_USER_NAME


def test_reader_is_read_only(cache):
    reader = cache.reader()
    assert not hasattr(reader, "set")
    assert not hasattr(reader, "clear")
    cache.set(_state())
    assert reader.current_user_id() == "u-1"
    assert reader.is_authenticated() is True


# ═══════════════════════════════════════════════════════════
# File storage
# ═══════════════════════════════════════════════════════════


def test_file_store_survives_restart(tmp_path):
    SessionCache(FileKeyValueStore(tmp_path)).set(_state())
    # A new store over the same directory = a restarted process
    assert SessionCache(FileKeyValueStore(tmp_path)).get() == _state()


def test_file_store_missing_directory_reads_none(tmp_path):
    store = FileKeyValueStore(tmp_path / "nowhere")
    assert store.read_raw(AUTH_KEY) is None
    store.remove(AUTH_KEY)


def test_file_store_leaves_no_temp_files(tmp_path):
    store = FileKeyValueStore(tmp_path)
    store.write_json("cv_bank_db", {"users": []})
    store.write_json("cv_bank_db", {"users": [1]})
    assert [p.name for p in tmp_path.iterdir()] == ["cv_bank_db.json"]
    assert store.read_json("cv_bank_db") == {"users": [1]}


def test_file_store_rejects_path_like_keys(tmp_path):
    store = FileKeyValueStore(tmp_path)
    with pytest.raises(ValueError):
        store.write_raw("../escape", "x")


def test_file_store_corrupt_json(tmp_path):
    (tmp_path / f"{AUTH_KEY}.json").write_text("\x00garbage", encoding="utf-8")
    assert SessionCache(FileKeyValueStore(tmp_path)).get() is None
