import json
import time
from unittest.mock import MagicMock

from app.core.state_store import TTLStore


def _store(get_value=None):
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [get_value, 1 if get_value else 0]
    return TTLStore("connect:state", 600, client=client), client, pipe


def test_set_uses_setex_with_ttl():
    store, client, _ = _store()

    store.set("abc", {"user_id": 7, "provider": "instagram"})

    key, ttl, raw = client.setex.call_args.args
    assert key == "connect:state:abc"
    assert ttl == 600
    payload = json.loads(raw)
    assert payload["user_id"] == 7
    assert payload["_expires_at"] > time.time()


def test_set_accepts_custom_ttl():
    store, client, _ = _store()

    store.set("abc", {"x": 1}, ttl=30)

    assert client.setex.call_args.args[1] == 30


def test_get_and_delete_consumes_the_value():
    raw = json.dumps({"user_id": 7, "provider": "facebook", "_expires_at": time.time() + 60})
    store, _client, pipe = _store(raw)

    assert store.get_and_delete("abc") == {"user_id": 7, "provider": "facebook"}
    pipe.get.assert_called_once_with("connect:state:abc")
    pipe.delete.assert_called_once_with("connect:state:abc")


def test_get_and_delete_missing_or_stale():
    store, _client, _pipe = _store(None)
    assert store.get_and_delete("nope") is None

    stale = json.dumps({"user_id": 7, "_expires_at": time.time() - 1})
    store, _client, _pipe = _store(stale)
    assert store.get_and_delete("old") is None

    store, _client, _pipe = _store("{not json")
    assert store.get_and_delete("garbled") is None
