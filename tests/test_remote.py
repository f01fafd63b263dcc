import asyncio
import json

import httpx
import pytest

from lyricflow.exceptions import RemoteError
from lyricflow.remote import RemoteApi


def _api(handler) -> RemoteApi:
    return RemoteApi("http://testserver/api", transport=httpx.MockTransport(handler))


def _call(api, *args, **kwargs):
    return asyncio.run(api.request(*args, **kwargs))


def test_returns_decoded_json():
    api = _api(lambda request: httpx.Response(200, json={"ok": True}))
    assert _call(api, "GET", "/health") == {"ok": True}


def test_paths_are_joined_to_base_url():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json=[])

    _call(_api(handler), "GET", "/public/songs", params={"sort": "top"})
    assert seen == ["http://testserver/api/public/songs?sort=top"]


def test_bearer_token_attached():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return httpx.Response(200, json={})

    _call(_api(handler), "GET", "/songs/u1", token="abc")
    _call(_api(handler), "GET", "/songs/u1")
    assert seen == ["Bearer abc", None]


def test_json_body_sent():
    seen = []

    def handler(request):
        seen.append(request.content)
        return httpx.Response(201, json={})

    _call(_api(handler), "POST", "/songs", json={"title": "x"})
    assert [json.loads(body) for body in seen] == [{"title": "x"}]


def test_empty_body_returns_none():
    assert _call(_api(lambda request: httpx.Response(200)), "DELETE", "/songs/1") is None


def test_error_message_surfaced():
    api = _api(lambda request: httpx.Response(401, json={"message": "Invalid credentials"}))
    with pytest.raises(RemoteError) as exc_info:
        _call(api, "POST", "/login", json={})
    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "Invalid credentials"
    assert not exc_info.value.is_transport_error


def test_error_without_message_is_generic():
    api = _api(lambda request: httpx.Response(500, text="<html>oops</html>"))
    with pytest.raises(RemoteError) as exc_info:
        _call(api, "GET", "/songs/u1")
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Request failed"


def test_malformed_success_body_is_an_error():
    api = _api(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(RemoteError, match="Malformed"):
        _call(api, "GET", "/songs/u1")


def test_connection_failure_has_status_zero():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with pytest.raises(RemoteError) as exc_info:
        _call(_api(handler), "GET", "/health")
    assert exc_info.value.status_code == 0
    assert exc_info.value.is_transport_error
