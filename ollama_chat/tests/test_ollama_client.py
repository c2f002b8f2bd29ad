import json

import httpx
import pytest

from ollama_chat.domain.exceptions import ApiError, NetworkError
from ollama_chat.providers import create_client
from ollama_chat.providers.base import StreamHandle
from ollama_chat.providers.ollama_client import OllamaClient


class SettingsStub:
    ollama_base_url = "http://localhost:11434"
    generate_path = "/api/generate"
    http_timeout = 1.0
    connect_timeout = 1.0


def _line(response, done=False, **extra):
    payload = {"model": "llama3", "created_at": "2024-05-01T10:00:00Z", "response": response, "done": done}
    payload.update(extra)
    return json.dumps(payload)


class FakeResponse:
    def __init__(self, lines=None, status_code=200, text=""):
        self.status_code = status_code
        self._lines = list(lines or [])
        self.text = text
        self.closed = False
        self.read_count = 0

    def iter_lines(self):
        for line in self._lines:
            self.read_count += 1
            yield line

    def read(self):
        return self.text.encode("utf-8")

    def close(self):
        self.closed = True


class StreamContext:
    def __init__(self, response):
        self._response = response

    def __enter__(self):
        return self._response

    def __exit__(self, *args):
        self._response.closed = True
        return False


def _fake_client(response, captured):
    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            captured["url"] = url
            captured["payload"] = json
            captured["headers"] = headers
            return response

        def stream(self, method, url, json=None, headers=None, **_):
            captured["method"] = method
            captured["url"] = url
            captured["payload"] = json
            return StreamContext(response)

    return Client


def test_create_client_returns_ollama_client():
    assert isinstance(create_client(SettingsStub()), OllamaClient)


def test_generate_non_stream(monkeypatch):
    captured = {}
    resp = FakeResponse(text=_line("Greeting", done=True, context=[1]))
    monkeypatch.setattr("httpx.Client", _fake_client(resp, captured))
    client = OllamaClient(SettingsStub())
    req = client.build_request("llama3", "title please", [], stream=False)
    rec = client.generate(req)
    assert rec.response == "Greeting"
    assert captured["url"] == "http://localhost:11434/api/generate"
    assert captured["payload"]["stream"] is False
    assert captured["headers"]["Content-Type"] == "application/json"
    assert captured["client_kwargs"]["trust_env"] is False


def test_generate_stream_yields_records_in_order(monkeypatch):
    captured = {}
    resp = FakeResponse([_line("Hi"), _line(" there"), _line("", done=True, context=[7, 8, 9])])
    monkeypatch.setattr("httpx.Client", _fake_client(resp, captured))
    client = OllamaClient(SettingsStub())
    req = client.build_request("llama3", "Hello", [], stream=True)
    records = list(client.generate_stream(req))
    assert [r.response for r in records] == ["Hi", " there", ""]
    assert records[-1].context == [7, 8, 9]
    assert captured["method"] == "POST"
    assert captured["payload"] == {"model": "llama3", "prompt": "Hello", "context": [], "stream": True}
    assert resp.closed is True


def test_generate_stream_closes_transport_on_early_close(monkeypatch):
    resp = FakeResponse([_line("a"), _line("b"), _line("c")])
    monkeypatch.setattr("httpx.Client", _fake_client(resp, {}))
    client = OllamaClient(SettingsStub())
    stream = client.generate_stream(client.build_request("llama3", "x", [], stream=True))
    assert next(stream).response == "a"
    stream.close()
    assert resp.closed is True
    assert resp.read_count == 1


def test_generate_stream_api_error(monkeypatch):
    resp = FakeResponse(status_code=404, text='{"error":"model not found"}')
    monkeypatch.setattr("httpx.Client", _fake_client(resp, {}))
    client = OllamaClient(SettingsStub())
    with pytest.raises(ApiError) as exc:
        list(client.generate_stream(client.build_request("nope", "x", [], stream=True)))
    assert exc.value.http_status == 404


def test_generate_network_error(monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.Client", Client)
    client = OllamaClient(SettingsStub())
    with pytest.raises(NetworkError) as exc:
        client.generate(client.build_request("llama3", "x", [], stream=False))
    assert exc.value.code == "NETWORK_ERROR"


def test_generate_stream_read_error_mid_stream(monkeypatch):
    class BrokenResponse(FakeResponse):
        def iter_lines(self):
            yield _line("Par")
            raise httpx.ReadError("peer closed connection")

    monkeypatch.setattr("httpx.Client", _fake_client(BrokenResponse(), {}))
    client = OllamaClient(SettingsStub())
    stream = client.generate_stream(client.build_request("llama3", "x", [], stream=True))
    assert next(stream).response == "Par"
    with pytest.raises(NetworkError):
        next(stream)


def test_handle_cancel_closes_open_response(monkeypatch):
    resp = FakeResponse([_line("a"), _line("b"), _line("c")])
    monkeypatch.setattr("httpx.Client", _fake_client(resp, {}))
    client = OllamaClient(SettingsStub())
    handle = StreamHandle()
    stream = client.generate_stream(client.build_request("llama3", "x", [], stream=True), handle=handle)
    assert next(stream).response == "a"

    handle.cancel()

    assert resp.closed is True
    assert handle.cancelled
    stream.close()


def test_handle_cancelled_before_attach_closes_immediately():
    handle = StreamHandle()
    handle.cancel()
    closed = []
    handle.attach(lambda: closed.append(True))
    assert closed == [True]
    handle.cancel()
    assert closed == [True]
