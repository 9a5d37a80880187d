"""Tests for the completion stream parser and client."""

import json

import httpx
import pytest

from console_core.completion import CompletionClient, StreamRecord, parse_stream_record
from console_core.errors import MalformedStreamFragment, TransportError

from .fakes import ai_config

PROMPT = [{"role": "user", "content": "hello"}]


def _record(content) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


class TestParser:
    def test_content_delta(self):
        assert parse_stream_record(_record("Hi")) == StreamRecord(text="Hi")

    def test_done_marker(self):
        assert parse_stream_record("data: [DONE]") == StreamRecord(done=True)

    def test_done_text_inside_json_is_content(self):
        assert parse_stream_record(_record("[DONE]")) == StreamRecord(text="[DONE]")

    @pytest.mark.parametrize("line", [
        "",
        ": keep-alive",
        "event: message",
        "data:",
        'data: {"choices":[{"delta":{"role":"assistant"}}]}',
        'data: {"choices":[{"delta":{"content":""}}]}',
        'data: {"choices":[{"finish_reason":"stop"}]}',
    ])
    def test_records_without_text(self, line):
        assert parse_stream_record(line) == StreamRecord()

    @pytest.mark.parametrize("line", [
        "data: not json",
        'data: {"choices":[]}',
        'data: {"id":"x"}',
        'data: {"choices":[{"delta":"text"}]}',
    ])
    def test_malformed_records(self, line):
        with pytest.raises(MalformedStreamFragment):
            parse_stream_record(line)


@pytest.fixture
async def make_client(metrics):
    clients = []

    async def factory(handler):
        client = CompletionClient(metrics=metrics, transport=httpx.MockTransport(handler))
        await client.open()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()


async def _collect(client, config=None):
    return [delta async for delta in client.stream(config or ai_config(), PROMPT)]


async def test_stream_yields_deltas_until_done(make_client, metrics):
    body = "\n\n".join([
        'data: {"choices":[{"delta":{"role":"assistant"}}]}',
        _record("Hel"),
        ": keep-alive",
        "data: not json",
        _record("lo"),
        "data: [DONE]",
        _record("after the end"),
    ]) + "\n\n"
    client = await make_client(lambda request: httpx.Response(200, text=body))

    assert await _collect(client) == ["Hel", "lo"]
    assert metrics.get("stream_fragments_skipped_total") == 1
    assert metrics.get("stream_deltas_total") == 2


async def test_stream_without_done_ends_with_body(make_client):
    body = _record("one") + "\n\n" + _record("two") + "\n\n"
    client = await make_client(lambda request: httpx.Response(200, text=body))
    assert await _collect(client) == ["one", "two"]


async def test_record_split_across_chunks(make_client):
    async def chunks():
        yield b'data: {"choices":[{"del'
        yield b'ta":{"content":"Hi"}}]}\r\n\r\ndata: {"choices":[{"delta":{"content":" the'
        yield b're"}}]}\n\ndata: [DO'
        yield b"NE]\n\n"

    client = await make_client(lambda request: httpx.Response(200, content=chunks()))
    assert await _collect(client) == ["Hi", " there"]


async def test_request_shape(make_client):
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text="data: [DONE]\n\n")

    client = await make_client(handler)
    await _collect(client, ai_config(max_output_tokens=256))

    assert seen["url"] == "https://ai.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {
        "model": "test-model",
        "messages": PROMPT,
        "max_tokens": 256,
        "stream": True,
    }


async def test_error_status_raises_transport_error(make_client):
    client = await make_client(lambda request: httpx.Response(500, text="upstream down"))

    with pytest.raises(TransportError) as exc_info:
        await _collect(client)

    assert exc_info.value.message == "API request failed: 500 Internal Server Error"
    assert exc_info.value.details == {"status": 500}
    assert exc_info.value.retryable


async def test_connection_failure_raises_transport_error(make_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = await make_client(handler)
    with pytest.raises(TransportError):
        await _collect(client)
