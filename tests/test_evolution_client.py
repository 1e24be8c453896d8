"""
Unit tests for EvolutionClient.
"""

import json

import httpx
import pytest

from core.whatsapp.client import EvolutionClient


class RecordingTransport:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"key": {"id": "msg-1"}}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


def make_client(handler):
    return EvolutionClient(
        base_url="https://evolution.test/",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.mark.asyncio
async def test_send_text_posts_to_instance_endpoint(transport):
    async with make_client(transport) as client:
        result = await client.send_text("admin", "secret", "5491100000000", "hi")

    assert result == {"key": {"id": "msg-1"}}
    assert len(transport.requests) == 1
    request = transport.requests[0]
    assert request.method == "POST"
    assert request.url == "https://evolution.test/message/sendText/admin"
    assert request.headers["apikey"] == "secret"
    assert json.loads(request.content) == {"number": "5491100000000", "text": "hi"}


@pytest.mark.asyncio
async def test_send_text_raises_on_http_error():
    transport = RecordingTransport(status_code=500, body={"error": "down"})

    async with make_client(transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.send_text("admin", "secret", "549", "hi")

    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_send_text_raises_on_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(httpx.ConnectError):
            await client.send_text("admin", "secret", "549", "hi")


def test_base_url_is_normalized():
    client = make_client(RecordingTransport())
    assert client.base_url == "https://evolution.test"
