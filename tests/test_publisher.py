import json

import httpx
import pytest

from errors import PublishBlockedError, PublishError
from publisher import PostingClient
from schemas import ModerationDecision

ALLOWED = ModerationDecision(is_allowed=True, confidence_score=0.01)
BLOCKED = ModerationDecision(is_allowed=False, flagged_categories=("harassment",), confidence_score=0.14)


def posting_client(handler, token="test-token") -> PostingClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PostingClient(base_url="https://posts.example/", token=token, http_client=http_client)


@pytest.mark.asyncio
async def test_publish_success() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "1780", "text": "Hello"}})

    post_id = await posting_client(handler).publish("Hello", ALLOWED)

    assert post_id == "1780"
    assert seen == {"url": "https://posts.example/2/tweets", "auth": "Bearer test-token", "body": {"text": "Hello"}}


@pytest.mark.asyncio
async def test_blocked_decision_never_reaches_posting_service() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"data": {"id": "1"}})

    with pytest.raises(PublishBlockedError) as exc_info:
        await posting_client(handler).publish("I hate everyone", BLOCKED)

    assert calls == []
    assert str(exc_info.value) == "Content flagged for: Harassment. Please revise your post."


@pytest.mark.asyncio
async def test_fail_closed_decision_is_blocked() -> None:
    handler_calls = []
    client = posting_client(lambda request: handler_calls.append(request) or httpx.Response(201))

    with pytest.raises(PublishBlockedError):
        await client.publish("Any text", ModerationDecision.fail_closed("timed out"))

    assert handler_calls == []


@pytest.mark.asyncio
async def test_missing_token() -> None:
    client = posting_client(lambda request: httpx.Response(201), token=None)

    assert client.configured is False
    with pytest.raises(PublishError) as exc_info:
        await client.publish("Hello", ALLOWED)

    assert exc_info.value.transient is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status, transient", [(503, True), (500, True), (429, True), (400, False), (403, False)])
async def test_http_errors(status, transient) -> None:
    client = posting_client(lambda request: httpx.Response(status, json={"title": "error"}))

    with pytest.raises(PublishError) as exc_info:
        await client.publish("Hello", ALLOWED)

    assert exc_info.value.transient is transient
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(PublishError) as exc_info:
        await posting_client(handler).publish("Hello", ALLOWED)

    assert exc_info.value.transient is True


@pytest.mark.asyncio
async def test_unexpected_body() -> None:
    client = posting_client(lambda request: httpx.Response(201, json={"errors": []}))

    with pytest.raises(PublishError) as exc_info:
        await client.publish("Hello", ALLOWED)

    assert exc_info.value.transient is False
