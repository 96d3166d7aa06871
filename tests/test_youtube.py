import httpx
import pytest

from livesales.errors import AdapterConnectionError, AdapterError, MalformedPayloadError
from livesales.models import YouTubeCredentials
from livesales.platforms.base import PollDeferred
from livesales.platforms.youtube import (
    QUOTA_WAIT_CAP,
    YouTubeChatAdapter,
    parse_youtube_item,
)


def chat_item(message_id="msg-1", text="how much is the hoodie?", name="alice"):
    return {
        "id": message_id,
        "snippet": {"displayMessage": text, "publishedAt": "2024-05-01T12:00:00Z"},
        "authorDetails": {"displayName": name, "channelId": f"UC-{name}"},
    }


def make_adapter(handler, limiter=None, **credentials) -> YouTubeChatAdapter:
    creds = YouTubeCredentials(api_key="key", **({"live_chat_id": "chat-1"} | credentials))
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return YouTubeChatAdapter(creds, limiter, http=client, backoff_base=0.001, max_retries=2)


def test_parse_youtube_item():
    message = parse_youtube_item(chat_item())

    assert message.message_id == "msg-1"
    assert message.username == "alice"
    assert message.user_id == "UC-alice"
    assert message.text == "how much is the hoodie?"
    assert message.timestamp.year == 2024


def test_parse_youtube_item_requires_id():
    with pytest.raises(MalformedPayloadError):
        parse_youtube_item({"snippet": {"displayMessage": "hi"}})


async def test_fetch_messages_charges_list_cost_and_follows_hints(limiter):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "items": [chat_item(), {"id": "broken"}, chat_item("msg-2", "hi", "bob")],
                "nextPageToken": "page-2",
                "pollingIntervalMillis": 3000,
            },
        )

    adapter = make_adapter(handler, limiter)
    messages = await adapter.fetch_messages()

    assert [m.message_id for m in messages] == ["msg-1", "msg-2"]
    assert adapter.poll_interval == 3.0
    assert limiter.get_youtube_remaining_quota() == 10_000 - 5
    assert requests[0].url.params["liveChatId"] == "chat-1"
    assert "pageToken" not in requests[0].url.params

    await adapter.fetch_messages()
    assert requests[1].url.params["pageToken"] == "page-2"


async def test_fetch_waits_instead_of_polling_when_quota_is_gone(limiter):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"items": []})

    limiter.record_youtube_quota(10_000)
    adapter = make_adapter(handler, limiter)

    with pytest.raises(PollDeferred) as excinfo:
        await adapter.fetch_messages()

    assert calls == []
    assert excinfo.value.retry_after == QUOTA_WAIT_CAP


async def test_failed_list_call_releases_quota(limiter):
    adapter = make_adapter(lambda request: httpx.Response(500), limiter)

    with pytest.raises(AdapterError):
        await adapter.fetch_messages()

    assert limiter.get_youtube_remaining_quota() == 10_000


async def test_resolves_live_chat_id_from_video(limiter):
    def handler(request):
        if request.url.path.endswith("/videos"):
            assert request.url.params["id"] == "vid-1"
            return httpx.Response(
                200, json={"items": [{"liveStreamingDetails": {"activeLiveChatId": "chat-9"}}]}
            )
        assert request.url.params["liveChatId"] == "chat-9"
        return httpx.Response(200, json={"items": []})

    adapter = make_adapter(handler, limiter, live_chat_id="", video_id="vid-1")
    await adapter.fetch_messages()

    assert adapter.live_chat_id == "chat-9"
    assert limiter.get_youtube_remaining_quota() == 10_000 - 1 - 5


async def test_send_posts_reply_without_touching_quota(limiter):
    bodies = []

    def handler(request):
        bodies.append(request)
        return httpx.Response(200, json={"id": "reply-1"})

    adapter = make_adapter(handler, limiter, access_token="oauth")
    result = await adapter.send("alice", "It's $49.99!")

    assert result.success is True
    assert result.cost_units == 50
    assert bodies[0].headers["Authorization"] == "Bearer oauth"
    assert b"@alice It's $49.99!" in bodies[0].content
    # The orchestrator reserves and commits the insert cost
    assert limiter.get_youtube_remaining_quota() == 10_000


async def test_send_reports_api_failure():
    adapter = make_adapter(lambda request: httpx.Response(403, text="forbidden"))

    result = await adapter.send("alice", "hi")

    assert result.success is False
    assert result.permanent is False
    assert "403" in result.error


async def test_listen_gives_up_after_retries():
    adapter = make_adapter(lambda request: httpx.Response(503))

    with pytest.raises(AdapterConnectionError):
        async for _ in adapter.listen():
            pass

    assert adapter.ready.is_set() is False


async def test_listen_yields_and_stops(limiter):
    adapter = make_adapter(lambda request: httpx.Response(200, json={"items": [chat_item()]}))

    async for message in adapter.listen():
        assert adapter.ready.is_set()
        assert message.message_id == "msg-1"
        await adapter.stop()

    assert adapter.stopped is True
    assert adapter.ready.is_set() is False
