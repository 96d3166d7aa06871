import hashlib
import hmac
import json

import httpx
import pytest

from livesales.errors import AdapterError, MalformedPayloadError
from livesales.models import TikTokCredentials
from livesales.platforms.tiktok import (
    TikTokLiveAdapter,
    parse_webhook_payload,
    verify_webhook_signature,
)


def comment(comment_id="c-1", text="link for the hoodie?", nickname="carol"):
    return {
        "comment_id": comment_id,
        "text": text,
        "create_time": 1714564800,
        "user": {"nickname": nickname, "user_id": f"u-{nickname}"},
    }


def make_adapter(handler=None, **kwargs) -> TikTokLiveAdapter:
    credentials = TikTokCredentials(access_token="token", live_room_id="room-7", app_secret="shh")
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler or (lambda request: httpx.Response(500)))
    )
    return TikTokLiveAdapter(credentials, http=client, **kwargs)


def test_parse_comment_webhook():
    message = parse_webhook_payload({"event_type": "live.comment", "data": comment()})

    assert message.message_id == "c-1"
    assert message.username == "carol"
    assert message.user_id == "u-carol"
    assert message.timestamp.year == 2024


def test_other_webhook_events_are_ignored():
    assert parse_webhook_payload({"event_type": "live.gift", "data": {}}) is None


def test_comment_webhook_without_data_is_malformed():
    with pytest.raises(MalformedPayloadError):
        parse_webhook_payload({"event_type": "live.comment"})


def test_verify_webhook_signature():
    body = json.dumps({"event_type": "live.comment"}).encode()
    signature = hmac.new(b"shh", body, hashlib.sha256).hexdigest()

    assert verify_webhook_signature(body, signature, "shh") is True
    assert verify_webhook_signature(body, signature.upper(), "shh") is True
    assert verify_webhook_signature(body, signature, "wrong") is False
    assert verify_webhook_signature(body + b" ", signature, "shh") is False


def test_adapter_signature_check_needs_secret():
    credentials = TikTokCredentials(access_token="token", live_room_id="room-7")
    adapter = TikTokLiveAdapter(credentials)

    assert adapter.verify_signature(b"{}", "00") is False


async def test_fetch_comments_uses_cursor():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "data": {
                    "error_code": 0,
                    "cursor": "next-1",
                    "comments": [comment(), {"text": "no id"}, comment("c-2", "wow", "dave")],
                }
            },
        )

    adapter = make_adapter(handler)
    messages = await adapter.fetch_messages()
    await adapter.fetch_messages()

    assert [m.message_id for m in messages] == ["c-1", "c-2"]
    assert requests[0].url.params["room_id"] == "room-7"
    assert requests[0].url.params["cursor"] == "0"
    assert requests[1].url.params["cursor"] == "next-1"
    assert requests[0].headers["Authorization"] == "Bearer token"

    adapter.reset_cursor()
    await adapter.fetch_messages()
    assert requests[2].url.params["cursor"] == "0"


async def test_api_error_code_raises():
    adapter = make_adapter(
        lambda request: httpx.Response(
            200, json={"data": {"error_code": 40001, "description": "room closed"}}
        )
    )

    with pytest.raises(AdapterError, match="room closed"):
        await adapter.fetch_messages()


async def test_webhook_comments_join_the_stream():
    adapter = make_adapter(poll_api=False)

    assert adapter.push_webhook_payload({"event_type": "live.comment", "data": comment()})
    assert not adapter.push_webhook_payload({"event_type": "live.like", "data": {}})
    assert not adapter.push_webhook_payload({"event_type": "live.comment", "data": "junk"})

    messages = await adapter.fetch_messages()

    assert [m.message_id for m in messages] == ["c-1"]
    assert await adapter.fetch_messages() == []


async def test_send_is_permanently_unsupported():
    adapter = make_adapter()

    result = await adapter.send("carol", "thanks!")

    assert adapter.supports_send is False
    assert result.success is False
    assert result.permanent is True
    assert result.cost_units == 0
