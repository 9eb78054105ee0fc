from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from conftest import FakeClock, FakeLine, user_id
from linedesk.services.line_service import LineService, ProfileDirectory, text_messages
from linedesk.services.replies import DEFAULT_DISPLAY_NAME


def mock_client(response=None, error=None):
    client = MagicMock()
    if error is not None:
        client.request = AsyncMock(side_effect=error)
    else:
        client.request = AsyncMock(return_value=response)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


def http_response(status_code=200, body=None):
    request = httpx.Request("POST", "https://api.line.me/v2/bot/message/push")
    if body is None:
        return httpx.Response(status_code, content=b"{}", request=request)
    return httpx.Response(status_code, json=body, request=request)


class TestTextMessages:
    def test_caps_at_five_and_skips_empty(self):
        messages = text_messages(["a", "", "b", "c", "d", "e", "f"])
        assert [m["text"] for m in messages] == ["a", "b", "c", "d", "e"]
        assert all(m["type"] == "text" for m in messages)


class TestLineService:
    @pytest.mark.asyncio
    async def test_reply_posts_reply_token(self):
        client = mock_client(http_response())
        with patch("linedesk.services.line_service.httpx.AsyncClient", return_value=client):
            result = await LineService("token").reply("rt-1", ["hello"])

        assert result["ok"] is True
        method, url = client.request.call_args.args
        assert method == "POST"
        assert url == "https://api.line.me/v2/bot/message/reply"
        payload = client.request.call_args.kwargs["json"]
        assert payload == {"replyToken": "rt-1", "messages": [{"type": "text", "text": "hello"}]}
        assert client.request.call_args.kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_reply_without_token_is_skipped(self):
        with patch("linedesk.services.line_service.httpx.AsyncClient") as client_cls:
            result = await LineService("token").reply("", ["hello"])
        assert result["ok"] is False
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_validates_target(self):
        with patch("linedesk.services.line_service.httpx.AsyncClient") as client_cls:
            result = await LineService("token").push("not-a-user", ["hello"])
        assert result == {"ok": False, "status": 0, "error": "bad_to"}
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_sends_to_user(self):
        client = mock_client(http_response())
        with patch("linedesk.services.line_service.httpx.AsyncClient", return_value=client):
            result = await LineService("token").push(user_id(1), ["通關"])

        assert result["ok"] is True
        assert client.request.call_args.args[1] == "https://api.line.me/v2/bot/message/push"
        assert client.request.call_args.kwargs["json"]["to"] == user_id(1)

    @pytest.mark.asyncio
    async def test_non_200_is_returned_not_raised(self):
        client = mock_client(http_response(400, {"message": "Invalid reply token"}))
        with patch("linedesk.services.line_service.httpx.AsyncClient", return_value=client):
            result = await LineService("token").reply("rt-1", ["hello"])
        assert result["ok"] is False
        assert result["status"] == 400

    @pytest.mark.asyncio
    async def test_network_error_is_returned_not_raised(self):
        client = mock_client(error=httpx.ConnectError("down"))
        with patch("linedesk.services.line_service.httpx.AsyncClient", return_value=client):
            result = await LineService("token").push(user_id(1), ["hello"])
        assert result["ok"] is False
        assert result["status"] == 0

    @pytest.mark.asyncio
    async def test_get_profile(self):
        client = mock_client(http_response(200, {"displayName": "小明", "userId": user_id(1)}))
        with patch("linedesk.services.line_service.httpx.AsyncClient", return_value=client):
            profile = await LineService("token").get_profile(user_id(1))
        assert profile["displayName"] == "小明"
        assert client.request.call_args.args == ("GET", f"https://api.line.me/v2/bot/profile/{user_id(1)}")


class TestProfileDirectory:
    @pytest.mark.asyncio
    async def test_caches_display_name(self):
        line = FakeLine()
        line.get_profile = AsyncMock(return_value={"displayName": "小明"})
        profiles = ProfileDirectory(line, ttl_seconds=3600, clock=FakeClock())

        assert await profiles.display_name(user_id(1)) == "小明"
        assert await profiles.display_name(user_id(1)) == "小明"
        assert line.get_profile.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self):
        line = FakeLine()
        line.get_profile = AsyncMock(return_value={"displayName": "小明"})
        clock = FakeClock()
        profiles = ProfileDirectory(line, ttl_seconds=3600, clock=clock)

        await profiles.display_name(user_id(1))
        clock.advance(3601)
        profiles.prune()
        await profiles.display_name(user_id(1))
        assert line.get_profile.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_placeholder(self):
        profiles = ProfileDirectory(FakeLine(), clock=FakeClock())
        assert await profiles.display_name(user_id(2)) == DEFAULT_DISPLAY_NAME
