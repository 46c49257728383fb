"""HttpClient retry and back-off against a mocked aiohttp session."""

from unittest.mock import AsyncMock, MagicMock, Mock

import aiohttp
import pytest

from core.infra.http import HttpClient


def _response(status, payload=None, headers=None):
    resp = MagicMock(status=status, headers=headers or {}, history=())
    resp.json = AsyncMock(return_value=payload)
    if status >= 400:
        resp.raise_for_status.side_effect = aiohttp.ClientResponseError(
            resp.request_info, (), status=status, message="error",
        )
    return resp


def _client(*responses, max_retries=3):
    session = Mock()
    session.request = AsyncMock(side_effect=list(responses))
    return HttpClient(session=session, max_retries=max_retries, base_delay=0), session


async def test_server_error_is_retried():
    http, session = _client(_response(503), _response(200, {"entries": []}))

    assert await http.get_json("https://devdocs.io/docs/git/index.json") == {"entries": []}
    assert session.request.await_count == 2
    _, kwargs = session.request.call_args
    assert kwargs["headers"]["Accept"] == "application/json"
    assert kwargs["headers"]["User-Agent"].startswith("LearningPlatform")


async def test_rate_limit_honours_retry_after():
    limited = _response(429, headers={"Retry-After": "0"})
    http, session = _client(limited, _response(200, [1, 2]))

    assert await http.get_json("https://hacker-news.firebaseio.com/v0/topstories.json") == [1, 2]
    limited.release.assert_called_once()


async def test_not_found_fails_without_retry():
    http, session = _client(_response(404), _response(200, {}))

    with pytest.raises(aiohttp.ClientResponseError) as err:
        await http.get_json("https://developer.mozilla.org/en-US/docs/Web/HTTP/index.json")

    assert err.value.status == 404
    assert session.request.await_count == 1


async def test_dropped_connection_is_retried():
    http, session = _client(aiohttp.ClientConnectionError("reset"), _response(200, {"ok": True}))

    assert await http.get_json("https://www.reddit.com/r/webdev/hot.json") == {"ok": True}
    assert session.request.await_count == 2


async def test_gives_up_after_max_retries():
    http, session = _client(_response(502), _response(502), max_retries=2)

    with pytest.raises(aiohttp.ClientResponseError) as err:
        await http.post_json("https://hooks.example/report", {"content": "daily"})

    assert err.value.status == 502
    assert session.request.await_count == 2


@pytest.mark.parametrize("header, seconds", [
    ("120", 120.0),
    (None, None),
    ("soon", None),
    ("Wed, 21 Oct 2015 07:28:00 GMT", 0.0),
])
def test_parse_retry_after(header, seconds):
    assert HttpClient._parse_retry_after(header) == seconds
