"""
Tests for the Planfix REST client (request building, errors, caching).

Run: pytest test_planfix_client.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cache import SqliteCache
from planfix_client import (
    PlanfixAPIError,
    cache_key,
    get_comment_url,
    get_contact_url,
    get_task_url,
    handle_api_response,
    invalidate_cache,
    planfix_request,
)


def _mock_client(json_data=None, status_code=200):
    mock_client = AsyncMock()
    mock_response = MagicMock()
    mock_response.json.return_value = json_data
    mock_response.status_code = status_code
    mock_response.raise_for_status = MagicMock()
    mock_client.get.return_value = mock_response
    mock_client.request.return_value = mock_response
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    return mock_client


def _http_error_response(status_code, body):
    request = httpx.Request("POST", "https://acme.planfix.com/rest/task/")
    return httpx.Response(status_code, json=body, request=request)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_post_sends_json_body():
    with patch("planfix_client.get_client") as mock_get_client:
        mock_client = _mock_client({"id": 42})
        mock_get_client.return_value = mock_client

        result = await planfix_request("task/", {"name": "Lead"})

        assert result == {"id": 42}
        mock_client.request.assert_awaited_once_with("POST", "task/", json={"name": "Lead"})


@pytest.mark.asyncio
async def test_get_sends_query_params_without_none():
    with patch("planfix_client.get_client") as mock_get_client:
        mock_client = _mock_client({"contact": {"id": 1}})
        mock_get_client.return_value = mock_client

        await planfix_request("contact/1", {"fields": "id,name", "sourceId": None}, method="get")

        mock_client.get.assert_awaited_once_with("contact/1", params={"fields": "id,name"})


@pytest.mark.asyncio
async def test_transport_error_becomes_api_error():
    with patch("planfix_client.get_client") as mock_get_client:
        mock_client = _mock_client()
        mock_client.request.side_effect = httpx.ConnectError("connection refused")
        mock_get_client.return_value = mock_client

        with pytest.raises(PlanfixAPIError) as exc_info:
            await planfix_request("task/list", {})
        assert "connection refused" in exc_info.value.message


@pytest.mark.asyncio
async def test_missing_account():
    with patch("planfix_client.PLANFIX_ACCOUNT", ""):
        with pytest.raises(PlanfixAPIError) as exc_info:
            await planfix_request("task/list", {})
    assert exc_info.value.message == "PLANFIX_ACCOUNT is not defined"


@pytest.mark.asyncio
async def test_handle_api_response_uses_error_message():
    response = _http_error_response(400, {"result": "fail", "error": "Wrong filter"})
    with pytest.raises(PlanfixAPIError) as exc_info:
        await handle_api_response(response, "POST task/list")
    assert exc_info.value.message == "Wrong filter"
    assert exc_info.value.status_code == 400
    assert "Wrong filter" in exc_info.value.response_body


@pytest.mark.asyncio
async def test_handle_api_response_without_error_key():
    response = _http_error_response(500, {"result": "fail"})
    with pytest.raises(PlanfixAPIError) as exc_info:
        await handle_api_response(response, "POST task/list")
    assert exc_info.value.message == "Unknown error: 500"


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cache_hit_skips_request():
    provider = MagicMock()
    provider.get.return_value = {"reports": []}
    with patch("planfix_client.get_cache_provider", return_value=provider), \
            patch("planfix_client.get_client") as mock_get_client:
        result = await planfix_request("report/list", {"offset": 0}, cache_time=3600)

        assert result == {"reports": []}
        mock_get_client.assert_not_called()
        provider.get.assert_called_once_with(cache_key("report/list", {"offset": 0}, "POST"))


@pytest.mark.asyncio
async def test_cache_miss_stores_result():
    provider = MagicMock()
    provider.get.return_value = None
    with patch("planfix_client.get_cache_provider", return_value=provider), \
            patch("planfix_client.get_client") as mock_get_client:
        mock_get_client.return_value = _mock_client({"reports": [{"id": 1}]})

        await planfix_request("report/list", {"offset": 0}, cache_time=3600)

        provider.set.assert_called_once_with(
            cache_key("report/list", {"offset": 0}, "POST"), {"reports": [{"id": 1}]}, 3600
        )


@pytest.mark.asyncio
async def test_no_cache_time_bypasses_cache():
    with patch("planfix_client.get_cache_provider") as mock_provider, \
            patch("planfix_client.get_client") as mock_get_client:
        mock_get_client.return_value = _mock_client({"id": 1})
        await planfix_request("task/", {"name": "x"})
        mock_provider.assert_not_called()


def test_cache_key_is_canonical():
    assert cache_key("a", {"x": 1, "y": 2}, "POST") == cache_key("a", {"y": 2, "x": 1}, "POST")
    assert cache_key("a", {"x": 1}, "POST") != cache_key("a", {"x": 1}, "GET")


def test_invalidate_cache_drops_keys_of_one_path(tmp_path):
    store = SqliteCache(str(tmp_path / "cache.sqlite3"))
    store.set(cache_key("directory/5/entry/list", {"offset": 0}, "POST"), [1])
    store.set(cache_key("directory/5/entry/list", {"offset": 100}, "POST"), [2])
    store.set(cache_key("directory/5/entry/list2", {"offset": 0}, "POST"), [3])
    store.set(cache_key("directory/5", None, "GET"), [4])
    with patch("planfix_client.get_cache_provider", return_value=store):
        invalidate_cache("directory/5/entry/list")
    assert store.get(cache_key("directory/5/entry/list", {"offset": 0}, "POST")) is None
    assert store.get(cache_key("directory/5/entry/list", {"offset": 100}, "POST")) is None
    assert store.get(cache_key("directory/5/entry/list2", {"offset": 0}, "POST")) == [3]
    assert store.get(cache_key("directory/5", None, "GET")) == [4]
    store.close()


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

def test_urls():
    with patch("planfix_client.PLANFIX_ACCOUNT", "acme"):
        assert get_task_url(5) == "https://acme.planfix.com/task/5"
        assert get_task_url(0) == ""
        assert get_contact_url(7) == "https://acme.planfix.com/contact/7"
        assert get_comment_url(5, 9) == "https://acme.planfix.com/task/5?comment=9"
        assert get_comment_url(5, None) == ""
