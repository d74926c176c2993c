"""
Tests for directory lookups and entry resolution.

Run: pytest test_planfix_directory.py -v
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from cache import SqliteCache
from planfix_client import PlanfixAPIError, cache_key
from planfix_directory import (
    create_directory_entry,
    find_directory_entry,
    get_directory_fields,
    get_or_create_directory_entry,
    search_all_entries,
    search_directory,
    search_entry_by_exact_name,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

MOCK_DIRECTORIES = {"directories": [{"id": 10, "name": "Lead sources"}, {"id": 11, "name": "Tags"}]}
MOCK_DIRECTORY = {"directory": {"id": 10, "name": "Lead sources", "fields": [{"id": 501, "name": "Name"}]}}
MOCK_ENTRIES = {"directoryEntries": [
    {"key": 1, "customFieldData": [{"field": {"id": 501}, "value": "Website"}]},
    {"key": 2, "customFieldData": [{"field": {"id": 501}, "value": " Referral "}]},
]}


def _fake_api(entries=MOCK_ENTRIES, created=None):
    async def fake_request(path, body=None, method="POST", cache_time=0):
        if path == "directory/list":
            return MOCK_DIRECTORIES
        if path == "directory/10" and method == "GET":
            return MOCK_DIRECTORY
        if path == "directory/10/entry/list":
            return entries
        if path == "directory/10/entry/":
            return created or {"key": 99}
        raise AssertionError(f"unexpected request {method} {path}")
    return AsyncMock(side_effect=fake_request)


@pytest.fixture(autouse=True)
def request_cache(tmp_path):
    store = SqliteCache(str(tmp_path / "cache.sqlite3"))
    with patch("planfix_client.get_cache_provider", return_value=store):
        yield store
    store.close()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_directory():
    with patch("planfix_directory.planfix_request", _fake_api()) as mock_request:
        assert await search_directory("Tags") == {"id": 11, "name": "Tags"}
        assert await search_directory("Nope") is None
        assert mock_request.call_args.kwargs["cache_time"] == 3600


@pytest.mark.asyncio
async def test_get_directory_fields():
    with patch("planfix_directory.planfix_request", _fake_api()):
        assert await get_directory_fields(10) == [{"id": 501, "name": "Name"}]


@pytest.mark.asyncio
async def test_search_entry_by_exact_name():
    with patch("planfix_directory.planfix_request", _fake_api()) as mock_request:
        assert await search_entry_by_exact_name(10, 501, "Website") == 1
        assert await search_entry_by_exact_name(10, 501, "website") is None
        body = mock_request.call_args.args[1]
        assert body["fields"] == "directory,parentKey,name,key,501"
        assert body["entriesOnly"] is True


@pytest.mark.asyncio
async def test_search_all_entries_pages():
    first_page = {"directoryEntries": [{"key": i} for i in range(100)]}
    second_page = {"directoryEntries": [{"key": 100}]}
    mock_request = AsyncMock(side_effect=[first_page, second_page])
    with patch("planfix_directory.planfix_request", mock_request):
        entries = await search_all_entries(10)
    assert len(entries) == 101
    assert mock_request.call_args_list[1].args[1]["offset"] == 100


@pytest.mark.asyncio
async def test_lookup_failures_are_not_found():
    mock_request = AsyncMock(side_effect=PlanfixAPIError("boom", status_code=500))
    with patch("planfix_directory.planfix_request", mock_request):
        assert await search_directory("Tags") is None
        assert await get_directory_fields(10) is None
        assert await search_entry_by_exact_name(10, 501, "Website") is None
        assert await search_all_entries(10) == []
        assert await create_directory_entry(10, 501, "New") is None


# ---------------------------------------------------------------------------
# Resolution policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_find_entry_exact_match():
    with patch("planfix_directory.planfix_request", _fake_api()):
        assert await find_directory_entry(10, "Website") == 1


@pytest.mark.asyncio
async def test_find_entry_case_insensitive_fallback():
    with patch("planfix_directory.planfix_request", _fake_api()):
        assert await find_directory_entry(10, "referral") == 2
        assert await find_directory_entry(10, "Unknown") is None


@pytest.mark.asyncio
async def test_get_or_create_creates_missing_entry():
    with patch("planfix_directory.planfix_request", _fake_api()) as mock_request:
        assert await get_or_create_directory_entry(10, "Podcast") == 99
        create_call = mock_request.call_args
        assert create_call.args[0] == "directory/10/entry/"
        assert create_call.args[1] == {"customFieldData": [{"field": {"id": 501}, "value": "Podcast"}]}


@pytest.mark.asyncio
async def test_create_entry_key_from_nested_entry():
    with patch("planfix_directory.planfix_request", _fake_api(created={"result": "success", "entry": {"key": 77}})):
        assert await create_directory_entry(10, 501, "Podcast") == 77


@pytest.mark.asyncio
async def test_get_or_create_existing_entry_does_not_create():
    with patch("planfix_directory.planfix_request", _fake_api()) as mock_request:
        assert await get_or_create_directory_entry(10, "Website") == 1
        assert all(c.args[0] != "directory/10/entry/" for c in mock_request.call_args_list)


# ---------------------------------------------------------------------------
# Cached listings
# ---------------------------------------------------------------------------

def _planfix_transport(entries):
    """Planfix directory 7 backed by `entries`; creating an entry appends to it."""
    def handler(request):
        path = request.url.path
        if path.endswith("/directory/7"):
            return httpx.Response(200, json={"directory": {"id": 7, "fields": [{"id": 501, "name": "Name"}]}})
        if path.endswith("/directory/7/entry/list"):
            return httpx.Response(200, json={"directoryEntries": list(entries)})
        if path.endswith("/directory/7/entry/"):
            name = json.loads(request.content)["customFieldData"][0]["value"]
            key = 100 + len(entries)
            entries.append({"key": key, "customFieldData": [{"field": {"id": 501}, "value": name}]})
            return httpx.Response(200, json={"result": "success", "key": key})
        return httpx.Response(404, json={"error": f"unexpected {request.method} {path}"})
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_created_entry_is_found_despite_cached_listing():
    entries = []
    transport = _planfix_transport(entries)

    def client():
        return httpx.AsyncClient(base_url="https://acme.planfix.com/rest/", transport=transport)

    with patch("planfix_client.get_client", side_effect=client):
        first = await get_or_create_directory_entry(7, "vip")
        second = await get_or_create_directory_entry(7, "vip")

    assert first == second == 100
    assert len(entries) == 1


@pytest.mark.asyncio
async def test_create_entry_drops_only_its_directory_listings(request_cache):
    request_cache.set(cache_key("directory/10/entry/list", {"offset": 0}, "POST"), {"directoryEntries": []})
    request_cache.set(cache_key("directory/11/entry/list", {"offset": 0}, "POST"), {"directoryEntries": []})
    request_cache.set(cache_key("directory/10", {"fields": "id,name,fields"}, "GET"), MOCK_DIRECTORY)

    with patch("planfix_directory.planfix_request", _fake_api()):
        assert await create_directory_entry(10, 501, "Podcast") == 99

    assert request_cache.get(cache_key("directory/10/entry/list", {"offset": 0}, "POST")) is None
    assert request_cache.get(cache_key("directory/11/entry/list", {"offset": 0}, "POST")) == {"directoryEntries": []}
    assert request_cache.get(cache_key("directory/10", {"fields": "id,name,fields"}, "GET")) == MOCK_DIRECTORY
