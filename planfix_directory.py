"""
Planfix directories (handbooks): lookup by name and entry resolution.

Lookups are best effort. Any PlanfixAPIError is logged and turned into None / [],
so callers decide what "not found" means (usually: create the entry).
"""

import logging
from typing import Any, Dict, List, Optional

from planfix_client import PlanfixAPIError, invalidate_cache, planfix_request

logger = logging.getLogger("planfix-mcp.directory")

DIRECTORY_CACHE_TIME = 3600
PAGE_SIZE = 100


async def search_directory(name: str) -> Optional[Dict[str, Any]]:
    """Directory {id, name} with exactly this name, or None."""
    try:
        result = await planfix_request(
            "directory/list",
            {"offset": 0, "pageSize": PAGE_SIZE, "fields": "id,name"},
            cache_time=DIRECTORY_CACHE_TIME,
        )
    except PlanfixAPIError as e:
        logger.error("Failed to list directories: %s", e.message)
        return None
    for directory in result.get("directories") or []:
        if directory.get("name") == name:
            return directory
    return None


async def get_directory_fields(directory_id: int) -> Optional[List[Dict[str, Any]]]:
    """Fields of a directory; the first one holds the entry name."""
    try:
        result = await planfix_request(
            f"directory/{directory_id}",
            {"fields": "id,name,fields"},
            method="GET",
            cache_time=DIRECTORY_CACHE_TIME,
        )
    except PlanfixAPIError as e:
        logger.error("Failed to get fields of directory %s: %s", directory_id, e.message)
        return None
    return (result.get("directory") or {}).get("fields")


def _entry_name(entry: Dict[str, Any], field_id: Optional[int] = None) -> Optional[str]:
    for data in entry.get("customFieldData") or []:
        field = data.get("field") or {}
        if field_id is None or field.get("id") == field_id:
            value = data.get("value")
            return None if value is None else str(value)
    return entry.get("name")


async def search_entry_by_exact_name(directory_id: int, field_id: int, entry_name: str) -> Optional[int]:
    """Key of the entry whose name field equals entry_name exactly."""
    try:
        result = await planfix_request(
            f"directory/{directory_id}/entry/list",
            {
                "offset": 0,
                "pageSize": PAGE_SIZE,
                "fields": f"directory,parentKey,name,key,{field_id}",
                "entriesOnly": True,
            },
            cache_time=DIRECTORY_CACHE_TIME,
        )
    except PlanfixAPIError as e:
        logger.error("Failed to search entry %r in directory %s: %s", entry_name, directory_id, e.message)
        return None
    for entry in result.get("directoryEntries") or []:
        if _entry_name(entry, field_id) == entry_name:
            return entry.get("key")
    return None


async def search_all_entries(directory_id: int) -> List[Dict[str, Any]]:
    """All entries of a directory, one page at a time."""
    entries: List[Dict[str, Any]] = []
    offset = 0
    while True:
        try:
            result = await planfix_request(
                f"directory/{directory_id}/entry/list",
                {
                    "offset": offset,
                    "pageSize": PAGE_SIZE,
                    "fields": "directory,parentKey,name,key",
                    "entriesOnly": True,
                },
                cache_time=DIRECTORY_CACHE_TIME,
            )
        except PlanfixAPIError as e:
            logger.error("Failed to list entries of directory %s: %s", directory_id, e.message)
            return entries
        page = result.get("directoryEntries") or []
        entries.extend(page)
        if len(page) < PAGE_SIZE:
            return entries
        offset += PAGE_SIZE


async def create_directory_entry(directory_id: int, field_id: int, name: str) -> Optional[int]:
    """Create an entry named `name`. Returns its key, or None when Planfix refused."""
    try:
        result = await planfix_request(
            f"directory/{directory_id}/entry/",
            {"customFieldData": [{"field": {"id": field_id}, "value": name}]},
        )
    except PlanfixAPIError as e:
        logger.error("Failed to create entry %r in directory %s: %s", name, directory_id, e.message)
        return None
    key = result.get("key")
    if key is None:
        key = (result.get("entry") or {}).get("key")
    logger.info("Created entry %r in directory %s: key %s", name, directory_id, key)
    invalidate_cache(f"directory/{directory_id}/entry/list")
    return key


async def find_directory_entry(directory_id: int, entry_name: str) -> Optional[int]:
    """
    Resolve a human readable value to an entry key.
    Exact match on the directory's name field first, then a case-insensitive,
    whitespace-trimmed match over all entries.
    """
    fields = await get_directory_fields(directory_id)
    if fields:
        key = await search_entry_by_exact_name(directory_id, fields[0]["id"], entry_name)
        if key is not None:
            return key

    wanted = entry_name.strip().lower()
    name_field_id = fields[0]["id"] if fields else None
    for entry in await search_all_entries(directory_id):
        name = _entry_name(entry, name_field_id)
        if name is not None and name.strip().lower() == wanted:
            return entry.get("key")
    return None


async def get_or_create_directory_entry(directory_id: int, entry_name: str) -> Optional[int]:
    """find_directory_entry(), creating the entry on miss."""
    key = await find_directory_entry(directory_id, entry_name)
    if key is not None:
        return key
    fields = await get_directory_fields(directory_id)
    if not fields:
        logger.warning("Directory %s has no fields, cannot create entry %r", directory_id, entry_name)
        return None
    return await create_directory_entry(directory_id, fields[0]["id"], entry_name)
