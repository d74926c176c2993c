"""
Planfix object metadata (task templates, contact types ...) cached in a YAML file.

The file maps object name -> object description as returned by GET object/{id},
including customFieldData[].field.directoryId which tells which directory
backs a custom field. A file older than CACHE_MAX_AGE is still served while a
fresh copy is fetched in the background.
"""

import os
import time
import asyncio
import logging
import tempfile
from typing import Any, Dict, List, Optional, Set

import yaml

from planfix_client import PlanfixAPIError, planfix_request

logger = logging.getLogger("planfix-mcp.objects")

CACHE_FILE_NAME = "planfix-objects.yml"
DATA_CACHE_FILE_NAME = "planfix-cache.yml"
CACHE_MAX_AGE = 3 * 24 * 60 * 60  # seconds

PlanfixObjects = Dict[str, Dict[str, Any]]

_background_updates: Set[asyncio.Task] = set()


def get_default_cache_path() -> str:
    data_dir = os.path.join(os.getcwd(), "data")
    if os.path.isdir(data_dir):
        return os.path.join(data_dir, DATA_CACHE_FILE_NAME)
    return os.path.join(tempfile.gettempdir(), CACHE_FILE_NAME)


def read_cache(cache_path: str) -> PlanfixObjects:
    with open(cache_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def write_cache(data: PlanfixObjects, cache_path: str) -> None:
    tmp_path = f"{cache_path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
    os.replace(tmp_path, cache_path)


async def fetch_objects() -> PlanfixObjects:
    listing = await planfix_request("object/list", {})
    result: PlanfixObjects = {}
    for item in listing.get("objects") or []:
        details = await planfix_request(f"object/{item['id']}", method="GET")
        obj = details.get("object") or {}
        if obj.get("name"):
            result[obj["name"]] = obj
    return result


async def update_cache(cache_path: str) -> PlanfixObjects:
    started = time.monotonic()
    data = await fetch_objects()
    write_cache(data, cache_path)
    logger.info("Objects cache updated: %s (%ds)", cache_path, round(time.monotonic() - started))
    return data


async def _update_in_background(cache_path: str) -> None:
    try:
        await update_cache(cache_path)
    except (PlanfixAPIError, OSError, yaml.YAMLError) as e:
        logger.error("Background update of objects cache failed: %s", e)


def _schedule_update(cache_path: str) -> None:
    if _background_updates:
        logger.debug("Objects cache update already running")
        return
    task = asyncio.get_running_loop().create_task(_update_in_background(cache_path))
    _background_updates.add(task)
    task.add_done_callback(_background_updates.discard)


async def ensure_cache(cache_path: Optional[str] = None) -> PlanfixObjects:
    """Cached objects; fetched synchronously only when there is no readable cache file."""
    cache_path = cache_path or get_default_cache_path()
    if os.path.isfile(cache_path):
        try:
            age = time.time() - os.path.getmtime(cache_path)
            cached = read_cache(cache_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read objects cache %s: %s", cache_path, e)
        else:
            if age > CACHE_MAX_AGE:
                logger.info("Objects cache outdated, updating in background: %s", cache_path)
                _schedule_update(cache_path)
            return cached

    try:
        return await update_cache(cache_path)
    except (PlanfixAPIError, OSError) as e:
        logger.error("Failed to load Planfix objects: %s", e)
        return {}


async def get_objects(cache_path: Optional[str] = None) -> PlanfixObjects:
    return await ensure_cache(cache_path)


async def get_objects_names(cache_path: Optional[str] = None) -> List[str]:
    objects = await ensure_cache(cache_path)
    return [obj.get("name") for obj in objects.values()]


async def get_field_directory_id(
    object_name: Optional[str] = None,
    object_id: Optional[int] = None,
    field_name: Optional[str] = None,
    field_id: Optional[int] = None,
    cache_path: Optional[str] = None,
) -> Optional[int]:
    """Directory id behind a custom field of an object, looked up by name or id."""
    objects = await ensure_cache(cache_path)
    if object_name:
        obj = objects.get(object_name)
    else:
        obj = next((o for o in objects.values() if o.get("id") == object_id), None)
    if not obj:
        return None

    for entry in obj.get("customFieldData") or []:
        field = entry.get("field") or {}
        if field_id:
            matched = field.get("id") == field_id
        else:
            matched = field.get("name") == field_name
        if matched:
            return field.get("directoryId")
    return None
