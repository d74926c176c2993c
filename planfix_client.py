"""
Planfix REST client.

planfix_request() is the only way the tools talk to Planfix: it builds the request,
raises PlanfixAPIError on any failure and, when cache_time > 0, serves and stores
results through the request cache.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from cache import get_cache_provider
from config import PLANFIX_ACCOUNT, PLANFIX_TOKEN, REQUEST_TIMEOUT

logger = logging.getLogger("planfix-mcp.client")


class PlanfixAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(self.message)


def get_base_url() -> str:
    return f"https://{PLANFIX_ACCOUNT}.planfix.com/rest/"


def get_client() -> httpx.AsyncClient:
    if not PLANFIX_ACCOUNT:
        raise PlanfixAPIError("PLANFIX_ACCOUNT is not defined")
    return httpx.AsyncClient(
        base_url=get_base_url(),
        headers={
            "Authorization": f"Bearer {PLANFIX_TOKEN}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "planfix_mcp_server",
        },
        timeout=REQUEST_TIMEOUT,
    )


async def handle_api_response(response: httpx.Response, operation: str) -> Dict[str, Any]:
    try:
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        error_body = e.response.text
        logger.error(f"{operation} failed: {e.response.status_code} - {error_body}")
        raise PlanfixAPIError(
            _error_message(e.response) or f"Unknown error: {e.response.status_code}",
            status_code=e.response.status_code,
            response_body=error_body,
        )
    except Exception as e:
        logger.error(f"{operation} failed: {str(e)}")
        raise PlanfixAPIError(f"{operation} failed: {str(e)}")


def _error_message(response: httpx.Response) -> Optional[str]:
    """Planfix puts a human readable message into the "error" key of failed responses."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return None


def cache_key(path: str, body: Optional[Dict[str, Any]], method: str) -> str:
    """Canonical JSON of [path, method, body]; the path leads so keys can be dropped by path."""
    return json.dumps([path, method, body], sort_keys=True, ensure_ascii=False, default=str)


def invalidate_cache(path: str) -> None:
    """Drop every cached response of `path`, whatever the method and body."""
    get_cache_provider().delete_prefix("[" + json.dumps(path, ensure_ascii=False) + ", ")


async def planfix_request(
    path: str,
    body: Optional[Dict[str, Any]] = None,
    method: str = "POST",
    cache_time: int = 0,
) -> Any:
    """
    Call the Planfix API and return parsed JSON.
    GET sends body as query parameters (None values dropped), other methods send it as JSON.
    """
    method = method.upper()
    key = cache_key(path, body, method)
    if cache_time and cache_time > 0:
        cached = get_cache_provider().get(key)
        if cached is not None:
            logger.debug("Cache hit for %s %s", method, path)
            return cached

    async with get_client() as client:
        try:
            if method == "GET":
                params = {k: v for k, v in (body or {}).items() if v is not None}
                response = await client.get(path, params=params or None)
            else:
                response = await client.request(method, path, json=body)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {str(e)}")
            raise PlanfixAPIError(f"{method} {path} failed: {str(e)}")
        result = await handle_api_response(response, f"{method} {path}")
    logger.info("%s %s -> %s", method, path, response.status_code)

    if cache_time and cache_time > 0:
        get_cache_provider().set(key, result, cache_time)
    return result


# ---------------------------------------------------------------------------
# Links to Planfix records
# ---------------------------------------------------------------------------

def get_task_url(task_id: Optional[int]) -> str:
    return f"https://{PLANFIX_ACCOUNT}.planfix.com/task/{task_id}" if task_id else ""


def get_comment_url(task_id: Optional[int], comment_id: Optional[int]) -> str:
    if not task_id or not comment_id:
        return ""
    return f"https://{PLANFIX_ACCOUNT}.planfix.com/task/{task_id}?comment={comment_id}"


def get_contact_url(contact_id: Optional[int]) -> str:
    return f"https://{PLANFIX_ACCOUNT}.planfix.com/contact/{contact_id}" if contact_id else ""


def get_user_url(user_id: Optional[int]) -> str:
    return f"https://{PLANFIX_ACCOUNT}.planfix.com/user/{user_id}" if user_id else ""
