import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .interface import IObjectStore, ObjectEntry, Page, ObjectStoreError, RateLimitError

logger = logging.getLogger("r2_api_provider")

API_ROOT = "https://api.cloudflare.com/client/v4"
RATE_LIMIT_STATUSES = (429, 503)
RATE_LIMIT_CODE = 7010


def is_rate_limited(status: Optional[int], errors: List[Dict[str, Any]]) -> bool:
    if status in RATE_LIMIT_STATUSES:
        return True
    for err in errors:
        message = str(err.get("message", "")).lower()
        if err.get("code") == RATE_LIMIT_CODE or "rate limit" in message or "unavailable" in message:
            return True
    return False


def _page_cursor(container: Dict[str, Any]) -> Optional[str]:
    cursor = container.get("cursor") or None
    if container.get("truncated") is False:
        return None
    return cursor


def parse_list_response(data: Dict[str, Any]) -> Page:
    """
    Accepts both shapes of the list endpoint:
    result as a bare array (pagination in result_info) or as an
    {objects, cursor, truncated} envelope.
    """
    result = data.get("result")
    if result is None:
        result = []

    if isinstance(result, list):
        entries = [ObjectEntry.from_api(item) for item in result]
        return Page(entries=entries, cursor=_page_cursor(data.get("result_info") or {}))

    if isinstance(result, dict):
        objects = result.get("objects")
        if objects is None:
            objects = []
        if not isinstance(objects, list):
            raise ObjectStoreError(f"Malformed list response: objects is {type(objects).__name__}")
        entries = [ObjectEntry.from_api(item) for item in objects]
        return Page(entries=entries, cursor=_page_cursor(result))

    raise ObjectStoreError(f"Malformed list response: result is {type(result).__name__}")


class R2ApiProvider(IObjectStore):
    def __init__(self, account_id: str, bucket: str, api_token: str,
                 timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.account_id = account_id
        self.bucket = bucket.strip("/")
        self.timeout = timeout
        self.base_url = f"{API_ROOT}/accounts/{account_id}/r2/buckets/{self.bucket}"

        if session is None:
            session = requests.Session()
            adapter = requests.adapters.HTTPAdapter(pool_connections=10, pool_maxsize=10)
            session.mount('https://', adapter)
        session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        })
        self.session = session

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = {"success": False, "errors": [{"message": response.text}]}
        if not isinstance(data, dict):
            raise ObjectStoreError(f"Malformed response body ({response.status_code})",
                                   status=response.status_code)
        return data

    def _raise_for_errors(self, response: requests.Response, data: Dict[str, Any], action: str):
        errors = data.get("errors") or []
        status = response.status_code
        message = f"Failed to {action} ({status}): {errors}"
        if is_rate_limited(status, errors):
            raise RateLimitError(message, status=status, errors=errors)
        raise ObjectStoreError(message, status=status, errors=errors)

    def _list_page_sync(self, prefix: str, cursor: Optional[str]) -> Page:
        params = {}
        if prefix:
            params["prefix"] = prefix
        if cursor:
            params["cursor"] = cursor

        logger.debug(f"GET {self.base_url}/objects params={params}")
        try:
            response = self.session.get(f"{self.base_url}/objects", params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ObjectStoreError(f"Network error listing {prefix!r}: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise ObjectStoreError(f"Request failed listing {prefix!r}: {e}") from e

        data = self._decode(response)
        if not response.ok or not data.get("success", False):
            self._raise_for_errors(response, data, "list objects")
        return parse_list_response(data)

    def _delete_object_sync(self, key: str) -> bool:
        url = f"{self.base_url}/objects/{quote(key, safe='')}"
        logger.debug(f"DELETE {url}")
        try:
            response = self.session.delete(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ObjectStoreError(f"Network error deleting {key}: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise ObjectStoreError(f"Request failed deleting {key}: {e}") from e

        if response.status_code == 404:
            return True
        data = self._decode(response)
        if not response.ok:
            self._raise_for_errors(response, data, f"delete {key}")
        return bool(data.get("success", True))

    async def list_page(self, prefix: str, cursor: Optional[str] = None) -> Page:
        return await asyncio.to_thread(self._list_page_sync, prefix, cursor)

    async def delete_object(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_object_sync, key)

    def close(self):
        self.session.close()
