import logging
from typing import Any, Dict, List, Optional

import httpx

from kaigo_client.config import API_PREFIX, api_base_url, api_timeout

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A failed backend call: non-2xx response, timeout or transport error."""

    def __init__(self, status_code: Optional[int], code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def __repr__(self):
        return "ApiError(%r, %r, %r)" % (self.status_code, self.code, self.message)


def _error_from_response(resp: httpx.Response) -> ApiError:
    code = "HTTP_%d" % resp.status_code
    message = resp.reason_phrase or ("%d error" % resp.status_code)
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code") or code
        message = body["error"].get("message") or message
    return ApiError(resp.status_code, code, message)


class KaigoApiClient:
    """Thin async wrapper over the check-list REST collections.

    Responses are unwrapped from the ``{"data": ..., "meta": ...}`` envelope.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.AsyncClient] = None):
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url or api_base_url(),
                timeout=timeout if timeout is not None else api_timeout(),
            )
        self._client = client

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _request(self, method: str, path: str, params=None, json=None) -> Any:
        url = API_PREFIX + path
        logger.debug("%s %s params=%s", method, url, params)
        try:
            resp = await self._client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            raise ApiError(None, "TIMEOUT", "Request timed out: %s %s" % (method, url)) from e
        except httpx.RequestError as e:
            raise ApiError(None, "NETWORK_ERROR", "Request failed: %s" % str(e)) from e

        if resp.status_code >= 400:
            err = _error_from_response(resp)
            logger.warning("%s %s failed: %s %s", method, url, err.code, err.message)
            raise err

        try:
            body = resp.json()
        except ValueError as e:
            raise ApiError(resp.status_code, "BAD_RESPONSE", "Response was not JSON") from e
        if not isinstance(body, dict) or "data" not in body:
            raise ApiError(resp.status_code, "BAD_RESPONSE", "Response is missing the data envelope")
        return body["data"]

    async def list(self, resource_path: str, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        return await self._request("GET", resource_path, params=clean or None)

    async def create(self, resource_path: str, fields: Dict[str, Any]) -> dict:
        return await self._request("POST", resource_path, json=fields)

    async def update(self, resource_path: str, record_id: str, fields: Dict[str, Any]) -> dict:
        return await self._request("PATCH", "%s/%s" % (resource_path, record_id), json=fields)

    async def delete(self, resource_path: str, record_id: str) -> dict:
        return await self._request("DELETE", "%s/%s" % (resource_path, record_id))
