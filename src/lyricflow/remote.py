"""Thin JSON client for the LyricFlow backend.

Every call is a single attempt. Failures are raised as
:class:`~lyricflow.exceptions.RemoteError`; whether to fall back is the
gateway's decision, not this module's.
"""

import logging

import httpx

from .exceptions import RemoteError

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    """Pull ``message`` out of an error payload, or return a generic text."""
    try:
        payload = resp.json()
    except ValueError:
        return "Request failed"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return "Request failed"


class RemoteApi:
    """JSON-over-HTTP access to the backend rooted at *base_url*."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        token: str | None = None,
    ):
        """Send one request and return the decoded JSON body (None if empty).

        Raises RemoteError with status 0 when no response arrived, or with
        the response status for any non-2xx reply or an undecodable body.
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                resp = await client.request(method, path, json=json, params=params, headers=headers)
            except httpx.RequestError as exc:
                raise RemoteError(path, 0, str(exc) or "Service unavailable") from exc

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if not resp.is_success:
            raise RemoteError(path, resp.status_code, _error_message(resp))
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteError(path, resp.status_code, "Malformed response body") from exc
