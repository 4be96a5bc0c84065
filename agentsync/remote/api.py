"""HTTP client for the project management API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentsync.errors import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ManageApiClient:
    """Reads full project definitions from the management API.

    ``GET {api_url}/manage/tenants/{tenant_id}/project-full/{project_id}``
    returns ``{"data": <definition>}``.
    """

    def __init__(
        self,
        api_url: str,
        tenant_id: str = "default",
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.tenant_id = tenant_id
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def get_full_definition(self, project_id: str) -> dict[str, Any]:
        url = f"{self.api_url}/manage/tenants/{self.tenant_id}/project-full/{project_id}"
        logger.debug("GET %s", url)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(url, headers=self._headers())
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                raise RemoteError(f"Project '{project_id}' not found at {self.api_url}") from exc
            if status in (401, 403):
                raise RemoteError(f"Not authorized to read project '{project_id}' (HTTP {status})") from exc
            raise RemoteError(f"Management API error: HTTP {status}") from exc
        except httpx.RequestError as exc:
            raise RemoteError(f"Failed to reach management API: {exc}") from exc
        except ValueError as exc:
            raise RemoteError(f"Management API returned invalid JSON: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise RemoteError(f"Management API response for '{project_id}' has no 'data' object")
        return data
