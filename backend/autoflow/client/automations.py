"""Async client for the automations backend.

Thin wrapper around ``httpx.AsyncClient``. Read paths return canonical
models through the boundary adapters; the trigger endpoint returns the raw
``httpx.Response`` because both structured and opaque responses are valid
success shapes and the execution coordinator decides how to read them.
"""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from autoflow.client.errors import (
    AuthenticationError,
    AutomationClientError,
    NotFoundError,
    RemoteError,
    TransportError,
    error_message,
)
from autoflow.config import DEFAULT_API_BASE_URL, sanitize_base_url
from autoflow.models import AutomationNode, NodePosition, StatusUpdate
from autoflow.services.adapters import adapt_nodes_payload, adapt_status_payload

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class AutomationsClient:
    """Client for the ``/automations`` endpoints of the backend."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        token: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        require_auth: bool = True,
    ) -> None:
        """
        Args:
            base_url: Backend API root, e.g. ``http://localhost:4000/api``
            token: Static bearer token
            token_provider: Called before every request; wins over ``token``
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
            require_auth: Refuse to send requests without a token
        """
        self.base_url = sanitize_base_url(base_url)
        self._token = token
        self._token_provider = token_provider
        self.require_auth = require_auth
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AutomationsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _current_token(self) -> str | None:
        if self._token_provider is not None:
            return self._token_provider()
        return self._token

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._current_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif self.require_auth:
            raise AuthenticationError("Not authenticated: no API token available")
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = self._headers()
        try:
            return await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError(f"Could not reach automations backend: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        body = _response_body(response)
        status = response.status_code
        message = error_message(body, f"HTTP {status} {response.reason_phrase}".strip())

        if status in (401, 403):
            raise AuthenticationError(message, status_code=status, body=body)
        if status == 404:
            raise NotFoundError(message, status_code=status, body=body)
        raise RemoteError(message, status_code=status, body=body)

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        self._raise_for_status(response)
        if not response.content:
            return None
        return _response_body(response)

    async def list_nodes(self) -> list[AutomationNode]:
        """Fetch the full graph snapshot."""
        payload = await self._json("GET", "/automations")
        return adapt_nodes_payload(payload)

    async def fetch_statuses(self) -> list[StatusUpdate]:
        """Fetch the authoritative status snapshot."""
        payload = await self._json("GET", "/automations/status")
        return adapt_status_payload(payload)

    async def trigger(self, code: str, payload: Any = None) -> httpx.Response:
        """Trigger a node; non-2xx responses are returned, not raised."""
        body = {"payload": payload} if payload is not None else {}
        logger.info(f"Triggering automation {code}")
        return await self._request("POST", f"/automations/run/{code}", json=body)

    async def fetch_run_history(self, code: str) -> Any:
        """Fetch the raw run-history payload of a node."""
        return await self._json("GET", f"/automations/runs/{code}")

    async def get_schedule(self, code: str) -> Any:
        return await self._json("GET", f"/automations/{code}/schedule")

    async def put_schedule(self, code: str, payload: dict[str, Any]) -> Any:
        return await self._json("PUT", f"/automations/{code}/schedule", json=payload)

    async def save_position(self, code: str, position: NodePosition) -> None:
        await self._json(
            "POST",
            f"/automations/{code}/position",
            json={"x": position.x, "y": position.y},
        )

    async def generate_insights(self, focus: str | None = None) -> str:
        """Ask the backend for a narrative summary of the pipeline."""
        body = {"focus": focus} if focus else {}
        payload = await self._json("POST", "/automations/insights", json=body)
        if isinstance(payload, dict) and isinstance(payload.get("insights"), str):
            return payload["insights"]
        raise AutomationClientError("Insights response did not include any text", body=payload)
