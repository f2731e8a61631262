"""Host API client over the host's local HTTP server."""

from typing import Any, Dict, List, Optional

import httpx

from ctxrecover.host.client import BaseHostClient, Toast
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


class HttpHostClient(BaseHostClient):
    """Talks to the host's REST API with httpx.

    No timeouts are applied to summarize/prompt calls; the recovery attempt
    caps bound total duration instead.
    """

    def __init__(
        self,
        base_url: str,
        directory: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        username: str = "opencode",
        password: Optional[str] = None,
    ):
        """
        Initialize the host client.

        Args:
            base_url: Host server URL, e.g. ``http://127.0.0.1:4096``
            directory: Workspace directory passed as the ``directory`` query param
            client: Optional httpx.AsyncClient to use (creates one if not provided)
            username: Basic-auth user when a password is configured
            password: Optional basic-auth password
        """
        self.base_url = base_url.rstrip("/")
        self.directory = directory
        self._client = client
        self._owns_client = client is None
        self._auth = httpx.BasicAuth(username, password) if password else None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=None, auth=self._auth
            )
        return self._client

    def _params(self) -> Dict[str, str]:
        return {"directory": self.directory} if self.directory else {}

    async def _request(
        self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        client = await self._get_client()
        response = await client.request(
            method, path, params=self._params(), json=json_body
        )
        response.raise_for_status()
        return response

    async def session_messages(self, session_id: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/session/{session_id}/message")
        data = response.json()
        return data if isinstance(data, list) else []

    async def summarize(
        self, session_id: str, provider_id: str, model_id: str
    ) -> None:
        logger.info(
            f"Requesting summarize for session {session_id} ({provider_id}/{model_id})"
        )
        await self._request(
            "POST",
            f"/session/{session_id}/summarize",
            {"providerID": provider_id, "modelID": model_id, "auto": True},
        )

    async def prompt_async(self, session_id: str) -> None:
        await self._request(
            "POST", f"/session/{session_id}/prompt_async", {"auto": True}
        )

    async def show_toast(self, toast: Toast) -> None:
        await self._request("POST", "/tui/show-toast", toast.to_body())

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpHostClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
