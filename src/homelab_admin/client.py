"""HTTP client for a running homelab-admin server.

Starts commands, follows their event streams and injects stdin over the
admin API.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
from pydantic import TypeAdapter, ValidationError

from homelab_admin.domain.models import (
    CommandEvent,
    CommandKind,
    SessionSnapshot,
    is_terminal_event,
)

logger = logging.getLogger(__name__)

_EVENT_ADAPTER: TypeAdapter[CommandEvent] = TypeAdapter(CommandEvent)


class AdminClientError(Exception):
    """Raised when a request to the admin API fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AdminClient:
    """Talks to the admin API.

    Example usage::

        async with AdminClient("http://localhost:8420") as client:
            session_id = await client.start("fetch-changes")
            async for event in client.stream(session_id):
                print(event)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8420",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client and verify server connectivity."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            resp = await self._client.get("/health")
            resp.raise_for_status()
            logger.info("Connected to admin API at %s", self._base_url)
        except httpx.HTTPError as e:
            await self._client.aclose()
            self._client = None
            raise AdminClientError(f"Failed to connect to admin API: {e}") from e

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from admin API")

    async def start(self, kind: CommandKind | str) -> str:
        """Start a command and return the new session id."""
        value = kind.value if isinstance(kind, CommandKind) else kind
        resp = await self._request("POST", "/api/commands/start", json={"command": value})
        session_id = resp.json()["session_id"]
        logger.debug("Started %s as session %s", value, session_id)
        return session_id

    async def send_stdin(self, session_id: str, text: str) -> None:
        """Send one line of input to a running command."""
        await self._request("POST", f"/api/commands/stdin/{session_id}", json={"input": text})

    async def is_command_running(self) -> bool:
        resp = await self._request("GET", "/api/commands/running")
        return bool(resp.json()["running"])

    async def get_session(self, session_id: str) -> SessionSnapshot:
        resp = await self._request("GET", f"/api/commands/{session_id}")
        return SessionSnapshot.model_validate(resp.json())

    async def stream(self, session_id: str) -> AsyncIterator[CommandEvent]:
        """Yield events of a session until its terminal event."""
        client = self._require_client()
        # Commands may stay silent for minutes; only the connect is bounded
        timeout = httpx.Timeout(self._timeout, read=None)
        path = f"/api/commands/stream/{session_id}"
        try:
            async with client.stream("GET", path, timeout=timeout) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    raise AdminClientError(
                        f"GET {path} failed: {_detail(resp)}", status_code=resp.status_code
                    )
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        event = _EVENT_ADAPTER.validate_json(line[len("data:"):].strip())
                    except ValidationError as e:
                        logger.warning("Ignoring malformed event on %s: %s", path, e)
                        continue
                    yield event
                    if is_terminal_event(event):
                        return
        except httpx.HTTPError as e:
            raise AdminClientError(f"Event stream {path} broke: {e}") from e

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        client = self._require_client()
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise AdminClientError(f"HTTP request to {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise AdminClientError(
                f"{method} {path} failed: {_detail(resp)}", status_code=resp.status_code
            )
        return resp

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise AdminClientError("Not connected to admin API")
        return self._client

    async def __aenter__(self) -> AdminClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return resp.text
