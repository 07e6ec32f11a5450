"""JSON-RPC transport to the node.

The monitor only relies on the :class:`NodeTransport` protocol.
:class:`HttpNodeTransport` is the httpx-backed implementation used by the
``watch`` command.
"""

from __future__ import annotations

import itertools
from typing import Protocol

import httpx
import structlog

from nodesync.errors import TransportError

log = structlog.get_logger(__name__)


class NodeTransport(Protocol):
    def is_connected(self) -> bool: ...

    async def send(self, method: str, params: list) -> dict: ...


class HttpNodeTransport:
    """Async JSON-RPC client over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None
        self._connected = False
        self._ids = itertools.count(1)

    async def __aenter__(self) -> HttpNodeTransport:
        kw: dict = {"timeout": self._timeout}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._connected = False
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def url(self) -> str:
        return self._url

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> str:
        """Probe the node and mark the transport connected.  Returns the client version."""
        response = await self.send("web3_clientVersion", [])
        if "error" in response:
            # an error answer still proves the endpoint speaks JSON-RPC
            version = "unknown"
        else:
            version = str(response.get("result") or "unknown")
        self._connected = True
        log.info("node_connected", url=self._url, client_version=version)
        return version

    async def send(self, method: str, params: list) -> dict:
        """Send one JSON-RPC request and return the decoded response object."""
        if self._client is None:
            raise TransportError("Transport is not open")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            self._connected = False
            log.warning("node_request_failed", method=method, error=str(exc))
            raise TransportError(f"Request to {self._url} failed: {exc}") from exc

        if resp.status_code >= 400:
            self._connected = False
            raise TransportError(f"Node returned HTTP {resp.status_code} for {method}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportError(f"Node returned invalid JSON for {method}") from exc

        if not isinstance(body, dict):
            raise TransportError(f"Node returned a non-object response for {method}")
        return body
