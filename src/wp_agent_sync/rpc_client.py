# rpc_client.py
# MCP client for a single WordPress endpoint.
#
# Built on the MCP SDK: the streamable HTTP transport carries Basic auth on
# every request, and a ClientSession runs the initialize handshake,
# tools/list and tools/call. The SDK is async; each client drives its
# session from a private event loop thread (an anyio blocking portal) so the
# rest of the package stays synchronous.
#
# One request in flight per client. Concurrent callers queue on _lock.

import functools
import json
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, ExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
from anyio.from_thread import BlockingPortal, start_blocking_portal
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from mcp.types import Implementation

from wp_agent_sync.config import DEFAULT_MCP_TIMEOUT, EnvironmentCredentials
from wp_agent_sync.errors import ConnectionFailedError, NotConnectedError, RemoteOperationError
from wp_agent_sync.models import ToolDescriptor

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="wp-agent-sync", version="0.1.0")

SessionFactory = Callable[[], AbstractAsyncContextManager[ClientSession]]


def _auth_failure(exc: BaseException) -> int | None:
    """Status code of a 401/403 anywhere in an exception or exception group."""
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in (401, 403):
        return exc.response.status_code
    for inner in getattr(exc, "exceptions", ()):
        status = _auth_failure(inner)
        if status:
            return status
    return None


# ---------------------------------------------------------------------------
# McpClient
# ---------------------------------------------------------------------------


class McpClient:
    """
    Authenticated request/response wrapper around one MCP endpoint.

    connect() must succeed before invoke() or discover(); both raise
    NotConnectedError otherwise. Nothing is retried here.

    Example:
        client = McpClient("https://example.test/wp-json/mcp/mcp-adapter-default-server",
                           "admin", "app-password")
        client.connect()
        envelope = client.invoke("wordpress-get-post", {"id": 1})
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        environment: str | None = None,
        timeout: float = DEFAULT_MCP_TIMEOUT,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.url = url
        self.environment = environment
        self._auth = httpx.BasicAuth(username, password)
        self._timeout = timeout
        self._session_factory = session_factory or self._open_session
        self._stack: ExitStack | None = None
        self._portal: BlockingPortal | None = None
        self._session: ClientSession | None = None
        self._lock = threading.Lock()
        self.server_info: dict[str, Any] = {}
        self.protocol_version: str | None = None

    @classmethod
    def from_credentials(
        cls, credentials: EnvironmentCredentials, session_factory: SessionFactory | None = None
    ) -> "McpClient":
        return cls(
            credentials.url,
            credentials.username,
            credentials.password,
            environment=credentials.environment,
            timeout=credentials.timeout,
            session_factory=session_factory,
        )

    @property
    def connected(self) -> bool:
        return self._session is not None

    @asynccontextmanager
    async def _open_session(self) -> AsyncIterator[ClientSession]:
        timeout = timedelta(seconds=self._timeout)
        async with streamablehttp_client(self.url, auth=self._auth, timeout=timeout) as (
            read_stream,
            write_stream,
            _,
        ):
            async with ClientSession(
                read_stream, write_stream, read_timeout_seconds=timeout, client_info=CLIENT_INFO
            ) as session:
                yield session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Run the initialize handshake. A no-op when already connected."""
        with self._lock:
            if self._session is not None:
                return

            stack = ExitStack()
            try:
                portal = stack.enter_context(start_blocking_portal())
                session = stack.enter_context(
                    portal.wrap_async_context_manager(self._session_factory())
                )
                result = portal.call(session.initialize)
                server_info = result.serverInfo.model_dump(exclude_none=True)
                protocol_version = str(result.protocolVersion)
            except Exception as exc:
                self._close_stack(stack)
                raise self._connection_error(exc) from exc

            self._stack, self._portal, self._session = stack, portal, session
            self.server_info = server_info
            self.protocol_version = protocol_version

        logger.info(
            "Connected to WordPress MCP at %s (server=%s, protocol=%s)",
            self.url,
            self.server_info.get("name", "?"),
            self.protocol_version,
        )

    def close(self) -> None:
        with self._lock:
            stack = self._stack
            self._stack, self._portal, self._session = None, None, None
        if stack is None:
            return
        self._close_stack(stack)
        logger.info("Connection to %s closed", self.url)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def invoke(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Call a remote tool and return its result envelope as a plain dict.

        Raises RemoteOperationError when the tool reports isError, with the
        remote content attached untouched.
        """
        logger.info("Calling tool %s %s", name, json.dumps(arguments, default=str))
        with self._lock:
            portal, session = self._ensure_connected()
            try:
                result = portal.call(session.call_tool, name, arguments)
            except McpError as exc:
                raise RemoteOperationError(name, exc.error.model_dump(exclude_none=True)) from exc
            except httpx.HTTPError as exc:
                raise self._connection_error(exc) from exc

        envelope = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        if result.isError:
            logger.error("Tool %s returned an error: %s", name, envelope.get("content"))
            raise RemoteOperationError(name, envelope.get("content"))

        logger.info("Tool executed successfully: %s", name)
        return envelope

    def discover(self) -> list[ToolDescriptor]:
        """List every tool the remote registry exposes, following pagination."""
        tools: list[ToolDescriptor] = []
        cursor = None
        with self._lock:
            portal, session = self._ensure_connected()
            while True:
                try:
                    result = portal.call(functools.partial(session.list_tools, cursor=cursor))
                except McpError as exc:
                    raise RemoteOperationError(
                        "tools/list", exc.error.model_dump(exclude_none=True)
                    ) from exc
                except httpx.HTTPError as exc:
                    raise self._connection_error(exc) from exc

                tools.extend(
                    ToolDescriptor(
                        name=tool.name,
                        description=tool.description or "",
                        input_schema=tool.inputSchema or {},
                    )
                    for tool in result.tools
                )
                cursor = result.nextCursor
                if not cursor:
                    break

        logger.info("Listed %d tools from %s", len(tools), self.url)
        return tools

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> tuple[BlockingPortal, ClientSession]:
        if self._session is None or self._portal is None:
            raise NotConnectedError("Client not connected. Call connect() first.")
        return self._portal, self._session

    def _connection_error(self, exc: Exception) -> ConnectionFailedError:
        status = _auth_failure(exc)
        if status:
            return ConnectionFailedError(
                f"Unauthorized ({status}) at {self.url}. "
                "Check the username and application password.",
                self.environment,
            )
        return ConnectionFailedError(
            f"Transport error talking to {self.url}: {str(exc) or type(exc).__name__}",
            self.environment,
        )

    def _close_stack(self, stack: ExitStack) -> None:
        # Teardown failures are logged, never raised.
        try:
            stack.close()
        except Exception as exc:
            logger.warning("Error while closing connection to %s: %s", self.url, exc)
