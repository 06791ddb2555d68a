# connections.py
# One cached MCP client per environment label.
#
# Clients are created lazily on first use and kept until invalidate(). A
# failed handshake caches nothing, so the next get() tries again from scratch.

import logging
import threading
from collections.abc import Callable

from wp_agent_sync.config import EnvironmentCredentials, load_credentials
from wp_agent_sync.errors import AgentSyncError, ConnectionFailedError
from wp_agent_sync.rpc_client import McpClient

logger = logging.getLogger(__name__)

ALL = "all"


class ConnectionManager:
    """
    Keyed registry of connected McpClient handles.

    Both collaborators are injectable so tests can count handshakes:
        manager = ConnectionManager(client_factory=lambda creds: fake_client)
    """

    def __init__(
        self,
        credentials_loader: Callable[[str], EnvironmentCredentials] = load_credentials,
        client_factory: Callable[[EnvironmentCredentials], McpClient] = McpClient.from_credentials,
    ) -> None:
        self._load_credentials = credentials_loader
        self._client_factory = client_factory
        self._clients: dict[str, McpClient] = {}
        self._lock = threading.Lock()

    def get(self, environment: str) -> McpClient:
        """Return the cached client for environment, connecting on first use."""
        client = self._clients.get(environment)
        if client is not None:
            return client

        with self._lock:
            client = self._clients.get(environment)
            if client is not None:
                return client

            credentials = self._load_credentials(environment)
            logger.info("Creating new %s WordPress MCP client for %s", environment, credentials.url)
            client = self._client_factory(credentials)

            try:
                client.connect()
            except AgentSyncError as exc:
                logger.error("Failed to connect to %s: %s", environment, exc)
                if isinstance(exc, ConnectionFailedError) and exc.environment == environment:
                    raise
                raise ConnectionFailedError(
                    f"Failed to connect to {environment} WordPress MCP: {exc}", environment
                ) from exc

            self._clients[environment] = client
            return client

    def invalidate(self, environment: str = ALL) -> None:
        """Close and evict one environment's client, or every client. Idempotent."""
        with self._lock:
            if environment == ALL:
                evicted = list(self._clients.items())
                self._clients.clear()
            else:
                client = self._clients.pop(environment, None)
                evicted = [(environment, client)] if client is not None else []

        for name, client in evicted:
            logger.info("Clearing %s client cache", name)
            client.close()

    def cached(self) -> list[str]:
        return list(self._clients)
