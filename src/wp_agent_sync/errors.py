# errors.py
# Exception taxonomy shared by every layer.
#
# Nothing in this package retries on any of these. The sync loop in sync.py
# is the only place that catches them and keeps going.

import json
from typing import Any


class AgentSyncError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AgentSyncError):
    """Missing or invalid credentials / environment setup. Operator must fix."""


class NotConnectedError(AgentSyncError):
    """invoke() or discover() called on a client that never connected."""


class ConnectionFailedError(AgentSyncError):
    """Handshake or transport failure against one environment's endpoint."""

    def __init__(self, message: str, environment: str | None = None) -> None:
        self.environment = environment
        if environment:
            message = f"[{environment}] {message}"
        super().__init__(message)


class ValidationError(AgentSyncError):
    """Input does not match the declared shape of an operation."""

    def __init__(self, operation: str, fields: list[str], reason: str) -> None:
        self.operation = operation
        self.fields = fields
        named = ", ".join(repr(f) for f in fields) if fields else "<input>"
        super().__init__(f"Invalid input for {operation}: field {named}: {reason}")


class RemoteOperationError(AgentSyncError):
    """The backend understood the call and refused it. Payload kept verbatim."""

    def __init__(self, operation: str, payload: Any) -> None:
        self.operation = operation
        self.payload = payload
        super().__init__(f"Remote error from {operation}: {json.dumps(payload, default=str)}")


class ModelUnavailableError(AgentSyncError):
    """The language-model backend is unreachable or rejected the request."""
