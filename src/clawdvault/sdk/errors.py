"""Error types raised or emitted by the ClawdVault SDK.

Two propagation models:
- Request path (ClawdVaultAPIError, SignerRequiredError): raised to the caller
- Streaming path (StreamError family): delivered to on_error callbacks, never raised
"""

from __future__ import annotations

from typing import Any


class ClawdVaultError(Exception):
    """Base class for all SDK errors."""


class ClawdVaultAPIError(ClawdVaultError):
    """Non-2xx response from the backend.

    Attributes:
        status: HTTP status code
        response: Parsed response body (or {"error": reason} if not JSON)
    """

    def __init__(self, message: str, status: int, response: dict[str, Any] | None = None):
        super().__init__(message)
        self.status = status
        self.response = response or {}

    def __repr__(self) -> str:
        return f"ClawdVaultAPIError(status={self.status}, message={str(self)!r})"


class SignerRequiredError(ClawdVaultError):
    """A write operation needs a wallet signer but none is configured."""

    def __init__(self, operation: str):
        super().__init__(f"Signer required for {operation}")
        self.operation = operation


class StreamError(ClawdVaultError):
    """Base class for errors reported by stream connections."""


class StreamConnectionError(StreamError):
    """Transport failure on a stream (network drop, server close, bad status)."""


class ReconnectExhaustedError(StreamConnectionError):
    """Terminal: max reconnect attempts reached, no further retries scheduled."""

    def __init__(self, max_attempts: int):
        super().__init__(f"Max reconnect attempts ({max_attempts}) reached")
        self.max_attempts = max_attempts
