"""ClawdVault SDK - Client for the ClawdVault token launchpad.

Two entry points:
- ClawdVaultClient: REST API (tokens, trading, chat, profiles, sessions)
- ClawdVaultStreaming: real-time trade / price / chat feeds over SSE

Write operations are authorized by wallet signatures (see wallet.py) or by
a session token obtained with ClawdVaultClient.create_session().
"""

from .client import ClawdVaultClient, ClientConfig, create_client
from .errors import (
    ClawdVaultAPIError,
    ClawdVaultError,
    ReconnectExhaustedError,
    SignerRequiredError,
    StreamConnectionError,
    StreamError,
)
from .event_source import (
    EventSource,
    EventSourceFactory,
    HTTPEventSource,
    MockEventSource,
    MockEventSourceFactory,
    SSEDecoder,
    SSEMessage,
)
from .streaming import (
    ClawdVaultStreaming,
    StreamConnection,
    StreamingOptions,
    StreamKey,
    StreamState,
    StreamTopic,
    Subscription,
    create_streaming,
)
from .wallet import (
    AuthSignature,
    KeypairSigner,
    WalletSigner,
    build_message,
    canonical_json,
    create_auth_signature,
    sign_and_serialize,
    verify_signature,
)

__all__ = [
    # REST client
    "ClawdVaultClient",
    "ClientConfig",
    "create_client",
    # Streaming
    "ClawdVaultStreaming",
    "StreamConnection",
    "StreamingOptions",
    "StreamKey",
    "StreamState",
    "StreamTopic",
    "Subscription",
    "create_streaming",
    # Event sources
    "EventSource",
    "EventSourceFactory",
    "HTTPEventSource",
    "MockEventSource",
    "MockEventSourceFactory",
    "SSEDecoder",
    "SSEMessage",
    # Wallet / auth
    "AuthSignature",
    "KeypairSigner",
    "WalletSigner",
    "build_message",
    "canonical_json",
    "create_auth_signature",
    "sign_and_serialize",
    "verify_signature",
    # Errors
    "ClawdVaultError",
    "ClawdVaultAPIError",
    "SignerRequiredError",
    "StreamError",
    "StreamConnectionError",
    "ReconnectExhaustedError",
]
