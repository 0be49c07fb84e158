"""Solana wallet integration and the request-signing protocol.

Write requests are authorized without a persistent credential by signing a
deterministic message:

    ClawdVault:<action>:<window>:<canonical JSON payload>

The window is the UNIX time quantized to 5 minutes, so client and server
derive the same value independently. Two requests for the same action and
payload inside one window produce identical signatures.

Canonical JSON: compact separators, keys in insertion order (never sorted),
non-ASCII kept verbatim, integral floats written as integers. This matches
JavaScript's JSON.stringify for strings, integers and floats written in
plain decimal. Non-integral floats below 1e-4 differ: Python writes 5e-05
where JavaScript writes 0.00005.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

logger = logging.getLogger(__name__)

SIGNATURE_NAMESPACE = "ClawdVault"
AUTH_WINDOW_SECONDS = 300
SESSION_ACTION = "session"
SESSION_SIGN_PAYLOAD: dict[str, Any] = {"action": "create_session"}

# Leading zero bytes shorten the encoding, so only the alphabet is checked here
BASE58_SECRET_KEY = re.compile(r"[1-9A-HJ-NP-Za-km-z]+")


@dataclass(frozen=True)
class AuthSignature:
    """Wallet/signature pair attached to authenticated requests."""

    signature: str
    wallet: str


@runtime_checkable
class WalletSigner(Protocol):
    """Signing capability used by the SDK.

    Signing may suspend for an unbounded time (e.g. waiting on user
    approval in an external wallet). No timeout is imposed here.
    """

    @property
    def public_key(self) -> Pubkey:
        """Wallet public key."""
        ...

    async def sign_message(self, message: bytes) -> bytes:
        """Return a detached ed25519 signature over message."""
        ...

    async def sign_transaction(
        self, transaction: Transaction | VersionedTransaction
    ) -> Transaction | VersionedTransaction:
        """Add this wallet's signature to a transaction."""
        ...


def _secret_key_bytes(text: str) -> bytes:
    """Decode a Solana CLI wallet (JSON array of byte values)."""
    values = json.loads(text)
    if not isinstance(values, list):
        raise ValueError("Wallet JSON must be an array of byte values")
    return bytes(values)


class KeypairSigner:
    """Keypair-backed signer for CLI and server usage.

    Accepts a solders Keypair, 64 raw secret-key bytes, a base58 secret key,
    or a JSON byte array string (Solana CLI wallet format).
    """

    def __init__(self, key: Keypair | bytes | str):
        if isinstance(key, Keypair):
            self._keypair = key
        elif isinstance(key, bytes):
            self._keypair = Keypair.from_bytes(key)
        else:
            key = key.strip()
            if key.startswith("["):
                self._keypair = Keypair.from_bytes(_secret_key_bytes(key))
            elif BASE58_SECRET_KEY.fullmatch(key):
                # Secret keys are 64 bytes, the size of a signature; a wrong length raises ValueError
                self._keypair = Keypair.from_bytes(bytes(Signature.from_string(key)))
            else:
                raise ValueError("Secret key must be base58 or a JSON byte array")

    @classmethod
    def generate(cls) -> KeypairSigner:
        """Create a signer for a freshly generated keypair."""
        return cls(Keypair())

    @classmethod
    def from_file(cls, path: str | Path) -> KeypairSigner:
        """Load from a Solana CLI keypair file (JSON byte array)."""
        data = Path(path).expanduser().read_text(encoding="utf-8")
        return cls(_secret_key_bytes(data))

    @classmethod
    def from_env(cls, env_var: str = "SOLANA_PRIVATE_KEY") -> KeypairSigner:
        """Load from an environment variable (base58 or JSON array)."""
        value = os.environ.get(env_var)
        if not value:
            raise ValueError(f"Environment variable {env_var} not set")
        return cls(value)

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def keypair(self) -> Keypair:
        """Underlying keypair. Handle with care."""
        return self._keypair

    def to_json(self) -> str:
        """Secret key as a JSON byte array (Solana CLI wallet format)."""
        return json.dumps(list(bytes(self._keypair)))

    async def sign_message(self, message: bytes) -> bytes:
        return bytes(self._keypair.sign_message(message))

    async def sign_transaction(
        self, transaction: Transaction | VersionedTransaction
    ) -> Transaction | VersionedTransaction:
        if isinstance(transaction, VersionedTransaction):
            return self._sign_versioned(transaction)

        transaction.partial_sign([self._keypair], transaction.message.recent_blockhash)
        return transaction

    def _sign_versioned(self, transaction: VersionedTransaction) -> VersionedTransaction:
        message = transaction.message
        required = message.header.num_required_signatures
        signer_keys = list(message.account_keys)[:required]
        pubkey = self._keypair.pubkey()
        if pubkey not in signer_keys:
            raise ValueError(f"Wallet {pubkey} is not a required signer of this transaction")

        signatures = list(transaction.signatures)
        signatures.extend(Signature.default() for _ in range(required - len(signatures)))
        signatures[signer_keys.index(pubkey)] = self._keypair.sign_message(
            to_bytes_versioned(message)
        )
        return VersionedTransaction.populate(message, signatures)


# =============================================================================
# Signature protocol
# =============================================================================


def auth_window(now_seconds: int | float) -> int:
    """Quantize a UNIX timestamp to the start of its 5-minute window."""
    return math.floor(now_seconds / AUTH_WINDOW_SECONDS) * AUTH_WINDOW_SECONDS


def _normalize(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Mapping):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def canonical_json(payload: Any) -> str:
    """Serialize payload as the backend re-serializes it (see module notes on floats)."""
    return json.dumps(_normalize(payload), separators=(",", ":"), ensure_ascii=False)


def build_message(action: str, payload: Mapping[str, Any], now_seconds: int | float) -> str:
    """Build the canonical message to sign for an action.

    Session creation signs a constant payload; every other action embeds
    the caller's payload verbatim.
    """
    sign_payload = SESSION_SIGN_PAYLOAD if action == SESSION_ACTION else payload
    window = auth_window(now_seconds)
    return f"{SIGNATURE_NAMESPACE}:{action}:{window}:{canonical_json(sign_payload)}"


async def sign_message(message: str, signer: WalletSigner) -> bytes:
    """Sign the UTF-8 bytes of message. Signer errors propagate."""
    return await signer.sign_message(message.encode("utf-8"))


def encode_signature(signature: bytes, public_key: Pubkey | str) -> AuthSignature:
    """Base58-encode a signature/public key pair."""
    return AuthSignature(
        signature=str(Signature.from_bytes(signature)),
        wallet=str(public_key),
    )


def verify_signature(message: str, signature: str, public_key: str) -> bool:
    """Check a base58 signature against a base58 public key.

    Never raises: malformed input of any kind yields False.
    """
    try:
        sig = Signature.from_string(signature)
        pubkey = Pubkey.from_string(public_key)
        return sig.verify(pubkey, message.encode("utf-8"))
    except Exception as e:
        logger.debug(f"Signature verification rejected input: {e}")
        return False


async def create_auth_signature(
    signer: WalletSigner,
    payload: Mapping[str, Any],
    action: str | None = None,
    now: float | None = None,
) -> AuthSignature:
    """Produce the X-Wallet / X-Signature credential for a request payload."""
    auth_action = action or payload.get("action") or SESSION_ACTION
    timestamp = time.time() if now is None else now
    message = build_message(auth_action, payload, int(timestamp))
    signature = await sign_message(message, signer)
    return encode_signature(signature, signer.public_key)


async def sign_and_serialize(transaction: str, signer: WalletSigner) -> str:
    """Sign a base64 transaction prepared by the backend and re-encode it.

    Tries the versioned wire format first, then legacy.
    """
    raw = base64.b64decode(transaction)
    try:
        parsed: Transaction | VersionedTransaction = VersionedTransaction.from_bytes(raw)
    except Exception:
        parsed = Transaction.from_bytes(raw)

    signed = await signer.sign_transaction(parsed)
    return base64.b64encode(bytes(signed)).decode("ascii")
