"""Unit tests for the wallet signature protocol."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from clawdvault.sdk.wallet import (
    AuthSignature,
    KeypairSigner,
    WalletSigner,
    auth_window,
    build_message,
    canonical_json,
    create_auth_signature,
    encode_signature,
    sign_and_serialize,
    sign_message,
    verify_signature,
)

CHAT_PAYLOAD = {"mint": "M", "message": "hi"}


def flip_char(text: str, index: int = 0) -> str:
    """Replace one base58 character with a different valid one."""
    replacement = "2" if text[index] != "2" else "3"
    return text[:index] + replacement + text[index + 1 :]


class FailingSigner:
    """Signer whose wallet always rejects."""

    public_key = Pubkey.default()

    async def sign_message(self, message: bytes) -> bytes:
        raise PermissionError("User rejected the request")

    async def sign_transaction(self, transaction):
        raise PermissionError("User rejected the request")


# =============================================================================
# Message construction
# =============================================================================


class TestBuildMessage:
    """Tests for the canonical signed message."""

    def test_format(self) -> None:
        message = build_message("chat", CHAT_PAYLOAD, 1000)
        assert message == 'ClawdVault:chat:900:{"mint":"M","message":"hi"}'

    def test_same_window_same_message(self) -> None:
        assert build_message("chat", CHAT_PAYLOAD, 900) == build_message("chat", CHAT_PAYLOAD, 1199)

    def test_next_window_differs(self) -> None:
        assert build_message("chat", CHAT_PAYLOAD, 1000) != build_message("chat", CHAT_PAYLOAD, 1300)

    @pytest.mark.parametrize("t1,t2", [(0, 299), (300, 599), (1_700_000_100, 1_700_000_399)])
    def test_window_quantization(self, t1: int, t2: int) -> None:
        assert auth_window(t1) == auth_window(t2)
        assert build_message("react", {"emoji": "x"}, t1) == build_message("react", {"emoji": "x"}, t2)

    def test_auth_window_boundaries(self) -> None:
        assert auth_window(299) == 0
        assert auth_window(300) == 300
        assert auth_window(1299.9) == 1200

    def test_window_edge_splits_nearby_times(self) -> None:
        """1000 and 1299 are under 300s apart but straddle the 1200 edge."""
        assert auth_window(1000) == 900
        assert auth_window(1299) == 1200
        assert build_message("chat", CHAT_PAYLOAD, 1199) != build_message("chat", CHAT_PAYLOAD, 1200)

    def test_session_action_signs_constant_payload(self) -> None:
        first = build_message("session", {}, 1000)
        second = build_message("session", {"anything": "else"}, 1000)

        assert first == second
        assert first == 'ClawdVault:session:900:{"action":"create_session"}'

    def test_payload_embedded_verbatim_for_other_actions(self) -> None:
        message = build_message("profile", {"username": "bob"}, 600)
        assert message.endswith(':{"username":"bob"}')


class TestCanonicalJson:
    """Tests for the pinned JSON serialization."""

    def test_compact_and_insertion_ordered(self) -> None:
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"b":1,"a":[1,2]}'

    def test_integral_floats_written_as_integers(self) -> None:
        assert canonical_json({"amount": 1.0, "slippage": 0.01}) == '{"amount":1,"slippage":0.01}'

    def test_nested_values_normalized(self) -> None:
        assert canonical_json({"a": {"b": [2.0, 2.5]}}) == '{"a":{"b":[2,2.5]}}'

    def test_non_ascii_kept(self) -> None:
        assert canonical_json({"emoji": "🚀"}) == '{"emoji":"🚀"}'

    def test_booleans_untouched(self) -> None:
        assert canonical_json({"flag": True}) == '{"flag":true}'

    def test_small_floats_keep_exponent_form(self) -> None:
        """Sub-1e-4 floats serialize as Python writes them, not as JavaScript does."""
        assert canonical_json({"amount": 5e-05}) == '{"amount":5e-05}'


# =============================================================================
# Sign / encode / verify
# =============================================================================


class TestSignatures:
    """Tests for signing and fail-closed verification."""

    @pytest.mark.asyncio
    async def test_sign_encode_verify(self, signer: KeypairSigner) -> None:
        message = build_message("chat", CHAT_PAYLOAD, 1000)
        encoded = encode_signature(await sign_message(message, signer), signer.public_key)

        assert encoded.wallet == str(signer.public_key)
        assert verify_signature(message, encoded.signature, encoded.wallet) is True

    @pytest.mark.asyncio
    async def test_mutations_fail_verification(self, signer: KeypairSigner) -> None:
        message = build_message("chat", CHAT_PAYLOAD, 1000)
        encoded = encode_signature(await sign_message(message, signer), signer.public_key)
        other = str(Keypair().pubkey())

        assert verify_signature(message + " ", encoded.signature, encoded.wallet) is False
        assert verify_signature(message.replace("hi", "hj"), encoded.signature, encoded.wallet) is False
        assert verify_signature(message, flip_char(encoded.signature, 10), encoded.wallet) is False
        assert verify_signature(message, encoded.signature, other) is False

    @pytest.mark.asyncio
    async def test_single_bit_flip_in_signature(self, signer: KeypairSigner) -> None:
        message = "ClawdVault:chat:900:{}"
        raw = bytearray(await sign_message(message, signer))
        raw[0] ^= 0x01
        mutated = str(Signature.from_bytes(bytes(raw)))

        assert verify_signature(message, mutated, str(signer.public_key)) is False

    @pytest.mark.parametrize(
        "signature,public_key",
        [
            ("", ""),
            ("not-base58-0OIl", "11111111111111111111111111111111"),
            (str(Signature.default()), "tooshort"),
            ("abc", "abc"),
        ],
    )
    def test_malformed_input_returns_false(self, signature: str, public_key: str) -> None:
        assert verify_signature("ClawdVault:chat:0:{}", signature, public_key) is False

    @pytest.mark.asyncio
    async def test_create_auth_signature_uses_action(self, signer: KeypairSigner) -> None:
        credential = await create_auth_signature(signer, CHAT_PAYLOAD, "chat", now=1000)

        assert isinstance(credential, AuthSignature)
        expected = build_message("chat", CHAT_PAYLOAD, 1000)
        assert verify_signature(expected, credential.signature, credential.wallet)

    @pytest.mark.asyncio
    async def test_create_auth_signature_action_from_payload(self, signer: KeypairSigner) -> None:
        payload = {"action": "react", "emoji": "x"}
        credential = await create_auth_signature(signer, payload, now=1000)

        assert verify_signature(build_message("react", payload, 1000), credential.signature, credential.wallet)

    @pytest.mark.asyncio
    async def test_create_auth_signature_defaults_to_session(self, signer: KeypairSigner) -> None:
        credential = await create_auth_signature(signer, {}, now=1000)
        session_message = 'ClawdVault:session:900:{"action":"create_session"}'

        assert verify_signature(session_message, credential.signature, credential.wallet)

    @pytest.mark.asyncio
    async def test_identical_requests_in_window_share_signature(self, signer: KeypairSigner) -> None:
        first = await create_auth_signature(signer, CHAT_PAYLOAD, "chat", now=1200)
        second = await create_auth_signature(signer, CHAT_PAYLOAD, "chat", now=1499)
        assert first == second

    @pytest.mark.asyncio
    async def test_signer_failure_propagates(self) -> None:
        with pytest.raises(PermissionError, match="rejected"):
            await create_auth_signature(FailingSigner(), CHAT_PAYLOAD, "chat")


# =============================================================================
# KeypairSigner
# =============================================================================


class TestKeypairSigner:
    """Tests for keypair loading and transaction signing."""

    def test_is_wallet_signer(self, signer: KeypairSigner) -> None:
        assert isinstance(signer, WalletSigner)

    def test_json_round_trip(self, signer: KeypairSigner) -> None:
        restored = KeypairSigner(signer.to_json())
        assert restored.public_key == signer.public_key

    def test_from_base58(self, signer: KeypairSigner) -> None:
        restored = KeypairSigner(str(signer.keypair))
        assert restored.public_key == signer.public_key

    def test_from_short_base58(self, signer: KeypairSigner) -> None:
        """Keys with a leading zero byte encode to fewer than 87 characters."""
        encoded = str(signer.keypair)
        assert len(encoded) < 87
        assert KeypairSigner(encoded).public_key == signer.public_key

    def test_rejects_wrong_length_base58(self) -> None:
        with pytest.raises(ValueError):
            KeypairSigner("3yZe7d")

    def test_from_raw_bytes(self, signer: KeypairSigner) -> None:
        assert KeypairSigner(bytes(signer.keypair)).public_key == signer.public_key

    def test_from_file(self, signer: KeypairSigner, tmp_path: Path) -> None:
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(signer.keypair))))
        assert KeypairSigner.from_file(path).public_key == signer.public_key

    def test_from_env(self, signer: KeypairSigner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOLANA_PRIVATE_KEY", str(signer.keypair))
        assert KeypairSigner.from_env().public_key == signer.public_key

    def test_from_env_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SOLANA_PRIVATE_KEY", raising=False)
        with pytest.raises(ValueError, match="SOLANA_PRIVATE_KEY"):
            KeypairSigner.from_env()

    def test_rejects_garbage_key(self) -> None:
        with pytest.raises(ValueError):
            KeypairSigner("definitely not a key")

    def test_generate_creates_distinct_keys(self) -> None:
        assert KeypairSigner.generate().public_key != KeypairSigner.generate().public_key

    @pytest.mark.asyncio
    async def test_sign_and_serialize_legacy_transaction(self, signer: KeypairSigner) -> None:
        instruction = transfer(
            TransferParams(
                from_pubkey=signer.public_key,
                to_pubkey=Keypair().pubkey(),
                lamports=1_000,
            )
        )
        message = Message.new_with_blockhash([instruction], signer.public_key, Hash.default())
        unsigned = Transaction.new_unsigned(message)
        encoded = base64.b64encode(bytes(unsigned)).decode()

        signed_b64 = await sign_and_serialize(encoded, signer)
        signed = Transaction.from_bytes(base64.b64decode(signed_b64))

        assert signed.signatures[0] != Signature.default()
        assert signed.signatures[0].verify(signer.public_key, bytes(signed.message))

    @pytest.mark.asyncio
    async def test_sign_and_serialize_rejects_foreign_transaction(self, signer: KeypairSigner) -> None:
        payer = Keypair().pubkey()
        instruction = transfer(TransferParams(from_pubkey=payer, to_pubkey=payer, lamports=1))
        message = Message.new_with_blockhash([instruction], payer, Hash.default())
        encoded = base64.b64encode(bytes(Transaction.new_unsigned(message))).decode()

        with pytest.raises(ValueError, match="not a required signer"):
            await sign_and_serialize(encoded, signer)
