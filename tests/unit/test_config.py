"""Unit tests for CLI configuration (auth session cache, wallet discovery)."""

from __future__ import annotations

import json
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from clawdvault.config import (
    AgentConfig,
    AuthConfig,
    clear_auth_config,
    get_api_url,
    get_auth_config_path,
    get_wallet_path,
    load_agent_config,
    load_auth_config,
    load_signer,
    save_agent_config,
    save_auth_config,
    write_wallet_file,
)
from clawdvault.sdk.wallet import KeypairSigner


class TestAuthConfig:
    """Tests for the cached session file."""

    def test_from_session_default_lifetime(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        auth = AuthConfig.from_session("tok", "W1", None, now=now)
        assert auth.expires_at == now + timedelta(days=7)

    def test_from_session_uses_expires_in(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        auth = AuthConfig.from_session("tok", "W1", 60, now=now)
        assert auth.expires_at == now + timedelta(seconds=60)
        assert not auth.is_expired(now)
        assert auth.is_expired(now + timedelta(seconds=60))

    def test_save_and_load(self, config_dir: Path) -> None:
        auth = AuthConfig.from_session("tok", "W1", 3600)
        path = save_auth_config(auth)

        assert path == config_dir / "auth.json"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        stored = json.loads(path.read_text())
        assert set(stored) == {"sessionToken", "wallet", "expiresAt"}

        loaded = load_auth_config()
        assert loaded is not None
        assert loaded.session_token == "tok"
        assert loaded.wallet == "W1"

    def test_expired_session_is_deleted(self, config_dir: Path) -> None:
        expired = AuthConfig(
            session_token="old", wallet="W1", expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        save_auth_config(expired)

        assert load_auth_config() is None
        assert not get_auth_config_path().exists()

    def test_corrupt_file_treated_as_logged_out(self, config_dir: Path) -> None:
        config_dir.mkdir(parents=True)
        (config_dir / "auth.json").write_text("{not json")
        assert load_auth_config() is None

    def test_missing_file(self, config_dir: Path) -> None:
        assert load_auth_config() is None
        assert clear_auth_config() is False

    def test_clear(self, config_dir: Path) -> None:
        save_auth_config(AuthConfig.from_session("tok", "W1", 3600))
        assert clear_auth_config() is True
        assert load_auth_config() is None


class TestAgentConfig:
    """Tests for the saved agent credentials."""

    def test_save_and_load(self, config_dir: Path) -> None:
        path = save_agent_config(AgentConfig(api_key="cv_key", wallet="W1", agent_id="a1"))

        assert path == config_dir / "agent.json"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert json.loads(path.read_text()) == {"apiKey": "cv_key", "wallet": "W1", "agentId": "a1"}

        loaded = load_agent_config()
        assert loaded is not None
        assert loaded.api_key == "cv_key"
        assert loaded.name is None

    def test_missing_file(self, config_dir: Path) -> None:
        assert load_agent_config() is None

    def test_corrupt_file_is_ignored(self, config_dir: Path) -> None:
        config_dir.mkdir(parents=True)
        (config_dir / "agent.json").write_text('{"wallet": "W1"}')
        assert load_agent_config() is None


class TestWalletDiscovery:
    """Tests for wallet lookup order."""

    def test_env_var_wins(self, config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLAWDVAULT_WALLET", "/some/wallet.json")
        assert get_wallet_path() == Path("/some/wallet.json")

    def test_config_dir_wallet(self, config_dir: Path, signer: KeypairSigner) -> None:
        path = write_wallet_file(signer, config_dir / "wallet.json")
        assert get_wallet_path() == path
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_solana_cli_default(self, config_dir: Path, tmp_path: Path, signer: KeypairSigner) -> None:
        solana = tmp_path / "home" / ".config" / "solana" / "id.json"
        write_wallet_file(signer, solana)
        assert get_wallet_path() == solana

    def test_no_wallet(self, config_dir: Path) -> None:
        assert get_wallet_path() is None
        assert load_signer() is None

    def test_load_signer_from_file(self, config_dir: Path, signer: KeypairSigner) -> None:
        write_wallet_file(signer, config_dir / "wallet.json")
        loaded = load_signer()
        assert loaded is not None
        assert loaded.public_key == signer.public_key

    def test_load_signer_from_inline_key(self, config_dir: Path, signer: KeypairSigner) -> None:
        loaded = load_signer(str(signer.keypair))
        assert loaded is not None
        assert loaded.public_key == signer.public_key

    def test_load_signer_unparseable(self, config_dir: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text('"nope"')
        assert load_signer(str(bad)) is None
        assert load_signer("not a key") is None


class TestApiUrl:
    def test_precedence(self, config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        assert get_api_url() == "https://clawdvault.com/api"
        monkeypatch.setenv("CLAWDVAULT_API_URL", "https://env.test/api")
        assert get_api_url() == "https://env.test/api"
        assert get_api_url("https://flag.test/api") == "https://flag.test/api"
