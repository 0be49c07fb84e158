"""CLI configuration: API URL, wallet discovery and the cached auth session.

Files live under ~/.clawdvault (override with CLAWDVAULT_CONFIG_DIR):
- auth.json: session token from `clawdvault wallet login` (mode 0600)
- wallet.json: keypair created by `clawdvault wallet generate`
- agent.json: API key from `clawdvault agent register` (mode 0600)
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .sdk.streaming import DEFAULT_BASE_URL
from .sdk.wallet import KeypairSigner

logger = logging.getLogger(__name__)

API_URL_ENV = "CLAWDVAULT_API_URL"
WALLET_ENV = "CLAWDVAULT_WALLET"
CONFIG_DIR_ENV = "CLAWDVAULT_CONFIG_DIR"

DEFAULT_SESSION_SECONDS = 7 * 24 * 60 * 60


class AuthConfig(BaseModel):
    """Cached session, stored with the same keys the web app uses."""

    model_config = ConfigDict(populate_by_name=True)

    session_token: str | None = Field(default=None, alias="sessionToken")
    wallet: str | None = None
    expires_at: datetime | None = Field(default=None, alias="expiresAt")

    @classmethod
    def from_session(
        cls, token: str, wallet: str, expires_in: int | None, now: datetime | None = None
    ) -> AuthConfig:
        now = now or datetime.now(UTC)
        lifetime = timedelta(seconds=expires_in or DEFAULT_SESSION_SECONDS)
        return cls(session_token=token, wallet=wallet, expires_at=now + lifetime)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at <= (now or datetime.now(UTC))


def get_config_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".clawdvault"


def get_auth_config_path() -> Path:
    return get_config_dir() / "auth.json"


def get_api_url(override: str | None = None) -> str:
    """Resolve the API base URL: explicit value, then environment, then default."""
    return override or os.environ.get(API_URL_ENV) or DEFAULT_BASE_URL


def load_auth_config() -> AuthConfig | None:
    """Load the cached session, deleting it if it has expired.

    An unreadable or corrupt file is treated as "not logged in".
    """
    path = get_auth_config_path()
    if not path.exists():
        return None

    try:
        config = AuthConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable auth config {path}: {e}")
        return None

    if config.is_expired():
        logger.info(f"Session in {path} expired, removing it")
        path.unlink(missing_ok=True)
        return None
    return config


def save_auth_config(config: AuthConfig) -> Path:
    """Write the session to auth.json, readable only by the current user."""
    path = get_auth_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    path.chmod(0o600)
    return path


def clear_auth_config() -> bool:
    """Delete auth.json. Returns True if a session was removed."""
    path = get_auth_config_path()
    if not path.exists():
        return False
    path.unlink()
    return True


class AgentConfig(BaseModel):
    """Agent credentials from `clawdvault agent register`."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(alias="apiKey")
    wallet: str
    agent_id: str | None = Field(default=None, alias="agentId")
    name: str | None = None


def get_agent_config_path() -> Path:
    return get_config_dir() / "agent.json"


def load_agent_config() -> AgentConfig | None:
    path = get_agent_config_path()
    if not path.exists():
        return None
    try:
        return AgentConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable agent config {path}: {e}")
        return None


def save_agent_config(config: AgentConfig) -> Path:
    """Write agent.json, readable only by the current user."""
    path = get_agent_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        config.model_dump_json(by_alias=True, exclude_none=True, indent=2), encoding="utf-8"
    )
    path.chmod(0o600)
    return path


def get_wallet_path() -> Path | None:
    """Find a wallet: $CLAWDVAULT_WALLET, <config>/wallet.json, then the Solana CLI default."""
    env_wallet = os.environ.get(WALLET_ENV)
    if env_wallet:
        return Path(env_wallet).expanduser()

    for candidate in (
        get_config_dir() / "wallet.json",
        Path.home() / ".config" / "solana" / "id.json",
    ):
        if candidate.exists():
            return candidate
    return None


def load_signer(wallet: str | None = None) -> KeypairSigner | None:
    """Load a signer from a wallet file path or an inline secret key.

    Returns None if no wallet is configured or it cannot be parsed.
    """
    source: str | Path | None = wallet or get_wallet_path()
    if source is None:
        return None

    path = Path(source).expanduser()
    try:
        if path.exists():
            return KeypairSigner.from_file(path)
        return KeypairSigner(str(source))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load wallet from {source}: {e}")
        return None


def write_wallet_file(signer: KeypairSigner, path: Path) -> Path:
    """Save a keypair in Solana CLI format with owner-only permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(signer.to_json(), encoding="utf-8")
    path.chmod(0o600)
    return path
