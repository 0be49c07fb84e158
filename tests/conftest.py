"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from solders.keypair import Keypair

from clawdvault.sdk.event_source import MockEventSourceFactory
from clawdvault.sdk.wallet import KeypairSigner

# Fixed seed so addresses and signatures are stable across runs
TEST_SEED = bytes(range(32))


@pytest.fixture
def signer() -> KeypairSigner:
    """Deterministic keypair signer."""
    return KeypairSigner(Keypair.from_seed(TEST_SEED))


@pytest.fixture
def source_factory() -> MockEventSourceFactory:
    return MockEventSourceFactory()


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated CLAWDVAULT_CONFIG_DIR with no wallet or session."""
    directory = tmp_path / "clawdvault"
    monkeypatch.setenv("CLAWDVAULT_CONFIG_DIR", str(directory))
    monkeypatch.delenv("CLAWDVAULT_WALLET", raising=False)
    monkeypatch.delenv("CLAWDVAULT_API_URL", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return directory


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_for() -> Callable[..., Any]:
    """Async helper: yield to the event loop until predicate() holds."""
    return _wait_for
