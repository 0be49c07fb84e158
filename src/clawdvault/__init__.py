"""ClawdVault - SDK and CLI for the ClawdVault token launchpad on Solana."""

__version__ = "0.1.0"
