"""ClawdVault CLI.

Usage:
    clawdvault tokens list                      # Newest tokens
    clawdvault tokens list --sort market_cap    # Top tokens by market cap
    clawdvault token get <mint>                 # Token details
    clawdvault token create -n Name -s SYM      # Launch a token
    clawdvault token holders <mint>             # Top holders

    clawdvault trade quote <mint> buy 0.5       # Price a trade
    clawdvault trade buy <mint> 0.5             # Buy with 0.5 SOL
    clawdvault trade sell <mint> --percent 50   # Sell half of holdings
    clawdvault trade buy <mint> 1 --simulate    # Preview only

    clawdvault wallet generate                  # Create ~/.clawdvault/wallet.json
    clawdvault wallet login                     # Cache a session token
    clawdvault wallet status                    # Show session state

    clawdvault chat history <mint>              # Recent chat messages
    clawdvault chat send <mint> "gm"            # Post a message

    clawdvault agent register --wallet <addr>   # Register an AI agent
    clawdvault user search <query>              # Find users

    clawdvault stream trades --mint <mint>      # Live trades until Ctrl+C
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import click
import httpx
from pydantic import ValidationError

from .config import (
    AgentConfig,
    AuthConfig,
    clear_auth_config,
    get_api_url,
    get_config_dir,
    get_wallet_path,
    load_agent_config,
    load_auth_config,
    load_signer,
    save_agent_config,
    save_auth_config,
    write_wallet_file,
)
from .sdk.client import ClawdVaultClient, ClientConfig
from .sdk.errors import ClawdVaultError, ReconnectExhaustedError, StreamError
from .sdk.event_source import EventSourceFactory
from .sdk.streaming import ClawdVaultStreaming, StreamingOptions, StreamTopic
from .sdk.types import (
    APIModel,
    QuoteResponse,
    StreamChatMessage,
    StreamTokenConnected,
    StreamTokenUpdate,
    StreamTrade,
)
from .sdk.wallet import KeypairSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def format_datetime(dt: datetime | str | None) -> str:
    """Format datetime for display."""
    if dt is None:
        return "N/A"
    if isinstance(dt, str):
        try:
            dt = datetime.fromisoformat(dt.rstrip("Z"))
        except ValueError:
            return dt
    return dt.strftime("%Y-%m-%d %H:%M")


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def shorten_address(address: str | None, chars: int = 4) -> str:
    if not address:
        return "?"
    return f"{address[:chars]}...{address[-chars:]}"


def format_sol(amount: float | None) -> str:
    return f"{amount or 0:.9f} SOL"


def format_tokens(amount: float | None) -> str:
    amount = amount or 0
    for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if amount >= threshold:
            return f"{amount / threshold:.2f}{suffix}"
    return f"{amount:.2f}"


def echo_json(data: Any) -> None:
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json", by_alias=True)
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@dataclass
class CLIContext:
    """Shared state for all commands (populated by the main group)."""

    api_url: str | None = None
    wallet: str | None = None
    transport: httpx.AsyncBaseTransport | None = None
    source_factory: EventSourceFactory | None = None

    def signer(self) -> KeypairSigner | None:
        return load_signer(self.wallet)

    def require_signer(self) -> KeypairSigner:
        signer = self.signer()
        if signer is None:
            raise ClawdVaultError(
                "Wallet required for this operation. "
                "Set CLAWDVAULT_WALLET, pass --wallet, or run: clawdvault wallet generate"
            )
        return signer

    def client(
        self,
        signer: KeypairSigner | None = None,
        use_session: bool = True,
    ) -> ClawdVaultClient:
        auth = load_auth_config() if use_session else None
        config = ClientConfig(
            base_url=get_api_url(self.api_url),
            signer=signer,
            session_token=auth.session_token if auth else None,
        )
        http_client = httpx.AsyncClient(transport=self.transport) if self.transport else None
        return ClawdVaultClient(config, http_client=http_client)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine, turning SDK and network errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except ClawdVaultError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except httpx.HTTPError as e:
        click.echo(f"Request failed: {e}", err=True)
        sys.exit(1)


pass_cli = click.make_pass_decorator(CLIContext, ensure=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--api-url", envvar="CLAWDVAULT_API_URL", help="API base URL")
@click.option("--wallet", "-w", help="Wallet file path or base58 secret key")
@click.pass_context
def main(ctx: click.Context, verbose: bool, api_url: str | None, wallet: str | None) -> None:
    """ClawdVault - launch and trade tokens on Solana."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    obj = ctx.ensure_object(CLIContext)
    obj.api_url = api_url or obj.api_url
    obj.wallet = wallet or obj.wallet


# =============================================================================
# Token Commands
# =============================================================================


@main.group()
def tokens() -> None:
    """Browse launched tokens."""


@tokens.command("list")
@click.option("--sort", "-s", default="created_at", help="created_at, market_cap, volume, price")
@click.option("--page", "-p", default=1, help="Page number")
@click.option("--limit", "-n", default=20, help="Tokens per page")
@click.option("--graduated/--not-graduated", default=None, help="Filter by graduation")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@pass_cli
def tokens_list(
    obj: CLIContext, sort: str, page: int, limit: int, graduated: bool | None, output_format: str
) -> None:
    """List tokens.

    Examples:

        clawdvault tokens list --sort market_cap --limit 10

        clawdvault tokens list --graduated --format json
    """

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.list_tokens(sort=sort, page=page, limit=limit, graduated=graduated)

        if output_format == FORMAT_JSON:
            echo_json(result)
            return

        if not result.tokens:
            click.echo("No tokens found.")
            return

        click.echo(f"{'Symbol':<10} {'Name':<24} {'Price (SOL)':>16} {'MCap (SOL)':>12} {'Mint':<12}")
        click.echo("-" * 78)
        for token in result.tokens:
            grad = "*" if token.graduated else " "
            click.echo(
                f"{truncate(token.symbol, 10):<10} {truncate(token.name, 24):<24} "
                f"{token.price_sol:>16.10f} {token.market_cap_sol:>12.2f} "
                f"{shorten_address(token.mint):<11}{grad}"
            )
        click.echo(f"\nPage {result.page}, total: {result.total} token(s)")

    run_async(execute())


@main.group()
def token() -> None:
    """Inspect or create a single token."""


@token.command("get")
@click.argument("mint")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def token_get(obj: CLIContext, mint: str, output_json: bool) -> None:
    """Show token details and recent trades."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.get_token(mint)

        if output_json:
            echo_json(result)
            return

        t = result.token
        click.echo(f"{t.name} ({t.symbol})")
        click.echo(f"Mint:       {t.mint}")
        click.echo(f"Creator:    {t.creator or 'N/A'}")
        click.echo(f"Price:      {format_sol(t.price_sol)}")
        click.echo(f"Market cap: {t.market_cap_sol:.2f} SOL")
        click.echo(f"Graduated:  {'yes' if t.graduated else 'no'}")
        click.echo(f"Created:    {format_datetime(t.created_at)}")
        if t.description:
            click.echo(f"\n{truncate(t.description, 200)}")

        if result.trades:
            click.echo("\n--- Recent trades ---")
            for trade in result.trades[:10]:
                click.echo(
                    f"{trade.type.upper():<5} {format_sol(trade.sol_amount):<18} "
                    f"{format_tokens(trade.token_amount):<10} {shorten_address(trade.trader)}"
                )

    run_async(execute())


@token.command("create")
@click.option("--name", "-n", required=True, help="Token name")
@click.option("--symbol", "-s", required=True, help="Token symbol")
@click.option("--description", "-d", help="Token description")
@click.option("--image", "-i", type=click.Path(exists=True, dir_okay=False), help="Image file")
@click.option("--initial-buy", type=float, help="Initial buy in SOL")
@click.option("--twitter", help="Twitter URL")
@click.option("--telegram", help="Telegram URL")
@click.option("--website", help="Website URL")
@pass_cli
def token_create(
    obj: CLIContext,
    name: str,
    symbol: str,
    description: str | None,
    image: str | None,
    initial_buy: float | None,
    twitter: str | None,
    telegram: str | None,
    website: str | None,
) -> None:
    """Launch a new token on the bonding curve."""

    async def execute() -> None:
        signer = obj.require_signer()
        async with obj.client(signer) as client:
            image_url = None
            if image:
                image_url = (await client.upload_image_from_path(image)).url
                click.echo(f"Uploaded image: {image_url}", err=True)

            result = await client.create_token(
                name,
                symbol,
                description=description,
                image=image_url,
                initial_buy=initial_buy,
                twitter=twitter,
                telegram=telegram,
                website=website,
            )

        click.echo(f"Created {name} ({symbol})")
        click.echo(f"Mint:      {result.mint}")
        click.echo(f"Signature: {result.signature}")
        if result.explorer:
            click.echo(f"Explorer:  {result.explorer}")

    run_async(execute())


@token.command("stats")
@click.argument("mint")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def token_stats(obj: CLIContext, mint: str, output_json: bool) -> None:
    """Show on-chain bonding-curve stats."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.get_stats(mint)

        if output_json:
            echo_json(result)
            return

        on_chain = result.get("onChain")
        if not on_chain:
            click.echo("No on-chain data available")
            return

        click.echo(f"Price:         {format_sol(on_chain.get('price'))}")
        click.echo(f"Market cap:    {format_sol(on_chain.get('marketCap'))}")
        click.echo(f"Total supply:  {format_tokens(on_chain.get('totalSupply'))}")
        click.echo(f"Circulating:   {format_tokens(on_chain.get('circulatingSupply'))}")
        click.echo(f"Curve balance: {format_tokens(on_chain.get('bondingCurveBalance'))}")
        click.echo(f"Curve SOL:     {format_sol(on_chain.get('bondingCurveSol'))}")
        click.echo(f"Status:        {'graduated' if on_chain.get('graduated') else 'bonding'}")

    run_async(execute())


@token.command("holders")
@click.argument("mint")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def token_holders(obj: CLIContext, mint: str, output_json: bool) -> None:
    """Show the top holders of MINT."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.get_holders(mint)

        if output_json:
            echo_json(result)
            return
        if not result.holders:
            click.echo("No holders found.")
            return

        click.echo(f"{'#':>3} {'Address':<12} {'Balance':>10} {'%':>8}  Label")
        click.echo("-" * 46)
        for rank, holder in enumerate(result.holders, 1):
            click.echo(
                f"{rank:>3} {shorten_address(holder.address):<12} "
                f"{format_tokens(holder.balance):>10} {holder.percentage:>7.2f}%  {holder.label or '-'}"
            )

    run_async(execute())


# =============================================================================
# Trade Commands
# =============================================================================


@main.group()
def trade() -> None:
    """Buy and sell tokens."""


def echo_quote(trade_type: str, quote: QuoteResponse) -> None:
    if trade_type == "buy":
        click.echo(f"Pay:      {format_sol(quote.input)}")
        click.echo(f"Receive:  {format_tokens(quote.output)} tokens")
    else:
        click.echo(f"Sell:     {format_tokens(quote.input)} tokens")
        click.echo(f"Receive:  {format_sol(quote.output)}")
    click.echo(f"Impact:   {quote.price_impact:.2f}%")
    click.echo(f"Fee:      {format_sol(quote.fee)}")


@trade.command("quote")
@click.argument("mint")
@click.argument("trade_type", type=click.Choice(["buy", "sell"]))
@click.argument("amount", type=float)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def trade_quote(obj: CLIContext, mint: str, trade_type: str, amount: float, output_json: bool) -> None:
    """Quote a trade (AMOUNT is SOL for buy, tokens for sell)."""

    async def execute() -> None:
        async with obj.client() as client:
            quote = await client.get_quote(mint, trade_type, amount)  # type: ignore[arg-type]

        if output_json:
            echo_json(quote)
            return
        echo_quote(trade_type, quote)

    run_async(execute())


@trade.command("buy")
@click.argument("mint")
@click.argument("sol_amount", type=float)
@click.option("--slippage", "-s", default=1.0, help="Slippage tolerance in percent")
@click.option("--simulate", is_flag=True, help="Show the quote without trading")
@pass_cli
def trade_buy(obj: CLIContext, mint: str, sol_amount: float, slippage: float, simulate: bool) -> None:
    """Buy MINT with SOL_AMOUNT SOL (routes through Jupiter once graduated)."""

    async def execute() -> None:
        if simulate:
            async with obj.client() as client:
                quote = await client.get_quote(mint, "buy", sol_amount)
            echo_quote("buy", quote)
            click.echo(f"Slippage: {slippage:.1f}%")
            click.echo("Simulation only - no transaction executed")
            return

        signer = obj.require_signer()
        async with obj.client(signer) as client:
            result = await client.smart_buy(mint, sol_amount, slippage / 100)

        click.echo(f"Bought {shorten_address(mint)} with {format_sol(sol_amount)}")
        click.echo(f"Signature: {result.signature}")

    run_async(execute())


@trade.command("sell")
@click.argument("mint")
@click.argument("token_amount", type=float, required=False)
@click.option("--percent", "-p", type=click.FloatRange(0, 100, min_open=True), help="Percent of holdings")
@click.option("--slippage", "-s", default=1.0, help="Slippage tolerance in percent")
@click.option("--simulate", is_flag=True, help="Show the quote without trading")
@pass_cli
def trade_sell(
    obj: CLIContext,
    mint: str,
    token_amount: float | None,
    percent: float | None,
    slippage: float,
    simulate: bool,
) -> None:
    """Sell TOKEN_AMOUNT tokens of MINT, or --percent of holdings."""
    if (token_amount is None) == (percent is None):
        raise click.UsageError("Pass either TOKEN_AMOUNT or --percent")

    async def execute() -> None:
        # A percentage needs the wallet's balance even when simulating
        signer = obj.require_signer() if not simulate or percent is not None else None
        async with obj.client(signer) as client:
            amount = token_amount
            if amount is None:
                balance = (await client.get_my_balance(mint)).balance
                if balance <= 0:
                    raise ClawdVaultError("No tokens to sell")
                amount = balance * (percent or 0) / 100

            if simulate:
                echo_quote("sell", await client.get_quote(mint, "sell", amount))
                click.echo(f"Slippage: {slippage:.1f}%")
                click.echo("Simulation only - no transaction executed")
                return
            result = await client.smart_sell(mint, amount, slippage / 100)

        click.echo(f"Sold {format_tokens(amount)} of {shorten_address(mint)}")
        click.echo(f"Signature: {result.signature}")

    run_async(execute())


@trade.command("history")
@click.argument("mint")
@click.option("--limit", "-n", default=20, help="Number of trades")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def trade_history(obj: CLIContext, mint: str, limit: int, output_json: bool) -> None:
    """Show recent trades for MINT."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.get_trades(mint, limit=limit)

        if output_json:
            echo_json(result)
            return
        if not result.trades:
            click.echo("No trades yet.")
            return

        for t in result.trades:
            click.echo(
                f"{format_datetime(t.created_at)} {t.type.upper():<4} "
                f"{format_sol(t.sol_amount):<18} {format_tokens(t.token_amount):<10} "
                f"@ {format_sol(t.price_sol or t.price):<18} {shorten_address(t.trader)}"
            )

    run_async(execute())


# =============================================================================
# Wallet Commands
# =============================================================================


@main.group()
def wallet() -> None:
    """Wallet and session management."""


@wallet.command("address")
@pass_cli
def wallet_address(obj: CLIContext) -> None:
    """Print the configured wallet's address."""
    signer = obj.signer()
    if signer is None:
        click.echo("No wallet found", err=True)
        sys.exit(1)
    click.echo(str(signer.public_key))


@wallet.command("generate")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output file")
@click.option("--force", is_flag=True, help="Overwrite an existing wallet")
def wallet_generate(output: str | None, force: bool) -> None:
    """Generate a new keypair (default: ~/.clawdvault/wallet.json)."""
    path = Path(output) if output else get_config_dir() / "wallet.json"
    if path.exists() and not force:
        click.echo(f"Wallet already exists at {path} (use --force to overwrite)", err=True)
        sys.exit(1)

    signer = KeypairSigner.generate()
    write_wallet_file(signer, path)
    click.echo(f"Address:  {signer.public_key}")
    click.echo(f"Saved to: {path}")
    click.echo("Back up this file: losing it means losing the funds it holds.", err=True)


@wallet.command("login")
@pass_cli
def wallet_login(obj: CLIContext) -> None:
    """Sign in with the wallet and cache a session token."""

    async def execute() -> None:
        signer = obj.require_signer()
        # A stale cached token must not authorize the new session request
        async with obj.client(signer, use_session=False) as client:
            session = await client.create_session()

        if not session.token:
            raise ClawdVaultError("Server did not return a session token")

        auth = AuthConfig.from_session(session.token, str(signer.public_key), session.expires_in)
        path = save_auth_config(auth)
        click.echo(f"Logged in as {auth.wallet}")
        click.echo(f"Session expires: {format_datetime(auth.expires_at)}")
        click.echo(f"Saved to: {path}", err=True)

    run_async(execute())


@wallet.command("logout")
def wallet_logout() -> None:
    """Forget the cached session token."""
    if clear_auth_config():
        click.echo("Logged out")
    else:
        click.echo("Not logged in")


@wallet.command("status")
@click.option("--check", is_flag=True, help="Validate the session with the server")
@pass_cli
def wallet_status(obj: CLIContext, check: bool) -> None:
    """Show the cached session."""
    auth = load_auth_config()
    if auth is None or not auth.session_token:
        click.echo("Not logged in. Run: clawdvault wallet login")
        return

    click.echo(f"Wallet:  {auth.wallet or 'unknown'}")
    click.echo(f"Expires: {format_datetime(auth.expires_at)}")

    if check:

        async def execute() -> None:
            async with obj.client() as client:
                result = await client.validate_session()
            click.echo(f"Valid:   {'yes' if result.valid else 'no'}")

        run_async(execute())


@wallet.command("balance")
@click.argument("mint")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def wallet_balance(obj: CLIContext, mint: str, output_json: bool) -> None:
    """Show the wallet's balance of MINT."""

    async def execute() -> None:
        signer = obj.require_signer()
        async with obj.client(signer) as client:
            result = await client.get_my_balance(mint)

        if output_json:
            echo_json(result)
            return
        click.echo(f"Wallet:  {signer.public_key}")
        click.echo(f"Token:   {mint}")
        click.echo(f"Balance: {format_tokens(result.balance)}")

    run_async(execute())


@wallet.command("path")
def wallet_path() -> None:
    """Show which wallet file would be used."""
    path = get_wallet_path()
    if path is None:
        click.echo("No wallet configured", err=True)
        sys.exit(1)
    click.echo(str(path))


@wallet.command("network")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def wallet_network(obj: CLIContext, output_json: bool) -> None:
    """Show which Solana network the API is using."""

    async def execute() -> None:
        async with obj.client() as client:
            status = await client.get_network_status()

        if output_json:
            echo_json(status)
            return
        click.echo(f"Network:     {status.network}")
        click.echo(f"Program ID:  {status.program_id or 'N/A'}")
        click.echo(f"RPC URL:     {status.rpc_url or 'N/A'}")
        click.echo(f"Initialized: {'yes' if status.config_initialized else 'no'}")

    run_async(execute())


@wallet.command("sol-price")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def wallet_sol_price(obj: CLIContext, output_json: bool) -> None:
    """Show the current SOL/USD price."""

    async def execute() -> None:
        async with obj.client() as client:
            price = await client.get_sol_price()

        if output_json:
            echo_json(price)
            return
        click.echo(f"SOL: ${price.price:.2f}")
        if price.cached:
            click.echo(f"Cached {price.age or 0:.0f}s ago from {price.source or 'unknown'}", err=True)

    run_async(execute())


# =============================================================================
# Chat Commands
# =============================================================================


@main.group()
def chat() -> None:
    """Token chat rooms."""


@chat.command("history")
@click.argument("mint")
@click.option("--limit", "-n", default=50, help="Maximum messages to show")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def chat_history(obj: CLIContext, mint: str, limit: int, output_json: bool) -> None:
    """Show recent chat messages for MINT."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.get_chat(mint, limit=limit)

        if output_json:
            echo_json(result)
            return
        if not result.messages:
            click.echo("No messages yet.")
            return
        for message in result.messages:
            author = message.username or shorten_address(message.wallet)
            click.echo(f"[{format_datetime(message.created_at)}] {author}: {message.message}")

    run_async(execute())


@chat.command("send")
@click.argument("mint")
@click.argument("message")
@click.option("--reply", "reply_to", help="Message ID to reply to")
@pass_cli
def chat_send(obj: CLIContext, mint: str, message: str, reply_to: str | None) -> None:
    """Post MESSAGE to MINT's chat."""

    async def execute() -> None:
        signer = obj.require_signer()
        async with obj.client(signer) as client:
            await client.send_chat(mint, message, reply_to=reply_to)
        click.echo("Message sent")

    run_async(execute())


@chat.command("react")
@click.argument("message_id")
@click.argument("emoji")
@pass_cli
def chat_react(obj: CLIContext, message_id: str, emoji: str) -> None:
    """Add an EMOJI reaction to a chat message."""

    async def execute() -> None:
        signer = obj.require_signer()
        async with obj.client(signer) as client:
            await client.add_reaction(message_id, emoji)
        click.echo(f"Reacted with {emoji}")

    run_async(execute())


@chat.command("unreact")
@click.argument("message_id")
@click.argument("emoji")
@pass_cli
def chat_unreact(obj: CLIContext, message_id: str, emoji: str) -> None:
    """Remove your EMOJI reaction from a chat message."""

    async def execute() -> None:
        signer = obj.require_signer()
        async with obj.client(signer) as client:
            await client.remove_reaction(message_id, emoji)
        click.echo(f"Removed {emoji} reaction")

    run_async(execute())


# =============================================================================
# Agent Commands
# =============================================================================


@main.group()
def agent() -> None:
    """AI agent registration and leaderboard."""


def _agent_credentials(api_key: str | None, wallet: str | None = None) -> tuple[str, str | None]:
    saved = load_agent_config()
    api_key = api_key or (saved.api_key if saved else None)
    if not api_key:
        raise ClawdVaultError("No API key found. Run `clawdvault agent register` first or pass --api-key")
    return api_key, wallet or (saved.wallet if saved else None)


@agent.command("register")
@click.option("--wallet", "agent_wallet", required=True, help="Solana wallet address of the agent")
@click.option("--name", help="Agent display name")
@pass_cli
def agent_register(obj: CLIContext, agent_wallet: str, name: str | None) -> None:
    """Register a new AI agent and save its API key."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.register_agent(wallet=agent_wallet, name=name)

        api_key = result.get("apiKey")
        if not api_key:
            raise ClawdVaultError("Server did not return an API key")

        path = save_agent_config(
            AgentConfig(api_key=api_key, wallet=agent_wallet, agent_id=result.get("agentId"), name=name)
        )
        click.echo(f"Agent ID:   {result.get('agentId', '')}")
        click.echo(f"API key:    {api_key}")
        click.echo(f"Claim code: {result.get('claimCode', '')}")
        if result.get("tweetTemplate"):
            click.echo(f"\nTweet this to verify:\n{result['tweetTemplate']}")
        click.echo("Save your API key: it is only shown once.", err=True)
        click.echo(f"Saved to: {path}", err=True)

    run_async(execute())


@agent.command("claim")
@click.option("--tweet", "tweet_url", required=True, help="URL of the tweet with the claim code")
@click.option("--api-key", help="Agent API key (default: saved config)")
@pass_cli
def agent_claim(obj: CLIContext, tweet_url: str, api_key: str | None) -> None:
    """Verify the agent through its claim tweet."""

    async def execute() -> None:
        key, _ = _agent_credentials(api_key)
        async with obj.client() as client:
            result = await client.claim_agent(apiKey=key, tweetUrl=tweet_url)

        click.echo("Agent verified")
        if result.get("twitterHandle"):
            click.echo(f"Twitter:  @{result['twitterHandle']}")
        if result.get("verifiedAt"):
            click.echo(f"Verified: {format_datetime(result['verifiedAt'])}")

    run_async(execute())


@agent.command("upload-avatar")
@click.option("--image", required=True, type=click.Path(exists=True, dir_okay=False), help="Image file")
@click.option("--api-key", help="Agent API key (default: saved config)")
@click.option("--wallet", "agent_wallet", help="Agent wallet address (default: saved config)")
@pass_cli
def agent_upload_avatar(
    obj: CLIContext, image: str, api_key: str | None, agent_wallet: str | None
) -> None:
    """Upload the agent's avatar image."""

    async def execute() -> None:
        key, wallet_address = _agent_credentials(api_key, agent_wallet)
        if not wallet_address:
            raise ClawdVaultError("No wallet found. Pass --wallet or register first")

        path = Path(image)
        async with obj.client() as client:
            result = await client.upload_avatar(path.read_bytes(), wallet_address, key, path.name)
        click.echo(f"Avatar uploaded: {result.url}")

    run_async(execute())


LEADERBOARD_SORTS = click.Choice(["volume", "tokens", "fees"])


def echo_leaderboard(entries: list[dict[str, Any]], offset: int, show_handle: bool) -> None:
    for rank, entry in enumerate(entries, offset + 1):
        name = entry.get("name") or shorten_address(entry.get("wallet"))
        handle = f"@{entry['twitter_handle']}" if entry.get("twitter_handle") else "-"
        line = f"{rank:>3} {truncate(name, 20):<20} "
        if show_handle:
            line += f"{truncate(handle, 16):<16} "
        line += (
            f"${entry.get('total_volume') or 0:>12,.2f} {entry.get('tokens_created') or 0:>6} "
            f"${entry.get('total_fees') or 0:>10,.2f}"
        )
        if show_handle and entry.get("twitter_verified"):
            line += "  verified"
        click.echo(line)


@agent.command("list")
@click.option("--sort", default="volume", type=LEADERBOARD_SORTS, help="Sort field")
@click.option("--limit", "-n", default=25, help="Number of results")
@click.option("--page", "-p", default=1, help="Page number")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def agent_list(obj: CLIContext, sort: str, limit: int, page: int, output_json: bool) -> None:
    """Show the agent leaderboard."""

    async def execute() -> None:
        async with obj.client() as client:
            result = await client.list_agents(sortBy=sort, limit=limit, page=page)

        if output_json:
            echo_json(result)
            return
        agents = result.get("agents") or []
        if not agents:
            click.echo("No agents found.")
            return

        click.echo(f"Agent leaderboard (sorted by {sort})\n")
        echo_leaderboard(agents, (page - 1) * limit, show_handle=True)
        click.echo(f"\nPage {result.get('page', page)}, total: {result.get('total', 0)} agent(s)")

    run_async(execute())


# =============================================================================
# User Commands
# =============================================================================


@main.group()
def user() -> None:
    """User leaderboard and search."""


def _list_users(
    obj: CLIContext, sort: str, limit: int, page: int, search: str | None, output_json: bool
) -> None:
    async def execute() -> None:
        async with obj.client() as client:
            result = await client.list_users(sortBy=sort, limit=limit, page=page, search=search)

        if output_json:
            echo_json(result)
            return
        users = result.get("users") or []
        if not users:
            click.echo(f'No users found matching "{search}"' if search else "No users found.")
            return

        title = f'User search: "{search}"' if search else "User leaderboard"
        click.echo(f"{title} (sorted by {sort})\n")
        echo_leaderboard(users, (page - 1) * limit, show_handle=False)
        click.echo(f"\nPage {result.get('page', page)}, total: {result.get('total', 0)} user(s)")

    run_async(execute())


@user.command("list")
@click.option("--sort", default="volume", type=LEADERBOARD_SORTS, help="Sort field")
@click.option("--limit", "-n", default=25, help="Number of results")
@click.option("--page", "-p", default=1, help="Page number")
@click.option("--search", help="Filter by name or wallet")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def user_list(
    obj: CLIContext, sort: str, limit: int, page: int, search: str | None, output_json: bool
) -> None:
    """Show the user leaderboard."""
    _list_users(obj, sort, limit, page, search, output_json)


@user.command("search")
@click.argument("query")
@click.option("--sort", default="volume", type=LEADERBOARD_SORTS, help="Sort field")
@click.option("--limit", "-n", default=25, help="Number of results")
@click.option("--page", "-p", default=1, help="Page number")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli
def user_search(
    obj: CLIContext, query: str, sort: str, limit: int, page: int, output_json: bool
) -> None:
    """Search users by name or wallet."""
    _list_users(obj, sort, limit, page, query, output_json)


# =============================================================================
# Stream Commands
# =============================================================================


def _format_trade(trade: StreamTrade) -> str:
    kind = "BUY " if trade.type == "buy" else "SELL"
    return (
        f"{format_datetime(trade.created_at)} {kind} "
        f"{format_sol(trade.sol_amount):<18} {format_tokens(trade.token_amount):<10} "
        f"@ {format_sol(trade.price_sol):<18} {shorten_address(trade.trader)}"
    )


def _format_update(update: StreamTokenUpdate) -> str:
    line = f"price {format_sol(update.price_sol)}  mcap {update.market_cap_sol:.2f} SOL"
    return line + ("  [graduated]" if update.graduated else "")


def _format_connected(token: StreamTokenConnected) -> str:
    return f"{token.name} ({token.symbol})  {_format_update(token)}"


def _format_chat(message: StreamChatMessage) -> str:
    author = message.username or shorten_address(message.wallet)
    return f"{author}: {message.message}"


StreamFormatter = tuple[type[APIModel], Callable[[Any], str]]

# Channel -> payload model and line formatter, per topic
STREAM_CHANNELS: dict[StreamTopic, dict[str, StreamFormatter]] = {
    StreamTopic.TRADES: {"trade": (StreamTrade, _format_trade)},
    StreamTopic.TOKEN: {
        "connected": (StreamTokenConnected, _format_connected),
        "update": (StreamTokenUpdate, _format_update),
    },
    StreamTopic.CHAT: {"message": (StreamChatMessage, _format_chat)},
}


async def stream_until_exhausted(
    streaming: ClawdVaultStreaming, topic: StreamTopic, mint: str, output_json: bool
) -> StreamError | None:
    """Print events until reconnects are exhausted; return the terminal error."""
    conn = streaming.get_or_create(topic, mint)
    done = asyncio.Event()
    terminal: list[StreamError] = []

    def on_error(error: StreamError) -> None:
        if isinstance(error, ReconnectExhaustedError):
            terminal.append(error)
            done.set()

    def printer(model: type[APIModel], fmt: Callable[[Any], str]) -> Callable[[Any], None]:
        def emit(data: Any) -> None:
            if output_json:
                click.echo(json.dumps(data, ensure_ascii=False))
                return
            try:
                payload = model.model_validate(data)
            except ValidationError as e:
                logger.debug(f"Unexpected {model.__name__} payload: {e}")
                click.echo(json.dumps(data, ensure_ascii=False))
                return
            click.echo(fmt(payload))

        return emit

    conn.on_connect(lambda: click.echo("Connected to stream", err=True))
    conn.on_disconnect(lambda: click.echo("Disconnected - reconnecting...", err=True))
    conn.on_error(on_error)
    for channel, (model, fmt) in STREAM_CHANNELS[topic].items():
        conn.on(channel, printer(model, fmt))

    conn.connect()
    try:
        await done.wait()
    finally:
        await streaming.aclose()
    return terminal[0] if terminal else None


@main.command("stream")
@click.argument("topic", type=click.Choice([t.value for t in StreamTopic]))
@click.option("--mint", "-m", required=True, help="Token mint address")
@click.option("--json", "output_json", is_flag=True, help="One JSON object per line")
@click.option("--reconnect-delay", default=3.0, help="Seconds before the first reconnect")
@click.option("--max-attempts", default=10, help="Reconnect attempts before giving up")
@pass_cli
def stream(
    obj: CLIContext,
    topic: str,
    mint: str,
    output_json: bool,
    reconnect_delay: float,
    max_attempts: int,
) -> None:
    """Stream live TOPIC events (trades, token, chat) for a token.

    Examples:

        clawdvault stream trades --mint <mint>

        clawdvault stream token --mint <mint> --json
    """
    streaming = ClawdVaultStreaming(
        get_api_url(obj.api_url),
        StreamingOptions(reconnect_delay=reconnect_delay, max_reconnect_attempts=max_attempts),
        source_factory=obj.source_factory,
    )
    click.echo(f"Streaming {topic} for {shorten_address(mint)} (Ctrl+C to stop)", err=True)

    try:
        error = asyncio.run(
            stream_until_exhausted(streaming, StreamTopic(topic), mint, output_json)
        )
    except KeyboardInterrupt:
        click.echo("\nDisconnected", err=True)
        return

    if error is not None:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
