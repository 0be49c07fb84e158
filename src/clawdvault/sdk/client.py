"""ClawdVault API client.

Async REST client over httpx. Every call goes through request(), which
attaches authentication when asked to:

- a cached session token is sent as "Authorization: Bearer <token>"
- otherwise, with a wallet signer and a body, the body is signed for the
  given action and sent as X-Wallet / X-Signature / X-Action headers

JSON bodies are sent in their canonical form so the bytes on the wire are
exactly the bytes that were signed.

Usage:
    async with create_client(signer=KeypairSigner.from_file(path)) as client:
        tokens = await client.list_tokens(sort="market_cap")
        await client.buy(mint, 0.1)
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from .errors import ClawdVaultAPIError, ClawdVaultError, SignerRequiredError
from .streaming import DEFAULT_BASE_URL
from .types import (
    BalanceResponse,
    CandlesResponse,
    ChatMessagesResponse,
    ExecuteCreateResponse,
    ExecuteTradeResponse,
    HoldersResponse,
    JupiterQuoteResponse,
    JupiterStatusResponse,
    NetworkStatusResponse,
    PrepareCreateResponse,
    PrepareTradeResponse,
    QuoteResponse,
    SessionResponse,
    SessionValidateResponse,
    SolPriceResponse,
    TokenDetailResponse,
    TokenListResponse,
    TradeHistoryResponse,
    TradeType,
    UploadResponse,
    UserProfile,
)
from .wallet import WalletSigner, canonical_json, create_auth_signature, sign_and_serialize

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_DECIMALS_FACTOR = 1_000_000
IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def _compact(**fields: Any) -> dict[str, Any]:
    """Drop None values, keeping insertion order (JSON.stringify semantics)."""
    return {key: value for key, value in fields.items() if value is not None}


def _image_mime_type(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    return IMAGE_MIME_TYPES.get(suffix) or mimetypes.guess_type(filename)[0] or "image/png"


@dataclass
class ClientConfig:
    """Configuration for ClawdVaultClient."""

    base_url: str = DEFAULT_BASE_URL
    signer: WalletSigner | None = None
    session_token: str | None = None
    on_error: Callable[[ClawdVaultAPIError], None] | None = None
    timeout: float = 30.0


class ClawdVaultClient:
    """Async client for the ClawdVault REST API."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        config = config or ClientConfig()
        self.base_url = config.base_url.rstrip("/")
        self.signer = config.signer
        self.session_token = config.session_token
        self.on_error = config.on_error
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> ClawdVaultClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def set_signer(self, signer: WalletSigner) -> None:
        self.signer = signer

    def set_session_token(self, token: str | None) -> None:
        self.session_token = token

    @property
    def wallet_address(self) -> str | None:
        return str(self.signer.public_key) if self.signer else None

    def _require_signer(self, operation: str) -> WalletSigner:
        if self.signer is None:
            raise SignerRequiredError(operation)
        return self.signer

    # -------------------------------------------------------------------------
    # Request dispatch
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        auth: bool = False,
        action: str | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON response.

        Raises:
            ClawdVaultAPIError: On any non-2xx response (after on_error runs)
            Exception: Signer failures propagate unchanged
        """
        request_headers: dict[str, str] = dict(headers or {})
        if auth:
            request_headers.update(await self._auth_headers(body, action))

        content: bytes | None = None
        if body is not None and files is None:
            request_headers["Content-Type"] = "application/json"
            content = canonical_json(body).encode("utf-8")

        query = {key: value for key, value in (params or {}).items() if value is not None}
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url} params={query}")

        response = await self._http.request(
            method,
            url,
            params=query or None,
            content=content,
            files=files,
            data=data,
            headers=request_headers,
        )

        if not response.is_success:
            raise self._api_error(response)
        if not response.content:
            return {}
        return response.json()

    async def _auth_headers(
        self, body: Mapping[str, Any] | None, action: str | None
    ) -> dict[str, str]:
        if self.session_token:
            return {"Authorization": f"Bearer {self.session_token}"}
        if self.signer is None or body is None:
            return {}

        credential = await create_auth_signature(self.signer, body, action)
        headers = {"X-Wallet": credential.wallet, "X-Signature": credential.signature}
        if action:
            headers["X-Action"] = action
        return headers

    def _api_error(self, response: httpx.Response) -> ClawdVaultAPIError:
        try:
            payload = response.json()
        except ValueError:
            payload = {"error": response.reason_phrase}
        if not isinstance(payload, dict):
            payload = {"error": str(payload)}

        message = payload.get("error") or payload.get("message") or f"HTTP {response.status_code}"
        error = ClawdVaultAPIError(str(message), response.status_code, payload)
        logger.debug(f"API error {response.status_code} for {response.request.url}: {message}")
        if self.on_error is not None:
            self.on_error(error)
        return error

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    async def list_tokens(
        self,
        sort: str | None = None,
        page: int | None = None,
        limit: int | None = None,
        graduated: bool | None = None,
    ) -> TokenListResponse:
        params = _compact(sort=sort, page=page, limit=limit, graduated=graduated)
        return TokenListResponse.model_validate(await self.request("GET", "/tokens", params=params))

    async def get_token(self, mint: str) -> TokenDetailResponse:
        return TokenDetailResponse.model_validate(await self.request("GET", f"/tokens/{mint}"))

    async def get_metadata(self, mint: str) -> dict[str, Any]:
        """Metaplex-format metadata (name, symbol, description, image)."""
        return await self.request("GET", f"/metadata/{mint}")

    async def prepare_create(
        self, creator: str, name: str, symbol: str, initial_buy: float | None = None
    ) -> PrepareCreateResponse:
        body = _compact(creator=creator, name=name, symbol=symbol, initialBuy=initial_buy)
        data = await self.request("POST", "/token/prepare-create", body=body)
        return PrepareCreateResponse.model_validate(data)

    async def execute_create(self, **fields: Any) -> ExecuteCreateResponse:
        data = await self.request("POST", "/token/execute-create", body=_compact(**fields))
        return ExecuteCreateResponse.model_validate(data)

    async def create_token(
        self,
        name: str,
        symbol: str,
        description: str | None = None,
        image: str | None = None,
        initial_buy: float | None = None,
        twitter: str | None = None,
        telegram: str | None = None,
        website: str | None = None,
    ) -> ExecuteCreateResponse:
        """Prepare, sign and execute a token launch in one call."""
        signer = self._require_signer("create_token")
        wallet = str(signer.public_key)

        prepared = await self.prepare_create(wallet, name, symbol, initial_buy)
        signed = await sign_and_serialize(prepared.transaction, signer)

        return await self.execute_create(
            signedTransaction=signed,
            mint=prepared.mint,
            creator=wallet,
            name=name,
            symbol=symbol,
            description=description,
            image=image,
            twitter=twitter,
            telegram=telegram,
            website=website,
        )

    # -------------------------------------------------------------------------
    # Trading (bonding curve)
    # -------------------------------------------------------------------------

    async def get_quote(self, mint: str, type: TradeType, amount: float) -> QuoteResponse:
        params = {"mint": mint, "type": type, "amount": amount}
        return QuoteResponse.model_validate(await self.request("GET", "/trade", params=params))

    async def prepare_trade(
        self, mint: str, type: TradeType, amount: float, wallet: str, slippage: float | None = None
    ) -> PrepareTradeResponse:
        body = _compact(mint=mint, type=type, amount=amount, wallet=wallet, slippage=slippage)
        data = await self.request("POST", "/trade/prepare", body=body)
        return PrepareTradeResponse.model_validate(data)

    async def execute_trade(
        self, signed_transaction: str, mint: str, type: TradeType, wallet: str
    ) -> ExecuteTradeResponse:
        body = {"signedTransaction": signed_transaction, "mint": mint, "type": type, "wallet": wallet}
        data = await self.request("POST", "/trade/execute", body=body)
        return ExecuteTradeResponse.model_validate(data)

    async def _trade(
        self, operation: str, mint: str, type: TradeType, amount: float, slippage: float
    ) -> ExecuteTradeResponse:
        signer = self._require_signer(operation)
        wallet = str(signer.public_key)

        prepared = await self.prepare_trade(mint, type, amount, wallet, slippage)
        signed = await sign_and_serialize(prepared.transaction, signer)
        return await self.execute_trade(signed, mint, type, wallet)

    async def buy(self, mint: str, sol_amount: float, slippage: float = 0.01) -> ExecuteTradeResponse:
        """Buy on the bonding curve with sol_amount SOL."""
        return await self._trade("buy", mint, "buy", sol_amount, slippage)

    async def sell(
        self, mint: str, token_amount: float, slippage: float = 0.01
    ) -> ExecuteTradeResponse:
        """Sell token_amount tokens on the bonding curve."""
        return await self._trade("sell", mint, "sell", token_amount, slippage)

    async def sell_percent(
        self, mint: str, percent: float, slippage: float = 0.01
    ) -> ExecuteTradeResponse:
        """Sell a percentage (0-100) of the wallet's holdings."""
        signer = self._require_signer("sell_percent")
        balance = (await self.get_balance(str(signer.public_key), mint)).balance
        if balance <= 0:
            raise ClawdVaultError("No tokens to sell")
        return await self.sell(mint, balance * (percent / 100), slippage)

    # -------------------------------------------------------------------------
    # Price data
    # -------------------------------------------------------------------------

    async def get_trades(
        self, mint: str, limit: int | None = None, before: str | None = None
    ) -> TradeHistoryResponse:
        params = _compact(mint=mint, limit=limit, before=before)
        return TradeHistoryResponse.model_validate(
            await self.request("GET", "/trades", params=params)
        )

    async def get_candles(
        self, mint: str, interval: str | None = None, limit: int | None = None
    ) -> CandlesResponse:
        params = _compact(mint=mint, interval=interval, limit=limit)
        return CandlesResponse.model_validate(await self.request("GET", "/candles", params=params))

    async def get_stats(self, mint: str) -> dict[str, Any]:
        return await self.request("GET", "/stats", params={"mint": mint})

    async def get_holders(self, mint: str, creator: str | None = None) -> HoldersResponse:
        data = await self.request("GET", "/holders", params={"mint": mint, "creator": creator})
        return HoldersResponse.model_validate(data)

    async def get_balance(self, wallet: str, mint: str) -> BalanceResponse:
        data = await self.request("GET", "/balance", params={"wallet": wallet, "mint": mint})
        return BalanceResponse.model_validate(data)

    async def get_my_balance(self, mint: str) -> BalanceResponse:
        signer = self._require_signer("get_my_balance")
        return await self.get_balance(str(signer.public_key), mint)

    async def get_sol_price(self) -> SolPriceResponse:
        return SolPriceResponse.model_validate(await self.request("GET", "/sol-price"))

    # -------------------------------------------------------------------------
    # Graduation / Jupiter
    # -------------------------------------------------------------------------

    async def get_graduation_status(self, mint: str) -> dict[str, Any]:
        return await self.request("GET", "/graduate", params={"mint": mint})

    async def get_jupiter_status(self, mint: str) -> JupiterStatusResponse:
        data = await self.request("GET", "/trade/jupiter", params={"mint": mint})
        return JupiterStatusResponse.model_validate(data)

    async def get_jupiter_quote(
        self,
        mint: str,
        action: TradeType,
        amount: str,
        user_public_key: str,
        slippage_bps: int | None = None,
    ) -> JupiterQuoteResponse:
        body = _compact(
            mint=mint,
            action=action,
            amount=amount,
            userPublicKey=user_public_key,
            slippageBps=slippage_bps,
        )
        data = await self.request("POST", "/trade/jupiter", body=body)
        return JupiterQuoteResponse.model_validate(data)

    async def execute_jupiter_swap(
        self, mint: str, signed_transaction: str, type: TradeType, wallet: str
    ) -> ExecuteTradeResponse:
        body = {"mint": mint, "signedTransaction": signed_transaction, "type": type, "wallet": wallet}
        data = await self.request("POST", "/trade/jupiter/execute", body=body)
        return ExecuteTradeResponse.model_validate(data)

    async def _jupiter_trade(
        self, operation: str, mint: str, type: TradeType, amount: str, slippage_bps: int
    ) -> ExecuteTradeResponse:
        signer = self._require_signer(operation)
        wallet = str(signer.public_key)

        quote = await self.get_jupiter_quote(mint, type, amount, wallet, slippage_bps)
        signed = await sign_and_serialize(quote.transaction, signer)
        return await self.execute_jupiter_swap(mint, signed, type, wallet)

    async def buy_jupiter(
        self, mint: str, sol_amount: float, slippage_bps: int = 50
    ) -> ExecuteTradeResponse:
        """Buy a graduated token through Jupiter."""
        lamports = int(sol_amount * LAMPORTS_PER_SOL)
        return await self._jupiter_trade("buy_jupiter", mint, "buy", str(lamports), slippage_bps)

    async def sell_jupiter(
        self, mint: str, token_amount: float, slippage_bps: int = 50
    ) -> ExecuteTradeResponse:
        """Sell a graduated token through Jupiter (6-decimal tokens)."""
        base_units = int(token_amount * TOKEN_DECIMALS_FACTOR)
        return await self._jupiter_trade("sell_jupiter", mint, "sell", str(base_units), slippage_bps)

    async def smart_buy(
        self, mint: str, sol_amount: float, slippage: float = 0.01
    ) -> ExecuteTradeResponse:
        """Route to Jupiter when the token has graduated, else the bonding curve."""
        status = await self.get_jupiter_status(mint)
        if status.graduated:
            return await self.buy_jupiter(mint, sol_amount, int(slippage * 10_000))
        return await self.buy(mint, sol_amount, slippage)

    async def smart_sell(
        self, mint: str, token_amount: float, slippage: float = 0.01
    ) -> ExecuteTradeResponse:
        status = await self.get_jupiter_status(mint)
        if status.graduated:
            return await self.sell_jupiter(mint, token_amount, int(slippage * 10_000))
        return await self.sell(mint, token_amount, slippage)

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def get_chat(
        self, mint: str, limit: int | None = None, before: str | None = None
    ) -> ChatMessagesResponse:
        params = _compact(mint=mint, limit=limit, before=before)
        return ChatMessagesResponse.model_validate(await self.request("GET", "/chat", params=params))

    async def send_chat(self, mint: str, message: str, reply_to: str | None = None) -> dict[str, Any]:
        body = _compact(mint=mint, message=message, replyTo=reply_to)
        return await self.request("POST", "/chat", body=body, auth=True, action="chat")

    async def add_reaction(self, message_id: str, emoji: str) -> None:
        body = {"messageId": message_id, "emoji": emoji}
        await self.request("POST", "/reactions", body=body, auth=True, action="react")

    async def remove_reaction(self, message_id: str, emoji: str) -> None:
        params = {"messageId": message_id, "emoji": emoji}
        await self.request("DELETE", "/reactions", params=params, auth=True, action="unreact")

    # -------------------------------------------------------------------------
    # User / auth
    # -------------------------------------------------------------------------

    async def get_profile(self, wallet: str) -> UserProfile:
        data = await self.request("GET", "/profile", params={"wallet": wallet})
        return UserProfile.model_validate(data)

    async def update_profile(self, username: str | None = None, avatar: str | None = None) -> None:
        body = _compact(username=username, avatar=avatar)
        await self.request("POST", "/profile", body=body, auth=True, action="profile")

    async def create_session(self) -> SessionResponse:
        """Exchange a wallet signature for a session token."""
        data = await self.request("POST", "/auth/session", body={}, auth=True, action="session")
        return SessionResponse.model_validate(data)

    async def validate_session(self) -> SessionValidateResponse:
        data = await self.request("GET", "/auth/session", auth=True)
        return SessionValidateResponse.model_validate(data)

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    async def upload_image(self, content: bytes, filename: str = "image.png") -> UploadResponse:
        files = {"file": (filename, content, _image_mime_type(filename))}
        return UploadResponse.model_validate(await self.request("POST", "/upload", files=files))

    async def upload_image_from_path(self, path: str | Path) -> UploadResponse:
        path = Path(path)
        return await self.upload_image(path.read_bytes(), path.name)

    async def upload_avatar(
        self, content: bytes, wallet: str, api_key: str, filename: str = "avatar.png"
    ) -> UploadResponse:
        """Upload an agent avatar, authenticated with the agent's API key."""
        files = {"file": (filename, content, _image_mime_type(filename))}
        data = await self.request(
            "POST",
            "/upload",
            files=files,
            data={"type": "avatar", "wallet": wallet},
            headers={"Authorization": f"Bearer {api_key}"},
        )
        return UploadResponse.model_validate(data)

    # -------------------------------------------------------------------------
    # Agents / leaderboards
    # -------------------------------------------------------------------------

    async def register_agent(self, **fields: Any) -> dict[str, Any]:
        return await self.request("POST", "/agent/register", body=_compact(**fields))

    async def claim_agent(self, **fields: Any) -> dict[str, Any]:
        return await self.request("POST", "/agent/claim", body=_compact(**fields))

    async def list_agents(self, **params: Any) -> dict[str, Any]:
        return await self.request("GET", "/agents", params=params)

    async def list_users(self, **params: Any) -> dict[str, Any]:
        return await self.request("GET", "/users", params=params)

    async def get_site_stats(self) -> dict[str, Any]:
        return await self.request("GET", "/site-stats")

    async def get_network_status(self) -> NetworkStatusResponse:
        return NetworkStatusResponse.model_validate(await self.request("GET", "/network"))


def create_client(
    base_url: str | None = None,
    signer: WalletSigner | None = None,
    session_token: str | None = None,
    on_error: Callable[[ClawdVaultAPIError], None] | None = None,
) -> ClawdVaultClient:
    """Create a client; base_url defaults to the public API."""
    return ClawdVaultClient(
        ClientConfig(
            base_url=base_url or DEFAULT_BASE_URL,
            signer=signer,
            session_token=session_token,
            on_error=on_error,
        )
    )
