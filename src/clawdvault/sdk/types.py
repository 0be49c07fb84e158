"""SDK type definitions.

Mirrors the backend's OpenAPI schemas. Models accept unknown fields so a
newer backend never breaks parsing; camelCase wire names are aliased.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TradeType = Literal["buy", "sell"]


class APIModel(BaseModel):
    """Base for backend payloads."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# =============================================================================
# Core schemas
# =============================================================================


class Token(APIModel):
    """A launched token and its bonding-curve state."""

    mint: str
    name: str
    symbol: str
    description: str | None = None
    image: str | None = None
    creator: str | None = None
    creator_name: str | None = None
    price_sol: float = 0.0
    market_cap_sol: float = 0.0
    volume_24h: float | None = None
    virtual_sol_reserves: float = 0.0
    virtual_token_reserves: float = 0.0
    real_sol_reserves: float = 0.0
    real_token_reserves: float = 0.0
    graduated: bool = False
    migrated_to_raydium: bool = False
    twitter: str | None = None
    telegram: str | None = None
    website: str | None = None
    created_at: str | None = None


class Trade(APIModel):
    id: str
    type: TradeType
    sol_amount: float
    token_amount: float
    price: float | None = None
    price_sol: float | None = None
    trader: str
    signature: str | None = None
    created_at: str


class ChatMessage(APIModel):
    id: str
    wallet: str
    username: str | None = None
    message: str
    reply_to: str | None = None
    reactions: dict[str, list[str]] = Field(default_factory=dict)
    created_at: str


class UserProfile(APIModel):
    wallet: str
    username: str | None = None
    avatar: str | None = None
    created_at: str | None = None


# =============================================================================
# Responses
# =============================================================================


class TokenListResponse(APIModel):
    tokens: list[Token] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 0


class TokenDetailResponse(APIModel):
    token: Token
    trades: list[Trade] = Field(default_factory=list)


class QuoteResponse(APIModel):
    input: float
    output: float
    price_impact: float = 0.0
    fee: float = 0.0
    current_price: float = 0.0


class PrepareCreateResponse(APIModel):
    success: bool = True
    transaction: str
    mint: str
    program_id: str | None = Field(default=None, alias="programId")
    network: str | None = None
    initial_buy: dict[str, float] | None = Field(default=None, alias="initialBuy")


class ExecuteCreateResponse(APIModel):
    success: bool = True
    signature: str
    mint: str
    token: Token | None = None
    explorer: str | None = None


class PrepareTradeResponse(APIModel):
    success: bool = True
    transaction: str
    type: str
    input: dict[str, float] = Field(default_factory=dict)
    output: dict[str, float] = Field(default_factory=dict)
    price_impact: float = Field(default=0.0, alias="priceImpact")
    current_price: float = Field(default=0.0, alias="currentPrice")
    on_chain: bool = Field(default=True, alias="onChain")


class ExecuteTradeResponse(APIModel):
    success: bool = True
    signature: str
    explorer: str | None = None
    slot: int | None = None
    block_time: int | None = Field(default=None, alias="blockTime")
    trade: dict[str, Any] | None = None


class TradeHistoryResponse(APIModel):
    trades: list[Trade] = Field(default_factory=list)


class CandleData(APIModel):
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class CandlesResponse(APIModel):
    mint: str
    interval: str
    candles: list[CandleData] = Field(default_factory=list)


class HolderInfo(APIModel):
    address: str
    balance: float
    percentage: float
    label: str | None = None


class HoldersResponse(APIModel):
    holders: list[HolderInfo] = Field(default_factory=list)


class BalanceResponse(APIModel):
    balance: float = 0.0
    wallet: str | None = None
    mint: str | None = None


class SolPriceResponse(APIModel):
    price: float
    valid: bool = True
    cached: bool = False
    source: str | None = None
    age: float | None = None


class JupiterStatusResponse(APIModel):
    success: bool = True
    mint: str
    graduated: bool
    trade_endpoint: str | None = Field(default=None, alias="tradeEndpoint")


class JupiterQuoteResponse(APIModel):
    success: bool = True
    graduated: bool = True
    quote: dict[str, Any] = Field(default_factory=dict)
    transaction: str
    last_valid_block_height: int | None = Field(default=None, alias="lastValidBlockHeight")


class ChatMessagesResponse(APIModel):
    messages: list[ChatMessage] = Field(default_factory=list)


class SessionResponse(APIModel):
    success: bool = True
    token: str | None = None
    expires_in: int | None = Field(default=None, alias="expiresIn")
    wallet: str | None = None


class SessionValidateResponse(APIModel):
    valid: bool
    wallet: str | None = None


class UploadResponse(APIModel):
    success: bool = True
    url: str
    filename: str | None = None


class NetworkStatusResponse(APIModel):
    network: str
    program_id: str | None = Field(default=None, alias="programId")
    rpc_url: str | None = Field(default=None, alias="rpcUrl")
    config_initialized: bool = Field(default=False, alias="configInitialized")


# =============================================================================
# Stream payloads
# =============================================================================


class StreamTrade(APIModel):
    """Payload of the "trade" channel on the trades stream."""

    id: str
    type: TradeType
    sol_amount: float
    token_amount: float
    price_sol: float
    trader: str
    signature: str | None = None
    created_at: str


class StreamTokenUpdate(APIModel):
    """Payload of the "update" channel on the token stream."""

    price_sol: float
    market_cap_sol: float
    virtual_sol_reserves: float = 0.0
    virtual_token_reserves: float = 0.0
    real_sol_reserves: float = 0.0
    graduated: bool = False
    timestamp: int | None = None


class StreamTokenConnected(StreamTokenUpdate):
    """Payload of the "connected" channel on the token stream."""

    mint: str
    name: str
    symbol: str


class StreamChatMessage(APIModel):
    """Payload of the "message" channel on the chat stream."""

    id: str
    wallet: str
    username: str | None = None
    message: str
    reply_to: str | None = None
    created_at: str
