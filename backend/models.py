"""
Domain records shared across the agent.

Scaled amounts (prices, quantities, balances) stay as integer strings the
way the venue returns them. Conversions to human units happen in the
strategies with Decimal.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class OrderType(str, Enum):
    SPOT = "Spot"
    MARKET = "Market"
    LIMIT = "Limit"
    FILL_OR_KILL = "FillOrKill"
    POST_ONLY = "PostOnly"


# ============================================================================
# MARKETS
# ============================================================================

@dataclass
class AssetInfo:
    asset: str              # Asset id (B256)
    symbol: str
    decimals: int
    max_precision: int

    @classmethod
    def from_dict(cls, data: dict) -> "AssetInfo":
        return cls(
            asset=data.get("asset", ""),
            symbol=data.get("symbol", ""),
            decimals=int(data.get("decimals", 0)),
            max_precision=int(data.get("max_precision", data.get("decimals", 0))),
        )


@dataclass
class Market:
    market_id: str
    contract_id: str
    base: AssetInfo
    quote: AssetInfo
    tick_size: Optional[str] = None
    step_size: Optional[str] = None

    @property
    def pair(self) -> str:
        return f"{self.base.symbol}/{self.quote.symbol}"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Market":
        return cls(
            market_id=data["market_id"],
            contract_id=data["contract_id"],
            base=AssetInfo.from_dict(data["base"]),
            quote=AssetInfo.from_dict(data["quote"]),
            tick_size=data.get("tick_size"),
            step_size=data.get("step_size"),
        )


@dataclass
class Ticker:
    market_id: str
    last_price: str         # Scaled by quote decimals
    volume_24h: Optional[str] = None
    high_24h: Optional[str] = None
    low_24h: Optional[str] = None
    change_24h: Optional[str] = None
    change_24h_percent: Optional[str] = None
    bid: Optional[str] = None
    ask: Optional[str] = None

    @classmethod
    def from_api(cls, market_id: str, data: dict) -> "Ticker":
        """Venue ticker rows name the last price `last`"""
        return cls(
            market_id=market_id,
            last_price=str(data.get("last", "0")),
            volume_24h=data.get("base_volume"),
            high_24h=data.get("high"),
            low_24h=data.get("low"),
            change_24h=data.get("change"),
            change_24h_percent=data.get("percentage"),
            bid=data.get("bid"),
            ask=data.get("ask"),
        )


# ============================================================================
# ACCOUNTS & SESSIONS
# ============================================================================

@dataclass
class TradingAccount:
    id: str
    owner_address: str      # Normalized lowercase
    nonce: int = 0
    created_at: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Session:
    id: str                 # Session signer address (B256)
    trade_account_id: str
    owner_address: str
    contract_ids: list[str]
    expiry: int             # Unix ms
    created_at: int
    is_active: bool = True

    def is_live(self, now_ms: int) -> bool:
        return self.is_active and self.expiry > now_ms

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SessionKeyRecord:
    """Encrypted session private key. Never holds plaintext."""
    id: str                 # Same as Session.id
    encrypted_private_key: str
    salt: str
    iv: str
    created_at: int


# ============================================================================
# ORDERS, BALANCES, TRADES
# ============================================================================

@dataclass
class Order:
    order_id: str
    market_id: str
    side: str               # Venue reports lowercase "buy" / "sell"
    price: str
    quantity: str
    quantity_fill: str = "0"
    price_fill: str = "0"
    timestamp: Optional[str] = None
    close: bool = False
    cancel: bool = False

    @property
    def is_buy(self) -> bool:
        return self.side.lower() == "buy"

    @classmethod
    def from_api(cls, data: dict) -> "Order":
        return cls(
            order_id=str(data.get("order_id", "")),
            market_id=str(data.get("market_id", "")),
            side=str(data.get("side", "")),
            price=str(data.get("price", "0")),
            quantity=str(data.get("quantity", "0")),
            quantity_fill=str(data.get("quantity_fill") or "0"),
            price_fill=str(data.get("price_fill") or "0"),
            timestamp=data.get("timestamp"),
            close=bool(data.get("close", False)),
            cancel=bool(data.get("cancel", False)),
        )


@dataclass
class AssetBalance:
    unlocked: str = "0"
    locked: str = "0"
    total: str = "0"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MarketBalances:
    base: AssetBalance = field(default_factory=AssetBalance)
    quote: AssetBalance = field(default_factory=AssetBalance)

    def to_dict(self) -> dict:
        return {"base": self.base.to_dict(), "quote": self.quote.to_dict()}


@dataclass
class Trade:
    """Record of one order placement attempt"""
    timestamp: int
    market_id: str
    order_id: str
    side: str
    price: str
    quantity: str
    success: bool
    session_id: Optional[str] = None
    error: Optional[str] = None
    value_usd: Optional[float] = None
    fee_usd: Optional[float] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)
