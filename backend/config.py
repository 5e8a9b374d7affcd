"""
Configuration for the O2 trading agent.
Contains API endpoints, timing constants and the environment-driven agent config.
"""

import os
from dataclasses import dataclass
from typing import Optional

# ============================================================================
# API ENDPOINTS
# ============================================================================

class O2API:
    # REST API
    MAINNET = "https://api.o2.app/v1"
    TESTNET = "https://api.testnet.o2.app/v1"

    # Fuel GraphQL (on-chain whitelist reads)
    FUEL_MAINNET_GRAPHQL = "https://mainnet.fuel.network/v1/graphql"
    FUEL_TESTNET_GRAPHQL = "https://testnet.fuel.network/v1/graphql"

    # Paths
    ACCOUNTS = "/accounts"
    SESSION = "/session"
    SESSION_ACTIONS = "/session/actions"
    MARKETS = "/markets"
    TICKER = "/markets/ticker"
    BALANCE = "/balance"
    ORDERS = "/orders"
    ACCESS_QUEUE_VERIFY = "/access-queue/verify"
    ASSIGN_CODE = "/assign-code"

    OWNER_HEADER = "O2-Owner-Id"


# ============================================================================
# TIMING & LIMITS
# ============================================================================

VENUE_TIMEOUT_SEC = 30

DEFAULT_CHAIN_ID = 9889     # Used when neither O2_CHAIN_ID nor the markets listing gives one

DEFAULT_SESSION_EXPIRY_MS = 30 * 24 * 60 * 60 * 1000  # 30 days

LOCK_BACKOFF_MS = 2500      # Retry delay when another market holds the lock
ERROR_BACKOFF_MS = 10000    # Retry delay after a failed cycle
FILL_POLL_INTERVAL_MS = 2500

BALANCE_CACHE_TTL_MS = 5000
MARKETS_CACHE_TTL_MS = 60000

MIN_ORDER_SIZE_USD = 5.0    # Venue minimum order notional
QUANTITY_DISPLAY_DECIMALS = 3

PBKDF2_ITERATIONS = 100000

MAX_TRACKED_FILLS = 50      # Per side, in strategy fill state
MAX_TRACKED_ORDERS = 2000   # Order ids remembered by the fill tracker, least recently seen dropped first


# ============================================================================
# AGENT CONFIG
# ============================================================================

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentConfig:
    """Runtime configuration, usually loaded from the environment"""

    api_url: str = O2API.MAINNET
    fuel_graphql_url: str = O2API.FUEL_MAINNET_GRAPHQL
    chain_id: Optional[int] = None     # None = take it from the markets listing
    db_path: str = "o2_agent.db"
    log_dir: str = "logs"

    # Session key encryption password. Never defaulted.
    session_password: Optional[str] = None
    invite_code: Optional[str] = None

    # Owner wallet
    owner_private_key: Optional[str] = None
    owner_wallet_type: str = "evm"  # "evm" or "fuel"

    # Trust a locally cached trading account without asking the venue again.
    # Stale local state is accepted as a known limitation when True.
    trust_local_account_cache: bool = True

    session_expiry_ms: int = DEFAULT_SESSION_EXPIRY_MS
    request_timeout_sec: float = VENUE_TIMEOUT_SEC

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            api_url=os.getenv("O2_API_URL", O2API.MAINNET),
            fuel_graphql_url=os.getenv("O2_FUEL_GRAPHQL_URL", O2API.FUEL_MAINNET_GRAPHQL),
            chain_id=int(os.getenv("O2_CHAIN_ID"), 0) if os.getenv("O2_CHAIN_ID") else None,
            db_path=os.getenv("O2_DB_PATH", "o2_agent.db"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            session_password=os.getenv("O2_SESSION_PASSWORD") or None,
            invite_code=os.getenv("O2_INVITE_CODE") or None,
            owner_private_key=os.getenv("OWNER_PRIVATE_KEY") or None,
            owner_wallet_type=os.getenv("OWNER_WALLET_TYPE", "evm").lower(),
            trust_local_account_cache=_env_bool("O2_TRUST_LOCAL_CACHE", True),
            session_expiry_ms=int(os.getenv("O2_SESSION_EXPIRY_MS", str(DEFAULT_SESSION_EXPIRY_MS))),
            request_timeout_sec=float(os.getenv("O2_REQUEST_TIMEOUT_SEC", str(VENUE_TIMEOUT_SEC))),
        )

    def to_dict(self) -> dict:
        """Safe view for the API: secrets are reported as set/unset only"""
        return {
            "api_url": self.api_url,
            "fuel_graphql_url": self.fuel_graphql_url,
            "chain_id": self.chain_id,
            "db_path": self.db_path,
            "owner_wallet_type": self.owner_wallet_type,
            "trust_local_account_cache": self.trust_local_account_cache,
            "session_expiry_ms": self.session_expiry_ms,
            "session_password_set": bool(self.session_password),
            "owner_key_set": bool(self.owner_private_key),
        }
