"""
Auth Flow - takes a connected wallet to a ready trading session.

States:
    idle -> checkingSituation -> checkingTerms -> awaitingTerms
         -> verifyingAccessQueue -> displayingAccessQueue | awaitingInvitation
         -> creatingSession -> ready
    error is reachable from any step; reset() returns to idle.

The context is the single source of truth for "is this wallet ready to
trade". Subscribers get a copy of the full context after every change.
Failures inside the flow land in context.error; they are not raised to the
caller. The one exception is start_flow() without a connected wallet.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from durable_store import DurableStore
from eligibility import EligibilityResolver
from market_service import MarketService
from models import Session, TradingAccount
from observers import ObserverRegistry
from scheduler import Clock, SystemClock
from session_keys import SessionKeyManager
from trading_accounts import TradingAccountService
from wallet import WalletConnection, normalize_address

logger = logging.getLogger(__name__)


class AuthFlowState(str, Enum):
    IDLE = "idle"
    CHECKING_SITUATION = "checkingSituation"
    CHECKING_TERMS = "checkingTerms"
    AWAITING_TERMS = "awaitingTerms"
    VERIFYING_ACCESS_QUEUE = "verifyingAccessQueue"
    DISPLAYING_ACCESS_QUEUE = "displayingAccessQueue"
    AWAITING_INVITATION = "awaitingInvitation"
    CREATING_SESSION = "creatingSession"
    READY = "ready"
    ERROR = "error"


@dataclass
class AccessQueue:
    queue_position: Optional[int] = None
    email: Optional[str] = None
    telegram: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "queue_position": self.queue_position,
            "email": self.email,
            "telegram": self.telegram,
        }


@dataclass
class AuthFlowContext:
    state: AuthFlowState = AuthFlowState.IDLE
    error: Optional[str] = None
    is_whitelisted: Optional[bool] = None       # None = not yet known
    terms_accepted: bool = False
    trading_account: Optional[TradingAccount] = None
    access_queue: AccessQueue = field(default_factory=AccessQueue)
    invitation_code: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "error": self.error,
            "is_whitelisted": self.is_whitelisted,
            "terms_accepted": self.terms_accepted,
            "trading_account": self.trading_account.to_dict() if self.trading_account else None,
            "access_queue": self.access_queue.to_dict(),
            "invitation_code": self.invitation_code,
            "session_id": self.session_id,
        }


ContextListener = Callable[[AuthFlowContext], None]


class AuthFlowService:
    def __init__(
        self,
        wallets: WalletConnection,
        accounts: TradingAccountService,
        markets: MarketService,
        eligibility: EligibilityResolver,
        sessions: SessionKeyManager,
        store: DurableStore,
        clock: Optional[Clock] = None,
        password: Optional[str] = None,
    ):
        self.wallets = wallets
        self.accounts = accounts
        self.markets = markets
        self.eligibility = eligibility
        self.sessions = sessions
        self.store = store
        self.clock = clock or SystemClock()
        self.password = password

        self._context = AuthFlowContext()
        self._listeners = ObserverRegistry("AuthFlow")
        self._in_flight = False
        self.refresh_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # CONTEXT
    # -------------------------------------------------------------------------

    def subscribe(self, listener: ContextListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    def get_state(self) -> AuthFlowContext:
        return copy.deepcopy(self._context)

    def _set_state(self, **updates) -> None:
        for name, value in updates.items():
            setattr(self._context, name, value)
        if "state" in updates:
            logger.info(f"[AuthFlow] -> {self._context.state.value}")
        self._listeners.notify(self.get_state())

    def _fail(self, error: Exception, fallback: str) -> None:
        message = str(error) or fallback
        logger.error(f"[AuthFlow] {fallback}: {message}")
        self._set_state(state=AuthFlowState.ERROR, error=message)

    def _owner_address(self) -> str:
        return normalize_address(self.wallets.require_wallet().address)

    async def _trading_account(self, owner: str) -> TradingAccount:
        account = self._context.trading_account
        if account is None:
            account = await self.accounts.get_or_create_trading_account(owner)
            self._set_state(trading_account=account)
        return account

    # -------------------------------------------------------------------------
    # ENTRY POINT
    # -------------------------------------------------------------------------

    async def start_flow(self) -> None:
        """Resume a live session or walk the full flow. Raises NoWalletConnected."""
        wallet = self.wallets.require_wallet()
        if self._in_flight:
            logger.warning("[AuthFlow] Flow already in progress, ignoring start")
            return

        self._in_flight = True
        try:
            owner = normalize_address(wallet.address)
            if self.password:
                self.sessions.set_password(self.password)

            active = self._check_active_session(owner)
            if active is not None:
                account = self.accounts.get_trading_account(owner) or TradingAccount(
                    id=active.trade_account_id, owner_address=owner,
                )
                self._set_state(
                    state=AuthFlowState.READY, session_id=active.id, trading_account=account, error=None,
                )
                self.refresh_task = asyncio.ensure_future(self._refresh_eligibility(owner))
                return

            self._set_state(state=AuthFlowState.CHECKING_SITUATION, error=None)
            await self._check_situation()
        finally:
            self._in_flight = False

    def _check_active_session(self, owner: str) -> Optional[Session]:
        try:
            return self.sessions.get_active_session(owner)
        except Exception as e:
            logger.warning(f"[AuthFlow] Failed to check active session: {e}")
            return None

    async def _refresh_eligibility(self, owner: str) -> None:
        """Best-effort whitelist refresh for a resumed session"""
        try:
            account = self._context.trading_account or self.accounts.get_trading_account(owner)
            if account is None:
                account = await self.accounts.get_or_create_trading_account(owner)
                self._set_state(trading_account=account)
            self._set_state(is_whitelisted=await self._resolve_whitelist(owner, account))
        except Exception as e:
            logger.warning(f"[AuthFlow] Failed to refresh eligibility status: {e}")

    async def _resolve_whitelist(self, owner: str, account: TradingAccount) -> bool:
        """On-chain registry first, then the eligibility service"""
        await self.markets.fetch_markets()
        whitelist_id = self.markets.get_books_whitelist_id()
        status = await self.eligibility.check_eligibility(owner, account.id, whitelist_id=whitelist_id)
        return status.is_eligible and status.is_whitelisted

    # -------------------------------------------------------------------------
    # STEPS
    # -------------------------------------------------------------------------

    async def _check_situation(self) -> None:
        try:
            owner = self._owner_address()
            account = await self.accounts.get_or_create_trading_account(owner)
            self._set_state(trading_account=account)

            is_whitelisted = await self._resolve_whitelist(owner, account)
            self._set_state(is_whitelisted=is_whitelisted)
        except Exception as e:
            self._fail(e, "Failed to check situation")
            return

        # Whitelisted users still pass through terms
        await self._check_terms()

    async def _check_terms(self) -> None:
        try:
            self._set_state(state=AuthFlowState.CHECKING_TERMS)
            owner = self._owner_address()
            accepted = self.store.get_terms_acceptance(owner)
        except Exception as e:
            self._fail(e, "Failed to check terms")
            return

        if not accepted:
            self._set_state(state=AuthFlowState.AWAITING_TERMS, terms_accepted=False)
            return

        self._set_state(terms_accepted=True)
        await self._after_terms()

    async def accept_terms(self) -> None:
        try:
            owner = self._owner_address()
            self.store.set_terms_acceptance(owner, True, self.clock.now_ms())
            self._set_state(terms_accepted=True)
        except Exception as e:
            self._fail(e, "Failed to accept terms")
            return

        await self._after_terms()

    async def _after_terms(self) -> None:
        if self._context.is_whitelisted:
            await self._create_session()
        else:
            await self._verify_access_queue()

    async def _verify_access_queue(self) -> None:
        if self._context.is_whitelisted:
            await self._create_session()
            return

        try:
            self._set_state(state=AuthFlowState.VERIFYING_ACCESS_QUEUE)
            owner = self._owner_address()
            account = await self._trading_account(owner)
            eligibility = await self.eligibility.check_eligibility(owner, account.id)
        except Exception as e:
            self._fail(e, "Failed to verify access queue")
            return

        if eligibility.is_eligible:
            invite_code = self.eligibility.get_invite_code()
            if invite_code:
                self._set_state(invitation_code=invite_code)
            await self._create_session()
        elif eligibility.waitlist_position is not None:
            self._set_state(
                state=AuthFlowState.DISPLAYING_ACCESS_QUEUE,
                access_queue=AccessQueue(queue_position=eligibility.waitlist_position),
            )
        else:
            self._set_state(state=AuthFlowState.AWAITING_INVITATION)

    async def assign_invitation_code(self, code: str) -> None:
        """Redeem an invite code. Failures keep the flow in awaitingInvitation."""
        try:
            self._set_state(state=AuthFlowState.VERIFYING_ACCESS_QUEUE, invitation_code=code)
            owner = self._owner_address()
            account = await self._trading_account(owner)
            eligibility = await self.eligibility.check_eligibility(owner, account.id, invite_code=code)
        except Exception as e:
            logger.warning(f"[AuthFlow] Failed to assign invitation code: {e}")
            self._set_state(
                state=AuthFlowState.AWAITING_INVITATION,
                error=str(e) or "Failed to assign invitation code",
            )
            return

        if eligibility.is_eligible:
            await self._create_session()
        else:
            self._set_state(
                state=AuthFlowState.AWAITING_INVITATION,
                error=eligibility.error or "Invalid invitation code",
            )

    async def _create_session(self) -> None:
        """Register a fresh session key. No automatic retry on failure."""
        try:
            self._set_state(state=AuthFlowState.CREATING_SESSION)
            owner = self._owner_address()
            contract_ids = await self.markets.get_contract_ids()
            self.sessions.use_venue_chain_id(self.markets.get_chain_id())
            if self.password:
                self.sessions.set_password(self.password)
            account = await self._trading_account(owner)

            session = await self.sessions.create_session(owner, contract_ids, trading_account=account)
        except Exception as e:
            self._fail(e, "Failed to create session")
            return

        logger.info(f"[AuthFlow] Session created: {session.id}")
        self._set_state(state=AuthFlowState.READY, session_id=session.id, error=None)

    def reset(self) -> None:
        self._context = AuthFlowContext()
        logger.info("[AuthFlow] Reset")
        self._listeners.notify(self.get_state())
