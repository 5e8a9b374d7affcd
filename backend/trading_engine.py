"""
Trading Engine - per-market strategy scheduling.

Every actively configured market gets its own timeline on a shared
Scheduler. Cycles across all markets are serialized by one transaction
lock because every order batch carries the account nonce: a cycle that
finds the lock held backs off briefly instead of executing.

Cycle (execute_trade):
1. Skip if stopped or not initialized
2. Lock held -> retry after LOCK_BACKOFF_MS
3. Fold recent fills into the config (when fill tracking is on)
4. Run the strategy and record every order outcome
5. Persist the config, reschedule (strategy hint or jittered interval)
6. Any unexpected error -> error status, retry after ERROR_BACKOFF_MS
The lock is always released.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from config import ERROR_BACKOFF_MS, FILL_POLL_INTERVAL_MS, LOCK_BACKOFF_MS
from errors import NoActiveSession
from fill_tracker import FillTracker
from market_service import MarketService
from models import Market, Trade
from observers import ObserverRegistry
from scheduler import Clock, Scheduler, SystemClock
from session_keys import SessionKeyManager
from strategy_base import OrderExecution, jittered_delay
from strategy_config import StrategyConfig
from strategy_manager import StrategyManager
from trade_ledger import TradeLedger
from wallet import normalize_address

logger = logging.getLogger(__name__)
trade_logger = logging.getLogger("trades")


def setup_logging(log_dir: str = "logs") -> logging.Logger:
    """Setup logging for the audit trail: daily log file, trades file, console"""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    today = datetime.now().strftime('%Y%m%d')

    root = logging.getLogger()
    if any(getattr(h, "_o2_handler", False) for h in root.handlers):
        return root
    root.setLevel(logging.DEBUG)

    # File handler - all logs
    file_handler = logging.FileHandler(f"{log_dir}/o2_agent_{today}.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    ))

    # Trade-specific log
    trade_handler = logging.FileHandler(f"{log_dir}/trades_{today}.log")
    trade_handler.setLevel(logging.INFO)
    trade_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(message)s'
    ))

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    ))

    for handler in (file_handler, trade_handler, console_handler):
        handler._o2_handler = True
    root.addHandler(file_handler)
    root.addHandler(console_handler)
    trade_logger.addHandler(trade_handler)

    return root


@dataclass
class MarketConfig:
    """In-memory pairing of a market with its live strategy config"""
    market: Market
    config: StrategyConfig
    next_run_at: int = 0
    last_fill_at: Optional[int] = None

    @property
    def tracks_fills(self) -> bool:
        return self.config.order_management.track_fill_prices

    def to_dict(self) -> dict:
        return {
            "market_id": self.market.market_id,
            "pair": self.market.pair,
            "strategy": self.config.type.value,
            "next_run_at": self.next_run_at,
            "last_fill_at": self.last_fill_at,
            "track_fill_prices": self.tracks_fills,
        }


class TradingEngine:
    def __init__(
        self,
        strategies: StrategyManager,
        markets: MarketService,
        fills: FillTracker,
        ledger: TradeLedger,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Clock] = None,
        sessions: Optional[SessionKeyManager] = None,
        rng: Optional[Callable[[], float]] = None,
        autostart_scheduler: bool = True,
    ):
        self.strategies = strategies
        self.markets = markets
        self.fills = fills
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or Scheduler(self.clock)
        self.sessions = sessions
        self.rng = rng or random.random
        self.autostart_scheduler = autostart_scheduler

        self.owner_address: Optional[str] = None
        self.trading_account_id: Optional[str] = None
        self._running = False
        self._transaction_lock = False
        self._session_trade_cycles = 0
        self._market_configs: dict[str, MarketConfig] = {}

        self._status = ObserverRegistry("TradingEngine.status")
        self._trade_complete = ObserverRegistry("TradingEngine.trade_complete")

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    def initialize(self, owner_address: str, trading_account_id: str) -> None:
        self.owner_address = normalize_address(owner_address)
        self.trading_account_id = trading_account_id

    async def start(self) -> None:
        if self._running:
            logger.info("[TradingEngine] Already running, skipping")
            return
        if not self.owner_address or not self.trading_account_id:
            raise NoActiveSession(
                "Trading engine not initialized. Please set owner address and trading account ID."
            )

        self._running = True
        self._session_trade_cycles = 0
        if self.autostart_scheduler:
            self.scheduler.start()

        active = self.strategies.get_active_configs()
        logger.info(f"[TradingEngine] Found {len(active)} active strategy config(s)")
        if not active:
            # Started but idle
            self._emit("No active strategies configured. Please set up a strategy first.", "warning")
            return

        for record in active:
            market = await self.markets.get_market(record.market_id)
            if market is None:
                logger.warning(f"[TradingEngine] Market {record.market_id} not found, skipping")
                continue
            self._market_configs[record.market_id] = MarketConfig(market=market, config=record.config)

        now = self.clock.now_ms()
        for market_id, market_config in self._market_configs.items():
            self._schedule_trade(market_config, now)
            if market_config.tracks_fills:
                self._schedule_fill_poll(market_id, FILL_POLL_INTERVAL_MS)

        logger.info(f"[TradingEngine] Started trading loops for {len(self._market_configs)} market(s)")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._transaction_lock = False
        for market_id in self._market_configs:
            self.scheduler.cancel(("trade", market_id))
            self.scheduler.cancel(("fills", market_id))
        if self.autostart_scheduler:
            self.scheduler.stop()
        self._market_configs.clear()
        logger.info("[TradingEngine] Stopped")

    def is_active(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # SCHEDULING
    # -------------------------------------------------------------------------

    def _schedule_trade(self, market_config: MarketConfig, run_at: int) -> None:
        # A cycle finishing after stop() must not resurrect the loop
        if not self._running:
            return
        market_id = market_config.market.market_id
        market_config.next_run_at = run_at
        delay = max(0, run_at - self.clock.now_ms())
        self.scheduler.schedule(("trade", market_id), delay, lambda: self.execute_trade(market_id))

    def _schedule_fill_poll(self, market_id: str, delay_ms: int) -> None:
        if not self._running:
            return
        self.scheduler.schedule(("fills", market_id), delay_ms, lambda: self._poll_fills(market_id))

    def _after_fill_cooldown(self, market_config: MarketConfig, run_at: int) -> int:
        cooldown = market_config.config.timing.cooldown_after_fill_ms
        if not cooldown or market_config.last_fill_at is None:
            return run_at
        return max(run_at, market_config.last_fill_at + cooldown)

    def get_jittered_delay(self, config: StrategyConfig) -> int:
        return jittered_delay(config.timing.cycle_interval_min_ms, config.timing.cycle_interval_max_ms, self.rng)

    def get_next_run_time(self) -> Optional[int]:
        times = [mc.next_run_at for mc in self._market_configs.values() if mc.next_run_at]
        return min(times) if times else None

    # -------------------------------------------------------------------------
    # EXECUTION CYCLE
    # -------------------------------------------------------------------------

    async def execute_trade(self, market_id: str) -> None:
        market_config = self._market_configs.get(market_id)
        if not self._running or market_config is None or not self.owner_address or not self.trading_account_id:
            return

        if self._transaction_lock:
            self._schedule_trade(market_config, self.clock.now_ms() + LOCK_BACKOFF_MS)
            return

        self._transaction_lock = True
        try:
            pair = market_config.market.pair
            self._emit(f"{pair}: Executing strategy...", "info")

            if market_config.tracks_fills:
                await self._track_order_fills(market_config)

            strategy = self.strategies.get_strategy(market_config.config.type)
            result = await strategy.execute(
                market_config.market, market_config.config, self.owner_address, self.trading_account_id,
            )

            if result.executed and result.orders:
                self._session_trade_cycles += 1
                for order in result.orders:
                    self._record_order(market_config, order)
                self._trade_complete.notify()
            else:
                self._emit(f"{pair}: No orders placed (check balances)", "info")

            if market_config.tracks_fills and result.executed:
                self.strategies.update_config(market_id, market_config.config)

            next_run_at = result.next_run_at or self.clock.now_ms() + self.get_jittered_delay(market_config.config)
            self._schedule_trade(market_config, self._after_fill_cooldown(market_config, next_run_at))
        except Exception as e:
            logger.error(f"[TradingEngine] Error executing strategy for {market_id}: {e}", exc_info=True)
            self._emit(f"[{market_id}] Error: {e}", "error")
            self._schedule_trade(market_config, self.clock.now_ms() + ERROR_BACKOFF_MS)
        finally:
            self._transaction_lock = False

    def _record_order(self, market_config: MarketConfig, order: OrderExecution) -> None:
        market = market_config.market
        pair = order.market_pair or market.pair
        session_id = None
        if self.sessions is not None:
            session = self.sessions.get_cached_session(self.trading_account_id)
            session_id = session.id if session else None

        self.ledger.add_trade(Trade(
            timestamp=self.clock.now_ms(),
            market_id=market.market_id,
            order_id=order.order_id if order.success else "",
            side=order.side,
            price=order.price or "0",
            quantity=order.quantity or "0",
            success=order.success and bool(order.order_id),
            session_id=session_id,
            error=order.error,
            value_usd=order.value_usd if order.success else None,
        ))

        if order.success and order.order_id:
            amount = order.quantity_human or "N/A"
            price = f"${order.price_human}" if order.price_human else "N/A"
            message = f"{pair}: {order.side} {amount} {market.base.symbol} @ {price}"
            trade_logger.info(f"ORDER | {message} | {order.order_id}")
            self._emit(message, "success")
        else:
            error = order.error or "Unknown error"
            trade_logger.info(f"FAILED | {pair} {order.side} | {error}")
            self._emit(f"{pair}: {order.side} order failed - {error}", "error")

    # -------------------------------------------------------------------------
    # FILL TRACKING
    # -------------------------------------------------------------------------

    async def _track_order_fills(self, market_config: MarketConfig) -> None:
        """Fold new fills into the config; failures never block the cycle"""
        market_id = market_config.market.market_id
        try:
            events = await self.fills.poll(market_id, self.owner_address)
            if not events:
                return
            self.fills.apply_fills(market_config.config, market_config.market, events)
            self.strategies.update_config(market_id, market_config.config)
            market_config.last_fill_at = self.clock.now_ms()

            # Push back a trade already queued inside the cooldown window
            due = self.scheduler.due_at(("trade", market_id))
            if due is not None and self._after_fill_cooldown(market_config, due) > due:
                self._schedule_trade(market_config, self._after_fill_cooldown(market_config, due))
        except Exception as e:
            logger.warning(f"[TradingEngine] Error tracking order fills for {market_id}: {e}")

    async def _poll_fills(self, market_id: str) -> None:
        market_config = self._market_configs.get(market_id)
        if not self._running or market_config is None:
            return
        await self._track_order_fills(market_config)
        self._schedule_fill_poll(market_id, FILL_POLL_INTERVAL_MS)

    # -------------------------------------------------------------------------
    # EVENTS & STATUS
    # -------------------------------------------------------------------------

    def on_status(self, callback: Callable[[str, str], None]) -> Callable[[], None]:
        """Subscribe to (message, type) status lines. Returns an unsubscribe function."""
        return self._status.subscribe(callback)

    def on_trade_complete(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._trade_complete.subscribe(callback)

    def _emit(self, message: str, status_type: str = "info") -> None:
        log = logger.error if status_type == "error" else logger.info
        log(f"[TradingEngine] {message}")
        self._status.notify(message, status_type)

    def get_session_trade_cycles(self) -> int:
        return self._session_trade_cycles

    def get_market_configs(self) -> list[MarketConfig]:
        return list(self._market_configs.values())

    def get_status(self) -> dict:
        return {
            "is_running": self._running,
            "owner_address": self.owner_address,
            "trading_account_id": self.trading_account_id,
            "session_trade_cycles": self._session_trade_cycles,
            "next_run_at": self.get_next_run_time(),
            "markets": [mc.to_dict() for mc in self._market_configs.values()],
        }
