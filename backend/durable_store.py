"""
Durable Store - SQLite persistence for the agent.

Collections:
- trading_accounts (secondary index on owner_address)
- sessions (secondary index on owner_address)
- session_keys (keyed by session id, deleted together with the session)
- strategy_configs (keyed by market_id)
- trades (auto id, indexes on timestamp, order_id, session_id)
- terms_acceptances (keyed by owner_address)

Writes are last-writer-wins per record key. Any sqlite error surfaces as
PersistenceFailure.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Optional

from errors import PersistenceFailure
from models import Session, SessionKeyRecord, Trade, TradingAccount

logger = logging.getLogger(__name__)


class DurableStore:
    def __init__(self, db_path: str = "o2_agent.db"):
        self.db_path = db_path
        self._init_database()
        logger.info(f"DurableStore initialized: {db_path}")

    def _init_database(self):
        """Create tables if they don't exist"""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trading_accounts (
                    id TEXT PRIMARY KEY,
                    owner_address TEXT NOT NULL,
                    nonce INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_accounts_owner ON trading_accounts(owner_address)")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    trade_account_id TEXT NOT NULL,
                    owner_address TEXT NOT NULL,
                    contract_ids TEXT NOT NULL,
                    expiry INTEGER NOT NULL,
                    created_at INTEGER NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_address)")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_keys (
                    id TEXT PRIMARY KEY,
                    encrypted_private_key TEXT NOT NULL,
                    salt TEXT NOT NULL,
                    iv TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS strategy_configs (
                    id TEXT PRIMARY KEY,
                    market_id TEXT NOT NULL,
                    config TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    market_id TEXT NOT NULL,
                    order_id TEXT NOT NULL,
                    session_id TEXT,
                    side TEXT NOT NULL,
                    price TEXT NOT NULL,
                    quantity TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    error TEXT,
                    value_usd REAL,
                    fee_usd REAL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades(timestamp)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_order_id ON trades(order_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_session_id ON trades(session_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_market_id ON trades(market_id)")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS terms_acceptances (
                    owner_address TEXT PRIMARY KEY,
                    accepted INTEGER NOT NULL,
                    accepted_at INTEGER NOT NULL
                )
            """)

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup"""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row  # Enable dict-like access
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        """Connection that commits on success and maps sqlite errors"""
        with self._get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error(f"[DurableStore] Write failed: {e}")
                raise PersistenceFailure(f"Database write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._get_connection() as conn:
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceFailure(f"Database query failed: {e}") from e

    # -------------------------------------------------------------------------
    # TRADING ACCOUNTS
    # -------------------------------------------------------------------------

    def put_trading_account(self, account: TradingAccount) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO trading_accounts (id, owner_address, nonce, created_at)
                VALUES (?, ?, ?, ?)
            """, (account.id, account.owner_address, account.nonce, account.created_at))

    def get_trading_account(self, account_id: str) -> Optional[TradingAccount]:
        rows = self._query("SELECT * FROM trading_accounts WHERE id = ?", (account_id,))
        return _row_to_account(rows[0]) if rows else None

    def get_trading_account_by_owner(self, owner_address: str) -> Optional[TradingAccount]:
        rows = self._query(
            "SELECT * FROM trading_accounts WHERE owner_address = ? ORDER BY created_at DESC LIMIT 1",
            (owner_address,),
        )
        return _row_to_account(rows[0]) if rows else None

    def update_nonce(self, account_id: str, nonce: int) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE trading_accounts SET nonce = ? WHERE id = ?", (nonce, account_id))

    # -------------------------------------------------------------------------
    # SESSIONS & SESSION KEYS
    # -------------------------------------------------------------------------

    def put_session(self, session: Session) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO sessions (
                    id, trade_account_id, owner_address, contract_ids, expiry, created_at, is_active
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                session.id, session.trade_account_id, session.owner_address,
                json.dumps(session.contract_ids), session.expiry, session.created_at,
                1 if session.is_active else 0,
            ))

    def get_session(self, session_id: str) -> Optional[Session]:
        rows = self._query("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return _row_to_session(rows[0]) if rows else None

    def get_sessions_by_owner(self, owner_address: str) -> list[Session]:
        rows = self._query("SELECT * FROM sessions WHERE owner_address = ?", (owner_address,))
        return [_row_to_session(r) for r in rows]

    def set_session_active(self, session_id: str, is_active: bool) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE sessions SET is_active = ? WHERE id = ?",
                (1 if is_active else 0, session_id),
            )

    def delete_session(self, session_id: str) -> None:
        """Delete a session and its key in one transaction"""
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            conn.execute("DELETE FROM session_keys WHERE id = ?", (session_id,))

    def delete_sessions_by_owner(self, owner_address: str) -> int:
        with self._transaction() as conn:
            ids = [r["id"] for r in conn.execute(
                "SELECT id FROM sessions WHERE owner_address = ?", (owner_address,)
            ).fetchall()]
            for session_id in ids:
                conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
                conn.execute("DELETE FROM session_keys WHERE id = ?", (session_id,))
        return len(ids)

    def delete_all_sessions(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions")
            conn.execute("DELETE FROM session_keys")

    def put_session_key(self, record: SessionKeyRecord) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO session_keys (id, encrypted_private_key, salt, iv, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (record.id, record.encrypted_private_key, record.salt, record.iv, record.created_at))

    def get_session_key(self, session_id: str) -> Optional[SessionKeyRecord]:
        rows = self._query("SELECT * FROM session_keys WHERE id = ?", (session_id,))
        if not rows:
            return None
        row = rows[0]
        return SessionKeyRecord(
            id=row["id"],
            encrypted_private_key=row["encrypted_private_key"],
            salt=row["salt"],
            iv=row["iv"],
            created_at=row["created_at"],
        )

    # -------------------------------------------------------------------------
    # STRATEGY CONFIGS
    # -------------------------------------------------------------------------

    def put_strategy_config(self, market_id: str, config: dict, is_active: bool,
                            created_at: int, updated_at: int) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO strategy_configs (id, market_id, config, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (market_id, market_id, json.dumps(config), 1 if is_active else 0, created_at, updated_at))

    def get_strategy_config(self, market_id: str) -> Optional[dict]:
        rows = self._query("SELECT * FROM strategy_configs WHERE id = ?", (market_id,))
        return _row_to_config(rows[0]) if rows else None

    def list_strategy_configs(self, active_only: bool = False) -> list[dict]:
        sql = "SELECT * FROM strategy_configs"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY created_at"
        return [_row_to_config(r) for r in self._query(sql)]

    def update_strategy_config(self, market_id: str, updated_at: int,
                               config: Optional[dict] = None,
                               is_active: Optional[bool] = None) -> bool:
        """Partial update. Returns False when no row exists."""
        sets = ["updated_at = ?"]
        params: list[Any] = [updated_at]
        if config is not None:
            sets.append("config = ?")
            params.append(json.dumps(config))
        if is_active is not None:
            sets.append("is_active = ?")
            params.append(1 if is_active else 0)
        params.append(market_id)

        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE strategy_configs SET {', '.join(sets)} WHERE id = ?", tuple(params))
            return cursor.rowcount > 0

    def delete_strategy_config(self, market_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM strategy_configs WHERE id = ?", (market_id,))
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # TRADES
    # -------------------------------------------------------------------------

    def add_trade(self, trade: Trade) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO trades (
                    timestamp, market_id, order_id, session_id, side, price, quantity,
                    success, error, value_usd, fee_usd
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                trade.timestamp, trade.market_id, trade.order_id, trade.session_id,
                trade.side, trade.price, trade.quantity, 1 if trade.success else 0,
                trade.error, trade.value_usd, trade.fee_usd,
            ))
            return cursor.lastrowid

    def query_trades(self, where: str = "", params: tuple = (), limit: Optional[int] = None) -> list[Trade]:
        sql = "SELECT * FROM trades"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit:
            sql += f" LIMIT {int(limit)}"
        return [_row_to_trade(r) for r in self._query(sql, params)]

    def update_trades_by_order_id(self, order_id: str, updates: dict) -> int:
        allowed = {"value_usd", "fee_usd", "error", "success", "session_id"}
        fields = {k: v for k, v in updates.items() if k in allowed}
        if not fields:
            return 0
        sets = ", ".join(f"{k} = ?" for k in fields)
        params = tuple(
            (1 if v else 0) if k == "success" else v for k, v in fields.items()
        ) + (order_id,)
        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE trades SET {sets} WHERE order_id = ?", params)
            return cursor.rowcount

    def trade_stats(self, market_id: Optional[str] = None) -> dict:
        where = "WHERE market_id = ?" if market_id else ""
        params = (market_id,) if market_id else ()
        rows = self._query(f"""
            SELECT
                COUNT(*) as total,
                SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) as successful,
                SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) as failed,
                SUM(CASE WHEN side = 'Buy' AND success = 1 THEN 1 ELSE 0 END) as buys,
                SUM(CASE WHEN side = 'Sell' AND success = 1 THEN 1 ELSE 0 END) as sells,
                SUM(COALESCE(value_usd, 0)) as volume_usd,
                SUM(COALESCE(fee_usd, 0)) as fees_usd
            FROM trades {where}
        """, params)
        row = rows[0]
        return {
            "total": row["total"] or 0,
            "successful": row["successful"] or 0,
            "failed": row["failed"] or 0,
            "buys": row["buys"] or 0,
            "sells": row["sells"] or 0,
            "volume_usd": round(row["volume_usd"] or 0.0, 2),
            "fees_usd": round(row["fees_usd"] or 0.0, 2),
        }

    # -------------------------------------------------------------------------
    # TERMS OF USE
    # -------------------------------------------------------------------------

    def get_terms_acceptance(self, owner_address: str) -> bool:
        rows = self._query(
            "SELECT accepted FROM terms_acceptances WHERE owner_address = ?", (owner_address,)
        )
        return bool(rows and rows[0]["accepted"])

    def set_terms_acceptance(self, owner_address: str, accepted: bool, accepted_at: int) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO terms_acceptances (owner_address, accepted, accepted_at)
                VALUES (?, ?, ?)
            """, (owner_address, 1 if accepted else 0, accepted_at))

    def delete_terms_acceptance(self, owner_address: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM terms_acceptances WHERE owner_address = ?", (owner_address,))


# ============================================================================
# ROW MAPPING
# ============================================================================

def _row_to_account(row: sqlite3.Row) -> TradingAccount:
    return TradingAccount(
        id=row["id"],
        owner_address=row["owner_address"],
        nonce=row["nonce"],
        created_at=row["created_at"],
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        trade_account_id=row["trade_account_id"],
        owner_address=row["owner_address"],
        contract_ids=json.loads(row["contract_ids"]),
        expiry=row["expiry"],
        created_at=row["created_at"],
        is_active=bool(row["is_active"]),
    )


def _row_to_config(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "market_id": row["market_id"],
        "config": json.loads(row["config"]),
        "is_active": bool(row["is_active"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _row_to_trade(row: sqlite3.Row) -> Trade:
    return Trade(
        id=row["id"],
        timestamp=row["timestamp"],
        market_id=row["market_id"],
        order_id=row["order_id"],
        session_id=row["session_id"],
        side=row["side"],
        price=row["price"],
        quantity=row["quantity"],
        success=bool(row["success"]),
        error=row["error"],
        value_usd=row["value_usd"],
        fee_usd=row["fee_usd"],
    )
