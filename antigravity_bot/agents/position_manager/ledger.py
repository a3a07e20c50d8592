import threading
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ...config import INITIAL_BALANCE
from ...logging_config import setup_logger
from ...models import Position, TradeResult
from ...storage import BALANCE_KEY, HISTORY_KEY, POSITIONS_KEY, KeyValueStore, MemoryStore

logger = setup_logger("ledger")


class PortfolioLedger:
    """Balance, open positions by symbol and the closed-trade history.

    Only PositionManager mutates it. Each mutation is written through to the
    store; store failures never propagate.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, initial_balance: float = INITIAL_BALANCE):
        self.store = store if store is not None else MemoryStore()
        self.initial_balance = initial_balance
        self._lock = threading.RLock()
        self._balance = initial_balance
        self._positions: Dict[str, Position] = {}
        self._history: List[TradeResult] = []
        self._load()

    def _load(self) -> None:
        try:
            balance = self.store.load(BALANCE_KEY)
            self._balance = max(0.0, float(balance)) if balance is not None else self.initial_balance
        except (TypeError, ValueError):
            logger.warning(f"Stored balance unreadable, using {self.initial_balance}")
            self._balance = self.initial_balance

        for raw in self.store.load(POSITIONS_KEY, []) or []:
            try:
                p = Position(**raw)
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping stored position: {e}")
                continue
            self._positions[p.symbol] = p

        for raw in self.store.load(HISTORY_KEY, []) or []:
            try:
                self._history.append(TradeResult(**raw))
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping stored trade: {e}")

        logger.info(
            f"Ledger loaded | balance={self._balance:.2f} positions={len(self._positions)} "
            f"trades={len(self._history)}"
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, *keys: str) -> None:
        try:
            if BALANCE_KEY in keys:
                self.store.save(BALANCE_KEY, self._balance)
            if POSITIONS_KEY in keys:
                self.store.save(
                    POSITIONS_KEY, [p.model_dump(mode="json") for p in self._positions.values()]
                )
            if HISTORY_KEY in keys:
                self.store.save(HISTORY_KEY, [t.model_dump(mode="json") for t in self._history])
        except Exception as e:
            logger.error(f"Persist failed for {keys}: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def balance(self) -> float:
        with self._lock:
            return self._balance

    def get_position(self, symbol: str) -> Optional[Position]:
        with self._lock:
            p = self._positions.get(symbol)
            return p.model_copy() if p else None

    def positions(self) -> List[Position]:
        with self._lock:
            return [p.model_copy() for p in self._positions.values()]

    def history(self, limit: Optional[int] = None) -> List[TradeResult]:
        with self._lock:
            if limit is None:
                items = self._history
            else:
                items = self._history[-limit:] if limit > 0 else []
            return [t.model_copy() for t in items]

    def margin_in_use(self) -> float:
        with self._lock:
            return sum(p.initial_margin for p in self._positions.values())

    def equity(self) -> float:
        """Balance plus locked margin, unrealised PnL excluded."""
        with self._lock:
            return self._balance + self.margin_in_use()

    def snapshot(self, history_limit: Optional[int] = None) -> Dict[str, Any]:
        """Balance, positions and history read under one lock."""
        with self._lock:
            return {
                "balance": self._balance,
                "margin_in_use": self.margin_in_use(),
                "equity": self.equity(),
                "positions": self.positions(),
                "history": self.history(history_limit),
            }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def debit(self, amount: float) -> None:
        with self._lock:
            if amount > self._balance:
                raise ValueError(f"debit {amount:.4f} exceeds balance {self._balance:.4f}")
            self._balance -= amount
            self._persist(BALANCE_KEY)

    def credit(self, amount: float) -> float:
        """Add `amount` (may be negative) and clamp the balance at zero."""
        with self._lock:
            self._balance = max(0.0, self._balance + amount)
            self._persist(BALANCE_KEY)
            return self._balance

    def add_position(self, position: Position) -> None:
        with self._lock:
            self._positions[position.symbol] = position
            self._persist(POSITIONS_KEY)

    def replace_position(self, position: Position) -> None:
        with self._lock:
            if position.symbol in self._positions:
                self._positions[position.symbol] = position
                self._persist(POSITIONS_KEY)

    def remove_position(self, symbol: str) -> Optional[Position]:
        with self._lock:
            removed = self._positions.pop(symbol, None)
            if removed is not None:
                self._persist(POSITIONS_KEY)
            return removed

    def append_result(self, result: TradeResult) -> None:
        with self._lock:
            self._history.append(result)
            self._persist(HISTORY_KEY)

    def reset(self) -> None:
        with self._lock:
            try:
                self.store.clear()
            except Exception as e:
                logger.error(f"Store clear failed: {e}")
            self._balance = self.initial_balance
            self._positions = {}
            self._history = []
            self._persist(BALANCE_KEY, POSITIONS_KEY, HISTORY_KEY)
            logger.info(f"♻️ Account reset to {self.initial_balance:.2f} USDT")
