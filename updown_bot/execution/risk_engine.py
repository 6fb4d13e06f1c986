"""
Risk Engine
Account-level guard rails for one trading mode: balance, drawdown, the
daily PnL ledger and the stop-loss switch.
"""
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from updown_bot.config import RiskConfig
from updown_bot.models import TradeMode

ZERO = Decimal("0")


class RiskEngine:
    """
    Risk management for one account.

    Enforces:
    - Daily loss limit
    - Max drawdown (fraction of the initial balance)
    - Balance sufficiency for paper trades

    The daily ledger is keyed by an idempotency key (the trade id, or the
    trade id plus an event suffix), so replaying a settlement never counts
    the same PnL twice.
    """

    def __init__(self, config: Optional[RiskConfig] = None, mode: TradeMode = TradeMode.PAPER):
        """
        Initialize risk engine.

        Args:
            config: Risk limits configuration
            mode: Paper accounts track a balance; live accounts only the ledger
        """
        self.config = config or RiskConfig()
        self.mode = mode

        self._initial_balance = self.config.initial_balance
        self._balance = self.config.initial_balance
        self._max_drawdown = ZERO

        self._daily_pnl: Dict[str, Decimal] = {}
        self._applied_keys: "OrderedDict[str, str]" = OrderedDict()

        self._stopped = False
        self._stop_reason: Optional[str] = None

        logger.info(
            f"Initialized Risk Engine [{mode.value.upper()}]: "
            f"daily_max_loss=${self.config.daily_max_loss}, "
            f"max_drawdown={float(self.config.max_drawdown_fraction):.0%}"
        )

    # =========================================================================
    # Balance
    # =========================================================================

    @property
    def balance(self) -> Decimal:
        return self._balance

    @property
    def max_drawdown(self) -> Decimal:
        return self._max_drawdown

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    def debit(self, amount: Decimal) -> None:
        # drawdown is measured on settlement, not on open stakes
        self._balance -= amount

    def credit(self, amount: Decimal) -> None:
        self._balance += amount
        self._update_drawdown()

    def _update_drawdown(self) -> None:
        drawdown = self._initial_balance - self._balance
        if drawdown > self._max_drawdown:
            self._max_drawdown = drawdown

    # =========================================================================
    # Daily ledger
    # =========================================================================

    @staticmethod
    def _day_key(day: Optional[date] = None) -> str:
        return (day or datetime.now().date()).isoformat()

    def apply_daily_pnl(self, key: str, amount: Decimal, day: Optional[date] = None) -> bool:
        """Add `amount` to the day's bucket once per key; returns False on replay."""
        if key in self._applied_keys:
            logger.debug(f"Daily PnL for {key} already applied, skipping")
            return False

        day_key = self._day_key(day)
        self._daily_pnl[day_key] = self._daily_pnl.get(day_key, ZERO) + amount

        self._applied_keys[key] = day_key
        while len(self._applied_keys) > self.config.daily_pnl_keep_ids:
            self._applied_keys.popitem(last=False)

        for stale_day in sorted(self._daily_pnl)[:-self.config.daily_pnl_keep_days]:
            del self._daily_pnl[stale_day]
        return True

    def daily_pnl(self, day: Optional[date] = None) -> Decimal:
        return self._daily_pnl.get(self._day_key(day), ZERO)

    # =========================================================================
    # Stop-loss
    # =========================================================================

    def check_and_trigger_stop_loss(self, day: Optional[date] = None) -> bool:
        if self._stopped:
            return True

        today = self.daily_pnl(day)
        if today < -self.config.daily_max_loss:
            self._trigger(f"daily_loss_limit:{-today:.2f}")
            return True

        limit = self._initial_balance * self.config.max_drawdown_fraction
        if self.mode is TradeMode.PAPER and limit > 0 and self._max_drawdown >= limit:
            self._trigger(f"max_drawdown:{self._max_drawdown:.2f}")
            return True

        return False

    def _trigger(self, reason: str) -> None:
        self._stopped = True
        self._stop_reason = reason
        logger.warning(f"[{self.mode.value.upper()}] STOP-LOSS triggered: {reason}")

    def reset_stop_loss(self) -> None:
        self._stopped = False
        self._stop_reason = None
        logger.info(f"[{self.mode.value.upper()}] Stop-loss reset")

    def can_trade(self, size: Decimal, day: Optional[date] = None) -> Tuple[bool, Optional[str]]:
        """
        Validate if a new trade is allowed.

        Returns:
            (is_allowed, reason)
        """
        if self._stopped:
            return False, f"stop_loss_active:{self._stop_reason}"

        if self.daily_pnl(day) < -self.config.daily_max_loss:
            return False, "daily_loss_limit_reached"

        if self.mode is TradeMode.PAPER and size > self._balance:
            return False, "insufficient_balance"

        return True, None

    def get_risk_summary(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "balance": float(self._balance),
            "initial_balance": float(self._initial_balance),
            "max_drawdown": float(self._max_drawdown),
            "daily_pnl": float(self.daily_pnl()),
            "daily_limit": float(self.config.daily_max_loss),
            "stopped": self._stopped,
            "stop_reason": self._stop_reason,
        }
