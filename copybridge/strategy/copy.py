"""Plain copy strategy — clone C2 at a fixed size multiple.

Opens a market trade straight away when OANDA's price is no more than
``max_pip_diff`` pips worse than C2's fill (any better price is taken).
Closes every trade on the pair when C2 closes.  Keeps no state.
"""

import logging

from copybridge.broker.order_manager import OrderManager
from copybridge.config import Config
from copybridge.risk.position_sizer import calculate_units
from copybridge.strategy.models import BUY, CLOSE, Signal

logger = logging.getLogger("copybridge.copy")


def price_acceptable(
    side: str,
    signal_price: float,
    current_price: float,
    max_pip_diff_price: float,
) -> bool:
    """``True`` if *current_price* is close enough to, or better than, C2's."""
    if abs(current_price - signal_price) <= max_pip_diff_price:
        return True
    if side == BUY:
        return current_price < signal_price
    return current_price > signal_price


class CopyStrategy:
    """Exact clone of C2 with position sizing multiplied by a constant.

    Args:
        orders: Broker operations.
        config: Application configuration.
    """

    def __init__(self, orders: OrderManager, config: Config) -> None:
        self._orders = orders
        self._config = config

    async def handle(self, signal: Signal) -> dict:
        pair = signal.pair

        if signal.action == CLOSE:
            trades = await self._orders.trades(pair)
            for t in trades:
                await self._orders.close_trade(t.trade_id)
            return {"action": "closed", "pair": pair.code, "trades_closed": len(trades)}

        current = await self._orders.current_price(signal.side, pair)
        max_diff = pair.pips_to_price(self._config.max_pip_diff)
        if not price_acceptable(signal.side, signal.open_price, current, max_diff):
            logger.error(
                "Missed opportunity to %s %s (pip diff = %.1f, price = %s, "
                "C2 price = %s)",
                signal.side, pair,
                pair.price_to_pips(abs(current - signal.open_price)),
                current, signal.open_price,
            )
            return {"action": "ignored", "reason": "price_moved", "pair": pair.code}

        balance = await self._orders.account_balance()
        units = calculate_units(
            signal.size, balance, self._config.pos_size_multiplier,
            self._config.signal_unit_size, self._config.c2_reference_balance,
        )
        if units <= 0:
            return {"action": "ignored", "reason": "size_too_small", "pair": pair.code}

        trade_id = await self._orders.open_market_trade(signal.side, units, pair)
        return {"action": "opened", "pair": pair.code, "trade_id": trade_id, "units": units}

    def shutdown(self) -> None:
        pass
