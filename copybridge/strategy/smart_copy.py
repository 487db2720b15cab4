"""Smart copy strategy — mirrors C2 with a per-pair risk budget.

Every pair is in one of three states, tracked by ``PairStateStore``:

- **fresh**: C2 opening the pair places a limit order a few pips better
  than C2's price, with a stop-loss sized so that being stopped out loses
  ``acc_stoploss_pct`` of the balance.
- **open**: C2 adding to the pair adds a market trade, provided a single
  stop-loss for all trades on the pair can still keep the total risk
  inside the budget without sitting on top of the current price.  If our
  trades are gone we were stopped out and the pair is blacklisted.
- **blacklisted**: further opens are ignored until C2 closes the pair.
  Manual re-entries stay blacklisted, so they are never added to.

A close from C2 always flattens the pair on OANDA, whatever its state.
"""

import logging

from copybridge.broker.order_manager import OrderManager
from copybridge.config import Config
from copybridge.repos.pair_state import PairStateStore
from copybridge.risk.position_sizer import (
    calculate_stop_loss_pips,
    calculate_units,
    limit_order_levels,
)
from copybridge.risk.sl_negotiator import negotiate_stop_loss
from copybridge.strategy.models import CLOSE, Signal

logger = logging.getLogger("copybridge.smart_copy")


class SmartCopyStrategy:
    """Copy strategy with limit entries, shared stop-losses and a blacklist.

    Pair state is only changed once every broker call for a signal has
    succeeded, so a ``BrokerError`` leaves the store as it was.

    Args:
        orders: Broker operations.
        state: Pair state store (already loaded).
        config: Application configuration.
    """

    def __init__(
        self,
        orders: OrderManager,
        state: PairStateStore,
        config: Config,
    ) -> None:
        self._orders = orders
        self._state = state
        self._config = config

    @property
    def state(self) -> PairStateStore:
        return self._state

    async def handle(self, signal: Signal) -> dict:
        """Mirror one C2 signal.

        Returns a dict describing the action taken:

        - ``{"action": "closed", ...}``
        - ``{"action": "order_placed", ...}``
        - ``{"action": "added", ...}``
        - ``{"action": "blacklisted", ...}``
        - ``{"action": "ignored", "reason": "..."}``
        """
        logger.info(
            "Handling %s %s %s (size %d @ %s)",
            signal.action, signal.side, signal.pair, signal.size,
            signal.open_price,
        )

        if signal.action == CLOSE:
            return await self._close(signal)

        pair = signal.pair
        if self._state.is_blacklisted(pair):
            # Still blacklisted even if manually re-entered
            logger.info(
                "C2 added to position for %s, which is blacklisted. "
                "No action taken.", pair,
            )
            return {"action": "ignored", "reason": "blacklisted", "pair": pair.code}

        if self._state.is_open(pair):
            return await self._add_to_position(signal)
        return await self._open_fresh(signal)

    def shutdown(self) -> None:
        """Save the pair state (best-effort)."""
        self._state.save()

    # ── Fresh pair ───────────────────────────────────────────────────────

    async def _open_fresh(self, signal: Signal) -> dict:
        pair = signal.pair
        cfg = self._config

        balance = await self._orders.account_balance()
        units = calculate_units(
            signal.size, balance, cfg.pos_size_multiplier,
            cfg.signal_unit_size, cfg.c2_reference_balance,
        )
        if units <= 0:
            logger.warning(
                "C2 size %d on %s converts to 0 units at balance %.2f. "
                "No action taken.", signal.size, pair, balance,
            )
            return {"action": "ignored", "reason": "size_too_small", "pair": pair.code}

        acc_per_pip = await self._orders.acc_currency_per_pip(signal.side, pair)
        sl_pips = calculate_stop_loss_pips(
            balance, cfg.acc_stoploss_pct, acc_per_pip, units,
        )
        if sl_pips < 1:
            logger.warning(
                "%d units of %s cannot fit a 1 pip stop-loss inside %.2f%% "
                "risk. No action taken.", units, pair, cfg.acc_stoploss_pct,
            )
            return {"action": "ignored", "reason": "risk_budget", "pair": pair.code}

        levels = limit_order_levels(
            signal.side, pair, signal.open_price,
            cfg.limit_order_pips_diff, sl_pips,
        )

        order_id = await self._orders.create_limit_order(
            signal.side, units, pair, levels.bound,
        )
        order_id = await self._orders.set_order_stop_loss(
            order_id, pair, levels.stop_loss,
        )
        self._state.mark_open(pair)

        logger.info(
            "Created new order for pair [%s]. Order trigger price: %s, "
            "bound: %s, stop-loss: %s (%d pips), units: %d",
            pair, signal.open_price, levels.bound, levels.stop_loss,
            sl_pips, units,
        )
        return {
            "action": "order_placed",
            "pair": pair.code,
            "order_id": order_id,
            "units": units,
            "bound": levels.bound,
            "stop_loss": levels.stop_loss,
            "sl_pips": sl_pips,
        }

    # ── Open pair ────────────────────────────────────────────────────────

    async def _add_to_position(self, signal: Signal) -> dict:
        pair = signal.pair
        cfg = self._config

        trades = await self._orders.trades(pair)
        orders = await self._orders.pending_orders(pair)

        if not trades and orders:
            logger.warning(
                "C2 added to position but our limit order for %s has not "
                "filled yet. Waiting for manual intervention.", pair,
            )
            return {"action": "ignored", "reason": "order_pending", "pair": pair.code}

        if not trades:
            logger.info(
                "C2 added to position for %s, but our position was already "
                "stopped out. Adding [%s] to blacklist.", pair, pair,
            )
            self._state.mark_blacklisted(pair)
            return {"action": "blacklisted", "pair": pair.code}

        balance = await self._orders.account_balance()
        current_price = await self._orders.current_price(signal.side, pair)
        units = calculate_units(
            signal.size, balance, cfg.pos_size_multiplier,
            cfg.signal_unit_size, cfg.c2_reference_balance,
        )
        if units <= 0:
            logger.warning(
                "C2 size %d on %s converts to 0 units at balance %.2f. "
                "No action taken.", signal.size, pair, balance,
            )
            return {"action": "ignored", "reason": "size_too_small", "pair": pair.code}
        acc_per_pip = await self._orders.acc_currency_per_pip(signal.side, pair)

        negotiation = negotiate_stop_loss(
            side=signal.side,
            pair=pair,
            trades=trades,
            new_units=units,
            acc_per_pip=acc_per_pip,
            balance=balance,
            risk_pct=cfg.acc_stoploss_pct,
            current_price=current_price,
            min_gap_pips=cfg.add_trade_min_gap_pips,
        )

        if negotiation.clash:
            logger.info(
                "C2 added to existing position on %s but we couldn't: "
                "stop-loss was at %s, would have needed to move to %s "
                "(price %s).",
                pair, negotiation.previous, negotiation.level, current_price,
            )
            return {
                "action": "ignored",
                "reason": "clash",
                "pair": pair.code,
                "stop_loss": negotiation.previous,
                "required_stop_loss": negotiation.level,
            }

        for t in trades:
            await self._orders.set_trade_stop_loss(t.trade_id, pair, negotiation.level)
        trade_id = await self._orders.open_market_trade(signal.side, units, pair)
        await self._orders.set_trade_stop_loss(trade_id, pair, negotiation.level)

        logger.info(
            "Added to existing position on %s: stop-loss of %d trade(s) "
            "shifted from %s to %s (%d pips, risk %.2f%%).",
            pair, len(trades) + 1, negotiation.previous, negotiation.level,
            negotiation.steps, negotiation.risk_pct,
        )
        return {
            "action": "added",
            "pair": pair.code,
            "trade_id": trade_id,
            "units": units,
            "stop_loss": negotiation.level,
            "previous_stop_loss": negotiation.previous,
        }

    # ── Close ────────────────────────────────────────────────────────────

    async def _close(self, signal: Signal) -> dict:
        pair = signal.pair
        # Closes manually re-entered trades too
        trades = await self._orders.trades(pair)
        orders = await self._orders.pending_orders(pair)

        if trades or orders:
            logger.info(
                "Closing %d open trade(s) and %d outstanding order(s) for "
                "pair [%s]", len(trades), len(orders), pair,
            )

        for t in trades:
            await self._orders.close_trade(t.trade_id)
        for o in orders:
            await self._orders.cancel_order(o.order_id)

        self._state.clear(pair)
        return {
            "action": "closed",
            "pair": pair.code,
            "trades_closed": len(trades),
            "orders_cancelled": len(orders),
        }
