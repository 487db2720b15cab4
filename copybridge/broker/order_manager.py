"""Order lifecycle manager — the broker operations the strategies use.

Thin pair-aware layer over ``OandaClient``: one broker call per operation,
no retries of its own, every price rounded to the pair's quote precision
before it leaves the process.  Transport and response-shape failures are
surfaced as :class:`BrokerError` so the engine can abort just the current
signal.
"""

import logging
from typing import Awaitable, TypeVar

import httpx

from copybridge.broker.models import PendingOrder, Trade
from copybridge.errors import BrokerError
from copybridge.strategy.models import BUY, CurrencyPair

logger = logging.getLogger("copybridge.orders")

T = TypeVar("T")


class OrderManager:
    """Pair-level broker operations.

    Args:
        broker: An ``OandaClient`` (or compatible duck-type / mock).
    """

    def __init__(self, broker) -> None:
        self._broker = broker

    async def _call(self, what: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except BrokerError:
            raise
        except httpx.HTTPError as exc:
            raise BrokerError(f"{what} failed: {exc}") from exc
        except (KeyError, IndexError, ValueError) as exc:
            raise BrokerError(f"{what}: unexpected broker response ({exc!r})") from exc

    # ── Queries ──────────────────────────────────────────────────────────

    async def account_balance(self) -> float:
        summary = await self._call(
            "account summary", self._broker.get_account_summary(),
        )
        if summary.balance <= 0:
            raise BrokerError(
                f"account balance is {summary.balance:.2f}; nothing to size against"
            )
        return summary.balance

    async def current_price(self, side: str, pair: CurrencyPair) -> float:
        """Price we would trade *side* at right now (ask for buys, bid for sells)."""
        price = await self._call(
            f"price for {pair}", self._broker.get_price(pair.instrument),
        )
        return price.ask if side == BUY else price.bid

    async def acc_currency_per_pip(self, side: str, pair: CurrencyPair) -> float:
        """Account currency gained or lost per pip for one unit of *pair* held *side*."""
        price = await self._call(
            f"price for {pair}", self._broker.get_price(pair.instrument),
        )
        factor = price.quote_home_factor
        if side != BUY and price.short_quote_home_factor is not None:
            factor = price.short_quote_home_factor
        return pair.pip_size * factor

    async def trades(self, pair: CurrencyPair) -> list[Trade]:
        return await self._call(
            f"open trades for {pair}",
            self._broker.list_open_trades(pair.instrument),
        )

    async def pending_orders(self, pair: CurrencyPair) -> list[PendingOrder]:
        return await self._call(
            f"pending orders for {pair}",
            self._broker.list_pending_orders(pair.instrument),
        )

    # ── Mutations ────────────────────────────────────────────────────────

    async def open_market_trade(self, side: str, units: int, pair: CurrencyPair) -> str:
        trade_id = await self._call(
            f"market {side} {units} {pair}",
            self._broker.place_market_order(pair.instrument, side, units),
        )
        logger.info("Opened trade %s: %s %d %s", trade_id, side, units, pair)
        return trade_id

    async def create_limit_order(
        self,
        side: str,
        units: int,
        pair: CurrencyPair,
        bound: float,
    ) -> str:
        bound = pair.round_price(bound)
        order_id = await self._call(
            f"limit {side} {units} {pair} @ {bound}",
            self._broker.place_limit_order(pair.instrument, side, units, bound),
        )
        logger.info(
            "Created limit order %s: %s %d %s @ %s",
            order_id, side, units, pair, bound,
        )
        return order_id

    async def set_trade_stop_loss(self, trade_id: str, pair: CurrencyPair, price: float) -> None:
        price = pair.round_price(price)
        await self._call(
            f"stop-loss {price} on trade {trade_id}",
            self._broker.modify_trade_sl(trade_id, pair.instrument, price),
        )
        logger.info("Trade %s (%s) stop-loss set to %s", trade_id, pair, price)

    async def set_order_stop_loss(self, order_id: str, pair: CurrencyPair, price: float) -> str:
        """Attach a stop-loss to a pending order; returns the order's new ID."""
        price = pair.round_price(price)
        new_id = await self._call(
            f"stop-loss {price} on order {order_id}",
            self._broker.modify_order_sl(order_id, price),
        )
        logger.info(
            "Order %s (%s) stop-loss set to %s (now order %s)",
            order_id, pair, price, new_id,
        )
        return new_id

    async def close_trade(self, trade_id: str) -> None:
        await self._call(f"close trade {trade_id}", self._broker.close_trade(trade_id))
        logger.info("Closed trade %s", trade_id)

    async def cancel_order(self, order_id: str) -> None:
        await self._call(f"cancel order {order_id}", self._broker.cancel_order(order_id))
        logger.info("Cancelled order %s", order_id)
