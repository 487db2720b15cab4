"""OANDA v20 REST API async client.

Handles all communication with OANDA: account and pricing queries,
trade and order listing, order placement, stop-loss modification, and
closing/cancelling.
"""

import asyncio
import logging
from typing import Optional

import httpx

from copybridge.broker.models import AccountSummary, PendingOrder, Price, Trade
from copybridge.config import Config
from copybridge.errors import BrokerError

logger = logging.getLogger("copybridge")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

# Pending order types that open a position when they fill.  OANDA also lists
# the STOP_LOSS / TAKE_PROFIT orders attached to open trades as pending.
_ENTRY_ORDER_TYPES = {"LIMIT", "STOP", "MARKET_IF_TOUCHED"}


def _format_price(instrument: str, price: float) -> str:
    """Format a price with the instrument's display precision."""
    precision = 3 if "JPY" in instrument else 5
    return f"{price:.{precision}f}"


def _signed_units(side: str, units: int) -> str:
    units = abs(int(units))
    return str(units if side == "BUY" else -units)


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.oanda_base_url
        self._account_id = config.oanda_account_id
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    @property
    def _account_url(self) -> str:
        return f"{self._base_url}/v3/accounts/{self._account_id}"

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        retry: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.  Requests that
        create orders pass ``retry=False`` so a lost response can never open
        a position twice.
        """
        attempts = _MAX_RETRIES if retry else 1
        last_exc: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES and attempt + 1 < attempts:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "OANDA %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, attempts, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                last_exc = exc
                if attempt + 1 >= attempts:
                    break
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "OANDA %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, attempts, delay,
                )
                await asyncio.sleep(delay)

        # All retries exhausted, raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Account ──────────────────────────────────────────────────────────

    async def get_account_summary(self) -> AccountSummary:
        """Query OANDA for account balance, equity, and open counts."""
        resp = await self._request_with_retry("get", f"{self._account_url}/summary")

        acct = resp.json()["account"]
        return AccountSummary(
            account_id=acct["id"],
            balance=float(acct["balance"]),
            equity=float(acct["NAV"]),
            open_trade_count=int(acct.get("openTradeCount", 0)),
            pending_order_count=int(acct.get("pendingOrderCount", 0)),
            currency=acct["currency"],
        )

    # ── Pricing ──────────────────────────────────────────────────────────

    async def get_price(self, instrument: str) -> Price:
        """Return the current bid/ask and home conversion for *instrument*."""
        params = {"instruments": instrument}
        resp = await self._request_with_retry(
            "get", f"{self._account_url}/pricing", params=params,
        )

        prices = resp.json().get("prices", [])
        if not prices:
            raise BrokerError(f"OANDA returned no price for {instrument}")
        p = prices[0]
        factors = p.get("quoteHomeConversionFactors", {})
        return Price(
            instrument=p["instrument"],
            bid=float(p["bids"][0]["price"]),
            ask=float(p["asks"][0]["price"]),
            quote_home_factor=float(factors.get("positiveUnits", "1")),
            short_quote_home_factor=float(
                factors.get("negativeUnits", factors.get("positiveUnits", "1"))
            ),
        )

    # ── Trades / orders ──────────────────────────────────────────────────

    async def list_open_trades(self, instrument: str) -> list[Trade]:
        """Return the open trades for *instrument* with SL details."""
        params = {"instrument": instrument, "state": "OPEN"}
        resp = await self._request_with_retry(
            "get", f"{self._account_url}/trades", params=params,
        )

        trades: list[Trade] = []
        for t in resp.json().get("trades", []):
            sl_price = None
            if "stopLossOrder" in t:
                sl_price = float(t["stopLossOrder"]["price"])
            trades.append(
                Trade(
                    trade_id=t["id"],
                    instrument=t["instrument"],
                    units=float(t["currentUnits"]),
                    price=float(t["price"]),
                    stop_loss_price=sl_price,
                    unrealized_pnl=float(t.get("unrealizedPL", "0")),
                    open_time=t.get("openTime", ""),
                )
            )
        return trades

    async def list_pending_orders(self, instrument: str) -> list[PendingOrder]:
        """Return pending entry orders for *instrument*.

        Stop-loss and take-profit orders attached to open trades are
        excluded.
        """
        params = {"instrument": instrument, "state": "PENDING"}
        resp = await self._request_with_retry(
            "get", f"{self._account_url}/orders", params=params,
        )

        orders: list[PendingOrder] = []
        for o in resp.json().get("orders", []):
            if o.get("type") not in _ENTRY_ORDER_TYPES:
                continue
            sl_fill = o.get("stopLossOnFill")
            orders.append(
                PendingOrder(
                    order_id=o["id"],
                    instrument=o["instrument"],
                    order_type=o["type"],
                    units=float(o["units"]),
                    price=float(o["price"]),
                    stop_loss_price=float(sl_fill["price"]) if sl_fill else None,
                    time_in_force=o.get("timeInForce", "GTC"),
                )
            )
        return orders

    async def place_market_order(self, instrument: str, side: str, units: int) -> str:
        """Open a market trade and return the new trade ID.

        Raises:
            BrokerError: If OANDA cancels the order instead of filling it.
        """
        body = {
            "order": {
                "type": "MARKET",
                "instrument": instrument,
                "units": _signed_units(side, units),
                "timeInForce": "FOK",
                "positionFill": "DEFAULT",
            }
        }

        resp = await self._request_with_retry(
            "post", f"{self._account_url}/orders", retry=False, json=body,
        )

        data = resp.json()
        fill = data.get("orderFillTransaction")
        if fill is None or "tradeOpened" not in fill:
            reason = data.get("orderCancelTransaction", {}).get("reason", "unknown")
            raise BrokerError(
                f"market order for {instrument} was not filled: {reason}"
            )
        return fill["tradeOpened"]["tradeID"]

    async def place_limit_order(
        self,
        instrument: str,
        side: str,
        units: int,
        price: float,
    ) -> str:
        """Create a GTC limit order at *price* and return its order ID."""
        body = {
            "order": {
                "type": "LIMIT",
                "instrument": instrument,
                "units": _signed_units(side, units),
                "price": _format_price(instrument, price),
                "timeInForce": "GTC",
                "positionFill": "DEFAULT",
            }
        }

        resp = await self._request_with_retry(
            "post", f"{self._account_url}/orders", retry=False, json=body,
        )

        data = resp.json()
        created = data.get("orderCreateTransaction")
        if created is None:
            reason = data.get("orderRejectTransaction", {}).get("rejectReason", "unknown")
            raise BrokerError(f"limit order for {instrument} rejected: {reason}")
        return created["id"]

    async def modify_trade_sl(self, trade_id: str, instrument: str, new_sl_price: float) -> dict:
        """Set (or replace) the stop-loss on an open trade.

        Returns:
            Raw OANDA response dict.
        """
        body = {
            "stopLoss": {
                "price": _format_price(instrument, new_sl_price),
                "timeInForce": "GTC",
            }
        }

        resp = await self._request_with_retry(
            "put", f"{self._account_url}/trades/{trade_id}/orders", json=body,
        )

        return resp.json()

    async def modify_order_sl(self, order_id: str, new_sl_price: float) -> str:
        """Give a pending entry order a stop-loss-on-fill.

        OANDA cannot edit a pending order in place: the order is fetched and
        replaced by an identical one carrying the stop-loss.

        Returns:
            The ID of the replacement order.
        """
        url = f"{self._account_url}/orders/{order_id}"
        resp = await self._request_with_retry("get", url)
        order = resp.json()["order"]

        instrument = order["instrument"]
        body = {
            "order": {
                "type": order["type"],
                "instrument": instrument,
                "units": order["units"],
                "price": order["price"],
                "timeInForce": order.get("timeInForce", "GTC"),
                "positionFill": order.get("positionFill", "DEFAULT"),
                "stopLossOnFill": {
                    "price": _format_price(instrument, new_sl_price),
                },
            }
        }

        resp = await self._request_with_retry("put", url, json=body)

        return resp.json()["orderCreateTransaction"]["id"]

    async def close_trade(self, trade_id: str) -> dict:
        """Close all units of a trade.

        Returns the raw OANDA response dict.
        """
        resp = await self._request_with_retry(
            "put", f"{self._account_url}/trades/{trade_id}/close",
        )

        return resp.json()

    async def cancel_order(self, order_id: str) -> dict:
        """Cancel a pending order.

        Returns the raw OANDA response dict.
        """
        resp = await self._request_with_retry(
            "put", f"{self._account_url}/orders/{order_id}/cancel",
        )

        return resp.json()
