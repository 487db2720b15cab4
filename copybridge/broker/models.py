"""Broker data models — typed representations of OANDA v20 API objects."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AccountSummary:
    """Summary of an OANDA account."""

    account_id: str
    balance: float
    equity: float
    open_trade_count: int
    pending_order_count: int
    currency: str


@dataclass(frozen=True)
class Price:
    """Current bid/ask for an instrument.

    ``quote_home_factor`` converts an amount in the instrument's quote
    currency into the account's home currency for long exposure;
    ``short_quote_home_factor`` does the same for short exposure and falls
    back to the long factor when the broker did not send one.
    """

    instrument: str
    bid: float
    ask: float
    quote_home_factor: float
    short_quote_home_factor: Optional[float] = None


@dataclass(frozen=True)
class Trade:
    """An open (filled) trade."""

    trade_id: str
    instrument: str
    units: float  # positive=buy, negative=sell
    price: float
    stop_loss_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    open_time: str = ""


@dataclass(frozen=True)
class PendingOrder:
    """A pending entry order that has not filled yet."""

    order_id: str
    instrument: str
    order_type: str  # "LIMIT", "STOP" or "MARKET_IF_TOUCHED"
    units: float
    price: float
    stop_loss_price: Optional[float] = None
    time_in_force: str = "GTC"
