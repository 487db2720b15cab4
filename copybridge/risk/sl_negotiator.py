"""Shared stop-loss negotiation for adding to an open pair — pure math, no I/O.

When C2 adds to a position we already mirror, every trade on the pair
(existing ones plus the new one) shares a single stop-loss.  Adding units
raises the risk at the current stop, so the stop is walked one pip at a
time towards the entries until the aggregate risk fits the budget again:

- **Buy**:  stop moves up
- **Sell**: stop moves down

Risk never increases along the walk and is zero once the stop is past
every entry, so the loop always terminates.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from copybridge.broker.models import Trade
from copybridge.errors import ConsistencyError
from copybridge.strategy.models import BUY, CurrencyPair


@dataclass(frozen=True)
class Negotiation:
    """Outcome of a stop-loss search.

    ``level`` is rounded to the pair's quote precision.  When ``clash`` is
    set the level is too close to (or already beyond) the current price and
    must not be applied.
    """

    previous: float
    level: float
    steps: int
    risk_pct: float
    clash: bool


def shared_stop_loss(pair: CurrencyPair, trades: Sequence[Trade]) -> float:
    """Return the stop-loss shared by all *trades*.

    Raises:
        ConsistencyError: If any trade has no stop-loss or the stop-losses
            differ.
    """
    if not trades:
        raise ValueError("trades must not be empty")
    levels = set()
    for t in trades:
        if t.stop_loss_price is None:
            raise ConsistencyError(
                f"trade {t.trade_id} on {pair} has no stop-loss"
            )
        levels.add(pair.round_price(t.stop_loss_price))
    if len(levels) != 1:
        raise ConsistencyError(
            f"not all stop-losses of pair {pair} are the same: "
            f"{sorted(levels)}"
        )
    return levels.pop()


def loss_pips(side: str, pair: CurrencyPair, entry: float, level: float) -> float:
    """Pips lost if a trade entered at *entry* is stopped at *level*.

    Zero when *level* lies on the profit side of *entry*.
    """
    diff = entry - level if side == BUY else level - entry
    return max(0.0, pair.price_to_pips(diff))


def aggregate_risk_pct(
    side: str,
    pair: CurrencyPair,
    positions: Iterable[tuple[float, float]],
    level: float,
    acc_per_pip: float,
    balance: float,
) -> float:
    """Total risk of ``(entry, units)`` *positions* stopped at *level*.

    Returns the loss as a percentage of *balance*.
    """
    total = 0.0
    for entry, units in positions:
        total += loss_pips(side, pair, entry, level) * acc_per_pip * abs(units)
    return total / balance * 100.0


def is_clash(
    side: str,
    pair: CurrencyPair,
    level: float,
    current_price: float,
    min_gap_pips: float,
) -> bool:
    """``True`` if *level* is already crossed or within *min_gap_pips* of price."""
    crossed = level > current_price if side == BUY else level < current_price
    gap = pair.price_to_pips(abs(current_price - level))
    return crossed or gap < min_gap_pips


def negotiate_stop_loss(
    side: str,
    pair: CurrencyPair,
    trades: Sequence[Trade],
    new_units: int,
    acc_per_pip: float,
    balance: float,
    risk_pct: float,
    current_price: float,
    min_gap_pips: float,
    new_entry: Optional[float] = None,
) -> Negotiation:
    """Find the shared stop-loss for *trades* plus a new trade.

    Args:
        side: ``"BUY"`` or ``"SELL"`` — the side of every trade on the pair.
        pair: The pair being added to.
        trades: Currently open broker trades for the pair (non-empty).
        new_units: Size of the trade about to be opened.
        acc_per_pip: Account currency per pip per unit.
        balance: Account balance at signal time.
        risk_pct: Aggregate risk budget as a percentage of *balance*.
        current_price: Live price for *side*.
        min_gap_pips: Minimum distance between price and the new stop.
        new_entry: Expected fill of the new trade.  Defaults to
            *current_price*.

    Returns:
        A :class:`Negotiation`.  The first candidate examined is one pip
        from the current shared stop, so ``steps`` is at least 1.

    Raises:
        ConsistencyError: If the trades do not share one stop-loss.
        ValueError: On non-positive balance or risk budget.
    """
    if balance <= 0:
        raise ValueError(f"balance must be positive, got {balance}")
    if risk_pct <= 0:
        raise ValueError(f"risk_pct must be positive, got {risk_pct}")

    previous = shared_stop_loss(pair, trades)
    entry = current_price if new_entry is None else new_entry
    positions = [(t.price, t.units) for t in trades]
    positions.append((entry, new_units))

    direction = 1 if side == BUY else -1
    steps = 0
    while True:
        steps += 1
        # Recomputed from the start each step so float error does not accumulate
        candidate = previous + direction * pair.pips_to_price(steps)
        risk = aggregate_risk_pct(
            side, pair, positions, candidate, acc_per_pip, balance,
        )
        if risk <= risk_pct:
            break

    level = pair.round_price(candidate)
    return Negotiation(
        previous=previous,
        level=level,
        steps=steps,
        risk_pct=risk,
        clash=is_clash(side, pair, level, current_price, min_gap_pips),
    )
