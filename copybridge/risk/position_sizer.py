"""Position sizing and fresh-trade stop-loss placement — pure math, no I/O.

Converts a C2 position size into OANDA units and derives the stop-loss
distance that caps the risked amount at a percentage of our balance.
"""

from dataclasses import dataclass

from copybridge.strategy.models import BUY, CurrencyPair


@dataclass(frozen=True)
class LimitLevels:
    """Entry bound and stop-loss for a fresh limit order."""

    bound: float
    stop_loss: float


def convert_size(
    signal_size: int,
    balance: float,
    unit_size: int = 10_000,
    reference_balance: float = 100_000.0,
) -> int:
    """Scale a C2 position size to our account.

    Formula::

        units = signal_size × unit_size × balance / reference_balance

    truncated to whole units.  ``unit_size`` is the number of units one C2
    lot represents on a C2 account of ``reference_balance``.

    Raises:
        ValueError: If any input is non-positive.
    """
    if signal_size <= 0:
        raise ValueError(f"signal_size must be positive, got {signal_size}")
    if balance <= 0:
        raise ValueError(f"balance must be positive, got {balance}")
    if unit_size <= 0:
        raise ValueError(f"unit_size must be positive, got {unit_size}")
    if reference_balance <= 0:
        raise ValueError(
            f"reference_balance must be positive, got {reference_balance}"
        )
    return int(signal_size * unit_size * balance / reference_balance)


def calculate_units(
    signal_size: int,
    balance: float,
    multiplier: int,
    unit_size: int = 10_000,
    reference_balance: float = 100_000.0,
) -> int:
    """Return the OANDA unit count for a C2 signal (always positive)."""
    if multiplier <= 0:
        raise ValueError(f"multiplier must be positive, got {multiplier}")
    return convert_size(signal_size, balance, unit_size, reference_balance) * multiplier


def calculate_stop_loss_pips(
    balance: float,
    risk_pct: float,
    acc_per_pip: float,
    units: int,
) -> int:
    """Stop-loss distance (in whole pips) that risks *risk_pct* of *balance*.

    Formula::

        risk_amount   = balance × (risk_pct / 100)
        per_pip_trade = acc_per_pip × units
        sl_pips       = int(risk_amount / per_pip_trade)

    The pip count is truncated, so the realised loss at the stop is never
    more than *risk_pct* of *balance*.

    Args:
        balance: Account balance at signal time.
        risk_pct: Target risk as a percentage (e.g. 10.0 for 10 %).
        acc_per_pip: Account currency gained/lost per pip per unit.
        units: Position size in units (sign ignored).

    Raises:
        ValueError: If any input is non-positive.
    """
    units = abs(units)
    if balance <= 0:
        raise ValueError(f"balance must be positive, got {balance}")
    if risk_pct <= 0:
        raise ValueError(f"risk_pct must be positive, got {risk_pct}")
    if acc_per_pip <= 0:
        raise ValueError(f"acc_per_pip must be positive, got {acc_per_pip}")
    if units <= 0:
        raise ValueError(f"units must be positive, got {units}")

    risk_amount = balance * (risk_pct / 100.0)
    return int(risk_amount / (acc_per_pip * units))


def limit_order_levels(
    side: str,
    pair: CurrencyPair,
    open_price: float,
    offset_pips: int,
    sl_pips: int,
) -> LimitLevels:
    """Compute the limit bound and stop-loss for a fresh position.

    - **Buy**:  bound = open − offset,  SL = bound − sl distance
    - **Sell**: bound = open + offset,  SL = bound + sl distance

    The stop-loss is measured from the bound, not the live price, because
    that is where the limit order fills.  Both are rounded to the pair's
    quote precision.
    """
    offset = pair.pips_to_price(offset_pips)
    sl_distance = pair.pips_to_price(sl_pips)
    if side == BUY:
        bound = open_price - offset
        stop_loss = bound - sl_distance
    else:
        bound = open_price + offset
        stop_loss = bound + sl_distance
    return LimitLevels(
        bound=pair.round_price(bound),
        stop_loss=pair.round_price(stop_loss),
    )
