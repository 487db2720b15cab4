"""Signal and currency pair data models — no I/O."""

from __future__ import annotations

import re
from dataclasses import dataclass

OPEN = "OPEN"
CLOSE = "CLOSE"
BUY = "BUY"
SELL = "SELL"

ACTIONS = (OPEN, CLOSE)
SIDES = (BUY, SELL)

JPY = "JPY"

KNOWN_CURRENCIES: frozenset[str] = frozenset({
    "AUD", "CAD", "CHF", "CNH", "CZK", "DKK", "EUR", "GBP", "HKD", "HUF",
    "JPY", "MXN", "NOK", "NZD", "PLN", "SEK", "SGD", "THB", "TRY", "USD",
    "ZAR",
})

_PAIR_RE = re.compile(r"^[A-Z]{6}$")


@dataclass(frozen=True)
class CurrencyPair:
    """A currency pair code such as ``"EURUSD"``.

    Carries the quote precision used everywhere a price is rounded: pairs
    quoted in yen use 2 decimals and a 0.01 pip, everything else uses 4
    decimals and a 0.0001 pip.
    """

    code: str

    def __post_init__(self) -> None:
        if not _PAIR_RE.match(self.code):
            raise ValueError(f"invalid currency pair code '{self.code}'")
        base, quote = self.code[:3], self.code[3:]
        for ccy in (base, quote):
            if ccy not in KNOWN_CURRENCIES:
                raise ValueError(
                    f"unknown currency '{ccy}' in pair '{self.code}'"
                )
        if base == quote:
            raise ValueError(f"pair '{self.code}' has identical currencies")

    def __str__(self) -> str:
        return self.code

    @property
    def base(self) -> str:
        return self.code[:3]

    @property
    def quote(self) -> str:
        return self.code[3:]

    @property
    def instrument(self) -> str:
        """OANDA instrument name, e.g. ``"EUR_USD"``."""
        return f"{self.base}_{self.quote}"

    @property
    def is_jpy(self) -> bool:
        return JPY in self.code

    @property
    def decimals(self) -> int:
        return 2 if self.is_jpy else 4

    @property
    def pip_size(self) -> float:
        return 0.01 if self.is_jpy else 0.0001

    def round_price(self, price: float) -> float:
        """Round *price* to this pair's quote precision."""
        return round(price, self.decimals)

    def pips_to_price(self, pips: float) -> float:
        return pips * self.pip_size

    def price_to_pips(self, price_diff: float) -> float:
        # Rounded to absorb float noise such as 0.0030000000000001
        return round(price_diff / self.pip_size, 6)


def parse_pair(raw: str) -> CurrencyPair:
    """Normalise *raw* (trim, upper-case, drop ``_`` or ``/``) into a pair.

    Raises:
        ValueError: If the result is not a valid pair code.
    """
    code = raw.strip().upper().replace("_", "").replace("/", "")
    return CurrencyPair(code)


@dataclass(frozen=True)
class Signal:
    """A normalised open/close instruction mirrored from C2."""

    action: str  # "OPEN" or "CLOSE"
    side: str  # "BUY" or "SELL"
    size: int
    pair: CurrencyPair
    open_price: float

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"action must be OPEN or CLOSE, got '{self.action}'")
        if self.side not in SIDES:
            raise ValueError(f"side must be BUY or SELL, got '{self.side}'")
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        if self.open_price <= 0:
            raise ValueError(f"open_price must be positive, got {self.open_price}")

    @classmethod
    def from_dict(cls, data: dict) -> Signal:
        """Build a signal from a JSON-style dict.

        Accepts ``open_price`` or ``openPrice``.  Raises ``ValueError`` for
        any missing or malformed field.
        """
        try:
            price = data["open_price"] if "open_price" in data else data["openPrice"]
            size = data["size"]
            if isinstance(size, bool) or int(size) != size:
                raise ValueError(f"size must be an integer, got {size!r}")
            return cls(
                action=str(data["action"]).strip().upper(),
                side=str(data["side"]).strip().upper(),
                size=int(size),
                pair=parse_pair(str(data["pair"])),
                open_price=float(price),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed signal {data!r}: {exc}") from exc

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "side": self.side,
            "size": self.size,
            "pair": self.pair.code,
            "open_price": self.open_price,
        }
