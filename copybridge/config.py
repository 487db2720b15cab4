"""Copy bridge — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "OANDA_ACCOUNT_ID",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    oanda_account_id: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    strategy: str = "smart_copy"
    state_file: str = "smartcopy.env"
    pos_size_multiplier: int = 3
    c2_stoploss_pct: float = 3.33333
    limit_order_pips_diff: int = 10
    add_trade_min_gap_pips: int = 10
    max_pip_diff: float = 5.0
    signal_unit_size: int = 10_000
    c2_reference_balance: float = 100_000.0
    log_level: str = "INFO"
    health_port: int = 8080

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"

    @property
    def acc_stoploss_pct(self) -> float:
        """Percentage of our balance risked on a pair.

        C2's stop-loss percentage scaled by the position size multiplier,
        since every C2 unit is mirrored ``pos_size_multiplier`` times.
        """
        return self.c2_stoploss_pct * self.pos_size_multiplier


def _positive(name: str, value):
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the offending variable when a
    numeric setting is not positive.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        oanda_account_id=os.environ["OANDA_ACCOUNT_ID"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        strategy=os.environ.get("STRATEGY", "smart_copy"),
        state_file=os.environ.get("STATE_FILE", "smartcopy.env"),
        pos_size_multiplier=_positive(
            "POS_SIZE_MULTIPLIER",
            int(os.environ.get("POS_SIZE_MULTIPLIER", "3")),
        ),
        c2_stoploss_pct=_positive(
            "C2_STOPLOSS_PCT",
            float(os.environ.get("C2_STOPLOSS_PCT", "3.33333")),
        ),
        limit_order_pips_diff=int(os.environ.get("LIMIT_ORDER_PIPS_DIFF", "10")),
        add_trade_min_gap_pips=int(os.environ.get("ADD_TRADE_MIN_GAP_PIPS", "10")),
        max_pip_diff=float(os.environ.get("MAX_PIP_DIFF", "5")),
        signal_unit_size=_positive(
            "SIGNAL_UNIT_SIZE",
            int(os.environ.get("SIGNAL_UNIT_SIZE", "10000")),
        ),
        c2_reference_balance=_positive(
            "C2_REFERENCE_BALANCE",
            float(os.environ.get("C2_REFERENCE_BALANCE", "100000")),
        ),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
