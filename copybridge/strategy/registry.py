"""Strategy registry — maps strategy names to classes.

Used by the CLI to instantiate the strategy named by ``Config.strategy``.
"""

from copybridge.broker.order_manager import OrderManager
from copybridge.config import Config
from copybridge.repos.pair_state import PairStateStore
from copybridge.strategy.base import StrategyProtocol
from copybridge.strategy.copy import CopyStrategy
from copybridge.strategy.smart_copy import SmartCopyStrategy


STRATEGY_REGISTRY: dict[str, type] = {
    "copy": CopyStrategy,
    "smart_copy": SmartCopyStrategy,
}


def get_strategy(
    name: str,
    orders: OrderManager,
    config: Config,
    state: PairStateStore | None = None,
) -> StrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Stateful strategies receive *state*; a missing store is created from
    ``config.state_file``.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    cls = STRATEGY_REGISTRY[name]
    if cls is SmartCopyStrategy:
        if state is None:
            state = PairStateStore(config.state_file)
        return SmartCopyStrategy(orders=orders, state=state, config=config)
    return cls(orders=orders, config=config)
