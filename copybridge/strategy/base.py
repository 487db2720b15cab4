"""Strategy protocol.

Defines the interface that all copy strategies must implement.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from copybridge.strategy.models import Signal


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all copy strategies must satisfy."""

    async def handle(self, signal: Signal) -> dict:
        """Mirror one C2 signal and return a dict describing the action."""
        ...

    def shutdown(self) -> None:
        """Persist whatever the strategy needs across restarts."""
        ...
