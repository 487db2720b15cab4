"""Copy bridge — signal processor (orchestration loop).

Feeds C2 signals to the configured strategy strictly one at a time, in
arrival order.  Broker failures abort only the signal being handled;
fatal errors stop the loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from copybridge.errors import BrokerError, FatalError
from copybridge.strategy.base import StrategyProtocol
from copybridge.strategy.models import Signal

logger = logging.getLogger("copybridge")

_HISTORY_SIZE = 50


class SignalProcessor:
    """Serial signal queue in front of a strategy.

    Args:
        strategy: A strategy implementing ``StrategyProtocol``.
    """

    def __init__(self, strategy: StrategyProtocol) -> None:
        self._strategy = strategy
        self._queue: asyncio.Queue[Signal] = asyncio.Queue()
        self._running: bool = False
        self._history: list[dict] = []

    @property
    def strategy(self) -> StrategyProtocol:
        return self._strategy

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Signals queued but not yet handled."""
        return self._queue.qsize()

    @property
    def history(self) -> list[dict]:
        """Results of recently handled signals, oldest first."""
        return list(self._history)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def submit(self, signal: Signal) -> None:
        """Queue *signal* behind any signals already waiting."""
        self._queue.put_nowait(signal)
        logger.info(
            "Queued %s %s %s (%d waiting)",
            signal.action, signal.side, signal.pair, self._queue.qsize(),
        )

    def stop(self) -> None:
        """Signal the loop to stop after the current signal."""
        self._running = False

    async def run(self) -> None:
        """Handle queued signals until stopped.

        Raises:
            FatalError: Propagated from the strategy; the loop stops.
        """
        self._running = True
        logger.info("Signal processor started.")
        try:
            while self._running:
                # Wake up every second so stop() takes effect promptly
                try:
                    signal = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self.process(signal)
                finally:
                    self._queue.task_done()
        finally:
            self._running = False
            logger.info("Signal processor stopped.")

    # ── Single signal ────────────────────────────────────────────────────

    async def process(self, signal: Signal) -> dict:
        """Handle one signal and record the outcome.

        Returns the strategy's result dict, or
        ``{"action": "error", "reason": "..."}`` when a broker call or any
        other per-signal step failed.

        Raises:
            FatalError: When the strategy detects an inconsistency.
        """
        started = datetime.now(timezone.utc)
        try:
            result = await self._strategy.handle(signal)
        except FatalError as exc:
            logger.critical(
                "Fatal error handling %s %s: %s", signal.action, signal.pair, exc,
            )
            self._record(signal, {"action": "fatal", "reason": str(exc)}, started)
            raise
        except BrokerError as exc:
            logger.error(
                "Signal %s %s %s aborted: %s",
                signal.action, signal.side, signal.pair, exc,
            )
            result = {"action": "error", "reason": str(exc), "pair": signal.pair.code}
        except Exception as exc:
            logger.exception(
                "Unexpected error handling %s %s %s",
                signal.action, signal.side, signal.pair,
            )
            result = {"action": "error", "reason": repr(exc), "pair": signal.pair.code}

        self._record(signal, result, started)
        logger.info("%s %s → %s", signal.action, signal.pair, result.get("action", "unknown"))
        return result

    def _record(self, signal: Signal, result: dict, started: datetime) -> None:
        self._history.append({
            "signal": signal.to_dict(),
            "result": result,
            "received_at": started.isoformat(),
        })
        if len(self._history) > _HISTORY_SIZE:
            del self._history[0]

    def last_result(self) -> Optional[dict]:
        return self._history[-1]["result"] if self._history else None
