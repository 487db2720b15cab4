"""Internal API routers — /state, /signals endpoints.

No business logic. Delegates to the signal processor and the pair state
store injected at startup.
"""

import logging

from fastapi import APIRouter, HTTPException, Query

from copybridge.strategy.models import Signal

logger = logging.getLogger("copybridge")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_processor = None  # Set via configure_routers()
_state_store = None  # Set via configure_routers()
_strategy_name: str | None = None


def configure_routers(processor=None, state_store=None, strategy_name: str | None = None) -> None:
    """Inject dependencies from the application startup.

    Args:
        processor: A ``SignalProcessor`` instance (or duck-type for tests).
        state_store: The ``PairStateStore`` used by the strategy, if any.
        strategy_name: Registry key of the running strategy.
    """
    global _processor, _state_store, _strategy_name  # noqa: PLW0603
    _processor = processor
    _state_store = state_store
    _strategy_name = strategy_name


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return processor status."""
    if _processor is None:
        return {"running": False, "strategy": _strategy_name, "pending": 0}
    return {
        "running": _processor.running,
        "strategy": _strategy_name,
        "pending": _processor.pending,
        "last_result": _processor.last_result(),
    }


@router.get("/state")
async def get_state():
    """Return the currently-open and blacklisted pairs."""
    if _state_store is None:
        return {"currently_open": [], "blacklist": []}
    return _state_store.snapshot()


@router.get("/signals/history")
async def get_signal_history(
    limit: int = Query(default=20, ge=1, le=50),
):
    """Return recently handled signals with their outcome, newest first."""
    if _processor is None:
        return {"signals": []}
    recent = _processor.history[-limit:]
    recent.reverse()
    return {"signals": recent}


@router.post("/signals", status_code=202)
async def post_signal(body: dict):
    """Queue a structured C2 signal for mirroring."""
    if _processor is None:
        raise HTTPException(status_code=503, detail="Signal processor not configured")
    try:
        signal = Signal.from_dict(body)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    _processor.submit(signal)
    return {"queued": signal.to_dict(), "pending": _processor.pending}
