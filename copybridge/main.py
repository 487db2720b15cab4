"""Copy bridge — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
runs the signal processor next to it.
"""

import logging

from fastapi import FastAPI

from copybridge.api.routers import router

app = FastAPI(title="C2 Copy Bridge Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("copybridge")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_live(environment: str) -> bool:
    """Log a prominent warning when mirroring onto a live account.

    Returns ``True`` if *environment* is ``"live"``.
    """
    if environment == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments, load state and run until interrupted."""
    import argparse
    import asyncio
    import sys
    import time

    from copybridge.api.routers import configure_routers
    from copybridge.broker.oanda_client import OandaClient
    from copybridge.broker.order_manager import OrderManager
    from copybridge.config import load_config
    from copybridge.engine import SignalProcessor
    from copybridge.errors import FatalError, StateLoadError
    from copybridge.repos.pair_state import PairStateStore
    from copybridge.strategy.registry import get_strategy

    parser = argparse.ArgumentParser(description="Mirror C2 signals onto OANDA")
    parser.add_argument("--env-file", help="Path to the .env file")
    parser.add_argument(
        "--strategy",
        choices=["smart_copy", "copy"],
        help="Override the STRATEGY setting",
    )
    args = parser.parse_args()

    config = load_config(args.env_file)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    strategy_name = args.strategy or config.strategy

    state = PairStateStore(config.state_file)
    if strategy_name == "smart_copy":
        try:
            state.load()
        except StateLoadError as exc:
            logger.critical("Cannot start: %s", exc)
            sys.exit(1)

    if warn_if_live(config.oanda_environment):
        time.sleep(5)

    orders = OrderManager(OandaClient(config))
    strategy = get_strategy(strategy_name, orders, config, state=state)
    processor = SignalProcessor(strategy)
    configure_routers(
        processor=processor,
        state_store=state if strategy_name == "smart_copy" else None,
        strategy_name=strategy_name,
    )

    try:
        asyncio.run(_run_bridge(processor, config.health_port))
    except FatalError as exc:
        # State no longer matches the account; keep the last saved file
        logger.critical("Stopping without saving state: %s", exc)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Shutdown signal received — stopping gracefully.")
    strategy.shutdown()


async def _run_bridge(processor, port: int = 8080) -> None:
    """Start the API server and the signal processor concurrently."""
    import asyncio
    import uvicorn

    from copybridge.errors import FatalError

    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    )

    async def _run_server():
        try:
            await server.serve()
        finally:
            processor.stop()

    async def _run_processor():
        try:
            await processor.run()
        finally:
            server.should_exit = True

    logger.info("Accepting signals at http://localhost:%d/signals", port)
    results = await asyncio.gather(
        _run_server(),
        _run_processor(),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, FatalError):
            raise result
    logger.info("Copy bridge stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
