"""
PM Mirror Bot - Main Entry Point

Mirrors one wallet's maker-side Polymarket trades:
- Watches CTF Exchange settlements on Polygon
- Sizes a proportional buy order
- Places it on the CLOB with retry and price stepping
"""

import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv
from web3 import Web3

from pm_mirror.config.config import Config, ConfigValidationError, CopyParameters
from pm_mirror.config.credential_store import JsonFileCredentialStore
from pm_mirror.config.logging_config import setup_logging
from pm_mirror.services.clob_client import ClobSessionClient, SessionConfig
from pm_mirror.services.polygon_rpc import PolygonRPC
from pm_mirror.services.position_scaler import Skip, translate
from pm_mirror.services.trade_executor import ExecutionResult, TradeExecutor
from pm_mirror.services.trade_monitor import (
    MonitorConfig,
    TradeEvent,
    TradeMonitor,
    TransportClosed,
    TransportError,
)

logger = logging.getLogger(__name__)


async def mirror_trade(event: TradeEvent, executor: TradeExecutor, params: CopyParameters) -> Optional[ExecutionResult]:
    """Translate and execute one detected trade."""
    request = translate(event, params)
    if isinstance(request, Skip):
        logger.info(f"Skipping {event.tx_hash}: {request.reason}")
        return None

    logger.info(f"side: {request.side.name}, tokenID: {request.token_id}, price: {request.price}, size: {request.size}")
    result = await executor.execute(request, params)
    logger.info(f"Trade {event.tx_hash} finished: {result.status.value} after {result.attempts} attempt(s)")
    return result


async def run_copy_loop(
    monitor: TradeMonitor,
    executor: TradeExecutor,
    params: CopyParameters,
    target_wallet: str,
    reconnect_delay: float = 5.0,
    max_sessions: Optional[int] = None
):
    """
    Consume the monitor stream and mirror each trade in its own task.

    Args:
        max_sessions: Stop after this many subscriptions (None runs forever)
    """
    running: set[asyncio.Task] = set()
    sessions = 0

    while max_sessions is None or sessions < max_sessions:
        sessions += 1
        async for signal in monitor.subscribe(target_wallet):
            if isinstance(signal, TradeEvent):
                task = asyncio.create_task(mirror_trade(signal, executor, params))
                running.add(task)
                task.add_done_callback(running.discard)
            elif isinstance(signal, TransportError):
                logger.error(f"Block subscription failed: {signal.error}")
            elif isinstance(signal, TransportClosed):
                logger.warning(f"Block subscription closed ({signal.code}): {signal.reason}")

        if max_sessions is None or sessions < max_sessions:
            logger.info(f"Reconnecting in {reconnect_delay}s...")
            await asyncio.sleep(reconnect_delay)

    if running:
        await asyncio.gather(*list(running), return_exceptions=True)


def resolve_target_wallet(configured: str) -> str:
    """Use TARGET_WALLET, or ask once on stdin."""
    wallet = configured or input("Enter target wallet address: ").strip()
    if not Web3.is_address(wallet):
        raise ConfigValidationError([f"Invalid target wallet address: {wallet!r}"])
    return wallet


async def main():
    """Main entry point."""
    print("=" * 60)
    print("PM Mirror Bot")
    print("=" * 60)

    load_dotenv()

    try:
        config = Config.load().ensure_valid()
        target_wallet = resolve_target_wallet(config.copy_trading.target_wallet)
    except ConfigValidationError as e:
        print("❌ Configuration Errors:")
        for error in e.errors:
            print(f"   - {error}")
        print("\nPlease copy .env.example to .env and fill in your values.")
        sys.exit(1)

    setup_logging(config.logging.level, config.logging.log_dir)
    params = config.copy_trading.copy_parameters()

    print(f"\n✅ Configuration loaded")
    print(f"   Wallet: {config.blockchain.proxy_wallet[:8]}...")
    print(f"   Target: {target_wallet}")
    print(f"   Copy ratio: {params.copy_ratio}")
    print(f"   Retries: {params.retry_limit} (timeout {params.order_timeout_seconds}s, step {params.price_increment_percent}%)")

    rpc = PolygonRPC(config.blockchain.rpc_url)
    monitor = TradeMonitor(
        config=MonitorConfig(
            wss_url=config.blockchain.wss_url,
            exchange_address=config.blockchain.exchange_address
        ),
        rpc=rpc
    )
    session = ClobSessionClient(
        config=SessionConfig(
            private_key=config.blockchain.private_key,
            wallet_address=config.blockchain.proxy_wallet,
            rpc_url=config.blockchain.rpc_url,
            host=config.clob.http_url
        ),
        store=JsonFileCredentialStore(config.storage.credentials_file)
    )
    executor = TradeExecutor(session)

    print("\n" + "=" * 60)
    print("🚀 Bot Started - Press Ctrl+C to stop")
    print("=" * 60)

    try:
        await run_copy_loop(
            monitor,
            executor,
            params,
            target_wallet,
            reconnect_delay=config.copy_trading.reconnect_delay
        )
    finally:
        print("✅ Bot stopped")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n🛑 Stopping bot...")


if __name__ == "__main__":
    run()
