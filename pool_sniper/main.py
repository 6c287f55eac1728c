import asyncio
import logging
import platform
import signal
import sys

import aiohttp

from pool_sniper.config import Settings
from pool_sniper.core.jupiter_client import JupiterRouter
from pool_sniper.core.orchestrator import Orchestrator
from pool_sniper.core.paper_router import PaperRouter
from pool_sniper.core.pool_source import PoolEventSource, ProgramLogFeed, RaydiumPoolPoller
from pool_sniper.core.position_registry import PositionRegistry
from pool_sniper.core.price_oracle import BirdeyePriceOracle
from pool_sniper.core.risk_evaluator import RiskChecker
from pool_sniper.core.rpc_client import SolanaChainClient
from pool_sniper.core.swap_gateway import SwapGateway
from pool_sniper.core.wallet import Wallet
from pool_sniper.exceptions import ConfigurationException
from pool_sniper.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_feed(settings: Settings, session: aiohttp.ClientSession, chain: SolanaChainClient):
    discovery = settings.trading.discovery
    if discovery.mode == "logs":
        logger.info("Discovery: program logs for %s", discovery.program_id)
        return ProgramLogFeed(chain, discovery.program_id)
    logger.info("Discovery: polling %s", settings.RAYDIUM_API)
    return RaydiumPoolPoller(session, settings.RAYDIUM_API, page_size=discovery.page_size)


async def main(settings: Settings) -> None:
    trading = settings.trading

    session = aiohttp.ClientSession()
    chain = SolanaChainClient(
        settings.RPC_URL, settings.WSS_URL, confirm_timeout=trading.execution.confirm_timeout_sec
    )
    oracle = BirdeyePriceOracle(settings.BIRDEYE_API_KEY, settings.BIRDEYE_API_BASE)

    if settings.PAPER_TRADING_MODE:
        logger.info("PAPER TRADING MODE - no transactions will be sent")
        router = PaperRouter(oracle, chain, slippage_pct=trading.execution.paper_slippage_pct)
    else:
        wallet = Wallet.from_secret(settings.PRIVATE_KEY)
        logger.info("LIVE TRADING with wallet %s", wallet.public_key)
        router = JupiterRouter(session, chain, wallet)

    feed = build_feed(settings, session, chain)
    source = PoolEventSource(
        feed,
        quote_mints=trading.discovery.quote_mints,
        seen_ttl_sec=trading.discovery.seen_ttl_sec,
    )
    orchestrator = Orchestrator(
        source=source,
        risk_checker=RiskChecker(chain, trading.risk),
        gateway=SwapGateway(router, max_attempts=trading.execution.swap_attempts),
        registry=PositionRegistry(),
        oracle=oracle,
        chain=chain,
        config=trading,
        snapshot_path=settings.POSITION_SNAPSHOT_PATH,
    )

    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        print(f"\n[SHUTDOWN] Received signal {sig}...")
        orchestrator.stop()

    # Add signal handlers (not supported on Windows - use fallback)
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))
    else:
        signal.signal(signal.SIGINT, lambda s, f: handle_shutdown(s))
        signal.signal(signal.SIGTERM, lambda s, f: handle_shutdown(s))

    try:
        await orchestrator.run()
    finally:
        if isinstance(feed, ProgramLogFeed):
            await feed.stop()
        if not session.closed:
            await session.close()
        await oracle.close()
        await chain.close()
        logger.info("Shutdown complete")


def cli() -> None:
    try:
        settings = Settings.from_env()
        settings.validate()
    except (ConfigurationException, ValueError, TypeError) as e:
        # ValueError/TypeError come from malformed env values or unknown config keys
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        print("\nKeyboard interrupt - shutting down...")


if __name__ == "__main__":
    cli()
