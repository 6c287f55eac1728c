"""
Orchestrator

Top-level loop. Every tick it pulls new pools from the event source into a
backlog, screens a bounded number of candidates, buys the ones that pass and
hands them to the registry, which starts their monitors.

Nothing that goes wrong with one candidate reaches the loop itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Protocol

from ..config.trading_config import TradingConfig
from ..exceptions import DataUnavailable, RiskRejected, StateException, SwapFailed
from .models import PoolEvent, Position, PositionStatus
from .pool_source import PoolEventSource
from .position_monitor import PositionMonitor, PriceOracle
from .position_registry import PositionRegistry
from .risk_evaluator import RiskChecker
from .swap_gateway import SwapGateway

logger = logging.getLogger(__name__)


class DecimalsSource(Protocol):
    async def get_decimals(self, mint: str) -> int: ...


class Orchestrator:
    def __init__(
        self,
        source: PoolEventSource,
        risk_checker: RiskChecker,
        gateway: SwapGateway,
        registry: PositionRegistry,
        oracle: PriceOracle,
        chain: DecimalsSource,
        config: TradingConfig,
        snapshot_path: str | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.risk_checker = risk_checker
        self.gateway = gateway
        self.registry = registry
        self.oracle = oracle
        self.chain = chain
        self.config = config
        self.snapshot_path = snapshot_path
        self.clock = clock
        self._sleep = sleep

        self.stop_event = asyncio.Event()
        self.backlog: deque[PoolEvent] = deque()
        self.monitors: dict[str, PositionMonitor] = {}
        self.stats = {"candidates": 0, "rejected": 0, "bought": 0, "failed": 0}

        self.registry.set_monitor_factory(self._monitor_for)

    # ============================================
    # MONITORS
    # ============================================

    def _monitor_for(self, mint: str):
        monitor = PositionMonitor(
            mint=mint,
            registry=self.registry,
            gateway=self.gateway,
            oracle=self.oracle,
            config=self.config.exits,
            slippage_bps=self.config.execution.slippage_bps,
            stop_event=self.stop_event,
            clock=self.clock,
        )
        self.monitors[mint] = monitor
        return self._run_monitor(monitor)

    async def _run_monitor(self, monitor: PositionMonitor) -> None:
        try:
            await monitor.run()
        finally:
            if self.monitors.get(monitor.mint) is monitor:
                del self.monitors[monitor.mint]

    def request_manual_exit(self, mint: str) -> bool:
        """Ask the monitor of `mint` to sell everything next iteration."""
        monitor = self.monitors.get(mint)
        if monitor is None:
            logger.warning("No monitor running for %s...", mint[:8])
            return False
        monitor.request_manual_exit()
        logger.info("Manual exit requested for %s...", mint[:8])
        return True

    # ============================================
    # DISCOVERY
    # ============================================

    async def tick(self) -> int:
        """One discovery pass. Returns the number of positions opened."""
        try:
            self.backlog.extend(await self.source.next_events())
        except Exception as e:
            logger.error("Pool discovery failed: %s", e)

        limit = self.config.discovery.max_candidates_per_tick
        opened = 0
        processed = 0
        while self.backlog and processed < limit and not self.stop_event.is_set():
            if processed:
                await self._sleep(self.config.discovery.candidate_delay_sec)
            event = self.backlog.popleft()
            processed += 1
            if await self._handle_candidate(event):
                opened += 1

        if self.backlog:
            logger.debug("%d candidates deferred to next tick", len(self.backlog))
        return opened

    async def _handle_candidate(self, event: PoolEvent) -> bool:
        self.stats["candidates"] += 1
        try:
            return await self.process_candidate(event) is not None
        except RiskRejected as e:
            self.stats["rejected"] += 1
            logger.info("SKIP %s...: %s", event.token_mint[:8], e)
        except (SwapFailed, DataUnavailable, StateException) as e:
            self.stats["failed"] += 1
            logger.warning("BUY %s... abandoned: %s", event.token_mint[:8], e)
        except Exception as e:
            self.stats["failed"] += 1
            logger.error("Unexpected error on candidate %s...: %s", event.token_mint[:8], e, exc_info=True)
        return False

    async def process_candidate(self, event: PoolEvent) -> Position | None:
        """Screen and buy one candidate. Raises RiskRejected when unsafe."""
        mint = event.token_mint
        if self.registry.has(mint):
            logger.debug("SKIP %s...: already holding", mint[:8])
            return None

        verdict, mint_info = await self.risk_checker.check(mint)
        if not verdict.safe:
            raise RiskRejected(f"Risky token ({verdict.reason.value})", verdict=verdict, pool=event.pool_id[:8])

        return await self.open_position(event, mint_info.decimals)

    async def open_position(self, event: PoolEvent, decimals: int) -> Position:
        """Buy `buy_usd` worth of the token with the configured quote mint and register it."""
        execution = self.config.execution
        quote_mint = execution.quote_mint

        quote_price = await self.oracle.get_price(quote_mint)
        if not quote_price:
            raise DataUnavailable("No price for quote mint", quote_mint=quote_mint[:8])
        quote_decimals = await self.chain.get_decimals(quote_mint)
        in_amount = int(execution.buy_usd / quote_price * (10 ** quote_decimals))

        logger.info("BUY %s... for $%.2f (%d %s...)", event.token_mint[:8], execution.buy_usd, in_amount, quote_mint[:8])
        result = await self.gateway.swap(quote_mint, event.token_mint, in_amount, execution.slippage_bps)
        if result.out_amount <= 0:
            raise SwapFailed("Buy filled zero tokens", signature=result.signature[:16])

        buy_price = await self._entry_price(event.token_mint, result.out_amount, decimals)
        position = Position(
            mint=event.token_mint,
            quote_mint=quote_mint,
            decimals=decimals,
            buy_price=buy_price,
            amount=result.out_amount,
            status=PositionStatus.PENDING,
            opened_at=self.clock(),
            buy_signature=result.signature,
            pool_id=event.pool_id,
        )
        created = await self.registry.create(position)
        self.stats["bought"] += 1
        return created

    async def _entry_price(self, mint: str, out_amount: int, decimals: int) -> float:
        try:
            price = await self.oracle.get_price(mint)
        except Exception as e:
            logger.debug("Entry price lookup for %s... failed: %s", mint[:8], e)
            price = None
        if price and price > 0:
            return price
        # Fall back to what the fill implies
        return self.config.execution.buy_usd / (out_amount / (10 ** decimals))

    # ============================================
    # LIFECYCLE
    # ============================================

    async def run(self) -> None:
        interval = self.config.discovery.poll_interval_sec
        logger.info(
            "Sniper started: discovery every %.0fs, $%.2f per buy, %d exit stages",
            interval, self.config.execution.buy_usd, len(self.config.exits.stages),
        )
        while not self.stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("Tick failed: %s", e, exc_info=True)

            self.write_snapshot()

            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        await self.shutdown()

    def stop(self) -> None:
        self.stop_event.set()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Let monitors notice the stop event, then cancel stragglers."""
        self.stop_event.set()
        await self.registry.wait_monitors(timeout=timeout)
        pending = [t for t in self.registry.tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.write_snapshot()
        open_count = len(self.registry)
        if open_count:
            logger.warning("Shutdown with %d open positions left on-chain", open_count)
        logger.info("Orchestrator stopped. Stats: %s", self.stats)

    def write_snapshot(self) -> None:
        if not self.snapshot_path:
            return
        prices = {mint: m.last_price for mint, m in self.monitors.items() if m.last_price}
        try:
            self.registry.write_snapshot(self.snapshot_path, prices)
        except OSError as e:
            logger.warning("Could not write position snapshot: %s", e)
