"""
Position Monitor

One asyncio task per open position. Every poll interval it prices the
token, picks at most one exit rule, sells through the swap gateway and
records the fill in the registry.

Exit rule priority (first match wins, one action per iteration):
1. manual exit request          -> sell 100%, manual
2. take-profit stages, highest multiplier first
                                -> sell the stage fraction of what remains
3. stop loss                    -> sell 100%, stop_loss
4. timeout                      -> sell 100%, timeout

A stage is only eligible while no higher stage has fired, so after a jump
straight past several thresholds the skipped lower stages never fire later.
A stage sale that empties the position closes it as target_reached.

A failed sell leaves the position untouched; the same rule is re-evaluated
on the next iteration against a fresh quote.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Protocol

from ..config.trading_config import ExitConfig
from ..exceptions import StateException, SwapFailed
from .models import ExitReason, Position, PositionStatus, TakeProfitStage
from .position_registry import PositionRegistry
from .swap_gateway import SwapGateway

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    async def get_price(self, mint: str) -> float | None: ...


@dataclass(frozen=True)
class ExitDecision:
    sell_amount: int
    multiplier: float
    stage: TakeProfitStage | None = None
    reason: ExitReason | None = None

    @property
    def is_full_exit(self) -> bool:
        return self.stage is None


def stage_sell_amount(remaining: int, fraction: float) -> int:
    """Fraction of the remaining base units, at least one unit, never more than remaining."""
    amount = int((Decimal(remaining) * Decimal(str(fraction))).to_integral_value(rounding=ROUND_DOWN))
    return min(remaining, max(1, amount))


def decide_exit(
    position: Position,
    multiplier: float,
    now: float,
    config: ExitConfig,
    manual: bool = False,
) -> ExitDecision | None:
    """Pick the single exit action for this iteration, or None."""
    if position.amount <= 0:
        return None

    if manual:
        return ExitDecision(sell_amount=position.amount, multiplier=multiplier, reason=ExitReason.MANUAL)

    stages = sorted(config.stages, key=lambda s: s.multiplier, reverse=True)
    highest_flagged = max(
        (s.multiplier for s in stages if s.label in position.stage_flags), default=0.0
    )
    for stage in stages:
        if stage.multiplier <= highest_flagged:
            break
        if stage.label in position.stage_flags:
            continue
        if multiplier >= stage.multiplier:
            return ExitDecision(
                sell_amount=stage_sell_amount(position.amount, stage.sell_fraction),
                multiplier=multiplier,
                stage=stage,
            )

    if multiplier <= 1.0 - config.stop_loss_fraction:
        return ExitDecision(sell_amount=position.amount, multiplier=multiplier, reason=ExitReason.STOP_LOSS)

    if config.timeout_sec and now - position.opened_at > config.timeout_sec:
        return ExitDecision(sell_amount=position.amount, multiplier=multiplier, reason=ExitReason.TIMEOUT)

    return None


class PositionMonitor:
    """Runs the exit state machine for one mint until it is CLOSED.

    There is no per-position cancel: the loop ends at CLOSED or when the
    shared ``stop_event`` is set at shutdown, which leaves the position as is.
    """

    def __init__(
        self,
        mint: str,
        registry: PositionRegistry,
        gateway: SwapGateway,
        oracle: PriceOracle,
        config: ExitConfig,
        slippage_bps: int,
        stop_event: asyncio.Event,
        clock: Callable[[], float] = time.time,
    ):
        self.mint = mint
        self.registry = registry
        self.gateway = gateway
        self.oracle = oracle
        self.config = config
        self.slippage_bps = slippage_bps
        self.stop_event = stop_event
        self.clock = clock
        self.last_price: float | None = None
        self.iterations = 0
        self._manual_exit = False

    def request_manual_exit(self) -> None:
        """Sell everything on the next iteration, ahead of every other rule."""
        self._manual_exit = True

    async def run(self) -> None:
        logger.info("Monitoring %s... every %.0fs", self.mint[:8], self.config.poll_interval_sec)
        while not self.stop_event.is_set():
            try:
                position = await self.step()
            except StateException as e:
                logger.error("Registry rejected update for %s...: %s", self.mint[:8], e)
                position = self.registry.get(self.mint)
            except Exception as e:
                logger.error("Monitor iteration for %s... failed: %s", self.mint[:8], e, exc_info=True)
                position = self.registry.get(self.mint)

            if position is None or position.status == PositionStatus.CLOSED:
                break

            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.config.poll_interval_sec)
            except asyncio.TimeoutError:
                pass

        if self.stop_event.is_set() and self.registry.has(self.mint):
            logger.info("Monitor for %s... stopped at shutdown, position left open", self.mint[:8])

    async def step(self) -> Position | None:
        """One iteration. Returns the position after this iteration, None once it is gone."""
        self.iterations += 1
        position = self.registry.get(self.mint)
        if position is None or not position.is_active:
            return position

        price = await self._fetch_price()
        if price is None and not self._manual_exit:
            logger.debug("%s... price unavailable, skipping iteration", self.mint[:8])
            return position
        if price is not None:
            self.last_price = price

        # A manual exit sells regardless of price; 0.0 only appears in the log line
        multiplier = price / position.buy_price if price is not None else 0.0
        logger.debug("%s... %.2fx", self.mint[:8], multiplier)

        decision = decide_exit(position, multiplier, self.clock(), self.config, manual=self._manual_exit)
        if decision is None:
            return position

        label = decision.stage.label if decision.stage else decision.reason.value
        logger.info(
            "SELL %s... %s at %.2fx: %d of %d",
            self.mint[:8], label, multiplier, decision.sell_amount, position.amount,
        )

        try:
            result = await self.gateway.swap(
                self.mint, position.quote_mint, decision.sell_amount, self.slippage_bps
            )
        except SwapFailed as e:
            logger.warning("SELL %s... %s failed, will retry next cycle: %s", self.mint[:8], label, e)
            return position

        updated = await self.registry.apply_exit(
            self.mint,
            decision.sell_amount,
            stage=decision.stage.label if decision.stage else None,
            reason=decision.reason,
            signature=result.signature,
        )
        if decision.reason == ExitReason.MANUAL:
            self._manual_exit = False

        if updated.status == PositionStatus.CLOSED:
            logger.info(
                "EXIT %s... %s, received %d of %s...",
                self.mint[:8], updated.exit_reason.value, result.out_amount, position.quote_mint[:8],
            )
        return updated

    async def _fetch_price(self) -> float | None:
        try:
            price = await self.oracle.get_price(self.mint)
        except Exception as e:
            logger.warning("Price lookup for %s... failed: %s", self.mint[:8], e)
            return None
        return price if price and price > 0 else None
