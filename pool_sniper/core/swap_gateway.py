"""
Swap Gateway

Single entry point for every trade the engine makes. Wraps a router (Jupiter
or paper) and enforces call-site idempotence:

- a Quote is single use; executing it twice is refused
- a retry always fetches a fresh quote, never resubmits an old payload
- a SwapResult is returned only for a confirmed transaction, so callers may
  mutate position state as soon as they get one
"""

from __future__ import annotations

import logging
from typing import Protocol

from ..exceptions import SwapFailed
from .models import Quote, SwapResult

logger = logging.getLogger(__name__)


class SwapRouter(Protocol):
    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Quote: ...

    async def execute(self, quote: Quote) -> SwapResult: ...


class SwapGateway:
    def __init__(self, router: SwapRouter, max_attempts: int = 2):
        self.router = router
        self.max_attempts = max(1, max_attempts)

    async def quote(self, from_mint: str, to_mint: str, amount: int, slippage_bps: int) -> Quote:
        if amount <= 0:
            raise SwapFailed("Swap amount must be positive", amount=amount)
        if from_mint == to_mint:
            raise SwapFailed("Cannot swap a mint into itself", mint=from_mint[:8])
        try:
            return await self.router.quote(from_mint, to_mint, amount, slippage_bps)
        except SwapFailed:
            raise
        except Exception as e:
            raise SwapFailed(f"Quote error: {e}") from e

    async def execute(self, quote: Quote) -> SwapResult:
        if quote.consumed:
            raise SwapFailed("Quote already used; fetch a fresh quote", input_mint=quote.input_mint[:8])
        quote.consumed = True
        try:
            return await self.router.execute(quote)
        except SwapFailed:
            raise
        except Exception as e:
            raise SwapFailed(f"Execute error: {e}") from e

    async def swap(self, from_mint: str, to_mint: str, amount: int, slippage_bps: int) -> SwapResult:
        """Quote and execute, retrying with a fresh quote on each attempt."""
        last_error: SwapFailed | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                quote = await self.quote(from_mint, to_mint, amount, slippage_bps)
                return await self.execute(quote)
            except SwapFailed as e:
                last_error = e
                logger.warning(
                    "Swap attempt %d/%d failed (%s... -> %s...): %s",
                    attempt, self.max_attempts, from_mint[:8], to_mint[:8], e,
                )
        raise SwapFailed(
            f"Swap failed after {self.max_attempts} attempts: {last_error}",
            from_mint=from_mint[:8],
            to_mint=to_mint[:8],
        )
