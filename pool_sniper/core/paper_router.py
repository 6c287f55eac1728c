from __future__ import annotations

import logging
import random
import uuid
from typing import Protocol

from ..exceptions import SwapFailed
from .models import Quote, SwapResult


class PriceSource(Protocol):
    async def get_price(self, mint: str) -> float | None: ...


class DecimalsSource(Protocol):
    async def get_decimals(self, mint: str) -> int: ...


class PaperRouter:
    """Simulated swap router: fills at oracle prices minus random slippage.

    Mirrors the live router's contract (single-use quotes, SwapFailed on any
    failure) so the rest of the engine cannot tell the difference.
    """

    def __init__(
        self,
        oracle: PriceSource,
        decimals: DecimalsSource,
        slippage_pct: float = 1.0,
        seed: int | None = None,
    ) -> None:
        self.oracle = oracle
        self.decimals = decimals
        self.slippage_pct = slippage_pct
        self.rng = random.Random(seed)
        self.logger = logging.getLogger("pool_sniper.paper")

    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Quote:
        price_in = await self.oracle.get_price(input_mint)
        price_out = await self.oracle.get_price(output_mint)
        if not price_in or not price_out:
            raise SwapFailed("No price for paper fill", input_mint=input_mint[:8], output_mint=output_mint[:8])

        dec_in = await self.decimals.get_decimals(input_mint)
        dec_out = await self.decimals.get_decimals(output_mint)

        usd_value = amount / (10 ** dec_in) * price_in
        slippage = self.rng.uniform(0.0, min(self.slippage_pct, slippage_bps / 100.0)) / 100.0
        out_amount = int(usd_value / price_out * (10 ** dec_out) * (1 - slippage))
        if out_amount <= 0:
            raise SwapFailed("Paper fill rounds to zero", amount=amount)

        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=amount,
            out_amount=out_amount,
            slippage_bps=slippage_bps,
            price_impact_pct=slippage * 100.0,
        )

    async def execute(self, quote: Quote) -> SwapResult:
        signature = f"paper-{uuid.uuid4().hex}"
        self.logger.info(
            "PAPER fill %s: %d %s... -> %d %s...",
            signature[:14], quote.in_amount, quote.input_mint[:8], quote.out_amount, quote.output_mint[:8],
        )
        return SwapResult(
            signature=signature,
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            in_amount=quote.in_amount,
            out_amount=quote.out_amount,
        )
