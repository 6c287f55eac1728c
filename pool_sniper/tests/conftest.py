"""Shared fakes for chain, oracle, router and pool feed."""

import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from pool_sniper.constants import WSOL_MINT
from pool_sniper.core.models import HolderBalance, MintInfo, Quote, SwapResult
from pool_sniper.exceptions import SwapFailed

TOKEN_MINT = "Tok3nMint1111111111111111111111111111111111"
OTHER_MINT = "AnotherMint11111111111111111111111111111111"


class FakeOracle:
    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.calls = []
        self.error = None

    async def get_price(self, mint):
        self.calls.append(mint)
        if self.error:
            raise self.error
        return self.prices.get(mint)


class FakeChain:
    def __init__(self):
        self.mint_infos = {}
        self.holders = {}
        self.decimals = {WSOL_MINT: 9}
        self.error = None

    def add_mint(self, mint, supply=1_000_000, decimals=6, mint_authority=None,
                 freeze_authority=None, holders=(100_000, 100_000, 100_000)):
        self.mint_infos[mint] = MintInfo(
            mint=mint,
            mint_authority=mint_authority,
            freeze_authority=freeze_authority,
            supply=supply,
            decimals=decimals,
        )
        self.holders[mint] = [HolderBalance(account=f"acct{i}", amount=a) for i, a in enumerate(holders)]
        self.decimals[mint] = decimals

    async def get_mint_info(self, mint):
        if self.error:
            raise self.error
        return self.mint_infos[mint]

    async def get_largest_holders(self, mint):
        if self.error:
            raise self.error
        return self.holders.get(mint, [])

    async def get_decimals(self, mint):
        return self.decimals[mint]


class FakeRouter:
    """Fills `out_amount = in_amount * rate`; the first `fail_executes` executions raise."""

    def __init__(self, rate=1.0, fail_executes=0, fail_quotes=0):
        self.rate = rate
        self.fail_executes = fail_executes
        self.fail_quotes = fail_quotes
        self.quotes = []
        self.executed = []

    async def quote(self, input_mint, output_mint, amount, slippage_bps):
        if self.fail_quotes:
            self.fail_quotes -= 1
            raise SwapFailed("quote unavailable")
        quote = Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=amount,
            out_amount=int(amount * self.rate),
            slippage_bps=slippage_bps,
        )
        self.quotes.append(quote)
        return quote

    async def execute(self, quote):
        if self.fail_executes:
            self.fail_executes -= 1
            raise SwapFailed("transaction not confirmed")
        self.executed.append(quote)
        return SwapResult(
            signature=f"sig-{len(self.executed)}",
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            in_amount=quote.in_amount,
            out_amount=quote.out_amount,
        )


class FakeFeed:
    def __init__(self, batches=None):
        self.batches = list(batches or [])

    async def fetch(self):
        return self.batches.pop(0) if self.batches else []


def v3_pool(pool_id, mint_a, mint_b=WSOL_MINT):
    return {"id": pool_id, "mintA": {"address": mint_a}, "mintB": {"address": mint_b}}


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def router():
    return FakeRouter()
