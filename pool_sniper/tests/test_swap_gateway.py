"""Unit tests for SwapGateway and the paper router"""

import pytest

from conftest import TOKEN_MINT, FakeChain, FakeOracle, FakeRouter
from pool_sniper.constants import WSOL_MINT
from pool_sniper.core.paper_router import PaperRouter
from pool_sniper.core.swap_gateway import SwapGateway
from pool_sniper.exceptions import SwapFailed


class TestSwapGateway:
    @pytest.mark.asyncio
    async def test_quote_is_single_use(self):
        router = FakeRouter()
        gateway = SwapGateway(router)
        quote = await gateway.quote(WSOL_MINT, TOKEN_MINT, 1000, 500)

        await gateway.execute(quote)
        with pytest.raises(SwapFailed):
            await gateway.execute(quote)
        assert len(router.executed) == 1

    @pytest.mark.asyncio
    async def test_failed_execute_still_consumes_quote(self):
        router = FakeRouter(fail_executes=1)
        gateway = SwapGateway(router)
        quote = await gateway.quote(WSOL_MINT, TOKEN_MINT, 1000, 500)
        with pytest.raises(SwapFailed):
            await gateway.execute(quote)
        assert quote.consumed is True

    @pytest.mark.asyncio
    async def test_retry_fetches_fresh_quote(self):
        router = FakeRouter(fail_executes=1)
        result = await SwapGateway(router, max_attempts=2).swap(WSOL_MINT, TOKEN_MINT, 1000, 500)
        assert result.signature == "sig-1"
        assert len(router.quotes) == 2
        assert router.quotes[0] is not router.quotes[1]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        router = FakeRouter(fail_quotes=3)
        with pytest.raises(SwapFailed):
            await SwapGateway(router, max_attempts=3).swap(WSOL_MINT, TOKEN_MINT, 1000, 500)
        assert router.executed == []

    @pytest.mark.asyncio
    async def test_rejects_bad_requests(self):
        gateway = SwapGateway(FakeRouter())
        with pytest.raises(SwapFailed):
            await gateway.quote(WSOL_MINT, TOKEN_MINT, 0, 500)
        with pytest.raises(SwapFailed):
            await gateway.quote(WSOL_MINT, WSOL_MINT, 10, 500)

    @pytest.mark.asyncio
    async def test_router_errors_become_swap_failed(self):
        class BrokenRouter(FakeRouter):
            async def quote(self, *args):
                raise ConnectionError("reset by peer")

        with pytest.raises(SwapFailed):
            await SwapGateway(BrokenRouter()).quote(WSOL_MINT, TOKEN_MINT, 10, 500)


class TestPaperRouter:
    @pytest.mark.asyncio
    async def test_fill_from_oracle_prices(self):
        chain = FakeChain()
        chain.decimals[TOKEN_MINT] = 6
        oracle = FakeOracle({WSOL_MINT: 128.0, TOKEN_MINT: 0.5})
        router = PaperRouter(oracle, chain, slippage_pct=0.0, seed=1)

        # 1 SOL = $128 = 256 tokens
        quote = await router.quote(WSOL_MINT, TOKEN_MINT, 1_000_000_000, 500)
        assert quote.out_amount == 256_000_000

        result = await router.execute(quote)
        assert result.signature.startswith("paper-")
        assert result.out_amount == quote.out_amount

    @pytest.mark.asyncio
    async def test_missing_price_fails(self):
        chain = FakeChain()
        chain.decimals[TOKEN_MINT] = 6
        router = PaperRouter(FakeOracle({WSOL_MINT: 100.0}), chain)
        with pytest.raises(SwapFailed):
            await router.quote(WSOL_MINT, TOKEN_MINT, 1000, 500)
