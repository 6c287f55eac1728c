"""
Jupiter Aggregator Router

Quotes and executes swaps across all Solana DEXs through the Jupiter v6 API:
- GET /quote for the best route
- POST /swap for an unsigned versioned transaction
- sign locally, send raw, wait for confirmation
"""

import base64
import logging
from typing import Any, Dict

import aiohttp
from solders.transaction import VersionedTransaction

from ..constants import JUPITER_QUOTE_API, JUPITER_SWAP_API
from ..exceptions import SwapFailed
from ..utils.rate_limiter import TokenBucket
from ..utils.retry import CircuitBreaker
from .models import Quote, SwapResult
from .rpc_client import SolanaChainClient
from .wallet import Wallet

logger = logging.getLogger(__name__)


class JupiterRouter:
    """
    Client for Jupiter Aggregator API v6.

    Raises SwapFailed on every failure; a returned SwapResult means the
    transaction reached confirmed commitment on-chain.
    """

    DEFAULT_PRIORITY_FEE_LAMPORTS = 500000  # 0.0005 SOL cap

    def __init__(
        self,
        session: aiohttp.ClientSession,
        chain: SolanaChainClient,
        wallet: Wallet,
        quote_url: str = JUPITER_QUOTE_API,
        swap_url: str = JUPITER_SWAP_API,
    ):
        self.session = session
        self.chain = chain
        self.wallet = wallet
        self.quote_url = quote_url
        self.swap_url = swap_url
        self.circuit_breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60.0, name="Jupiter")
        self._limiter = TokenBucket(rate=1.0, capacity=2)

    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Quote:
        """
        Get swap quote from Jupiter.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest units
            slippage_bps: Slippage tolerance in basis points (50 = 0.5%)
        """
        if not self.circuit_breaker.can_execute():
            raise SwapFailed("Jupiter circuit breaker open", input_mint=input_mint[:8])

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
        }

        await self._limiter.acquire()
        try:
            timeout = aiohttp.ClientTimeout(total=15)
            async with self.session.get(self.quote_url, params=params, timeout=timeout) as resp:
                if resp.status == 429:
                    self.circuit_breaker.record_failure()
                    raise SwapFailed("Jupiter rate limited (429)")
                if resp.status != 200:
                    error = await resp.text()
                    self.circuit_breaker.record_failure()
                    raise SwapFailed(f"Quote failed: {resp.status} - {error[:200]}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            self.circuit_breaker.record_failure()
            raise SwapFailed(f"Jupiter API error: {e}") from e

        if data.get("error") or "outAmount" not in data:
            raise SwapFailed(f"Quote rejected: {data.get('error', 'no route')}")

        self.circuit_breaker.record_success()
        quote = Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=int(data.get("inAmount", amount)),
            out_amount=int(data["outAmount"]),
            slippage_bps=slippage_bps,
            price_impact_pct=float(data.get("priceImpactPct", 0) or 0),
            raw=data,
        )
        logger.info(
            f"Quote: {quote.in_amount} {input_mint[:8]}... -> {quote.out_amount} {output_mint[:8]}... "
            f"(impact: {quote.price_impact_pct:.2f}%)"
        )
        return quote

    async def execute(self, quote: Quote) -> SwapResult:
        """Build, sign, send and confirm the swap transaction for `quote`."""
        swap_tx = await self._get_swap_transaction(quote.raw)

        try:
            unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
            signed = self.wallet.sign(unsigned)
        except ValueError as e:
            raise SwapFailed(f"Could not decode swap transaction: {e}") from e

        try:
            signature = await self.chain.send_raw_transaction(bytes(signed))
        except Exception as e:
            raise SwapFailed(f"Send failed: {e}") from e

        logger.info(f"Swap sent: {signature}")
        result = await self.chain.confirm(signature)
        if not result.is_success:
            raise SwapFailed(
                "Swap not confirmed",
                signature=signature[:16],
                status=result.status.value,
                error=result.error,
            )

        return SwapResult(
            signature=signature,
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            in_amount=quote.in_amount,
            out_amount=await self._filled_amount(signature, quote),
        )

    async def _filled_amount(self, signature: str, quote: Quote) -> int:
        """
        What the wallet actually received. Slippage means this can be below the
        quoted outAmount; positions must never record more than they hold.
        """
        received = await self.chain.get_received_amount(
            signature, str(self.wallet.public_key), quote.output_mint
        )
        if received is not None and received > 0:
            if received != quote.out_amount:
                logger.info(f"Filled {received} vs quoted {quote.out_amount} ({signature[:16]}...)")
            return received

        # Transaction not readable yet: fall back to the route's guaranteed minimum
        minimum = int(quote.raw.get("otherAmountThreshold") or quote.out_amount)
        logger.warning(
            f"Could not read fill for {signature[:16]}..., recording minimum out {minimum}"
        )
        return minimum

    async def _get_swap_transaction(self, quote_response: Dict[str, Any]) -> str:
        """Get serialized swap transaction from Jupiter."""
        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": str(self.wallet.public_key),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": self.DEFAULT_PRIORITY_FEE_LAMPORTS,
                    "priorityLevel": "veryHigh",
                }
            },
        }

        await self._limiter.acquire()
        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with self.session.post(self.swap_url, json=payload, timeout=timeout) as resp:
                if resp.status != 200:
                    error = await resp.text()
                    raise SwapFailed(f"Swap transaction failed: {resp.status} - {error[:200]}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise SwapFailed(f"Error getting swap transaction: {e}") from e

        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise SwapFailed("Jupiter did not return a swap transaction")
        return swap_tx
