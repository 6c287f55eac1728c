"""
Transaction confirmation

A swap only counts once its signature reaches confirmed (or finalized)
commitment. Anything else (an on-chain error, or the timeout running out)
is reported as a non-success TxResult and the router turns it into
SwapFailed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from solana.rpc.async_api import AsyncClient
from solders.signature import Signature

logger = logging.getLogger(__name__)


class TxStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class TxResult:
    signature: str
    status: TxStatus
    slot: Optional[int] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status in (TxStatus.CONFIRMED, TxStatus.FINALIZED)


class TransactionConfirmer:
    """Polls getSignatureStatuses with a growing interval until a verdict or timeout."""

    MIN_POLL_INTERVAL = 0.5
    MAX_POLL_INTERVAL = 2.0

    def __init__(self, client: AsyncClient, clock: Callable[[], float] = time.monotonic):
        self.client = client
        self._clock = clock

    async def confirm(self, signature: str, finalized: bool = False, timeout: float = 60.0) -> TxResult:
        started = self._clock()
        interval = self.MIN_POLL_INTERVAL
        wanted = ("finalized",) if finalized else ("confirmed", "finalized")

        while self._clock() - started < timeout:
            status = await self._fetch_status(signature)
            if status is not None:
                slot, err, level = status
                elapsed = self._clock() - started
                if err:
                    logger.error("Transaction %s... failed on-chain: %s", signature[:20], err)
                    return TxResult(signature, TxStatus.FAILED, slot, str(err), elapsed)
                if level in wanted:
                    logger.info("Transaction %s... %s in %.1fs", signature[:20], level, elapsed)
                    return TxResult(signature, TxStatus(level), slot, None, elapsed)

            await asyncio.sleep(interval)
            interval = min(interval * 1.5, self.MAX_POLL_INTERVAL)

        elapsed = self._clock() - started
        logger.warning("Transaction %s... not confirmed after %.1fs", signature[:20], elapsed)
        return TxResult(signature, TxStatus.EXPIRED, error=f"Timeout after {timeout}s", elapsed_seconds=elapsed)

    async def _fetch_status(self, signature: str) -> Optional[tuple]:
        """(slot, err, commitment level) or None while the signature is unknown."""
        try:
            response = await self.client.get_signature_statuses([Signature.from_string(signature)])
        except Exception as e:
            # Transient RPC errors just mean "ask again"
            logger.debug("Status check for %s... failed: %s", signature[:20], e)
            return None
        status = response.value[0] if response and response.value else None
        if status is None:
            return None
        level = status.confirmation_status
        # solders enum prints as TransactionConfirmationStatus.Confirmed
        level = str(level).rsplit(".", 1)[-1].lower() if level is not None else ""
        return status.slot, status.err, level
