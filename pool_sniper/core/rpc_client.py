"""
Solana chain client

Thin wrapper around the async RPC client exposing only what the lifecycle
engine consumes: mint metadata, holder distribution, raw transaction
submission, confirmation, and program log subscriptions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import struct
from typing import Any, AsyncIterator

import websockets
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from websockets.exceptions import WebSocketException

from ..constants import MINT_ACCOUNT_SIZE, WSOL_MINT
from ..exceptions import DataUnavailable
from ..utils.retry import async_retry
from .models import HolderBalance, MintInfo
from .tx_confirmer import TransactionConfirmer, TxResult

logger = logging.getLogger(__name__)


def parse_mint_account(mint: str, data: bytes) -> MintInfo:
    """
    Decode the SPL mint layout.

    - 0-3: mint_authority option tag (u32), 4-35: pubkey
    - 36-43: supply (u64)
    - 44: decimals (u8)
    - 45: is_initialized (bool)
    - 46-49: freeze_authority option tag (u32), 50-81: pubkey
    """
    if len(data) < MINT_ACCOUNT_SIZE:
        raise DataUnavailable("Mint account data too short", mint=mint, size=len(data))

    mint_auth_tag = struct.unpack_from("<I", data, 0)[0]
    supply = struct.unpack_from("<Q", data, 36)[0]
    decimals = data[44]
    freeze_auth_tag = struct.unpack_from("<I", data, 46)[0]

    mint_authority = str(Pubkey.from_bytes(data[4:36])) if mint_auth_tag else None
    freeze_authority = str(Pubkey.from_bytes(data[50:82])) if freeze_auth_tag else None

    return MintInfo(
        mint=mint,
        mint_authority=mint_authority,
        freeze_authority=freeze_authority,
        supply=supply,
        decimals=decimals,
    )


def received_amount(meta: Any, owner: str, mint: str) -> int | None:
    """
    Base units of `mint` that `owner` gained in a confirmed transaction.

    SPL tokens come from the pre/post token balance tables. Native SOL
    (swaps that unwrap WSOL) comes from the fee payer's lamport delta with
    the fee added back. None if the transaction meta has no usable balances.
    """
    if meta is None:
        return None

    if mint == WSOL_MINT:
        pre, post = list(meta.pre_balances or []), list(meta.post_balances or [])
        if not pre or not post:
            return None
        return post[0] - pre[0] + int(meta.fee or 0)

    def owned(balances) -> int:
        return sum(
            int(b.ui_token_amount.amount)
            for b in balances or []
            if str(b.mint) == mint and b.owner is not None and str(b.owner) == owner
        )

    if meta.post_token_balances is None:
        return None
    return owned(meta.post_token_balances) - owned(meta.pre_token_balances)


class SolanaChainClient:
    """
    Blockchain collaborator for the pool sniper.

    Usage:
        chain = SolanaChainClient(rpc_url, wss_url)
        info = await chain.get_mint_info(mint)
        holders = await chain.get_largest_holders(mint)
    """

    RECONNECT_BASE_DELAY = 1.0
    RECONNECT_MAX_DELAY = 30.0
    TX_FETCH_DELAY = 1.0

    def __init__(self, rpc_url: str, wss_url: str | None = None, confirm_timeout: float = 60.0):
        self.rpc_url = rpc_url
        self.wss_url = wss_url or rpc_url.replace("https", "wss", 1)
        self.client = AsyncClient(rpc_url, commitment=Confirmed)
        self.confirmer = TransactionConfirmer(self.client)
        self.confirm_timeout = confirm_timeout
        self._mint_cache: dict[str, MintInfo] = {}

    @async_retry(max_attempts=3, delay=0.5, wrap_as=DataUnavailable)
    async def get_mint_info(self, mint: str) -> MintInfo:
        resp = await self.client.get_account_info(Pubkey.from_string(mint))
        if not resp.value:
            raise DataUnavailable("Mint account not found", mint=mint)
        return parse_mint_account(mint, bytes(resp.value.data))

    async def get_decimals(self, mint: str) -> int:
        """Decimals never change after mint creation, so they are cached."""
        cached = self._mint_cache.get(mint)
        if cached is None:
            cached = await self.get_mint_info(mint)
            self._mint_cache[mint] = cached
        return cached.decimals

    @async_retry(max_attempts=3, delay=0.5, wrap_as=DataUnavailable)
    async def get_largest_holders(self, mint: str) -> list[HolderBalance]:
        """Largest token accounts, ordered by balance descending."""
        resp = await self.client.get_token_largest_accounts(Pubkey.from_string(mint))
        holders = [
            HolderBalance(account=str(acc.address), amount=int(acc.amount.amount))
            for acc in (resp.value or [])
        ]
        holders.sort(key=lambda h: h.amount, reverse=True)
        return holders

    async def send_raw_transaction(self, tx_bytes: bytes) -> str:
        result = await self.client.send_raw_transaction(
            tx_bytes,
            opts=TxOpts(skip_preflight=True, preflight_commitment=Confirmed),
        )
        return str(result.value)

    async def confirm(self, signature: str) -> TxResult:
        return await self.confirmer.confirm(signature, timeout=self.confirm_timeout)

    async def get_received_amount(self, signature: str, owner: str, mint: str, attempts: int = 3) -> int | None:
        """
        Actual amount of `mint` the wallet received in `signature`.

        A just-confirmed transaction is not always served by getTransaction
        yet, so a few short retries are made. None if it never shows up.
        """
        sig = Signature.from_string(signature)
        for attempt in range(attempts):
            try:
                resp = await self.client.get_transaction(
                    sig, encoding="json", commitment=Confirmed, max_supported_transaction_version=0
                )
            except Exception as e:
                logger.debug("getTransaction %s... failed: %s", signature[:16], e)
                resp = None
            tx = resp.value if resp is not None else None
            if tx is not None:
                return received_amount(tx.transaction.meta, str(owner), mint)
            if attempt < attempts - 1:
                await asyncio.sleep(self.TX_FETCH_DELAY)
        return None

    async def subscribe_program_logs(self, program_id: str) -> AsyncIterator[dict[str, Any]]:
        """
        Stream `logsSubscribe` notifications mentioning `program_id`.

        Yields the notification value: {"signature", "err", "logs"}.
        Reconnects with exponential backoff until the consumer stops iterating,
        whether the socket drops, the handshake is refused, or the server
        closes the stream cleanly.
        """
        reconnect_delay = self.RECONNECT_BASE_DELAY
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [{"mentions": [program_id]}, {"commitment": "confirmed"}],
        }

        while True:
            try:
                async with websockets.connect(self.wss_url, ping_interval=20) as ws:
                    await ws.send(json.dumps(request))
                    reconnect_delay = self.RECONNECT_BASE_DELAY
                    logger.info("Subscribed to program logs for %s", program_id[:8])

                    async for message in ws:
                        value = _log_notification_value(message)
                        if value is not None:
                            yield value
                logger.warning("Log subscription closed by server, reconnecting in %.0fs", reconnect_delay)
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning(
                    "Log subscription dropped (%s), reconnecting in %.0fs", e, reconnect_delay
                )

            await asyncio.sleep(reconnect_delay)
            reconnect_delay = min(reconnect_delay * 2, self.RECONNECT_MAX_DELAY)

    async def close(self) -> None:
        await self.client.close()


def _log_notification_value(message: Any) -> dict[str, Any] | None:
    """The `params.result.value` of a successful logsNotification frame, else None."""
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON websocket frame")
        return None
    if not isinstance(data, dict) or data.get("method") != "logsNotification":
        return None
    params = data.get("params")
    result = params.get("result") if isinstance(params, dict) else None
    value = result.get("value") if isinstance(result, dict) else None
    if not isinstance(value, dict) or value.get("err"):
        return None
    return value
