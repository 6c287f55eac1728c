"""
Pool Event Source

Turns raw pool-discovery payloads into canonical PoolEvents.

Two upstream feeds are supported:
- Raydium API listing (polled every tick)
- program log subscription (pushed over the RPC websocket)

Each known payload schema has its own adapter. A payload no adapter
recognizes, or one missing its mint fields, is dropped with a log line.
A pool id is emitted at most once per process.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

import aiohttp

from ..constants import DEFAULT_QUOTE_MINTS, RAYDIUM_POOL_LIST_PATH, WSOL_MINT
from ..exceptions import MalformedEvent
from .models import PoolEvent

logger = logging.getLogger(__name__)

_ADDRESS = r"[1-9A-HJ-NP-Za-km-z]{32,44}"
_MINT_RE = re.compile(rf"\bMint:\s*({_ADDRESS})")
_QUOTE_RE = re.compile(rf"\bQuote:\s*({_ADDRESS})")
_POOL_RE = re.compile(rf"\bPool:\s*({_ADDRESS})")


class PoolAdapter:
    """Maps one upstream schema to PoolEvent."""

    name = "base"

    def __init__(self, quote_mints: Iterable[str] = DEFAULT_QUOTE_MINTS):
        self.quote_mints = frozenset(quote_mints)

    def matches(self, payload: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def normalize(self, payload: Mapping[str, Any]) -> PoolEvent | None:
        """Return the event, None if the payload is not a pool creation, or raise MalformedEvent."""
        raise NotImplementedError

    def _orient(self, pool_id: str, mint_a: str, mint_b: str, payload: Mapping[str, Any]) -> PoolEvent:
        # Listings do not promise which side is the new token
        if mint_a in self.quote_mints and mint_b not in self.quote_mints:
            mint_a, mint_b = mint_b, mint_a
        return PoolEvent(pool_id=pool_id, token_mint=mint_a, quote_mint=mint_b, raw_payload=payload)


class RaydiumV3Adapter(PoolAdapter):
    """Raydium API v3 listing: {"id", "mintA": {"address"}, "mintB": {"address"}}."""

    name = "raydium_v3"

    def matches(self, payload: Mapping[str, Any]) -> bool:
        return "mintA" in payload and "mintB" in payload

    def normalize(self, payload: Mapping[str, Any]) -> PoolEvent:
        pool_id = payload.get("id")
        mint_a = _address_of(payload.get("mintA"))
        mint_b = _address_of(payload.get("mintB"))
        if not pool_id or not mint_a or not mint_b:
            raise MalformedEvent("Raydium v3 pool missing id or mint", adapter=self.name, pool_id=pool_id)
        return self._orient(str(pool_id), mint_a, mint_b, payload)


class RaydiumLegacyAdapter(PoolAdapter):
    """Legacy AMM listing: {"id" | "ammId", "baseMint", "quoteMint"}."""

    name = "raydium_legacy"

    def matches(self, payload: Mapping[str, Any]) -> bool:
        return "baseMint" in payload or "quoteMint" in payload

    def normalize(self, payload: Mapping[str, Any]) -> PoolEvent:
        pool_id = payload.get("id") or payload.get("ammId")
        base = payload.get("baseMint")
        quote = payload.get("quoteMint")
        if not pool_id or not isinstance(base, str) or not isinstance(quote, str) or not base or not quote:
            raise MalformedEvent("Legacy pool missing id or mint", adapter=self.name, pool_id=pool_id)
        return self._orient(str(pool_id), base, quote, payload)


class ProgramLogAdapter(PoolAdapter):
    """
    logsSubscribe notification: {"signature", "logs": [...]}.

    Only transactions whose logs announce a pool initialization count; the
    token mint is read from a "Mint: <address>" token. Quote defaults to WSOL
    and the pool id to the transaction signature.
    """

    name = "program_logs"

    def __init__(self, quote_mints: Iterable[str] = DEFAULT_QUOTE_MINTS, default_quote: str = WSOL_MINT):
        super().__init__(quote_mints)
        self.default_quote = default_quote

    def matches(self, payload: Mapping[str, Any]) -> bool:
        return "logs" in payload and "signature" in payload

    def normalize(self, payload: Mapping[str, Any]) -> PoolEvent | None:
        logs = payload.get("logs") or []
        if not isinstance(logs, list):
            raise MalformedEvent("Log payload 'logs' is not a list", adapter=self.name)

        init_lines = [
            line for line in logs
            if isinstance(line, str) and "initialize" in line.lower() and "pool" in line.lower()
        ]
        if not init_lines:
            return None

        text = "\n".join(line for line in logs if isinstance(line, str))
        mint = _MINT_RE.search(text)
        if not mint:
            raise MalformedEvent("Pool init log without mint", adapter=self.name,
                                 signature=str(payload.get("signature"))[:16])

        quote = _QUOTE_RE.search(text)
        pool = _POOL_RE.search(text)
        pool_id = pool.group(1) if pool else payload.get("signature")
        if not pool_id:
            raise MalformedEvent("Pool init log without signature", adapter=self.name)

        quote_mint = quote.group(1) if quote else self.default_quote
        return self._orient(str(pool_id), mint.group(1), quote_mint, payload)


def _address_of(value: Any) -> str | None:
    if isinstance(value, Mapping):
        value = value.get("address")
    return value if isinstance(value, str) and value else None


class PoolNormalizer:
    """Dispatches a payload to the first adapter that recognizes its shape."""

    def __init__(self, adapters: Sequence[PoolAdapter]):
        self.adapters = list(adapters)

    @classmethod
    def default(cls, quote_mints: Iterable[str] = DEFAULT_QUOTE_MINTS) -> PoolNormalizer:
        quote_mints = frozenset(quote_mints)
        return cls([
            RaydiumV3Adapter(quote_mints),
            RaydiumLegacyAdapter(quote_mints),
            ProgramLogAdapter(quote_mints),
        ])

    def normalize(self, payload: Any) -> PoolEvent | None:
        if not isinstance(payload, Mapping):
            raise MalformedEvent("Pool payload is not an object", type=type(payload).__name__)
        for adapter in self.adapters:
            if adapter.matches(payload):
                return adapter.normalize(payload)
        raise MalformedEvent("Unrecognized pool payload shape", keys=",".join(sorted(payload)[:6]))


# ============================================
# FEEDS
# ============================================

class PoolFeed(Protocol):
    async def fetch(self) -> list[Any]: ...


class RaydiumPoolPoller:
    """
    Polls the first page of the Raydium pool listing.

    The listing has no creation-time sort, so the page is reordered by
    `openTime` (newest first) where present. Whether a pool is new is decided
    by the event source's seen-set, not by the ordering.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        path: str = RAYDIUM_POOL_LIST_PATH,
        page_size: int = 100,
    ):
        self.session = session
        self.url = base_url.rstrip("/") + path
        self.params = {
            "poolType": "all",
            "poolSortField": "default",
            "sortType": "desc",
            "pageSize": page_size,
            "page": 1,
        }

    async def fetch(self) -> list[Any]:
        try:
            timeout = aiohttp.ClientTimeout(total=8)
            async with self.session.get(self.url, params=self.params, timeout=timeout) as resp:
                if resp.status != 200:
                    logger.warning("Raydium pool listing returned HTTP %s", resp.status)
                    return []
                body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Failed to fetch pools from Raydium API: %s", e)
            return []
        pools = _unwrap_listing(body)
        pools.sort(key=_open_time, reverse=True)
        return pools


def _open_time(pool: Any) -> int:
    value = pool.get("openTime") if isinstance(pool, Mapping) else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _unwrap_listing(body: Any) -> list[Any]:
    """Accepts a bare list, {"data": [...]} or {"data": {"data": [...]}}."""
    while isinstance(body, Mapping) and "data" in body:
        body = body["data"]
    return list(body) if isinstance(body, list) else []


class ProgramLogFeed:
    """Push-mode feed: buffers log notifications from the websocket subscription."""

    def __init__(self, chain, program_id: str, maxsize: int = 500):
        self.chain = chain
        self.program_id = program_id
        self.queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=maxsize)
        self.dropped_count = 0
        self.failures = 0
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._consume(), name="program-log-feed")

    async def _consume(self) -> None:
        try:
            async for notification in self.chain.subscribe_program_logs(self.program_id):
                try:
                    self.queue.put_nowait(notification)
                except asyncio.QueueFull:
                    self.dropped_count += 1
                    if self.dropped_count % 100 == 1:
                        logger.warning("Log feed queue full, dropped %d notifications", self.dropped_count)
        except Exception as e:
            # fetch() restarts the consumer on the next tick
            self.failures += 1
            logger.error("Program log feed stopped: %s", e, exc_info=True)
        else:
            logger.warning("Program log subscription ended")

    async def fetch(self) -> list[Any]:
        self.start()
        batch = []
        while True:
            try:
                batch.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return batch

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class PoolEventSource:
    """
    Normalizes, deduplicates and filters pool payloads.

    The seen-set grows for the life of the process unless `seen_ttl_sec` is
    set, in which case entries older than the TTL are evicted. It is only
    touched from the orchestrator task and needs no locking.
    """

    def __init__(
        self,
        feed: PoolFeed,
        normalizer: PoolNormalizer | None = None,
        quote_mints: Iterable[str] = DEFAULT_QUOTE_MINTS,
        seen_ttl_sec: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.feed = feed
        self.quote_mints = frozenset(quote_mints)
        self.normalizer = normalizer or PoolNormalizer.default(self.quote_mints)
        self.seen_ttl_sec = seen_ttl_sec
        self._clock = clock
        self._seen: dict[str, float] = {}
        self.stats = {"emitted": 0, "duplicates": 0, "malformed": 0, "quote_filtered": 0}

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def has_seen(self, pool_id: str) -> bool:
        return pool_id in self._seen

    async def next_events(self) -> list[PoolEvent]:
        payloads = await self.feed.fetch()
        return self.ingest(payloads)

    def ingest(self, payloads: Iterable[Any]) -> list[PoolEvent]:
        self._evict_expired()
        events = []
        for payload in payloads:
            try:
                event = self.normalizer.normalize(payload)
            except MalformedEvent as e:
                self.stats["malformed"] += 1
                logger.info("SKIP malformed pool payload: %s", e)
                continue
            if event is None:
                continue

            if event.pool_id in self._seen:
                self.stats["duplicates"] += 1
                continue
            self._seen[event.pool_id] = self._clock()

            if event.token_mint in self.quote_mints:
                self.stats["quote_filtered"] += 1
                logger.debug("SKIP pool %s: both legs are quote assets", event.pool_id[:8])
                continue

            self.stats["emitted"] += 1
            logger.info("NEW POOL %s token=%s quote=%s", event.pool_id[:8], event.token_mint, event.quote_mint[:8])
            events.append(event)
        return events

    def _evict_expired(self) -> None:
        if not self.seen_ttl_sec:
            return
        cutoff = self._clock() - self.seen_ttl_sec
        expired = [pool_id for pool_id, ts in self._seen.items() if ts < cutoff]
        for pool_id in expired:
            del self._seen[pool_id]
