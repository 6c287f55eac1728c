from __future__ import annotations

import logging

import httpx

from ..utils.rate_limiter import TokenBucket


class BirdeyePriceOracle:
    """USD spot prices from the Birdeye `/defi/price` endpoint.

    Every failure mode (HTTP error, rate limit, missing or zero price) maps to
    ``None`` so callers can skip the cycle instead of erroring out.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        rate_per_sec: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logging.getLogger("pool_sniper.price")
        self._limiter = TokenBucket(rate=rate_per_sec, capacity=max(1, int(rate_per_sec * 2)))
        self._consecutive_failures = 0
        self._max_failures_before_warn = 3
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=10),
            headers={
                "X-API-KEY": api_key,
                "x-chain": "solana",
                "Accept": "application/json",
            },
        )

    async def get_price(self, mint: str) -> float | None:
        await self._limiter.acquire()
        try:
            response = await self._client.get(f"{self.base_url}/price", params={"address": mint})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._record_failure("HTTP %s for %s", e.response.status_code, mint[:8])
            return None
        except (httpx.HTTPError, ValueError) as e:
            self._record_failure("price fetch failed for %s: %s", mint[:8], e)
            return None

        # Response format: {"data": {"value": 0.123}, "success": true}
        if not isinstance(data, dict):
            return None
        price_data = data.get("data") if data.get("success") else None
        if not isinstance(price_data, dict):
            return None
        try:
            price = float(price_data.get("value") or 0.0)
        except (TypeError, ValueError):
            return None

        if self._consecutive_failures:
            self.logger.info("Birdeye recovered after %d failures", self._consecutive_failures)
            self._consecutive_failures = 0
        return price if price > 0 else None

    def _record_failure(self, msg: str, *args) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures <= self._max_failures_before_warn:
            self.logger.warning("Birdeye " + msg, *args)
        else:
            self.logger.debug("Birdeye " + msg, *args)

    async def close(self) -> None:
        await self._client.aclose()
