"""
Rug-pull risk screening

Checks, applied in order and short-circuiting on the first failure:
1. Mint authority still present (supply can be inflated)
2. Supply sanity (zero supply, absurd decimals)
3. Top holder concentration
4. Freeze authority (warning only)

`evaluate` is pure; `RiskChecker` fetches its inputs and fails closed.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from ..config.trading_config import RiskFilterConfig
from .models import HolderBalance, MintInfo, RiskReason, RiskVerdict

logger = logging.getLogger(__name__)


def evaluate(
    mint_info: MintInfo,
    holders: Sequence[HolderBalance],
    config: RiskFilterConfig,
) -> RiskVerdict:
    """Map mint metadata and a holder snapshot to a risk verdict."""
    if mint_info.mint_authority is not None:
        return RiskVerdict(
            safe=False,
            reason=RiskReason.MINT_AUTHORITY_PRESENT,
            details={"mint_authority": mint_info.mint_authority},
        )

    if mint_info.supply <= 0:
        return RiskVerdict(safe=False, reason=RiskReason.ZERO_SUPPLY, details={"supply": mint_info.supply})

    if not 0 <= mint_info.decimals <= config.max_decimals:
        return RiskVerdict(
            safe=False,
            reason=RiskReason.WEIRD_MINT,
            details={"decimals": mint_info.decimals, "max_decimals": config.max_decimals},
        )

    if not holders:
        return RiskVerdict(safe=False, reason=RiskReason.NO_TOKEN_ACCOUNTS)

    top = sorted(holders, key=lambda h: h.amount, reverse=True)[: config.top_holders_count]
    top_sum = sum(h.amount for h in top)
    top_percent = top_sum * 100 / mint_info.supply
    details = {
        "top_percent": top_percent,
        "top_n": len(top),
        "supply": mint_info.supply,
        "decimals": mint_info.decimals,
    }

    if top_percent > config.max_top_holders_pct:
        details["threshold"] = config.max_top_holders_pct
        return RiskVerdict(safe=False, reason=RiskReason.CONCENTRATED_HOLDERS, details=details)

    if mint_info.freeze_authority is not None:
        details["warnings"] = ["freezeAuthorityPresent"]
        details["freeze_authority"] = mint_info.freeze_authority

    return RiskVerdict(safe=True, reason=RiskReason.OK, details=details)


class MintDataSource(Protocol):
    async def get_mint_info(self, mint: str) -> MintInfo: ...

    async def get_largest_holders(self, mint: str) -> list[HolderBalance]: ...


class RiskChecker:
    """Fetches mint data and evaluates it. Inability to verify is treated as risk."""

    def __init__(self, source: MintDataSource, config: RiskFilterConfig):
        self.source = source
        self.config = config

    async def check(self, mint: str) -> tuple[RiskVerdict, MintInfo | None]:
        try:
            mint_info = await self.source.get_mint_info(mint)
            holders = await self.source.get_largest_holders(mint)
        except Exception as e:
            logger.warning("REJECT %s... risk data unavailable: %s", mint[:8], e)
            return RiskVerdict(safe=False, reason=RiskReason.CHECK_FAILED, details={"error": str(e)}), None

        verdict = evaluate(mint_info, holders, self.config)

        if not verdict.safe:
            top = verdict.details.get("top_percent")
            if top is not None:
                logger.warning(
                    "REJECT %s... %s (top %d hold %.1f%%)",
                    mint[:8], verdict.reason.value, verdict.details["top_n"], top,
                )
            else:
                logger.warning("REJECT %s... %s", mint[:8], verdict.reason.value)
        elif "warnings" in verdict.details:
            logger.warning("%s... freeze authority still set, proceeding", mint[:8])
        else:
            logger.info("%s... passed rug checks (top holders %.1f%%)", mint[:8], verdict.details["top_percent"])

        return verdict, mint_info
