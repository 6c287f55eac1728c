from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class PositionStatus(str, Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    PARTIALLY_EXITED = "PARTIALLY_EXITED"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TARGET_REACHED = "target_reached"
    STOP_LOSS = "stop_loss"
    TIMEOUT = "timeout"
    MANUAL = "manual"


class RiskReason(str, Enum):
    OK = "ok"
    MINT_AUTHORITY_PRESENT = "mintAuthorityPresent"
    ZERO_SUPPLY = "zeroSupply"
    WEIRD_MINT = "weirdMint"
    NO_TOKEN_ACCOUNTS = "noTokenAccounts"
    CONCENTRATED_HOLDERS = "concentratedHolders"
    CHECK_FAILED = "checkFailed"


# Allowed status transitions. CLOSED is terminal.
STATUS_TRANSITIONS: dict[PositionStatus, frozenset[PositionStatus]] = {
    PositionStatus.PENDING: frozenset({PositionStatus.OPEN}),
    PositionStatus.OPEN: frozenset({PositionStatus.PARTIALLY_EXITED, PositionStatus.CLOSED}),
    PositionStatus.PARTIALLY_EXITED: frozenset({PositionStatus.PARTIALLY_EXITED, PositionStatus.CLOSED}),
    PositionStatus.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class PoolEvent:
    """Canonical new-pool notification. Immutable once emitted."""
    pool_id: str
    token_mint: str
    quote_mint: str
    raw_payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_payload", MappingProxyType(dict(self.raw_payload)))


@dataclass(frozen=True)
class MintInfo:
    mint: str
    mint_authority: str | None
    freeze_authority: str | None
    supply: int
    decimals: int


@dataclass(frozen=True)
class HolderBalance:
    account: str
    amount: int


@dataclass(frozen=True)
class RiskVerdict:
    safe: bool
    reason: RiskReason
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        status = "SAFE" if self.safe else "RISKY"
        return f"{status} ({self.reason.value})"


@dataclass
class Quote:
    """Router quote. Single use: execute() marks it consumed."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    price_impact_pct: float = 0.0
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    created_at: float = field(default_factory=time.time)
    consumed: bool = False


@dataclass(frozen=True)
class SwapResult:
    signature: str
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int


@dataclass(frozen=True)
class TakeProfitStage:
    """Sell `sell_fraction` of the remaining amount once price reaches `multiplier` x entry."""
    multiplier: float
    sell_fraction: float
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or f"{self.multiplier:g}x"


@dataclass
class Position:
    mint: str
    quote_mint: str
    decimals: int
    buy_price: float
    amount: int
    initial_amount: int = 0
    status: PositionStatus = PositionStatus.PENDING
    stage_flags: set[str] = field(default_factory=set)
    opened_at: float = field(default_factory=time.time)
    closed_at: float | None = None
    exit_reason: ExitReason | None = None
    sold_amount: int = 0
    buy_signature: str = ""
    sell_signatures: list[str] = field(default_factory=list)
    pool_id: str = ""

    def __post_init__(self) -> None:
        if not self.initial_amount:
            self.initial_amount = self.amount

    @property
    def ui_amount(self) -> float:
        return self.amount / (10 ** self.decimals)

    @property
    def is_active(self) -> bool:
        return self.status in (PositionStatus.OPEN, PositionStatus.PARTIALLY_EXITED)

    def copy(self) -> Position:
        """Detached snapshot; mutating it never touches the registry record."""
        return replace(
            self,
            stage_flags=set(self.stage_flags),
            sell_signatures=list(self.sell_signatures),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint": self.mint,
            "quote_mint": self.quote_mint,
            "pool_id": self.pool_id,
            "status": self.status.value,
            "buy_price": self.buy_price,
            "amount": self.amount,
            "initial_amount": self.initial_amount,
            "ui_amount": self.ui_amount,
            "sold_amount": self.sold_amount,
            "stage_flags": sorted(self.stage_flags),
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "buy_signature": self.buy_signature,
            "sell_signatures": list(self.sell_signatures),
        }
