"""
Trading Configuration

Strategy parameters for discovery, rug screening, execution and exits.
Loaded from YAML or JSON, with environment overrides for the most
frequently tuned values.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..constants import DEFAULT_QUOTE_MINTS, RAYDIUM_CPMM_PROGRAM, WSOL_MINT
from ..core.models import TakeProfitStage

logger = logging.getLogger(__name__)


def _default_stages() -> List[TakeProfitStage]:
    return [
        TakeProfitStage(multiplier=2.0, sell_fraction=0.25, name="tp1"),
        TakeProfitStage(multiplier=3.0, sell_fraction=0.50, name="tp2"),
    ]


@dataclass
class ExitConfig:
    """Take-profit ladder, stop loss and max hold time"""
    stages: List[TakeProfitStage] = field(default_factory=_default_stages)
    stop_loss_fraction: float = 0.20  # exit at -20%
    timeout_sec: float = 3600.0  # 0 disables the timeout
    poll_interval_sec: float = 10.0


@dataclass
class RiskFilterConfig:
    """Rug screening thresholds"""
    top_holders_count: int = 3
    max_top_holders_pct: float = 50.0  # strict >
    max_decimals: int = 9


@dataclass
class DiscoveryConfig:
    """Pool discovery settings"""
    mode: str = "poll"  # poll | logs
    poll_interval_sec: float = 15.0
    max_candidates_per_tick: int = 5
    candidate_delay_sec: float = 1.0
    quote_mints: List[str] = field(default_factory=lambda: sorted(DEFAULT_QUOTE_MINTS))
    program_id: str = str(RAYDIUM_CPMM_PROGRAM)
    seen_ttl_sec: Optional[float] = None  # None = keep for process lifetime
    page_size: int = 100


@dataclass
class ExecutionConfig:
    """Swap execution settings"""
    buy_usd: float = 5.0
    slippage_bps: int = 500
    quote_mint: str = WSOL_MINT
    swap_attempts: int = 2
    confirm_timeout_sec: float = 60.0
    paper_slippage_pct: float = 1.0


@dataclass
class TradingConfig:
    """Complete trading configuration"""
    version: str = "1.0"
    exits: ExitConfig = field(default_factory=ExitConfig)
    risk: RiskFilterConfig = field(default_factory=RiskFilterConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingConfig":
        exits = dict(data.get("exits", {}))
        if "stages" in exits:
            exits["stages"] = [
                s if isinstance(s, TakeProfitStage) else TakeProfitStage(**s)
                for s in exits["stages"]
            ]
        return cls(
            version=data.get("version", "1.0"),
            exits=ExitConfig(**exits),
            risk=RiskFilterConfig(**data.get("risk", {})),
            discovery=DiscoveryConfig(**data.get("discovery", {})),
            execution=ExecutionConfig(**data.get("execution", {})),
        )

    @classmethod
    def single_shot(cls, multiplier: float = 2.0) -> "TradingConfig":
        """Flat exit: sell everything once price reaches `multiplier` x entry."""
        config = cls()
        config.exits.stages = [TakeProfitStage(multiplier=multiplier, sell_fraction=1.0, name="target")]
        return config

    def apply_env_overrides(self) -> "TradingConfig":
        """Override selected values from environment variables."""
        if os.getenv("BUY_USD"):
            self.execution.buy_usd = float(os.environ["BUY_USD"])
        if os.getenv("SLIPPAGE_BPS"):
            self.execution.slippage_bps = int(os.environ["SLIPPAGE_BPS"])
        if os.getenv("STOP_LOSS_PCT"):
            self.exits.stop_loss_fraction = float(os.environ["STOP_LOSS_PCT"]) / 100.0
        if os.getenv("POLL_INTERVAL_SEC"):
            self.discovery.poll_interval_sec = float(os.environ["POLL_INTERVAL_SEC"])
        if os.getenv("DISCOVERY_MODE"):
            self.discovery.mode = os.environ["DISCOVERY_MODE"].lower()
        return self

    def validate(self) -> List[str]:
        """Validate config, return list of errors"""
        errors = []

        if not self.exits.stages:
            errors.append("exits.stages must define at least one take-profit stage")
        names = [s.label for s in self.exits.stages]
        if len(set(names)) != len(names):
            errors.append("take-profit stage names must be unique")
        multipliers = [s.multiplier for s in self.exits.stages]
        if len(set(multipliers)) != len(multipliers):
            errors.append("take-profit stage multipliers must be unique")
        for stage in self.exits.stages:
            if stage.multiplier <= 1.0:
                errors.append(f"stage {stage.label}: multiplier must be > 1.0")
            if not 0.0 < stage.sell_fraction <= 1.0:
                errors.append(f"stage {stage.label}: sell_fraction must be in (0, 1]")

        if not 0.0 < self.exits.stop_loss_fraction < 1.0:
            errors.append("stop_loss_fraction must be between 0 and 1")
        if self.exits.timeout_sec < 0:
            errors.append("timeout_sec must be >= 0")
        if self.exits.poll_interval_sec <= 0:
            errors.append("exits.poll_interval_sec must be > 0")

        if self.risk.top_holders_count < 1:
            errors.append("top_holders_count must be >= 1")
        if not 0.0 < self.risk.max_top_holders_pct <= 100.0:
            errors.append("max_top_holders_pct must be between 0 and 100")
        if self.risk.max_decimals < 0:
            errors.append("max_decimals must be >= 0")

        if self.discovery.mode not in ("poll", "logs"):
            errors.append(f"unknown discovery mode: {self.discovery.mode}")
        if self.discovery.max_candidates_per_tick < 1:
            errors.append("max_candidates_per_tick must be >= 1")
        if self.discovery.candidate_delay_sec < 0:
            errors.append("candidate_delay_sec must be >= 0")
        if self.discovery.seen_ttl_sec is not None and self.discovery.seen_ttl_sec <= 0:
            errors.append("seen_ttl_sec must be > 0 when set")

        if self.execution.buy_usd <= 0:
            errors.append("buy_usd must be > 0")
        if not 0 < self.execution.slippage_bps <= 10_000:
            errors.append("slippage_bps must be between 1 and 10000")
        if self.execution.swap_attempts < 1:
            errors.append("swap_attempts must be >= 1")

        return errors


def load_trading_config(path: Optional[str] = None) -> TradingConfig:
    """
    Load trading config from a YAML/JSON file, falling back to defaults.

    Environment overrides are applied on top of whatever was loaded.
    """
    if not path:
        return TradingConfig().apply_env_overrides()

    config_path = Path(path)
    if not config_path.exists():
        logger.info(f"Trading config {config_path} not found, using defaults")
        return TradingConfig().apply_env_overrides()

    with open(config_path, "r", encoding="utf-8") as f:
        if config_path.suffix in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    logger.info(f"Trading config loaded from {config_path}")
    return TradingConfig.from_dict(data or {}).apply_env_overrides()


def save_trading_config(config: TradingConfig, path: str) -> None:
    """Write config to YAML or JSON depending on the file suffix."""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.to_dict()
    with open(config_path, "w", encoding="utf-8") as f:
        if config_path.suffix in [".yaml", ".yml"]:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        else:
            json.dump(data, f, indent=2, ensure_ascii=False)
