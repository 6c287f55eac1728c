"""Config package"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from ..constants import BIRDEYE_API_BASE, RAYDIUM_API
from ..exceptions import ConfigurationException
from .trading_config import (
    DiscoveryConfig,
    ExecutionConfig,
    ExitConfig,
    RiskFilterConfig,
    TradingConfig,
    load_trading_config,
    save_trading_config,
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Credentials, endpoints and runtime switches read from the environment."""

    # ============================================
    # CREDENTIALS & ENDPOINTS
    # ============================================
    PRIVATE_KEY: str | None = None
    RPC_URL: str = "https://api.mainnet-beta.solana.com"
    WSS_URL: str | None = None
    BIRDEYE_API_KEY: str = ""
    BIRDEYE_API_BASE: str = BIRDEYE_API_BASE
    RAYDIUM_API: str = RAYDIUM_API

    # ============================================
    # RUNTIME
    # ============================================
    # Default to True for safety if env var missing
    PAPER_TRADING_MODE: bool = True
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    TRADING_CONFIG_PATH: str | None = None
    POSITION_SNAPSHOT_PATH: str | None = "data/positions.json"

    trading: TradingConfig = field(default_factory=TradingConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        rpc_url = os.getenv("RPC_URL", cls.RPC_URL)
        config_path = os.getenv("TRADING_CONFIG_PATH") or None
        return cls(
            PRIVATE_KEY=os.getenv("SOLANA_PRIVATE_KEY") or None,
            RPC_URL=rpc_url,
            WSS_URL=os.getenv("WSS_URL") or rpc_url.replace("https", "wss", 1),
            BIRDEYE_API_KEY=os.getenv("BIRDEYE_API_KEY", ""),
            BIRDEYE_API_BASE=os.getenv("BIRDEYE_API_BASE", BIRDEYE_API_BASE),
            RAYDIUM_API=os.getenv("RAYDIUM_API", RAYDIUM_API),
            PAPER_TRADING_MODE=_env_bool("PAPER_TRADING_MODE", "True"),
            LOG_DIR=os.getenv("LOG_DIR", "logs"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
            TRADING_CONFIG_PATH=config_path,
            POSITION_SNAPSHOT_PATH=os.getenv("POSITION_SNAPSHOT_PATH", "data/positions.json") or None,
            trading=load_trading_config(config_path),
        )

    def validate(self) -> None:
        """Raise ConfigurationException listing every problem found."""
        errors = list(self.trading.validate())
        if not self.PAPER_TRADING_MODE and not self.PRIVATE_KEY:
            errors.append("SOLANA_PRIVATE_KEY is required when PAPER_TRADING_MODE is off")
        if not self.BIRDEYE_API_KEY:
            errors.append("BIRDEYE_API_KEY is required for price lookups")
        if not self.RPC_URL.startswith(("http://", "https://")):
            errors.append(f"RPC_URL must be an http(s) URL, got {self.RPC_URL!r}")
        if self.LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"invalid LOG_LEVEL {self.LOG_LEVEL!r}")
        if errors:
            raise ConfigurationException(
                "Invalid configuration:\n  - " + "\n  - ".join(errors),
                problems=len(errors),
            )


__all__ = [
    "Settings",
    "TradingConfig",
    "ExitConfig",
    "RiskFilterConfig",
    "DiscoveryConfig",
    "ExecutionConfig",
    "load_trading_config",
    "save_trading_config",
]
