"""Configuration management for dustsweep."""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .batch_planner import CLOSE_BATCH_SIZE, FEE_PER_TRANSACTION
from .classifier import (
    DEFAULT_DUST_USD_THRESHOLD,
    DEFAULT_PROTECTION_WINDOW_MS,
    DEFAULT_WRAPPED_NATIVE_THRESHOLD,
    ClassificationPolicy,
)
from .models import RENT_PER_ACCOUNT, Network
from .retry import DEFAULT_BASE_DELAY_MS, DEFAULT_MAX_ATTEMPTS, RetryPolicy
from .rpc_client import ANKR_MULTICHAIN_URL, BSC_RPC_URL, SOLANA_ENDPOINTS

ENV_SAFE_MODE = "DUSTSWEEP_SAFE_MODE"
ENV_RPC_URL = "DUSTSWEEP_RPC_URL"

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def parse_bool(value: Any, default: bool) -> bool:
    """Parse a YAML or environment value as a boolean; None or an unknown value keeps default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return default


def _default_endpoints() -> Dict[str, List[str]]:
    return {network.value: list(urls) for network, urls in SOLANA_ENDPOINTS.items()}


@dataclass
class SweepConfig:
    """Configuration for scanning and reclaiming dust."""

    # Account-age protection
    protection_enabled: bool = True
    protection_window_ms: int = DEFAULT_PROTECTION_WINDOW_MS

    # Dust thresholds
    wrapped_native_threshold: Decimal = DEFAULT_WRAPPED_NATIVE_THRESHOLD
    dust_usd_threshold: Decimal = DEFAULT_DUST_USD_THRESHOLD
    treat_unpriced_as_dust: bool = True
    rent_per_account: Decimal = RENT_PER_ACCOUNT

    # Batching and retries
    max_batch_size: int = CLOSE_BATCH_SIZE
    fee_per_transaction: Decimal = FEE_PER_TRANSACTION
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay_ms: int = DEFAULT_BASE_DELAY_MS

    # Chain endpoints
    solana_endpoints: Dict[str, List[str]] = field(default_factory=_default_endpoints)
    ankr_url: str = ANKR_MULTICHAIN_URL
    bsc_rpc_url: str = BSC_RPC_URL

    # Run history
    history_file: Path = field(default_factory=lambda: Path.home() / ".dustsweep/sweep-log.json")

    # Logging
    log_level: str = "INFO"

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the default configuration file path."""
        return Path.home() / ".config/dustsweep/config.yaml"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "SweepConfig":
        """
        Load configuration from a YAML file, then apply environment overrides.

        Args:
            config_path: Path to config file. Uses default if None.

        Returns:
            Loaded configuration (defaults if the file does not exist)
        """
        if config_path is None:
            config_path = cls.get_config_path()

        if config_path.exists():
            with config_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = cls._from_dict(data)
        else:
            config = cls()

        config.apply_env(os.environ)
        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "SweepConfig":
        """Create config from dictionary."""
        config = cls()

        if "protection" in data:
            protection = data["protection"] or {}
            if "enabled" in protection:
                config.protection_enabled = parse_bool(protection["enabled"], True)
            if "window_hours" in protection:
                config.protection_window_ms = int(
                    float(protection["window_hours"]) * 60 * 60 * 1000
                )

        if "thresholds" in data:
            thresholds = data["thresholds"] or {}
            if "wrapped_native" in thresholds:
                config.wrapped_native_threshold = Decimal(str(thresholds["wrapped_native"]))
            if "dust_usd" in thresholds:
                config.dust_usd_threshold = Decimal(str(thresholds["dust_usd"]))
            if "treat_unpriced_as_dust" in thresholds:
                config.treat_unpriced_as_dust = parse_bool(
                    thresholds["treat_unpriced_as_dust"], True
                )
            if "rent_per_account" in thresholds:
                config.rent_per_account = Decimal(str(thresholds["rent_per_account"]))

        if "retry" in data:
            retry = data["retry"] or {}
            if "max_attempts" in retry:
                config.max_attempts = int(retry["max_attempts"])
            if "base_delay_ms" in retry:
                config.retry_base_delay_ms = int(retry["base_delay_ms"])

        if "solana" in data:
            solana = data["solana"] or {}
            if "batch_size" in solana:
                config.max_batch_size = int(solana["batch_size"])
            if "fee_per_transaction" in solana:
                config.fee_per_transaction = Decimal(str(solana["fee_per_transaction"]))
            for network in Network:
                urls = (solana.get("endpoints") or {}).get(network.value)
                if urls:
                    config.solana_endpoints[network.value] = [str(u) for u in urls]

        if "bnb" in data:
            bnb = data["bnb"] or {}
            if "ankr_url" in bnb:
                config.ankr_url = str(bnb["ankr_url"])
            if "rpc_url" in bnb:
                config.bsc_rpc_url = str(bnb["rpc_url"])

        if "history_file" in data:
            config.history_file = Path(os.path.expanduser(data["history_file"]))

        if "logging" in data:
            logging_cfg = data["logging"] or {}
            if "level" in logging_cfg:
                config.log_level = str(logging_cfg["level"])

        return config

    def apply_env(self, environ: Dict[str, str]) -> None:
        """
        Apply environment overrides.

        DUSTSWEEP_SAFE_MODE toggles age protection; DUSTSWEEP_RPC_URL is tried
        before the configured Solana endpoints on every network.
        """
        safe_mode = environ.get(ENV_SAFE_MODE)
        if safe_mode is not None and safe_mode.strip():
            self.protection_enabled = parse_bool(safe_mode, self.protection_enabled)

        rpc_url = (environ.get(ENV_RPC_URL) or "").strip()
        if rpc_url:
            for network in Network:
                urls = self.solana_endpoints.get(network.value, [])
                rest = [u for u in urls if u != rpc_url]
                self.solana_endpoints[network.value] = [rpc_url] + rest

    def endpoints_for(self, network: Network) -> List[str]:
        return list(self.solana_endpoints.get(network.value) or SOLANA_ENDPOINTS[network])

    def classification_policy(
        self, protection_enabled: Optional[bool] = None
    ) -> ClassificationPolicy:
        """Build the classifier policy, optionally overriding the protection toggle."""
        return ClassificationPolicy(
            protection_enabled=(
                self.protection_enabled if protection_enabled is None else protection_enabled
            ),
            protection_window_ms=self.protection_window_ms,
            wrapped_native_threshold=self.wrapped_native_threshold,
            dust_usd_threshold=self.dust_usd_threshold,
            rent_per_account=self.rent_per_account,
            treat_unpriced_as_dust=self.treat_unpriced_as_dust,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, base_delay_ms=self.retry_base_delay_ms)

    def save(self, config_path: Optional[Path] = None) -> None:
        """
        Save configuration to a YAML file.

        Args:
            config_path: Path to save config. Uses default if None.
        """
        if config_path is None:
            config_path = self.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "protection": {
                "enabled": self.protection_enabled,
                "window_hours": self.protection_window_ms / (60 * 60 * 1000),
            },
            "thresholds": {
                "wrapped_native": str(self.wrapped_native_threshold),
                "dust_usd": str(self.dust_usd_threshold),
                "treat_unpriced_as_dust": self.treat_unpriced_as_dust,
                "rent_per_account": str(self.rent_per_account),
            },
            "retry": {
                "max_attempts": self.max_attempts,
                "base_delay_ms": self.retry_base_delay_ms,
            },
            "solana": {
                "batch_size": self.max_batch_size,
                "fee_per_transaction": str(self.fee_per_transaction),
                "endpoints": {k: list(v) for k, v in self.solana_endpoints.items()},
            },
            "bnb": {
                "ankr_url": self.ankr_url,
                "rpc_url": self.bsc_rpc_url,
            },
            "history_file": str(self.history_file),
            "logging": {
                "level": self.log_level,
            },
        }

        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
