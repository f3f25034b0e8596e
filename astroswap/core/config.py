"""
Configuration Manager - Loads and validates all system configuration.

Merges YAML config with environment variables. Environment variables take
precedence over YAML values for deployment flexibility.
"""

from __future__ import annotations

import os
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from astroswap.strategies.celestial import RetrogradeWindow


class ConfigurationMissingError(RuntimeError):
    """A value required to run (token ids, wallet, gateway) is not set."""


def _to_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

_ENV_MAPPINGS = {
    "TRADING_MODE": ("app", "mode"),
    "LOG_LEVEL": ("app", "log_level"),
    "WALLET_ADDRESS": ("wallet", "address"),
    "GSWAP_GATEWAY_URL": ("exchange", "gateway_url"),
    "GSWAP_GATEWAY_API_KEY": ("exchange", "gateway_api_key"),
    "CHECK_INTERVAL_MS": ("trading", "check_interval_ms", int),
    "MAX_PER_TRADE": ("trading", "max_per_trade", float),
    "MIN_RESERVE": ("trading", "min_reserve", float),
    "SLIPPAGE_TOLERANCE": ("trading", "slippage_tolerance", float),
    "TOKEN_IN": ("trading", "token_in"),
    "TOKEN_OUT": ("trading", "token_out"),
    "AUTOSTART": ("trading", "autostart", _to_bool),
    "IMMEDIATE_TEST_ON_START": ("trading", "immediate_test_on_start", _to_bool),
    "SCORING_TIMEZONE": ("scoring", "timezone"),
    "DASHBOARD_HOST": ("dashboard", "host"),
    "DASHBOARD_PORT": ("dashboard", "port", int),
    "DASHBOARD_REQUIRE_API_KEY_FOR_READS": ("dashboard", "require_api_key_for_reads", _to_bool),
}


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """Override YAML values with environment variables where set."""
    for env_key, mapping in _ENV_MAPPINGS.items():
        value = os.getenv(env_key)
        if value is None:
            continue
        section, key = mapping[0], mapping[1]
        converter = mapping[2] if len(mapping) > 2 else str
        try:
            converted = converter(value)
        except (ValueError, TypeError) as e:
            import logging
            logging.getLogger("config").warning(
                "Env %s=%r failed to convert: %s. Using YAML value.",
                env_key, value, e,
            )
            continue
        if not isinstance(config.get(section), dict):
            config[section] = {}
        config[section][key] = converted


# ---------------------------------------------------------------------------
# Pydantic Configuration Models (strict validation)
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    name: str = "AstroSwap"
    version: str = "1.0.0"
    mode: str = "paper"
    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = False

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        v = (v or "").strip().lower()
        if v not in ("paper", "live"):
            raise ValueError("app.mode must be 'paper' or 'live'")
        return v


class WalletConfig(BaseModel):
    address: str = ""


class ExchangeConfig(BaseModel):
    gateway_url: str = "http://127.0.0.1:3000"
    gateway_api_key: str = ""
    timeout: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    # Paper backend knobs
    paper_price: float = 0.02
    paper_balance: float = 10.0
    paper_fee_tier: int = 500

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v):
        if v < 0 or v > 10:
            raise ValueError("exchange.max_retries must be between 0 and 10")
        return v


class TradingConfig(BaseModel):
    token_in: str = "GALA|Unit|none|none"
    token_out: str = "GUSDC|Unit|none|none"
    check_interval_ms: int = 60_000
    max_per_trade: float = 1.0
    min_reserve: float = 5.0
    min_defensive_amount: float = 0.1
    test_trade_amount: float = 0.5
    slippage_tolerance: float = 0.05
    min_seconds_between_trades: int = 3600
    autostart: bool = False
    immediate_test_on_start: bool = False
    continue_on_test_failure: bool = True

    @field_validator("check_interval_ms")
    @classmethod
    def validate_interval(cls, v):
        if v < 1000:
            raise ValueError("trading.check_interval_ms must be >= 1000")
        return v

    @field_validator("max_per_trade", "test_trade_amount")
    @classmethod
    def validate_positive_amount(cls, v):
        if v <= 0:
            raise ValueError("trade amounts must be > 0")
        return v

    @field_validator("min_reserve", "min_defensive_amount")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("reserve values must be >= 0")
        return v

    @field_validator("slippage_tolerance")
    @classmethod
    def validate_slippage(cls, v):
        if v <= 0 or v >= 0.5:
            raise ValueError("trading.slippage_tolerance must be > 0 and < 0.5")
        return v


class RetrogradeWindowConfig(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("retrograde window end precedes start")
        return self


class ScoringConfig(BaseModel):
    # IANA zone whose wall clock the factors are read from.
    timezone: str = "UTC"
    retrograde_periods: Dict[int, List[RetrogradeWindowConfig]] = Field(default_factory=dict)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"scoring.timezone {v!r} is not a known IANA zone") from e
        return v

    def retrograde_windows(self) -> Dict[int, List[RetrogradeWindow]]:
        return {
            year: [RetrogradeWindow(w.start, w.end) for w in windows]
            for year, windows in self.retrograde_periods.items()
        }


class DashboardConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    # If enabled, read endpoints and the live WS feed require an API key.
    require_api_key_for_reads: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:8080", "http://127.0.0.1:8080"])
    rate_limit_enabled: bool = True
    rate_limit_requests_per_minute: int = 240
    rate_limit_burst: int = 60
    max_ws_connections: int = 50
    history_limit: int = 10


class BotConfig(BaseModel):
    """Master configuration model with full validation."""
    app: AppConfig = Field(default_factory=AppConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)

    @model_validator(mode="after")
    def validate_live_requirements(self):
        if self.app.mode == "live" and not self.wallet.address.strip():
            raise ValueError("live mode requires wallet.address (WALLET_ADDRESS)")
        return self


# ---------------------------------------------------------------------------
# Configuration Manager (Singleton)
# ---------------------------------------------------------------------------

def _read_yaml(config_path: str) -> Dict[str, Any]:
    config_file = Path(config_path)
    if not config_file.exists():
        return {}
    with open(config_file, "r") as f:
        return yaml.safe_load(f) or {}


class ConfigManager:
    """
    Thread-safe configuration manager.

    Loads configuration from YAML file, then overlays environment
    variables. Validates all values through Pydantic models.
    """

    _instance: Optional[ConfigManager] = None
    _config: Optional[BotConfig] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load()

    def load(self, config_path: str = "config/config.yaml") -> BotConfig:
        """Load configuration from YAML + environment variables."""
        load_dotenv()
        yaml_config = _read_yaml(config_path)
        _apply_env_overrides(yaml_config)
        self._config = BotConfig(**yaml_config)
        return self._config

    @property
    def config(self) -> BotConfig:
        if self._config is None:
            self.load()
        return self._config

    def reload(self, config_path: str = "config/config.yaml") -> BotConfig:
        return self.load(config_path)

    def get(self, dotpath: str, default: Any = None) -> Any:
        """
        Access config values using dot notation.

        Example: config.get("trading.max_per_trade") -> 1.0
        """
        obj = self._config
        for key in dotpath.split("."):
            if hasattr(obj, key):
                obj = getattr(obj, key)
            elif isinstance(obj, dict) and key in obj:
                obj = obj[key]
            else:
                return default
        return obj

    def to_dict(self) -> Dict[str, Any]:
        return self._config.model_dump() if self._config else {}


def get_config() -> BotConfig:
    """Get the global configuration instance."""
    return ConfigManager().config


def load_config_with_overrides(
    config_path: str = "config/config.yaml",
    overrides: Optional[Dict[str, Any]] = None,
) -> BotConfig:
    """Load a fresh config (YAML + env) with optional deep overrides."""
    load_dotenv()
    yaml_config = _read_yaml(config_path)
    _apply_env_overrides(yaml_config)

    def _deep_update(dst: Dict[str, Any], src: Dict[str, Any]) -> None:
        for key, value in (src or {}).items():
            if isinstance(value, dict) and isinstance(dst.get(key), dict):
                _deep_update(dst[key], value)
            else:
                dst[key] = value

    if overrides:
        _deep_update(yaml_config, overrides)

    return BotConfig(**yaml_config)
