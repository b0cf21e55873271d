from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_SYMBOL_MAPPING: dict[str, str] = {
    "XXBTZUSD": "PF_XBTUSD",
    "XBTUSD": "PF_XBTUSD",
    "BTCUSD": "PF_XBTUSD",
    "XETHZUSD": "PF_ETHUSD",
    "ETHUSD": "PF_ETHUSD",
}


class TradingConfig(BaseModel):
    symbol: str = "PF_XBTUSD"
    trade_size: float = 0.001
    max_position_size: float = 0.01
    dry_run: bool = True
    min_confidence: float = 0.65
    poll_interval_minutes: int = 15
    entry_offset_bps: float = 0.0
    run_on_start: bool = False

    @model_validator(mode="after")
    def validate_values(self) -> "TradingConfig":
        self.symbol = str(self.symbol).strip().upper()
        if not self.symbol:
            raise ValueError("trading.symbol must not be empty")
        if self.trade_size <= 0:
            raise ValueError("trading.trade_size must be > 0")
        if self.max_position_size <= 0:
            raise ValueError("trading.max_position_size must be > 0")
        if self.trade_size > self.max_position_size:
            raise ValueError("trading.trade_size must be <= trading.max_position_size")
        if not (0.0 <= self.min_confidence <= 1.0):
            raise ValueError("trading.min_confidence must be in [0,1]")
        if self.poll_interval_minutes < 0:
            raise ValueError("trading.poll_interval_minutes must be >= 0")
        if self.entry_offset_bps < 0:
            raise ValueError("trading.entry_offset_bps must be >= 0")
        return self


class SymbolsConfig(BaseModel):
    mapping: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SYMBOL_MAPPING))

    @model_validator(mode="after")
    def normalize(self) -> "SymbolsConfig":
        normalized: dict[str, str] = {}
        for key, value in self.mapping.items():
            pair = str(key).strip().upper()
            symbol = str(value).strip().upper()
            if not pair or not symbol:
                continue
            normalized[pair] = symbol
        self.mapping = normalized
        return self


class KrakenConfig(BaseModel):
    base_url: str = "https://futures.kraken.com"
    timeout_seconds: int = 10
    rate_limit_rps: float = 2.0
    rate_limit_burst: int = 5
    request_max_attempts: int = 4
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 10.0

    @model_validator(mode="after")
    def validate_values(self) -> "KrakenConfig":
        self.base_url = self.base_url.strip().rstrip("/")
        if self.timeout_seconds <= 0:
            raise ValueError("kraken.timeout_seconds must be > 0")
        if self.request_max_attempts <= 0:
            raise ValueError("kraken.request_max_attempts must be > 0")
        return self


class SignalSourceConfig(BaseModel):
    url: str | None = None
    timeout_seconds: int = 10


class MonitoringConfig(BaseModel):
    dashboard_path: str = "runtime_dashboard.json"
    alerts_enabled: bool = True
    alert_cooldown_seconds: int = 30


class ControlConfig(BaseModel):
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    @model_validator(mode="after")
    def validate_port(self) -> "ControlConfig":
        if not (0 < self.port < 65536):
            raise ValueError("control.port must be in (0,65535]")
        return self


class AppConfig(BaseModel):
    trading: TradingConfig = Field(default_factory=TradingConfig)
    symbols: SymbolsConfig = Field(default_factory=SymbolsConfig)
    kraken: KrakenConfig = Field(default_factory=KrakenConfig)
    signal_source: SignalSourceConfig = Field(default_factory=SignalSourceConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)


def parse_dry_run(raw: str | None, default: bool = True) -> bool:
    """Only an explicit "false" switches to live trading."""
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() != "false"


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        return AppConfig()
    config_path = Path(path)
    if not config_path.exists():
        return AppConfig()
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)


def apply_env_overrides(config: AppConfig, env: dict[str, str]) -> AppConfig:
    """Return a validated copy of ``config`` with deployment env vars applied."""
    data = config.model_dump()
    trading = data["trading"]
    if env.get("TRADING_SYMBOL"):
        trading["symbol"] = env["TRADING_SYMBOL"]
    if env.get("TRADE_SIZE"):
        trading["trade_size"] = float(env["TRADE_SIZE"])
    if env.get("MAX_POSITION_SIZE"):
        trading["max_position_size"] = float(env["MAX_POSITION_SIZE"])
    if env.get("MIN_CONFIDENCE"):
        trading["min_confidence"] = float(env["MIN_CONFIDENCE"])
    if env.get("POLL_INTERVAL_MINUTES"):
        trading["poll_interval_minutes"] = int(env["POLL_INTERVAL_MINUTES"])
    if env.get("ENTRY_OFFSET_BPS"):
        trading["entry_offset_bps"] = float(env["ENTRY_OFFSET_BPS"])
    trading["dry_run"] = parse_dry_run(env.get("DRY_RUN"), default=trading["dry_run"])
    if env.get("KRAKEN_BASE_URL"):
        data["kraken"]["base_url"] = env["KRAKEN_BASE_URL"]
    if env.get("SIGNAL_BOT_URL"):
        data["signal_source"]["url"] = env["SIGNAL_BOT_URL"]
    if env.get("PORT"):
        data["control"]["port"] = int(env["PORT"])
    if env.get("DASHBOARD_PATH"):
        data["monitoring"]["dashboard_path"] = env["DASHBOARD_PATH"]
    return AppConfig.model_validate(data)
