from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

_TIMEFRAMES = ("M1", "M5", "M15", "H1", "H4", "D1")


def _normalize_tf(value: str) -> str:
    normalized = str(value).strip().upper()
    if normalized not in _TIMEFRAMES:
        raise ValueError(f"Unsupported timeframe {value}")
    return normalized


class SwingConfig(BaseModel):
    lookback: int = 3

    @model_validator(mode="after")
    def validate_lookback(self) -> "SwingConfig":
        if self.lookback < 1:
            raise ValueError("lookback must be >= 1")
        return self


class DisplacementConfig(BaseModel):
    min_score_for_sms: int = 6
    strong_score: int = 8
    atr_period: int = 14
    volume_lookback: int = 20
    sms_window: int = 10


class LiquidityConfig(BaseModel):
    eq_tolerance: float = 0.001
    merge_tolerance: float = 0.0005
    clean_level_age_days: int = 3
    expiry_days: int = 20
    weekly_lookback_days: int = 5
    timeframe_bonus: dict[str, int] = Field(default_factory=lambda: {"D1": 3, "H4": 2, "H1": 1})

    @model_validator(mode="after")
    def normalize_bonus(self) -> "LiquidityConfig":
        self.timeframe_bonus = {_normalize_tf(key): int(value) for key, value in self.timeframe_bonus.items()}
        return self


class SweepConfig(BaseModel):
    lookforward_candles: int = 5
    max_penetration_pct: float = 0.01
    min_score_for_trigger: int = 5
    scan_candles: int = 20


class FVGConfig(BaseModel):
    max_age_hours: int = 24
    quality_body_ratio: float = 0.7
    quality_window: int = 5


class OrderBlockConfig(BaseModel):
    window: int = 5
    min_score: int = 4
    lookback_candles: int = 3


class BiasConfig(BaseModel):
    fast_timeframe: str = "H4"
    slow_timeframe: str = "D1"
    framework_recent_hours: int = 40
    judas_threshold_pct: float = 0.003
    draw_score_override: int = 3
    draw_distance_multiple: float = 3.0

    @model_validator(mode="after")
    def normalize_timeframes(self) -> "BiasConfig":
        self.fast_timeframe = _normalize_tf(self.fast_timeframe)
        self.slow_timeframe = _normalize_tf(self.slow_timeframe)
        return self


class SignalConfig(BaseModel):
    execution_timeframes: list[str] = Field(default_factory=lambda: ["M5", "M15"])
    min_confidence: int = 50
    obstacle_distance_pct: float = 0.005
    obstacle_min_score: int = 7
    sl_buffer_pct: float = 0.001
    tp1_fallback_pct: float = 0.005
    tp2_fallback_pct: float = 0.01

    @model_validator(mode="after")
    def normalize_timeframes(self) -> "SignalConfig":
        self.execution_timeframes = [_normalize_tf(tf) for tf in self.execution_timeframes]
        if not self.execution_timeframes:
            raise ValueError("execution_timeframes must not be empty")
        return self


class RiskConfig(BaseModel):
    initial_equity: float = 10000.0
    max_risk_per_trade: float = 0.01
    post_loss_risk: float = 0.005
    post_two_loss_risk: float = 0.0025
    max_daily_loss: float = 0.02
    max_weekly_drawdown: float = 0.05
    kill_switch_drawdown: float = 0.15
    max_trades_per_day: int = 1
    min_rr: float = 2.0
    default_leverage: int = 3
    max_leverage: int = 5

    @model_validator(mode="after")
    def validate_limits(self) -> "RiskConfig":
        if self.initial_equity <= 0:
            raise ValueError("initial_equity must be > 0")
        if not (0 < self.max_risk_per_trade <= 1):
            raise ValueError("max_risk_per_trade must be in (0,1]")
        if self.default_leverage > self.max_leverage:
            raise ValueError("default_leverage must be <= max_leverage")
        return self


class ExitConfig(BaseModel):
    time_exit_local: str = "15:30"
    timezone: str = "America/New_York"
    tp1_close_fraction: float = 0.5
    breakeven_buffer_pct: float = 0.0005
    management_timeframe: str = "M15"

    @model_validator(mode="after")
    def validate_fraction(self) -> "ExitConfig":
        if not (0 < self.tp1_close_fraction < 1):
            raise ValueError("tp1_close_fraction must be in (0,1)")
        self.management_timeframe = _normalize_tf(self.management_timeframe)
        return self


class PaperConfig(BaseModel):
    slippage_pct: float = 0.0005


class SessionWindowConfig(BaseModel):
    name: str
    window: str
    tradeable: bool = False
    no_trade: bool = False


def _default_sessions() -> list[SessionWindowConfig]:
    return [
        SessionWindowConfig(name="ASIAN", window="20:00-00:00"),
        SessionWindowConfig(name="LONDON", window="02:00-05:00", tradeable=True),
        SessionWindowConfig(name="LONDON_TO_NY", window="05:00-07:00"),
        SessionWindowConfig(name="NY_PRE_MARKET", window="07:00-08:30"),
        SessionWindowConfig(name="NY_MORNING", window="08:30-12:00", tradeable=True),
        SessionWindowConfig(name="NY_LUNCH", window="12:00-13:00", no_trade=True),
        SessionWindowConfig(name="NY_AFTERNOON", window="13:30-16:00", tradeable=True),
        SessionWindowConfig(name="NY_CLOSE", window="16:00-17:00", no_trade=True),
    ]


class SessionConfig(BaseModel):
    timezone: str = "America/New_York"
    windows: list[SessionWindowConfig] = Field(default_factory=_default_sessions)
    range_sessions: list[str] = Field(default_factory=lambda: ["ASIAN", "LONDON"])

    @model_validator(mode="after")
    def validate_windows(self) -> "SessionConfig":
        names = [item.name.strip().upper() for item in self.windows]
        if len(set(names)) != len(names):
            raise ValueError("session names must be unique")
        for item, name in zip(self.windows, names):
            item.name = name
        self.range_sessions = [name.strip().upper() for name in self.range_sessions]
        return self


class CacheConfig(BaseModel):
    max_candles: int = 500
    max_swings: int = 200
    max_sweeps: int = 10
    max_order_blocks: int = 50
    backfill_candles: int = 200
    min_execution_candles: int = 20
    fvg_update_candles: int = 5


class BybitConfig(BaseModel):
    base_url: str = "https://api.bybit.com"
    symbol: str = "BTCUSDT"
    category: str = "linear"
    timeout_seconds: int = 10
    request_max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 10.0


class SchedulerConfig(BaseModel):
    timeframes: list[str] = Field(default_factory=lambda: ["M5", "M15", "H1", "H4", "D1"])
    loop_seconds: int = 15
    candle_close_grace_seconds: int = 3
    candle_retry_seconds: int = 15
    fetch_limit: int = 50

    @model_validator(mode="after")
    def normalize_timeframes(self) -> "SchedulerConfig":
        self.timeframes = [_normalize_tf(tf) for tf in self.timeframes]
        return self


class StorageConfig(BaseModel):
    sqlite_path: str = "ictbot.db"
    trades_csv_path: str = "logs/trades.csv"


class MonitoringConfig(BaseModel):
    dashboard_path: str = "runtime_dashboard.json"
    alerts_enabled: bool = True
    alert_cooldown_seconds: int = 30
    recent_trades: int = 5


class AppConfig(BaseModel):
    timezone: str = "America/New_York"
    swings: SwingConfig = Field(default_factory=SwingConfig)
    displacement: DisplacementConfig = Field(default_factory=DisplacementConfig)
    liquidity: LiquidityConfig = Field(default_factory=LiquidityConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    fvg: FVGConfig = Field(default_factory=FVGConfig)
    order_blocks: OrderBlockConfig = Field(default_factory=OrderBlockConfig)
    bias: BiasConfig = Field(default_factory=BiasConfig)
    signal: SignalConfig = Field(default_factory=SignalConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    exit: ExitConfig = Field(default_factory=ExitConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    bybit: BybitConfig = Field(default_factory=BybitConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @model_validator(mode="after")
    def validate_cross_fields(self) -> "AppConfig":
        required = set(self.signal.execution_timeframes) | {
            self.bias.fast_timeframe,
            self.bias.slow_timeframe,
            self.exit.management_timeframe,
        }
        missing = sorted(required - set(self.scheduler.timeframes))
        if missing:
            raise ValueError(f"scheduler.timeframes is missing {missing}")
        return self


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
