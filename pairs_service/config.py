"""
多空策略分析服务配置模块
支持从环境变量 / .env 读取配置
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pairs_service import __version__


class PairsServiceSettings(BaseSettings):
    """多空策略分析服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 行情数据源配置 ─────────────────────────────────────
    BINANCE_KLINES_URL: str = Field(default="https://api.binance.com/api/v3/klines")
    KLINE_INTERVAL: str = Field(default="1d")
    FETCH_TIMEOUT: float = Field(default=10.0)        # 单次请求超时（秒）
    USER_AGENT: str = Field(default=f"pairs-service/{__version__}")

    # ── 资金费率配置 ──────────────────────────────────────
    FUNDING_FEES_ENABLED: bool = Field(default=True)
    FUNDING_FEES_URL: str = Field(default="https://api-sendra-gmx.vercel.app/api/funding-fees")
    FUNDING_FEES_TIMEOUT: float = Field(default=5.0)

    # ── 数据清洗配置 ──────────────────────────────────────
    MIN_VOLUME: float = Field(default=100.0)           # 最低成交量（流动性门槛）
    MAX_ABS_DAILY_CHANGE: float = Field(default=50.0)  # 单日涨跌幅上限（%），超出视为坏数据

    # ── 分析配置 ──────────────────────────────────────────
    MIN_ANALYSIS_DAYS: int = Field(default=30)         # 单组合分析最少有效天数
    DEFAULT_WINDOW: int = Field(default=100)           # 单组合默认回看天数

    # ── 批量分析 / 缓存配置 ────────────────────────────────
    BUNDLE_CACHE_TTL: int = Field(default=3600)        # 批量结果缓存 TTL（秒）
    BUNDLE_DEFAULT_LIMIT: int = Field(default=15)
    BUNDLE_VALUES_LENGTH: int = Field(default=100)     # 每个策略返回的比值序列长度

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="UTC")


@lru_cache
def get_settings() -> PairsServiceSettings:
    """获取全局配置（单例）"""
    return PairsServiceSettings()


settings = get_settings()
