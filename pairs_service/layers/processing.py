"""
Layer 2 – 数据处理层
对两条原始日线进行清洗、过滤，并按时间戳取交集对齐，
生成上层可直接使用的等长序列。
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from pairs_service.config import settings

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]
DAILY_COLUMNS = ["timestamp"] + PRICE_COLUMNS + ["daily_change", "daily_change_abs"]


@dataclass(frozen=True)
class AlignedPair:
    """两条按时间戳逐行匹配的日线序列（等长、升序、仅含共同有效日）"""

    long: pd.DataFrame
    short: pd.DataFrame

    def __len__(self) -> int:
        return len(self.long)

    @property
    def timestamps(self) -> List[int]:
        return self.long["timestamp"].tolist()

    def differential(self) -> np.ndarray:
        """策略日收益：多头涨跌幅 − 空头涨跌幅"""
        return (self.long["daily_change"] - self.short["daily_change"]).to_numpy(dtype=float)


class ProcessingLayer:
    """数据处理层：衍生日涨跌幅 + 过滤异常日 + 时间戳对齐"""

    def __init__(
        self,
        min_volume: Optional[float] = None,
        max_abs_daily_change: Optional[float] = None,
    ):
        self.min_volume = settings.MIN_VOLUME if min_volume is None else min_volume
        self.max_abs_daily_change = (
            settings.MAX_ABS_DAILY_CHANGE if max_abs_daily_change is None else max_abs_daily_change
        )

    def to_daily_records(self, records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
        """
        原始 OHLCV 记录 → 日线 DataFrame

        丢弃任一 OHLCV 字段非有限数值的行，并计算：
          daily_change     = (close - open) / open * 100（open <= 0 时为 0）
          daily_change_abs = close - open
        """
        df = pd.DataFrame(list(records), columns=["timestamp"] + PRICE_COLUMNS)
        if df.empty:
            return pd.DataFrame(columns=DAILY_COLUMNS)

        for col in PRICE_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
        df["timestamp"] = pd.to_numeric(df["timestamp"], errors="coerce")

        finite = np.isfinite(df[PRICE_COLUMNS].to_numpy()).all(axis=1) & df["timestamp"].notna().to_numpy()
        df = df[finite].copy()
        df["timestamp"] = df["timestamp"].astype("int64")

        # 同一时间戳保留最后一条
        df = df.drop_duplicates(subset=["timestamp"], keep="last").reset_index(drop=True)

        opens = df["open"].to_numpy()
        closes = df["close"].to_numpy()
        change = np.zeros(len(df))
        np.divide(closes - opens, opens, out=change, where=opens > 0)
        df["daily_change"] = change * 100
        df["daily_change_abs"] = closes - opens
        return df[DAILY_COLUMNS]

    def filter_valid_days(self, df: pd.DataFrame) -> pd.DataFrame:
        """剔除价格区间矛盾、成交量过低或涨跌幅异常的日线"""
        if df.empty:
            return df
        valid_range = (
            (df["high"] >= df["low"])
            & df["close"].between(df["low"], df["high"])
            & df["open"].between(df["low"], df["high"])
        )
        liquid = df["volume"] >= self.min_volume
        sane_change = df["daily_change"].abs() <= self.max_abs_daily_change
        mask = valid_range & liquid & sane_change

        dropped = int((~mask).sum())
        if dropped:
            logger.debug(f"过滤异常日线 {dropped} 条（剩余 {int(mask.sum())} 条）")
        return df[mask].reset_index(drop=True)

    def prepare(self, records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
        """单条序列的完整预处理（衍生 + 过滤），可在多个组合间复用"""
        return self.filter_valid_days(self.to_daily_records(records))

    def synchronize(self, long_df: pd.DataFrame, short_df: pd.DataFrame) -> AlignedPair:
        """按时间戳取交集，返回升序对齐的两条序列"""
        common = sorted(set(long_df["timestamp"]).intersection(short_df["timestamp"]))
        long_aligned = long_df.set_index("timestamp").loc[common].reset_index()
        short_aligned = short_df.set_index("timestamp").loc[common].reset_index()
        logger.debug(f"🔄 对齐 {len(common)} 个共同交易日")
        return AlignedPair(long=long_aligned[DAILY_COLUMNS], short=short_aligned[DAILY_COLUMNS])

    def align(
        self,
        long_records: Iterable[Dict[str, Any]],
        short_records: Iterable[Dict[str, Any]],
    ) -> AlignedPair:
        """原始记录 → 对齐序列（一站式）"""
        return self.synchronize(self.prepare(long_records), self.prepare(short_records))

    def ratio_klines(self, pair: AlignedPair) -> List[Dict[str, Any]]:
        """多空价格比值 K 线：OHLC 为多头 / 空头价格比，成交量取两者均值"""
        rows: List[Dict[str, Any]] = []
        for (_, lg), (_, sh) in zip(pair.long.iterrows(), pair.short.iterrows()):
            rows.append({
                "timestamp": int(lg["timestamp"]),
                "open": _ratio(lg["open"], sh["open"]),
                "high": _ratio(lg["high"], sh["high"]),
                "low": _ratio(lg["low"], sh["low"]),
                "close": _ratio(lg["close"], sh["close"]),
                "volume": round((lg["volume"] + sh["volume"]) / 2, 8),
            })
        return rows

    def close_ratios(self, pair: AlignedPair, length: int) -> List[float]:
        """
        最近 length 个收盘价比值；不足时用首个值在左侧补齐
        比值为 0（空头价格为 0）的日期被剔除
        """
        values = [
            _ratio(lg, sh)
            for lg, sh in zip(pair.long["close"].tolist(), pair.short["close"].tolist())
        ]
        values = [v for v in values if v != 0]
        if values and len(values) < length:
            values = [values[0]] * (length - len(values)) + values
        return values[-length:]


def _ratio(numerator: float, denominator: float) -> float:
    return round(float(numerator) / float(denominator), 8) if denominator != 0 else 0.0


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
