"""
测试公共工具
  - 合成 OHLCV 日线（固定涨跌幅 / 自定义涨跌幅序列）
  - 内存版 K 线数据源（记录调用次数，无网络）
"""

import os
import sys
from typing import Dict, Iterable, List, Optional

import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from pairs_service.errors import DataFetchError  # noqa: E402

DAY_MS = 86_400_000
START_TS = 1_704_067_200_000  # 2024-01-01 00:00:00 UTC


def _bar(ts: int, open_price: float, close_price: float, volume: float) -> dict:
    return {
        "timestamp": ts,
        "open": open_price,
        "high": max(open_price, close_price) * 1.01,
        "low": min(open_price, close_price) * 0.99,
        "close": close_price,
        "volume": volume,
    }


def _change_rows(
    changes: Iterable[float],
    open_price: float = 100.0,
    volume: float = 1000.0,
    start_ts: int = START_TS,
) -> List[dict]:
    """每日以 open_price 开盘，按给定百分比涨跌收盘"""
    return [
        _bar(start_ts + i * DAY_MS, open_price, open_price * (1 + change / 100), volume)
        for i, change in enumerate(changes)
    ]


def _constant_rows(
    n: int,
    open_price: float = 100.0,
    close_price: float = 101.0,
    volume: float = 1000.0,
    start_ts: int = START_TS,
) -> List[dict]:
    """n 根开收盘价固定的日线（日涨跌幅恒定）"""
    return [_bar(start_ts + i * DAY_MS, open_price, close_price, volume) for i in range(n)]


def _pattern_changes(seed: int, n: int = 100) -> List[float]:
    """确定性的涨跌幅序列，范围 ±1.5%"""
    return [((k * 7 + seed * 3) % 11 - 5) * 0.3 for k in range(n)]


class FakeFetcher:
    """内存 K 线数据源：fetch 返回最近 limit 条记录，并记录每次调用"""

    def __init__(self, rows_by_symbol: Dict[str, List[dict]], failing: Optional[Iterable[str]] = None):
        self.rows_by_symbol = rows_by_symbol
        self.failing = set(failing or ())
        self.calls: List[tuple] = []

    async def fetch(self, symbol: str, interval: Optional[str] = None, limit: int = 100) -> List[dict]:
        self.calls.append((symbol, interval, limit))
        if symbol in self.failing:
            raise DataFetchError(symbol, "HTTP 400: Invalid symbol.", status=400)
        rows = self.rows_by_symbol.get(symbol)
        if rows is None:
            raise DataFetchError(symbol, "未知交易对")
        return [dict(row) for row in rows[-limit:]]


class FakeFundingSource:
    """内存资金费率数据源：返回固定费率表，记录调用次数；failing=True 时抛出异常"""

    def __init__(self, fees: Optional[Dict[str, Dict[str, str]]] = None, failing: bool = False):
        self.fees = fees or {}
        self.failing = failing
        self.calls = 0

    async def fetch(self) -> Dict[str, Dict[str, str]]:
        self.calls += 1
        if self.failing:
            raise RuntimeError("funding api down")
        return dict(self.fees)


@pytest.fixture
def change_rows():
    return _change_rows


@pytest.fixture
def constant_rows():
    return _constant_rows


@pytest.fixture
def pattern_changes():
    return _pattern_changes


@pytest.fixture
def make_fetcher():
    """按 symbol 列表生成各不相同的 100 日数据，返回 FakeFetcher"""

    def factory(symbols: Iterable[str], failing: Optional[Iterable[str]] = None, days: int = 100) -> FakeFetcher:
        rows = {
            symbol: _change_rows(_pattern_changes(seed, days))
            for seed, symbol in enumerate(symbols)
        }
        return FakeFetcher(rows, failing=failing)

    return factory
