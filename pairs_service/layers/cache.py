"""
Layer 5 – 缓存层
  StrategyCache : 进程级批量结果缓存（固定 TTL，惰性过期 + 写入时清扫）
  FetchMemo     : 单次批量运行内 (symbol, window) 的拉取 / 预处理去重
"""

import asyncio
import copy
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from pairs_service.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BUNDLE_NS = "strategy-bundles"


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def bundle_cache_key(
    limit: int,
    risk_level: str,
    time_period: str,
    sort_by: str,
    strategy_type: str,
) -> str:
    """批量请求参数规范化后生成缓存键，等价请求必然得到同一个键"""
    return _make_key(
        _BUNDLE_NS,
        str(int(limit)),
        risk_level.strip().upper(),
        time_period.strip().lower() if time_period.strip().upper() != "ALL" else "ALL",
        sort_by.strip().upper(),
        strategy_type.strip().upper(),
    )


@dataclass(frozen=True)
class CacheEntry:
    key: str
    stored_at: float
    payload: Dict[str, Any]


class StrategyCache:
    """
    批量分析结果缓存

    条目整体替换、从不原地修改，并发读取者只会看到完整的旧条目或新条目。
    未命中时不做单飞合并，同时到达的相同请求各自重算，后写者覆盖。
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.ttl = float(settings.BUNDLE_CACHE_TTL if ttl is None else ttl)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def is_valid(self, entry: Optional[CacheEntry], now: Optional[float] = None) -> bool:
        if entry is None:
            return False
        now = self._clock() if now is None else now
        return now - entry.stored_at < self.ttl

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """命中时返回带缓存年龄的副本；过期条目在此处清除"""
        entry = self._entries.get(key)
        now = self._clock()
        if self.is_valid(entry, now):
            age = now - entry.stored_at
            logger.debug(f"缓存命中: {key}（{age:.1f}s）")
            result = copy.deepcopy(entry.payload)
            result["cached"] = True
            result["cache_age_seconds"] = age
            result["cache_expires_in_seconds"] = self.ttl - age
            return result

        if entry is not None:
            self._discard(entry)
            logger.debug(f"缓存过期已清除: {key}")
        else:
            logger.debug(f"缓存未命中: {key}")
        return None

    def set(self, key: str, payload: Dict[str, Any]) -> None:
        self._entries[key] = CacheEntry(key=key, stored_at=self._clock(), payload=copy.deepcopy(payload))
        logger.debug(f"缓存写入: {key}")
        self.sweep()

    def sweep(self) -> int:
        """清除全部过期条目，返回清除数量"""
        now = self._clock()
        expired = [entry for entry in list(self._entries.values()) if not self.is_valid(entry, now)]
        for entry in expired:
            self._discard(entry)
        if expired:
            logger.debug(f"清扫过期缓存 {len(expired)} 条")
        return len(expired)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> Dict[str, Any]:
        """条目总数 / 有效 / 过期，以及最早、最新条目"""
        now = self._clock()
        entries = list(self._entries.values())
        valid = sum(1 for e in entries if self.is_valid(e, now))
        oldest = min(entries, key=lambda e: e.stored_at, default=None)
        newest = max(entries, key=lambda e: e.stored_at, default=None)
        return {
            "total_entries": len(entries),
            "valid_entries": valid,
            "expired_entries": len(entries) - valid,
            "oldest_entry": {"key": oldest.key, "stored_at": oldest.stored_at} if oldest else None,
            "newest_entry": {"key": newest.key, "stored_at": newest.stored_at} if newest else None,
            "ttl_seconds": self.ttl,
        }

    def _discard(self, entry: CacheEntry) -> None:
        # 只删除仍是同一对象的条目，避免误删并发写入的新条目
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def __len__(self) -> int:
        return len(self._entries)


class FetchMemo(Generic[T]):
    """
    单次批量运行内的拉取去重

    同一 (symbol, window) 只调用一次 loader，后续请求复用同一个 Future，
    外部调用次数与唯一 (symbol, window) 数量成正比，而非组合数量。
    运行结束即丢弃，不跨批次共享。
    """

    def __init__(self, loader: Callable[[str, int], Awaitable[T]]):
        self._loader = loader
        self._futures: Dict[Tuple[str, int], "asyncio.Future[T]"] = {}

    def get(self, symbol: str, window: int) -> "asyncio.Future[T]":
        key = (symbol, window)
        future = self._futures.get(key)
        if future is None:
            future = asyncio.ensure_future(self._loader(symbol, window))
            self._futures[key] = future
        return future

    def result(self, symbol: str, window: int) -> T:
        """取已完成的结果；失败时重新抛出原异常"""
        return self._futures[(symbol, window)].result()

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return key in self._futures

    def __len__(self) -> int:
        return len(self._futures)
