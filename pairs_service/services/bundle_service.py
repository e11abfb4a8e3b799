"""
批量组合分析服务（策略排行榜）
组合池 × 回看窗口全量扫描：
  去重拉取 → 对齐 → 单窗口统计 → 多窗口聚合 → 过滤 / 排序 / 截断 → 写入 TTL 缓存

单个组合或单个窗口的失败只剔除该单元，不会中断整个批次。
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from pairs_service.config import settings
from pairs_service.errors import (
    ComputationError,
    DataFetchError,
    InsufficientSampleError,
    InvalidRequestError,
)
from pairs_service.layers.acquisition import FundingFees, fetch_funding_fees, gather_settled
from pairs_service.layers.aggregation import (
    DEFAULT_WINDOWS,
    AggregatedResult,
    best_metric,
    get_aggregation_layer,
    min_days_for,
)
from pairs_service.layers.analysis import get_analysis_layer
from pairs_service.layers.cache import FetchMemo, StrategyCache, bundle_cache_key
from pairs_service.layers.processing import AlignedPair, get_processing_layer
from pairs_service.universe import (
    UNIVERSE_DESCRIPTIONS,
    candidate_pairs,
    funding_fees_for,
    long_tokens_for,
    market_cap_alignment,
)

logger = logging.getLogger(__name__)

RISK_FILTERS = ("ALL", "LOW", "MEDIUM", "HIGH")

WINDOW_FILTERS: Dict[str, Tuple[int, ...]] = {
    "ALL": DEFAULT_WINDOWS,
    "30d": (30,),
    "60d": (60,),
    "100d": (100,),
}

SORT_KEYS: Dict[str, Callable[[AggregatedResult], float]] = {
    "APR": lambda r: r.apr,
    "WIN_RATE": lambda r: best_metric(r, "win_rate"),
    "SHARPE_RATIO": lambda r: best_metric(r, "sharpe_ratio"),
    "CONSISTENCY": lambda r: best_metric(r, "consistency_score"),
    "SCORE": lambda r: r.overall_score,
}

PairSource = Callable[[str], List[Tuple[str, str]]]


@dataclass(frozen=True)
class PreparedSeries:
    """单个 (symbol, window) 拉取并预处理后的结果，在批次内被所有组合共享"""
    raw_days: int
    frame: pd.DataFrame


@dataclass(frozen=True)
class BundleRequest:
    limit: int
    risk_level: str
    time_period: str
    sort_by: str
    strategy_type: str

    @property
    def windows(self) -> Tuple[int, ...]:
        return WINDOW_FILTERS[self.time_period]

    @property
    def cache_key(self) -> str:
        return bundle_cache_key(
            self.limit, self.risk_level, self.time_period, self.sort_by, self.strategy_type
        )


def normalize_request(
    limit: Optional[int] = None,
    risk_level: str = "ALL",
    time_period: str = "ALL",
    sort_by: str = "APR",
    strategy_type: str = "MAJOR",
) -> BundleRequest:
    """校验并规范化批量请求参数"""
    limit = settings.BUNDLE_DEFAULT_LIMIT if limit is None else int(limit)
    if limit < 1:
        raise InvalidRequestError(f"limit 必须为正整数: {limit}")

    risk_level = risk_level.strip().upper()
    if risk_level not in RISK_FILTERS:
        raise InvalidRequestError(f"不支持的风险等级: {risk_level}，支持: {list(RISK_FILTERS)}")

    time_period = time_period.strip()
    time_period = "ALL" if time_period.upper() == "ALL" else time_period.lower()
    if time_period not in WINDOW_FILTERS:
        raise InvalidRequestError(f"不支持的时间窗口: {time_period}，支持: {list(WINDOW_FILTERS)}")

    sort_by = sort_by.strip().upper()
    if sort_by not in SORT_KEYS:
        raise InvalidRequestError(f"不支持的排序字段: {sort_by}，支持: {list(SORT_KEYS)}")

    strategy_type = strategy_type.strip().upper()
    long_tokens_for(strategy_type)

    return BundleRequest(limit, risk_level, time_period, sort_by, strategy_type)


class BundleService:
    """批量组合分析业务服务"""

    def __init__(
        self,
        fetcher,
        cache: StrategyCache,
        pair_source: PairSource = candidate_pairs,
        funding_source=None,
    ):
        """
        Args:
            fetcher: 行情数据源，需提供 async fetch(symbol, interval, limit)
            cache: 进程级结果缓存（由应用启动时创建并传入）
            pair_source: 组合池生成函数 strategy_type -> [(long, short)]
            funding_source: 资金费率数据源，每次批量分析只取一次；可为空
        """
        self._fetcher = fetcher
        self._cache = cache
        self._pair_source = pair_source
        self._funding_source = funding_source
        self._proc = get_processing_layer()
        self._analysis = get_analysis_layer()
        self._aggregation = get_aggregation_layer()

    # ── 对外接口 ──────────────────────────────────────────

    async def get_bundles(
        self,
        limit: Optional[int] = None,
        risk_level: str = "ALL",
        time_period: str = "ALL",
        sort_by: str = "APR",
        strategy_type: str = "MAJOR",
    ) -> Dict[str, Any]:
        request = normalize_request(limit, risk_level, time_period, sort_by, strategy_type)

        cached = self._cache.get(request.cache_key)
        if cached is not None:
            logger.info(f"📦 策略排行命中缓存: {request.cache_key}")
            return cached

        started = time.time()
        pairs = self._pair_source(request.strategy_type)
        logger.info(
            f"📡 开始批量分析: {len(pairs)} 个组合 × 窗口 {list(request.windows)} "
            f"(strategy_type={request.strategy_type})"
        )

        memo: FetchMemo[PreparedSeries] = FetchMemo(self._load)
        fees, failed = await asyncio.gather(
            fetch_funding_fees(self._funding_source),
            self._fetch_all(memo, pairs, request.windows),
        )

        analyzed: List[Tuple[AggregatedResult, List[float]]] = []
        for long_token, short_token in pairs:
            try:
                outcome = self._analyze_pair(memo, long_token, short_token, request.windows)
            except Exception as exc:
                error = ComputationError(f"{long_token}/{short_token}", exc)
                logger.warning(f"⚠️ {error.message}")
                continue
            if outcome is not None:
                analyzed.append(outcome)

        filtered = [
            item for item in analyzed
            if request.risk_level == "ALL" or item[0].risk_level == request.risk_level
        ]
        sort_key = SORT_KEYS[request.sort_by]
        filtered.sort(key=lambda item: sort_key(item[0]), reverse=True)
        top = filtered[:request.limit]

        payload = {
            "strategies": [
                self._strategy_entry(rank, result, values, fees)
                for rank, (result, values) in enumerate(top, start=1)
            ],
            "total_candidates": len(pairs),
            "total_analyzed": len(analyzed),
            "total_filtered": len(filtered),
            "returned": len(top),
            "filters": {
                "limit": request.limit,
                "risk_level": request.risk_level,
                "time_period": request.time_period,
                "sort_by": request.sort_by,
                "strategy_type": request.strategy_type,
            },
            "strategy_type": request.strategy_type,
            "strategy_info": UNIVERSE_DESCRIPTIONS.get(request.strategy_type, ""),
            "fetch_calls": len(memo),
            "failed_fetches": failed,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "elapsed_seconds": round(time.time() - started, 3),
            "cached": False,
        }
        self._cache.set(request.cache_key, payload)
        logger.info(
            f"✅ 批量分析完成: 候选 {len(pairs)} / 有效 {len(analyzed)} / "
            f"过滤后 {len(filtered)} / 返回 {len(top)}，拉取 {len(memo)} 次，"
            f"耗时 {payload['elapsed_seconds']}s"
        )
        return payload

    # ── 拉取（批次内去重） ─────────────────────────────────

    async def _load(self, symbol: str, window: int) -> PreparedSeries:
        """拉取并预处理；任何失败都归一为 DataFetchError，只剔除该 (symbol, window)"""
        try:
            rows = await self._fetcher.fetch(symbol, settings.KLINE_INTERVAL, window)
            return PreparedSeries(raw_days=len(rows), frame=self._proc.prepare(rows))
        except DataFetchError:
            raise
        except Exception as exc:
            raise DataFetchError(symbol, str(exc)) from exc

    @staticmethod
    async def _fetch_all(
        memo: FetchMemo[PreparedSeries],
        pairs: List[Tuple[str, str]],
        windows: Tuple[int, ...],
    ) -> List[str]:
        """为所有组合发起拉取，等待全部完成；返回失败的 symbol:window 列表"""
        operations = {}
        for long_token, short_token in pairs:
            for window in windows:
                for symbol in (long_token, short_token):
                    operations[(symbol, window)] = memo.get(symbol, window)

        _, failures = await gather_settled(operations)
        for (symbol, window), exc in failures.items():
            logger.warning(f"❌ 拉取失败 {symbol} {window}d: {exc}")
        return sorted(f"{symbol}:{window}" for symbol, window in failures)

    # ── 单组合分析 ────────────────────────────────────────

    def _analyze_pair(
        self,
        memo: FetchMemo[PreparedSeries],
        long_token: str,
        short_token: str,
        windows: Tuple[int, ...],
    ) -> Optional[Tuple[AggregatedResult, List[float]]]:
        """返回 (聚合结果, 比值序列)；没有任何合格窗口时返回 None"""
        stats_by_window = {}
        latest: Optional[AlignedPair] = None

        for window in sorted(windows):
            try:
                long_series = memo.result(long_token, window)
                short_series = memo.result(short_token, window)
            except DataFetchError as exc:
                logger.debug(f"{long_token}/{short_token} {window}d 跳过: {exc.message}")
                continue

            aligned = self._proc.synchronize(long_series.frame, short_series.frame)
            if len(aligned):
                latest = aligned
            try:
                stats_by_window[window] = self._analysis.analyze(
                    long_token,
                    short_token,
                    aligned,
                    window=window,
                    min_days=min_days_for(window),
                    total_days=min(long_series.raw_days, short_series.raw_days),
                )
            except InsufficientSampleError as exc:
                logger.debug(f"{long_token}/{short_token} {window}d 跳过: {exc.message}")

        if not stats_by_window:
            return None

        result = self._aggregation.aggregate(long_token, short_token, stats_by_window)
        values = self._proc.close_ratios(latest, settings.BUNDLE_VALUES_LENGTH) if latest is not None else []
        return result, values

    @staticmethod
    def _strategy_entry(
        rank: int,
        result: AggregatedResult,
        values: List[float],
        fees: FundingFees,
    ) -> Dict[str, Any]:
        m100 = result.metrics.get("100d")
        return {
            "rank": rank,
            "pair": result.pair,
            "long_token": result.long_token,
            "short_token": result.short_token,
            "overall_score": round(result.overall_score, 2),
            "risk_level": result.risk_level,
            "recommendation": result.consensus_recommendation,
            "confidence": round(result.confidence, 1),
            "apr": result.apr,
            "metrics": {
                label: stats.model_dump(exclude={"daily_profits"})
                for label, stats in result.metrics.items()
            },
            "market_cap_alignment": market_cap_alignment(result.long_token, result.short_token),
            **funding_fees_for(result.long_token, result.short_token, fees),
            "win_rate_100d": m100.win_rate if m100 is not None else 0.0,
            "avg_daily_profit_100d": m100.average_daily_profit if m100 is not None else 0.0,
            "total_profit_100d": m100.total_profit if m100 is not None else 0.0,
            "values": values,
        }
