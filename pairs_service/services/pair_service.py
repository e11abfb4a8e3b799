"""
单组合分析服务
整合数据获取、处理、分析三层：拉取两腿日线 → 对齐 → 单窗口统计
错误直接抛给调用方（DataFetchError / InsufficientSampleError / InvalidRequestError）
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pairs_service.config import settings
from pairs_service.errors import DataFetchError, InsufficientSampleError, InvalidRequestError
from pairs_service.layers.acquisition import fetch_funding_fees, gather_settled
from pairs_service.layers.analysis import get_analysis_layer
from pairs_service.layers.processing import AlignedPair, get_processing_layer
from pairs_service.models.response import PairAnalysis
from pairs_service.universe import funding_fees_for, market_cap_alignment, normalize_symbol

logger = logging.getLogger(__name__)


class PairService:
    """单组合业务服务"""

    def __init__(self, fetcher, funding_source=None):
        """
        Args:
            fetcher: 行情数据源，需提供 async fetch(symbol, interval, limit)
            funding_source: 资金费率数据源，需提供 async fetch() → {代币: {"long", "short"}}；可为空
        """
        self._fetcher = fetcher
        self._funding_source = funding_source
        self._proc = get_processing_layer()
        self._analysis = get_analysis_layer()

    # ── 参数校验 ──────────────────────────────────────────

    @staticmethod
    def _normalize(long_token: str, short_token: str, window: Optional[int]) -> Tuple[str, str, int]:
        long_symbol = normalize_symbol(long_token)
        short_symbol = normalize_symbol(short_token)
        if long_symbol == short_symbol:
            raise InvalidRequestError("多头与空头代币不能相同")
        window = settings.DEFAULT_WINDOW if window is None else int(window)
        if window <= 0:
            raise InvalidRequestError(f"回看天数必须为正数: {window}")
        return long_symbol, short_symbol, window

    # ── 数据拉取 + 对齐 ───────────────────────────────────

    async def _fetch_aligned(
        self, long_symbol: str, short_symbol: str, window: int
    ) -> Tuple[AlignedPair, int]:
        """并发拉取两腿并对齐，返回 (对齐序列, 原始天数)"""
        successes, failures = await gather_settled({
            long_symbol: self._fetcher.fetch(long_symbol, settings.KLINE_INTERVAL, window),
            short_symbol: self._fetcher.fetch(short_symbol, settings.KLINE_INTERVAL, window),
        })
        for symbol in (long_symbol, short_symbol):
            if symbol in failures:
                exc = failures[symbol]
                if isinstance(exc, DataFetchError):
                    raise exc
                raise DataFetchError(symbol, str(exc)) from exc

        long_raw, short_raw = successes[long_symbol], successes[short_symbol]
        aligned = self._proc.align(long_raw, short_raw)
        return aligned, min(len(long_raw), len(short_raw))

    # ── 对外接口 ──────────────────────────────────────────

    async def analyze(
        self,
        long_token: str,
        short_token: str,
        window: Optional[int] = None,
    ) -> PairAnalysis:
        """
        分析单个多空组合

        Args:
            long_token: 做多代币（可省略 USDT 后缀）
            short_token: 做空代币
            window: 回看天数，默认 DEFAULT_WINDOW
        """
        long_symbol, short_symbol, window = self._normalize(long_token, short_token, window)
        aligned, raw_days = await self._fetch_aligned(long_symbol, short_symbol, window)

        stats = self._analysis.analyze(
            long_symbol,
            short_symbol,
            aligned,
            window=window,
            min_days=settings.MIN_ANALYSIS_DAYS,
            total_days=raw_days,
        )
        fees = await fetch_funding_fees(self._funding_source)
        logger.info(
            f"LONG {long_symbol}/SHORT {short_symbol} {window}d: "
            f"win_rate={stats.win_rate:.1f} profit={stats.total_profit:.2f} rec={stats.recommendation}"
        )
        return PairAnalysis(
            pair=f"LONG {long_symbol}/SHORT {short_symbol}",
            window=window,
            stats=stats,
            recommendation=stats.recommendation,
            recommendation_score=stats.recommendation_score,
            confidence=stats.confidence,
            market_cap_alignment=market_cap_alignment(long_symbol, short_symbol),
            **funding_fees_for(long_symbol, short_symbol, fees),
        )

    async def ratio_history(
        self,
        long_token: str,
        short_token: str,
        window: Optional[int] = None,
    ) -> Dict[str, Any]:
        """多空价格比值 K 线"""
        long_symbol, short_symbol, window = self._normalize(long_token, short_token, window)
        aligned, _ = await self._fetch_aligned(long_symbol, short_symbol, window)
        if len(aligned) == 0:
            raise InsufficientSampleError(0, 1, window)

        klines: List[Dict[str, Any]] = self._proc.ratio_klines(aligned)
        return {
            "symbol": f"{long_symbol}/{short_symbol}",
            "long_token": long_symbol,
            "short_token": short_symbol,
            "data": klines,
            "count": len(klines),
        }
