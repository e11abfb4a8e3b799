"""
Layer 4 – 多窗口聚合层
将同一组合在 30 / 60 / 100 天窗口上的统计合并为一个结论：
综合评分、风险等级、共识推荐、平均置信度与年化收益（APR）。
只有有效天数达到窗口自身门槛的"合格窗口"才参与计算。
"""

import logging
from typing import Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel

from pairs_service.config import settings
from pairs_service.layers.analysis import PeriodStats, Recommendation

logger = logging.getLogger(__name__)

RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]

DEFAULT_WINDOWS: Tuple[int, ...] = (30, 60, 100)
WINDOW_WEIGHTS: Dict[int, float] = {30: 0.50, 60: 0.30, 100: 0.20}
WINDOW_MIN_DAYS: Dict[int, int] = {30: 25, 60: 50, 100: 80}

_RECOMMENDATION_BONUS: Dict[str, float] = {"STRONG_BUY": 10, "BUY": 7, "HOLD": 4}
_HOLD_OR_BETTER = ("STRONG_BUY", "BUY", "HOLD")
_BUY_OR_BETTER = ("STRONG_BUY", "BUY")


def window_label(window: int) -> str:
    return f"{window}d"


def min_days_for(window: int) -> int:
    return WINDOW_MIN_DAYS.get(window, settings.MIN_ANALYSIS_DAYS)


class AggregatedResult(BaseModel):
    """单个组合的多窗口聚合结论"""

    pair: str
    long_token: str
    short_token: str
    metrics: Dict[str, PeriodStats]
    overall_score: float
    risk_level: RiskLevel
    consensus_recommendation: Recommendation
    confidence: float
    apr: float


def qualifying(stats_by_window: Mapping[int, PeriodStats]) -> Dict[int, PeriodStats]:
    """筛出有效天数达到各自窗口门槛的窗口"""
    return {
        window: stats
        for window, stats in stats_by_window.items()
        if stats is not None and stats.valid_days >= min_days_for(window)
    }


def window_composite(stats: PeriodStats) -> float:
    """单窗口综合分：胜率、收益、夏普、一致性与分类推荐的加权"""
    win_rate_score = min(stats.win_rate, 100) * 0.3
    profit_score = max(0.0, min(stats.total_profit, 200)) * 0.25
    sharpe_score = max(0.0, min(stats.sharpe_ratio * 10, 20)) * 0.2
    consistency_score = min(stats.consistency_score, 100) * 0.15
    recommendation_score = _RECOMMENDATION_BONUS.get(stats.recommendation, 0) * 0.1
    return win_rate_score + profit_score + sharpe_score + consistency_score + recommendation_score


def overall_score(stats_by_window: Mapping[int, PeriodStats]) -> float:
    weighted = 0.0
    total_weight = 0.0
    for window, stats in qualifying(stats_by_window).items():
        weight = WINDOW_WEIGHTS.get(window, 0.0)
        if weight <= 0:
            continue
        weighted += window_composite(stats) * weight
        total_weight += weight
    return weighted / total_weight if total_weight > 0 else 0.0


def risk_level(stats_by_window: Mapping[int, PeriodStats]) -> RiskLevel:
    q = qualifying(stats_by_window)
    m30, m60, m100 = q.get(30), q.get(60), q.get(100)
    if m30 is None and m60 is None and m100 is None:
        return "HIGH"

    low_30 = m30 is not None and m30.win_rate >= 58 and m30.total_profit >= 10 and m30.sharpe_ratio >= 0.05
    low_60 = m60 is not None and m60.win_rate >= 55 and m60.total_profit >= 15
    low_100 = m100 is not None and m100.win_rate >= 50 and m100.total_profit >= 20

    medium_30 = m30 is not None and m30.win_rate >= 52 and m30.total_profit >= 5
    medium_60 = m60 is not None and m60.win_rate >= 50 and m60.total_profit >= 8
    medium_100 = m100 is not None and m100.win_rate >= 48

    if low_30 and (low_60 or low_100):
        return "LOW"
    if medium_30 and (medium_60 or medium_100):
        return "MEDIUM"
    if low_30:
        return "MEDIUM"
    return "HIGH"


def consensus_recommendation(stats_by_window: Mapping[int, PeriodStats]) -> Recommendation:
    """
    共识推荐：30 天窗口优先

    30 天 STRONG_BUY 需其他合格窗口至少 HOLD 支撑，否则降为 BUY；
    30 天 BUY 需其他合格窗口至少 BUY 支撑；
    其余情况统计全部合格窗口中 STRONG_BUY / BUY 的出现次数。
    """
    q = qualifying(stats_by_window)
    others = [stats.recommendation for window, stats in q.items() if window != 30]

    if 30 in q:
        recent = q[30].recommendation
        if recent == "STRONG_BUY":
            return "STRONG_BUY" if any(r in _HOLD_OR_BETTER for r in others) else "BUY"
        if recent == "BUY" and any(r in _BUY_OR_BETTER for r in others):
            return "BUY"

    strong_buy = sum(1 for stats in q.values() if stats.recommendation == "STRONG_BUY")
    buy = sum(1 for stats in q.values() if stats.recommendation == "BUY")
    if strong_buy >= 2:
        return "STRONG_BUY"
    if buy >= 2 or (buy >= 1 and strong_buy >= 1):
        return "BUY"
    return "HOLD"


def average_confidence(stats_by_window: Mapping[int, PeriodStats]) -> float:
    q = qualifying(stats_by_window)
    if not q:
        return 0.0
    return sum(stats.confidence for stats in q.values()) / len(q)


def _prices_known(stats: PeriodStats) -> bool:
    prices = (
        stats.long_first_close, stats.long_last_close,
        stats.short_first_close, stats.short_last_close,
    )
    return all(p is not None for p in prices) and stats.long_first_close > 0 and stats.short_first_close > 0


def annualized_return(stats_by_window: Mapping[int, PeriodStats]) -> float:
    """
    APR：优先取最长的合格窗口（100d > 60d > 30d）

    两腿首尾价格已知时，总收益 = 0.5 × 多头收益 + 0.5 × 空头反向收益，
    否则使用窗口内累计策略收益；再按窗口天数年化，保留 1 位小数。
    """
    q = qualifying(stats_by_window)
    for window in sorted(q, reverse=True):
        stats = q[window]
        if _prices_known(stats):
            long_return = (stats.long_last_close - stats.long_first_close) / stats.long_first_close * 100
            short_return = -(stats.short_last_close - stats.short_first_close) / stats.short_first_close * 100
            total_return = 0.5 * long_return + 0.5 * short_return
        else:
            total_return = stats.total_profit
        return round(total_return / window * 365, 1)
    return 0.0


def best_metric(result: AggregatedResult, field: str) -> float:
    """合格窗口中某指标的最大值，下限为 0（全部为负或无合格窗口时均为 0）"""
    return max(0.0, max((getattr(stats, field) for stats in result.metrics.values()), default=0.0))


class AggregationLayer:
    """多窗口聚合层"""

    def aggregate(
        self,
        long_token: str,
        short_token: str,
        stats_by_window: Mapping[int, PeriodStats],
    ) -> AggregatedResult:
        dropped = set(stats_by_window) - set(qualifying(stats_by_window))
        if dropped:
            logger.debug(f"{long_token}/{short_token}: 窗口 {sorted(dropped)} 样本不足，不参与聚合")
        result = AggregatedResult(
            pair=f"{long_token}/{short_token}",
            long_token=long_token,
            short_token=short_token,
            metrics={window_label(w): s for w, s in sorted(qualifying(stats_by_window).items())},
            overall_score=overall_score(stats_by_window),
            risk_level=risk_level(stats_by_window),
            consensus_recommendation=consensus_recommendation(stats_by_window),
            confidence=average_confidence(stats_by_window),
            apr=annualized_return(stats_by_window),
        )
        logger.debug(
            f"{result.pair}: score={result.overall_score:.2f} risk={result.risk_level} "
            f"rec={result.consensus_recommendation} apr={result.apr}"
        )
        return result


# ── 模块级别单例 ──────────────────────────────────────────
_aggregation: Optional[AggregationLayer] = None


def get_aggregation_layer() -> AggregationLayer:
    global _aggregation
    if _aggregation is None:
        _aggregation = AggregationLayer()
    return _aggregation
