"""
Layer 3 – 策略分析层
在对齐后的多空序列上计算单窗口策略统计：胜率、收益、连胜/连亏、
波动率、夏普、最大回撤、一致性，以及 0-10 的推荐评分与分类推荐。
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, Field

from pairs_service.config import settings
from pairs_service.errors import InsufficientSampleError
from pairs_service.layers.processing import AlignedPair

logger = logging.getLogger(__name__)

Recommendation = Literal["STRONG_BUY", "BUY", "HOLD", "SELL", "STRONG_SELL"]

RSI_PERIOD = 14
RECENT_VOLATILITY_DAYS = 10


class PeriodStats(BaseModel):
    """单个组合在单个回看窗口内的统计结果"""

    long_token: str
    short_token: str
    window: Optional[int] = None

    total_days: int
    valid_days: int
    winning_days: int
    losing_days: int
    win_rate: float
    loss_rate: float

    total_profit: float
    total_profit_from_prices: float
    average_daily_profit: float
    average_daily_gain: float
    average_daily_loss: float
    total_gain: float
    total_loss: float
    max_single_day_profit: float
    max_single_day_loss: float

    max_consecutive_winning_days: int
    max_consecutive_losing_days: int
    max_winning_streak_magnitude: float
    max_losing_streak_magnitude: float
    current_winning_streak: int
    current_losing_streak: int
    current_winning_magnitude: float
    current_losing_magnitude: float

    profit_volatility: float
    sharpe_ratio: float
    max_drawdown: float
    consistency_score: float
    rsi: float

    recommendation_score: float
    recommendation: Recommendation
    confidence: float

    long_first_close: Optional[float] = None
    long_last_close: Optional[float] = None
    short_first_close: Optional[float] = None
    short_last_close: Optional[float] = None

    daily_profits: List[float] = Field(default_factory=list)


# ── 推荐评分规则表 ─────────────────────────────────────────

@dataclass(frozen=True)
class ScoreSnapshot:
    """评分所需的只读快照，所有规则针对同一快照独立求值"""

    win_rate: float
    total_profit: float
    current_losing_streak: int
    current_losing_magnitude: float
    win_streak_ratio: float       # 当前连胜天数 / 历史最长连胜天数
    win_magnitude_ratio: float    # 当前连胜累计收益 / 历史最大连胜累计收益
    volatility_score: int
    rsi_score: int


@dataclass(frozen=True)
class ScoreRule:
    name: str
    predicate: Callable[[ScoreSnapshot], bool]
    delta: Union[float, Callable[[ScoreSnapshot], float]]

    def apply(self, snapshot: ScoreSnapshot) -> float:
        if not self.predicate(snapshot):
            return 0.0
        return self.delta(snapshot) if callable(self.delta) else self.delta


def _always(_: ScoreSnapshot) -> bool:
    return True


BASE_SCORE = 5.0

SCORE_RULES: Tuple[ScoreRule, ...] = (
    # 胜率
    ScoreRule("win_rate_below_45", lambda s: s.win_rate < 45, -3.0),
    ScoreRule("win_rate_below_50", lambda s: 45 <= s.win_rate < 50, -2.0),
    ScoreRule("win_rate_below_55", lambda s: 50 <= s.win_rate < 55, -1.0),
    ScoreRule("win_rate_from_60", lambda s: s.win_rate >= 60, 1.0),
    ScoreRule("win_rate_from_55", lambda s: 55 <= s.win_rate < 60, 0.5),
    # 累计收益
    ScoreRule("profit_below_minus_20", lambda s: s.total_profit < -20, -2.0),
    ScoreRule("profit_below_minus_10", lambda s: -20 <= s.total_profit < -10, -1.0),
    ScoreRule("profit_below_0", lambda s: -10 <= s.total_profit < 0, -0.5),
    ScoreRule("profit_from_50", lambda s: s.total_profit >= 50, 1.0),
    ScoreRule("profit_from_20", lambda s: 20 <= s.total_profit < 50, 0.5),
    # 当前连亏：均值回归机会
    ScoreRule("losing_streak_from_3", lambda s: s.current_losing_streak >= 3, 2.0),
    ScoreRule("losing_streak_2", lambda s: s.current_losing_streak == 2, 1.0),
    ScoreRule("losing_magnitude_from_5", lambda s: s.current_losing_magnitude >= 5, 1.5),
    ScoreRule("losing_magnitude_from_3", lambda s: 3 <= s.current_losing_magnitude < 5, 1.0),
    # 当前连胜已消耗历史最长连胜的比例
    ScoreRule("win_streak_ratio_from_0.8", lambda s: s.win_streak_ratio >= 0.8, -2.0),
    ScoreRule("win_streak_ratio_from_0.6", lambda s: 0.6 <= s.win_streak_ratio < 0.8, -1.0),
    ScoreRule("win_streak_ratio_from_0.4", lambda s: 0.4 <= s.win_streak_ratio < 0.6, -0.5),
    ScoreRule("win_magnitude_ratio_from_0.8", lambda s: s.win_magnitude_ratio >= 0.8, -1.5),
    ScoreRule("win_magnitude_ratio_from_0.6", lambda s: 0.6 <= s.win_magnitude_ratio < 0.8, -1.0),
    ScoreRule("win_magnitude_ratio_from_0.4", lambda s: 0.4 <= s.win_magnitude_ratio < 0.6, -0.5),
    ScoreRule(
        "fresh_opportunity",
        lambda s: s.win_streak_ratio < 0.3 and s.win_magnitude_ratio < 0.3,
        1.0,
    ),
    # 波动率与动量
    ScoreRule("volatility_regime", _always, lambda s: (s.volatility_score - 5) * 0.3),
    ScoreRule("rsi_momentum", _always, lambda s: (s.rsi_score - 5) * 0.4),
)


def evaluate_score(snapshot: ScoreSnapshot, rules: Sequence[ScoreRule] = SCORE_RULES) -> float:
    """依次累加规则增量，结果截断到 [0, 10] 并保留 1 位小数"""
    score = BASE_SCORE + sum(rule.apply(snapshot) for rule in rules)
    return round(min(10.0, max(0.0, score)), 1)


# ── 指标函数 ──────────────────────────────────────────────

def population_std(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def streaks(profits: Sequence[float], winning: bool) -> Tuple[int, float, int, float]:
    """
    计算同号连续日的统计

    Returns:
        (最长连续天数, 最大连续累计幅度, 当前（末尾）连续天数, 当前连续累计幅度)
        幅度取绝对值累加；收益恰为 0 的日期会中断连续。
    """
    max_count = count = 0
    max_magnitude = magnitude = 0.0
    for profit in profits:
        if (profit > 0) if winning else (profit < 0):
            count += 1
            magnitude += abs(profit)
            max_count = max(max_count, count)
            max_magnitude = max(max_magnitude, magnitude)
        else:
            count = 0
            magnitude = 0.0

    current_count = 0
    current_magnitude = 0.0
    for profit in reversed(profits):
        if not ((profit > 0) if winning else (profit < 0)):
            break
        current_count += 1
        current_magnitude += abs(profit)
    return max_count, max_magnitude, current_count, current_magnitude


def max_drawdown(profits: Sequence[float]) -> float:
    """累计收益曲线（起点 0）的最大峰谷回落"""
    if len(profits) == 0:
        return 0.0
    cumulative = np.cumsum(np.asarray(profits, dtype=float))
    peaks = np.maximum.accumulate(np.concatenate(([0.0], cumulative)))[1:]
    return float(max(0.0, (peaks - cumulative).max()))


def volatility_score(profits: Sequence[float]) -> int:
    """近 10 日波动率相对全序列波动率的区间评分"""
    if len(profits) < RECENT_VOLATILITY_DAYS:
        return 5
    historical = population_std(profits)
    if historical == 0:
        return 5
    ratio = population_std(profits[-RECENT_VOLATILITY_DAYS:]) / historical
    if ratio > 1.5:
        return 3
    if ratio > 1.2:
        return 4
    # 比值 <0.5 也归入 7 分档
    if ratio < 0.7:
        return 7
    return 5


def rsi(profits: Sequence[float], period: int = RSI_PERIOD) -> float:
    """以每日策略收益为变动量，计算末尾 period 日的 RSI"""
    if len(profits) < period + 1:
        return 50.0
    window = profits[-period:]
    avg_gain = sum(p for p in window if p > 0) / period
    avg_loss = sum(-p for p in window if p < 0) / period
    if avg_loss == 0:
        return 100.0
    if avg_gain == 0:
        return 0.0
    return 100 - 100 / (1 + avg_gain / avg_loss)


def rsi_score(profits: Sequence[float]) -> int:
    if len(profits) < RSI_PERIOD + 1:
        return 5
    value = rsi(profits)
    if value <= 30:
        return 8
    if value <= 40:
        return 7
    if value >= 70:
        return 2
    if value >= 60:
        return 3
    if value >= 50:
        return 5
    return 6


def classify(win_rate: float, average_daily_profit: float) -> Tuple[Recommendation, float]:
    """分类推荐与置信度（0-100）"""
    if win_rate >= 60 and average_daily_profit >= 0.5:
        recommendation = "STRONG_BUY"
    elif win_rate >= 55 and average_daily_profit >= 0.2:
        recommendation = "BUY"
    elif win_rate >= 50 and average_daily_profit >= 0:
        recommendation = "HOLD"
    elif win_rate >= 45:
        recommendation = "SELL"
    else:
        recommendation = "STRONG_SELL"

    if recommendation in ("STRONG_BUY", "BUY", "HOLD"):
        confidence = win_rate + average_daily_profit * 20
    else:
        confidence = 100 - win_rate + abs(average_daily_profit) * 20
    return recommendation, min(100.0, max(0.0, confidence))


def _price_return(first: float, last: float) -> float:
    return (last - first) / first * 100


class AnalysisLayer:
    """策略分析层：对齐序列 → PeriodStats"""

    def analyze(
        self,
        long_token: str,
        short_token: str,
        pair: AlignedPair,
        window: Optional[int] = None,
        min_days: Optional[int] = None,
        total_days: Optional[int] = None,
    ) -> PeriodStats:
        """
        计算单个组合在一个窗口内的完整统计

        Args:
            pair: 已对齐的多空序列
            window: 回看窗口天数（仅用于标注结果）
            min_days: 最少有效天数，默认 MIN_ANALYSIS_DAYS
            total_days: 对齐前的原始天数，默认等于对齐后长度

        Raises:
            InsufficientSampleError: 对齐后长度不足 min_days
        """
        required = settings.MIN_ANALYSIS_DAYS if min_days is None else min_days
        valid_days = len(pair)
        if valid_days < max(required, 1):
            raise InsufficientSampleError(valid_days, required, window)

        profits = pair.differential().tolist()
        winning_days = sum(1 for p in profits if p > 0)
        losing_days = sum(1 for p in profits if p < 0)
        total_gain = sum(p for p in profits if p > 0)
        total_loss = sum(p for p in profits if p < 0)
        total_profit = float(np.sum(profits))

        average_daily_profit = total_profit / valid_days
        win_rate = winning_days / valid_days * 100
        loss_rate = losing_days / valid_days * 100

        volatility = population_std(profits)
        sharpe = average_daily_profit / volatility if volatility > 0 else 0.0
        deviation = population_std([p - average_daily_profit for p in profits])
        consistency = max(0.0, 100 - deviation * 10)

        max_win, max_win_mag, cur_win, cur_win_mag = streaks(profits, winning=True)
        max_loss, max_loss_mag, cur_loss, cur_loss_mag = streaks(profits, winning=False)

        long_first = float(pair.long["close"].iloc[0])
        long_last = float(pair.long["close"].iloc[-1])
        short_first = float(pair.short["close"].iloc[0])
        short_last = float(pair.short["close"].iloc[-1])
        profit_from_prices = 0.0
        if long_first > 0 and short_first > 0:
            profit_from_prices = (
                _price_return(long_first, long_last) - _price_return(short_first, short_last)
            )

        snapshot = ScoreSnapshot(
            win_rate=win_rate,
            total_profit=total_profit,
            current_losing_streak=cur_loss,
            current_losing_magnitude=cur_loss_mag,
            win_streak_ratio=cur_win / max_win if max_win > 0 else 0.0,
            win_magnitude_ratio=cur_win_mag / max_win_mag if max_win_mag > 0 else 0.0,
            volatility_score=volatility_score(profits),
            rsi_score=rsi_score(profits),
        )
        recommendation, confidence = classify(win_rate, average_daily_profit)

        return PeriodStats(
            long_token=long_token,
            short_token=short_token,
            window=window,
            total_days=max(valid_days, total_days or 0),
            valid_days=valid_days,
            winning_days=winning_days,
            losing_days=losing_days,
            win_rate=win_rate,
            loss_rate=loss_rate,
            total_profit=total_profit,
            total_profit_from_prices=profit_from_prices,
            average_daily_profit=average_daily_profit,
            average_daily_gain=total_gain / winning_days if winning_days else 0.0,
            average_daily_loss=total_loss / losing_days if losing_days else 0.0,
            total_gain=total_gain,
            total_loss=total_loss,
            max_single_day_profit=max(profits),
            max_single_day_loss=min(profits),
            max_consecutive_winning_days=max_win,
            max_consecutive_losing_days=max_loss,
            max_winning_streak_magnitude=max_win_mag,
            max_losing_streak_magnitude=max_loss_mag,
            current_winning_streak=cur_win,
            current_losing_streak=cur_loss,
            current_winning_magnitude=cur_win_mag,
            current_losing_magnitude=cur_loss_mag,
            profit_volatility=volatility,
            sharpe_ratio=sharpe,
            max_drawdown=max_drawdown(profits),
            consistency_score=consistency,
            rsi=rsi(profits),
            recommendation_score=evaluate_score(snapshot),
            recommendation=recommendation,
            confidence=confidence,
            long_first_close=long_first,
            long_last_close=long_last,
            short_first_close=short_first,
            short_last_close=short_last,
            daily_profits=profits,
        )


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
