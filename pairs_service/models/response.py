"""统一 API 响应模型与请求 / 结果模型"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from pairs_service.layers.analysis import PeriodStats, Recommendation


class ApiResponse(BaseModel):
    """标准 API 响应封装"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)


class AnalyzeRequest(BaseModel):
    """单组合分析请求"""
    long_token: str = Field(min_length=1)
    short_token: str = Field(min_length=1)
    time_period: Optional[int] = Field(default=None, gt=0, le=1000)


class PairAnalysis(BaseModel):
    """单组合、单窗口的分析结果"""
    pair: str
    window: int
    stats: PeriodStats
    recommendation: Recommendation
    recommendation_score: float
    confidence: float
    market_cap_alignment: Dict[str, Any]
    funding_fee_long: Optional[str] = None
    funding_fee_short: Optional[str] = None
