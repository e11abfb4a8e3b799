"""
单组合分析路由
POST /api/analyze                - 单个多空组合的窗口统计与推荐
GET  /api/long-short-history     - 多空价格比值 K 线
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from pairs_service.models.response import AnalyzeRequest, ApiResponse
from pairs_service.routers.deps import get_pair_service
from pairs_service.services.pair_service import PairService

router = APIRouter(prefix="/api", tags=["组合分析"])


@router.post("/analyze", response_model=ApiResponse)
async def analyze_pair(body: AnalyzeRequest, svc: PairService = Depends(get_pair_service)):
    """分析单个多空组合（错误由全局处理器转换为对应状态码）"""
    result = await svc.analyze(body.long_token, body.short_token, body.time_period)
    return ApiResponse.ok(
        data=result.model_dump(exclude={"stats": {"daily_profits"}}),
        message=f"{result.pair} 分析完成",
    )


@router.get("/long-short-history", response_model=ApiResponse)
async def long_short_history(
    long_token: str = Query(..., description="做多代币，如 BTC 或 BTCUSDT"),
    short_token: str = Query(..., description="做空代币"),
    time_period: Optional[int] = Query(default=None, gt=0, le=1000, description="回看天数"),
    svc: PairService = Depends(get_pair_service),
):
    """获取多空价格比值 K 线"""
    history = await svc.ratio_history(long_token, short_token, time_period)
    return ApiResponse.ok(data=history)
