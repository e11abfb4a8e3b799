"""
策略排行路由
GET /api/strategy-bundles        - 组合池批量分析排行榜（带 TTL 缓存）
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from pairs_service.models.response import ApiResponse
from pairs_service.routers.deps import get_bundle_service
from pairs_service.services.bundle_service import BundleService

router = APIRouter(prefix="/api", tags=["策略排行"])


@router.get("/strategy-bundles", response_model=ApiResponse)
async def strategy_bundles(
    limit: Optional[int] = Query(default=None, description="返回数量，默认 BUNDLE_DEFAULT_LIMIT"),
    risk_level: str = Query(default="ALL", description="风险过滤: ALL / LOW / MEDIUM / HIGH"),
    time_period: str = Query(default="ALL", description="窗口过滤: ALL / 30d / 60d / 100d"),
    sort_by: str = Query(default="APR", description="排序: APR / WIN_RATE / SHARPE_RATIO / CONSISTENCY / SCORE"),
    strategy_type: str = Query(default="MAJOR", description="组合池: MAJOR / BTC_ETH"),
    svc: BundleService = Depends(get_bundle_service),
):
    """批量分析组合池并返回排行"""
    payload = await svc.get_bundles(
        limit=limit,
        risk_level=risk_level,
        time_period=time_period,
        sort_by=sort_by,
        strategy_type=strategy_type,
    )
    source = "缓存" if payload.get("cached") else "实时计算"
    return ApiResponse.ok(data=payload, message=f"返回 {payload['returned']} 个组合（{source}）")
