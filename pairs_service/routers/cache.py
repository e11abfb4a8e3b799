"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清理缓存
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pairs_service.layers.cache import StrategyCache
from pairs_service.models.response import ApiResponse
from pairs_service.routers.deps import get_strategy_cache

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    key: Optional[str] = None


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(cache: StrategyCache = Depends(get_strategy_cache)):
    """获取缓存统计信息（条目总数 / 有效 / 过期）"""
    return ApiResponse.ok(data=cache.stats())


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(
    body: Optional[ClearRequest] = None,
    cache: StrategyCache = Depends(get_strategy_cache),
):
    """清理指定键；未指定时清空全部缓存"""
    if body is not None and body.key:
        removed = 1 if cache.delete(body.key) else 0
        return ApiResponse.ok(data={"removed": removed}, message=f"缓存已清理: {body.key}")
    removed = cache.clear()
    return ApiResponse.ok(data={"removed": removed}, message=f"已清空全部缓存（{removed} 条）")
