"""健康检查路由"""

import time

from fastapi import APIRouter, Depends

from pairs_service import __version__
from pairs_service.layers.cache import StrategyCache
from pairs_service.routers.deps import get_strategy_cache

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(cache: StrategyCache = Depends(get_strategy_cache)):
    """服务健康检查"""
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Pairs Strategy Service",
            "cache_entries": len(cache),
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
