"""
代币池路由
GET /api/tokens           - 可分析代币列表及市值分类
"""

from fastapi import APIRouter

from pairs_service.models.response import ApiResponse
from pairs_service.universe import (
    AVAILABLE_TOKENS,
    UNIVERSE_DESCRIPTIONS,
    long_tokens_for,
    market_cap_category,
)

router = APIRouter(prefix="/api/tokens", tags=["代币池"])


@router.get("", response_model=ApiResponse)
async def get_tokens():
    """获取代币池及组合池选择器"""
    tokens = [
        {"symbol": symbol, "market_cap_category": market_cap_category(symbol)}
        for symbol in AVAILABLE_TOKENS
    ]
    universes = {
        name: {"description": description, "long_tokens": long_tokens_for(name)}
        for name, description in UNIVERSE_DESCRIPTIONS.items()
    }
    return ApiResponse.ok(
        data={"tokens": tokens, "count": len(tokens), "strategy_types": universes},
    )
