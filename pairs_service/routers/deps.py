"""
路由依赖
行情客户端、资金费率客户端与结果缓存在应用启动时创建并挂在 app.state 上，
路由通过依赖注入取得，不经由模块级单例访问。
"""

from typing import Optional

from fastapi import Depends, Request

from pairs_service.layers.acquisition import FundingFeeClient, KlineClient
from pairs_service.layers.cache import StrategyCache
from pairs_service.services.bundle_service import BundleService
from pairs_service.services.pair_service import PairService


def get_kline_client(request: Request) -> KlineClient:
    return request.app.state.kline_client


def get_funding_fee_client(request: Request) -> Optional[FundingFeeClient]:
    return request.app.state.funding_fee_client


def get_strategy_cache(request: Request) -> StrategyCache:
    return request.app.state.strategy_cache


def get_pair_service(
    fetcher: KlineClient = Depends(get_kline_client),
    funding: Optional[FundingFeeClient] = Depends(get_funding_fee_client),
) -> PairService:
    return PairService(fetcher, funding_source=funding)


def get_bundle_service(
    fetcher: KlineClient = Depends(get_kline_client),
    cache: StrategyCache = Depends(get_strategy_cache),
    funding: Optional[FundingFeeClient] = Depends(get_funding_fee_client),
) -> BundleService:
    return BundleService(fetcher, cache, funding_source=funding)
