"""
多空组合策略分析服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn pairs_service.main:app --host 0.0.0.0 --port 3001
    python -m pairs_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pairs_service import __version__
from pairs_service.config import settings
from pairs_service.errors import PairsServiceError
from pairs_service.layers.acquisition import FundingFeeClient, KlineClient
from pairs_service.layers.cache import StrategyCache
from pairs_service.routers import analysis, bundles, cache, health, market

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Pairs Strategy Service v{__version__} 启动中")
    logger.info(f"   Klines    : {settings.BINANCE_KLINES_URL} ({settings.KLINE_INTERVAL})")
    logger.info(f"   Cache TTL : {settings.BUNDLE_CACHE_TTL}s")
    logger.info(f"   Funding   : {settings.FUNDING_FEES_URL if settings.FUNDING_FEES_ENABLED else 'disabled'}")
    logger.info("=" * 60)

    app.state.kline_client = KlineClient()
    app.state.funding_fee_client = FundingFeeClient() if settings.FUNDING_FEES_ENABLED else None
    app.state.strategy_cache = StrategyCache()
    logger.info("✅ 行情客户端、资金费率客户端与结果缓存就绪")

    yield

    logger.info("🔄 策略分析服务正在关闭...")
    await app.state.kline_client.aclose()
    if app.state.funding_fee_client is not None:
        await app.state.funding_fee_client.aclose()
    logger.info("✅ 策略分析服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="多空组合策略分析服务",
    description=(
        "对多空代币组合做历史回放并排名：\n"
        "- 🔄 两腿日线清洗与时间对齐\n"
        "- 📊 单窗口胜率 / 收益 / 连胜连亏 / 波动 / 回撤统计与推荐评分\n"
        "- 🧮 30 / 60 / 100 天多窗口聚合（综合评分、风险等级、共识推荐、APR）\n"
        "- 🗄️ 批量结果 TTL 缓存与批次内拉取去重\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 拉取 K 线并发汇合\n"
        "Processing Layer   ← 清洗、过滤、对齐\n"
        "Analysis Layer     ← 单窗口统计与评分\n"
        "Aggregation Layer  ← 多窗口聚合\n"
        "Cache Layer        ← TTL 结果缓存 / 拉取去重\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(PairsServiceError)
async def service_exception_handler(request: Request, exc: PairsServiceError):
    logger.warning(f"{request.url.path} → {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(market.router)
app.include_router(analysis.router)
app.include_router(bundles.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Pairs Strategy Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "pairs_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
