"""
Layer 1 – 数据获取层
从交易所 K 线接口拉取原始日线数据，解析为统一的 OHLCV 字典，
按代币拉取永续合约资金费率（尽力而为），
并提供"全部发出、全部等待、按成功/失败分区"的并发组合器。
"""

import asyncio
import logging
import math
import re
from typing import Any, Awaitable, Dict, Hashable, List, Mapping, Optional, Tuple, TypeVar

import httpx

from pairs_service.config import settings
from pairs_service.errors import DataFetchError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

# Binance K 线数组下标：[openTime, open, high, low, close, volume, ...]
_ROW_FIELDS = ("open", "high", "low", "close", "volume")


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def parse_kline_rows(symbol: str, payload: Any) -> List[Dict[str, float]]:
    """
    将交易所返回的原始数组解析为 OHLCV 记录列表

    数值字段无法解析时记为 NaN，交由处理层过滤；
    结构性错误（非数组、字段不足、时间戳非法）视为 DataFetchError。
    """
    if not isinstance(payload, list):
        raise DataFetchError(symbol, "返回数据不是数组")

    records: List[Dict[str, float]] = []
    for index, row in enumerate(payload):
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            raise DataFetchError(symbol, f"第 {index} 行格式错误")
        try:
            timestamp = int(row[0])
        except (TypeError, ValueError):
            raise DataFetchError(symbol, f"第 {index} 行时间戳非法: {row[0]!r}")
        record: Dict[str, Any] = {"timestamp": timestamp}
        for offset, field in enumerate(_ROW_FIELDS, start=1):
            record[field] = _to_float(row[offset])
        records.append(record)
    return records


class KlineClient:
    """交易所 K 线客户端：fetch(symbol, interval, limit) → 有序 OHLCV 记录"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url or settings.BINANCE_KLINES_URL
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.FETCH_TIMEOUT,
            headers={"User-Agent": settings.USER_AGENT},
        )

    async def fetch(
        self,
        symbol: str,
        interval: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, float]]:
        params = {
            "symbol": symbol,
            "interval": interval or settings.KLINE_INTERVAL,
            "limit": limit,
        }
        logger.info(f"📡 获取 K 线: {symbol} interval={params['interval']} limit={limit}")
        try:
            resp = await self._client.get(self._base_url, params=params)
        except httpx.HTTPError as exc:
            logger.warning(f"❌ 网络错误（{symbol}）: {exc}")
            raise DataFetchError(symbol, f"网络错误: {exc}") from exc

        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("msg", resp.text) if isinstance(body, dict) else resp.text
            logger.warning(f"❌ HTTP {resp.status_code}（{symbol}）: {detail}")
            raise DataFetchError(symbol, f"HTTP {resp.status_code}: {detail}", status=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise DataFetchError(symbol, "返回内容不是合法 JSON", status=resp.status_code) from exc

        records = parse_kline_rows(symbol, payload)
        logger.info(f"✅ {symbol}: {len(records)} 条记录")
        return records

    async def aclose(self) -> None:
        await self._client.aclose()


# ── 资金费率 ──────────────────────────────────────────────
# 市场名形如 "BTC/USD [BTC-USDC]"：斜杠前为代币，方括号内为抵押品
_MARKET_TOKEN_RE = re.compile(r"^([^/]+)/USD")
_MARKET_COLLATERAL_RE = re.compile(r"\[([^\]]+)\]")

FundingFees = Dict[str, Dict[str, str]]


def parse_funding_markets(payload: Any) -> FundingFees:
    """
    将资金费率接口返回解析为 {代币: {"long": ..., "short": ...}}

    只保留 USDC 抵押的市场；同一代币出现多次时保留第一条。
    费率按接口原样保留为字符串。
    """
    if not isinstance(payload, dict) or not payload.get("success") or not isinstance(payload.get("data"), list):
        raise ValueError("资金费率接口返回格式非法")

    fees: FundingFees = {}
    for item in payload["data"]:
        if not isinstance(item, dict):
            continue
        market = str(item.get("market", ""))
        collateral = _MARKET_COLLATERAL_RE.search(market)
        if not collateral or "USDC" not in collateral.group(1).upper():
            continue
        token = _MARKET_TOKEN_RE.match(market)
        if not token or not token.group(1).strip():
            continue
        fees.setdefault(token.group(1).strip(), {"long": item.get("long"), "short": item.get("short")})
    return fees


class FundingFeeClient:
    """永续合约资金费率客户端：fetch() → 按代币索引的多/空费率，失败时返回空表"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url or settings.FUNDING_FEES_URL
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.FUNDING_FEES_TIMEOUT,
            headers={"User-Agent": settings.USER_AGENT},
        )

    async def fetch(self) -> FundingFees:
        try:
            resp = await self._client.get(self._url)
            resp.raise_for_status()
            fees = parse_funding_markets(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"⚠️ 资金费率获取失败，按无费率继续: {exc}")
            return {}
        logger.info(f"✅ 资金费率: {len(fees)} 个市场")
        return fees

    async def aclose(self) -> None:
        await self._client.aclose()


async def fetch_funding_fees(source) -> FundingFees:
    """从任意资金费率数据源取一次费率表；数据源缺失或出错时返回空表"""
    if source is None:
        return {}
    try:
        return await source.fetch()
    except Exception as exc:
        logger.warning(f"⚠️ 资金费率数据源异常，按无费率继续: {exc}")
        return {}


async def gather_settled(
    operations: Mapping[K, Awaitable[T]],
) -> Tuple[Dict[K, T], Dict[K, Exception]]:
    """
    并发执行全部操作并等待其全部结束

    任一操作失败不会中断其他操作，返回 (成功结果, 失败异常) 两个按键分区的字典。
    """
    keys = list(operations.keys())
    outcomes = await asyncio.gather(*operations.values(), return_exceptions=True)

    successes: Dict[K, T] = {}
    failures: Dict[K, Exception] = {}
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, Exception):
            failures[key] = outcome
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            successes[key] = outcome
    return successes, failures
