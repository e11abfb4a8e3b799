"""
代币池与组合生成
  - 可分析代币列表及市值分类（H / M / L / SUPERL）
  - 批量分析的组合池选择器（MAJOR / BTC_ETH）
  - 多空两腿的市值匹配度
  - 资金费率市场的代币名映射
"""

from typing import Any, Dict, List, Optional, Tuple

from pairs_service.errors import InvalidRequestError

MARKET_CAP_CATEGORIES: Dict[str, str] = {
    "BTCUSDT": "H",
    "ETHUSDT": "H",
    "LINKUSDT": "M",
    "SOLUSDT": "H",
    "DOTUSDT": "L",
    "AVAXUSDT": "M",
    "BNBUSDT": "H",
    "DOGEUSDT": "M",
    "PEPEUSDT": "L",
    "WIFUSDT": "SUPERL",
    "PENDLEUSDT": "SUPERL",
    "ARBUSDT": "L",
    "OPUSDT": "L",
    "APEUSDT": "SUPERL",
    "GMXUSDT": "SUPERL",
    "AAVEUSDT": "L",
    "UNIUSDT": "L",
    "ADAUSDT": "M",
    "TAOUSDT": "L",
    "ATOMUSDT": "L",
    "LDOUSDT": "SUPERL",
    "NEARUSDT": "L",
    "TIAUSDT": "L",
    "CAKEUSDT": "L",
    "ZROUSDT": "L",
    "TRUMPUSDT": "L",
    "APTUSDT": "L",
    "INJUSDT": "L",
    "CRVUSDT": "L",
    "XRPUSDT": "H",
    "DYDXUSDT": "SUPERL",
    "SUIUSDT": "L",
    "XLMUSDT": "M",
}

# 批量分析使用的代币池（空头候选）
AVAILABLE_TOKENS: List[str] = [
    "BTCUSDT", "ETHUSDT", "LINKUSDT", "SOLUSDT", "DOTUSDT", "AVAXUSDT",
    "BNBUSDT", "DOGEUSDT", "PEPEUSDT", "WIFUSDT", "PENDLEUSDT", "ARBUSDT",
    "OPUSDT", "APEUSDT", "GMXUSDT", "AAVEUSDT", "UNIUSDT", "ADAUSDT",
    "TAOUSDT", "ATOMUSDT", "LDOUSDT", "NEARUSDT", "TIAUSDT", "CAKEUSDT",
    "ZROUSDT", "TRUMPUSDT",
]

_LONG_TOKENS: Dict[str, List[str]] = {
    "MAJOR": ["BTCUSDT", "ETHUSDT", "LINKUSDT", "SOLUSDT", "BNBUSDT"],
    "BTC_ETH": ["BTCUSDT", "ETHUSDT"],
}

UNIVERSE_DESCRIPTIONS: Dict[str, str] = {
    "MAJOR": "全部主流代币作为多头",
    "BTC_ETH": "仅 BTC / ETH 作为多头",
}

_ALIGNMENT_MATRIX: Dict[str, Tuple[str, int, str]] = {
    "H-H": ("HIGH", 100, "两腿均为高市值，波动特征接近"),
    "H-M": ("MEDIUM", 70, "高市值与中市值，波动差异适中"),
    "H-L": ("LOW", 40, "高市值与低市值，波动差异明显"),
    "H-SUPERL": ("VERY_LOW", 20, "高市值与极低市值，波动差异极大"),
    "M-M": ("HIGH", 100, "两腿均为中市值，波动特征接近"),
    "M-L": ("MEDIUM", 60, "中市值与低市值，波动差异适中"),
    "M-SUPERL": ("LOW", 30, "中市值与极低市值，波动差异明显"),
    "L-L": ("HIGH", 100, "两腿均为低市值，波动特征接近"),
    "L-SUPERL": ("MEDIUM", 50, "低市值与极低市值，波动差异适中"),
    "SUPERL-SUPERL": ("HIGH", 100, "两腿均为极低市值，波动特征接近"),
}


def normalize_symbol(token: str) -> str:
    """统一为大写并补齐 USDT 计价后缀"""
    symbol = token.strip().upper()
    return symbol if symbol.endswith("USDT") else f"{symbol}USDT"


def market_cap_category(symbol: str) -> str:
    return MARKET_CAP_CATEGORIES.get(symbol.upper(), "L")


def market_cap_alignment(long_token: str, short_token: str) -> Dict[str, Any]:
    """多空两腿的市值匹配度（无序查表）"""
    long_cap = market_cap_category(long_token)
    short_cap = market_cap_category(short_token)
    found = (
        _ALIGNMENT_MATRIX.get(f"{long_cap}-{short_cap}")
        or _ALIGNMENT_MATRIX.get(f"{short_cap}-{long_cap}")
        or ("UNKNOWN", 0, "未找到市值分类")
    )
    level, score, description = found
    return {
        "level": level,
        "score": score,
        "description": description,
        "long_token_category": long_cap,
        "short_token_category": short_cap,
    }


def long_tokens_for(strategy_type: str) -> List[str]:
    try:
        return list(_LONG_TOKENS[strategy_type.upper()])
    except KeyError:
        raise InvalidRequestError(
            f"不支持的组合池: {strategy_type}，支持: {sorted(_LONG_TOKENS)}"
        ) from None


def candidate_pairs(strategy_type: str = "MAJOR") -> List[Tuple[str, str]]:
    """按选择器生成 (long, short) 候选组合，跳过自身配对"""
    return [
        (long_token, short_token)
        for long_token in long_tokens_for(strategy_type)
        for short_token in AVAILABLE_TOKENS
        if short_token != long_token
    ]


# 资金费率市场使用的代币名与现货代币名不同的情况
_FUNDING_ALIASES: Dict[str, List[str]] = {
    "ETH": ["WETH"],
    "PEPE": ["kPEPE"],
    "SHIB": ["kSHIB"],
    "BONK": ["kBONK"],
    "FLOKI": ["kFLOKI"],
}


def funding_lookup_keys(symbol: str) -> List[str]:
    """ETHUSDT → ["ETH", "WETH"]：依次尝试的资金费率市场代币名"""
    base = symbol.strip().upper()
    if base.endswith("USDT"):
        base = base[:-4]
    if not base:
        return [symbol]
    return [base] + _FUNDING_ALIASES.get(base, [])


def funding_fees_for(
    long_token: str,
    short_token: str,
    fees: Dict[str, Dict[str, str]],
) -> Dict[str, Optional[str]]:
    """
    取组合两腿的资金费率：多头取其市场的 long 费率，空头取其市场的 short 费率

    无对应市场时该腿为 None。
    """
    def pick(symbol: str, side: str) -> Optional[str]:
        for key in funding_lookup_keys(symbol):
            if key in fees:
                return fees[key].get(side)
        return None

    return {
        "funding_fee_long": pick(long_token, "long"),
        "funding_fee_short": pick(short_token, "short"),
    }
