"""
业务服务测试
  - PairService：单组合分析 / 比值 K 线，错误直接抛出
  - BundleService：批次内拉取去重、失败隔离、过滤排序截断、TTL 缓存
"""

import asyncio
from unittest.mock import patch

import pytest

from conftest import FakeFetcher, FakeFundingSource

LONGS = ["L0USDT", "L1USDT", "L2USDT", "L3USDT", "L4USDT"]
SHORTS = ["S0USDT", "S1USDT", "S2USDT"]


def _sweep_pairs(strategy_type: str):
    """5 个多头 × 20 个空头，只涉及 8 个不同代币"""
    return [(long_token, SHORTS[j % len(SHORTS)]) for long_token in LONGS for j in range(20)]


def _distinct_pairs(strategy_type: str):
    return [(long_token, short_token) for long_token in LONGS for short_token in SHORTS]


class TestPairService:
    def setup_method(self):
        from pairs_service.services.pair_service import PairService
        self.PairService = PairService

    def test_analyze(self, make_fetcher):
        fetcher = make_fetcher(["BTCUSDT", "ETHUSDT"])
        svc = self.PairService(fetcher)
        result = asyncio.run(svc.analyze("btc", "ETH", 60))
        assert result.pair == "LONG BTCUSDT/SHORT ETHUSDT"
        assert result.window == 60
        assert result.stats.valid_days == 60
        assert result.recommendation == result.stats.recommendation
        assert result.market_cap_alignment["level"] == "HIGH"
        assert sorted(call[0] for call in fetcher.calls) == ["BTCUSDT", "ETHUSDT"]
        assert all(call[2] == 60 for call in fetcher.calls)

    def test_default_window(self, make_fetcher):
        fetcher = make_fetcher(["BTCUSDT", "ETHUSDT"])
        result = asyncio.run(self.PairService(fetcher).analyze("BTCUSDT", "ETHUSDT"))
        assert result.window == 100

    def test_same_token_rejected(self, make_fetcher):
        from pairs_service.errors import InvalidRequestError
        svc = self.PairService(make_fetcher(["BTCUSDT"]))
        with pytest.raises(InvalidRequestError):
            asyncio.run(svc.analyze("BTC", "btcusdt"))

    def test_fetch_failure_surfaces(self, make_fetcher):
        from pairs_service.errors import DataFetchError
        svc = self.PairService(make_fetcher(["BTCUSDT", "ETHUSDT"], failing=["ETHUSDT"]))
        with pytest.raises(DataFetchError) as exc_info:
            asyncio.run(svc.analyze("BTCUSDT", "ETHUSDT"))
        assert exc_info.value.symbol == "ETHUSDT"

    def test_unexpected_fetch_failure_wrapped(self):
        from pairs_service.errors import DataFetchError

        class BrokenFetcher:
            async def fetch(self, symbol, interval=None, limit=100):
                raise RuntimeError("socket closed")

        with pytest.raises(DataFetchError):
            asyncio.run(self.PairService(BrokenFetcher()).analyze("BTCUSDT", "ETHUSDT"))

    def test_insufficient_sample(self, make_fetcher):
        from pairs_service.errors import InsufficientSampleError
        svc = self.PairService(make_fetcher(["BTCUSDT", "ETHUSDT"], days=20))
        with pytest.raises(InsufficientSampleError):
            asyncio.run(svc.analyze("BTCUSDT", "ETHUSDT", 100))

    def test_funding_fees_attached(self, make_fetcher):
        source = FakeFundingSource({
            "BTC": {"long": "-0.0012", "short": "0.0010"},
            "WETH": {"long": "-0.0020", "short": "0.0018"},
        })
        svc = self.PairService(make_fetcher(["BTCUSDT", "ETHUSDT"]), funding_source=source)
        result = asyncio.run(svc.analyze("BTC", "ETH", 30))
        assert result.funding_fee_long == "-0.0012"
        assert result.funding_fee_short == "0.0018"
        assert source.calls == 1

    def test_funding_source_failure_ignored(self, make_fetcher):
        svc = self.PairService(
            make_fetcher(["BTCUSDT", "ETHUSDT"]),
            funding_source=FakeFundingSource(failing=True),
        )
        result = asyncio.run(svc.analyze("BTC", "ETH", 30))
        assert result.funding_fee_long is None
        assert result.funding_fee_short is None
        assert result.stats.valid_days == 30

    def test_ratio_history(self, constant_rows):
        fetcher = FakeFetcher({
            "BTCUSDT": constant_rows(40, open_price=200.0, close_price=202.0),
            "ETHUSDT": constant_rows(40, open_price=100.0, close_price=101.0),
        })
        history = asyncio.run(self.PairService(fetcher).ratio_history("BTC", "ETH", 30))
        assert history["symbol"] == "BTCUSDT/ETHUSDT"
        assert history["count"] == 30
        assert history["data"][-1]["close"] == 2.0

    def test_ratio_history_empty(self, constant_rows):
        from pairs_service.errors import InsufficientSampleError
        fetcher = FakeFetcher({
            "BTCUSDT": constant_rows(10),
            "ETHUSDT": constant_rows(10, start_ts=0),
        })
        with pytest.raises(InsufficientSampleError):
            asyncio.run(self.PairService(fetcher).ratio_history("BTC", "ETH", 10))


class TestBundleService:
    def _service(self, fetcher, pair_source=_distinct_pairs, ttl=3600):
        from pairs_service.layers.cache import StrategyCache
        from pairs_service.services.bundle_service import BundleService
        cache = StrategyCache(ttl=ttl)
        return BundleService(fetcher, cache, pair_source=pair_source), cache

    def test_fetch_dedup(self, make_fetcher):
        fetcher = make_fetcher(LONGS + SHORTS)
        svc, _ = self._service(fetcher, pair_source=_sweep_pairs)
        payload = asyncio.run(svc.get_bundles(limit=200))
        assert payload["total_candidates"] == 100
        assert len(fetcher.calls) <= 8 * 3
        assert len(fetcher.calls) == payload["fetch_calls"] == 24
        assert len(set(fetcher.calls)) == len(fetcher.calls)

    def test_payload(self, make_fetcher):
        svc, _ = self._service(make_fetcher(LONGS + SHORTS))
        payload = asyncio.run(svc.get_bundles(limit=5, sort_by="score"))
        assert payload["cached"] is False
        assert payload["total_candidates"] == 15
        assert payload["total_analyzed"] == 15
        assert payload["returned"] == 5
        assert payload["filters"]["sort_by"] == "SCORE"
        scores = [s["overall_score"] for s in payload["strategies"]]
        assert scores == sorted(scores, reverse=True)
        first = payload["strategies"][0]
        assert first["rank"] == 1
        assert set(first["metrics"]) == {"30d", "60d", "100d"}
        assert "daily_profits" not in first["metrics"]["30d"]
        assert len(first["values"]) == 100
        assert first["win_rate_100d"] == first["metrics"]["100d"]["win_rate"]

    def test_window_filter(self, make_fetcher):
        fetcher = make_fetcher(LONGS + SHORTS)
        svc, _ = self._service(fetcher)
        payload = asyncio.run(svc.get_bundles(time_period="30D"))
        assert {call[2] for call in fetcher.calls} == {30}
        strategy = payload["strategies"][0]
        assert set(strategy["metrics"]) == {"30d"}
        assert strategy["win_rate_100d"] == 0.0
        assert len(strategy["values"]) == 100
        assert strategy["values"][:71] == [strategy["values"][0]] * 71

    def test_risk_filter(self, make_fetcher):
        svc, _ = self._service(make_fetcher(LONGS + SHORTS))
        payload = asyncio.run(svc.get_bundles(limit=100, risk_level="high"))
        assert all(s["risk_level"] == "HIGH" for s in payload["strategies"])
        assert payload["total_filtered"] == payload["returned"]

    def test_fetch_failure_isolated(self, make_fetcher):
        fetcher = make_fetcher(LONGS + SHORTS, failing=["S2USDT"])
        svc, _ = self._service(fetcher)
        payload = asyncio.run(svc.get_bundles(limit=100))
        assert payload["total_candidates"] == 15
        assert payload["total_analyzed"] == 10
        assert all(s["short_token"] != "S2USDT" for s in payload["strategies"])
        assert "S2USDT:30" in payload["failed_fetches"]

    def test_short_history_excludes_windows(self, make_fetcher):
        """只有 40 天数据：30 天窗口合格，60 / 100 天窗口被剔除"""
        svc, _ = self._service(make_fetcher(LONGS + SHORTS, days=40))
        payload = asyncio.run(svc.get_bundles(limit=1))
        assert payload["total_analyzed"] == 15
        assert set(payload["strategies"][0]["metrics"]) == {"30d"}

    def test_computation_error_isolated(self, make_fetcher):
        from pairs_service.layers.analysis import AnalysisLayer
        svc, _ = self._service(make_fetcher(LONGS + SHORTS))
        real_analyze = AnalysisLayer.analyze

        def flaky(self, long_token, short_token, *args, **kwargs):
            if long_token == "L0USDT":
                raise RuntimeError("boom")
            return real_analyze(self, long_token, short_token, *args, **kwargs)

        with patch.object(AnalysisLayer, "analyze", flaky):
            payload = asyncio.run(svc.get_bundles(limit=100))
        assert payload["total_analyzed"] == 12
        assert all(s["long_token"] != "L0USDT" for s in payload["strategies"])

    def test_cache_hit(self, make_fetcher):
        fetcher = make_fetcher(LONGS + SHORTS)
        svc, cache = self._service(fetcher)
        first = asyncio.run(svc.get_bundles(limit=3))
        calls = len(fetcher.calls)
        second = asyncio.run(svc.get_bundles(limit=3, risk_level="all", sort_by="apr"))
        assert len(fetcher.calls) == calls
        assert second["cached"] is True
        assert second["strategies"] == first["strategies"]
        assert len(cache) == 1

    def test_expired_cache_recomputes(self, make_fetcher):
        fetcher = make_fetcher(LONGS + SHORTS)
        svc, _ = self._service(fetcher, ttl=0)
        asyncio.run(svc.get_bundles())
        calls = len(fetcher.calls)
        payload = asyncio.run(svc.get_bundles())
        assert payload["cached"] is False
        assert len(fetcher.calls) == 2 * calls

    @pytest.mark.parametrize("kwargs", [
        {"limit": 0},
        {"risk_level": "EXTREME"},
        {"time_period": "7d"},
        {"sort_by": "VOLUME"},
        {"strategy_type": "ALTS"},
    ])
    def test_invalid_request(self, make_fetcher, kwargs):
        from pairs_service.errors import InvalidRequestError
        fetcher = make_fetcher(LONGS + SHORTS)
        svc, _ = self._service(fetcher)
        with pytest.raises(InvalidRequestError):
            asyncio.run(svc.get_bundles(**kwargs))
        assert fetcher.calls == []

    def test_unexpected_window_failure_isolated(self, make_fetcher):
        """某个窗口的非预期异常只剔除该窗口，组合保留其余窗口"""
        inner = make_fetcher(["AUSDT", "BUSDT"])

        class WindowBrokenFetcher:
            async def fetch(self, symbol, interval=None, limit=100):
                if symbol == "BUSDT" and limit == 60:
                    raise RuntimeError("malformed body")
                return await inner.fetch(symbol, interval, limit)

        svc, _ = self._service(WindowBrokenFetcher(), pair_source=lambda _: [("AUSDT", "BUSDT")])
        payload = asyncio.run(svc.get_bundles())
        assert payload["total_analyzed"] == 1
        assert set(payload["strategies"][0]["metrics"]) == {"30d", "100d"}
        assert payload["failed_fetches"] == ["BUSDT:60"]

    def test_funding_fees_attached(self, make_fetcher):
        from pairs_service.layers.cache import StrategyCache
        from pairs_service.services.bundle_service import BundleService
        source = FakeFundingSource({
            "L0": {"long": "-0.0010", "short": "0.0009"},
            "S1": {"long": "-0.0030", "short": "0.0025"},
        })
        svc = BundleService(
            make_fetcher(LONGS + SHORTS),
            StrategyCache(),
            pair_source=_distinct_pairs,
            funding_source=source,
        )
        payload = asyncio.run(svc.get_bundles(limit=100))
        assert payload["returned"] == 15
        for strategy in payload["strategies"]:
            expected_long = "-0.0010" if strategy["long_token"] == "L0USDT" else None
            expected_short = "0.0025" if strategy["short_token"] == "S1USDT" else None
            assert strategy["funding_fee_long"] == expected_long
            assert strategy["funding_fee_short"] == expected_short
        assert source.calls == 1

        asyncio.run(svc.get_bundles(limit=100))
        assert source.calls == 1

    def test_funding_source_failure_ignored(self, make_fetcher):
        from pairs_service.layers.cache import StrategyCache
        from pairs_service.services.bundle_service import BundleService
        svc = BundleService(
            make_fetcher(LONGS + SHORTS),
            StrategyCache(),
            pair_source=_distinct_pairs,
            funding_source=FakeFundingSource(failing=True),
        )
        payload = asyncio.run(svc.get_bundles(limit=100))
        assert payload["total_analyzed"] == 15
        assert all(s["funding_fee_long"] is None for s in payload["strategies"])
        assert all(s["funding_fee_short"] is None for s in payload["strategies"])
