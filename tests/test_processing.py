"""
数据处理层测试：日涨跌幅衍生、异常日过滤、时间戳对齐、比值 K 线
"""

import math

import pandas as pd

from conftest import DAY_MS, START_TS


class TestDailyRecords:
    def setup_method(self):
        from pairs_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_empty(self):
        df = self.proc.to_daily_records([])
        assert df.empty
        assert "daily_change" in df.columns

    def test_daily_change(self, constant_rows):
        df = self.proc.to_daily_records(constant_rows(3, open_price=100.0, close_price=101.0))
        assert len(df) == 3
        assert df["daily_change"].tolist() == [1.0, 1.0, 1.0]
        assert df["daily_change_abs"].tolist() == [1.0, 1.0, 1.0]

    def test_non_positive_open_yields_zero_change(self, constant_rows):
        rows = constant_rows(1)
        rows[0].update({"open": 0.0, "low": 0.0})
        df = self.proc.to_daily_records(rows)
        assert df["daily_change"].iloc[0] == 0.0

    def test_non_finite_rows_dropped(self, constant_rows):
        rows = constant_rows(4)
        rows[1]["close"] = math.nan
        rows[2]["volume"] = "abc"
        rows[3]["high"] = math.inf
        df = self.proc.to_daily_records(rows)
        assert df["timestamp"].tolist() == [START_TS]

    def test_duplicate_timestamp_keeps_last(self, constant_rows):
        rows = constant_rows(2)
        dup = dict(rows[1], close=100.5)
        df = self.proc.to_daily_records(rows + [dup])
        assert len(df) == 2
        assert df["close"].iloc[-1] == 100.5


class TestFilterValidDays:
    def setup_method(self):
        from pairs_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer(min_volume=100, max_abs_daily_change=50)

    def _prepare(self, rows):
        return self.proc.prepare(rows)

    def test_keeps_sane_rows(self, constant_rows):
        assert len(self._prepare(constant_rows(5))) == 5

    def test_high_below_low(self, constant_rows):
        rows = constant_rows(2)
        rows[0]["high"], rows[0]["low"] = rows[0]["low"], rows[0]["high"]
        assert len(self._prepare(rows)) == 1

    def test_close_outside_range(self, constant_rows):
        rows = constant_rows(2)
        rows[0]["close"] = rows[0]["high"] * 1.1
        assert len(self._prepare(rows)) == 1

    def test_open_outside_range(self, constant_rows):
        rows = constant_rows(2)
        rows[1]["open"] = rows[1]["low"] * 0.5
        assert len(self._prepare(rows)) == 1

    def test_low_volume(self, constant_rows):
        rows = constant_rows(3)
        rows[2]["volume"] = 99.9
        assert len(self._prepare(rows)) == 2

    def test_outlier_change(self, change_rows):
        df = self._prepare(change_rows([1.0, 60.0, -55.0, 50.0]))
        assert len(df) == 2
        assert df["daily_change"].abs().max() <= 50


class TestSynchronize:
    def setup_method(self):
        from pairs_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_intersection_sorted(self, constant_rows):
        long_rows = constant_rows(10)
        short_rows = constant_rows(10, start_ts=START_TS + 3 * DAY_MS)
        short_rows.reverse()
        pair = self.proc.align(long_rows, short_rows)
        assert len(pair) == 7
        assert pair.timestamps == sorted(pair.timestamps)
        assert pair.long["timestamp"].tolist() == pair.short["timestamp"].tolist()

    def test_invalid_day_removed_from_both(self, constant_rows):
        long_rows = constant_rows(5)
        short_rows = constant_rows(5, close_price=99.0)
        short_rows[2]["volume"] = 1
        pair = self.proc.align(long_rows, short_rows)
        assert len(pair) == 4
        assert START_TS + 2 * DAY_MS not in pair.timestamps
        assert len(pair.long) == len(pair.short)

    def test_disjoint_series(self, constant_rows):
        pair = self.proc.align(constant_rows(5), constant_rows(5, start_ts=START_TS + 10 * DAY_MS))
        assert len(pair) == 0

    def test_idempotent(self, change_rows, pattern_changes):
        long_rows = change_rows(pattern_changes(1, 40))
        short_rows = change_rows(pattern_changes(4, 40))
        first = self.proc.align(long_rows, short_rows)
        second = self.proc.align(long_rows, short_rows)
        pd.testing.assert_frame_equal(first.long, second.long)
        pd.testing.assert_frame_equal(first.short, second.short)
        assert first.differential().tobytes() == second.differential().tobytes()

    def test_differential(self, constant_rows):
        pair = self.proc.align(constant_rows(3, close_price=101.0), constant_rows(3, close_price=99.0))
        assert pair.differential().tolist() == [2.0, 2.0, 2.0]


class TestRatioSeries:
    def setup_method(self):
        from pairs_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_ratio_klines(self, constant_rows):
        long_rows = constant_rows(3, open_price=200.0, close_price=202.0, volume=1000.0)
        short_rows = constant_rows(3, open_price=100.0, close_price=101.0, volume=3000.0)
        klines = self.proc.ratio_klines(self.proc.align(long_rows, short_rows))
        assert len(klines) == 3
        assert klines[0]["timestamp"] == START_TS
        assert klines[0]["open"] == 2.0
        assert klines[0]["close"] == 2.0
        assert klines[0]["volume"] == 2000.0

    def test_close_ratios_left_padded(self, constant_rows, change_rows):
        long_rows = change_rows([1.0, 2.0, 3.0])
        short_rows = constant_rows(3, close_price=100.0)
        values = self.proc.close_ratios(self.proc.align(long_rows, short_rows), 5)
        assert len(values) == 5
        assert values[:3] == [values[0]] * 3
        assert values[-1] == 1.03

    def test_close_ratios_truncated(self, constant_rows):
        pair = self.proc.align(constant_rows(10), constant_rows(10))
        assert len(self.proc.close_ratios(pair, 4)) == 4
