from __future__ import annotations

from dataclasses import replace

import pytest

from factors.indicator_set import IndicatorSnapshot
from strategy.volume_trend import (
    REASON_RSI_OVERBOUGHT,
    REASON_STOP_LOSS,
    REASON_TAKE_PROFIT,
    REASON_TRAILING_STOP,
    REASON_TREND_REVERSAL,
    VolumeTrendParams,
    check_entry,
    exit_reason,
)

PARAMS = VolumeTrendParams()

# 六个入场条件全部满足的快照
ENTRY_SNAP = IndicatorSnapshot(
    fast_ma=101.0,
    fast_ma_prev=100.0,
    slow_ma=99.0,
    volume_ma=12.0,
    volume_ma_prev=10.0,
    rsi=60.0,
    obv=(1.0, 2.0, 3.0),
    open=100.0,
    close=102.0,
    volume=20.0,
)

# 持仓期间什么都不触发的快照
HOLD_SNAP = replace(ENTRY_SNAP, close=101.0, rsi=60.0)


def test_entry_passes_when_all_conditions_hold():
    check = check_entry(ENTRY_SNAP, PARAMS)
    assert check.passed


@pytest.mark.parametrize(
    "change, failed",
    [
        ({"slow_ma": 101.5}, "uptrend"),
        ({"fast_ma_prev": 101.0}, "uptrend"),
        ({"volume": 15.0}, "high_volume"),
        ({"obv": (1.0, 3.0, 3.0)}, "obv_increasing"),
        ({"close": 100.5}, "price_above_fast_ma"),
        ({"rsi": 50.0}, "rsi_ok"),
        ({"rsi": 70.0}, "rsi_ok"),
        ({"open": 102.0}, "bullish"),
    ],
)
def test_entry_rejected_when_any_condition_fails(change, failed):
    check = check_entry(replace(ENTRY_SNAP, **change), PARAMS)
    assert not check.passed
    assert getattr(check, failed) is False


def test_exit_none_while_holding():
    assert exit_reason(HOLD_SNAP, PARAMS, entry_price=100.0, high_water_mark=101.0) is None


def test_exit_stop_loss_boundary_is_inclusive():
    snap = replace(HOLD_SNAP, close=98.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=100.0) == REASON_STOP_LOSS


def test_exit_take_profit():
    snap = replace(HOLD_SNAP, close=104.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=104.0) == REASON_TAKE_PROFIT


def test_exit_trailing_stop():
    snap = replace(HOLD_SNAP, close=102.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=103.6) == REASON_TRAILING_STOP


def test_exit_rsi_overbought():
    snap = replace(HOLD_SNAP, rsi=70.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=101.0) == REASON_RSI_OVERBOUGHT


def test_exit_trend_reversal():
    snap = replace(HOLD_SNAP, fast_ma=98.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=101.0) == REASON_TREND_REVERSAL


def test_exit_priority_stop_loss_wins_over_everything():
    # 同时满足止损、移动止损、RSI 超买、趋势反转
    snap = replace(HOLD_SNAP, close=97.0, rsi=80.0, fast_ma=90.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=101.0) == REASON_STOP_LOSS


def test_exit_priority_trailing_before_rsi():
    snap = replace(HOLD_SNAP, close=101.0, rsi=75.0)
    assert exit_reason(snap, PARAMS, entry_price=100.0, high_water_mark=103.0) == REASON_TRAILING_STOP


def test_params_from_mapping_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown strategy params"):
        VolumeTrendParams.from_mapping({"fast_period": 5, "fast_perod": 7})


def test_params_from_mapping_overrides_defaults():
    p = VolumeTrendParams.from_mapping({"fast_period": 5, "quantity": 0.5})
    assert p.fast_period == 5
    assert p.quantity == 0.5
    assert p.slow_period == 21


@pytest.mark.parametrize(
    "bad",
    [
        {"quantity": 0},
        {"stop_loss_pct": 1.5},
        {"rsi_overbought": 40},
        {"cooldown_secs": -1},
    ],
)
def test_params_validation(bad):
    with pytest.raises(ValueError):
        VolumeTrendParams(**bad)
