# test_exponent.py
import math
from datetime import timedelta

import pytest

from exponent import from_float, to_float, to_timedelta
from ntp_errors import NTPValueError


def test_to_float_known_values():
    assert to_float(0) == 1.0
    assert to_float(10) == 1024.0
    assert to_float(3) == 8.0
    assert to_float(-3) == 0.125


def test_to_float_is_exact_power_of_two():
    for e in range(-20, 21):
        assert to_float(e) == 2.0 ** e


def test_from_float_round_trips_powers_of_two():
    for v in [1.0, float(1 << 10), float(1 << 20), 1.0 / (1 << 3), 1.0 / (1 << 20)]:
        assert to_float(from_float(v)) == v


def test_from_float_rounds_to_nearest_power():
    # log2(3) = 1.58 -> 2, log2(5) = 2.32 -> 2
    assert from_float(3.0) == 2
    assert from_float(5.0) == 2
    assert from_float(0.001) == -10


def test_from_float_clamps_to_int8():
    assert from_float(2.0 ** 200) == 127
    assert from_float(2.0 ** -200) == -128


@pytest.mark.parametrize("v", [0.0, -1.0, math.inf, math.nan])
def test_from_float_rejects_non_positive_and_non_finite(v):
    with pytest.raises(NTPValueError):
        from_float(v)


def test_to_float_rejects_out_of_range_exponent():
    with pytest.raises(NTPValueError):
        to_float(128)
    with pytest.raises(NTPValueError):
        to_float(-129)
    # NTPValueError は ValueError でもある
    with pytest.raises(ValueError):
        to_float(200)


def test_poll_interval_as_timedelta():
    assert to_timedelta(6) == timedelta(seconds=64)
    assert to_timedelta(-1) == timedelta(milliseconds=500)


def test_from_float_ties_round_half_to_even():
    assert from_float(2 ** 2.5) == 2
    assert from_float(2 ** -1.5) == -2
