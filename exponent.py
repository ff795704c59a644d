# exponent.py
from __future__ import annotations

import math
from datetime import timedelta

from ntp_errors import NTPValueError

# Poll / Precision は符号付き8bitの「2の冪」
EXPONENT_MIN = -128
EXPONENT_MAX = 127


def to_float(e: int) -> float:
    """
    Convert an exponent to seconds.
    10 -> 2**10 = 1024.0, -3 -> 2**-3 = 0.125
    """
    e = int(e)
    if not EXPONENT_MIN <= e <= EXPONENT_MAX:
        raise NTPValueError(f"exponent out of int8 range: {e}")
    if e < 0:
        return 1.0 / float(1 << -e)
    return float(1 << e)


def from_float(v: float) -> int:
    """
    Best-effort encode: nearest power of two, round(log2(v)).

    Only exact for powers of two; to_float(from_float(v)) == v does not
    hold in general. Exact ties in log2 space use Python round(), i.e.
    half to even: 2**2.5 -> 2, 2**3.5 -> 4, 2**-1.5 -> -2.
    """
    v = float(v)
    if not math.isfinite(v) or v <= 0.0:
        raise NTPValueError(f"cannot encode {v!r} as a power-of-two exponent")
    e = round(math.log2(v))
    return max(EXPONENT_MIN, min(EXPONENT_MAX, e))


def to_timedelta(e: int) -> timedelta:
    """Poll interval as a timedelta (sub-microsecond exponents round to 0)."""
    return timedelta(seconds=to_float(e))
