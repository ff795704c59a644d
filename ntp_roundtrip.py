"""
NTP 往復計算（RFC 5905 on-wire）

compute(response, t4) -> RoundTrip(offset, delay)
- offset : クロックオフセット（秒）= ((t2-t1) + (t3-t4)) / 2
- delay  : 往復遅延（秒）= (t4-t1) - (t3-t2)

タイムスタンプの差は 64bit の剰余演算で取るので、時代(era)の境界をまたいでも正しい。
フィルタリング・サーバ選択は行わない。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ntp_errors import NTPValueError
from ntp_formats import Timestamp
from ntp_packet import Message

_MOD = 1 << 64
_HALF = 1 << 63


def _raw(ts: Timestamp) -> int:
    return (ts.seconds << 32) | ts.fraction


def diff_seconds(a: Timestamp, b: Timestamp) -> float:
    """a - b in seconds, assuming the two are within 68 years of each other."""
    d = (_raw(a) - _raw(b) + _HALF) % _MOD - _HALF
    return d / 2**32


@dataclass(frozen=True)
class RoundTrip:
    offset: float
    delay: float
    server_time: datetime

    @property
    def offset_ms(self) -> float:
        return self.offset * 1000.0

    @property
    def delay_ms(self) -> float:
        return self.delay * 1000.0


def compute(response: Message, destination: Optional[Timestamp] = None) -> RoundTrip:
    """
    destination (T4) defaults to response.header.destination, which the
    transport layer fills in at receipt time.
    """
    h = response.header
    t4 = destination if destination is not None else h.destination
    if h.transmit.is_zero:
        raise NTPValueError("response has no transmit timestamp")
    if t4.is_zero:
        raise NTPValueError("destination timestamp (T4) is not set")

    t1, t2, t3 = h.originate, h.receive, h.transmit
    offset = (diff_seconds(t2, t1) + diff_seconds(t3, t4)) / 2.0
    delay = diff_seconds(t4, t1) - diff_seconds(t3, t2)
    return RoundTrip(offset=offset, delay=delay, server_time=t3.to_datetime())
