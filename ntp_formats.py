"""
NTP 固定小数点フォーマット（RFC 5905 Section 6）

- Short:     32bit (16.16) … root delay / root dispersion 用の時間長
- Timestamp: 64bit (32.32) … 1900-01-01 UTC からの経過時刻

どちらもビッグエンディアンで pack/unpack する。
"""
from __future__ import annotations

import random
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ntp_errors import BufferTooSmallError, MalformedPacketError, NTPOverflowError, NTPValueError


NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)
NTP_DELTA = 2208988800  # 1900年〜1970年の秒数
NS_PER_SEC = 1_000_000_000

SHORT_SECONDS_MAX = 0xFFFF
TIMESTAMP_SECONDS_MAX = 0xFFFFFFFF

_SHORT = struct.Struct("!HH")
_TIMESTAMP = struct.Struct("!II")

# SystemRandom は内部状態を持たない（OS乱数）のでプロセス全体で共有してよい
_DEFAULT_RNG = random.SystemRandom()


def check_room(buf, offset: int, size: int) -> None:
    """Raise BufferTooSmallError unless buf[offset:offset+size] can be written."""
    if offset < 0 or len(buf) - offset < size:
        raise BufferTooSmallError(offset + size, len(buf))


def check_available(buf, offset: int, size: int, what: str) -> None:
    """Raise MalformedPacketError unless size bytes can be read at offset."""
    if offset < 0 or len(buf) - offset < size:
        have = max(0, len(buf) - max(offset, 0))
        raise MalformedPacketError(
            f"truncated {what}: need {size} bytes at offset {offset}, have {have}"
        )


def timedelta_to_ns(d: timedelta) -> int:
    # timedelta は µs 精度。float を経由しないように整数で組み立てる
    return ((d.days * 86400 + d.seconds) * 1_000_000 + d.microseconds) * 1000


def _split_magnitude(ns: int, frac_bits: int, seconds_max: int, what: str) -> int:
    """
    Quantize ns into a (seconds << frac_bits | fraction) raw value.

    Whole seconds are truncated toward zero and the fraction is truncated,
    not rounded. Negative input is stored as the two's complement of the
    magnitude over the full field width.
    """
    mag = abs(ns)
    whole = mag // NS_PER_SEC
    if whole > seconds_max:
        raise NTPOverflowError(f"{what} overflow: {ns} ns ({'-' if ns < 0 else ''}{whole} s)")
    frac = ((mag % NS_PER_SEC) << frac_bits) // NS_PER_SEC
    raw = (whole << frac_bits) | frac
    if ns < 0:
        raw = -raw & ((1 << (2 * frac_bits)) - 1)
    return raw


@dataclass(frozen=True)
class Short:
    """NTP short format: seconds + fraction / 2**16."""

    seconds: int = 0
    fraction: int = 0

    SIZE = 4

    def __post_init__(self):
        for name in ("seconds", "fraction"):
            v = getattr(self, name)
            if not 0 <= v <= 0xFFFF:
                raise NTPValueError(f"Short.{name} out of u16 range: {v}")

    @classmethod
    def from_ns(cls, ns: int) -> "Short":
        """
        Overflow when |whole seconds| > 65535. Negative input is stored as
        two's complement; at 32768 s or more of magnitude it wraps into the
        positive range (-65535.5 s and +0.5 s both give Short(0, 0x8000)).
        """
        raw = _split_magnitude(int(ns), 16, SHORT_SECONDS_MAX, "Short")
        return cls(raw >> 16, raw & 0xFFFF)

    @classmethod
    def from_timedelta(cls, d: timedelta) -> "Short":
        """Same rules as from_ns (µs input)."""
        return cls.from_ns(timedelta_to_ns(d))

    def raw(self, signed: bool = False) -> int:
        v = (self.seconds << 16) | self.fraction
        if signed and v & 0x80000000:
            v -= 1 << 32
        return v

    def to_seconds(self, signed: bool = False) -> float:
        """
        Seconds as float (exact: 16.16 fits a double).

        signed=True reads the field as a two's complement value, which is
        only unambiguous for magnitudes below 32768 s.
        """
        return self.raw(signed) / 65536.0

    def to_timedelta(self, signed: bool = False) -> timedelta:
        return timedelta(seconds=self.to_seconds(signed))

    def pack(self, buf, offset: int = 0) -> None:
        check_room(buf, offset, self.SIZE)
        _SHORT.pack_into(buf, offset, self.seconds, self.fraction)

    @classmethod
    def unpack(cls, buf, offset: int = 0) -> "Short":
        check_available(buf, offset, cls.SIZE, "short")
        return cls(*_SHORT.unpack_from(buf, offset))

    def to_bytes(self) -> bytes:
        return _SHORT.pack(self.seconds, self.fraction)


@dataclass(frozen=True)
class Timestamp:
    """NTP timestamp format: seconds + fraction / 2**32 since NTP_EPOCH."""

    seconds: int = 0
    fraction: int = 0

    SIZE = 8

    def __post_init__(self):
        for name in ("seconds", "fraction"):
            v = getattr(self, name)
            if not 0 <= v <= 0xFFFFFFFF:
                raise NTPValueError(f"Timestamp.{name} out of u32 range: {v}")

    # SNTP - RFC 2030:
    #   It is advisable to fill the non-significant low order bits of the
    #   timestamp with a random, unbiased bitstring, both to avoid
    #   systematic roundoff errors and as a means of loop detection and
    #   replay detection.
    # ns 精度は 30bit の fraction で表せるので、下位2bitを乱数で埋める
    @classmethod
    def from_ntp_ns(cls, ns: int, rng: Optional[random.Random] = None, randomize: bool = True) -> "Timestamp":
        """Build from nanoseconds since NTP_EPOCH."""
        raw = _split_magnitude(int(ns), 32, TIMESTAMP_SECONDS_MAX, "Timestamp")
        seconds, fraction = raw >> 32, raw & 0xFFFFFFFF
        if randomize:
            lsb = (rng or _DEFAULT_RNG).getrandbits(2)
            fraction = (fraction & 0xFFFFFFFC) | lsb
        return cls(seconds, fraction)

    @classmethod
    def from_unix_ns(cls, ns: int, rng: Optional[random.Random] = None, randomize: bool = True) -> "Timestamp":
        """Build from nanoseconds since 1970 (time.time_ns())."""
        return cls.from_ntp_ns(int(ns) + NTP_DELTA * NS_PER_SEC, rng=rng, randomize=randomize)

    @classmethod
    def from_datetime(cls, t: datetime, rng: Optional[random.Random] = None, randomize: bool = True) -> "Timestamp":
        """naive datetime は UTC として扱う"""
        if t.tzinfo is None:
            t = t.replace(tzinfo=timezone.utc)
        return cls.from_ntp_ns(timedelta_to_ns(t - NTP_EPOCH), rng=rng, randomize=randomize)

    def to_ntp_ns(self, era: int = 0) -> int:
        """Nanoseconds since NTP_EPOCH, rounded to the nearest ns."""
        seconds = (era << 32) + self.seconds
        return seconds * NS_PER_SEC + ((self.fraction * NS_PER_SEC + (1 << 31)) >> 32)

    def to_unix_ns(self, era: int = 0) -> int:
        return self.to_ntp_ns(era) - NTP_DELTA * NS_PER_SEC

    def to_datetime(self, era: int = 0) -> datetime:
        """Closest tz-aware UTC datetime (datetime only holds µs)."""
        us = (self.to_ntp_ns(era) + 500) // 1000
        return NTP_EPOCH + timedelta(microseconds=us)

    def to_seconds(self) -> float:
        return self.seconds + self.fraction / 2**32

    @property
    def is_zero(self) -> bool:
        return self.seconds == 0 and self.fraction == 0

    def pack(self, buf, offset: int = 0) -> None:
        check_room(buf, offset, self.SIZE)
        _TIMESTAMP.pack_into(buf, offset, self.seconds, self.fraction)

    @classmethod
    def unpack(cls, buf, offset: int = 0) -> "Timestamp":
        check_available(buf, offset, cls.SIZE, "timestamp")
        return cls(*_TIMESTAMP.unpack_from(buf, offset))

    def to_bytes(self) -> bytes:
        return _TIMESTAMP.pack(self.seconds, self.fraction)


__all__ = [
    "NTP_EPOCH",
    "NTP_DELTA",
    "NS_PER_SEC",
    "Short",
    "Timestamp",
    "check_available",
    "check_room",
    "timedelta_to_ns",
]
