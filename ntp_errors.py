"""
NTPコーデックの例外定義

- NTPOverflowError:     値が固定小数点フィールドに収まらない
- MalformedPacketError: 受信バッファが短い / 壊れている
- BufferTooSmallError:  書き込み先バッファが小さすぎる
- NTPValueError:        エンコード時のフィールド値が範囲外
"""


class NTPError(Exception):
    pass


class NTPOverflowError(NTPError, OverflowError):
    """A time or duration does not fit the target fixed-point field."""


class MalformedPacketError(NTPError, ValueError):
    """Not enough bytes for a header, trailer or declared extension field."""


class BufferTooSmallError(NTPError, ValueError):
    """The caller supplied output buffer cannot hold the encoded data."""

    def __init__(self, needed, available):
        super().__init__(f"buffer too small: need {needed} bytes, have {available}")
        self.needed = needed
        self.available = available


class NTPValueError(NTPError, ValueError):
    pass


__all__ = [
    "NTPError",
    "NTPOverflowError",
    "MalformedPacketError",
    "BufferTooSmallError",
    "NTPValueError",
]
