"""
NTP メッセージのエンコード/デコード（RFC 5905）

Message = MessageHeader(48バイト) + [ExtensionField ...] + [KeyID + Digest]

- バージョン4未満は拡張フィールド・認証トレーラを持たない
- Destination(T4) は受信側のローカル時刻なので送受信しない
- デコード時のバッファ範囲外アクセスは MalformedPacketError に変換する
"""
from __future__ import annotations

import ipaddress
import logging
import random
import struct
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Sequence

import exponent
from ntp_errors import MalformedPacketError, NTPValueError
from ntp_formats import Short, Timestamp, check_available, check_room

logger = logging.getLogger(__name__)

HEADER_SIZE = 48
KEY_ID_SIZE = 4
DIGEST_SIZE = 16
TRAILER_SIZE = KEY_ID_SIZE + DIGEST_SIZE
EXTENSION_HEADER_SIZE = 2  # type(1) + length(1)
EXTENSION_VALUE_MAX = 0xFF

_PREFIX = struct.Struct("!BBbb")  # LI/VN/Mode, Stratum, Poll, Precision
_KEY_ID = struct.Struct("!I")


class LeapIndicator(IntEnum):
    NO_WARNING = 0
    LAST_MINUTE_61 = 1
    LAST_MINUTE_59 = 2
    UNSYNCHRONIZED = 3


class Mode(IntEnum):
    RESERVED = 0
    SYMMETRIC_ACTIVE = 1
    SYMMETRIC_PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5
    CONTROL = 6
    PRIVATE = 7


# (name, min, max) … pack 時の範囲チェック
_HEADER_RANGES = (
    ("leap", 0, 3),
    ("version", 0, 7),
    ("mode", 0, 7),
    ("stratum", 0, 255),
    ("poll", exponent.EXPONENT_MIN, exponent.EXPONENT_MAX),
    ("precision", exponent.EXPONENT_MIN, exponent.EXPONENT_MAX),
)


@dataclass
class MessageHeader:
    """
    Mandatory 48-byte header, common to NTPv3 and NTPv4.

    reference_id is a 4 char ASCII code for stratum 0/1 (kiss code or
    reference clock), otherwise an IPv4 address.
    """

    leap: int = LeapIndicator.NO_WARNING
    version: int = 4
    mode: int = Mode.CLIENT
    stratum: int = 0
    poll: int = 0
    precision: int = 0
    root_delay: Short = field(default_factory=Short)
    root_dispersion: Short = field(default_factory=Short)
    reference_id: bytes = b"\x00\x00\x00\x00"
    reference_time: Timestamp = field(default_factory=Timestamp)
    originate: Timestamp = field(default_factory=Timestamp)    # T1
    receive: Timestamp = field(default_factory=Timestamp)      # T2
    transmit: Timestamp = field(default_factory=Timestamp)     # T3
    destination: Timestamp = field(default_factory=Timestamp)  # T4 (local only)

    @classmethod
    def unpack(cls, buf, offset: int = 0) -> "MessageHeader":
        # フィールド値の妥当性はビットマスク以上には検証しない
        check_available(buf, offset, HEADER_SIZE, "header")
        b0, stratum, poll, precision = _PREFIX.unpack_from(buf, offset)
        return cls(
            leap=LeapIndicator(b0 >> 6),
            version=(b0 >> 3) & 0x7,
            mode=Mode(b0 & 0x7),
            stratum=stratum,
            poll=poll,
            precision=precision,
            root_delay=Short.unpack(buf, offset + 4),
            root_dispersion=Short.unpack(buf, offset + 8),
            reference_id=bytes(buf[offset + 12:offset + 16]),
            reference_time=Timestamp.unpack(buf, offset + 16),
            originate=Timestamp.unpack(buf, offset + 24),
            receive=Timestamp.unpack(buf, offset + 32),
            transmit=Timestamp.unpack(buf, offset + 40),
        )

    def validate(self) -> None:
        for name, lo, hi in _HEADER_RANGES:
            v = getattr(self, name)
            if not lo <= v <= hi:
                raise NTPValueError(f"header {name} out of range [{lo}, {hi}]: {v}")
        if len(self.reference_id) != 4:
            raise NTPValueError(f"reference_id must be 4 bytes, got {len(self.reference_id)}")

    def pack(self, buf, offset: int = 0) -> None:
        """Write exactly HEADER_SIZE bytes at buf[offset:]; buf is never resized."""
        check_room(buf, offset, HEADER_SIZE)
        self.validate()
        b0 = (self.leap << 6) | (self.version << 3) | self.mode
        _PREFIX.pack_into(buf, offset, b0, self.stratum, self.poll, self.precision)
        self.root_delay.pack(buf, offset + 4)
        self.root_dispersion.pack(buf, offset + 8)
        buf[offset + 12:offset + 16] = self.reference_id
        self.reference_time.pack(buf, offset + 16)
        self.originate.pack(buf, offset + 24)
        self.receive.pack(buf, offset + 32)
        self.transmit.pack(buf, offset + 40)

    def to_bytes(self) -> bytes:
        buf = bytearray(HEADER_SIZE)
        self.pack(buf)
        return bytes(buf)

    @property
    def poll_seconds(self) -> float:
        return exponent.to_float(self.poll)

    @property
    def precision_seconds(self) -> float:
        return exponent.to_float(self.precision)

    @property
    def is_kiss_of_death(self) -> bool:
        return self.stratum == 0

    @property
    def kiss_code(self) -> Optional[str]:
        """'RATE', 'DENY', ... for stratum 0 packets, else None"""
        if not self.is_kiss_of_death:
            return None
        return self.reference_id_text()

    def reference_id_text(self) -> str:
        if self.stratum <= 1:
            return self.reference_id.rstrip(b"\x00").decode("ascii", errors="replace")
        return str(ipaddress.IPv4Address(bytes(self.reference_id)))


#    0                   1                   2                   3
#    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
#   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
#   |     Type      |    Length     |  Value ...                    |
#   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+                               +
#   .                                                               .
#   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
#   |                 Padding (value to a multiple of 4)            |
#   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+


def padding_for(length: int) -> int:
    return (4 - length % 4) % 4


@dataclass
class ExtensionField:
    type: int
    value: bytes = b""

    @property
    def length(self) -> int:
        return len(self.value)

    @property
    def wire_size(self) -> int:
        return EXTENSION_HEADER_SIZE + self.length + padding_for(self.length)


def extension_fields_size(fields: Sequence[ExtensionField]) -> int:
    return sum(f.wire_size for f in fields)


def unpack_extension_fields(buf, offset: int = 0, end: Optional[int] = None) -> List[ExtensionField]:
    """Decode buf[offset:end] as consecutive extension fields, in wire order."""
    end = len(buf) if end is None else end
    if end > len(buf):
        raise MalformedPacketError(f"extension region ends at {end}, buffer is {len(buf)} bytes")
    fields = []
    i = offset
    while i < end:
        if end - i < EXTENSION_HEADER_SIZE:
            raise MalformedPacketError(f"truncated extension field header at offset {i}")
        ftype, length = buf[i], buf[i + 1]
        start = i + EXTENSION_HEADER_SIZE
        stop = start + length
        nxt = stop + padding_for(length)
        if nxt > end:
            raise MalformedPacketError(
                f"extension field at offset {i} declares {length} bytes, "
                f"only {end - start} left"
            )
        fields.append(ExtensionField(ftype, bytes(buf[start:stop])))
        i = nxt
    return fields


def validate_extension_fields(fields: Sequence[ExtensionField]) -> None:
    for ef in fields:
        if not 0 <= ef.type <= 0xFF:
            raise NTPValueError(f"extension field type out of u8 range: {ef.type}")
        if ef.length > EXTENSION_VALUE_MAX:
            raise NTPValueError(f"extension field value too long: {ef.length} > {EXTENSION_VALUE_MAX}")


def pack_extension_fields(fields: Sequence[ExtensionField], buf, offset: int = 0) -> int:
    """Write fields at buf[offset:] and return the number of bytes written."""
    validate_extension_fields(fields)
    check_room(buf, offset, extension_fields_size(fields))

    i = offset
    for ef in fields:
        buf[i] = ef.type
        buf[i + 1] = ef.length
        start = i + EXTENSION_HEADER_SIZE
        stop = start + ef.length
        buf[start:stop] = ef.value
        pad = padding_for(ef.length)
        buf[stop:stop + pad] = bytes(pad)
        i = stop + pad
    return i - offset


@dataclass
class Message:
    """
    A full NTP message.

    The role (client / server / broadcast ...) is header.mode; there is no
    separate type per role.
    """

    header: MessageHeader = field(default_factory=MessageHeader)
    extension_fields: List[ExtensionField] = field(default_factory=list)
    key_id: Optional[int] = None
    digest: Optional[bytes] = None

    @property
    def role(self) -> Mode:
        return Mode(self.header.mode)

    @property
    def has_trailer(self) -> bool:
        return self.key_id is not None

    def validate(self) -> None:
        """Check every field before anything is written to a buffer."""
        self.header.validate()
        if self.header.version < 4:
            # v3 はヘッダのみ送るので拡張フィールド・トレーラは見ない
            return
        validate_extension_fields(self.extension_fields)
        if (self.key_id is None) != (self.digest is None):
            raise NTPValueError("key_id and digest must be set together")
        if self.key_id is None:
            if self.extension_fields:
                # トレーラ無しだとデコード側が拡張フィールド末尾をトレーラとして読んでしまう
                raise NTPValueError("extension fields require a key id / digest trailer")
            return
        if not 0 <= self.key_id <= 0xFFFFFFFF:
            raise NTPValueError(f"key_id out of u32 range: {self.key_id}")
        if len(self.digest) != DIGEST_SIZE:
            raise NTPValueError(f"digest must be {DIGEST_SIZE} bytes, got {len(self.digest)}")

    def wire_size(self) -> int:
        if self.header.version < 4:
            return HEADER_SIZE
        size = HEADER_SIZE + extension_fields_size(self.extension_fields)
        if self.has_trailer:
            size += TRAILER_SIZE
        return size

    @classmethod
    def unpack(cls, buf) -> "Message":
        header = MessageHeader.unpack(buf)
        msg = cls(header=header)
        if header.version < 4:
            logger.debug("decoded v%d message (%d bytes), no extensions", header.version, len(buf))
            return msg

        remain = len(buf) - HEADER_SIZE
        if remain == 0:
            return msg
        if remain < TRAILER_SIZE:
            raise MalformedPacketError(f"not enough data following header: {remain} bytes")

        # Key Identifier: 32bit unsigned, MD5 鍵の識別子
        # Message Digest: 128bit, key + header + extension fields のハッシュ（検証はしない）
        # 固定長のフィールドはバッファ末尾から読む
        end = len(buf)
        msg.digest = bytes(buf[end - DIGEST_SIZE:end])
        end -= DIGEST_SIZE
        (msg.key_id,) = _KEY_ID.unpack_from(buf, end - KEY_ID_SIZE)
        end -= KEY_ID_SIZE
        msg.extension_fields = unpack_extension_fields(buf, HEADER_SIZE, end)
        logger.debug(
            "decoded v%d message: mode=%s ext=%d key_id=%d",
            header.version, msg.role.name, len(msg.extension_fields), msg.key_id,
        )
        return msg

    def pack(self, buf=None):
        """
        Encode into buf (or a new bytearray of wire_size() bytes) and return it.

        Fields are validated and a caller-supplied buffer is checked to hold
        wire_size() bytes before the first write, so on NTPValueError or
        BufferTooSmallError the buffer is left untouched.
        """
        self.validate()
        size = self.wire_size()
        if buf is None:
            buf = bytearray(size)
        check_room(buf, 0, size)

        self.header.pack(buf)
        if self.header.version < 4:
            if self.extension_fields or self.has_trailer:
                logger.debug("v%d message: extension fields / trailer not encoded", self.header.version)
            return buf

        i = HEADER_SIZE
        i += pack_extension_fields(self.extension_fields, buf, i)
        if self.has_trailer:
            _KEY_ID.pack_into(buf, i, self.key_id)
            i += KEY_ID_SIZE
            buf[i:i + DIGEST_SIZE] = self.digest
        return buf

    def to_bytes(self) -> bytes:
        return bytes(self.pack())


def client_request(
    version: int = 4,
    poll: int = 0,
    precision: int = 0,
    transmit: Optional[Timestamp] = None,
    rng: Optional[random.Random] = None,
    randomize: bool = True,
) -> Message:
    """
    Client mode (3) request. transmit defaults to the current time; the
    server echoes it back as the originate timestamp (T1).
    """
    if transmit is None:
        transmit = Timestamp.from_unix_ns(time.time_ns(), rng=rng, randomize=randomize)
    header = MessageHeader(
        leap=LeapIndicator.NO_WARNING,
        version=version,
        mode=Mode.CLIENT,
        poll=poll,
        precision=precision,
        transmit=transmit,
    )
    return Message(header=header)


__all__ = [
    "HEADER_SIZE",
    "TRAILER_SIZE",
    "LeapIndicator",
    "Mode",
    "MessageHeader",
    "ExtensionField",
    "Message",
    "client_request",
    "extension_fields_size",
    "pack_extension_fields",
    "validate_extension_fields",
    "unpack_extension_fields",
]
