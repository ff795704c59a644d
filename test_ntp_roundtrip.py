# test_ntp_roundtrip.py
from datetime import timedelta

import pytest

from ntp_errors import NTPValueError
from ntp_formats import NTP_EPOCH, Timestamp
from ntp_packet import Message, MessageHeader, Mode
from ntp_roundtrip import compute, diff_seconds


def _response(t1, t2, t3, t4=None):
    h = MessageHeader(mode=Mode.SERVER, stratum=2, originate=t1, receive=t2, transmit=t3)
    if t4 is not None:
        h.destination = t4
    return Message(header=h)


def test_offset_and_delay():
    # client 1s behind the server, 1s round trip
    resp = _response(Timestamp(100, 0), Timestamp(101, 0x80000000), Timestamp(101, 0x80000000))
    rt = compute(resp, Timestamp(101, 0))
    assert rt.offset == 1.0
    assert rt.delay == 1.0
    assert rt.offset_ms == 1000.0
    assert rt.delay_ms == 1000.0
    assert rt.server_time == NTP_EPOCH + timedelta(seconds=101.5)


def test_destination_from_header():
    resp = _response(Timestamp(100, 0), Timestamp(102, 0), Timestamp(103, 0), Timestamp(101, 0))
    rt = compute(resp)
    assert rt.offset == 2.0
    assert rt.delay == 0.0


def test_diff_across_era_boundary():
    assert diff_seconds(Timestamp(0, 0), Timestamp(0xFFFFFFFF, 0)) == 1.0
    assert diff_seconds(Timestamp(0xFFFFFFFF, 0), Timestamp(0, 0)) == -1.0


def test_missing_timestamps():
    with pytest.raises(NTPValueError):
        compute(_response(Timestamp(1, 0), Timestamp(2, 0), Timestamp()), Timestamp(3, 0))
    with pytest.raises(NTPValueError):
        compute(_response(Timestamp(1, 0), Timestamp(2, 0), Timestamp(2, 0)))
