"""
ntpcodec — NTP パケットのエンコード/デコード ツール
（ネットワーク送受信はしない。16進文字列を入出力する）

  python main.py decode 2300...      # パケットを解析して表示
  echo 2300... | python main.py decode -
  python main.py encode --poll 6     # クライアント要求を16進で出力
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from config import Config
from ntp_errors import NTPError
from ntp_packet import Message, client_request


def _setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=fmt or "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ntpcodec", description="NTP wire format codec")
    parser.add_argument("--config", default="ntp_codec_config.json", help="JSON settings file")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    dec = sub.add_parser("decode", help="decode a hex encoded packet")
    dec.add_argument("packet", help="hex string, or '-' to read from stdin")

    enc = sub.add_parser("encode", help="encode a client request stamped with the current time")
    enc.add_argument("--version", type=int, default=None)
    enc.add_argument("--poll", type=int, default=None)
    enc.add_argument("--precision", type=int, default=None)
    enc.add_argument("--save", action="store_true", help="store the given header values in the config file")
    return parser


def format_message(msg: Message) -> str:
    h = msg.header
    lines = [
        f"leap:            {h.leap} ({h.leap.name})",
        f"version:         {h.version}",
        f"mode:            {h.mode} ({msg.role.name})",
        f"stratum:         {h.stratum}",
        f"poll:            {h.poll} ({h.poll_seconds:g}s)",
        f"precision:       {h.precision} ({h.precision_seconds:g}s)",
        f"root_delay:      {h.root_delay.to_seconds():.6f}s",
        f"root_dispersion: {h.root_dispersion.to_seconds():.6f}s",
        f"reference_id:    {h.reference_id.hex()} ({h.reference_id_text()})",
    ]
    for name in ("reference_time", "originate", "receive", "transmit"):
        ts = getattr(h, name)
        when = ts.to_datetime().isoformat() if not ts.is_zero else "-"
        lines.append(f"{name + ':':<17}{ts.seconds}.{ts.fraction:08x} {when}")
    for ef in msg.extension_fields:
        lines.append(f"extension:       type={ef.type} value={ef.value.hex()}")
    if msg.has_trailer:
        lines.append(f"key_id:          {msg.key_id}")
        lines.append(f"digest:          {msg.digest.hex()}")
    return "\n".join(lines)


def _read_packet(arg: str) -> bytes:
    text = sys.stdin.read() if arg == "-" else arg
    return bytes.fromhex("".join(text.split()))


def main(argv: Sequence[str]) -> int:
    args = _build_parser().parse_args(list(argv))
    config = Config(args.config)

    level = "DEBUG" if (args.debug or config.get("debug")) else config.get("logging", "level")
    _setup_logging(level, config.get("logging", "format"))
    log = logging.getLogger("ntpcodec.main")

    try:
        if args.command == "decode":
            try:
                data = _read_packet(args.packet)
            except ValueError as e:
                log.error("invalid hex input: %s", e)
                return 2
            msg = Message.unpack(data)
            print(format_message(msg))
            return 0

        defaults = config.header_defaults()
        for key in ("version", "poll", "precision"):
            value = getattr(args, key)
            if value is not None:
                defaults[key] = value
                if args.save:
                    config.set("ntp", key, value=value)
        log.debug("encode: %s", defaults)
        msg = client_request(**defaults)
        msg.validate()
        if args.save and not config.save():
            return 1
        print(msg.to_bytes().hex())
        return 0
    except NTPError as e:
        log.warning("rejected: %s", e)
        return 1


def _entry() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(_entry())
