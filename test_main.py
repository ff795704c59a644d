# test_main.py
import io

from config import Config
from main import main
from ntp_packet import HEADER_SIZE, Message, Mode

CLIENT_HEADER_HEX = "230004fa" + "00" * 44


def _run(tmp_path, *argv):
    return main(["--config", str(tmp_path / "cfg.json"), *argv])


def test_encode_client_request(tmp_path, capsys):
    assert _run(tmp_path, "encode", "--poll", "4", "--precision", "-6") == 0
    out = capsys.readouterr().out.strip()
    data = bytes.fromhex(out)
    assert len(data) == HEADER_SIZE
    msg = Message.unpack(data)
    assert msg.role == Mode.CLIENT
    assert msg.header.poll == 4
    assert msg.header.precision == -6
    assert not msg.header.transmit.is_zero


def test_encode_uses_config_defaults(tmp_path, capsys):
    (tmp_path / "cfg.json").write_text('{"ntp": {"version": 3, "poll": 10}}', encoding="utf-8")
    assert _run(tmp_path, "encode") == 0
    msg = Message.unpack(bytes.fromhex(capsys.readouterr().out.strip()))
    assert msg.header.version == 3
    assert msg.header.poll == 10


def test_decode(tmp_path, capsys):
    assert _run(tmp_path, "decode", CLIENT_HEADER_HEX) == 0
    out = capsys.readouterr().out
    assert "version:         4" in out
    assert "CLIENT" in out
    assert "precision:       -6" in out


def test_decode_with_trailer(tmp_path, capsys):
    packet = CLIENT_HEADER_HEX + "0103aabbcc00" + "0000002a" + "ff" * 16
    assert _run(tmp_path, "decode", packet) == 0
    out = capsys.readouterr().out
    assert "extension:       type=1 value=aabbcc" in out
    assert "key_id:          42" in out


def test_decode_from_stdin(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO(CLIENT_HEADER_HEX[:40] + "\n" + CLIENT_HEADER_HEX[40:]))
    assert _run(tmp_path, "decode", "-") == 0
    assert "mode:            3" in capsys.readouterr().out


def test_decode_bad_hex(tmp_path):
    assert _run(tmp_path, "decode", "zz") == 2


def test_decode_truncated_packet(tmp_path):
    assert _run(tmp_path, "decode", "2300") == 1


def test_encode_save_stores_overrides(tmp_path, capsys):
    assert _run(tmp_path, "encode", "--poll", "8", "--save") == 0
    capsys.readouterr()
    assert Config(str(tmp_path / "cfg.json")).get("ntp", "poll") == 8


def test_encode_save_skips_invalid_values(tmp_path):
    assert _run(tmp_path, "encode", "--poll", "200", "--save") == 1
    assert not (tmp_path / "cfg.json").exists()
