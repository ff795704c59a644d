# test_config.py
import json

from config import Config


def test_defaults_when_file_missing(tmp_path):
    c = Config(str(tmp_path / "missing.json"))
    assert c.get("ntp", "version") == 4
    assert c.get("ntp", "randomize_low_bits") is True
    assert c.get("ntp", "nope") is None


def test_save_and_reload(tmp_path):
    path = str(tmp_path / "cfg.json")
    c = Config(path)
    assert c.set("ntp", "poll", value=10)
    assert c.save()

    c2 = Config(path)
    assert c2.get("ntp", "poll") == 10
    assert c2.get("ntp", "version") == 4


def test_partial_file_is_merged_with_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"ntp": {"precision": -6}, "unknown": 1}), encoding="utf-8")
    c = Config(str(path))
    assert c.get("ntp", "precision") == -6
    assert c.get("ntp", "poll") == 6
    assert c.get("unknown") is None


def test_broken_file_keeps_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{not json", encoding="utf-8")
    c = Config(str(path))
    assert c.load() is False
    assert c.get("ntp", "version") == 4


def test_header_defaults(tmp_path):
    c = Config(str(tmp_path / "cfg.json"))
    c.set("ntp", "randomize_low_bits", value=False)
    assert c.header_defaults() == {"version": 4, "poll": 6, "precision": -20, "randomize": False}
