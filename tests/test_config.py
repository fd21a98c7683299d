"""
tests/test_config.py — YAML configuration loader
==================================================
"""

from __future__ import annotations

import pytest

from marketchat.config import ChatConfig, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file_yields_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg == ChatConfig()
        assert cfg.max_message_length == 500
        assert cfg.default_rate_limit == 10
        assert cfg.analyst_rate_limit == 30
        assert cfg.typing_ttl_seconds == 5.0

    def test_empty_file_yields_defaults(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == ChatConfig()

    def test_overrides_are_applied(self, tmp_path):
        cfg = load_config(_write(tmp_path, (
            "service_name: desk-chat\n"
            "max_message_length: 280\n"
            "default_rate_limit: 5\n"
            "rate_warning_ratio: 0.5\n"
        )))
        assert cfg.service_name == "desk-chat"
        assert cfg.max_message_length == 280
        assert cfg.default_rate_limit == 5
        assert cfg.rate_warning_ratio == 0.5
        # untouched keys keep their defaults
        assert cfg.analyst_rate_limit == 30

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "history_limit: 25\n")
        monkeypatch.setenv("MARKETCHAT_CONFIG", str(path))
        assert load_config().history_limit == 25

    @pytest.mark.parametrize("text", [
        "default_rate_limit: 0\n",
        "max_message_length: -1\n",
        "rate_warning_ratio: 1.5\n",
        "typing_ttl_seconds: 0\n",
    ])
    def test_out_of_range_values_rejected(self, tmp_path, text):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, text))
