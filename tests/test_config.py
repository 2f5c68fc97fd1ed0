"""Tests for journal.toml loading and CLI overrides."""

import pytest

from genie_journal.config import ConfigError, load_config, parse_ignore
from genie_journal.models import Author


class TestDefaults:
    def test_no_file(self, tmp_path):
        cfg = load_config(tmp_path)
        assert cfg.root == tmp_path.resolve()
        assert cfg.ref == "refs/heads/journal"
        assert cfg.notes_ref == "refs/notes/genie"
        assert cfg.interval_ms == 4000
        assert cfg.ignore == []
        assert cfg.flush_on_exit is True
        assert cfg.author == Author("Genie-bot", "genie@example.com")
        assert (cfg.api.host, cfg.api.port, cfg.api.max_port_retries) == ("127.0.0.1", 3000, 100)
        assert cfg.config_path is None


class TestFile:
    def test_values_are_read(self, tmp_path):
        (tmp_path / "journal.toml").write_text(
            '[journal]\n'
            'ref = "refs/heads/timeline"\n'
            'interval_ms = 250\n'
            'ignore = ["*.log", "dist/**"]\n'
            'flush_on_exit = false\n'
            '[author]\n'
            'name = "Bot"\n'
            'email = "bot@example.com"\n'
            '[api]\n'
            'port = 9000\n'
            'max_port_retries = 5\n'
        )
        cfg = load_config(tmp_path)
        assert cfg.ref == "refs/heads/timeline"
        assert cfg.interval_ms == 250
        assert cfg.ignore == ["*.log", "dist/**"]
        assert cfg.flush_on_exit is False
        assert cfg.author == Author("Bot", "bot@example.com")
        assert cfg.api.retry_policy.base_port == 9000
        assert cfg.api.retry_policy.max_attempts == 5
        assert cfg.config_path == tmp_path.resolve() / "journal.toml"

    def test_ignore_as_comma_string(self, tmp_path):
        (tmp_path / "journal.toml").write_text('[journal]\nignore = "a, b ,,c"\n')
        assert load_config(tmp_path).ignore == ["a", "b", "c"]

    def test_found_in_parent(self, tmp_path):
        (tmp_path / "journal.toml").write_text("[journal]\ninterval_ms = 10\n")
        sub = tmp_path / "sub"
        sub.mkdir()
        cfg = load_config(sub)
        assert cfg.interval_ms == 10
        assert cfg.root == sub.resolve()

    def test_invalid_toml(self, tmp_path):
        (tmp_path / "journal.toml").write_text("[journal\n")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_bad_value_type(self, tmp_path):
        (tmp_path / "journal.toml").write_text('[journal]\ninterval_ms = "soon"\n')
        with pytest.raises(ConfigError):
            load_config(tmp_path)


class TestOverrides:
    def test_overrides_apply(self, tmp_path):
        cfg = load_config(tmp_path).with_overrides(interval_ms=50, ignore=["x"], api_port=8000, ref="refs/heads/j2")
        assert (cfg.interval_ms, cfg.ignore, cfg.api.port, cfg.ref) == (50, ["x"], 8000, "refs/heads/j2")

    def test_none_keeps_values(self, tmp_path):
        base = load_config(tmp_path)
        assert base.with_overrides() == base

    def test_original_untouched(self, tmp_path):
        base = load_config(tmp_path)
        base.with_overrides(api_port=1234, ignore=["y"])
        assert base.api.port == 3000
        assert base.ignore == []


class TestParseIgnore:
    @pytest.mark.parametrize("value,expected", [
        (None, []),
        ("", []),
        ("*.log", ["*.log"]),
        ("*.log, node_modules ,", ["*.log", "node_modules"]),
    ])
    def test_split(self, value, expected):
        assert parse_ignore(value) == expected
