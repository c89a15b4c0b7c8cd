"""
Tests for supply/main.py -- the maintenance CLI.
"""

import json

import pytest

from supply import main as cli


@pytest.fixture
def offline_env(monkeypatch, tmp_path):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("QUIZ_SUPPLY_MODEL", raising=False)
    monkeypatch.delenv("QUIZ_SUPPLY_MIRROR_DIR", raising=False)
    monkeypatch.setenv("QUIZ_SUPPLY_DATA_DIR", str(tmp_path / "data"))
    return tmp_path


class TestCli:
    def test_stats(self, offline_env, capsys):
        assert cli.main(["stats"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_items"] == 0
        assert stats["mirror_count"] == -1

    def test_generate_offline_stores_nothing(self, offline_env, capsys):
        assert cli.main(["generate", "2"]) == 0
        cli.main(["stats"])
        assert json.loads(capsys.readouterr().out)["total_items"] == 0

    def test_dedup_on_empty_corpus(self, offline_env, capsys):
        assert cli.main(["dedup"]) == 0
        assert "duplicates=0" in capsys.readouterr().out

    def test_push_without_mirror_fails(self, offline_env):
        assert cli.main(["push"]) == 1

    def test_push_with_mirror(self, offline_env, monkeypatch, capsys):
        monkeypatch.setenv("QUIZ_SUPPLY_MIRROR_DIR", str(offline_env / "mirror"))
        assert cli.main(["push"]) == 0
        assert "pushed=0" in capsys.readouterr().out

    def test_settings_file_applied(self, offline_env):
        settings = offline_env / "data" / "settings.json"
        settings.parent.mkdir(parents=True)
        settings.write_text(json.dumps({"use_digits": False}), encoding="utf-8")
        config = cli.build_config()
        assert config.use_digits is False
        assert config.data_dir == str(offline_env / "data")

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            cli.main([])
