"""Tests for workitems.lib.config module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from workitems.lib.config import Config, load_config, resolve_config_dir, write_default_config
from workitems.lib.constants import StatusMode
from workitems.lib.errors import ConfigError
from workitems.lib.validate import ValidationError


class TestDefaults:
    """Missing config files mean defaults."""

    def test_empty_dir(self, tmp_path):
        config = load_config(tmp_path)
        assert config.database_path == tmp_path / ".workitems" / "workitems.db"
        assert config.status_mode == StatusMode.STRICT
        assert config.locking.enabled is True
        assert config.locking.timeout == 10.0
        assert config.locking.ttl == 300.0
        assert config.locking.policy == "block"
        assert config.locking.cascade_timeout == 2.0
        assert config.cascade.enabled is True
        assert config.cascade.start_cascade is True

    def test_written_defaults_round_trip(self, tmp_path):
        """Files written by init should load back to the defaults."""
        written = write_default_config(tmp_path)
        assert {p.name for p in written} == {"workitems.env", "workflow.yaml"}
        assert load_config(tmp_path) == Config(
            database_path=tmp_path / ".workitems" / "workitems.db",
            config_dir=tmp_path,
        )

    def test_write_keeps_existing(self, tmp_path):
        (tmp_path / "workitems.env").write_text("LOCK_TIMEOUT=3\n")
        written = write_default_config(tmp_path)
        assert [p.name for p in written] == ["workflow.yaml"]
        assert load_config(tmp_path).locking.timeout == 3.0


class TestEnvSettings:
    """Tests for workitems.env parsing."""

    def test_values(self, tmp_path):
        (tmp_path / "workitems.env").write_text(
            "DATABASE_PATH=/var/lib/wi.db\nLOCKING_ENABLED=false\nLOCK_TIMEOUT=2.5\n"
            "LOCK_POLICY=fail_fast\nSTATUS_MODE=legacy\n"
        )
        config = load_config(tmp_path)
        assert config.database_path == Path("/var/lib/wi.db")
        assert config.locking.enabled is False
        assert config.locking.timeout == 2.5
        assert config.locking.policy == "fail_fast"
        assert config.status_mode == StatusMode.LEGACY

    @patch("workitems.lib.config.envparse.load_env")
    def test_invalid_number_falls_back_with_warning(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "workitems.env").write_text("")
        mock_load_env.return_value = {"LOCK_TIMEOUT": "soon"}
        config = load_config(tmp_path)
        assert config.locking.timeout == 10.0
        assert "LOCK_TIMEOUT='soon' is not a number" in caplog.text

    @patch("workitems.lib.config.envparse.load_env")
    def test_invalid_policy_falls_back(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "workitems.env").write_text("")
        mock_load_env.return_value = {"LOCK_POLICY": "spin"}
        config = load_config(tmp_path)
        assert config.locking.policy == "block"
        assert "LOCK_POLICY" in caplog.text

    @patch("workitems.lib.config.envparse.load_env")
    def test_unknown_mode_falls_back(self, mock_load_env, tmp_path, caplog):
        (tmp_path / "workitems.env").write_text("")
        mock_load_env.return_value = {"STATUS_MODE": "anything"}
        assert load_config(tmp_path).status_mode == StatusMode.STRICT
        assert "unknown status mode" in caplog.text

    def test_unparseable_env_is_config_error(self, tmp_path):
        (tmp_path / "workitems.env").write_text("not a setting\n")
        with pytest.raises(ConfigError):
            load_config(tmp_path)


class TestWorkflowFile:
    """Tests for workflow.yaml."""

    def test_overrides_env_mode(self, tmp_path):
        (tmp_path / "workitems.env").write_text("STATUS_MODE=strict\n")
        (tmp_path / "workflow.yaml").write_text("status_mode: legacy\ncascade:\n  start_cascade: false\n")
        config = load_config(tmp_path)
        assert config.status_mode == StatusMode.LEGACY
        assert config.cascade.start_cascade is False
        assert config.cascade.enabled is True

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "workflow.yaml").write_text("status_mode: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_schema_violation(self, tmp_path):
        (tmp_path / "workflow.yaml").write_text("status_mode: fast\n")
        with pytest.raises(ValidationError) as exc_info:
            load_config(tmp_path)
        assert exc_info.value.schema_name == "workflow"

    def test_unknown_key_rejected(self, tmp_path):
        (tmp_path / "workflow.yaml").write_text("cascade:\n  recursive: true\n")
        with pytest.raises(ValidationError):
            load_config(tmp_path)


class TestConfigDir:
    """Tests for config directory lookup."""

    def test_explicit_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WORKITEMS_HOME", "/somewhere/else")
        assert resolve_config_dir(tmp_path) == tmp_path

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WORKITEMS_HOME", str(tmp_path))
        assert resolve_config_dir() == tmp_path

    def test_cwd(self, tmp_path, monkeypatch):
        monkeypatch.delenv("WORKITEMS_HOME", raising=False)
        monkeypatch.chdir(tmp_path)
        assert resolve_config_dir() == Path.cwd()
