# =============================================================================
# tests/unit/test_config.py
# Unit Tests for configuration loading
# =============================================================================

from pathlib import Path

import pytest

from planner_core.config import PlannerConfig, load_config
from planner_core.errors import ConfigurationError


class TestLoadConfig:
    """Resolution order: environment, then secrets.toml, then defaults"""

    def test_defaults_without_sources(self, tmp_path):
        config = load_config(secrets_path=tmp_path / "missing.toml", env={})

        assert config == PlannerConfig()
        assert config.db_path == Path("local_data") / "plannerpro.db"
        assert config.kv_dir == Path("local_data") / "kv"

    def test_secrets_table_is_used(self, tmp_path):
        secrets = tmp_path / "secrets.toml"
        secrets.write_text(
            '[planner]\napi_base_url = "https://planner.example.com/api"\nrequest_timeout = 3\n',
            encoding="utf-8",
        )

        config = load_config(secrets_path=secrets, env={})

        assert config.api_base_url == "https://planner.example.com/api"
        assert config.request_timeout == 3.0

    def test_environment_overrides_secrets(self, tmp_path):
        secrets = tmp_path / "secrets.toml"
        secrets.write_text('[planner]\nusername = "from_secrets"\n', encoding="utf-8")

        config = load_config(
            secrets_path=secrets,
            env={
                "PLANNER_USERNAME": "from_env",
                "PLANNER_LOG_TO_FILE": "yes",
                "PLANNER_DATA_DIR": str(tmp_path / "store"),
                "PLANNER_MAX_BACKUPS": "2",
            },
        )

        assert config.username == "from_env"
        assert config.log_to_file is True
        assert config.data_dir == tmp_path / "store"
        assert config.max_backups == 2

    def test_blank_environment_value_is_ignored(self, tmp_path):
        config = load_config(secrets_path=tmp_path / "none.toml", env={"PLANNER_USERNAME": "  "})
        assert config.username == "default_user"

    def test_invalid_number_raises(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(secrets_path=tmp_path / "none.toml", env={"PLANNER_REQUEST_TIMEOUT": "soon"})
        assert exc_info.value.details["config_key"] == "PLANNER_REQUEST_TIMEOUT"
        assert not exc_info.value.recoverable

    def test_non_http_url_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(secrets_path=tmp_path / "none.toml", env={"PLANNER_API_BASE_URL": "ftp://x"})

    def test_corrupt_secrets_file_falls_back_to_defaults(self, tmp_path):
        secrets = tmp_path / "secrets.toml"
        secrets.write_text("[planner\nbroken", encoding="utf-8")

        config = load_config(secrets_path=secrets, env={})
        assert config.api_base_url == PlannerConfig().api_base_url

    def test_with_overrides_returns_copy(self):
        base = PlannerConfig()
        changed = base.with_overrides(user_id=7)

        assert changed.user_id == 7
        assert base.user_id == 1
