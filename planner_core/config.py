# =============================================================================
# planner_core/config.py
# Centralized settings for PlannerPro
# =============================================================================
"""
Settings are resolved in this order (first match wins):

1. ``PLANNER_*`` environment variables (a local ``.env`` is loaded first)
2. The ``[planner]`` table of ``.streamlit/secrets.toml``
3. Built-in defaults

Expected secrets.toml format:
    [planner]
    api_base_url = "https://planner.example.com/api"
    data_dir = "local_data"
    request_timeout = 10
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import toml
from dotenv import load_dotenv

from planner_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PLANNER"
SECRETS_PATH = Path(".streamlit") / "secrets.toml"


@dataclass(frozen=True)
class PlannerConfig:
    """Runtime configuration shared by every storage component."""

    # Remote API
    api_base_url: str = "http://localhost:5000/api"
    request_timeout: float = 10.0
    health_timeout: float = 5.0

    # Local storage
    data_dir: Path = field(default_factory=lambda: Path("local_data"))
    db_filename: str = "plannerpro.db"
    probe_timeout: float = 1.0

    # Connectivity monitoring (seconds)
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0

    # Automatic backups
    backup_interval: float = 3600.0
    max_backups: int = 5

    # Implicit single user
    user_id: int = 1
    username: str = "default_user"

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def kv_dir(self) -> Path:
        return self.data_dir / "kv"

    def with_overrides(self, **overrides: Any) -> PlannerConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Convert a raw env/secrets value to the type of the field default."""
    try:
        if isinstance(default, bool):
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, Path):
            return Path(str(raw)).expanduser()
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=type(default).__name__,
        ) from e


def _load_secrets(path: Path) -> Dict[str, Any]:
    """Read the [planner] table from a Streamlit secrets file."""
    if not path.exists():
        return {}
    try:
        secrets = toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return {}
    section = secrets.get("planner", {})
    return dict(section) if isinstance(section, dict) else {}


def load_config(
    secrets_path: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    load_env_file: bool = True,
) -> PlannerConfig:
    """
    Build a PlannerConfig from environment variables and secrets.

    Args:
        secrets_path: Override for the secrets.toml location
        env: Mapping used instead of os.environ (for tests)
        load_env_file: Whether to load a local .env file first

    Returns:
        Resolved PlannerConfig
    """
    if load_env_file and env is None:
        load_dotenv(override=False)

    environ = os.environ if env is None else env
    secrets = _load_secrets(secrets_path or SECRETS_PATH)
    defaults = PlannerConfig()

    values: Dict[str, Any] = {}
    for f in fields(PlannerConfig):
        default = getattr(defaults, f.name)
        env_key = f"{ENV_PREFIX}_{f.name.upper()}"
        raw = environ.get(env_key)
        if raw is not None and str(raw).strip() != "":
            values[f.name] = _coerce(env_key, raw, default)
        elif f.name in secrets:
            values[f.name] = _coerce(f"planner.{f.name}", secrets[f.name], default)

    config = replace(defaults, **values)
    if not config.api_base_url.startswith(("http://", "https://")):
        raise ConfigurationError(
            "api_base_url must be an http(s) URL",
            config_key="api_base_url",
            expected_type="url",
        )
    return config
