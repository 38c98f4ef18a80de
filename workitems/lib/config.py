"""
Configuration loaders for work items.

Two files live in the config directory:
- workitems.env: runtime settings (database path, locking), KEY=value
- workflow.yaml: workflow rules (status mode, cascade toggles)

Both are optional. Missing files mean defaults; a value that does not
parse falls back to its default with a warning. A file that cannot be
parsed at all is a ConfigError.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from workitems.lib import envparse
from workitems.lib import validate
from workitems.lib.constants import (
    DEFAULT_CASCADE_LOCK_TIMEOUT,
    DEFAULT_DATABASE_PATH,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_LOCK_TTL,
    ENV_FILE,
    HOME_ENV_VAR,
    LOCK_POLICIES,
    LOCK_POLICY_BLOCK,
    WORKFLOW_FILE,
    StatusMode,
)
from workitems.lib.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class LockSettings:
    """Entity lock coordinator settings from workitems.env"""
    enabled: bool = True
    timeout: float = DEFAULT_LOCK_TIMEOUT  # Wait for a busy entity
    ttl: float = DEFAULT_LOCK_TTL  # Backstop for abandoned locks
    policy: str = LOCK_POLICY_BLOCK  # block | fail_fast
    cascade_timeout: float = DEFAULT_CASCADE_LOCK_TIMEOUT  # Wait for an ancestor


@dataclass
class CascadeSettings:
    """Cascade toggles from workflow.yaml"""
    enabled: bool = True
    start_cascade: bool = True


@dataclass
class Config:
    database_path: Path
    status_mode: StatusMode = StatusMode.STRICT
    locking: LockSettings = field(default_factory=LockSettings)
    cascade: CascadeSettings = field(default_factory=CascadeSettings)
    config_dir: Optional[Path] = None


DEFAULT_WORKFLOW = {
    "status_mode": StatusMode.STRICT.value,
    "cascade": {
        "enabled": True,
        "start_cascade": True,
    },
}


def resolve_config_dir(explicit: Optional[Path] = None) -> Path:
    """Pick the config directory: explicit, then $WORKITEMS_HOME, then cwd."""
    if explicit is not None:
        return Path(explicit)
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home)
    return Path.cwd()


def _env_float(env: dict, key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{key}={raw!r} is not a number, using {default}")
        return default
    if value < 0:
        logger.warning(f"{key}={raw!r} is negative, using {default}")
        return default
    return value


def _env_bool(env: dict, key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        return envparse.parse_bool(raw)
    except ValueError:
        logger.warning(f"{key}={raw!r} is not a boolean, using {default}")
        return default


def _parse_mode(raw: Optional[str], source: str, default: StatusMode) -> StatusMode:
    if raw is None:
        return default
    try:
        return StatusMode(str(raw).strip().lower())
    except ValueError:
        logger.warning(f"{source}: unknown status mode {raw!r}, using {default.value}")
        return default


def load_env_settings(config_dir: Path) -> dict:
    """Load workitems.env, or {} if absent.

    Raises:
        ConfigError: if the file exists but cannot be parsed
    """
    env_path = config_dir / ENV_FILE
    if not env_path.exists():
        return {}
    try:
        return envparse.load_env(env_path)
    except ValueError as e:
        raise ConfigError(f"{env_path}: {e}") from e


def load_workflow(config_dir: Path) -> dict:
    """Load workflow.yaml merged over defaults.

    Raises:
        ConfigError: if the YAML cannot be parsed
        ValidationError: if it does not match workflow.schema.json
    """
    workflow = {
        "status_mode": DEFAULT_WORKFLOW["status_mode"],
        "cascade": dict(DEFAULT_WORKFLOW["cascade"]),
    }
    path = config_dir / WORKFLOW_FILE
    if not path.exists():
        return workflow

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e

    validate.validate(data, "workflow")

    if "status_mode" in data:
        workflow["status_mode"] = data["status_mode"]
    workflow["cascade"].update(data.get("cascade") or {})
    return workflow


def load_config(config_dir: Optional[Path] = None) -> Config:
    """Load workitems.env and workflow.yaml from the config directory."""
    config_dir = resolve_config_dir(config_dir)
    env = load_env_settings(config_dir)
    workflow = load_workflow(config_dir)

    db_path = Path(env.get("DATABASE_PATH", DEFAULT_DATABASE_PATH))
    if not db_path.is_absolute():
        db_path = config_dir / db_path

    policy = env.get("LOCK_POLICY", LOCK_POLICY_BLOCK).strip().lower()
    if policy not in LOCK_POLICIES:
        logger.warning(f"LOCK_POLICY={policy!r} is not one of {LOCK_POLICIES}, using {LOCK_POLICY_BLOCK}")
        policy = LOCK_POLICY_BLOCK

    locking = LockSettings(
        enabled=_env_bool(env, "LOCKING_ENABLED", True),
        timeout=_env_float(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
        ttl=_env_float(env, "LOCK_TTL", DEFAULT_LOCK_TTL),
        policy=policy,
        cascade_timeout=_env_float(env, "CASCADE_LOCK_TIMEOUT", DEFAULT_CASCADE_LOCK_TIMEOUT),
    )

    # workflow.yaml wins over the env default
    mode = _parse_mode(env.get("STATUS_MODE"), ENV_FILE, StatusMode.STRICT)
    if (config_dir / WORKFLOW_FILE).exists():
        mode = _parse_mode(workflow["status_mode"], WORKFLOW_FILE, mode)

    cascade = CascadeSettings(
        enabled=bool(workflow["cascade"]["enabled"]),
        start_cascade=bool(workflow["cascade"]["start_cascade"]),
    )

    return Config(
        database_path=db_path,
        status_mode=mode,
        locking=locking,
        cascade=cascade,
        config_dir=config_dir,
    )


def write_default_config(config_dir: Path, force: bool = False) -> list[Path]:
    """Write default workitems.env and workflow.yaml.

    Existing files are left alone unless force is set.

    Returns:
        Paths that were written
    """
    config_dir.mkdir(parents=True, exist_ok=True)
    written = []

    env_path = config_dir / ENV_FILE
    if force or not env_path.exists():
        env_path.write_text(
            "# Work items runtime settings\n"
            f"DATABASE_PATH={DEFAULT_DATABASE_PATH}\n"
            "LOCKING_ENABLED=true\n"
            f"LOCK_TIMEOUT={DEFAULT_LOCK_TIMEOUT:g}\n"
            f"LOCK_TTL={DEFAULT_LOCK_TTL:g}\n"
            f"LOCK_POLICY={LOCK_POLICY_BLOCK}\n"
            f"CASCADE_LOCK_TIMEOUT={DEFAULT_CASCADE_LOCK_TIMEOUT:g}\n"
        )
        written.append(env_path)

    workflow_path = config_dir / WORKFLOW_FILE
    if force or not workflow_path.exists():
        with open(workflow_path, "w") as f:
            yaml.safe_dump(DEFAULT_WORKFLOW, f, default_flow_style=False, sort_keys=False)
        written.append(workflow_path)

    return written
