"""Configuration loading from config.json, environment variables and caller overrides."""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "CMEM_"


@dataclass
class MemoryConfig:
    """Lifecycle and rendering policy. Unset fields are None until defaults apply."""

    auto_session: bool | None = None
    auto_session_hours: float | None = None
    auto_backup: bool | None = None
    backup_interval: int | None = None
    max_backup_days: int | None = None
    token_optimization: bool | None = None
    silent_mode: bool | None = None


DEFAULTS = MemoryConfig(
    auto_session=True,
    auto_session_hours=4,
    auto_backup=True,
    backup_interval=10,
    max_backup_days=7,
    token_optimization=True,
    silent_mode=False,
)

_FIELD_TYPES = {
    "auto_session": bool,
    "auto_session_hours": float,
    "auto_backup": bool,
    "backup_interval": int,
    "max_backup_days": int,
    "token_optimization": bool,
    "silent_mode": bool,
}

# config.json uses the camelCase keys of the persisted format
_FILE_KEYS = {
    "autoSession": "auto_session",
    "autoSessionHours": "auto_session_hours",
    "autoBackup": "auto_backup",
    "backupInterval": "backup_interval",
    "maxBackupDays": "max_backup_days",
    "tokenOptimization": "token_optimization",
    "silentMode": "silent_mode",
}


def merge_config(*layers: MemoryConfig | None) -> MemoryConfig:
    """Combine layers left to right; later non-None values win."""
    result = MemoryConfig()
    for layer in layers:
        if layer is None:
            continue
        updates = {
            f.name: getattr(layer, f.name)
            for f in fields(layer)
            if getattr(layer, f.name) is not None
        }
        result = replace(result, **updates)
    return result


def apply_defaults(config: MemoryConfig) -> MemoryConfig:
    """Fill every unset field from DEFAULTS."""
    return merge_config(DEFAULTS, config)


def _coerce(name: str, raw):
    """Coerce a raw value to the field's type. Returns None if it can't be."""
    expected = _FIELD_TYPES[name]
    if expected is bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in ("1", "true", "yes", "on"):
            return True
        if isinstance(raw, str) and raw.strip().lower() in ("0", "false", "no", "off"):
            return False
        return None
    if isinstance(raw, bool):
        return None
    try:
        value = expected(raw)
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    return value


def config_from_mapping(data: dict) -> MemoryConfig:
    """Build a partial config from camelCase or snake_case keys.

    Unknown keys are ignored; values of the wrong type are skipped with a warning.
    """
    values = {}
    for key, raw in data.items():
        name = _FILE_KEYS.get(key, key)
        if name not in _FIELD_TYPES:
            continue
        value = _coerce(name, raw)
        if value is None:
            logger.warning("Ignoring invalid config value %s=%r", key, raw)
            continue
        values[name] = value
    return MemoryConfig(**values)


def config_from_env(environ=None) -> MemoryConfig:
    """Read CMEM_* overrides from the environment."""
    environ = os.environ if environ is None else environ
    data = {}
    for name in _FIELD_TYPES:
        env_key = ENV_PREFIX + name.upper()
        if env_key in environ:
            data[name] = environ[env_key]
    return config_from_mapping(data)


def _load_dotenv(project_dir: Path) -> None:
    """Load the project's .env file without overriding the real environment."""
    from dotenv import load_dotenv

    env_file = project_dir / ".env"
    if env_file.is_file():
        load_dotenv(env_file, override=False)


def read_config_file(path: Path) -> MemoryConfig:
    """Read config.json. Missing or unparsable files yield an empty layer."""
    if not path.is_file():
        return MemoryConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Could not read config %s, using defaults: %s", path, e)
        return MemoryConfig()
    if not isinstance(data, dict):
        logger.warning("Config %s is not an object, using defaults", path)
        return MemoryConfig()
    return config_from_mapping(data)


def load_config(config_path: Path, overrides: MemoryConfig | None = None) -> MemoryConfig:
    """Resolve configuration for a project.

    Priority: caller overrides > environment (.env loaded first) > config.json > defaults.
    """
    _load_dotenv(config_path.parent.parent)
    return apply_defaults(merge_config(
        read_config_file(config_path),
        config_from_env(),
        overrides,
    ))


def config_to_mapping(config: MemoryConfig) -> dict:
    by_field = {v: k for k, v in _FILE_KEYS.items()}
    return {by_field[f.name]: getattr(config, f.name) for f in fields(config)}


def write_default_config(path: Path) -> bool:
    """Write the default config.json. Returns False if one already exists."""
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config_to_mapping(DEFAULTS), indent=2) + "\n", encoding="utf-8")
    return True
