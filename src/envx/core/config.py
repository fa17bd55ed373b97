"""
Configuration loading for envx.

Three layers, later ones win for every key they set:

    default  <  global (~/.config/envx/config.yaml)  <  directory (./.envx.yaml)

``ENVX_CONFIG_DIR`` relocates the global file (and the password store's salt
directory), which keeps tests away from the real home directory.

``config set``/``reset``/``init`` edit exactly one of the two files; the
effective value of a key is whatever the highest layer that sets it says.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .envfile import build_filename
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV_VAR = "ENVX_CONFIG_DIR"
GLOBAL_CONFIG_NAME = "config.yaml"
DIRECTORY_CONFIG_NAME = ".envx.yaml"

SOURCE_DEFAULT = "default"
SOURCE_GLOBAL = "global"
SOURCE_DIRECTORY = "directory"


@dataclass
class Config:
    keystore: str = "keyring"
    file: str = ".env"
    name: Optional[str] = None
    format: str = "env"
    account: Optional[str] = None
    iterations: int = 100_000
    backup_on_write: bool = True
    # candidate env files, first existing one wins when no file/name is given
    file_resolution: List[str] = field(default_factory=list)


CONFIG_KEYS = tuple(f.name for f in fields(Config))

_TYPES: Dict[str, tuple] = {
    "keystore": (str,),
    "file": (str,),
    "name": (str, type(None)),
    "format": (str,),
    "account": (str, type(None)),
    "iterations": (int,),
    "backup_on_write": (bool,),
    "file_resolution": (list,),
}

_TRUE = ("true", "yes", "on", "1")
_FALSE = ("false", "no", "off", "0")


def global_config_path() -> Path:
    override = os.getenv(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override) / GLOBAL_CONFIG_NAME
    return Path.home() / ".config" / "envx" / GLOBAL_CONFIG_NAME


def directory_config_path(cwd: Path | str | None = None) -> Path:
    return Path(cwd or Path.cwd()) / DIRECTORY_CONFIG_NAME


def config_file_path(directory: bool = False, cwd: Path | str | None = None) -> Path:
    """Path of the file ``config set``/``reset``/``init`` operate on."""
    return directory_config_path(cwd) if directory else global_config_path()


def _check_key(key: str) -> str:
    if key not in CONFIG_KEYS:
        raise ConfigError(f"unknown configuration key: {key} (choose from {', '.join(CONFIG_KEYS)})")
    return key


def _validate(data: Dict[str, Any], path: Path) -> Dict[str, Any]:
    for key, value in data.items():
        if key not in CONFIG_KEYS:
            raise ConfigError(f"{path}: unknown configuration key: {key}")
        allowed = _TYPES[key]
        # bool is an int subclass; keep `iterations: true` out
        if isinstance(value, bool) and bool not in allowed:
            raise ConfigError(f"{path}: {key} must be {allowed[0].__name__}")
        if not isinstance(value, allowed):
            raise ConfigError(f"{path}: {key} must be {allowed[0].__name__}")
    if "iterations" in data and data["iterations"] < 1:
        raise ConfigError(f"{path}: iterations must be positive")
    if "format" in data and data["format"] not in ("env", "json"):
        raise ConfigError(f"{path}: unsupported format: {data['format']}")
    if "file_resolution" in data and not all(isinstance(v, str) and v for v in data["file_resolution"]):
        raise ConfigError(f"{path}: file_resolution must be a list of file names")
    return data


def parse_config_value(key: str, text: str) -> Any:
    """Convert a command line string into the type ``key`` stores.

    ``file_resolution`` takes a comma separated list; booleans accept
    true/false, yes/no, on/off and 1/0.
    """
    _check_key(key)
    allowed = _TYPES[key]
    if bool in allowed:
        lowered = text.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigError(f"{key} must be a boolean (true or false), got {text!r}")
    if int in allowed:
        try:
            return int(text)
        except ValueError:
            raise ConfigError(f"{key} must be an integer, got {text!r}") from None
    if list in allowed:
        return [part.strip() for part in text.split(",") if part.strip()]
    return text


def format_config_value(value: Any) -> str:
    """Render a config value the way the command line accepts it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(value)
    return str(value)


def load_config_file(path: Path | str) -> Optional[Dict[str, Any]]:
    """Return the raw mapping stored in ``path``, or None if it does not exist."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return _validate(data, path)


def save_config_file(path: Path | str, data: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    clean = {k: v for k, v in data.items() if v is not None}
    path.write_text(yaml.safe_dump(clean, default_flow_style=False, sort_keys=True), encoding="utf-8")


def set_config_value(key: str, value: Any, directory: bool = False, cwd: Path | str | None = None) -> Path:
    """Store ``key`` in the global (or directory) file and return that file's path.

    ``value`` may be a command line string; it is converted with
    :func:`parse_config_value` and validated before anything is written.
    """
    _check_key(key)
    if isinstance(value, str):
        value = parse_config_value(key, value)

    path = config_file_path(directory, cwd)
    data = load_config_file(path) or {}
    data[key] = value
    _validate(data, path)
    save_config_file(path, data)
    logger.info("set %s in %s", key, path)
    return path


def reset_config_value(key: str, directory: bool = False, cwd: Path | str | None = None) -> Path:
    """Remove ``key`` from one file so lower layers apply again.

    A file left without keys is deleted.
    """
    _check_key(key)
    path = config_file_path(directory, cwd)
    data = load_config_file(path)
    if data is None or key not in data:
        return path

    del data[key]
    if data:
        save_config_file(path, data)
    else:
        path.unlink()
        logger.info("removed empty config file %s", path)
    return path


def init_config(directory: bool = False, cwd: Path | str | None = None) -> Path:
    """Drop one config file so every key it set falls back to the lower layers."""
    path = config_file_path(directory, cwd)
    try:
        path.unlink()
        logger.info("removed %s", path)
    except FileNotFoundError:
        pass
    return path


def config_report(cwd: Path | str | None = None) -> Dict[str, Dict[str, Any]]:
    """Return ``{key: {"value": ..., "source": ...}}`` for the effective config."""
    report = {k: {"value": v, "source": SOURCE_DEFAULT} for k, v in asdict(Config()).items()}

    layers = (
        (SOURCE_GLOBAL, global_config_path()),
        (SOURCE_DIRECTORY, directory_config_path(cwd)),
    )
    for source, path in layers:
        data = load_config_file(path)
        if data is None:
            continue
        logger.debug("loaded %s config from %s", source, path)
        for key, value in data.items():
            if value is None:
                continue
            report[key] = {"value": value, "source": source}
    return report


def get_config_value(key: str, cwd: Path | str | None = None) -> Tuple[Any, str]:
    """Return ``(value, source)`` for one effective key."""
    entry = config_report(cwd)[_check_key(key)]
    return entry["value"], entry["source"]


def load_config(cwd: Path | str | None = None, **overrides: Any) -> Config:
    """Merge all layers, then apply non-None keyword overrides (CLI flags)."""
    values = {k: entry["value"] for k, entry in config_report(cwd).items()}
    for key, value in overrides.items():
        if key not in values:
            raise ConfigError(f"unknown configuration key: {key}")
        if value is not None:
            values[key] = value
    return Config(**values)


def resolve_env_file(
    config: Config,
    file: Optional[str] = None,
    name: Optional[str] = None,
    cwd: Path | str | None = None,
) -> str:
    """Pick the env file a command works on.

    In order: an explicit ``file`` (with an explicit ``name`` suffix, if any),
    an explicit or configured ``name`` applied to the configured file, the
    first entry of ``file_resolution`` that exists under ``cwd``, and finally
    the configured ``file``.
    """
    if file:
        return build_filename(file, name)
    if name or config.name:
        return build_filename(config.file, name or config.name)

    base = Path(cwd or Path.cwd())
    for candidate in config.file_resolution:
        if (base / candidate).exists():
            logger.debug("resolved env file %s from file_resolution", candidate)
            return candidate
    return config.file
