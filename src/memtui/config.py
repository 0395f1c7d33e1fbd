"""Application settings resolved from defaults, YAML file, environment and CLI."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from .errors import ConfigError, InvalidAddressError
from .models import validate_address

APP_NAME = "memtui"
CONFIG_FILE_NAME = "config.yaml"
SERVERS_FILE_NAME = "servers.yaml"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")
_DURATION_UNITS = {None: 1.0, "s": 1.0, "ms": 0.001, "m": 60.0}


def config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """``$XDG_CONFIG_HOME/memtui``, else ``$HOME/.config/memtui``, else ``.config/memtui``."""
    env_map = os.environ if env is None else env
    xdg = env_map.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    home = env_map.get("HOME")
    if home:
        return Path(home) / ".config" / APP_NAME
    return Path(".config") / APP_NAME


def config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(env) / CONFIG_FILE_NAME


def servers_file_path(env: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(env) / SERVERS_FILE_NAME


def _parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_duration(value: Union[int, float, str]) -> float:
    """Seconds from a number or a string such as ``"500ms"``, ``"3s"``, ``"2m"``."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"invalid duration: {value!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _read_config_file(path: Union[str, Path]) -> dict[str, Any]:
    try:
        data = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    try:
        parsed = yaml.safe_load(data) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse config file {path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError("config file must be a mapping object")
    return parsed


@dataclass
class AppConfig:
    """Resolved app config after file/env/CLI merge."""

    default_address: str = "localhost:11211"
    connection_timeout: float = 3.0
    key_enumeration_timeout: float = 30.0
    capability_timeout: float = 5.0
    max_idle_conns: int = 2
    verbose: bool = False
    source_path: Optional[str] = None

    def validate(self) -> "AppConfig":
        try:
            validate_address(self.default_address)
        except InvalidAddressError as exc:
            raise ConfigError(f"invalid default_address: {exc}") from exc
        for name in ("connection_timeout", "key_enumeration_timeout", "capability_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_idle_conns < 1:
            raise ConfigError(f"max_idle_conns must be at least 1, got {self.max_idle_conns}")
        return self

    def to_dict(self) -> dict[str, Any]:
        """The YAML layout read back by ``load_app_config``."""
        return {
            "connection": {
                "default_address": self.default_address,
                "max_idle_conns": self.max_idle_conns,
            },
            "timeouts": {
                "connection": self.connection_timeout,
                "key_enumeration": self.key_enumeration_timeout,
                "capability": self.capability_timeout,
            },
            "verbose": self.verbose,
        }


def _apply_file_config(cfg: AppConfig, data: dict) -> AppConfig:
    connection = data.get("connection", {})
    if isinstance(connection, dict):
        if connection.get("default_address"):
            cfg.default_address = str(connection["default_address"])
        if connection.get("max_idle_conns") is not None:
            cfg.max_idle_conns = _parse_int(connection["max_idle_conns"], "max_idle_conns")
        # Older files carry the connect timeout here.
        if connection.get("timeout") is not None:
            cfg.connection_timeout = parse_duration(connection["timeout"])

    timeouts = data.get("timeouts", {})
    if isinstance(timeouts, dict):
        if timeouts.get("connection") is not None:
            cfg.connection_timeout = parse_duration(timeouts["connection"])
        if timeouts.get("key_enumeration") is not None:
            cfg.key_enumeration_timeout = parse_duration(timeouts["key_enumeration"])
        if timeouts.get("capability") is not None:
            cfg.capability_timeout = parse_duration(timeouts["capability"])

    if _parse_bool(data.get("verbose")) is not None:
        cfg.verbose = bool(_parse_bool(data.get("verbose")))
    return cfg


def _apply_env(cfg: AppConfig, env: Mapping[str, str]) -> AppConfig:
    if env.get("MEMTUI_ADDRESS"):
        cfg.default_address = env["MEMTUI_ADDRESS"]
    if env.get("MEMTUI_TIMEOUT"):
        cfg.connection_timeout = parse_duration(env["MEMTUI_TIMEOUT"])
    if env.get("MEMTUI_KEY_ENUMERATION_TIMEOUT"):
        cfg.key_enumeration_timeout = parse_duration(env["MEMTUI_KEY_ENUMERATION_TIMEOUT"])
    if env.get("MEMTUI_CAPABILITY_TIMEOUT"):
        cfg.capability_timeout = parse_duration(env["MEMTUI_CAPABILITY_TIMEOUT"])
    if env.get("MEMTUI_MAX_IDLE_CONNS"):
        cfg.max_idle_conns = _parse_int(env["MEMTUI_MAX_IDLE_CONNS"], "MEMTUI_MAX_IDLE_CONNS")
    if _parse_bool(env.get("MEMTUI_VERBOSE")) is not None:
        cfg.verbose = bool(_parse_bool(env.get("MEMTUI_VERBOSE")))
    return cfg


def _apply_cli_overrides(cfg: AppConfig, cli: Mapping[str, Any]) -> AppConfig:
    if cli.get("address"):
        cfg.default_address = str(cli["address"])
    if cli.get("timeout") is not None:
        cfg.connection_timeout = parse_duration(cli["timeout"])
    if cli.get("verbose") is not None:
        cfg.verbose = bool(cli["verbose"])
    return cfg


def load_app_config(
    config_file: Optional[str] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Resolve app config from defaults + file + env + CLI.

    An explicitly named file must exist; the default location may be absent.
    """
    env_map = os.environ if env is None else env
    cli = dict(cli_overrides or {})
    cfg = AppConfig()

    explicit = config_file or cli.get("config_path") or env_map.get("MEMTUI_CONFIG")
    resolved = Path(explicit) if explicit else config_path(env_map)
    if explicit or resolved.exists():
        cfg = _apply_file_config(cfg, _read_config_file(resolved))
        cfg.source_path = str(resolved)

    cfg = _apply_env(cfg, env_map)
    cfg = _apply_cli_overrides(cfg, cli)
    return cfg.validate()


def save_config(cfg: AppConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write ``cfg`` atomically; the directory is created with mode 0750."""
    target = Path(path) if path is not None else config_path()
    try:
        target.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
        tmp_path = target.with_name(target.name + ".tmp")
        tmp_path.write_text(yaml.safe_dump(cfg.to_dict(), sort_keys=False), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, target)
    except OSError as exc:
        raise ConfigError(f"failed to write config file {target}: {exc}") from exc
    return target
