"""Saved server profiles in ``servers.yaml``.

Every operation reads the file, mutates and writes it back; nothing is cached
in memory, so the last writer wins.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .config import servers_file_path
from .errors import ConfigError, InvalidAddressError
from .models import validate_address

logger = logging.getLogger("memtui.servers")


@dataclass
class ServerProfile:
    name: str
    address: str
    is_default: bool = False

    def validate(self) -> None:
        if not self.name:
            raise ConfigError("server name cannot be empty")
        if not self.address:
            raise ConfigError("server address cannot be empty")
        try:
            validate_address(self.address)
        except InvalidAddressError as exc:
            raise ConfigError(f"invalid address format: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "address": self.address, "default": self.is_default}

    @classmethod
    def from_dict(cls, data: Any) -> "ServerProfile":
        if not isinstance(data, dict):
            raise ConfigError(f"server entry must be a mapping, got {data!r}")
        return cls(
            name=str(data.get("name") or ""),
            address=str(data.get("address") or ""),
            is_default=bool(data.get("default", False)),
        )


@dataclass
class ProfileSet:
    servers: list[ServerProfile] = field(default_factory=list)
    last_used: str = ""

    def find(self, name: str) -> Optional[ServerProfile]:
        for profile in self.servers:
            if profile.name == name:
                return profile
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"servers": [p.to_dict() for p in self.servers], "last_used": self.last_used}

    @classmethod
    def from_dict(cls, data: Any) -> "ProfileSet":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("servers file must be a mapping object")
        raw_servers = data.get("servers") or []
        if not isinstance(raw_servers, list):
            raise ConfigError("'servers' must be a list")
        return cls(
            servers=[ServerProfile.from_dict(item) for item in raw_servers],
            last_used=str(data.get("last_used") or ""),
        )


def default_profiles() -> ProfileSet:
    return ProfileSet(servers=[ServerProfile("localhost", "localhost:11211", is_default=True)])


class ServerStore:
    """Load-mutate-save access to the profile file at ``path``."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else servers_file_path()

    def load(self) -> ProfileSet:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default_profiles()
        except OSError as exc:
            raise ConfigError(f"failed to read servers config file: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse servers config file: {exc}") from exc
        return ProfileSet.from_dict(data)

    def save(self, profiles: Optional[ProfileSet]) -> None:
        if profiles is None:
            raise ConfigError("cannot save nil config")
        content = yaml.safe_dump(profiles.to_dict(), sort_keys=False)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise ConfigError(f"failed to write servers config file: {exc}") from exc

    def add(self, name: str, address: str) -> ServerProfile:
        profile = ServerProfile(name=name, address=address)
        profile.validate()
        profiles = self.load()
        if profiles.find(name) is not None:
            raise ConfigError(f"server with name {name!r} already exists")
        profiles.servers.append(profile)
        self.save(profiles)
        logger.info("Added server %s (%s)", name, address)
        return profile

    def remove(self, name: str) -> None:
        profiles = self.load()
        if len(profiles.servers) <= 1:
            raise ConfigError("cannot remove the last server")
        remaining = [p for p in profiles.servers if p.name != name]
        if len(remaining) == len(profiles.servers):
            raise ConfigError(f"server {name!r} not found")
        profiles.servers = remaining
        if profiles.last_used == name:
            profiles.last_used = remaining[0].name
        self.save(profiles)
        logger.info("Removed server %s", name)

    def set_default(self, name: str) -> None:
        profiles = self.load()
        if profiles.find(name) is None:
            raise ConfigError(f"server {name!r} not found")
        for profile in profiles.servers:
            profile.is_default = profile.name == name
        self.save(profiles)
        logger.info("Default server is now %s", name)

    def set_last_used(self, name: str) -> None:
        profiles = self.load()
        if profiles.find(name) is None:
            raise ConfigError(f"server {name!r} not found")
        profiles.last_used = name
        self.save(profiles)

    def get(self, name: str) -> ServerProfile:
        profile = self.load().find(name)
        if profile is None:
            raise ConfigError(f"server {name!r} not found")
        return profile

    def list(self) -> list[ServerProfile]:
        return self.load().servers

    def get_default(self) -> ServerProfile:
        profiles = self.load()
        if not profiles.servers:
            raise ConfigError("no servers configured")
        for profile in profiles.servers:
            if profile.is_default:
                return profile
        return profiles.servers[0]

    def get_last_used(self) -> ServerProfile:
        profiles = self.load()
        if not profiles.servers:
            raise ConfigError("no servers configured")
        if profiles.last_used:
            profile = profiles.find(profiles.last_used)
            if profile is not None:
                return profile
        return self.get_default()
