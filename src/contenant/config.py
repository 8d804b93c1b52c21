"""Layered configuration for contenant.

Configuration is read from up to three layers, in increasing precedence:

    default  (built in, never on disk)
    user     (<config-home>/config.yml)
    project  (<project>/.contenant/config.yml)

Each field merges differently across layers:

- claude.version: last writer wins (highest precedence that sets it)
- mounts, network.allowed_domains: accumulate across all layers
- env, bridge.triggers: merged by key, higher precedence overrides
- bridge.port: highest precedence non-default value wins

Example config.yml:

    claude:
      version: "2.0.14"
    mounts:
      - source: ~/.gitconfig
        target: ~/.gitconfig
      - source: data
        target: /data
        readonly: false
    env:
      EDITOR: vim
    bridge:
      port: 19500
      triggers:
        notify: notify-send "claude is done"
    network:
      allowed_domains:
        - api.github.com
"""

from __future__ import annotations

import os
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .constants import CONTAINER_HOME, DEFAULT_ALLOWED_DOMAINS, DEFAULT_BRIDGE_PORT
from .errors import ConfigError
from .logging import get_logger
from .paths import expand_tilde, host_home, project_config_file

if TYPE_CHECKING:
    from .paths import AppDirs

logger = get_logger(__name__)


class ConfigSource(IntEnum):
    """Configuration layer origin. Higher value means higher precedence."""

    DEFAULT = 0
    USER = 1
    PROJECT = 2


@dataclass(frozen=True)
class Mount:
    """A host path bind-mounted into the container."""

    source: str
    target: str | None = None
    readonly: bool = False

    def to_volume(self, config_dir: str | Path, home: str | Path | None = None) -> str:
        """Render the mount as a ``-v`` volume argument.

        The source expands ``~`` against the host home and, when relative,
        resolves under config_dir. The target (defaulting to the unexpanded
        source) expands ``~`` against the container home.

        Args:
            config_dir: Directory of the layer that declared this mount.
            home: Host home directory (defaults to the current user's).

        Returns:
            ``"<source>:<target>"`` with ``":ro"`` appended when readonly.
        """
        source = expand_tilde(self.source, home if home is not None else host_home())
        target = self.target if self.target is not None else self.source
        target = expand_tilde(target, CONTAINER_HOME)

        if not os.path.isabs(source):
            source = str(Path(config_dir) / source)

        volume = f"{source}:{target}"
        if self.readonly:
            volume += ":ro"
        return volume


@dataclass
class ClaudeSettings:
    version: str | None = None


@dataclass
class BridgeConfig:
    """Bridge server settings."""

    port: int = DEFAULT_BRIDGE_PORT
    triggers: dict[str, str] = field(default_factory=dict)


@dataclass
class NetworkConfig:
    allowed_domains: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Configuration data of a single layer."""

    claude: ClaudeSettings = field(default_factory=ClaudeSettings)
    mounts: list[Mount] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, origin: str = "<config>") -> Config:
        """Build a Config from a parsed document.

        Raises:
            ConfigError: If the document has unknown keys or wrong value types.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError(f"{origin}: top level must be a mapping")

        unknown = set(data) - _TOP_LEVEL_KEYS
        if unknown:
            raise ConfigError(f"{origin}: unknown key(s): {', '.join(sorted(unknown))}")

        claude = _section(data, "claude", origin, {"version"})
        bridge = _section(data, "bridge", origin, {"port", "triggers"})
        network = _section(data, "network", origin, {"allowed_domains"})

        version = claude.get("version")
        if version is not None and not isinstance(version, str):
            raise ConfigError(f"{origin}: claude.version must be a string (quote it)")

        port = bridge.get("port", DEFAULT_BRIDGE_PORT)
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigError(f"{origin}: bridge.port must be an integer between 1 and 65535")

        return cls(
            claude=ClaudeSettings(version=version),
            mounts=_parse_mounts(data.get("mounts"), origin),
            env=_string_map(data.get("env"), "env", origin),
            bridge=BridgeConfig(
                port=port,
                triggers=_string_map(bridge.get("triggers"), "bridge.triggers", origin),
            ),
            network=NetworkConfig(
                allowed_domains=_string_list(
                    network.get("allowed_domains"), "network.allowed_domains", origin
                ),
            ),
        )


_TOP_LEVEL_KEYS = frozenset({"claude", "mounts", "env", "bridge", "network"})


def _section(data: dict[str, Any], key: str, origin: str, allowed: set[str]) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{origin}: {key} must be a mapping")
    unknown = set(value) - allowed
    if unknown:
        raise ConfigError(f"{origin}: unknown key(s) in {key}: {', '.join(sorted(unknown))}")
    return value


def _string_map(value: Any, name: str, origin: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{origin}: {name} must be a mapping")
    result: dict[str, str] = {}
    for key, item in value.items():
        # YAML turns unquoted numbers into int/float; bools are too ambiguous to coerce
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise ConfigError(f"{origin}: {name}.{key} must be a string")
        result[str(key)] = str(item)
    return result


def _string_list(value: Any, name: str, origin: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{origin}: {name} must be a list of strings")
    return list(value)


def _check_target(mount: Mount, where: str) -> None:
    # Container paths must be absolute once ~ is expanded
    target = mount.target if mount.target is not None else mount.source
    if not os.path.isabs(expand_tilde(target, CONTAINER_HOME)):
        raise ConfigError(
            f"{where} must be an absolute container path or start with ~ (got {target!r})"
        )


def _parse_mounts(value: Any, origin: str) -> list[Mount]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{origin}: mounts must be a list")

    mounts: list[Mount] = []
    for i, entry in enumerate(value):
        # Mounts from config files are read-only unless stated otherwise
        if isinstance(entry, str):
            mount = Mount(source=entry, readonly=True)
            _check_target(mount, f"{origin}: mounts[{i}].target")
            mounts.append(mount)
            continue
        if not isinstance(entry, dict):
            raise ConfigError(f"{origin}: mounts[{i}] must be a mapping or a string")

        unknown = set(entry) - {"source", "target", "readonly"}
        if unknown:
            keys = ", ".join(sorted(unknown))
            raise ConfigError(f"{origin}: unknown key(s) in mounts[{i}]: {keys}")

        source = entry.get("source")
        target = entry.get("target")
        readonly = entry.get("readonly", True)
        if not isinstance(source, str) or not source:
            raise ConfigError(f"{origin}: mounts[{i}].source is required")
        if target is not None and not isinstance(target, str):
            raise ConfigError(f"{origin}: mounts[{i}].target must be a string")
        if not isinstance(readonly, bool):
            raise ConfigError(f"{origin}: mounts[{i}].readonly must be true or false")
        mount = Mount(source=source, target=target, readonly=readonly)
        _check_target(mount, f"{origin}: mounts[{i}].target")
        mounts.append(mount)
    return mounts


def parse_config_file(path: Path) -> Config:
    """Read and parse a config file.

    A missing file is the caller's concern; anything that exists but cannot be
    read or parsed is an error, never an empty config.

    Raises:
        ConfigError: If the file is unreadable, not valid YAML, or invalid.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    return Config.from_dict(data, origin=str(path))


@dataclass(frozen=True)
class ConfigLayer:
    """One configuration source with its data and anchor directory."""

    source: ConfigSource
    data: Config
    config_dir: Path


class StackedConfig:
    """Configuration layers kept sorted by ascending precedence.

    The default layer is always present. Layers of equal precedence are kept
    in insertion order. Accessors are pure reads over the layers.
    """

    def __init__(self) -> None:
        self._layers: list[ConfigLayer] = [
            ConfigLayer(source=ConfigSource.DEFAULT, data=Config(), config_dir=Path("."))
        ]

    @classmethod
    def load(cls, app_dirs: AppDirs, project_dir: Path | None = None) -> StackedConfig:
        """Load the user and project config files that exist.

        Raises:
            ConfigError: If an existing config file is malformed.
        """
        stack = cls()

        candidates: list[tuple[ConfigSource, Path]] = [
            (ConfigSource.USER, app_dirs.user_config_file),
        ]
        if project_dir is not None:
            candidates.append((ConfigSource.PROJECT, project_config_file(project_dir)))

        for source, path in candidates:
            if not path.is_file():
                logger.debug("No %s config at %s", source.name.lower(), path)
                continue
            logger.debug("Loading %s config from %s", source.name.lower(), path)
            stack.add_layer(source, parse_config_file(path), path.parent)

        return stack

    def add_layer(self, source: ConfigSource, data: Config, config_dir: Path) -> None:
        """Insert a layer after all layers of lower or equal precedence."""
        index = bisect_right([layer.source for layer in self._layers], source)
        self._layers.insert(index, ConfigLayer(source=source, data=data, config_dir=config_dir))

    def layers(self) -> tuple[ConfigLayer, ...]:
        return tuple(self._layers)

    def claude_version(self) -> str | None:
        for layer in reversed(self._layers):
            if layer.data.claude.version is not None:
                return layer.data.claude.version
        return None

    def mounts(self) -> list[tuple[Mount, Path]]:
        """Return every layer's mounts with the declaring layer's config dir.

        Nothing is de-duplicated: when two mounts share a target, the runtime
        applies the later ``-v`` flag.
        """
        return [(mount, layer.config_dir) for layer in self._layers for mount in layer.data.mounts]

    def env(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for layer in self._layers:
            merged.update(layer.data.env)
        return merged

    def bridge(self) -> BridgeConfig:
        """Return the merged bridge settings.

        A layer whose port equals the default is treated as not setting it,
        so an explicit default cannot override a lower layer's custom port.
        """
        port = DEFAULT_BRIDGE_PORT
        for layer in reversed(self._layers):
            if layer.data.bridge.port != DEFAULT_BRIDGE_PORT:
                port = layer.data.bridge.port
                break

        triggers: dict[str, str] = {}
        for layer in self._layers:
            triggers.update(layer.data.bridge.triggers)

        return BridgeConfig(port=port, triggers=triggers)

    def allowed_domains(self) -> list[str]:
        """Return built-in domains followed by configured ones, without duplicates."""
        domains = list(DEFAULT_ALLOWED_DOMAINS)
        for layer in self._layers:
            domains.extend(layer.data.network.allowed_domains)
        return list(dict.fromkeys(domains))
