# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for trainbox.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/trainbox/trainbox.yaml``
    (typically ``~/.config/trainbox/trainbox.yaml``)

``TRAINBOX_CONFIG`` overrides the path, which is how a system-wide file
is shared by every SSH login.  ``!env`` tags resolve values from
environment variables.

The file defines global settings (runtime command, firewall, state
directory) and one entry per environment under ``environments:``.  Each
entry becomes an immutable ``EnvironmentConfig``; the launch components
only ever see these records, never the raw YAML.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path, user_state_path

from trainbox.dotenv_loader import load_dotenv_once
from trainbox.lab.capabilities import CapabilityFlags
from trainbox.lab.types import REMOVAL_KEEP, REMOVAL_REMOVE


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "trainbox"

#: Environment variable overriding the config file location.
CONFIG_ENV_VAR = "TRAINBOX_CONFIG"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

_REMOVAL_POLICIES = frozenset({REMOVAL_KEEP, REMOVAL_REMOVE})


def get_config_path() -> Path:
    """Return the config file path.

    ``$TRAINBOX_CONFIG`` if set, otherwise
    ``$XDG_CONFIG_HOME/trainbox/trainbox.yaml``.
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return user_config_path(_APP_NAME) / "trainbox.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` file path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


def get_state_dir() -> Path:
    """Return the default state directory (session records).

    Uses XDG: ``$XDG_STATE_HOME/trainbox`` (typically
    ``~/.local/state/trainbox``).
    """
    return user_state_path(_APP_NAME)


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()

T = TypeVar("T")


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``, ``Path``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None or (resolved == "" and coerce is not str):
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _resolve_string_list(value: object, *, field_name: str) -> tuple[str, ...]:
    """Resolve a list of strings, handling ``!env`` for each element.

    A bare string is accepted as a one-element list.

    Raises:
        ConfigError: If value is neither a list nor a string.
    """
    if value is None:
        return ()
    if isinstance(value, (str, _EnvVar)):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(
            f"Config '{field_name}' must be a list, got {type(value).__name__}"
        )
    result: list[str] = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(resolved)
    return tuple(result)


def _resolve_mapping(value: object, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{field_name}' must be a YAML mapping")
    return value


# ---------------------------------------------------------------------------
# Configuration records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FirewallConfig:
    """Forwarding rule settings.

    Attributes:
        interface: Inbound interface client traffic arrives on.
        iptables: iptables command.
    """

    interface: str = "eth0"
    iptables: str = "iptables"


@dataclass(frozen=True)
class EnvironmentConfig:
    """One launchable training environment.

    Attributes:
        name: Environment base name (also the container name prefix).
        image: Image reference.
        removal: ``keep`` (reattachable) or ``remove`` (ephemeral).
        cpu_shares: Relative CPU weight.
        memory: Memory limit (e.g. ``512m``).
        swap: Memory+swap limit (e.g. ``1g``).
        network: Network mode.
        dns: DNS servers.
        mounts: Volume specs (``src:dst[:ro]``).
        capabilities: Capability flags.
        ulimits: Limit name to value (or ``disabled``).
        env_passthrough: Environment variable names passed through.
        workdir: Working directory inside the container.
        user: User to run as inside the container.
        hostname: Container hostname.
        command: Entry command (empty for the image default).
        timeout_seconds: Hard wall-clock limit for a session.
        virtual_port: Container port to forward (enables forwarding).
        bind_address: Host address the forwarded port is published on.
        start_port: First host port tried when allocating.
    """

    name: str
    image: str
    removal: str = REMOVAL_REMOVE
    cpu_shares: int | None = None
    memory: str | None = None
    swap: str | None = None
    network: str | None = None
    dns: tuple[str, ...] = ()
    mounts: tuple[str, ...] = ()
    capabilities: CapabilityFlags = field(default_factory=CapabilityFlags)
    ulimits: Mapping[str, object] = field(
        default_factory=lambda: MappingProxyType({})
    )
    env_passthrough: tuple[str, ...] = ()
    workdir: str | None = None
    user: str | None = None
    hostname: str | None = None
    command: tuple[str, ...] = ()
    timeout_seconds: int = 3600
    virtual_port: int | None = None
    bind_address: str = "127.0.0.1"
    start_port: int = 8000

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if self.removal not in _REMOVAL_POLICIES:
            raise ConfigError(
                f"environments.{self.name}.removal must be 'keep' or "
                f"'remove': {self.removal!r}"
            )
        if self.timeout_seconds < 1:
            raise ConfigError(
                f"environments.{self.name}.timeout must be >= 1s: "
                f"{self.timeout_seconds}"
            )
        port = self.virtual_port
        if port is not None and not 1 <= port <= 65535:
            raise ConfigError(
                f"environments.{self.name}.virtual_port out of range: "
                f"{self.virtual_port}"
            )
        if not 1 <= self.start_port <= 65535:
            raise ConfigError(
                f"environments.{self.name}.start_port out of range: "
                f"{self.start_port}"
            )


@dataclass(frozen=True)
class LabConfig:
    """Complete trainbox configuration.

    Attributes:
        environments: Launchable environments keyed by name.
        container_command: Container runtime command.
        debug: Strict mode: firewall failures abort and failed sessions
            are reported instead of aborting.
        state_dir: Directory holding session records.
        session_max_age_hours: Age after which ``prune`` removes
            persisted sessions.
        firewall: Forwarding rule settings.
    """

    environments: Mapping[str, EnvironmentConfig]
    container_command: str = "docker"
    debug: bool = False
    state_dir: Path = field(default_factory=get_state_dir)
    session_max_age_hours: int = 24
    firewall: FirewallConfig = field(default_factory=FirewallConfig)

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.environments:
            raise ConfigError("At least one environment must be configured")
        if self.session_max_age_hours < 1:
            raise ConfigError(
                f"Session max age must be >= 1 hour: "
                f"{self.session_max_age_hours}"
            )

    def environment(self, name: str) -> EnvironmentConfig:
        """Look up an environment by name.

        Raises:
            ConfigError: If no such environment is configured.
        """
        try:
            return self.environments[name]
        except KeyError:
            known = ", ".join(sorted(self.environments))
            raise ConfigError(
                f"Unknown environment '{name}' (configured: {known})"
            ) from None

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> LabConfig:
        """Load configuration from a YAML file.

        A ``.env`` file is loaded first if present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``get_config_path()``.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.debug(
            "Config loaded from %s: %d environments",
            config_path,
            len(config.environments),
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> LabConfig:
        """Build config from parsed (but unresolved) YAML dict."""
        firewall = _resolve_mapping(raw.get("firewall"), field_name="firewall")
        raw_envs = _resolve_mapping(
            raw.get("environments"), field_name="environments"
        )

        environments: dict[str, EnvironmentConfig] = {}
        for name, env_raw in raw_envs.items():
            name = str(name)
            if not isinstance(env_raw, dict):
                raise ConfigError(f"environments.{name} must be a YAML mapping")
            environments[name] = _parse_environment(name, env_raw)

        return cls(
            environments=MappingProxyType(environments),
            container_command=_resolve(
                raw.get("container_command"), str, default="docker"
            ),
            debug=_resolve(raw.get("debug"), bool, default=False),
            state_dir=_resolve(
                raw.get("state_dir"), Path, default=get_state_dir()
            ),
            session_max_age_hours=_resolve(
                raw.get("session_max_age_hours"), int, default=24
            ),
            firewall=FirewallConfig(
                interface=_resolve(
                    firewall.get("interface"), str, default="eth0"
                ),
                iptables=_resolve(
                    firewall.get("iptables"), str, default="iptables"
                ),
            ),
        )


def _parse_capabilities(name: str, raw: object) -> CapabilityFlags:
    """Parse ``capabilities:`` into CapabilityFlags.

    ``drop_all`` and ``add_all`` (any casing) are the global overrides;
    every other key is an individual capability name.
    """
    caps = _resolve_mapping(raw, field_name=f"environments.{name}.capabilities")
    lowered = {str(key).lower(): value for key, value in caps.items()}
    overrides: dict[str, bool] = {}
    for key, value in caps.items():
        key = str(key)
        if key.lower() in ("drop_all", "add_all"):
            continue
        overrides[key] = _resolve(value, bool, default=False)
    return CapabilityFlags(
        drop_all=_resolve(lowered.get("drop_all"), bool, default=False),
        add_all=_resolve(lowered.get("add_all"), bool, default=False),
        overrides=MappingProxyType(overrides),
    )


def _parse_command(value: object, name: str) -> tuple[str, ...]:
    """Entry command: a list, or a string split on whitespace."""
    if isinstance(value, str):
        return tuple(value.split())
    return _resolve_string_list(
        value, field_name=f"environments.{name}.command"
    )


def _parse_environment(name: str, raw: dict) -> EnvironmentConfig:
    """Parse a single environment entry.

    Args:
        name: Environment name (key under ``environments``).
        raw: Raw YAML mapping.

    Returns:
        EnvironmentConfig.

    Raises:
        ConfigError: If required values are missing or invalid.
    """
    prefix = f"environments.{name}"
    ulimits = _resolve_mapping(
        raw.get("ulimits"), field_name=f"{prefix}.ulimits"
    )
    resolved_ulimits = {
        str(k): _raw_resolve(v) for k, v in ulimits.items()
    }

    return EnvironmentConfig(
        name=name,
        image=_resolve(raw.get("image"), str, required=f"{prefix}.image"),
        removal=_resolve(raw.get("removal"), str, default=REMOVAL_REMOVE),
        cpu_shares=_resolve(raw.get("cpu_shares"), int),
        memory=_resolve(raw.get("memory"), str),
        swap=_resolve(raw.get("swap"), str),
        network=_resolve(raw.get("network"), str),
        dns=_resolve_string_list(raw.get("dns"), field_name=f"{prefix}.dns"),
        mounts=_resolve_string_list(
            raw.get("mounts"), field_name=f"{prefix}.mounts"
        ),
        capabilities=_parse_capabilities(name, raw.get("capabilities")),
        ulimits=MappingProxyType(resolved_ulimits),
        env_passthrough=_resolve_string_list(
            raw.get("env_passthrough"), field_name=f"{prefix}.env_passthrough"
        ),
        workdir=_resolve(raw.get("workdir"), str),
        user=_resolve(raw.get("user"), str),
        hostname=_resolve(raw.get("hostname"), str),
        command=_parse_command(raw.get("command"), name),
        timeout_seconds=_resolve(raw.get("timeout"), int, default=3600),
        virtual_port=_resolve(raw.get("virtual_port"), int),
        bind_address=_resolve(
            raw.get("bind_address"), str, default="127.0.0.1"
        ),
        start_port=_resolve(raw.get("start_port"), int, default=8000),
    )
