# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Capability resolution for lab containers.

Maps named boolean flags to an ordered list of ``--cap-add`` /
``--cap-drop`` directives.  Every known capability is emitted exactly
once, so the resulting set never depends on the runtime's own defaults:
capabilities Docker grants out of the box (``NET_RAW``, ``MKNOD``, ...)
are dropped unless explicitly enabled.

Only ``CHOWN``, ``SETGID`` and ``SETUID`` default to on; without them
package managers and ``su`` fail inside the container.

The global overrides short-circuit everything else::

    drop_all -> --cap-drop ALL
    add_all  -> --cap-add ALL
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


#: Capabilities in emission order.
CAPABILITIES: tuple[str, ...] = (
    "AUDIT_CONTROL",
    "AUDIT_READ",
    "AUDIT_WRITE",
    "BLOCK_SUSPEND",
    "CHOWN",
    "DAC_OVERRIDE",
    "DAC_READ_SEARCH",
    "FOWNER",
    "FSETID",
    "IPC_LOCK",
    "IPC_OWNER",
    "KILL",
    "LEASE",
    "LINUX_IMMUTABLE",
    "MAC_ADMIN",
    "MAC_OVERRIDE",
    "MKNOD",
    "NET_ADMIN",
    "NET_BIND_SERVICE",
    "NET_BROADCAST",
    "NET_RAW",
    "SETFCAP",
    "SETGID",
    "SETPCAP",
    "SETUID",
    "SYS_ADMIN",
    "SYS_BOOT",
    "SYS_CHROOT",
    "SYS_MODULE",
    "SYS_NICE",
    "SYS_PACCT",
    "SYS_PTRACE",
    "SYS_RAWIO",
    "SYS_RESOURCE",
    "SYS_TIME",
    "SYS_TTY_CONFIG",
    "SYSLOG",
    "WAKE_ALARM",
)

#: Capabilities enabled when not explicitly configured.
DEFAULT_ON: frozenset[str] = frozenset({"CHOWN", "SETGID", "SETUID"})

ALL = "ALL"


class CapabilityAction(Enum):
    """Whether a capability is granted or revoked."""

    ADD = "add"
    DROP = "drop"


@dataclass(frozen=True)
class CapabilityDirective:
    """A single capability grant or revocation."""

    name: str
    action: CapabilityAction


@dataclass(frozen=True)
class CapabilityFlags:
    """Capability configuration for one environment.

    Attributes:
        drop_all: Drop every capability (takes precedence).
        add_all: Grant every capability.
        overrides: Individual capability name to enabled flag.  Names
            may carry the ``CAP_`` prefix and any casing.
    """

    drop_all: bool = False
    add_all: bool = False
    overrides: Mapping[str, bool] = field(default_factory=dict)


def normalize_name(name: str) -> str:
    """Normalize ``cap_net_admin`` / ``CAP_NET_ADMIN`` to ``NET_ADMIN``."""
    upper = name.strip().upper()
    if upper.startswith("CAP_"):
        upper = upper[4:]
    return upper


def resolve_capabilities(
    flags: CapabilityFlags,
) -> tuple[CapabilityDirective, ...]:
    """Resolve capability flags into ordered directives.

    Args:
        flags: Capability configuration.

    Returns:
        Directives in ``CAPABILITIES`` order, or a single ``ALL``
        directive when a global override is set.
    """
    if flags.drop_all:
        if flags.add_all:
            logger.warning(
                "Both drop_all and add_all set; dropping all capabilities"
            )
        return (CapabilityDirective(ALL, CapabilityAction.DROP),)
    if flags.add_all:
        return (CapabilityDirective(ALL, CapabilityAction.ADD),)

    enabled: dict[str, bool] = {}
    for raw_name, value in flags.overrides.items():
        name = normalize_name(raw_name)
        if name not in CAPABILITIES:
            logger.debug("Ignoring unknown capability flag: %s", raw_name)
            continue
        enabled[name] = bool(value)

    directives = []
    for name in CAPABILITIES:
        on = enabled.get(name, name in DEFAULT_ON)
        action = CapabilityAction.ADD if on else CapabilityAction.DROP
        directives.append(CapabilityDirective(name, action))
    return tuple(directives)


def capability_args(directives: tuple[CapabilityDirective, ...]) -> list[str]:
    """Render directives as container runtime arguments."""
    args: list[str] = []
    for directive in directives:
        flag = (
            "--cap-add"
            if directive.action is CapabilityAction.ADD
            else "--cap-drop"
        )
        args.extend([flag, directive.name])
    return args
