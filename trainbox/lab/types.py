# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Type definitions for lab launches.

Provides the core types shared by the launch components: SessionRequest,
Session, PortForwardingRule, LaunchState, Outcome and ExitResult.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

#: Removal policy that keeps the container for later reattachment.
REMOVAL_KEEP = "keep"

#: Removal policy that removes the container when the session exits.
REMOVAL_REMOVE = "remove"


def container_name(
    environment: str, user: str, session_tag: str | None = None
) -> str:
    """Build the container name for a user's environment.

    Characters the container runtime rejects in names are replaced
    with ``-``.

    Args:
        environment: Environment base name.
        user: User identity.
        session_tag: Optional per-connection suffix (ephemeral only).

    Returns:
        ``<environment>_<user>`` or ``<environment>_<user>_<tag>``.
    """
    parts = [environment, user]
    if session_tag:
        parts.append(session_tag)
    return _NAME_UNSAFE.sub("-", "_".join(parts))


@dataclass(frozen=True)
class SessionRequest:
    """A user's request for a training environment.

    Attributes:
        user: User identity (login name).
        environment: Name of the configured environment to launch.
        client_address: Address of the SSH client, used as the NAT
            rule source when forwarding.
        virtual_port: Container port to expose, overriding the
            environment's configured ``virtual_port``.
        session_tag: Connection identifier (typically the SSH process
            id), appended to ephemeral container names.
    """

    user: str
    environment: str
    client_address: str = "127.0.0.1"
    virtual_port: int | None = None
    session_tag: str | None = None


@dataclass(frozen=True)
class Session:
    """A user's running or persisted container instance.

    Attributes:
        user: User identity.
        environment: Environment base name.
        container_name: Name of the container.
        removal: Removal policy (``keep`` or ``remove``).
        virtual_port: Container port reachable externally, if any.
        host_port: Host port mapped to ``virtual_port``, once allocated.
        client_address: Address of the connecting client.
        timeout_seconds: Hard wall-clock limit for the run.
    """

    user: str
    environment: str
    container_name: str
    removal: str
    virtual_port: int | None
    host_port: int | None
    client_address: str
    timeout_seconds: int

    @property
    def forwarding(self) -> bool:
        """True when a virtual port was requested."""
        return self.virtual_port is not None

    @property
    def ephemeral(self) -> bool:
        """True when the container is removed on exit.

        Forwarding sessions are always ephemeral.
        """
        return self.removal != REMOVAL_KEEP or self.forwarding


@dataclass(frozen=True)
class PortForwardingRule:
    """Destination NAT rule routing client traffic to a published port.

    Attributes:
        client_address: Source address the rule matches.
        interface: Inbound interface the rule matches.
        bind_address: Address the container port is published on.
        host_port: Host port (matched and rewritten to).
        container_port: Port inside the container.
    """

    client_address: str
    interface: str
    bind_address: str
    host_port: int
    container_port: int


class LaunchState(Enum):
    """Lifecycle states of a launch."""

    INIT = "init"
    IMAGE_RESOLVED = "image_resolved"
    OPTIONS_BUILT = "options_built"
    RUNNING = "running"
    EXITED = "exited"


class Outcome(Enum):
    """Classifies how a session ended.

    Only ``FAILED`` is an error; the rest are normal ways for an
    interactive session to end.
    """

    SUCCESS = "success"
    INTERRUPTED = "interrupted"
    INACTIVE = "inactive"
    COMMAND_NOT_FOUND = "command_not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class ExitResult:
    """Result of a session run.

    Attributes:
        outcome: Classification of the exit.
        exit_code: Runtime exit status (None when killed by timeout).
        container_name: Container the session ran in.
        duration_ms: Wall-clock duration of the run.
    """

    outcome: Outcome
    exit_code: int | None
    container_name: str
    duration_ms: int

    @property
    def is_error(self) -> bool:
        """True only for genuine failures."""
        return self.outcome is Outcome.FAILED
