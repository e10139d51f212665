# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Host port allocation for forwarded sessions.

Picks the lowest host port at or above a starting port that nothing is
currently listening on.  The answer is advisory: no reservation is held
between this check and the runtime binding the port, so two launches
racing for the same port can still collide.

When the container port is published on a loopback address, the kernel
must be told to route external traffic to 127.0.0.0/8
(``route_localnet``) before the DNAT rule can deliver to it.
"""

from __future__ import annotations

import ipaddress
import logging
import subprocess
from collections.abc import Callable, Iterable

from trainbox.lab.errors import PortAllocationError


logger = logging.getLogger(__name__)

MAX_PORT = 65535


def find_free_port(start: int, bound: Iterable[int]) -> int:
    """Return the smallest port >= start that is not bound.

    Args:
        start: First candidate port.
        bound: Ports currently in use on the host.

    Returns:
        Free port number.

    Raises:
        PortAllocationError: If every port from start to 65535 is bound.
    """
    in_use = set(bound)
    port = max(start, 1)
    while port <= MAX_PORT:
        if port not in in_use:
            return port
        port += 1
    raise PortAllocationError(f"No free host port at or above {start}")


def parse_listening_ports(output: str) -> set[int]:
    """Extract local ports from ``ss -Hltn`` output.

    Each line looks like::

        LISTEN 0 4096 0.0.0.0:8080 0.0.0.0:*
        LISTEN 0 4096    [::]:22      [::]:*

    Args:
        output: Raw stdout from ``ss``.

    Returns:
        Set of listening port numbers.
    """
    ports: set[int] = set()
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        _, _, port = fields[3].rpartition(":")
        if port.isdigit():
            ports.add(int(port))
    return ports


def query_bound_ports() -> set[int]:
    """Return TCP ports with a listener on this host.

    A failing query is logged and treated as "nothing bound"; the
    runtime's own bind then reports any real conflict.
    """
    try:
        result = subprocess.run(
            ["ss", "-Hltn"],
            check=True,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (
        subprocess.CalledProcessError,
        subprocess.TimeoutExpired,
        FileNotFoundError,
    ) as e:
        logger.warning("Failed to query bound ports: %s", e)
        return set()
    return parse_listening_ports(result.stdout)


def is_loopback(address: str) -> bool:
    """True if address is a loopback IP (``127.0.0.0/8`` or ``::1``)."""
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return address == "localhost"


def enable_loopback_routing(interface: str) -> bool:
    """Allow routing of external traffic to loopback addresses.

    Args:
        interface: Inbound interface the forwarded traffic arrives on.

    Returns:
        True on success.  Failure is logged, never raised.
    """
    key = f"net.ipv4.conf.{interface}.route_localnet=1"
    try:
        subprocess.run(
            ["sysctl", "-w", key],
            check=True,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except subprocess.CalledProcessError as e:
        error_msg = e.stderr.strip() if e.stderr else str(e)
        logger.warning("Failed to enable loopback routing: %s", error_msg)
        return False
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("Failed to enable loopback routing: %s", e)
        return False
    logger.debug("Enabled loopback routing on %s", interface)
    return True


class PortAllocator:
    """Allocates host ports against live host state.

    Args:
        bound_ports: Callable returning the currently bound ports.
            Defaults to querying the host with ``ss``.
    """

    def __init__(
        self, bound_ports: Callable[[], Iterable[int]] | None = None
    ) -> None:
        self._bound_ports = bound_ports or query_bound_ports

    def allocate(self, start: int, bind_address: str, interface: str) -> int:
        """Pick a host port for a forwarded session.

        Args:
            start: First candidate port.
            bind_address: Address the port will be published on.
            interface: Inbound interface for forwarded traffic.

        Returns:
            Allocated host port.

        Raises:
            PortAllocationError: If no port is free.
        """
        port = find_free_port(start, self._bound_ports())
        logger.info("Allocated host port %d (start %d)", port, start)
        if is_loopback(bind_address):
            enable_loopback_routing(interface)
        return port
