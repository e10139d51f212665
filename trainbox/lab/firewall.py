# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Destination NAT rules for forwarded sessions.

A forwarded session gets exactly one rule in the ``nat`` table::

    iptables -t nat -I PREROUTING -s <client> -i <iface> -p tcp \\
        --dport <host_port> -j DNAT --to-destination <bind>:<host_port>

so only the connecting client reaches the container's published port.
The baseline firewall policy is assumed to be in place already; this
module never touches anything but its own rules.
"""

from __future__ import annotations

import logging
import subprocess

from trainbox.lab.errors import FirewallError
from trainbox.lab.types import PortForwardingRule


logger = logging.getLogger(__name__)


def rule_spec(rule: PortForwardingRule) -> list[str]:
    """Build the match/target part of an iptables rule.

    Args:
        rule: Forwarding rule to render.

    Returns:
        Arguments following ``-t nat -I/-D PREROUTING``.
    """
    return [
        "-s",
        rule.client_address,
        "-i",
        rule.interface,
        "-p",
        "tcp",
        "--dport",
        str(rule.host_port),
        "-j",
        "DNAT",
        "--to-destination",
        f"{rule.bind_address}:{rule.host_port}",
    ]


class FirewallInstaller:
    """Installs and removes per-session DNAT rules.

    Args:
        iptables: iptables command to invoke.
        strict: Raise ``FirewallError`` when installation fails instead
            of logging and continuing.
    """

    def __init__(self, iptables: str = "iptables", strict: bool = False):
        self._iptables = iptables
        self._strict = strict

    def _run(self, operation: str, rule: PortForwardingRule) -> None:
        cmd = [self._iptables, "-t", "nat", operation, "PREROUTING"]
        cmd.extend(rule_spec(rule))
        logger.debug("Firewall command: %s", " ".join(cmd))
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=30,
        )

    def install(self, rule: PortForwardingRule) -> bool:
        """Insert the DNAT rule for a forwarded session.

        Args:
            rule: Rule to install.

        Returns:
            True if the rule was installed.

        Raises:
            FirewallError: If installation fails in strict mode.
        """
        try:
            self._run("-I", rule)
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.strip() if e.stderr else str(e)
            return self._install_failed(rule, error_msg)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            return self._install_failed(rule, str(e))

        logger.info(
            "Forwarding %s -> %s:%d (container port %d)",
            rule.client_address,
            rule.bind_address,
            rule.host_port,
            rule.container_port,
        )
        return True

    def _install_failed(self, rule: PortForwardingRule, error_msg: str) -> bool:
        message = (
            f"Failed to install forwarding rule for port "
            f"{rule.host_port}: {error_msg}"
        )
        if self._strict:
            raise FirewallError(message)
        logger.warning("%s", message)
        return False

    def remove(self, rule: PortForwardingRule) -> bool:
        """Delete a previously installed rule.

        Args:
            rule: Rule to delete (must match the installed rule exactly).

        Returns:
            True if the rule was deleted.  Failure is logged, never raised.
        """
        try:
            self._run("-D", rule)
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.strip() if e.stderr else str(e)
            logger.warning(
                "Failed to remove forwarding rule for port %d: %s",
                rule.host_port,
                error_msg,
            )
            return False
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.warning(
                "Failed to remove forwarding rule for port %d: %s",
                rule.host_port,
                e,
            )
            return False
        logger.info("Removed forwarding rule for port %d", rule.host_port)
        return True
