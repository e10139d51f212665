# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Lab launch library.

Turns a user's request for a training environment into a running
container: capability and ulimit derivation, host port forwarding,
reattachment records, and exit classification.
"""

from trainbox.lab.capabilities import (
    CapabilityAction,
    CapabilityDirective,
    CapabilityFlags,
    resolve_capabilities,
)
from trainbox.lab.controller import (
    FreshLaunch,
    LifecycleController,
    Reattach,
    classify_exit,
)
from trainbox.lab.errors import (
    ContainerNotFoundError,
    FirewallError,
    ImageResolutionError,
    LabError,
    LaunchError,
    PortAllocationError,
    RuntimeUnavailableError,
)
from trainbox.lab.firewall import FirewallInstaller
from trainbox.lab.ports import PortAllocator, find_free_port
from trainbox.lab.runtime import ContainerRuntime, RunStatus
from trainbox.lab.store import SessionRecord, SessionStore, record_session
from trainbox.lab.types import (
    ExitResult,
    LaunchState,
    Outcome,
    PortForwardingRule,
    Session,
    SessionRequest,
)
from trainbox.lab.ulimits import resolve_ulimits


__all__ = [
    # controller
    "FreshLaunch",
    "LifecycleController",
    "Reattach",
    "classify_exit",
    # capabilities
    "CapabilityAction",
    "CapabilityDirective",
    "CapabilityFlags",
    "resolve_capabilities",
    # ulimits
    "resolve_ulimits",
    # ports
    "PortAllocator",
    "find_free_port",
    # firewall
    "FirewallInstaller",
    # store
    "SessionRecord",
    "SessionStore",
    "record_session",
    # runtime
    "ContainerRuntime",
    "RunStatus",
    # types
    "ExitResult",
    "LaunchState",
    "Outcome",
    "PortForwardingRule",
    "Session",
    "SessionRequest",
    # errors
    "ContainerNotFoundError",
    "FirewallError",
    "ImageResolutionError",
    "LabError",
    "LaunchError",
    "PortAllocationError",
    "RuntimeUnavailableError",
]
