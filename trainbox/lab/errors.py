# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception hierarchy for lab launches.

Only image resolution and runtime availability abort a launch outright.
Firewall, routing and store failures are logged by the component that
hit them and the launch continues (``FirewallError`` is raised only in
strict mode).
"""


class LabError(Exception):
    """Base exception for lab launch failures."""


class RuntimeUnavailableError(LabError):
    """Raised when the container runtime is missing or not responding."""


class ImageResolutionError(LabError):
    """Raised when an image is neither present locally nor pullable."""


class PortAllocationError(LabError):
    """Raised when no free host port exists at or above the start port."""


class FirewallError(LabError):
    """Raised when a forwarding rule cannot be installed in strict mode."""


class LaunchError(LabError):
    """Raised when a session ends with a non-benign exit status.

    Attributes:
        exit_code: Exit status reported by the container runtime.
    """

    def __init__(self, message: str, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ContainerNotFoundError(LabError):
    """Raised when reattaching to a container that no longer exists."""
