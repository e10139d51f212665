# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Launch lifecycle for training environments.

A launch is either a ``FreshLaunch`` (new container from an environment)
or a ``Reattach`` (resume an existing container).  Both move through the
same states::

    FreshLaunch: INIT -> IMAGE_RESOLVED -> OPTIONS_BUILT -> RUNNING -> EXITED
    Reattach:    INIT -> RUNNING -> EXITED

Side effects are registered on two ``ExitStack`` scopes as they happen:

- the *abort* scope holds inverses that only run if the launch fails
  before the container starts (the session record);
- the *session* scope holds inverses that run when the session ends,
  however it ends (the forwarding rule).

Lifecycle::

    controller = LifecycleController(config)
    result = controller.start(SessionRequest(user="alice", environment="web"))
    result = controller.attach("web_alice")
"""

from __future__ import annotations

import dataclasses
import logging
import signal
import sys
from contextlib import ExitStack
from typing import TYPE_CHECKING

from trainbox.lab._image import resolve_image
from trainbox.lab.capabilities import capability_args, resolve_capabilities
from trainbox.lab.errors import ContainerNotFoundError, LaunchError
from trainbox.lab.firewall import FirewallInstaller
from trainbox.lab.ports import PortAllocator
from trainbox.lab.runtime import ContainerRuntime, RunStatus
from trainbox.lab.store import SessionStore, record_session
from trainbox.lab.types import (
    ExitResult,
    LaunchState,
    Outcome,
    PortForwardingRule,
    Session,
    SessionRequest,
    container_name,
)
from trainbox.lab.ulimits import resolve_ulimits, ulimit_args


if TYPE_CHECKING:
    from trainbox.config import EnvironmentConfig, LabConfig


logger = logging.getLogger(__name__)

#: Shell status for a command terminated by SIGINT.
EXIT_INTERRUPTED = 130

#: Interrupt statuses: the shell convention and a client killed by SIGINT.
_INTERRUPT_CODES = frozenset({EXIT_INTERRUPTED, -signal.SIGINT})

#: Shell status for "command not found".
EXIT_COMMAND_NOT_FOUND = 127

#: Timeout for reattaching when the container's environment is unknown.
DEFAULT_TIMEOUT_SECONDS = 3600


def classify_exit(status: RunStatus, container: str) -> ExitResult:
    """Classify how a session ended.

    Args:
        status: Raw run status.
        container: Container the session ran in.

    Returns:
        ExitResult; only ``Outcome.FAILED`` counts as an error.
    """
    if status.timed_out:
        outcome = Outcome.INACTIVE
    elif status.interrupted or status.exit_code in _INTERRUPT_CODES:
        outcome = Outcome.INTERRUPTED
    elif status.exit_code == 0:
        outcome = Outcome.SUCCESS
    elif status.exit_code == EXIT_COMMAND_NOT_FOUND:
        outcome = Outcome.COMMAND_NOT_FOUND
    else:
        outcome = Outcome.FAILED
    return ExitResult(
        outcome=outcome,
        exit_code=status.exit_code,
        container_name=container,
        duration_ms=status.duration_ms,
    )


class _Launch:
    """Shared interface of the launch variants."""

    def __init__(self, controller: LifecycleController) -> None:
        self._controller = controller
        self.state = LaunchState.INIT

    @property
    def container(self) -> str:
        raise NotImplementedError

    @property
    def timeout_seconds(self) -> int:
        raise NotImplementedError

    def _advance(self, state: LaunchState) -> None:
        logger.debug(
            "Launch %s: %s -> %s",
            self.container,
            self.state.value,
            state.value,
        )
        self.state = state

    def resolve(self) -> None:
        """Check that what the launch needs exists."""
        raise NotImplementedError

    def build_options(
        self, session_scope: ExitStack, abort_scope: ExitStack
    ) -> list[str]:
        """Assemble runtime arguments, registering inverses of side effects."""
        raise NotImplementedError

    def run(self, options: list[str]) -> RunStatus:
        """Run the session under the hard timeout."""
        self._advance(LaunchState.RUNNING)
        status = self._controller.runtime.run_interactive(
            options, self.container, self.timeout_seconds
        )
        self._advance(LaunchState.EXITED)
        return status

    def classify_exit(self, status: RunStatus) -> ExitResult:
        """Classify the finished run."""
        return classify_exit(status, self.container)


class FreshLaunch(_Launch):
    """Start a new container from an environment.

    Args:
        controller: Owning controller (supplies runtime, store, etc.).
        environment: Environment to launch.
        request: The user's request.
    """

    def __init__(
        self,
        controller: LifecycleController,
        environment: EnvironmentConfig,
        request: SessionRequest,
    ) -> None:
        super().__init__(controller)
        self._env = environment

        virtual_port = (
            request.virtual_port
            if request.virtual_port is not None
            else environment.virtual_port
        )
        session = Session(
            user=request.user,
            environment=environment.name,
            container_name="",
            removal=environment.removal,
            virtual_port=virtual_port,
            host_port=None,
            client_address=request.client_address,
            timeout_seconds=environment.timeout_seconds,
        )
        tag = request.session_tag if session.ephemeral else None
        self.session = dataclasses.replace(
            session,
            container_name=container_name(environment.name, request.user, tag),
        )

    @property
    def container(self) -> str:
        return self.session.container_name

    @property
    def timeout_seconds(self) -> int:
        return self.session.timeout_seconds

    def resolve(self) -> None:
        """Make sure the image is available locally.

        Raises:
            ImageResolutionError: If the image cannot be found or pulled.
        """
        resolve_image(
            self._controller.runtime.container_command, self._env.image
        )
        self._advance(LaunchState.IMAGE_RESOLVED)

    def build_options(
        self, session_scope: ExitStack, abort_scope: ExitStack
    ) -> list[str]:
        """Record, forward, resolve and assemble the ``run`` arguments.

        Raises:
            PortAllocationError: If no host port is free.
            FirewallError: If the rule cannot be installed in strict mode.
        """
        controller = self._controller
        session = self.session
        env = self._env

        if session.ephemeral:
            logger.info(
                "Launching ephemeral session %s", session.container_name
            )
        else:
            existed = (
                controller.store.get(session.user, session.environment)
                is not None
            )
            if record_session(controller.store, session) and not existed:
                abort_scope.callback(
                    controller.store.remove, session.user, session.environment
                )

        if session.forwarding:
            self.session = session = self._forward(session, session_scope)

        capabilities = resolve_capabilities(env.capabilities)
        ulimits = resolve_ulimits(env.ulimits)

        options = ["run", "--name", session.container_name, "--interactive"]
        if controller.tty:
            options.append("--tty")
        if session.ephemeral:
            options.append("--rm")
        if env.hostname:
            options.extend(["--hostname", env.hostname])
        if env.cpu_shares is not None:
            options.extend(["--cpu-shares", str(env.cpu_shares)])
        if env.memory:
            options.extend(["--memory", env.memory])
        if env.swap:
            options.extend(["--memory-swap", env.swap])
        if env.network:
            options.extend(["--network", env.network])
        for server in env.dns:
            options.extend(["--dns", server])
        if session.forwarding:
            options.extend(
                [
                    "--publish",
                    f"{env.bind_address}:{session.host_port}:"
                    f"{session.virtual_port}",
                ]
            )
        for mount in env.mounts:
            options.extend(["--volume", mount])
        for name in env.env_passthrough:
            # Name only: the runtime copies the value from our environment
            options.extend(["--env", name])
        if env.workdir:
            options.extend(["--workdir", env.workdir])
        if env.user:
            options.extend(["--user", env.user])
        options.extend(capability_args(capabilities))
        options.extend(ulimit_args(ulimits))
        options.append(env.image)
        options.extend(env.command)

        self._advance(LaunchState.OPTIONS_BUILT)
        return options

    def _forward(self, session: Session, session_scope: ExitStack) -> Session:
        """Allocate a host port and route the client to it."""
        controller = self._controller
        interface = controller.config.firewall.interface
        host_port = controller.allocator.allocate(
            self._env.start_port, self._env.bind_address, interface
        )
        assert session.virtual_port is not None
        rule = PortForwardingRule(
            client_address=session.client_address,
            interface=interface,
            bind_address=self._env.bind_address,
            host_port=host_port,
            container_port=session.virtual_port,
        )
        if controller.firewall.install(rule):
            session_scope.callback(controller.firewall.remove, rule)
        return dataclasses.replace(session, host_port=host_port)


class Reattach(_Launch):
    """Resume an interactive session in an existing container.

    Args:
        controller: Owning controller.
        name: Container name.
    """

    def __init__(self, controller: LifecycleController, name: str) -> None:
        super().__init__(controller)
        self._name = name
        self._timeout = DEFAULT_TIMEOUT_SECONDS

        record = controller.store.find_container(name)
        if record is not None:
            env = controller.config.environments.get(record.environment)
            if env is not None:
                self._timeout = env.timeout_seconds

    @property
    def container(self) -> str:
        return self._name

    @property
    def timeout_seconds(self) -> int:
        return self._timeout

    def resolve(self) -> None:
        """Check that the container still exists.

        A record whose container is gone is dropped from the store.

        Raises:
            ContainerNotFoundError: If the container does not exist.
        """
        controller = self._controller
        if controller.runtime.container_exists(self._name):
            return
        record = controller.store.find_container(self._name)
        if record is not None:
            controller.store.remove(record.user, record.environment)
            logger.info("Dropped stale session record for %s", self._name)
        raise ContainerNotFoundError(f"Container not found: {self._name}")

    def build_options(
        self, session_scope: ExitStack, abort_scope: ExitStack
    ) -> list[str]:
        """``start`` arguments; nothing to record or forward."""
        return ["start", "--attach", "--interactive", self._name]


class LifecycleController:
    """Entry point for launching and reattaching sessions.

    Each call runs single-threaded and blocks until the session ends.

    Args:
        config: Immutable configuration.
        store: Session store (defaults to one in ``config.state_dir``).
        runtime: Container runtime wrapper.
        allocator: Host port allocator.
        firewall: Forwarding rule installer (strict when ``config.debug``).
        tty: Allocate a terminal in the container (defaults to whether
            stdin is a terminal).
    """

    def __init__(
        self,
        config: LabConfig,
        *,
        store: SessionStore | None = None,
        runtime: ContainerRuntime | None = None,
        allocator: PortAllocator | None = None,
        firewall: FirewallInstaller | None = None,
        tty: bool | None = None,
    ) -> None:
        self.config = config
        self.store = store or SessionStore(config.state_dir)
        self.runtime = runtime or ContainerRuntime(config.container_command)
        self.allocator = allocator or PortAllocator()
        self.firewall = firewall or FirewallInstaller(
            config.firewall.iptables, strict=config.debug
        )
        self.tty = sys.stdin.isatty() if tty is None else tty

    def start(self, request: SessionRequest) -> ExitResult:
        """Launch a fresh session.

        Args:
            request: The user's request.

        Returns:
            ExitResult for the finished session.

        Raises:
            ConfigError: If the environment is not configured.
            RuntimeUnavailableError: If the runtime is unavailable.
            ImageResolutionError: If the image cannot be resolved.
            LaunchError: If the session failed (outside debug mode).
        """
        environment = self.config.environment(request.environment)
        return self._execute(FreshLaunch(self, environment, request))

    def attach(self, name: str) -> ExitResult:
        """Reattach to an existing container.

        Args:
            name: Container name.

        Returns:
            ExitResult for the finished session.

        Raises:
            RuntimeUnavailableError: If the runtime is unavailable.
            ContainerNotFoundError: If the container is gone.
            LaunchError: If the session failed (outside debug mode).
        """
        return self._execute(Reattach(self, name))

    def _execute(self, launch: _Launch) -> ExitResult:
        self.runtime.check_available()

        with ExitStack() as session_scope:
            with ExitStack() as abort_scope:
                launch.resolve()
                options = launch.build_options(session_scope, abort_scope)
                # Container is about to start: keep the record
                abort_scope.pop_all()
            status = launch.run(options)

        return self._finish(launch.classify_exit(status), options)

    def _finish(self, result: ExitResult, options: list[str]) -> ExitResult:
        if result.outcome is Outcome.INACTIVE:
            logger.warning(
                "Session %s inactive, terminated", result.container_name
            )
        if not result.is_error:
            return result

        assert result.exit_code is not None
        if self.config.debug:
            logger.error(
                "Session %s failed (exit_code=%d, %.2fs): %s %s",
                result.container_name,
                result.exit_code,
                result.duration_ms / 1000,
                self.runtime.container_command,
                " ".join(options),
            )
            return result
        raise LaunchError(
            f"Session {result.container_name} failed "
            f"(exit code {result.exit_code})",
            result.exit_code,
        )
