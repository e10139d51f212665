# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""trainbox CLI: multi-command entry point.

Typically installed as the SSH ``ForceCommand`` of a training host, so
that every login lands in the user's container.  Running ``trainbox``
with no arguments prints usage information.

Subcommands:

* ``start``: launch (or resume) an environment for the invoking user
* ``attach``: reattach to an existing container
* ``prune``: remove sessions older than ``session_max_age_hours``
* ``init``: create a stub config file
* ``check``: verify config and host dependencies
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
import logging
import os
import shutil
import sys
from datetime import timedelta
from pathlib import Path

from trainbox.config import ConfigError, LabConfig, get_config_path
from trainbox.lab import (
    ContainerNotFoundError,
    ContainerRuntime,
    ExitResult,
    LabError,
    LifecycleController,
    Outcome,
    SessionRequest,
    SessionStore,
)
from trainbox.lab.types import REMOVAL_KEEP, container_name
from trainbox.logging import configure_logging


logger = logging.getLogger(__name__)

# Known subcommand names.
_SUBCOMMANDS = frozenset({"start", "attach", "prune", "init", "check"})

_USAGE = """\
usage: trainbox <command> [args]

commands:
  start     Launch (or resume) an environment
  attach    Reattach to an existing container
  prune     Remove expired sessions
  init      Create a stub config file
  check     Verify config and host dependencies

Run 'trainbox <command> --help' for command-specific help.\
"""

#: Host tools needed besides the container runtime.
_HOST_TOOLS = ("ss", "sysctl")


# ── Terminal colors ─────────────────────────────────────────────────


def _use_color() -> bool:
    """Determine whether to use ANSI color codes in output.

    Returns True when stdout is a TTY and the ``NO_COLOR`` environment
    variable is not set.  ``TERM=dumb`` also disables color.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return sys.stdout.isatty()


class _Style:
    """ANSI escape helpers.  All methods return plain text when color is off."""

    def __init__(self, color: bool) -> None:
        self._on = color

    def _wrap(self, code: str, text: str) -> str:
        if not self._on:
            return text
        return f"\033[{code}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("1", text)

    def green(self, text: str) -> str:
        return self._wrap("32", text)

    def red(self, text: str) -> str:
        return self._wrap("31", text)

    def yellow(self, text: str) -> str:
        return self._wrap("33", text)

    def dim(self, text: str) -> str:
        return self._wrap("2", text)


# ── Shared helpers ──────────────────────────────────────────────────


def client_address_from_env(environ: dict[str, str] | None = None) -> str:
    """Client address from ``SSH_CLIENT`` (``ip port local_port``).

    Falls back to ``127.0.0.1`` outside SSH sessions.
    """
    if environ is None:
        environ = dict(os.environ)
    fields = environ.get("SSH_CLIENT", "").split()
    return fields[0] if fields else "127.0.0.1"


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: $TRAINBOX_CONFIG or XDG config dir)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose diagnostics; strict firewall handling",
    )


def _load_config(args: argparse.Namespace) -> LabConfig:
    """Load config and apply ``--debug``.

    Raises:
        ConfigError: If the config cannot be loaded.
    """
    config = LabConfig.from_yaml(args.config)
    if args.debug and not config.debug:
        config = dataclasses.replace(config, debug=True)
    return config


def _configure(args: argparse.Namespace) -> None:
    configure_logging(level=logging.DEBUG if args.debug else logging.ERROR)


def _fail(message: object) -> int:
    print(f"trainbox: {message}", file=sys.stderr)
    return 1


def _report(result: ExitResult) -> int:
    """Print a short note for non-obvious endings; map to exit code."""
    if result.outcome is Outcome.INACTIVE:
        print("Session inactive, terminated.", file=sys.stderr)
    elif result.is_error:
        print(
            f"Session {result.container_name} failed "
            f"(exit code {result.exit_code}).",
            file=sys.stderr,
        )
        return 1
    return 0


def _port(value: str) -> int:
    """argparse type for a TCP port number."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"not a port number: {value}"
        ) from None
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _existing_container(
    controller: LifecycleController, user: str, environment: str
) -> str | None:
    """Name of the user's kept container for an environment, if any.

    The session record is preferred; without one, a container under the
    kept-session name still counts (its record write may have failed).
    """
    record = controller.store.get(user, environment)
    if record is not None:
        return record.container
    name = container_name(environment, user)
    if controller.runtime.container_exists(name):
        logger.info("No session record, found container %s", name)
        return name
    return None


# ── start subcommand ────────────────────────────────────────────────


def cmd_start(argv: list[str]) -> int:
    """Launch an environment for the invoking user.

    A kept session for this user and environment (recorded, or found
    under its container name) is resumed
    instead of launching a new container.

    Args:
        argv: Command arguments.

    Returns:
        Exit code (0 unless the launch failed).
    """
    parser = argparse.ArgumentParser(prog="trainbox start")
    parser.add_argument("environment", help="Environment name")
    parser.add_argument(
        "--user",
        default=None,
        help="User identity (default: invoking login)",
    )
    parser.add_argument(
        "--virtual-port",
        type=_port,
        default=None,
        help="Container port to forward to the SSH client",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)
    _configure(args)

    user = args.user or getpass.getuser()
    request = SessionRequest(
        user=user,
        environment=args.environment,
        client_address=client_address_from_env(),
        virtual_port=args.virtual_port,
        session_tag=str(os.getppid()),
    )

    try:
        config = _load_config(args)
        environment = config.environment(args.environment)
        controller = LifecycleController(config)

        reattachable = (
            environment.removal == REMOVAL_KEEP
            and request.virtual_port is None
            and environment.virtual_port is None
        )
        if reattachable:
            existing = _existing_container(controller, user, environment.name)
            if existing is not None:
                try:
                    return _report(controller.attach(existing))
                except ContainerNotFoundError:
                    logger.info("Recorded container gone, launching fresh")

        return _report(controller.start(request))
    except (ConfigError, LabError) as e:
        return _fail(e)


# ── attach subcommand ───────────────────────────────────────────────


def cmd_attach(argv: list[str]) -> int:
    """Reattach to an existing container.

    Args:
        argv: Command arguments.

    Returns:
        Exit code (0 unless the session failed or the container is gone).
    """
    parser = argparse.ArgumentParser(prog="trainbox attach")
    parser.add_argument("container", help="Container name")
    _add_common_args(parser)
    args = parser.parse_args(argv)
    _configure(args)

    try:
        config = _load_config(args)
        return _report(LifecycleController(config).attach(args.container))
    except (ConfigError, LabError) as e:
        return _fail(e)


# ── prune subcommand ────────────────────────────────────────────────


def cmd_prune(argv: list[str]) -> int:
    """Remove sessions older than ``session_max_age_hours``.

    The container is force-removed first; the record is dropped once the
    container is gone.

    Args:
        argv: Command arguments.

    Returns:
        Exit code (0 on success, 1 on config error or leftover sessions).
    """
    parser = argparse.ArgumentParser(prog="trainbox prune")
    _add_common_args(parser)
    args = parser.parse_args(argv)
    _configure(args)

    try:
        config = _load_config(args)
    except ConfigError as e:
        return _fail(e)

    store = SessionStore(config.state_dir)
    runtime = ContainerRuntime(config.container_command)
    max_age = timedelta(hours=config.session_max_age_hours)

    removed = 0
    failed = 0
    for record in store.expired(max_age):
        if runtime.container_exists(record.container) and not runtime.remove(
            record.container
        ):
            failed += 1
            continue
        store.remove(record.user, record.environment)
        removed += 1
        logger.info("Pruned session %s", record.container)

    print(f"Pruned {removed} session(s).")
    if failed:
        print(f"{failed} session(s) could not be removed.", file=sys.stderr)
        return 1
    return 0


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Creates the config file with a minimal commented template if it does
    not already exist.

    Args:
        argv: Command arguments (``--config``).

    Returns:
        Exit code (always 0).
    """
    parser = argparse.ArgumentParser(prog="trainbox init")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file to create (default: $TRAINBOX_CONFIG or XDG)",
    )
    args = parser.parse_args(argv)
    config_path = args.config or get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── check subcommand ────────────────────────────────────────────────


def cmd_check(argv: list[str]) -> int:
    """Check configuration and host dependencies.

    Args:
        argv: Command arguments (``--config``).

    Returns:
        0 if all checks pass, 1 if any check fails.
    """
    parser = argparse.ArgumentParser(prog="trainbox check")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: $TRAINBOX_CONFIG or XDG config dir)",
    )
    args = parser.parse_args(argv)

    s = _Style(_use_color())
    all_ok = True

    # ── Configuration ───────────────────────────────────────────
    print(s.bold("Configuration"))
    config_path = args.config or get_config_path()
    print(f"  Config file: {s.dim(str(config_path))}")

    config: LabConfig | None = None
    try:
        config = LabConfig.from_yaml(config_path)
        names = ", ".join(sorted(config.environments))
        print(
            f"  Status:      {s.green('ok')}: "
            f"{len(config.environments)} environment(s) ({names})"
        )
    except ConfigError as e:
        print(f"  Status:      {s.red('error')}: {e}")
        print("  Run 'trainbox init' to create a stub config.")
        all_ok = False
    print()

    # ── Host dependencies ───────────────────────────────────────
    print(s.bold("Dependencies"))
    container_command = config.container_command if config else "docker"
    iptables = config.firewall.iptables if config else "iptables"

    try:
        ContainerRuntime(container_command).check_available()
        print(f"  {s.green('✓')} {container_command}: available")
    except LabError as e:
        print(f"  {s.red('✗')} {e}")
        all_ok = False

    for tool in (iptables, *_HOST_TOOLS):
        path = shutil.which(tool)
        if path:
            print(f"  {s.green('✓')} {tool}: {path}")
        else:
            # Forwarding degrades to a warning at launch time
            print(f"  {s.yellow('!')} {tool}: not found (forwarding disabled)")
    print()

    if all_ok:
        print(s.green("All checks passed."))
    else:
        print(s.red("Some checks failed."))

    return 0 if all_ok else 1


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "start": "cmd_start",
    "attach": "cmd_attach",
    "prune": "cmd_prune",
    "init": "cmd_init",
    "check": "cmd_check",
}


def cli() -> None:
    """Entry point for ``trainbox``.

    When no arguments are given, prints usage information.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"trainbox: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import trainbox.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(handler(rest))


#: Stub configuration template written by ``trainbox init``.
_STUB_CONFIG = """\
# trainbox configuration

# container_command: docker
# debug: false
# session_max_age_hours: 24

# firewall:
#   interface: eth0
#   iptables: iptables

environments:
  kali:
    image: kalilinux/kali-rolling
    removal: keep
    memory: 1g
    swap: 2g
    cpu_shares: 512
    timeout: 3600
    command: [/bin/bash]
    capabilities:
      drop_all: false
      add_all: false
      NET_RAW: true
    ulimits:
      nofile: "1024:2048"
      nproc: 256
      core: disabled
    env_passthrough: [LANG, TERM]

  web:
    image: nginx:alpine
    removal: remove
    virtual_port: 80
    bind_address: 127.0.0.1
    start_port: 8000
"""
