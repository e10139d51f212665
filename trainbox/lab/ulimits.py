# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Resource limit resolution for lab containers.

Each configured limit becomes one ``--ulimit name=value`` option.  A
limit set to ``disabled`` is suppressed entirely so the runtime default
applies; unknown names are ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping


logger = logging.getLogger(__name__)


#: Known limit names in emission order.
ULIMIT_NAMES: tuple[str, ...] = (
    "core",
    "cpu",
    "data",
    "fsize",
    "locks",
    "memlock",
    "msgqueue",
    "nice",
    "nofile",
    "nproc",
    "rss",
    "rtprio",
    "rttime",
    "sigpending",
    "stack",
)

#: Value that suppresses a limit.
DISABLED = "disabled"


def _is_unset(value: object) -> bool:
    if value is None:
        return True
    text = str(value).strip()
    return not text or text.lower() == DISABLED


def resolve_ulimits(
    limits: Mapping[str, object],
) -> tuple[tuple[str, str], ...]:
    """Resolve configured limits into ordered ``(name, value)`` pairs.

    Args:
        limits: Limit name to value (``1024``, ``"1024:2048"`` or
            ``"disabled"``).

    Returns:
        Pairs in ``ULIMIT_NAMES`` order, one per effective limit.
    """
    normalized = {str(k).strip().lower(): v for k, v in limits.items()}
    for name in normalized:
        if name not in ULIMIT_NAMES:
            logger.debug("Ignoring unknown ulimit: %s", name)

    resolved = []
    for name in ULIMIT_NAMES:
        value = normalized.get(name)
        if _is_unset(value):
            continue
        resolved.append((name, str(value).strip()))
    return tuple(resolved)


def ulimit_args(limits: tuple[tuple[str, str], ...]) -> list[str]:
    """Render resolved limits as container runtime arguments."""
    args: list[str] = []
    for name, value in limits:
        args.extend(["--ulimit", f"{name}={value}"])
    return args
