# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Image resolution for lab launches.

An environment names a prebuilt image.  If the image is not present
locally it is pulled once; when the pull fails the launch aborts before
any port, firewall or store side effect happens.
"""

from __future__ import annotations

import logging
import subprocess
import time

from trainbox.lab.errors import ImageResolutionError


logger = logging.getLogger(__name__)

#: Upper bound for a single pull.
PULL_TIMEOUT_SECONDS = 1800


def image_exists(container_command: str, image: str) -> bool:
    """Check if a container image exists locally."""
    try:
        subprocess.run(
            [container_command, "image", "inspect", image],
            check=True,
            capture_output=True,
            text=True,
        )
        return True
    except subprocess.CalledProcessError:
        return False


def pull_image(container_command: str, image: str) -> None:
    """Fetch an image from its registry.

    Raises:
        ImageResolutionError: If the pull fails or times out.
    """
    logger.info("Pulling image: %s", image)
    start_time = time.time()
    try:
        subprocess.run(
            [container_command, "pull", image],
            check=True,
            capture_output=True,
            text=True,
            timeout=PULL_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as e:
        error_msg = e.stderr.strip() if e.stderr else str(e)
        logger.error("Failed to pull image %s: %s", image, error_msg)
        raise ImageResolutionError(
            f"Image {image} not found locally and pull failed: {error_msg}"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ImageResolutionError(
            f"Pulling image {image} timed out after {PULL_TIMEOUT_SECONDS}s"
        ) from e

    elapsed = time.time() - start_time
    logger.info("Image pulled in %.2fs: %s", elapsed, image)


def resolve_image(container_command: str, image: str) -> str:
    """Make sure an image is available locally.

    Args:
        container_command: Container runtime command.
        image: Image reference.

    Returns:
        The image reference, ready for ``run``.

    Raises:
        ImageResolutionError: If the image is absent and cannot be pulled.
    """
    if image_exists(container_command, image):
        logger.debug("Image %s present locally", image)
        return image
    pull_image(container_command, image)
    return image
