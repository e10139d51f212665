# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for trainbox/lab/_image.py."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from trainbox.lab._image import image_exists, pull_image, resolve_image
from trainbox.lab.errors import ImageResolutionError


class TestImageExists:
    @patch("trainbox.lab._image.subprocess.run")
    def test_present(self, mock_run: MagicMock) -> None:
        assert image_exists("docker", "nginx:alpine") is True
        assert mock_run.call_args[0][0] == [
            "docker",
            "image",
            "inspect",
            "nginx:alpine",
        ]

    @patch("trainbox.lab._image.subprocess.run")
    def test_absent(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(1, "docker")
        assert image_exists("docker", "nginx:alpine") is False


class TestPullImage:
    @patch("trainbox.lab._image.subprocess.run")
    def test_success(self, mock_run: MagicMock) -> None:
        pull_image("podman", "nginx:alpine")
        assert mock_run.call_args[0][0] == ["podman", "pull", "nginx:alpine"]

    @patch("trainbox.lab._image.subprocess.run")
    def test_failure(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            1, "docker", stderr="manifest unknown\n"
        )
        with pytest.raises(ImageResolutionError, match="manifest unknown"):
            pull_image("docker", "nginx:nope")

    @patch("trainbox.lab._image.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired("docker", 1800)
        with pytest.raises(ImageResolutionError, match="timed out"):
            pull_image("docker", "nginx:alpine")


class TestResolveImage:
    @patch("trainbox.lab._image.pull_image")
    @patch("trainbox.lab._image.image_exists", return_value=True)
    def test_present_skips_pull(
        self, mock_exists: MagicMock, mock_pull: MagicMock
    ) -> None:
        assert resolve_image("docker", "nginx:alpine") == "nginx:alpine"
        mock_pull.assert_not_called()

    @patch("trainbox.lab._image.pull_image")
    @patch("trainbox.lab._image.image_exists", return_value=False)
    def test_absent_pulls(
        self, mock_exists: MagicMock, mock_pull: MagicMock
    ) -> None:
        assert resolve_image("docker", "nginx:alpine") == "nginx:alpine"
        mock_pull.assert_called_once_with("docker", "nginx:alpine")
