# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for trainbox/lab/ulimits.py."""

from trainbox.lab.ulimits import ULIMIT_NAMES, resolve_ulimits, ulimit_args


class TestResolveUlimits:
    def test_empty(self) -> None:
        assert resolve_ulimits({}) == ()

    def test_single_value(self) -> None:
        assert resolve_ulimits({"nproc": 256}) == (("nproc", "256"),)

    def test_soft_hard_pair(self) -> None:
        assert resolve_ulimits({"nofile": "1024:2048"}) == (
            ("nofile", "1024:2048"),
        )

    def test_disabled_suppressed(self) -> None:
        """A disabled limit emits nothing."""
        result = resolve_ulimits({"core": "disabled", "nproc": 64})
        assert result == (("nproc", "64"),)

    def test_disabled_case_insensitive(self) -> None:
        assert resolve_ulimits({"core": "DISABLED"}) == ()

    def test_none_and_empty_suppressed(self) -> None:
        assert resolve_ulimits({"core": None, "cpu": ""}) == ()

    def test_unknown_name_ignored(self) -> None:
        assert resolve_ulimits({"bogus": 1}) == ()

    def test_canonical_order(self) -> None:
        """Output follows the known-name order, not insertion order."""
        result = resolve_ulimits({"stack": 8192, "core": 0, "nofile": 100})
        assert [name for name, _ in result] == ["core", "nofile", "stack"]

    def test_names_normalized(self) -> None:
        assert resolve_ulimits({"NOFILE": 10}) == (("nofile", "10"),)

    def test_at_most_one_per_name(self) -> None:
        limits = {name: 1 for name in ULIMIT_NAMES}
        result = resolve_ulimits(limits)
        assert len(result) == len(ULIMIT_NAMES)


class TestUlimitArgs:
    def test_renders(self) -> None:
        args = ulimit_args((("nofile", "1024:2048"), ("nproc", "256")))
        assert args == [
            "--ulimit",
            "nofile=1024:2048",
            "--ulimit",
            "nproc=256",
        ]
