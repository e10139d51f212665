# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for trainbox/cli.py: multi-command CLI."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from trainbox.cli import (
    _STUB_CONFIG,
    _Style,
    _use_color,
    cli,
    client_address_from_env,
    cmd_attach,
    cmd_check,
    cmd_init,
    cmd_prune,
    cmd_start,
)
from trainbox.lab import (
    ContainerNotFoundError,
    ExitResult,
    LaunchError,
    Outcome,
    SessionRecord,
)
from trainbox.lab.store import STORE_FILE_NAME


def _result(outcome: Outcome = Outcome.SUCCESS, code: int = 0) -> ExitResult:
    return ExitResult(
        outcome=outcome,
        exit_code=code,
        container_name="kali_alice",
        duration_ms=10,
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "trainbox.yaml"
    path.write_text(
        f"""\
state_dir: {tmp_path / "state"}
environments:
  kali:
    image: kalilinux/kali-rolling
    removal: keep
  web:
    image: nginx:alpine
    virtual_port: 80
"""
    )
    return path


@pytest.fixture
def controller_cls():
    with patch("trainbox.cli.LifecycleController") as mock_cls:
        controller = mock_cls.return_value
        controller.store.get.return_value = None
        controller.runtime.container_exists.return_value = False
        controller.start.return_value = _result()
        controller.attach.return_value = _result()
        yield mock_cls


# ── client_address_from_env ─────────────────────────────────────────


class TestClientAddressFromEnv:
    def test_ssh_client(self) -> None:
        environ = {"SSH_CLIENT": "203.0.113.7 51234 22"}
        assert client_address_from_env(environ) == "203.0.113.7"

    def test_ipv6(self) -> None:
        environ = {"SSH_CLIENT": "2001:db8::1 51234 22"}
        assert client_address_from_env(environ) == "2001:db8::1"

    def test_missing(self) -> None:
        assert client_address_from_env({}) == "127.0.0.1"


# ── _use_color / _Style ─────────────────────────────────────────────


class TestUseColor:
    def test_no_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        assert _use_color() is False

    def test_dumb_term(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _use_color() is False


class TestStyle:
    def test_plain_when_off(self) -> None:
        assert _Style(False).red("x") == "x"

    def test_wraps_when_on(self) -> None:
        assert _Style(True).green("ok") == "\033[32mok\033[0m"


# ── cmd_start ───────────────────────────────────────────────────────


class TestCmdStart:
    def test_fresh_launch(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("SSH_CLIENT", "203.0.113.7 51234 22")

        result = cmd_start(
            ["kali", "--user", "alice", "--config", str(config_file)]
        )

        assert result == 0
        controller = controller_cls.return_value
        request = controller.start.call_args[0][0]
        assert request.user == "alice"
        assert request.environment == "kali"
        assert request.client_address == "203.0.113.7"
        assert request.virtual_port is None
        assert request.session_tag

    def test_default_user(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        with patch("trainbox.cli.getpass.getuser", return_value="bob"):
            cmd_start(["kali", "--config", str(config_file)])

        request = controller_cls.return_value.start.call_args[0][0]
        assert request.user == "bob"

    def test_resumes_recorded_session(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        controller = controller_cls.return_value
        controller.store.get.return_value = SessionRecord(
            "alice", "kali", "kali_alice", "2026-01-01T00:00:00+00:00"
        )

        result = cmd_start(
            ["kali", "--user", "alice", "--config", str(config_file)]
        )

        assert result == 0
        controller.attach.assert_called_once_with("kali_alice")
        controller.start.assert_not_called()

    def test_gone_container_launches_fresh(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        controller = controller_cls.return_value
        controller.store.get.return_value = SessionRecord(
            "alice", "kali", "kali_alice", "2026-01-01T00:00:00+00:00"
        )
        controller.attach.side_effect = ContainerNotFoundError("gone")

        result = cmd_start(
            ["kali", "--user", "alice", "--config", str(config_file)]
        )

        assert result == 0
        controller.start.assert_called_once()

    def test_resumes_unrecorded_container(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        """A kept container without a record is still resumed by name."""
        controller = controller_cls.return_value
        controller.runtime.container_exists.return_value = True

        result = cmd_start(
            ["kali", "--user", "alice", "--config", str(config_file)]
        )

        assert result == 0
        controller.runtime.container_exists.assert_called_once_with(
            "kali_alice"
        )
        controller.attach.assert_called_once_with("kali_alice")
        controller.start.assert_not_called()

    @pytest.mark.parametrize("port", ["0", "65536", "http"])
    def test_virtual_port_validated(
        self,
        port: str,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        with pytest.raises(SystemExit) as e:
            cmd_start(
                ["kali", "--virtual-port", port, "--config", str(config_file)]
            )

        assert e.value.code == 2
        assert "--virtual-port" in capsys.readouterr().err
        controller_cls.assert_not_called()

    def test_forwarding_never_resumes(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        controller = controller_cls.return_value
        controller.store.get.return_value = SessionRecord(
            "alice", "kali", "kali_alice", "2026-01-01T00:00:00+00:00"
        )

        cmd_start(
            [
                "kali",
                "--user",
                "alice",
                "--virtual-port",
                "8888",
                "--config",
                str(config_file),
            ]
        )

        controller.attach.assert_not_called()
        request = controller.start.call_args[0][0]
        assert request.virtual_port == 8888

    def test_inactive_message(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        controller_cls.return_value.start.return_value = _result(
            Outcome.INACTIVE
        )

        result = cmd_start(["kali", "--config", str(config_file)])

        assert result == 0
        assert "Session inactive, terminated." in capsys.readouterr().err

    def test_launch_error(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        controller_cls.return_value.start.side_effect = LaunchError(
            "Session kali_alice failed (exit code 2)", 2
        )

        result = cmd_start(["kali", "--config", str(config_file)])

        assert result == 1
        assert "trainbox: Session kali_alice failed" in capsys.readouterr().err

    def test_debug_failure_reported(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        controller_cls.return_value.start.return_value = _result(
            Outcome.FAILED, 2
        )

        result = cmd_start(["kali", "--debug", "--config", str(config_file)])

        assert result == 1
        config = controller_cls.call_args[0][0]
        assert config.debug is True
        assert "exit code 2" in capsys.readouterr().err

    def test_unknown_environment(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        result = cmd_start(["nope", "--config", str(config_file)])

        assert result == 1
        assert "Unknown environment" in capsys.readouterr().err
        controller_cls.assert_not_called()

    def test_missing_config(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        result = cmd_start(["kali", "--config", str(tmp_path / "none.yaml")])

        assert result == 1
        assert "Config file not found" in capsys.readouterr().err


# ── cmd_attach ──────────────────────────────────────────────────────


class TestCmdAttach:
    def test_attach(
        self, config_file: Path, controller_cls: MagicMock
    ) -> None:
        result = cmd_attach(["kali_alice", "--config", str(config_file)])

        assert result == 0
        controller_cls.return_value.attach.assert_called_once_with(
            "kali_alice"
        )

    def test_not_found(
        self,
        config_file: Path,
        controller_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        controller_cls.return_value.attach.side_effect = (
            ContainerNotFoundError("Container not found: kali_alice")
        )

        result = cmd_attach(["kali_alice", "--config", str(config_file)])

        assert result == 1
        assert "Container not found" in capsys.readouterr().err


# ── cmd_prune ───────────────────────────────────────────────────────


class TestCmdPrune:
    def _seed(self, state_dir: Path) -> None:
        now = datetime.now(UTC)
        state_dir.mkdir(parents=True, exist_ok=True)
        (state_dir / STORE_FILE_NAME).write_text(
            json.dumps(
                {
                    "alice:kali": {
                        "user": "alice",
                        "environment": "kali",
                        "container": "kali_alice",
                        "created_at": (now - timedelta(hours=48)).isoformat(),
                    },
                    "bob:kali": {
                        "user": "bob",
                        "environment": "kali",
                        "container": "kali_bob",
                        "created_at": now.isoformat(),
                    },
                }
            )
        )

    def _containers(self, state_dir: Path) -> set[str]:
        data = json.loads((state_dir / STORE_FILE_NAME).read_text())
        return {r["container"] for r in data.values()}

    @patch("trainbox.cli.ContainerRuntime")
    def test_removes_expired(
        self, mock_runtime_cls: MagicMock, config_file: Path, tmp_path: Path
    ) -> None:
        state_dir = tmp_path / "state"
        self._seed(state_dir)
        runtime = mock_runtime_cls.return_value
        runtime.container_exists.return_value = True
        runtime.remove.return_value = True

        result = cmd_prune(["--config", str(config_file)])

        assert result == 0
        runtime.remove.assert_called_once_with("kali_alice")
        assert self._containers(state_dir) == {"kali_bob"}

    @patch("trainbox.cli.ContainerRuntime")
    def test_gone_container_drops_record(
        self, mock_runtime_cls: MagicMock, config_file: Path, tmp_path: Path
    ) -> None:
        state_dir = tmp_path / "state"
        self._seed(state_dir)
        runtime = mock_runtime_cls.return_value
        runtime.container_exists.return_value = False

        assert cmd_prune(["--config", str(config_file)]) == 0
        runtime.remove.assert_not_called()
        assert self._containers(state_dir) == {"kali_bob"}

    @patch("trainbox.cli.ContainerRuntime")
    def test_remove_failure_keeps_record(
        self, mock_runtime_cls: MagicMock, config_file: Path, tmp_path: Path
    ) -> None:
        state_dir = tmp_path / "state"
        self._seed(state_dir)
        runtime = mock_runtime_cls.return_value
        runtime.container_exists.return_value = True
        runtime.remove.return_value = False

        assert cmd_prune(["--config", str(config_file)]) == 1
        assert self._containers(state_dir) == {"kali_alice", "kali_bob"}


# ── cmd_init ────────────────────────────────────────────────────────


class TestCmdInit:
    def test_creates_config(self, tmp_path: Path) -> None:
        """Creates stub config when file does not exist."""
        config_path = tmp_path / "trainbox" / "trainbox.yaml"
        with patch("trainbox.cli.get_config_path", return_value=config_path):
            result = cmd_init([])

        assert result == 0
        assert config_path.read_text() == _STUB_CONFIG

    def test_existing_config_not_overwritten(self, tmp_path: Path) -> None:
        config_path = tmp_path / "trainbox.yaml"
        config_path.write_text("existing: config\n")
        with patch("trainbox.cli.get_config_path", return_value=config_path):
            result = cmd_init([])

        assert result == 0
        assert config_path.read_text() == "existing: config\n"

    def test_config_option(self, tmp_path: Path) -> None:
        """--config picks the file to create."""
        config_path = tmp_path / "etc" / "trainbox.yaml"
        with patch("trainbox.cli.get_config_path") as mock_default:
            result = cmd_init(["--config", str(config_path)])

        assert result == 0
        assert config_path.read_text() == _STUB_CONFIG
        mock_default.assert_not_called()

    def test_stub_config_loads(self, tmp_path: Path) -> None:
        """The stub template is itself a valid config."""
        from trainbox.config import LabConfig

        config_path = tmp_path / "trainbox.yaml"
        config_path.write_text(_STUB_CONFIG)

        config = LabConfig.from_yaml(config_path)
        assert set(config.environments) == {"kali", "web"}


# ── cmd_check ───────────────────────────────────────────────────────


class TestCmdCheck:
    @patch("trainbox.cli.shutil.which", return_value="/usr/sbin/tool")
    @patch("trainbox.cli.ContainerRuntime")
    def test_all_ok(
        self,
        mock_runtime_cls: MagicMock,
        mock_which: MagicMock,
        config_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        with patch("trainbox.cli.get_config_path", return_value=config_file):
            result = cmd_check([])

        assert result == 0
        out = capsys.readouterr().out
        assert "2 environment(s)" in out
        assert "All checks passed." in out

    @patch("trainbox.cli.shutil.which", return_value=None)
    @patch("trainbox.cli.ContainerRuntime")
    def test_missing_tools_only_warn(
        self,
        mock_runtime_cls: MagicMock,
        mock_which: MagicMock,
        config_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        with patch("trainbox.cli.get_config_path", return_value=config_file):
            result = cmd_check([])

        assert result == 0
        assert "forwarding disabled" in capsys.readouterr().out

    @patch("trainbox.cli.ContainerRuntime")
    def test_runtime_unavailable(
        self,
        mock_runtime_cls: MagicMock,
        config_file: Path,
    ) -> None:
        from trainbox.lab import RuntimeUnavailableError

        mock_runtime_cls.return_value.check_available.side_effect = (
            RuntimeUnavailableError("Container runtime not found: docker")
        )
        with patch("trainbox.cli.get_config_path", return_value=config_file):
            assert cmd_check([]) == 1

    def test_missing_config(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        missing = tmp_path / "none.yaml"
        with (
            patch("trainbox.cli.get_config_path", return_value=missing),
            patch("trainbox.cli.ContainerRuntime"),
        ):
            result = cmd_check([])

        assert result == 1
        assert "trainbox init" in capsys.readouterr().out

    @patch("trainbox.cli.shutil.which", return_value="/usr/sbin/tool")
    @patch("trainbox.cli.ContainerRuntime")
    def test_config_option(
        self,
        mock_runtime_cls: MagicMock,
        mock_which: MagicMock,
        config_file: Path,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """--config is checked instead of the default path."""
        missing = tmp_path / "default.yaml"
        with patch("trainbox.cli.get_config_path", return_value=missing):
            result = cmd_check(["--config", str(config_file)])

        assert result == 0
        out = capsys.readouterr().out
        assert str(config_file) in out
        assert "2 environment(s)" in out


# ── cli ─────────────────────────────────────────────────────────────


class TestCli:
    def test_no_args_prints_usage(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch("sys.argv", ["trainbox"]), pytest.raises(SystemExit) as e:
            cli()
        assert e.value.code == 0
        assert "usage: trainbox" in capsys.readouterr().out

    def test_unknown_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("sys.argv", ["trainbox", "frobnicate"]),
            pytest.raises(SystemExit) as e,
        ):
            cli()
        assert e.value.code == 2
        assert "unknown command 'frobnicate'" in capsys.readouterr().err

    def test_dispatches(self) -> None:
        with (
            patch("sys.argv", ["trainbox", "start", "kali"]),
            patch("trainbox.cli.cmd_start", return_value=0) as mock_start,
            pytest.raises(SystemExit) as e,
        ):
            cli()
        assert e.value.code == 0
        mock_start.assert_called_once_with(["kali"])
