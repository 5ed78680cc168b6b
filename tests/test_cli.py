"""Test the command-line contract."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from upload_intake.cli.main import IntakeCLI


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "uploader": {
                    "max_user_upload_size": 100,
                    "max_user_airtime": 1000,
                    "ssh_key_dir": str(tmp_path / "keys"),
                    "access_log": str(tmp_path / "logs"),
                    "inbound_directory": str(tmp_path / "inbound"),
                    "storage_directory": str(tmp_path / "storage"),
                    "ledger_path": str(tmp_path / "userstats.db"),
                    "strikes_before_timeout": 3,
                    "timeouts_before_ban": 3,
                }
            }
        ),
        encoding="utf-8",
    )
    return path


def test_config_argument_is_required() -> None:
    with pytest.raises(SystemExit) as excinfo:
        IntakeCLI().run([])

    assert excinfo.value.code != 0


def test_unreadable_config_exits_with_error(tmp_path) -> None:
    assert IntakeCLI().run([str(tmp_path / "missing.yaml")]) == 1


def test_missing_ffprobe_is_fatal(config_file) -> None:
    with patch("upload_intake.cli.main.check_probe_available", return_value=False):
        assert IntakeCLI().run([str(config_file)]) == 1


def test_once_runs_a_single_sweep(config_file) -> None:
    with (
        patch("upload_intake.cli.main.check_probe_available", return_value=True),
        patch("upload_intake.cli.main.IntakeService") as mock_service_class,
    ):
        assert IntakeCLI().run([str(config_file), "--once", "--poll-interval", "0.2"]) == 0

    mock_service = mock_service_class.return_value
    mock_service.sweep_once.assert_called_once_with()
    mock_service.run_forever.assert_not_called()
    config = mock_service_class.call_args.args[0]
    assert config.uploader.poll_interval == 0.2
    assert mock_service_class.call_args.kwargs["control_stream"] is None


def test_keyboard_interrupt_exits_130(config_file) -> None:
    with (
        patch("upload_intake.cli.main.check_probe_available", return_value=True),
        patch("upload_intake.cli.main.IntakeService") as mock_service_class,
    ):
        mock_service_class.return_value.run_forever.side_effect = KeyboardInterrupt
        assert IntakeCLI().run([str(config_file)]) == 130
