"""Tests for the subcommand dispatcher and command handlers."""

import os
import time
import uuid
from unittest import mock

import pytest

from backup_courier import __version__
from backup_courier.cli.dispatcher import COMMANDS, create_subcommand_parser, main
from backup_courier.config.loader import API_KEY_ENV
from backup_courier.transaction import set_transaction_log


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    monkeypatch.delenv(API_KEY_ENV, raising=False)
    yield
    set_transaction_log(None)


@pytest.fixture
def cli_config(tmp_path, backup_root):
    """Config file pointing at temporary directories."""
    path = tmp_path / "cli.toml"
    path.write_text(
        f"""
[global]
temp_dir = "{tmp_path / 'temp'}"
transaction_log = "{tmp_path / 'transactions.log'}"

[watch]
root = "{backup_root}"
poll_interval = 0

[transfer]
part_size = 1000

[ledger]
api_key = "pk_test"
list_id = "901"
link_field_id = "field-1"

[reassembly]
base_url = "https://files.example.com/temp"
"""
    )
    return path


class TestDispatcher:
    """Tests for argument parsing and routing."""

    def test_all_commands_routed(self):
        """Test every subcommand has a handler."""
        assert set(COMMANDS) == {
            "watch",
            "split",
            "merge",
            "reassemble",
            "sweep",
            "status",
            "config",
        }

    def test_version(self, capsys):
        """Test --version prints the version."""
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        """Test running without a command prints usage."""
        assert main([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_parse_split(self):
        """Test split arguments."""
        args = create_subcommand_parser().parse_args(
            ["split", "site.zip", "-o", "out", "-s", "10M"]
        )
        assert args.command == "split"
        assert args.file == "site.zip"
        assert args.output_dir == "out"
        assert args.part_size == "10M"

    def test_parse_reassemble(self):
        """Test reassemble arguments."""
        args = create_subcommand_parser().parse_args(
            ["-c", "cfg.toml", "reassemble", "86c1x2y", "--detach", "--no-comment"]
        )
        assert args.config == "cfg.toml"
        assert args.task_id == "86c1x2y"
        assert args.detach is True
        assert args.no_comment is True

    def test_keyboard_interrupt(self, capsys):
        """Test Ctrl-C exits with 130."""
        with mock.patch.dict(COMMANDS, {"status": mock.Mock(side_effect=KeyboardInterrupt)}):
            assert main(["status"]) == 130


class TestSplitMergeCommands:
    """Tests for the split and merge commands."""

    def test_split_then_merge(self, tmp_path, capsys):
        """Test splitting and merging from the command line."""
        source = tmp_path / "site.zip"
        data = os.urandom(2500)
        source.write_bytes(data)
        out = tmp_path / "parts"

        assert main(["split", str(source), "-o", str(out), "-s", "1K"]) == 0
        printed = capsys.readouterr().out.split()
        assert printed == [str(out / f"site.zip.part{n}") for n in (1, 2, 3)]

        assert main(["merge", str(out / "site.zip.part2"), "--delete-parts"]) == 0
        assert (out / "site.zip").read_bytes() == data
        assert sorted(p.name for p in out.iterdir()) == ["site.zip"]

    def test_split_default_part_size_from_config(self, tmp_path, cli_config):
        """Test the configured part size is used without -s."""
        source = tmp_path / "site.zip"
        source.write_bytes(os.urandom(2500))

        assert main(["-c", str(cli_config), "split", str(source)]) == 0
        assert (tmp_path / "site.zip.part3").exists()

    def test_split_invalid_size(self, tmp_path):
        """Test an invalid part size is rejected."""
        source = tmp_path / "site.zip"
        source.write_bytes(b"x")
        assert main(["split", str(source), "-s", "lots"]) == 1

    def test_split_missing_file(self, tmp_path):
        """Test splitting a missing file fails."""
        assert main(["split", str(tmp_path / "missing.zip")]) == 1

    def test_merge_gap(self, tmp_path):
        """Test merging an incomplete set fails."""
        (tmp_path / "site.zip.part1").write_bytes(b"a")
        (tmp_path / "site.zip.part3").write_bytes(b"c")

        assert main(["merge", str(tmp_path / "site.zip.part1")]) == 1
        assert not (tmp_path / "site.zip").exists()


class TestConfigCommand:
    """Tests for the config command."""

    def test_validate(self, cli_config, tmp_path, capsys):
        """Test validating a good config shows the ledger and reassembly settings."""
        assert main(["-c", str(cli_config), "config", "validate"]) == 0

        out = capsys.readouterr().out
        assert "Configuration is valid" in out
        assert "List id:        901" in out
        assert "Link field id:  field-1" in out
        assert str(tmp_path / "temp") in out
        assert "https://files.example.com/temp/<id>/<file>" in out
        assert "1000.0 B" in out
        assert "pk_test" not in out

    def test_validate_missing_ledger_settings(self, tmp_path, backup_root, capsys):
        """Test a config without ledger credentials does not validate."""
        path = tmp_path / "nokey.toml"
        path.write_text(f'[watch]\nroot = "{backup_root}"\n')

        assert main(["-c", str(path), "config", "validate"]) == 1

        out = capsys.readouterr().out
        assert "ledger.api_key, ledger.list_id, ledger.link_field_id" in out
        assert API_KEY_ENV in out
        assert "Configuration is valid" not in out

    def test_validate_api_key_from_environment(self, tmp_path, backup_root, monkeypatch, capsys):
        """Test the API key may come from the environment."""
        monkeypatch.setenv(API_KEY_ENV, "pk_from_environment")
        path = tmp_path / "envkey.toml"
        path.write_text(
            f'[watch]\nroot = "{backup_root}"\n\n'
            '[ledger]\nlist_id = "901"\nlink_field_id = "field-1"\n'
        )

        assert main(["-c", str(path), "config", "validate"]) == 0
        assert "pk_f..." in capsys.readouterr().out

    def test_validate_with_no_config(self, capsys):
        """Test validating without any config file."""
        with mock.patch(
            "backup_courier.cli.config_cmd.find_config_file", return_value=None
        ):
            assert main(["config", "validate"]) == 1
        assert "No configuration file found" in capsys.readouterr().out

    def test_validate_invalid(self, tmp_path, capsys):
        """Test validating a broken config."""
        path = tmp_path / "bad.toml"
        path.write_text("[reassembly]\nttl = 0\n")

        assert main(["-c", str(path), "config", "validate"]) == 1
        assert "Configuration error" in capsys.readouterr().out

    def test_init_stdout(self, capsys):
        """Test init prints the example config."""
        assert main(["config", "init"]) == 0
        assert "[transfer]" in capsys.readouterr().out

    def test_init_to_file(self, tmp_path):
        """Test init writes the example config to a file."""
        output = tmp_path / "config.toml"
        assert main(["config", "init", "-o", str(output)]) == 0
        assert "[ledger]" in output.read_text()

    def test_init_refuses_overwrite(self, tmp_path, capsys):
        """Test init keeps an existing file unless forced."""
        output = tmp_path / "config.toml"
        output.write_text("# mine\n")

        assert main(["config", "init", "-o", str(output)]) == 1
        assert output.read_text() == "# mine\n"
        assert "--force" in capsys.readouterr().out

        assert main(["config", "init", "-o", str(output), "--force"]) == 0
        assert "[ledger]" in output.read_text()

    def test_unknown_action(self, capsys):
        """Test a missing action prints usage."""
        assert main(["config"]) == 1
        assert "Usage:" in capsys.readouterr().out


class TestReassembleCommand:
    """Tests for the reassemble and sweep commands."""

    def test_reassemble_detached(self, cli_config, ledger, tmp_path, capsys):
        """Test a detached reassembly prints the download URL."""
        data = os.urandom(1500)
        ledger.add_remote_file("t1", "site.zip.part1", data[:1000])
        ledger.add_remote_file("t1", "site.zip.part2", data[1000:])

        with mock.patch(
            "backup_courier.cli.reassemble.build_ledger", return_value=ledger
        ):
            result = main(["-c", str(cli_config), "reassemble", "t1", "--detach"])

        assert result == 0
        out = capsys.readouterr().out
        assert "https://files.example.com/temp/" in out
        [job_dir] = (tmp_path / "temp").iterdir()
        assert (job_dir / "site.zip").read_bytes() == data
        assert ledger.comments["t1"]

    def test_reassemble_no_comment(self, cli_config, ledger):
        """Test --no-comment suppresses the task comment."""
        ledger.add_remote_file("t1", "site.zip", b"whole")

        with mock.patch(
            "backup_courier.cli.reassemble.build_ledger", return_value=ledger
        ):
            main(["-c", str(cli_config), "reassemble", "t1", "--detach", "--no-comment"])

        assert "t1" not in ledger.comments

    def test_reassemble_failure_cleans_up(self, cli_config, ledger, tmp_path):
        """Test a failed reassembly exits non-zero and leaves no directory."""
        with mock.patch(
            "backup_courier.cli.reassemble.build_ledger", return_value=ledger
        ):
            result = main(["-c", str(cli_config), "reassemble", "t1", "--detach"])

        assert result == 1
        assert list((tmp_path / "temp").iterdir()) == []

    def test_sweep(self, cli_config, tmp_path, capsys):
        """Test sweep removes expired job directories only."""
        temp = tmp_path / "temp"
        old = temp / str(uuid.uuid4())
        old.mkdir(parents=True)
        past = time.time() - 7200
        os.utime(old, (past, past))
        fresh = temp / str(uuid.uuid4())
        fresh.mkdir()

        assert main(["-c", str(cli_config), "sweep"]) == 0
        assert not old.exists()
        assert fresh.exists()
        assert "Removed 1 expired" in capsys.readouterr().out


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_healthy(self, cli_config, capsys):
        """Test status with a fresh setup."""
        assert main(["-c", str(cli_config), "status", "-t"]) == 0
        out = capsys.readouterr().out
        assert "All systems operational" in out
        assert "Recent transactions" in out

    def test_status_reports_leftover_split_dirs(self, cli_config, tmp_path, capsys):
        """Test leftover split directories are reported as issues."""
        (tmp_path / "temp" / f"split_{uuid.uuid4()}").mkdir(parents=True)

        assert main(["-c", str(cli_config), "status"]) == 1
        assert "split directories left" in capsys.readouterr().out


class TestWatchCommand:
    """Tests for the watch command's startup checks."""

    def test_requires_credentials(self, tmp_path, backup_root):
        """Test watch refuses to start without ledger credentials."""
        path = tmp_path / "nokey.toml"
        path.write_text(f'[watch]\nroot = "{backup_root}"\n')

        assert main(["-c", str(path), "watch"]) == 1

    def test_missing_root(self, cli_config, tmp_path):
        """Test watch fails when the root does not exist."""
        with mock.patch("backup_courier.cli.watch.signal.signal"):
            result = main(
                ["-c", str(cli_config), "watch", "--root", str(tmp_path / "missing")]
            )
        assert result == 1

    def test_watch_refused_by_os(self, cli_config):
        """Test an OS error while starting the watch exits non-zero."""
        with mock.patch("backup_courier.cli.watch.signal.signal"), mock.patch(
            "backup_courier.core.watcher.BackupWatcher.start",
            side_effect=OSError(24, "inotify instance limit reached"),
        ):
            result = main(["-c", str(cli_config), "watch"])
        assert result == 1
