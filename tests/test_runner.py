"""Tests for the command line entry point."""

import pytest

from mpssh.config import Config
from mpssh.runner import apply_args, build_parser, main, parse_args


def _parse(*argv):
    return parse_args(build_parser(), list(argv))


def _hostfile(tmp_path, text="h1\nh2\n"):
    path = tmp_path / "hosts.txt"
    path.write_text(text)
    return path


class TestApplyArgs:
    def test_command_words_joined(self):
        args = _parse("-p", "5", "--", "ls", "-la", "/tmp")
        config = apply_args(Config(), args)
        assert config.command == "ls -la /tmp"
        assert config.max_children == 5

    def test_flags_override_defaults(self, tmp_path):
        args = _parse("-s", "-e", "-v", "-o", str(tmp_path), "uptime")
        config = apply_args(Config(max_children=7), args)
        assert config.host_key_check is False
        assert config.print_exit and config.verbose
        assert config.outdir == tmp_path
        assert config.max_children == 7

    def test_script_arguments(self, tmp_path):
        args = _parse("-r", "job.sh", "one", "two")
        config = apply_args(Config(), args)
        assert config.command is None
        assert config.script_args == ["one", "two"]

    def test_options_after_command_are_options(self):
        config = apply_args(Config(), _parse("uptime", "-e"))
        assert config.command == "uptime"
        assert config.print_exit is True

    def test_words_after_double_dash_kept_verbatim(self):
        config = apply_args(Config(), _parse("-r", "job.sh", "--", "-x", "--", "y"))
        assert config.script_args == ["-x", "--", "y"]

    def test_no_command_words_keeps_default(self):
        config = apply_args(Config(command="uptime"), _parse("-b"))
        assert config.command == "uptime"


class TestMain:
    def test_runs_and_reports(self, tmp_path, fake_ssh, capsys):
        hosts = _hostfile(tmp_path)
        rc = main(["--config", str(tmp_path / "none.yaml"), "-f", str(hosts), "echo hi"])
        # Missing explicit config file is an error
        assert rc == 1

        config = tmp_path / "config.yaml"
        config.write_text(f"defaults:\n  ssh_path: {fake_ssh}\n")
        rc = main(["--config", str(config), "-f", str(hosts), "-e", "echo hi"])
        out = capsys.readouterr().out
        assert rc == 0
        assert "h1 -> hi" in out
        assert "h2 =: 0" in out
        assert "Done. 2 hosts processed." in out

    def test_missing_host_file(self, tmp_path, fake_ssh, capsys):
        rc = main(["--ssh", str(fake_ssh), "-f", str(tmp_path / "nope"), "true"])
        assert rc == 1
        assert "Cannot read host list" in capsys.readouterr().err

    def test_spawn_failure_exit_code(self, tmp_path, capsys):
        hosts = _hostfile(tmp_path, "h1\n")
        rc = main(["--ssh", str(tmp_path / "no-ssh"), "-f", str(hosts), "true"])
        captured = capsys.readouterr()
        assert rc == 1
        assert "Done. 0 hosts processed." in captured.out
        assert "Unable to start ssh for" in captured.err

    def test_usage_error(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["-b", "-f", str(_hostfile(tmp_path)), "true"])
        assert exc.value.code == 2
