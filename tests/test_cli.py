"""Command dispatch and install option validation."""

import pytest

import backrest_installer as bi


class TestUsage:
    def test_no_arguments_prints_usage(self, cli_runner, fake_runner):
        result = cli_runner.invoke(bi.cli, [])
        assert result.exit_code == 0
        for command in ("install", "status", "uninstall"):
            assert command in result.output
        assert fake_runner.calls == []

    @pytest.mark.parametrize("flag", ["--help", "-h"])
    def test_help_flags_print_usage(self, cli_runner, flag):
        result = cli_runner.invoke(bi.cli, [flag])
        assert result.exit_code == 0
        assert "Usage:" in result.output
        assert "uninstall" in result.output

    def test_unknown_command_fails_after_usage(self, cli_runner, fake_runner):
        result = cli_runner.invoke(bi.cli, ["frobnicate"])
        assert result.exit_code != 0
        assert "Unknown command: frobnicate" in result.output
        assert "Usage:" in result.output
        assert fake_runner.calls == []

    def test_install_help_lists_remote_options(self, cli_runner):
        result = cli_runner.invoke(bi.cli, ["install", "--help"])
        assert result.exit_code == 0
        for option in ("--remote-type", "--remote-path", "--remote-login", "--remote-password"):
            assert option in result.output

    def test_unknown_install_option_fails(self, cli_runner, fake_runner):
        result = cli_runner.invoke(bi.cli, ["install", "--bogus"])
        assert result.exit_code != 0
        assert fake_runner.calls == []


REMOTE_FLAGS = {
    "--remote-type": "webdav",
    "--remote-path": "https://dav.example/backup",
    "--remote-login": "alice",
    "--remote-password": "hunter2",
}


class TestRemoteValidation:
    @pytest.mark.parametrize("flag", sorted(REMOTE_FLAGS))
    def test_single_remote_flag_is_incomplete(self, cli_runner, fake_runner, flag):
        result = cli_runner.invoke(bi.cli, ["install", flag, REMOTE_FLAGS[flag]])
        assert result.exit_code == 1
        assert "Incomplete remote configuration" in result.output
        assert fake_runner.calls == []

    def test_three_of_four_flags_is_incomplete(self, cli_runner, fake_runner):
        args = ["install"]
        for flag in ("--remote-type", "--remote-path", "--remote-login"):
            args += [flag, REMOTE_FLAGS[flag]]
        result = cli_runner.invoke(bi.cli, args)
        assert result.exit_code == 1
        assert "--remote-password" in result.output
        assert fake_runner.calls == []

    def test_unsupported_type_fails_before_packages(self, cli_runner, fake_runner):
        result = cli_runner.invoke(
            bi.cli,
            [
                "install",
                "--remote-type",
                "foo",
                "--remote-path",
                "//nas/share",
                "--remote-login",
                "u",
                "--remote-password",
                "p",
            ],
        )
        assert result.exit_code == 1
        assert "Unsupported remote type" in result.output
        assert fake_runner.commands("apt") == []
        assert fake_runner.calls == []

    def test_no_remote_flags_is_local_only(self):
        assert bi.RemoteConfig.from_options(None, None, None, None) is None

    def test_empty_values_count_as_missing(self):
        with pytest.raises(bi.ConfigurationError, match="--remote-login"):
            bi.RemoteConfig.from_options("cifs", "//nas/share", "", "secret")

    def test_all_four_flags_pass(self):
        remote = bi.RemoteConfig.from_options("cifs", "//nas/share", "u", "p")
        assert remote.type == "cifs"
        assert remote.package == "cifs-utils"
