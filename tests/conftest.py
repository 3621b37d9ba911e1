"""Shared fixtures for the Backrest installer tests."""

import subprocess
from pathlib import Path

import pytest
from click.testing import CliRunner

import backrest_installer as bi


class FakeRunner:
    """Stands in for run_command and records every command it receives."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.outputs = {}
        self.missing_all = False

    def fail_on(self, prefix, returncode=1):
        self.failures[tuple(prefix)] = returncode

    def output_for(self, prefix, stdout):
        self.outputs[tuple(prefix)] = stdout

    @staticmethod
    def _matches(cmd, prefix):
        return cmd[: len(prefix)] == list(prefix)

    def __call__(
        self,
        cmd,
        sudo=False,
        input_text=None,
        check=True,
        capture_output=True,
        timeout=None,
        cwd=None,
    ):
        cmd = list(cmd)
        self.calls.append({"cmd": cmd, "sudo": sudo, "input": input_text, "cwd": cwd})
        if self.missing_all:
            raise bi.ExecutionError(f"Command not found: {cmd[0]}", 127)

        returncode = 0
        for prefix, code in self.failures.items():
            if self._matches(cmd, prefix):
                returncode = code
        stdout = ""
        for prefix, text in self.outputs.items():
            if self._matches(cmd, prefix):
                stdout = text
        if returncode and check:
            raise bi.ExecutionError(
                f"Command failed (code {returncode}): {' '.join(cmd)}", returncode
            )
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def commands(self, *prefix):
        return [call["cmd"] for call in self.calls if self._matches(call["cmd"], prefix)]

    def find(self, *prefix):
        return [call for call in self.calls if self._matches(call["cmd"], prefix)]

    def index(self, *prefix):
        for i, call in enumerate(self.calls):
            if self._matches(call["cmd"], prefix):
                return i
        raise AssertionError(f"{prefix} was never run")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point $HOME and the log file into the test's temporary directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("BACKREST_INSTALLER_LOG", str(tmp_path / "installer.log"))
    monkeypatch.delenv("BACKREST_LISTEN", raising=False)
    monkeypatch.setattr(bi.time, "sleep", lambda seconds: None)
    return home


@pytest.fixture
def home(isolated_env) -> Path:
    return isolated_env


@pytest.fixture
def fake_runner(monkeypatch):
    runner = FakeRunner()
    monkeypatch.setattr(bi, "run_command", runner)
    return runner


@pytest.fixture
def host(monkeypatch, tmp_path):
    """A root shell on an x86_64 host with the release download faked out."""
    downloads = []

    def fake_fetch(arch_tag, api_url=bi.RELEASE_API_URL):
        return f"https://example.invalid/backrest_Linux_{arch_tag}.tar.gz"

    def fake_download(url, destination):
        downloads.append(url)
        Path(destination).write_bytes(b"archive")

    monkeypatch.setattr(bi.os, "geteuid", lambda: 0)
    monkeypatch.setattr(bi.platform, "machine", lambda: "x86_64")
    monkeypatch.setattr(bi, "fetch_release_asset_url", fake_fetch)
    monkeypatch.setattr(bi, "download_file", fake_download)
    return downloads


@pytest.fixture
def cli_runner():
    return CliRunner()
