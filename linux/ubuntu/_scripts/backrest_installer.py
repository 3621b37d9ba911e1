#!/usr/bin/env python3
"""
Backrest Installer
--------------------------------------------------

Installs, inspects and removes Backrest (the web UI and scheduler built on
top of Restic) on Debian/Ubuntu hosts managed by systemd.

Commands:
  install     Install Backrest + Restic and register the backup plans
  status      Show the state of the service, repositories and backup plans
  uninstall   Remove Backrest (interactive)

Usage:
  ./backrest_installer.py install
  ./backrest_installer.py install --remote-type cifs --remote-path //nas/backup \\
      --remote-login user --remote-password secret
  ./backrest_installer.py status
  ./backrest_installer.py uninstall

Privileged steps run through sudo when the script is not started as root.
Backup data lives in the invoking user's home directory.

Version: 1.0.0
"""

import atexit
import base64
import logging
import os
import platform
import secrets
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import click
import pyfiglet
import requests
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
)
from rich.prompt import Confirm
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.traceback import install as install_rich_traceback

# Locals are hidden: frames hold the generated passphrase and remote password.
install_rich_traceback(show_locals=False)

# ----------------------------------------------------------------
# Global Configuration & Constants
# ----------------------------------------------------------------
APP_NAME: str = "Backrest Installer"
APP_SUBTITLE: str = "Backrest + Restic installer / manager"
VERSION: str = "1.0.0"

SERVICE_NAME: str = "backrest"
INSTALL_DIR: str = "/opt/backrest"
SYSTEMD_DIR: str = "/etc/systemd/system"
CREDENTIALS_ROOT: str = "/etc/systemd/credentials"
RUNTIME_CREDENTIALS_ROOT: str = "/run/credentials"

RELEASE_API_URL: str = (
    "https://api.github.com/repos/garethgeorge/backrest/releases/latest"
)
RELEASE_OS_LABEL: str = "Linux"

DEFAULT_LISTEN_ADDRESS: str = "0.0.0.0:9898"
DEFAULT_STARTUP_WAIT: int = 5  # seconds
SERVICE_NICE: int = 10

LOG_FILE: str = "/var/log/backrest_installer.log"
USER_LOG_FILE: str = "~/.local/state/backrest_installer/backrest_installer.log"
LOG_FORMAT: str = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

OPERATION_TIMEOUT: int = 600  # seconds, apt can be slow
PROBE_TIMEOUT: int = 30
HTTP_TIMEOUT: int = 60
CHUNK_SIZE: int = 8192

BASE_PACKAGES: List[str] = ["curl", "jq", "restic", "openssl", "systemd"]
REMOTE_PACKAGES: Dict[str, str] = {"cifs": "cifs-utils", "webdav": "davfs2"}

# uname -m -> release asset tag
ARCH_TAGS: Dict[str, str] = {
    "x86_64": "x86_64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7",
}

RESTIC_PASSWORD_CREDENTIAL: str = "restic-password"
REMOTE_USER_CREDENTIAL: str = "remote-user"
REMOTE_PASSWORD_CREDENTIAL: str = "remote-password"
PASSPHRASE_BYTES: int = 32


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming."""

    POLAR_NIGHT_4: str = "#4C566A"

    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"


console: Console = Console()
logger = logging.getLogger("backrest_installer")


# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class InstallerError(Exception):
    """Base exception for installer errors."""

    pass


class ConfigurationError(InstallerError):
    """Raised when the remote storage options are incomplete or invalid."""

    pass


class ValidationError(InstallerError):
    """Raised when the host or the upstream release cannot be used."""

    pass


class NetworkError(InstallerError):
    """Raised when the release query or download fails."""

    pass


class ExecutionError(InstallerError):
    """Raised when an external command fails."""

    def __init__(self, message: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


# ----------------------------------------------------------------
# Logging and Console Helpers
# ----------------------------------------------------------------
def default_log_file() -> str:
    """/var/log for root, the user's state directory otherwise."""
    if os.geteuid() == 0:
        return LOG_FILE
    return os.path.expanduser(USER_LOG_FILE)


def setup_logging(log_file: str = LOG_FILE, debug: bool = False) -> None:
    """
    Configure logging to the log file, and to the console in debug mode.

    The console already shows every step through the print helpers, so log
    records only reach it when --debug is given. A log file that cannot be
    opened is reported and skipped.
    """
    handlers: List[logging.Handler] = []
    file_error: Optional[Exception] = None
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    except OSError as e:
        file_error = e

    if debug:
        handlers.append(
            RichHandler(
                rich_tracebacks=True, markup=False, console=console, show_path=False
            )
        )
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        print_warning(f"Could not open log file {log_file}: {file_error}")
    else:
        logger.info("Logging initialized: %s", log_file)


def create_header() -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel: A Rich Panel containing the styled header.
    """
    ascii_art = ""
    for font in ("slant", "small", "standard"):
        try:
            ascii_art = pyfiglet.Figlet(font=font, width=70).renderText(APP_NAME)
            if ascii_art.strip():
                break
        except pyfiglet.FigletError as e:
            logger.debug("Font %s failed: %s", font, e)
    if not ascii_art.strip():
        ascii_art = f"=== {APP_NAME} ==="

    colors = [
        NordColors.FROST_1,
        NordColors.FROST_2,
        NordColors.FROST_3,
        NordColors.FROST_4,
    ]
    lines = [line for line in ascii_art.splitlines() if line.strip()]
    styled_text = "\n".join(
        f"[bold {colors[i % len(colors)]}]{escape(line)}[/]"
        for i, line in enumerate(lines)
    )
    border = f"[{NordColors.FROST_3}]{'━' * 50}[/]"
    return Panel(
        Text.from_markup(f"{border}\n{styled_text}\n{border}"),
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        box=ROUNDED,
        title=f"[bold {NordColors.SNOW_STORM_2}]v{VERSION}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_message(
    text: str, style: str = NordColors.FROST_2, prefix: str = "•"
) -> None:
    """Print a styled message to the console."""
    console.print(f"[{style}]{prefix} {escape(text)}[/]")


def print_step(text: str) -> None:
    print_message(text, NordColors.FROST_3, "➜")
    logger.info(text)


def print_info(text: str) -> None:
    print_message(text, NordColors.FROST_2, "ℹ")
    logger.info(text)


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓")
    logger.info("SUCCESS: %s", text)


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠")
    logger.warning(text)


def print_error(text: str) -> None:
    print_message(text, NordColors.RED, "✗")
    logger.error(text)


def print_section(title: str) -> None:
    """Print a section header."""
    console.print()
    console.print(f"[bold {NordColors.FROST_2}]=== {escape(title)} ===[/]")
    logger.info("--- %s ---", title)


def print_output(text: str) -> None:
    """Print raw command output without interpreting it as markup."""
    console.print(Text(text, style=NordColors.SNOW_STORM_1))


# ----------------------------------------------------------------
# Command Execution Helpers
# ----------------------------------------------------------------
def run_command(
    cmd: List[str],
    sudo: bool = False,
    input_text: Optional[str] = None,
    check: bool = True,
    capture_output: bool = True,
    timeout: int = OPERATION_TIMEOUT,
    cwd: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Execute a system command.

    Args:
        cmd: Command and arguments
        sudo: Prefix the command with sudo when not running as root
        input_text: Text fed to the command's stdin (never logged)
        check: Raise ExecutionError on a non-zero exit status
        capture_output: Capture stdout/stderr
        timeout: Command timeout in seconds
        cwd: Working directory for the command

    Returns:
        subprocess.CompletedProcess object

    Raises:
        ExecutionError: If the command is missing, times out, or fails with check=True
    """
    if sudo and os.geteuid() != 0:
        cmd = ["sudo"] + cmd
    cmd_str = " ".join(cmd)
    logger.debug("Executing: %s", cmd_str)

    try:
        return subprocess.run(
            cmd,
            input=input_text,
            check=check,
            text=True,
            capture_output=capture_output,
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.CalledProcessError as e:
        error_msg = f"Command failed (code {e.returncode}): {cmd_str}"
        if e.stderr:
            error_msg += f"\nError: {e.stderr.strip()}"
        logger.error(error_msg)
        raise ExecutionError(error_msg, e.returncode) from e
    except FileNotFoundError as e:
        error_msg = f"Command not found: {cmd[0]}"
        logger.error(error_msg)
        raise ExecutionError(error_msg, 127) from e
    except subprocess.TimeoutExpired as e:
        error_msg = f"Command timed out after {timeout} seconds: {cmd_str}"
        logger.error(error_msg)
        raise ExecutionError(error_msg) from e


def probe_command(
    cmd: List[str], sudo: bool = False, timeout: int = PROBE_TIMEOUT
) -> Optional[subprocess.CompletedProcess]:
    """Run a best-effort command. Returns None if it could not run at all."""
    try:
        return run_command(cmd, sudo=sudo, check=False, timeout=timeout)
    except ExecutionError as e:
        logger.debug("Probe failed: %s", e)
        return None


def backrest_cli(args: List[str]) -> subprocess.CompletedProcess:
    """Run a `backrest cli` subcommand."""
    return run_command([SERVICE_NAME, "cli"] + args)


# ----------------------------------------------------------------
# Signal Handling and Cleanup
# ----------------------------------------------------------------
_TEMP_DIRS: List[str] = []


def make_temp_dir() -> str:
    """Create a temporary directory that is removed on exit or interruption."""
    path = tempfile.mkdtemp(prefix="backrest_installer_")
    _TEMP_DIRS.append(path)
    return path


def remove_temp_dir(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)
    if path in _TEMP_DIRS:
        _TEMP_DIRS.remove(path)


def cleanup() -> None:
    """Remove leftover temporary download directories."""
    for path in list(_TEMP_DIRS):
        logger.debug("Removing temporary directory %s", path)
        remove_temp_dir(path)


def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """Gracefully handle termination signals."""
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        sig_name = f"signal {signum}"
    console.print()
    print_warning(f"Process interrupted by {sig_name}")
    cleanup()
    sys.exit(128 + signum)


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
@dataclass
class RemoteConfig:
    """Remote storage mounted before each remote backup."""

    type: str
    path: str
    login: Optional[str]
    password: Optional[str]

    @classmethod
    def from_options(
        cls,
        remote_type: Optional[str],
        remote_path: Optional[str],
        remote_login: Optional[str],
        remote_password: Optional[str],
    ) -> Optional["RemoteConfig"]:
        """
        Build the remote configuration from the install options.

        Returns None when no remote option is given at all. Empty values
        count as missing.

        Raises:
            ConfigurationError: If only some options are given, or the type
                is not supported
        """
        options = {
            "--remote-type": remote_type,
            "--remote-path": remote_path,
            "--remote-login": remote_login,
            "--remote-password": remote_password,
        }
        if not any(options.values()):
            return None
        missing = [name for name, value in options.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Incomplete remote configuration: missing {', '.join(missing)}"
            )
        if remote_type not in REMOTE_PACKAGES:
            raise ConfigurationError(
                f"Unsupported remote type: {remote_type} "
                f"(expected one of: {', '.join(REMOTE_PACKAGES)})"
            )
        return cls(
            type=remote_type,
            path=remote_path,
            login=remote_login,
            password=remote_password,
        )

    @property
    def package(self) -> str:
        return REMOTE_PACKAGES[self.type]

    def mount_command(self, mount_point: Path, runtime_credentials_dir: Path) -> str:
        """
        Shell command mounting the share. Credentials are read at mount time
        from the decrypted credential files, only their paths appear here.
        """
        if self.type == "cifs":
            user_file = runtime_credentials_dir / REMOTE_USER_CREDENTIAL
            password_file = runtime_credentials_dir / REMOTE_PASSWORD_CREDENTIAL
            return (
                f"mount -t cifs {self.path} {mount_point} "
                f"-o username=$(cat {user_file}),"
                f"password=$(cat {password_file}),vers=3.1.1"
            )
        return f"mount -t davfs {self.path} {mount_point}"

    def forget_secrets(self) -> None:
        self.login = None
        self.password = None


@dataclass
class InstallerConfig:
    """Paths and settings for one installer run."""

    home: Path = field(default_factory=Path.home)
    service: str = SERVICE_NAME
    install_dir: Path = Path(INSTALL_DIR)
    systemd_dir: Path = Path(SYSTEMD_DIR)
    credentials_root: Path = Path(CREDENTIALS_ROOT)
    runtime_credentials_root: Path = Path(RUNTIME_CREDENTIALS_ROOT)
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    startup_wait: int = DEFAULT_STARTUP_WAIT
    release_api_url: str = RELEASE_API_URL

    @property
    def local_repo(self) -> Path:
        return self.home / "backup"

    @property
    def remote_repo(self) -> Path:
        return self.home / "backup_remote"

    @property
    def source_dir(self) -> Path:
        return self.home / "user_data"

    @property
    def user_config_dir(self) -> Path:
        return self.home / ".config" / self.service

    @property
    def unit_file(self) -> Path:
        return self.systemd_dir / f"{self.service}.service"

    @property
    def override_dir(self) -> Path:
        return self.systemd_dir / f"{self.service}.service.d"

    @property
    def override_file(self) -> Path:
        return self.override_dir / "override.conf"

    @property
    def credentials_dir(self) -> Path:
        return self.credentials_root / f"{self.service}.service"

    @property
    def runtime_credentials_dir(self) -> Path:
        return self.runtime_credentials_root / f"{self.service}.service"


@dataclass
class BackupPlan:
    """A scheduled backup of the source directory into one repository."""

    name: str
    repo: str
    schedule: str
    keep_last: int
    nice: Optional[int] = None
    ionice: Optional[str] = None

    def cli_args(self, source: Path) -> List[str]:
        args = [
            "backup",
            "add",
            "--name",
            self.name,
            "--repo",
            self.repo,
            "--path",
            str(source),
            "--schedule",
            self.schedule,
            "--keep-last",
            str(self.keep_last),
        ]
        if self.nice is not None:
            args += ["--nice", str(self.nice)]
        if self.ionice:
            args += ["--ionice", self.ionice]
        return args


LOCAL_PLAN = BackupPlan(
    name="local-hourly",
    repo="local",
    schedule="@hourly",
    keep_last=12,
    nice=15,
    ionice="idle",
)
REMOTE_PLAN = BackupPlan(
    name="remote-daily", repo="remote", schedule="@daily", keep_last=10
)


# ----------------------------------------------------------------
# Install Step Tracking
# ----------------------------------------------------------------
INSTALL_STEPS: List[tuple] = [
    ("preflight", "Preflight checks"),
    ("packages", "System packages"),
    ("directories", "Backup directories"),
    ("backrest", "Backrest binaries"),
    ("credentials", "Encrypted credentials"),
    ("service", "Service override"),
    ("configuration", "Backrest configuration"),
]


class InstallProgress:
    """
    Records how far an installation got.

    Nothing is rolled back on failure; the recorded state tells the user
    which steps already changed the host before re-running install.
    """

    STATUS_ICONS = {"success": "✓", "failed": "✗", "pending": "?", "in_progress": "⋯"}

    def __init__(self) -> None:
        self.steps: Dict[str, Dict[str, str]] = {
            key: {"status": "pending", "message": ""} for key, _ in INSTALL_STEPS
        }
        self.labels: Dict[str, str] = dict(INSTALL_STEPS)

    def _set(self, key: str, status: str, message: str) -> None:
        if key not in self.steps:
            raise KeyError(f"Unknown install step: {key}")
        self.steps[key] = {"status": status, "message": message}

    def start(self, key: str) -> None:
        self._set(key, "in_progress", f"{self.labels[key]} in progress...")

    def succeed(self, key: str, message: str = "") -> None:
        self._set(key, "success", message)

    def fail(self, key: str, message: str) -> None:
        self._set(key, "failed", message)

    def completed_steps(self) -> List[str]:
        return [key for key, data in self.steps.items() if data["status"] == "success"]

    def failed_step(self) -> Optional[str]:
        for key, data in self.steps.items():
            if data["status"] == "failed":
                return key
        return None

    def run(self, key: str, func: Callable, *args, **kwargs) -> Any:
        """
        Run one install step and record its outcome.

        Exceptions are recorded and re-raised. No live display is held here,
        the download step opens its own progress bar.
        """
        label = self.labels[key]
        print_section(label)
        self.start(key)
        start = time.time()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed = time.time() - start
            self.fail(key, f"{label} failed after {elapsed:.2f}s: {e}")
            raise
        elapsed = time.time() - start
        self.succeed(key, f"{label} succeeded in {elapsed:.2f}s.")
        print_success(f"{label} completed in {elapsed:.2f}s")
        return result

    def render(self) -> Table:
        """Build a table reporting the status of every install step."""
        table = Table(
            show_header=True,
            header_style=f"bold {NordColors.FROST_1}",
            border_style=NordColors.FROST_3,
            box=ROUNDED,
            title=f"[bold {NordColors.FROST_2}]Installation Status[/]",
            title_justify="center",
        )
        table.add_column("Step", style=f"bold {NordColors.FROST_2}")
        table.add_column("Status", justify="center")
        table.add_column("Message", style=NordColors.SNOW_STORM_1)

        styles = {
            "success": NordColors.GREEN,
            "failed": NordColors.RED,
            "in_progress": NordColors.YELLOW,
            "pending": NordColors.POLAR_NIGHT_4,
        }
        for key, data in self.steps.items():
            status = data["status"]
            icon = self.STATUS_ICONS.get(status, "?")
            table.add_row(
                self.labels[key],
                f"[{styles[status]}]{icon} {status.upper()}[/]",
                Text(data["message"]),
            )
        return table


# ----------------------------------------------------------------
# Architecture & Release Helpers
# ----------------------------------------------------------------
def resolve_arch_tag(machine: Optional[str] = None) -> str:
    """
    Map the CPU architecture to the tag used in Backrest release asset names.

    Raises:
        ValidationError: If the architecture has no prebuilt release
    """
    machine = machine if machine is not None else platform.machine()
    try:
        return ARCH_TAGS[machine]
    except KeyError:
        raise ValidationError(f"Unsupported architecture: {machine}") from None


def select_asset_url(
    release: Dict[str, Any], arch_tag: str, os_label: str = RELEASE_OS_LABEL
) -> str:
    """
    Pick the download URL of the release asset built for this OS and CPU.

    Tarballs are preferred when several assets match.
    """
    marker = f"{os_label}_{arch_tag}"
    matches = [
        asset
        for asset in release.get("assets", [])
        if marker in asset.get("name", "") and asset.get("browser_download_url")
    ]
    if not matches:
        raise ValidationError(f"No release asset found for {marker}")
    tarballs = [a for a in matches if a["name"].endswith((".tar.gz", ".tgz"))]
    return (tarballs or matches)[0]["browser_download_url"]


def fetch_release_asset_url(
    arch_tag: str, api_url: str = RELEASE_API_URL
) -> str:
    """Query the latest Backrest release and return the matching asset URL."""
    print_step("Querying the latest Backrest release...")
    try:
        response = requests.get(
            api_url,
            headers={"Accept": "application/vnd.github+json"},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        release = response.json()
    except (requests.RequestException, ValueError) as e:
        raise NetworkError(f"Failed to query the latest release: {e}") from e

    url = select_asset_url(release, arch_tag)
    print_info(f"Release {release.get('tag_name', 'latest')}: {url}")
    return url


def download_file(url: str, destination: Path) -> None:
    """Stream a file to disk with a progress bar."""
    print_step(f"Downloading {url}")
    try:
        with requests.get(url, stream=True, timeout=HTTP_TIMEOUT) as response:
            response.raise_for_status()
            total_length = int(response.headers.get("content-length", 0))
            with (
                open(destination, "wb") as archive,
                Progress(
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(
                        style=NordColors.FROST_4, complete_style=NordColors.FROST_2
                    ),
                    DownloadColumn(),
                    TimeRemainingColumn(),
                    console=console,
                    transient=True,
                ) as progress,
            ):
                task = progress.add_task("Downloading", total=total_length or None)
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        archive.write(chunk)
                        progress.update(task, advance=len(chunk))
    except requests.RequestException as e:
        raise NetworkError(f"Download failed: {e}") from e
    print_success(f"Downloaded {destination.name}")


def generate_passphrase() -> str:
    """Random base64 passphrase for the Restic repositories."""
    return base64.b64encode(secrets.token_bytes(PASSPHRASE_BYTES)).decode("ascii")


# ----------------------------------------------------------------
# Installer
# ----------------------------------------------------------------
class BackrestInstaller:
    """
    Installs Backrest and registers its repositories and backup plans.

    Steps run strictly in order and stop at the first failure.
    """

    def __init__(
        self, config: InstallerConfig, remote: Optional[RemoteConfig] = None
    ) -> None:
        self.config = config
        self.remote = remote
        self.progress = InstallProgress()

    def run(self) -> None:
        arch_tag = self.progress.run("preflight", self.preflight)
        self.progress.run("packages", self.install_packages)
        self.progress.run("directories", self.create_directories)
        self.progress.run("backrest", self.install_backrest, arch_tag)
        self.progress.run("credentials", self.provision_credentials)
        self.progress.run("service", self.configure_service)
        self.progress.run("configuration", self.configure_backrest)

    def preflight(self) -> str:
        """Check privileges and resolve the release architecture before any change."""
        if os.geteuid() != 0 and shutil.which("sudo") is None:
            raise ValidationError("Not running as root and sudo is not available")
        arch_tag = resolve_arch_tag()
        print_info(f"Architecture: {platform.machine()} (release tag {arch_tag})")
        if self.remote:
            print_info(f"Remote storage: {self.remote.type} {self.remote.path}")
        else:
            print_info("Remote storage: none, local backups only")
        return arch_tag

    def install_packages(self) -> None:
        packages = list(BASE_PACKAGES)
        if self.remote:
            packages.append(self.remote.package)
        print_step("Updating package lists...")
        run_command(["apt", "update"], sudo=True)
        print_step(f"Installing packages: {', '.join(packages)}")
        run_command(["apt", "install", "-y"] + packages, sudo=True)

    def create_directories(self) -> None:
        directories = [self.config.local_repo, self.config.source_dir]
        if self.remote:
            directories.append(self.config.remote_repo)
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
            print_step(f"Directory ready: {directory}")

    def install_backrest(self, arch_tag: str) -> None:
        url = fetch_release_asset_url(arch_tag, self.config.release_api_url)
        install_dir = str(self.config.install_dir)
        temp_dir = make_temp_dir()
        try:
            archive = Path(temp_dir) / "backrest.tar.gz"
            download_file(url, archive)
            print_step(f"Unpacking into {install_dir}")
            run_command(["mkdir", "-p", install_dir], sudo=True)
            run_command(["tar", "-xzf", str(archive), "-C", install_dir], sudo=True)
            print_step("Running the bundled installer...")
            run_command(["./install.sh"], sudo=True, cwd=install_dir)
        finally:
            remove_temp_dir(temp_dir)

    def credential_names(self) -> List[str]:
        names = [RESTIC_PASSWORD_CREDENTIAL]
        if self.remote:
            names += [REMOTE_USER_CREDENTIAL, REMOTE_PASSWORD_CREDENTIAL]
        return names

    def encrypt_credential(self, name: str, value: str) -> None:
        output = self.config.credentials_dir / f"{name}.cred"
        run_command(
            [
                "systemd-creds",
                "encrypt",
                f"--name={name}",
                f"--output={output}",
                "-",
            ],
            sudo=True,
            input_text=value,
        )
        print_step(f"Stored credential {name}")

    def provision_credentials(self) -> None:
        credentials_dir = str(self.config.credentials_dir)
        run_command(["mkdir", "-p", credentials_dir], sudo=True)
        run_command(["chmod", "700", credentials_dir], sudo=True)

        values = {RESTIC_PASSWORD_CREDENTIAL: generate_passphrase()}
        if self.remote:
            values[REMOTE_USER_CREDENTIAL] = self.remote.login
            values[REMOTE_PASSWORD_CREDENTIAL] = self.remote.password
        try:
            for name in self.credential_names():
                self.encrypt_credential(name, values[name])
        finally:
            values.clear()
            if self.remote:
                self.remote.forget_secrets()

    def render_override(self) -> str:
        """Contents of the systemd drop-in layered onto backrest.service."""
        password_file = self.config.runtime_credentials_dir / RESTIC_PASSWORD_CREDENTIAL
        lines = [
            "[Service]",
            f'Environment="BACKREST_PORT={self.config.listen_address}"',
            f'Environment="RESTIC_PASSWORD_FILE={password_file}"',
            f"Nice={SERVICE_NICE}",
            "",
        ]
        for name in self.credential_names():
            lines.append(
                f"LoadCredential={name}:{self.config.credentials_dir / f'{name}.cred'}"
            )
        return "\n".join(lines) + "\n"

    def configure_service(self) -> None:
        service = self.config.service
        run_command(["mkdir", "-p", str(self.config.override_dir)], sudo=True)
        run_command(
            ["tee", str(self.config.override_file)],
            sudo=True,
            input_text=self.render_override(),
        )
        print_step(f"Wrote {self.config.override_file}")
        run_command(["systemctl", "daemon-reload"], sudo=True)
        run_command(["systemctl", "restart", service], sudo=True)
        print_step(f"Waiting {self.config.startup_wait}s for {service} to start...")
        time.sleep(self.config.startup_wait)

    def configure_backrest(self) -> None:
        config = self.config
        print_step("Registering the local repository and hourly plan")
        backrest_cli(
            [
                "repo",
                "add",
                "--name",
                "local",
                "--type",
                "local",
                "--path",
                str(config.local_repo),
            ]
        )
        backrest_cli(LOCAL_PLAN.cli_args(config.source_dir))

        if not self.remote:
            return

        print_step("Registering mount hooks, the remote repository and daily plan")
        mount_cmd = self.remote.mount_command(
            config.remote_repo, config.runtime_credentials_dir
        )
        backrest_cli(
            [
                "hook",
                "add",
                "--name",
                "mount-remote",
                "--when",
                "pre-backup",
                "--command",
                mount_cmd,
            ]
        )
        backrest_cli(
            [
                "hook",
                "add",
                "--name",
                "umount-remote",
                "--when",
                "post-backup",
                "--command",
                f"umount {config.remote_repo}",
            ]
        )
        backrest_cli(
            [
                "repo",
                "add",
                "--name",
                "remote",
                "--type",
                "local",
                "--path",
                str(config.remote_repo),
            ]
        )
        backrest_cli(REMOTE_PLAN.cli_args(config.source_dir))

    def report_failure(self) -> None:
        """Show how far installation got after a failure."""
        console.print()
        console.print(self.progress.render())
        failed = self.progress.failed_step()
        completed = self.progress.completed_steps()
        if failed:
            print_warning(
                f"Installation stopped at '{self.progress.labels[failed]}'. "
                "Nothing has been rolled back."
            )
        if completed:
            print_info(
                "Completed steps: "
                + ", ".join(self.progress.labels[key] for key in completed)
            )
        print_info("Fix the problem above and run 'install' again.")


# ----------------------------------------------------------------
# Status & Uninstall
# ----------------------------------------------------------------
def _show_cli_listing(args: List[str], fallback: str) -> None:
    result = probe_command([SERVICE_NAME, "cli"] + args)
    if result is None or result.returncode != 0:
        print_warning(fallback)
    elif result.stdout.strip():
        print_output(result.stdout.rstrip())


def show_status(config: InstallerConfig) -> None:
    """
    Best-effort inspection of the service, its ports, repositories and plans.

    Every check degrades to a fixed message; nothing here raises.
    """
    service = config.service

    print_section("Systemd service")
    result = probe_command(["systemctl", "status", service, "--no-pager"])
    if result is None:
        print_warning("Service status unavailable")
    else:
        output = (result.stdout or result.stderr).rstrip()
        print_output(output or f"{service}.service has no status output")

    print_section("Listening ports")
    result = probe_command(["ss", "-lntp"])
    listening = []
    if result is not None and result.returncode == 0:
        listening = [line for line in result.stdout.splitlines() if service in line]
    if listening:
        print_output("\n".join(listening))
    else:
        print_warning("Backrest is not running")

    print_section("Backrest repositories")
    _show_cli_listing(["repo", "list"], "Backrest is not configured")

    print_section("Backup plans")
    _show_cli_listing(["backup", "list"], "No backup plan found")


def _tolerated(cmd: List[str], sudo: bool = True) -> None:
    result = probe_command(cmd, sudo=sudo, timeout=OPERATION_TIMEOUT)
    if result is None or result.returncode != 0:
        logger.warning("Ignoring failure of: %s", " ".join(cmd))


def uninstall_backrest(config: InstallerConfig, keep_data: Optional[bool] = None) -> None:
    """
    Remove Backrest from the host.

    The service, its unit, override and install directory are always removed.
    Repositories, the user configuration and the credentials are removed only
    when keep_data is false. keep_data=None asks interactively, defaulting to no.
    """
    service = config.service
    print_section("Uninstalling Backrest")

    if keep_data is None:
        try:
            keep_data = Confirm.ask(
                f"[bold {NordColors.PURPLE}]Keep configuration files and Restic repositories?[/]",
                default=False,
                console=console,
            )
        except EOFError:
            console.print()
            print_warning("No answer on stdin, removing data (default)")
            keep_data = False

    print_step("Stopping the service")
    _tolerated(["systemctl", "stop", service])

    print_step("Removing the service")
    _tolerated(["systemctl", "disable", service])
    _tolerated(["rm", "-f", str(config.unit_file)])
    _tolerated(["rm", "-rf", str(config.override_dir)])

    print_step("Removing the installation")
    _tolerated(["rm", "-rf", str(config.install_dir)])

    if keep_data:
        print_info("Keeping user data")
    else:
        print_step("Removing user data")
        if os.path.ismount(config.remote_repo):
            _tolerated(["umount", str(config.remote_repo)])
        for path in (config.local_repo, config.remote_repo, config.user_config_dir):
            shutil.rmtree(path, ignore_errors=True)
        _tolerated(["rm", "-rf", str(config.credentials_dir)])

    _tolerated(["systemctl", "daemon-reload"])
    print_success("Backrest uninstalled")


# ----------------------------------------------------------------
# CLI Entry Point with Click
# ----------------------------------------------------------------
CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


class InstallerGroup(click.Group):
    """Command group that prints the full usage for unknown commands."""

    def resolve_command(
        self, ctx: click.Context, args: List[str]
    ) -> Tuple[Optional[str], Optional[click.Command], List[str]]:
        name = args[0] if args else None
        if name and not name.startswith("-") and self.get_command(ctx, name) is None:
            click.echo(f"Unknown command: {name}\n", err=True)
            click.echo(ctx.get_help(), err=True)
            ctx.exit(2)
        return super().resolve_command(ctx, args)


@click.group(
    cls=InstallerGroup,
    context_settings=CONTEXT_SETTINGS,
    invoke_without_command=True,
    epilog=(
        "\b\nExamples:\n"
        "  backrest-installer install\n"
        "  backrest-installer install --remote-type webdav --remote-path https://dav.example\n"
        "      --remote-login user --remote-password secret\n"
        "  backrest-installer status\n"
        "  backrest-installer uninstall"
    ),
)
@click.option("--debug", is_flag=True, help="Show debug logging on the console")
@click.option(
    "--log-file",
    default=default_log_file,
    envvar="BACKREST_INSTALLER_LOG",
    type=click.Path(dir_okay=False),
    help=f"Log file [default: {LOG_FILE} as root, {USER_LOG_FILE} otherwise]",
)
@click.version_option(VERSION, prog_name=APP_NAME)
@click.pass_context
def cli(ctx: click.Context, debug: bool, log_file: str) -> None:
    """Backrest + Restic installer / manager."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)
    setup_logging(log_file, debug)


@cli.command()
@click.option("--remote-type", metavar="TYPE", help="Remote storage type: cifs | webdav")
@click.option("--remote-path", metavar="PATH", help="Share to mount (//host/share or URL)")
@click.option("--remote-login", metavar="LOGIN", help="Remote storage login")
@click.option("--remote-password", metavar="PASS", help="Remote storage password")
@click.option(
    "--listen",
    "listen_address",
    default=DEFAULT_LISTEN_ADDRESS,
    envvar="BACKREST_LISTEN",
    show_default=True,
    help="Address the Backrest web UI listens on",
)
@click.option(
    "--startup-wait",
    type=click.IntRange(min=0),
    default=DEFAULT_STARTUP_WAIT,
    show_default=True,
    help="Seconds to wait after restarting the service",
)
def install(
    remote_type: Optional[str],
    remote_path: Optional[str],
    remote_login: Optional[str],
    remote_password: Optional[str],
    listen_address: str,
    startup_wait: int,
) -> None:
    """Install and configure Backrest + Restic."""
    try:
        remote = RemoteConfig.from_options(
            remote_type, remote_path, remote_login, remote_password
        )
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(1)

    config = InstallerConfig(listen_address=listen_address, startup_wait=startup_wait)
    installer = BackrestInstaller(config, remote)
    console.print(create_header())

    try:
        installer.run()
    except ExecutionError as e:
        print_error(str(e))
        installer.report_failure()
        sys.exit(e.returncode or 1)
    except (InstallerError, OSError) as e:
        print_error(str(e))
        installer.report_failure()
        sys.exit(1)

    print_success("Installation completed successfully")
    print_info(f"Backrest web UI: http://{listen_address}")


@cli.command()
def status() -> None:
    """Show the state of Backrest and its backups."""
    show_status(InstallerConfig())


@cli.command()
@click.option(
    "--keep-data/--purge-data",
    default=None,
    help="Keep or remove repositories, configuration and credentials without asking",
)
def uninstall(keep_data: Optional[bool]) -> None:
    """Uninstall Backrest (interactive)."""
    console.print(create_header())
    uninstall_backrest(InstallerConfig(), keep_data)


def main() -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, signal_handler)
    atexit.register(cleanup)
    cli(prog_name="backrest-installer")


if __name__ == "__main__":
    main()
