from __future__ import annotations

import shutil
import subprocess
from typing import Iterable

import click

from crt_launcher.platforms import HOST_OS_MACOS, HOST_OS_UBUNTU, HOST_OS_WSL


RUNTIME_PODMAN = "podman"
RUNTIME_DOCKER = "docker"
RUNTIME_PRIORITY = (
    RUNTIME_PODMAN,
    RUNTIME_DOCKER,
)
PODMAN_MACHINE_NAME = "podman-machine-default"
PODMAN_INSTALL_DOCS_URL = "https://podman.io/getting-started/installation"
HOMEBREW_URL = "https://brew.sh"


def _run(cmd: Iterable[str], *, failure_message: str) -> None:
    command = list(cmd)
    try:
        subprocess.run(command, check=True)
    except subprocess.CalledProcessError as exc:
        raise click.ClickException(f"{failure_message} (exit code {exc.returncode}: {' '.join(command)})") from exc
    except OSError as exc:
        raise click.ClickException(f"{failure_message} ({exc})") from exc


def runtime_available(runtime: str) -> bool:
    if shutil.which(runtime) is None:
        return False
    try:
        result = subprocess.run(
            [runtime, "info"],
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        return False
    return result.returncode == 0


def probe_runtimes() -> str | None:
    for runtime in RUNTIME_PRIORITY:
        if runtime_available(runtime):
            return runtime
    return None


def _podman_machine_exists(machine_name: str = PODMAN_MACHINE_NAME) -> bool:
    try:
        result = subprocess.run(
            ["podman", "machine", "list"],
            check=False,
            text=True,
            capture_output=True,
        )
    except OSError:
        return False
    if result.returncode != 0:
        return False
    return machine_name in result.stdout


def _install_podman_ubuntu() -> None:
    failure = "Failed to install Podman on Ubuntu."
    _run(["sudo", "apt", "update"], failure_message=failure)
    _run(["sudo", "apt", "install", "-y", "podman"], failure_message=failure)


def _install_podman_macos() -> None:
    if shutil.which("brew") is None:
        raise click.ClickException(f"Homebrew is required to install Podman on macOS. Install it from {HOMEBREW_URL}")

    click.echo("Installing Podman via Homebrew...")
    _run(["brew", "install", "podman"], failure_message="Failed to install Podman.")

    click.echo("Setting up Podman machine...")
    if not _podman_machine_exists():
        _run(["podman", "machine", "init"], failure_message="Failed to initialize Podman machine.")
    _run(["podman", "machine", "start"], failure_message="Failed to start Podman machine.")


def install_podman(host_os: str) -> None:
    """Install Podman with the host's package tooling.

    Nothing installed or started here is rolled back on a later failure.
    """
    if host_os == HOST_OS_UBUNTU:
        _install_podman_ubuntu()
    elif host_os == HOST_OS_MACOS:
        _install_podman_macos()
    elif host_os == HOST_OS_WSL:
        raise click.ClickException(
            "Podman installation on WSL requires manual setup.\n"
            f"   Visit: {PODMAN_INSTALL_DOCS_URL}"
        )
    else:
        raise click.ClickException(f"No Podman install path for OS: {host_os}")


def resolve_runtime(host_os: str, *, pinned_runtime: str | None = None) -> str:
    if pinned_runtime:
        if not runtime_available(pinned_runtime):
            raise click.ClickException(f"Requested runtime {pinned_runtime} is not installed or not working.")
        click.echo(f"{pinned_runtime.capitalize()} is available and working.")
        return pinned_runtime

    runtime = probe_runtimes()
    if runtime is not None:
        click.echo(f"{runtime.capitalize()} is available and working.")
        return runtime

    click.echo("Neither Podman nor Docker is installed. Attempting to install Podman...", err=True)
    install_podman(host_os)

    if not runtime_available(RUNTIME_PODMAN):
        raise click.ClickException("Podman installation failed or not configured properly.")
    click.echo("Podman installed and working.")
    return RUNTIME_PODMAN
