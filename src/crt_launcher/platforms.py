from __future__ import annotations

import sys
from pathlib import Path

import click


HOST_OS_UBUNTU = "ubuntu"
HOST_OS_WSL = "wsl"
HOST_OS_MACOS = "macos"
SUPPORTED_HOST_OS = (
    HOST_OS_UBUNTU,
    HOST_OS_WSL,
    HOST_OS_MACOS,
)
PROC_VERSION_PATH = Path("/proc/version")
LSB_RELEASE_PATH = Path("/etc/lsb-release")
WSL_KERNEL_MARKER = "microsoft"


def _kernel_reports_wsl(proc_version_path: Path) -> bool:
    try:
        kernel_version = proc_version_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return WSL_KERNEL_MARKER in kernel_version.lower()


def detect_host_os(
    platform_name: str | None = None,
    *,
    proc_version_path: Path = PROC_VERSION_PATH,
    lsb_release_path: Path = LSB_RELEASE_PATH,
) -> str:
    """Classify the host as one of SUPPORTED_HOST_OS.

    WSL is checked before Ubuntu because WSL distributions usually ship an
    lsb-release file as well.
    """
    name = str(platform_name if platform_name is not None else sys.platform)
    if name.startswith("linux"):
        if _kernel_reports_wsl(proc_version_path):
            return HOST_OS_WSL
        if lsb_release_path.is_file():
            return HOST_OS_UBUNTU
        raise click.ClickException(f"Unsupported OS: {name} (only Ubuntu and WSL are supported on Linux)")
    if name.startswith("darwin"):
        return HOST_OS_MACOS
    raise click.ClickException(f"Unsupported OS: {name}")
