from __future__ import annotations

import shutil
import subprocess
import tempfile
import http.client
import urllib.error
import urllib.parse
import urllib.request
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from crt_launcher.runtime import RUNTIME_PODMAN


IMAGE_ARCHIVE_NAME = "image.tar"
SCRATCH_DIR_PREFIX = "crt-launcher-"
SOURCE_URL = "1"
SOURCE_LOCAL = "2"
SOURCE_CHOICES = (
    SOURCE_URL,
    SOURCE_LOCAL,
)
DOWNLOAD_TIMEOUT_SECONDS = 60.0
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
IMAGE_ID_FORMAT = "{{.ID}}"
DOWNLOAD_SCHEMES = ("http", "https")


@contextmanager
def scratch_directory() -> Iterator[Path]:
    scratch_dir = Path(tempfile.mkdtemp(prefix=SCRATCH_DIR_PREFIX))
    click.echo(f"Created temp directory: {scratch_dir}")
    try:
        yield scratch_dir
    finally:
        click.echo("Cleaning up temporary files...")
        shutil.rmtree(scratch_dir, ignore_errors=True)


def download_image(url: str, scratch_dir: Path) -> Path:
    scheme = urllib.parse.urlsplit(url).scheme.lower()
    if scheme not in DOWNLOAD_SCHEMES:
        raise click.ClickException(f"Failed to download image: unsupported URL (expected http or https): {url}")

    target = scratch_dir / IMAGE_ARCHIVE_NAME
    click.echo("Downloading image...")
    try:
        request = urllib.request.Request(url, method="GET")
        with urllib.request.urlopen(request, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
            with target.open("wb") as handle:
                shutil.copyfileobj(response, handle, DOWNLOAD_CHUNK_SIZE)
    except urllib.error.HTTPError as exc:
        raise click.ClickException(f"Failed to download image: HTTP {exc.code} from {url}") from exc
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
        raise click.ClickException(f"Failed to download image: {exc}") from exc
    return target


def copy_local_image(source: str, scratch_dir: Path) -> Path:
    source_path = Path(source).expanduser()
    if not source_path.is_file():
        raise click.ClickException(f"File does not exist: {source}")

    target = scratch_dir / IMAGE_ARCHIVE_NAME
    click.echo(f"Copying {source_path} to temporary directory...")
    try:
        shutil.copyfile(source_path, target)
    except OSError as exc:
        raise click.ClickException(f"Failed to copy file: {exc}") from exc
    return target


def load_image(runtime: str, archive: Path) -> str:
    """Load an image archive into the runtime and return its raw output.

    The output is meant for the operator only; the image id is resolved
    separately from the runtime's image listing.
    """
    click.echo(f"Loading image with {runtime}...")
    try:
        result = subprocess.run(
            [runtime, "load", "-i", str(archive)],
            check=False,
            text=True,
            capture_output=True,
        )
    except OSError as exc:
        raise click.ClickException(f"Failed to load image: {exc}") from exc
    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip()
        message = "Failed to load image."
        if detail:
            message = f"{message}\n{detail}"
        raise click.ClickException(message)
    return result.stdout


def image_list_command(runtime: str) -> list[str]:
    # Docker has no --sort flag; its default listing order is used as-is.
    if runtime == RUNTIME_PODMAN:
        return [runtime, "images", "--noheading", "--sort", "created", "--format", IMAGE_ID_FORMAT]
    return [runtime, "images", "--noheading", "--format", IMAGE_ID_FORMAT]


def parse_latest_image_id(listing: str) -> str:
    for line in listing.splitlines():
        fields = line.split()
        if fields:
            return fields[0]
    return ""


def latest_image_id(runtime: str) -> str:
    try:
        result = subprocess.run(
            image_list_command(runtime),
            check=False,
            text=True,
            capture_output=True,
        )
    except OSError as exc:
        raise click.ClickException(f"Failed to get image ID: {exc}") from exc

    image_id = parse_latest_image_id(result.stdout) if result.returncode == 0 else ""
    if not image_id:
        raise click.ClickException("Failed to get image ID.")
    return image_id
