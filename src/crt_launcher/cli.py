from __future__ import annotations

import socket
import subprocess
from pathlib import Path

import click

from crt_launcher.images import (
    SOURCE_CHOICES,
    SOURCE_LOCAL,
    SOURCE_URL,
    copy_local_image,
    download_image,
    latest_image_id,
    load_image,
    scratch_directory,
)
from crt_launcher.platforms import detect_host_os
from crt_launcher.runtime import RUNTIME_PRIORITY, resolve_runtime


CONTAINER_PORT = 3000
DEFAULT_HOST_PORT = 3000
CONTAINER_REPO_PATH = "/webmon"
CONTAINER_LIB_PATH = "/prod_lib"
HOSTNAME_ENV_VAR = "HOST_HOSTNAME"
CONFIRM_ANSWER = "y"
HOST_PORT_TYPE = click.IntRange(1, 65535)


def _host_hostname() -> str:
    return socket.gethostname()


def _prompt_source_choice(source: str | None) -> str:
    if source is None:
        click.echo("How would you like to load the image?")
        click.echo(f"{SOURCE_URL}) Download from URL")
        click.echo(f"{SOURCE_LOCAL}) Use existing .tar file from local machine")
        source = click.prompt(f"Enter your choice [{' or '.join(SOURCE_CHOICES)}]", default="", show_default=False)
    choice = str(source).strip()
    if choice not in SOURCE_CHOICES:
        raise click.ClickException("Invalid choice.")
    return choice


def _acquire_image(choice: str, scratch_dir: Path, *, image_url: str | None, image_path: str | None) -> Path:
    if choice == SOURCE_URL:
        url = image_url or click.prompt("Enter the URL of the image tar file to download")
        return download_image(str(url).strip(), scratch_dir)
    local_path = image_path or click.prompt("Enter full path to your local image tar file")
    return copy_local_image(str(local_path).strip(), scratch_dir)


def _echo_summary(*, runtime: str, image_id: str, repo_path: str, lib_path: str) -> None:
    click.echo("Summary:")
    click.echo(f"   Runtime: {runtime}")
    click.echo(f"   Image SHA: {image_id}")
    click.echo(f"   Webmon Repo: {repo_path}")
    click.echo(f"   Webmon Lib: {lib_path}")


def build_run_command(
    runtime: str,
    *,
    image_id: str,
    repo_path: str,
    lib_path: str,
    host_port: int,
    hostname: str,
) -> list[str]:
    return [
        runtime,
        "run",
        "-p",
        f"{host_port}:{CONTAINER_PORT}",
        "-v",
        f"{repo_path}:{CONTAINER_REPO_PATH}",
        "-v",
        f"{lib_path}:{CONTAINER_LIB_PATH}",
        "-e",
        f"{HOSTNAME_ENV_VAR}={hostname}",
        image_id,
    ]


def run_container(cmd: list[str], host_port: int) -> None:
    click.echo(f"Running container with port mapping {host_port}:{CONTAINER_PORT}...")
    try:
        returncode = subprocess.run(cmd, check=False).returncode
    except OSError as exc:
        click.echo(f"Unable to start {cmd[0]}: {exc}", err=True)
        returncode = 1
    if returncode != 0:
        raise click.ClickException(
            "Failed to run container. Possible issues:\n"
            f"   - Port {host_port} may already be in use\n"
            "   - Volume paths may be incorrect"
        )
    click.echo(f"Container is running at http://localhost:{host_port}")


@click.command(help="Install a container runtime if needed, load an image archive and run it")
@click.option(
    "--runtime",
    "pinned_runtime",
    type=click.Choice(RUNTIME_PRIORITY),
    default=None,
    help="Use this runtime instead of probing podman then docker (never installs)",
)
@click.option("--source", type=click.Choice(SOURCE_CHOICES), default=None, help="Image source: 1 for URL, 2 for local file")
@click.option("--image-url", default=None, help="URL of the image tar file to download")
@click.option("--image-path", default=None, help="Path to a local image tar file")
@click.option("--repo-path", default=None, help=f"Host path mounted at {CONTAINER_REPO_PATH}")
@click.option("--lib-path", default=None, help=f"Host path mounted at {CONTAINER_LIB_PATH}")
@click.option("--host-port", type=HOST_PORT_TYPE, default=None, help=f"Host port mapped to container port {CONTAINER_PORT}")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Run the container without asking for confirmation")
@click.pass_context
def main(
    ctx: click.Context,
    pinned_runtime: str | None,
    source: str | None,
    image_url: str | None,
    image_path: str | None,
    repo_path: str | None,
    lib_path: str | None,
    host_port: int | None,
    assume_yes: bool,
) -> None:
    if source is None and image_url:
        source = SOURCE_URL
    elif source is None and image_path:
        source = SOURCE_LOCAL

    click.echo("Detecting OS...")
    host_os = detect_host_os()
    click.echo(f"OS detected: {host_os}")

    runtime = resolve_runtime(host_os, pinned_runtime=pinned_runtime)

    with scratch_directory() as scratch_dir:
        choice = _prompt_source_choice(source)
        archive = _acquire_image(choice, scratch_dir, image_url=image_url, image_path=image_path)

        load_output = load_image(runtime, archive)
        click.echo(load_output.rstrip("\n"))
        image_id = latest_image_id(runtime)

        repo = repo_path or click.prompt("Enter absolute path to webmon repo (host)")
        lib = lib_path or click.prompt("Enter absolute path to webmon lib folder (host)")

        _echo_summary(runtime=runtime, image_id=image_id, repo_path=repo, lib_path=lib)

        if assume_yes:
            confirm = CONFIRM_ANSWER
        else:
            confirm = click.prompt("Proceed to run the container? (y/n)", default="", show_default=False)
        if confirm != CONFIRM_ANSWER:
            click.echo("Aborted.")
            ctx.exit(0)

        if host_port is None:
            host_port = click.prompt(
                f"Enter host port to map (default {DEFAULT_HOST_PORT})",
                default=DEFAULT_HOST_PORT,
                type=HOST_PORT_TYPE,
                show_default=False,
            )

        cmd = build_run_command(
            runtime,
            image_id=image_id,
            repo_path=repo,
            lib_path=lib,
            host_port=int(host_port),
            hostname=_host_hostname(),
        )
        run_container(cmd, int(host_port))


if __name__ == "__main__":
    main()
