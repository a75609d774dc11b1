"""CLI main entry point."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from .config import load_config
from .errors import InstallerError
from .formatters import print_config_yaml, print_report, print_step_progress
from .installer import Installer, ensure_directories, generate_certificates
from .shared.logging import configure_logging

config_option = click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Config file path (default: ~/.kubestrap/config.yaml)",
)


def _load(config_path: str | None, overrides: dict[str, Any] | None = None):
    try:
        return load_config(config_path, overrides)
    except (FileNotFoundError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _setup_logging(verbose: bool, log_file: str | None) -> None:
    """Console logging shows warnings only unless verbose; a log file gets JSON."""
    if log_file:
        configure_logging("debug" if verbose else "info", log_file=log_file, json_output=True)
    else:
        configure_logging("debug" if verbose else "warning")


@click.group()
@click.version_option(package_name="kubestrap", prog_name="kubestrap")
def cli() -> None:
    """Bootstrap a single-node Kubernetes control plane."""


@cli.command()
@config_option
@click.option("--k8s-version", default=None, help="Kubernetes version of the installed binaries")
@click.option("--skip-download", is_flag=True, help="Skip the prerequisite check")
@click.option("--skip-verify", is_flag=True, help="Skip post-install verification")
@click.option(
    "--skip-api-wait",
    is_flag=True,
    help="Sleep a fixed grace period instead of probing the API server",
)
@click.option(
    "--continue-on-error",
    is_flag=True,
    help="Keep going after a critical step fails",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write JSON logs to this file")
def install(
    config_path: str | None,
    k8s_version: str | None,
    skip_download: bool,
    skip_verify: bool,
    skip_api_wait: bool,
    continue_on_error: bool,
    verbose: bool,
    log_file: str | None,
) -> None:
    """Install and start the control plane.

    Starts etcd, the API server, containerd, the controller manager, the
    scheduler and the kubelet in order, waiting for each to become ready.

    Examples:

        # Install with binaries under /var/lib/kubernetes/bin
        kubestrap install

        # Keep going past failures, then report all of them
        kubestrap install --continue-on-error

        # Binaries already checked, no verification
        kubestrap install --skip-download --skip-verify
    """
    config = _load(
        config_path,
        {
            "k8s_version": k8s_version,
            "skip_download": skip_download or None,
            "skip_verify": skip_verify or None,
            "skip_api_wait": skip_api_wait or None,
            "continue_on_error": continue_on_error or None,
            "verbose": verbose or None,
        },
    )
    _setup_logging(config.verbose, log_file)

    click.echo(f"\nkubestrap: installing Kubernetes {config.k8s_version} on {config.host_ip}\n")

    installer = Installer(config, on_step=print_step_progress)
    report = asyncio.run(installer.run())
    print_report(report)
    sys.exit(report.state.exit_code)


@cli.command()
@config_option
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def pki(config_path: str | None, verbose: bool) -> None:
    """Issue and persist the cluster certificates only."""
    config = _load(config_path)
    _setup_logging(verbose, None)

    try:
        ensure_directories(config)
        report = generate_certificates(config)
    except (InstallerError, OSError) as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    for path in report.written:
        click.echo(f"  ✓ {path}")
    for path, error in report.failed_copies:
        click.echo(f"  ⚠ {path}: {error}", err=True)
    click.echo(f"\nCertificates written to {config.pki_dir}")


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@config_option
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def config_show(config_path: str | None, json_output: bool) -> None:
    """Show the effective configuration and where each value came from."""
    loaded = _load(config_path)
    data = loaded.to_dict()

    if json_output:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    click.echo("kubestrap configuration\n")
    print_config_yaml(data, {key: loaded.get_source(key) for key in data})


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
