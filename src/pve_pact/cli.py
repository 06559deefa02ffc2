#!/usr/bin/env python3
"""
Command-line interface for Proxmox template builds.
"""

import asyncio
import json
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from pydantic import ValidationError as PydanticValidationError

from .catalog import default_catalog
from .client import TemplateBuildClient
from .config import AppConfig, DEFAULT_CONFIG_PATHS, config_loader
from .exceptions import ConfigurationError, PactError
from .logging import logger
from .models import BuildReport, PlannedBuild


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_level: Optional[str] = None
) -> None:
    """Setup logging configuration."""
    if quiet:
        logger.set_level("ERROR")
    elif verbose:
        logger.set_level("DEBUG")
    elif log_level:
        logger.set_level("WARNING" if log_level == "WARN" else log_level)


def load_config(config_path: Optional[str]) -> Optional[AppConfig]:
    """Load configuration from file, warning instead of failing."""
    try:
        return config_loader.load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Warning: {e}", err=True)
        return None


def apply_overrides(config: AppConfig, overrides: Dict[str, Any]) -> AppConfig:
    """Return ``config`` with the given command-line values, re-validated."""
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return config
    try:
        return AppConfig(**{**config.model_dump(), **updates})
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid option: {e}")


def echo_data(data: Any, output_format: str) -> None:
    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


def echo_plan(plans: List[PlannedBuild], output_format: str) -> None:
    if output_format != "text":
        echo_data([p.to_dict() for p in plans], output_format)
        return
    click.echo(f"{'Distro':<12} {'Template':<24} {'Base':<8} {'Custom':<8}")
    click.echo("-" * 54)
    for p in plans:
        custom = p.customized_vmid if p.customized_vmid is not None else "-"
        click.echo(
            f"{p.distro_id:<12} {'Template-' + p.display_name:<24} "
            f"{p.base_vmid:<8} {custom:<8}"
        )


def echo_report(report: BuildReport, output_format: str) -> None:
    if output_format != "text":
        echo_data(report.to_dict(), output_format)
        return
    for distro_id in sorted(report.outcomes):
        outcome = report.outcomes[distro_id]
        if outcome.success:
            vmids = [v for v in (outcome.base_vmid, outcome.customized_vmid) if v]
            prefix = "would build" if report.dry_run else "built"
            click.echo(f"✓ {distro_id}: {prefix} VMID {', '.join(map(str, vmids))}")
        else:
            click.echo(f"✗ {distro_id}: {outcome.error}", err=True)
        for warning in outcome.warnings:
            click.echo(f"  Warning: {warning}", err=True)
    click.echo(
        f"{len(report.succeeded)} succeeded, {len(report.failed)} failed "
        f"in {report.duration:.1f}s"
    )


def _config(ctx: Any, answerfile: Optional[str] = None) -> AppConfig:
    if answerfile:
        return config_loader.load_config(answerfile)
    config = ctx.obj.get("config")
    if config is None:
        raise ConfigurationError("No usable configuration, see the warning above")
    return config


def _fail(e: Exception) -> None:
    if isinstance(e, PactError):
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)
    click.echo(f"✗ Unexpected error: {e}", err=True)
    sys.exit(1)


@click.group()
@click.option("--config", "-c", default=None, help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR"]),
    default=None,
    help="Log level (default: from configuration)",
)
@click.version_option(package_name="pve-pact")
@click.pass_context
def cli(
    ctx: Any,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
    output: str,
    log_level: Optional[str],
) -> None:
    """Build Proxmox VM templates from distribution cloud images."""
    app_config = load_config(config)
    setup_logging(
        verbose, quiet, log_level or (app_config.log_level if app_config else None)
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = app_config
    ctx.obj["output_format"] = output
    ctx.obj["quiet"] = quiet


@cli.command()
@click.option(
    "--build",
    "--templates",
    "selection",
    help="Distributions or groups to build, comma separated (default: all)",
)
@click.option("--vmid-base", type=int, help="Base VMID; offsets are added to it")
@click.option("--storage", help="Proxmox storage pool for template disks")
@click.option(
    "--rebuild", is_flag=True, help="Destroy existing templates first"
)
@click.option(
    "--packer",
    "--customize",
    "packer",
    is_flag=True,
    help="Customize every base template with Packer",
)
@click.option(
    "--cleanup",
    is_flag=True,
    help="Destroy the base template once its customized template exists",
)
@click.option(
    "--halt-on-conflict",
    is_flag=True,
    help="Stop at the first VMID conflict instead of moving on",
)
@click.option("--dry-run", is_flag=True, help="Check VMIDs without building anything")
@click.option("--local", is_flag=True, help="Run on this Proxmox host instead of SSH")
@click.option("--host", help="Proxmox host to connect to")
@click.option("--user", help="SSH user")
@click.option("--port", type=int, help="SSH port")
@click.option("--ssh-key", "-k", help="SSH private key path")
@click.option("--ssh-password", help="SSH password")
@click.option(
    "--answerfile",
    type=click.Path(exists=True, dir_okay=False),
    help="KEY=value answerfile (e.g. Options.ini) replacing the configuration",
)
@click.pass_context
def build(
    ctx: Any,
    selection: Optional[str],
    vmid_base: Optional[int],
    storage: Optional[str],
    rebuild: bool,
    packer: bool,
    cleanup: bool,
    halt_on_conflict: bool,
    dry_run: bool,
    local: bool,
    host: Optional[str],
    user: Optional[str],
    port: Optional[int],
    ssh_key: Optional[str],
    ssh_password: Optional[str],
    answerfile: Optional[str],
) -> None:
    """Build base (and optionally customized) templates."""

    async def run_build() -> None:
        try:
            config = apply_overrides(
                _config(ctx, answerfile),
                {
                    "build": selection,
                    "vmid_base": vmid_base,
                    "storage_pool": storage,
                    "rebuild": rebuild or None,
                    "packer": packer or None,
                    "cleanup": cleanup or None,
                    "halt_on_conflict": halt_on_conflict or None,
                    "mode": "local" if local else None,
                    "proxmox_host": host,
                    "ssh_user": user,
                    "ssh_port": port,
                    "ssh_key_path": ssh_key,
                    "ssh_password": ssh_password,
                },
            )

            async with TemplateBuildClient(config) as client:
                loop = asyncio.get_running_loop()
                try:
                    loop.add_signal_handler(signal.SIGINT, client.cancel)
                except NotImplementedError:
                    logger.debug("Signal handlers unavailable, Ctrl-C aborts immediately")

                if not ctx.obj["quiet"]:
                    target = "this host" if config.mode == "local" else config.proxmox_host
                    click.echo(f"Building templates on {target}...", err=True)

                report = await client.build(dry_run=dry_run)

            if not ctx.obj["quiet"] or not report.success:
                echo_report(report, ctx.obj["output_format"])
            sys.exit(report.exit_code)

        except Exception as e:
            _fail(e)

    asyncio.run(run_build())


@cli.command()
@click.option("--build", "--templates", "selection", help="Distributions or groups")
@click.option("--vmid-base", type=int, help="Base VMID")
@click.option(
    "--packer",
    "--customize",
    "packer",
    is_flag=True,
    help="Include customized template VMIDs",
)
@click.pass_context
def plan(
    ctx: Any, selection: Optional[str], vmid_base: Optional[int], packer: bool
) -> None:
    """Show the VMIDs a build would use."""
    try:
        overrides = {"build": selection, "vmid_base": vmid_base, "packer": packer or None}
        # no validation: packer credentials are irrelevant for a plan
        config = (ctx.obj.get("config") or AppConfig()).model_copy(
            update={k: v for k, v in overrides.items() if v is not None}
        )
        if config.vmid_base <= 0:
            raise ConfigurationError(f"Base VMID must be positive, got {config.vmid_base}")
        client = TemplateBuildClient(config)
        echo_plan(client.plan(), ctx.obj["output_format"])
    except Exception as e:
        _fail(e)


@cli.command("cleanup")
@click.option(
    "--cleanup-vms",
    is_flag=True,
    help="Also destroy the intermediate base templates",
)
@click.option("--build", "--templates", "selection", help="Distributions or groups")
@click.option("--vmid-base", type=int, help="Base VMID")
@click.option("--local", is_flag=True, help="Run on this Proxmox host instead of SSH")
@click.option("--host", help="Proxmox host to connect to")
@click.option("--ssh-key", "-k", help="SSH private key path")
@click.pass_context
def cleanup_cmd(
    ctx: Any,
    cleanup_vms: bool,
    selection: Optional[str],
    vmid_base: Optional[int],
    local: bool,
    host: Optional[str],
    ssh_key: Optional[str],
) -> None:
    """Remove the working directory, and with --cleanup-vms the base templates."""

    async def run_cleanup() -> None:
        try:
            config = apply_overrides(
                _config(ctx),
                {
                    "build": selection,
                    "vmid_base": vmid_base,
                    "mode": "local" if local else None,
                    "proxmox_host": host,
                    "ssh_key_path": ssh_key,
                },
            )
            async with TemplateBuildClient(config) as client:
                failed = await client.cleanup(destroy_vms=cleanup_vms)
            if failed:
                click.echo(
                    f"✗ Could not destroy VMID {', '.join(map(str, failed))}", err=True
                )
                sys.exit(1)
            if not ctx.obj["quiet"]:
                if cleanup_vms:
                    click.echo("✓ Intermediate templates removed")
                click.echo("✓ Working directory removed")
        except Exception as e:
            _fail(e)

    asyncio.run(run_cleanup())


@cli.command()
@click.pass_context
def distros(ctx: Any) -> None:
    """List buildable distributions and groups."""
    output_format = ctx.obj["output_format"]
    if output_format != "text":
        echo_data(
            {
                "distros": [
                    {"id": d.id, "name": d.display_name, "offset": d.offset,
                     "image": d.source_locator}
                    for d in default_catalog
                ],
                "groups": {
                    name: sorted(members)
                    for name, members in sorted(default_catalog.groups.items())
                },
            },
            output_format,
        )
        return

    click.echo(f"{'Id':<12} {'Name':<14} {'Offset':<6}")
    click.echo("-" * 34)
    for d in default_catalog:
        click.echo(f"{d.id:<12} {d.display_name:<14} {d.offset:<6}")
    click.echo("\nGroups:")
    for name, members in sorted(default_catalog.groups.items()):
        click.echo(f"  {name}: {', '.join(sorted(members))}")


@cli.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Display current configuration."""
    app_config = ctx.obj["config"]
    if app_config is None:
        click.echo("No valid configuration loaded", err=True)
        sys.exit(1)
    data = app_config.model_dump()
    for secret in ("ssh_password", "packer_token_secret"):
        if data.get(secret):
            data[secret] = "********"
    click.echo(yaml.safe_dump(data, default_flow_style=False))


@config.command("init")
@click.option(
    "--config-dir", default="~/.config/pve-pact", help="Configuration directory"
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(config_dir: str, force: bool) -> None:
    """Initialize default configuration."""
    config_path = Path(config_dir).expanduser()
    config_path.mkdir(parents=True, exist_ok=True)
    config_file = config_path / "config.yaml"

    if config_file.exists() and not force:
        click.echo(f"Configuration already exists at {config_file}", err=True)
        sys.exit(1)

    default_config = AppConfig().model_dump(exclude_none=True)
    with open(config_file, "w") as f:
        yaml.safe_dump(default_config, f, default_flow_style=False)

    click.echo(f"Configuration initialized at {config_file}")


@config.command("path")
def config_path() -> None:
    """Show the configuration file path being used."""
    paths = [os.path.expanduser(p) for p in DEFAULT_CONFIG_PATHS]

    click.echo("Configuration search paths (in order):")
    for i, path in enumerate(paths, 1):
        exists = "✓" if os.path.exists(path) else "✗"
        click.echo(f"  {i}. {exists} {path}")

    found = config_loader.find_config()
    if found:
        click.echo(f"\nCurrently using: {found}")
    else:
        click.echo("\nNo configuration file found. Run 'pve-pact config init' to create one.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
