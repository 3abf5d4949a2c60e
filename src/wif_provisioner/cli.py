"""WIF provisioner CLI (wif-provisioner).

Usage:
    wif-provisioner create --name my-wif --project my-project
    wif-provisioner create --name my-wif --project my-project --dry-run
    wif-provisioner apply my-wif
    wif-provisioner apply --from-file record.yaml --dry-run
    wif-provisioner update my-wif --template osd-4.16
    wif-provisioner describe my-wif
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import click

from .backend import BackendError, OcmWifConfigClient, WifConfigLookupError
from .config import BindFailurePolicy, ConfigurationError, ProvisionConfig
from .main import EXIT_OK, run_provisioning, setup_logging
from .models import WifConfigInput, WifConfigOutput, WifConfigSpec
from .orchestrator import update_wif_configuration
from .spec_loader import SpecLoadError, load_wif_config

LOG_FORMATS = ("json", "text")


def _load_config(
    output_dir: Path | None, bind_failure_policy: str | None, **values: object
) -> ProvisionConfig:
    try:
        config = ProvisionConfig.from_env(
            output_dir=output_dir.resolve() if output_dir else None,
            bind_failure_policy=BindFailurePolicy(bind_failure_policy)
            if bind_failure_policy
            else None,
            **values,
        )
        # Dry run files land in the working directory unless told otherwise
        if config.dry_run and config.output_dir is None:
            config = replace(config, output_dir=Path.cwd())
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


def _backend() -> OcmWifConfigClient:
    try:
        return OcmWifConfigClient.from_env()
    except (ConfigurationError, BackendError) as e:
        raise click.ClickException(f"failed to create backend client: {e}") from e


def _find(backend: OcmWifConfigClient, key: str) -> WifConfigOutput:
    try:
        return backend.find_wif_config(key)
    except (WifConfigLookupError, BackendError) as e:
        raise click.ClickException(f"failed to get wif-config: {e}") from e


def _desired_state(record: WifConfigOutput) -> WifConfigSpec:
    try:
        return record.desired_state()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def _provision(ctx: click.Context, spec: WifConfigSpec, config: ProvisionConfig) -> None:
    code = run_provisioning(spec, config)
    if code != EXIT_OK:
        ctx.exit(code)


provisioning_options = [
    click.option("--dry-run", is_flag=True, help="Only report what would be created"),
    click.option(
        "--output-dir",
        type=click.Path(path_type=Path),
        help="Directory for generated files in dry run mode (default: current directory)",
    ),
    click.option(
        "--bind-failure-policy",
        type=click.Choice([p.value for p in BindFailurePolicy]),
        help="Stop at the first failing service account, or attempt all of them",
    ),
    click.option("--impersonator", help="Service account email granted impersonation access"),
]


def with_provisioning_options(func):  # type: ignore[no-untyped-def]
    for option in reversed(provisioning_options):
        func = option(func)
    return func


# =============================================================================
# Root Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="wif-provisioner")
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS),
    default="json",
    show_default=True,
    help="Log output format",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(log_format: str, verbose: bool) -> None:
    """Workload Identity Federation provisioner.

    Creates and re-applies the Google Cloud resources a WIF configuration
    needs: workload identity pool, OIDC provider, and IAM service accounts.

    \b
    Authentication:
        Google: Application Default Credentials (no key files)
        Backend: OCM_TOKEN or OCM_OFFLINE_TOKEN
    """
    setup_logging(log_format, verbose)


# =============================================================================
# Provisioning Commands
# =============================================================================


@cli.command()
@click.option("--name", required=True, help="User-defined name for all created resources")
@click.option("--project", required=True, help="ID of the Google Cloud project")
@with_provisioning_options
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    project: str,
    dry_run: bool,
    output_dir: Path | None,
    bind_failure_policy: str | None,
    impersonator: str | None,
) -> None:
    """Create a WIF configuration and provision its cloud resources."""
    config = _load_config(
        display_name=name,
        project_id=project,
        dry_run=dry_run or None,
        output_dir=output_dir,
        bind_failure_policy=bind_failure_policy,
        impersonator_service_account=impersonator,
    )

    backend = _backend()
    click.echo("Creating workload identity configuration...")
    try:
        record = backend.create_wif_config(WifConfigInput(display_name=name, project_id=project))
    except BackendError as e:
        raise click.ClickException(f"failed to create WIF config: {e}") from e
    click.echo(f"Created WIF configuration {record.id}")

    _provision(ctx, _desired_state(record), config)


@cli.command()
@click.argument("key", required=False)
@click.option(
    "--from-file",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Read the record from a YAML or JSON file instead of the backend",
)
@with_provisioning_options
@click.pass_context
def apply(
    ctx: click.Context,
    key: str | None,
    from_file: Path | None,
    dry_run: bool,
    output_dir: Path | None,
    bind_failure_policy: str | None,
    impersonator: str | None,
) -> None:
    """Re-apply the cloud resources of an existing WIF configuration.

    KEY is the configuration's ID or display name. Safe to run repeatedly:
    resources that already exist are left alone.
    """
    if (key is None) == (from_file is None):
        raise click.UsageError("Expected exactly one of KEY or --from-file")

    if from_file is not None:
        try:
            spec = load_wif_config(from_file)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e
    else:
        spec = _desired_state(_find(_backend(), key))  # type: ignore[arg-type]

    config = _load_config(
        display_name=spec.display_name,
        project_id=spec.project_id,
        dry_run=dry_run or None,
        output_dir=output_dir,
        bind_failure_policy=bind_failure_policy,
        impersonator_service_account=impersonator,
    )

    _provision(ctx, spec, config)


# =============================================================================
# Record Commands
# =============================================================================


@cli.command()
@click.argument("key")
@click.option(
    "--template",
    "templates",
    multiple=True,
    required=True,
    help="Template reference to set (repeatable)",
)
def update(key: str, templates: tuple[str, ...]) -> None:
    """Update the template references of a WIF configuration.

    Only the backend record changes; no cloud resources are touched.
    """
    backend = _backend()
    try:
        record = update_wif_configuration(backend, key, list(templates))
    except (WifConfigLookupError, BackendError) as e:
        raise click.ClickException(f"failed to update wif-config: {e}") from e
    click.echo(f"Updated WIF configuration {record.id or key}")


@cli.command()
@click.argument("key")
def describe(key: str) -> None:
    """Show details of a WIF configuration."""
    record = _find(_backend(), key)

    status = record.status
    pool = status.workload_identity_pool_data if status else None
    rows = [
        ("ID", record.id),
        ("Display Name", record.display_name),
        ("Project", record.spec.project_id if record.spec else ""),
        ("State", status.state if status else ""),
        ("Summary", status.summary if status else ""),
        ("Issuer URL", pool.issuer_url if pool else ""),
    ]
    width = max(len(label) for label, _ in rows) + 3
    for label, value in rows:
        click.echo(f"{label + ':':<{width}}{value}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
