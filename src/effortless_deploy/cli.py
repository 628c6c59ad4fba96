"""Command-line interface for effortless-deploy."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click
import yaml

from .cleanup import ResourceCleaner
from .clients import AwsClients
from .config import DEFAULT_MANIFEST, ProjectManifest
from .exceptions import ConfigurationError, DeployBatchError, EffortlessError
from .inventory import ResourceInventory
from .models import ResourceRecord
from .naming import SHARED_API_HANDLER
from .orchestrator import DEFAULT_CONCURRENCY, DeployOptions, DeployOrchestrator, DeployRequest
from .services import DeployServices

STATUS_SYMBOLS = {"created": "+", "updated": "~", "unchanged": "="}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_manifest(file_path: str) -> ProjectManifest:
    """Load the manifest or exit with a readable error."""
    try:
        return ProjectManifest.load(file_path)
    except (ConfigurationError, OSError, yaml.YAMLError) as e:
        click.echo(f"Error: invalid manifest {file_path}: {e}", err=True)
        sys.exit(1)


@asynccontextmanager
async def open_services(region: str, endpoint_url: str | None) -> AsyncIterator[DeployServices]:
    """Open the AWS clients of one command and close them afterwards."""
    async with AwsClients(region, endpoint_url) as clients:
        yield await DeployServices.from_clients(clients)


def _print_records(records: list[ResourceRecord]) -> None:
    for handler, group in sorted(ResourceInventory.group_by_handler(records).items()):
        click.echo(f"{handler or '(untagged)'}:")
        for record in group:
            click.echo(f"  [{record.type}] {record.arn}")


file_option = click.option(
    "--file",
    "-f",
    "file_path",
    default=DEFAULT_MANIFEST,
    show_default=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Project manifest",
)
stage_option = click.option("--stage", help="Stage (default: manifest, EFF_STAGE, then 'dev')")
region_option = click.option("--region", help="AWS region (default: manifest, then environment)")
endpoint_option = click.option(
    "--endpoint-url",
    help="AWS endpoint URL (e.g., http://localhost:4566 for LocalStack)",
)
verbose_option = click.option("--verbose", "-v", is_flag=True, help="Debug logging")


@click.group()
@click.version_option()
def cli() -> None:
    """effortless-deploy: converge a project's cloud resources."""
    pass


@cli.command()
@file_option
@stage_option
@region_option
@endpoint_option
@click.option(
    "--concurrency",
    type=click.IntRange(1, 50),
    default=DEFAULT_CONCURRENCY,
    show_default=True,
    help="Handlers deployed in parallel",
)
@click.option(
    "--fail-fast/--no-fail-fast",
    default=True,
    help="Abort on the first failing handler (default) or let all handlers finish",
)
@click.option(
    "--prune/--no-prune",
    default=True,
    help="Delete functions and roles of handlers no longer declared",
)
@verbose_option
def deploy(
    file_path: str,
    stage: str | None,
    region: str | None,
    endpoint_url: str | None,
    concurrency: int,
    fail_fast: bool,
    prune: bool,
    verbose: bool,
) -> None:
    """Deploy every handler declared in the manifest."""
    _configure_logging(verbose)
    manifest = _load_manifest(file_path)

    try:
        request = DeployRequest(
            project=manifest.project,
            stage=manifest.resolve_stage(stage),
            region=manifest.resolve_region(region),
            handlers=manifest.descriptors(),
            layer=manifest.layer_artifact(),
            defaults=manifest.defaults,
        )
    except (ConfigurationError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    options = DeployOptions(concurrency=concurrency, fail_fast=fail_fast, prune_orphans=prune)

    async def _deploy() -> None:
        click.echo(
            f"Deploying {request.project}/{request.stage} to {request.region} "
            f"({len(request.handlers)} handler(s))"
        )
        async with open_services(request.region, endpoint_url) as services:
            try:
                result = await DeployOrchestrator(services, options, click.echo).deploy(request)
            except DeployBatchError as e:
                click.echo(f"✗ {e}", err=True)
                for failure in e.failures:
                    click.echo(f"  - {failure}", err=True)
                sys.exit(1)
            except EffortlessError as e:
                click.echo(f"✗ Deployment failed: {e}", err=True)
                sys.exit(1)

        click.echo()
        for handler in result.handlers:
            symbol = STATUS_SYMBOLS.get(handler.status.value, "?")
            line = f"  {symbol} {handler.name} ({handler.kind.value}) {handler.status.value}"
            if handler.url:
                line += f"  {handler.url}"
            click.echo(line)
        if result.api_url:
            click.echo(f"\nAPI: {result.api_url}")
        for key in result.swept_routes:
            click.echo(f"  - removed route {key}")
        for name in result.pruned:
            click.echo(f"  - pruned {name}")
        click.echo("✓ Done")

    asyncio.run(_deploy())


@cli.command()
@file_option
@stage_option
@region_option
@endpoint_option
@verbose_option
def status(
    file_path: str,
    stage: str | None,
    region: str | None,
    endpoint_url: str | None,
    verbose: bool,
) -> None:
    """List deployed resources grouped by handler."""
    _configure_logging(verbose)
    manifest = _load_manifest(file_path)
    stage_name = manifest.resolve_stage(stage)
    region_name = manifest.resolve_region(region)

    async def _status() -> None:
        async with open_services(region_name, endpoint_url) as services:
            try:
                records = await services.inventory.list_resources(manifest.project, stage_name)
            except EffortlessError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)

        if not records:
            click.echo(f"No resources found for {manifest.project}/{stage_name}.")
            return

        declared = manifest.handler_names()
        click.echo(f"Resources of {manifest.project}/{stage_name} in {region_name}:\n")
        _print_records(records)
        orphaned = ResourceInventory.find_orphaned(records, declared)
        if orphaned:
            handlers = sorted({r.handler for r in orphaned if r.handler})
            click.echo(f"\nNot declared in the manifest: {', '.join(handlers)}")

    asyncio.run(_status())


@cli.command()
@file_option
@stage_option
@region_option
@endpoint_option
@click.option("--handler", "handler_name", help="Delete the resources of one handler")
@click.option("--all", "delete_all", is_flag=True, help="Delete every resource of the stage")
@click.option("--orphaned", is_flag=True, help="Delete resources of undeclared handlers")
@click.option("--layer", is_flag=True, help="Delete the dependency layer versions instead")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@verbose_option
def cleanup(
    file_path: str,
    stage: str | None,
    region: str | None,
    endpoint_url: str | None,
    handler_name: str | None,
    delete_all: bool,
    orphaned: bool,
    layer: bool,
    dry_run: bool,
    yes: bool,
    verbose: bool,
) -> None:
    """Delete deployed resources."""
    _configure_logging(verbose)
    if sum((handler_name is not None, delete_all, orphaned)) > 1:
        click.echo("Error: use only one of --handler, --all and --orphaned", err=True)
        sys.exit(1)
    if handler_name == SHARED_API_HANDLER:
        click.echo(
            f"Error: '{SHARED_API_HANDLER}' is the shared HTTP API, not a handler. "
            "Use --all to remove it.",
            err=True,
        )
        sys.exit(1)

    manifest = _load_manifest(file_path)
    project = manifest.project
    stage_name = manifest.resolve_stage(stage)
    region_name = manifest.resolve_region(region)

    async def _cleanup_layer(cleaner: ResourceCleaner) -> None:
        count = await cleaner.delete_layer(project, stage_name, dry_run=True)
        if count == 0:
            click.echo("No layer versions found.")
            return
        click.echo(f"Found {count} layer version(s).")
        if dry_run:
            click.echo("[DRY RUN] No layer versions were deleted.")
            return
        if not yes:
            click.confirm(f"Delete {count} layer version(s)?", abort=True)
        deleted = await cleaner.delete_layer(project, stage_name)
        click.echo(f"✓ Deleted {deleted} layer version(s).")

    async def _cleanup() -> None:
        async with open_services(region_name, endpoint_url) as services:
            cleaner = ResourceCleaner(services)
            try:
                if layer:
                    await _cleanup_layer(cleaner)
                    return

                records = await services.inventory.list_resources(project, stage_name)
                if not records:
                    click.echo(f"No resources found for {project}/{stage_name}.")
                    return

                if handler_name is not None:
                    groups = ResourceInventory.group_by_handler(records)
                    if handler_name not in groups:
                        click.echo(f"Handler '{handler_name}' not found.", err=True)
                        click.echo("Available handlers:", err=True)
                        for name in sorted(groups):
                            click.echo(f"  - {name}", err=True)
                        sys.exit(1)
                    selected = groups[handler_name]
                elif orphaned:
                    selected = ResourceInventory.find_orphaned(records, manifest.handler_names())
                else:
                    selected = records

                if not selected:
                    click.echo("Nothing to delete.")
                    return

                _print_records(selected)
                click.echo(f"\nTotal: {len(selected)} resource(s)")

                if dry_run:
                    click.echo("[DRY RUN] No resources were deleted.")
                    return
                if handler_name is None and not delete_all and not orphaned:
                    click.echo("\nTo delete these resources, use one of:")
                    click.echo("  effortless cleanup --all")
                    click.echo("  effortless cleanup --handler <name>")
                    click.echo("  effortless cleanup --orphaned")
                    return
                if not yes:
                    click.confirm(f"Delete {len(selected)} resource(s)?", abort=True)

                deleted = await cleaner.delete(selected)
                if delete_all:
                    await cleaner.delete_shared(project, stage_name)
                click.echo(f"✓ Deleted {len(deleted)} resource(s).")
            except EffortlessError as e:
                click.echo(f"✗ Cleanup failed: {e}", err=True)
                sys.exit(1)

    asyncio.run(_cleanup())


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
