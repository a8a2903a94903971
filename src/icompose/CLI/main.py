"""
Command Line Interface for incus-compose.
"""
import os

import click
import yaml
from pydantic import ValidationError

from .. import __version__
from ..CONFIG.logging import configure_logging
from ..CONFIG.remotes import load_remotes
from ..CONFIG.settings import ComposeSettings, EndpointPolicy
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.application_model import ApplicationModel
from ..PARSERS.compose_parser import ComposeParser, find_compose_file
from ..REMOTE.incus_client import incus_client_factory
from ..RUNNERS.dependency_graph import DependencyGraph
from ..RUNNERS.dependency_resolver import DependencyResolver, Direction
from ..UTILS.errors import ComposeError, OperationCancelled, RemoteOperationError, ResolutionError


@click.group()
@click.version_option(version=__version__, prog_name="incus-compose")
@click.option('--file', '-f', default=None, help='Compose file path')
@click.option('--project-name', '-p', default=None, help='Project name, defaults to the compose file directory')
@click.option('--cwd', default=None, help='Change working directory')
@click.option('--config', 'config_path', default=None, help='Settings file, defaults to ~/.config/incus-compose.yaml')
@click.option('--verbose', '-d', is_flag=True, help='Verbose logging')
@click.option('--log-json', is_flag=True, help='Structured JSON log output to stderr')
@click.option('--dry-run', is_flag=True, help='Print the incus commands instead of running them')
@click.option('--remote', default=None, help='Incus remote to target')
@click.option('--network-type', default=None, help='Type of the default network (bridge or ovn)')
@click.option('--network-uplink', default=None, help='Uplink for the default network if it is ovn')
@click.option('--project', default=None, envvar='INCUS_PROJECT', help='Use this incus project rather than the default one')
@click.option('--force-local', is_flag=True, help='Ignore the incus client config and use the local remote')
@click.option('--parallel', type=int, default=None, help='Resources to create or delete at once')
@click.option('--endpoint-policy', type=click.Choice([p.value for p in EndpointPolicy]), default=None,
              help='Use the first or all remotes a resource resolves to')
@click.pass_context
def cli(ctx, file, project_name, cwd, config_path, verbose, log_json, dry_run, remote,
        network_type, network_uplink, project, force_local, parallel, endpoint_policy):
    """
    incus-compose - define and run multi-instance applications with Incus.
    """
    ctx.ensure_object(dict)
    try:
        settings = ComposeSettings.from_cli(
            config_path=config_path,
            verbose=verbose or None,
            log_json=log_json or None,
            dry_run=dry_run or None,
            force_local=force_local or None,
            remote=remote,
            network_type=network_type,
            network_uplink=network_uplink,
            project=project,
            parallel=parallel,
            endpoint_policy=endpoint_policy,
        )
    except ValidationError as e:
        raise click.ClickException(f"invalid settings: {e}")

    configure_logging(verbose=settings.verbose, log_json=settings.log_json)
    ctx.obj['settings'] = settings
    ctx.obj['file'] = file
    ctx.obj['project_name'] = project_name
    ctx.obj['cwd'] = cwd or os.getcwd()


def _load(ctx):
    """
    Parses the compose file and builds the application model and its graph.

    Graph errors are raised here, before anything touches a remote.
    """
    settings = ctx.obj['settings']
    path = ctx.obj['file']
    if path and not os.path.isabs(path):
        path = os.path.join(ctx.obj['cwd'], path)
    path = path or find_compose_file(ctx.obj['cwd'])
    if not path:
        raise click.ClickException(f"no compose file found in {ctx.obj['cwd']}")

    try:
        project = ComposeParser().parse(path, ctx.obj['project_name'])
        model = ApplicationModel.build(project, settings)
        graph = DependencyGraph.build(model.services)
    except ComposeError as e:
        raise click.ClickException(str(e))
    return model, graph


def _orchestrator(settings):
    try:
        registry = load_remotes(force_local=settings.force_local)
    except ComposeError as e:
        raise click.ClickException(str(e))
    return ServiceOrchestrator(
        registry,
        client_factory=incus_client_factory(dry_run=settings.dry_run),
        policy=settings.endpoint_policy,
        max_workers=settings.parallel,
    )


def _describe(error):
    if isinstance(error, RemoteOperationError):
        return f"FAILED {error.kind} {error.name}: {error.cause}"
    if isinstance(error, ResolutionError):
        kind = f"{error.kind} " if error.kind else ""
        return f"FAILED {kind}{error.name}: {error.reason}"
    if isinstance(error, OperationCancelled):
        return f"CANCELLED: {error}"
    return f"FAILED: {error}"


def _report(errors, model, done):
    if errors:
        for error in errors:
            click.echo(_describe(error), err=True)
        raise click.ClickException(f"{len(errors)} resource operation(s) failed for project {model.name}")
    click.echo(f"Project {model.name} {done}.")


@cli.command()
@click.pass_context
def up(ctx):
    """Create networks and instances in dependency order."""
    model, graph = _load(ctx)
    errors = _orchestrator(ctx.obj['settings']).apply_create(model, graph)
    _report(errors, model, "is up")


@cli.command()
@click.pass_context
def down(ctx):
    """Delete instances in reverse dependency order, then networks."""
    model, graph = _load(ctx)
    errors = _orchestrator(ctx.obj['settings']).apply_destroy(model, graph)
    _report(errors, model, "is down")


@cli.command()
@click.pass_context
def config(ctx):
    """Print the resolved project and its creation order."""
    model, graph = _load(ctx)
    click.echo(yaml.safe_dump(model.model_dump(mode="json"), sort_keys=False), nl=False)
    order = DependencyResolver().resolve_order(graph, Direction.CREATE)
    click.echo(f"create order: {', '.join(order)}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
