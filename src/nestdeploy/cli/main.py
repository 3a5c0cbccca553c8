"""Main CLI entry point."""

import sys
import threading
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from nestdeploy.config.models import DeployConfig
from nestdeploy.config.parser import load_config
from nestdeploy.deployment.service import DeploymentService
from nestdeploy.orchestrator.orchestrator import (
    AttemptState,
    DeploymentAttempt,
    DeploymentOrchestrator,
)
from nestdeploy.splitter.classifier import build_classifier
from nestdeploy.splitter.splitter import SplitResult, TemplateSplitter
from nestdeploy.staging.manager import ROOT_TEMPLATE_NAME
from nestdeploy.staging.store import ArtifactStore
from nestdeploy.template.parser import STDIN_SOURCE, load_template, validate_template
from nestdeploy.utils.aws_client import AWSClientManager
from nestdeploy.utils.errors import AttemptCancelledError, InputError, NestDeployError, error_handler
from nestdeploy.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--endpoint-url', help='Override the AWS endpoint (e.g. a local emulator)')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-dir', default='.nestdeploy/logs', type=click.Path(file_okay=False),
              help='Directory for JSON log files')
@click.pass_context
def cli(ctx, profile, region, endpoint_url, log_level, log_dir):
    """Deploy CloudFormation templates, splitting oversized ones into nested stacks."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['endpoint_url'] = endpoint_url

    setup_logging(log_level, Path(log_dir))


def create_orchestrator(
    settings: DeployConfig,
    profile: Optional[str] = None,
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None
) -> DeploymentOrchestrator:
    """Create deployment orchestrator with all dependencies."""
    client_manager = AWSClientManager(profile=profile, region=region, endpoint_url=endpoint_url)
    client_manager.validate_credentials()

    store = ArtifactStore(
        client_manager.get_client('s3'),
        container_prefix=settings.staging.container_prefix,
    )
    service = DeploymentService(
        client_manager.get_client('cloudformation'),
        capabilities=settings.deployment.capabilities,
        retain_except_on_create=settings.deployment.retain_except_on_create,
    )
    return DeploymentOrchestrator(store, service, config=settings)


@cli.command()
@click.option('--stack-name', '-s', envvar='NESTDEPLOY_STACK_NAME', help='Stack to create or update')
@click.option('--template', '-t', 'template_source', default=STDIN_SOURCE, show_default=True,
              help="Template file, or '-' for standard input")
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Path to configuration file (default: nestdeploy.yaml if present)')
@click.option('--wait/--no-wait', default=None,
              help='Wait for the stack to settle before releasing staged templates')
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True),
              help='Cancel the attempt after this many seconds')
@click.pass_context
def deploy(ctx, stack_name, template_source, config_path, wait, timeout):
    """Split, stage and deploy a template."""
    cancel_event = threading.Event()
    timer = None

    try:
        if not stack_name:
            raise InputError(
                'Stack name is required',
                suggestions=['Pass --stack-name or set NESTDEPLOY_STACK_NAME'],
            )

        settings = load_config(config_path)
        if wait is not None:
            settings.deployment.wait_for_completion = wait

        template = load_template(template_source)
        validate_template(template)

        orchestrator = create_orchestrator(
            settings,
            profile=ctx.obj.get('profile'),
            region=ctx.obj.get('region'),
            endpoint_url=ctx.obj.get('endpoint_url'),
        )

        if timeout:
            timer = threading.Timer(timeout, cancel_event.set)
            timer.daemon = True
            timer.start()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task_id = progress.add_task(f"[cyan]Deploying {stack_name}...", total=None)

            def on_transition(state: AttemptState, message: str) -> None:
                progress.update(task_id, description=f"[cyan]{state.value}:[/cyan] {escape(message)}")

            attempt = orchestrator.deploy(
                stack_name,
                template,
                cancel_event=cancel_event,
                progress_callback=on_transition,
            )

        _print_summary(attempt)

    except AttemptCancelledError as e:
        error_handler.log_error(e)
        console.print(f"[yellow]Deployment cancelled:[/yellow] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)
    except NestDeployError as e:
        error_handler.log_error(e)
        console.print(f"[red]Deployment error:[/red] {escape(e.to_user_message())}")
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted, staged templates were released[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.exception("Unexpected error during deployment")
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)
    finally:
        if timer:
            timer.cancel()


@cli.command()
@click.option('--template', '-t', 'template_source', default=STDIN_SOURCE, show_default=True,
              help="Template file, or '-' for standard input")
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Path to configuration file (default: nestdeploy.yaml if present)')
@click.option('--output-dir', '-o', type=click.Path(file_okay=False),
              help='Write the produced templates to this directory')
def split(template_source, config_path, output_dir):
    """Preview how a template would be split, without touching AWS."""
    try:
        settings = load_config(config_path)
        template = load_template(template_source)
        validate_template(template)

        result = TemplateSplitter(build_classifier(settings.splitting)).split(template)
        _print_split(result)

        if output_dir:
            written = _write_split(result, Path(output_dir))
            console.print(f"\nWrote {written} template(s) to [cyan]{output_dir}[/cyan]")
            console.print("[dim]Nested stack TemplateURLs are filled in at deploy time[/dim]")

    except NestDeployError as e:
        error_handler.log_error(e)
        console.print(f"[red]Error:[/red] {escape(e.to_user_message())}")
        sys.exit(EXIT_FAILURE)
    except OSError as e:
        console.print(f"[red]Error writing templates:[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)


def _print_summary(attempt: DeploymentAttempt) -> None:
    """Display the outcome of a successful attempt."""
    report = attempt.release_report
    released = f"{len(report.released)}/{report.get_total_operations()}" if report else "0/0"

    lines = [
        "[green]Deployment successful[/green]\n",
        f"Stack: {attempt.stack_name}",
        f"Path: {attempt.path.value if attempt.path else 'n/a'}",
    ]
    if attempt.proposal_name:
        lines.append(f"Change set: {attempt.proposal_name}")
    if attempt.final_status:
        lines.append(f"Status: {attempt.final_status}")
    lines.extend([
        f"Nested templates: {attempt.nested_templates}",
        f"Staged templates: {len(attempt.artifacts)}",
        f"Staging released: {released}",
        f"Duration: {attempt.duration:.2f}s",
    ])

    console.print(Panel.fit("\n".join(lines), title="Deployment Complete", border_style="green"))

    if report and report.failed:
        console.print("\n[yellow]Some staging artifacts could not be removed:[/yellow]")
        for description, error in report.failed.items():
            console.print(f"  [yellow]![/yellow] {description}: {escape(error)}")


def _print_split(result: SplitResult) -> None:
    """Display templates produced by a split."""
    table = Table(show_header=True, header_style="bold", title="Split Preview")
    table.add_column("Template", style="cyan")
    table.add_column("Resources", justify="right")
    table.add_column("Stack reference", style="white")

    table.add_row(ROOT_TEMPLATE_NAME, str(len(result.root.resources)), "-")
    for nested in result.nested.values():
        table.add_row(nested.file_name, str(len(nested.template.resources)), nested.reference_name)

    console.print(table)

    oversized = result.oversized()
    if oversized:
        console.print(f"[yellow]Still over the resource limit:[/yellow] {', '.join(oversized)}")


def _write_split(result: SplitResult, output_dir: Path) -> int:
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / ROOT_TEMPLATE_NAME).write_bytes(result.root.to_yaml())
    for nested in result.nested.values():
        (output_dir / nested.file_name).write_bytes(nested.template.to_yaml())
    return result.get_total_templates()


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
