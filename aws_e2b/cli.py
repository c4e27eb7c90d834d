"""Thin CLI wrapper for aws_e2b.

This module provides the command-line interface using Typer. `run()` is the
console entry point: it routes native commands to the Typer app, rejects
`auth`, and forwards everything else to the e2b CLI.
All business logic is delegated to core modules.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from aws_e2b import __version__
from aws_e2b.config import CliOverrides, get_settings, load_credentials
from aws_e2b.errors import AwsE2bError
from aws_e2b.forward import CommandForwarder, Route, classify, split_root_flags
from aws_e2b.runner import SubprocessRunner

app = typer.Typer(
    name="aws-e2b",
    help=(
        "aws-e2b - build e2b templates from images published to Amazon ECR. "
        "Commands not listed here are forwarded to the e2b CLI."
    ),
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(console=err_console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.setLevel(level)


def report_error(error: AwsE2bError) -> None:
    """Print an aws_e2b error for the operator."""
    stage = f"{error.stage} failed: " if error.stage else ""
    err_console.print(f"[red]{stage}{error.message}[/red]", highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"aws-e2b version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """aws-e2b - build e2b templates from images published to Amazon ECR."""
    if verbose:
        configure_logging("DEBUG")
        return
    try:
        configure_logging(get_settings().log_level)
    except AwsE2bError as e:
        report_error(e)
        raise typer.Exit(code=1) from None


@app.command()
def config(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to the project file (default: ./aws_e2b.toml)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    from aws_e2b.config import EnvironmentOverrides, describe_configuration
    from aws_e2b.config_files import load_project_config, load_user_config

    try:
        settings = get_settings()
        project = load_project_config(config_path)
        user = load_user_config(settings.user_config)
    except AwsE2bError as e:
        report_error(e)
        raise typer.Exit(code=1) from None

    effective = describe_configuration(
        settings, project, user, EnvironmentOverrides(), CliOverrides(config_path=config_path)
    )
    if json_output:
        typer.echo(json.dumps(effective, indent=2))
        return

    template = effective["template"]
    image = effective["image_source"]
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Files:[/bold]")
    console.print(f"  Project file:        {effective['project_file'] or '(none)'}")
    console.print(f"  User file:           {effective['user_file']}")
    console.print()
    console.print("[bold]Template:[/bold]")
    console.print(f"  Memory (MB):         {template['memory_mb']}")
    console.print(f"  CPU count:           {template['cpu_count']}")
    console.print(f"  Start command:       {template['start_cmd'] or '(none)'}")
    console.print(f"  Ready command:       {template['ready_cmd'] or '(none)'}")
    console.print(f"  Alias:               {template['alias'] or '(none)'}")
    console.print(f"  Template ID:         {template['template_id'] or '(new template)'}")
    console.print()
    console.print("[bold]Image source:[/bold]")
    console.print(f"  Origin:              {image['origin']}")
    console.print(f"  Dockerfile:          {image['dockerfile'] or '(none)'}")
    console.print(f"  ECR image:           {image['ecr_image'] or '(none)'}")
    console.print(f"  Base image:          {image['base_image'] or '(default)'}")
    console.print()
    console.print("[bold]Accounts:[/bold]")
    console.print(f"  AWS region:          {effective['aws_region']}")
    console.print(f"  e2b domain:          {effective['e2b_domain']}")
    console.print(f"  e2b access token:    {effective['e2b_access_token'] or '(missing)'}")
    console.print(f"  e2b API key:         {effective['e2b_api_key'] or '(none)'}")
    console.print(f"  e2b team:            {effective['e2b_team_id'] or '(default)'}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Poll interval:       {settings.poll_interval}")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  HTTP timeout:        {settings.http_timeout}")


template_app = typer.Typer(help="Build and list e2b templates")
app.add_typer(template_app, name="template")


@template_app.command("build")
def template_build(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to the project file (default: ./aws_e2b.toml)"),
    ] = None,
    memory_mb: Annotated[
        int | None,
        typer.Option("--memory-mb", help="Sandbox memory in megabytes"),
    ] = None,
    cpu_count: Annotated[
        int | None,
        typer.Option("--cpu-count", help="Number of CPU cores"),
    ] = None,
    start_cmd: Annotated[
        str | None,
        typer.Option("--start-cmd", help="Command run when the sandbox starts"),
    ] = None,
    ready_cmd: Annotated[
        str | None,
        typer.Option("--ready-cmd", help="Command that checks the sandbox is ready"),
    ] = None,
    alias: Annotated[
        str | None,
        typer.Option("--alias", help="Template alias"),
    ] = None,
    template_id: Annotated[
        str | None,
        typer.Option("--template-id", help="Rebuild this existing template"),
    ] = None,
    team: Annotated[
        str | None,
        typer.Option("--team", help="e2b team ID"),
    ] = None,
    docker_file: Annotated[
        Path | None,
        typer.Option("--docker-file", help="Build the base image from this Dockerfile"),
    ] = None,
    ecr_image: Annotated[
        str | None,
        typer.Option("--ecr-image", help="Use this existing ECR image"),
    ] = None,
    base_image: Annotated[
        str | None,
        typer.Option("--base-image", help="Republish this base image"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result as JSON"),
    ] = False,
) -> None:
    """Build an e2b template from a Dockerfile, an ECR image, or a base image."""
    from aws_e2b.templates.service import run_template_build

    cli = CliOverrides(
        config_path=config_path,
        memory_mb=memory_mb,
        cpu_count=cpu_count,
        start_cmd=start_cmd,
        ready_cmd=ready_cmd,
        alias=alias,
        template_id=template_id,
        team_id=team,
        docker_file=docker_file,
        ecr_image=ecr_image,
        base_image=base_image,
    )

    try:
        outcome = run_template_build(cli)
    except AwsE2bError as e:
        report_error(e)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted; the remote build may still be running[/yellow]")
        raise typer.Exit(code=130) from None

    if json_output:
        output = {
            "template_id": outcome.ticket.template_id,
            "build_id": outcome.ticket.build_id,
            "status": outcome.status.value,
            "image": outcome.registry_reference,
            "polls": outcome.polls,
            "elapsed": round(outcome.elapsed, 1),
        }
        typer.echo(json.dumps(output, indent=2))
    else:
        console.print(f"[green]✓ Template ready: {outcome.ticket.template_id}[/green]")
        console.print(f"  Build: {outcome.ticket.build_id}")
        console.print(f"  Image: {outcome.registry_reference}")


template_app.command("create", help="Alias of `template build`.")(template_build)


@template_app.command("list")
def template_list(
    team: Annotated[
        str | None,
        typer.Option("--team", help="e2b team ID"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List e2b templates."""
    from aws_e2b.templates.service import list_templates

    try:
        templates = list_templates(team)
    except AwsE2bError as e:
        report_error(e)
        raise typer.Exit(code=1) from None

    if not templates:
        if json_output:
            typer.echo("[]")
        else:
            console.print("[yellow]No templates found[/yellow]")
        return

    if json_output:
        output = [
            {
                "template_id": t.template_id,
                "aliases": t.aliases,
                "build_status": t.build_status,
                "cpu_count": t.cpu_count,
                "memory_mb": t.memory_mb,
                "public": t.public,
            }
            for t in templates
        ]
        typer.echo(json.dumps(output, indent=2))
    else:
        console.print(f"[bold]Found {len(templates)} template(s):[/bold]")
        console.print()
        for t in templates:
            status_color = {
                "ready": "green",
                "building": "yellow",
                "waiting": "yellow",
                "error": "red",
            }.get(t.build_status or "", "white")
            console.print(f"  [{status_color}]{t.template_id}[/{status_color}]")
            if t.aliases:
                console.print(f"    Aliases: {', '.join(t.aliases)}")
            console.print(f"    Status: {t.build_status or 'unknown'}")
            console.print(f"    Resources: {t.cpu_count} CPU, {t.memory_mb} MB")
            console.print()


def run(argv: list[str] | None = None) -> None:
    """Console entry point: handle natively, reject, or forward to e2b."""
    args = sys.argv[1:] if argv is None else list(argv)

    if classify(args) == Route.NATIVE:
        app(args=args, prog_name="aws-e2b")
        return

    root_flags, _ = split_root_flags(args)
    try:
        settings = get_settings()
    except AwsE2bError as e:
        report_error(e)
        sys.exit(1)
    configure_logging("DEBUG" if root_flags else settings.log_level)
    forwarder = CommandForwarder(
        SubprocessRunner(),
        lambda: load_credentials(settings),
        executable=settings.companion_cli,
    )
    try:
        exit_code = forwarder.forward(args)
    except AwsE2bError as e:
        report_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
