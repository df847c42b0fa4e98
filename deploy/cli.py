"""
Command line entry point for platform deployment

Examples:
    # Full setup of the dev environment
    python -m deploy setup

    # Show what would run, without touching anything
    python -m deploy --dry-run setup

    # Re-apply infrastructure and manifests
    python -m deploy --environment staging update

    # Load test the deployed platform
    python -m deploy loadtest --profile stress --host https://gitops-platform.example.com
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import typer

from deploy import steps
from deploy.errors import DeployError
from deploy.runner import CommandRunner
from deploy.settings import PROJECT_ROOT, Settings

logger = logging.getLogger(__name__)

app = typer.Typer(help="Provision and manage the GitOps Platform.", no_args_is_help=True)

LOCUSTFILE = PROJECT_ROOT / "load_tests" / "locustfile.py"
LOAD_PROFILES = ["basic", "stress", "spike"]


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def fail(exc: Exception) -> None:
    logger.error("%s", exc)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    project_name: str = typer.Option("gitops-platform", envvar="PROJECT_NAME", help="Project name prefix."),
    environment: str = typer.Option("dev", envvar="ENVIRONMENT", help="Environment, also the stack name."),
    aws_region: str = typer.Option("us-west-2", envvar="AWS_REGION", help="AWS region."),
    state_bucket: Optional[str] = typer.Option(None, envvar="STATE_BUCKET", help="S3 bucket for Pulumi state."),
    secrets_provider: Optional[str] = typer.Option(
        None, envvar="PULUMI_SECRETS_PROVIDER", help="Pulumi secrets provider, e.g. awskms://alias/...",
    ),
    manifests_dir: Path = typer.Option(
        PROJECT_ROOT / "k8s-manifests", envvar="MANIFESTS_DIR", help="Directory with argocd/monitoring/security.",
    ),
    wait_timeout: int = typer.Option(600, envvar="WAIT_TIMEOUT", help="Seconds to wait for deployments."),
    sync_wait: int = typer.Option(30, envvar="SYNC_WAIT", help="Seconds to let ArgoCD sync."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log commands instead of running them."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    configure_logging(verbose)
    settings = Settings(
        project_name=project_name,
        environment=environment,
        aws_region=aws_region,
        manifests_dir=manifests_dir,
        state_bucket=state_bucket,
        secrets_provider=secrets_provider,
        dry_run=dry_run,
        wait_timeout=wait_timeout,
        sync_wait=sync_wait,
    )
    ctx.obj = (settings, CommandRunner(dry_run=dry_run))


@app.command()
def setup(ctx: typer.Context) -> None:
    """Provision infrastructure and install every platform component."""
    settings, runner = ctx.obj
    try:
        steps.setup(settings, runner)
    except DeployError as exc:
        fail(exc)


@app.command()
def destroy(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Destroy every resource in the environment's stack."""
    settings, _ = ctx.obj
    if not yes and not settings.dry_run:
        typer.confirm(f"Destroy stack {settings.stack_name} and cluster {settings.cluster_name}?", abort=True)
    try:
        steps.destroy_infrastructure(settings)
    except DeployError as exc:
        fail(exc)


@app.command()
def update(ctx: typer.Context) -> None:
    """Re-apply infrastructure and all manifest directories."""
    settings, runner = ctx.obj
    try:
        steps.update(settings, runner)
    except DeployError as exc:
        fail(exc)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show nodes, pods and stack outputs."""
    settings, runner = ctx.obj
    try:
        outputs = steps.show_status(settings, runner)
    except DeployError as exc:
        fail(exc)
    for key, value in sorted(outputs.items()):
        typer.echo(f"{key}: {value}")


def locust_pythonpath() -> str:
    """PYTHONPATH that lets the locustfile import load_tests from the project root"""
    return os.pathsep.join(filter(None, [str(PROJECT_ROOT), os.environ.get("PYTHONPATH")]))


@app.command()
def loadtest(
    ctx: typer.Context,
    host: str = typer.Option(
        "https://gitops-platform.example.com", envvar="BASE_URL", help="Base URL of the deployed platform.",
    ),
    profile: str = typer.Option("basic", envvar="LOAD_PROFILE", help="Load profile: basic, stress or spike."),
    html_report: Optional[Path] = typer.Option(None, "--html", help="Write Locust's HTML report here."),
) -> None:
    """Run the load-test scenario headless; exits non-zero when a threshold fails."""
    _, runner = ctx.obj
    if profile not in LOAD_PROFILES:
        raise typer.BadParameter(f"expected one of {', '.join(LOAD_PROFILES)}", param_hint="--profile")
    if not runner.dry_run and shutil.which("locust") is None:
        fail(DeployError("Missing dependencies: locust"))

    args = ["locust", "-f", str(LOCUSTFILE), "--headless", "--host", host]
    if html_report:
        args.extend(["--html", str(html_report)])
    try:
        runner.run(args, env={"BASE_URL": host, "LOAD_PROFILE": profile, "PYTHONPATH": locust_pythonpath()})
    except DeployError as exc:
        fail(exc)
