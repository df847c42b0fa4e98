"""
Deployment steps
Each step is one stage of bringing the platform up, in the order setup runs them
"""

import base64
import logging
import shutil
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pulumi import automation as auto

from deploy.errors import CommandError, DeployError, MissingDependencyError, StackError
from deploy.runner import CommandRunner, missing_tools, retry_with_backoff
from deploy.settings import Settings

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ["pulumi", "kubectl", "helm", "aws", "argocd", "docker"]

ARGOCD_INSTALL_MANIFEST = "https://raw.githubusercontent.com/argoproj/argo-cd/stable/manifests/install.yaml"
LOAD_BALANCER_CONTROLLER_CRDS = "github.com/aws/eks-charts/stable/aws-load-balancer-controller/crds?ref=master"

HELM_REPOS = {
    "eks": "https://aws.github.io/eks-charts",
    "autoscaler": "https://kubernetes.github.io/autoscaler",
    "ingress-nginx": "https://kubernetes.github.io/ingress-nginx",
}

# (manifest subdirectory, namespace, deployment that must become available)
MANIFEST_STAGES = {
    "argocd": ("argocd", None),
    "monitoring": ("monitoring", "prometheus-stack-kube-prom-operator"),
    "security": ("gatekeeper-system", "gatekeeper-controller-manager"),
}

# Services whose load balancer hostname is reported after setup
ENDPOINT_SERVICES = {
    "ArgoCD": ("argocd", "argocd-server"),
    "Grafana": ("monitoring", "prometheus-stack-grafana"),
}

ALREADY_EXISTS_ERRORS = [
    "already exists",
    "alreadyexists",
]

# BucketAlreadyExists means another account owns the name, so it is not listed
BUCKET_OWNED_ERRORS = [
    "bucketalreadyownedbyyou",
]


@dataclass
class HelmRelease:
    """A chart installed into the cluster with `helm upgrade --install`"""

    name: str
    chart: str
    namespace: str
    values: Dict[str, Any] = field(default_factory=dict)
    create_namespace: bool = False

    def install_args(self) -> List[str]:
        args = ["helm", "upgrade", "--install", self.name, self.chart, "-n", self.namespace]
        if self.create_namespace:
            args.append("--create-namespace")
        for key, value in self.values.items():
            if isinstance(value, bool):
                value = str(value).lower()
            args.extend(["--set", f"{key}={value}"])
        return args


def cluster_addon_releases(settings: Settings) -> List[HelmRelease]:
    """Helm releases for ingress, load balancing and autoscaling"""
    return [
        HelmRelease(
            name="aws-load-balancer-controller",
            chart="eks/aws-load-balancer-controller",
            namespace="kube-system",
            values={
                "clusterName": settings.cluster_name,
                "region": settings.aws_region,
                # Service account and IRSA role come from the Pulumi stack
                "serviceAccount.create": False,
                "serviceAccount.name": "aws-load-balancer-controller",
            },
        ),
        HelmRelease(
            name="cluster-autoscaler",
            chart="autoscaler/cluster-autoscaler",
            namespace="kube-system",
            values={
                "autoDiscovery.clusterName": settings.cluster_name,
                "awsRegion": settings.aws_region,
                "rbac.serviceAccount.create": False,
                "rbac.serviceAccount.name": "cluster-autoscaler",
            },
        ),
        HelmRelease(
            name="ingress-nginx",
            chart="ingress-nginx/ingress-nginx",
            namespace="ingress-nginx",
            values={"controller.service.type": "LoadBalancer"},
            create_namespace=True,
        ),
    ]


def is_already_exists(error: Exception, graceful_errors: List[str] = ALREADY_EXISTS_ERRORS) -> bool:
    """Whether an error only says the resource is already there"""
    error_str = str(error).lower()
    return any(graceful_error in error_str for graceful_error in graceful_errors)


def check_dependencies(which=shutil.which) -> None:
    """Fail unless every required command line tool is installed"""
    logger.info("Checking dependencies...")
    missing = missing_tools(REQUIRED_TOOLS, which)
    if missing:
        raise MissingDependencyError(missing)
    logger.info("All dependencies are installed")


def setup_state_backend(settings: Settings, runner: CommandRunner) -> str:
    """
    Create the versioned S3 bucket holding Pulumi state

    Returns:
        Backend URL for the Pulumi workspace
    """
    bucket = settings.bucket_name
    logger.info("Setting up state backend in bucket %s...", bucket)

    try:
        runner.run(["aws", "s3", "mb", f"s3://{bucket}", "--region", settings.aws_region], capture=True)
    except CommandError as exc:
        if not is_already_exists(exc, BUCKET_OWNED_ERRORS):
            raise
        logger.info("Bucket %s already exists", bucket)

    runner.run([
        "aws", "s3api", "put-bucket-versioning",
        "--bucket", bucket,
        "--versioning-configuration", "Status=Enabled",
    ])
    runner.run([
        "aws", "s3api", "put-public-access-block",
        "--bucket", bucket,
        "--public-access-block-configuration",
        "BlockPublicAcls=true,IgnorePublicAcls=true,BlockPublicPolicy=true,RestrictPublicBuckets=true",
    ])

    logger.info("State backend configured: %s", settings.backend_url)
    return settings.backend_url


def select_stack(settings: Settings) -> auto.Stack:
    """Create or select the environment's stack in the project directory"""
    opts = auto.LocalWorkspaceOptions(
        env_vars={"PULUMI_BACKEND_URL": settings.backend_url},
        secrets_provider=settings.secrets_provider,
    )
    try:
        return auto.create_or_select_stack(
            stack_name=settings.stack_name,
            work_dir=str(settings.work_dir),
            opts=opts,
        )
    except auto.CommandError as exc:
        raise StackError(f"Could not select stack {settings.stack_name}: {exc}") from exc


def stack_outputs(stack: auto.Stack) -> Dict[str, Any]:
    """Stack outputs as plain values"""
    return {key: output.value for key, output in stack.outputs().items()}


def state_bucket_exists(settings: Settings, lookup_runner: Optional[CommandRunner] = None) -> bool:
    """Whether the state bucket is reachable; the lookup runs even in dry-run mode"""
    lookup_runner = lookup_runner or CommandRunner()
    return lookup_runner.succeeds(["aws", "s3api", "head-bucket", "--bucket", settings.bucket_name])


def deploy_infrastructure(settings: Settings, lookup_runner: Optional[CommandRunner] = None) -> Dict[str, Any]:
    """
    Preview and apply the Pulumi program

    In dry-run mode only the preview runs, and not even that when the
    state bucket has not been created yet.

    Args:
        settings: Deployment settings
        lookup_runner: Runner for the dry-run state bucket lookup

    Returns:
        Stack outputs after the update
    """
    logger.info("Deploying infrastructure with Pulumi (stack %s)...", settings.stack_name)
    if settings.dry_run and not state_bucket_exists(settings, lookup_runner):
        logger.info("[dry-run] state bucket %s does not exist yet, skipping pulumi preview", settings.bucket_name)
        return {}
    stack = select_stack(settings)

    try:
        stack.set_config("aws:region", auto.ConfigValue(value=settings.aws_region))
        stack.set_config("project_name", auto.ConfigValue(value=settings.project_name))
        stack.set_config("environment", auto.ConfigValue(value=settings.environment))

        stack.preview(on_output=print)
        if settings.dry_run:
            logger.info("[dry-run] skipping pulumi up")
            return stack_outputs(stack)

        result = stack.up(on_output=print)
    except auto.CommandError as exc:
        raise StackError(f"Pulumi update failed: {exc}") from exc

    logger.info("Infrastructure deployed: %s", result.summary.result)
    return {key: output.value for key, output in result.outputs.items()}


def destroy_infrastructure(settings: Settings, lookup_runner: Optional[CommandRunner] = None) -> None:
    """Tear down every resource in the stack; dry-run previews the teardown"""
    logger.warning("Destroying stack %s...", settings.stack_name)
    if settings.dry_run and not state_bucket_exists(settings, lookup_runner):
        logger.info("[dry-run] state bucket %s does not exist, nothing to destroy", settings.bucket_name)
        return
    stack = select_stack(settings)
    try:
        if settings.dry_run:
            stack.preview_destroy(on_output=print)
            logger.info("[dry-run] skipping pulumi destroy")
            return
        stack.destroy(on_output=print)
    except auto.CommandError as exc:
        raise StackError(f"Pulumi destroy failed: {exc}") from exc
    logger.info("Stack %s destroyed", settings.stack_name)


def configure_kubectl(settings: Settings, runner: CommandRunner) -> None:
    """Point kubectl at the new cluster and verify the connection"""
    logger.info("Configuring kubectl...")
    runner.run([
        "aws", "eks", "update-kubeconfig",
        "--name", settings.cluster_name,
        "--region", settings.aws_region,
    ])
    runner.run(["kubectl", "cluster-info"])
    logger.info("kubectl configured for %s", settings.cluster_name)


def install_cluster_addons(settings: Settings, runner: CommandRunner) -> None:
    """Install the load balancer controller, cluster autoscaler and NGINX ingress"""
    logger.info("Installing cluster addons...")

    for name, url in HELM_REPOS.items():
        runner.run(["helm", "repo", "add", name, url, "--force-update"])
    runner.run(["helm", "repo", "update"])

    runner.run(["kubectl", "apply", "-k", LOAD_BALANCER_CONTROLLER_CRDS])

    for release in cluster_addon_releases(settings):
        logger.info("Installing %s into %s", release.name, release.namespace)
        runner.run(release.install_args())

    logger.info("Cluster addons installed")


def wait_for_deployment(settings: Settings, runner: CommandRunner, namespace: str, deployment: str) -> None:
    runner.run([
        "kubectl", "wait", "--for=condition=available",
        f"--timeout={settings.wait_timeout}s",
        f"deployment/{deployment}", "-n", namespace,
    ])


def install_argocd(settings: Settings, runner: CommandRunner) -> str:
    """
    Install ArgoCD and expose its server

    Returns:
        The initial admin password
    """
    logger.info("Installing ArgoCD...")

    try:
        runner.run(["kubectl", "create", "namespace", "argocd"], capture=True)
    except CommandError as exc:
        if not is_already_exists(exc):
            raise
        logger.warning("ArgoCD namespace already exists")

    runner.run(["kubectl", "apply", "-n", "argocd", "-f", ARGOCD_INSTALL_MANIFEST])
    wait_for_deployment(settings, runner, "argocd", "argocd-server")
    runner.run([
        "kubectl", "patch", "svc", "argocd-server", "-n", "argocd",
        "-p", '{"spec": {"type": "LoadBalancer"}}',
    ])

    encoded = runner.output([
        "kubectl", "-n", "argocd", "get", "secret", "argocd-initial-admin-secret",
        "-o", "jsonpath={.data.password}",
    ])
    password = base64.b64decode(encoded).decode() if encoded else ""

    logger.info("ArgoCD installed")
    return password


def apply_manifests(settings: Settings, runner: CommandRunner, stage: str) -> None:
    """Apply one manifest directory and wait for its controller, if any"""
    namespace, deployment = MANIFEST_STAGES[stage]
    path = settings.manifests_dir / stage
    if not path.is_dir():
        raise DeployError(f"Manifest directory not found: {path}")

    runner.run(["kubectl", "apply", "-f", f"{path}/"])
    if deployment:
        wait_for_deployment(settings, runner, namespace, deployment)


def deploy_gitops_applications(settings: Settings, runner: CommandRunner, sleep=time.sleep) -> None:
    """Register the ArgoCD project and applications, then give them time to sync"""
    logger.info("Deploying GitOps applications...")
    apply_manifests(settings, runner, "argocd")
    if not settings.dry_run and settings.sync_wait > 0:
        logger.info("Waiting %ss for applications to sync", settings.sync_wait)
        sleep(settings.sync_wait)
    logger.info("GitOps applications deployed")


def setup_monitoring(settings: Settings, runner: CommandRunner) -> None:
    logger.info("Setting up monitoring stack...")
    apply_manifests(settings, runner, "monitoring")
    logger.info("Monitoring stack deployed")


def setup_security(settings: Settings, runner: CommandRunner) -> None:
    logger.info("Setting up security stack...")
    apply_manifests(settings, runner, "security")
    logger.info("Security stack deployed")


def load_balancer_hostname(runner: CommandRunner, namespace: str, service: str) -> str:
    """Hostname of a LoadBalancer service, raising until AWS has assigned one"""
    hostname = runner.output([
        "kubectl", "get", "svc", service, "-n", namespace,
        "-o", "jsonpath={.status.loadBalancer.ingress[0].hostname}",
    ])
    if not hostname:
        raise DeployError(f"No load balancer hostname yet for {namespace}/{service}")
    return hostname


def run_initial_tests(settings: Settings, runner: CommandRunner, sleep=time.sleep) -> Dict[str, str]:
    """
    Check node registration and resolve the public endpoints

    Returns:
        URL per service that has a load balancer hostname
    """
    logger.info("Running initial tests...")
    runner.run(["kubectl", "get", "nodes"])

    endpoints = {}
    retries = 0 if settings.dry_run else 5
    for label, (namespace, service) in ENDPOINT_SERVICES.items():
        try:
            hostname = retry_with_backoff(
                lambda: load_balancer_hostname(runner, namespace, service),
                max_retries=retries,
                initial_delay=5.0,
                sleep=sleep,
            )
        except DeployError as exc:
            logger.warning("%s endpoint unavailable: %s", label, exc)
            continue
        endpoints[label] = f"https://{hostname}"
        logger.info("%s accessible at: %s", label, endpoints[label])

    logger.info("Initial tests completed")
    return endpoints


def show_status(settings: Settings, runner: CommandRunner) -> Dict[str, Any]:
    """Print nodes and pods, and return the stack outputs"""
    runner.run(["kubectl", "get", "nodes"])
    runner.run(["kubectl", "get", "pods", "--all-namespaces"])
    return stack_outputs(select_stack(settings))


def print_summary(settings: Settings, endpoints: Dict[str, str], argocd_password: Optional[str] = None) -> None:
    """Print the post-setup summary"""
    print("=" * 44)
    print("         GitOps Platform Deployment")
    print("=" * 44)
    print(f"✅ Infrastructure: Deployed ({settings.stack_name})")
    print(f"✅ Kubernetes Cluster: {settings.cluster_name}")
    print("✅ ArgoCD: Installed")
    print("✅ Monitoring: Configured")
    print("✅ Security: Enabled")
    for label, url in endpoints.items():
        print(f"🌐 {label}: {url}")
    if argocd_password:
        print(f"🔑 ArgoCD admin password: {argocd_password}")
    print("=" * 44)
    print("Next steps:")
    print("1. Access ArgoCD UI and sync applications")
    print("2. Configure your application repositories")
    print("3. Set up CI/CD pipelines")
    print("4. Configure alerts and notifications")
    print("=" * 44)


def setup(settings: Settings, runner: CommandRunner) -> Dict[str, str]:
    """Run every setup step in order"""
    logger.info("Starting GitOps Platform setup...")

    check_dependencies()
    setup_state_backend(settings, runner)
    deploy_infrastructure(settings)
    configure_kubectl(settings, runner)
    install_cluster_addons(settings, runner)
    password = install_argocd(settings, runner)
    deploy_gitops_applications(settings, runner)
    setup_monitoring(settings, runner)
    setup_security(settings, runner)
    endpoints = run_initial_tests(settings, runner)
    print_summary(settings, endpoints, password)

    logger.info("GitOps Platform setup completed successfully!")
    return endpoints


def update(settings: Settings, runner: CommandRunner) -> None:
    """Re-apply infrastructure and every manifest directory"""
    logger.info("Updating GitOps Platform...")
    deploy_infrastructure(settings)
    for stage in MANIFEST_STAGES:
        runner.run(["kubectl", "apply", "-f", f"{settings.manifests_dir / stage}/"])
    logger.info("GitOps Platform updated")
