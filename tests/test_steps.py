"""
Unit tests for the deployment steps
"""

import base64
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deploy import steps
from deploy.errors import CommandError, DeployError, MissingDependencyError, StackError
from deploy.settings import Settings


class AutomationError(Exception):
    """Stands in for pulumi.automation.CommandError"""


class RecordingRunner:
    """Records commands and answers output() from a prefix table"""

    def __init__(self, outputs=None, failures=None, dry_run=False):
        self.dry_run = dry_run
        self.commands = []
        self.outputs = outputs or {}
        self.failures = failures or {}

    def run(self, args, cwd=None, check=True, capture=False, input_text=None, env=None):
        args = [str(arg) for arg in args]
        self.commands.append(args)
        line = " ".join(args)
        for prefix, error in self.failures.items():
            if line.startswith(prefix):
                raise error
        return Mock(returncode=0, stdout="", stderr="")

    def output(self, args, cwd=None):
        self.run(args, cwd=cwd, capture=True)
        line = " ".join(str(arg) for arg in args)
        for prefix, value in self.outputs.items():
            if line.startswith(prefix):
                return value
        return ""

    def lines(self):
        return [" ".join(command) for command in self.commands]


class TestHelmRelease(unittest.TestCase):

    def test_install_args(self):
        release = steps.HelmRelease(
            name="ingress-nginx",
            chart="ingress-nginx/ingress-nginx",
            namespace="ingress-nginx",
            values={"controller.service.type": "LoadBalancer", "serviceAccount.create": False},
            create_namespace=True,
        )

        self.assertEqual(release.install_args(), [
            "helm", "upgrade", "--install", "ingress-nginx", "ingress-nginx/ingress-nginx",
            "-n", "ingress-nginx", "--create-namespace",
            "--set", "controller.service.type=LoadBalancer",
            "--set", "serviceAccount.create=false",
        ])

    def test_addon_releases_use_cluster_name(self):
        settings = Settings(project_name="shop", environment="prod", aws_region="eu-west-1")
        releases = {release.name: release for release in steps.cluster_addon_releases(settings)}

        self.assertEqual(set(releases), {"aws-load-balancer-controller", "cluster-autoscaler", "ingress-nginx"})
        self.assertEqual(releases["aws-load-balancer-controller"].values["clusterName"], "shop-prod-cluster")
        self.assertFalse(releases["aws-load-balancer-controller"].values["serviceAccount.create"])
        self.assertEqual(releases["cluster-autoscaler"].values["awsRegion"], "eu-west-1")


class TestDependencies(unittest.TestCase):

    def test_all_installed(self):
        steps.check_dependencies(which=lambda tool: f"/usr/bin/{tool}")

    def test_missing_tools(self):
        with self.assertRaises(MissingDependencyError) as ctx:
            steps.check_dependencies(which=lambda tool: None if tool in ("argocd", "helm") else tool)

        self.assertEqual(ctx.exception.missing, ["helm", "argocd"])


class TestStateBackend(unittest.TestCase):

    def test_creates_versioned_private_bucket(self):
        runner = RecordingRunner()
        settings = Settings()

        backend = steps.setup_state_backend(settings, runner)

        self.assertEqual(backend, "s3://gitops-platform-pulumi-state-us-west-2")
        lines = runner.lines()
        self.assertEqual(lines[0], "aws s3 mb s3://gitops-platform-pulumi-state-us-west-2 --region us-west-2")
        self.assertIn("put-bucket-versioning", lines[1])
        self.assertIn("put-public-access-block", lines[2])

    def test_existing_bucket_tolerated(self):
        error = CommandError(["aws", "s3", "mb"], 1, "BucketAlreadyOwnedByYou")
        runner = RecordingRunner(failures={"aws s3 mb": error})

        steps.setup_state_backend(Settings(state_bucket="my-state"), runner)

        self.assertEqual(len(runner.commands), 3)

    def test_other_bucket_errors_propagate(self):
        error = CommandError(["aws", "s3", "mb"], 1, "AccessDenied")
        runner = RecordingRunner(failures={"aws s3 mb": error})

        with self.assertRaises(CommandError):
            steps.setup_state_backend(Settings(), runner)

    def test_bucket_owned_by_another_account_propagates(self):
        error = CommandError(
            ["aws", "s3", "mb"], 1,
            "make_bucket failed: An error occurred (BucketAlreadyExists) when calling the CreateBucket operation",
        )
        runner = RecordingRunner(failures={"aws s3 mb": error})

        with self.assertRaises(CommandError):
            steps.setup_state_backend(Settings(state_bucket="taken"), runner)

        self.assertEqual(len(runner.commands), 1)


class TestAlreadyExists(unittest.TestCase):

    def test_kubectl_conflicts(self):
        self.assertTrue(steps.is_already_exists(Exception('namespaces "argocd" already exists')))
        self.assertTrue(steps.is_already_exists(Exception("Error from server (AlreadyExists)")))

    def test_bucket_errors(self):
        owned = Exception("An error occurred (BucketAlreadyOwnedByYou)")
        taken = Exception("An error occurred (BucketAlreadyExists)")

        self.assertTrue(steps.is_already_exists(owned, steps.BUCKET_OWNED_ERRORS))
        self.assertFalse(steps.is_already_exists(taken, steps.BUCKET_OWNED_ERRORS))


@patch('deploy.steps.auto')
class TestInfrastructure(unittest.TestCase):

    def setUp(self):
        self.stack = Mock()
        self.stack.up.return_value = Mock(
            outputs={"cluster_name": Mock(value="gitops-platform-dev-cluster")},
            summary=Mock(result="succeeded"),
        )
        self.stack.outputs.return_value = {"vpc_id": Mock(value="vpc-12345")}
        self.bucket_found = Mock(succeeds=Mock(return_value=True))
        self.bucket_missing = Mock(succeeds=Mock(return_value=False))

    def test_select_stack_uses_s3_backend(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        steps.select_stack(Settings(environment="staging", secrets_provider="awskms://alias/pulumi"))

        mock_auto.LocalWorkspaceOptions.assert_called_once_with(
            env_vars={"PULUMI_BACKEND_URL": "s3://gitops-platform-pulumi-state-us-west-2"},
            secrets_provider="awskms://alias/pulumi",
        )
        self.assertEqual(mock_auto.create_or_select_stack.call_args.kwargs["stack_name"], "staging")

    def test_deploy_sets_config_and_runs_up(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        outputs = steps.deploy_infrastructure(Settings(aws_region="eu-west-1"))

        self.assertEqual(outputs, {"cluster_name": "gitops-platform-dev-cluster"})
        config_keys = [call.args[0] for call in self.stack.set_config.call_args_list]
        self.assertEqual(config_keys, ["aws:region", "project_name", "environment"])
        mock_auto.ConfigValue.assert_any_call(value="eu-west-1")
        self.stack.preview.assert_called_once()
        self.stack.up.assert_called_once()

    def test_dry_run_only_previews(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        outputs = steps.deploy_infrastructure(Settings(dry_run=True), lookup_runner=self.bucket_found)

        self.stack.preview.assert_called_once()
        self.stack.up.assert_not_called()
        self.assertEqual(outputs, {"vpc_id": "vpc-12345"})
        self.bucket_found.succeeds.assert_called_once_with(
            ["aws", "s3api", "head-bucket", "--bucket", "gitops-platform-pulumi-state-us-west-2"]
        )

    def test_dry_run_without_state_bucket_skips_preview(self, mock_auto):
        outputs = steps.deploy_infrastructure(Settings(dry_run=True), lookup_runner=self.bucket_missing)

        self.assertEqual(outputs, {})
        mock_auto.create_or_select_stack.assert_not_called()

    def test_bucket_not_looked_up_outside_dry_run(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        steps.deploy_infrastructure(Settings(), lookup_runner=self.bucket_missing)

        self.bucket_missing.succeeds.assert_not_called()
        self.stack.up.assert_called_once()

    def test_update_failure_wrapped(self, mock_auto):
        mock_auto.CommandError = AutomationError
        mock_auto.create_or_select_stack.return_value = self.stack
        self.stack.up.side_effect = AutomationError("resource creation failed")

        with self.assertRaises(StackError):
            steps.deploy_infrastructure(Settings())

    def test_stack_selection_failure_wrapped(self, mock_auto):
        mock_auto.CommandError = AutomationError
        mock_auto.create_or_select_stack.side_effect = AutomationError("no credentials")

        with self.assertRaises(StackError):
            steps.select_stack(Settings())

    def test_destroy(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        steps.destroy_infrastructure(Settings())

        self.stack.destroy.assert_called_once()

    def test_destroy_dry_run(self, mock_auto):
        mock_auto.create_or_select_stack.return_value = self.stack

        steps.destroy_infrastructure(Settings(dry_run=True), lookup_runner=self.bucket_found)

        self.stack.preview_destroy.assert_called_once()
        self.stack.destroy.assert_not_called()

    def test_destroy_dry_run_without_state_bucket(self, mock_auto):
        steps.destroy_infrastructure(Settings(dry_run=True), lookup_runner=self.bucket_missing)

        mock_auto.create_or_select_stack.assert_not_called()

    def test_destroy_failure_wrapped(self, mock_auto):
        mock_auto.CommandError = AutomationError
        mock_auto.create_or_select_stack.return_value = self.stack
        self.stack.destroy.side_effect = AutomationError("dependency violation")

        with self.assertRaises(StackError):
            steps.destroy_infrastructure(Settings())


class TestClusterSteps(unittest.TestCase):

    def test_configure_kubectl(self):
        runner = RecordingRunner()

        steps.configure_kubectl(Settings(), runner)

        self.assertEqual(runner.lines(), [
            "aws eks update-kubeconfig --name gitops-platform-dev-cluster --region us-west-2",
            "kubectl cluster-info",
        ])

    def test_install_cluster_addons(self):
        runner = RecordingRunner()

        steps.install_cluster_addons(Settings(), runner)

        lines = runner.lines()
        self.assertEqual(sum(line.startswith("helm repo add") for line in lines), len(steps.HELM_REPOS))
        self.assertIn("helm repo update", lines)
        upgrades = [line for line in lines if line.startswith("helm upgrade --install")]
        self.assertEqual(len(upgrades), 3)
        # CRDs go in before the controller chart
        crds = lines.index(f"kubectl apply -k {steps.LOAD_BALANCER_CONTROLLER_CRDS}")
        self.assertLess(crds, lines.index(upgrades[0]))

    def test_install_argocd_returns_password(self):
        encoded = base64.b64encode(b"hunter2").decode()
        runner = RecordingRunner(outputs={"kubectl -n argocd get secret": encoded})

        password = steps.install_argocd(Settings(wait_timeout=120), runner)

        self.assertEqual(password, "hunter2")
        lines = runner.lines()
        self.assertIn(f"kubectl apply -n argocd -f {steps.ARGOCD_INSTALL_MANIFEST}", lines)
        self.assertIn(
            "kubectl wait --for=condition=available --timeout=120s deployment/argocd-server -n argocd", lines
        )

    def test_install_argocd_existing_namespace(self):
        error = CommandError(["kubectl"], 1, 'namespaces "argocd" already exists')
        runner = RecordingRunner(failures={"kubectl create namespace": error})

        self.assertEqual(steps.install_argocd(Settings(), runner), "")


class TestManifests(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.manifests = Path(self.tmp.name)
        for stage in steps.MANIFEST_STAGES:
            (self.manifests / stage).mkdir()
        self.settings = Settings(manifests_dir=self.manifests, wait_timeout=60)

    def test_monitoring_waits_for_operator(self):
        runner = RecordingRunner()

        steps.setup_monitoring(self.settings, runner)

        self.assertEqual(runner.lines(), [
            f"kubectl apply -f {self.manifests / 'monitoring'}/",
            "kubectl wait --for=condition=available --timeout=60s "
            "deployment/prometheus-stack-kube-prom-operator -n monitoring",
        ])

    def test_security_waits_for_gatekeeper(self):
        runner = RecordingRunner()

        steps.setup_security(self.settings, runner)

        self.assertIn("deployment/gatekeeper-controller-manager", runner.lines()[-1])

    def test_gitops_applications_wait_for_sync(self):
        runner = RecordingRunner()
        sleep = Mock()

        steps.deploy_gitops_applications(self.settings, runner, sleep=sleep)

        self.assertEqual(runner.lines(), [f"kubectl apply -f {self.manifests / 'argocd'}/"])
        sleep.assert_called_once_with(30)

    def test_missing_directory(self):
        settings = Settings(manifests_dir=self.manifests / "missing")

        with self.assertRaises(DeployError):
            steps.apply_manifests(settings, RecordingRunner(), "argocd")

    def test_update_applies_every_stage(self):
        runner = RecordingRunner()

        with patch('deploy.steps.deploy_infrastructure') as mock_deploy:
            steps.update(self.settings, runner)

        mock_deploy.assert_called_once_with(self.settings)
        self.assertEqual(
            runner.lines(),
            [f"kubectl apply -f {self.manifests / stage}/" for stage in steps.MANIFEST_STAGES]
        )


class TestInitialTests(unittest.TestCase):

    def test_endpoints_resolved(self):
        runner = RecordingRunner(outputs={
            "kubectl get svc argocd-server": "argocd.elb.amazonaws.com",
            "kubectl get svc prometheus-stack-grafana": "grafana.elb.amazonaws.com",
        })

        endpoints = steps.run_initial_tests(Settings(), runner, sleep=Mock())

        self.assertEqual(endpoints, {
            "ArgoCD": "https://argocd.elb.amazonaws.com",
            "Grafana": "https://grafana.elb.amazonaws.com",
        })
        self.assertEqual(runner.lines()[0], "kubectl get nodes")

    def test_missing_hostname_skipped_after_retries(self):
        runner = RecordingRunner(outputs={"kubectl get svc argocd-server": "argocd.elb.amazonaws.com"})
        sleep = Mock()

        endpoints = steps.run_initial_tests(Settings(), runner, sleep=sleep)

        self.assertEqual(list(endpoints), ["ArgoCD"])
        self.assertEqual(sleep.call_count, 5)

    def test_summary_prints_endpoints(self):
        with patch('builtins.print') as mock_print:
            steps.print_summary(Settings(), {"ArgoCD": "https://argocd.example.com"}, "hunter2")

        printed = "\n".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("ArgoCD: https://argocd.example.com", printed)
        self.assertIn("hunter2", printed)
        self.assertIn("gitops-platform-dev-cluster", printed)


class TestSetup(unittest.TestCase):

    def test_steps_run_in_order(self):
        order = []
        names = [
            "check_dependencies", "setup_state_backend", "deploy_infrastructure", "configure_kubectl",
            "install_cluster_addons", "install_argocd", "deploy_gitops_applications",
            "setup_monitoring", "setup_security", "run_initial_tests", "print_summary",
        ]
        patchers = []
        for name in names:
            patcher = patch.object(steps, name, side_effect=lambda *a, _name=name, **k: order.append(_name))
            patchers.append(patcher)
            patcher.start()
            self.addCleanup(patcher.stop)

        steps.setup(Settings(), RecordingRunner())

        self.assertEqual(order, names)

    def test_failure_stops_sequence(self):
        with patch.object(steps, "check_dependencies", side_effect=MissingDependencyError(["helm"])), \
                patch.object(steps, "setup_state_backend") as mock_backend:
            with self.assertRaises(MissingDependencyError):
                steps.setup(Settings(), RecordingRunner())

        mock_backend.assert_not_called()


if __name__ == "__main__":
    unittest.main()
