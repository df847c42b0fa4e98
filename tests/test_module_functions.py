"""
Unit tests for the Pulumi modules
Tests the function-based approach for creating resources
"""

import json
import unittest
from unittest.mock import MagicMock, Mock, patch
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from modules.kms.functions import create_kms_resources, logs_key_policy
from modules.vpc.functions import create_vpc_resources
from modules.iam.functions import (
    create_iam_resources, create_irsa_resources, irsa_trust_policy, assume_role_policy
)
from modules.eks.functions import create_eks_resources, create_eks_addons
from modules.ecr.functions import create_ecr_resources, lifecycle_policy
from modules.database.functions import create_database_resources
from modules.addons.functions import create_addons_resources, render_kubeconfig, PLATFORM_NAMESPACES


TAGS = {"Project": "gitops-platform", "Environment": "dev", "ManagedBy": "pulumi"}


class TestKmsFunctions(unittest.TestCase):
    """Test key creation per purpose"""

    def test_one_key_per_purpose(self):
        with patch('modules.kms.functions.aws') as mock_aws:
            mock_aws.kms.Key.return_value = Mock(arn="arn:aws:kms:us-west-2:123456789012:key/abc", key_id="abc")

            result = create_kms_resources("gitops-platform-dev", "123456789012", "us-west-2", tags=TAGS)

            self.assertEqual(set(result["key_arns"]), {"eks", "rds", "ecr", "logs"})
            self.assertEqual(mock_aws.kms.Key.call_count, 4)
            self.assertEqual(mock_aws.kms.Alias.call_count, 4)
            for call in mock_aws.kms.Key.call_args_list:
                self.assertTrue(call.kwargs["enable_key_rotation"])

            aliases = [call.kwargs["name"] for call in mock_aws.kms.Alias.call_args_list]
            self.assertIn("alias/gitops-platform-dev-eks", aliases)

    def test_only_logs_key_gets_policy(self):
        with patch('modules.kms.functions.aws') as mock_aws:
            create_kms_resources("gitops-platform-dev", "123456789012", "us-west-2")

            policies = {
                call.args[0]: call.kwargs["policy"] for call in mock_aws.kms.Key.call_args_list
            }
            self.assertIsNone(policies["gitops-platform-dev-eks-kms-key"])
            self.assertIsNotNone(policies["gitops-platform-dev-logs-kms-key"])

    def test_logs_key_policy_allows_regional_logs_service(self):
        policy = json.loads(logs_key_policy("123456789012", "eu-west-1"))
        principals = [statement["Principal"] for statement in policy["Statement"]]

        self.assertIn({"AWS": "arn:aws:iam::123456789012:root"}, principals)
        self.assertIn({"Service": "logs.eu-west-1.amazonaws.com"}, principals)


class TestVpcFunctions(unittest.TestCase):
    """Test VPC layout"""

    def setUp(self):
        self.aws_patcher = patch('modules.vpc.functions.aws')
        self.pulumi_patcher = patch('modules.vpc.functions.pulumi')
        self.mock_aws = self.aws_patcher.start()
        self.pulumi_patcher.start()
        self.addCleanup(self.aws_patcher.stop)
        self.addCleanup(self.pulumi_patcher.stop)

        self.mock_aws.get_availability_zones.return_value = Mock(
            names=["us-west-2a", "us-west-2b", "us-west-2c"]
        )
        self.mock_aws.ec2.Vpc.return_value = Mock(id="vpc-12345", cidr_block="10.0.0.0/16")

    def create(self, single_nat_gateway=True):
        return create_vpc_resources(
            name="gitops-platform-dev",
            cluster_name="gitops-platform-dev-cluster",
            vpc_cidr="10.0.0.0/16",
            public_subnet_cidrs=["10.0.1.0/24", "10.0.2.0/24", "10.0.3.0/24"],
            private_subnet_cidrs=["10.0.11.0/24", "10.0.12.0/24", "10.0.13.0/24"],
            single_nat_gateway=single_nat_gateway,
            tags=TAGS
        )

    def test_vpc_function_structure(self):
        """Test that VPC function returns expected structure"""
        result = self.create()

        for key in ("vpc_id", "vpc_cidr_block", "public_subnet_ids", "private_subnet_ids",
                    "availability_zones", "nat_gateway_ids", "_vpc", "_igw"):
            self.assertIn(key, result)
        self.assertEqual(len(result["public_subnet_ids"]), 3)
        self.assertEqual(len(result["private_subnet_ids"]), 3)
        self.assertEqual(result["availability_zones"], ["us-west-2a", "us-west-2b", "us-west-2c"])

    def test_subnet_role_tags(self):
        self.create()

        tags = {
            call.args[0]: call.kwargs["tags"] for call in self.mock_aws.ec2.Subnet.call_args_list
        }
        public = tags["gitops-platform-dev-public-subnet-1"]
        private = tags["gitops-platform-dev-private-subnet-1"]

        self.assertEqual(public["kubernetes.io/role/elb"], "1")
        self.assertEqual(private["kubernetes.io/role/internal-elb"], "1")
        self.assertEqual(public["kubernetes.io/cluster/gitops-platform-dev-cluster"], "shared")

    def test_single_nat_gateway_shared_by_private_subnets(self):
        result = self.create(single_nat_gateway=True)

        self.assertEqual(len(result["nat_gateway_ids"]), 1)
        self.assertEqual(len(result["_private_route_tables"]), 1)

    def test_nat_gateway_per_az(self):
        result = self.create(single_nat_gateway=False)

        self.assertEqual(len(result["nat_gateway_ids"]), 3)
        self.assertEqual(self.mock_aws.ec2.Eip.call_count, 3)
        self.assertEqual(len(result["_private_route_tables"]), 3)

    def test_not_enough_availability_zones(self):
        self.mock_aws.get_availability_zones.return_value = Mock(names=["us-west-2a"])

        with self.assertRaises(ValueError):
            self.create()


class TestIamFunctions(unittest.TestCase):
    """Test cluster roles and IRSA"""

    def test_iam_function_structure(self):
        """Test that IAM function returns expected structure"""
        with patch('modules.iam.functions.aws') as mock_aws:
            mock_role = Mock()
            mock_role.arn = "arn:aws:iam::123456789012:role/test-role"
            mock_role.name = "test-role"
            mock_aws.iam.Role.return_value = mock_role

            result = create_iam_resources(cluster_name="test-cluster", tags=TAGS)

            self.assertEqual(result["cluster_role_arn"], mock_role.arn)
            self.assertIn("cluster_role_name", result)
            self.assertIn("node_group_role_arn", result)
            self.assertIn("node_group_role_name", result)
            self.assertEqual(
                set(result["_node_policy_attachments"]),
                {"worker_policy", "cni_policy", "registry_policy", "ssm_policy"}
            )

    def test_assume_role_policy(self):
        policy = json.loads(assume_role_policy("eks.amazonaws.com"))

        self.assertEqual(policy["Statement"][0]["Principal"], {"Service": "eks.amazonaws.com"})

    def test_irsa_trust_policy_scopes_service_account(self):
        policy = json.loads(irsa_trust_policy(
            "arn:aws:iam::123456789012:oidc-provider/oidc.eks.us-west-2.amazonaws.com/id/ABC",
            "https://oidc.eks.us-west-2.amazonaws.com/id/ABC",
            "kube-system",
            "cluster-autoscaler"
        ))
        statement = policy["Statement"][0]
        conditions = statement["Condition"]["StringEquals"]

        self.assertEqual(statement["Action"], "sts:AssumeRoleWithWebIdentity")
        self.assertEqual(
            conditions["oidc.eks.us-west-2.amazonaws.com/id/ABC:sub"],
            "system:serviceaccount:kube-system:cluster-autoscaler"
        )
        self.assertEqual(conditions["oidc.eks.us-west-2.amazonaws.com/id/ABC:aud"], "sts.amazonaws.com")

    def test_irsa_resources(self):
        with patch('modules.iam.functions.aws') as mock_aws, patch('modules.iam.functions.pulumi'):
            result = create_irsa_resources("test-cluster", "https://oidc.example.com/id/ABC", tags=TAGS)

            self.assertEqual(
                set(result["role_arns"]),
                {"aws_load_balancer_controller", "cluster_autoscaler", "ebs_csi_driver"}
            )
            self.assertEqual(result["service_accounts"]["ebs_csi_driver"], ("kube-system", "ebs-csi-controller-sa"))
            mock_aws.iam.OpenIdConnectProvider.assert_called_once()
            # Inline policies for the controller and autoscaler, managed policy for EBS CSI
            self.assertEqual(mock_aws.iam.RolePolicy.call_count, 2)
            mock_aws.iam.RolePolicyAttachment.assert_called_once()


class TestEksFunctions(unittest.TestCase):
    """Test cluster, node groups and managed add-ons"""

    def test_eks_function_structure(self):
        with patch('modules.eks.functions.aws') as mock_aws, patch('modules.eks.functions.pulumi'):
            mock_aws.eks.Cluster.return_value = MagicMock()

            result = create_eks_resources(
                cluster_name="test-cluster",
                cluster_version="1.30",
                cluster_role_arn="arn:cluster-role",
                node_group_role_arn="arn:node-role",
                control_plane_subnet_ids=["subnet-1", "subnet-2"],
                node_subnet_ids=["subnet-2"],
                node_groups={
                    "general": {
                        "instance_types": ["t3.medium"], "capacity_type": "ON_DEMAND",
                        "desired_size": 2, "min_size": 1, "max_size": 5, "disk_size": 50
                    },
                    "spot": {
                        "instance_types": ["t3.medium", "t3a.medium"], "capacity_type": "SPOT",
                        "desired_size": 1, "min_size": 0, "max_size": 5
                    }
                },
                secrets_kms_key_arn="arn:kms",
                tags=TAGS
            )

            for key in ("cluster_name", "cluster_endpoint", "cluster_certificate_authority_data",
                        "oidc_issuer", "node_group_arns", "_cluster", "_node_groups"):
                self.assertIn(key, result)
            self.assertEqual(set(result["node_group_arns"]), {"general", "spot"})
            self.assertEqual(len(result["_node_groups"]), 2)

            log_group = mock_aws.cloudwatch.LogGroup.call_args
            self.assertEqual(log_group.kwargs["name"], "/aws/eks/test-cluster/cluster")
            self.assertEqual(log_group.kwargs["retention_in_days"], 30)

            spot = [
                call for call in mock_aws.eks.NodeGroup.call_args_list
                if call.args[0] == "test-cluster-spot-node-group"
            ][0]
            self.assertEqual(spot.kwargs["capacity_type"], "SPOT")
            self.assertEqual(spot.kwargs["tags"]["k8s.io/cluster-autoscaler/enabled"], "true")

    def test_addons_without_ebs_role(self):
        with patch('modules.eks.functions.aws') as mock_aws, patch('modules.eks.functions.pulumi'):
            result = create_eks_addons("test-cluster", "test-cluster", node_groups=[Mock()])

            self.assertEqual(set(result["addons"]), {"vpc_cni", "kube_proxy", "coredns"})
            self.assertEqual(mock_aws.eks.Addon.call_count, 3)

    def test_addons_with_ebs_role(self):
        with patch('modules.eks.functions.aws') as mock_aws, patch('modules.eks.functions.pulumi'):
            result = create_eks_addons("test-cluster", "test-cluster", ebs_csi_role_arn="arn:ebs-role")

            self.assertIn("ebs_csi_driver", result["addons"])
            ebs = [
                call for call in mock_aws.eks.Addon.call_args_list
                if call.kwargs["addon_name"] == "aws-ebs-csi-driver"
            ][0]
            self.assertEqual(ebs.kwargs["service_account_role_arn"], "arn:ebs-role")


class TestEcrFunctions(unittest.TestCase):
    """Test registries"""

    def test_repositories_keyed_by_name(self):
        with patch('modules.ecr.functions.aws') as mock_aws:
            result = create_ecr_resources(
                "gitops-platform-dev",
                ["gitops-platform/frontend", "gitops-platform/backend"],
                kms_key_arn="arn:kms",
                tags=TAGS
            )

            self.assertEqual(set(result["repository_urls"]), {"gitops-platform/frontend", "gitops-platform/backend"})
            self.assertEqual(mock_aws.ecr.LifecyclePolicy.call_count, 2)
            mock_aws.ecr.RepositoryEncryptionConfigurationArgs.assert_called_with(
                encryption_type="KMS", kms_key="arn:kms"
            )

    def test_aes256_without_kms_key(self):
        with patch('modules.ecr.functions.aws') as mock_aws:
            create_ecr_resources("gitops-platform-dev", ["gitops-platform/worker"])

            mock_aws.ecr.RepositoryEncryptionConfigurationArgs.assert_called_with(encryption_type="AES256")

    def test_lifecycle_policy_rules(self):
        rules = json.loads(lifecycle_policy(untagged_days=7, keep_tagged=10))["rules"]

        self.assertEqual(rules[0]["selection"]["tagStatus"], "untagged")
        self.assertEqual(rules[0]["selection"]["countNumber"], 7)
        self.assertEqual(rules[1]["selection"]["countNumber"], 10)


class TestDatabaseFunctions(unittest.TestCase):
    """Test the PostgreSQL instance"""

    def create(self, **kwargs):
        return create_database_resources(
            name="gitops-platform-dev",
            vpc_id="vpc-12345",
            vpc_cidr="10.0.0.0/16",
            subnet_ids=["subnet-1", "subnet-2"],
            kms_key_arn="arn:kms",
            db_name="gitops",
            username="platform_admin",
            tags=TAGS,
            **kwargs
        )

    def test_managed_password_by_default(self):
        with patch('modules.database.functions.aws') as mock_aws:
            result = self.create()

            instance = mock_aws.rds.Instance.call_args.kwargs
            self.assertTrue(instance["manage_master_user_password"])
            self.assertNotIn("password", instance)
            self.assertTrue(instance["storage_encrypted"])
            self.assertFalse(instance["publicly_accessible"])
            self.assertTrue(instance["skip_final_snapshot"])
            self.assertFalse(instance["deletion_protection"])
            self.assertIn("endpoint", result)
            mock_aws.rds.ParameterGroup.assert_called_once()
            self.assertEqual(mock_aws.rds.ParameterGroup.call_args.kwargs["family"], "postgres16")

    def test_explicit_password_and_production(self):
        with patch('modules.database.functions.aws') as mock_aws:
            self.create(password="s3cret", production=True)

            instance = mock_aws.rds.Instance.call_args.kwargs
            self.assertEqual(instance["password"], "s3cret")
            self.assertNotIn("manage_master_user_password", instance)
            self.assertTrue(instance["deletion_protection"])
            self.assertEqual(instance["final_snapshot_identifier"], "gitops-platform-dev-postgres-final")

    def test_security_group_allows_vpc_only(self):
        with patch('modules.database.functions.aws') as mock_aws:
            self.create()

            mock_aws.ec2.SecurityGroupIngressArgs.assert_called_once_with(
                protocol="tcp", from_port=5432, to_port=5432, cidr_blocks=["10.0.0.0/16"]
            )


class TestAddonsFunctions(unittest.TestCase):
    """Test cluster-side prerequisites"""

    def test_addons_function_structure(self):
        with patch('modules.addons.functions.k8s') as mock_k8s, patch('modules.addons.functions.pulumi'):
            result = create_addons_resources(
                cluster_name="test-cluster",
                cluster_name_output="test-cluster",
                region="us-west-2",
                cluster_endpoint="https://example.eks.amazonaws.com",
                cluster_ca_data="Y2VydA==",
                service_accounts={
                    "aws_load_balancer_controller": ("kube-system", "aws-load-balancer-controller"),
                    "cluster_autoscaler": ("kube-system", "cluster-autoscaler"),
                    "ebs_csi_driver": ("kube-system", "ebs-csi-controller-sa"),
                },
                role_arns={
                    "aws_load_balancer_controller": "arn:lbc",
                    "cluster_autoscaler": "arn:ca",
                    "ebs_csi_driver": "arn:ebs",
                }
            )

            self.assertEqual(result["namespace_names"], PLATFORM_NAMESPACES)
            self.assertEqual(
                result["service_account_names"],
                {
                    "aws_load_balancer_controller": "aws-load-balancer-controller",
                    "cluster_autoscaler": "cluster-autoscaler",
                }
            )
            mock_k8s.Provider.assert_called_once()
            self.assertEqual(mock_k8s.core.v1.Namespace.call_count, len(PLATFORM_NAMESPACES))
            self.assertEqual(mock_k8s.core.v1.ServiceAccount.call_count, 2)

            annotations = [
                call.kwargs.get("annotations") for call in mock_k8s.meta.v1.ObjectMetaArgs.call_args_list
            ]
            self.assertIn({"eks.amazonaws.com/role-arn": "arn:ca"}, annotations)

    def test_render_kubeconfig(self):
        kubeconfig = render_kubeconfig("test-cluster", "https://example", "Y2VydA==", "us-west-2")

        self.assertEqual(kubeconfig["current-context"], "test-cluster")
        self.assertEqual(kubeconfig["clusters"][0]["cluster"]["server"], "https://example")
        exec_config = kubeconfig["users"][0]["user"]["exec"]
        self.assertEqual(exec_config["command"], "aws")
        self.assertEqual(
            exec_config["args"],
            ["eks", "get-token", "--cluster-name", "test-cluster", "--region", "us-west-2"]
        )


if __name__ == "__main__":
    unittest.main()
