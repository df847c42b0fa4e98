"""
EKS Module Functions
Creates the EKS cluster, its control plane log group, managed node groups and add-ons
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def create_cloudwatch_log_group(name: str, retention_days: int = 30, kms_key_arn: pulumi.Output[str] = None,
                                tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create CloudWatch log group for the EKS control plane

    EKS writes to /aws/eks/<cluster>/cluster; creating it first keeps
    retention and encryption under our control.

    Args:
        name: Cluster name
        retention_days: Log retention in days
        kms_key_arn: Optional KMS key for log encryption
        tags: Additional tags

    Returns:
        Dict with log group resource and outputs
    """
    tags = tags or {}

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-eks-log-group",
        name=f"/aws/eks/{name}/cluster",
        retention_in_days=retention_days,
        kms_key_id=kms_key_arn,
        tags={
            **tags,
            "Name": f"{name}-eks-log-group",
            "Module": "eks"
        }
    )

    return {
        "log_group": log_group,
        "log_group_name": log_group.name
    }


def create_eks_cluster(name: str, version: str, role_arn: pulumi.Output[str],
                       subnet_ids: List[pulumi.Output[str]], kms_key_arn: pulumi.Output[str],
                       enabled_log_types: List[str] = None,
                       endpoint_private_access: bool = True,
                       endpoint_public_access: bool = True,
                       public_access_cidrs: List[str] = None,
                       depends_on: List[Any] = None,
                       tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS cluster

    Args:
        name: Cluster name
        version: Kubernetes version
        role_arn: IAM role ARN for cluster
        subnet_ids: Subnets for the control plane ENIs
        kms_key_arn: KMS key ARN for secret encryption
        enabled_log_types: List of enabled log types
        endpoint_private_access: Enable private API endpoint
        endpoint_public_access: Enable public API endpoint
        public_access_cidrs: List of CIDRs for public access
        depends_on: Resources the cluster must wait for
        tags: Additional tags

    Returns:
        Dict with cluster resource and outputs
    """
    tags = tags or {}
    enabled_log_types = enabled_log_types or ["api", "audit", "authenticator"]
    public_access_cidrs = public_access_cidrs or ["0.0.0.0/0"]

    cluster = aws.eks.Cluster(
        f"{name}-cluster",
        name=name,
        version=version,
        role_arn=role_arn,
        vpc_config=aws.eks.ClusterVpcConfigArgs(
            subnet_ids=subnet_ids,
            endpoint_private_access=endpoint_private_access,
            endpoint_public_access=endpoint_public_access,
            public_access_cidrs=public_access_cidrs
        ),
        access_config=aws.eks.ClusterAccessConfigArgs(
            authentication_mode="API_AND_CONFIG_MAP",
            bootstrap_cluster_creator_admin_permissions=True
        ),
        enabled_cluster_log_types=enabled_log_types,
        encryption_config=aws.eks.ClusterEncryptionConfigArgs(
            provider=aws.eks.ClusterEncryptionConfigProviderArgs(
                key_arn=kms_key_arn
            ),
            resources=["secrets"]
        ),
        tags={
            **tags,
            "Name": f"{name}-cluster",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=depends_on or [])
    )

    return {
        "cluster": cluster,
        "cluster_id": cluster.id,
        "cluster_arn": cluster.arn,
        "cluster_endpoint": cluster.endpoint,
        "cluster_version": cluster.version,
        "cluster_certificate_authority_data": cluster.certificate_authority.data,
        "oidc_issuer": cluster.identities[0].oidcs[0].issuer
    }


def create_node_group(name: str, group_name: str, cluster_name: pulumi.Output[str], role_arn: pulumi.Output[str],
                      subnet_ids: List[pulumi.Output[str]], instance_types: List[str],
                      desired_size: int, max_size: int, min_size: int,
                      disk_size: int, capacity_type: str = "ON_DEMAND",
                      tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS managed node group

    Args:
        name: Cluster name, used as resource prefix
        group_name: Node group name, e.g. "general"
        cluster_name: EKS cluster name output
        role_arn: IAM role ARN for node group
        subnet_ids: List of subnet IDs
        instance_types: List of EC2 instance types
        desired_size: Desired number of nodes
        max_size: Maximum number of nodes
        min_size: Minimum number of nodes
        disk_size: EBS volume size in GB
        capacity_type: Capacity type (ON_DEMAND or SPOT)
        tags: Additional tags

    Returns:
        Dict with node group resource and outputs
    """
    tags = tags or {}

    node_group = aws.eks.NodeGroup(
        f"{name}-{group_name}-node-group",
        cluster_name=cluster_name,
        node_group_name=f"{name}-{group_name}",
        node_role_arn=role_arn,
        subnet_ids=subnet_ids,
        capacity_type=capacity_type,
        instance_types=instance_types,
        disk_size=disk_size,
        scaling_config=aws.eks.NodeGroupScalingConfigArgs(
            desired_size=desired_size,
            max_size=max_size,
            min_size=min_size
        ),
        update_config=aws.eks.NodeGroupUpdateConfigArgs(
            max_unavailable_percentage=25
        ),
        labels={
            "node-group": group_name,
            "capacity-type": capacity_type.lower()
        },
        tags={
            **tags,
            "Name": f"{name}-{group_name}-node-group",
            # Cluster autoscaler auto-discovery
            f"k8s.io/cluster-autoscaler/{name}": "owned",
            "k8s.io/cluster-autoscaler/enabled": "true",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(ignore_changes=["scalingConfig.desiredSize"])
    )

    return {
        "node_group": node_group,
        "node_group_arn": node_group.arn,
        "node_group_status": node_group.status
    }


def create_eks_addons(name: str, cluster_name: pulumi.Output[str],
                      node_groups: List[Any] = None,
                      ebs_csi_role_arn: pulumi.Output[str] = None,
                      tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS managed add-ons

    Args:
        name: Cluster name
        cluster_name: EKS cluster name output
        node_groups: Node groups that must exist before CoreDNS and EBS CSI
        ebs_csi_role_arn: IRSA role for the EBS CSI driver, skipped when None
        tags: Additional tags

    Returns:
        Dict with addon resources
    """
    tags = tags or {}
    after_nodes = pulumi.ResourceOptions(depends_on=node_groups or [])

    def addon(addon_name: str, opts: pulumi.ResourceOptions = None, **kwargs):
        return aws.eks.Addon(
            f"{name}-{addon_name}-addon",
            cluster_name=cluster_name,
            addon_name=addon_name,
            resolve_conflicts_on_create="OVERWRITE",
            resolve_conflicts_on_update="OVERWRITE",
            tags={
                **tags,
                "Name": f"{name}-{addon_name}-addon",
                "Module": "eks"
            },
            opts=opts,
            **kwargs
        )

    addons = {
        "vpc_cni": addon("vpc-cni"),
        "kube_proxy": addon("kube-proxy"),
        "coredns": addon("coredns", opts=after_nodes)
    }
    if ebs_csi_role_arn is not None:
        addons["ebs_csi_driver"] = addon(
            "aws-ebs-csi-driver", opts=after_nodes, service_account_role_arn=ebs_csi_role_arn
        )

    return {"addons": addons}


def create_eks_resources(cluster_name: str, cluster_version: str,
                         cluster_role_arn: pulumi.Output[str], node_group_role_arn: pulumi.Output[str],
                         control_plane_subnet_ids: List[pulumi.Output[str]],
                         node_subnet_ids: List[pulumi.Output[str]],
                         node_groups: Dict[str, Dict[str, Any]],
                         secrets_kms_key_arn: pulumi.Output[str],
                         logs_kms_key_arn: pulumi.Output[str] = None,
                         cluster_enabled_log_types: List[str] = None,
                         log_retention_days: int = 30,
                         depends_on: List[Any] = None,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the EKS cluster with its log group and node groups

    Add-ons are created separately by create_eks_addons once the IRSA
    roles, which need the cluster's OIDC issuer, exist.

    Args:
        cluster_name: EKS cluster name
        cluster_version: Kubernetes version
        cluster_role_arn: IAM role ARN for cluster
        node_group_role_arn: IAM role ARN for node groups
        control_plane_subnet_ids: Subnets for the control plane
        node_subnet_ids: Subnets for worker nodes
        node_groups: Node group settings keyed by group name
        secrets_kms_key_arn: KMS key for secret encryption
        logs_kms_key_arn: KMS key for control plane logs
        cluster_enabled_log_types: List of enabled log types
        log_retention_days: Log retention in days
        depends_on: Resources the cluster must wait for
        tags: Additional tags

    Returns:
        Dict with all EKS resources and outputs
    """
    tags = tags or {}

    log_group_result = create_cloudwatch_log_group(cluster_name, log_retention_days, logs_kms_key_arn, tags)

    cluster_result = create_eks_cluster(
        name=cluster_name,
        version=cluster_version,
        role_arn=cluster_role_arn,
        subnet_ids=control_plane_subnet_ids,
        kms_key_arn=secrets_kms_key_arn,
        enabled_log_types=cluster_enabled_log_types,
        depends_on=[log_group_result["log_group"], *(depends_on or [])],
        tags=tags
    )

    node_group_results = {}
    for group_name, group in node_groups.items():
        node_group_results[group_name] = create_node_group(
            name=cluster_name,
            group_name=group_name,
            cluster_name=cluster_result["cluster"].name,
            role_arn=node_group_role_arn,
            subnet_ids=node_subnet_ids,
            instance_types=group["instance_types"],
            desired_size=group["desired_size"],
            max_size=group["max_size"],
            min_size=group["min_size"],
            disk_size=group.get("disk_size", 50),
            capacity_type=group.get("capacity_type", "ON_DEMAND"),
            tags=tags
        )

    return {
        "cluster_name": cluster_result["cluster"].name,
        "cluster_id": cluster_result["cluster_id"],
        "cluster_arn": cluster_result["cluster_arn"],
        "cluster_endpoint": cluster_result["cluster_endpoint"],
        "cluster_version_output": cluster_result["cluster_version"],
        "cluster_certificate_authority_data": cluster_result["cluster_certificate_authority_data"],
        "oidc_issuer": cluster_result["oidc_issuer"],
        "node_group_arns": {key: result["node_group_arn"] for key, result in node_group_results.items()},
        # Keep references to resources for dependencies
        "_log_group": log_group_result["log_group"],
        "_cluster": cluster_result["cluster"],
        "_node_groups": [result["node_group"] for result in node_group_results.values()]
    }
