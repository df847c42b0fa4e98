"""
IAM Module Functions
Cluster and node roles, the cluster OIDC provider and IRSA roles for add-ons
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


# AWS EKS root CA thumbprint, identical across regions
EKS_OIDC_THUMBPRINT = "9e99a48a9960b14926bb7f3b02e22da2b0ab7280"

NODE_POLICIES = [
    ("worker", "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"),
    ("cni", "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"),
    ("registry", "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly"),
    ("ssm", "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore")
]

LOAD_BALANCER_CONTROLLER_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Action": ["iam:CreateServiceLinkedRole"],
            "Resource": "*",
            "Condition": {
                "StringEquals": {"iam:AWSServiceName": "elasticloadbalancing.amazonaws.com"}
            }
        },
        {
            "Effect": "Allow",
            "Action": [
                "ec2:Describe*",
                "ec2:GetCoipPoolUsage",
                "ec2:GetSecurityGroupsForVpc",
                "elasticloadbalancing:Describe*",
                "acm:ListCertificates",
                "acm:DescribeCertificate",
                "iam:ListServerCertificates",
                "iam:GetServerCertificate",
                "waf-regional:GetWebACL",
                "waf-regional:GetWebACLForResource",
                "waf-regional:AssociateWebACL",
                "waf-regional:DisassociateWebACL",
                "wafv2:GetWebACL",
                "wafv2:GetWebACLForResource",
                "wafv2:AssociateWebACL",
                "wafv2:DisassociateWebACL",
                "shield:GetSubscriptionState",
                "shield:DescribeProtection",
                "shield:CreateProtection",
                "shield:DeleteProtection",
                "cognito-idp:DescribeUserPoolClient"
            ],
            "Resource": "*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "ec2:AuthorizeSecurityGroupIngress",
                "ec2:RevokeSecurityGroupIngress",
                "ec2:CreateSecurityGroup",
                "ec2:DeleteSecurityGroup",
                "ec2:CreateTags",
                "ec2:DeleteTags"
            ],
            "Resource": "*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "elasticloadbalancing:CreateLoadBalancer",
                "elasticloadbalancing:CreateTargetGroup",
                "elasticloadbalancing:CreateListener",
                "elasticloadbalancing:DeleteListener",
                "elasticloadbalancing:CreateRule",
                "elasticloadbalancing:DeleteRule",
                "elasticloadbalancing:ModifyLoadBalancerAttributes",
                "elasticloadbalancing:ModifyTargetGroup",
                "elasticloadbalancing:ModifyTargetGroupAttributes",
                "elasticloadbalancing:ModifyListener",
                "elasticloadbalancing:ModifyRule",
                "elasticloadbalancing:SetIpAddressType",
                "elasticloadbalancing:SetSecurityGroups",
                "elasticloadbalancing:SetSubnets",
                "elasticloadbalancing:DeleteLoadBalancer",
                "elasticloadbalancing:DeleteTargetGroup",
                "elasticloadbalancing:RegisterTargets",
                "elasticloadbalancing:DeregisterTargets",
                "elasticloadbalancing:AddTags",
                "elasticloadbalancing:RemoveTags",
                "elasticloadbalancing:AddListenerCertificates",
                "elasticloadbalancing:RemoveListenerCertificates",
                "elasticloadbalancing:SetWebAcl"
            ],
            "Resource": "*"
        }
    ]
}

CLUSTER_AUTOSCALER_POLICY = {
    "Version": "2012-10-17",
    "Statement": [{
        "Effect": "Allow",
        "Action": [
            "autoscaling:DescribeAutoScalingGroups",
            "autoscaling:DescribeAutoScalingInstances",
            "autoscaling:DescribeLaunchConfigurations",
            "autoscaling:DescribeScalingActivities",
            "autoscaling:DescribeTags",
            "ec2:DescribeImages",
            "ec2:DescribeInstanceTypes",
            "ec2:DescribeLaunchTemplateVersions",
            "ec2:GetInstanceTypesFromInstanceRequirements",
            "eks:DescribeNodegroup",
            "autoscaling:SetDesiredCapacity",
            "autoscaling:TerminateInstanceInAutoScalingGroup"
        ],
        "Resource": "*"
    }]
}


def assume_role_policy(service: str) -> str:
    """Trust policy letting an AWS service assume a role"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": service}
        }]
    })


def irsa_trust_policy(provider_arn: str, issuer: str, namespace: str, service_account: str) -> str:
    """
    Trust policy binding a role to one Kubernetes service account

    Args:
        provider_arn: ARN of the cluster's IAM OIDC provider
        issuer: Cluster OIDC issuer URL, with or without https://
        namespace: Service account namespace
        service_account: Service account name

    Returns:
        Trust policy JSON document
    """
    issuer_host = issuer.replace("https://", "")
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Federated": provider_arn},
            "Action": "sts:AssumeRoleWithWebIdentity",
            "Condition": {
                "StringEquals": {
                    f"{issuer_host}:sub": f"system:serviceaccount:{namespace}:{service_account}",
                    f"{issuer_host}:aud": "sts.amazonaws.com"
                }
            }
        }]
    })


def create_cluster_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS cluster

    Args:
        name: Role name
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-cluster-role",
        name=f"{name}-cluster-role",
        assume_role_policy=assume_role_policy("eks.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-cluster-role",
            "Module": "iam"
        }
    )

    policy_attachment = aws.iam.RolePolicyAttachment(
        f"{name}-cluster-policy",
        policy_arn="arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
        role=role.name
    )

    return {
        "role": role,
        "policy_attachment": policy_attachment,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_node_group_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS node groups

    Args:
        name: Role name prefix
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-ng-role",
        name=f"{name}-ng-role",
        assume_role_policy=assume_role_policy("ec2.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-node-group-role",
            "Module": "iam"
        }
    )

    policy_attachments = {}
    for policy_name, policy_arn in NODE_POLICIES:
        attachment = aws.iam.RolePolicyAttachment(
            f"{name}-node-{policy_name}-policy",
            policy_arn=policy_arn,
            role=role.name
        )
        policy_attachments[f"{policy_name}_policy"] = attachment

    return {
        "role": role,
        "policy_attachments": policy_attachments,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_oidc_provider(name: str, oidc_issuer: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Register the cluster OIDC issuer with IAM

    EKS creates the issuer but does not register it, and IRSA needs it registered.

    Args:
        name: Resource name prefix
        oidc_issuer: Cluster OIDC issuer URL
        tags: Additional tags

    Returns:
        Dict with provider resource and outputs
    """
    tags = tags or {}

    provider = aws.iam.OpenIdConnectProvider(
        f"{name}-oidc-provider",
        client_id_lists=["sts.amazonaws.com"],
        thumbprint_lists=[EKS_OIDC_THUMBPRINT],
        url=oidc_issuer,
        tags={
            **tags,
            "Name": f"{name}-oidc-provider",
            "Module": "iam"
        }
    )

    return {
        "provider": provider,
        "provider_arn": provider.arn,
        "issuer": oidc_issuer
    }


def create_irsa_role(name: str, role_name: str, provider_arn: pulumi.Output[str], oidc_issuer: pulumi.Output[str],
                     namespace: str, service_account: str, policy_document: Dict[str, Any] = None,
                     managed_policy_arns: List[str] = None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create an IAM role assumable by one Kubernetes service account

    Args:
        name: Resource name prefix
        role_name: Short role name, e.g. "cluster-autoscaler"
        provider_arn: ARN of the cluster OIDC provider
        oidc_issuer: Cluster OIDC issuer URL
        namespace: Service account namespace
        service_account: Service account name
        policy_document: Optional inline policy
        managed_policy_arns: Optional managed policies to attach
        tags: Additional tags

    Returns:
        Dict with role resources and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-{role_name}-irsa-role",
        assume_role_policy=pulumi.Output.all(provider_arn, oidc_issuer).apply(
            lambda args: irsa_trust_policy(args[0], args[1], namespace, service_account)
        ),
        tags={
            **tags,
            "Name": f"{name}-{role_name}",
            "ServiceAccount": f"{namespace}/{service_account}",
            "Module": "iam"
        }
    )

    inline_policy = None
    if policy_document:
        inline_policy = aws.iam.RolePolicy(
            f"{name}-{role_name}-irsa-policy",
            role=role.id,
            policy=json.dumps(policy_document)
        )

    attachments = []
    for i, policy_arn in enumerate(managed_policy_arns or []):
        attachments.append(aws.iam.RolePolicyAttachment(
            f"{name}-{role_name}-irsa-attach-{i+1}",
            role=role.name,
            policy_arn=policy_arn
        ))

    return {
        "role": role,
        "inline_policy": inline_policy,
        "attachments": attachments,
        "role_arn": role.arn,
        "namespace": namespace,
        "service_account": service_account
    }


def create_iam_resources(cluster_name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM roles needed before the cluster exists

    Args:
        cluster_name: EKS cluster name
        tags: Additional tags

    Returns:
        Dict with all IAM resources and outputs
    """
    tags = tags or {}

    cluster_role_result = create_cluster_role(cluster_name, tags)
    node_role_result = create_node_group_role(cluster_name, tags)

    return {
        "cluster_role_arn": cluster_role_result["role_arn"],
        "cluster_role_name": cluster_role_result["role_name"],
        "node_group_role_arn": node_role_result["role_arn"],
        "node_group_role_name": node_role_result["role_name"],
        # Keep references to resources for dependencies
        "_cluster_role": cluster_role_result["role"],
        "_node_role": node_role_result["role"],
        "_cluster_policy_attachment": cluster_role_result["policy_attachment"],
        "_node_policy_attachments": node_role_result["policy_attachments"]
    }


def create_irsa_resources(cluster_name: str, oidc_issuer: pulumi.Output[str],
                          tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the OIDC provider and IRSA roles for the cluster add-ons

    Args:
        cluster_name: EKS cluster name
        oidc_issuer: Cluster OIDC issuer URL
        tags: Additional tags

    Returns:
        Dict with role ARNs keyed by add-on and resource references
    """
    tags = tags or {}

    oidc_result = create_oidc_provider(cluster_name, oidc_issuer, tags)
    provider_arn = oidc_result["provider_arn"]

    roles = {
        "aws_load_balancer_controller": create_irsa_role(
            cluster_name, "aws-load-balancer-controller", provider_arn, oidc_issuer,
            "kube-system", "aws-load-balancer-controller",
            policy_document=LOAD_BALANCER_CONTROLLER_POLICY, tags=tags
        ),
        "cluster_autoscaler": create_irsa_role(
            cluster_name, "cluster-autoscaler", provider_arn, oidc_issuer,
            "kube-system", "cluster-autoscaler",
            policy_document=CLUSTER_AUTOSCALER_POLICY, tags=tags
        ),
        "ebs_csi_driver": create_irsa_role(
            cluster_name, "ebs-csi-driver", provider_arn, oidc_issuer,
            "kube-system", "ebs-csi-controller-sa",
            managed_policy_arns=["arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy"], tags=tags
        )
    }

    return {
        "oidc_provider_arn": provider_arn,
        "role_arns": {key: result["role_arn"] for key, result in roles.items()},
        "service_accounts": {
            key: (result["namespace"], result["service_account"]) for key, result in roles.items()
        },
        "_oidc_provider": oidc_result["provider"],
        "_roles": {key: result["role"] for key, result in roles.items()}
    }
