"""
Addons Module Functions
Cluster-side objects the Helm-installed add-ons and ArgoCD expect to exist
"""

import json
import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, List, Tuple, Any


PLATFORM_NAMESPACES = ["argocd", "monitoring", "ingress-nginx"]


def kubeconfig_exec_args(cluster_name: str, region: str) -> List[str]:
    """Arguments for `aws` that mint a cluster token"""
    return ["eks", "get-token", "--cluster-name", cluster_name, "--region", region]


def create_kubernetes_provider(name: str, cluster_name: pulumi.Output[str], region: str,
                               cluster_endpoint: pulumi.Output[str],
                               cluster_ca_data: pulumi.Output[str],
                               depends_on: List[Any] = None) -> k8s.Provider:
    """
    Create Kubernetes provider for the EKS cluster

    Args:
        name: Provider name prefix
        cluster_name: EKS cluster name output
        region: AWS region
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data (base64)
        depends_on: Resources that must exist before talking to the cluster

    Returns:
        Kubernetes provider instance
    """
    return k8s.Provider(
        f"{name}-k8s-provider",
        kubeconfig=pulumi.Output.all(cluster_name, cluster_endpoint, cluster_ca_data).apply(
            lambda args: json.dumps(render_kubeconfig(args[0], args[1], args[2], region))
        ),
        opts=pulumi.ResourceOptions(depends_on=depends_on or [])
    )


def render_kubeconfig(cluster_name: str, endpoint: str, ca_data: str, region: str) -> Dict[str, Any]:
    """
    Build a kubeconfig that authenticates through `aws eks get-token`

    Args:
        cluster_name: EKS cluster name
        endpoint: API server endpoint
        ca_data: Base64 CA certificate data
        region: AWS region

    Returns:
        Kubeconfig as a dict
    """
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {"server": endpoint, "certificate-authority-data": ca_data}
        }],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": cluster_name}
        }],
        "current-context": cluster_name,
        "users": [{
            "name": cluster_name,
            "user": {
                "exec": {
                    "apiVersion": "client.authentication.k8s.io/v1beta1",
                    "command": "aws",
                    "args": kubeconfig_exec_args(cluster_name, region)
                }
            }
        }]
    }


def create_namespaces(name: str, provider: k8s.Provider, namespaces: List[str] = None) -> Dict[str, Any]:
    """
    Create the namespaces the platform components are installed into

    Args:
        name: Resource name prefix
        provider: Kubernetes provider
        namespaces: Namespace names, defaults to PLATFORM_NAMESPACES

    Returns:
        Dict with namespace resources keyed by name
    """
    namespaces = namespaces or PLATFORM_NAMESPACES

    resources = {}
    for namespace in namespaces:
        resources[namespace] = k8s.core.v1.Namespace(
            f"{name}-{namespace}-namespace",
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name=namespace,
                labels={
                    "name": namespace,
                    "managed-by": "pulumi"
                }
            ),
            opts=pulumi.ResourceOptions(provider=provider)
        )

    return {
        "namespaces": resources,
        "namespace_names": list(namespaces)
    }


def create_irsa_service_account(name: str, provider: k8s.Provider, namespace: str, service_account: str,
                                role_arn: pulumi.Output[str]) -> k8s.core.v1.ServiceAccount:
    """
    Create a service account bound to an IAM role through IRSA

    Args:
        name: Resource name prefix
        provider: Kubernetes provider
        namespace: Service account namespace
        service_account: Service account name
        role_arn: IAM role the pods of this account assume

    Returns:
        ServiceAccount resource
    """
    return k8s.core.v1.ServiceAccount(
        f"{name}-{service_account}-sa",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=service_account,
            namespace=namespace,
            annotations={"eks.amazonaws.com/role-arn": role_arn},
            labels={
                "app.kubernetes.io/name": service_account,
                "managed-by": "pulumi"
            }
        ),
        opts=pulumi.ResourceOptions(provider=provider)
    )


def create_addons_resources(cluster_name: str, cluster_name_output: pulumi.Output[str], region: str,
                            cluster_endpoint: pulumi.Output[str], cluster_ca_data: pulumi.Output[str],
                            service_accounts: Dict[str, Tuple[str, str]],
                            role_arns: Dict[str, pulumi.Output[str]],
                            depends_on: List[Any] = None) -> Dict[str, Any]:
    """
    Create cluster-side prerequisites for the Helm-installed add-ons

    Args:
        cluster_name: EKS cluster name
        cluster_name_output: EKS cluster name output, ties the provider to the cluster
        region: AWS region
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data
        service_accounts: (namespace, name) keyed by add-on
        role_arns: IRSA role ARNs keyed by add-on
        depends_on: Resources that must exist before talking to the cluster

    Returns:
        Dict with namespace and service account resources
    """
    provider = create_kubernetes_provider(
        cluster_name, cluster_name_output, region, cluster_endpoint, cluster_ca_data, depends_on
    )

    namespace_result = create_namespaces(cluster_name, provider)

    accounts = {}
    for key, (namespace, service_account) in service_accounts.items():
        # EBS CSI's account is owned by its managed add-on
        if namespace != "kube-system" or key == "ebs_csi_driver":
            continue
        accounts[key] = create_irsa_service_account(
            cluster_name, provider, namespace, service_account, role_arns[key]
        )

    return {
        "namespace_names": namespace_result["namespace_names"],
        "service_account_names": {key: service_accounts[key][1] for key in accounts},
        "_k8s_provider": provider,
        "_namespaces": namespace_result["namespaces"],
        "_service_accounts": accounts
    }
