"""
Pulumi modules for the GitOps Platform infrastructure
Each concern exposes a create_*_resources function returning outputs and resources
"""

from .kms import create_kms_resources
from .vpc import create_vpc_resources
from .iam import create_iam_resources, create_irsa_resources
from .eks import create_eks_resources, create_eks_addons
from .ecr import create_ecr_resources
from .database import create_database_resources
from .addons import create_addons_resources

__all__ = [
    "create_kms_resources",
    "create_vpc_resources",
    "create_iam_resources",
    "create_irsa_resources",
    "create_eks_resources",
    "create_eks_addons",
    "create_ecr_resources",
    "create_database_resources",
    "create_addons_resources"
]
