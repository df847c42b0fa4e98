"""
ECR Module Functions
Private container registries for the platform's application images
"""

import json
import pulumi_aws as aws
from typing import Dict, List, Any


def lifecycle_policy(untagged_days: int = 14, keep_tagged: int = 30) -> str:
    """
    Lifecycle policy expiring untagged images and capping tagged ones

    Args:
        untagged_days: Days after which untagged images expire
        keep_tagged: Number of most recent tagged images to keep

    Returns:
        Lifecycle policy JSON document
    """
    return json.dumps({
        "rules": [
            {
                "rulePriority": 1,
                "description": f"Expire untagged images after {untagged_days} days",
                "selection": {
                    "tagStatus": "untagged",
                    "countType": "sinceImagePushed",
                    "countUnit": "days",
                    "countNumber": untagged_days
                },
                "action": {"type": "expire"}
            },
            {
                "rulePriority": 2,
                "description": f"Keep last {keep_tagged} images",
                "selection": {
                    "tagStatus": "any",
                    "countType": "imageCountMoreThan",
                    "countNumber": keep_tagged
                },
                "action": {"type": "expire"}
            }
        ]
    })


def create_repository(name: str, repository_name: str, kms_key_arn=None,
                      tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create an ECR repository with scanning, encryption and a lifecycle policy

    Args:
        name: Resource name prefix
        repository_name: Full repository name, e.g. "gitops-platform/backend"
        kms_key_arn: KMS key for image encryption, AES256 when None
        tags: Additional tags

    Returns:
        Dict with repository resources and outputs
    """
    tags = tags or {}
    short_name = repository_name.split("/")[-1]

    if kms_key_arn is not None:
        encryption = aws.ecr.RepositoryEncryptionConfigurationArgs(
            encryption_type="KMS",
            kms_key=kms_key_arn
        )
    else:
        encryption = aws.ecr.RepositoryEncryptionConfigurationArgs(encryption_type="AES256")

    repository = aws.ecr.Repository(
        f"{name}-{short_name}-repo",
        name=repository_name,
        image_tag_mutability="MUTABLE",
        force_delete=False,
        image_scanning_configuration=aws.ecr.RepositoryImageScanningConfigurationArgs(
            scan_on_push=True
        ),
        encryption_configurations=[encryption],
        tags={
            **tags,
            "Name": repository_name,
            "Module": "ecr"
        }
    )

    policy = aws.ecr.LifecyclePolicy(
        f"{name}-{short_name}-lifecycle",
        repository=repository.name,
        policy=lifecycle_policy()
    )

    return {
        "repository": repository,
        "lifecycle_policy": policy,
        "repository_url": repository.repository_url,
        "repository_arn": repository.arn
    }


def create_ecr_resources(name: str, repository_names: List[str], kms_key_arn=None,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create all application repositories

    Args:
        name: Resource name prefix
        repository_names: Full repository names
        kms_key_arn: KMS key for image encryption
        tags: Additional tags

    Returns:
        Dict with repository URLs keyed by repository name
    """
    repositories = {
        repository_name: create_repository(name, repository_name, kms_key_arn, tags)
        for repository_name in repository_names
    }

    return {
        "repository_urls": {key: result["repository_url"] for key, result in repositories.items()},
        "repository_arns": {key: result["repository_arn"] for key, result in repositories.items()},
        "_repositories": {key: result["repository"] for key, result in repositories.items()}
    }
