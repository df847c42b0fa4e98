"""
KMS Module Functions
Customer managed keys for cluster secrets, database storage, images and logs
"""

import json
import pulumi_aws as aws
from typing import Dict, Any, List


KEY_PURPOSES = ["eks", "rds", "ecr", "logs"]


def logs_key_policy(account_id: str, region: str) -> str:
    """
    Key policy letting the account administer the key and CloudWatch Logs use it

    Args:
        account_id: AWS account ID owning the key
        region: Region of the CloudWatch Logs service principal

    Returns:
        Key policy JSON document
    """
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "EnableRootPermissions",
                "Effect": "Allow",
                "Principal": {"AWS": f"arn:aws:iam::{account_id}:root"},
                "Action": "kms:*",
                "Resource": "*"
            },
            {
                "Sid": "AllowCloudWatchLogs",
                "Effect": "Allow",
                "Principal": {"Service": f"logs.{region}.amazonaws.com"},
                "Action": [
                    "kms:Encrypt*",
                    "kms:Decrypt*",
                    "kms:ReEncrypt*",
                    "kms:GenerateDataKey*",
                    "kms:Describe*"
                ],
                "Resource": "*"
            }
        ]
    })


def create_kms_key(name: str, purpose: str, policy: str = None,
                   tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create a rotating customer managed key with an alias

    Args:
        name: Resource name prefix
        purpose: Short purpose label, used in the alias
        policy: Optional key policy JSON
        tags: Additional tags

    Returns:
        Dict with key resources and outputs
    """
    tags = tags or {}

    key = aws.kms.Key(
        f"{name}-{purpose}-kms-key",
        description=f"{purpose.upper()} encryption key for {name}",
        enable_key_rotation=True,
        deletion_window_in_days=7,
        policy=policy,
        tags={
            **tags,
            "Name": f"{name}-{purpose}",
            "Module": "kms"
        }
    )

    alias = aws.kms.Alias(
        f"{name}-{purpose}-kms-alias",
        name=f"alias/{name}-{purpose}",
        target_key_id=key.key_id
    )

    return {
        "key": key,
        "alias": alias,
        "key_arn": key.arn,
        "key_id": key.key_id
    }


def create_kms_resources(name: str, account_id: str, region: str,
                         purposes: List[str] = None,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one key per purpose

    Args:
        name: Resource name prefix
        account_id: AWS account ID
        region: AWS region
        purposes: Key purposes, defaults to KEY_PURPOSES
        tags: Additional tags

    Returns:
        Dict with key ARNs by purpose and key resources
    """
    purposes = purposes or KEY_PURPOSES

    keys = {}
    for purpose in purposes:
        policy = logs_key_policy(account_id, region) if purpose == "logs" else None
        keys[purpose] = create_kms_key(name, purpose, policy, tags)

    return {
        "key_arns": {purpose: result["key_arn"] for purpose, result in keys.items()},
        "_keys": {purpose: result["key"] for purpose, result in keys.items()}
    }
