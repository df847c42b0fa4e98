"""
Configuration management for the GitOps Platform stack
"""

import pulumi
from typing import Dict, Any, List


NODE_GROUP_KEYS = ["instance_types", "desired_size", "min_size", "max_size"]

DEFAULT_NODE_GROUPS = {
    "general": {
        "instance_types": ["t3.medium"],
        "capacity_type": "ON_DEMAND",
        "desired_size": 2,
        "min_size": 1,
        "max_size": 5,
        "disk_size": 50,
    },
    "spot": {
        "instance_types": ["t3.medium", "t3a.medium"],
        "capacity_type": "SPOT",
        "desired_size": 1,
        "min_size": 0,
        "max_size": 5,
        "disk_size": 50,
    },
}


class Config:
    """Centralized configuration management for the platform stack"""

    def __init__(self):
        self.config = pulumi.Config()

        # Project
        self.project_name = self.config.get("project_name") or "gitops-platform"
        self.environment = self.config.get("environment") or "dev"
        self.aws_region = pulumi.Config("aws").get("region") or "us-west-2"

        # Cluster Configuration
        self.cluster_name = self.config.get("cluster_name") or f"{self.project_name}-{self.environment}-cluster"
        self.cluster_version = self.config.get("cluster_version") or "1.30"
        self.cluster_enabled_log_types = self.config.get_object("cluster_enabled_log_types") or [
            "api", "audit", "authenticator", "controllerManager", "scheduler"
        ]
        self.log_retention_days = self.config.get_int("log_retention_days") or 30

        # Node groups, keyed by group name
        self.node_groups: Dict[str, Dict[str, Any]] = self.config.get_object("node_groups") or DEFAULT_NODE_GROUPS

        # VPC Configuration
        self.vpc_cidr = self.config.get("vpc_cidr") or "10.0.0.0/16"
        self.public_subnet_cidrs = self.config.get_object("public_subnet_cidrs") or [
            "10.0.1.0/24", "10.0.2.0/24", "10.0.3.0/24"
        ]
        self.private_subnet_cidrs = self.config.get_object("private_subnet_cidrs") or [
            "10.0.11.0/24", "10.0.12.0/24", "10.0.13.0/24"
        ]
        single_nat = self.config.get_bool("single_nat_gateway")
        self.single_nat_gateway = True if single_nat is None else single_nat

        # Container registries
        self.ecr_repositories = self.config.get_object("ecr_repositories") or ["frontend", "backend", "worker"]

        # Database
        self.db_name = self.config.get("db_name") or "gitops"
        self.db_username = self.config.get("db_username") or "platform_admin"
        self.db_password = self.config.get_secret("db_password")
        self.db_engine_version = self.config.get("db_engine_version") or "16.3"
        self.db_instance_class = self.config.get("db_instance_class") or "db.t3.micro"
        self.db_allocated_storage = self.config.get_int("db_allocated_storage") or 20
        self.db_max_allocated_storage = self.config.get_int("db_max_allocated_storage") or 100
        self.db_backup_retention_days = self.config.get_int("db_backup_retention_days") or 7
        self.db_multi_az = self.config.get_bool("db_multi_az") or False

        # Additional tags
        self.additional_tags = self.config.get_object("tags") or {}

        self.validate()

    def validate(self):
        """Reject configurations the stack cannot be built from"""
        if not self.public_subnet_cidrs or not self.private_subnet_cidrs:
            raise ValueError("public_subnet_cidrs and private_subnet_cidrs must not be empty")
        if len(self.public_subnet_cidrs) != len(self.private_subnet_cidrs):
            raise ValueError(
                f"Expected one public and one private subnet per AZ, got "
                f"{len(self.public_subnet_cidrs)} public and {len(self.private_subnet_cidrs)} private"
            )
        for name, group in self.node_groups.items():
            missing = [key for key in NODE_GROUP_KEYS if key not in group]
            if missing:
                raise ValueError(f"Node group {name}: missing {', '.join(missing)}")
            if not group["min_size"] <= group["desired_size"] <= group["max_size"]:
                raise ValueError(
                    f"Node group {name}: expected min_size <= desired_size <= max_size, "
                    f"got {group['min_size']}/{group['desired_size']}/{group['max_size']}"
                )

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Project": self.project_name,
            "Environment": self.environment,
            "ManagedBy": "pulumi",
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def is_production(self) -> bool:
        return self.environment not in ("dev", "development")

    @property
    def availability_zone_count(self) -> int:
        return len(self.private_subnet_cidrs)

    @property
    def ecr_repository_names(self) -> List[str]:
        return [f"{self.project_name}/{name}" for name in self.ecr_repositories]


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()
