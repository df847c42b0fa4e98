"""
Database Module Functions
RDS PostgreSQL instance in the private subnets
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def create_database_security_group(name: str, vpc_id: pulumi.Output[str], vpc_cidr: str,
                                   port: int = 5432, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Security group allowing PostgreSQL from inside the VPC only

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        vpc_cidr: VPC CIDR block allowed to connect
        port: Database port
        tags: Additional tags

    Returns:
        Dict with security group resource and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-db-sg",
        vpc_id=vpc_id,
        description="PostgreSQL access from within the VPC",
        ingress=[aws.ec2.SecurityGroupIngressArgs(
            protocol="tcp",
            from_port=port,
            to_port=port,
            cidr_blocks=[vpc_cidr],
        )],
        egress=[aws.ec2.SecurityGroupEgressArgs(
            protocol="-1",
            from_port=0,
            to_port=0,
            cidr_blocks=["0.0.0.0/0"],
        )],
        tags={
            **tags,
            "Name": f"{name}-db-sg",
            "Module": "database"
        }
    )

    return {
        "security_group": security_group,
        "security_group_id": security_group.id
    }


def create_parameter_group(name: str, engine_version: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Parameter group forcing SSL connections and logging slow statements

    Args:
        name: Resource name prefix
        engine_version: PostgreSQL version, the major version picks the family
        tags: Additional tags

    Returns:
        Dict with parameter group resource and outputs
    """
    tags = tags or {}
    family = f"postgres{engine_version.split('.')[0]}"

    parameter_group = aws.rds.ParameterGroup(
        f"{name}-db-params",
        family=family,
        parameters=[
            aws.rds.ParameterGroupParameterArgs(name="rds.force_ssl", value="1"),
            aws.rds.ParameterGroupParameterArgs(name="log_min_duration_statement", value="1000"),
        ],
        tags={
            **tags,
            "Name": f"{name}-db-params",
            "Module": "database"
        }
    )

    return {
        "parameter_group": parameter_group,
        "parameter_group_name": parameter_group.name
    }


def create_database_resources(name: str, vpc_id: pulumi.Output[str], vpc_cidr: str,
                              subnet_ids: List[pulumi.Output[str]], kms_key_arn: pulumi.Output[str],
                              db_name: str, username: str, password: pulumi.Output[str] = None,
                              engine_version: str = "16.3", instance_class: str = "db.t3.micro",
                              allocated_storage: int = 20, max_allocated_storage: int = 100,
                              backup_retention_days: int = 7, multi_az: bool = False,
                              production: bool = False, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the platform's PostgreSQL database

    Without a password the master password is generated and kept in
    Secrets Manager by RDS.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        vpc_cidr: VPC CIDR block allowed to connect
        subnet_ids: Private subnet IDs
        kms_key_arn: KMS key for storage encryption
        db_name: Initial database name
        username: Master username
        password: Master password secret, or None for an RDS-managed one
        engine_version: PostgreSQL version
        instance_class: Instance class
        allocated_storage: Initial storage in GB
        max_allocated_storage: Storage autoscaling ceiling in GB
        backup_retention_days: Automated backup retention
        multi_az: Deploy a standby in another AZ
        production: Enable deletion protection and a final snapshot
        tags: Additional tags

    Returns:
        Dict with database resources and outputs
    """
    tags = tags or {}

    subnet_group = aws.rds.SubnetGroup(
        f"{name}-db-subnet-group",
        subnet_ids=subnet_ids,
        tags={
            **tags,
            "Name": f"{name}-db-subnet-group",
            "Module": "database"
        }
    )

    sg_result = create_database_security_group(name, vpc_id, vpc_cidr, tags=tags)
    params_result = create_parameter_group(name, engine_version, tags)

    credentials = {"password": password} if password is not None else {
        "manage_master_user_password": True,
        "master_user_secret_kms_key_id": kms_key_arn
    }

    instance = aws.rds.Instance(
        f"{name}-postgres",
        identifier=f"{name}-postgres",
        engine="postgres",
        engine_version=engine_version,
        instance_class=instance_class,
        allocated_storage=allocated_storage,
        max_allocated_storage=max_allocated_storage,
        storage_type="gp3",
        storage_encrypted=True,
        kms_key_id=kms_key_arn,
        db_name=db_name,
        username=username,
        db_subnet_group_name=subnet_group.name,
        vpc_security_group_ids=[sg_result["security_group_id"]],
        parameter_group_name=params_result["parameter_group_name"],
        multi_az=multi_az,
        publicly_accessible=False,
        iam_database_authentication_enabled=True,
        backup_retention_period=backup_retention_days,
        backup_window="03:00-04:00",
        maintenance_window="mon:04:00-mon:05:00",
        copy_tags_to_snapshot=True,
        enabled_cloudwatch_logs_exports=["postgresql"],
        deletion_protection=production,
        skip_final_snapshot=not production,
        final_snapshot_identifier=f"{name}-postgres-final" if production else None,
        apply_immediately=not production,
        tags={
            **tags,
            "Name": f"{name}-postgres",
            "Module": "database"
        },
        **credentials
    )

    return {
        "endpoint": instance.endpoint,
        "address": instance.address,
        "port": instance.port,
        "database_name": instance.db_name,
        "master_user_secrets": instance.master_user_secrets,
        "_instance": instance,
        "_subnet_group": subnet_group,
        "_security_group": sg_result["security_group"],
        "_parameter_group": params_result["parameter_group"]
    }
