"""
GitOps Platform - EKS, registries, database and keys
Organized by concern, wired in dependency order
"""
import pulumi
import pulumi_aws as aws
from config import get_config
from modules import (
    create_kms_resources,
    create_vpc_resources,
    create_iam_resources,
    create_irsa_resources,
    create_eks_resources,
    create_eks_addons,
    create_ecr_resources,
    create_database_resources,
    create_addons_resources,
)

config = get_config()
tags = config.common_tags
name = f"{config.project_name}-{config.environment}"
current = aws.get_caller_identity()

pulumi.log.info(f"Deploying {config.cluster_name} to {config.aws_region}")

# 1. Keys
kms = create_kms_resources(name, current.account_id, config.aws_region, tags=tags)

# 2. Network
network = create_vpc_resources(
    name=name,
    cluster_name=config.cluster_name,
    vpc_cidr=config.vpc_cidr,
    public_subnet_cidrs=config.public_subnet_cidrs,
    private_subnet_cidrs=config.private_subnet_cidrs,
    single_nat_gateway=config.single_nat_gateway,
    tags=tags
)

# 3. Cluster and node roles
iam = create_iam_resources(config.cluster_name, tags=tags)

# 4. EKS cluster and node groups
eks = create_eks_resources(
    cluster_name=config.cluster_name,
    cluster_version=config.cluster_version,
    cluster_role_arn=iam["cluster_role_arn"],
    node_group_role_arn=iam["node_group_role_arn"],
    control_plane_subnet_ids=network["public_subnet_ids"] + network["private_subnet_ids"],
    node_subnet_ids=network["private_subnet_ids"],
    node_groups=config.node_groups,
    secrets_kms_key_arn=kms["key_arns"]["eks"],
    logs_kms_key_arn=kms["key_arns"]["logs"],
    cluster_enabled_log_types=config.cluster_enabled_log_types,
    log_retention_days=config.log_retention_days,
    depends_on=[iam["_cluster_policy_attachment"]],
    tags=tags
)

# 5. IRSA roles, then managed add-ons that use them
irsa = create_irsa_resources(config.cluster_name, eks["oidc_issuer"], tags=tags)
eks_addons = create_eks_addons(
    config.cluster_name,
    eks["cluster_name"],
    node_groups=eks["_node_groups"],
    ebs_csi_role_arn=irsa["role_arns"]["ebs_csi_driver"],
    tags=tags
)

# 6. Container registries
ecr = create_ecr_resources(name, config.ecr_repository_names, kms["key_arns"]["ecr"], tags=tags)

# 7. Database
database = create_database_resources(
    name=name,
    vpc_id=network["vpc_id"],
    vpc_cidr=config.vpc_cidr,
    subnet_ids=network["private_subnet_ids"],
    kms_key_arn=kms["key_arns"]["rds"],
    db_name=config.db_name,
    username=config.db_username,
    password=config.db_password,
    engine_version=config.db_engine_version,
    instance_class=config.db_instance_class,
    allocated_storage=config.db_allocated_storage,
    max_allocated_storage=config.db_max_allocated_storage,
    backup_retention_days=config.db_backup_retention_days,
    multi_az=config.db_multi_az,
    production=config.is_production,
    tags=tags
)

# 8. Namespaces and IRSA service accounts for the Helm-installed add-ons
addons = create_addons_resources(
    cluster_name=config.cluster_name,
    cluster_name_output=eks["cluster_name"],
    region=config.aws_region,
    cluster_endpoint=eks["cluster_endpoint"],
    cluster_ca_data=eks["cluster_certificate_authority_data"],
    service_accounts=irsa["service_accounts"],
    role_arns=irsa["role_arns"],
    depends_on=eks["_node_groups"]
)

# Exports
pulumi.export("cluster_name", eks["cluster_name"])
pulumi.export("cluster_endpoint", eks["cluster_endpoint"])
pulumi.export("vpc_id", network["vpc_id"])
pulumi.export("public_subnet_ids", network["public_subnet_ids"])
pulumi.export("private_subnet_ids", network["private_subnet_ids"])
pulumi.export("ecr_repository_urls", ecr["repository_urls"])
pulumi.export("database_endpoint", database["endpoint"])
pulumi.export("irsa_role_arns", irsa["role_arns"])
pulumi.export("kms_key_arns", kms["key_arns"])
pulumi.export("platform_namespaces", addons["namespace_names"])
pulumi.export("eks_addons", list(eks_addons["addons"].keys()))
pulumi.export("kubeconfig_command",
    pulumi.Output.concat(
        "aws eks update-kubeconfig --region ", config.aws_region, " --name ", eks["cluster_name"]
    ))
