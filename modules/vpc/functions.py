"""
VPC Module Functions
Creates VPC, public/private subnets, NAT gateways and route tables for EKS
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def create_vpc(name: str, cidr: str, cluster_name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create VPC with DNS settings

    Args:
        name: VPC name
        cidr: VPC CIDR block
        cluster_name: EKS cluster sharing the VPC
        tags: Additional tags

    Returns:
        Dict with vpc resource and outputs
    """
    tags = tags or {}

    vpc = aws.ec2.Vpc(
        f"{name}-vpc",
        cidr_block=cidr,
        enable_dns_hostnames=True,
        enable_dns_support=True,
        tags={
            **tags,
            "Name": f"{name}-vpc",
            f"kubernetes.io/cluster/{cluster_name}": "shared",
            "Module": "vpc"
        }
    )

    return {
        "vpc": vpc,
        "vpc_id": vpc.id,
        "vpc_cidr_block": vpc.cidr_block
    }


def create_internet_gateway(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create Internet Gateway for VPC

    Args:
        name: Resource name prefix
        vpc_id: VPC ID to attach to
        tags: Additional tags

    Returns:
        Dict with igw resource and outputs
    """
    tags = tags or {}

    igw = aws.ec2.InternetGateway(
        f"{name}-igw",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-igw",
            "Module": "vpc"
        }
    )

    return {
        "igw": igw,
        "igw_id": igw.id
    }


def create_subnets(name: str, tier: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                   availability_zones: List[str], cluster_name: str,
                   tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one subnet per availability zone

    Public subnets carry the ELB role tag, private subnets the internal-ELB
    role tag, so the load balancer controller can discover them.

    Args:
        name: Resource name prefix
        tier: "public" or "private"
        vpc_id: VPC ID
        subnet_cidrs: List of CIDR blocks for subnets
        availability_zones: List of availability zones
        cluster_name: EKS cluster sharing the subnets
        tags: Additional tags

    Returns:
        Dict with subnet resources and outputs
    """
    tags = tags or {}
    public = tier == "public"
    role_tag = "kubernetes.io/role/elb" if public else "kubernetes.io/role/internal-elb"

    subnets = []
    for i, cidr in enumerate(subnet_cidrs):
        subnet = aws.ec2.Subnet(
            f"{name}-{tier}-subnet-{i+1}",
            vpc_id=vpc_id,
            cidr_block=cidr,
            availability_zone=availability_zones[i],
            map_public_ip_on_launch=public,
            tags={
                **tags,
                "Name": f"{name}-{tier}-subnet-{i+1}",
                "Type": tier,
                f"kubernetes.io/cluster/{cluster_name}": "shared",
                role_tag: "1",
                "Module": "vpc"
            }
        )
        subnets.append(subnet)

    return {
        "subnets": subnets,
        "subnet_ids": [subnet.id for subnet in subnets],
        "availability_zones": availability_zones[:len(subnet_cidrs)]
    }


def create_nat_gateways(name: str, public_subnet_ids: List[pulumi.Output[str]], single_nat_gateway: bool = True,
                        igw=None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create NAT gateways with elastic IPs in the public subnets

    Args:
        name: Resource name prefix
        public_subnet_ids: Public subnet IDs, one per AZ
        single_nat_gateway: Share one NAT gateway across all AZs
        igw: Internet gateway the NAT gateways depend on
        tags: Additional tags

    Returns:
        Dict with NAT gateway resources and outputs
    """
    tags = tags or {}
    count = 1 if single_nat_gateway else len(public_subnet_ids)
    opts = pulumi.ResourceOptions(depends_on=[igw]) if igw else None

    eips = []
    nat_gateways = []
    for i in range(count):
        eip = aws.ec2.Eip(
            f"{name}-nat-eip-{i+1}",
            domain="vpc",
            tags={
                **tags,
                "Name": f"{name}-nat-eip-{i+1}",
                "Module": "vpc"
            },
            opts=opts
        )
        nat = aws.ec2.NatGateway(
            f"{name}-nat-{i+1}",
            allocation_id=eip.id,
            subnet_id=public_subnet_ids[i],
            tags={
                **tags,
                "Name": f"{name}-nat-{i+1}",
                "Module": "vpc"
            },
            opts=opts
        )
        eips.append(eip)
        nat_gateways.append(nat)

    return {
        "eips": eips,
        "nat_gateways": nat_gateways,
        "nat_gateway_ids": [nat.id for nat in nat_gateways]
    }


def create_public_route_table(name: str, vpc_id: pulumi.Output[str], igw_id: pulumi.Output[str],
                              subnet_ids: List[pulumi.Output[str]], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create route table for public subnets

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        igw_id: Internet Gateway ID
        subnet_ids: List of subnet IDs to associate
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_table = aws.ec2.RouteTable(
        f"{name}-public-rt",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-public-rt",
            "Module": "vpc"
        }
    )

    route = aws.ec2.Route(
        f"{name}-public-route",
        route_table_id=route_table.id,
        destination_cidr_block="0.0.0.0/0",
        gateway_id=igw_id
    )

    associations = []
    for i, subnet_id in enumerate(subnet_ids):
        association = aws.ec2.RouteTableAssociation(
            f"{name}-public-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        )
        associations.append(association)

    return {
        "route_table": route_table,
        "route": route,
        "associations": associations,
        "route_table_id": route_table.id
    }


def create_private_route_tables(name: str, vpc_id: pulumi.Output[str], nat_gateway_ids: List[pulumi.Output[str]],
                                subnet_ids: List[pulumi.Output[str]], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one private route table per NAT gateway

    Subnet i routes through NAT gateway i, or through the only one when a
    single NAT gateway is shared.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        nat_gateway_ids: NAT gateway IDs
        subnet_ids: Private subnet IDs to associate
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_tables = []
    for i, nat_id in enumerate(nat_gateway_ids):
        route_table = aws.ec2.RouteTable(
            f"{name}-private-rt-{i+1}",
            vpc_id=vpc_id,
            tags={
                **tags,
                "Name": f"{name}-private-rt-{i+1}",
                "Module": "vpc"
            }
        )
        aws.ec2.Route(
            f"{name}-private-route-{i+1}",
            route_table_id=route_table.id,
            destination_cidr_block="0.0.0.0/0",
            nat_gateway_id=nat_id
        )
        route_tables.append(route_table)

    associations = []
    for i, subnet_id in enumerate(subnet_ids):
        route_table = route_tables[i % len(route_tables)]
        association = aws.ec2.RouteTableAssociation(
            f"{name}-private-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        )
        associations.append(association)

    return {
        "route_tables": route_tables,
        "associations": associations,
        "route_table_ids": [rt.id for rt in route_tables]
    }


def create_vpc_resources(name: str, cluster_name: str, vpc_cidr: str,
                         public_subnet_cidrs: List[str], private_subnet_cidrs: List[str],
                         single_nat_gateway: bool = True, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete VPC infrastructure for EKS

    Args:
        name: Resource name prefix
        cluster_name: EKS cluster name
        vpc_cidr: VPC CIDR block
        public_subnet_cidrs: List of public subnet CIDR blocks, one per AZ
        private_subnet_cidrs: List of private subnet CIDR blocks, one per AZ
        single_nat_gateway: Share one NAT gateway across all AZs
        tags: Additional tags for all resources

    Returns:
        Dict with all VPC resources and outputs
    """
    tags = tags or {}

    azs = aws.get_availability_zones(state="available")
    if len(azs.names) < len(private_subnet_cidrs):
        raise ValueError(
            f"Region has {len(azs.names)} available AZs, {len(private_subnet_cidrs)} subnets requested"
        )

    vpc_result = create_vpc(name, vpc_cidr, cluster_name, tags)
    igw_result = create_internet_gateway(name, vpc_result["vpc_id"], tags)

    public_result = create_subnets(
        name, "public", vpc_result["vpc_id"], public_subnet_cidrs, azs.names, cluster_name, tags
    )
    private_result = create_subnets(
        name, "private", vpc_result["vpc_id"], private_subnet_cidrs, azs.names, cluster_name, tags
    )

    nat_result = create_nat_gateways(
        name, public_result["subnet_ids"], single_nat_gateway, igw_result["igw"], tags
    )

    public_rt_result = create_public_route_table(
        name, vpc_result["vpc_id"], igw_result["igw_id"], public_result["subnet_ids"], tags
    )
    private_rt_result = create_private_route_tables(
        name, vpc_result["vpc_id"], nat_result["nat_gateway_ids"], private_result["subnet_ids"], tags
    )

    return {
        "vpc_id": vpc_result["vpc_id"],
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        "availability_zones": private_result["availability_zones"],
        "nat_gateway_ids": nat_result["nat_gateway_ids"],
        # Keep references to all resources for dependencies
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"],
        "_public_subnets": public_result["subnets"],
        "_private_subnets": private_result["subnets"],
        "_nat_gateways": nat_result["nat_gateways"],
        "_public_route_table": public_rt_result["route_table"],
        "_private_route_tables": private_rt_result["route_tables"]
    }
