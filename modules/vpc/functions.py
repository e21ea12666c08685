"""
VPC Module Functions
Creates VPC, public/private subnets, NAT, route tables and security groups
for the LiveKit EKS cluster, including the SIP trunk security group
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any, Tuple


def parse_port_range(port_range: str) -> Tuple[int, int]:
    """
    Parse a "start-end" port range

    Args:
        port_range: Range such as "10000-20000" or a single port "5060"

    Returns:
        Tuple of (from_port, to_port)
    """
    parts = str(port_range).strip().split("-")
    if len(parts) == 1:
        parts = [parts[0], parts[0]]
    if len(parts) != 2 or not all(p.strip().isdigit() for p in parts):
        raise ValueError(f"Invalid port range: {port_range!r}")

    start, end = int(parts[0]), int(parts[1])
    if not 0 < start <= end <= 65535:
        raise ValueError(f"Invalid port range: {port_range!r}")
    return start, end


def create_vpc(name: str, cidr: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create VPC with DNS settings

    Args:
        name: VPC name
        cidr: VPC CIDR block
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
            f"kubernetes.io/cluster/{name}": "shared",
            "Module": "vpc"
        }
    )

    return {
        "vpc": vpc,
        "vpc_id": vpc.id,
        "vpc_cidr_block": vpc.cidr_block
    }


def create_internet_gateway(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
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


def _create_subnets(name: str, kind: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                    availability_zones: List[str], role_tag: str, public: bool,
                    tags: Dict[str, str]) -> Dict[str, Any]:
    subnets = []
    for i, cidr in enumerate(subnet_cidrs):
        subnet = aws.ec2.Subnet(
            f"{name}-{kind}-subnet-{i+1}",
            vpc_id=vpc_id,
            cidr_block=cidr,
            availability_zone=availability_zones[i % len(availability_zones)],
            map_public_ip_on_launch=public,
            tags={
                **tags,
                "Name": f"{name}-{kind}-subnet-{i+1}",
                "Type": kind,
                f"kubernetes.io/cluster/{name}": "shared",
                role_tag: "1",
                "Module": "vpc"
            }
        )
        subnets.append(subnet)

    return {
        "subnets": subnets,
        "subnet_ids": [subnet.id for subnet in subnets],
        "availability_zones": [availability_zones[i % len(availability_zones)] for i in range(len(subnet_cidrs))]
    }


def create_public_subnets(name: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                         availability_zones: List[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create public subnets, tagged for internet-facing load balancers

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        subnet_cidrs: List of CIDR blocks for subnets
        availability_zones: List of availability zones
        tags: Additional tags

    Returns:
        Dict with subnet resources and outputs
    """
    return _create_subnets(name, "public", vpc_id, subnet_cidrs, availability_zones,
                           "kubernetes.io/role/elb", True, tags or {})


def create_private_subnets(name: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                          availability_zones: List[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create private subnets, tagged for internal load balancers

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        subnet_cidrs: List of CIDR blocks for subnets
        availability_zones: List of availability zones
        tags: Additional tags

    Returns:
        Dict with subnet resources and outputs
    """
    return _create_subnets(name, "private", vpc_id, subnet_cidrs, availability_zones,
                           "kubernetes.io/role/internal-elb", False, tags or {})


def create_nat_gateways(name: str, public_subnet_ids: List[pulumi.Output[str]], single_nat_gateway: bool = True,
                       igw=None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create NAT gateways in the public subnets

    Args:
        name: Resource name prefix
        public_subnet_ids: Public subnets to place the gateways in
        single_nat_gateway: Share one gateway across all private subnets
        igw: Internet gateway dependency
        tags: Additional tags

    Returns:
        Dict with NAT gateway resources and ids
    """
    tags = tags or {}
    opts = pulumi.ResourceOptions(depends_on=[igw]) if igw else None

    subnet_ids = public_subnet_ids[:1] if single_nat_gateway else public_subnet_ids
    gateways = []
    for i, subnet_id in enumerate(subnet_ids):
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
        gateway = aws.ec2.NatGateway(
            f"{name}-nat-{i+1}",
            allocation_id=eip.id,
            subnet_id=subnet_id,
            tags={
                **tags,
                "Name": f"{name}-nat-{i+1}",
                "Module": "vpc"
            },
            opts=opts
        )
        gateways.append(gateway)

    return {
        "nat_gateways": gateways,
        "nat_gateway_ids": [gateway.id for gateway in gateways]
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
    Create one route table per private subnet, routed through a NAT gateway

    With a single NAT gateway every private subnet shares it; otherwise
    subnet i uses gateway i.
    """
    tags = tags or {}

    route_tables = []
    associations = []
    for i, subnet_id in enumerate(subnet_ids):
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
            nat_gateway_id=nat_gateway_ids[i % len(nat_gateway_ids)]
        )
        associations.append(aws.ec2.RouteTableAssociation(
            f"{name}-private-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        ))
        route_tables.append(route_table)

    return {
        "route_tables": route_tables,
        "associations": associations,
        "route_table_ids": [rt.id for rt in route_tables]
    }


def create_cluster_security_group(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group for EKS cluster

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-cluster-sg",
        name_prefix=f"{name}-cluster-",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-cluster-sg",
            "Module": "vpc"
        }
    )

    egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-egress",
        type="egress",
        from_port=0,
        to_port=65535,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    return {
        "security_group": security_group,
        "egress_rule": egress_rule,
        "security_group_id": security_group.id
    }


def create_node_security_group(name: str, vpc_id: pulumi.Output[str], cluster_sg_id: pulumi.Output[str],
                              tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group for EKS node group

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        cluster_sg_id: Cluster security group ID
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-node-sg",
        name_prefix=f"{name}-node-",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-node-sg",
            f"kubernetes.io/cluster/{name}": "owned",
            "Module": "vpc"
        }
    )

    # Node to node
    node_ingress_self = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-self",
        type="ingress",
        from_port=0,
        to_port=65535,
        protocol="-1",
        self=True,
        security_group_id=security_group.id
    )

    # Control plane to kubelets and webhooks
    node_ingress_cluster = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-cluster",
        type="ingress",
        from_port=1025,
        to_port=65535,
        protocol="tcp",
        source_security_group_id=cluster_sg_id,
        security_group_id=security_group.id
    )

    node_egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-node-egress",
        type="egress",
        from_port=0,
        to_port=65535,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    # Nodes to API server
    cluster_ingress_node = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-ingress-node",
        type="ingress",
        from_port=443,
        to_port=443,
        protocol="tcp",
        source_security_group_id=security_group.id,
        security_group_id=cluster_sg_id
    )

    return {
        "security_group": security_group,
        "node_ingress_self": node_ingress_self,
        "node_ingress_cluster": node_ingress_cluster,
        "node_egress_rule": node_egress_rule,
        "cluster_ingress_node": cluster_ingress_node,
        "security_group_id": security_group.id
    }


def create_sip_security_group(name: str, vpc_id: pulumi.Output[str], signaling_cidrs: List[str],
                             media_cidrs: List[str], sip_port: int = 5060,
                             rtp_port_range: str = "10000-20000",
                             tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group admitting SIP trunk traffic to the nodes

    Signalling (TCP and UDP on the SIP port) is accepted from the trunk
    provider's signalling ranges, RTP media from its media ranges.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        signaling_cidrs: CIDRs allowed to reach the SIP port
        media_cidrs: CIDRs allowed to reach the RTP range
        sip_port: SIP signalling port
        rtp_port_range: RTP port range, "start-end"
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}
    rtp_from, rtp_to = parse_port_range(rtp_port_range)

    security_group = aws.ec2.SecurityGroup(
        f"{name}-sip-sg",
        name=f"{name}-sip-sg",
        description="SIP trunk signalling and media",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-sip-sg",
            "Module": "vpc"
        }
    )

    rules = {}
    for protocol in ("udp", "tcp"):
        rules[f"sip_{protocol}"] = aws.ec2.SecurityGroupRule(
            f"{name}-sip-{protocol}",
            type="ingress",
            from_port=sip_port,
            to_port=sip_port,
            protocol=protocol,
            cidr_blocks=signaling_cidrs,
            description=f"SIP signalling ({protocol.upper()})",
            security_group_id=security_group.id
        )

    if media_cidrs:
        rules["rtp"] = aws.ec2.SecurityGroupRule(
            f"{name}-sip-rtp",
            type="ingress",
            from_port=rtp_from,
            to_port=rtp_to,
            protocol="udp",
            cidr_blocks=media_cidrs,
            description="RTP media",
            security_group_id=security_group.id
        )

    rules["egress"] = aws.ec2.SecurityGroupRule(
        f"{name}-sip-egress",
        type="egress",
        from_port=0,
        to_port=65535,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    return {
        "security_group": security_group,
        "rules": rules,
        "security_group_id": security_group.id
    }


def create_vpc_resources(cluster_name: str, vpc_cidr: str, public_subnet_cidrs: List[str],
                        private_subnet_cidrs: List[str] = None,
                        single_nat_gateway: bool = True,
                        sip_signaling_cidrs: List[str] = None,
                        sip_media_cidrs: List[str] = None,
                        sip_port: int = 5060,
                        rtp_port_range: str = "10000-20000",
                        tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete VPC infrastructure for the LiveKit cluster

    Args:
        cluster_name: EKS cluster name
        vpc_cidr: VPC CIDR block
        public_subnet_cidrs: List of public subnet CIDR blocks
        private_subnet_cidrs: List of private subnet CIDR blocks
        single_nat_gateway: Share one NAT gateway across private subnets
        sip_signaling_cidrs: CIDRs allowed to send SIP signalling
        sip_media_cidrs: CIDRs allowed to send RTP media
        sip_port: SIP signalling port
        rtp_port_range: RTP port range
        tags: Additional tags for all resources

    Returns:
        Dict with all VPC resources and outputs
    """
    tags = tags or {}
    private_subnet_cidrs = private_subnet_cidrs or []

    azs = aws.get_availability_zones(state="available")

    vpc_result = create_vpc(cluster_name, vpc_cidr, tags)

    igw_result = create_internet_gateway(cluster_name, vpc_result["vpc_id"], tags)

    public_result = create_public_subnets(
        cluster_name,
        vpc_result["vpc_id"],
        public_subnet_cidrs,
        azs.names,
        tags
    )

    public_rt_result = create_public_route_table(
        cluster_name,
        vpc_result["vpc_id"],
        igw_result["igw_id"],
        public_result["subnet_ids"],
        tags
    )

    private_result = {"subnets": [], "subnet_ids": []}
    nat_result = {"nat_gateways": [], "nat_gateway_ids": []}
    private_rt_result = {"route_tables": []}
    if private_subnet_cidrs:
        private_result = create_private_subnets(
            cluster_name,
            vpc_result["vpc_id"],
            private_subnet_cidrs,
            azs.names,
            tags
        )
        nat_result = create_nat_gateways(
            cluster_name,
            public_result["subnet_ids"],
            single_nat_gateway,
            igw_result["igw"],
            tags
        )
        private_rt_result = create_private_route_tables(
            cluster_name,
            vpc_result["vpc_id"],
            nat_result["nat_gateway_ids"],
            private_result["subnet_ids"],
            tags
        )

    cluster_sg_result = create_cluster_security_group(cluster_name, vpc_result["vpc_id"], tags)

    node_sg_result = create_node_security_group(
        cluster_name,
        vpc_result["vpc_id"],
        cluster_sg_result["security_group_id"],
        tags
    )

    sip_sg_result = create_sip_security_group(
        cluster_name,
        vpc_result["vpc_id"],
        sip_signaling_cidrs or [],
        sip_media_cidrs or [],
        sip_port,
        rtp_port_range,
        tags
    )

    return {
        "vpc_id": vpc_result["vpc_id"],
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        "availability_zones": public_result["availability_zones"],
        "cluster_security_group_id": cluster_sg_result["security_group_id"],
        "node_group_security_group_id": node_sg_result["security_group_id"],
        "sip_security_group_id": sip_sg_result["security_group_id"],
        # Keep references to all resources for dependencies
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"],
        "_public_subnets": public_result["subnets"],
        "_private_subnets": private_result["subnets"],
        "_nat_gateways": nat_result["nat_gateways"],
        "_public_route_table": public_rt_result["route_table"],
        "_private_route_tables": private_rt_result["route_tables"],
        "_cluster_sg": cluster_sg_result["security_group"],
        "_node_sg": node_sg_result["security_group"],
        "_sip_sg": sip_sg_result["security_group"]
    }
