"""
Redis Module Functions
ElastiCache Redis used by LiveKit for room state and node routing
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def format_redis_address(host: str, port: int = 6379) -> str:
    """
    Format a Redis address the way LiveKit expects it

    Args:
        host: Redis primary endpoint hostname
        port: Redis port

    Returns:
        "host:port"
    """
    if not host:
        raise ValueError("Redis host must not be empty")
    return f"{host}:{int(port)}"


def create_redis_security_group(name: str, vpc_id: pulumi.Output[str], vpc_cidr: str,
                               node_security_group_id: pulumi.Output[str] = None,
                               port: int = 6379, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group allowing Redis traffic from the cluster

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        vpc_cidr: VPC CIDR, allowed as a fallback source
        node_security_group_id: Node security group allowed to connect
        port: Redis port
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-redis-sg",
        name_prefix=f"{name}-redis-",
        description="ElastiCache Redis for LiveKit",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-redis-sg",
            "Module": "redis"
        }
    )

    rules = [aws.ec2.SecurityGroupRule(
        f"{name}-redis-ingress-vpc",
        type="ingress",
        from_port=port,
        to_port=port,
        protocol="tcp",
        cidr_blocks=[vpc_cidr],
        security_group_id=security_group.id
    )]

    if node_security_group_id is not None:
        rules.append(aws.ec2.SecurityGroupRule(
            f"{name}-redis-ingress-nodes",
            type="ingress",
            from_port=port,
            to_port=port,
            protocol="tcp",
            source_security_group_id=node_security_group_id,
            security_group_id=security_group.id
        ))

    return {
        "security_group": security_group,
        "rules": rules,
        "security_group_id": security_group.id
    }


def create_redis_subnet_group(name: str, subnet_ids: List[pulumi.Output[str]],
                             tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    subnet_group = aws.elasticache.SubnetGroup(
        f"{name}-redis-subnets",
        name=f"{name}-redis-subnets",
        subnet_ids=subnet_ids,
        tags={**tags, "Module": "redis"}
    )

    return {
        "subnet_group": subnet_group,
        "subnet_group_name": subnet_group.name
    }


def create_redis_replication_group(name: str, subnet_group_name: pulumi.Output[str],
                                  security_group_ids: List[pulumi.Output[str]],
                                  node_type: str = "cache.t3.micro",
                                  num_cache_clusters: int = 1,
                                  engine_version: str = "7.1",
                                  port: int = 6379,
                                  tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the Redis replication group

    Transit encryption stays off: LiveKit's default client speaks plain
    Redis. Failover needs a replica, so it is only enabled with two or more
    cache clusters.

    Args:
        name: Resource name prefix
        subnet_group_name: ElastiCache subnet group
        security_group_ids: Security groups for the cache nodes
        node_type: Cache node instance type
        num_cache_clusters: Primary plus replicas
        engine_version: Redis engine version
        port: Redis port
        tags: Additional tags

    Returns:
        Dict with replication group resource and endpoint outputs
    """
    tags = tags or {}
    multi_node = num_cache_clusters >= 2

    replication_group = aws.elasticache.ReplicationGroup(
        f"{name}-redis",
        replication_group_id=f"{name}-redis"[:40].rstrip("-"),
        description=f"LiveKit Redis for {name}",
        engine="redis",
        engine_version=engine_version,
        node_type=node_type,
        num_cache_clusters=num_cache_clusters,
        port=port,
        subnet_group_name=subnet_group_name,
        security_group_ids=security_group_ids,
        automatic_failover_enabled=multi_node,
        multi_az_enabled=multi_node,
        at_rest_encryption_enabled=True,
        transit_encryption_enabled=False,
        apply_immediately=True,
        tags={
            **tags,
            "Name": f"{name}-redis",
            "Module": "redis"
        }
    )

    return {
        "replication_group": replication_group,
        "redis_host": replication_group.primary_endpoint_address,
        "redis_port": port,
        "redis_cluster_endpoint": replication_group.primary_endpoint_address.apply(
            lambda host: format_redis_address(host, port)
        )
    }


def create_redis_resources(cluster_name: str, vpc_id: pulumi.Output[str], vpc_cidr: str,
                          subnet_ids: List[pulumi.Output[str]],
                          node_security_group_id: pulumi.Output[str] = None,
                          node_type: str = "cache.t3.micro",
                          num_cache_clusters: int = 1,
                          engine_version: str = "7.1",
                          port: int = 6379,
                          tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create ElastiCache Redis for LiveKit

    Args:
        cluster_name: EKS cluster name used as prefix
        vpc_id: VPC ID
        vpc_cidr: VPC CIDR block
        subnet_ids: Private subnets for the cache
        node_security_group_id: Node security group allowed in
        node_type: Cache node type
        num_cache_clusters: Number of cache clusters
        engine_version: Redis engine version
        port: Redis port
        tags: Additional tags

    Returns:
        Dict with Redis outputs
    """
    tags = tags or {}

    sg_result = create_redis_security_group(
        cluster_name, vpc_id, vpc_cidr, node_security_group_id, port, tags
    )
    subnet_group_result = create_redis_subnet_group(cluster_name, subnet_ids, tags)
    redis_result = create_redis_replication_group(
        cluster_name,
        subnet_group_result["subnet_group_name"],
        [sg_result["security_group_id"]],
        node_type,
        num_cache_clusters,
        engine_version,
        port,
        tags
    )

    return {
        "redis_cluster_endpoint": redis_result["redis_cluster_endpoint"],
        "redis_host": redis_result["redis_host"],
        "redis_port": redis_result["redis_port"],
        "redis_security_group_id": sg_result["security_group_id"],
        # Keep references to resources for dependencies
        "_security_group": sg_result["security_group"],
        "_subnet_group": subnet_group_result["subnet_group"],
        "_replication_group": redis_result["replication_group"]
    }
