"""
EKS Module Functions
Creates the EKS cluster, managed node group, access entries and add-ons
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any

EKS_ADMIN_POLICIES = [
    "arn:aws:eks::aws:cluster-access-policy/AmazonEKSAdminPolicy",
    "arn:aws:eks::aws:cluster-access-policy/AmazonEKSClusterAdminPolicy",
]


def create_cloudwatch_log_group(name: str, retention_days: int = 30, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create CloudWatch log group for EKS cluster

    Args:
        name: Cluster name
        retention_days: Log retention in days
        tags: Additional tags

    Returns:
        Dict with log group resource and outputs
    """
    tags = tags or {}

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-eks-log-group",
        name=f"/aws/eks/{name}/cluster",
        retention_in_days=retention_days,
        tags={
            **tags,
            "Name": f"{name}-eks-log-group",
            "Module": "eks"
        }
    )

    return {
        "log_group": log_group,
        "log_group_name": log_group.name
    }


def create_kms_key(name: str, existing_key_arn: str = "", tags: Dict[str, str] = None):
    """
    Create or use existing KMS key for EKS secret encryption

    Returns:
        KMS key ARN
    """
    if existing_key_arn:
        return existing_key_arn

    tags = tags or {}

    kms_key = aws.kms.Key(
        f"{name}-eks-kms-key",
        description=f"EKS Secret Encryption Key for {name}",
        enable_key_rotation=True,
        tags={
            **tags,
            "Name": f"{name}-eks-kms-key",
            "Module": "eks"
        }
    )

    aws.kms.Alias(
        f"{name}-eks-kms-alias",
        name=f"alias/{name}-eks",
        target_key_id=kms_key.key_id
    )

    return kms_key.arn


def create_eks_cluster(name: str, version: str, role_arn: pulumi.Output[str],
                      subnet_ids: List[pulumi.Output[str]], security_group_ids: List[pulumi.Output[str]],
                      kms_key_arn, log_group=None,
                      enabled_log_types: List[str] = None,
                      endpoint_private_access: bool = True,
                      endpoint_public_access: bool = True,
                      public_access_cidrs: List[str] = None,
                      tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS cluster with API access entries enabled

    Args:
        name: Cluster name
        version: Kubernetes version
        role_arn: IAM role ARN for cluster
        subnet_ids: List of subnet IDs
        security_group_ids: List of security group IDs
        kms_key_arn: KMS key ARN for encryption
        log_group: CloudWatch log group the control plane writes to
        enabled_log_types: List of enabled log types
        endpoint_private_access: Enable private API endpoint
        endpoint_public_access: Enable public API endpoint
        public_access_cidrs: List of CIDRs for public access
        tags: Additional tags

    Returns:
        Dict with cluster resource and outputs
    """
    tags = tags or {}
    enabled_log_types = enabled_log_types or ["api", "audit", "authenticator"]
    public_access_cidrs = public_access_cidrs or ["0.0.0.0/0"]

    cluster = aws.eks.Cluster(
        f"{name}-cluster",
        name=name,
        version=version,
        role_arn=role_arn,
        vpc_config=aws.eks.ClusterVpcConfigArgs(
            subnet_ids=subnet_ids,
            endpoint_private_access=endpoint_private_access,
            endpoint_public_access=endpoint_public_access,
            public_access_cidrs=public_access_cidrs,
            security_group_ids=security_group_ids
        ),
        access_config=aws.eks.ClusterAccessConfigArgs(
            authentication_mode="API_AND_CONFIG_MAP",
            bootstrap_cluster_creator_admin_permissions=True
        ),
        enabled_cluster_log_types=enabled_log_types,
        encryption_config=aws.eks.ClusterEncryptionConfigArgs(
            provider=aws.eks.ClusterEncryptionConfigProviderArgs(
                key_arn=kms_key_arn
            ),
            resources=["secrets"]
        ),
        tags={
            **tags,
            "Name": f"{name}-cluster",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=[log_group]) if log_group else None
    )

    return {
        "cluster": cluster,
        "cluster_name": cluster.name,
        "cluster_arn": cluster.arn,
        "cluster_endpoint": cluster.endpoint,
        "cluster_version": cluster.version,
        "cluster_certificate_authority_data": cluster.certificate_authority.data,
        "cluster_primary_security_group_id": cluster.vpc_config.cluster_security_group_id
    }


def create_node_launch_template(name: str, security_group_ids: List[pulumi.Output[str]],
                               disk_size: int = 50, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create launch template for the managed node group

    Lets extra security groups (the SIP trunk group) ride on every node
    next to the node and cluster primary groups.

    Args:
        name: Cluster name
        security_group_ids: Security groups attached to node ENIs
        disk_size: Root volume size in GB
        tags: Additional tags

    Returns:
        Dict with launch template resource and outputs
    """
    tags = tags or {}

    launch_template = aws.ec2.LaunchTemplate(
        f"{name}-node-lt",
        name_prefix=f"{name}-node-",
        vpc_security_group_ids=security_group_ids,
        block_device_mappings=[aws.ec2.LaunchTemplateBlockDeviceMappingArgs(
            device_name="/dev/xvda",
            ebs=aws.ec2.LaunchTemplateBlockDeviceMappingEbsArgs(
                volume_size=disk_size,
                volume_type="gp3",
                encrypted="true",
                delete_on_termination="true"
            )
        )],
        metadata_options=aws.ec2.LaunchTemplateMetadataOptionsArgs(
            http_endpoint="enabled",
            http_tokens="required",
            http_put_response_hop_limit=2
        ),
        tag_specifications=[aws.ec2.LaunchTemplateTagSpecificationArgs(
            resource_type="instance",
            tags={**tags, "Name": f"{name}-node", "Module": "eks"}
        )],
        tags={
            **tags,
            "Name": f"{name}-node-lt",
            "Module": "eks"
        }
    )

    return {
        "launch_template": launch_template,
        "launch_template_id": launch_template.id,
        "launch_template_version": launch_template.latest_version
    }


def create_node_group(name: str, cluster_name: pulumi.Output[str], role_arn: pulumi.Output[str],
                     subnet_ids: List[pulumi.Output[str]], launch_template_id: pulumi.Output[str],
                     launch_template_version, instance_types: List[str],
                     desired_size: int, max_size: int, min_size: int,
                     capacity_type: str = "ON_DEMAND", depends_on: List[Any] = None,
                     tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS managed node group

    Args:
        name: Node group name prefix
        cluster_name: EKS cluster name
        role_arn: IAM role ARN for node group
        subnet_ids: List of subnet IDs
        launch_template_id: Launch template carrying security groups and disk
        launch_template_version: Launch template version to roll out
        instance_types: List of EC2 instance types
        desired_size: Desired number of nodes
        max_size: Maximum number of nodes
        min_size: Minimum number of nodes
        capacity_type: Capacity type (ON_DEMAND or SPOT)
        depends_on: Resources to create first (role policy attachments)
        tags: Additional tags

    Returns:
        Dict with node group resource and outputs
    """
    tags = tags or {}

    node_group = aws.eks.NodeGroup(
        f"{name}-node-group",
        cluster_name=cluster_name,
        node_group_name=f"{name}-nodes",
        node_role_arn=role_arn,
        subnet_ids=subnet_ids,
        capacity_type=capacity_type,
        instance_types=instance_types,
        launch_template=aws.eks.NodeGroupLaunchTemplateArgs(
            id=launch_template_id,
            version=pulumi.Output.from_input(launch_template_version).apply(str)
        ),
        scaling_config=aws.eks.NodeGroupScalingConfigArgs(
            desired_size=desired_size,
            max_size=max_size,
            min_size=min_size
        ),
        update_config=aws.eks.NodeGroupUpdateConfigArgs(
            max_unavailable_percentage=25
        ),
        labels={"role": "livekit"},
        tags={
            **tags,
            "Name": f"{name}-node-group",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(
            depends_on=[d for d in (depends_on or []) if d is not None],
            ignore_changes=["scalingConfig.desiredSize"]
        )
    )

    return {
        "node_group": node_group,
        "node_group_arn": node_group.arn,
        "node_group_name": node_group.node_group_name,
        "node_group_status": node_group.status
    }


def create_access_entries(name: str, cluster_name: pulumi.Output[str], principal_arn: str,
                         policy_arns: List[str] = None, cluster=None,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Grant a deployment principal cluster-admin through EKS access entries

    Args:
        name: Cluster name
        cluster_name: EKS cluster name
        principal_arn: IAM role or user ARN to grant access
        policy_arns: EKS access policies associated at cluster scope
        cluster: Cluster dependency
        tags: Additional tags

    Returns:
        Dict with access entry and policy association resources
    """
    tags = tags or {}
    policy_arns = policy_arns or EKS_ADMIN_POLICIES

    entry = aws.eks.AccessEntry(
        f"{name}-deployer-access",
        cluster_name=cluster_name,
        principal_arn=principal_arn,
        type="STANDARD",
        tags={**tags, "Module": "eks"},
        opts=pulumi.ResourceOptions(depends_on=[cluster]) if cluster else None
    )

    associations = []
    for policy_arn in policy_arns:
        short_name = policy_arn.rsplit("/", 1)[-1]
        associations.append(aws.eks.AccessPolicyAssociation(
            f"{name}-deployer-{short_name}",
            cluster_name=cluster_name,
            principal_arn=principal_arn,
            policy_arn=policy_arn,
            access_scope=aws.eks.AccessPolicyAssociationAccessScopeArgs(type="cluster"),
            opts=pulumi.ResourceOptions(depends_on=[entry])
        ))

    return {
        "access_entry": entry,
        "policy_associations": associations
    }


def create_eks_addons(name: str, cluster_name: pulumi.Output[str],
                     enable_vpc_cni: bool = True,
                     enable_coredns: bool = True,
                     enable_kube_proxy: bool = True,
                     enable_pod_identity_agent: bool = True,
                     node_group=None,
                     tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS managed add-ons

    CoreDNS waits for the node group, it cannot become healthy without nodes.
    """
    tags = tags or {}
    wanted = [
        ("vpc_cni", "vpc-cni", enable_vpc_cni, False),
        ("coredns", "coredns", enable_coredns, True),
        ("kube_proxy", "kube-proxy", enable_kube_proxy, False),
        ("pod_identity_agent", "eks-pod-identity-agent", enable_pod_identity_agent, False),
    ]

    addons = {}
    for key, addon_name, enabled, needs_nodes in wanted:
        if not enabled:
            continue
        opts = None
        if needs_nodes and node_group is not None:
            opts = pulumi.ResourceOptions(depends_on=[node_group])
        addons[key] = aws.eks.Addon(
            f"{name}-{addon_name}-addon",
            cluster_name=cluster_name,
            addon_name=addon_name,
            resolve_conflicts_on_create="OVERWRITE",
            resolve_conflicts_on_update="OVERWRITE",
            tags={
                **tags,
                "Name": f"{name}-{addon_name}-addon",
                "Module": "eks"
            },
            opts=opts
        )

    return {"addons": addons}


def create_eks_resources(cluster_name: str, cluster_version: str,
                        cluster_role_arn: pulumi.Output[str], node_group_role_arn: pulumi.Output[str],
                        cluster_subnet_ids: List[pulumi.Output[str]],
                        node_subnet_ids: List[pulumi.Output[str]],
                        cluster_security_group_id: pulumi.Output[str],
                        node_security_group_id: pulumi.Output[str],
                        node_instance_types: List[str],
                        node_desired_size: int, node_max_size: int, node_min_size: int,
                        node_disk_size: int, capacity_type: str = "ON_DEMAND",
                        extra_node_security_group_ids: List[pulumi.Output[str]] = None,
                        deployment_role_arn: str = "",
                        cluster_enabled_log_types: List[str] = None,
                        cloudwatch_log_group_retention_in_days: int = 30,
                        existing_kms_key_arn: str = "",
                        node_role_dependencies: List[Any] = None,
                        tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete EKS infrastructure

    Args:
        cluster_name: EKS cluster name
        cluster_version: Kubernetes version
        cluster_role_arn: IAM role ARN for cluster
        node_group_role_arn: IAM role ARN for node group
        cluster_subnet_ids: Subnets for the control plane ENIs
        node_subnet_ids: Subnets for worker nodes
        cluster_security_group_id: Cluster security group ID
        node_security_group_id: Node security group ID
        node_instance_types: List of EC2 instance types
        node_desired_size: Desired number of nodes
        node_max_size: Maximum number of nodes
        node_min_size: Minimum number of nodes
        node_disk_size: EBS volume size in GB
        capacity_type: Capacity type (ON_DEMAND or SPOT)
        extra_node_security_group_ids: Extra groups on nodes, e.g. SIP
        deployment_role_arn: Principal granted cluster-admin access entries
        cluster_enabled_log_types: List of enabled log types
        cloudwatch_log_group_retention_in_days: Log retention in days
        existing_kms_key_arn: Reuse this KMS key instead of creating one
        node_role_dependencies: Policy attachments nodes need before joining
        tags: Additional tags

    Returns:
        Dict with all EKS resources and outputs
    """
    tags = tags or {}

    log_group_result = create_cloudwatch_log_group(
        cluster_name,
        cloudwatch_log_group_retention_in_days,
        tags
    )

    kms_key_arn = create_kms_key(cluster_name, existing_kms_key_arn, tags)

    cluster_result = create_eks_cluster(
        name=cluster_name,
        version=cluster_version,
        role_arn=cluster_role_arn,
        subnet_ids=cluster_subnet_ids,
        security_group_ids=[cluster_security_group_id],
        kms_key_arn=kms_key_arn,
        log_group=log_group_result["log_group"],
        enabled_log_types=cluster_enabled_log_types,
        tags=tags
    )

    access_result = None
    if deployment_role_arn:
        access_result = create_access_entries(
            name=cluster_name,
            cluster_name=cluster_result["cluster_name"],
            principal_arn=deployment_role_arn,
            cluster=cluster_result["cluster"],
            tags=tags
        )

    launch_template_result = create_node_launch_template(
        cluster_name,
        [
            node_security_group_id,
            cluster_result["cluster_primary_security_group_id"],
            *(extra_node_security_group_ids or []),
        ],
        node_disk_size,
        tags
    )

    node_group_result = create_node_group(
        name=cluster_name,
        cluster_name=cluster_result["cluster_name"],
        role_arn=node_group_role_arn,
        subnet_ids=node_subnet_ids,
        launch_template_id=launch_template_result["launch_template_id"],
        launch_template_version=launch_template_result["launch_template_version"],
        instance_types=node_instance_types,
        desired_size=node_desired_size,
        max_size=node_max_size,
        min_size=node_min_size,
        capacity_type=capacity_type,
        depends_on=node_role_dependencies,
        tags=tags
    )

    addons_result = create_eks_addons(
        name=cluster_name,
        cluster_name=cluster_result["cluster_name"],
        node_group=node_group_result["node_group"],
        tags=tags
    )

    return {
        "cluster_name": cluster_result["cluster_name"],
        "cluster_arn": cluster_result["cluster_arn"],
        "cluster_endpoint": cluster_result["cluster_endpoint"],
        "cluster_version_output": cluster_result["cluster_version"],
        "cluster_certificate_authority_data": cluster_result["cluster_certificate_authority_data"],
        "cluster_primary_security_group_id": cluster_result["cluster_primary_security_group_id"],
        "node_group_arn": node_group_result["node_group_arn"],
        "node_group_name": node_group_result["node_group_name"],
        "node_group_status": node_group_result["node_group_status"],
        # Keep references to resources for dependencies
        "_log_group": log_group_result["log_group"],
        "_cluster": cluster_result["cluster"],
        "_launch_template": launch_template_result["launch_template"],
        "_node_group": node_group_result["node_group"],
        "_access": access_result,
        "_addons": addons_result["addons"]
    }
