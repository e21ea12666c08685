"""EKS cluster operations: readiness, kubeconfig, access entries and node security groups"""
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from ops import shell
from ops.errors import OpsError
from ops.retry import log_operation, retry_call, wait_until
from ops.settings import Settings

logger = logging.getLogger(__name__)

ADMIN_ACCESS_POLICIES = [
    "arn:aws:eks::aws:cluster-access-policy/AmazonEKSAdminPolicy",
    "arn:aws:eks::aws:cluster-access-policy/AmazonEKSClusterAdminPolicy",
]


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def describe_cluster(eks, cluster_name: str) -> Optional[Dict[str, Any]]:
    """Return the cluster description, or None if it does not exist"""
    try:
        return eks.describe_cluster(name=cluster_name)["cluster"]
    except ClientError as e:
        if _error_code(e) == "ResourceNotFoundException":
            return None
        raise


@log_operation("Wait for EKS cluster to become ACTIVE")
def wait_for_cluster_active(eks, cluster_name: str, timeout: float = 1200, interval: float = 30,
                            **wait_kwargs) -> Dict[str, Any]:
    def active():
        cluster = describe_cluster(eks, cluster_name)
        if cluster is None:
            raise OpsError(f"EKS cluster {cluster_name} not found")
        status = cluster.get("status")
        if status == "FAILED":
            raise OpsError(f"EKS cluster {cluster_name} is in FAILED state")
        logger.info(f"Cluster {cluster_name} status: {status}")
        return cluster if status == "ACTIVE" else None

    return wait_until(active, timeout, interval, f"cluster {cluster_name}", **wait_kwargs)


@log_operation("Update kubeconfig")
def update_kubeconfig(settings: Settings, attempts: int = 3, delay: float = 10) -> None:
    argv = [
        "aws", "eks", "update-kubeconfig",
        "--region", settings.aws_region,
        "--name", settings.cluster_name,
    ]
    retry_call(lambda: shell.run(argv), attempts=attempts, delay=delay, description="update-kubeconfig")


def count_ready_nodes(nodes: Dict[str, Any]) -> int:
    ready = 0
    for node in nodes.get("items", []):
        for condition in node.get("status", {}).get("conditions", []):
            if condition.get("type") == "Ready" and condition.get("status") == "True":
                ready += 1
    return ready


@log_operation("Verify worker nodes")
def verify_nodes(minimum: int = 1) -> int:
    ready = count_ready_nodes(shell.kubectl_json("get", "nodes"))
    if ready < minimum:
        raise OpsError(f"Only {ready} ready nodes, expected at least {minimum}")
    logger.info(f"{ready} nodes ready")
    return ready


@log_operation("Ensure EKS access entry")
def ensure_access_entry(eks, cluster_name: str, principal_arn: str,
                        policy_arns: List[str] = None) -> Dict[str, str]:
    """
    Give principal_arn cluster-admin through access entries

    Existing entries and associations are left as they are.

    Returns:
        Mapping of "entry" and each policy ARN to "created" or "exists"
    """
    outcome = {}
    try:
        eks.create_access_entry(clusterName=cluster_name, principalArn=principal_arn, type="STANDARD")
        outcome["entry"] = "created"
    except ClientError as e:
        if _error_code(e) != "ResourceInUseException":
            raise
        outcome["entry"] = "exists"

    existing = set()
    paginator = eks.get_paginator("list_associated_access_policies")
    for page in paginator.paginate(clusterName=cluster_name, principalArn=principal_arn):
        existing.update(p["policyArn"] for p in page.get("associatedAccessPolicies", []))

    for policy_arn in policy_arns or ADMIN_ACCESS_POLICIES:
        if policy_arn in existing:
            outcome[policy_arn] = "exists"
            continue
        eks.associate_access_policy(
            clusterName=cluster_name,
            principalArn=principal_arn,
            policyArn=policy_arn,
            accessScope={"type": "cluster"},
        )
        outcome[policy_arn] = "created"

    for key, value in outcome.items():
        logger.info(f"  {key}: {value}")
    return outcome


def _launch_template_of(autoscaling, asg_name: str) -> Optional[Dict[str, str]]:
    groups = autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=[asg_name])["AutoScalingGroups"]
    if not groups:
        return None
    group = groups[0]
    template = group.get("LaunchTemplate")
    if not template:
        template = (group.get("MixedInstancesPolicy", {})
                    .get("LaunchTemplate", {})
                    .get("LaunchTemplateSpecification"))
    return template


@log_operation("Attach security group to node groups")
def attach_security_group_to_nodegroups(eks, autoscaling, ec2, cluster_name: str,
                                        security_group_id: str) -> Dict[str, str]:
    """
    Add security_group_id to the launch template of every node group

    A new launch template version is created only when the group is missing.

    Returns:
        Mapping of node group name to "attached", "already-attached" or "no-launch-template"
    """
    outcome = {}
    nodegroups = []
    for page in eks.get_paginator("list_nodegroups").paginate(clusterName=cluster_name):
        nodegroups.extend(page.get("nodegroups", []))
    for nodegroup_name in nodegroups:
        nodegroup = eks.describe_nodegroup(clusterName=cluster_name, nodegroupName=nodegroup_name)["nodegroup"]
        asgs = nodegroup.get("resources", {}).get("autoScalingGroups", [])
        template = _launch_template_of(autoscaling, asgs[0]["name"]) if asgs else None
        if not template:
            logger.warning(f"{nodegroup_name}: no launch template found")
            outcome[nodegroup_name] = "no-launch-template"
            continue

        template_id = template.get("LaunchTemplateId")
        version = str(template.get("Version") or "$Default")
        current = ec2.describe_launch_template_versions(
            LaunchTemplateId=template_id, Versions=[version]
        )["LaunchTemplateVersions"][0]["LaunchTemplateData"]
        groups = list(current.get("SecurityGroupIds", []))

        if security_group_id in groups:
            logger.info(f"{nodegroup_name}: {security_group_id} already attached")
            outcome[nodegroup_name] = "already-attached"
            continue

        ec2.create_launch_template_version(
            LaunchTemplateId=template_id,
            SourceVersion=version,
            VersionDescription=f"add {security_group_id}",
            LaunchTemplateData={"SecurityGroupIds": groups + [security_group_id]},
        )
        logger.info(f"{nodegroup_name}: {security_group_id} added to {template_id}")
        outcome[nodegroup_name] = "attached"

    return outcome
