"""
IAM Module Functions
Creates IAM roles and policies for the EKS cluster, node groups and
pod-identity workloads such as the AWS Load Balancer Controller
"""

import json
import os
import pulumi
import pulumi_aws as aws
from typing import Dict, Any, List

LOAD_BALANCER_CONTROLLER_POLICY_FILE = os.path.join(
    os.path.dirname(os.path.abspath(__file__)),
    "aws_load_balancer_controller_policy.json"
)


def build_service_trust_policy(service: str) -> str:
    """Trust policy allowing an AWS service principal to assume a role"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": service}
        }]
    })


def build_pod_identity_trust_policy() -> str:
    """
    Trust policy for EKS Pod Identity

    Returns:
        JSON policy letting the pod identity agent assume and tag sessions
    """
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": "pods.eks.amazonaws.com"},
            "Action": ["sts:AssumeRole", "sts:TagSession"]
        }]
    })


def load_load_balancer_controller_policy() -> Dict[str, Any]:
    """
    Load the AWS Load Balancer Controller IAM policy document

    Returns:
        Policy document as a dict
    """
    with open(LOAD_BALANCER_CONTROLLER_POLICY_FILE) as f:
        return json.load(f)


def create_cluster_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS cluster

    Args:
        name: Role name
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-cluster-role",
        name=f"{name}-cluster-role",
        assume_role_policy=build_service_trust_policy("eks.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-cluster-role",
            "Module": "iam"
        }
    )

    policy_attachment = aws.iam.RolePolicyAttachment(
        f"{name}-cluster-policy",
        policy_arn="arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
        role=role.name
    )

    return {
        "role": role,
        "policy_attachment": policy_attachment,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_node_group_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS node group

    Args:
        name: Role name prefix
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-ng-role",
        name=f"{name}-ng-role",
        assume_role_policy=build_service_trust_policy("ec2.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-node-group-role",
            "Module": "iam"
        }
    )

    policies = [
        ("worker", "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"),
        ("cni", "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"),
        ("registry", "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly"),
        ("ssm", "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore")
    ]

    policy_attachments = {}
    for policy_name, policy_arn in policies:
        policy_attachments[f"{policy_name}_policy"] = aws.iam.RolePolicyAttachment(
            f"{name}-node-{policy_name}-policy",
            policy_arn=policy_arn,
            role=role.name
        )

    return {
        "role": role,
        "policy_attachments": policy_attachments,
        "role_arn": role.arn,
        "role_name": role.name
    }


def get_existing_role(role_name: str) -> Dict[str, Any]:
    """
    Get existing IAM role

    Args:
        role_name: Name of existing role

    Returns:
        Dict with role information
    """
    role = aws.iam.get_role(name=role_name)

    return {
        "role": None,
        "role_arn": pulumi.Output.from_input(role.arn),
        "role_name": pulumi.Output.from_input(role.name)
    }


def create_pod_identity_role(name: str, policy_document: Dict[str, Any],
                            managed_policy_arns: List[str] = None,
                            tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create a role assumable through EKS Pod Identity with an inline-managed policy

    Args:
        name: Resource name prefix, e.g. "<cluster>-external-dns"
        policy_document: Policy document granted to the role
        managed_policy_arns: Extra AWS managed policies to attach
        tags: Additional tags

    Returns:
        Dict with policy, role and attachment resources
    """
    tags = tags or {}

    policy = aws.iam.Policy(
        f"{name}-policy",
        name=f"{name}-policy",
        policy=json.dumps(policy_document),
        tags={**tags, "Module": "iam"}
    )

    role = aws.iam.Role(
        f"{name}-role",
        name=f"{name}-role",
        assume_role_policy=build_pod_identity_trust_policy(),
        tags={
            **tags,
            "Name": f"{name}-role",
            "Module": "iam"
        }
    )

    attachments = [aws.iam.RolePolicyAttachment(
        f"{name}-policy-attach",
        role=role.name,
        policy_arn=policy.arn
    )]
    for i, arn in enumerate(managed_policy_arns or []):
        attachments.append(aws.iam.RolePolicyAttachment(
            f"{name}-managed-{i+1}",
            role=role.name,
            policy_arn=arn
        ))

    return {
        "policy": policy,
        "role": role,
        "attachments": attachments,
        "policy_arn": policy.arn,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_load_balancer_controller_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the IAM policy and pod-identity role for the AWS Load Balancer Controller

    Args:
        name: Cluster name
        tags: Additional tags

    Returns:
        Dict with policy and role resources
    """
    return create_pod_identity_role(
        f"{name}-aws-load-balancer-controller",
        load_load_balancer_controller_policy(),
        tags=tags
    )


def create_iam_resources(cluster_name: str,
                        use_existing_cluster_role: bool = False,
                        existing_cluster_role_name: str = "",
                        use_existing_node_role: bool = False,
                        existing_node_role_name: str = "",
                        tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create or reference IAM resources for EKS

    Args:
        cluster_name: EKS cluster name
        use_existing_cluster_role: Use existing cluster role
        existing_cluster_role_name: Name of existing cluster role
        use_existing_node_role: Use existing node role
        existing_node_role_name: Name of existing node role
        tags: Additional tags

    Returns:
        Dict with all IAM resources and outputs
    """
    tags = tags or {}

    if use_existing_cluster_role and existing_cluster_role_name:
        cluster_role_result = get_existing_role(existing_cluster_role_name)
    else:
        cluster_role_result = create_cluster_role(cluster_name, tags)

    if use_existing_node_role and existing_node_role_name:
        node_role_result = get_existing_role(existing_node_role_name)
    else:
        node_role_result = create_node_group_role(cluster_name, tags)

    lb_controller_result = create_load_balancer_controller_role(cluster_name, tags)

    return {
        "cluster_role_arn": cluster_role_result["role_arn"],
        "cluster_role_name": cluster_role_result["role_name"],
        "node_group_role_arn": node_role_result["role_arn"],
        "node_group_role_name": node_role_result["role_name"],
        "load_balancer_controller_role_arn": lb_controller_result["role_arn"],
        # Keep references to resources for dependencies
        "_cluster_role": cluster_role_result.get("role"),
        "_node_role": node_role_result.get("role"),
        "_cluster_policy_attachment": cluster_role_result.get("policy_attachment"),
        "_node_policy_attachments": node_role_result.get("policy_attachments"),
        "_load_balancer_controller_role": lb_controller_result["role"],
        "_load_balancer_controller_attachments": lb_controller_result["attachments"]
    }
