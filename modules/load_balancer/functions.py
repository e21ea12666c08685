"""
Load Balancer Module Functions
AWS Load Balancer Controller, turns LiveKit's ingress into an ALB and the
Kamailio service into an NLB
"""

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
from typing import Dict, Any

CONTROLLER_NAMESPACE = "kube-system"
CONTROLLER_SERVICE_ACCOUNT = "aws-load-balancer-controller"
CONTROLLER_CHART_REPO = "https://aws.github.io/eks-charts"


def build_load_balancer_controller_values(cluster_name: str, region: str, vpc_id: str) -> Dict[str, Any]:
    """
    Helm values for the AWS Load Balancer Controller

    Args:
        cluster_name: EKS cluster name
        region: AWS region
        vpc_id: VPC the controller manages load balancers in

    Returns:
        Values dict for the chart
    """
    return {
        "clusterName": cluster_name,
        "region": region,
        "vpcId": vpc_id,
        "serviceAccount": {
            "create": True,
            "name": CONTROLLER_SERVICE_ACCOUNT,
        },
        "replicaCount": 2,
        "enableServiceMutatorWebhook": False,
    }


def create_load_balancer_controller_identity(name: str, cluster_name: pulumi.Output[str],
                                            role_arn: pulumi.Output[str],
                                            tags: Dict[str, str] = None) -> Dict[str, Any]:
    """Bind the controller service account to its IAM role through Pod Identity"""
    tags = tags or {}

    association = aws.eks.PodIdentityAssociation(
        f"{name}-aws-load-balancer-controller-identity",
        cluster_name=cluster_name,
        namespace=CONTROLLER_NAMESPACE,
        service_account=CONTROLLER_SERVICE_ACCOUNT,
        role_arn=role_arn,
        tags={**tags, "Module": "load_balancer"}
    )

    return {
        "pod_identity_association": association
    }


def deploy_load_balancer_controller(name: str, provider: k8s.Provider, cluster_name: pulumi.Output[str],
                                   region: str, vpc_id: pulumi.Output[str],
                                   chart_version: str = "1.14.0",
                                   depends_on=None) -> Dict[str, Any]:
    """
    Deploy the AWS Load Balancer Controller using Helm

    Args:
        name: Release name prefix
        provider: Kubernetes provider
        cluster_name: EKS cluster name
        region: AWS region
        vpc_id: VPC ID
        chart_version: eks/aws-load-balancer-controller chart version
        depends_on: Resources to wait for (pod identity, node group)

    Returns:
        Dict with controller release
    """
    values = pulumi.Output.all(cluster_name, vpc_id).apply(
        lambda args: build_load_balancer_controller_values(args[0], region, args[1])
    )

    release = k8s.helm.v3.Release(
        f"{name}-aws-load-balancer-controller",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo=CONTROLLER_CHART_REPO
        ),
        chart="aws-load-balancer-controller",
        version=chart_version,
        name="aws-load-balancer-controller",
        namespace=CONTROLLER_NAMESPACE,
        values=values,
        wait_for_jobs=True,
        timeout=600,
        opts=pulumi.ResourceOptions(
            provider=provider,
            depends_on=[d for d in (depends_on or []) if d is not None]
        )
    )

    return {
        "release": release,
        "release_name": release.name,
        "status": "✅ Enabled"
    }


def create_load_balancer_resources(cluster_name: str, cluster_name_output: pulumi.Output[str],
                                  provider: k8s.Provider, role_arn: pulumi.Output[str],
                                  region: str, vpc_id: pulumi.Output[str],
                                  chart_version: str = "1.14.0",
                                  depends_on=None,
                                  tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the AWS Load Balancer Controller and its pod identity

    Args:
        cluster_name: EKS cluster name used as prefix
        cluster_name_output: Cluster name output from the cluster resource
        provider: Kubernetes provider
        role_arn: Controller IAM role ARN
        region: AWS region
        vpc_id: VPC ID
        chart_version: Chart version
        depends_on: Resources the release waits for
        tags: Additional tags

    Returns:
        Dict with controller outputs
    """
    identity_result = create_load_balancer_controller_identity(
        cluster_name, cluster_name_output, role_arn, tags
    )

    controller_result = deploy_load_balancer_controller(
        cluster_name,
        provider,
        cluster_name_output,
        region,
        vpc_id,
        chart_version,
        [identity_result["pod_identity_association"], *(depends_on or [])]
    )

    return {
        "load_balancer_controller_status": controller_result["status"],
        "load_balancer_controller_release": controller_result["release_name"],
        # Keep references to resources for dependencies
        "_pod_identity_association": identity_result["pod_identity_association"],
        "_release": controller_result["release"]
    }
