"""
Addons Module Functions
Kubernetes provider and cluster add-ons for the LiveKit EKS cluster
"""

import pulumi
import pulumi_kubernetes as k8s
import yaml
from typing import Dict, Any


def build_kubeconfig(endpoint: str, ca_data: str, cluster_name: str, region: str = "") -> str:
    """
    Build an exec-based kubeconfig that authenticates with `aws eks get-token`

    Args:
        endpoint: Cluster API server URL
        ca_data: Base64 cluster CA bundle
        cluster_name: EKS cluster name
        region: AWS region passed to get-token, omitted when empty

    Returns:
        Kubeconfig YAML text
    """
    args = ["eks", "get-token", "--cluster-name", cluster_name]
    if region:
        args += ["--region", region]

    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": ca_data,
            },
        }],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": cluster_name},
        }],
        "current-context": cluster_name,
        "users": [{
            "name": cluster_name,
            "user": {
                "exec": {
                    "apiVersion": "client.authentication.k8s.io/v1beta1",
                    "command": "aws",
                    "args": args,
                },
            },
        }],
    }
    return yaml.safe_dump(kubeconfig, default_flow_style=False, sort_keys=False)


def create_kubernetes_provider(name: str, cluster_endpoint: 'pulumi.Output[str]',
                              cluster_ca_data: 'pulumi.Output[str]',
                              cluster_name: 'pulumi.Output[str]',
                              region: str = "",
                              depends_on=None) -> k8s.Provider:
    """
    Create Kubernetes provider for EKS cluster

    Args:
        name: Provider name prefix
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data
        cluster_name: EKS cluster name
        region: AWS region
        depends_on: Resources the provider waits for (cluster, node group)

    Returns:
        Kubernetes provider instance
    """
    kubeconfig = pulumi.Output.all(cluster_endpoint, cluster_ca_data, cluster_name).apply(
        lambda args: build_kubeconfig(args[0], args[1], args[2], region)
    )

    return k8s.Provider(
        f"{name}-k8s-provider",
        kubeconfig=kubeconfig,
        opts=pulumi.ResourceOptions(depends_on=[d for d in (depends_on or []) if d is not None])
    )


def deploy_metrics_server(name: str, provider: k8s.Provider) -> Dict[str, Any]:
    """
    Deploy metrics server using Helm

    Horizontal pod autoscalers for LiveKit and SIP read CPU from it.
    """
    metrics_server = k8s.helm.v3.Release(
        f"{name}-metrics-server",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://kubernetes-sigs.github.io/metrics-server/"
        ),
        chart="metrics-server",
        name="metrics-server",
        namespace="kube-system",
        values={
            "args": [
                "--kubelet-preferred-address-types=InternalIP,ExternalIP,Hostname",
                "--kubelet-use-node-status-port",
                "--metric-resolution=15s"
            ]
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "metrics_server": metrics_server,
        "status": "✅ Enabled"
    }


def create_addons_resources(cluster_name: str,
                           cluster_endpoint: 'pulumi.Output[str]',
                           cluster_ca_data: 'pulumi.Output[str]',
                           cluster_name_output: 'pulumi.Output[str]' = None,
                           region: str = "",
                           enable_metrics_server: bool = True,
                           depends_on=None) -> Dict[str, Any]:
    """
    Create Kubernetes provider and add-ons for EKS cluster

    Args:
        cluster_name: EKS cluster name
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data
        cluster_name_output: Cluster name output, ties the provider to the cluster
        region: AWS region
        enable_metrics_server: Deploy metrics server
        depends_on: Resources the provider waits for

    Returns:
        Dict with provider, add-on resources and status
    """
    k8s_provider = create_kubernetes_provider(
        cluster_name,
        cluster_endpoint,
        cluster_ca_data,
        cluster_name_output if cluster_name_output is not None else cluster_name,
        region,
        depends_on
    )

    metrics_server_result = None
    if enable_metrics_server:
        metrics_server_result = deploy_metrics_server(cluster_name, k8s_provider)

    return {
        "metrics_server_status": metrics_server_result["status"] if metrics_server_result else "❌ Disabled",
        # Keep references to resources for dependencies
        "_k8s_provider": k8s_provider,
        "_metrics_server": metrics_server_result["metrics_server"] if metrics_server_result else None
    }
