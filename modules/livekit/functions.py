"""
LiveKit Module Functions
Deploys the LiveKit media server behind an ALB ingress
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, Any

LIVEKIT_CHART_REPO = "https://helm.livekit.io"
LIVEKIT_CHART = "livekit-server"
ALB_SSL_POLICY = "ELBSecurityPolicy-TLS-1-2-2017-01"

DEFAULT_RESOURCES = {
    "requests": {"cpu": "7000m", "memory": "1024Mi"},
    "limits": {"cpu": "7500m", "memory": "2048Mi"},
}


def build_ingress_annotations(certificate_arn: str = "", hostname: str = "",
                              external_dns: bool = False) -> Dict[str, str]:
    """
    ALB ingress annotations for LiveKit

    HTTPS and the 80->443 redirect only apply once a certificate is known.
    """
    annotations = {
        "alb.ingress.kubernetes.io/scheme": "internet-facing",
        "alb.ingress.kubernetes.io/target-type": "ip",
        "alb.ingress.kubernetes.io/backend-protocol": "HTTP",
        "alb.ingress.kubernetes.io/healthcheck-path": "/",
        "alb.ingress.kubernetes.io/healthcheck-interval-seconds": "30",
        "alb.ingress.kubernetes.io/healthcheck-timeout-seconds": "5",
        "alb.ingress.kubernetes.io/healthy-threshold-count": "2",
        "alb.ingress.kubernetes.io/unhealthy-threshold-count": "3",
        "alb.ingress.kubernetes.io/load-balancer-attributes": "idle_timeout.timeout_seconds=3600",
    }

    if certificate_arn:
        annotations.update({
            "alb.ingress.kubernetes.io/listen-ports": '[{"HTTP": 80}, {"HTTPS": 443}]',
            "alb.ingress.kubernetes.io/ssl-redirect": "443",
            "alb.ingress.kubernetes.io/ssl-policy": ALB_SSL_POLICY,
            "alb.ingress.kubernetes.io/certificate-arn": certificate_arn,
        })
    else:
        annotations["alb.ingress.kubernetes.io/listen-ports"] = '[{"HTTP": 80}]'

    if external_dns and hostname:
        annotations["external-dns.alpha.kubernetes.io/hostname"] = hostname

    return annotations


def build_livekit_values(redis_address: str, api_key: str, api_secret: str,
                         domain: str = "", turn_domain: str = "",
                         turn_tls_secret: str = "",
                         certificate_arn: str = "",
                         replicas: int = 2, min_replicas: int = 1, max_replicas: int = 5,
                         target_cpu: int = 60, resources: Dict[str, Any] = None,
                         rtc_port_range: tuple = (50000, 60000),
                         external_dns: bool = False) -> Dict[str, Any]:
    """
    Build Helm values for the livekit-server chart

    Args:
        redis_address: "host:port" of Redis
        api_key: LiveKit API key
        api_secret: LiveKit API secret
        domain: Public LiveKit hostname
        turn_domain: TURN hostname, TURN is disabled when empty
        turn_tls_secret: kubernetes.io/tls Secret for TURN/TLS, UDP only when empty
        certificate_arn: ACM certificate for the ALB
        replicas: Initial replica count
        min_replicas: Autoscaling minimum
        max_replicas: Autoscaling maximum
        target_cpu: Autoscaling CPU target percentage
        resources: Pod resource requests and limits
        rtc_port_range: UDP range for WebRTC media
        external_dns: Annotate the ingress for external-dns

    Returns:
        Values dict
    """
    if not redis_address:
        raise ValueError("LiveKit requires a Redis address")
    if min_replicas > max_replicas:
        raise ValueError("min_replicas must not exceed max_replicas")

    livekit = {
        "port": 7880,
        "log_level": "info",
        "rtc": {
            "use_external_ip": True,
            "port_range_start": rtc_port_range[0],
            "port_range_end": rtc_port_range[1],
            "tcp_port": 7881,
        },
        "redis": {"address": redis_address},
        "keys": {api_key: api_secret},
        "turn": {"enabled": False},
    }
    if turn_domain:
        livekit["turn"] = {
            "enabled": True,
            "domain": turn_domain,
            "udp_port": 3478,
        }
        # the chart mounts secretName as a volume, the Secret must already exist
        if turn_tls_secret:
            livekit["turn"].update({
                "tls_port": 5349,
                "secretName": turn_tls_secret,
            })

    values = {
        "replicaCount": replicas,
        "livekit": livekit,
        "loadBalancer": {
            "type": "alb",
            "annotations": build_ingress_annotations(certificate_arn, domain, external_dns),
        },
        "autoscaling": {
            "enabled": True,
            "minReplicas": min_replicas,
            "maxReplicas": max_replicas,
            "targetCPUUtilizationPercentage": target_cpu,
        },
        "resources": resources or DEFAULT_RESOURCES,
        "podSecurityContext": {
            "runAsNonRoot": True,
            "runAsUser": 1000,
            "fsGroup": 1000,
        },
        "affinity": {
            "podAntiAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": [{
                    "labelSelector": {
                        "matchExpressions": [{
                            "key": "app.kubernetes.io/name",
                            "operator": "In",
                            "values": ["livekit-server"],
                        }],
                    },
                    "topologyKey": "kubernetes.io/hostname",
                }],
            },
        },
    }
    if domain:
        values["loadBalancer"]["tls"] = [{"hosts": [domain]}]

    return values


def create_livekit_namespace(name: str, namespace: str, provider: k8s.Provider) -> Dict[str, Any]:
    ns = k8s.core.v1.Namespace(
        f"{name}-livekit-namespace",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=namespace,
            labels={
                "name": namespace,
                "managed-by": "pulumi"
            }
        ),
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "namespace": ns,
        "namespace_name": ns.metadata.name
    }


def deploy_livekit(name: str, provider: k8s.Provider, namespace_name: pulumi.Output[str],
                   values, chart_version: str = "", depends_on=None) -> Dict[str, Any]:
    """
    Deploy LiveKit using Helm

    Args:
        name: Release name prefix
        provider: Kubernetes provider
        namespace_name: Target namespace
        values: Chart values (dict or Output of dict)
        chart_version: Pin a chart version, latest when empty
        depends_on: Resources to wait for, the load balancer controller in particular

    Returns:
        Dict with release resource and status
    """
    release = k8s.helm.v3.Release(
        f"{name}-livekit",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo=LIVEKIT_CHART_REPO
        ),
        chart=LIVEKIT_CHART,
        version=chart_version or None,
        name="livekit",
        namespace=namespace_name,
        values=values,
        timeout=600,
        opts=pulumi.ResourceOptions(
            provider=provider,
            depends_on=[d for d in (depends_on or []) if d is not None]
        )
    )

    return {
        "release": release,
        "release_name": release.name,
        "status": release.status.apply(lambda s: s.status if s else "unknown")
    }


def create_livekit_resources(cluster_name: str, provider: k8s.Provider,
                            redis_address: pulumi.Output[str],
                            api_key: str, api_secret: pulumi.Output[str],
                            namespace: str = "livekit",
                            domain: str = "", turn_domain: str = "",
                            turn_tls_secret: str = "",
                            certificate_arn="",
                            replicas: int = 2, min_replicas: int = 1, max_replicas: int = 5,
                            target_cpu: int = 60, resources: Dict[str, Any] = None,
                            chart_version: str = "",
                            external_dns: bool = False,
                            depends_on=None) -> Dict[str, Any]:
    """
    Create LiveKit namespace and release

    Returns:
        Dict with LiveKit outputs
    """
    namespace_result = create_livekit_namespace(cluster_name, namespace, provider)

    values = pulumi.Output.all(redis_address, api_secret, certificate_arn).apply(
        lambda args: build_livekit_values(
            redis_address=args[0],
            api_key=api_key,
            api_secret=args[1],
            domain=domain,
            turn_domain=turn_domain,
            turn_tls_secret=turn_tls_secret,
            certificate_arn=args[2] or "",
            replicas=replicas,
            min_replicas=min_replicas,
            max_replicas=max_replicas,
            target_cpu=target_cpu,
            resources=resources,
            external_dns=external_dns
        )
    )

    release_result = deploy_livekit(
        cluster_name,
        provider,
        namespace_result["namespace_name"],
        values,
        chart_version,
        depends_on
    )

    return {
        "livekit_namespace": namespace_result["namespace_name"],
        "livekit_release": release_result["release_name"],
        "livekit_status": release_result["status"],
        # Keep references to resources for dependencies
        "_namespace": namespace_result["namespace"],
        "_release": release_result["release"]
    }
