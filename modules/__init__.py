"""
Pulumi modules for LiveKit on EKS
Simple function-based approach, one package per concern
"""

from .vpc import create_vpc_resources
from .iam import create_iam_resources
from .eks import create_eks_resources
from .redis import create_redis_resources
from .addons import create_addons_resources
from .load_balancer import create_load_balancer_resources
from .dns import create_dns_resources
from .livekit import create_livekit_resources
from .sip import create_sip_resources

__all__ = [
    "create_vpc_resources",
    "create_iam_resources",
    "create_eks_resources",
    "create_redis_resources",
    "create_addons_resources",
    "create_load_balancer_resources",
    "create_dns_resources",
    "create_livekit_resources",
    "create_sip_resources"
]
