"""
IAM Module for the LiveKit EKS cluster
"""

from .functions import (
    create_iam_resources,
    create_pod_identity_role,
    build_pod_identity_trust_policy,
    load_load_balancer_controller_policy,
)

__all__ = [
    "create_iam_resources",
    "create_pod_identity_role",
    "build_pod_identity_trust_policy",
    "load_load_balancer_controller_policy",
]
