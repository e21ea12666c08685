"""
EKS Module for the LiveKit cluster
"""

from .functions import (
    create_eks_resources,
    create_access_entries,
    EKS_ADMIN_POLICIES,
)

__all__ = [
    "create_eks_resources",
    "create_access_entries",
    "EKS_ADMIN_POLICIES",
]
