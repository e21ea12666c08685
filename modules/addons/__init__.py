"""
Addons Module for the LiveKit EKS cluster
"""

from .functions import create_addons_resources, build_kubeconfig

__all__ = [
    "create_addons_resources",
    "build_kubeconfig",
]
