"""
AWS Load Balancer Controller Module
"""

from .functions import (
    create_load_balancer_resources,
    build_load_balancer_controller_values,
)

__all__ = [
    "create_load_balancer_resources",
    "build_load_balancer_controller_values",
]
