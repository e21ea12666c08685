"""
VPC Module for the LiveKit EKS cluster
"""

from .functions import (
    create_vpc_resources,
    create_sip_security_group,
    parse_port_range,
)

__all__ = [
    "create_vpc_resources",
    "create_sip_security_group",
    "parse_port_range",
]
