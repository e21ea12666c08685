"""
DNS and Certificate Module for LiveKit
"""

from .functions import (
    create_dns_resources,
    certificate_domains,
    validation_domains,
)

__all__ = [
    "create_dns_resources",
    "certificate_domains",
    "validation_domains",
]
