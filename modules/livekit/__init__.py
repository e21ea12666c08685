"""
LiveKit Module
"""

from .functions import (
    create_livekit_resources,
    build_livekit_values,
    build_ingress_annotations,
)

__all__ = [
    "create_livekit_resources",
    "build_livekit_values",
    "build_ingress_annotations",
]
