"""
SIP Module: LiveKit SIP bridge and Kamailio dispatcher
"""

from .functions import (
    create_sip_resources,
    build_sip_config,
    render_sip_config,
    render_kamailio_cfg,
)

__all__ = [
    "create_sip_resources",
    "build_sip_config",
    "render_sip_config",
    "render_kamailio_cfg",
]
