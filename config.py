"""
Configuration management for the LiveKit on EKS deployment
"""

import pulumi
from typing import Dict

# Twilio Elastic SIP Trunking signalling ranges
TWILIO_SIGNALING_CIDRS = [
    "54.172.60.0/30",
    "54.244.51.0/30",
    "54.171.127.192/30",
    "35.156.191.128/30",
    "54.65.63.192/30",
    "54.169.127.128/30",
    "54.252.254.64/30",
    "177.71.206.192/30",
]

# Twilio media (RTP) ranges
TWILIO_MEDIA_CIDRS = ["168.86.128.0/18"]


class Config:
    """Centralized configuration management for the LiveKit deployment"""

    def __init__(self):
        self.config = pulumi.Config()
        self.aws_config = pulumi.Config("aws")

        # AWS Configuration
        self.aws_region = self.aws_config.get("region") or "us-east-1"
        self.environment = self.config.get("environment") or pulumi.get_stack()

        # Cluster Configuration
        self.cluster_name = self.config.get("cluster_name") or f"livekit-{self.environment}"
        self.cluster_version = self.config.get("cluster_version") or "1.32"
        self.deployment_role_arn = self.config.get("deployment_role_arn") or ""

        # VPC Configuration
        self.vpc_cidr = self.config.get("vpc_cidr") or "10.0.0.0/16"
        self.public_subnet_cidrs = self.config.get_object("public_subnet_cidrs") or ["10.0.1.0/24", "10.0.2.0/24"]
        self.private_subnet_cidrs = self.config.get_object("private_subnet_cidrs") or ["10.0.10.0/24", "10.0.20.0/24"]
        self.single_nat_gateway = self._bool("single_nat_gateway", True)

        # Node Configuration
        self.node_instance_types = self.config.get_object("node_instance_types") or ["c5.2xlarge"]
        self.node_desired_size = self.config.get_int("node_desired_size") or 2
        self.node_max_size = self.config.get_int("node_max_size") or 5
        self.node_min_size = self.config.get_int("node_min_size") or 1
        self.node_disk_size = self.config.get_int("node_disk_size") or 50
        self.enable_spot_instances = self._bool("enable_spot_instances", False)

        # Resource Management
        self.use_existing_cluster_role = self._bool("use_existing_cluster_role", False)
        self.existing_cluster_role_name = self.config.get("existing_cluster_role_name") or ""
        self.use_existing_node_role = self._bool("use_existing_node_role", False)
        self.existing_node_role_name = self.config.get("existing_node_role_name") or ""
        self.existing_kms_key_arn = self.config.get("existing_kms_key_arn") or ""

        # Logging Configuration
        self.cluster_enabled_log_types = self.config.get_object("cluster_enabled_log_types") or ["api", "audit", "authenticator"]
        self.cloudwatch_log_group_retention_in_days = self.config.get_int("cloudwatch_log_group_retention_in_days") or 30

        # Redis (ElastiCache)
        self.redis_node_type = self.config.get("redis_node_type") or "cache.t3.micro"
        self.redis_num_cache_clusters = self.config.get_int("redis_num_cache_clusters") or 1
        self.redis_engine_version = self.config.get("redis_engine_version") or "7.1"
        self.redis_port = self.config.get_int("redis_port") or 6379

        # DNS and certificates
        self.domain_name = self.config.get("domain_name") or ""
        self._turn_domain = self.config.get("turn_domain") or ""
        self.turn_tls_secret_name = self.config.get("turn_tls_secret_name") or ""
        self.hosted_zone_id = self.config.get("hosted_zone_id") or ""
        self.certificate_arn = self.config.get("certificate_arn") or ""
        self.enable_acm_certificate = self._bool("enable_acm_certificate", True)
        self.enable_external_dns = self._bool("enable_external_dns", False)

        # LiveKit
        self.livekit_namespace = self.config.get("livekit_namespace") or "livekit"
        self.livekit_chart_version = self.config.get("livekit_chart_version") or ""
        self.livekit_api_key = self.config.get("livekit_api_key") or "APIKey"
        self.livekit_api_secret = self.config.require_secret("livekit_api_secret")
        self.livekit_replicas = self.config.get_int("livekit_replicas") or 2
        self.livekit_min_replicas = self.config.get_int("livekit_min_replicas") or 1
        self.livekit_max_replicas = self.config.get_int("livekit_max_replicas") or 5
        self.livekit_target_cpu = self.config.get_int("livekit_target_cpu") or 60
        self.livekit_resources = self.config.get_object("livekit_resources") or {
            "requests": {"cpu": "7000m", "memory": "1024Mi"},
            "limits": {"cpu": "7500m", "memory": "2048Mi"},
        }
        self.load_balancer_controller_chart_version = self.config.get("load_balancer_controller_chart_version") or "1.14.0"

        # SIP
        self.enable_sip = self._bool("enable_sip", False)
        self.enable_kamailio = self._bool("enable_kamailio", False)
        self.sip_port = self.config.get_int("sip_port") or 5060
        self.rtp_port_range = self.config.get("rtp_port_range") or "10000-20000"
        self.sip_min_replicas = self.config.get_int("sip_min_replicas") or 1
        self.sip_max_replicas = self.config.get_int("sip_max_replicas") or 3
        self.sip_signaling_cidrs = self.config.get_object("sip_signaling_cidrs") or TWILIO_SIGNALING_CIDRS
        self.sip_media_cidrs = self.config.get_object("sip_media_cidrs") or TWILIO_MEDIA_CIDRS

        # Additional tags
        self.additional_tags = self.config.get_object("tags") or {}

    def _bool(self, key: str, default: bool) -> bool:
        value = self.config.get_bool(key)
        return default if value is None else value

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Environment": self.environment,
            "Project": "livekit",
            "ManagedBy": "pulumi",
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def capacity_type(self) -> str:
        """Get node group capacity type based on spot instance configuration"""
        return "SPOT" if self.enable_spot_instances else "ON_DEMAND"

    @property
    def turn_domain(self) -> str:
        """TURN hostname, defaults to turn-<domain>"""
        if self._turn_domain:
            return self._turn_domain
        return f"turn-{self.domain_name}" if self.domain_name else ""

    @property
    def kubeconfig_command(self) -> str:
        return f"aws eks update-kubeconfig --region {self.aws_region} --name {self.cluster_name}"

    @property
    def node_subnets_public(self) -> bool:
        """SIP pods use host networking and need nodes with public addresses"""
        return self.enable_sip


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()
