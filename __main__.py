"""
LiveKit on EKS
Network, cluster, Redis, load balancing, certificates, LiveKit and optional SIP
"""
import pulumi
from config import get_config
from modules import (
    create_vpc_resources,
    create_iam_resources,
    create_eks_resources,
    create_redis_resources,
    create_addons_resources,
    create_load_balancer_resources,
    create_dns_resources,
    create_livekit_resources,
    create_sip_resources,
)

cfg = get_config()
tags = cfg.common_tags

# 1. Network
network = create_vpc_resources(
    cluster_name=cfg.cluster_name,
    vpc_cidr=cfg.vpc_cidr,
    public_subnet_cidrs=cfg.public_subnet_cidrs,
    private_subnet_cidrs=cfg.private_subnet_cidrs,
    single_nat_gateway=cfg.single_nat_gateway,
    sip_signaling_cidrs=cfg.sip_signaling_cidrs,
    sip_media_cidrs=cfg.sip_media_cidrs,
    sip_port=cfg.sip_port,
    rtp_port_range=cfg.rtp_port_range,
    tags=tags,
)

# 2. IAM
iam = create_iam_resources(
    cluster_name=cfg.cluster_name,
    use_existing_cluster_role=cfg.use_existing_cluster_role,
    existing_cluster_role_name=cfg.existing_cluster_role_name,
    use_existing_node_role=cfg.use_existing_node_role,
    existing_node_role_name=cfg.existing_node_role_name,
    tags=tags,
)

# 3. EKS cluster and nodes; SIP needs host networking on public nodes
node_subnet_ids = network["public_subnet_ids"] if cfg.node_subnets_public else network["private_subnet_ids"]
eks = create_eks_resources(
    cluster_name=cfg.cluster_name,
    cluster_version=cfg.cluster_version,
    cluster_role_arn=iam["cluster_role_arn"],
    node_group_role_arn=iam["node_group_role_arn"],
    cluster_subnet_ids=network["public_subnet_ids"] + network["private_subnet_ids"],
    node_subnet_ids=node_subnet_ids or network["public_subnet_ids"],
    cluster_security_group_id=network["cluster_security_group_id"],
    node_security_group_id=network["node_group_security_group_id"],
    node_instance_types=cfg.node_instance_types,
    node_desired_size=cfg.node_desired_size,
    node_max_size=cfg.node_max_size,
    node_min_size=cfg.node_min_size,
    node_disk_size=cfg.node_disk_size,
    capacity_type=cfg.capacity_type,
    extra_node_security_group_ids=[network["sip_security_group_id"]] if cfg.enable_sip else [],
    deployment_role_arn=cfg.deployment_role_arn,
    cluster_enabled_log_types=cfg.cluster_enabled_log_types,
    cloudwatch_log_group_retention_in_days=cfg.cloudwatch_log_group_retention_in_days,
    existing_kms_key_arn=cfg.existing_kms_key_arn,
    node_role_dependencies=list((iam["_node_policy_attachments"] or {}).values()),
    tags=tags,
)

# 4. Redis
redis = create_redis_resources(
    cluster_name=cfg.cluster_name,
    vpc_id=network["vpc_id"],
    vpc_cidr=cfg.vpc_cidr,
    subnet_ids=network["private_subnet_ids"] or network["public_subnet_ids"],
    node_security_group_id=network["node_group_security_group_id"],
    node_type=cfg.redis_node_type,
    num_cache_clusters=cfg.redis_num_cache_clusters,
    engine_version=cfg.redis_engine_version,
    port=cfg.redis_port,
    tags=tags,
)

# 5. Kubernetes provider and metrics-server
addons = create_addons_resources(
    cluster_name=cfg.cluster_name,
    cluster_endpoint=eks["cluster_endpoint"],
    cluster_ca_data=eks["cluster_certificate_authority_data"],
    cluster_name_output=eks["cluster_name"],
    region=cfg.aws_region,
    depends_on=[eks["_node_group"], eks["_access"]["access_entry"] if eks["_access"] else None],
)
k8s_provider = addons["_k8s_provider"]

# 6. AWS Load Balancer Controller
load_balancer = create_load_balancer_resources(
    cluster_name=cfg.cluster_name,
    cluster_name_output=eks["cluster_name"],
    provider=k8s_provider,
    role_arn=iam["load_balancer_controller_role_arn"],
    region=cfg.aws_region,
    vpc_id=network["vpc_id"],
    chart_version=cfg.load_balancer_controller_chart_version,
    depends_on=[eks["_addons"].get("pod_identity_agent"), eks["_node_group"]],
    tags=tags,
)

# 7. Certificate and DNS
dns = create_dns_resources(
    cluster_name=cfg.cluster_name,
    domain=cfg.domain_name,
    hosted_zone_id=cfg.hosted_zone_id,
    turn_domain=cfg.turn_domain,
    certificate_arn=cfg.certificate_arn,
    enable_acm_certificate=cfg.enable_acm_certificate,
    enable_external_dns=cfg.enable_external_dns,
    provider=k8s_provider,
    cluster_name_output=eks["cluster_name"],
    depends_on=[eks["_addons"].get("pod_identity_agent")],
    tags=tags,
)

# 8. LiveKit
livekit = create_livekit_resources(
    cluster_name=cfg.cluster_name,
    provider=k8s_provider,
    redis_address=redis["redis_cluster_endpoint"],
    api_key=cfg.livekit_api_key,
    api_secret=cfg.livekit_api_secret,
    namespace=cfg.livekit_namespace,
    domain=cfg.domain_name,
    turn_domain=cfg.turn_domain,
    turn_tls_secret=cfg.turn_tls_secret_name,
    certificate_arn=dns["certificate_arn"],
    replicas=cfg.livekit_replicas,
    min_replicas=cfg.livekit_min_replicas,
    max_replicas=cfg.livekit_max_replicas,
    target_cpu=cfg.livekit_target_cpu,
    resources=cfg.livekit_resources,
    chart_version=cfg.livekit_chart_version,
    external_dns=cfg.enable_external_dns,
    depends_on=[load_balancer["_release"], addons["_metrics_server"], dns["_external_dns"]],
)

# 9. SIP bridge and Kamailio
sip = None
if cfg.enable_sip:
    sip = create_sip_resources(
        cluster_name=cfg.cluster_name,
        provider=k8s_provider,
        namespace=livekit["livekit_namespace"],
        api_key=cfg.livekit_api_key,
        api_secret=cfg.livekit_api_secret,
        domain=cfg.domain_name,
        redis_address=redis["redis_cluster_endpoint"],
        sip_port=cfg.sip_port,
        rtp_port_range=cfg.rtp_port_range,
        min_replicas=cfg.sip_min_replicas,
        max_replicas=cfg.sip_max_replicas,
        enable_kamailio=cfg.enable_kamailio,
        depends_on=[livekit["_release"], load_balancer["_release"]],
    )

# Exports
pulumi.export("cluster_name", eks["cluster_name"])
pulumi.export("cluster_endpoint", eks["cluster_endpoint"])
pulumi.export("vpc_id", network["vpc_id"])
pulumi.export("redis_cluster_endpoint", redis["redis_cluster_endpoint"])
pulumi.export("sip_security_group_id", network["sip_security_group_id"])
pulumi.export("certificate_arn", dns["certificate_arn"])
pulumi.export("livekit_namespace", livekit["livekit_namespace"])
pulumi.export("livekit_release", livekit["livekit_release"])
pulumi.export("kubeconfig_command", cfg.kubeconfig_command)
if sip:
    pulumi.export("kamailio_hostname", sip["kamailio_hostname"])
pulumi.export("deployment_summary", {
    "region": cfg.aws_region,
    "environment": cfg.environment,
    "cluster_name": cfg.cluster_name,
    "domain": cfg.domain_name,
    "turn_domain": cfg.turn_domain,
    "metrics_server": addons["metrics_server_status"],
    "load_balancer_controller": load_balancer["load_balancer_controller_status"],
    "external_dns": dns["external_dns_status"],
    "sip": sip["sip_status"] if sip else "❌ Disabled",
    "kamailio": sip["kamailio_status"] if sip else "❌ Disabled",
})
