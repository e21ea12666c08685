"""
SIP Module Functions
LiveKit SIP bridge and the Kamailio load balancer that spreads inbound
trunk calls across SIP pods
"""

import hashlib
import pulumi
import pulumi_kubernetes as k8s
import yaml
from typing import Dict, Any

SIP_IMAGE = "livekit/sip:latest"
KAMAILIO_IMAGE = "ghcr.io/kamailio/kamailio:6.0.4-bookworm"
DISPATCHERS_IMAGE = "cycoresystems/dispatchers:latest"
DISPATCHER_LIST = "/etc/kamailio/dispatcher.list"
DISPATCHER_SET = "1"
SIP_POD_LABEL = "sip-server"

KAMAILIO_CFG_TEMPLATE = """#!KAMAILIO

####### Global Parameters #########
debug=2
log_stderror=yes
log_facility=LOG_LOCAL0
children=8

tcp_connection_lifetime=3605
tcp_max_connections=2048

dns=no
rev_dns=no

server_header="Server: Kamailio LB"
user_agent_header="User-Agent: Kamailio"

listen=udp:0.0.0.0:%(sip_port)d
listen=tcp:0.0.0.0:%(sip_port)d

disable_tcp=no
enable_sctp=no

####### Modules Section ########
loadmodule "tm.so"
loadmodule "tmx.so"
loadmodule "sl.so"
loadmodule "rr.so"
loadmodule "pv.so"
loadmodule "maxfwd.so"
loadmodule "textops.so"
loadmodule "siputils.so"
loadmodule "xlog.so"
loadmodule "sanity.so"
loadmodule "dispatcher.so"
loadmodule "ctl.so"

####### Module Parameters ########
modparam("ctl", "binrpc", "tcp:127.0.0.1:%(rpc_port)d")

modparam("tm", "fr_timer", 30000)
modparam("tm", "fr_inv_timer", 120000)

modparam("rr", "enable_full_lr", 1)
modparam("rr", "append_fromtag", 1)

modparam("dispatcher", "list_file", "%(dispatcher_list)s")
modparam("dispatcher", "flags", 2)
modparam("dispatcher", "ds_ping_method", "OPTIONS")
modparam("dispatcher", "ds_ping_interval", %(ping_interval)d)
modparam("dispatcher", "ds_probing_mode", 1)
modparam("dispatcher", "ds_ping_from", "sip:kamailio@localhost")

####### Routing Logic ########
request_route {
  xlog("L_INFO", "[$rm] from $si:$sp -> $ru (CID: $ci)\\n");

  if (!sanity_check()) {
    xlog("L_WARN", "Sanity check failed from $si\\n");
    exit;
  }

  if (!mf_process_maxfwd_header("10")) {
    sl_send_reply("483", "Too Many Hops");
    exit;
  }

  if (has_totag()) {
    if (loose_route()) {
      route(RELAY);
      exit;
    }
    if (is_method("ACK") && t_check_trans()) {
      route(RELAY);
      exit;
    }
    sl_send_reply("404", "Not Found");
    exit;
  }

  if (is_method("CANCEL")) {
    if (t_check_trans()) {
      route(RELAY);
    }
    exit;
  }

  if (is_method("INVITE|SUBSCRIBE")) {
    record_route();
  }

  if (is_method("OPTIONS")) {
    sl_send_reply("200", "OK");
    exit;
  }

  if (!ds_select_dst("%(dispatcher_set)s", "%(algorithm)d")) {
    xlog("L_ERR", "No backend available, check dispatcher list\\n");
    send_reply("503", "Service Unavailable");
    exit;
  }

  if (is_method("INVITE")) {
    xlog("L_NOTICE", "New call $fu -> $tu routed to $du (CID: $ci)\\n");
    t_on_failure("BACKEND_FAIL");
  }

  route(RELAY);
}

route[RELAY] {
  if (!t_relay()) {
    sl_reply_error();
  }
  exit;
}

failure_route[BACKEND_FAIL] {
  if (t_is_canceled()) {
    exit;
  }

  if (ds_next_dst()) {
    xlog("L_NOTICE", "Failover to: $du\\n");
    t_on_failure("BACKEND_FAIL");
    route(RELAY);
    exit;
  }

  xlog("L_ERR", "All backends failed (CID: $ci)\\n");
}

event_route[dispatcher:dst-down] {
  xlog("L_ERR", "Backend DOWN: $rm\\n");
}

event_route[dispatcher:dst-up] {
  xlog("L_NOTICE", "Backend UP: $rm\\n");
}
"""


def build_sip_config(api_key: str, api_secret: str, domain: str, redis_address: str,
                     sip_port: int = 5060, rtp_port_range: str = "10000-20000",
                     use_external_ip: bool = True, log_level: str = "debug") -> Dict[str, Any]:
    """
    Build the LiveKit SIP service configuration

    Args:
        api_key: LiveKit API key
        api_secret: LiveKit API secret
        domain: LiveKit hostname, used for the websocket URL
        redis_address: "host:port" of Redis
        sip_port: SIP signalling port
        rtp_port_range: RTP port range
        use_external_ip: Advertise the node's public IP
        log_level: SIP service log level

    Returns:
        Config dict
    """
    if not domain:
        raise ValueError("SIP requires the LiveKit domain for ws_url")

    return {
        "api_key": api_key,
        "api_secret": api_secret,
        "ws_url": f"wss://{domain}",
        "redis": {"address": redis_address},
        "sip_port": sip_port,
        "rtp_port": rtp_port_range,
        "use_external_ip": use_external_ip,
        "logging": {"level": log_level},
    }


def render_sip_config(**kwargs) -> str:
    """Render build_sip_config() as the YAML the SIP container reads"""
    return yaml.safe_dump(build_sip_config(**kwargs), default_flow_style=False, sort_keys=False)


def render_kamailio_cfg(sip_port: int = 5060, rpc_port: int = 9998, ping_interval: int = 60,
                        dispatcher_list: str = DISPATCHER_LIST, algorithm: int = 4) -> str:
    """
    Render kamailio.cfg for dispatcher-based SIP load balancing

    Args:
        sip_port: Port Kamailio listens on (UDP and TCP)
        rpc_port: binrpc port the dispatchers sidecar reloads through
        ping_interval: OPTIONS keepalive interval for backends, seconds
        dispatcher_list: Path of the dispatcher list file
        algorithm: ds_select_dst algorithm, 4 is round robin

    Returns:
        Config file text
    """
    return KAMAILIO_CFG_TEMPLATE % {
        "sip_port": sip_port,
        "rpc_port": rpc_port,
        "ping_interval": ping_interval,
        "dispatcher_list": dispatcher_list,
        "dispatcher_set": DISPATCHER_SET,
        "algorithm": algorithm,
    }


def create_sip_server(name: str, provider: k8s.Provider, namespace, config_yaml,
                      sip_port: int = 5060, min_replicas: int = 1, max_replicas: int = 3,
                      target_cpu: int = 70, depends_on=None) -> Dict[str, Any]:
    """
    Deploy the LiveKit SIP bridge

    Pods run on the host network so RTP reaches them directly; an HPA owns
    the replica count.

    Args:
        name: Resource name prefix
        provider: Kubernetes provider
        namespace: Target namespace
        config_yaml: Rendered SIP config (str or Output)
        sip_port: SIP port
        min_replicas: HPA minimum
        max_replicas: HPA maximum
        target_cpu: HPA CPU target percentage
        depends_on: Resources to wait for

    Returns:
        Dict with SIP resources
    """
    opts = pulumi.ResourceOptions(
        provider=provider,
        depends_on=[d for d in (depends_on or []) if d is not None]
    )
    labels = {"app": "sip-server"}

    config_map = k8s.core.v1.ConfigMap(
        f"{name}-sip-config",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="sip-config", namespace=namespace),
        data={"config.yaml": config_yaml},
        opts=opts
    )

    deployment = k8s.apps.v1.Deployment(
        f"{name}-sip-server",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name="sip-server",
            namespace=namespace,
            labels=labels
        ),
        spec=k8s.apps.v1.DeploymentSpecArgs(
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
            template=k8s.core.v1.PodTemplateSpecArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(
                    labels={**labels, SIP_POD_LABEL: DISPATCHER_SET},
                    annotations={"checksum/config": pulumi.Output.from_input(config_yaml).apply(
                        lambda text: hashlib.sha256(text.encode()).hexdigest())}
                ),
                spec=k8s.core.v1.PodSpecArgs(
                    host_network=True,
                    dns_policy="ClusterFirstWithHostNet",
                    affinity=k8s.core.v1.AffinityArgs(
                        pod_anti_affinity=k8s.core.v1.PodAntiAffinityArgs(
                            required_during_scheduling_ignored_during_execution=[
                                k8s.core.v1.PodAffinityTermArgs(
                                    label_selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
                                    topology_key="kubernetes.io/hostname"
                                )
                            ]
                        )
                    ),
                    containers=[k8s.core.v1.ContainerArgs(
                        name="sip",
                        image=SIP_IMAGE,
                        args=["--config", "/config/config.yaml"],
                        ports=[
                            k8s.core.v1.ContainerPortArgs(container_port=sip_port, protocol="UDP", name="sip-udp"),
                            k8s.core.v1.ContainerPortArgs(container_port=sip_port, protocol="TCP", name="sip-tcp"),
                        ],
                        volume_mounts=[k8s.core.v1.VolumeMountArgs(
                            name="config-volume",
                            mount_path="/config",
                            read_only=True
                        )],
                        resources=k8s.core.v1.ResourceRequirementsArgs(
                            requests={"cpu": "500m", "memory": "1Gi"},
                            limits={"cpu": "2000m", "memory": "2Gi"}
                        )
                    )],
                    volumes=[k8s.core.v1.VolumeArgs(
                        name="config-volume",
                        config_map=k8s.core.v1.ConfigMapVolumeSourceArgs(name=config_map.metadata.name)
                    )]
                )
            )
        ),
        opts=opts
    )

    service = k8s.core.v1.Service(
        f"{name}-sip-service",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="sip-server", namespace=namespace, labels=labels),
        spec=k8s.core.v1.ServiceSpecArgs(
            type="ClusterIP",
            selector=labels,
            ports=[
                k8s.core.v1.ServicePortArgs(name="sip-udp", protocol="UDP", port=sip_port, target_port=sip_port),
                k8s.core.v1.ServicePortArgs(name="sip-tcp", protocol="TCP", port=sip_port, target_port=sip_port),
            ]
        ),
        opts=opts
    )

    hpa = k8s.autoscaling.v2.HorizontalPodAutoscaler(
        f"{name}-sip-hpa",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="sip-server", namespace=namespace),
        spec=k8s.autoscaling.v2.HorizontalPodAutoscalerSpecArgs(
            scale_target_ref=k8s.autoscaling.v2.CrossVersionObjectReferenceArgs(
                api_version="apps/v1",
                kind="Deployment",
                name=deployment.metadata.name
            ),
            min_replicas=min_replicas,
            max_replicas=max_replicas,
            metrics=[k8s.autoscaling.v2.MetricSpecArgs(
                type="Resource",
                resource=k8s.autoscaling.v2.ResourceMetricSourceArgs(
                    name="cpu",
                    target=k8s.autoscaling.v2.MetricTargetArgs(
                        type="Utilization",
                        average_utilization=target_cpu
                    )
                )
            )]
        ),
        opts=opts
    )

    return {
        "config_map": config_map,
        "deployment": deployment,
        "service": service,
        "hpa": hpa,
        "deployment_name": deployment.metadata.name
    }


def create_dispatchers_rbac(name: str, provider: k8s.Provider, namespace,
                            depends_on=None) -> Dict[str, Any]:
    """
    Service account for the dispatchers sidecar

    It only watches SIP pods and their endpoints, so it gets read access.
    """
    opts = pulumi.ResourceOptions(
        provider=provider,
        depends_on=[d for d in (depends_on or []) if d is not None]
    )

    service_account = k8s.core.v1.ServiceAccount(
        f"{name}-dispatchers-sa",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="dispatchers", namespace=namespace),
        opts=opts
    )

    cluster_role = k8s.rbac.v1.ClusterRole(
        f"{name}-dispatchers-role",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="dispatchers-clusterrole"),
        rules=[
            k8s.rbac.v1.PolicyRuleArgs(
                api_groups=[""],
                resources=["pods", "services", "endpoints"],
                verbs=["get", "list", "watch"]
            ),
            k8s.rbac.v1.PolicyRuleArgs(
                api_groups=["discovery.k8s.io"],
                resources=["endpointslices"],
                verbs=["get", "list", "watch"]
            ),
        ],
        opts=opts
    )

    binding = k8s.rbac.v1.ClusterRoleBinding(
        f"{name}-dispatchers-binding",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="dispatchers-clusterrolebinding"),
        subjects=[k8s.rbac.v1.SubjectArgs(
            kind="ServiceAccount",
            name=service_account.metadata.name,
            namespace=namespace
        )],
        role_ref=k8s.rbac.v1.RoleRefArgs(
            api_group="rbac.authorization.k8s.io",
            kind="ClusterRole",
            name=cluster_role.metadata.name
        ),
        opts=opts
    )

    return {
        "service_account": service_account,
        "cluster_role": cluster_role,
        "binding": binding,
        "service_account_name": service_account.metadata.name
    }


def create_kamailio(name: str, provider: k8s.Provider, namespace, sip_port: int = 5060,
                    rpc_port: int = 9998, ping_interval: int = 60,
                    depends_on=None) -> Dict[str, Any]:
    """
    Deploy Kamailio with a dispatchers sidecar behind an internet-facing NLB

    The sidecar watches pods labelled sip-server=1, rewrites the dispatcher
    list and reloads Kamailio over binrpc.

    Args:
        name: Resource name prefix
        provider: Kubernetes provider
        namespace: Target namespace
        sip_port: SIP port exposed on the NLB
        rpc_port: Local binrpc port
        ping_interval: Backend keepalive interval
        depends_on: Resources to wait for, the load balancer controller in particular

    Returns:
        Dict with Kamailio resources
    """
    opts = pulumi.ResourceOptions(
        provider=provider,
        depends_on=[d for d in (depends_on or []) if d is not None]
    )
    labels = {"app": "kamailio"}

    config_map = k8s.core.v1.ConfigMap(
        f"{name}-kamailio-config",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="kamailio-config", namespace=namespace),
        data={"kamailio.cfg": render_kamailio_cfg(sip_port, rpc_port, ping_interval)},
        opts=opts
    )

    rbac = create_dispatchers_rbac(name, provider, namespace, depends_on)

    shared_mount = k8s.core.v1.VolumeMountArgs(name="dispatcher-shared", mount_path="/etc/kamailio")

    deployment = k8s.apps.v1.Deployment(
        f"{name}-kamailio",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="kamailio", namespace=namespace, labels=labels),
        spec=k8s.apps.v1.DeploymentSpecArgs(
            replicas=1,
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
            template=k8s.core.v1.PodTemplateSpecArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(labels=labels),
                spec=k8s.core.v1.PodSpecArgs(
                    service_account_name=rbac["service_account_name"],
                    volumes=[
                        k8s.core.v1.VolumeArgs(
                            name="kamailio-config",
                            config_map=k8s.core.v1.ConfigMapVolumeSourceArgs(name=config_map.metadata.name)
                        ),
                        k8s.core.v1.VolumeArgs(
                            name="dispatcher-shared",
                            empty_dir=k8s.core.v1.EmptyDirVolumeSourceArgs()
                        ),
                    ],
                    init_containers=[k8s.core.v1.ContainerArgs(
                        name="init-dispatcher",
                        image="busybox:1.36",
                        command=[
                            "sh", "-c",
                            f"echo '# managed by dispatchers sidecar' > {DISPATCHER_LIST} && "
                            f"chmod 666 {DISPATCHER_LIST}"
                        ],
                        volume_mounts=[shared_mount]
                    )],
                    containers=[
                        k8s.core.v1.ContainerArgs(
                            name="dispatchers",
                            image=DISPATCHERS_IMAGE,
                            env=[k8s.core.v1.EnvVarArgs(
                                name="POD_NAMESPACE",
                                value_from=k8s.core.v1.EnvVarSourceArgs(
                                    field_ref=k8s.core.v1.ObjectFieldSelectorArgs(field_path="metadata.namespace")
                                )
                            )],
                            args=[
                                "-set", f"{SIP_POD_LABEL}={DISPATCHER_SET}",
                                "-o", DISPATCHER_LIST,
                                "-h", "127.0.0.1",
                                "-p", str(rpc_port),
                            ],
                            volume_mounts=[shared_mount],
                            resources=k8s.core.v1.ResourceRequirementsArgs(
                                requests={"cpu": "50m", "memory": "64Mi"},
                                limits={"cpu": "200m", "memory": "128Mi"}
                            )
                        ),
                        k8s.core.v1.ContainerArgs(
                            name="kamailio",
                            image=KAMAILIO_IMAGE,
                            ports=[
                                k8s.core.v1.ContainerPortArgs(container_port=sip_port, protocol="UDP", name="sip-udp"),
                                k8s.core.v1.ContainerPortArgs(container_port=sip_port, protocol="TCP", name="sip-tcp"),
                            ],
                            volume_mounts=[
                                k8s.core.v1.VolumeMountArgs(
                                    name="kamailio-config",
                                    mount_path="/etc/kamailio/kamailio.cfg",
                                    sub_path="kamailio.cfg"
                                ),
                                shared_mount,
                            ],
                            # Not started until the sidecar has written at least one backend
                            startup_probe=k8s.core.v1.ProbeArgs(
                                exec_=k8s.core.v1.ExecActionArgs(command=[
                                    "sh", "-c",
                                    f"test -f {DISPATCHER_LIST} && grep -q '^{DISPATCHER_SET} sip:' {DISPATCHER_LIST}"
                                ]),
                                initial_delay_seconds=10,
                                period_seconds=3,
                                timeout_seconds=2,
                                failure_threshold=30
                            ),
                            readiness_probe=k8s.core.v1.ProbeArgs(
                                tcp_socket=k8s.core.v1.TCPSocketActionArgs(port=sip_port),
                                initial_delay_seconds=5,
                                period_seconds=5,
                                timeout_seconds=2
                            ),
                            liveness_probe=k8s.core.v1.ProbeArgs(
                                tcp_socket=k8s.core.v1.TCPSocketActionArgs(port=sip_port),
                                initial_delay_seconds=15,
                                period_seconds=10,
                                timeout_seconds=2
                            ),
                            resources=k8s.core.v1.ResourceRequirementsArgs(
                                requests={"cpu": "200m", "memory": "256Mi"},
                                limits={"cpu": "1000m", "memory": "512Mi"}
                            )
                        ),
                    ]
                )
            )
        ),
        opts=pulumi.ResourceOptions(
            provider=provider,
            depends_on=[config_map, rbac["binding"], *[d for d in (depends_on or []) if d is not None]]
        )
    )

    service = k8s.core.v1.Service(
        f"{name}-kamailio-service",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name="kamailio",
            namespace=namespace,
            annotations={
                "service.beta.kubernetes.io/aws-load-balancer-type": "nlb",
                "service.beta.kubernetes.io/aws-load-balancer-nlb-target-type": "ip",
                "service.beta.kubernetes.io/aws-load-balancer-scheme": "internet-facing",
                "service.beta.kubernetes.io/aws-load-balancer-cross-zone-load-balancing-enabled": "true",
            }
        ),
        spec=k8s.core.v1.ServiceSpecArgs(
            type="LoadBalancer",
            selector=labels,
            external_traffic_policy="Local",
            ports=[
                k8s.core.v1.ServicePortArgs(name="sip-udp", protocol="UDP", port=sip_port, target_port=sip_port),
                k8s.core.v1.ServicePortArgs(name="sip-tcp", protocol="TCP", port=sip_port, target_port=sip_port),
            ]
        ),
        opts=opts
    )

    return {
        "config_map": config_map,
        "rbac": rbac,
        "deployment": deployment,
        "service": service,
        "load_balancer_hostname": service.status.apply(
            lambda s: s.load_balancer.ingress[0].hostname
            if s and s.load_balancer and s.load_balancer.ingress else ""
        )
    }


def create_sip_resources(cluster_name: str, provider: k8s.Provider, namespace,
                        api_key: str, api_secret: pulumi.Output[str], domain: str,
                        redis_address: pulumi.Output[str],
                        sip_port: int = 5060, rtp_port_range: str = "10000-20000",
                        min_replicas: int = 1, max_replicas: int = 3,
                        enable_kamailio: bool = True,
                        depends_on=None) -> Dict[str, Any]:
    """
    Create the SIP bridge and, optionally, the Kamailio load balancer

    Returns:
        Dict with SIP outputs
    """
    config_yaml = pulumi.Output.secret(
        pulumi.Output.all(api_secret, redis_address).apply(
            lambda args: render_sip_config(
                api_key=api_key,
                api_secret=args[0],
                domain=domain,
                redis_address=args[1],
                sip_port=sip_port,
                rtp_port_range=rtp_port_range
            )
        )
    )

    sip_result = create_sip_server(
        cluster_name, provider, namespace, config_yaml,
        sip_port, min_replicas, max_replicas, depends_on=depends_on
    )

    kamailio_result = None
    if enable_kamailio:
        kamailio_result = create_kamailio(
            cluster_name, provider, namespace, sip_port,
            depends_on=[sip_result["service"], *(depends_on or [])]
        )

    return {
        "sip_status": "✅ Enabled",
        "kamailio_status": "✅ Enabled" if kamailio_result else "❌ Disabled",
        "kamailio_hostname": kamailio_result["load_balancer_hostname"] if kamailio_result else "",
        # Keep references to resources for dependencies
        "_sip": sip_result,
        "_kamailio": kamailio_result
    }
