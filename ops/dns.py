"""ALB discovery and Route53 alias records for the LiveKit domain"""
import logging
import re
from typing import Any, Dict, Optional

from ops import shell
from ops.errors import CommandError, OpsError
from ops.retry import log_operation
from ops.settings import Settings

logger = logging.getLogger(__name__)

# ALB: name.<region>.elb.amazonaws.com, NLB: name.elb.<region>.amazonaws.com
LOAD_BALANCER_HOSTNAME = re.compile(
    r"^[a-zA-Z0-9][a-zA-Z0-9-]*\.([a-z0-9-]+\.elb|elb\.[a-z0-9-]+)\.amazonaws\.com$"
)


def is_load_balancer_hostname(hostname: Optional[str]) -> bool:
    return bool(hostname) and LOAD_BALANCER_HOSTNAME.match(hostname.strip()) is not None


def get_ingress_hostname(namespace: str) -> str:
    """Hostname of the first ingress in namespace with a load balancer assigned"""
    try:
        ingresses = shell.kubectl_json("get", "ingress", "-n", namespace)
    except CommandError as e:
        logger.warning(f"Could not read ingresses in {namespace}: {e}")
        return ""
    for item in ingresses.get("items", []):
        for entry in item.get("status", {}).get("loadBalancer", {}).get("ingress", []) or []:
            if entry.get("hostname"):
                return entry["hostname"]
    return ""


def _latest_livekit_load_balancer(elbv2) -> Optional[Dict[str, Any]]:
    candidates = []
    paginator = elbv2.get_paginator("describe_load_balancers")
    for page in paginator.paginate():
        for lb in page.get("LoadBalancers", []):
            if "livekit" in lb.get("LoadBalancerName", "").lower() or \
                    "livekit" in lb.get("DNSName", "").lower():
                candidates.append(lb)
    if not candidates:
        return None
    return max(candidates, key=lambda lb: lb["CreatedTime"])


@log_operation("Find LiveKit load balancer")
def find_load_balancer(settings: Settings, elbv2) -> str:
    """
    Locate the LiveKit ALB hostname

    Order: the ingress status, MANUAL_ALB_ENDPOINT, then the newest load
    balancer whose name mentions livekit.
    """
    hostname = get_ingress_hostname(settings.livekit_namespace)
    if is_load_balancer_hostname(hostname):
        logger.info(f"Using ingress hostname {hostname}")
        return hostname
    if hostname:
        logger.warning(f"Ignoring malformed ingress hostname {hostname!r}")

    if settings.manual_alb_endpoint:
        if not is_load_balancer_hostname(settings.manual_alb_endpoint):
            raise OpsError(f"MANUAL_ALB_ENDPOINT is not a load balancer hostname: {settings.manual_alb_endpoint}")
        logger.info(f"Using MANUAL_ALB_ENDPOINT {settings.manual_alb_endpoint}")
        return settings.manual_alb_endpoint

    lb = _latest_livekit_load_balancer(elbv2)
    if lb:
        logger.info(f"Using newest LiveKit load balancer {lb['LoadBalancerName']}")
        return lb["DNSName"]

    raise OpsError("No LiveKit load balancer found; is the ingress provisioned?")


def get_load_balancer_zone_id(elbv2, dns_name: str) -> str:
    """Canonical hosted zone id of the load balancer serving dns_name"""
    paginator = elbv2.get_paginator("describe_load_balancers")
    for page in paginator.paginate():
        for lb in page.get("LoadBalancers", []):
            if lb.get("DNSName", "").lower() == dns_name.lower():
                return lb["CanonicalHostedZoneId"]
    raise OpsError(f"Load balancer {dns_name} not found")


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


def _normalize(dns_name: str) -> str:
    name = dns_name.rstrip(".").lower()
    return name[len("dualstack."):] if name.startswith("dualstack.") else name


def find_record(route53, zone_id: str, name: str, record_type: str = "A") -> Optional[Dict[str, Any]]:
    response = route53.list_resource_record_sets(
        HostedZoneId=zone_id,
        StartRecordName=name,
        StartRecordType=record_type,
        MaxItems="1",
    )
    for record in response.get("ResourceRecordSets", []):
        if record["Name"].lower() == _fqdn(name).lower() and record["Type"] == record_type:
            return record
    return None


def upsert_alias_record(route53, zone_id: str, name: str, target_dns: str, target_zone_id: str,
                        record_type: str = "A") -> str:
    """
    Point name at a load balancer with a single UPSERT

    Returns:
        Route53 change id, empty when the record already points at target_dns
    """
    existing = find_record(route53, zone_id, name, record_type)
    if existing and _normalize(existing.get("AliasTarget", {}).get("DNSName", "")) == _normalize(target_dns):
        logger.info(f"{name} already aliases {target_dns}")
        return ""

    response = route53.change_resource_record_sets(
        HostedZoneId=zone_id,
        ChangeBatch={
            "Comment": f"LiveKit alias for {name}",
            "Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": name,
                    "Type": record_type,
                    "AliasTarget": {
                        "HostedZoneId": target_zone_id,
                        "DNSName": f"dualstack.{target_dns}" if not target_dns.startswith("dualstack.") else target_dns,
                        "EvaluateTargetHealth": True,
                    },
                },
            }],
        },
    )
    change_id = response["ChangeInfo"]["Id"]
    logger.info(f"Submitted alias {name} -> {target_dns} ({change_id})")
    return change_id


def wait_for_change(route53, change_id: str, delay: int = 10, max_attempts: int = 60) -> None:
    waiter = route53.get_waiter("resource_record_sets_changed")
    waiter.wait(Id=change_id, WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts})


def export_endpoint(path: str, github_output: str, endpoint: str, domain: str) -> None:
    """Write the endpoint for later steps, and to GITHUB_OUTPUT when running in Actions"""
    if path:
        with open(path, "w") as f:
            f.write(endpoint + "\n")
        logger.info(f"Endpoint written to {path}")
    if github_output:
        with open(github_output, "a") as f:
            f.write(f"alb_endpoint={endpoint}\n")
            f.write(f"primary_domain={domain}\n")


@log_operation("Reconcile LiveKit DNS")
def reconcile_dns(settings: Settings, elbv2, route53, wait: bool = True) -> Dict[str, str]:
    settings.require("domain_name", "hosted_zone_id")

    endpoint = find_load_balancer(settings, elbv2)
    target_zone_id = get_load_balancer_zone_id(elbv2, endpoint)
    change_id = upsert_alias_record(route53, settings.hosted_zone_id, settings.domain_name,
                                    endpoint, target_zone_id)
    if wait and change_id:
        wait_for_change(route53, change_id)
    export_endpoint(settings.alb_endpoint_output_file, settings.github_output, endpoint, settings.domain_name)

    return {
        "domain": settings.domain_name,
        "alb_endpoint": endpoint,
        "change_id": change_id,
    }
