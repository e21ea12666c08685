"""Prerequisite, identity and deployment health checks"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from ops import shell
from ops.errors import CommandError, OpsError

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("aws", "kubectl", "helm", "pulumi")
OPTIONAL_TOOLS = ("jq", "curl")


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ""

    def __str__(self) -> str:
        mark = "✅" if self.ok else "❌"
        return f"{mark} {self.name}: {self.detail}" if self.detail else f"{mark} {self.name}"


def check_prerequisites(required: Iterable[str] = REQUIRED_TOOLS,
                        optional: Iterable[str] = OPTIONAL_TOOLS) -> List[CheckResult]:
    """Report which CLI tools are on PATH; only required ones fail the check"""
    results = []
    for name, present in shell.check_tools(required).items():
        results.append(CheckResult(name, present, "" if present else "missing"))
    for name, present in shell.check_tools(optional).items():
        results.append(CheckResult(name, True, "" if present else "missing (optional)"))
    return results


def verify_aws_identity(sts) -> Dict[str, str]:
    identity = sts.get_caller_identity()
    logger.info(f"AWS account {identity['Account']} as {identity['Arn']}")
    return {"account": identity["Account"], "arn": identity["Arn"]}


def _safe_json(*args: str) -> Any:
    try:
        return shell.kubectl_json(*args)
    except CommandError as e:
        logger.debug(f"kubectl {' '.join(args)} failed: {e}")
        return None


def summarize_pods(pods: Dict[str, Any]) -> Dict[str, int]:
    items = (pods or {}).get("items", [])
    running = sum(1 for p in items if p.get("status", {}).get("phase") == "Running")
    return {"total": len(items), "running": running}


def deployment_report(namespace: str = "livekit", redis_endpoint: str = "") -> List[CheckResult]:
    """
    Health of a LiveKit deployment as seen through kubectl

    Covers the namespace, LiveKit pods, services, ingress hostname, the load
    balancer controller and the Redis endpoint.
    """
    results = []

    ns = _safe_json("get", "namespace", namespace)
    results.append(CheckResult("namespace", ns is not None, namespace))
    if ns is None:
        return results

    pods = summarize_pods(_safe_json("get", "pods", "-n", namespace, "-l", "app.kubernetes.io/name=livekit-server"))
    results.append(CheckResult(
        "livekit pods",
        pods["total"] > 0 and pods["running"] == pods["total"],
        f"{pods['running']}/{pods['total']} running"
    ))

    services = (_safe_json("get", "svc", "-n", namespace) or {}).get("items", [])
    results.append(CheckResult("services", bool(services), ", ".join(s["metadata"]["name"] for s in services)))

    hostname = ""
    for item in (_safe_json("get", "ingress", "-n", namespace) or {}).get("items", []):
        for entry in item.get("status", {}).get("loadBalancer", {}).get("ingress", []) or []:
            hostname = hostname or entry.get("hostname", "")
    results.append(CheckResult("ingress", bool(hostname), hostname or "no load balancer yet"))

    controller = summarize_pods(_safe_json(
        "get", "pods", "-n", "kube-system", "-l", "app.kubernetes.io/name=aws-load-balancer-controller"
    ))
    results.append(CheckResult(
        "load balancer controller",
        controller["running"] > 0,
        f"{controller['running']}/{controller['total']} running"
    ))

    results.append(CheckResult("redis endpoint", bool(redis_endpoint), redis_endpoint or "unknown"))
    return results


def check_redis_connectivity(endpoint: str, namespace: str = "livekit",
                             image: str = "redis:alpine", timeout: float = 120) -> CheckResult:
    """PING Redis from a throwaway pod inside the cluster"""
    if not endpoint:
        return CheckResult("redis ping", False, "no endpoint")
    host, _, port = endpoint.rpartition(":")
    if not host or not port.isdigit():
        host, port = endpoint, "6379"
    try:
        result = shell.kubectl(
            "run", "redis-ping", "-n", namespace, "--rm", "-i", "--restart=Never",
            f"--image={image}", "--", "redis-cli", "-h", host, "-p", port, "ping",
            timeout=timeout
        )
    except CommandError as e:
        return CheckResult("redis ping", False, str(e))
    ok = "PONG" in (result.stdout or "")
    return CheckResult("redis ping", ok, f"{host}:{port}" if ok else (result.stdout or "").strip())


def log_results(results: List[CheckResult]) -> bool:
    for result in results:
        if result.ok:
            logger.info(str(result))
        else:
            logger.error(str(result))
    return all(r.ok for r in results)


def list_chart_versions(chart: str = "livekit/livekit-server", repo_url: str = "https://helm.livekit.io",
                        limit: int = 10) -> List[Dict[str, str]]:
    """Available chart versions, newest first"""
    repo_name = chart.split("/", 1)[0]
    shell.helm("repo", "add", repo_name, repo_url, "--force-update")
    shell.helm("repo", "update", repo_name)
    output = shell.helm("search", "repo", chart, "--versions", "-o", "json").stdout
    try:
        versions = json.loads(output or "[]")
    except json.JSONDecodeError as e:
        raise OpsError(f"Unexpected helm output: {e}")
    return [
        {"version": v.get("version", ""), "app_version": v.get("app_version", "")}
        for v in versions[:limit]
    ]
