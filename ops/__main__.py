"""Command-line interface for operating the LiveKit EKS stack.

Usage:
    python -m ops deploy --environment dev --auto-approve
    python -m ops dns --domain livekit.example.com --hosted-zone-id Z123
"""
import argparse
import json
import logging
import sys
from typing import Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ops import checks, cluster, dns, stack
from ops.errors import ConfigurationError, OpsError
from ops.settings import Settings

logger = logging.getLogger("ops")


def _client(settings: Settings, service: str):
    return boto3.client(service, region_name=settings.aws_region)


def confirm(prompt: str, expected: str = "yes", input_func: Callable[[str], str] = input) -> bool:
    """False when the answer differs or there is no stdin to answer from"""
    try:
        answer = input_func(f"{prompt} Type '{expected}' to continue: ")
    except EOFError:
        logger.warning("No input available for confirmation")
        return False
    return answer.strip() == expected


def confirm_deploy(settings: Settings, input_func=input) -> None:
    if settings.non_interactive:
        return
    if not confirm(f"Deploy to environment '{settings.environment}'?", "yes", input_func):
        raise OpsError("Deploy cancelled")


def confirm_destroy(settings: Settings, input_func=input) -> None:
    """Production always needs the operator to type PRODUCTION, even with auto-approve"""
    if settings.is_production:
        if not confirm("⚠️  This destroys the PRODUCTION environment.", "PRODUCTION", input_func):
            raise OpsError("Destroy cancelled")
        return
    if settings.auto_approve:
        return
    if not confirm(f"Destroy environment '{settings.environment}'?", "yes", input_func):
        raise OpsError("Destroy cancelled")


def cmd_prerequisites(settings: Settings, args) -> int:
    results = checks.check_prerequisites()
    ok = checks.log_results(results)
    if ok and not args.skip_aws:
        checks.verify_aws_identity(_client(settings, "sts"))
    return 0 if ok else 1


def cmd_preview(settings: Settings, args) -> int:
    changes = stack.preview(stack.select_stack(settings))
    logger.info(f"Planned changes: {json.dumps(changes)}")
    return 0


def cmd_deploy(settings: Settings, args) -> int:
    s = stack.select_stack(settings)
    if not settings.non_interactive:
        stack.preview(s)
    confirm_deploy(settings, args.input_func)

    outputs = stack.up(s)
    settings.cluster_name = outputs.get("cluster_name") or settings.cluster_name
    stack.write_deployment_info(settings.deployment_info_file, settings, outputs)

    cluster.wait_for_cluster_active(_client(settings, "eks"), settings.cluster_name)
    cluster.update_kubeconfig(settings)
    cluster.verify_nodes()

    logger.info("🎉 Deployment complete")
    for key in ("cluster_name", "vpc_id", "redis_cluster_endpoint", "certificate_arn"):
        logger.info(f"  {key}: {outputs.get(key, '')}")
    return 0


def cmd_destroy(settings: Settings, args) -> int:
    confirm_destroy(settings, args.input_func)
    stack.destroy(stack.select_stack(settings))
    return 0


def cmd_outputs(settings: Settings, args) -> int:
    print(json.dumps(stack.get_outputs(stack.select_stack(settings)), indent=2, default=str))
    return 0


def cmd_redis_endpoint(settings: Settings, args) -> int:
    endpoint = resolve_redis_endpoint(settings)
    if not endpoint:
        raise OpsError("Redis endpoint not found in stack outputs")
    print(endpoint)
    return 0


def resolve_redis_endpoint(settings: Settings) -> str:
    """REDIS_ENDPOINT when set, otherwise the deployed stack's redis_cluster_endpoint"""
    if settings.redis_endpoint:
        return settings.redis_endpoint
    try:
        return stack.get_outputs(stack.select_stack(settings)).get("redis_cluster_endpoint") or ""
    except OpsError as e:
        logger.warning(f"Could not read Redis endpoint from stack outputs: {e}")
        return ""


def cmd_status(settings: Settings, args) -> int:
    cluster_info = cluster.describe_cluster(_client(settings, "eks"), settings.cluster_name)
    if cluster_info is None:
        logger.error(f"Cluster {settings.cluster_name} not found")
        return 1
    logger.info(f"Cluster {settings.cluster_name}: {cluster_info['status']} (v{cluster_info.get('version')})")
    cluster.update_kubeconfig(settings)
    checks.log_results(checks.deployment_report(settings.livekit_namespace, resolve_redis_endpoint(settings)))
    return 0


def cmd_test(settings: Settings, args) -> int:
    cluster.update_kubeconfig(settings)
    redis_endpoint = resolve_redis_endpoint(settings)
    results = checks.deployment_report(settings.livekit_namespace, redis_endpoint)
    if redis_endpoint and not args.skip_redis_ping:
        results.append(checks.check_redis_connectivity(redis_endpoint, settings.livekit_namespace))
    return 0 if checks.log_results(results) else 1


def cmd_dns(settings: Settings, args) -> int:
    result = dns.reconcile_dns(
        settings,
        _client(settings, "elbv2"),
        _client(settings, "route53"),
        wait=not args.no_wait,
    )
    logger.info(f"✅ {result['domain']} -> {result['alb_endpoint']}")
    return 0


def cmd_access(settings: Settings, args) -> int:
    settings.require("cluster_name", "deployment_role_arn")
    cluster.ensure_access_entry(_client(settings, "eks"), settings.cluster_name, settings.deployment_role_arn)
    return 0


def cmd_attach_sip_sg(settings: Settings, args) -> int:
    security_group_id = args.security_group_id or \
        stack.get_outputs(stack.select_stack(settings)).get("sip_security_group_id")
    if not security_group_id:
        raise ConfigurationError("No SIP security group id given or exported by the stack")
    outcome = cluster.attach_security_group_to_nodegroups(
        _client(settings, "eks"),
        _client(settings, "autoscaling"),
        _client(settings, "ec2"),
        settings.cluster_name,
        security_group_id,
    )
    return 0 if all(v != "no-launch-template" for v in outcome.values()) else 1


def cmd_versions(settings: Settings, args) -> int:
    for entry in checks.list_chart_versions(args.chart, limit=args.limit):
        print(f"{entry['version']}\t{entry['app_version']}")
    return 0


COMMANDS: Dict[str, Callable] = {
    "prerequisites": cmd_prerequisites,
    "preview": cmd_preview,
    "deploy": cmd_deploy,
    "destroy": cmd_destroy,
    "outputs": cmd_outputs,
    "redis-endpoint": cmd_redis_endpoint,
    "status": cmd_status,
    "test": cmd_test,
    "dns": cmd_dns,
    "access": cmd_access,
    "attach-sip-sg": cmd_attach_sip_sg,
    "versions": cmd_versions,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="livekit-ops", description="Operate the LiveKit EKS stack")
    parser.add_argument("--environment", "-e", help="Stack/environment name (ENVIRONMENT)")
    parser.add_argument("--region", dest="aws_region", help="AWS region (AWS_REGION)")
    parser.add_argument("--cluster-name", help="EKS cluster name (CLUSTER_NAME)")
    parser.add_argument("--domain", dest="domain_name", help="LiveKit domain (DOMAIN_NAME)")
    parser.add_argument("--hosted-zone-id", help="Route53 hosted zone (HOSTED_ZONE_ID)")
    parser.add_argument("--namespace", dest="livekit_namespace", help="LiveKit namespace")
    parser.add_argument("--work-dir", help="Pulumi project directory")
    parser.add_argument("--auto-approve", action="store_true", default=None, help="Skip confirmations")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    prereq = sub.add_parser("prerequisites", help="Check required tools and AWS credentials")
    prereq.add_argument("--skip-aws", action="store_true", help="Do not call STS")
    sub.add_parser("preview", help="Preview stack changes")
    sub.add_parser("deploy", help="Deploy the stack and configure kubectl")
    sub.add_parser("destroy", help="Destroy the stack")
    sub.add_parser("outputs", help="Print stack outputs")
    sub.add_parser("redis-endpoint", help="Print the Redis endpoint")
    sub.add_parser("status", help="Show cluster and LiveKit status")
    test = sub.add_parser("test", help="Check the LiveKit deployment, non-zero exit on failure")
    test.add_argument("--skip-redis-ping", action="store_true", help="Do not PING Redis from a pod")
    dns_parser = sub.add_parser("dns", help="Point the domain at the LiveKit load balancer")
    dns_parser.add_argument("--no-wait", action="store_true", help="Do not wait for Route53 to sync")
    access = sub.add_parser("access", help="Grant the deployment role cluster-admin")
    access.add_argument("--role-arn", dest="deployment_role_arn", help="Principal ARN (DEPLOYMENT_ROLE_ARN)")
    attach = sub.add_parser("attach-sip-sg", help="Attach the SIP security group to node groups")
    attach.add_argument("--security-group-id", help="Defaults to the stack's sip_security_group_id")
    versions = sub.add_parser("versions", help="List available LiveKit chart versions")
    versions.add_argument("--chart", default="livekit/livekit-server")
    versions.add_argument("--limit", type=int, default=10)
    return parser


def main(argv: Optional[List[str]] = None, input_func: Callable[[str], str] = input) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    args.input_func = input_func
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = Settings.load(
            environment=args.environment,
            aws_region=args.aws_region,
            cluster_name=args.cluster_name,
            domain_name=args.domain_name,
            hosted_zone_id=args.hosted_zone_id,
            livekit_namespace=args.livekit_namespace,
            work_dir=args.work_dir,
            auto_approve=args.auto_approve,
            deployment_role_arn=getattr(args, "deployment_role_arn", None),
        )
        return COMMANDS[args.command](settings, args)
    except OpsError as e:
        logger.error(f"❌ {e}")
        return 1
    except (BotoCoreError, ClientError) as e:
        logger.error(f"❌ AWS error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
