"""Pulumi Automation API wrapper for preview, up, destroy and outputs"""
import json
import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict

from pulumi import automation as auto

from ops.errors import OpsError
from ops.retry import log_operation, retry_call
from ops.settings import Settings

logger = logging.getLogger(__name__)


def _print_output(line: str) -> None:
    logger.info(line.rstrip())


def automation_errors(func):
    """Re-raise Automation API command failures as OpsError"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except auto.CommandError as e:
            raise OpsError(f"pulumi {func.__name__.replace('_', ' ')} failed: {e}") from e
    return wrapper


@automation_errors
def select_stack(settings: Settings) -> auto.Stack:
    """Create or select the stack named after the environment and push settings into its config"""
    stack = auto.create_or_select_stack(stack_name=settings.environment, work_dir=settings.work_dir)
    stack.set_config("aws:region", auto.ConfigValue(value=settings.aws_region))
    stack.set_config("environment", auto.ConfigValue(value=settings.environment))
    stack.set_config("cluster_name", auto.ConfigValue(value=settings.cluster_name))
    if settings.domain_name:
        stack.set_config("domain_name", auto.ConfigValue(value=settings.domain_name))
    if settings.hosted_zone_id:
        stack.set_config("hosted_zone_id", auto.ConfigValue(value=settings.hosted_zone_id))
    if settings.deployment_role_arn:
        stack.set_config("deployment_role_arn", auto.ConfigValue(value=settings.deployment_role_arn))
    for key, value in settings.extra_config.items():
        stack.set_config(key, auto.ConfigValue(value=value))
    return stack


@log_operation("Pulumi preview")
@automation_errors
def preview(stack: auto.Stack) -> Dict[str, int]:
    result = stack.preview(on_output=_print_output)
    return dict(result.change_summary or {})


@log_operation("Pulumi up")
def up(stack: auto.Stack, attempts: int = 2, delay: float = 30.0) -> Dict[str, Any]:
    """Apply the stack, retrying once for transient provider errors"""
    result = retry_call(
        lambda: stack.up(on_output=_print_output),
        attempts=attempts,
        delay=delay,
        exceptions=(auto.CommandError,),
        description="pulumi up"
    )
    return plain_outputs(result.outputs)


@log_operation("Pulumi destroy")
@automation_errors
def destroy(stack: auto.Stack) -> None:
    stack.destroy(on_output=_print_output)


def plain_outputs(outputs: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap automation OutputValues, masking secrets"""
    values = {}
    for key, output in (outputs or {}).items():
        values[key] = "[secret]" if getattr(output, "secret", False) else getattr(output, "value", output)
    return values


@automation_errors
def get_outputs(stack: auto.Stack) -> Dict[str, Any]:
    return plain_outputs(stack.outputs())


def build_deployment_info(settings: Settings, outputs: Dict[str, Any], now: datetime = None) -> Dict[str, Any]:
    """Deployment record kept next to the stack for later scripts and CI"""
    now = now or datetime.now(timezone.utc)
    return {
        "timestamp": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "environment": settings.environment,
        "region": settings.aws_region,
        "cluster_name": outputs.get("cluster_name") or settings.cluster_name,
        "redis_endpoint": outputs.get("redis_cluster_endpoint", ""),
        "vpc_id": outputs.get("vpc_id", ""),
    }


def write_deployment_info(path: str, settings: Settings, outputs: Dict[str, Any]) -> Dict[str, Any]:
    info = build_deployment_info(settings, outputs)
    with open(path, "w") as f:
        json.dump(info, f, indent=2)
    logger.info(f"Deployment info written to {path}")
    return info
