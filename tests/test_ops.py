"""
Unit tests for the operations tooling
AWS clients and kubectl are replaced with mocks
"""

import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

from botocore.exceptions import ClientError, NoCredentialsError
from pulumi import automation as auto

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ops import checks, cluster, dns, shell, stack
from ops.__main__ import COMMANDS, build_parser, confirm_deploy, confirm_destroy, main
from ops.errors import CommandError, ConfigurationError, OpsError, RetryError, WaitTimeout
from ops.retry import retry_call, wait_until
from ops.settings import Settings

ALB = "k8s-livekit-livekits-0123456789-1234567890.us-east-1.elb.amazonaws.com"
NLB = "k8s-livekit-kamailio-0123456789.elb.us-east-1.amazonaws.com"


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


def make_settings(environ=None, **values):
    """Settings built with only environ visible, nothing from the real process"""
    with patch.dict(os.environ, environ or {}, clear=True):
        return Settings(**values)


def load_settings(environ=None, **overrides):
    with patch.dict(os.environ, environ or {}, clear=True):
        return Settings.load(**overrides)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        settings = load_settings()
        self.assertEqual(settings.environment, "dev")
        self.assertEqual(settings.aws_region, "us-east-1")
        self.assertEqual(settings.cluster_name, "livekit-dev")
        self.assertFalse(settings.non_interactive)

    def test_from_env(self):
        settings = load_settings({
            "ENVIRONMENT": "prod",
            "AWS_DEFAULT_REGION": "eu-west-1",
            "DOMAIN_NAME": "livekit.example.com",
            "TF_AUTO_APPROVE": "true",
            "CI": "false",
        })
        self.assertEqual(settings.cluster_name, "livekit-prod")
        self.assertEqual(settings.aws_region, "eu-west-1")
        self.assertEqual(settings.domain_name, "livekit.example.com")
        self.assertTrue(settings.auto_approve)
        self.assertFalse(settings.ci)
        self.assertTrue(settings.is_production)
        self.assertTrue(settings.non_interactive)

    def test_override_ignores_empty_values(self):
        settings = load_settings({"DOMAIN_NAME": "livekit.example.com"})
        settings.override(domain_name=None, hosted_zone_id="", aws_region="eu-west-1", unknown="x")
        self.assertEqual(settings.domain_name, "livekit.example.com")
        self.assertEqual(settings.aws_region, "eu-west-1")
        self.assertFalse(hasattr(settings, "unknown"))

    def test_environment_alias_and_empty_values(self):
        settings = load_settings({"ENV": "staging", "AWS_REGION": "", "CI": "yes"})
        self.assertEqual(settings.environment, "staging")
        self.assertEqual(settings.aws_region, "us-east-1")
        self.assertTrue(settings.ci)

    def test_cluster_name_follows_overridden_environment(self):
        settings = load_settings(environment="prod")
        self.assertEqual(settings.cluster_name, "livekit-prod")

    def test_explicit_cluster_name_kept(self):
        settings = load_settings({"CLUSTER_NAME": "media"}, environment="prod")
        self.assertEqual(settings.cluster_name, "media")

    def test_invalid_boolean(self):
        with self.assertRaises(ConfigurationError):
            load_settings({"AUTO_APPROVE": "sometimes"})

    def test_require(self):
        settings = make_settings(domain_name="livekit.example.com")
        settings.require("domain_name")
        with self.assertRaises(ConfigurationError) as ctx:
            settings.require("domain_name", "hosted_zone_id", "deployment_role_arn")
        self.assertIn("HOSTED_ZONE_ID, DEPLOYMENT_ROLE_ARN", str(ctx.exception))


class TestRetry(unittest.TestCase):

    def test_retries_until_success(self):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("not yet")
            return "done"

        result = retry_call(flaky, attempts=3, delay=2, backoff=2, sleep=sleeps.append)
        self.assertEqual(result, "done")
        self.assertEqual(sleeps, [2, 4])

    def test_gives_up(self):
        sleeps = []
        with self.assertRaises(RetryError) as ctx:
            retry_call(Mock(side_effect=RuntimeError("boom")), attempts=2, delay=1,
                       description="thing", sleep=sleeps.append)
        self.assertEqual(ctx.exception.attempts, 2)
        self.assertIsInstance(ctx.exception.last_error, RuntimeError)
        self.assertEqual(sleeps, [1])

    def test_unlisted_exceptions_propagate(self):
        func = Mock(side_effect=KeyError("x"))
        with self.assertRaises(KeyError):
            retry_call(func, exceptions=(ValueError,), sleep=lambda s: None)
        self.assertEqual(func.call_count, 1)

    def test_attempts_must_be_positive(self):
        with self.assertRaises(ValueError):
            retry_call(lambda: None, attempts=0)

    def test_wait_until(self):
        clock = FakeClock()
        predicate = Mock(side_effect=[None, False, "ready"])
        result = wait_until(predicate, timeout=60, interval=10, clock=clock, sleep=clock.sleep)
        self.assertEqual(result, "ready")
        self.assertEqual(clock.sleeps, [10, 10])

    def test_wait_until_timeout(self):
        clock = FakeClock()
        with self.assertRaises(WaitTimeout):
            wait_until(lambda: False, timeout=30, interval=10, clock=clock, sleep=clock.sleep)
        self.assertEqual(clock.now, 30)


class TestDns(unittest.TestCase):

    def _ingress(self, hostname):
        return {"items": [{"status": {"loadBalancer": {"ingress": [{"hostname": hostname}]}}}]}

    def _elbv2(self, load_balancers):
        elbv2 = Mock()
        elbv2.get_paginator.return_value.paginate.return_value = [{"LoadBalancers": load_balancers}]
        return elbv2

    def test_hostname_validation(self):
        self.assertTrue(dns.is_load_balancer_hostname(ALB))
        self.assertTrue(dns.is_load_balancer_hostname(NLB))
        self.assertFalse(dns.is_load_balancer_hostname(""))
        self.assertFalse(dns.is_load_balancer_hostname("livekit.example.com"))
        self.assertFalse(dns.is_load_balancer_hostname(None))

    def test_prefers_ingress_hostname(self):
        with patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = self._ingress(ALB)
            elbv2 = self._elbv2([])
            self.assertEqual(dns.find_load_balancer(make_settings(manual_alb_endpoint=NLB), elbv2), ALB)
            elbv2.get_paginator.assert_not_called()

    def test_manual_endpoint_when_ingress_missing(self):
        with patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.side_effect = CommandError(["kubectl"], 1, "not found")
            self.assertEqual(dns.find_load_balancer(make_settings(manual_alb_endpoint=ALB), Mock()), ALB)

    def test_invalid_manual_endpoint(self):
        with patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = {"items": []}
            with self.assertRaises(OpsError):
                dns.find_load_balancer(make_settings(manual_alb_endpoint="example.com"), Mock())

    def test_newest_livekit_load_balancer(self):
        with patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = {"items": []}
            elbv2 = self._elbv2([
                {"LoadBalancerName": "k8s-livekit-old", "DNSName": "old." + ALB,
                 "CreatedTime": datetime(2024, 1, 1, tzinfo=timezone.utc)},
                {"LoadBalancerName": "k8s-livekit-new", "DNSName": ALB,
                 "CreatedTime": datetime(2024, 6, 1, tzinfo=timezone.utc)},
                {"LoadBalancerName": "k8s-other", "DNSName": "other.us-east-1.elb.amazonaws.com",
                 "CreatedTime": datetime(2025, 1, 1, tzinfo=timezone.utc)},
            ])
            self.assertEqual(dns.find_load_balancer(make_settings(), elbv2), ALB)

    def test_no_load_balancer(self):
        with patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = {"items": []}
            with self.assertRaises(OpsError):
                dns.find_load_balancer(make_settings(), self._elbv2([]))

    def test_upsert_skips_matching_record(self):
        route53 = Mock()
        route53.list_resource_record_sets.return_value = {"ResourceRecordSets": [{
            "Name": "livekit.example.com.",
            "Type": "A",
            "AliasTarget": {"DNSName": f"dualstack.{ALB}.", "HostedZoneId": "Z35SXDOTRQ7X7K"},
        }]}

        change_id = dns.upsert_alias_record(route53, "Z123", "livekit.example.com", ALB, "Z35SXDOTRQ7X7K")

        self.assertEqual(change_id, "")
        route53.change_resource_record_sets.assert_not_called()

    def test_upsert_changes_record(self):
        route53 = Mock()
        route53.list_resource_record_sets.return_value = {"ResourceRecordSets": [{
            "Name": "livekit.example.com.",
            "Type": "A",
            "AliasTarget": {"DNSName": "dualstack.old.us-east-1.elb.amazonaws.com.", "HostedZoneId": "Z1"},
        }]}
        route53.change_resource_record_sets.return_value = {"ChangeInfo": {"Id": "/change/C1"}}

        change_id = dns.upsert_alias_record(route53, "Z123", "livekit.example.com", ALB, "Z35SXDOTRQ7X7K")

        self.assertEqual(change_id, "/change/C1")
        change = route53.change_resource_record_sets.call_args.kwargs["ChangeBatch"]["Changes"][0]
        self.assertEqual(change["Action"], "UPSERT")
        self.assertEqual(change["ResourceRecordSet"]["AliasTarget"]["DNSName"], f"dualstack.{ALB}")
        self.assertEqual(change["ResourceRecordSet"]["AliasTarget"]["HostedZoneId"], "Z35SXDOTRQ7X7K")

    def test_reconcile_requires_domain(self):
        with self.assertRaises(ConfigurationError):
            dns.reconcile_dns(make_settings(hosted_zone_id="Z123"), Mock(), Mock())

    def test_reconcile(self):
        with tempfile.TemporaryDirectory() as tmp, patch('ops.dns.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = self._ingress(ALB)
            elbv2 = self._elbv2([{"LoadBalancerName": "k8s-livekit", "DNSName": ALB,
                                  "CanonicalHostedZoneId": "Z35SXDOTRQ7X7K"}])
            route53 = Mock()
            route53.list_resource_record_sets.return_value = {"ResourceRecordSets": []}
            route53.change_resource_record_sets.return_value = {"ChangeInfo": {"Id": "/change/C1"}}
            settings = make_settings(
                domain_name="livekit.example.com",
                hosted_zone_id="Z123",
                alb_endpoint_output_file=os.path.join(tmp, "alb_endpoint.txt"),
                github_output=os.path.join(tmp, "github_output"),
            )

            result = dns.reconcile_dns(settings, elbv2, route53)

            self.assertEqual(result, {"domain": "livekit.example.com", "alb_endpoint": ALB,
                                      "change_id": "/change/C1"})
            route53.get_waiter.assert_called_once_with("resource_record_sets_changed")
            self.assertEqual(route53.get_waiter.return_value.wait.call_args.kwargs["Id"], "/change/C1")
            with open(settings.alb_endpoint_output_file) as f:
                self.assertEqual(f.read().strip(), ALB)
            with open(settings.github_output) as f:
                self.assertEqual(f.read().splitlines(),
                                 [f"alb_endpoint={ALB}", "primary_domain=livekit.example.com"])


class TestCluster(unittest.TestCase):

    def test_describe_missing_cluster(self):
        eks = Mock()
        eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        self.assertIsNone(cluster.describe_cluster(eks, "livekit-dev"))

    def test_describe_other_errors_propagate(self):
        eks = Mock()
        eks.describe_cluster.side_effect = client_error("AccessDeniedException")
        with self.assertRaises(ClientError):
            cluster.describe_cluster(eks, "livekit-dev")

    def test_wait_for_active(self):
        eks = Mock()
        eks.describe_cluster.side_effect = [
            {"cluster": {"status": "CREATING"}},
            {"cluster": {"status": "ACTIVE", "name": "livekit-dev"}},
        ]
        clock = FakeClock()
        result = cluster.wait_for_cluster_active(eks, "livekit-dev", timeout=600, interval=30,
                                                 clock=clock, sleep=clock.sleep)
        self.assertEqual(result["status"], "ACTIVE")
        self.assertEqual(clock.sleeps, [30])

    def test_wait_for_failed_cluster(self):
        eks = Mock()
        eks.describe_cluster.return_value = {"cluster": {"status": "FAILED"}}
        with self.assertRaises(OpsError):
            cluster.wait_for_cluster_active(eks, "livekit-dev", sleep=lambda s: None)

    def test_count_ready_nodes(self):
        nodes = {"items": [
            {"status": {"conditions": [{"type": "Ready", "status": "True"}]}},
            {"status": {"conditions": [{"type": "Ready", "status": "False"}]}},
            {"status": {}},
        ]}
        self.assertEqual(cluster.count_ready_nodes(nodes), 1)

    def test_verify_nodes(self):
        with patch('ops.cluster.shell') as mock_shell:
            mock_shell.kubectl_json.return_value = {"items": []}
            with self.assertRaises(OpsError):
                cluster.verify_nodes()

    def test_update_kubeconfig(self):
        with patch('ops.cluster.shell') as mock_shell:
            cluster.update_kubeconfig(make_settings(aws_region="us-east-1", cluster_name="livekit-dev"))
            mock_shell.run.assert_called_once_with(
                ["aws", "eks", "update-kubeconfig", "--region", "us-east-1", "--name", "livekit-dev"]
            )

    def test_ensure_access_entry(self):
        eks = Mock()
        eks.create_access_entry.side_effect = client_error("ResourceInUseException")
        eks.get_paginator.return_value.paginate.return_value = [
            {"associatedAccessPolicies": [{"policyArn": cluster.ADMIN_ACCESS_POLICIES[0]}]}
        ]

        outcome = cluster.ensure_access_entry(eks, "livekit-dev", "arn:aws:iam::1:role/deployer")

        self.assertEqual(outcome["entry"], "exists")
        self.assertEqual(outcome[cluster.ADMIN_ACCESS_POLICIES[0]], "exists")
        self.assertEqual(outcome[cluster.ADMIN_ACCESS_POLICIES[1]], "created")
        eks.associate_access_policy.assert_called_once_with(
            clusterName="livekit-dev",
            principalArn="arn:aws:iam::1:role/deployer",
            policyArn=cluster.ADMIN_ACCESS_POLICIES[1],
            accessScope={"type": "cluster"},
        )

    def _nodegroup_clients(self, security_groups):
        eks = Mock()
        eks.get_paginator.return_value.paginate.return_value = [
            {"nodegroups": ["ng-1"]}, {"nodegroups": ["ng-2"]}
        ]
        eks.describe_nodegroup.side_effect = lambda clusterName, nodegroupName: {"nodegroup": {
            "resources": {"autoScalingGroups": [{"name": "asg-1"}]} if nodegroupName == "ng-1" else {}
        }}
        autoscaling = Mock()
        autoscaling.describe_auto_scaling_groups.return_value = {"AutoScalingGroups": [
            {"LaunchTemplate": {"LaunchTemplateId": "lt-1", "Version": "3"}}
        ]}
        ec2 = Mock()
        ec2.describe_launch_template_versions.return_value = {"LaunchTemplateVersions": [
            {"LaunchTemplateData": {"SecurityGroupIds": security_groups}}
        ]}
        return eks, autoscaling, ec2

    def test_attach_security_group(self):
        eks, autoscaling, ec2 = self._nodegroup_clients(["sg-node"])

        outcome = cluster.attach_security_group_to_nodegroups(eks, autoscaling, ec2, "livekit-dev", "sg-sip")

        self.assertEqual(outcome, {"ng-1": "attached", "ng-2": "no-launch-template"})
        kwargs = ec2.create_launch_template_version.call_args.kwargs
        self.assertEqual(kwargs["LaunchTemplateId"], "lt-1")
        self.assertEqual(kwargs["SourceVersion"], "3")
        self.assertEqual(kwargs["LaunchTemplateData"], {"SecurityGroupIds": ["sg-node", "sg-sip"]})

    def test_attach_security_group_already_present(self):
        eks, autoscaling, ec2 = self._nodegroup_clients(["sg-node", "sg-sip"])

        outcome = cluster.attach_security_group_to_nodegroups(eks, autoscaling, ec2, "livekit-dev", "sg-sip")

        self.assertEqual(outcome["ng-1"], "already-attached")
        ec2.create_launch_template_version.assert_not_called()


class TestShell(unittest.TestCase):

    def test_run_raises_on_non_zero_exit(self):
        failed = subprocess.CompletedProcess(["kubectl", "get"], 1, stdout="", stderr="forbidden\n")
        with patch('ops.shell.subprocess.run', return_value=failed):
            with self.assertRaises(CommandError) as ctx:
                shell.run(["kubectl", "get"])
        self.assertEqual(ctx.exception.returncode, 1)
        self.assertEqual(ctx.exception.stderr, "forbidden")

    def test_run_without_check(self):
        failed = subprocess.CompletedProcess(["helm"], 2, stdout="", stderr="")
        with patch('ops.shell.subprocess.run', return_value=failed):
            self.assertEqual(shell.run(["helm"], check=False).returncode, 2)

    def test_missing_binary(self):
        with patch('ops.shell.subprocess.run', side_effect=FileNotFoundError()):
            with self.assertRaises(CommandError) as ctx:
                shell.run(["helm", "version"])
        self.assertEqual(ctx.exception.returncode, 127)
        self.assertIn("helm not found", str(ctx.exception))

    def test_timeout(self):
        with patch('ops.shell.subprocess.run', side_effect=subprocess.TimeoutExpired(["aws"], 5)):
            with self.assertRaises(CommandError) as ctx:
                shell.run(["aws", "sts"], timeout=5)
        self.assertEqual(ctx.exception.returncode, -1)
        self.assertIn("timed out after 5s", str(ctx.exception))

    def test_run_json(self):
        ok = subprocess.CompletedProcess(["kubectl"], 0, stdout='{"items": []}', stderr="")
        with patch('ops.shell.subprocess.run', return_value=ok):
            self.assertEqual(shell.run_json(["kubectl"]), {"items": []})

    def test_run_json_invalid_output(self):
        garbage = subprocess.CompletedProcess(["kubectl"], 0, stdout="not json", stderr="")
        with patch('ops.shell.subprocess.run', return_value=garbage):
            with self.assertRaises(CommandError) as ctx:
                shell.run_json(["kubectl"])
        self.assertIn("invalid JSON output", str(ctx.exception))


class TestStack(unittest.TestCase):

    def test_build_deployment_info(self):
        settings = make_settings(environment="dev", aws_region="us-east-1", cluster_name="livekit-dev")
        info = stack.build_deployment_info(
            settings,
            {"redis_cluster_endpoint": "redis:6379", "vpc_id": "vpc-1"},
            now=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        )
        self.assertEqual(info, {
            "timestamp": "2024-01-02T03:04:05Z",
            "environment": "dev",
            "region": "us-east-1",
            "cluster_name": "livekit-dev",
            "redis_endpoint": "redis:6379",
            "vpc_id": "vpc-1",
        })

    def test_plain_outputs_masks_secrets(self):
        outputs = {
            "cluster_name": SimpleNamespace(value="livekit-dev", secret=False),
            "api_secret": SimpleNamespace(value="s3cret", secret=True),
        }
        self.assertEqual(stack.plain_outputs(outputs), {"cluster_name": "livekit-dev", "api_secret": "[secret]"})

    def test_write_deployment_info(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "deployment-info.json")
            stack.write_deployment_info(path, make_settings(cluster_name="livekit-dev"), {"vpc_id": "vpc-1"})
            with open(path) as f:
                self.assertEqual(json.load(f)["vpc_id"], "vpc-1")


    def test_select_stack_pushes_config(self):
        settings = make_settings(
            environment="prod",
            aws_region="eu-west-1",
            cluster_name="livekit-prod",
            domain_name="livekit.example.com",
            deployment_role_arn="arn:aws:iam::1:role/deployer",
            extra_config={"enable_sip": "true"},
        )
        with patch('ops.stack.auto.create_or_select_stack') as mock_create:
            selected = stack.select_stack(settings)

        mock_create.assert_called_once_with(stack_name="prod", work_dir=".")
        self.assertIs(selected, mock_create.return_value)
        config = {c.args[0]: c.args[1].value for c in selected.set_config.call_args_list}
        self.assertEqual(config, {
            "aws:region": "eu-west-1",
            "environment": "prod",
            "cluster_name": "livekit-prod",
            "domain_name": "livekit.example.com",
            "deployment_role_arn": "arn:aws:iam::1:role/deployer",
            "enable_sip": "true",
        })

    def test_automation_errors_become_ops_errors(self):
        failure = auto.CommandError(SimpleNamespace(code=255, stdout="", stderr="no stack named 'prod' found"))
        with patch('ops.stack.auto.create_or_select_stack', side_effect=failure):
            with self.assertRaises(OpsError) as ctx:
                stack.select_stack(make_settings(environment="prod", cluster_name="livekit-prod"))
        self.assertIs(ctx.exception.__cause__, failure)

        broken = Mock()
        broken.destroy.side_effect = failure
        with self.assertRaises(OpsError):
            stack.destroy(broken)


class TestChecks(unittest.TestCase):

    def test_prerequisites(self):
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.check_tools.side_effect = lambda names: {n: n not in ("helm", "jq") for n in names}
            results = {r.name: r for r in checks.check_prerequisites()}

        self.assertFalse(results["helm"].ok)
        self.assertTrue(results["aws"].ok)
        # Optional tools never fail the check
        self.assertTrue(results["jq"].ok)
        self.assertEqual(results["jq"].detail, "missing (optional)")

    def test_report_stops_without_namespace(self):
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.kubectl_json.side_effect = CommandError(["kubectl"], 1, "NotFound")
            results = checks.deployment_report("livekit")

        self.assertEqual(len(results), 1)
        self.assertFalse(results[0].ok)
        self.assertFalse(checks.log_results(results))

    def test_report(self):
        running = {"status": {"phase": "Running"}}

        def kubectl_json(*args):
            if args[:2] == ("get", "namespace"):
                return {"metadata": {"name": "livekit"}}
            if args[:2] == ("get", "pods"):
                return {"items": [running, running]}
            if args[:2] == ("get", "svc"):
                return {"items": [{"metadata": {"name": "livekit-server"}}]}
            if args[:2] == ("get", "ingress"):
                return {"items": [{"status": {"loadBalancer": {"ingress": [{"hostname": ALB}]}}}]}
            raise AssertionError(args)

        with patch('ops.checks.shell') as mock_shell:
            mock_shell.kubectl_json.side_effect = kubectl_json
            results = checks.deployment_report("livekit", "redis:6379")

        self.assertTrue(all(r.ok for r in results), [str(r) for r in results])
        self.assertEqual([r.name for r in results], [
            "namespace", "livekit pods", "services", "ingress", "load balancer controller", "redis endpoint"
        ])

    def test_check_result_str(self):
        self.assertEqual(str(checks.CheckResult("redis endpoint", False, "unknown")), "❌ redis endpoint: unknown")
        self.assertEqual(str(checks.CheckResult("aws", True)), "✅ aws")


    def test_list_chart_versions(self):
        versions = [
            {"name": "livekit/livekit-server", "version": "1.9.0", "app_version": "v1.9.0"},
            {"name": "livekit/livekit-server", "version": "1.8.4", "app_version": "v1.8.4"},
            {"name": "livekit/livekit-server", "version": "1.8.3", "app_version": "v1.8.3"},
        ]
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.helm.return_value.stdout = json.dumps(versions)
            result = checks.list_chart_versions(limit=2)

        self.assertEqual(result, [
            {"version": "1.9.0", "app_version": "v1.9.0"},
            {"version": "1.8.4", "app_version": "v1.8.4"},
        ])
        mock_shell.helm.assert_any_call("repo", "add", "livekit", "https://helm.livekit.io", "--force-update")
        mock_shell.helm.assert_any_call("search", "repo", "livekit/livekit-server", "--versions", "-o", "json")

    def test_list_chart_versions_bad_output(self):
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.helm.return_value.stdout = "Error: no repo"
            with self.assertRaises(OpsError):
                checks.list_chart_versions()

    def test_redis_ping(self):
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.kubectl.return_value.stdout = "PONG\n"
            result = checks.check_redis_connectivity("redis.example.com:6380")

        self.assertTrue(result.ok)
        args = mock_shell.kubectl.call_args.args
        self.assertEqual(args[-6:], ("redis-cli", "-h", "redis.example.com", "-p", "6380", "ping"))
        self.assertIn("--rm", args)

    def test_redis_ping_failures(self):
        self.assertFalse(checks.check_redis_connectivity("").ok)
        with patch('ops.checks.shell') as mock_shell:
            mock_shell.kubectl.side_effect = CommandError(["kubectl", "run"], 1, "timed out")
            result = checks.check_redis_connectivity("redis.example.com")
        self.assertFalse(result.ok)
        self.assertIn("timed out", result.detail)
        self.assertIn("6379", mock_shell.kubectl.call_args.args)


class TestCli(unittest.TestCase):

    CLEAN_ENV = {"CI": "", "AUTO_APPROVE": "", "TF_AUTO_APPROVE": "", "ENVIRONMENT": "dev", "ENV": ""}

    def test_parser(self):
        args = build_parser().parse_args(["--domain", "livekit.example.com", "dns", "--no-wait"])
        self.assertEqual(args.command, "dns")
        self.assertEqual(args.domain_name, "livekit.example.com")
        self.assertTrue(args.no_wait)

    def test_destroy_production_needs_production(self):
        settings = make_settings(environment="prod", auto_approve=True)
        with self.assertRaises(OpsError):
            confirm_destroy(settings, lambda prompt: "yes")
        confirm_destroy(settings, lambda prompt: "PRODUCTION")

    def test_destroy_auto_approved(self):
        prompt = Mock()
        confirm_destroy(make_settings(environment="dev", auto_approve=True), prompt)
        prompt.assert_not_called()

    def test_deploy_in_ci(self):
        prompt = Mock()
        confirm_deploy(make_settings(environment="prod", ci=True), prompt)
        prompt.assert_not_called()
        with self.assertRaises(OpsError):
            confirm_deploy(make_settings(environment="dev"), lambda p: "no")

    def test_redis_endpoint_from_env(self):
        env = dict(self.CLEAN_ENV, REDIS_ENDPOINT="redis.example.com:6379")
        with patch.dict(os.environ, env), patch('sys.stdout', new_callable=io.StringIO) as out:
            self.assertEqual(main(["redis-endpoint"]), 0)
        self.assertEqual(out.getvalue().strip(), "redis.example.com:6379")

    def test_destroy_cancelled(self):
        with patch.dict(os.environ, self.CLEAN_ENV), patch('ops.__main__.stack') as mock_stack:
            self.assertEqual(main(["destroy"], input_func=lambda prompt: "no"), 1)
            mock_stack.destroy.assert_not_called()

    def test_environment_flag_sets_default_cluster(self):
        seen = {}

        def capture(settings, args):
            seen.update(environment=settings.environment, cluster=settings.cluster_name)
            return 0

        with patch.dict(os.environ, {}, clear=True), patch.dict(COMMANDS, {"status": capture}):
            self.assertEqual(main(["--environment", "prod", "status"]), 0)
        self.assertEqual(seen, {"environment": "prod", "cluster": "livekit-prod"})

    def test_production_destroy_without_stdin(self):
        def no_stdin(prompt):
            raise EOFError()

        env = {"ENVIRONMENT": "prod", "CI": "true", "AUTO_APPROVE": "true"}
        with patch.dict(os.environ, env, clear=True), patch('ops.__main__.stack') as mock_stack:
            self.assertEqual(main(["destroy"], input_func=no_stdin), 1)
            mock_stack.destroy.assert_not_called()

    def test_invalid_setting_exits_cleanly(self):
        with patch.dict(os.environ, {"CI": "sometimes"}, clear=True):
            self.assertEqual(main(["outputs"]), 1)

    def test_aws_errors_exit_cleanly(self):
        with patch.dict(os.environ, {}, clear=True), \
                patch('ops.__main__.boto3') as mock_boto3:
            mock_boto3.client.return_value.describe_cluster.side_effect = NoCredentialsError()
            self.assertEqual(main(["status"]), 1)

    def test_redis_endpoint_from_stack_outputs(self):
        with patch.dict(os.environ, {}, clear=True), patch('ops.__main__.stack') as mock_stack, \
                patch('sys.stdout', new_callable=io.StringIO) as out:
            mock_stack.get_outputs.return_value = {"redis_cluster_endpoint": "redis.internal:6379"}
            self.assertEqual(main(["redis-endpoint"]), 0)
        self.assertEqual(out.getvalue().strip(), "redis.internal:6379")

    def test_test_command_uses_stack_redis_endpoint(self):
        healthy = [checks.CheckResult("namespace", True)]
        with patch.dict(os.environ, {}, clear=True), \
                patch('ops.__main__.stack') as mock_stack, \
                patch('ops.__main__.cluster'), \
                patch('ops.__main__.checks.deployment_report', return_value=healthy) as report, \
                patch('ops.__main__.checks.check_redis_connectivity',
                      return_value=checks.CheckResult("redis ping", True)) as ping:
            mock_stack.get_outputs.return_value = {"redis_cluster_endpoint": "redis.internal:6379"}
            self.assertEqual(main(["test"]), 0)

        report.assert_called_once_with("livekit", "redis.internal:6379")
        ping.assert_called_once_with("redis.internal:6379", "livekit")


if __name__ == "__main__":
    unittest.main(verbosity=2)
