"""
DNS Module Functions
ACM certificate for the LiveKit and TURN hostnames, and external-dns for
keeping Route53 in sync with the ingress
"""

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
from typing import Dict, List, Any, Tuple

from modules.iam.functions import create_pod_identity_role

EXTERNAL_DNS_NAMESPACE = "kube-system"
EXTERNAL_DNS_SERVICE_ACCOUNT = "external-dns"

EXTERNAL_DNS_POLICY = {
    "Version": "2012-10-17",
    "Statement": [{
        "Effect": "Allow",
        "Action": [
            "route53:ChangeResourceRecordSets",
            "route53:ListResourceRecordSets",
            "route53:ListTagsForResources"
        ],
        "Resource": "arn:aws:route53:::hostedzone/*"
    }, {
        "Effect": "Allow",
        "Action": [
            "route53:ListHostedZones",
            "route53:ListHostedZonesByName"
        ],
        "Resource": "*"
    }]
}


def certificate_domains(domain: str, turn_domain: str = "",
                        include_wildcard: bool = True) -> Tuple[str, List[str]]:
    """
    Work out the names a LiveKit certificate has to cover

    Args:
        domain: Primary LiveKit hostname
        turn_domain: TURN/TLS hostname
        include_wildcard: Also cover *.domain

    Returns:
        Tuple of (primary name, subject alternative names), SANs de-duplicated
        in order and never repeating the primary
    """
    if not domain:
        raise ValueError("A domain name is required for the certificate")

    candidates = []
    if include_wildcard:
        candidates.append(f"*.{domain}")
    if turn_domain:
        candidates.append(turn_domain)

    sans = []
    for name in candidates:
        if name != domain and name not in sans:
            sans.append(name)
    return domain, sans


def validation_domains(domain: str, sans: List[str]) -> List[str]:
    """Names needing a DNS validation record; *.x and x share one record"""
    names = []
    for name in [domain, *sans]:
        base = name[2:] if name.startswith("*.") else name
        if base not in names:
            names.append(base)
    return names


def _validation_option(options, domain: str, attribute: str) -> str:
    for option in options:
        if option.domain_name == domain:
            return getattr(option, attribute)
    raise ValueError(f"No validation option for {domain}")


def create_certificate(name: str, domain: str, hosted_zone_id: str, turn_domain: str = "",
                      include_wildcard: bool = True, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Request a DNS-validated ACM certificate and wait for it to be issued

    Args:
        name: Resource name prefix
        domain: Primary hostname
        hosted_zone_id: Route53 zone for validation records
        turn_domain: TURN hostname
        include_wildcard: Cover *.domain too
        tags: Additional tags

    Returns:
        Dict with certificate, validation records and the validated ARN
    """
    tags = tags or {}
    primary, sans = certificate_domains(domain, turn_domain, include_wildcard)

    certificate = aws.acm.Certificate(
        f"{name}-certificate",
        domain_name=primary,
        subject_alternative_names=sans,
        validation_method="DNS",
        tags={
            **tags,
            "Name": f"{name}-certificate",
            "Module": "dns"
        },
        opts=pulumi.ResourceOptions(delete_before_replace=True)
    )

    records = []
    for i, validated in enumerate(validation_domains(primary, sans)):
        options = certificate.domain_validation_options
        records.append(aws.route53.Record(
            f"{name}-cert-validation-{i+1}",
            zone_id=hosted_zone_id,
            name=options.apply(lambda o, d=validated: _validation_option(o, d, "resource_record_name")),
            type=options.apply(lambda o, d=validated: _validation_option(o, d, "resource_record_type")),
            records=[options.apply(lambda o, d=validated: _validation_option(o, d, "resource_record_value"))],
            ttl=300,
            allow_overwrite=True
        ))

    validation = aws.acm.CertificateValidation(
        f"{name}-certificate-validation",
        certificate_arn=certificate.arn,
        validation_record_fqdns=[record.fqdn for record in records]
    )

    return {
        "certificate": certificate,
        "validation_records": records,
        "validation": validation,
        "certificate_arn": validation.certificate_arn
    }


def setup_external_dns(name: str, provider: k8s.Provider, cluster_name: pulumi.Output[str],
                      domains: List[str], hosted_zone_id: str = "", owner_id: str = "",
                      depends_on=None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Setup External DNS with Route53 access through Pod Identity

    Args:
        name: Resource name prefix
        provider: Kubernetes provider
        cluster_name: EKS cluster name
        domains: Domain filters
        hosted_zone_id: Restrict to this zone when set
        owner_id: TXT registry owner id
        depends_on: Resources the release waits for
        tags: Additional tags

    Returns:
        Dict with IAM role, pod identity and release
    """
    tags = tags or {}

    role_result = create_pod_identity_role(f"{name}-external-dns", EXTERNAL_DNS_POLICY, tags=tags)

    pod_identity = aws.eks.PodIdentityAssociation(
        f"{name}-external-dns-identity",
        cluster_name=cluster_name,
        namespace=EXTERNAL_DNS_NAMESPACE,
        service_account=EXTERNAL_DNS_SERVICE_ACCOUNT,
        role_arn=role_result["role_arn"],
        tags={**tags, "Module": "dns"}
    )

    extra_args = [f"--txt-owner-id={owner_id or name}"]
    if hosted_zone_id:
        extra_args.append(f"--zone-id-filter={hosted_zone_id}")

    release = k8s.helm.v3.Release(
        f"{name}-external-dns",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://kubernetes-sigs.github.io/external-dns/"
        ),
        chart="external-dns",
        name="external-dns",
        namespace=EXTERNAL_DNS_NAMESPACE,
        values={
            "provider": {"name": "aws"},
            "serviceAccount": {"create": True, "name": EXTERNAL_DNS_SERVICE_ACCOUNT},
            "sources": ["service", "ingress"],
            "domainFilters": domains,
            "policy": "sync",
            "registry": "txt",
            "extraArgs": extra_args,
        },
        opts=pulumi.ResourceOptions(
            provider=provider,
            depends_on=[pod_identity, *[d for d in (depends_on or []) if d is not None]]
        )
    )

    return {
        "release": release,
        "pod_identity_association": pod_identity,
        "role_arn": role_result["role_arn"]
    }


def create_dns_resources(cluster_name: str, domain: str, hosted_zone_id: str = "",
                        turn_domain: str = "", certificate_arn: str = "",
                        enable_acm_certificate: bool = True,
                        enable_external_dns: bool = False,
                        provider: k8s.Provider = None,
                        cluster_name_output: pulumi.Output[str] = None,
                        depends_on=None,
                        tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create certificate and DNS automation for LiveKit

    An existing certificate ARN wins over requesting a new one. Without a
    hosted zone no certificate can be validated, so none is requested.

    Returns:
        Dict with certificate ARN (Output or plain string, may be empty)
    """
    tags = tags or {}
    result = {
        "certificate_arn": certificate_arn,
        "external_dns_status": "❌ Disabled",
        "_certificate": None,
        "_external_dns": None
    }

    if not domain:
        pulumi.log.warn("domain_name is not set, skipping certificate and DNS setup")
        return result

    if not certificate_arn and enable_acm_certificate:
        if hosted_zone_id:
            cert_result = create_certificate(cluster_name, domain, hosted_zone_id, turn_domain, tags=tags)
            result["certificate_arn"] = cert_result["certificate_arn"]
            result["_certificate"] = cert_result["certificate"]
        else:
            pulumi.log.warn("hosted_zone_id is not set, cannot validate an ACM certificate")

    if enable_external_dns and provider is not None:
        dns_domains = [domain]
        if turn_domain and not turn_domain.endswith(f".{domain}"):
            dns_domains.append(turn_domain)
        external_dns_result = setup_external_dns(
            cluster_name, provider, cluster_name_output,
            dns_domains, hosted_zone_id, cluster_name, depends_on, tags
        )
        result["external_dns_status"] = "✅ Enabled"
        result["_external_dns"] = external_dns_result["release"]

    return result
