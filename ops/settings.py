"""Environment-driven settings for the operations CLI"""
from typing import Dict

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ops.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Settings for operational commands

    Configuration precedence:
    1. CLI flags, applied through override()
    2. Environment variables
    3. .env file (if exists)
    4. Default values in this class

    cluster_name stays empty until override() derives livekit-<environment>,
    so an --environment flag also moves the default cluster.
    """

    environment: str = Field(
        default="dev",
        validation_alias=AliasChoices("ENVIRONMENT", "ENV")
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION")
    )
    cluster_name: str = ""
    domain_name: str = ""
    hosted_zone_id: str = ""
    redis_endpoint: str = ""
    deployment_role_arn: str = ""
    manual_alb_endpoint: str = Field(
        default="",
        description="ALB hostname to use when the ingress has none"
    )
    livekit_namespace: str = "livekit"
    alb_endpoint_output_file: str = "/tmp/alb_endpoint.txt"
    github_output: str = Field(
        default="",
        description="Set by GitHub Actions, endpoint outputs are appended to it"
    )
    deployment_info_file: str = "deployment-info.json"
    work_dir: str = Field(
        default=".",
        validation_alias=AliasChoices("PULUMI_WORK_DIR", "WORK_DIR")
    )
    auto_approve: bool = Field(
        default=False,
        validation_alias=AliasChoices("AUTO_APPROVE", "TF_AUTO_APPROVE")
    )
    ci: bool = False
    extra_config: Dict[str, str] = Field(
        default_factory=dict,
        description="Additional Pulumi stack config, JSON in EXTRA_CONFIG"
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def load(cls, **overrides) -> "Settings":
        """Read the environment and apply CLI overrides"""
        try:
            settings = cls()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e
        return settings.override(**overrides)

    def override(self, **values) -> "Settings":
        """Apply non-empty CLI values, then fill in the default cluster name"""
        known = set(type(self).model_fields)
        for key, value in values.items():
            if key in known and value not in (None, ""):
                setattr(self, key, value)
        if not self.cluster_name:
            self.cluster_name = f"livekit-{self.environment}"
        return self

    def require(self, *names: str) -> "Settings":
        """Raise ConfigurationError naming every missing field"""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            env_names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(f"Missing required settings: {env_names}")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("prod", "production")

    @property
    def non_interactive(self) -> bool:
        return self.auto_approve or self.ci
