"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_HOT_TYPES = [
    "AWS::ECS::Service",
    "AWS::ECS::TaskDefinition",
    "AWS::ServiceDiscovery::Service",
]

SPLIT_STRATEGIES = ("hot-types", "per-type", "rules")


class StagingSettings(BaseModel):
    """Staging container configuration."""

    container_prefix: str = Field(
        "nestdeploy",
        min_length=3,
        max_length=26,
        pattern="^[a-z0-9][a-z0-9.-]*[a-z0-9]$",
        description="Bucket name prefix, a random id is appended per attempt",
    )
    upload_workers: int = Field(4, ge=1, le=32)
    content_type: str = Field("application/yaml", min_length=1)

    @field_validator("container_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Validate the prefix keeps generated bucket names legal."""
        if ".." in v or ".-" in v or "-." in v:
            raise ValueError(f"Invalid bucket name prefix: {v}")
        return v


class DeploymentSettings(BaseModel):
    """CloudFormation call configuration."""

    capabilities: List[str] = Field(default_factory=lambda: ["CAPABILITY_IAM"])
    wait_for_completion: bool = True
    retain_except_on_create: bool = True

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(cls, v: List[str]) -> List[str]:
        """Validate capability names."""
        allowed = {"CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"}
        for capability in v:
            if capability not in allowed:
                raise ValueError(
                    f"Invalid capability: {capability}. Must be one of: {', '.join(sorted(allowed))}"
                )
        return v


class PollingSettings(BaseModel):
    """Bounded backoff used while waiting on change sets and stacks."""

    initial_delay: float = Field(2.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    multiplier: float = Field(2.0, ge=1.0)
    max_attempts: int = Field(120, ge=1)
    timeout: Optional[float] = Field(1800.0, gt=0)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """Validate delay bounds."""
        if self.initial_delay > self.max_delay:
            raise ValueError("initial_delay cannot exceed max_delay")
        return self


class SplittingSettings(BaseModel):
    """How resources are partitioned into nested templates."""

    strategy: str = Field("hot-types", pattern="^(hot-types|per-type|rules)$")
    hot_types: List[str] = Field(default_factory=lambda: list(DEFAULT_HOT_TYPES))
    rules: Dict[str, str] = Field(
        default_factory=dict, description="Type glob pattern -> partition key, first match wins"
    )
    exclude: List[str] = Field(
        default_factory=list, description="Type glob patterns that always stay in the root"
    )

    @model_validator(mode="after")
    def validate_strategy(self):
        """Validate strategy-specific settings."""
        if self.strategy == "rules" and not self.rules:
            raise ValueError("'rules' must not be empty when strategy is 'rules'")
        for pattern, key in self.rules.items():
            if not key or not key.isalnum():
                raise ValueError(f"Partition key for '{pattern}' must be alphanumeric: {key!r}")
        return self


class DeployConfig(BaseModel):
    """Complete configuration for a deployment attempt."""

    staging: StagingSettings = Field(default_factory=StagingSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    splitting: SplittingSettings = Field(default_factory=SplittingSettings)
