"""Pydantic models describing lab.yaml."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class LabSection(BaseModel):
    name: str
    environment: str = "dev"

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        # Used in bucket names, state keys and kube context names.
        if not value or not all(ch.isalnum() or ch == "-" for ch in value):
            raise ValueError("lab name must contain only letters, digits and '-'")
        return value


class AWSSection(BaseModel):
    region: str = "us-east-1"
    profile: str | None = None


class AuroraSection(BaseModel):
    instance_class: str = "db.t4g.medium"
    min_capacity: float = 0.5
    max_capacity: float = 2

    @model_validator(mode="after")
    def _capacity_range(self) -> AuroraSection:
        if self.min_capacity > self.max_capacity:
            raise ValueError("aurora.min_capacity must not exceed aurora.max_capacity")
        return self


class S3Section(BaseModel):
    data_bucket: str
    logs_bucket: str


class FoundationSection(BaseModel):
    vpc_cidr: str = "10.0.0.0/16"
    aurora: AuroraSection = Field(default_factory=AuroraSection)
    s3: S3Section | None = None


class EKSSection(BaseModel):
    cluster_version: str = "1.29"
    instance_types: list[str] = Field(default_factory=lambda: ["t3.medium"])
    desired_size: int = Field(default=2, ge=1)


class EphemeralSection(BaseModel):
    eks: EKSSection = Field(default_factory=EKSSection)


class TimeoutsSection(BaseModel):
    """Bounds for the readiness waits."""

    poll_interval_seconds: float = Field(default=15, gt=0)
    nodes_poll_interval_seconds: float = Field(default=10, gt=0)
    pods_poll_interval_seconds: float = Field(default=10, gt=0)
    cluster_active_minutes: float = Field(default=15, ge=0)
    nodes_ready_minutes: float = Field(default=10, ge=0)
    shutdown_grace_seconds: float = Field(default=30, ge=0)


class KeycloakSettings(BaseModel):
    admin_user: str = "admin"
    admin_password: str = "admin123"
    realm_file: str | None = "config/keycloak-realm.json"
    values: dict[str, Any] = Field(default_factory=dict)


class OPASettings(BaseModel):
    policies_dir: str | None = "config/opa-policies"
    values: dict[str, Any] = Field(default_factory=dict)


class ChartSettings(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)


class ComponentsSection(BaseModel):
    """Per-component knobs; ``values`` is merged over the generated chart values."""

    keycloak: KeycloakSettings = Field(default_factory=KeycloakSettings)
    polaris: ChartSettings = Field(default_factory=ChartSettings)
    trino: ChartSettings = Field(default_factory=ChartSettings)
    spark: ChartSettings = Field(default_factory=ChartSettings)
    opa: OPASettings = Field(default_factory=OPASettings)


class LabConfig(BaseModel):
    """Validated lab configuration."""

    lab: LabSection
    aws: AWSSection = Field(default_factory=AWSSection)
    foundation: FoundationSection = Field(default_factory=FoundationSection)
    ephemeral: EphemeralSection = Field(default_factory=EphemeralSection)
    timeouts: TimeoutsSection = Field(default_factory=TimeoutsSection)
    components: ComponentsSection = Field(default_factory=ComponentsSection)

    @property
    def name(self) -> str:
        return self.lab.name

    @property
    def data_bucket(self) -> str:
        if self.foundation.s3:
            return self.foundation.s3.data_bucket
        return f"{self.lab.name}-lakehouse-data"

    @property
    def logs_bucket(self) -> str:
        if self.foundation.s3:
            return self.foundation.s3.logs_bucket
        return f"{self.lab.name}-logs"

    @property
    def kube_context(self) -> str:
        return f"{self.lab.name}-context"
