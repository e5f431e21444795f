"""
Process settings using Pydantic.

Provides environment-based overrides with the LAB_ prefix. Values set here
take precedence over the corresponding fields in lab.yaml.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment overrides for a lab invocation."""

    model_config = SettingsConfigDict(env_prefix="LAB_")

    # Explicit lab.yaml location
    config: str | None = None

    # AWS
    aws_region: str | None = None
    aws_profile: str | None = None

    # Local state location (defaults to <project>/.lab/state)
    state_dir: str | None = None

    # Logging
    log_level: str = "WARNING"
    json_logs: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
