"""Configuration management for the document engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueryConfig(BaseModel):
    """Query execution configuration."""

    cancel_check_interval: int = Field(
        default=1, ge=1, description="Records evaluated between cancellation checks"
    )
    max_limit: int = Field(
        default=0, ge=0, description="Upper bound applied to find() limits (0 = unbounded)"
    )


class IndexConfig(BaseModel):
    """Secondary index configuration."""

    max_compound_fields: int = Field(
        default=32, ge=1, le=64, description="Maximum fields in a compound index"
    )
    planner: Literal["selectivity", "first_usable"] = Field(
        default="selectivity", description="Access path selection strategy"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    metrics_port: int = Field(default=8001, ge=1, le=65535, description="Prometheus metrics port")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="doc_engine", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the document engine."""

    model_config = SettingsConfigDict(
        env_prefix="DOC_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    query: QueryConfig = Field(default_factory=QueryConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
