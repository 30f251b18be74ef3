"""
Pydantic Settings Models for the Anonymization Pipeline
"""

from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Nested settings are built by default_factory, so each reads .env itself
DOTENV_CONFIG = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class MongoSettings(BaseSettings):
    """MongoDB source and destination configuration"""

    uri: str = Field(
        default="mongodb://localhost:27017/?replicaSet=rs0",
        validation_alias=AliasChoices("ANON_MONGO_URI", "DB_URI"),
        description="Connection string; change streams need a replica set",
    )
    database: str = Field(default="47Database")
    source_collection: str = Field(default="customers")
    destination_collection: str = Field(default="customers_anonymised")
    server_selection_timeout_ms: int = Field(default=5000, ge=100, le=300000)
    change_stream_max_await_ms: int = Field(
        default=1000, ge=10, le=60000, description="Server wait per change stream poll"
    )

    model_config = SettingsConfigDict(
        env_prefix="ANON_MONGO_", populate_by_name=True, **DOTENV_CONFIG
    )


class GeneratorSettings(BaseSettings):
    """Synthetic record generator configuration"""

    enabled: bool = Field(default=True)
    interval_ms: int = Field(default=2000, ge=10, le=3600000, description="Batch period (ms)")
    min_batch_size: int = Field(default=1, ge=1, le=10000)
    max_batch_size: int = Field(default=10, ge=1, le=10000)
    locale: str = Field(default="en_US")

    model_config = SettingsConfigDict(env_prefix="ANON_GENERATOR_", **DOTENV_CONFIG)

    @model_validator(mode="after")
    def validate_batch_bounds(self) -> "GeneratorSettings":
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")
        return self


class ApiSettings(BaseSettings):
    """Query API configuration"""

    enabled: bool = Field(default=True)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    subscription_topic: str = Field(default="CUSTOMER_UPDATED")

    model_config = SettingsConfigDict(env_prefix="ANON_API_", **DOTENV_CONFIG)


class DLQSettings(BaseSettings):
    """Dead letter queue configuration"""

    enabled: bool = Field(default=True)
    directory: str = Field(default="data/dlq")

    model_config = SettingsConfigDict(env_prefix="ANON_DLQ_", **DOTENV_CONFIG)


class RetrySettings(BaseSettings):
    """Backoff used while establishing the store connection at startup"""

    max_attempts: int = Field(default=5, ge=1, le=100, description="Max retry attempts")
    base_delay_ms: int = Field(default=100, ge=10, le=10000, description="Initial retry delay")
    max_delay_ms: int = Field(
        default=30000, ge=100, le=300000, description="Maximum retry delay cap"
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, le=10.0, description="Exponential backoff multiplier"
    )
    jitter: bool = Field(default=True, description="Add random jitter (0-25%)")

    model_config = SettingsConfigDict(env_prefix="ANON_RETRY_", **DOTENV_CONFIG)


class ObservabilitySettings(BaseSettings):
    """Metrics, logging, tracing and health configuration"""

    metrics_enabled: bool = Field(default=True)
    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="json", pattern="^(json|console)$")
    enable_tracing: bool = Field(default=False)
    tracing_console_export: bool = Field(default=False)
    health_check_interval_seconds: float = Field(default=30.0, gt=0, le=3600)

    model_config = SettingsConfigDict(env_prefix="ANON_", **DOTENV_CONFIG)


class AnonymizerSettings(BaseSettings):
    """Complete service configuration"""

    mongo: MongoSettings = Field(default_factory=MongoSettings)
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    dlq: DLQSettings = Field(default_factory=DLQSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    config_file: Optional[str] = Field(default=None, description="YAML file the values came from")

    model_config = SettingsConfigDict(env_prefix="ANON_", **DOTENV_CONFIG)
