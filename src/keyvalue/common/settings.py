"""Application configuration for the key-value gateway."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class GatewaySettings(BaseSettings):
    """Runtime settings for the gateway service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    aws_region: str = env_field("us-east-1", "KEYVALUE_AWS_REGION")
    zone_id: str = env_field("use1-az4", "KEYVALUE_AWS_ZONE_ID")
    bucket_prefix: str = env_field("keyvalue", "KEYVALUE_BUCKET_PREFIX")
    storage_backend: Literal["memory", "local", "s3"] = env_field("memory", "KEYVALUE_STORAGE_BACKEND")
    storage_path: Path = env_field(Path("./data"), "KEYVALUE_STORAGE_PATH")
    s3_endpoint_url: Optional[str] = env_field(None, "KEYVALUE_S3_ENDPOINT")
    s3_max_retries: int = env_field(3, "KEYVALUE_S3_MAX_RETRIES")
    s3_retry_base_seconds: float = env_field(0.2, "KEYVALUE_S3_RETRY_BASE")
    s3_retry_max_seconds: float = env_field(2.0, "KEYVALUE_S3_RETRY_MAX")
    s3_circuit_breaker_failures: int = env_field(5, "KEYVALUE_S3_CIRCUIT_FAILURES")
    s3_circuit_breaker_reset_seconds: float = env_field(30.0, "KEYVALUE_S3_CIRCUIT_RESET")
    max_key_length: int = env_field(1024, "KEYVALUE_MAX_KEY_LENGTH")
    max_object_size: int = env_field(10 * 1024 * 1024, "KEYVALUE_MAX_OBJECT_SIZE")  # 10 MiB
    request_timeout_seconds: float = env_field(10.0, "KEYVALUE_REQUEST_TIMEOUT")
    tenant_database_url: Optional[str] = env_field(None, "KEYVALUE_TENANT_DB")
    admin_token: Optional[SecretStr] = env_field(None, "KEYVALUE_ADMIN_TOKEN")
    metrics_token: Optional[SecretStr] = env_field(None, "KEYVALUE_METRICS_TOKEN")
    environment: str = env_field("development", "KEYVALUE_ENV")
    log_level: str = env_field("INFO", "KEYVALUE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "KEYVALUE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "KEYVALUE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "KEYVALUE_OTEL_SAMPLER_RATIO")

    @field_validator("tenant_database_url", mode="before")
    @classmethod
    def _normalize_tenant_db_url(cls, value):
        if value in (None, "", ...):
            return None
        if isinstance(value, Path):
            value = str(value)
        if isinstance(value, str) and "://" not in value:
            path = Path(value).expanduser().resolve()
            return f"sqlite+pysqlite:///{path.as_posix()}"
        return value

    @field_validator("max_key_length", "max_object_size")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("limits must be positive")
        return value

    def validate_for_production(self) -> None:
        """Refuse to start a production deployment without durable backends."""

        if self.environment != "production":
            return
        missing = []
        if self.storage_backend != "s3":
            missing.append("KEYVALUE_STORAGE_BACKEND=s3")
        if not self.tenant_database_url:
            missing.append("KEYVALUE_TENANT_DB")
        if self.admin_token is None:
            missing.append("KEYVALUE_ADMIN_TOKEN")
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")
