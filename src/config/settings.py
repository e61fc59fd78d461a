"""Stepwise settings, read from the environment (and ``.env``)."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Environment-driven configuration for the progression API."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    app_name: str = Field(default="stepwise", description="Service name")
    app_version: str = Field(default="0.1.0", description="Service version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Deployment environment"
    )
    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=8000, description="Bind port")
    api_reload: bool = Field(default=False, description="Reload on code changes")

    # JWT verification (tokens are minted by the identity service)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="Shared HMAC key",
    )
    auth_algorithm: str = Field(default="HS256", description="Signing algorithm")
    auth_access_token_expire_minutes: int = Field(
        default=15, ge=1, description="Lifetime of locally minted tokens"
    )

    # Cassandra
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Contact points"
    )
    cassandra_port: int = Field(default=9042)
    cassandra_keyspace: str = Field(default="stepwise")
    cassandra_username: str | None = Field(default=None)
    cassandra_password: str | None = Field(default=None)
    cassandra_protocol_version: int = Field(default=4)
    cassandra_datacenter: str = Field(
        default="datacenter1", description="Local DC for NetworkTopologyStrategy"
    )
    cassandra_replication_factor: int = Field(
        default=1, ge=1, description="Keyspace replication factor"
    )
    cassandra_connect_timeout: float = Field(default=10.0, description="Seconds")
    cassandra_request_timeout: float = Field(default=10.0, description="Seconds")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Console renderer; files are always JSON"
    )
    log_include_caller_info: bool = Field(
        default=False, description="Add file, line and function to events"
    )
    log_dir: str = Field(default="logs")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024)
    log_file_backup_count: int = Field(default=5)
    log_requests: bool = Field(default=True, description="Access log per request")
    log_exclude_paths: list[str] = Field(
        default=["/health"], description="Path prefixes left out of the access log"
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"])
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: list[str] = Field(default=["*"])
    cors_allow_headers: list[str] = Field(default=["*"])
    cors_max_age: int = Field(default=600)

    # Progression
    progress_default_passing_score: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Passing score for quizzes that define none",
    )
    progress_repair_concurrency: int = Field(
        default=4,
        ge=1,
        description="Records repaired in parallel",
    )
    progress_attempts_limit: int = Field(
        default=100,
        ge=1,
        description="Attempts returned by history queries",
    )

    @field_validator("auth_secret_key")
    @classmethod
    def validate_secret_length(cls, v: str) -> str:
        if len(v) < _MIN_SECRET_LENGTH:
            msg = f"auth_secret_key must be at least {_MIN_SECRET_LENGTH} characters"
            raise ValueError(msg)
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
