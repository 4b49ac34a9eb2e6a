"""
DocVault Configuration — Load and validate docvault.yaml at startup.

Values come from docvault.yaml (auto-discovered from the working directory
upwards) and are then overridden by environment variables for the secrets
that must never live in a checked-in file.

Usage:
    from docvault.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from docvault.engine.errors import DocVaultConfigError

ONE_YEAR_SECONDS = 60 * 60 * 24 * 365
ONE_HOUR_SECONDS = 60 * 60


# ---------------------------------------------------------------------------
# Pydantic models for docvault.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///docvault.db"
    pool_pre_ping: bool = True
    pool_recycle: int = 300
    create_tables: bool = True


class StorageConfig(BaseModel):
    backend: str = "local"
    local_root: str = "secure-uploads"
    bucket: str = "uploads"
    url: Optional[str] = None
    service_key: Optional[str] = None
    timeout: float = 30.0
    canonical_url_expiry: int = ONE_YEAR_SECONDS
    view_url_expiry: int = ONE_HOUR_SECONDS

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("local", "remote"):
            raise ValueError(f"storage backend must be local/remote, got '{v}'")
        return v

    @model_validator(mode="after")
    def check_remote_credentials(self) -> "StorageConfig":
        if self.backend == "remote" and not (self.url and self.service_key):
            raise ValueError("remote storage requires url and service_key")
        return self


class UploadsConfig(BaseModel):
    max_upload_size_mb: int = 100
    image_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]
    )
    video_types: List[str] = Field(
        default_factory=lambda: ["video/mp4", "video/webm", "video/ogg", "video/quicktime"]
    )

    @property
    def allowed_types(self) -> List[str]:
        return [*self.image_types, *self.video_types]

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


class RateLimitConfig(BaseModel):
    enabled: bool = True
    backend: str = "memory"
    max_requests: int = 100
    window_seconds: int = 60
    redis_url: str = "redis://localhost:6379/5"

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError(f"rate_limit backend must be memory/redis, got '{v}'")
        return v


class SecurityConfig(BaseModel):
    admin_password: Optional[str] = None
    admin_email: Optional[str] = None
    anonymous_email: str = "unknown@example.com"
    identity_header: str = "x-user-email"
    identity_cookie: str = "user-email"
    manager_auth_cookie: str = "manager-auth"
    manager_email_cookie: str = "manager-email"
    admin_auth_cookie: str = "admin-auth"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"
    directory: str = "logs"


class VaultConfig(BaseModel):
    """Root model for docvault.yaml."""
    name: str = "DocVault"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    storage: StorageConfig = StorageConfig()
    uploads: UploadsConfig = UploadsConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[VaultConfig] = None

# env var → (section, field)
ENV_OVERRIDES: Dict[str, tuple] = {
    "DATABASE_URL": ("database", "url"),
    "ADMIN_PASSWORD": ("security", "admin_password"),
    "ADMIN_EMAIL": ("security", "admin_email"),
    "SUPABASE_URL": ("storage", "url"),
    "SUPABASE_SERVICE_ROLE_KEY": ("storage", "service_key"),
    "DOCVAULT_STORAGE_BACKEND": ("storage", "backend"),
    "DOCVAULT_STORAGE_ROOT": ("storage", "local_root"),
    "REDIS_URL": ("rate_limit", "redis_url"),
    "DOCVAULT_ENV": (None, "environment"),
}


def _find_project_root() -> Path:
    """Find the project root by looking for docvault.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "docvault.yaml").exists():
            return parent
    return current


def _normalize_database_url(url: str) -> str:
    """Hosted Postgres providers hand out postgres:// URLs; SQLAlchemy wants a driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg2://", 1)
    return url


def _apply_env_overrides(data: Dict, environ: Dict[str, str]) -> Dict:
    for env_name, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        if section is None:
            data[field] = value
        else:
            data.setdefault(section, {})[field] = value
    db = data.get("database") or {}
    if db.get("url"):
        db["url"] = _normalize_database_url(db["url"])
    return data


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> VaultConfig:
    """
    Load and validate docvault.yaml, then apply environment overrides.

    Args:
        config_path: Explicit path to docvault.yaml. If None, auto-discovers.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated VaultConfig instance.

    Raises:
        DocVaultConfigError if the file or the resulting values are invalid.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / "docvault.yaml")

    raw: Dict = {}
    path = Path(config_path)
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise DocVaultConfigError(f"Could not parse {path.name}: {e}") from e

    data = _apply_env_overrides(dict(raw), dict(os.environ if environ is None else environ))

    try:
        _config = VaultConfig(**data)
    except ValueError as e:
        raise DocVaultConfigError(f"Invalid configuration: {e}") from e
    return _config


def get_config() -> VaultConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: VaultConfig) -> None:
    """Install an explicit config (used by create_app and tests)."""
    global _config
    _config = config
