import os
import re
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so env vars are available for YAML interpolation and for the
# env-prefixed storage settings below
_env_file = Path(__file__).parent.parent / ".env"
load_dotenv(_env_file)

# Pattern to match $VAR_NAME environment variable references
ENV_VAR_PATTERN = re.compile(r"\$([A-Z_][A-Z0-9_]*)")

MiB = 1024 * 1024


def interpolate_env_vars(value):
    """Recursively replace $VAR_NAME with os.environ values."""
    if isinstance(value, str):

        def replace(match):
            var = match.group(1)
            val = os.environ.get(var)
            if val is None:
                raise ValueError(f"Environment variable ${var} not set")
            return val

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def get_config_path() -> Path:
    """Return the app.yaml path, overridable with ARKIV_CONFIG."""
    override = os.environ.get("ARKIV_CONFIG")
    if override:
        return Path(override)
    return Path.cwd() / "app.yaml"


def load_app_config() -> dict:
    """Load and parse app.yaml with environment variable interpolation."""
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"app.yaml not found at {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return interpolate_env_vars(config)


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite+aiosqlite:///./arkiv.db"
    pool_size: int = 5
    pool_overflow: int = 10
    pool_timeout: int = 30
    pool_pre_ping: bool = True
    echo: bool = False
    # Create tables on startup instead of running Alembic (development and tests)
    create_all: bool = False


class S3Config(BaseSettings):
    """S3-compatible object storage settings.

    Every field may be left empty; an incomplete configuration simply reports
    ``is_configured == False`` instead of failing at load time.
    """

    model_config = SettingsConfigDict(env_prefix="ARKIV_S3_", extra="ignore")

    account_id: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket: str = ""
    region: str = "auto"
    endpoint_url: str = ""
    public_url: str = ""
    presign_ttl: int = 3600

    @property
    def resolved_endpoint_url(self) -> str | None:
        """Explicit endpoint, or the Cloudflare R2 endpoint derived from the account id."""
        if self.endpoint_url:
            return self.endpoint_url
        if self.account_id:
            return f"https://{self.account_id}.r2.cloudflarestorage.com"
        return None

    @property
    def is_configured(self) -> bool:
        has_location = bool(self.resolved_endpoint_url) or self.region not in ("", "auto")
        return bool(
            self.access_key_id and self.secret_access_key and self.bucket and has_location
        )


class StorageConfig(BaseSettings):
    """Which backend receives new writes, and how each backend is reached."""

    model_config = SettingsConfigDict(env_prefix="ARKIV_STORAGE_", extra="ignore")

    backend: str = "local"
    local_path: str = "./storage"
    route_prefix: str = "/api/storage"
    s3: S3Config = Field(default_factory=S3Config)


class OptimizerConfig(BaseModel):
    """Image optimization policy applied by the upload pipeline."""

    enabled: bool = True
    max_width: int = 1920
    max_height: int = 1080
    max_size_bytes: int = 2 * MiB
    jpeg_quality: int = 85
    png_quality: int = 90
    webp_quality: int = 85


class UploadConfig(BaseModel):
    max_upload_size: int = 10 * MiB
    optimizer: OptimizerConfig = OptimizerConfig()


class MigrationConfig(BaseModel):
    worker_limit: int = 4
    skip_existing: bool = True
    throughput_bytes_per_second: int = MiB


class CatalogConfig(BaseModel):
    """Catalog collaborator used to look up access descriptors.

    ``provider`` is a ``module:ClassName`` spec; empty means the in-memory
    catalog.
    """

    provider: str = ""


class LogfireConfig(BaseModel):
    enabled: bool = False
    service_name: str = "arkiv"
    environment: str | None = None
    sample_rate: float = 1.0
    console: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    debug: bool = False
    secret_key: str
    token_ttl: int = 3600

    db: DatabaseConfig = DatabaseConfig()
    storage: StorageConfig = Field(default_factory=StorageConfig)
    uploads: UploadConfig = UploadConfig()
    migration: MigrationConfig = MigrationConfig()
    catalog: CatalogConfig = CatalogConfig()
    logfire: LogfireConfig = LogfireConfig()


_SECTIONS: dict[str, type[BaseModel]] = {
    "db": DatabaseConfig,
    "storage": StorageConfig,
    "uploads": UploadConfig,
    "migration": MigrationConfig,
    "catalog": CatalogConfig,
    "logfire": LogfireConfig,
}


@lru_cache
def get_settings() -> Settings:
    """Load settings from .env and app.yaml."""
    base_settings = Settings()

    try:
        app_config = load_app_config()
    except FileNotFoundError:
        return base_settings

    updates = {}
    for section, model in _SECTIONS.items():
        if section in app_config:
            updates[section] = model(**app_config[section])

    if "debug" in app_config:
        updates["debug"] = bool(app_config["debug"])

    if updates:
        return base_settings.model_copy(update=updates)

    return base_settings
