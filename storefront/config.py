"""
Configuration management for the storefront service.

Loads settings from an optional YAML file and lets environment variables
override them, so the same image runs locally and in deployment.
"""
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


@dataclass
class Settings:
    """Runtime settings for the catalog service."""

    env: str = "development"
    log_level: str = "INFO"

    # Primary store
    database_url: str = "sqlite:///./storefront.db"

    # Cache
    redis_url: str = ""
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    cache_namespace: str = "catalog"
    cache_ttl_search: int = 300          # 5 minutes
    cache_ttl_categories: int = 3600     # 1 hour
    cache_ttl_suggestions: int = 600     # 10 minutes
    cache_ttl_product: int = 300         # 5 minutes

    # Search index
    elasticsearch_url: str = "http://localhost:9200"
    elastic_username: str = ""
    elastic_password: str = ""
    elasticsearch_index: str = "products"
    elasticsearch_timeout: int = 30
    elasticsearch_retries: int = 5
    elasticsearch_retry_delay: float = 5.0
    elasticsearch_recheck_interval: float = 30.0
    reindex_batch_size: int = 5000

    # Object storage
    s3_endpoint_url: str = "http://localhost:9000"
    s3_access_key: str = "minioadmin"
    s3_secret_key: str = "minioadmin"
    s3_bucket: str = "productimages"
    s3_public_url: str = "http://localhost:9000"

    skip_connect: bool = False

    @property
    def is_development(self) -> bool:
        return self.env.lower() in ("development", "dev", "")

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from YAML, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data: Dict[str, Any] = {}
        if path.exists():
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
            # Sections are only for readability in the YAML file
            for section in raw.values():
                if isinstance(section, dict):
                    data.update(section)

        known = {f.name: f for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        for name, f in known.items():
            env_value = os.getenv(name.upper())
            if env_value is None or env_value == "":
                continue
            values[name] = _coerce(env_value, f.type)

        # Legacy name used by deployment manifests
        if os.getenv("STOREFRONT_SKIP_CONNECT"):
            values["skip_connect"] = _coerce(os.getenv("STOREFRONT_SKIP_CONNECT"), "bool")

        return cls(**values)


def _coerce(value: str, type_name: Any) -> Any:
    type_name = getattr(type_name, "__name__", type_name)
    if type_name == "int":
        return int(value)
    if type_name == "float":
        return float(value)
    if type_name == "bool":
        return value.strip().lower() in ("1", "true", "yes", "on")
    return value


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_yaml()
    return _settings
