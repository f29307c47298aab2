#!/usr/bin/env python3
"""
Configuration for the Hybris MCP server
Values come from environment variables (optionally a .env file)
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hybris_errors import ConfigurationError

REQUIRED_ENV_VARS = {
    'HYBRIS_BASE_URL': 'Base URL of your Hybris instance (e.g., https://localhost:9002)',
    'HYBRIS_USERNAME': 'Admin username',
    'HYBRIS_PASSWORD': 'Admin password',
}


class HybrisConfig(BaseModel):
    """Connection settings for one Hybris instance"""
    model_config = ConfigDict(frozen=True)

    base_url: str = Field(description="Base URL of the Hybris instance")
    username: str = Field(description="Admin username (OCC basic auth and HAC login)")
    password: str = Field(description="Admin password")
    base_site_id: str = Field(default="electronics", description="OCC base site")
    catalog_id: str = Field(default="electronicsProductCatalog", description="Product catalog ID")
    catalog_version: str = Field(default="Online", description="Product catalog version")
    hac_path: str = Field(default="/hac", description="HAC path prefix")
    timeout_seconds: float = Field(default=30.0, description="Bound for every network round trip (seconds)")
    ssl_verify: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip().rstrip('/')
        if not v.startswith(('http://', 'https://')):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @field_validator('hac_path')
    @classmethod
    def normalize_hac_path(cls, v: str) -> str:
        v = v.strip().strip('/')
        return f"/{v}" if v else ""

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(env_file: Optional[str] = None) -> HybrisConfig:
    """
    Build a HybrisConfig from environment variables

    Args:
        env_file: Optional path to a .env file (defaults to python-dotenv discovery)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: if a required variable is missing or a value is invalid
    """
    load_dotenv(env_file)

    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        details = "\n".join(f"  {name} - {REQUIRED_ENV_VARS[name]}" for name in missing)
        raise ConfigurationError(f"Missing required environment variables:\n{details}")

    try:
        return HybrisConfig(
            base_url=os.environ['HYBRIS_BASE_URL'],
            username=os.environ['HYBRIS_USERNAME'],
            password=os.environ['HYBRIS_PASSWORD'],
            base_site_id=os.getenv('HYBRIS_BASE_SITE_ID') or 'electronics',
            catalog_id=os.getenv('HYBRIS_CATALOG_ID') or 'electronicsProductCatalog',
            catalog_version=os.getenv('HYBRIS_CATALOG_VERSION') or 'Online',
            hac_path=os.getenv('HYBRIS_HAC_PATH') or '/hac',
            timeout_seconds=float(os.getenv('HYBRIS_TIMEOUT', '30')),
            ssl_verify=_env_flag(os.getenv('HYBRIS_SSL_VERIFY'), True),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid Hybris configuration: {e}") from e
