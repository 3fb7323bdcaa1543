"""
Client construction for both ends of a migration.

Provides the pooled httpx client used against the source namespace and the
boto3 S3 client for the destination, with credentials loaded from a .env file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import boto3
import httpx
from botocore.config import Config as BotoConfig
from dotenv import load_dotenv

from .config import (
    CONNECT_TIMEOUT_SECONDS,
    DEFAULT_DESTINATION_REGION,
    ENV_DESTINATION_ACCESS_KEY,
    ENV_DESTINATION_BUCKET,
    ENV_DESTINATION_ENDPOINT,
    ENV_DESTINATION_SECRET_KEY,
    ENV_FILE_VARIABLE,
    MAX_KEEPALIVE_CONNECTIONS,
    READ_TIMEOUT_SECONDS,
    DestinationSettings,
    SourceSettings,
)
from .exceptions import ConfigurationError


def _resolve_env_path(env_path: Optional[str] = None) -> str:
    """
    Determine which .env file should be used for destination credentials.

    Priority order:
      1. Explicit parameter
      2. HCP_MIGRATION_ENV_FILE environment variable
      3. ~/.env
    """
    if env_path:
        return env_path
    env_file = os.environ.get(ENV_FILE_VARIABLE)
    if env_file:
        return env_file
    return str(Path.home() / ".env")


def load_destination_settings(
    env_path: Optional[str] = None, insecure: bool = False
) -> DestinationSettings:
    """
    Load destination endpoint, credentials and bucket from the environment.

    Values already set in the process environment win over the .env file.

    Raises:
        ConfigurationError: if any of the four variables is missing or the
            endpoint is not an http(s) URL
    """
    resolved_path = _resolve_env_path(env_path)
    load_dotenv(resolved_path)
    names = (
        ENV_DESTINATION_ENDPOINT,
        ENV_DESTINATION_ACCESS_KEY,
        ENV_DESTINATION_SECRET_KEY,
        ENV_DESTINATION_BUCKET,
    )
    values = {name: os.getenv(name, "") for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"{', '.join(names)} need to be set; missing: {', '.join(missing)}"
        )
    endpoint = values[ENV_DESTINATION_ENDPOINT]
    if httpx.URL(endpoint).scheme not in ("http", "https"):
        raise ConfigurationError(f"{ENV_DESTINATION_ENDPOINT} must be an http(s) URL: {endpoint}")
    logging.info("Destination credentials loaded for %s", endpoint)
    return DestinationSettings(
        endpoint=endpoint,
        access_key=values[ENV_DESTINATION_ACCESS_KEY],
        secret_key=values[ENV_DESTINATION_SECRET_KEY],
        bucket=values[ENV_DESTINATION_BUCKET],
        insecure=insecure,
    )


def validate_namespace_url(namespace_url: str) -> httpx.URL:
    """
    Parse and check the source namespace URL.

    Raises:
        ConfigurationError: if the URL is empty, malformed, or not http(s)
    """
    if not namespace_url:
        raise ConfigurationError("--namespace-url is required")
    try:
        url = httpx.URL(namespace_url)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"--namespace-url malformed: {namespace_url}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"--namespace-url malformed: {namespace_url}")
    return url


def normalize_host_header(value: Optional[str]) -> str:
    """Accept both 'name' and 'HOST:name' forms of the host header flag."""
    if not value:
        return ""
    value = value.strip()
    if value.lower().startswith("host:"):
        value = value[len("host:"):].strip()
    return value


def create_http_client(settings: SourceSettings) -> httpx.Client:
    """Create the pooled HTTP client used for every source request."""
    return httpx.Client(
        verify=not settings.insecure,
        timeout=httpx.Timeout(READ_TIMEOUT_SECONDS, connect=CONNECT_TIMEOUT_SECONDS),
        limits=httpx.Limits(
            max_connections=None,
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
        ),
        # Object bodies are passed through untouched.
        headers={"Accept-Encoding": "identity"},
        follow_redirects=False,
    )


def create_s3_client(settings: DestinationSettings):
    """Create a boto3 S3 client bound to the destination endpoint."""
    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint,
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        region_name=DEFAULT_DESTINATION_REGION,
        verify=not settings.insecure,
        config=BotoConfig(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            max_pool_connections=MAX_KEEPALIVE_CONNECTIONS,
        ),
    )
