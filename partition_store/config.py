"""
Store configuration.

All settings are read once at startup, either passed explicitly or loaded
from ``PARTITION_STORE_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ConfigurationError

ENV_PREFIX = "PARTITION_STORE_"

# Auth methods
AUTH_KEY = "key"
AUTH_DEFAULT_CREDENTIAL = "default_credential"

# Dependency log strategies
LOG_FORMAT_JSON = "json"
LOG_FORMAT_TEXT = "text"
LOG_FORMAT_NONE = "none"

DEFAULT_CLIENT_CACHE_TTL_SECONDS = 60 * 60
DEFAULT_CLIENT_CACHE_MAX_ENTRIES = 1000
DEFAULT_BULK_MAX_CONCURRENCY = 4
DEFAULT_QUERY_PAGE_SIZE = 1000


@dataclass
class StoreConfig:
    """Configuration for the partition store.

    Attributes:
        system_endpoint: Cosmos DB endpoint of the process-wide system account
        system_key: Account key for the system account (None for Azure AD auth)
        auth_method: ``key`` or ``default_credential`` for the system account
        client_cache_ttl_seconds: Lifetime of a cached partition client
        client_cache_max_entries: Maximum number of cached partition clients
        bulk_max_concurrency: Default parallelism hint for bulk calls
        query_page_size: Page size used when draining a query
        dependency_sampling_percentage: Share of successful dependency records kept
        log_format: Dependency log strategy (json, text or none)
        log_level: Root log level name
        partitions_file: Optional YAML partition directory
        client_options: Extra keyword arguments for every CosmosClient
    """

    system_endpoint: str | None = None
    system_key: str | None = None
    auth_method: str = AUTH_KEY
    client_cache_ttl_seconds: int = DEFAULT_CLIENT_CACHE_TTL_SECONDS
    client_cache_max_entries: int = DEFAULT_CLIENT_CACHE_MAX_ENTRIES
    bulk_max_concurrency: int = DEFAULT_BULK_MAX_CONCURRENCY
    query_page_size: int = DEFAULT_QUERY_PAGE_SIZE
    dependency_sampling_percentage: int = 100
    log_format: str = LOG_FORMAT_JSON
    log_level: str = "INFO"
    partitions_file: str | None = None
    client_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check value ranges and cross-field rules.

        Raises:
            ConfigurationError: If a setting is out of range or inconsistent
        """
        if self.auth_method not in (AUTH_KEY, AUTH_DEFAULT_CREDENTIAL):
            raise ConfigurationError("auth_method", f"unsupported value {self.auth_method!r}")
        if self.system_endpoint and self.auth_method == AUTH_KEY and not self.system_key:
            raise ConfigurationError("system_key", "required for key auth")
        if self.client_cache_ttl_seconds < 1:
            raise ConfigurationError("client_cache_ttl_seconds", "must be >= 1")
        if self.client_cache_max_entries < 1:
            raise ConfigurationError("client_cache_max_entries", "must be >= 1")
        if self.bulk_max_concurrency < 1:
            raise ConfigurationError("bulk_max_concurrency", "must be >= 1")
        if self.query_page_size < 1:
            raise ConfigurationError("query_page_size", "must be >= 1")
        if not 0 <= self.dependency_sampling_percentage <= 100:
            raise ConfigurationError("dependency_sampling_percentage", "must be within 0..100")
        if self.log_format not in (LOG_FORMAT_JSON, LOG_FORMAT_TEXT, LOG_FORMAT_NONE):
            raise ConfigurationError("log_format", f"unsupported value {self.log_format!r}")
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigurationError("log_level", f"unknown level {self.log_level!r}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> StoreConfig:
        """Create config from environment variables.

        Expected environment variables (all optional):
        - PARTITION_STORE_SYSTEM_COSMOS_ENDPOINT / PARTITION_STORE_SYSTEM_COSMOS_KEY
        - PARTITION_STORE_AUTH_METHOD
        - PARTITION_STORE_CLIENT_CACHE_TTL_SECONDS / PARTITION_STORE_CLIENT_CACHE_MAX_ENTRIES
        - PARTITION_STORE_BULK_MAX_CONCURRENCY / PARTITION_STORE_QUERY_PAGE_SIZE
        - PARTITION_STORE_DEPENDENCY_SAMPLING_PERCENTAGE
        - PARTITION_STORE_LOG_FORMAT / PARTITION_STORE_LOG_LEVEL
        - PARTITION_STORE_PARTITIONS_FILE

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            StoreConfig instance

        Raises:
            ConfigurationError: If a value cannot be parsed or is invalid
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str | None = None) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else default

        def get_int(name: str, default: int) -> int:
            raw = get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigurationError(ENV_PREFIX + name, f"not an integer: {raw!r}") from e

        key = get("SYSTEM_COSMOS_KEY")
        auth_method = get("AUTH_METHOD", AUTH_KEY if key else AUTH_DEFAULT_CREDENTIAL)

        return cls(
            system_endpoint=get("SYSTEM_COSMOS_ENDPOINT"),
            system_key=key,
            auth_method=(auth_method or AUTH_KEY).lower(),
            client_cache_ttl_seconds=get_int(
                "CLIENT_CACHE_TTL_SECONDS", DEFAULT_CLIENT_CACHE_TTL_SECONDS
            ),
            client_cache_max_entries=get_int(
                "CLIENT_CACHE_MAX_ENTRIES", DEFAULT_CLIENT_CACHE_MAX_ENTRIES
            ),
            bulk_max_concurrency=get_int("BULK_MAX_CONCURRENCY", DEFAULT_BULK_MAX_CONCURRENCY),
            query_page_size=get_int("QUERY_PAGE_SIZE", DEFAULT_QUERY_PAGE_SIZE),
            dependency_sampling_percentage=get_int("DEPENDENCY_SAMPLING_PERCENTAGE", 100),
            log_format=(get("LOG_FORMAT", LOG_FORMAT_JSON) or LOG_FORMAT_JSON).lower(),
            log_level=(get("LOG_LEVEL", "INFO") or "INFO").upper(),
            partitions_file=get("PARTITIONS_FILE"),
        )
