"""
Cosmos DB client factory.

Builds ``CosmosClient`` instances for tenant partitions (via the partition
directory) and for the system account (via configuration). Partition clients
are cached in a ``PartitionClientRegistry``; the factory never caches
containers, only clients.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from azure.cosmos import CosmosClient
from azure.identity import DefaultAzureCredential

from ..config import AUTH_KEY, StoreConfig
from ..exceptions import ConfigurationError, ValidationError
from ..partition import PartitionDirectory
from ..registry import SYSTEM_RESOURCE_KIND, PartitionClientRegistry

logger = logging.getLogger(__name__)

COSMOS_CLIENT_KIND = "cosmosClient"

ClientBuilder = Callable[[str, Any], Any]


class CosmosClientFactory:
    """Resolves Cosmos clients per partition.

    Accounts with a key in the partition directory authenticate with that key;
    accounts without one use a shared ``DefaultAzureCredential``.
    """

    def __init__(
        self,
        directory: PartitionDirectory,
        config: StoreConfig | None = None,
        registry: PartitionClientRegistry | None = None,
        client_builder: ClientBuilder | None = None,
    ):
        """
        Initialize the factory.

        Args:
            directory: Partition directory consulted on cache misses
            config: Store configuration (system account, cache bounds, client options)
            registry: Client registry; built from config when omitted
            client_builder: ``(endpoint, credential) -> client``, defaults to CosmosClient
        """
        self.config = config or StoreConfig()
        self.directory = directory
        self._client_builder = client_builder or self._build_cosmos_client
        self._credential: DefaultAzureCredential | None = None
        self._credential_lock = threading.Lock()
        self.registry = registry or PartitionClientRegistry(
            ttl_seconds=self.config.client_cache_ttl_seconds,
            max_entries=self.config.client_cache_max_entries,
            system_factory=self._build_system_client,
        )

    def get_client(self, partition_id: str) -> Any:
        """Return the cached (or newly built) client for a partition."""
        if not partition_id:
            raise ValidationError("partition_id", "must not be empty")
        return self.registry.resolve(partition_id, COSMOS_CLIENT_KIND, self._build_partition_client)

    def get_system_client(self) -> Any:
        """Return the process-wide client for the system account."""
        return self.registry.resolve("", SYSTEM_RESOURCE_KIND, self._build_partition_client)

    def _build_partition_client(self, partition_id: str) -> Any:
        info = self.directory.get_partition(partition_id)
        logger.info(
            "Creating Cosmos client for partition",
            extra={"partition_id": partition_id, "endpoint": info.cosmos_endpoint},
        )
        return self._client_builder(info.cosmos_endpoint, info.cosmos_key or self._aad_credential())

    def _build_system_client(self) -> Any:
        if not self.config.system_endpoint:
            raise ConfigurationError("system_endpoint", "system Cosmos account is not configured")
        if self.config.auth_method == AUTH_KEY:
            credential: Any = self.config.system_key
        else:
            credential = self._aad_credential()
        logger.info("Creating system Cosmos client", extra={"endpoint": self.config.system_endpoint})
        return self._client_builder(self.config.system_endpoint, credential)

    def _aad_credential(self) -> DefaultAzureCredential:
        with self._credential_lock:
            if self._credential is None:
                self._credential = DefaultAzureCredential()
            return self._credential

    def _build_cosmos_client(self, endpoint: str, credential: Any) -> CosmosClient:
        return CosmosClient(endpoint, credential=credential, **self.config.client_options)
