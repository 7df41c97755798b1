"""
Partition Document Store

Multi-tenant data access layer for Azure Cosmos DB.

Provides:
- Per-partition Cosmos clients, cached with a TTL and a size bound
- CRUD and query operations scoped by (partition, database, collection)
- Continuation-token pagination, including jump-to-page
- Bulk upsert/patch with per-item results
- A stable error taxonomy with HTTP-like status codes

Usage:

    >>> from partition_store import StoreServices, StoreConfig, QueryRequest
    >>> services = StoreServices.from_config(StoreConfig.from_env(), configure_logging=True)
    >>> store = services.store
    >>> store.create_item("tenant-a", "metadata", "records", "rec-1", {"id": "rec-1", "kind": "test"})
    >>> store.find_item("tenant-a", "metadata", "records", "rec-1", "rec-1")
    {'id': 'rec-1', 'kind': 'test'}
    >>> services.pagination.skip_to_page(
    ...     "tenant-a", "metadata", "records", QueryRequest(), page_size=2, page_number=2
    ... )
"""

from .app import StoreServices
from .config import StoreConfig
from .cosmos import (
    BulkItemResult,
    BulkOperationResult,
    BulkWriteCoordinator,
    CosmosClientFactory,
    DecodeError,
    DocumentStore,
    Page,
    PaginatedQueryEngine,
    QueryRequest,
    dataclass_decoder,
)
from .exceptions import (
    ConfigurationError,
    ConflictError,
    DataAccessError,
    ErrorRecord,
    NotFoundError,
    PartitionNotFoundError,
    ServiceError,
    ThrottledError,
    ValidationError,
)
from .partition import (
    PartitionDirectory,
    PartitionInfo,
    StaticPartitionDirectory,
    YamlPartitionDirectory,
)
from .registry import SYSTEM_RESOURCE_KIND, ClientCacheEntry, PartitionClientRegistry
from .telemetry import DependencyLogger, DependencyRecord, DependencySink
from .translation import ErrorTranslator

__all__ = [
    # Composition
    "StoreServices",
    "StoreConfig",
    # Core
    "DocumentStore",
    "CosmosClientFactory",
    "PartitionClientRegistry",
    "ClientCacheEntry",
    "SYSTEM_RESOURCE_KIND",
    "PaginatedQueryEngine",
    "QueryRequest",
    "Page",
    "BulkWriteCoordinator",
    "BulkOperationResult",
    "BulkItemResult",
    "ErrorTranslator",
    "DecodeError",
    "dataclass_decoder",
    # Partitions
    "PartitionDirectory",
    "PartitionInfo",
    "StaticPartitionDirectory",
    "YamlPartitionDirectory",
    # Telemetry
    "DependencyLogger",
    "DependencyRecord",
    "DependencySink",
    # Exceptions
    "DataAccessError",
    "ErrorRecord",
    "ValidationError",
    "NotFoundError",
    "PartitionNotFoundError",
    "ConflictError",
    "ThrottledError",
    "ServiceError",
    "ConfigurationError",
]

__version__ = "0.1.0"
