"""
Cosmos DB data access.

Provides:
- Partition-scoped client resolution (CosmosClientFactory)
- CRUD and query facade (DocumentStore)
- Continuation-token pagination (PaginatedQueryEngine)
- Bulk writes with per-item results (BulkWriteCoordinator)
"""

from .bulk import (
    BulkExecutor,
    BulkItemResult,
    BulkOperation,
    BulkOperationResult,
    BulkWriteCoordinator,
    CosmosBatchExecutor,
)
from .client_factory import COSMOS_CLIENT_KIND, CosmosClientFactory
from .codec import DecodeError, Decoder, dataclass_decoder, encode_document, identity_decoder
from .pagination import SELECT_ALL, Page, PaginatedQueryEngine, QueryRequest
from .store import DocumentStore

__all__ = [
    "DocumentStore",
    "CosmosClientFactory",
    "COSMOS_CLIENT_KIND",
    "PaginatedQueryEngine",
    "QueryRequest",
    "Page",
    "SELECT_ALL",
    "BulkWriteCoordinator",
    "BulkExecutor",
    "CosmosBatchExecutor",
    "BulkOperation",
    "BulkItemResult",
    "BulkOperationResult",
    "Decoder",
    "DecodeError",
    "identity_decoder",
    "dataclass_decoder",
    "encode_document",
]
