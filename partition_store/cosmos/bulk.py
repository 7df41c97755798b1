"""
Bulk writes.

``BulkWriteCoordinator`` turns a set of documents or patch operations into
one bulk submission and aggregates the per-item outcomes. Partial failure is
reported in the returned ``BulkOperationResult``; an exception is raised only
when the submission itself fails.

The coordinator does no threading of its own. Parallelism belongs to the
``BulkExecutor``, which receives the caller's concurrency hint unchanged.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError
from azure.cosmos.exceptions import CosmosBatchOperationError

from ..exceptions import ValidationError
from ..telemetry import cosmos_dependency_target
from ..translation import HTTP_INTERNAL_ERROR, HTTP_OK, HTTP_TOO_MANY_REQUESTS
from .codec import encode_document

if TYPE_CHECKING:
    from azure.cosmos import ContainerProxy

    from .store import DocumentStore

logger = logging.getLogger(__name__)

UPSERT = "upsert"
CREATE = "create"
PATCH = "patch"

# Cosmos DB transactional batches hold at most 100 operations
MAX_OPERATIONS_PER_BATCH = 100

# Status of operations rolled back because another operation in the batch failed
HTTP_FAILED_DEPENDENCY = 424


@dataclass(frozen=True)
class BulkOperation:
    """One write in a bulk submission.

    ``payload`` is the document for upsert/create and the list of patch
    operations (``{"op": ..., "path": ..., "value": ...}``) for patch.
    """

    document_id: str
    partition_key: Any
    kind: str
    payload: Any

    def as_batch_operation(self) -> tuple:
        """Tuple form accepted by ``ContainerProxy.execute_item_batch``."""
        if self.kind == PATCH:
            return (PATCH, (self.document_id, list(self.payload)))
        return (self.kind, (self.payload,))


@dataclass(frozen=True)
class BulkItemResult:
    """Outcome of one operation."""

    document_id: str
    success: bool
    status_code: int
    request_charge: float = 0.0


@dataclass
class BulkOperationResult:
    """Aggregated outcome of a bulk submission."""

    items: list[BulkItemResult] = field(default_factory=list)
    total_submitted: int = 0

    @property
    def total_succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def succeeded(self) -> bool:
        return self.total_submitted == self.total_succeeded

    @property
    def request_charge(self) -> float:
        return sum(item.request_charge for item in self.items)

    @property
    def status_code(self) -> int:
        """200 when everything succeeded, else 429 if anything was throttled,
        else the highest failing status."""
        failures = {item.status_code for item in self.items if not item.success}
        if self.total_submitted > len(self.items):
            failures.add(HTTP_INTERNAL_ERROR)
        if not failures:
            return HTTP_OK
        if HTTP_TOO_MANY_REQUESTS in failures:
            return HTTP_TOO_MANY_REQUESTS
        return max(failures)

    def failed_items(self) -> list[BulkItemResult]:
        return [item for item in self.items if not item.success]


class BulkExecutor(ABC):
    """Provider-side execution of a bulk submission."""

    @abstractmethod
    def execute(
        self,
        container: ContainerProxy,
        operations: Sequence[BulkOperation],
        max_concurrency: int,
    ) -> list[BulkItemResult]:
        """
        Execute operations and return one result per operation, in order.

        Operations sharing a document id must be applied in the given order.
        """
        ...


def _partition_group_key(partition_key: Any) -> str:
    return json.dumps(partition_key, sort_keys=True, default=str)


def _chunks(entries: list, size: int) -> Iterable[list]:
    for start in range(0, len(entries), size):
        yield entries[start : start + size]


def _status_of_response(response: Mapping[str, Any]) -> int:
    return int(response.get("statusCode", HTTP_INTERNAL_ERROR))


class CosmosBatchExecutor(BulkExecutor):
    """
    Executes bulk operations through Cosmos DB transactional batches.

    Transactional batches are scoped to one partition key, so operations are
    grouped by partition key and each group is split into batches of at most
    ``MAX_OPERATIONS_PER_BATCH``. Batches of one group run sequentially,
    keeping per-document order; groups run in parallel on up to
    ``max_concurrency`` threads.

    Cosmos DB applies a batch all or nothing. When the service rejects a batch
    the failing operation keeps its status and the operations rolled back
    with it (424) are resubmitted, so every item succeeds or fails on its own.
    Errors other than a rejected batch propagate to the caller.
    """

    def execute(
        self,
        container: ContainerProxy,
        operations: Sequence[BulkOperation],
        max_concurrency: int,
    ) -> list[BulkItemResult]:
        groups: dict[str, list[tuple[int, BulkOperation]]] = {}
        for index, operation in enumerate(operations):
            groups.setdefault(_partition_group_key(operation.partition_key), []).append(
                (index, operation)
            )

        results: list[BulkItemResult | None] = [None] * len(operations)

        def run_group(entries: list[tuple[int, BulkOperation]]) -> None:
            for chunk in _chunks(entries, MAX_OPERATIONS_PER_BATCH):
                chunk_ops = [operation for _, operation in chunk]
                for (index, _), result in zip(chunk, self._execute_batch(container, chunk_ops)):
                    results[index] = result

        workers = max(1, min(max_concurrency, len(groups)))
        if workers == 1:
            for entries in groups.values():
                run_group(entries)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cosmos-bulk") as pool:
                futures = [pool.submit(run_group, entries) for entries in groups.values()]
                for future in futures:
                    future.result()

        return [
            result
            if result is not None
            else BulkItemResult(operation.document_id, False, HTTP_INTERNAL_ERROR)
            for operation, result in zip(operations, results)
        ]

    def _execute_batch(
        self, container: ContainerProxy, operations: list[BulkOperation]
    ) -> list[BulkItemResult]:
        partition_key = operations[0].partition_key
        results: list[BulkItemResult | None] = [None] * len(operations)
        pending = list(range(len(operations)))

        while pending:
            try:
                responses = container.execute_item_batch(
                    batch_operations=[operations[i].as_batch_operation() for i in pending],
                    partition_key=partition_key,
                )
            except CosmosBatchOperationError as e:
                logger.warning(
                    "Transactional batch rejected",
                    extra={
                        "partition_key": str(partition_key),
                        "error_index": e.error_index,
                        "status_code": e.status_code,
                        "operations": len(pending),
                    },
                )
                pending = self._settle_rejected(operations, pending, e, results)
                continue

            for position, index in enumerate(pending):
                response = responses[position] if position < len(responses) else None
                results[index] = self._to_result(operations[index], response)
            pending = []

        return [
            result if result is not None else BulkItemResult(operation.document_id, False, HTTP_INTERNAL_ERROR)
            for operation, result in zip(operations, results)
        ]

    def _settle_rejected(
        self,
        operations: list[BulkOperation],
        pending: list[int],
        error: CosmosBatchOperationError,
        results: list[BulkItemResult | None],
    ) -> list[int]:
        """Record final outcomes of a rejected batch and return the indexes to resubmit."""
        responses = list(error.operation_responses or [])
        retry = []
        for position, index in enumerate(pending):
            response = responses[position] if position < len(responses) else None
            if position == error.error_index:
                if response is None:
                    response = {"statusCode": error.status_code or HTTP_INTERNAL_ERROR}
                results[index] = self._to_result(operations[index], response)
            elif response is not None and _status_of_response(response) == HTTP_FAILED_DEPENDENCY:
                retry.append(index)
            else:
                results[index] = self._to_result(operations[index], response)

        if len(retry) == len(pending):
            # No operation was blamed, so resubmitting cannot make progress
            for index in retry:
                results[index] = BulkItemResult(operations[index].document_id, False, HTTP_FAILED_DEPENDENCY)
            return []
        return retry

    @staticmethod
    def _to_result(operation: BulkOperation, response: Mapping[str, Any] | None) -> BulkItemResult:
        if response is None:
            logger.error("Invalid response : null", extra={"document_id": operation.document_id})
            return BulkItemResult(operation.document_id, False, HTTP_INTERNAL_ERROR)
        status = _status_of_response(response)
        return BulkItemResult(
            document_id=operation.document_id,
            success=200 <= status < 300,
            status_code=status,
            request_charge=float(response.get("requestCharge", 0.0) or 0.0),
        )


class BulkWriteCoordinator:
    """Builds bulk submissions and aggregates their results."""

    def __init__(
        self,
        store: DocumentStore,
        executor: BulkExecutor | None = None,
        default_max_concurrency: int = 4,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Document store used for container resolution and telemetry
            executor: Provider bulk call (default: CosmosBatchExecutor)
            default_max_concurrency: Concurrency hint when a call passes None
        """
        self.store = store
        self.executor = executor or CosmosBatchExecutor()
        self.default_max_concurrency = default_max_concurrency

    def bulk_insert(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        documents: Sequence[Any],
        partition_keys: Sequence[Any] | None = None,
        is_upsert: bool = True,
        disable_id_generation: bool = False,
        max_concurrency: int | None = None,
    ) -> BulkOperationResult:
        """
        Insert or upsert documents in one bulk submission.

        A shortfall between submitted and imported documents is logged as a
        warning and visible in the result counts; it does not raise.

        Args:
            partition_id: Tenant partition (None for the system account)
            database_name: Database name
            collection: Collection (container) name
            documents: Mappings, dataclasses or objects with ``to_dict()``
            partition_keys: Partition key value per document; read from each
                document via the container's partition key path when omitted
            is_upsert: Upsert when True, create (fail on existing id) when False
            disable_id_generation: Require every document to carry an ``id``
            max_concurrency: Parallelism hint passed to the executor

        Returns:
            BulkOperationResult with one item per document

        Raises:
            ValidationError: If documents cannot be encoded, lack ids, or
                partition_keys has the wrong length
            ThrottledError: If the submission was rate limited as a whole
            ServiceError: If the submission could not be made
        """
        if partition_keys is not None and len(partition_keys) != len(documents):
            raise ValidationError(
                "partition_keys", f"expected {len(documents)} values, got {len(partition_keys)}"
            )

        encoded: list[dict[str, Any]] = []
        for document in documents:
            body = encode_document(document)
            if not body.get("id"):
                if disable_id_generation:
                    raise ValidationError("documents", "id generation is disabled and a document has no id")
                body["id"] = str(uuid.uuid4())
            encoded.append(body)

        operation_name = UPSERT if is_upsert else CREATE
        container = self.store.get_container(partition_id, database_name, collection)
        if partition_keys is None:
            paths = self._partition_key_paths(container, operation_name)
            partition_keys = [self._extract_partition_key(body, paths) for body in encoded]

        operations = [
            BulkOperation(body["id"], key, operation_name, body)
            for body, key in zip(encoded, partition_keys)
        ]
        result = self._submit(
            operation_name, container, database_name, collection, operations, max_concurrency
        )

        if result.total_succeeded != result.total_submitted:
            logger.warning(
                "Bulk %s imported %d of %d documents",
                operation_name,
                result.total_succeeded,
                result.total_submitted,
                extra={
                    "target": cosmos_dependency_target(database_name, collection),
                    "failed_ids": [item.document_id for item in result.failed_items()],
                },
            )
        return result

    def bulk_patch(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        patch_ops_by_doc_id: Mapping[str, Sequence[Mapping[str, Any]]],
        partition_key_by_doc_id: Mapping[str, Any],
        max_concurrency: int | None = None,
    ) -> BulkOperationResult:
        """
        Apply one patch operation set per document in one bulk submission.

        Args:
            patch_ops_by_doc_id: Document id -> list of patch instructions
            partition_key_by_doc_id: Document id -> partition key value

        Returns:
            BulkOperationResult; ``succeeded`` is True only if every item succeeded
        """
        operations = [
            BulkOperation(doc_id, self._partition_key_for(doc_id, partition_key_by_doc_id), PATCH, list(ops))
            for doc_id, ops in patch_ops_by_doc_id.items()
        ]
        return self._submit_patch(partition_id, database_name, collection, operations, max_concurrency)

    def bulk_multi_patch(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        patch_ops_by_doc_id: Mapping[str, Sequence[Sequence[Mapping[str, Any]]]],
        partition_key_by_doc_id: Mapping[str, Any],
        max_concurrency: int | None = None,
    ) -> BulkOperationResult:
        """
        Apply several ordered patch operation sets per document.

        Operation sets for one document are applied in the order given;
        different documents have no ordering guarantee between them.

        Args:
            patch_ops_by_doc_id: Document id -> ordered list of patch instruction lists
            partition_key_by_doc_id: Document id -> partition key value
        """
        operations = [
            BulkOperation(doc_id, self._partition_key_for(doc_id, partition_key_by_doc_id), PATCH, list(ops))
            for doc_id, op_sets in patch_ops_by_doc_id.items()
            for ops in op_sets
        ]
        return self._submit_patch(partition_id, database_name, collection, operations, max_concurrency)

    def _submit_patch(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        operations: list[BulkOperation],
        max_concurrency: int | None,
    ) -> BulkOperationResult:
        container = self.store.get_container(partition_id, database_name, collection)
        result = self._submit(PATCH, container, database_name, collection, operations, max_concurrency)
        if not result.succeeded:
            for item in result.failed_items():
                logger.warning(
                    "The operation for item failed",
                    extra={"document_id": item.document_id, "status_code": item.status_code},
                )
            logger.error(
                "Failed to patch documents in CosmosDB",
                extra={"failed": len(result.failed_items()), "submitted": result.total_submitted},
            )
        return result

    def _submit(
        self,
        operation_name: str,
        container: ContainerProxy,
        database_name: str,
        collection: str,
        operations: list[BulkOperation],
        max_concurrency: int | None,
    ) -> BulkOperationResult:
        """Run one bulk submission and log a single dependency record for it."""
        concurrency = max_concurrency or self.default_max_concurrency
        keys = sorted({str(operation.partition_key) for operation in operations})
        data = f"partition_key=[{','.join(keys)}]"
        translator = self.store.translator

        with self.store.dependency_logger.track(
            f"{operation_name}_items".upper(),
            cosmos_dependency_target(database_name, collection),
            data,
            translator.status_of,
        ) as call:
            try:
                items = self.executor.execute(container, operations, concurrency)
            except Exception as e:
                error = translator.translate_bulk(e, operation_name)
                logger.error(
                    "Failed to bulk %s items",
                    operation_name,
                    exc_info=e,
                    extra={"status_code": error.status_code},
                )
                raise error from e

            if len(items) != len(operations):
                logger.error(
                    "Bulk response count does not match submitted operations",
                    extra={"submitted": len(operations), "received": len(items)},
                )
            result = BulkOperationResult(items=list(items), total_submitted=len(operations))
            call.request_charge = result.request_charge
            call.result_code = result.status_code
        return result

    def _partition_key_paths(self, container: ContainerProxy, operation_name: str) -> list[str]:
        try:
            properties = container.read()
        except AzureError as e:
            error = self.store.translator.translate_bulk(e, operation_name)
            logger.error("Failed to read container partition key", exc_info=e)
            raise error from e
        paths = (properties.get("partitionKey") or {}).get("paths") or []
        if not paths:
            raise ValidationError("partition_keys", "container has no partition key path; pass partition_keys")
        return list(paths)

    @staticmethod
    def _extract_partition_key(document: dict[str, Any], paths: list[str]) -> Any:
        values = []
        for path in paths:
            value: Any = document
            for segment in path.strip("/").split("/"):
                if not isinstance(value, dict) or segment not in value:
                    raise ValidationError(
                        "documents", f"document {document['id']} has no value at {path}"
                    )
                value = value[segment]
            values.append(value)
        return values[0] if len(values) == 1 else values

    @staticmethod
    def _partition_key_for(doc_id: str, partition_key_by_doc_id: Mapping[str, Any]) -> Any:
        if doc_id not in partition_key_by_doc_id:
            raise ValidationError("partition_key_by_doc_id", f"no partition key for document {doc_id}")
        return partition_key_by_doc_id[doc_id]
