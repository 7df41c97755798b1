"""
Partition-scoped Cosmos DB document store.

CRUD and query operations addressed by (partition, database, collection).
Each call resolves its container from the partition's cached client, reports
one dependency record, and raises only taxonomy errors. Reading an item that
does not exist, or whose stored form the caller's decoder rejects, returns
None instead of raising.

Passing ``partition_id=None`` targets the system Cosmos account.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.exceptions import AzureError
from azure.cosmos import ContainerProxy

from ..exceptions import DataAccessError, ServiceError, ValidationError
from ..telemetry import (
    DependencyCall,
    DependencyLogger,
    LoggingDependencySink,
    cosmos_dependency_target,
)
from ..translation import HTTP_NOT_FOUND, ErrorTranslator
from .client_factory import CosmosClientFactory
from .codec import DecodeError, Decoder, encode_document, identity_decoder
from .pagination import SELECT_ALL, Page, PaginatedQueryEngine, QueryRequest

logger = logging.getLogger(__name__)

REQUEST_CHARGE_HEADER = "x-ms-request-charge"


class RequestChargeHook:
    """
    ``response_hook`` for one SDK call, summing the request units it reports.

    The SDK calls the hook with the response headers of each round trip made
    on behalf of the call, so concurrent callers sharing a client never see
    each other's charges.
    """

    def __init__(self) -> None:
        self.request_charge = 0.0

    def __call__(self, headers: Any, *args: Any) -> None:
        try:
            self.request_charge += float((headers or {}).get(REQUEST_CHARGE_HEADER, 0.0))
        except (TypeError, ValueError):
            logger.debug("Unreadable request charge header", extra={"value": str(headers)})


class DocumentStore:
    """
    CRUD facade over partition-scoped Cosmos DB containers.

    Example:

        >>> store = DocumentStore(client_factory)
        >>> store.create_item("tenant-a", "metadata", "records", "rec-1", {"id": "rec-1"})
        >>> store.find_item("tenant-a", "metadata", "records", "rec-1", "rec-1")
        {'id': 'rec-1'}
    """

    def __init__(
        self,
        client_factory: CosmosClientFactory,
        dependency_logger: DependencyLogger | None = None,
        translator: ErrorTranslator | None = None,
        query_page_size: int = 1000,
    ):
        """
        Initialize the store.

        Args:
            client_factory: Resolves partition and system clients
            dependency_logger: Receives one record per provider call
            translator: Maps provider failures to taxonomy errors
            query_page_size: Page size used when draining queries
        """
        self.client_factory = client_factory
        self.dependency_logger = dependency_logger or DependencyLogger(LoggingDependencySink())
        self.translator = translator or ErrorTranslator()
        self.query_page_size = query_page_size
        self.pagination = PaginatedQueryEngine(self)

    # =========================================================================
    # Container resolution
    # =========================================================================

    def get_container(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
    ) -> ContainerProxy:
        """Resolve a container proxy from the partition's cached client.

        Raises:
            ValidationError: If database or collection name is empty
            NotFoundError: If the partition is unknown to the directory
            ServiceError: If the client cannot be created
        """
        if not database_name:
            raise ValidationError("database_name", "must not be empty")
        if not collection:
            raise ValidationError("collection", "must not be empty")
        try:
            if partition_id is None:
                client = self.client_factory.get_system_client()
            else:
                client = self.client_factory.get_client(partition_id)
            return client.get_database_client(database_name).get_container_client(collection)
        except DataAccessError as e:
            logger.warning(
                "Error creating Cosmos client",
                extra={"partition_id": partition_id, "error": e.message},
            )
            raise
        except Exception as e:
            logger.warning(
                "Error creating Cosmos client", exc_info=e, extra={"partition_id": partition_id}
            )
            raise ServiceError(
                "Error creating Cosmos client", {"partition_id": partition_id}, cause=e
            ) from e

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_item(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        partition_key: Any,
        item: Any,
    ) -> dict[str, Any]:
        """
        Create a new item.

        Args:
            partition_id: Tenant partition (None for the system account)
            database_name: Database name
            collection: Collection (container) name
            partition_key: Partition key value of the item
            item: Mapping, dataclass or object with ``to_dict()``; must carry an ``id``

        Returns:
            The stored document as returned by the provider

        Raises:
            ConflictError: If an item with the same id already exists
            ThrottledError: If the request was rate limited
            ServiceError: For any other provider failure
        """
        document = self._encode_with_id(item)
        container = self.get_container(partition_id, database_name, collection)
        with self._track("CREATE_ITEM", database_name, collection, f"partition_key={partition_key}") as call:
            charge = RequestChargeHook()
            try:
                created = container.create_item(body=document, response_hook=charge)
            except AzureError as e:
                raise self._fail(
                    e,
                    "Unexpectedly failed to insert item into CosmosDB",
                    {"id": document["id"], "partition_key": partition_key},
                ) from e
            call.request_charge = charge.request_charge
        logger.debug("CREATE_ITEM", extra={"id": document["id"], "partition_key": partition_key})
        return created

    def find_item(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        item_id: str,
        partition_key: Any,
        decoder: Decoder | None = None,
    ) -> Any | None:
        """
        Read a single item.

        Args:
            partition_id: Tenant partition (None for the system account)
            database_name: Database name
            collection: Collection (container) name
            item_id: Item id
            partition_key: Partition key value of the item
            decoder: Turns the stored dict into the caller's type (default: dict)

        Returns:
            Decoded item, or None if the item does not exist or cannot be decoded

        Raises:
            ThrottledError: If the request was rate limited
            ServiceError: For any other provider failure
        """
        container = self.get_container(partition_id, database_name, collection)
        data = f"id={item_id} partition_key={partition_key}"
        with self._track("READ_ITEM", database_name, collection, data) as call:
            charge = RequestChargeHook()
            try:
                raw = container.read_item(item=item_id, partition_key=partition_key, response_hook=charge)
            except AzureError as e:
                if self.translator.status_of(e) != HTTP_NOT_FOUND:
                    raise self._fail(
                        e,
                        "Unexpectedly encountered error calling CosmosDB",
                        {"id": item_id, "partition_key": partition_key},
                    ) from e
                call.result_code = HTTP_NOT_FOUND
                logger.info(
                    "Unable to find item",
                    extra={"id": item_id, "partition_key": partition_key},
                )
                return None
            call.request_charge = charge.request_charge

        decode = decoder or identity_decoder
        try:
            return decode(raw)
        except DecodeError as e:
            logger.warning(
                "Malformed document for item",
                extra={"id": item_id, "partition_key": partition_key, "reason": e.reason},
            )
            return None

    def upsert_item(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        partition_key: Any,
        item: Any,
    ) -> dict[str, Any]:
        """
        Create or overwrite an item.

        Raises:
            ThrottledError: If the request was rate limited
            ServiceError: For any other provider failure
        """
        document = self._encode_with_id(item)
        container = self.get_container(partition_id, database_name, collection)
        with self._track("UPSERT_ITEM", database_name, collection, f"partition_key={partition_key}") as call:
            charge = RequestChargeHook()
            try:
                stored = container.upsert_item(body=document, response_hook=charge)
            except AzureError as e:
                raise self._fail(
                    e,
                    "Unexpectedly failed to put item into CosmosDB",
                    {"id": document["id"], "partition_key": partition_key},
                ) from e
            call.request_charge = charge.request_charge
        logger.debug("UPSERT_ITEM", extra={"id": document["id"], "partition_key": partition_key})
        return stored

    def replace_item(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        item_id: str,
        partition_key: Any,
        item: Any,
    ) -> dict[str, Any]:
        """
        Replace an existing item.

        Raises:
            NotFoundError: If no item with ``item_id`` exists
            ThrottledError: If the request was rate limited
            ServiceError: For any other provider failure
        """
        document = encode_document(item)
        document.setdefault("id", item_id)
        if document["id"] != item_id:
            raise ValidationError("item", "id does not match item_id", str(document["id"]))

        container = self.get_container(partition_id, database_name, collection)
        data = f"id={item_id} partition_key={partition_key}"
        with self._track("REPLACE_ITEM", database_name, collection, data) as call:
            charge = RequestChargeHook()
            try:
                stored = container.replace_item(item=item_id, body=document, response_hook=charge)
            except AzureError as e:
                raise self._fail(
                    e,
                    "Unexpectedly failed to replace item into CosmosDB",
                    {"id": item_id, "partition_key": partition_key},
                ) from e
            call.request_charge = charge.request_charge
        logger.debug("REPLACE_ITEM", extra={"id": item_id, "partition_key": partition_key})
        return stored

    def delete_item(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        item_id: str,
        partition_key: Any,
    ) -> None:
        """
        Delete an item.

        Raises:
            NotFoundError: If no item with ``item_id`` exists
            ThrottledError: If the request was rate limited
            ServiceError: For any other provider failure
        """
        container = self.get_container(partition_id, database_name, collection)
        data = f"id={item_id} partition_key={partition_key}"
        with self._track("DELETE_ITEM", database_name, collection, data) as call:
            charge = RequestChargeHook()
            try:
                container.delete_item(item=item_id, partition_key=partition_key, response_hook=charge)
            except AzureError as e:
                raise self._fail(
                    e,
                    "Unexpectedly failed to delete item from CosmosDB",
                    {"id": item_id, "partition_key": partition_key},
                ) from e
            call.request_charge = charge.request_charge
        logger.debug("DELETE_ITEM", extra={"id": item_id, "partition_key": partition_key})

    # =========================================================================
    # Queries
    # =========================================================================

    def query_page(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        decoder: Decoder | None = None,
    ) -> Page:
        """
        Fetch one page of query results (a single provider round trip).

        Args:
            partition_id: Tenant partition (None for the system account)
            database_name: Database name
            collection: Collection (container) name
            request: Query, parameters, page size and continuation token
            decoder: Applied to every item (default: dict)

        Returns:
            Page with items in provider order and the next continuation token

        Raises:
            ThrottledError: If the request was rate limited
            ServiceError: For provider failures or undecodable items
        """
        container = self.get_container(partition_id, database_name, collection)
        with self._track("QUERY_ITEMS_PAGE", database_name, collection, f"query={request.query_text}") as call:
            charge = RequestChargeHook()
            try:
                pager = container.query_items(**request.query_options(), response_hook=charge).by_page(
                    request.continuation_token
                )
                raw_items = list(next(pager, []))
                token = pager.continuation_token
            except AzureError as e:
                raise self._fail(
                    e, "Unexpectedly failed to query items from CosmosDB", {"query": request.query_text}
                ) from e
            call.request_charge = charge.request_charge

        decode = decoder or identity_decoder
        try:
            items = [decode(raw) for raw in raw_items]
        except DecodeError as e:
            logger.warning("Malformed document in query results", extra={"reason": e.reason})
            raise ServiceError(
                "Malformed document in query results", {"query": request.query_text}, cause=e
            ) from e
        return Page(items=items, continuation_token=token or None, request_charge=call.request_charge)

    def query_items(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        decoder: Decoder | None = None,
    ) -> list:
        """Run a query to completion and return every item."""
        if request.page_size_hint is None:
            request = request.with_page_size(self.query_page_size)
        return self.pagination.drain_all(partition_id, database_name, collection, request, decoder)

    def find_all_items(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        decoder: Decoder | None = None,
    ) -> list:
        """Return every item of a collection."""
        return self.query_items(
            partition_id, database_name, collection, QueryRequest(SELECT_ALL), decoder
        )

    def find_all_items_page(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        page_size: int,
        continuation_token: str | None = None,
        decoder: Decoder | None = None,
    ) -> Page:
        """Return one page of a collection's items, resuming at ``continuation_token``."""
        request = QueryRequest(SELECT_ALL, page_size_hint=page_size, continuation_token=continuation_token)
        return self.query_page(partition_id, database_name, collection, request, decoder)

    # =========================================================================
    # Internals
    # =========================================================================

    def _track(self, name: str, database_name: str, collection: str, data: str) -> DependencyCall:
        return self.dependency_logger.track(
            name,
            cosmos_dependency_target(database_name, collection),
            data,
            self.translator.status_of,
        )

    def _fail(self, exc: BaseException, service_message: str, details: dict) -> DataAccessError:
        """Classify a provider failure, log it once, and return the error to raise."""
        error_type = self.translator.classify(exc)
        message = service_message if error_type is ServiceError else None
        error = self.translator.translate(exc, message, details)
        logger.warning(
            error.message,
            exc_info=exc,
            extra={"error_kind": error.kind, "status_code": error.status_code, **details},
        )
        return error

    @staticmethod
    def _encode_with_id(item: Any) -> dict[str, Any]:
        document = encode_document(item)
        if not document.get("id"):
            raise ValidationError("item", "document must carry an 'id'")
        return document
