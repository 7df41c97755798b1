"""
Shared test configuration and fixtures.

Provides an in-memory stand-in for the Cosmos DB client, database and
container proxies, so the store can be exercised without a Cosmos account.
The fake mirrors the SDK surface the store relies on:

- create/read/upsert/replace/delete raising the SDK's 404/409 exceptions
- ``query_items(...).by_page(token)`` with integer-offset continuation tokens
- ``execute_item_batch`` applying all operations or none
- ``response_hook(headers, result)`` reporting the request charge per call, while
  ``client_connection.last_response_headers`` is shared like the SDK's
"""

from __future__ import annotations

import copy
import json
import threading
from types import SimpleNamespace
from typing import Any

import pytest
from azure.cosmos.exceptions import (
    CosmosBatchOperationError,
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)

from partition_store import (
    DependencyRecord,
    DependencySink,
    PartitionInfo,
    StaticPartitionDirectory,
    StoreConfig,
    StoreServices,
)

REQUEST_CHARGE = 1.5
SYSTEM_ENDPOINT = "https://system.documents.example:443/"
TENANT_A_ENDPOINT = "https://tenant-a.documents.example:443/"
TENANT_B_ENDPOINT = "https://tenant-b.documents.example:443/"


def throttled_error() -> CosmosHttpResponseError:
    return CosmosHttpResponseError(status_code=429, message="Request rate is large")


class FakePager:
    """Page iterator returned by ``FakeItemPaged.by_page``."""

    def __init__(self, items: list[dict[str, Any]], page_size: int, token: str | None, on_page):
        self._items = items
        self._page_size = page_size
        self._on_page = on_page
        self._offset = int(token) if token else 0
        self.continuation_token: str | None = token

    def __iter__(self) -> FakePager:
        return self

    def __next__(self):
        if self._offset >= len(self._items) and self._offset > 0:
            raise StopIteration
        page = self._items[self._offset : self._offset + self._page_size]
        self._offset += len(page)
        self.continuation_token = str(self._offset) if self._offset < len(self._items) else None
        self._on_page(page)
        return iter(page)


class FakeItemPaged:
    def __init__(self, items: list[dict[str, Any]], page_size: int, on_page):
        self._items = items
        self._page_size = page_size
        self._on_page = on_page

    def by_page(self, continuation_token: str | None = None) -> FakePager:
        return FakePager(self._items, self._page_size, continuation_token, self._on_page)


class FakeContainer:
    """In-memory container keyed by (id, partition key)."""

    def __init__(self, name: str, partition_key_path: str = "/pk"):
        self.id = name
        self.partition_key_path = partition_key_path
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.client_connection = SimpleNamespace(last_response_headers={})
        self.query_calls: list[dict[str, Any]] = []
        self.batch_calls: list[dict[str, Any]] = []
        self.fail_with: dict[str, Exception] = {}
        self.batch_status_overrides: dict[str, int] = {}
        self.charges: dict[str, float] = {}
        self._batch_lock = threading.Lock()

    # -- helpers ------------------------------------------------------------

    def _charge(self, method: str, kwargs: dict[str, Any], result: Any) -> None:
        headers = {"x-ms-request-charge": str(self.charges.get(method, REQUEST_CHARGE))}
        self.client_connection.last_response_headers = headers
        hook = kwargs.get("response_hook")
        if hook is not None:
            hook(headers, result)

    def _maybe_fail(self, method: str) -> None:
        error = self.fail_with.get(method)
        if error is not None:
            raise error

    def _pk_of(self, body: dict[str, Any]) -> Any:
        return body.get(self.partition_key_path.strip("/"))

    @staticmethod
    def _key(item_id: str, partition_key: Any) -> tuple[str, str]:
        return (item_id, json.dumps(partition_key, default=str))

    @staticmethod
    def _stored(body: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(body)
        stored.update({"_rid": "rid", "_etag": '"etag"', "_ts": 1700000000})
        return stored

    def put_raw(self, body: dict[str, Any]) -> None:
        """Store a document as-is, bypassing validation."""
        self.items[self._key(body["id"], self._pk_of(body))] = self._stored(body)

    # -- SDK surface --------------------------------------------------------

    def read(self) -> dict[str, Any]:
        self._maybe_fail("read")
        return {"id": self.id, "partitionKey": {"paths": [self.partition_key_path], "kind": "Hash"}}

    def create_item(self, body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail("create_item")
        key = self._key(body["id"], self._pk_of(body))
        if key in self.items:
            raise CosmosResourceExistsError(status_code=409, message="Entity with the specified id already exists")
        self.items[key] = self._stored(body)
        self._charge("create_item", kwargs, self.items[key])
        return copy.deepcopy(self.items[key])

    def read_item(self, item: str, partition_key: Any, **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail("read_item")
        key = self._key(item, partition_key)
        if key not in self.items:
            raise CosmosResourceNotFoundError(status_code=404, message="Entity with the specified id does not exist")
        self._charge("read_item", kwargs, self.items[key])
        return copy.deepcopy(self.items[key])

    def upsert_item(self, body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail("upsert_item")
        key = self._key(body["id"], self._pk_of(body))
        self.items[key] = self._stored(body)
        self._charge("upsert_item", kwargs, self.items[key])
        return copy.deepcopy(self.items[key])

    def replace_item(self, item: str, body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail("replace_item")
        key = self._key(item, self._pk_of(body))
        if key not in self.items:
            raise CosmosResourceNotFoundError(status_code=404, message="Entity with the specified id does not exist")
        self.items[key] = self._stored(body)
        self._charge("replace_item", kwargs, self.items[key])
        return copy.deepcopy(self.items[key])

    def delete_item(self, item: str, partition_key: Any, **kwargs: Any) -> None:
        self._maybe_fail("delete_item")
        key = self._key(item, partition_key)
        if key not in self.items:
            raise CosmosResourceNotFoundError(status_code=404, message="Entity with the specified id does not exist")
        del self.items[key]
        self._charge("delete_item", kwargs, None)

    def query_items(
        self,
        query: str,
        parameters: list[dict[str, Any]] | None = None,
        partition_key: Any | None = None,
        enable_cross_partition_query: bool | None = None,
        max_item_count: int | None = None,
        **kwargs: Any,
    ) -> FakeItemPaged:
        """Returns every stored item (in insertion order); the SQL text is not evaluated."""
        self._maybe_fail("query_items")
        self.query_calls.append(
            {
                "query": query,
                "parameters": parameters,
                "partition_key": partition_key,
                "enable_cross_partition_query": enable_cross_partition_query,
                "max_item_count": max_item_count,
            }
        )
        items = [copy.deepcopy(doc) for doc in self.items.values()]
        if partition_key is not None:
            items = [doc for doc in items if self._pk_of(doc) == partition_key]
        return FakeItemPaged(items, max_item_count or 100, lambda page: self._charge("query_items", kwargs, page))

    def execute_item_batch(self, batch_operations: list[tuple], partition_key: Any, **kwargs: Any) -> list[dict]:
        """Applies all operations or none, like a Cosmos transactional batch."""
        self._maybe_fail("execute_item_batch")
        with self._batch_lock:
            return self._execute_batch(list(batch_operations), partition_key)

    def _execute_batch(self, batch_operations: list[tuple], partition_key: Any) -> list[dict]:
        self.batch_calls.append({"operations": list(batch_operations), "partition_key": partition_key})
        snapshot = copy.deepcopy(self.items)
        results = []
        for kind, args, *_ in batch_operations:
            doc_id = args[0]["id"] if kind in ("upsert", "create") else args[0]
            status = self.batch_status_overrides.get(doc_id)
            if status is None:
                status = self._apply(kind, args, partition_key)
            results.append({"statusCode": status, "requestCharge": REQUEST_CHARGE})
            if status >= 400:
                self.items = snapshot
                failed = len(results) - 1
                responses = [
                    results[i] if i == failed else {"statusCode": 424, "requestCharge": 0.0}
                    for i in range(len(batch_operations))
                ]
                raise CosmosBatchOperationError(
                    error_index=failed,
                    headers={},
                    status_code=status,
                    message="There was an error in the transactional batch",
                    operation_responses=responses,
                )
        return results

    def _apply(self, kind: str, args: tuple, partition_key: Any) -> int:
        if kind == "upsert":
            self.put_raw(args[0])
            return 200
        if kind == "create":
            key = self._key(args[0]["id"], partition_key)
            if key in self.items:
                return 409
            self.put_raw(args[0])
            return 201
        if kind == "patch":
            key = self._key(args[0], partition_key)
            if key not in self.items:
                return 404
            for op in args[1]:
                field_name = op["path"].strip("/")
                if op["op"] in ("set", "replace", "add"):
                    self.items[key][field_name] = op["value"]
                elif op["op"] == "incr":
                    self.items[key][field_name] = self.items[key].get(field_name, 0) + op["value"]
                elif op["op"] == "remove":
                    self.items[key].pop(field_name, None)
            return 200
        return 400


class FakeDatabase:
    def __init__(self, name: str):
        self.id = name
        self.containers: dict[str, FakeContainer] = {}

    def get_container_client(self, container: str) -> FakeContainer:
        if container not in self.containers:
            self.containers[container] = FakeContainer(container)
        return self.containers[container]


class FakeCosmosClient:
    def __init__(self, endpoint: str, credential: Any = None):
        self.endpoint = endpoint
        self.credential = credential
        self.databases: dict[str, FakeDatabase] = {}

    def get_database_client(self, database: str) -> FakeDatabase:
        if database not in self.databases:
            self.databases[database] = FakeDatabase(database)
        return self.databases[database]

    def container(self, database: str, collection: str) -> FakeContainer:
        return self.get_database_client(database).get_container_client(collection)


class RecordingSink(DependencySink):
    """Keeps every emitted dependency record."""

    def __init__(self) -> None:
        self.records: list[DependencyRecord] = []

    def emit(self, record: DependencyRecord) -> None:
        self.records.append(record)

    def names(self) -> list[str]:
        return [record.name for record in self.records]


class FakeClientBuilder:
    """Client builder that hands out one FakeCosmosClient per endpoint."""

    def __init__(self) -> None:
        self.clients: dict[str, FakeCosmosClient] = {}
        self.calls: list[tuple[str, Any]] = []

    def __call__(self, endpoint: str, credential: Any) -> FakeCosmosClient:
        self.calls.append((endpoint, credential))
        if endpoint not in self.clients:
            self.clients[endpoint] = FakeCosmosClient(endpoint, credential)
        return self.clients[endpoint]


@pytest.fixture
def directory() -> StaticPartitionDirectory:
    return StaticPartitionDirectory(
        {
            "tenant-a": PartitionInfo("tenant-a", TENANT_A_ENDPOINT, "key-a"),
            "tenant-b": PartitionInfo("tenant-b", TENANT_B_ENDPOINT, "key-b"),
        }
    )


@pytest.fixture
def config() -> StoreConfig:
    return StoreConfig(system_endpoint=SYSTEM_ENDPOINT, system_key="system-key")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client_builder() -> FakeClientBuilder:
    return FakeClientBuilder()


@pytest.fixture
def services(config, directory, sink, client_builder) -> StoreServices:
    """Fully wired services backed by fake Cosmos clients."""
    return StoreServices.from_config(
        config=config,
        directory=directory,
        sink=sink,
        client_builder=client_builder,
    )


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def tenant_a_container(services, client_builder) -> FakeContainer:
    """The fake container behind tenant-a/metadata/records."""
    services.client_factory.get_client("tenant-a")
    return client_builder.clients[TENANT_A_ENDPOINT].container("metadata", "records")
