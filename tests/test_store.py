"""Tests for the partition-scoped document store."""

import threading
from dataclasses import dataclass

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError

from partition_store import (
    ConfigurationError,
    ConflictError,
    DecodeError,
    NotFoundError,
    PartitionNotFoundError,
    QueryRequest,
    ServiceError,
    StaticPartitionDirectory,
    StoreConfig,
    StoreServices,
    ThrottledError,
    ValidationError,
    dataclass_decoder,
)

from .conftest import (
    REQUEST_CHARGE,
    SYSTEM_ENDPOINT,
    TENANT_A_ENDPOINT,
    TENANT_B_ENDPOINT,
    throttled_error,
)


@dataclass
class Record:
    id: str
    pk: str
    kind: str


def strict_decoder(raw: dict) -> dict:
    if "kind" not in raw:
        raise DecodeError("missing kind", raw.get("id"))
    return {"id": raw["id"], "kind": raw["kind"]}


class TestCrud:
    """Tests for create/find/upsert/replace/delete."""

    def test_create_then_find(self, store):
        """A created item reads back equal, without provider bookkeeping fields."""
        doc = {"id": "rec-1", "pk": "rec-1", "kind": "test"}

        store.create_item("tenant-a", "metadata", "records", "rec-1", doc)
        found = store.find_item("tenant-a", "metadata", "records", "rec-1", "rec-1")

        assert found == doc

    def test_find_missing_returns_none(self, store, sink):
        """Reading a non-existent item returns None and records a 404."""
        assert store.find_item("tenant-a", "metadata", "records", "missing", "missing") is None

        record = sink.records[-1]
        assert record.name == "READ_ITEM"
        assert record.result_code == 404
        assert record.success is False

    def test_create_duplicate_raises_conflict(self, store):
        doc = {"id": "rec-1", "pk": "rec-1", "kind": "test"}
        store.create_item("tenant-a", "metadata", "records", "rec-1", doc)

        with pytest.raises(ConflictError) as exc_info:
            store.create_item("tenant-a", "metadata", "records", "rec-1", doc)

        assert exc_info.value.status_code == 409
        assert exc_info.value.cause is not None

    def test_create_requires_id(self, store):
        with pytest.raises(ValidationError):
            store.create_item("tenant-a", "metadata", "records", "x", {"pk": "x"})

    def test_upsert_overwrites(self, store):
        store.upsert_item("tenant-a", "metadata", "records", "u1", {"id": "u1", "pk": "u1", "v": 1})
        store.upsert_item("tenant-a", "metadata", "records", "u1", {"id": "u1", "pk": "u1", "v": 2})

        found = store.find_item("tenant-a", "metadata", "records", "u1", "u1")
        assert found["v"] == 2

    def test_replace_existing(self, store):
        store.create_item("tenant-a", "metadata", "records", "r1", {"id": "r1", "pk": "r1", "v": 1})

        store.replace_item("tenant-a", "metadata", "records", "r1", "r1", {"pk": "r1", "v": 5})

        found = store.find_item("tenant-a", "metadata", "records", "r1", "r1")
        assert found == {"id": "r1", "pk": "r1", "v": 5}

    def test_replace_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.replace_item("tenant-a", "metadata", "records", "nope", "nope", {"pk": "nope"})

    def test_replace_id_mismatch_rejected(self, store):
        with pytest.raises(ValidationError):
            store.replace_item("tenant-a", "metadata", "records", "r1", "r1", {"id": "r2", "pk": "r1"})

    def test_delete(self, store):
        store.create_item("tenant-a", "metadata", "records", "d1", {"id": "d1", "pk": "d1"})

        store.delete_item("tenant-a", "metadata", "records", "d1", "d1")

        assert store.find_item("tenant-a", "metadata", "records", "d1", "d1") is None
        with pytest.raises(NotFoundError):
            store.delete_item("tenant-a", "metadata", "records", "d1", "d1")

    def test_dataclass_items_round_trip(self, store):
        """Dataclass items are encoded on write and decoded with a dataclass decoder."""
        record = Record(id="dc-1", pk="p", kind="typed")

        store.create_item("tenant-a", "metadata", "records", "p", record)
        found = store.find_item(
            "tenant-a", "metadata", "records", "dc-1", "p", decoder=dataclass_decoder(Record)
        )

        assert found == record

    def test_undecodable_item_returns_none(self, store, tenant_a_container):
        """A stored document the decoder rejects reads as None."""
        tenant_a_container.put_raw({"id": "bad", "pk": "bad"})

        assert (
            store.find_item("tenant-a", "metadata", "records", "bad", "bad", decoder=strict_decoder)
            is None
        )


class TestPartitionIsolation:
    """Tests for partition-scoped client resolution."""

    def test_partitions_use_separate_accounts(self, store, client_builder):
        doc = {"id": "same", "pk": "same", "owner": "a"}
        store.create_item("tenant-a", "metadata", "records", "same", doc)

        assert store.find_item("tenant-b", "metadata", "records", "same", "same") is None
        assert client_builder.clients[TENANT_A_ENDPOINT].container("metadata", "records").items
        assert not client_builder.clients[TENANT_B_ENDPOINT].container("metadata", "records").items

    def test_client_built_once_per_partition(self, store, client_builder):
        for i in range(3):
            store.upsert_item("tenant-a", "metadata", "records", f"k{i}", {"id": f"k{i}", "pk": f"k{i}"})

        endpoints = [endpoint for endpoint, _ in client_builder.calls]
        assert endpoints.count(TENANT_A_ENDPOINT) == 1

    def test_partition_key_credential_used(self, store, client_builder):
        store.find_item("tenant-a", "metadata", "records", "x", "x")

        assert client_builder.calls == [(TENANT_A_ENDPOINT, "key-a")]

    def test_unknown_partition_raises(self, store):
        with pytest.raises(PartitionNotFoundError) as exc_info:
            store.find_item("tenant-zzz", "metadata", "records", "x", "x")

        assert exc_info.value.status_code == 404

    def test_empty_names_rejected(self, store):
        with pytest.raises(ValidationError):
            store.get_container("tenant-a", "", "records")
        with pytest.raises(ValidationError):
            store.get_container("tenant-a", "metadata", "")

    def test_system_account(self, store, client_builder):
        """partition_id=None targets the system account."""
        store.upsert_item(None, "system", "settings", "s1", {"id": "s1", "pk": "s1"})

        assert client_builder.calls == [(SYSTEM_ENDPOINT, "system-key")]
        assert store.find_item(None, "system", "settings", "s1", "s1") == {"id": "s1", "pk": "s1"}

    def test_system_account_not_configured(self, directory, sink, client_builder):
        services = StoreServices.from_config(
            config=StoreConfig(),
            directory=directory,
            sink=sink,
            client_builder=client_builder,
        )

        with pytest.raises(ConfigurationError):
            services.store.find_item(None, "system", "settings", "s1", "s1")

    def test_client_construction_failure_is_service_error(self, config, sink):
        def broken_builder(endpoint, credential):
            raise RuntimeError("bad endpoint")

        services = StoreServices.from_config(
            config=config,
            directory=StaticPartitionDirectory(),
            sink=sink,
            client_builder=broken_builder,
        )

        with pytest.raises(ServiceError, match="Error creating Cosmos client"):
            services.store.find_item(None, "system", "settings", "s1", "s1")


class TestProviderFailures:
    """Tests for provider error translation at the store boundary."""

    def test_throttled_read(self, store, tenant_a_container):
        tenant_a_container.fail_with["read_item"] = throttled_error()

        with pytest.raises(ThrottledError) as exc_info:
            store.find_item("tenant-a", "metadata", "records", "x", "x")

        assert isinstance(exc_info.value.cause, CosmosHttpResponseError)

    def test_throttled_write(self, store, tenant_a_container):
        tenant_a_container.fail_with["upsert_item"] = throttled_error()

        with pytest.raises(ThrottledError):
            store.upsert_item("tenant-a", "metadata", "records", "x", {"id": "x", "pk": "x"})

    def test_unexpected_failure_is_service_error(self, store, tenant_a_container, sink):
        tenant_a_container.fail_with["create_item"] = CosmosHttpResponseError(
            status_code=503, message="Service unavailable"
        )

        with pytest.raises(ServiceError) as exc_info:
            store.create_item("tenant-a", "metadata", "records", "x", {"id": "x", "pk": "x"})

        assert exc_info.value.message == "Unexpectedly failed to insert item into CosmosDB"
        assert exc_info.value.details["provider_status"] == 503
        assert sink.records[-1].result_code == 503
        assert sink.records[-1].success is False


class TestDependencyRecords:
    """Tests for per-call telemetry."""

    def test_one_record_per_call(self, store, sink):
        store.create_item("tenant-a", "metadata", "records", "rec-1", {"id": "rec-1", "pk": "rec-1"})
        store.find_item("tenant-a", "metadata", "records", "rec-1", "rec-1")
        store.delete_item("tenant-a", "metadata", "records", "rec-1", "rec-1")

        assert sink.names() == ["CREATE_ITEM", "READ_ITEM", "DELETE_ITEM"]

    def test_record_fields(self, store, sink):
        store.create_item("tenant-a", "metadata", "records", "rec-1", {"id": "rec-1", "pk": "rec-1"})
        store.find_item("tenant-a", "metadata", "records", "rec-1", "rec-1")

        record = sink.records[-1]
        assert record.target == "metadata/records"
        assert record.data == "id=rec-1 partition_key=rec-1"
        assert record.type == "CosmosStore"
        assert record.result_code == 200
        assert record.success is True
        assert record.request_charge == REQUEST_CHARGE
        assert record.duration_ms >= 0

    def test_request_charge_belongs_to_its_call(self, store, sink, tenant_a_container):
        tenant_a_container.put_raw({"id": "r1", "pk": "r1"})
        tenant_a_container.charges["upsert_item"] = 9.0
        read_item = tenant_a_container.read_item

        def read_while_another_caller_writes(item, partition_key, **kwargs):
            document = read_item(item, partition_key, **kwargs)
            writer = threading.Thread(
                target=store.upsert_item,
                args=("tenant-a", "metadata", "records", "w1", {"id": "w1", "pk": "w1"}),
            )
            writer.start()
            writer.join()
            return document

        tenant_a_container.read_item = read_while_another_caller_writes

        store.find_item("tenant-a", "metadata", "records", "r1", "r1")

        charges = {record.name: record.request_charge for record in sink.records}
        assert charges == {"UPSERT_ITEM": 9.0, "READ_ITEM": REQUEST_CHARGE}

    def test_query_page_charge(self, store, sink, tenant_a_container):
        tenant_a_container.charges["query_items"] = 2.5
        store.create_item("tenant-a", "metadata", "records", "q", {"id": "q", "pk": "q"})

        page = store.query_page("tenant-a", "metadata", "records", QueryRequest())

        assert page.request_charge == 2.5
        assert sink.records[-1].request_charge == 2.5


class TestQueries:
    """Tests for query helpers on the store."""

    def test_find_all_items(self, store):
        for i in range(3):
            store.create_item("tenant-a", "metadata", "records", f"q{i}", {"id": f"q{i}", "pk": f"q{i}"})

        items = store.find_all_items("tenant-a", "metadata", "records")

        assert [item["id"] for item in items] == ["q0", "q1", "q2"]
        assert all("_rid" not in item for item in items)

    def test_query_items_uses_configured_page_size(self, store, tenant_a_container):
        store.create_item("tenant-a", "metadata", "records", "q", {"id": "q", "pk": "q"})

        store.query_items(
            "tenant-a",
            "metadata",
            "records",
            QueryRequest("SELECT * FROM c WHERE c.pk = @pk", {"@pk": "q"}),
        )

        call = tenant_a_container.query_calls[-1]
        assert call["max_item_count"] == store.query_page_size
        assert call["parameters"] == [{"name": "@pk", "value": "q"}]
        assert call["enable_cross_partition_query"] is True

    def test_find_all_items_page(self, store):
        for i in range(3):
            store.create_item("tenant-a", "metadata", "records", f"q{i}", {"id": f"q{i}", "pk": f"q{i}"})

        first = store.find_all_items_page("tenant-a", "metadata", "records", page_size=2)
        second = store.find_all_items_page(
            "tenant-a", "metadata", "records", page_size=2, continuation_token=first.continuation_token
        )

        assert [item["id"] for item in first.items] == ["q0", "q1"]
        assert first.has_more
        assert [item["id"] for item in second.items] == ["q2"]
        assert second.continuation_token is None

    def test_undecodable_query_item_is_service_error(self, store, tenant_a_container):
        tenant_a_container.put_raw({"id": "bad", "pk": "bad"})

        with pytest.raises(ServiceError):
            store.find_all_items("tenant-a", "metadata", "records", decoder=strict_decoder)

    def test_throttled_query(self, store, tenant_a_container):
        tenant_a_container.fail_with["query_items"] = throttled_error()

        with pytest.raises(ThrottledError):
            store.find_all_items("tenant-a", "metadata", "records")
