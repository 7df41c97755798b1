"""
Continuation-token pagination.

Cosmos DB returns query results one page at a time together with an opaque
continuation token. ``PaginatedQueryEngine`` walks that stream on top of
``DocumentStore.query_page``: draining it completely, jumping to the N-th
page, or filling a page of a requested size.

A continuation token is a single-threaded cursor: every method here fetches
pages strictly one after another.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ..exceptions import ValidationError
from .codec import Decoder

if TYPE_CHECKING:
    from .store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SELECT_ALL = "SELECT * FROM c"


@dataclass(frozen=True)
class QueryRequest:
    """A parameterized SQL query and its paging position.

    Attributes:
        query_text: Cosmos SQL text, e.g. ``SELECT * FROM c WHERE c.kind = @kind``
        parameters: Ordered ``(name, value)`` pairs (a mapping is accepted too)
        page_size_hint: Maximum items per provider page (None = provider default)
        continuation_token: Where to resume; None starts from the beginning
        partition_key: Restrict the query to one logical partition
    """

    query_text: str = SELECT_ALL
    parameters: Sequence[tuple[str, Any]] = ()
    page_size_hint: int | None = None
    continuation_token: str | None = None
    partition_key: Any | None = None

    def __post_init__(self) -> None:
        params = self.parameters
        if isinstance(params, Mapping):
            params = params.items()
        object.__setattr__(self, "parameters", tuple((str(n), v) for n, v in params))
        if self.page_size_hint is not None and self.page_size_hint < 1:
            raise ValidationError("page_size_hint", "must be >= 1", str(self.page_size_hint))

    def with_continuation(self, token: str | None) -> QueryRequest:
        return replace(self, continuation_token=token)

    def with_page_size(self, page_size: int | None) -> QueryRequest:
        return replace(self, page_size_hint=page_size)

    def query_options(self) -> dict[str, Any]:
        """Keyword arguments for ``ContainerProxy.query_items``."""
        options: dict[str, Any] = {
            "query": self.query_text,
            "parameters": [{"name": name, "value": value} for name, value in self.parameters],
        }
        if self.page_size_hint is not None:
            options["max_item_count"] = self.page_size_hint
        if self.partition_key is not None:
            options["partition_key"] = self.partition_key
        else:
            options["enable_cross_partition_query"] = True
        return options


@dataclass
class Page(Generic[T]):
    """One page of query results, in provider order."""

    items: list[T] = field(default_factory=list)
    continuation_token: str | None = None
    request_charge: float = 0.0

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def has_more(self) -> bool:
        return bool(self.continuation_token)


class PaginatedQueryEngine:
    """Sequential walker over continuation-token result streams."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def iter_pages(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        decoder: Decoder | None = None,
    ) -> Iterator[Page]:
        """Yield pages from the request's position until the stream ends."""
        current = request
        while True:
            page = self.store.query_page(partition_id, database_name, collection, current, decoder)
            yield page
            if not page.continuation_token:
                return
            current = current.with_continuation(page.continuation_token)

    def drain_all(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        decoder: Decoder | None = None,
    ) -> list:
        """
        Follow continuation tokens to the end and return every item.

        No size cap is applied; memory grows with the result set.

        Args:
            partition_id: Tenant partition (None for the system account)
            database_name: Database name
            collection: Collection (container) name
            request: Query to run
            decoder: Optional decoder applied to each item

        Returns:
            All items, in provider order across pages
        """
        results: list = []
        pages = 0
        request_charge = 0.0
        for page in self.iter_pages(partition_id, database_name, collection, request, decoder):
            pages += 1
            request_charge += page.request_charge
            results.extend(page.items)
            logger.debug(
                "Got a page of query results",
                extra={"page_number": pages, "page_items": page.item_count, "total": len(results)},
            )
        logger.debug(
            "Query drained",
            extra={"pages": pages, "total": len(results), "request_charge": request_charge},
        )
        return results

    def skip_to_page(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        page_size: int,
        page_number: int,
        decoder: Decoder | None = None,
    ) -> list:
        """
        Return the items of page ``page_number`` (1-based) of size ``page_size``.

        Pages before the target are fetched only for their continuation token
        and then discarded, so memory stays at one page while round trips grow
        with ``page_number``. If the stream ends before the target page, the
        last page fetched is returned (it may be short or empty).

        Raises:
            ValidationError: If page_size or page_number is below 1
        """
        if page_size < 1:
            raise ValidationError("page_size", "must be >= 1", str(page_size))
        if page_number < 1:
            raise ValidationError("page_number", "must be >= 1", str(page_number))

        current = request.with_page_size(page_size).with_continuation(None)
        page: Page = Page()
        fetched = 0
        while fetched < page_number:
            page = self.store.query_page(partition_id, database_name, collection, current, decoder)
            fetched += 1
            if not page.continuation_token:
                break
            current = current.with_continuation(page.continuation_token)

        if fetched < page_number:
            logger.debug(
                "Result stream ended before requested page",
                extra={"requested_page": page_number, "last_page": fetched},
            )
        return page.items

    def fill_page(
        self,
        partition_id: str | None,
        database_name: str,
        collection: str,
        request: QueryRequest,
        page_size: int,
        decoder: Decoder | None = None,
    ) -> Page:
        """
        Gather up to ``page_size`` items starting at the request's token.

        The provider may return short pages; this keeps asking for the
        remainder until the page is full or the stream ends.

        Returns:
            Page with the gathered items and the token to resume from
        """
        if page_size < 1:
            raise ValidationError("page_size", "must be >= 1", str(page_size))

        items: list = []
        token = request.continuation_token
        request_charge = 0.0
        while True:
            remaining = page_size - len(items)
            current = request.with_page_size(remaining).with_continuation(token)
            page = self.store.query_page(partition_id, database_name, collection, current, decoder)
            items.extend(page.items)
            request_charge += page.request_charge
            token = page.continuation_token
            if not token or len(items) >= page_size:
                break

        return Page(items=items, continuation_token=token, request_charge=request_charge)
