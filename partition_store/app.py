"""
Composition root.

Builds the registry, translator, dependency logger, store, pagination engine
and bulk coordinator exactly once and hands out the shared instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import StoreConfig
from .cosmos.bulk import BulkExecutor, BulkWriteCoordinator
from .cosmos.client_factory import ClientBuilder, CosmosClientFactory
from .cosmos.pagination import PaginatedQueryEngine
from .cosmos.store import DocumentStore
from .logging_utils import configure_from_config
from .partition import PartitionDirectory, StaticPartitionDirectory, YamlPartitionDirectory
from .registry import PartitionClientRegistry
from .telemetry import DependencyLogger, DependencySink, build_dependency_logger
from .translation import ErrorTranslator

logger = logging.getLogger(__name__)


@dataclass
class StoreServices:
    """The wired object graph of the data access layer."""

    config: StoreConfig
    directory: PartitionDirectory
    client_factory: CosmosClientFactory
    translator: ErrorTranslator
    dependency_logger: DependencyLogger
    store: DocumentStore
    bulk: BulkWriteCoordinator

    @property
    def registry(self) -> PartitionClientRegistry:
        return self.client_factory.registry

    @property
    def pagination(self) -> PaginatedQueryEngine:
        return self.store.pagination

    @classmethod
    def from_config(
        cls,
        config: StoreConfig | None = None,
        directory: PartitionDirectory | None = None,
        sink: DependencySink | None = None,
        client_builder: ClientBuilder | None = None,
        bulk_executor: BulkExecutor | None = None,
        configure_logging: bool = False,
    ) -> StoreServices:
        """
        Build the services.

        Args:
            config: Store configuration (from env if None)
            directory: Partition directory; defaults to the configured YAML file,
                or an empty directory (system account only)
            sink: Telemetry sink overriding the configured log strategy
            client_builder: ``(endpoint, credential) -> client`` override
            bulk_executor: Provider bulk call override
            configure_logging: Install the package log handler from config

        Returns:
            StoreServices instance
        """
        if config is None:
            config = StoreConfig.from_env()
        if configure_logging:
            configure_from_config(config)

        if directory is None:
            if config.partitions_file:
                directory = YamlPartitionDirectory(config.partitions_file)
            else:
                logger.info("No partition directory configured; only the system account is reachable")
                directory = StaticPartitionDirectory()

        translator = ErrorTranslator()
        dependency_logger = build_dependency_logger(config, sink)
        client_factory = CosmosClientFactory(directory, config, client_builder=client_builder)
        store = DocumentStore(
            client_factory,
            dependency_logger=dependency_logger,
            translator=translator,
            query_page_size=config.query_page_size,
        )
        bulk = BulkWriteCoordinator(
            store,
            executor=bulk_executor,
            default_max_concurrency=config.bulk_max_concurrency,
        )
        return cls(
            config=config,
            directory=directory,
            client_factory=client_factory,
            translator=translator,
            dependency_logger=dependency_logger,
            store=store,
            bulk=bulk,
        )
