"""
Partition directory.

Resolves a tenant partition id to the Cosmos DB account that stores its data.
The directory is only consulted when a partition client is constructed, i.e.
on a registry cache miss.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError, PartitionNotFoundError, ValidationError


@dataclass(frozen=True)
class PartitionInfo:
    """Connection data for one partition.

    Attributes:
        partition_id: Tenant partition identifier
        cosmos_endpoint: Cosmos DB account endpoint URL
        cosmos_key: Account key; None selects Azure AD (DefaultAzureCredential)
    """

    partition_id: str
    cosmos_endpoint: str
    cosmos_key: str | None = None

    def __repr__(self) -> str:
        # Never render the key
        return (
            f"PartitionInfo(partition_id={self.partition_id!r}, "
            f"cosmos_endpoint={self.cosmos_endpoint!r})"
        )


class PartitionDirectory(ABC):
    """Abstract lookup of partition connection data."""

    @abstractmethod
    def get_partition(self, partition_id: str) -> PartitionInfo:
        """Return connection data for a partition.

        Raises:
            PartitionNotFoundError: If the partition is unknown
        """
        ...


class StaticPartitionDirectory(PartitionDirectory):
    """Directory backed by an in-memory mapping."""

    def __init__(self, partitions: Mapping[str, PartitionInfo] | None = None):
        self._partitions: dict[str, PartitionInfo] = dict(partitions or {})

    def add(self, info: PartitionInfo) -> None:
        self._partitions[info.partition_id] = info

    def get_partition(self, partition_id: str) -> PartitionInfo:
        if not partition_id:
            raise ValidationError("partition_id", "must not be empty")
        try:
            return self._partitions[partition_id]
        except KeyError:
            raise PartitionNotFoundError(partition_id) from None


class YamlPartitionDirectory(PartitionDirectory):
    """Directory read from a YAML file.

    File layout:

    ```yaml
    partitions:
      tenant-a:
        cosmos-endpoint: "https://tenant-a.documents.azure.com:443/"
        cosmos-primary-key: "..."   # optional, omit for Azure AD auth
    ```

    The file is loaded once, on first lookup.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._directory: StaticPartitionDirectory | None = None
        self._lock = threading.Lock()

    def get_partition(self, partition_id: str) -> PartitionInfo:
        return self._load().get_partition(partition_id)

    def _load(self) -> StaticPartitionDirectory:
        if self._directory is not None:
            return self._directory
        with self._lock:
            if self._directory is None:
                self._directory = StaticPartitionDirectory(self._parse(self._read()))
        return self._directory

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            raise ConfigurationError("partitions_file", f"file not found: {self.path}")
        try:
            content = yaml.safe_load(self.path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError("partitions_file", f"invalid YAML: {e}") from e
        if not isinstance(content, dict):
            raise ConfigurationError("partitions_file", "top level must be a mapping")
        return content

    def _parse(self, content: dict[str, Any]) -> dict[str, PartitionInfo]:
        partitions = content.get("partitions") or {}
        if not isinstance(partitions, dict):
            raise ConfigurationError("partitions_file", "'partitions' must be a mapping")

        result: dict[str, PartitionInfo] = {}
        for partition_id, entry in partitions.items():
            if not isinstance(entry, dict) or not entry.get("cosmos-endpoint"):
                raise ConfigurationError(
                    "partitions_file", f"partition {partition_id!r} has no cosmos-endpoint"
                )
            result[str(partition_id)] = PartitionInfo(
                partition_id=str(partition_id),
                cosmos_endpoint=entry["cosmos-endpoint"],
                cosmos_key=entry.get("cosmos-primary-key"),
            )
        return result
