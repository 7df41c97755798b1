"""
Dependency telemetry.

Every call this library makes to Cosmos DB is reported as one dependency
record to a ``DependencySink``. The sink is chosen once at startup from
configuration (structured log, or nothing) and can be replaced by any
telemetry transport implementing ``emit``.
"""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import asdict, dataclass
from types import TracebackType

from .config import LOG_FORMAT_NONE, StoreConfig
from .logging_utils import get_store_logger

logger = logging.getLogger(__name__)

COSMOS_STORE = "CosmosStore"
HTTP_OK = 200


@dataclass(frozen=True)
class DependencyRecord:
    """One outbound call to a dependency."""

    name: str
    data: str
    target: str
    duration_ms: float
    request_charge: float
    result_code: int
    success: bool
    type: str = COSMOS_STORE


def cosmos_dependency_target(database_name: str, collection: str) -> str:
    """Target string for Cosmos DB dependencies: ``db/collection``."""
    return f"{database_name}/{collection}"


class DependencySink(ABC):
    """Receiver of dependency records."""

    @abstractmethod
    def emit(self, record: DependencyRecord) -> None:
        """Deliver a single record."""
        ...


class LoggingDependencySink(DependencySink):
    """Writes dependency records as structured log entries.

    Successful calls log at INFO, failed calls at WARNING. All record fields
    travel in ``extra`` so the JSON formatter emits them as top-level keys.
    """

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or get_store_logger("dependency")

    def emit(self, record: DependencyRecord) -> None:
        level = logging.INFO if record.success else logging.WARNING
        self._log.log(
            level,
            "%s %s -> %s",
            record.name,
            record.target,
            record.result_code,
            extra={f"dependency_{key}": value for key, value in asdict(record).items()},
        )


class NullDependencySink(DependencySink):
    """Discards every record."""

    def emit(self, record: DependencyRecord) -> None:
        return None


class LogSampler:
    """Decides whether a successful dependency record may be dropped.

    ``percentage`` is the share of successful records that are kept; 100 keeps
    everything. Failed records are never sampled out.
    """

    def __init__(self, percentage: int = 100, rng: random.Random | None = None):
        if not 0 <= percentage <= 100:
            raise ValueError(f"percentage must be within 0..100, got {percentage}")
        self.percentage = percentage
        self._rng = rng or random.Random()

    def should_drop(self) -> bool:
        if self.percentage >= 100:
            return False
        return self._rng.randint(1, 100) > self.percentage


class DependencyLogger:
    """Applies sampling and forwards dependency records to a sink."""

    def __init__(self, sink: DependencySink, sampler: LogSampler | None = None):
        self.sink = sink
        self.sampler = sampler or LogSampler()

    def log_dependency(self, record: DependencyRecord) -> None:
        if record.success and self.sampler.should_drop():
            return
        try:
            self.sink.emit(record)
        except Exception:
            # A broken telemetry transport must not fail the data operation
            logger.exception("Failed to emit dependency record", extra={"dependency": record.name})

    def track(
        self,
        name: str,
        target: str,
        data: str,
        status_of: Callable[[BaseException], int],
    ) -> DependencyCall:
        """Start timing a dependency call; use the result as a context manager."""
        return DependencyCall(self, name, target, data, status_of)


class DependencyCall:
    """Context manager that times one call and logs it on exit.

    The caller may set ``result_code`` and ``request_charge`` while the call
    runs. If the block raises and ``result_code`` was left at 200, the code is
    derived from the exception.

    Example:

        >>> with dependency_logger.track("READ_ITEM", target, data, status_of) as call:
        ...     response = container.read_item(...)
        ...     call.request_charge = charge
    """

    def __init__(
        self,
        dependency_logger: DependencyLogger,
        name: str,
        target: str,
        data: str,
        status_of: Callable[[BaseException], int],
    ):
        self._dependency_logger = dependency_logger
        self._status_of = status_of
        self.name = name
        self.target = target
        self.data = data
        self.result_code = HTTP_OK
        self.request_charge = 0.0
        self._start = 0.0

    def __enter__(self) -> DependencyCall:
        self._start = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_val is not None and self.result_code == HTTP_OK:
            self.result_code = self._status_of(exc_val)
        self._dependency_logger.log_dependency(
            DependencyRecord(
                name=self.name,
                data=self.data,
                target=self.target,
                duration_ms=(time.perf_counter() - self._start) * 1000.0,
                request_charge=self.request_charge,
                result_code=self.result_code,
                success=self.result_code == HTTP_OK,
            )
        )


def build_dependency_logger(
    config: StoreConfig,
    sink: DependencySink | None = None,
) -> DependencyLogger:
    """Pick the dependency sink once from configuration.

    Args:
        config: Store configuration
        sink: Explicit sink (e.g. a telemetry exporter); overrides the log format

    Returns:
        DependencyLogger wired with a sampler for the configured percentage
    """
    if sink is None:
        sink = NullDependencySink() if config.log_format == LOG_FORMAT_NONE else LoggingDependencySink()
    return DependencyLogger(sink, LogSampler(config.dependency_sampling_percentage))
