"""
Base Sink Interface
Abstract base class for the anonymized record destination
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import structlog

from src.models.customer import AnonymizedCustomer

logger = structlog.get_logger(__name__)


class SinkError(Exception):
    """A record could not be appended to the destination"""

    pass


class TransientStoreError(SinkError):
    """Connectivity or timeout failure talking to the store"""

    pass


class BaseSink(ABC):
    """
    Append-only destination for anonymized customers

    Subclasses implement connect/disconnect/write/health_check. Writes are
    never retried here; a failed write surfaces as SinkError and the caller
    decides what to do with the event.

    The base class keeps the per-sink counters reported on /health and in the
    shutdown log.
    """

    def __init__(self, name: str):
        """
        Args:
            name: Destination name used in logs and metrics
        """
        self.name = name
        self.is_connected = False
        self._records_written = 0
        self._errors_count = 0
        self._last_write_time = 0.0
        self._write_rates: List[float] = []
        self._max_rate_samples = 10

        logger.info("Sink initialized", destination=name)

    @abstractmethod
    async def connect(self) -> None:
        """
        Check the destination is reachable

        Raises:
            TransientStoreError: If the store cannot be reached right now
            SinkError: If the store rejects the connection
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def write(self, record: AnonymizedCustomer) -> None:
        """
        Durably append one record

        Every call is an insert; there is no update or merge.

        Raises:
            TransientStoreError: On connectivity or timeout failures
            SinkError: On any other write failure
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def ensure_connected(self) -> None:
        """Connect unless a previous connect() already succeeded"""
        if not self.is_connected:
            logger.info("Connecting to destination", destination=self.name)
            await self.connect()

    def increment_records_written(self, count: int = 1) -> None:
        self._records_written += count

        now = time.time()
        if self._last_write_time > 0:
            elapsed = now - self._last_write_time
            if elapsed > 0:
                self._write_rates.append(count / elapsed)
                if len(self._write_rates) > self._max_rate_samples:
                    self._write_rates.pop(0)

        self._last_write_time = now

    def increment_errors(self, count: int = 1) -> None:
        self._errors_count += count

    def get_throughput_rps(self) -> float:
        """Records per second, averaged over the last few writes"""
        if not self._write_rates:
            return 0.0

        return sum(self._write_rates) / len(self._write_rates)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "destination": self.name,
            "is_connected": self.is_connected,
            "records_written": self._records_written,
            "errors_count": self._errors_count,
            "throughput_rps": round(self.get_throughput_rps(), 2),
        }
