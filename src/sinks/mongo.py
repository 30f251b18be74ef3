"""
MongoDB Sink
Appends anonymized customers to the destination collection
"""

import time
from typing import Optional

import structlog
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import ConnectionFailure, PyMongoError

from src.models.customer import AnonymizedCustomer
from src.observability.metrics import increment_records_written, observe_write_duration
from src.sinks.base import BaseSink, SinkError, TransientStoreError

logger = structlog.get_logger(__name__)


class MongoSink(BaseSink):
    """
    Destination collection sink: one insert_one per record, no upsert

    The same customer id may be written more than once. MongoDB's unique
    _id index turns a repeated id into a DuplicateKeyError, surfaced as SinkError.
    """

    def __init__(self, collection: AsyncCollection):
        """
        Initialize MongoDB sink

        Args:
            collection: Destination collection (owned by the caller's client)
        """
        super().__init__(name=collection.name)
        self._collection: Optional[AsyncCollection] = collection

    async def connect(self) -> None:
        """
        Verify the destination is reachable

        Raises:
            SinkError: If the server cannot be reached
        """
        try:
            await self._collection.database.command("ping")
            self.is_connected = True
            logger.info("Connected to MongoDB destination", collection=self.name)

        except ConnectionFailure as e:
            self.increment_errors()
            raise TransientStoreError(f"Failed to connect to MongoDB: {e}") from e
        except PyMongoError as e:
            self.increment_errors()
            raise SinkError(f"Failed to connect to MongoDB: {e}") from e

    async def disconnect(self) -> None:
        """The client is shared and closed by its owner; only mark the sink closed"""
        if self.is_connected:
            self.is_connected = False
            logger.info("Disconnected from MongoDB destination", collection=self.name)

    async def write(self, record: AnonymizedCustomer) -> None:
        """
        Insert one anonymized record

        Args:
            record: Record to append

        Raises:
            TransientStoreError: On connectivity or timeout failures
            SinkError: On any other write failure
        """
        start_time = time.perf_counter()

        try:
            await self._collection.insert_one(record.to_document())

        except ConnectionFailure as e:
            # NetworkTimeout and ServerSelectionTimeoutError are ConnectionFailures
            self.increment_errors()
            raise TransientStoreError(f"Failed to write record {record.id}: {e}") from e
        except PyMongoError as e:
            self.increment_errors()
            raise SinkError(f"Failed to write record {record.id}: {e}") from e

        duration = time.perf_counter() - start_time
        self.increment_records_written()
        increment_records_written(self.name)
        observe_write_duration(self.name, duration)

        logger.info("Wrote anonymized record", collection=self.name, record_id=record.id)

    async def health_check(self) -> bool:
        """
        Check MongoDB health

        Returns:
            True if healthy, False otherwise
        """
        try:
            await self._collection.database.command("ping")
            return True

        except PyMongoError as e:
            logger.warning("MongoDB health check failed", error=str(e))
            return False
