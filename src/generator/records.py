"""
Synthetic Customer Generator
Periodically inserts batches of fake customers into the source collection
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from faker import Faker
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from src.observability.metrics import increment_errors, increment_generated_records

logger = structlog.get_logger(__name__)


class RecordGenerator:
    """
    Produces batches of synthetic customers on a fixed period

    The generator only writes to the source collection; the anonymization
    pipeline sees its output as insert events on the change stream.
    """

    def __init__(
        self,
        collection: AsyncCollection,
        interval_seconds: float = 2.0,
        min_batch_size: int = 1,
        max_batch_size: int = 10,
        locale: str = "en_US",
        seed: Optional[int] = None,
    ):
        """
        Initialize generator

        Args:
            collection: Source collection to insert into
            interval_seconds: Delay between batches
            min_batch_size: Smallest batch
            max_batch_size: Largest batch
            locale: Faker locale
            seed: Seed for reproducible batches (tests)
        """
        if min_batch_size < 1 or max_batch_size < min_batch_size:
            raise ValueError("Batch sizes must satisfy 1 <= min_batch_size <= max_batch_size")

        self.collection = collection
        self.interval_seconds = interval_seconds
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self.faker = Faker(locale)
        self._random = random.Random(seed)
        if seed is not None:
            self.faker.seed_instance(seed)
        self._stopping = False
        self.batches_inserted = 0

    def generate_record(self) -> Dict[str, Any]:
        """Build one synthetic customer document"""
        return {
            "_id": ObjectId(),
            "firstName": self.faker.first_name(),
            "lastName": self.faker.last_name(),
            "email": self.faker.email(),
            "address": {
                "line1": self.faker.street_address(),
                "line2": self.faker.secondary_address(),
                "postcode": self.faker.postcode(),
                "city": self.faker.city(),
                "state": self.faker.state(),
                "country": self.faker.country(),
            },
            "createdAt": datetime.now(timezone.utc),
        }

    def generate_batch(self) -> List[Dict[str, Any]]:
        size = self._random.randint(self.min_batch_size, self.max_batch_size)
        return [self.generate_record() for _ in range(size)]

    async def insert_batch(self) -> int:
        """
        Generate and bulk insert one batch

        Returns:
            Number of customers inserted

        Raises:
            PyMongoError: If the insert fails
        """
        batch = self.generate_batch()
        result = await self.collection.insert_many(batch)

        inserted = len(result.inserted_ids)
        self.batches_inserted += 1
        increment_generated_records(inserted)
        logger.info("Inserted synthetic customers", count=inserted, collection=self.collection.name)
        return inserted

    async def run(self) -> None:
        """
        Insert a batch every interval until stop() is called

        Failures are logged and the loop carries on with the next batch.
        """
        logger.info(
            "Record generator started",
            interval_seconds=self.interval_seconds,
            collection=self.collection.name,
        )

        while not self._stopping:
            await asyncio.sleep(self.interval_seconds)
            if self._stopping:
                break

            try:
                await self.insert_batch()
            except PyMongoError as e:
                increment_errors("generator_insert")
                logger.error("Failed to insert synthetic customers", error=str(e))

        logger.info("Record generator stopped", batches=self.batches_inserted)

    def stop(self) -> None:
        self._stopping = True
