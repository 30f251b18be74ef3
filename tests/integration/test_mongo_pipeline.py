"""
Integration tests against a real MongoDB (testcontainers)

The container is a single-node replica set, so change streams are real here.
"""

import asyncio
import time
import uuid

import pytest
from conftest import FakeFeed, make_customer_document, make_event
from pymongo import AsyncMongoClient

from src.cdc.consumer import ChangeConsumer, ConsumerState
from src.cdc.reader import ChangeStreamReader, FeedFatalError
from src.generator.records import RecordGenerator
from src.models.customer import Customer
from src.sinks.base import SinkError
from src.sinks.mongo import MongoSink
from src.transform.anonymizer import anonymize_customer

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


@pytest.fixture
def database_name():
    return f"anon_test_{uuid.uuid4().hex[:8]}"


async def wait_for_count(collection, expected, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await collection.count_documents({}) >= expected:
            return
        await asyncio.sleep(0.1)
    raise AssertionError(f"{collection.name} did not reach {expected} documents")


async def test_sink_appends_anonymized_customer(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        collection = client[database_name]["customers_anonymised"]
        sink = MongoSink(collection)
        await sink.connect()

        source = make_customer_document()
        record = anonymize_customer(Customer.from_document(source))
        await sink.write(record)

        stored = await collection.find_one({"_id": str(source["_id"])})
        assert stored["firstName"] == record.first_name
        assert stored["email"].endswith("@example.com")
        assert stored["createdAt"] == source["createdAt"]
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_repeated_identity_is_a_sink_error(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        collection = client[database_name]["customers_anonymised"]
        sink = MongoSink(collection)
        record = anonymize_customer(Customer.from_document(make_customer_document()))

        await sink.write(record)
        with pytest.raises(SinkError):
            await sink.write(record)

        assert await collection.count_documents({}) == 1
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_generator_batches_are_valid_customers(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        collection = client[database_name]["customers"]
        generator = RecordGenerator(collection, min_batch_size=3, max_batch_size=3, seed=7)

        inserted = await generator.insert_batch()

        documents = await collection.find().to_list(None)
        assert inserted == 3
        assert len(documents) == 3
        for document in documents:
            Customer.from_document(document)
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_consumer_writes_generated_customers(mongo_url, database_name):
    """Generated documents flow through the consumer into the destination"""
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        generator = RecordGenerator(client[database_name]["customers"], seed=11)
        batch = generator.generate_batch()
        destination = client[database_name]["customers_anonymised"]

        consumer = ChangeConsumer(
            FakeFeed([make_event(document=document) for document in batch]), MongoSink(destination)
        )
        stats = await consumer.run()

        assert stats.written == len(batch)
        stored_ids = {d["_id"] for d in await destination.find().to_list(None)}
        assert stored_ids == {str(document["_id"]) for document in batch}
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_inserted_customers_are_anonymized_from_change_stream(mongo_url, database_name):
    """Generator inserts travel through the real change stream into the destination"""
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        source = client[database_name]["customers"]
        destination = client[database_name]["customers_anonymised"]
        reader = ChangeStreamReader(source, max_await_ms=100)
        consumer = ChangeConsumer(reader, MongoSink(destination))
        await reader.open()

        task = asyncio.create_task(consumer.run())
        generator = RecordGenerator(source, min_batch_size=4, max_batch_size=4, seed=5)
        await generator.insert_batch()
        await wait_for_count(destination, 4)

        start = time.monotonic()
        consumer.shutdown()
        stats = await asyncio.wait_for(task, timeout=5.0)

        assert time.monotonic() - start < 2.0
        assert stats.written == 4
        assert consumer.state == ConsumerState.STOPPED

        source_ids = {str(d["_id"]) for d in await source.find().to_list(None)}
        anonymized = await destination.find().to_list(None)
        assert {d["_id"] for d in anonymized} == source_ids
        for document in anonymized:
            assert len(document["firstName"]) == 8
            assert document["email"].endswith(".com")
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_update_delivers_full_document(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        source = client[database_name]["customers"]
        destination = client[database_name]["customers_anonymised"]
        document = make_customer_document()
        await source.insert_one(document)

        reader = ChangeStreamReader(source, max_await_ms=100)
        consumer = ChangeConsumer(reader, MongoSink(destination))
        await reader.open()
        task = asyncio.create_task(consumer.run())

        await source.update_one({"_id": document["_id"]}, {"$set": {"lastName": "Smith"}})
        await wait_for_count(destination, 1)

        consumer.shutdown()
        await asyncio.wait_for(task, timeout=5.0)

        stored = await destination.find_one({"_id": str(document["_id"])})
        assert stored["createdAt"] == document["createdAt"]
        assert set(stored["address"]) == set(document["address"])
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_deletes_are_not_written(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        source = client[database_name]["customers"]
        destination = client[database_name]["customers_anonymised"]
        reader = ChangeStreamReader(source, max_await_ms=100)
        consumer = ChangeConsumer(reader, MongoSink(destination))
        await reader.open()
        task = asyncio.create_task(consumer.run())

        document = make_customer_document()
        await source.insert_one(document)
        await wait_for_count(destination, 1)
        await source.delete_one({"_id": document["_id"]})
        await asyncio.sleep(0.5)

        consumer.shutdown()
        stats = await asyncio.wait_for(task, timeout=5.0)

        assert stats.written == 1
        assert await destination.count_documents({}) == 1
    finally:
        await client.drop_database(database_name)
        await client.close()


async def test_dropping_source_collection_stops_consumer(mongo_url, database_name):
    client = AsyncMongoClient(mongo_url, tz_aware=True)
    try:
        source = client[database_name]["customers"]
        await source.insert_one(make_customer_document())

        reader = ChangeStreamReader(source, max_await_ms=100)
        consumer = ChangeConsumer(reader, MongoSink(client[database_name]["customers_anonymised"]))
        await reader.open()
        task = asyncio.create_task(consumer.run())
        await asyncio.sleep(0.2)

        await source.drop()

        with pytest.raises(FeedFatalError):
            await asyncio.wait_for(task, timeout=10.0)

        assert consumer.state == ConsumerState.STOPPED
    finally:
        await client.drop_database(database_name)
        await client.close()
