"""
Pytest Fixtures and Test Configuration
Provides in-memory fakes for the change feed, sink and collections, and a
MongoDB testcontainer for integration tests
"""

import asyncio
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, Generator, Iterable, List, Optional, Set

import pytest
from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from src.models.customer import AnonymizedCustomer
from src.models.event import ChangeEvent, OperationType
from src.sinks.base import BaseSink, SinkError

# ============================================================================
# Test Data
# ============================================================================


def make_customer_document(**overrides: Any) -> Dict[str, Any]:
    """A fully populated source customer document"""
    document = {
        "_id": ObjectId(),
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane.doe@example.com",
        "address": {
            "line1": "12 High Street",
            "line2": "Flat 3",
            "postcode": "AB1 2CD",
            "city": "Springfield",
            "state": "Oregon",
            "country": "United States",
        },
        "createdAt": datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc),
    }
    document.update(overrides)
    return document


def make_event(
    operation: OperationType = OperationType.INSERT,
    document: Optional[Dict[str, Any]] = None,
) -> ChangeEvent:
    """A change event carrying the given (or a fresh) customer document"""
    if document is None and operation in (OperationType.INSERT, OperationType.UPDATE):
        document = make_customer_document()
    document_key = {"_id": document["_id"]} if document and "_id" in document else None
    return ChangeEvent(operation_type=operation, full_document=document, document_key=document_key)


@pytest.fixture
def customer_document() -> Dict[str, Any]:
    return make_customer_document()


# ============================================================================
# Change Feed Fake
# ============================================================================


class FakeFeed:
    """
    In-memory change feed

    Yields the given events in order, then raises `error` if set, then either
    ends or (with hold_open) idles until stopped, like a live change stream.
    """

    def __init__(
        self,
        events: Iterable[ChangeEvent] = (),
        hold_open: bool = False,
        error: Optional[BaseException] = None,
    ):
        self._events = list(events)
        self.hold_open = hold_open
        self.error = error
        self.stopped = False
        self.closed = False
        self.opened = False

    async def open(self) -> None:
        self.opened = True

    async def events(self):
        for event in self._events:
            if self.stopped:
                return
            yield event

        if self.error is not None:
            raise self.error

        while self.hold_open and not self.stopped:
            await asyncio.sleep(0.01)

    def stop(self) -> None:
        self.stopped = True

    async def close(self) -> None:
        self.stopped = True
        self.closed = True


# ============================================================================
# Sink Fake
# ============================================================================


class RecordingSink(BaseSink):
    """Sink that keeps written records in memory and can fail on chosen calls"""

    def __init__(self, fail_on: Optional[Set[int]] = None, gate: Optional[asyncio.Event] = None):
        super().__init__(name="customers_anonymised")
        self.records: List[AnonymizedCustomer] = []
        self.calls = 0
        self.fail_on = fail_on or set()
        self.gate = gate
        self.write_started = asyncio.Event()

    async def connect(self) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def write(self, record: AnonymizedCustomer) -> None:
        call = self.calls
        self.calls += 1
        self.write_started.set()

        if self.gate is not None:
            await self.gate.wait()

        if call in self.fail_on:
            self.increment_errors()
            raise SinkError(f"Simulated write failure for {record.id}")

        self.records.append(record)
        self.increment_records_written()

    async def health_check(self) -> bool:
        return self.is_connected


# ============================================================================
# Collection Fake
# ============================================================================


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return list(self._documents if length is None else self._documents[:length])


class FakeDatabase:
    def __init__(self, ping_error: Optional[PyMongoError] = None):
        self.ping_error = ping_error
        self.commands: List[str] = []

    async def command(self, name: str) -> Dict[str, Any]:
        self.commands.append(name)
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1.0}


class FakeCollection:
    """Subset of AsyncCollection used by the sink, generator and API"""

    def __init__(
        self,
        name: str = "customers",
        documents: Optional[List[Dict[str, Any]]] = None,
        insert_error: Optional[PyMongoError] = None,
        ping_error: Optional[PyMongoError] = None,
    ):
        self.name = name
        self.documents = documents if documents is not None else []
        self.insert_error = insert_error
        self.database = FakeDatabase(ping_error)
        self.insert_many_calls = 0

    async def insert_one(self, document: Dict[str, Any]):
        if self.insert_error is not None:
            raise self.insert_error
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document.get("_id"))

    async def insert_many(self, documents: List[Dict[str, Any]]):
        self.insert_many_calls += 1
        if self.insert_error is not None:
            raise self.insert_error
        self.documents.extend(documents)
        return SimpleNamespace(inserted_ids=[d.get("_id") for d in documents])

    def find(self, *args: Any, **kwargs: Any) -> FakeCursor:
        return FakeCursor(self.documents)


# ============================================================================
# MongoDB Testcontainer
# ============================================================================


def _initiate_replica_set(url: str, timeout: float = 30.0) -> None:
    """Turn the fresh mongod into a single-member replica set and wait for a primary"""
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    try:
        client.admin.command(
            "replSetInitiate", {"_id": "rs0", "members": [{"_id": 0, "host": "localhost:27017"}]}
        )
        deadline = time.monotonic() + timeout
        while not client.admin.command("hello").get("isWritablePrimary"):
            if time.monotonic() > deadline:
                raise TimeoutError("Replica set did not elect a primary")
            time.sleep(0.2)
    finally:
        client.close()


@pytest.fixture(scope="session")
def mongo_url() -> Generator[str, None, None]:
    """
    Start a single-node MongoDB replica set for the test session

    Change streams need a replica set, so the container runs mongod with
    --replSet and is initiated before use. Skips the requesting tests when
    Docker is not available.

    Yields:
        Connection URL of the running container
    """
    container_module = pytest.importorskip("testcontainers.core.container")
    waiting_utils = pytest.importorskip("testcontainers.core.waiting_utils")

    container = (
        container_module.DockerContainer("mongo:7.0")
        .with_command("--replSet rs0 --bind_ip_all")
        .with_exposed_ports(27017)
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker not available for MongoDB container: {e}")

    try:
        waiting_utils.wait_for_logs(container, "Waiting for connections", timeout=60)
        host = container.get_container_host_ip()
        port = container.get_exposed_port(27017)
        url = f"mongodb://{host}:{port}/?directConnection=true"
        _initiate_replica_set(url)

        yield url
    finally:
        container.stop()
