"""
Unit tests for service wiring and lifecycle
No server is needed: the client connects lazily and health pings fail fast
"""

import asyncio
import time

import pytest
from conftest import FakeFeed

from src.cdc.consumer import ConsumerState
from src.cdc.reader import ChangeStreamReader
from src.config.settings import AnonymizerSettings
from src.main import AnonymizationService


def make_settings(tmp_path, **sections):
    values = {
        "mongo": {"uri": "mongodb://localhost:27017/?replicaSet=rs0", "database": "unit"},
        "generator": {"enabled": False},
        "api": {"enabled": False},
        "dlq": {"enabled": True, "directory": str(tmp_path / "dlq")},
    }
    values.update(sections)
    return AnonymizerSettings(**values)


@pytest.mark.asyncio
class TestAnonymizationService:
    """Test component construction and shutdown"""

    async def test_components_follow_settings(self, tmp_path):
        service = AnonymizationService(settings=make_settings(tmp_path))

        assert service.source.name == "customers"
        assert service.destination.name == "customers_anonymised"
        assert service.sink.name == "customers_anonymised"
        assert service.generator is None
        assert service.api_server is None
        assert service.dlq_writer is not None
        assert isinstance(service.feed, ChangeStreamReader)

        await service.client.close()

    async def test_optional_components_enabled(self, tmp_path):
        settings = make_settings(
            tmp_path,
            generator={"enabled": True, "interval_ms": 500},
            api={"enabled": True, "port": 3001},
        )

        service = AnonymizationService(settings=settings)

        assert service.generator.interval_seconds == 0.5
        assert service.api_server.config.port == 3001

        await service.client.close()

    async def test_each_feed_is_independent(self, tmp_path):
        service = AnonymizationService(settings=make_settings(tmp_path))

        assert service.new_feed() is not service.new_feed()

        await service.client.close()

    async def test_shutdown_before_run_stops_cleanly(self, tmp_path):
        service = AnonymizationService(settings=make_settings(tmp_path))

        service.shutdown()
        stats = await service.run()

        assert stats.written == 0
        assert service.consumer.state == ConsumerState.STOPPED

    async def test_shutdown_does_not_wait_for_health_interval(self, tmp_path, monkeypatch):
        settings = make_settings(
            tmp_path,
            mongo={
                "uri": "mongodb://localhost:27017/?replicaSet=rs0",
                "database": "unit",
                "server_selection_timeout_ms": 100,
            },
        )
        service = AnonymizationService(settings=settings)

        async def connected():
            return None

        monkeypatch.setattr(service, "connect", connected)
        service.feed = FakeFeed(hold_open=True)
        service.consumer.feed = service.feed

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.2)

        start = time.monotonic()
        service.shutdown()
        stats = await asyncio.wait_for(task, timeout=10.0)

        assert time.monotonic() - start < 2.0
        assert stats.written == 0
        assert service.feed.opened
        assert service.feed.closed
        assert service.consumer.state == ConsumerState.STOPPED
