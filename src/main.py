"""
Customer Anonymizer Main Entrypoint
Runs the change consumer, record generator and query API side by side
"""

import asyncio
import contextlib
import os
import signal
import sys
from typing import List, Optional

import structlog
import uvicorn
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from src.api.app import create_app
from src.cdc.consumer import ChangeConsumer, ConsumerStats
from src.cdc.reader import ChangeStreamReader, FeedFatalError
from src.config.loader import load_config
from src.config.settings import AnonymizerSettings
from src.dlq.writer import DLQWriter
from src.generator.records import RecordGenerator
from src.observability.health import HealthStatus, run_periodic_health_checks
from src.observability.logging import configure_logging
from src.observability.metrics import start_metrics_server
from src.observability.tracing import init_tracing
from src.sinks.base import SinkError
from src.sinks.mongo import MongoSink
from src.sinks.retry import RetryPolicy, retry_with_policy

logger = structlog.get_logger(__name__)


class ApiServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the service"""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class AnonymizationService:
    """
    Service orchestrator

    Owns the MongoDB client and builds every component from it. The consumer,
    generator and API run as independent tasks that only meet in the store.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        settings: Optional[AnonymizerSettings] = None,
        client: Optional[AsyncMongoClient] = None,
    ):
        """
        Initialize service

        Args:
            config_path: Path to YAML configuration (environment if None)
            settings: Already loaded settings, takes precedence over config_path
            client: MongoDB client to use instead of creating one
        """
        self.config = settings or load_config(config_path)
        mongo = self.config.mongo

        self.client = client or AsyncMongoClient(
            mongo.uri,
            serverSelectionTimeoutMS=mongo.server_selection_timeout_ms,
            tz_aware=True,
        )
        database = self.client[mongo.database]
        self.source = database[mongo.source_collection]
        self.destination = database[mongo.destination_collection]

        self.health_status = HealthStatus()
        self.sink = MongoSink(self.destination)
        self.dlq_writer = (
            DLQWriter(self.config.dlq.directory, collection=mongo.source_collection)
            if self.config.dlq.enabled
            else None
        )
        self.feed = self.new_feed()
        self.consumer = ChangeConsumer(feed=self.feed, sink=self.sink, dlq_writer=self.dlq_writer)

        self.generator: Optional[RecordGenerator] = None
        if self.config.generator.enabled:
            self.generator = RecordGenerator(
                self.source,
                interval_seconds=self.config.generator.interval_ms / 1000,
                min_batch_size=self.config.generator.min_batch_size,
                max_batch_size=self.config.generator.max_batch_size,
                locale=self.config.generator.locale,
            )

        self.api_server: Optional[ApiServer] = None
        if self.config.api.enabled:
            app = create_app(
                self.source,
                feed_factory=self.new_feed,
                health_status=self.health_status,
                topic=self.config.api.subscription_topic,
            )
            self.api_server = ApiServer(
                uvicorn.Config(
                    app,
                    host=self.config.api.host,
                    port=self.config.api.port,
                    log_level=self.config.observability.log_level.lower(),
                    lifespan="off",
                )
            )

        self._health_stop = asyncio.Event()
        self._shutdown_flag = False
        logger.info("AnonymizationService initialized", database=mongo.database)

    def new_feed(self) -> ChangeStreamReader:
        return ChangeStreamReader(
            self.source, max_await_ms=self.config.mongo.change_stream_max_await_ms
        )

    async def connect(self) -> None:
        """
        Reach the store, retrying transient failures

        Raises:
            SinkError: If the store stays unreachable
        """
        policy = RetryPolicy.from_settings(self.config.retry)
        await retry_with_policy(self.sink.ensure_connected, policy, operation="connect_mongodb")

    async def run(self) -> ConsumerStats:
        """
        Run until shutdown or a fatal change stream error

        Returns:
            Consumer counters

        Raises:
            FeedFatalError: If the change stream breaks
        """
        try:
            if not self._shutdown_flag:
                await self.connect()
                # Subscribe before the generator produces its first batch
                await self.feed.open()

            background = self._start_background_tasks()
            try:
                return await self.consumer.run()
            finally:
                await self._stop_background_tasks(background)

        finally:
            logger.info("Sink statistics", **self.sink.get_stats())
            await self.sink.disconnect()
            await self.client.close()
            logger.info("MongoDB client closed")

    def _start_background_tasks(self) -> List[asyncio.Task]:
        tasks = []

        if self._shutdown_flag:
            return tasks

        if self.generator is not None:
            tasks.append(asyncio.create_task(self.generator.run(), name="generator"))

        if self.api_server is not None:
            tasks.append(asyncio.create_task(self.api_server.serve(), name="api"))

        tasks.append(
            asyncio.create_task(
                run_periodic_health_checks(
                    self.health_status,
                    self.client,
                    interval_seconds=self.config.observability.health_check_interval_seconds,
                    consumer_state=lambda: self.consumer.state.value,
                    sink_stats=self.sink.get_stats,
                    stop_event=self._health_stop,
                ),
                name="health",
            )
        )

        for task in tasks:
            task.add_done_callback(self._log_task_exit)

        return tasks

    async def _stop_background_tasks(self, tasks: List[asyncio.Task]) -> None:
        self._stop_producers()

        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=5.0)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def _log_task_exit(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Generator and API failures stay in their own task
            logger.error("Background task failed", task=task.get_name(), error=str(error))

    def _stop_producers(self) -> None:
        self._health_stop.set()
        if self.generator is not None:
            self.generator.stop()
        if self.api_server is not None:
            self.api_server.should_exit = True

    def shutdown(self) -> None:
        """
        Request graceful shutdown
        """
        logger.info("Shutdown signal received")
        self._shutdown_flag = True
        self.consumer.shutdown()
        self._stop_producers()


async def main(config_path: Optional[str] = None) -> int:
    """
    Main entrypoint

    Returns:
        Process exit code
    """
    config = load_config(config_path)
    configure_logging(config.observability.log_level, config.observability.log_format)

    logger.info("Starting customer anonymizer")

    if config.observability.metrics_enabled:
        start_metrics_server(port=config.observability.metrics_port)

    if config.observability.enable_tracing:
        init_tracing(enable_console_export=config.observability.tracing_console_export)

    service = AnonymizationService(settings=config)

    def signal_handler(signum, frame):
        logger.info("Signal received", signal=signum)
        service.shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        stats = await service.run()
    except FeedFatalError as e:
        logger.error("Change stream failed, exiting for restart", error=str(e))
        return 1
    except (SinkError, PyMongoError) as e:
        logger.error("Could not reach MongoDB", error=str(e))
        return 1

    logger.info("Customer anonymizer stopped", written=stats.written, failed=stats.failed)
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main(os.environ.get("ANON_CONFIG_FILE"))))


if __name__ == "__main__":
    cli()
