"""
Change Consumer
Drives change events through anonymization into the destination sink
"""

import time
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Optional, Protocol

import structlog

from src.cdc.reader import FeedFatalError
from src.dlq.writer import DLQWriter
from src.models.customer import Customer
from src.models.event import ChangeEvent
from src.observability.logging import (
    bind_context,
    clear_context,
    log_anonymized_record,
    log_event_failure,
)
from src.observability.metrics import (
    increment_errors,
    increment_events_received,
    increment_events_skipped,
    set_consumer_state,
)
from src.observability.tracing import trace_change_event
from src.sinks.base import BaseSink
from src.transform.anonymizer import anonymize_customer

logger = structlog.get_logger(__name__)


class ChangeFeed(Protocol):
    """What the consumer needs from a change stream subscription"""

    def events(self) -> AsyncGenerator[ChangeEvent, None]: ...

    def stop(self) -> None: ...

    async def close(self) -> None: ...


class ConsumerState(str, Enum):
    """Lifecycle of a ChangeConsumer"""

    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    PROCESSING = "processing"
    STOPPED = "stopped"


@dataclass
class ConsumerStats:
    """Counters for one consumer run"""

    received: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0


class ChangeConsumer:
    """
    Sequential change stream consumer

    Events are handled one at a time in feed order. A failure while extracting,
    anonymizing or writing one event is caught at the event boundary, logged,
    recorded in the DLQ and never ends the subscription. Only FeedFatalError
    ends the run.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        sink: BaseSink,
        dlq_writer: Optional[DLQWriter] = None,
    ):
        """
        Initialize change consumer

        Args:
            feed: Change stream subscription (owned by the consumer once running)
            sink: Destination writer
            dlq_writer: Where failed events are recorded (None to only log them)
        """
        self.feed = feed
        self.sink = sink
        self.dlq_writer = dlq_writer
        self.stats = ConsumerStats()
        self.state = ConsumerState.IDLE
        self._shutdown_flag = False

        self._set_state(ConsumerState.IDLE)

    def _set_state(self, state: ConsumerState) -> None:
        self.state = state
        set_consumer_state(state.value, [s.value for s in ConsumerState])

    async def run(self) -> ConsumerStats:
        """
        Consume the feed until shutdown or a fatal feed error

        Returns:
            Counters for this run

        Raises:
            FeedFatalError: If the subscription breaks
        """
        if self._shutdown_flag:
            logger.info("Shutdown requested before start, not subscribing")
            await self.feed.close()
            self._set_state(ConsumerState.STOPPED)
            return self.stats

        self._set_state(ConsumerState.SUBSCRIBED)
        logger.info("Change consumer subscribed", destination=self.sink.name)

        try:
            async with aclosing(self.feed.events()) as events:
                async for event in events:
                    await self.process_event(event)

                    if self._shutdown_flag:
                        logger.info("Shutdown requested, leaving consume loop")
                        break

        except FeedFatalError as e:
            logger.error("Change feed failed, stopping consumer", error=str(e))
            increment_errors(type(e).__name__)
            raise

        finally:
            await self.feed.close()
            self._set_state(ConsumerState.STOPPED)
            logger.info(
                "Change consumer stopped",
                received=self.stats.received,
                written=self.stats.written,
                skipped=self.stats.skipped,
                failed=self.stats.failed,
            )

        return self.stats

    async def process_event(self, event: ChangeEvent) -> bool:
        """
        Anonymize and write one change event

        Args:
            event: Event delivered by the feed

        Returns:
            True if a record was written, False if the event was skipped or failed
        """
        self.stats.received += 1
        increment_events_received(event.operation_type.value)

        if not event.is_relevant:
            self.stats.skipped += 1
            increment_events_skipped(event.operation_type.value)
            logger.debug(
                "Ignoring change event",
                event_id=str(event.event_id),
                operation=event.operation_type.value,
            )
            return False

        self._set_state(ConsumerState.PROCESSING)
        bind_context(event_id=str(event.event_id), document_id=event.document_id)
        span = trace_change_event(str(event.event_id), event.operation_type.value, self.sink.name)
        start_time = time.perf_counter()

        try:
            customer = Customer.from_document(event.full_document)
            record = anonymize_customer(customer)
            await self.sink.write(record)

        except Exception as e:
            self.stats.failed += 1
            increment_errors(type(e).__name__)
            span.record_exception(e)
            log_event_failure(
                logger,
                event_id=str(event.event_id),
                operation=event.operation_type.value,
                document_id=event.document_id,
                error=e,
            )
            if self.dlq_writer is not None:
                self.dlq_writer.write_event(event, e)
            return False

        finally:
            span.end()
            clear_context()
            if self.state == ConsumerState.PROCESSING:
                self._set_state(ConsumerState.SUBSCRIBED)

        self.stats.written += 1
        log_anonymized_record(
            logger,
            event_id=str(event.event_id),
            operation=event.operation_type.value,
            record_id=record.id,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        return True

    def shutdown(self) -> None:
        """
        Request graceful shutdown

        The in-flight event finishes, then the feed is closed by run().
        """
        if not self._shutdown_flag:
            logger.info("Change consumer shutdown requested")
        self._shutdown_flag = True
        self.feed.stop()
