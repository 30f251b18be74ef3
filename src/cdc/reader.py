"""
MongoDB Change Stream Reader
Subscribes to the source collection and yields ChangeEvents
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from pymongo.asynchronous.change_stream import AsyncChangeStream
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from src.cdc.parser import ParseError, parse_change_document
from src.models.event import ChangeEvent, OperationType

logger = structlog.get_logger(__name__)

WATCHED_OPERATIONS = [OperationType.INSERT.value, OperationType.UPDATE.value]


class FeedFatalError(Exception):
    """The change stream subscription itself broke and cannot continue in-process"""

    pass


class ChangeStreamReader:
    """
    Reads a collection's change stream starting from the moment of subscription

    The stream is polled with try_next() so that a stop request is observed
    within max_await_ms even when no changes arrive.
    """

    def __init__(
        self,
        collection: AsyncCollection,
        max_await_ms: int = 1000,
        operations: Optional[List[str]] = None,
    ):
        """
        Initialize change stream reader

        Args:
            collection: Source collection to watch
            max_await_ms: How long the server waits for a change per poll
            operations: operationType values to subscribe to (insert/update by default)
        """
        self.collection = collection
        self.max_await_ms = max_await_ms
        self.operations = operations or list(WATCHED_OPERATIONS)
        self._stream: Optional[AsyncChangeStream] = None
        self._stopping = False

        logger.info(
            "ChangeStreamReader initialized",
            collection=collection.name,
            operations=self.operations,
        )

    @property
    def pipeline(self) -> List[Dict[str, Any]]:
        return [{"$match": {"operationType": {"$in": self.operations}}}]

    async def open(self) -> None:
        """
        Open the change stream (no replay of history)

        Raises:
            FeedFatalError: If the subscription cannot be established
        """
        if self._stream is not None:
            return

        try:
            self._stream = await self.collection.watch(
                self.pipeline,
                full_document="updateLookup",
                max_await_time_ms=self.max_await_ms,
            )
        except PyMongoError as e:
            raise FeedFatalError(f"Failed to open change stream: {e}") from e

        logger.info("Change stream opened", collection=self.collection.name)

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """
        Yield change events in the order the store emits them

        Yields:
            ChangeEvent objects

        Raises:
            FeedFatalError: On invalidation or cursor failure
        """
        await self.open()

        while not self._stopping:
            if not self._stream.alive:
                raise FeedFatalError("Change stream closed by the server")

            try:
                raw = await self._stream.try_next()
            except StopAsyncIteration:
                raise FeedFatalError("Change stream closed by the server") from None
            except PyMongoError as e:
                logger.error("Change stream failed", error=str(e))
                raise FeedFatalError(f"Change stream failed: {e}") from e

            if raw is None:
                continue

            try:
                event = parse_change_document(raw)
            except ParseError as e:
                logger.warning("Failed to parse change document", error=str(e))
                continue

            if event.operation_type == OperationType.INVALIDATE:
                raise FeedFatalError("Change stream invalidated")

            yield event

        logger.info("Change stream delivery stopped")

    def stop(self) -> None:
        """Stop delivering events after the current poll"""
        self._stopping = True

    async def close(self) -> None:
        """Release the server-side cursor"""
        self._stopping = True
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await stream.close()
            logger.info("Change stream closed", collection=self.collection.name)
