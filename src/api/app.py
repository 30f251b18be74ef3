"""
Query API for source customers
Read-only listing, push subscription and health, served by FastAPI
"""

import asyncio
from contextlib import aclosing
from typing import Any, Callable, Dict, List

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pymongo.asynchronous.collection import AsyncCollection

from src.cdc.parser import MalformedEventError
from src.cdc.reader import FeedFatalError
from src.models.customer import Customer
from src.observability.health import HealthStatus

logger = structlog.get_logger(__name__)

CUSTOMER_UPDATED = "CUSTOMER_UPDATED"


def create_app(
    source_collection: AsyncCollection,
    feed_factory: Callable[[], Any],
    health_status: HealthStatus,
    topic: str = CUSTOMER_UPDATED,
) -> FastAPI:
    """
    Build the query API

    The subscription endpoint opens its own change stream per client, so the
    API shares nothing in-process with the anonymization consumer.

    Args:
        source_collection: Collection holding the raw customers
        feed_factory: Returns a new change feed (events/stop/close) for a subscriber
        health_status: Health state reported on /health
        topic: Name of the subscription topic

    Returns:
        FastAPI application
    """
    app = FastAPI(title="customer-anonymizer", version=health_status.version)

    @app.get("/customers")
    async def list_customers() -> List[Dict[str, Any]]:
        documents = await source_collection.find().to_list(None)
        customers = []
        for document in documents:
            try:
                customers.append(Customer.from_document(document).to_json())
            except MalformedEventError as e:
                logger.warning("Skipping malformed customer", document_id=str(document.get("_id")), error=str(e))
        return customers

    @app.get("/health")
    async def health() -> JSONResponse:
        health_data = health_status.to_dict()
        status_code = 200 if health_data["status"] == "healthy" else 503
        return JSONResponse(content=health_data, status_code=status_code)

    @app.websocket("/subscriptions/{name}")
    async def subscribe(websocket: WebSocket, name: str) -> None:
        if name != topic:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        feed = feed_factory()
        disconnected = asyncio.Event()
        logger.info("Subscriber connected", topic=topic)

        async def watch_disconnect() -> None:
            # Stop the feed as soon as the client leaves, even while no changes arrive
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    disconnected.set()
                    feed.stop()
                    return

        listener = asyncio.create_task(watch_disconnect())

        try:
            async with aclosing(feed.events()) as events:
                async for event in events:
                    if disconnected.is_set():
                        break
                    if not event.is_relevant:
                        continue
                    try:
                        customer = Customer.from_document(event.full_document)
                    except MalformedEventError as e:
                        logger.warning("Not publishing malformed customer", error=str(e))
                        continue
                    await websocket.send_json({"topic": topic, "customer": customer.to_json()})

            if disconnected.is_set():
                logger.info("Subscriber disconnected", topic=topic)
            else:
                await websocket.close()

        except WebSocketDisconnect:
            logger.info("Subscriber disconnected", topic=topic)
        except FeedFatalError as e:
            logger.error("Subscription feed failed", topic=topic, error=str(e))
            if not disconnected.is_set():
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        finally:
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)
            await feed.close()

    return app
