"""
Health Check System for the Anonymization Pipeline
Monitors MongoDB reachability and the change consumer state
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from pymongo.asynchronous.mongo_client import AsyncMongoClient
from pymongo.errors import PyMongoError

logger = structlog.get_logger(__name__)


class HealthStatus:
    """
    Tracks health status of all dependencies
    """

    def __init__(self, version: str = "1.0.0"):
        self.dependencies: Dict[str, Dict[str, Any]] = {}
        self.consumer_state: Optional[str] = None
        self.sink: Dict[str, Any] = {}
        self.start_time = datetime.now(timezone.utc)
        self.version = version

    def update_dependency(self, name: str, status: str, latency_ms: float) -> None:
        """
        Update health status for a dependency

        Args:
            name: Dependency name (mongodb)
            status: Status ("up" or "down")
            latency_ms: Latency in milliseconds
        """
        self.dependencies[name] = {
            "status": status,
            "latency_ms": round(latency_ms, 2),
            "last_check": datetime.now(timezone.utc).isoformat(),
        }

    def update_consumer_state(self, state: str) -> None:
        self.consumer_state = state

    def update_sink_stats(self, stats: Dict[str, Any]) -> None:
        self.sink = dict(stats)

    def get_overall_status(self) -> str:
        """
        Get overall health status

        Returns:
            "healthy" if all dependencies are up and the consumer is not stopped,
            "unhealthy" otherwise
        """
        if not self.dependencies:
            return "unhealthy"

        if self.consumer_state == "stopped":
            return "unhealthy"

        all_up = all(dep["status"] == "up" for dep in self.dependencies.values())
        return "healthy" if all_up else "unhealthy"

    def get_uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert health status to dictionary for JSON response

        Returns:
            Dict with status, consumer state, sink counters, dependencies, uptime, version
        """
        return {
            "status": self.get_overall_status(),
            "uptime_seconds": round(self.get_uptime_seconds(), 2),
            "version": self.version,
            "consumer_state": self.consumer_state,
            "sink": self.sink,
            "dependencies": self.dependencies,
        }


async def check_mongo_health(client: AsyncMongoClient) -> Tuple[bool, float]:
    """
    Check MongoDB health with a ping

    Args:
        client: MongoDB client

    Returns:
        Tuple of (is_healthy, latency_ms)
    """
    try:
        start_time = time.time()
        await client.admin.command("ping")
        latency_ms = (time.time() - start_time) * 1000

        logger.debug("MongoDB health check passed", latency_ms=latency_ms)
        return (True, latency_ms)

    except PyMongoError as e:
        logger.warning("MongoDB health check failed", error=str(e))
        return (False, 0.0)


async def update_health_status(status: HealthStatus, client: AsyncMongoClient) -> None:
    """
    Refresh dependency health in place

    Args:
        status: HealthStatus to update
        client: MongoDB client
    """
    is_healthy, latency_ms = await check_mongo_health(client)
    status.update_dependency(
        name="mongodb",
        status="up" if is_healthy else "down",
        latency_ms=latency_ms,
    )


async def run_periodic_health_checks(
    status: HealthStatus,
    client: AsyncMongoClient,
    interval_seconds: float = 30,
    consumer_state: Optional[Callable[[], str]] = None,
    sink_stats: Optional[Callable[[], Dict[str, Any]]] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """
    Run health checks periodically in the background

    Args:
        status: HealthStatus to update
        client: MongoDB client
        interval_seconds: Interval between health checks
        consumer_state: Returns the current consumer state, if one is running
        sink_stats: Returns the destination sink counters
        stop_event: Ends the loop as soon as it is set
    """
    stop_event = stop_event or asyncio.Event()
    logger.info("Starting periodic health checks", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            if consumer_state is not None:
                status.update_consumer_state(consumer_state())
            if sink_stats is not None:
                status.update_sink_stats(sink_stats())
            await update_health_status(status, client)
        except Exception as e:
            logger.error("Error running health checks", error=str(e))

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Periodic health checks stopped")
