"""
Sinks for writing anonymized records to the destination store
"""

from src.sinks.base import BaseSink, SinkError, TransientStoreError
from src.sinks.mongo import MongoSink

__all__ = [
    "BaseSink",
    "SinkError",
    "TransientStoreError",
    "MongoSink",
]
