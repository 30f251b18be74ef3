"""
CDC (Change Data Capture) module for reading the source collection's change stream
"""

from src.cdc.parser import MalformedEventError, ParseError, parse_change_document
from src.cdc.reader import ChangeStreamReader, FeedFatalError

__all__ = [
    "parse_change_document",
    "ParseError",
    "MalformedEventError",
    "ChangeStreamReader",
    "FeedFatalError",
]
