"""
Change Stream Document Parser
Parses raw MongoDB change stream documents into ChangeEvent objects
"""

from collections.abc import Mapping
from typing import Any

from src.models.event import ChangeEvent, OperationType


class ParseError(Exception):
    """Exception raised when a change stream document cannot be parsed"""

    pass


class MalformedEventError(ParseError):
    """A change event lacks the document or a field required for anonymization"""

    pass


def parse_change_document(raw: Any) -> ChangeEvent:
    """
    Parse a raw change stream document into a ChangeEvent

    Only the envelope is checked here. Whether the full document carries every
    customer field is decided later, per event, by the consumer.

    Args:
        raw: Change document as returned by the driver
            ({"operationType": ..., "fullDocument": ..., "documentKey": ...})

    Returns:
        Parsed ChangeEvent object

    Raises:
        ParseError: If the document is not a mapping or has no operationType
    """
    if not isinstance(raw, Mapping):
        raise ParseError(f"Invalid change document: expected mapping, got {type(raw).__name__}")

    operation = raw.get("operationType")
    if not operation:
        raise ParseError("Invalid change document: missing operationType")

    full_document = raw.get("fullDocument")
    document_key = raw.get("documentKey")

    return ChangeEvent(
        operation_type=OperationType.from_raw(operation),
        full_document=dict(full_document) if isinstance(full_document, Mapping) else None,
        document_key=dict(document_key) if isinstance(document_key, Mapping) else None,
        cluster_time=raw.get("clusterTime"),
    )
