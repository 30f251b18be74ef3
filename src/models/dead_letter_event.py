"""
Dead Letter Event Model
Represents a change event that could not be anonymized or written
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID


@dataclass
class DeadLetterEvent:
    """
    Event that failed at the per-event boundary and was routed to DLQ

    Contains the original change plus error information for debugging
    and potential replay.

    Attributes:
        event_id: Capture ID of the change event
        operation_type: insert, update, ...
        document_id: Identity of the affected source document, if known
        document: Full source document as Extended JSON string (None if absent)
        captured_at: When the event was read from the change stream
        error_type: Exception class name
        error_message: Error details
        failed_at: When the event failed and was sent to DLQ
    """

    event_id: UUID
    operation_type: str
    document_id: Optional[str]
    document: Optional[str]
    captured_at: str
    error_type: str
    error_message: str
    failed_at: str

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary for JSON serialization

        Returns:
            Dict representation
        """
        return {
            "event_id": str(self.event_id),
            "operation_type": self.operation_type,
            "document_id": self.document_id,
            "document": self.document,
            "captured_at": self.captured_at,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "failed_at": self.failed_at,
        }
