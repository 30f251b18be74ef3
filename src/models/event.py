"""
ChangeEvent Data Model - change stream event representation
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4


class OperationType(str, Enum):
    """Kind of change reported by the source collection"""

    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    INVALIDATE = "invalidate"
    OTHER = "other"

    @classmethod
    def from_raw(cls, value: Any) -> "OperationType":
        """Map a raw operationType string, falling back to OTHER"""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class ChangeEvent:
    """
    Represents a single change notification captured from the source collection

    Attributes:
        event_id: Identifier assigned on capture, used for log and DLQ correlation
        operation_type: Kind of change (insert, update, delete, ...)
        full_document: Current version of the document (None when the store omits it)
        document_key: Key of the changed document as reported by the store
        cluster_time: Store-side time of the operation, if reported
        captured_at: When the pipeline read this event from the change stream
    """

    operation_type: OperationType
    full_document: Optional[Dict[str, Any]] = None
    document_key: Optional[Dict[str, Any]] = None
    cluster_time: Optional[Any] = None
    event_id: UUID = field(default_factory=uuid4)
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_relevant(self) -> bool:
        """Only inserts and updates feed the anonymization path"""
        return self.operation_type in (OperationType.INSERT, OperationType.UPDATE)

    @property
    def document_id(self) -> Optional[str]:
        """String identity of the changed document, if known"""
        for source in (self.document_key, self.full_document):
            if isinstance(source, dict) and source.get("_id") is not None:
                return str(source["_id"])
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert ChangeEvent metadata to dictionary (document body excluded)"""
        return {
            "event_id": str(self.event_id),
            "operation_type": self.operation_type.value,
            "document_id": self.document_id,
            "captured_at": self.captured_at.isoformat(),
        }
