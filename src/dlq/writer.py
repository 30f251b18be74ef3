"""
DLQ Writer
Writes failed change events to JSONL files for later analysis and replay
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
from bson import json_util

from src.models.dead_letter_event import DeadLetterEvent
from src.models.event import ChangeEvent

logger = structlog.get_logger(__name__)


class DLQWriter:
    """
    Writes failed events to Dead Letter Queue

    Failed events are written as JSONL (one JSON object per line) files,
    organized by collection and date for easy analysis and replay.
    """

    def __init__(self, dlq_directory: str = "data/dlq", collection: str = "customers"):
        """
        Initialize DLQ writer

        Args:
            dlq_directory: Directory to write DLQ files
            collection: Source collection name used in file names
        """
        self.dlq_directory = Path(dlq_directory)
        self.dlq_directory.mkdir(parents=True, exist_ok=True)
        self.collection = collection

        logger.info("DLQ writer initialized", directory=str(self.dlq_directory))

    def write_event(self, event: ChangeEvent, error: BaseException) -> None:
        """
        Write failed event to DLQ

        Args:
            event: Event that failed
            error: Exception raised while processing it
        """
        document = (
            json_util.dumps(event.full_document, json_options=json_util.RELAXED_JSON_OPTIONS)
            if event.full_document is not None
            else None
        )

        dlq_event = DeadLetterEvent(
            event_id=event.event_id,
            operation_type=event.operation_type.value,
            document_id=event.document_id,
            document=document,
            captured_at=event.captured_at.isoformat(),
            error_type=type(error).__name__,
            error_message=str(error),
            failed_at=datetime.now(timezone.utc).isoformat(),
        )

        # dlq_COLLECTION_DATE.jsonl
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        filename = f"dlq_{self.collection}_{date_str}.jsonl"
        filepath = self.dlq_directory / filename

        try:
            with open(filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(dlq_event.to_dict()) + "\n")

            logger.warning(
                "Event written to DLQ",
                event_id=str(event.event_id),
                document_id=event.document_id,
                error_type=dlq_event.error_type,
                dlq_file=filename,
            )

        except OSError as e:
            # DLQ write failure must not stop the consumer
            logger.error("Failed to write to DLQ", error=str(e), event_id=str(event.event_id))

    def get_dlq_files(self) -> list[Path]:
        """
        Get list of DLQ files for this collection

        Returns:
            List of DLQ file paths
        """
        return sorted(self.dlq_directory.glob(f"dlq_{self.collection}_*.jsonl"))

    def count_dlq_events(self, since: Optional[str] = None) -> int:
        """
        Count total events in DLQ

        Args:
            since: Only count files dated on or after this YYYY-MM-DD date

        Returns:
            Total number of events
        """
        total = 0

        for filepath in self.get_dlq_files():
            file_date = filepath.stem.rsplit("_", 1)[-1]
            if since and file_date < since:
                continue
            with open(filepath, encoding="utf-8") as f:
                total += sum(1 for _ in f)

        return total
