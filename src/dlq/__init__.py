"""
Dead Letter Queue (DLQ) module
Records change events that failed at the per-event boundary
"""

from src.dlq.writer import DLQWriter

__all__ = ["DLQWriter"]
