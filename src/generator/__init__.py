"""
Synthetic customer generator feeding the source collection
"""

from src.generator.records import RecordGenerator

__all__ = ["RecordGenerator"]
