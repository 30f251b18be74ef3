"""
Transformation modules for change events
Handles anonymization of customer records
"""

from src.transform.anonymizer import (
    anonymize_address,
    anonymize_customer,
    anonymize_email,
    anonymize_token,
)

__all__ = ["anonymize_token", "anonymize_email", "anonymize_address", "anonymize_customer"]
