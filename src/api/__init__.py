"""
Read-only query API over the source collection
"""

from src.api.app import CUSTOMER_UPDATED, create_app

__all__ = ["create_app", "CUSTOMER_UPDATED"]
