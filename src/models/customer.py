"""
Customer Data Models - source records and their anonymized derivatives
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from src.cdc.parser import MalformedEventError

ADDRESS_FIELDS = ("line1", "line2", "postcode", "city", "state", "country")


def _require(document: Mapping[str, Any], key: str, context: str) -> Any:
    if key not in document or document[key] is None:
        raise MalformedEventError(f"Missing required field '{context}{key}'")
    return document[key]


@dataclass(frozen=True)
class Address:
    """Postal address; every field is plain text"""

    line1: str
    line2: str
    postcode: str
    city: str
    state: str
    country: str

    @classmethod
    def from_document(cls, document: Any) -> "Address":
        """
        Build an Address from its embedded document

        Raises:
            MalformedEventError: If the address or any of its fields is absent
        """
        if not isinstance(document, Mapping):
            raise MalformedEventError("Missing required field 'address'")
        return cls(**{name: _require(document, name, "address.") for name in ADDRESS_FIELDS})

    def to_document(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in ADDRESS_FIELDS}


@dataclass(frozen=True)
class Customer:
    """
    Synthetic customer record stored in the source collection

    Attributes:
        id: Store-assigned identity (ObjectId), immutable once created
        first_name: Given name
        last_name: Family name
        email: Email address
        address: Postal address
        created_at: Creation timestamp
    """

    id: Any
    first_name: str
    last_name: str
    email: str
    address: Address
    created_at: datetime

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> "Customer":
        """
        Build a Customer from a source collection document

        Args:
            document: Full document as stored (None when the change carried none)

        Returns:
            Customer instance

        Raises:
            MalformedEventError: If the document or any required field is absent
        """
        if document is None:
            raise MalformedEventError("Change event carries no full document")
        if not isinstance(document, Mapping):
            raise MalformedEventError(f"Unexpected document type: {type(document).__name__}")

        return cls(
            id=_require(document, "_id", ""),
            first_name=_require(document, "firstName", ""),
            last_name=_require(document, "lastName", ""),
            email=_require(document, "email", ""),
            address=Address.from_document(_require(document, "address", "")),
            created_at=_require(document, "createdAt", ""),
        )

    def to_document(self) -> Dict[str, Any]:
        """Document shape written to the source collection"""
        return {
            "_id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "address": self.address.to_document(),
            "createdAt": self.created_at,
        }

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe representation for the query API"""
        created_at = self.created_at
        return {
            "_id": str(self.id),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "address": self.address.to_document(),
            "createdAt": created_at.isoformat() if isinstance(created_at, datetime) else str(created_at),
        }


@dataclass(frozen=True)
class AnonymizedCustomer:
    """
    Privacy-safe derivative of a Customer written to the destination collection

    The id is the string form of the originating Customer's id and created_at
    is copied verbatim; every other field is replaced.
    """

    id: str
    first_name: str
    last_name: str
    email: str
    address: Address
    created_at: datetime

    def to_document(self) -> Dict[str, Any]:
        # A repeated id is rejected by the store's unique _id index, not deduplicated here
        return {
            "_id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "address": self.address.to_document(),
            "createdAt": self.created_at,
        }
