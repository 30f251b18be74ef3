"""
Customer Anonymization
Replaces sensitive values with random opaque tokens
"""

import secrets
import string

import structlog

from src.models.customer import Address, AnonymizedCustomer, Customer

logger = structlog.get_logger(__name__)

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 8

# Used when an email has no "@": the whole value becomes the local part
FALLBACK_EMAIL_DOMAIN = "example"
EMAIL_SUFFIX = ".com"


def anonymize_token(original: str) -> str:
    """
    Replace a value with a random opaque token

    The token is drawn uniformly from [a-zA-Z0-9] and has no relationship to
    the input, so the mapping is neither deterministic nor reversible.

    Args:
        original: Value being replaced (not used to derive the token)

    Returns:
        8-character token
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def anonymize_email(original: str) -> str:
    """
    Anonymize an email address

    The local part becomes a token. The domain keeps everything before its
    last dot and always ends in ".com", whatever the original suffix was.

    Args:
        original: Email address

    Returns:
        Anonymized email, e.g. "x7Kp02Qa@example.com" for "jane.doe@example.com"
    """
    local_part, separator, domain = original.partition("@")

    if not separator:
        logger.debug("Email without '@', using fallback domain")
        domain_part = FALLBACK_EMAIL_DOMAIN
    else:
        domain_part = domain.rsplit(".", 1)[0] if "." in domain else domain

    return f"{anonymize_token(local_part)}@{domain_part}{EMAIL_SUFFIX}"


def anonymize_address(original: Address) -> Address:
    """Tokenize every address field independently, empty ones included"""
    return Address(
        line1=anonymize_token(original.line1),
        line2=anonymize_token(original.line2),
        postcode=anonymize_token(original.postcode),
        city=anonymize_token(original.city),
        state=anonymize_token(original.state),
        country=anonymize_token(original.country),
    )


def anonymize_customer(customer: Customer) -> AnonymizedCustomer:
    """
    Build the anonymized derivative of a customer

    Args:
        customer: Source record

    Returns:
        AnonymizedCustomer with the same id (as string) and created_at
    """
    return AnonymizedCustomer(
        id=str(customer.id),
        first_name=anonymize_token(customer.first_name),
        last_name=anonymize_token(customer.last_name),
        email=anonymize_email(customer.email),
        address=anonymize_address(customer.address),
        created_at=customer.created_at,
    )
