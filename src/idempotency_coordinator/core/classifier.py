"""Key extraction and eligibility classification.

Every inbound request is classified before anything touches the store. A
request is eligible only when all of these hold:

1. Its method is a mutating method (POST, PUT by default)
2. It carries the idempotency header (matched case-insensitively)
3. An authenticated caller was resolved for it, and its id fits the
   owner column

The owner is always the authenticated principal and never a value from the
request body, so a client cannot address another caller's idempotency slots.

Examples:
    >>> config = IdempotencyConfig()
    >>> decision = classify_request(
    ...     method="POST",
    ...     headers={"idempotency-key": "Deposit-001"},
    ...     principal="user-42",
    ...     config=config,
    ... )
    >>> decision.owner, decision.key
    ('user-42', 'deposit-001')
"""

from idempotency_coordinator.config import MAX_STORED_OWNER_LENGTH, IdempotencyConfig
from idempotency_coordinator.exceptions import InvalidKeyError
from idempotency_coordinator.models import EligibilityDecision, IneligibleReason
from idempotency_coordinator.utils.headers import get_header_value


def extract_key(headers: dict[str, str], config: IdempotencyConfig) -> str | None:
    """Extract the raw idempotency key from request headers.

    Returns:
        The stripped header value, or None if the header is absent or blank.
    """
    value = get_header_value(headers, config.header_name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_key(key: str, config: IdempotencyConfig) -> str:
    """Normalize and validate a raw idempotency key.

    Raises:
        InvalidKeyError: If the key is blank or longer than max_key_length.
    """
    normalized = key.strip()
    if config.normalize_key_case:
        normalized = normalized.lower()

    if not normalized:
        raise InvalidKeyError("Idempotency key cannot be empty", key=key)

    if len(normalized) > config.max_key_length:
        raise InvalidKeyError(
            f"Idempotency key exceeds maximum length of {config.max_key_length} characters",
            key=key,
        )

    return normalized


def classify_request(
    method: str,
    headers: dict[str, str],
    principal: str | None,
    config: IdempotencyConfig,
) -> EligibilityDecision:
    """Decide whether idempotency applies to a request.

    Args:
        method: HTTP method of the request
        headers: Request headers
        principal: Authenticated caller id, or None for anonymous requests
        config: Configuration object

    Returns:
        An eligible decision carrying (owner, key), or an ineligible one
        carrying the reason.
    """
    if not config.is_method_enabled(method):
        return EligibilityDecision.ineligible(IneligibleReason.METHOD)

    raw_key = extract_key(headers, config)
    if raw_key is None:
        return EligibilityDecision.ineligible(IneligibleReason.MISSING_KEY)

    if not principal:
        return EligibilityDecision.ineligible(IneligibleReason.ANONYMOUS)

    if len(principal) > MAX_STORED_OWNER_LENGTH:
        return EligibilityDecision.ineligible(IneligibleReason.INVALID_OWNER)

    try:
        key = normalize_key(raw_key, config)
    except InvalidKeyError:
        return EligibilityDecision.ineligible(IneligibleReason.INVALID_KEY)

    return EligibilityDecision.eligible(owner=principal, key=key)
