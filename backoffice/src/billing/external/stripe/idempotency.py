"""
Stripe Idempotency Key Generation

Generates deterministic idempotency keys for Stripe API calls so a retried
request inside the same time bucket cannot create a second object.
"""

import hashlib
from datetime import datetime, timezone


def generate_idempotency_key(operation: str, tenant_id: str, *parts: str, time_bucket_minutes: int = 5) -> str:
    """
    Generate a unique idempotency key.

    Args:
        operation: Operation type (e.g., 'subscription_create')
        tenant_id: Tenant identifier
        *parts: Additional values that distinguish the request
        time_bucket_minutes: Time window for key reuse

    Returns:
        40-character hex idempotency key
    """
    timestamp_bucket = int(datetime.now(timezone.utc).timestamp() // (time_bucket_minutes * 60))
    raw = ':'.join([operation, tenant_id, *[str(p) for p in parts], str(timestamp_bucket)])
    return hashlib.sha256(raw.encode()).hexdigest()[:40]
