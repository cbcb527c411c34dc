"""Bearer token authentication for /api/notify (hook helper -> daemon).

Inbound SMS webhooks are verified in the server with Twilio's own
RequestValidator.
"""

import hmac
from typing import Optional

__all__ = ["check_bearer"]


def check_bearer(header: Optional[str], expected: Optional[str]) -> bool:
    """Check an Authorization header against the configured token.

    The comparison is constant-time.

    Args:
        header: Raw Authorization header value.
        expected: Configured token. Nothing is accepted if unset.

    Returns:
        True if the header is "Bearer <expected>".
    """
    if not expected or not header:
        return False

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return False

    return hmac.compare_digest(token.strip().encode(), expected.encode())
