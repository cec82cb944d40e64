"""
Gateway callback signatures.

The checkout page signs ``"{order_ref}|{payment_ref}"`` with HMAC-SHA256
under the shared callback secret and sends the hex digest along with the
references the gateway returned. The gateway adapter recomputes it, compares
in constant time and then confirms the references with the gateway itself.
"""

import hashlib
import hmac
from typing import Optional


def canonical_payload(order_ref: str, payment_ref: str) -> bytes:
    return f"{order_ref}|{payment_ref}".encode("utf-8")


def compute_callback_signature(secret: str, order_ref: str, payment_ref: str) -> str:
    """Hex HMAC-SHA256 of the canonical callback payload."""
    return hmac.new(
        secret.encode("utf-8"),
        canonical_payload(order_ref, payment_ref),
        hashlib.sha256,
    ).hexdigest()


def verify_callback_signature(
    secret: str,
    order_ref: Optional[str],
    payment_ref: Optional[str],
    signature: Optional[str],
) -> bool:
    """
    Check a callback signature.

    Returns False when any input is missing; never raises on bad input.
    """
    if not secret or not order_ref or not payment_ref or not signature:
        return False

    expected = compute_callback_signature(secret, order_ref, payment_ref)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))
