"""Payment verification against the processor's signature scheme.

The client completes payment with the processor before submitting the
order and sends back the processor's ``order_id``, ``payment_id`` and
``signature``. The signature is an HMAC-SHA256 of ``order_id|payment_id``
keyed with the shared signing secret, so verification is a local
computation; the processor is never called from here.
"""

import hashlib
import hmac
from typing import Optional

from .domain import PaymentError, PaymentMethod, PaymentProof, PaymentStatus


def sign(secret: str, order_id: str, payment_id: str) -> str:
    """Return the hex signature the processor issues for a payment."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """Decide the payment status an order may be committed with.

    Cash-on-delivery always commits as ``PENDING``. Every other method must
    carry a complete and genuine proof; anything else is rejected before the
    commit transaction opens, so a failed verification never touches stock.
    """

    def __init__(self, secret: str):
        self.secret = secret

    def verify(self, method: PaymentMethod, proof: Optional[PaymentProof]) -> PaymentStatus:
        if method == PaymentMethod.COD:
            return PaymentStatus.PENDING

        if proof is None or not proof.complete:
            raise PaymentError("Payment details missing for online order", code="PAYMENT_PROOF_MISSING")

        expected = sign(self.secret, proof.order_id, proof.payment_id)
        if not hmac.compare_digest(expected, proof.signature):
            raise PaymentError(
                "Payment verification failed (Signature Mismatch)", code="PAYMENT_SIGNATURE_MISMATCH"
            )
        return PaymentStatus.PAID
