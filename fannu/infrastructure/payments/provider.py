# fannu/infrastructure/payments/provider.py

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from fannu.domain.exceptions import InvalidSignatureError
from fannu.domain.payments import PaymentOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    psp_ref: str
    checkout_url: Optional[str] = None
    # Set when the provider settles synchronously; None means "wait for the webhook".
    outcome: Optional[PaymentOutcome] = None


class PaymentProvider(Protocol):
    name: str

    def create_checkout(
        self,
        psp_ref: str,
        amount: int,
        currency: str,
        receipt_id: str,
    ) -> CheckoutSession:
        ...


class SimulatedPaymentProvider:
    """
    Stand-in for a real PSP.

    PAYMENT_SIMULATED_OUTCOME selects the behaviour: "success" (default) and
    "failed" settle instantly, "deferred" leaves the payment PENDING until
    a webhook arrives.
    """

    name = "SIMULATED"

    def __init__(self, outcome: Optional[str] = None):
        self.outcome = (outcome or os.getenv("PAYMENT_SIMULATED_OUTCOME", "success")).lower()
        if self.outcome not in {"success", "failed", "deferred"}:
            raise ValueError(f"Unknown simulated payment outcome: {self.outcome}")

    def create_checkout(
        self,
        psp_ref: str,
        amount: int,
        currency: str,
        receipt_id: str,
    ) -> CheckoutSession:
        logger.info(
            "Simulated checkout %s for %s %s (receipt %s), outcome=%s",
            psp_ref,
            amount,
            currency,
            receipt_id,
            self.outcome,
        )
        if self.outcome == "deferred":
            return CheckoutSession(psp_ref=psp_ref)
        return CheckoutSession(psp_ref=psp_ref, outcome=PaymentOutcome(self.outcome))


def webhook_secret() -> str:
    return os.getenv("PAYMENT_WEBHOOK_SECRET", "")


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> None:
    """
    Check X-Signature against HMAC-SHA256(PAYMENT_WEBHOOK_SECRET, body).

    With no secret configured every delivery is accepted (simulated mode).
    """
    secret = webhook_secret()
    if not secret:
        return

    expected = sign_payload(secret, body)
    if not signature or not hmac.compare_digest(expected, signature):
        raise InvalidSignatureError("Invalid webhook signature")


def hash_payload(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()
