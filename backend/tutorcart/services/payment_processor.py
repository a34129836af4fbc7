# backend/tutorcart/services/payment_processor.py
"""
Payment Processor adapter.

Checkout hands the processor a final total in minor currency units and gets
back a payment reference. Capture and settlement happen elsewhere; this
module only opens the payment intent.
"""

from dataclasses import dataclass
import logging
from typing import Dict, Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import ServiceException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntentResult:
    reference: str
    client_secret: Optional[str]
    status: str


class PaymentProcessor(Protocol):
    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntentResult: ...


class StripePaymentProcessor:
    """Opens Stripe PaymentIntents. Refuses to run without a secret key."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntentResult:
        if not self.configured:
            raise ServiceException(
                "Payments are not configured",
                code="PAYMENTS_NOT_CONFIGURED",
            )

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            self.logger.error(
                f"Stripe error creating payment intent: {str(e)}",
                extra={"idempotency_key": idempotency_key, "amount_cents": amount_cents},
            )
            raise ServiceException(
                "The payment processor rejected the request",
                code="PAYMENT_PROCESSOR_ERROR",
                details={"processor_message": getattr(e, "user_message", None) or str(e)},
            ) from e

        self.logger.info(
            f"Created payment intent {intent.id}",
            extra={"amount_cents": amount_cents, "currency": currency},
        )
        return PaymentIntentResult(
            reference=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
        )
