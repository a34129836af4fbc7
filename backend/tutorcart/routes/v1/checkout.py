# backend/tutorcart/routes/v1/checkout.py
"""
Checkout routes - API v1

Endpoints:
    POST /snapshot                        → Snapshot the cart and open a payment intent
    GET /snapshot/{payment_reference}     → Snapshot lookup for settlement
    GET /snapshot/{payment_reference}/holds → Whether the snapshot's holds are still live

The two GET endpoints serve the settlement worker and are keyed by payment
reference alone; they are not meant for shoppers.
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_checkout_service, get_owner
from ...core.exceptions import DomainException
from ...core.identity import Owner
from ...schemas.checkout import CheckoutSessionResponse, ReservationSnapshot, SnapshotHoldReport
from ...services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout-v1"])

REFERENCE_PATTERN = r"^[A-Za-z0-9_\-]{1,255}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/snapshot",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout_snapshot(
    owner: Owner = Depends(get_owner),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutSessionResponse:
    """
    Freeze the cart into a reservation snapshot and open a payment intent.

    Raises:
        HTTPException: 422 for an empty cart, an invalid coupon, or an
            inactive course/tutor
    """
    try:
        snapshot, intent = await asyncio.to_thread(checkout_service.begin_checkout, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return CheckoutSessionResponse(
        payment_reference=intent.reference,
        client_secret=intent.client_secret,
        status=intent.status,
        snapshot=snapshot,
    )


@router.get("/snapshot/{payment_reference}", response_model=ReservationSnapshot)
async def get_checkout_snapshot(
    payment_reference: str = Path(..., pattern=REFERENCE_PATTERN),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> ReservationSnapshot:
    """
    Snapshot lookup for the settlement webhook.

    Not identity-checked: the payment reference is the capability. Expose this
    only on the internal network the settlement worker calls from.
    """
    try:
        return await asyncio.to_thread(checkout_service.get_snapshot, payment_reference)
    except DomainException as exc:
        handle_domain_exception(exc)


@router.get("/snapshot/{payment_reference}/holds", response_model=SnapshotHoldReport)
async def get_snapshot_hold_report(
    payment_reference: str = Path(..., pattern=REFERENCE_PATTERN),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> SnapshotHoldReport:
    """Per-item hold state for settlement; internal like the snapshot lookup."""
    try:
        return await asyncio.to_thread(checkout_service.hold_report, payment_reference)
    except DomainException as exc:
        handle_domain_exception(exc)
