# backend/tutorcart/routes/v1/cart.py
"""
Cart routes - API v1

Versioned cart endpoints under /api/v1/cart.
All business logic delegated to CartService.

Endpoints:
    GET /                      → View cart (after lazy repair)
    POST /items                → Add one session
    POST /items/batch          → Add several sessions, best-effort
    DELETE /items/{item_id}    → Remove an item and release its hold
    POST /coupon               → Attach a coupon
    DELETE /coupon             → Detach the coupon
    POST /holds/extend         → Keep the cart's holds alive
    POST /merge                → Re-home the guest cart onto the user cart
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_cart_service, get_merge_owners, get_owner
from ...core.config import settings
from ...core.enums import CouponType
from ...core.exceptions import DomainException
from ...core.identity import Owner
from ...schemas.cart import (
    BatchSession,
    CartBatchResponse,
    CartCouponResponse,
    CartItemCreate,
    CartItemRemovedResponse,
    CartItemResponse,
    CartItemsBatchCreate,
    CartMergeResponse,
    CartResponse,
    CouponApply,
    HoldsExtendedResponse,
    SkippedSession,
)
from ...services.cart_service import CartService, CartView, SessionCandidate
from ...services.pricing_calculator import duration_label, to_money

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["cart-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _to_response(view: CartView) -> CartResponse:
    coupon = None
    if view.coupon is not None:
        coupon = CartCouponResponse(
            code=view.coupon.code,
            type=CouponType(view.coupon.type),
            value=to_money(view.coupon.value),
            rejection=view.coupon_rejection,
        )
    return CartResponse(
        cart_id=view.cart_id,
        owner_type=view.owner.kind,
        items=[
            CartItemResponse(
                id=item.id,
                course_id=item.course_id,
                tutor_id=item.tutor_id,
                start_at=item.start_at,
                end_at=item.end_at,
                duration_min=item.duration_min,
                duration_label=duration_label(item.duration_min),
                unit_price=to_money(item.unit_price_cad),
                line_total=to_money(item.line_total_cad),
                hold_expires_at=view.hold_expiry.get(item.id),
            )
            for item in view.items
        ],
        coupon=coupon,
        subtotal=view.totals.subtotal,
        discount=view.totals.discount,
        total=view.totals.total,
        currency=settings.currency,
        repaired_count=view.repaired_count,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    """
    Get the caller's cart.

    Items whose slot was booked elsewhere, or whose hold lapsed, are purged
    before the cart is returned; ``repaired_count`` reports how many.
    """
    try:
        view = await asyncio.to_thread(cart_service.view, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _to_response(view)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    payload: CartItemCreate,
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    """
    Add one session to the cart, holding its slot.

    Raises:
        HTTPException: 409 if the slot is held or booked, or already in the cart
    """
    try:
        await asyncio.to_thread(
            cart_service.add_item,
            owner,
            course_id=payload.course_id,
            tutor_id=payload.tutor_id,
            start_at=payload.start_at,
            duration_min=payload.duration_min,
        )
        view = await asyncio.to_thread(cart_service.view, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _to_response(view)


def _candidate(session: BatchSession) -> SessionCandidate:
    return SessionCandidate(session.tutor_id, session.start_at, session.duration_min)


@router.post("/items/batch", response_model=CartBatchResponse)
async def add_cart_items_batch(
    payload: CartItemsBatchCreate,
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartBatchResponse:
    """Add several sessions of one course. Conflicting sessions are skipped, not fatal."""
    try:
        result = await asyncio.to_thread(
            cart_service.add_items_batch,
            owner,
            payload.course_id,
            [_candidate(session) for session in payload.sessions],
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return CartBatchResponse(
        added_count=result.added_count,
        skipped_count=result.skipped_count,
        added_item_ids=[item.id for item in result.added_items],
        skipped=[
            SkippedSession(
                tutor_id=skip.tutor_id,
                start_at=skip.start_at,
                duration_min=skip.duration_min,
                reason=skip.reason,
            )
            for skip in result.skipped
        ],
    )


@router.delete("/items/{item_id}", response_model=CartItemRemovedResponse)
async def remove_cart_item(
    item_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartItemRemovedResponse:
    try:
        await asyncio.to_thread(cart_service.remove_item, owner, item_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return CartItemRemovedResponse(message="Item removed from cart", item_id=item_id)


@router.post("/coupon", response_model=CartResponse)
async def apply_coupon(
    payload: CouponApply,
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    """
    Attach a coupon to the cart.

    Raises:
        HTTPException: 422 with ``details.reason`` when the code is not usable
    """
    try:
        await asyncio.to_thread(cart_service.attach_coupon, owner, payload.code)
        view = await asyncio.to_thread(cart_service.view, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _to_response(view)


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await asyncio.to_thread(cart_service.detach_coupon, owner)
        view = await asyncio.to_thread(cart_service.view, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _to_response(view)


@router.post("/holds/extend", response_model=HoldsExtendedResponse)
async def extend_holds(
    owner: Owner = Depends(get_owner),
    cart_service: CartService = Depends(get_cart_service),
) -> HoldsExtendedResponse:
    """Refresh the TTL of every live hold behind the cart; call while the shopper is active."""
    try:
        extended, expires_at = await asyncio.to_thread(cart_service.extend_all_holds, owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return HoldsExtendedResponse(extended_count=extended, expires_at=expires_at)


@router.post("/merge", response_model=CartMergeResponse)
async def merge_guest_cart(
    owners: tuple[Owner, Owner] = Depends(get_merge_owners),
    cart_service: CartService = Depends(get_cart_service),
) -> CartMergeResponse:
    """Move the session cart's items onto the user cart after login."""
    session_owner, user_owner = owners
    try:
        result = await asyncio.to_thread(cart_service.merge_guest_cart, session_owner, user_owner)
    except DomainException as exc:
        handle_domain_exception(exc)
    return CartMergeResponse(added_count=result.added_count, skipped_count=result.skipped_count)
