# backend/tutorcart/services/checkout_service.py
"""
Checkout Handoff

Freezes a cart into a ``ReservationSnapshot`` keyed by a payment reference.
The settlement step later turns that snapshot into appointments; it never
reads the cart, which may have expired or changed by then.

Prices are recomputed here rather than trusted from the cart. Under the
``reprice`` policy every line is charged at the current course rate; under
``honor_quote`` the add-time quote is kept. Tutor earnings always come from
the tutor's current rate.

No hold is acquired or extended here. The processor is called outside any
database transaction.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
import ulid

from ..core.clock import Clock
from ..core.config import CheckoutPricePolicy, settings
from ..core.enums import CouponType
from ..core.exceptions import (
    CouponInvalidException,
    DomainException,
    EmptyCartException,
    InactiveEntityException,
    NotFoundException,
)
from ..core.identity import Owner
from ..models.checkout import CheckoutSnapshot
from ..repositories import RepositoryFactory
from ..repositories.checkout_snapshot_repository import CheckoutSnapshotRepository
from ..schemas.checkout import (
    ReservationSnapshot,
    SnapshotCoupon,
    SnapshotHoldReport,
    SnapshotItem,
    SnapshotItemHoldState,
)
from .base import BaseService
from .cart_service import CartService
from .payment_processor import PaymentIntentResult, PaymentProcessor, StripePaymentProcessor
from .pricing_calculator import (
    margin,
    margin_percentage,
    order_total,
    student_price,
    to_money,
    tutor_earnings,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def new_payment_reference() -> str:
    return f"snap_{ulid.ULID()}"


class CheckoutService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        payment_processor: Optional[PaymentProcessor] = None,
        cart_service: Optional[CartService] = None,
        price_policy: Optional[CheckoutPricePolicy] = None,
        currency: Optional[str] = None,
        snapshot_repository: Optional[CheckoutSnapshotRepository] = None,
    ):
        super().__init__(db, clock)
        self.cart_service = cart_service or CartService(db, self.clock)
        self.payment_processor: PaymentProcessor = payment_processor or StripePaymentProcessor()
        self.price_policy: CheckoutPricePolicy = price_policy or settings.checkout_price_policy
        self.currency = (currency or settings.currency).lower()
        self.snapshot_repository = (
            snapshot_repository or RepositoryFactory.create_checkout_snapshot_repository(db)
        )

    @BaseService.measure_operation("snapshot")
    def snapshot(self, owner: Owner, payment_reference: Optional[str] = None) -> ReservationSnapshot:
        """
        Build and persist the snapshot for the owner's cart.

        Raises:
            EmptyCartException: nothing left to buy after lazy repair
            InactiveEntityException: a course or tutor was deactivated
            CouponInvalidException: the attached coupon no longer validates
        """
        reference = payment_reference or new_payment_reference()

        def _snapshot() -> Tuple[Optional[ReservationSnapshot], Optional[DomainException]]:
            snapshot, error = self._build(owner, reference)
            if snapshot is not None:
                self._persist(snapshot)
            return snapshot, error

        snapshot, error = self.run_in_transaction("checkout.snapshot", _snapshot)
        if error is not None:
            raise error
        self._log_created(snapshot)
        return snapshot

    @BaseService.measure_operation("begin_checkout")
    def begin_checkout(self, owner: Owner) -> Tuple[ReservationSnapshot, PaymentIntentResult]:
        """
        Snapshot the cart, open a payment intent, and store the snapshot under
        the processor's reference.

        The provisional snapshot reference doubles as the processor idempotency
        key. It is minted per call, so idempotency covers retries of this one
        call only: a client that submits checkout twice opens two intents. A
        zero total skips the processor and keeps the local reference.
        """
        provisional = new_payment_reference()
        snapshot, error = self.run_in_transaction(
            "checkout.build_snapshot", lambda: self._build(owner, provisional)
        )
        if error is not None:
            raise error

        if snapshot.total_cents == 0:
            intent = PaymentIntentResult(
                reference=provisional, client_secret=None, status="no_payment_required"
            )
        else:
            intent = self.payment_processor.create_payment_intent(
                amount_cents=snapshot.total_cents,
                currency=snapshot.currency,
                metadata={
                    "snapshot_reference": provisional,
                    "owner": owner.key,
                    "item_count": str(len(snapshot.items)),
                },
                idempotency_key=provisional,
            )

        final = snapshot.model_copy(update={"payment_reference": intent.reference})
        self.run_in_transaction("checkout.persist_snapshot", lambda: self._persist(final))
        self._log_created(final)
        return final, intent

    def get_snapshot(self, payment_reference: str) -> ReservationSnapshot:
        """Snapshot lookup for the settlement webhook."""
        row = self.snapshot_repository.get_by_reference(payment_reference)
        if row is None:
            raise NotFoundException(
                "Checkout snapshot not found",
                code="SNAPSHOT_NOT_FOUND",
                details={"payment_reference": payment_reference},
            )
        return ReservationSnapshot.model_validate_json(row.payload)

    def hold_report(self, payment_reference: str) -> SnapshotHoldReport:
        """
        Whether each snapshot item's hold is still live and owned by the buyer.

        Settlement uses this to decide whether a slot must be re-validated
        before creating the appointment.
        """
        snapshot = self.get_snapshot(payment_reference)
        owner = Owner(snapshot.owner_type, snapshot.owner_id)
        now = self.clock.now()
        hold_repository = self.cart_service.hold_repository

        states: List[SnapshotItemHoldState] = []
        for item in snapshot.items:
            hold = hold_repository.get_owned(owner, item.tutor_id, item.start_at)
            live = hold is not None and hold.is_live(now) and hold.duration_min == item.duration_min
            states.append(
                SnapshotItemHoldState(
                    cart_item_id=item.cart_item_id,
                    tutor_id=item.tutor_id,
                    start_at=item.start_at,
                    hold_live=live,
                    hold_expires_at=hold.expires_at if hold is not None else None,
                )
            )
        return SnapshotHoldReport(
            payment_reference=payment_reference,
            all_live=all(state.hold_live for state in states),
            items=states,
        )

    # Internals

    def _build(
        self, owner: Owner, reference: str
    ) -> Tuple[Optional[ReservationSnapshot], Optional[DomainException]]:
        """
        Compute the snapshot inside the current transaction.

        Failures are returned rather than raised so that lazy repair and coupon
        deactivation still commit.
        """
        view = self.cart_service.build_view(owner)
        if view.is_empty:
            return None, EmptyCartException()
        if view.coupon_rejection is not None:
            return None, CouponInvalidException(view.coupon_rejection, code=view.coupon.code)

        catalog = self.cart_service.catalog_repository
        courses = catalog.get_courses(item.course_id for item in view.items)
        tutors = catalog.get_tutors(item.tutor_id for item in view.items)

        items: List[SnapshotItem] = []
        for cart_item in view.items:
            course = courses.get(cart_item.course_id)
            tutor = tutors.get(cart_item.tutor_id)
            if course is None or not course.is_active:
                return None, InactiveEntityException("course", cart_item.course_id)
            if tutor is None or not tutor.is_active:
                return None, InactiveEntityException("tutor", cart_item.tutor_id)

            quoted = to_money(cart_item.unit_price_cad)
            if self.price_policy == "reprice":
                price = student_price(course.student_rate_cad, cart_item.duration_min)
            else:
                price = quoted
            if price != quoted:
                # Keep the displayed cart in line with what is charged
                cart_item.unit_price_cad = price
                cart_item.line_total_cad = price
                self.logger.info(
                    "checkout.repriced",
                    extra={"item_id": cart_item.id, "quoted": str(quoted), "price": str(price)},
                )
            earnings = tutor_earnings(tutor.hourly_base_rate_cad, cart_item.duration_min)
            items.append(
                SnapshotItem(
                    cart_item_id=cart_item.id,
                    tutor_id=cart_item.tutor_id,
                    course_id=cart_item.course_id,
                    start_at=cart_item.start_at,
                    end_at=cart_item.end_at,
                    duration_min=cart_item.duration_min,
                    quoted_price=quoted,
                    price=price,
                    repriced=price != quoted,
                    tutor_earnings=earnings,
                    margin=margin(price, earnings),
                    margin_pct=margin_percentage(price, earnings),
                )
            )
        self.db.flush()

        coupon = view.coupon
        coupon_type = CouponType(coupon.type) if coupon is not None else None
        totals = order_total(
            [item.price for item in items],
            coupon_type,
            coupon.value if coupon is not None else None,
        )
        earnings_total = sum((item.tutor_earnings for item in items), ZERO)

        snapshot = ReservationSnapshot(
            payment_reference=reference,
            owner_type=owner.kind,
            owner_id=owner.id,
            currency=self.currency,
            price_policy=self.price_policy,
            items=items,
            coupon=(
                SnapshotCoupon(
                    code=coupon.code,
                    type=coupon_type,
                    value=to_money(coupon.value),
                    discount=totals.discount,
                )
                if coupon is not None
                else None
            ),
            subtotal=totals.subtotal,
            discount=totals.discount,
            total=totals.total,
            total_cents=totals.total_cents,
            tutor_earnings_total=earnings_total,
            margin_total=totals.total - earnings_total,
            created_at=self.clock.now(),
        )
        return snapshot, None

    def _persist(self, snapshot: ReservationSnapshot) -> CheckoutSnapshot:
        """Store the snapshot; the same reference overwrites, keeping retries idempotent."""
        payload = snapshot.model_dump_json()
        row = self.snapshot_repository.get_by_reference(snapshot.payment_reference)
        if row is None:
            return self.snapshot_repository.create(
                payment_reference=snapshot.payment_reference,
                owner_type=snapshot.owner_type.value,
                owner_id=snapshot.owner_id,
                total_cents=snapshot.total_cents,
                currency=snapshot.currency,
                payload=payload,
            )
        row.total_cents = snapshot.total_cents
        row.payload = payload
        self.db.flush()
        return row

    def _log_created(self, snapshot: ReservationSnapshot) -> None:
        self.logger.info(
            "checkout.snapshot_created",
            extra={
                "payment_reference": snapshot.payment_reference,
                "owner": f"{snapshot.owner_type.value}:{snapshot.owner_id}",
                "items": len(snapshot.items),
                "total_cents": snapshot.total_cents,
                "price_policy": snapshot.price_policy,
            },
        )
