# backend/tutorcart/services/cart_service.py
"""
Cart Service

Owner-scoped carts whose line items are each shadowed by one live slot hold.

Handles:
- Single and batch add (the hold and the item are written together)
- Item removal (the item and its hold go together)
- Coupon attach/detach
- Lazy repair on read: items whose hold is gone, or whose slot was booked
  through another channel, are purged before the cart is shown
- Hold extension while the shopper is active
- Re-homing a guest cart onto the user's cart at login
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.enums import CouponRejection, CouponType, HoldConflictReason, OwnerType
from ..core.exceptions import (
    CartItemNotFoundException,
    CatalogNotFoundException,
    CouponInvalidException,
    DomainException,
    DuplicateItemException,
    InactiveEntityException,
    ValidationException,
)
from ..core.identity import Owner
from ..models.cart import Cart, CartItem
from ..models.catalog import Course, Tutor
from ..models.coupon import Coupon, normalize_coupon_code
from ..models.slot_hold import SlotHold
from ..models.types import ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.cart_repository import CartRepository
from ..repositories.catalog_repository import CatalogRepository
from .base import BaseService
from .coupon_validator import CouponValidator
from .pricing_calculator import OrderTotals, duration_multiplier, order_total, student_price
from .slot_hold_manager import HoldConflict, SlotHoldManager

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, datetime]


@dataclass(frozen=True)
class SessionCandidate:
    """One requested session in a batch add."""

    tutor_id: str
    start_at: datetime
    duration_min: int

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_min)

    @property
    def slot(self) -> SlotKey:
        return (self.tutor_id, self.start_at)


@dataclass(frozen=True)
class SkippedCandidate:
    tutor_id: str
    start_at: datetime
    duration_min: int
    reason: str


@dataclass
class BatchAddResult:
    added_count: int = 0
    skipped_count: int = 0
    added_items: List[CartItem] = field(default_factory=list)
    skipped: List[SkippedCandidate] = field(default_factory=list)

    def skip(self, candidate: SessionCandidate, reason: str) -> None:
        self.skipped.append(
            SkippedCandidate(candidate.tutor_id, candidate.start_at, candidate.duration_min, reason)
        )
        self.skipped_count += 1

    def add(self, item: CartItem) -> None:
        self.added_items.append(item)
        self.added_count += 1


@dataclass(frozen=True)
class MergeResult:
    added_count: int
    skipped_count: int


@dataclass
class CartView:
    """A repaired cart plus totals computed from the stored quotes."""

    owner: Owner
    cart_id: Optional[str]
    items: List[CartItem]
    hold_expiry: Dict[str, datetime]
    coupon: Optional[Coupon]
    coupon_rejection: Optional[CouponRejection]
    totals: OrderTotals
    repaired_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.items


class _SlotLost(Exception):
    """A candidate lost its slot between the set-based check and the claim."""

    def __init__(self, conflict: HoldConflict):
        self.conflict = conflict
        super().__init__(conflict.reason.value)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


class CartService(BaseService):
    """
    Service layer for cart operations.

    Every write runs in one transaction via ``run_in_transaction``; the hold
    and the item it shadows are always committed or rolled back together.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        hold_manager: Optional[SlotHoldManager] = None,
        coupon_validator: Optional[CouponValidator] = None,
        cart_repository: Optional[CartRepository] = None,
        catalog_repository: Optional[CatalogRepository] = None,
    ):
        super().__init__(db, clock)
        self.hold_manager = hold_manager or SlotHoldManager(db, self.clock)
        self.coupon_validator = coupon_validator or CouponValidator(db, self.clock)
        self.cart_repository = cart_repository or RepositoryFactory.create_cart_repository(db)
        self.catalog_repository = catalog_repository or RepositoryFactory.create_catalog_repository(db)
        self.hold_repository = self.hold_manager.repository
        self.conflict_repository = self.hold_manager.conflict_repository

    # Catalog lookups

    def require_course(self, course_id: str) -> Course:
        course = self.catalog_repository.get_course(course_id)
        if course is None:
            raise CatalogNotFoundException("course", course_id)
        if not course.is_active:
            raise InactiveEntityException("course", course_id)
        return course

    def require_tutor(self, tutor_id: str) -> Tutor:
        tutor = self.catalog_repository.get_tutor(tutor_id)
        if tutor is None:
            raise CatalogNotFoundException("tutor", tutor_id)
        if not tutor.is_active:
            raise InactiveEntityException("tutor", tutor_id)
        return tutor

    # Items

    @BaseService.measure_operation("add_item")
    def add_item(
        self,
        owner: Owner,
        course_id: str,
        tutor_id: str,
        start_at: datetime,
        duration_min: int,
    ) -> CartItem:
        """
        Add one session: price it, claim its hold and create the item together.

        Re-adding the same (tutor, start) with another duration updates the
        existing item and its hold in place, so the pair never drifts apart.
        An item whose hold lapsed is re-claimed: if the slot is still free the
        item is refreshed, otherwise the stale item is purged and the slot
        reported unavailable.

        Raises:
            InvalidDurationException, CatalogNotFoundException,
            InactiveEntityException, DuplicateItemException,
            SlotUnavailableException
        """
        duration_multiplier(duration_min)
        start_at = ensure_utc(start_at)

        def _add() -> Tuple[Optional[CartItem], Optional[DomainException]]:
            course = self.require_course(course_id)
            self.require_tutor(tutor_id)
            cart = self.cart_repository.get_or_create(owner)

            existing = self._find_item_for_slot(cart, tutor_id, start_at)
            stale = False
            if existing is not None:
                hold = self.hold_repository.get_owned(owner, tutor_id, start_at)
                stale = hold is None or not hold.is_live(self.clock.now())
                if not stale and existing.duration_min == duration_min:
                    raise DuplicateItemException(
                        details={
                            "item_id": existing.id,
                            "tutor_id": tutor_id,
                            "start_at": start_at.isoformat(),
                        }
                    )

            price = student_price(course.student_rate_cad, duration_min)
            result = self.hold_manager.claim(owner, tutor_id, course_id, start_at, duration_min)
            if isinstance(result, HoldConflict):
                if not stale:
                    raise result.to_exception()
                # The item lost its hold; drop it so the cart stops offering the slot
                self.cart_repository.remove_item(cart, existing)
                return None, result.to_exception()

            if existing is not None:
                existing.course_id = course_id
                existing.duration_min = duration_min
                existing.unit_price_cad = price
                existing.line_total_cad = price
                self.db.flush()
                return existing, None

            item = self.cart_repository.add_item(
                cart,
                course_id=course_id,
                tutor_id=tutor_id,
                start_at=start_at,
                duration_min=duration_min,
                unit_price=price,
            )
            return item, None

        item, error = self.run_in_transaction("cart.add_item", _add)
        if error is not None:
            self.logger.info(
                "cart.stale_item_purged",
                extra={"owner": owner.key, "tutor_id": tutor_id, "start_at": start_at.isoformat()},
            )
            raise error
        self.logger.info(
            "cart.item_added",
            extra={"owner": owner.key, "item_id": item.id, "tutor_id": tutor_id},
        )
        return item

    @BaseService.measure_operation("add_items_batch")
    def add_items_batch(
        self, owner: Owner, course_id: str, sessions: Sequence[SessionCandidate]
    ) -> BatchAddResult:
        """
        Best-effort add of several sessions of one course.

        Duplicates and conflicts are filtered for the whole batch with
        set-based queries; each remaining session is then claimed in its own
        savepoint so a slot lost to a concurrent shopper only skips that
        session. The accepted sessions commit together.
        """
        for session in sessions:
            duration_multiplier(session.duration_min)
        candidates = [
            SessionCandidate(s.tutor_id, ensure_utc(s.start_at), s.duration_min) for s in sessions
        ]

        def _batch() -> BatchAddResult:
            result = BatchAddResult()
            course = self.require_course(course_id)
            cart = self.cart_repository.get_or_create(owner)
            now = self.clock.now()

            in_cart = {(item.tutor_id, item.start_at) for item in cart.items}
            pending: List[SessionCandidate] = []
            seen: Set[SlotKey] = set()
            for candidate in candidates:
                if candidate.slot in seen:
                    result.skip(candidate, "duplicate_in_request")
                elif candidate.slot in in_cart:
                    result.skip(candidate, "duplicate")
                else:
                    pending.append(candidate)
                seen.add(candidate.slot)

            tutors = self.catalog_repository.get_tutors(c.tutor_id for c in pending)
            bookable: List[SessionCandidate] = []
            for candidate in pending:
                tutor = tutors.get(candidate.tutor_id)
                if tutor is None or not tutor.is_active:
                    result.skip(candidate, "tutor_unavailable")
                else:
                    bookable.append(candidate)

            held = self.hold_repository.find_live_held_by_others(
                owner, (c.slot for c in bookable), now
            )
            booked = self._booked_candidates(bookable)

            for candidate in bookable:
                if candidate.slot in held:
                    result.skip(candidate, HoldConflictReason.HELD_ELSEWHERE.value)
                    continue
                if candidate in booked:
                    result.skip(candidate, HoldConflictReason.BOOKED.value)
                    continue
                price = student_price(course.student_rate_cad, candidate.duration_min)
                try:
                    item = self._claim_and_add(
                        owner, cart, course_id, candidate.tutor_id, candidate.start_at,
                        candidate.duration_min, price,
                    )
                except _SlotLost as lost:
                    result.skip(candidate, lost.conflict.reason.value)
                    continue
                result.add(item)
            return result

        result = self.run_in_transaction("cart.add_items_batch", _batch)
        prometheus_metrics.record_batch_result(result.added_count, result.skipped_count)
        self.logger.info(
            "cart.batch_added",
            extra={
                "owner": owner.key,
                "course_id": course_id,
                "added": result.added_count,
                "skipped": result.skipped_count,
            },
        )
        return result

    @BaseService.measure_operation("remove_item")
    def remove_item(self, owner: Owner, item_id: str) -> None:
        """
        Delete a cart item and release its hold in one transaction.

        An item in someone else's cart is reported exactly like a missing one.
        """

        def _remove() -> None:
            cart = self.cart_repository.get_for_owner(owner)
            item = self.cart_repository.get_item(item_id)
            if cart is None or item is None or item.cart_id != cart.id:
                raise CartItemNotFoundException(item_id)
            self.hold_repository.delete_owned(owner, item.tutor_id, item.start_at)
            self.cart_repository.remove_item(cart, item)

        self.run_in_transaction("cart.remove_item", _remove)
        self.logger.info("cart.item_removed", extra={"owner": owner.key, "item_id": item_id})

    # Coupons

    @BaseService.measure_operation("attach_coupon")
    def attach_coupon(self, owner: Owner, code: str) -> Coupon:
        """
        Validate and attach a coupon. Redemption is not counted here.

        An expired coupon is deactivated even though the attach is refused, so
        the rejection is raised only after the transaction commits.
        """

        def _attach() -> Tuple[Optional[Coupon], Optional[CouponRejection]]:
            coupon, reason = self.coupon_validator.lookup_and_validate(code)
            if reason is not None:
                return coupon, reason
            cart = self.cart_repository.get_or_create(owner)
            self.cart_repository.set_coupon(cart, coupon)
            return coupon, None

        coupon, reason = self.run_in_transaction("cart.attach_coupon", _attach)
        if reason is not None:
            self.logger.info(
                "cart.coupon_rejected",
                extra={"owner": owner.key, "coupon_code": normalize_coupon_code(code), "reason": reason.value},
            )
            raise CouponInvalidException(reason, code=normalize_coupon_code(code))
        return coupon

    @BaseService.measure_operation("detach_coupon")
    def detach_coupon(self, owner: Owner) -> bool:
        """Remove the cart's coupon. Returns False when there was none."""

        def _detach() -> bool:
            cart = self.cart_repository.get_for_owner(owner)
            if cart is None or cart.coupon_id is None:
                return False
            self.cart_repository.set_coupon(cart, None)
            return True

        return self.run_in_transaction("cart.detach_coupon", _detach)

    # Reads

    @BaseService.measure_operation("view")
    def view(self, owner: Owner) -> CartView:
        """
        Return the cart after lazy repair.

        A coupon that no longer validates stays attached but contributes no
        discount; ``coupon_rejection`` says why.
        """
        return self.run_in_transaction("cart.view", lambda: self.build_view(owner))

    def build_view(self, owner: Owner) -> CartView:
        """Repair and total the cart inside the current transaction."""
        cart = self.cart_repository.get_for_owner(owner)
        if cart is None:
            return CartView(
                owner=owner,
                cart_id=None,
                items=[],
                hold_expiry={},
                coupon=None,
                coupon_rejection=None,
                totals=order_total([]),
            )

        now = self.clock.now()
        repaired, holds = self.repair(cart, owner, now)

        coupon = cart.coupon
        rejection = self.coupon_validator.validate(coupon) if coupon is not None else None
        coupon_type: Optional[CouponType] = None
        coupon_value: Optional[Decimal] = None
        if coupon is not None and rejection is None:
            coupon_type = CouponType(coupon.type)
            coupon_value = coupon.value

        items = list(cart.items)
        hold_expiry = {
            item.id: holds[(item.tutor_id, item.start_at)].expires_at
            for item in items
            if (item.tutor_id, item.start_at) in holds
        }
        return CartView(
            owner=owner,
            cart_id=cart.id,
            items=items,
            hold_expiry=hold_expiry,
            coupon=coupon,
            coupon_rejection=rejection,
            totals=order_total([item.line_total_cad for item in items], coupon_type, coupon_value),
            repaired_count=repaired,
        )

    def repair(self, cart: Cart, owner: Owner, now: datetime) -> Tuple[int, Dict[SlotKey, SlotHold]]:
        """
        Purge items that lost their hold or whose slot is now booked.

        Two queries regardless of cart size: the owner's holds, and blocking
        appointments over the cart's time span. Returns the purge count and
        the live holds of the surviving items.
        """
        items = list(cart.items)
        if not items:
            return 0, {}

        holds = {(hold.tutor_id, hold.start_at): hold for hold in self.hold_repository.find_for_owner(owner)}
        appointments = self.conflict_repository.find_blocking_in_range(
            {item.tutor_id for item in items},
            min(item.start_at for item in items),
            max(item.end_at for item in items),
        )

        stale: List[Tuple[CartItem, str]] = []
        for item in items:
            hold = holds.get((item.tutor_id, item.start_at))
            if hold is None or not hold.is_live(now) or hold.duration_min != item.duration_min:
                stale.append((item, "hold_lost"))
                continue
            if any(
                appointment.tutor_id == item.tutor_id
                and overlaps(appointment.start_at, appointment.end_at, item.start_at, item.end_at)
                for appointment in appointments
            ):
                stale.append((item, "booked"))

        for item, reason in stale:
            key = (item.tutor_id, item.start_at)
            if key in holds:
                self.hold_repository.delete_owned(owner, item.tutor_id, item.start_at)
                holds.pop(key)
            self.cart_repository.remove_item(cart, item)
            self.logger.info(
                "cart.lazy_repair",
                extra={
                    "owner": owner.key,
                    "item_id": item.id,
                    "tutor_id": item.tutor_id,
                    "start_at": item.start_at.isoformat(),
                    "reason": reason,
                },
            )

        prometheus_metrics.record_lazy_repair(len(stale))
        return len(stale), holds

    # Holds

    @BaseService.measure_operation("extend_all_holds")
    def extend_all_holds(self, owner: Owner) -> Tuple[int, datetime]:
        """
        Refresh the TTL of every live hold backing the cart.

        Returns the number of holds extended and their new expiry. Holds that
        already lapsed are left for lazy repair.
        """

        def _extend() -> int:
            cart = self.cart_repository.get_for_owner(owner)
            if cart is None:
                return 0
            return self.hold_manager.extend_many(
                owner, [(item.tutor_id, item.start_at) for item in cart.items]
            )

        extended = self.run_in_transaction("cart.extend_all_holds", _extend)
        return extended, self.hold_manager.expiry_from(self.clock.now())

    # Identity merge

    @BaseService.measure_operation("merge_guest_cart")
    def merge_guest_cart(self, session_owner: Owner, user_owner: Owner) -> MergeResult:
        """
        Re-home a guest cart onto the user's cart after login.

        Follows batch-add semantics: items already in the user's cart are
        skipped, the rest have their hold re-claimed for the user and are
        skipped if the slot is gone. The quoted price travels with the item.
        The guest coupon is kept only if the user cart has none; the guest
        cart and any holds it still owns are deleted.
        """
        if session_owner.kind is not OwnerType.SESSION or not user_owner.is_user:
            raise ValidationException(
                "Merge requires a session cart and a user cart",
                code="INVALID_MERGE",
                details={"source": session_owner.key, "target": user_owner.key},
            )

        def _merge() -> MergeResult:
            guest = self.cart_repository.get_for_owner(session_owner)
            if guest is None:
                return MergeResult(0, 0)
            target = self.cart_repository.get_or_create(user_owner)
            taken = {(item.tutor_id, item.start_at) for item in target.items}

            added = skipped = 0
            for item in list(guest.items):
                key = (item.tutor_id, item.start_at)
                if key in taken:
                    skipped += 1
                    continue
                try:
                    self._claim_and_add(
                        user_owner, target, item.course_id, item.tutor_id, item.start_at,
                        item.duration_min, item.unit_price_cad, release_from=session_owner,
                    )
                except _SlotLost:
                    skipped += 1
                    continue
                taken.add(key)
                added += 1

            if guest.coupon is not None and target.coupon is None:
                self.cart_repository.set_coupon(target, guest.coupon)

            for item in guest.items:
                self.hold_repository.delete_owned(session_owner, item.tutor_id, item.start_at)
            self.cart_repository.delete_cart(guest)
            return MergeResult(added, skipped)

        result = self.run_in_transaction("cart.merge_guest_cart", _merge)
        prometheus_metrics.record_batch_result(result.added_count, result.skipped_count)
        self.logger.info(
            "cart.merged",
            extra={
                "source": session_owner.key,
                "target": user_owner.key,
                "added": result.added_count,
                "skipped": result.skipped_count,
            },
        )
        return result

    # Helpers

    def _claim_and_add(
        self,
        owner: Owner,
        cart: Cart,
        course_id: str,
        tutor_id: str,
        start_at: datetime,
        duration_min: int,
        unit_price: Decimal,
        release_from: Optional[Owner] = None,
    ) -> CartItem:
        """Claim the hold and add the item inside one savepoint; raises ``_SlotLost``."""
        with self.db.begin_nested():
            if release_from is not None:
                self.hold_repository.delete_owned(release_from, tutor_id, start_at)
            result = self.hold_manager.claim(owner, tutor_id, course_id, start_at, duration_min)
            if isinstance(result, HoldConflict):
                raise _SlotLost(result)
            return self.cart_repository.add_item(
                cart,
                course_id=course_id,
                tutor_id=tutor_id,
                start_at=start_at,
                duration_min=duration_min,
                unit_price=unit_price,
            )

    def _booked_candidates(self, candidates: List[SessionCandidate]) -> Set[SessionCandidate]:
        """Candidates overlapping a blocking appointment, from one range query."""
        if not candidates:
            return set()
        appointments = self.conflict_repository.find_blocking_in_range(
            {c.tutor_id for c in candidates},
            min(c.start_at for c in candidates),
            max(c.end_at for c in candidates),
        )
        by_tutor: Dict[str, List] = {}
        for appointment in appointments:
            by_tutor.setdefault(appointment.tutor_id, []).append(appointment)
        return {
            c
            for c in candidates
            if any(
                overlaps(a.start_at, a.end_at, c.start_at, c.end_at)
                for a in by_tutor.get(c.tutor_id, [])
            )
        }

    @staticmethod
    def _find_item_for_slot(cart: Cart, tutor_id: str, start_at: datetime) -> Optional[CartItem]:
        for item in cart.items:
            if item.tutor_id == tutor_id and item.start_at == start_at:
                return item
        return None
