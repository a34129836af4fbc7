"""Cart lifecycle: hold/item pairing, coupons, lazy repair and hold extension."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tutorcart.core.config import settings
from tutorcart.core.enums import CouponRejection, CouponType
from tutorcart.core.exceptions import (
    CartItemNotFoundException,
    CatalogNotFoundException,
    CouponInvalidException,
    DuplicateItemException,
    InactiveEntityException,
    InvalidDurationException,
    ServiceException,
    SlotUnavailableException,
)
from tutorcart.models import Cart, CartItem, Coupon, SlotHold
from tutorcart.repositories.cart_repository import CartRepository
from tutorcart.services.cart_service import SessionCandidate

from ..factories import create_appointment, create_coupon, create_course, create_tutor, slot


def _holds_for(db, owner):
    db.expire_all()
    return db.query(SlotHold).filter_by(**owner.as_filter()).all()


def _assert_paired(db, owner):
    """Every item has exactly one live hold with the same tutor, start and duration."""
    db.expire_all()
    cart = db.query(Cart).filter_by(**owner.as_filter()).first()
    items = cart.items if cart else []
    holds = {(h.tutor_id, h.start_at): h for h in _holds_for(db, owner)}
    assert len(holds) == len(items)
    for item in items:
        hold = holds[(item.tutor_id, item.start_at)]
        assert hold.duration_min == item.duration_min


class TestAddItem:
    def test_adds_item_priced_from_course_rate(self, db, cart_service, guest, tutor, course):
        item = cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)

        assert item.unit_price_cad == Decimal("60.00")
        assert item.line_total_cad == Decimal("60.00")
        _assert_paired(db, guest)

    def test_duplicate_item_rejected(self, db, cart_service, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)

        with pytest.raises(DuplicateItemException):
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)
        assert db.query(CartItem).count() == 1

    def test_same_slot_new_duration_updates_in_place(self, db, cart_service, guest, tutor, course):
        first = cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        second = cart_service.add_item(guest, course.id, tutor.id, slot(10), 120)

        assert second.id == first.id
        assert second.duration_min == 120
        assert second.unit_price_cad == Decimal("80.00")
        assert db.query(CartItem).count() == 1
        _assert_paired(db, guest)

    def test_slot_held_by_someone_else(self, db, cart_service, guest, stranger, tutor, course):
        cart_service.add_item(stranger, course.id, tutor.id, slot(10), 60)

        with pytest.raises(SlotUnavailableException):
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)

        assert _holds_for(db, guest) == []
        cart = db.query(Cart).filter_by(**guest.as_filter()).first()
        assert cart is None or cart.items == []

    def test_booked_slot_rejected(self, db, cart_service, guest, tutor, course):
        create_appointment(db, tutor=tutor, course=course, start_at=slot(10), duration_min=120)

        with pytest.raises(SlotUnavailableException) as exc_info:
            cart_service.add_item(guest, course.id, tutor.id, slot(11), 60)
        assert exc_info.value.details["reason"] == "booked"

    def test_invalid_duration(self, cart_service, guest, tutor, course):
        with pytest.raises(InvalidDurationException):
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 45)

    def test_unknown_course(self, cart_service, guest, tutor):
        with pytest.raises(CatalogNotFoundException) as exc_info:
            cart_service.add_item(guest, "01K2K8CVN3A55280PFKJD9YHKV", tutor.id, slot(10), 60)
        assert exc_info.value.code == "COURSE_NOT_FOUND"

    def test_inactive_tutor(self, db, cart_service, guest, course):
        tutor = create_tutor(db, name="On Leave", active=False)

        with pytest.raises(InactiveEntityException):
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        assert db.query(SlotHold).count() == 0

    def test_readding_item_whose_slot_was_taken_reports_unavailable(
        self, db, cart_service, hold_manager, clock, guest, stranger, tutor, course
    ):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        clock.advance(minutes=16)
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(10), 60)

        with pytest.raises(SlotUnavailableException) as exc_info:
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        assert exc_info.value.details["reason"] == "held_elsewhere"
        db.expire_all()
        assert db.query(CartItem).count() == 0
        assert len(_holds_for(db, stranger)) == 1

    def test_readding_item_whose_hold_lapsed_renews_it(self, db, cart_service, clock, guest, tutor, course):
        first = cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        clock.advance(minutes=16)

        again = cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        assert again.id == first.id
        assert db.query(CartItem).count() == 1
        (hold,) = _holds_for(db, guest)
        assert hold.expires_at == clock.now() + timedelta(minutes=15)
        _assert_paired(db, guest)

    def test_cart_created_once_per_owner(self, db, cart_service, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(12), 60)

        assert db.query(Cart).count() == 1


class TestRemoveItem:
    def test_removes_item_and_hold(self, db, cart_service, guest, tutor, course):
        item = cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        cart_service.remove_item(guest, item.id)

        assert db.query(CartItem).count() == 0
        assert _holds_for(db, guest) == []

    def test_no_orphan_holds_after_many_removals(self, db, cart_service, guest, tutor, course):
        items = [cart_service.add_item(guest, course.id, tutor.id, slot(h), 60) for h in (8, 10, 12, 14)]

        for item in items[:3]:
            cart_service.remove_item(guest, item.id)

        _assert_paired(db, guest)
        assert len(_holds_for(db, guest)) == 1

    def test_other_owners_item_looks_missing(self, db, cart_service, guest, stranger, tutor, course):
        item = cart_service.add_item(stranger, course.id, tutor.id, slot(10), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(12), 60)

        with pytest.raises(CartItemNotFoundException):
            cart_service.remove_item(guest, item.id)
        assert db.get(CartItem, item.id) is not None
        assert len(_holds_for(db, stranger)) == 1

    def test_unknown_item(self, cart_service, guest):
        with pytest.raises(CartItemNotFoundException):
            cart_service.remove_item(guest, "01K2K8CVN3A55280PFKJD9YHKV")


class TestCoupons:
    def test_attach_and_view_discount(self, db, cart_service, guest, tutor, course):
        create_coupon(db, "SUMMER10")
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)

        coupon = cart_service.attach_coupon(guest, "  summer10 ")
        view = cart_service.view(guest)

        assert coupon.code == "SUMMER10"
        assert view.totals.subtotal == Decimal("60.00")
        assert view.totals.discount == Decimal("6.00")
        assert view.totals.total == Decimal("54.00")
        assert view.coupon_rejection is None

    def test_unknown_code(self, cart_service, guest):
        with pytest.raises(CouponInvalidException) as exc_info:
            cart_service.attach_coupon(guest, "NOPE")
        assert exc_info.value.reason is CouponRejection.UNKNOWN_CODE

    def test_expired_coupon_deactivates_itself(self, db, cart_service, clock, guest):
        coupon = create_coupon(db, "WINTER", ends_at=clock.now() - timedelta(days=1))

        with pytest.raises(CouponInvalidException) as exc_info:
            cart_service.attach_coupon(guest, "winter")

        assert exc_info.value.reason is CouponRejection.EXPIRED
        assert exc_info.value.details == {"reason": "EXPIRED", "coupon_code": "WINTER"}
        db.expire_all()
        assert db.get(Coupon, coupon.id).active is False

        # Once flipped it reports inactive
        with pytest.raises(CouponInvalidException) as exc_info:
            cart_service.attach_coupon(guest, "WINTER")
        assert exc_info.value.reason is CouponRejection.INACTIVE

    def test_redemption_limit(self, db, cart_service, guest):
        create_coupon(db, "FIRST100", max_redemptions=100, redemption_count=100)

        with pytest.raises(CouponInvalidException) as exc_info:
            cart_service.attach_coupon(guest, "FIRST100")
        assert exc_info.value.reason is CouponRejection.REDEMPTION_LIMIT_REACHED

    def test_attach_does_not_count_a_redemption(self, db, cart_service, guest):
        coupon = create_coupon(db, "SUMMER10", max_redemptions=5, redemption_count=1)

        cart_service.attach_coupon(guest, "SUMMER10")

        db.expire_all()
        assert db.get(Coupon, coupon.id).redemption_count == 1

    def test_coupon_expiring_after_attach_gives_no_discount(
        self, db, cart_service, clock, guest, tutor, course
    ):
        create_coupon(db, "FLASH", ends_at=clock.now() + timedelta(minutes=5))
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        cart_service.attach_coupon(guest, "FLASH")
        clock.advance(minutes=6)

        view = cart_service.view(guest)

        assert view.coupon is not None
        assert view.coupon_rejection is CouponRejection.EXPIRED
        assert view.totals.discount == Decimal("0.00")
        assert view.totals.total == Decimal("40.00")

    def test_fixed_coupon_capped(self, db, cart_service, guest, tutor, course):
        create_coupon(db, "BIGFIX", type=CouponType.FIXED, value="150")
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        cart_service.attach_coupon(guest, "BIGFIX")

        assert cart_service.view(guest).totals.total == Decimal("0.00")

    def test_detach(self, db, cart_service, guest):
        create_coupon(db, "SUMMER10")
        cart_service.attach_coupon(guest, "SUMMER10")

        assert cart_service.detach_coupon(guest) is True
        assert cart_service.detach_coupon(guest) is False
        assert cart_service.view(guest).coupon is None


class TestViewAndRepair:
    def test_empty_view_without_cart(self, cart_service, guest):
        view = cart_service.view(guest)
        assert view.cart_id is None
        assert view.is_empty
        assert view.totals.total == Decimal("0.00")

    def test_view_reports_hold_expiry(self, cart_service, clock, guest, tutor, course):
        item = cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        view = cart_service.view(guest)

        assert view.hold_expiry[item.id] == clock.now() + timedelta(minutes=15)

    def test_item_booked_elsewhere_is_purged_with_its_hold(
        self, db, cart_service, hold_manager, guest, stranger, tutor, course
    ):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 90)
        cart_service.add_item(guest, course.id, tutor.id, slot(14), 60)
        # Booked through another channel after being added here
        create_appointment(db, tutor=tutor, course=course, start_at=slot(11), duration_min=60)

        view = cart_service.view(guest)

        assert view.repaired_count == 1
        assert [item.start_at for item in view.items] == [slot(14)]
        assert [hold.start_at for hold in _holds_for(db, guest)] == [slot(14)]
        _assert_paired(db, guest)

        # The purged hold no longer blocks anyone; 10:00-11:00 stays clear of the booking
        freed = hold_manager.try_acquire(stranger, tutor.id, course.id, slot(10), 60)
        assert isinstance(freed, SlotHold)
        assert freed.owner_id == stranger.id

    def test_item_with_lapsed_hold_is_purged(self, db, cart_service, clock, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        clock.advance(minutes=16)

        view = cart_service.view(guest)

        assert view.repaired_count == 1
        assert view.items == []
        assert db.query(CartItem).count() == 0

    def test_item_whose_hold_was_taken_is_purged(
        self, db, cart_service, hold_manager, clock, guest, stranger, tutor, course
    ):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        clock.advance(minutes=16)
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(10), 60)

        view = cart_service.view(guest)

        assert view.items == []
        assert len(_holds_for(db, stranger)) == 1

    def test_repair_is_idempotent(self, db, cart_service, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        create_appointment(db, tutor=tutor, course=course, start_at=slot(10))

        assert cart_service.view(guest).repaired_count == 1
        assert cart_service.view(guest).repaired_count == 0


class TestExtendAllHolds:
    def test_extends_every_live_hold(self, db, cart_service, clock, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(12), 90)
        clock.advance(minutes=10)

        extended, expires_at = cart_service.extend_all_holds(guest)

        assert extended == 2
        assert expires_at == clock.now() + timedelta(minutes=15)
        assert {hold.expires_at for hold in _holds_for(db, guest)} == {expires_at}

    def test_lapsed_holds_are_not_extended(self, db, cart_service, clock, guest, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        clock.advance(minutes=20)

        extended, _ = cart_service.extend_all_holds(guest)

        assert extended == 0

    def test_no_cart(self, cart_service, guest):
        assert cart_service.extend_all_holds(guest)[0] == 0


def test_course_and_tutor_rates_are_independent(db, cart_service, guest):
    course = create_course(db, rate="40.00", slug="chemistry")
    tutor = create_tutor(db, rate="100.00", name="Marie")

    item = cart_service.add_item(guest, course.id, tutor.id, slot(10), 120)

    assert item.unit_price_cad == Decimal("80.00")


class TestFailedWrites:
    @pytest.fixture
    def failing_item_insert(self, monkeypatch):
        def _fail(self, cart, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(CartRepository, "add_item", _fail)

    def test_add_item_leaves_no_hold_when_item_insert_fails(
        self, db, cart_service, guest, tutor, course, failing_item_insert
    ):
        with pytest.raises(ServiceException):
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        assert _holds_for(db, guest) == []
        assert db.query(CartItem).count() == 0

    def test_batch_commits_nothing_when_item_insert_fails(
        self, db, cart_service, guest, tutor, course, failing_item_insert
    ):
        sessions = [SessionCandidate(tutor.id, slot(h), 60) for h in (9, 11, 13)]

        with pytest.raises(ServiceException):
            cart_service.add_items_batch(guest, course.id, sessions)

        assert _holds_for(db, guest) == []
        assert db.query(CartItem).count() == 0

    def test_failed_merge_keeps_guest_cart_intact(
        self, db, cart_service, guest, user, tutor, course, monkeypatch
    ):
        cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(12), 60)

        def _fail(self, cart, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(CartRepository, "add_item", _fail)

        with pytest.raises(ServiceException):
            cart_service.merge_guest_cart(guest, user)

        assert _holds_for(db, user) == []
        assert len(_holds_for(db, guest)) == 2
        _assert_paired(db, guest)

    def test_exhausted_retries_surface_as_storage_unavailable(
        self, db, cart_service, guest, tutor, course, monkeypatch
    ):
        commits = []

        def _locked():
            commits.append(1)
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(settings, "db_retry_max_attempts", 2)
        monkeypatch.setattr(db, "commit", _locked)

        with pytest.raises(ServiceException) as exc_info:
            cart_service.add_item(guest, course.id, tutor.id, slot(10), 60)

        assert exc_info.value.code == "STORAGE_UNAVAILABLE"
        assert len(commits) == 2
        monkeypatch.undo()
        assert _holds_for(db, guest) == []
        assert db.query(CartItem).count() == 0
