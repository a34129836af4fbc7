"""Best-effort batch add and guest-to-user cart merge."""

from datetime import timedelta
from decimal import Decimal

import pytest

from tutorcart.core.exceptions import InvalidDurationException, ValidationException
from tutorcart.core.identity import Owner
from tutorcart.models import Cart, CartItem, SlotHold
from tutorcart.services.cart_service import SessionCandidate

from ..factories import create_appointment, create_coupon, create_tutor, slot


def _owned_holds(db, owner):
    db.expire_all()
    return db.query(SlotHold).filter_by(**owner.as_filter()).all()


def _cart(db, owner):
    db.expire_all()
    return db.query(Cart).filter_by(**owner.as_filter()).first()


class TestBatchAdd:
    def test_partial_success_when_some_slots_are_held(
        self, db, cart_service, hold_manager, guest, stranger, tutor, course
    ):
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(9), 60)
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(13), 60)
        sessions = [SessionCandidate(tutor.id, slot(h), 60) for h in (9, 11, 13, 15, 17)]

        result = cart_service.add_items_batch(guest, course.id, sessions)

        assert result.added_count == 3
        assert result.skipped_count == 2
        assert {s.reason for s in result.skipped} == {"held_elsewhere"}
        assert len(_cart(db, guest).items) == 3
        assert sorted(h.start_at for h in _owned_holds(db, guest)) == [slot(11), slot(15), slot(17)]

    def test_skips_duplicates_booked_slots_and_inactive_tutors(
        self, db, cart_service, guest, tutor, course
    ):
        retired = create_tutor(db, name="Retired", active=False)
        cart_service.add_item(guest, course.id, tutor.id, slot(9), 60)
        create_appointment(db, tutor=tutor, course=course, start_at=slot(12), duration_min=60)
        sessions = [
            SessionCandidate(tutor.id, slot(9), 60),  # already in cart
            SessionCandidate(tutor.id, slot(10), 90),
            SessionCandidate(tutor.id, slot(10), 90),  # repeated in request
            SessionCandidate(tutor.id, slot(11, 30), 60),  # overlaps the appointment
            SessionCandidate(retired.id, slot(15), 60),
            SessionCandidate(tutor.id, slot(16), 120),
        ]

        result = cart_service.add_items_batch(guest, course.id, sessions)

        assert result.added_count == 2
        assert result.skipped_count == 4
        assert sorted(s.reason for s in result.skipped) == [
            "booked",
            "duplicate",
            "duplicate_in_request",
            "tutor_unavailable",
        ]
        prices = sorted(item.unit_price_cad for item in result.added_items)
        assert prices == [Decimal("60.00"), Decimal("80.00")]

    def test_invalid_duration_rejects_whole_request(self, db, cart_service, guest, tutor, course):
        sessions = [SessionCandidate(tutor.id, slot(9), 60), SessionCandidate(tutor.id, slot(11), 75)]

        with pytest.raises(InvalidDurationException):
            cart_service.add_items_batch(guest, course.id, sessions)
        assert db.query(CartItem).count() == 0
        assert db.query(SlotHold).count() == 0

    def test_expired_foreign_hold_does_not_block(
        self, db, cart_service, hold_manager, clock, guest, stranger, tutor, course
    ):
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(9), 60)
        clock.advance(minutes=20)

        result = cart_service.add_items_batch(
            guest, course.id, [SessionCandidate(tutor.id, slot(9), 60)]
        )

        assert result.added_count == 1
        assert _owned_holds(db, stranger) == []

    def test_every_added_session_is_paired_with_a_hold(
        self, db, cart_service, guest, tutor, tutor_2, course
    ):
        sessions = [
            SessionCandidate(tutor.id, slot(9), 60),
            SessionCandidate(tutor_2.id, slot(9), 90),
            SessionCandidate(tutor.id, slot(9, day_offset=1), 120),
        ]

        result = cart_service.add_items_batch(guest, course.id, sessions)

        assert result.added_count == 3
        holds = {(h.tutor_id, h.start_at): h.duration_min for h in _owned_holds(db, guest)}
        items = {(i.tutor_id, i.start_at): i.duration_min for i in _cart(db, guest).items}
        assert holds == items


class TestMergeGuestCart:
    def test_guest_items_and_coupon_move_to_user(
        self, db, cart_service, guest, user, tutor, course
    ):
        create_coupon(db, "SUMMER10")
        cart_service.add_item(user, course.id, tutor.id, slot(9), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(11), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(13), 90)
        cart_service.attach_coupon(guest, "SUMMER10")

        result = cart_service.merge_guest_cart(guest, user)

        assert (result.added_count, result.skipped_count) == (2, 0)
        assert _cart(db, guest) is None
        assert _owned_holds(db, guest) == []
        user_cart = _cart(db, user)
        assert [item.start_at for item in user_cart.items] == [slot(9), slot(11), slot(13)]
        assert user_cart.coupon.code == "SUMMER10"
        assert len(_owned_holds(db, user)) == 3

    def test_quoted_price_travels_with_the_item(self, db, cart_service, guest, user, tutor, course):
        cart_service.add_item(guest, course.id, tutor.id, slot(11), 60)
        course.student_rate_cad = Decimal("55.00")
        db.commit()

        cart_service.merge_guest_cart(guest, user)

        assert _cart(db, user).items[0].unit_price_cad == Decimal("40.00")

    def test_user_coupon_wins(self, db, cart_service, guest, user, tutor, course):
        create_coupon(db, "GUEST5")
        create_coupon(db, "USER20", value="20")
        cart_service.attach_coupon(guest, "GUEST5")
        cart_service.attach_coupon(user, "USER20")
        cart_service.add_item(guest, course.id, tutor.id, slot(11), 60)

        cart_service.merge_guest_cart(guest, user)

        assert _cart(db, user).coupon.code == "USER20"

    def test_lost_slots_are_skipped(
        self, db, cart_service, hold_manager, clock, guest, user, stranger, tutor, course
    ):
        cart_service.add_item(guest, course.id, tutor.id, slot(11), 60)
        cart_service.add_item(guest, course.id, tutor.id, slot(13), 60)
        clock.advance(minutes=16)
        hold_manager.try_acquire(stranger, tutor.id, course.id, slot(11), 60)

        result = cart_service.merge_guest_cart(guest, user)

        assert (result.added_count, result.skipped_count) == (1, 1)
        assert [item.start_at for item in _cart(db, user).items] == [slot(13)]
        assert [h.start_at for h in _owned_holds(db, stranger)] == [slot(11)]
        assert _owned_holds(db, user)[0].expires_at == clock.now() + timedelta(minutes=15)

    def test_no_guest_cart(self, cart_service, guest, user):
        result = cart_service.merge_guest_cart(guest, user)
        assert (result.added_count, result.skipped_count) == (0, 0)

    def test_requires_session_then_user(self, cart_service, guest, user):
        with pytest.raises(ValidationException):
            cart_service.merge_guest_cart(user, guest)
        with pytest.raises(ValidationException):
            cart_service.merge_guest_cart(guest, Owner.session("another"))
