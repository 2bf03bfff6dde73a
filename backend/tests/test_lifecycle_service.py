# Overview: Pytest coverage for the tenancy state machine and its guards.

"""
Tenancy lifecycle tests

pending -> awaiting_signatures -> approval -> active -> expired, plus the
migration fast path and rolling successors.
"""

from datetime import date
from decimal import Decimal

import pytest

from lettings.models import Application, GuarantorAgreement, PaymentSchedule, Tenancy, TenancyEvent
from lettings.services import lifecycle_service, payment_service, schedule_service
from lettings.services import rent_calculations as rc
from lettings.services.lifecycle_service import LifecycleError, TenancyIntegrityError
from lettings.services.occupancy_service import BedroomConflictError
from lettings.validation import NotFoundError, ValidationError

from factories import member, sign_all


def _events(db_session, tenancy_id, event_type):
    return db_session.query(TenancyEvent).filter_by(tenancy_id=tenancy_id, event_type=event_type).all()


class TestStateMachine:
    def test_valid_transitions(self):
        assert lifecycle_service.can_transition("pending", "awaiting_signatures")
        assert lifecycle_service.can_transition("approval", "active")
        assert not lifecycle_service.can_transition("pending", "active")
        assert not lifecycle_service.can_transition("active", "pending")

    def test_unknown_status_rejected(self):
        with pytest.raises(LifecycleError):
            lifecycle_service.can_transition("pending", "cancelled")

    def test_cannot_skip_to_active(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        with pytest.raises(LifecycleError) as exc_info:
            lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
        assert exc_info.value.missing["current_status"] == "pending"

    def test_approve_requires_awaiting_signatures(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        with pytest.raises(LifecycleError):
            lifecycle_service.submit_for_approval(tenancy.id, agency_id=agency.id)


class TestCreate:
    def test_create_from_application_converts_it(self, db_session, agency, rooms, application, make_tenancy):
        tenancy = make_tenancy([
            {"application_id": application.id, "bedroom_id": rooms[0].id, "rent_pppw": "110.00"},
        ])
        assert tenancy.status == "pending"
        assert tenancy.members[0].full_name == "Alex Morgan"
        assert tenancy.rent_amount == Decimal("110.00")
        db_session.refresh(application)
        assert application.status == "converted_to_tenancy"

    def test_unapproved_application_rejected(self, db_session, agency, rooms, application, make_tenancy):
        application.status = "rejected"
        db_session.commit()
        with pytest.raises(ValidationError):
            make_tenancy([{"application_id": application.id, "bedroom_id": rooms[0].id}])

    def test_fixed_term_needs_end_date(self, db_session, agency, house, rooms):
        with pytest.raises(TenancyIntegrityError):
            lifecycle_service.create_tenancy(
                agency_id=agency.id, property_id=house.id, start_date=date(2025, 9, 1),
                end_date=None, tenancy_type="whole_house", members=[member("Jo", "Bloggs", rooms[0])],
            )

    def test_rolling_cannot_have_end_date(self, db_session, agency, house, rooms):
        with pytest.raises(TenancyIntegrityError):
            lifecycle_service.create_tenancy(
                agency_id=agency.id, property_id=house.id, start_date=date(2025, 9, 1),
                end_date=date(2026, 8, 31), tenancy_type="whole_house",
                members=[member("Jo", "Bloggs", rooms[0])], is_rolling_periodic=True,
            )

    def test_end_must_follow_start(self, db_session, agency, rooms, make_tenancy):
        with pytest.raises(TenancyIntegrityError):
            make_tenancy([member("Jo", "Bloggs", rooms[0])], start=date(2025, 9, 1), end=date(2025, 9, 1))

    def test_room_only_needs_exactly_one_member(self, db_session, agency, rooms, make_tenancy):
        with pytest.raises(TenancyIntegrityError):
            make_tenancy(
                [member("Jo", "Bloggs", rooms[0]), member("Sam", "Lee", rooms[1])],
                tenancy_type="room_only",
            )

    def test_duplicate_room_in_one_tenancy(self, db_session, agency, rooms, make_tenancy):
        with pytest.raises(ValidationError):
            make_tenancy([member("Jo", "Bloggs", rooms[0]), member("Sam", "Lee", rooms[0])])

    def test_bedroom_from_another_property(self, db_session, agency, rooms, make_tenancy):
        from lettings.models import Bedroom, Property

        other = Property(agency_id=agency.id, address_line1="1 Other Street")
        other.bedrooms = [Bedroom(name="Room A")]
        db_session.add(other)
        db_session.commit()
        with pytest.raises(ValidationError):
            make_tenancy([member("Jo", "Bloggs", other.bedrooms[0])])

    def test_rolling_members_forced_monthly(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0], option="quarterly")], rolling=True)
        assert tenancy.end_date is None
        assert tenancy.members[0].payment_option == "monthly"

    def test_other_agency_property(self, db_session, other_agency, rooms, make_tenancy):
        with pytest.raises(NotFoundError):
            make_tenancy([member("Jo", "Bloggs", rooms[0])], agency_id=other_agency.id)


class TestPendingEdits:
    def test_update_and_delete_while_pending(self, db_session, agency, rooms, application, make_tenancy):
        tenancy = make_tenancy([{"application_id": application.id, "bedroom_id": rooms[0].id, "rent_pppw": "100"}])
        updated = lifecycle_service.update_tenancy(
            tenancy.id, agency_id=agency.id,
            member_updates=[{"id": tenancy.members[0].id, "bedroom_id": rooms[1].id, "rent_pppw": "125.00"}],
        )
        assert updated.members[0].bedroom_id == rooms[1].id
        assert updated.rent_amount == Decimal("125.00")

        lifecycle_service.delete_pending_tenancy(tenancy.id, agency_id=agency.id)
        assert db_session.query(Tenancy).count() == 0
        db_session.refresh(application)
        assert application.status == "approved"

    def test_locked_after_pending(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        with pytest.raises(LifecycleError):
            lifecycle_service.update_tenancy(tenancy.id, agency_id=agency.id, end_date=date(2026, 6, 30))
        with pytest.raises(LifecycleError):
            lifecycle_service.delete_pending_tenancy(tenancy.id, agency_id=agency.id)

    def test_update_into_conflict_rejected(self, db_session, agency, rooms, make_tenancy):
        make_tenancy([member("Jo", "Bloggs", rooms[0])], start=date(2026, 9, 1), end=date(2027, 6, 30))
        tenancy = make_tenancy([member("Sam", "Lee", rooms[0])], end=date(2026, 8, 31))
        with pytest.raises(BedroomConflictError):
            lifecycle_service.update_tenancy(tenancy.id, agency_id=agency.id, end_date=date(2026, 9, 1))
        db_session.refresh(tenancy)
        assert tenancy.end_date == date(2026, 8, 31)


class TestSignatures:
    def test_send_requires_rent(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0], rent=None)])
        with pytest.raises(LifecycleError) as exc_info:
            lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        assert exc_info.value.missing["members_missing_rent"] == ["Jo Bloggs"]

    def test_room_only_requires_room(self, db_session, agency, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", None)], tenancy_type="room_only")
        with pytest.raises(LifecycleError) as exc_info:
            lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        assert exc_info.value.missing["members_missing_room"] == ["Jo Bloggs"]

    def test_send_emits_sign_links(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0]), member("Sam", "Lee", rooms[1])])
        result = lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        assert result.tenancy.status == "awaiting_signatures"
        assert len(_events(db_session, tenancy.id, "signature_link_issued")) == 2

    def test_signature_must_match_name(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        with pytest.raises(ValidationError):
            lifecycle_service.record_member_signature(
                tenancy.members[0].id, agency_id=agency.id, signature_name="Someone Else",
            )

    def test_signature_name_ignores_case_and_titles(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        signed, result = lifecycle_service.record_member_signature(
            tenancy.members[0].id, agency_id=agency.id, signature_name="  mr jo BLOGGS ",
        )
        assert signed.is_signed
        assert result is not None and result.tenancy.status == "approval"

    def test_last_signature_advances_to_approval(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0]), member("Sam", "Lee", rooms[1])])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)

        _, first = lifecycle_service.record_member_signature(
            tenancy.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs",
        )
        assert first is None
        _, second = lifecycle_service.record_member_signature(
            tenancy.members[1].id, agency_id=agency.id, signature_name="Sam Lee",
        )
        assert second.tenancy.status == "approval"
        assert second.created_obligations > 0
        assert len(_events(db_session, tenancy.id, "tenancy_approved")) == 1

    def test_cannot_sign_twice(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0]), member("Sam", "Lee", rooms[1])])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        lifecycle_service.record_member_signature(tenancy.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs")
        with pytest.raises(LifecycleError):
            lifecycle_service.record_member_signature(
                tenancy.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs",
            )

    def test_payment_option_chosen_at_signing(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0], option=None)])
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        signed, _ = lifecycle_service.record_member_signature(
            tenancy.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs", payment_option="upfront",
        )
        assert signed.payment_option == "upfront"
        rows = db_session.query(PaymentSchedule).filter_by(tenancy_id=tenancy.id, payment_type="rent").all()
        assert len(rows) == 1


class TestGuarantorGate:
    def _guaranteed_tenancy(self, make_tenancy, rooms):
        return make_tenancy([
            member("Jo", "Bloggs", rooms[0], guarantor_required=True,
                   guarantor_name="Pat Bloggs", guarantor_email="pat@example.com"),
        ])

    def test_unsigned_guarantor_blocks_activation(self, db_session, agency, rooms, make_tenancy):
        tenancy = self._guaranteed_tenancy(make_tenancy, rooms)
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        _, result = lifecycle_service.record_member_signature(
            tenancy.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs",
        )
        assert result is None

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
        assert exc_info.value.missing["guarantor_signatures"] == 1
        assert exc_info.value.missing["member_signatures"] == 0
        assert exc_info.value.missing["members_missing_guarantor"] == ["Jo Bloggs"]
        db_session.refresh(tenancy)
        assert tenancy.status == "awaiting_signatures"

    def test_agreement_issued_on_send(self, db_session, agency, rooms, make_tenancy):
        tenancy = self._guaranteed_tenancy(make_tenancy, rooms)
        lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
        agreement = db_session.query(GuarantorAgreement).filter_by(tenancy_id=tenancy.id).one()
        assert agreement.guarantor_name == "Pat Bloggs"
        assert len(agreement.guarantor_token) == 64
        assert len(_events(db_session, tenancy.id, "guarantor_link_issued")) == 1


class TestActivationAndExpiry:
    def test_activate_generates_missing_schedule(self, db_session, agency, rooms, make_tenancy, monkeypatch):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])

        def _fail(*args, **kwargs):
            raise RuntimeError("generation offline")

        monkeypatch.setattr(schedule_service, "generate_for_tenancy", _fail)
        result = sign_all(tenancy, agency.id)
        assert result.tenancy.status == "approval"
        assert result.partial_success
        assert result.auxiliary_failures[0]["step"] == "schedule_generation"
        monkeypatch.undo()

        activated = lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
        assert activated.tenancy.status == "active"
        assert activated.created_obligations == 12
        assert not activated.partial_success

    def test_deleted_deposit_is_not_regenerated(self, db_session, agency, active_tenancy):
        alex = active_tenancy.members[0]
        deposit = (
            db_session.query(PaymentSchedule)
            .filter_by(tenancy_id=active_tenancy.id, member_id=alex.id, payment_type="deposit")
            .one()
        )
        payment_service.delete_obligation(deposit.id, agency_id=agency.id)

        assert lifecycle_service.retry_schedule_generation(active_tenancy.id, agency_id=agency.id) == []
        remaining = (
            db_session.query(PaymentSchedule)
            .filter_by(tenancy_id=active_tenancy.id, member_id=alex.id, payment_type="deposit")
            .count()
        )
        assert remaining == 0

    def test_expire_before_end_date_rejected(self, db_session, agency, active_tenancy):
        with pytest.raises(LifecycleError) as exc_info:
            lifecycle_service.expire_tenancy(active_tenancy.id, agency_id=agency.id, today=date(2026, 8, 30))
        assert exc_info.value.missing["days_remaining"] == 1

    def test_expire_returns_warnings(self, db_session, agency, active_tenancy):
        preview = lifecycle_service.preview_expiry(active_tenancy.id, agency_id=agency.id, today=date(2026, 8, 31))
        assert len(preview.keys_outstanding) == 2
        assert preview.unpaid_obligations

        result = lifecycle_service.expire_tenancy(active_tenancy.id, agency_id=agency.id, today=date(2026, 8, 31))
        assert result.tenancy.status == "expired"
        assert result.tenancy.expired_at is not None
        assert any("keys not collected" in w for w in result.warnings)
        assert any("obligation(s) unpaid" in w for w in result.warnings)
        assert len(_events(db_session, active_tenancy.id, "tenancy_expired")) == 1

    def test_expired_room_can_be_relet(self, db_session, agency, rooms, active_tenancy, make_tenancy):
        lifecycle_service.expire_tenancy(active_tenancy.id, agency_id=agency.id, today=date(2026, 8, 31))
        successor = make_tenancy([member("Kim", "Park", rooms[0])], start=date(2026, 8, 31), end=date(2027, 6, 30))
        assert successor.status == "pending"

    def test_key_status(self, db_session, agency, active_tenancy):
        alex = active_tenancy.members[0]
        collected = lifecycle_service.update_key_status(
            alex.id, agency_id=agency.id, key_status="collected", on_date=date(2025, 9, 1),
        )
        assert collected.key_collection_date == date(2025, 9, 1)
        returned = lifecycle_service.update_key_status(
            alex.id, agency_id=agency.id, key_status="returned", on_date=date(2026, 8, 30),
        )
        assert returned.key_status == "returned"
        assert returned.key_collection_date == date(2025, 9, 1)
        assert returned.key_return_date == date(2026, 8, 30)

        with pytest.raises(ValidationError):
            lifecycle_service.update_key_status(alex.id, agency_id=agency.id, key_status="lost")


class TestNotice:
    def test_notice_trims_future_rent(self, db_session, agency, active_tenancy):
        result = lifecycle_service.give_notice(
            active_tenancy.id, agency_id=agency.id, end_date=date(2026, 3, 31), today=date(2026, 1, 10),
        )
        assert result.tenancy.end_date == date(2026, 3, 31)
        assert result.tenancy.notice_given_at is not None
        remaining = (
            db_session.query(PaymentSchedule)
            .filter_by(tenancy_id=active_tenancy.id, payment_type="rent")
            .filter(PaymentSchedule.covers_from > date(2026, 3, 31))
            .count()
        )
        assert remaining == 0
        assert result.warnings

    def test_notice_only_on_active(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])])
        with pytest.raises(LifecycleError):
            lifecycle_service.give_notice(tenancy.id, agency_id=agency.id, end_date=date(2026, 3, 31))

    def test_notice_in_past_rejected(self, db_session, agency, active_tenancy):
        with pytest.raises(ValidationError):
            lifecycle_service.give_notice(
                active_tenancy.id, agency_id=agency.id, end_date=date(2026, 1, 1), today=date(2026, 1, 10),
            )

    def _rent_lines(self, db_session, tenancy_id, member_id):
        return (
            db_session.query(PaymentSchedule)
            .filter_by(tenancy_id=tenancy_id, member_id=member_id, payment_type="rent")
            .order_by(PaymentSchedule.covers_from)
            .all()
        )

    def _assert_matches_term(self, lines, weekly, start, end):
        total = sum((line.amount_due for line in lines), Decimal("0"))
        term = rc.term_rent(Decimal(weekly), start, end)
        assert abs(total - term) <= Decimal("0.005") * (len(lines) + 1)
        assert lines[0].covers_from == start
        assert lines[-1].covers_to == end
        for prev, nxt in zip(lines, lines[1:]):
            assert (nxt.covers_from - prev.covers_to).days == 1

    def test_mid_month_notice_clips_final_period(self, db_session, agency, active_tenancy):
        alex, sam = active_tenancy.members
        result = lifecycle_service.give_notice(
            active_tenancy.id, agency_id=agency.id, end_date=date(2026, 3, 15), today=date(2026, 1, 10),
        )
        assert any("Re-priced 2 rent line(s)" in w for w in result.warnings)

        lines = self._rent_lines(db_session, active_tenancy.id, alex.id)
        march = lines[-1]
        assert (march.covers_from, march.covers_to) == (date(2026, 3, 1), date(2026, 3, 15))
        assert march.amount_due == Decimal("214.29")
        assert march.description == "Rent - March 2026 (partial)"
        self._assert_matches_term(lines, "100.00", date(2025, 9, 1), date(2026, 3, 15))
        self._assert_matches_term(
            self._rent_lines(db_session, active_tenancy.id, sam.id), "120.00", date(2025, 9, 1), date(2026, 3, 15),
        )

    def test_paid_line_is_held_with_warning(self, db_session, agency, active_tenancy):
        alex = active_tenancy.members[0]
        march = next(
            line for line in self._rent_lines(db_session, active_tenancy.id, alex.id)
            if line.covers_from == date(2026, 3, 1)
        )
        payment_service.record_payment(march.id, agency_id=agency.id, amount="100.00")

        result = lifecycle_service.give_notice(
            active_tenancy.id, agency_id=agency.id, end_date=date(2026, 3, 15), today=date(2026, 1, 10),
        )
        db_session.refresh(march)
        assert march.covers_to == date(2026, 3, 31)
        assert march.amount_due == Decimal("433.33")
        assert any(f"Rent line {march.id}" in w and "not adjusted" in w for w in result.warnings)

    def test_extension_refits_and_fills_fixed_term(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])], end=date(2026, 6, 15))
        sign_all(tenancy, agency.id)
        lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
        jo = tenancy.members[0]

        result = lifecycle_service.give_notice(
            tenancy.id, agency_id=agency.id, end_date=date(2026, 8, 31), today=date(2026, 1, 10),
        )
        assert result.created_obligations == 2

        lines = self._rent_lines(db_session, tenancy.id, jo.id)
        june = next(line for line in lines if line.covers_from == date(2026, 6, 1))
        assert june.covers_to == date(2026, 6, 30)
        assert june.amount_due == Decimal("433.33")
        self._assert_matches_term(lines, "100.00", date(2025, 9, 1), date(2026, 8, 31))

        assert lifecycle_service.retry_schedule_generation(tenancy.id, agency_id=agency.id) == []

    def test_notice_may_end_on_start_date(self, db_session, agency, active_tenancy):
        alex = active_tenancy.members[0]
        result = lifecycle_service.give_notice(
            active_tenancy.id, agency_id=agency.id, end_date=date(2025, 9, 1), today=date(2025, 9, 1),
        )
        assert result.tenancy.end_date == date(2025, 9, 1)
        lines = self._rent_lines(db_session, active_tenancy.id, alex.id)
        assert len(lines) == 1
        assert lines[0].covers_to == date(2025, 9, 1)
        assert lines[0].amount_due == Decimal("14.29")

    def test_notice_before_start_rejected(self, db_session, agency, rooms, make_tenancy):
        tenancy = make_tenancy([member("Jo", "Bloggs", rooms[0])], start=date(2026, 2, 1), end=date(2027, 1, 31))
        sign_all(tenancy, agency.id)
        lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
        with pytest.raises(TenancyIntegrityError):
            lifecycle_service.give_notice(
                tenancy.id, agency_id=agency.id, end_date=date(2026, 1, 31), today=date(2026, 1, 10),
            )


class TestRollingSuccessor:
    def test_carries_selected_members(self, db_session, agency, rooms, active_tenancy):
        sam = active_tenancy.members[1]
        successor = lifecycle_service.create_rolling_from_existing(
            active_tenancy.id,
            agency_id=agency.id,
            start_date=date(2026, 9, 1),
            member_ids=[sam.id],
            member_overrides={str(sam.id): {"rent_pppw": "130.00", "bedroom_id": rooms[2].id}},
        )
        assert successor.status == "pending"
        assert successor.is_rolling_periodic
        assert successor.end_date is None
        assert successor.source_tenancy_id == active_tenancy.id
        assert len(successor.members) == 1
        carried = successor.members[0]
        assert carried.full_name == "Sam Lee"
        assert carried.rent_pppw == Decimal("130.00")
        assert carried.bedroom_id == rooms[2].id
        assert carried.payment_option == "monthly"

    def test_overlapping_start_conflicts(self, db_session, agency, active_tenancy):
        with pytest.raises(BedroomConflictError):
            lifecycle_service.create_rolling_from_existing(
                active_tenancy.id,
                agency_id=agency.id,
                start_date=date(2026, 8, 1),
                member_ids=[active_tenancy.members[0].id],
            )

    def test_unknown_member(self, db_session, agency, active_tenancy):
        with pytest.raises(ValidationError):
            lifecycle_service.create_rolling_from_existing(
                active_tenancy.id, agency_id=agency.id, start_date=date(2026, 9, 1), member_ids=[99999],
            )


class TestMigration:
    def test_created_active_and_billed(self, db_session, agency, house, rooms):
        result = lifecycle_service.create_migration_tenancy(
            agency_id=agency.id,
            property_id=house.id,
            start_date=date(2025, 9, 1),
            end_date=date(2026, 8, 31),
            tenancy_type="whole_house",
            members=[member("Jo", "Bloggs", rooms[0], deposit="400.00", option="quarterly")],
        )
        tenancy = result.tenancy
        assert tenancy.status == "active"
        assert tenancy.is_migration
        assert tenancy.members[0].is_signed
        assert result.created_obligations == 5 + 1
        assert len(_events(db_session, tenancy.id, "tenancy_activated")) == 1

    def test_requires_rent_and_deposit(self, db_session, agency, house, rooms):
        with pytest.raises(ValidationError):
            lifecycle_service.create_migration_tenancy(
                agency_id=agency.id,
                property_id=house.id,
                start_date=date(2025, 9, 1),
                end_date=date(2026, 8, 31),
                tenancy_type="whole_house",
                members=[{"first_name": "Jo", "surname": "Bloggs", "bedroom_id": rooms[0].id}],
            )

    def test_conflict_checked(self, db_session, agency, house, rooms, active_tenancy):
        with pytest.raises(BedroomConflictError):
            lifecycle_service.create_migration_tenancy(
                agency_id=agency.id,
                property_id=house.id,
                start_date=date(2026, 1, 1),
                end_date=date(2026, 12, 31),
                tenancy_type="whole_house",
                members=[member("Kim", "Park", rooms[0], deposit="0")],
            )
