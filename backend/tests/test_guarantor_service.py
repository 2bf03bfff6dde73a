# Overview: Pytest coverage for guarantor agreements and token links.

from datetime import timedelta

import pytest

from lettings.models import GuarantorAgreement, TenancyEvent
from lettings.services import guarantor_service, lifecycle_service
from lettings.services.guarantor_service import GuarantorError
from lettings.time_utils import utcnow
from lettings.validation import NotFoundError, ValidationError

from factories import member


@pytest.fixture
def guaranteed(db_session, agency, rooms, make_tenancy):
    """Tenancy awaiting signatures whose only member needs a guarantor."""
    tenancy = make_tenancy([
        member("Jo", "Bloggs", rooms[0], guarantor_required=True,
               guarantor_name="Pat Bloggs", guarantor_email="pat@example.com"),
    ])
    lifecycle_service.send_for_signatures(tenancy.id, agency_id=agency.id)
    return tenancy


def _agreement(db_session, tenancy):
    return db_session.query(GuarantorAgreement).filter_by(tenancy_id=tenancy.id).one()


class TestSigning:
    def test_guarantor_signature_completes_paperwork(self, db_session, agency, guaranteed):
        lifecycle_service.record_member_signature(
            guaranteed.members[0].id, agency_id=agency.id, signature_name="Jo Bloggs",
        )
        agreement = _agreement(db_session, guaranteed)

        signed, result = guarantor_service.sign_agreement(
            agreement.guarantor_token, signature_name="Pat Bloggs",
        )
        assert signed.is_signed
        assert signed.signed_at is not None
        assert result is not None
        assert result.tenancy.status == "approval"
        assert result.created_obligations == 12

    def test_guarantor_first_waits_for_member(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        _, result = guarantor_service.sign_agreement(agreement.guarantor_token, signature_name="pat bloggs")
        assert result is None
        db_session.refresh(guaranteed)
        assert guaranteed.status == "awaiting_signatures"

    def test_name_must_match(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        with pytest.raises(ValidationError):
            guarantor_service.sign_agreement(agreement.guarantor_token, signature_name="Jo Bloggs")
        db_session.refresh(agreement)
        assert not agreement.is_signed

    def test_cannot_sign_twice(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        guarantor_service.sign_agreement(agreement.guarantor_token, signature_name="Pat Bloggs")
        with pytest.raises(GuarantorError):
            guarantor_service.sign_agreement(agreement.guarantor_token, signature_name="Pat Bloggs")


class TestTokens:
    def test_unknown_token(self, db_session):
        with pytest.raises(NotFoundError):
            guarantor_service.get_agreement_by_token("nope")
        with pytest.raises(NotFoundError):
            guarantor_service.get_agreement_by_token("")

    def test_expired_token(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        agreement.token_expires_at = utcnow() - timedelta(days=1)
        db_session.commit()
        with pytest.raises(GuarantorError):
            guarantor_service.get_agreement_by_token(agreement.guarantor_token)

    def test_regenerate_invalidates_old_token(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        old_token = agreement.guarantor_token

        fresh = guarantor_service.regenerate_token(guaranteed.members[0].id, agency_id=agency.id)
        assert fresh.guarantor_token != old_token
        with pytest.raises(NotFoundError):
            guarantor_service.get_agreement_by_token(old_token)
        assert guarantor_service.get_agreement_by_token(fresh.guarantor_token).id == agreement.id

        events = db_session.query(TenancyEvent).filter_by(
            tenancy_id=guaranteed.id, event_type="guarantor_link_regenerated",
        ).all()
        assert len(events) == 1
        assert events[0].payload_dict()["token"] == fresh.guarantor_token

    def test_regenerate_refused_after_signing(self, db_session, agency, guaranteed):
        agreement = _agreement(db_session, guaranteed)
        guarantor_service.sign_agreement(agreement.guarantor_token, signature_name="Pat Bloggs")
        with pytest.raises(GuarantorError):
            guarantor_service.regenerate_token(guaranteed.members[0].id, agency_id=agency.id)

    def test_regenerate_other_agency(self, db_session, other_agency, guaranteed):
        with pytest.raises(NotFoundError):
            guarantor_service.regenerate_token(guaranteed.members[0].id, agency_id=other_agency.id)
