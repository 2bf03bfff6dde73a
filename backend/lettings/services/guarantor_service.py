# Overview: Service-layer operations for guarantor agreements; token-based access and signing.

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from ..config import setting
from ..extensions import db
from ..models import GuarantorAgreement, Tenancy, TenancyMember
from ..models.tenancies import TENANCY_AWAITING_SIGNATURES
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, signature_matches
from . import event_service
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)


class GuarantorError(ValueError):
    """Guarantor agreement is signed, expired or otherwise unusable."""


def _new_token() -> str:
    return secrets.token_hex(32)


def _token_expiry():
    return utcnow() + timedelta(days=setting("GUARANTOR_TOKEN_TTL_DAYS"))


def ensure_agreement_for_member(member: TenancyMember) -> Optional[GuarantorAgreement]:
    """
    Create the member's guarantor agreement if one is required and missing.

    Emits guarantor_link_issued for a new agreement. Does not commit.

    Returns:
        The agreement (new or existing), or None when no guarantor is required.
    """
    if not member.guarantor_required:
        return None
    if member.guarantor_agreement is not None:
        return member.guarantor_agreement

    agreement = GuarantorAgreement(
        tenancy_id=member.tenancy_id,
        guarantor_name=member.guarantor_name,
        guarantor_email=member.guarantor_email,
        guarantor_token=_new_token(),
        token_expires_at=_token_expiry(),
        is_signed=False,
    )
    member.guarantor_agreement = agreement
    db.session.flush()

    event_service.emit_event(
        agency_id=member.tenancy.agency_id,
        event_type=event_service.GUARANTOR_LINK_ISSUED,
        tenancy_id=member.tenancy_id,
        member_id=member.id,
        payload={
            "agreement_id": agreement.id,
            "guarantor_email": agreement.guarantor_email,
            "token": agreement.guarantor_token,
            "expires_at": agreement.token_expires_at,
        },
    )
    return agreement


def regenerate_token(member_id: int, *, agency_id: int) -> GuarantorAgreement:
    """
    Issue a fresh guarantor link; the previous token stops working at commit.

    Raises:
        NotFoundError: Member or agreement not found in the agency
        GuarantorError: Agreement already signed
    """
    def _op():
        agreement = lock_for_update(
            db.session.query(GuarantorAgreement)
            .join(TenancyMember, GuarantorAgreement.member_id == TenancyMember.id)
            .join(Tenancy, TenancyMember.tenancy_id == Tenancy.id)
            .filter(TenancyMember.id == member_id, Tenancy.agency_id == agency_id)
        ).first()
        if not agreement:
            raise NotFoundError(f"No guarantor agreement for member {member_id}")
        if agreement.is_signed:
            raise GuarantorError("Guarantor agreement is already signed")

        agreement.guarantor_token = _new_token()
        agreement.token_expires_at = _token_expiry()

        event_service.emit_event(
            agency_id=agency_id,
            event_type=event_service.GUARANTOR_LINK_REGENERATED,
            tenancy_id=agreement.tenancy_id,
            member_id=member_id,
            payload={
                "agreement_id": agreement.id,
                "guarantor_email": agreement.guarantor_email,
                "token": agreement.guarantor_token,
                "expires_at": agreement.token_expires_at,
            },
        )
        db.session.commit()
        return agreement

    return run_with_retry(_op)


def get_agreement_by_token(token: str) -> GuarantorAgreement:
    """
    Resolve a guarantor link.

    Raises:
        NotFoundError: Unknown or replaced token
        GuarantorError: Token expired
    """
    if not token:
        raise NotFoundError("Guarantor agreement not found")
    agreement = db.session.query(GuarantorAgreement).filter_by(guarantor_token=token).first()
    if not agreement:
        raise NotFoundError("Guarantor agreement not found")
    if agreement.token_expires_at is not None and agreement.token_expires_at < utcnow():
        raise GuarantorError("Guarantor link has expired; ask the agency for a new one")
    return agreement


def sign_agreement(token: str, *, signature_name: str, signature_data: Optional[str] = None):
    """
    Record the guarantor's signature.

    When it completes the tenancy's paperwork, the tenancy advances to
    approval (see lifecycle_service.advance_if_fully_signed).

    Returns:
        (agreement, TransitionResult | None)
    """
    from .lifecycle_service import advance_if_fully_signed

    def _op():
        agreement = get_agreement_by_token(token)
        if agreement.is_signed:
            raise GuarantorError("Guarantor agreement is already signed")
        tenancy = db.session.get(Tenancy, agreement.tenancy_id)
        if tenancy.status != TENANCY_AWAITING_SIGNATURES:
            raise GuarantorError(f"Tenancy is not awaiting signatures (status {tenancy.status})")
        if not signature_matches(signature_name, agreement.guarantor_name):
            raise ValidationError("Signature must match the guarantor's full name")

        agreement.is_signed = True
        agreement.signed_at = utcnow()
        agreement.signature_data = signature_data or signature_name
        db.session.commit()
        logger.info("Guarantor agreement %s signed for tenancy %s", agreement.id, tenancy.id)
        return agreement, tenancy.id, tenancy.agency_id

    agreement, tenancy_id, agency_id = run_with_retry(_op)
    result = advance_if_fully_signed(tenancy_id, agency_id=agency_id)
    return agreement, result
