# Overview: Pytest coverage for the HTTP API; agency scoping, status codes and payload shapes.

import pytest

from lettings.models import GuarantorAgreement, PaymentSchedule


@pytest.fixture
def create_body(house, rooms):
    return {
        "property_id": house.id,
        "tenancy_type": "whole_house",
        "start_date": "2025-09-01",
        "end_date": "2026-08-31",
        "members": [
            {"first_name": "Jo", "surname": "Bloggs", "bedroom_id": rooms[0].id, "rent_pppw": "100.00"},
            {"first_name": "Sam", "surname": "Lee", "bedroom_id": rooms[1].id, "rent_pppw": "120.00"},
        ],
    }


class TestAgencyScope:
    def test_missing_header_is_401(self, client, db_session):
        resp = client.get("/api/tenancies")
        assert resp.status_code == 401

    def test_malformed_header_is_401(self, client, app, db_session):
        resp = client.get("/api/tenancies", headers={app.config["AGENCY_SCOPE_HEADER"]: "abc"})
        assert resp.status_code == 401

    def test_unknown_agency_is_403(self, client, app, db_session):
        resp = client.get("/api/tenancies", headers={app.config["AGENCY_SCOPE_HEADER"]: "9999"})
        assert resp.status_code == 403

    def test_inactive_agency_is_403(self, client, app, db_session, agency):
        agency.is_active = False
        db_session.commit()
        resp = client.get("/api/tenancies", headers={app.config["AGENCY_SCOPE_HEADER"]: str(agency.id)})
        assert resp.status_code == 403

    def test_other_agency_sees_404(self, client, app, db_session, other_agency, active_tenancy):
        headers = {app.config["AGENCY_SCOPE_HEADER"]: str(other_agency.id)}
        resp = client.get(f"/api/tenancies/{active_tenancy.id}", headers=headers)
        assert resp.status_code == 404


class TestTenancyRoutes:
    def test_create_and_list(self, client, scope_headers, create_body):
        resp = client.post("/api/tenancies", json=create_body, headers=scope_headers)
        assert resp.status_code == 201
        tenancy = resp.get_json()["tenancy"]
        assert tenancy["status"] == "pending"
        assert tenancy["rent_amount"] == "220.00"
        assert len(tenancy["members"]) == 2

        listed = client.get("/api/tenancies", headers=scope_headers).get_json()["tenancies"]
        assert [t["id"] for t in listed] == [tenancy["id"]]

    def test_missing_members_is_400(self, client, scope_headers, create_body):
        create_body.pop("members")
        resp = client.post("/api/tenancies", json=create_body, headers=scope_headers)
        assert resp.status_code == 400

    def test_conflict_is_409_with_details(self, client, scope_headers, create_body):
        client.post("/api/tenancies", json=create_body, headers=scope_headers)
        create_body["start_date"] = "2026-08-31"
        create_body["end_date"] = "2027-06-30"
        resp = client.post("/api/tenancies", json=create_body, headers=scope_headers)
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["error"] == "Bedroom conflict"
        assert len(body["conflicts"]) == 2
        assert body["conflicts"][0]["existing_start"] == "2025-09-01"

    def test_rolling_with_end_date_is_422(self, client, scope_headers, create_body):
        create_body["is_rolling_periodic"] = True
        resp = client.post("/api/tenancies", json=create_body, headers=scope_headers)
        assert resp.status_code == 422

    def test_invalid_transition_is_409_with_missing(self, client, scope_headers, create_body):
        tenancy_id = client.post("/api/tenancies", json=create_body, headers=scope_headers).get_json()["tenancy"]["id"]
        resp = client.post(f"/api/tenancies/{tenancy_id}/activate", headers=scope_headers)
        assert resp.status_code == 409
        assert resp.get_json()["missing"]["current_status"] == "pending"

    def test_full_lifecycle_over_http(self, client, scope_headers, create_body):
        tenancy_id = client.post("/api/tenancies", json=create_body, headers=scope_headers).get_json()["tenancy"]["id"]

        sent = client.post(f"/api/tenancies/{tenancy_id}/send-for-signatures", headers=scope_headers)
        assert sent.get_json()["tenancy"]["status"] == "awaiting_signatures"

        members = sent.get_json()["tenancy"]["members"]
        last = None
        for m in members:
            last = client.post(
                f"/api/tenancies/members/{m['id']}/sign",
                json={"signature_name": f"{m['first_name']} {m['surname']}", "payment_option": "monthly"},
                headers=scope_headers,
            )
            assert last.status_code == 200
        assert last.get_json()["transition"]["tenancy"]["status"] == "approval"

        activated = client.post(f"/api/tenancies/{tenancy_id}/activate", headers=scope_headers)
        assert activated.status_code == 200
        assert activated.get_json()["tenancy"]["status"] == "active"

        schedules = client.get(f"/api/tenancies/{tenancy_id}/schedules", headers=scope_headers).get_json()
        assert len(schedules["schedules"]) == 24

        stats = client.get(f"/api/tenancies/{tenancy_id}/stats", headers=scope_headers).get_json()
        assert stats["obligation_count"] == 24

    def test_delete_pending(self, client, scope_headers, create_body):
        tenancy_id = client.post("/api/tenancies", json=create_body, headers=scope_headers).get_json()["tenancy"]["id"]
        resp = client.delete(f"/api/tenancies/{tenancy_id}", headers=scope_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/tenancies/{tenancy_id}", headers=scope_headers).status_code == 404

    def test_expiry_preview_and_expire(self, client, scope_headers, active_tenancy):
        preview = client.get(f"/api/tenancies/{active_tenancy.id}/expiry-preview", headers=scope_headers)
        assert preview.status_code == 200
        assert len(preview.get_json()["keys_outstanding"]) == 2

        expired = client.post(f"/api/tenancies/{active_tenancy.id}/expire", headers=scope_headers)
        assert expired.status_code == 200
        assert expired.get_json()["tenancy"]["status"] == "expired"
        assert expired.get_json()["warnings"]

    def test_key_update(self, client, scope_headers, active_tenancy):
        member_id = active_tenancy.members[0].id
        resp = client.post(
            f"/api/tenancies/members/{member_id}/keys",
            json={"key_status": "collected", "date": "2025-09-01"},
            headers=scope_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["member"]["key_collection_date"] == "2025-09-01"

    def test_rolling_successor_route(self, client, scope_headers, active_tenancy):
        resp = client.post(
            f"/api/tenancies/{active_tenancy.id}/rolling",
            json={"start_date": "2026-09-01", "member_ids": [active_tenancy.members[0].id]},
            headers=scope_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()["tenancy"]
        assert body["is_rolling_periodic"] is True
        assert body["source_tenancy_id"] == active_tenancy.id

    def test_migration_route(self, client, scope_headers, create_body):
        for m in create_body["members"]:
            m["deposit_amount"] = "0"
        resp = client.post("/api/tenancies/migration", json=create_body, headers=scope_headers)
        assert resp.status_code == 201
        assert resp.get_json()["tenancy"]["status"] == "active"


class TestPaymentRoutes:
    def _first_line(self, db_session, tenancy):
        return (
            db_session.query(PaymentSchedule)
            .filter_by(tenancy_id=tenancy.id, payment_type="rent")
            .order_by(PaymentSchedule.due_date, PaymentSchedule.id)
            .first()
        )

    def test_record_partial_then_delete(self, client, db_session, scope_headers, active_tenancy):
        line = self._first_line(db_session, active_tenancy)
        resp = client.post(
            "/api/payments",
            json={"schedule_id": line.id, "amount": "100.00", "payment_date": "2025-09-02"},
            headers=scope_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["obligation"]["status"] == "partial"
        assert body["obligation"]["balance"] == str(line.amount_due - 100)

        deleted = client.delete(f"/api/payments/{body['payment']['id']}", headers=scope_headers)
        assert deleted.status_code == 200
        assert deleted.get_json()["obligation"]["amount_paid"] == "0"

    def test_overpayment_is_400(self, client, db_session, scope_headers, active_tenancy):
        line = self._first_line(db_session, active_tenancy)
        resp = client.post(
            "/api/payments", json={"schedule_id": line.id, "amount": "9999.00"}, headers=scope_headers,
        )
        assert resp.status_code == 400

    def test_unknown_obligation_is_404(self, client, scope_headers, active_tenancy):
        resp = client.post("/api/payments", json={"schedule_id": 999999, "amount": "10.00"}, headers=scope_headers)
        assert resp.status_code == 404

    def test_manual_obligation_and_revert(self, client, scope_headers, active_tenancy):
        resp = client.post(
            "/api/payments/schedules",
            json={
                "tenancy_id": active_tenancy.id,
                "amount_due": "25.00",
                "due_date": "2025-10-01",
                "payment_type": "fee",
                "description": "Late fee",
            },
            headers=scope_headers,
        )
        assert resp.status_code == 201
        obligation = resp.get_json()["obligation"]
        assert obligation["schedule_type"] == "manual"

        client.post("/api/payments", json={"schedule_id": obligation["id"], "amount": "25.00"}, headers=scope_headers)
        reverted = client.post(f"/api/payments/schedules/{obligation['id']}/revert", headers=scope_headers)
        assert reverted.get_json()["removed_payments"] == 1

        removed = client.delete(f"/api/payments/schedules/{obligation['id']}", headers=scope_headers)
        assert removed.status_code == 200


class TestGuarantorRoutes:
    def test_token_is_the_credential(self, client, db_session, scope_headers, make_tenancy, rooms):
        from factories import member

        tenancy = make_tenancy([
            member("Jo", "Bloggs", rooms[0], guarantor_required=True,
                   guarantor_name="Pat Bloggs", guarantor_email="pat@example.com"),
        ])
        client.post(f"/api/tenancies/{tenancy.id}/send-for-signatures", headers=scope_headers)
        token = db_session.query(GuarantorAgreement).filter_by(tenancy_id=tenancy.id).one().guarantor_token

        viewed = client.get(f"/api/guarantors/{token}")
        assert viewed.status_code == 200
        agreement = viewed.get_json()["agreement"]
        assert agreement["tenant_name"] == "Jo Bloggs"
        assert "guarantor_token" not in agreement

        wrong = client.post(f"/api/guarantors/{token}/sign", json={"signature_name": "Someone"})
        assert wrong.status_code == 400

        signed = client.post(f"/api/guarantors/{token}/sign", json={"signature_name": "Pat Bloggs"})
        assert signed.status_code == 200
        assert signed.get_json()["agreement"]["is_signed"] is True

    def test_unknown_token_is_404(self, client, db_session):
        assert client.get("/api/guarantors/not-a-token").status_code == 404


class TestSystemRoutes:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["scheduler"]["details"]["enabled"] is False

    def test_rolling_run_route(self, client, scope_headers, active_tenancy):
        resp = client.post("/api/rolling/run", json={"date": "2025-10-03"}, headers=scope_headers)
        assert resp.status_code == 200
        assert resp.get_json()["processed"] == 0

    def test_cors_for_allowed_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"
