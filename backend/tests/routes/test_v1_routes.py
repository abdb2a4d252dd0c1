"""HTTP surface of the booking engine, driven through the FastAPI test client."""

from fastapi.testclient import TestClient
import pytest
from tests.conftest import NEXT_MONDAY

from sessionbook.main import create_app
from sessionbook.models import User

BOOKING_BODY = {
    "booking_date": NEXT_MONDAY.isoformat(),
    "start_time": "09:00",
    "duration_minutes": 60,
}


@pytest.fixture
def client(settings, session_factory, gateway, clock, users):
    app = create_app(settings=settings, session_factory=session_factory, gateway=gateway, clock=clock)
    return TestClient(app)


def _as(user):
    return {"X-User-Id": user.id}


def _book(client, user, therapist, **overrides):
    body = dict(BOOKING_BODY, therapist_id=therapist.id)
    body.update(overrides)
    return client.post("/api/v1/bookings", json=body, headers=_as(user))


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestAvailabilityRoutes:
    def test_slots_for_date(self, client, therapist, monday_rule) -> None:
        response = client.get(
            f"/api/v1/therapists/{therapist.id}/slots", params={"date": NEXT_MONDAY.isoformat()}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["date"] == NEXT_MONDAY.isoformat()
        assert [s["start_time"] for s in data["slots"]] == ["09:00:00", "10:00:00", "11:00:00"]

    def test_malformed_date_is_bad_request(self, client, therapist) -> None:
        response = client.get(f"/api/v1/therapists/{therapist.id}/slots", params={"date": "03/09/2026"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_DATE"

    def test_unknown_therapist_is_not_found(self, client) -> None:
        response = client.get(
            "/api/v1/therapists/01HZZZZZZZZZZZZZZZZZZZZZZZ/slots",
            params={"date": NEXT_MONDAY.isoformat()},
        )
        assert response.status_code == 404

    def test_available_dates(self, client, therapist, monday_rule) -> None:
        response = client.get(
            f"/api/v1/therapists/{therapist.id}/available-dates", params={"month": 3, "year": 2026}
        )
        assert response.status_code == 200
        assert response.json()["dates"] == [
            "2026-03-02",
            "2026-03-09",
            "2026-03-16",
            "2026-03-23",
            "2026-03-30",
        ]

    def test_available_dates_rejects_bad_month(self, client, therapist) -> None:
        response = client.get(
            f"/api/v1/therapists/{therapist.id}/available-dates", params={"month": 13, "year": 2026}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_MONTH"


class TestBookingRoutes:
    def test_requires_identity(self, client, therapist, monday_rule) -> None:
        response = client.post("/api/v1/bookings", json=dict(BOOKING_BODY, therapist_id=therapist.id))
        assert response.status_code == 401

    def test_unknown_identity_is_rejected(self, client, therapist, monday_rule) -> None:
        response = client.post(
            "/api/v1/bookings",
            json=dict(BOOKING_BODY, therapist_id=therapist.id),
            headers={"X-User-Id": "01HZZZZZZZZZZZZZZZZZZZZZZZ"},
        )
        assert response.status_code == 401

    def test_book_and_list(self, client, therapist, patient, monday_rule, grant) -> None:
        grant(patient.id)

        response = _book(client, patient, therapist)

        assert response.status_code == 201
        booking = response.json()
        assert booking["status"] == "confirmed"
        assert booking["patient_id"] == patient.id
        assert booking["end_time"] == "10:00:00"

        listed = client.get("/api/v1/bookings", headers=_as(patient)).json()
        assert [b["id"] for b in listed] == [booking["id"]]

        slots = client.get(
            f"/api/v1/therapists/{therapist.id}/slots", params={"date": NEXT_MONDAY.isoformat()}
        ).json()["slots"]
        assert [s["start_time"] for s in slots] == ["10:00:00", "11:00:00"]

    def test_no_credits_is_payment_required_with_offers(self, client, therapist, patient, monday_rule) -> None:
        response = _book(client, patient, therapist)

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["kind"] == "insufficient_credits"
        assert [p["code"] for p in detail["package_offers"]] == ["single", "bundle-4"]

    def test_taken_slot_is_conflict(self, client, therapist, patient, other_patient, monday_rule, grant) -> None:
        grant(patient.id)
        grant(other_patient.id)
        assert _book(client, other_patient, therapist).status_code == 201

        response = _book(client, patient, therapist)

        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "slot_unavailable"

    def test_slot_not_offered_is_bad_request(self, client, therapist, patient, monday_rule, grant) -> None:
        grant(patient.id)
        response = _book(client, patient, therapist, start_time="09:30")
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "invalid_argument"

    def test_patient_cannot_be_supplied_in_body(self, client, therapist, patient, other_patient, monday_rule) -> None:
        response = _book(client, patient, therapist, patient_id=other_patient.id)
        assert response.status_code == 422

    def test_booking_visible_to_owner_and_therapist_only(
        self, client, therapist, patient, other_patient, admin, monday_rule, grant
    ) -> None:
        grant(patient.id)
        booking_id = _book(client, patient, therapist).json()["id"]
        url = f"/api/v1/bookings/{booking_id}"

        assert client.get(url, headers=_as(patient)).status_code == 200
        assert client.get(url, headers=_as(therapist)).status_code == 200
        assert client.get(url, headers=_as(admin)).status_code == 200
        assert client.get(url, headers=_as(other_patient)).status_code == 404

    def test_status_changes_are_staff_only(self, client, therapist, patient, monday_rule, grant) -> None:
        grant(patient.id)
        booking_id = _book(client, patient, therapist).json()["id"]
        url = f"/api/v1/bookings/{booking_id}/status"

        assert client.post(url, json={"status": "cancelled"}, headers=_as(patient)).status_code == 403

        completed = client.post(url, json={"status": "completed"}, headers=_as(therapist))
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

        again = client.post(url, json={"status": "cancelled"}, headers=_as(therapist))
        assert again.status_code == 422
        assert again.json()["detail"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_other_therapist_cannot_change_status(self, client, db, therapist, patient, monday_rule, grant) -> None:
        stranger = User(email="other-therapist@example.com", full_name="Eze Therapist", role="therapist")
        db.add(stranger)
        db.commit()
        grant(patient.id)
        booking_id = _book(client, patient, therapist).json()["id"]

        response = client.post(
            f"/api/v1/bookings/{booking_id}/status", json={"status": "no_show"}, headers=_as(stranger)
        )
        assert response.status_code == 403


class TestCreditAndPaymentRoutes:
    def test_packages_are_public(self, client) -> None:
        response = client.get("/api/v1/credit-packages")
        assert response.status_code == 200
        assert [p["code"] for p in response.json()] == ["single", "bundle-4"]

    def test_purchase_flow_grants_credits(self, client, gateway, patient) -> None:
        checkout = client.post(
            "/api/v1/payments/checkout", json={"package_code": "bundle-4"}, headers=_as(patient)
        )
        assert checkout.status_code == 201
        reference = checkout.json()["reference"]

        body, signature = gateway.build_callback(reference, event_id="evt_route_1")
        headers = {gateway.signature_header: signature, "Content-Type": "application/json"}
        first = client.post("/api/v1/webhooks/payments", content=body, headers=headers)
        second = client.post("/api/v1/webhooks/payments", content=body, headers=headers)

        assert first.status_code == 200
        assert first.json() == {"event_id": "evt_route_1", "status": "processed", "credits_granted": 4}
        assert second.json()["status"] == "duplicate"

        balance = client.get("/api/v1/credits", headers=_as(patient)).json()
        assert balance["available"] == 4
        assert balance["summary"]["total_granted"] == 4

    def test_unknown_package_is_not_found(self, client, patient) -> None:
        response = client.post(
            "/api/v1/payments/checkout", json={"package_code": "retired"}, headers=_as(patient)
        )
        assert response.status_code == 404

    def test_unsigned_webhook_is_rejected(self, client, gateway) -> None:
        body, _ = gateway.build_callback("sb_anything")
        response = client.post("/api/v1/webhooks/payments", content=body)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_PAYMENT_CALLBACK"


def test_metrics_endpoint_exposes_request_counts(client) -> None:
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "sessionbook_http_requests_total" in response.text


class TestScheduleRoutes:
    def _rules_url(self, therapist):
        return f"/api/v1/therapists/{therapist.id}/rules"

    def test_therapist_adds_and_lists_rules(self, client, therapist) -> None:
        created = client.post(
            self._rules_url(therapist),
            json={"day_of_week": 0, "start_time": "13:00", "end_time": "15:00"},
            headers=_as(therapist),
        )

        assert created.status_code == 201
        rule = created.json()
        assert rule["session_duration_minutes"] == 60
        assert rule["is_active"] is True

        listed = client.get(self._rules_url(therapist), headers=_as(therapist)).json()
        assert [r["id"] for r in listed] == [rule["id"]]

        slots = client.get(
            f"/api/v1/therapists/{therapist.id}/slots", params={"date": NEXT_MONDAY.isoformat()}
        ).json()["slots"]
        assert [s["start_time"] for s in slots] == ["13:00:00", "14:00:00"]

    def test_overlapping_rule_is_conflict(self, client, therapist, monday_rule) -> None:
        response = client.post(
            self._rules_url(therapist),
            json={"day_of_week": 0, "start_time": "11:00", "end_time": "13:00"},
            headers=_as(therapist),
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "AVAILABILITY_OVERLAP"

    def test_zero_duration_is_bad_request(self, client, therapist) -> None:
        response = client.post(
            self._rules_url(therapist),
            json={
                "day_of_week": 1,
                "start_time": "09:00",
                "end_time": "10:00",
                "session_duration_minutes": 0,
            },
            headers=_as(therapist),
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_DURATION"

    def test_replace_and_deactivate_rule(self, client, therapist, monday_rule) -> None:
        url = f"{self._rules_url(therapist)}/{monday_rule.id}"

        replaced = client.put(
            url, json={"start_time": "10:00", "end_time": "12:00"}, headers=_as(therapist)
        )
        assert replaced.status_code == 200
        new_rule = replaced.json()
        assert new_rule["start_time"] == "10:00:00"

        history = client.get(
            self._rules_url(therapist), params={"include_inactive": True}, headers=_as(therapist)
        ).json()
        old = next(r for r in history if r["id"] == monday_rule.id)
        assert old["is_active"] is False
        assert old["superseded_by_id"] == new_rule["id"]

        removed = client.delete(f"{self._rules_url(therapist)}/{new_rule['id']}", headers=_as(therapist))
        assert removed.status_code == 200
        assert removed.json()["is_active"] is False
        assert client.get(self._rules_url(therapist), headers=_as(therapist)).json() == []

    def test_date_exception_lifecycle(self, client, therapist, monday_rule) -> None:
        url = f"/api/v1/therapists/{therapist.id}/exceptions"
        created = client.post(
            url,
            json={"exception_date": NEXT_MONDAY.isoformat(), "is_disabled": True, "reason": "Conference"},
            headers=_as(therapist),
        )
        assert created.status_code == 201
        exception_id = created.json()["id"]

        slots_url = f"/api/v1/therapists/{therapist.id}/slots"
        params = {"date": NEXT_MONDAY.isoformat()}
        assert client.get(slots_url, params=params).json()["slots"] == []

        listed = client.get(
            url,
            params={"start_date": NEXT_MONDAY.isoformat(), "end_date": NEXT_MONDAY.isoformat()},
            headers=_as(therapist),
        ).json()
        assert [e["id"] for e in listed] == [exception_id]

        assert client.delete(f"{url}/{exception_id}", headers=_as(therapist)).status_code == 204
        assert len(client.get(slots_url, params=params).json()["slots"]) == 3

    def test_schedule_belongs_to_its_therapist(self, client, db, therapist, patient, admin, monday_rule) -> None:
        stranger = User(email="second-therapist@example.com", full_name="Ada Therapist", role="therapist")
        db.add(stranger)
        db.commit()
        body = {"day_of_week": 2, "start_time": "09:00", "end_time": "10:00"}

        assert client.post(self._rules_url(therapist), json=body, headers=_as(stranger)).status_code == 403
        assert client.post(self._rules_url(therapist), json=body, headers=_as(patient)).status_code == 403
        assert client.delete(
            f"{self._rules_url(stranger)}/{monday_rule.id}", headers=_as(stranger)
        ).status_code == 404
        assert client.post(self._rules_url(therapist), json=body, headers=_as(admin)).status_code == 201


class TestPatientCancellation:
    def test_patient_cancels_own_booking(self, client, therapist, patient, monday_rule, grant) -> None:
        grant(patient.id)
        booking_id = _book(client, patient, therapist).json()["id"]
        url = f"/api/v1/bookings/{booking_id}/cancel"

        response = client.post(url, json={"reason": "Feeling better"}, headers=_as(patient))

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        slots = client.get(
            f"/api/v1/therapists/{therapist.id}/slots", params={"date": NEXT_MONDAY.isoformat()}
        ).json()["slots"]
        assert "09:00:00" in [s["start_time"] for s in slots]

        again = client.post(url, headers=_as(patient))
        assert again.status_code == 422
        assert again.json()["detail"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_other_patient_cannot_cancel(
        self, client, therapist, patient, other_patient, monday_rule, grant
    ) -> None:
        grant(patient.id)
        booking_id = _book(client, patient, therapist).json()["id"]

        response = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=_as(other_patient))

        assert response.status_code == 404
        booking = client.get(f"/api/v1/bookings/{booking_id}", headers=_as(patient)).json()
        assert booking["status"] == "confirmed"


class TestAdminCreditRoutes:
    def test_admin_grant_is_idempotent(self, client, admin, patient) -> None:
        body = {"patient_id": patient.id, "count": 2, "package_reference": "partner-2026-03"}

        first = client.post("/api/v1/credits/grants", json=body, headers=_as(admin))
        second = client.post("/api/v1/credits/grants", json=body, headers=_as(admin))

        assert first.status_code == 201
        assert len(first.json()["credit_ids"]) == 2
        assert second.json()["credit_ids"] == first.json()["credit_ids"]
        assert client.get("/api/v1/credits", headers=_as(patient)).json()["available"] == 2

    def test_grant_requires_admin(self, client, therapist, patient) -> None:
        body = {"patient_id": patient.id, "count": 1, "package_reference": "goodwill-1"}
        assert client.post("/api/v1/credits/grants", json=body, headers=_as(patient)).status_code == 403
        assert client.post("/api/v1/credits/grants", json=body, headers=_as(therapist)).status_code == 403

    def test_grant_to_non_patient_is_not_found(self, client, admin, therapist) -> None:
        for patient_id in (therapist.id, "01HZZZZZZZZZZZZZZZZZZZZZZZ"):
            response = client.post(
                "/api/v1/credits/grants",
                json={"patient_id": patient_id, "count": 1, "package_reference": "goodwill-2"},
                headers=_as(admin),
            )
            assert response.status_code == 404

    def test_refund_unused_credit(self, client, admin, patient, grant) -> None:
        credit_id = grant(patient.id)[0]
        url = f"/api/v1/credits/{credit_id}/refund"

        response = client.post(url, headers=_as(admin))

        assert response.status_code == 200
        assert response.json() == {"credit_id": credit_id, "status": "refunded", "refunded": True}
        assert client.post(url, headers=_as(admin)).json()["refunded"] is False
        assert client.get("/api/v1/credits", headers=_as(patient)).json()["available"] == 0

    def test_spent_credit_is_not_refundable(self, client, admin, therapist, patient, monday_rule, grant) -> None:
        grant(patient.id)
        credit_id = _book(client, patient, therapist).json()["credit_id"]

        response = client.post(f"/api/v1/credits/{credit_id}/refund", headers=_as(admin))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CREDIT_NOT_REFUNDABLE"
        assert client.post(f"/api/v1/credits/{credit_id}/refund", headers=_as(patient)).status_code == 403
