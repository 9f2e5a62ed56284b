from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient

from backend.app.main import create_app
from backend.app.models import utc_now

TODAY = utc_now().date()
START_DATE = TODAY + timedelta(days=45)
EXPIRES_AT = TODAY + timedelta(days=30)


def _candidate_in_interview(client) -> str:
    job = client.post("/jobs", json={"title": "Product Designer", "required_skills": ["Figma"]})
    assert job.status_code == 200
    candidate = client.post(
        "/candidates",
        json={
            "job_id": job.json()["job_id"],
            "name": "Lea Fischer",
            "email": "lea@example.com",
            "skills": ["Figma", "Sketch"],
        },
    )
    candidate_id = candidate.json()["candidate_id"]
    for stage in ("Screening", "Interview"):
        moved = client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": stage})
        assert moved.status_code == 200
    return candidate_id


def _create_offer(client, candidate_id: str, **overrides) -> dict:
    payload = {
        "candidate_id": candidate_id,
        "salary_amount": 68000,
        "salary_currency": "eur",
        "start_date": START_DATE.isoformat(),
        "expires_at": EXPIRES_AT.isoformat(),
        "benefits": ["30 days leave"],
    }
    payload.update(overrides)
    response = client.post("/offers", json=payload)
    assert response.status_code == 200
    return response.json()


def test_create_offer_defaults_title_to_job(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    assert offer["status"] == "draft"
    assert offer["position_title"] == "Product Designer"
    assert offer["salary_currency"] == "EUR"

    again = _create_offer(client, candidate_id)
    assert again["offer_id"] == offer["offer_id"]

    fetched = client.get(f"/offers/{offer['offer_id']}")
    assert fetched.status_code == 200
    listed = client.get(f"/offers?candidate_id={candidate_id}").json()
    assert [item["offer_id"] for item in listed] == [offer["offer_id"]]


def test_offer_validation(client) -> None:
    candidate_id = _candidate_in_interview(client)
    bad_dates = client.post(
        "/offers",
        json={"candidate_id": candidate_id, "start_date": "2026-11-01", "expires_at": "2026-11-15"},
    )
    assert bad_dates.status_code == 422
    bad_salary = client.post("/offers", json={"candidate_id": candidate_id, "salary_amount": 0})
    assert bad_salary.status_code == 422
    missing = client.post("/offers", json={"candidate_id": "cand_missing"})
    assert missing.status_code == 404
    assert client.get("/offers/off_missing").status_code == 404


def test_send_offer_moves_candidate_to_offer(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)

    response = client.post(f"/offers/{offer['offer_id']}/send")
    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["status"] == "sent"
    assert body["offer"]["sent_at_utc"] is not None
    assert body["candidate_stage"] == "Offer"
    assert body["stage_changed"] is True

    types = [item["type"] for item in client.get("/notifications").json()]
    assert types[:2] == ["candidate_moved", "offer_sent"]

    resend = client.post(f"/offers/{offer['offer_id']}/send")
    assert resend.status_code == 200
    assert resend.json()["stage_changed"] is False


def test_send_offer_from_screening_keeps_stage(client) -> None:
    job = client.post("/jobs", json={"title": "Data Analyst"}).json()
    candidate_id = client.post(
        "/candidates",
        json={"job_id": job["job_id"], "name": "Omar Haddad", "email": "omar@example.com"},
    ).json()["candidate_id"]
    client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Screening"})
    offer = _create_offer(client, candidate_id)

    response = client.post(f"/offers/{offer['offer_id']}/send")
    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["status"] == "sent"
    assert body["candidate_stage"] == "Screening"
    assert body["stage_changed"] is False
    assert body["detail"] == (
        "Cannot move candidate from Screening to Offer. Invalid stage transition."
    )


def test_accept_offer_hires_candidate(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")

    response = client.post(
        f"/offers/{offer['offer_id']}/accept",
        json={"response": "Happy to join"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["status"] == "accepted"
    assert body["offer"]["response"] == "Happy to join"
    assert body["candidate_stage"] == "Hired"

    notifications = client.get("/notifications").json()
    accepted = [item for item in notifications if item["type"] == "offer_accepted"]
    assert accepted[0]["category"] == "offer"
    assert accepted[0]["desc"].endswith("Response: Happy to join")


def test_accept_draft_offer_is_409(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    response = client.post(f"/offers/{offer['offer_id']}/accept")
    assert response.status_code == 409
    assert response.json()["detail"] == "offer cannot be accepted from status: draft"


def test_accept_after_manual_rejection_keeps_offer_accepted(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")
    rejected = client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Rejected"})
    assert rejected.status_code == 200

    response = client.post(f"/offers/{offer['offer_id']}/accept")
    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["status"] == "accepted"
    assert body["candidate_stage"] == "Rejected"
    assert body["stage_changed"] is False
    assert body["detail"].startswith("Cannot move candidate from Rejected.")


def test_decline_offer_rejects_candidate(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")

    response = client.post(f"/offers/{offer['offer_id']}/decline", json={"response": "Counter offer"})
    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["status"] == "declined"
    assert body["candidate_stage"] == "Rejected"

    again = client.post(f"/offers/{offer['offer_id']}/decline")
    assert again.status_code == 409


def test_decline_can_leave_candidate_in_offer(monkeypatch) -> None:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("DECLINE_REJECTS_CANDIDATE", "false")
    client = TestClient(create_app())
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")

    response = client.post(f"/offers/{offer['offer_id']}/decline")
    assert response.status_code == 200
    assert response.json()["candidate_stage"] == "Offer"
    assert response.json()["stage_changed"] is False


def test_offer_for_terminal_candidate_is_409(client) -> None:
    candidate_id = _candidate_in_interview(client)
    client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Rejected"})
    response = client.post("/offers", json={"candidate_id": candidate_id})
    assert response.status_code == 409


def test_offer_stage_rule_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("OFFER_STAGE_REQUIRES_OFFER", "false")
    client = TestClient(create_app())
    candidate_id = _candidate_in_interview(client)
    response = client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Offer"})
    assert response.status_code == 200
    assert response.json()["stage"] == "Offer"


def test_viewed_offer_can_still_be_accepted(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    assert client.post(f"/offers/{offer['offer_id']}/view").status_code == 409

    client.post(f"/offers/{offer['offer_id']}/send")
    viewed = client.post(f"/offers/{offer['offer_id']}/view")
    assert viewed.status_code == 200
    assert viewed.json()["status"] == "viewed"
    assert viewed.json()["viewed_at_utc"] is not None
    again = client.post(f"/offers/{offer['offer_id']}/view")
    assert again.json()["viewed_at_utc"] == viewed.json()["viewed_at_utc"]

    response = client.post(f"/offers/{offer['offer_id']}/accept")
    assert response.status_code == 200
    assert response.json()["offer"]["status"] == "accepted"
    assert response.json()["candidate_stage"] == "Hired"


def test_negotiation_rounds_update_terms_then_accept(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    assert offer["expires_at"] == EXPIRES_AT.isoformat()
    assert offer["benefits"] == ["30 days leave"]
    assert offer["negotiation_history"] == []
    client.post(f"/offers/{offer['offer_id']}/send")

    first = client.post(
        f"/offers/{offer['offer_id']}/negotiate",
        json={
            "notes": "Asking for a higher base",
            "salary_amount": 74000,
            "benefits": ["30 days leave", "Home office budget"],
        },
    )
    assert first.status_code == 200
    body = first.json()
    assert body["status"] == "negotiating"
    assert body["salary_amount"] == 74000
    assert body["benefits"] == ["30 days leave", "Home office budget"]
    assert body["start_date"] == START_DATE.isoformat()
    assert [item["notes"] for item in body["negotiation_history"]] == ["Asking for a higher base"]

    later_start = START_DATE + timedelta(days=14)
    second = client.post(
        f"/offers/{offer['offer_id']}/negotiate",
        json={"notes": "Needs two more weeks", "start_date": later_start.isoformat()},
    )
    assert second.status_code == 200
    body = second.json()
    assert body["salary_amount"] == 74000
    assert body["start_date"] == later_start.isoformat()
    assert len(body["negotiation_history"]) == 2
    assert body["negotiation_history"][1]["salary_amount"] is None

    notifications = client.get("/notifications").json()
    negotiating = [item for item in notifications if item["type"] == "offer_negotiating"]
    assert len(negotiating) == 2
    assert negotiating[0]["category"] == "offer"

    accepted = client.post(f"/offers/{offer['offer_id']}/accept")
    assert accepted.status_code == 200
    assert accepted.json()["offer"]["status"] == "accepted"
    assert accepted.json()["offer"]["salary_amount"] == 74000
    assert accepted.json()["candidate_stage"] == "Hired"


def test_negotiation_needs_an_open_sent_offer(client) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    url = f"/offers/{offer['offer_id']}/negotiate"

    draft = client.post(url, json={"notes": "Too early"})
    assert draft.status_code == 409
    assert draft.json()["detail"] == "offer cannot be negotiated from status: draft"

    client.post(f"/offers/{offer['offer_id']}/send")
    too_early = client.post(
        url,
        json={"notes": "Start sooner", "start_date": (EXPIRES_AT - timedelta(days=1)).isoformat()},
    )
    assert too_early.status_code == 409
    assert too_early.json()["detail"] == "expires_at cannot be after start_date"
    assert client.post(url, json={"notes": "x"}).status_code == 422

    client.post(f"/offers/{offer['offer_id']}/decline")
    declined = client.post(url, json={"notes": "One more try"})
    assert declined.status_code == 409
    assert declined.json()["detail"] == "offer cannot be negotiated from status: declined"
    assert client.post("/offers/off_missing/negotiate", json={"notes": "Hello"}).status_code == 404


def test_offer_past_its_expiry_cannot_be_accepted(client, monkeypatch) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")
    monkeypatch.setattr("backend.app.store.utc_now", lambda: utc_now() + timedelta(days=31))

    response = client.post(f"/offers/{offer['offer_id']}/accept")
    assert response.status_code == 409
    assert response.json()["detail"] == f"offer expired on {EXPIRES_AT.isoformat()}"

    fetched = client.get(f"/offers/{offer['offer_id']}").json()
    assert fetched["status"] == "expired"
    assert fetched["responded_at_utc"] is None
    assert client.get(f"/candidates/{candidate_id}").json()["stage"] == "Offer"
    types = [item["type"] for item in client.get("/notifications").json()]
    assert types.count("offer_expired") == 1
    late = client.post(f"/offers/{offer['offer_id']}/negotiate", json={"notes": "Late"})
    assert late.status_code == 409


def test_offer_open_through_its_expiry_day(client, monkeypatch) -> None:
    candidate_id = _candidate_in_interview(client)
    offer = _create_offer(client, candidate_id)
    client.post(f"/offers/{offer['offer_id']}/send")
    monkeypatch.setattr("backend.app.store.utc_now", lambda: utc_now() + timedelta(days=30))

    response = client.post(f"/offers/{offer['offer_id']}/accept")
    assert response.status_code == 200
    assert response.json()["offer"]["status"] == "accepted"


def test_expired_draft_no_longer_blocks_a_new_offer(client) -> None:
    candidate_id = _candidate_in_interview(client)
    lapsed = TODAY - timedelta(days=2)
    stale = _create_offer(client, candidate_id, start_date=None, expires_at=lapsed.isoformat())

    listed = client.get(f"/offers?candidate_id={candidate_id}").json()
    assert [item["status"] for item in listed] == ["expired"]
    assert client.get("/offers?status=expired").json()[0]["offer_id"] == stale["offer_id"]
    blocked = client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Offer"})
    assert blocked.status_code == 409

    fresh = _create_offer(client, candidate_id)
    assert fresh["offer_id"] != stale["offer_id"]
    assert fresh["status"] == "draft"
    moved = client.post(f"/candidates/{candidate_id}/stage", json={"to_stage": "Offer"})
    assert moved.status_code == 200
