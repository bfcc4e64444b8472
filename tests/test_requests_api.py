"""Tests for the donation request HTTP flow.

Covers:
- Creating requests (201 + code, validation and error codes)
- Approve / reject / complete authorization and state checks
- Article status following the request
- Listing and detail visibility
- Notifications queued by transitions
"""

import re

import pytest

from conftest import auth_headers, fetch, make_article, make_user
from models import Article, ArticleStatus, DonationRequest, LockerChannel, RequestStatus, Role


def _create(client, requester, article, message="Please"):
    resp = client.post(
        "/requests",
        json={"articleId": article.id, "message": message},
        headers=auth_headers(requester),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _approve(client, donor, request_id, locker_id="L1", **extra):
    return client.put(
        f"/requests/{request_id}/approve",
        json={"lockerId": locker_id, "lockerLocation": "Building A", **extra},
        headers=auth_headers(donor),
    )


# ── Create ───────────────────────────────────────────────────────────


class TestCreateRequest:
    def test_returns_request_id_and_code(self, client, requester, article):
        body = _create(client, requester, article)

        assert re.fullmatch(r"[0-9]{4}", body["accessCode"])
        stored = fetch(DonationRequest, body["requestId"])
        assert stored.status == RequestStatus.PENDING
        assert stored.message == "Please"
        assert fetch(Article, article.id).status == ArticleStatus.RESERVED

    def test_requires_identity(self, client, article):
        resp = client.post("/requests", json={"articleId": article.id})
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_rejects_tampered_token(self, client, article):
        resp = client.post(
            "/requests",
            json={"articleId": article.id},
            headers={"Authorization": "Bearer forged.token.value"},
        )
        assert resp.status_code == 401

    def test_missing_article_id(self, client, requester):
        resp = client.post("/requests", json={"message": "hi"}, headers=auth_headers(requester))
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_ARTICLE_ID"

    def test_unknown_article(self, client, requester):
        resp = client.post("/requests", json={"articleId": 424242}, headers=auth_headers(requester))
        assert resp.status_code == 404
        assert resp.json()["code"] == "ARTICLE_NOT_FOUND"

    def test_own_article(self, client, donor, article):
        resp = client.post("/requests", json={"articleId": article.id}, headers=auth_headers(donor))

        assert resp.status_code == 400
        assert resp.json()["code"] == "CANNOT_REQUEST_OWN_ARTICLE"
        assert fetch(Article, article.id).status == ArticleStatus.AVAILABLE

    def test_reserved_article(self, client, session, requester, article):
        _create(client, requester, article)
        other = make_user(session, "Olga")

        resp = client.post("/requests", json={"articleId": article.id}, headers=auth_headers(other))
        assert resp.status_code == 400
        assert resp.json()["code"] == "ARTICLE_NOT_AVAILABLE"

    def test_notifies_donor(self, client, donor, requester, article):
        _create(client, requester, article)

        resp = client.get("/users/me/notifications", headers=auth_headers(donor))
        notes = resp.json()
        assert len(notes) == 1
        assert notes[0]["kind"] == "new-request"
        assert "Rami" in notes[0]["body"]


# ── Approve ──────────────────────────────────────────────────────────


class TestApprove:
    def test_returns_same_code(self, client, donor, requester, article):
        created = _create(client, requester, article)

        resp = _approve(client, donor, created["requestId"])

        assert resp.status_code == 200
        assert resp.json()["accessCode"] == created["accessCode"]
        stored = fetch(DonationRequest, created["requestId"])
        assert stored.status == RequestStatus.APPROVED
        assert stored.locker_id == "L1"
        assert stored.locker_location == "Building A"

    def test_arms_locker_and_notifies_requester(self, client, donor, requester, article):
        created = _create(client, requester, article)
        _approve(client, donor, created["requestId"])

        channel = fetch(LockerChannel, "L1")
        assert channel.access_code == created["accessCode"]
        assert channel.action == "ACTIVATE"

        notes = client.get("/users/me/notifications", headers=auth_headers(requester)).json()
        assert notes[0]["kind"] == "request-approved"
        assert notes[0]["data"]["accessCode"] == created["accessCode"]

    def test_forbidden_for_requester(self, client, requester, article):
        created = _create(client, requester, article)
        resp = _approve(client, requester, created["requestId"])
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    def test_not_found(self, client, donor):
        resp = _approve(client, donor, "does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["code"] == "REQUEST_NOT_FOUND"

    def test_locker_required(self, client, donor, requester, article):
        created = _create(client, requester, article)
        resp = client.put(f"/requests/{created['requestId']}/approve", headers=auth_headers(donor))
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_LOCKER_ID"
        assert fetch(DonationRequest, created["requestId"]).status == RequestStatus.PENDING

    def test_double_approve(self, client, donor, requester, article):
        created = _create(client, requester, article)
        first = _approve(client, donor, created["requestId"], locker_id="L1")
        second = _approve(client, donor, created["requestId"], locker_id="L2")

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "INVALID_STATE"
        assert fetch(DonationRequest, created["requestId"]).locker_id == "L1"


# ── Reject ───────────────────────────────────────────────────────────


class TestReject:
    def test_releases_article_for_new_request(self, client, session, donor, requester, article):
        created = _create(client, requester, article)

        resp = client.put(
            f"/requests/{created['requestId']}/reject",
            json={"reason": "Already promised"},
            headers=auth_headers(donor),
        )

        assert resp.status_code == 200
        stored = fetch(DonationRequest, created["requestId"])
        assert stored.status == RequestStatus.REJECTED
        assert stored.rejection_reason == "Already promised"
        assert stored.rejected_at is not None
        assert fetch(Article, article.id).status == ArticleStatus.AVAILABLE

        other = make_user(session, "Olga")
        again = client.post("/requests", json={"articleId": article.id}, headers=auth_headers(other))
        assert again.status_code == 201

    def test_forbidden_for_requester(self, client, requester, article):
        created = _create(client, requester, article)
        resp = client.put(f"/requests/{created['requestId']}/reject", headers=auth_headers(requester))
        assert resp.status_code == 403

    def test_cannot_reject_approved(self, client, donor, requester, article):
        created = _create(client, requester, article)
        _approve(client, donor, created["requestId"])

        resp = client.put(f"/requests/{created['requestId']}/reject", headers=auth_headers(donor))

        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_STATE"
        assert fetch(Article, article.id).status == ArticleStatus.RESERVED

    def test_notifies_requester(self, client, donor, requester, article):
        created = _create(client, requester, article)
        client.put(
            f"/requests/{created['requestId']}/reject",
            json={"reason": "Gone"},
            headers=auth_headers(donor),
        )
        notes = client.get("/users/me/notifications", headers=auth_headers(requester)).json()
        assert notes[0]["kind"] == "request-rejected"
        assert "Gone" in notes[0]["body"]


# ── Complete ─────────────────────────────────────────────────────────


class TestComplete:
    @pytest.mark.parametrize("who", ["donor", "requester"])
    def test_either_party_completes(self, client, donor, requester, article, who):
        created = _create(client, requester, article)
        _approve(client, donor, created["requestId"])
        caller = donor if who == "donor" else requester

        resp = client.put(f"/requests/{created['requestId']}/complete", headers=auth_headers(caller))

        assert resp.status_code == 200
        stored = fetch(DonationRequest, created["requestId"])
        assert stored.status == RequestStatus.COMPLETED
        assert stored.completed_at is not None
        assert fetch(Article, article.id).status == ArticleStatus.DONATED

    def test_stranger_forbidden(self, client, session, donor, requester, article):
        created = _create(client, requester, article)
        _approve(client, donor, created["requestId"])
        stranger = make_user(session, "Sam")

        resp = client.put(f"/requests/{created['requestId']}/complete", headers=auth_headers(stranger))
        assert resp.status_code == 403

    def test_pending_cannot_complete(self, client, donor, requester, article):
        created = _create(client, requester, article)
        resp = client.put(f"/requests/{created['requestId']}/complete", headers=auth_headers(donor))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_STATE"
        assert fetch(Article, article.id).status == ArticleStatus.RESERVED

    def test_completed_is_final(self, client, donor, requester, article):
        created = _create(client, requester, article)
        _approve(client, donor, created["requestId"])
        client.put(f"/requests/{created['requestId']}/complete", headers=auth_headers(donor))

        again = client.put(f"/requests/{created['requestId']}/complete", headers=auth_headers(donor))
        reject = client.put(f"/requests/{created['requestId']}/reject", headers=auth_headers(donor))

        assert again.status_code == 400
        assert reject.status_code == 400
        assert fetch(DonationRequest, created["requestId"]).status == RequestStatus.COMPLETED


# ── Queries ──────────────────────────────────────────────────────────


class TestQueries:
    def test_mine_and_received(self, client, session, donor, requester):
        first = make_article(session, donor, "Chair")
        second = make_article(session, donor, "Table")
        _create(client, requester, first)
        _create(client, requester, second)

        mine = client.get("/requests/mine", headers=auth_headers(requester)).json()
        received = client.get("/requests/received", headers=auth_headers(donor)).json()

        assert {r["articleTitle"] for r in mine} == {"Chair", "Table"}
        assert {r["articleTitle"] for r in received} == {"Chair", "Table"}
        assert client.get("/requests/mine", headers=auth_headers(donor)).json() == []

    def test_detail_visibility(self, client, session, donor, requester, article):
        created = _create(client, requester, article)
        stranger = make_user(session, "Sam")
        admin = make_user(session, "Ada", role=Role.ADMIN)
        url = f"/requests/{created['requestId']}"

        assert client.get(url, headers=auth_headers(donor)).status_code == 200
        assert client.get(url, headers=auth_headers(requester)).status_code == 200
        assert client.get(url, headers=auth_headers(admin)).status_code == 200
        assert client.get(url, headers=auth_headers(stranger)).status_code == 403

        body = client.get(url, headers=auth_headers(requester)).json()
        assert body["status"] == "pending"
        assert body["accessCode"] == created["accessCode"]
