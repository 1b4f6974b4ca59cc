from datetime import timedelta
from pathlib import Path

from sqlmodel import select

import storage
from models import Donation, Notification, Request, User, utcnow
from routers.requests import submit_bulk
from routers.users import delete_account

from conftest import PASSWORD, auth_headers

RX = "http://localhost:8000/uploads/requests/rx.jpg"

REGISTRATION = {
    "email": "Amina@Example.com",
    "full_name": "Amina Khan",
    "contact_number": "03211234567",
    "address": "House 7, Block B, Model Town",
    "role": "receiver",
    "password": "pass@word1",
    "accept_terms": True,
}


def test_register_then_login(client):
    resp = client.post("/register", json=REGISTRATION)
    assert resp.status_code == 201, resp.text
    assert resp.json()["user"]["email"] == "amina@example.com"
    assert resp.json()["token"]

    me = client.get("/me")
    assert me.status_code == 200
    assert me.json()["role"] == "receiver"

    login = client.post("/login", json={"email": "amina@example.com", "password": "pass@word1"})
    assert login.status_code == 200
    assert login.json()["role"] == "receiver"
    assert client.get("/me", headers={"Authorization": f"Bearer {login.json()['token']}"}).status_code == 200


def test_register_rejections(client):
    assert client.post("/register", json={**REGISTRATION, "accept_terms": False}).status_code == 400
    assert client.post("/register", json={**REGISTRATION, "password": "password"}).status_code == 422
    assert client.post("/register", json={**REGISTRATION, "contact_number": "12345"}).status_code == 422
    assert client.post("/register", json={**REGISTRATION, "role": "Need A Medicine"}).status_code == 422

    assert client.post("/register", json=REGISTRATION).status_code == 201
    dup = client.post("/register", json={**REGISTRATION, "role": "donor"})
    assert dup.status_code == 400
    assert "another role" in dup.json()["detail"]


def test_bad_login(client, donor):
    resp = client.post("/login", json={"email": donor.email, "password": "wrong#123"})
    assert resp.status_code == 400
    assert client.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 200


def test_invalid_token(client):
    assert client.get("/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def _reset_token(client, session, user):
    resp = client.post("/forgot-password", json={"email": user.email})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Reset link sent to email."}
    session.refresh(user)
    return user.reset_token


def test_forgot_password_issues_fifteen_minute_token(client, session, donor, caplog):
    caplog.set_level("INFO", logger="routers.auth")
    token = _reset_token(client, session, donor)

    assert len(token) == 40
    assert timedelta(minutes=14) < donor.reset_expires - utcnow().replace(tzinfo=None) <= timedelta(minutes=15)
    assert f"/reset-password/{token}" in caplog.text
    assert client.post("/forgot-password", json={"email": "nobody@example.com"}).status_code == 400


def test_reset_password_with_valid_token(client, session, donor):
    token = _reset_token(client, session, donor)

    resp = client.post("/reset-password", json={"token": f" {token} ", "new_password": "fresh#pass9"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Password reset successful."}
    assert client.post("/login", json={"email": donor.email, "password": "fresh#pass9"}).status_code == 200
    assert client.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 400

    session.refresh(donor)
    assert donor.reset_token is None
    reused = client.post("/reset-password", json={"token": token, "new_password": "other#pass9"})
    assert reused.status_code == 400
    assert reused.json()["detail"] == "Invalid or expired token."


def test_reset_password_rejects_bad_or_expired_token(client, session, donor):
    token = _reset_token(client, session, donor)
    body = {"new_password": "fresh#pass9"}

    assert client.post("/reset-password", json={**body, "token": "not-a-token"}).status_code == 400

    donor.reset_expires = utcnow() - timedelta(minutes=1)
    session.add(donor)
    session.commit()
    expired = client.post("/reset-password", json={**body, "token": token})
    assert expired.status_code == 400
    assert expired.json()["detail"] == "Invalid or expired token."
    assert client.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 200


def test_reset_password_requires_strong_password(client, session, donor):
    token = _reset_token(client, session, donor)

    weak = client.post("/reset-password", json={"token": token, "new_password": "password"})
    assert weak.status_code == 400
    assert "at least 8 characters" in weak.json()["detail"]

    session.refresh(donor)
    assert donor.reset_token == token
    assert client.post("/login", json={"email": donor.email, "password": PASSWORD}).status_code == 200


def test_update_profile_and_verify_password(client, donor, make_user):
    headers = auth_headers(donor)
    resp = client.patch(
        "/users/me",
        json={"full_name": "Dana D.", "password": "new#pass1"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["full_name"] == "Dana D."

    assert client.post("/users/verify-password", json={"password": "new#pass1"}, headers=headers).json() == {"valid": True}
    assert client.post("/users/verify-password", json={"password": PASSWORD}, headers=headers).json()["valid"] is False

    taken = make_user("receiver").email
    assert client.patch("/users/me", json={"email": taken}, headers=headers).status_code == 400


def test_delete_donor_account_cascades(session, donor, receiver, make_user, make_donation):
    photo = Path(storage.UPLOAD_DIR) / "donations" / "photo.jpg"
    photo.parent.mkdir(parents=True, exist_ok=True)
    photo.write_bytes(b"img")
    donation = make_donation(donor)
    donation.images = [storage.UPLOAD_URL_PREFIX + "donations/photo.jpg"]
    session.add(donation)
    session.commit()

    other_donor = make_user("donor")
    other_donation = make_donation(other_donor)
    submit_bulk(session, receiver.id, [donation.id, other_donation.id], ["A", "B"],
                [donor.id, other_donor.id], [], RX)

    donor_id = donor.id
    delete_account(session, session.get(User, donor_id))

    assert session.get(User, donor_id) is None
    assert session.exec(select(Donation).where(Donation.donor_id == donor_id)).all() == []
    remaining = session.exec(select(Request)).all()
    assert [r.donation_id for r in remaining] == [other_donation.id]
    assert session.exec(select(Notification).where(Notification.user_id == donor_id)).all() == []
    assert not photo.exists()


def test_delete_receiver_account_over_http(client, session, donor, receiver, make_donation):
    receiver_id = receiver.id
    submit_bulk(session, receiver_id, [make_donation(donor).id], ["A"], [donor.id], [], RX)

    resp = client.delete("/users/me", headers=auth_headers(receiver))

    assert resp.status_code == 204
    assert session.exec(select(Request)).all() == []
    assert session.get(User, receiver_id) is None
    assert session.get(User, donor.id) is not None
