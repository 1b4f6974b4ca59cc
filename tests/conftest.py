import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="medshare-uploads-")

from datetime import date, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from db import create_db_and_tables, get_session, make_engine  # noqa: E402
from main import app  # noqa: E402
from models import User  # noqa: E402
from routers.auth import create_session_token, hash_password  # noqa: E402
from routers.donations import submit_donation  # noqa: E402
from schemas import DonationCreate  # noqa: E402

PASSWORD = "secret#123"


@pytest.fixture(name="session")
def session_fixture():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make(role: str, name: str = "Test User") -> User:
        counter["n"] += 1
        user = User(
            email=f"{role}{counter['n']}@example.com",
            full_name=name,
            contact_number="03001234567",
            address="House 12, Street 4, Lahore",
            role=role,
            password_hash=hash_password(PASSWORD),
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def donor(make_user):
    return make_user("donor", "Dana Donor")


@pytest.fixture
def receiver(make_user):
    return make_user("receiver", "Riz Receiver")


@pytest.fixture
def make_donation(session):
    def _make(donor: User, name: str = "Panadol", days: int = 30, strength: str = "500mg"):
        expiry = date.today() + timedelta(days=days)
        data = DonationCreate(
            medicine_name=name,
            quantity="2 strips",
            medicine_form="Tablet",
            strength=strength,
            manufacturing_date="01-2024",
            expiry_date=expiry.strftime("%d-%m-%Y"),
            donor_name=donor.full_name,
            donor_phone_number=donor.contact_number,
            donor_address=donor.address,
        )
        return submit_donation(session, donor.id, data)

    return _make


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user.id, user.role)}"}
