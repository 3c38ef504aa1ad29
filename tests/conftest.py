import itertools

import mongomock
import pytest

from backend import mailer
from backend.app import create_app

ADMIN_EMAIL = "admin@bikeplatform.com"
ADMIN_PASSWORD = "admin-test-password"
VERIFICATION_CODE = "123456"

_sequence = itertools.count(1)


@pytest.fixture
def db():
    return mongomock.MongoClient().bike_platform_test


@pytest.fixture
def sent_emails(monkeypatch):
    outbox = []

    def fake_send(payload, api_key):
        outbox.append(payload)
        return True, None

    monkeypatch.setattr(mailer, "send_email_via_resend", fake_send)
    monkeypatch.setattr(mailer, "generate_verification_code", lambda: VERIFICATION_CODE)
    return outbox


@pytest.fixture
def app(db, sent_emails):
    return create_app(
        test_config={
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hmac",
            "JWT_COOKIE_SECURE": False,
            "BCRYPT_ROUNDS": 4,
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "DEFAULT_ADMIN_PASSWORD": ADMIN_PASSWORD,
            "RESEND_API_KEY": "re_test",
            "TRUSTED_PROXY_HOPS": 0,
        },
        database=db,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(app):
    test_client = app.test_client()
    response = test_client.post(
        "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200, response.get_json()
    return test_client


def register_and_login(app, email, password="rider-pass", name="Rider"):
    test_client = app.test_client()
    test_client.post(
        "/api/auth/register", json={"name": name, "email": email, "password": password}
    )
    test_client.post(
        "/api/auth/verify-email", json={"email": email, "verificationCode": VERIFICATION_CODE}
    )
    response = test_client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return test_client


@pytest.fixture
def user_client(app):
    return register_and_login(app, "rider@example.com")


def partner_payload(**overrides):
    number = next(_sequence)
    payload = {
        "name": f"Partner {number}",
        "phone": f"0171000{number:04d}",
        "email": f"partner{number}@example.com",
        "address": "House 12, Road 4, Dhanmondi",
        "documents": {"nid": f"NID-{number}", "drivingLicense": f"DL-{number}"},
    }
    payload.update(overrides)
    return payload


def bike_payload(**overrides):
    payload = {
        "title": "Yamaha R15 V4",
        "description": "Single owner, serviced regularly, fresh tyres.",
        "brand": "Yamaha",
        "model": "R15",
        "year": 2022,
        "condition": "good",
        "mileage": 12000,
        "price": 10000,
        "purchasePrice": 8000,
        "images": ["https://cdn.example.com/r15.jpg"],
        "features": ["ABS", "LED headlamp"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_partner(admin_client):
    def create(**overrides):
        response = admin_client.post("/api/admin/partners", json=partner_payload(**overrides))
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return create


@pytest.fixture
def make_bike(admin_client):
    def create(**overrides):
        response = admin_client.post("/api/admin/bikes", json=bike_payload(**overrides))
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return create
