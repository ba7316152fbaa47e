"""
Shared test fixtures.

Run: pytest -v
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from app import create_app
from settings import Settings
from tests.fakes import InMemoryRepository

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"

# A fixed clock well inside a month so offsets never cross a boundary by accident.
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

_order_numbers = count(1000)


def make_order(email="a@x.com", total=10.0, payment_status="succeeded", created_at=None,
               name="Alice Smith", **extra):
    doc = {
        "orderNumber": f"ORD-{next(_order_numbers)}",
        "customerInfo": {
            "name": name,
            "email": email,
            "phone": "0400 000 000",
            "address": {"street": "1 Main St", "city": "Melbourne", "state": "VIC",
                        "postalCode": "3000", "country": "AU"},
        },
        "subtotal": total,
        "shippingCost": 0,
        "total": total,
        "paymentStatus": payment_status,
        "status": "confirmed",
        "createdAt": created_at or NOW - timedelta(days=1),
        "items": [{"name": "General Admission", "quantity": 1, "price": total}],
    }
    doc.update(extra)
    return doc


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret", default_admin_email=ADMIN_EMAIL,
                    default_admin_password=ADMIN_PASSWORD)


@pytest.fixture
def app(settings, repo):
    application = create_app(settings, repository=repo)
    application.config.update(TESTING=True)
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    resp = client.post("/api/admins/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client
