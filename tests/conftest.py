"""Pytest fixtures: test client, in-memory SQLite reset per test, tokens, ledger factories, fake Khalti."""
import base64
import json
import os
from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

# In-memory SQLite and test secrets (must be set before the app is imported)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("ESEWA_SECRET_KEY", "test-esewa-secret")
os.environ.setdefault("ESEWA_PRODUCT_CODE", "EPAYTEST")
os.environ.setdefault("KHALTI_SECRET_KEY", "test-khalti-secret")
# The success page may verify many times in a test run
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_VERIFY_PER_MINUTE", "1000")

from sqlmodel import Session, SQLModel  # noqa: E402

from coursepay.api.deps import get_khalti_client  # noqa: E402
from coursepay.core.database import engine  # noqa: E402
from coursepay.core.security import create_access_token  # noqa: E402
from coursepay.main import app  # noqa: E402
from coursepay.models import CartItem, Course, CourseOrder  # noqa: E402
from coursepay.payments.esewa import generate_signature, signature_message  # noqa: E402
from coursepay.payments.khalti import KhaltiClient  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ESEWA_SECRET = "test-esewa-secret"
KHALTI_SECRET = "test-khalti-secret"


@pytest.fixture(autouse=True)
def _reset_db():
    """Fresh tables per test; the in-memory database lives as long as the engine."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def client():
    """TestClient; lifespan creates the tables."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token({'sub': USER_ID})}"}


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": "test-admin-secret"}


class FakeKhalti:
    """httpx.MockTransport backend: lookup results per pidx, a canned initiate response."""

    def __init__(self):
        self.lookups: dict[str, tuple[int, dict]] = {}
        self.initiate_response: tuple[int, dict] = (
            200,
            {"pidx": "pidx-new", "payment_url": "https://test-pay.khalti.com/?pidx=pidx-new"},
        )
        self.requests: list[httpx.Request] = []
        self.raise_timeout = False

    def completed(self, pidx: str, total_amount: int, transaction_id: str = "txn-1") -> None:
        self.lookups[pidx] = (
            200,
            {"pidx": pidx, "total_amount": total_amount, "status": "Completed", "transaction_id": transaction_id, "fee": 0, "refunded": False},
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        body = json.loads(request.content or b"{}")
        if request.url.path.endswith("/lookup/"):
            status, payload = self.lookups.get(body.get("pidx"), (404, {"detail": "Not found.", "error_key": "validation_error"}))
            return httpx.Response(status, json=payload)
        status, payload = self.initiate_response
        return httpx.Response(status, json=payload)

    def client(self) -> KhaltiClient:
        return KhaltiClient(secret_key=KHALTI_SECRET, timeout=5, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_khalti():
    fake = FakeKhalti()
    app.dependency_overrides[get_khalti_client] = fake.client
    return fake


def make_course(db: Session, price: str | int = "1000", instructor_id: str = "instructor-1", course_id: str | None = None) -> Course:
    course = Course(title="Course", price=Decimal(str(price)), instructor_id=instructor_id)
    if course_id:
        course.id = course_id
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def make_order(
    db: Session,
    *,
    course_id: str,
    amount: str | int = "1000",
    user_id: str = USER_ID,
    method: str = "esewa",
    transaction_uuid: str | None = None,
    payment_reference: str | None = None,
    status: str = "pending",
    commission_percentage: str | None = "20",
    age_minutes: int = 0,
) -> CourseOrder:
    created = datetime.utcnow() - timedelta(minutes=age_minutes)
    order = CourseOrder(
        user_id=user_id,
        course_id=course_id,
        amount=Decimal(str(amount)),
        commission_percentage=Decimal(commission_percentage) if commission_percentage is not None else None,
        payment_method=method,
        transaction_uuid=transaction_uuid,
        payment_reference=payment_reference,
        status=status,
        created_at=created,
        updated_at=created,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def add_to_cart(db: Session, course_id: str, user_id: str = USER_ID) -> None:
    db.add(CartItem(user_id=user_id, course_id=course_id))
    db.commit()


def esewa_data(
    *,
    total_amount: str = "1500",
    transaction_uuid: str = "abc123",
    status: str = "COMPLETE",
    transaction_code: str = "000AWEO",
    signature: str | None = None,
    product_code: str = "EPAYTEST",
) -> str:
    """Base64 JSON exactly as eSewa appends it to the success URL."""
    payload = {
        "transaction_code": transaction_code,
        "status": status,
        "total_amount": total_amount,
        "transaction_uuid": transaction_uuid,
        "product_code": product_code,
        "signed_field_names": "total_amount,transaction_uuid,product_code",
        "signature": signature
        or generate_signature(signature_message(total_amount, transaction_uuid, product_code), ESEWA_SECRET),
    }
    return base64.b64encode(json.dumps(payload).encode()).decode()
