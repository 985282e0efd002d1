"""POST /payments/verify end to end: provider payload in, settled orders and enrollments out."""
import pytest
from sqlalchemy import event
from sqlmodel import select

from conftest import OTHER_USER_ID, USER_ID, add_to_cart, esewa_data, make_order
from coursepay.core.database import engine
from coursepay.models import AuditLog, CartItem, CourseOrder, Enrollment


def _statuses(db):
    db.expire_all()
    return {o.course_id: o.status for o in db.exec(select(CourseOrder)).all()}


def _enrolled(db, user_id=USER_ID):
    return sorted(e.course_id for e in db.exec(select(Enrollment).where(Enrollment.user_id == user_id)).all())


def test_esewa_batch_checkout_settles_every_order(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1000", transaction_uuid="abc123")
    make_order(db, course_id="c2", amount="500", transaction_uuid="abc123")
    add_to_cart(db, "c1")
    add_to_cart(db, "c2")

    r = client.post("/payments/verify", json={"method": "esewa", "data": esewa_data()}, headers=auth_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert sorted(body["course_ids"]) == ["c1", "c2"]
    assert body["message"] == "Payment verified. You are now enrolled in 2 courses."

    assert _statuses(db) == {"c1": "completed", "c2": "completed"}
    assert _enrolled(db) == ["c1", "c2"]
    assert db.exec(select(CartItem)).all() == []
    assert [a.event for a in db.exec(select(AuditLog)).all()] == ["payment_verified"]


def test_khalti_pidx_settles_the_initiated_order(client, db, auth_headers, fake_khalti):
    make_order(db, course_id="c1", amount="1000", method="khalti", payment_reference="pidx-1", transaction_uuid="batch-1")
    fake_khalti.completed("pidx-1", total_amount=100000, transaction_id="txn-1")

    r = client.post(
        "/payments/verify",
        json={"redirect_params": {"pidx": "pidx-1", "purchase_order_id": "batch-1", "status": "Completed"}},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["course_ids"] == ["c1"]
    assert r.json()["message"] == "Payment verified and enrollment created"

    db.expire_all()
    order = db.exec(select(CourseOrder)).one()
    assert order.status == "completed"
    assert order.payment_reference == "txn-1"
    assert _enrolled(db) == ["c1"]


def test_reload_replays_without_ledger_writes(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1000", transaction_uuid="abc123")
    make_order(db, course_id="c2", amount="500", transaction_uuid="abc123")
    payload = {"method": "esewa", "data": esewa_data()}
    first = client.post("/payments/verify", json=payload, headers=auth_headers)
    assert first.status_code == 200

    writes: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        sql = statement.lstrip().lower()
        if sql.startswith(("update", "insert", "delete")) and any(
            t in sql for t in ("courseorder", "enrollment", "cartitem")
        ):
            writes.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    try:
        second = client.post("/payments/verify", json=payload, headers=auth_headers)
    finally:
        event.remove(engine, "before_cursor_execute", _record)

    assert second.status_code == 200
    assert sorted(second.json()["course_ids"]) == sorted(first.json()["course_ids"])
    assert second.json()["message"] == "Payment already verified. You are enrolled."
    assert writes == []
    assert _enrolled(db) == ["c1", "c2"]


def test_no_matching_order_mutates_nothing(client, db, auth_headers):
    make_order(db, course_id="c1", method="khalti", payment_reference="pidx-other")
    make_order(db, course_id="c2", transaction_uuid="abc123", user_id=OTHER_USER_ID)

    r = client.post(
        "/payments/verify",
        json={"method": "esewa", "data": esewa_data(transaction_uuid="abc123")},
        headers=auth_headers,
    )
    assert r.status_code == 404
    assert r.json()["success"] is False
    assert r.json()["code"] == "no_matching_order"
    assert _statuses(db) == {"c1": "pending", "c2": "pending"}
    assert db.exec(select(Enrollment)).all() == []


def test_nested_method_redirect_quirk(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1500", transaction_uuid="abc123")
    r = client.post(
        "/payments/verify",
        json={"redirect_params": {"method": f"esewa?data={esewa_data()}"}},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["course_ids"] == ["c1"]


def test_nested_method_in_method_field(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1500", transaction_uuid="abc123")
    r = client.post("/payments/verify", json={"method": f"esewa?data={esewa_data()}"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["course_ids"] == ["c1"]


def test_khalti_pidx_recovered_from_recovery_context(client, db, auth_headers, fake_khalti):
    make_order(db, course_id="c1", amount="1000", method="khalti", payment_reference="pidx-1")
    fake_khalti.completed("pidx-1", total_amount=100000)

    r = client.post(
        "/payments/verify",
        json={"recovery": {"payment_method": "khalti", "khalti_pidx": "pidx-1", "pending_course_ids": ["c1"]}},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["course_ids"] == ["c1"]


def test_recovery_context_narrows_the_pending_fallback(client, db, auth_headers):
    make_order(db, course_id="c1", amount="700", transaction_uuid="old-checkout", age_minutes=60)
    make_order(db, course_id="c2", amount="1500", transaction_uuid="lost")

    r = client.post(
        "/payments/verify",
        json={
            "method": "esewa",
            "data": esewa_data(transaction_uuid="not-stored"),
            "recovery": {"payment_method": "esewa", "pending_course_ids": ["c2"]},
        },
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["course_ids"] == ["c2"]
    assert _statuses(db) == {"c1": "pending", "c2": "completed"}


def test_khalti_timeout_is_reported(client, db, auth_headers, fake_khalti):
    make_order(db, course_id="c1", method="khalti", payment_reference="pidx-1")
    fake_khalti.raise_timeout = True
    r = client.post("/payments/verify", json={"method": "khalti", "data": {"pidx": "pidx-1"}}, headers=auth_headers)
    assert r.status_code == 504
    assert r.json()["code"] == "provider_verification_failed"
    assert _statuses(db) == {"c1": "pending"}


def test_esewa_not_complete_is_rejected(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1500", transaction_uuid="abc123")
    r = client.post(
        "/payments/verify",
        json={"method": "esewa", "data": esewa_data(status="PENDING")},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Payment not completed"
    assert _statuses(db) == {"c1": "pending"}


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"method": "esewa", "data": "%%%not-base64%%%"}, "malformed_payload"),
        ({"method": "esewa"}, "malformed_payload"),
        ({"method": "paypal", "data": "x"}, "malformed_payload"),
        ({}, "malformed_payload"),
        ({"method": "khalti"}, "malformed_payload"),
    ],
)
def test_bad_requests(client, auth_headers, payload, code):
    r = client.post("/payments/verify", json=payload, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["code"] == code


def test_orders_that_cannot_settle_fail_the_call(client, db, auth_headers):
    make_order(db, course_id="c1", amount="1500", transaction_uuid="abc123", status="refunded")
    r = client.post("/payments/verify", json={"method": "esewa", "data": esewa_data()}, headers=auth_headers)
    assert r.status_code == 500
    assert r.json()["code"] == "settlement_failed"
    assert _statuses(db) == {"c1": "refunded"}


def test_verify_requires_sign_in(client):
    r = client.post("/payments/verify", json={"method": "esewa", "data": esewa_data()})
    assert r.status_code == 401


def test_invalid_token_is_rejected(client):
    r = client.post(
        "/payments/verify",
        json={"method": "esewa", "data": esewa_data()},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert r.status_code == 401


def test_my_orders_lists_only_the_callers_orders(client, db, auth_headers):
    make_order(db, course_id="c1", transaction_uuid="abc123")
    make_order(db, course_id="c2", user_id=OTHER_USER_ID)
    r = client.get("/payments/orders", headers=auth_headers)
    assert r.status_code == 200
    assert [o["course_id"] for o in r.json()] == ["c1"]
