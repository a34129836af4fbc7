"""HTTP surface of checkout, settlement lookups and the metrics endpoint."""

from ..factories import create_coupon, slot
from .test_cart_routes import GUEST, STRANGER, _item


def test_checkout_opens_payment_intent(client, db, course, tutor, payment_processor):
    create_coupon(db, "SUMMER10")
    client.post("/api/v1/cart/items", json=_item(course, tutor, slot(10)), headers=GUEST)
    client.post("/api/v1/cart/coupon", json={"code": "SUMMER10"}, headers=GUEST)

    response = client.post("/api/v1/checkout/snapshot", headers=GUEST)

    assert response.status_code == 201
    body = response.json()
    assert body["payment_reference"] == "pi_test_123"
    assert body["client_secret"] == "pi_test_123_secret_abc"
    assert body["snapshot"]["total_cents"] == 5400
    assert payment_processor.create_payment_intent.call_count == 1


def test_snapshot_lookup(client, course, tutor):
    client.post("/api/v1/cart/items", json=_item(course, tutor, slot(10)), headers=GUEST)
    client.post("/api/v1/checkout/snapshot", headers=GUEST)

    response = client.get("/api/v1/checkout/snapshot/pi_test_123")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == "60.00"
    assert body["owner_type"] == "session"
    assert body["items"][0]["tutor_earnings"] == "90.00"
    assert body["items"][0]["margin"] == "-30.00"


def test_empty_cart_checkout(client, payment_processor):
    response = client.post("/api/v1/checkout/snapshot", headers=GUEST)

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "EMPTY_CART"
    payment_processor.create_payment_intent.assert_not_called()


def test_checkout_requires_identity(client):
    assert client.post("/api/v1/checkout/snapshot").status_code == 401


def test_unknown_snapshot(client):
    response = client.get("/api/v1/checkout/snapshot/pi_nope")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "SNAPSHOT_NOT_FOUND"


def test_hold_report(client, clock, course, tutor):
    client.post("/api/v1/cart/items", json=_item(course, tutor, slot(10)), headers=GUEST)
    client.post("/api/v1/checkout/snapshot", headers=GUEST)

    assert client.get("/api/v1/checkout/snapshot/pi_test_123/holds").json()["all_live"] is True

    clock.advance(minutes=16)
    client.post("/api/v1/cart/items", json=_item(course, tutor, slot(10)), headers=STRANGER)

    body = client.get("/api/v1/checkout/snapshot/pi_test_123/holds").json()
    assert body["all_live"] is False
    assert body["items"][0]["hold_live"] is False


def test_prometheus_metrics_exposes_hold_counters(client, course, tutor):
    client.post("/api/v1/cart/items", json=_item(course, tutor, slot(10)), headers=GUEST)

    response = client.get("/metrics/prometheus")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "tutorcart_slot_hold_acquisitions_total" in response.text


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
