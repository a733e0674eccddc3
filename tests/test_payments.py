"""PayPal payment bridge: order creation, capture and reconciliation."""
import json

import httpx
import pytest

from conftest import SHIPPING_INFO, auth_headers
from storefront.models import Order, PaymentStatus, Product
from storefront.services.payment_service import extract_capture

CREATE_PATH = "/v2/checkout/orders"
CAPTURE_PATH = "/v2/checkout/orders/PP-1/capture"
ORDER_PATH = "/v2/checkout/orders/PP-1"


def captured_order(status="COMPLETED", capture_id="CAP-1", reference_id=None):
    unit = {"payments": {"captures": [{"id": capture_id, "status": status}]}}
    if reference_id:
        unit["reference_id"] = reference_id
    return {
        "id": "PP-1",
        "status": "COMPLETED" if status == "COMPLETED" else "APPROVED",
        "purchase_units": [unit],
    }


def provider_resource(upstream, code=201, **fields):
    """Respond with the PayPal order resource for the last order created at PayPal."""
    def respond(request):
        created = upstream.calls("POST", CREATE_PATH)[-1]
        reference_id = json.loads(created.content)["purchase_units"][0]["reference_id"]
        return httpx.Response(code, json=captured_order(reference_id=reference_id, **fields))
    return respond


@pytest.fixture
def paypal(upstream):
    upstream.routes[("POST", CREATE_PATH)] = httpx.Response(201, json={"id": "PP-1", "status": "CREATED"})
    upstream.routes[("POST", CAPTURE_PATH)] = provider_resource(upstream)
    return upstream


def place_order(client, headers=None, quantity=2):
    response = client.post(
        "/orders",
        json={
            "items": [{"productId": "p1", "quantity": quantity, "price": 5.00}],
            "shippingInfo": SHIPPING_INFO,
        },
        headers=headers or {}
    )
    assert response.status_code == 201
    return response.json()["orderId"]


def create_provider_order(client, order_id, headers=None, amount=21.00):
    return client.post(
        "/payment-provider/create-order",
        json={"orderId": order_id, "amount": amount},
        headers=headers or {}
    )


def capture(client, order_id, headers=None, provider_order_id="PP-1"):
    return client.post(
        "/payment-provider/capture-order",
        json={"orderID": provider_order_id, "orderId": order_id},
        headers=headers or {}
    )


def payment_status(db, order_id):
    db.expire_all()
    return db.get(Order, order_id).payment_status


def test_create_sends_breakdown_that_sums_to_amount(client, db, catalog, paypal):
    order_id = place_order(client)

    response = create_provider_order(client, order_id)

    assert response.status_code == 200
    assert response.json() == {"id": "PP-1"}

    [request] = paypal.calls("POST", CREATE_PATH)
    assert request.headers["Authorization"] == "Bearer token-123"
    payload = json.loads(request.content)
    assert payload["intent"] == "CAPTURE"
    unit = payload["purchase_units"][0]
    assert unit["amount"]["value"] == "21.00"
    assert unit["amount"]["currency_code"] == "GBP"
    assert unit["amount"]["breakdown"] == {
        "item_total": {"currency_code": "GBP", "value": "10.00"},
        "shipping": {"currency_code": "GBP", "value": "10.00"},
        "tax_total": {"currency_code": "GBP", "value": "1.00"},
    }
    assert unit["items"] == [
        {"name": "Yellow garri", "unit_amount": {"currency_code": "GBP", "value": "5.00"}, "quantity": "2"}
    ]
    assert payload["application_context"]["return_url"] == f"http://testserver/order-confirmation/{order_id}"

    order = db.get(Order, order_id)
    assert order.paypal_order_id == "PP-1"
    assert order.payment_status == PaymentStatus.PENDING


def test_create_uses_fresh_access_token_per_operation(client, catalog, paypal):
    order_id = place_order(client)

    create_provider_order(client, order_id)
    capture(client, order_id)

    assert len(paypal.calls("POST", "/v1/oauth2/token")) == 2


def test_create_requires_order_id_and_amount(client, catalog, paypal):
    response = client.post("/payment-provider/create-order", json={"orderId": "x"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Order ID and amount are required"


def test_create_for_unknown_order_is_not_found(client, catalog, paypal):
    assert create_provider_order(client, "missing").status_code == 404


def test_create_for_another_users_order_is_forbidden(client, catalog, users, paypal):
    order_id = place_order(client, headers=auth_headers("u1"))

    response = create_provider_order(client, order_id, headers=auth_headers("u2"))

    assert response.status_code == 403
    assert paypal.calls("POST", CREATE_PATH) == []


def test_capture_completes_payment(client, db, catalog, paypal):
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id)

    assert response.status_code == 200
    assert response.json() == {"status": "COMPLETED", "captureId": "CAP-1"}
    order = db.get(Order, order_id)
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.paypal_capture_id == "CAP-1"


def test_second_capture_is_idempotent(client, db, catalog, paypal):
    order_id = place_order(client)
    create_provider_order(client, order_id)
    capture(client, order_id)

    response = capture(client, order_id)

    assert response.status_code == 200
    assert response.json() == {"status": "COMPLETED", "captureId": "CAP-1", "message": "Order already paid"}
    assert len(paypal.calls("POST", CAPTURE_PATH)) == 1
    assert payment_status(db, order_id) == PaymentStatus.COMPLETED
    assert db.get(Product, "p1").stock == 8
    assert db.get(Order, order_id).paypal_capture_id == "CAP-1"


def test_paid_order_cannot_be_paid_again(client, catalog, paypal):
    order_id = place_order(client)
    create_provider_order(client, order_id)
    capture(client, order_id)

    response = create_provider_order(client, order_id)

    assert response.status_code == 400
    assert response.json()["detail"] == "Order is already paid"
    assert len(paypal.calls("POST", CREATE_PATH)) == 1


def test_provider_rejection_marks_payment_failed(client, db, catalog, paypal):
    paypal.routes[("POST", CAPTURE_PATH)] = httpx.Response(422, json={
        "name": "UNPROCESSABLE_ENTITY",
        "details": [{"issue": "INSTRUMENT_DECLINED"}],
    })
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id)

    assert response.status_code == 500
    assert payment_status(db, order_id) == PaymentStatus.FAILED


def test_failed_payment_can_be_retried_with_new_provider_order(client, db, catalog, paypal):
    paypal.routes[("POST", CAPTURE_PATH)] = httpx.Response(422, json={
        "details": [{"issue": "INSTRUMENT_DECLINED"}],
    })
    order_id = place_order(client)
    create_provider_order(client, order_id)
    capture(client, order_id)

    response = create_provider_order(client, order_id)

    assert response.status_code == 200
    assert payment_status(db, order_id) == PaymentStatus.PENDING


def test_capture_timeout_leaves_payment_pending(client, db, catalog, paypal):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    paypal.routes[("POST", CAPTURE_PATH)] = timeout
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id)

    assert response.status_code == 500
    assert payment_status(db, order_id) == PaymentStatus.PENDING


def test_retry_after_lost_capture_reconciles_from_provider(client, db, catalog, paypal):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    paypal.routes[("POST", CAPTURE_PATH)] = timeout
    order_id = place_order(client)
    create_provider_order(client, order_id)
    capture(client, order_id)

    # The first capture went through at PayPal; the retry is told so
    paypal.routes[("POST", CAPTURE_PATH)] = httpx.Response(422, json={
        "name": "UNPROCESSABLE_ENTITY",
        "details": [{"issue": "ORDER_ALREADY_CAPTURED"}],
    })
    paypal.routes[("GET", ORDER_PATH)] = provider_resource(paypal, code=200, capture_id="CAP-9")

    response = capture(client, order_id)

    assert response.status_code == 200
    assert response.json() == {"status": "COMPLETED", "captureId": "CAP-9"}
    db.expire_all()
    order = db.get(Order, order_id)
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.paypal_capture_id == "CAP-9"


def test_pending_capture_moves_payment_to_processing(client, db, catalog, paypal):
    paypal.routes[("POST", CAPTURE_PATH)] = provider_resource(paypal, status="PENDING")
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id)

    assert response.status_code == 200
    assert response.json() == {"status": "PENDING", "message": "Payment not completed"}
    assert payment_status(db, order_id) == PaymentStatus.PROCESSING

    again = create_provider_order(client, order_id)
    assert again.status_code == 400


def test_declined_capture_marks_payment_failed(client, db, catalog, paypal):
    paypal.routes[("POST", CAPTURE_PATH)] = provider_resource(paypal, status="DECLINED")
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id)

    assert response.json()["status"] == "DECLINED"
    assert payment_status(db, order_id) == PaymentStatus.FAILED


def test_capture_requires_both_ids(client, catalog, paypal):
    response = client.post("/payment-provider/capture-order", json={"orderId": "x"})

    assert response.status_code == 400
    assert response.json()["detail"] == "PayPal Order ID and Order ID are required"


def test_capture_rejects_mismatched_provider_order(client, db, catalog, paypal):
    order_id = place_order(client)
    create_provider_order(client, order_id)

    response = capture(client, order_id, provider_order_id="PP-OTHER")

    assert response.status_code == 400
    assert paypal.calls("POST", "/v2/checkout/orders/PP-OTHER/capture") == []
    assert payment_status(db, order_id) == PaymentStatus.PENDING


def test_capture_for_another_users_order_is_forbidden(client, catalog, users, paypal):
    order_id = place_order(client, headers=auth_headers("u1"))
    create_provider_order(client, order_id, headers=auth_headers("u1"))

    response = capture(client, order_id, headers=auth_headers("u2"))

    assert response.status_code == 403
    assert paypal.calls("POST", CAPTURE_PATH) == []


def test_auth_failure_surfaces_as_server_error(client, catalog, paypal):
    paypal.routes[("POST", "/v1/oauth2/token")] = httpx.Response(401, json={"error": "invalid_client"})
    order_id = place_order(client)

    response = create_provider_order(client, order_id)

    assert response.status_code == 500
    assert paypal.calls("POST", CREATE_PATH) == []


def test_extract_capture_falls_back_to_order_status():
    assert extract_capture({"id": "PP-1", "status": "COMPLETED"}) == {"id": "PP-1", "status": "COMPLETED"}
    assert extract_capture(captured_order(capture_id="CAP-2")) == {"id": "CAP-2", "status": "COMPLETED"}


def test_capture_needs_provider_order_created_for_this_order(client, db, catalog, paypal):
    cheap = place_order(client, quantity=1)
    create_provider_order(client, cheap)
    expensive = place_order(client, quantity=5)

    response = capture(client, expensive)

    assert response.status_code == 400
    assert paypal.calls("POST", CAPTURE_PATH) == []
    assert payment_status(db, expensive) == PaymentStatus.PENDING
    assert db.get(Order, expensive).paypal_capture_id is None


def test_capture_rejects_provider_order_for_another_order(client, db, catalog, paypal):
    first = place_order(client, quantity=1)
    second = place_order(client, quantity=1)
    create_provider_order(client, first)
    db.get(Order, second).paypal_order_id = "PP-1"
    db.commit()

    response = capture(client, second)

    assert response.status_code == 400
    assert response.json()["detail"] == "PayPal order does not match this order"
    assert payment_status(db, second) == PaymentStatus.PENDING
    assert db.get(Order, second).paypal_capture_id is None


def test_cancelled_order_cannot_be_paid(client, db, catalog, users, admin_headers, paypal):
    order_id = place_order(client)
    create_provider_order(client, order_id)
    client.patch(f"/admin/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=admin_headers)

    created = create_provider_order(client, order_id)
    captured = capture(client, order_id)

    assert created.status_code == 400
    assert created.json()["detail"] == "Order has been cancelled"
    assert captured.status_code == 400
    assert len(paypal.calls("POST", CREATE_PATH)) == 1
    assert paypal.calls("POST", CAPTURE_PATH) == []
    assert payment_status(db, order_id) == PaymentStatus.PENDING
