"""Payment verification and the order it produces."""

import pytest

import checkout
from conftest import payment_body, sign
from mailer import mail
from models import (
    CartItem,
    Course,
    CourseEnrollment,
    Order,
    OrderStatus,
    OrderTracking,
    Product,
    Service,
    ServiceBooking,
    ServiceSlot,
)
from payments import RazorpayGateway, SignatureMismatch
from shipping import ShiprocketClient

ADDRESS = {
    "name": "Asha Rao",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip": "560001",
    "country": "India",
    "phone": "9999999999",
}


@pytest.fixture
def cart_with_two(client, customer, make_product):
    """Product 7 at 500, two of them in the customer's cart."""
    make_product(id=7, price=500.0, stock=5)
    resp = client.post("/api/cart", json={"productId": 7, "quantity": 2})
    assert resp.status_code == 201
    return resp.get_json()


@pytest.fixture
def shipping_ok(monkeypatch):
    monkeypatch.setattr(
        ShiprocketClient,
        "create_order",
        lambda self, payload: {"order_id": 555, "shipment_id": 777},
    )
    monkeypatch.setattr(
        ShiprocketClient,
        "assign_awb",
        lambda self, shipment_id: {
            "response": {"data": {"awb_code": "AWB123", "courier_name": "Delhivery"}}
        },
    )


class TestSignature:
    def test_gateway_verifies_order_pipe_payment(self, app):
        with app.app_context():
            gateway = RazorpayGateway.from_app()
            gateway.verify("order_1", "pay_1", sign("order_1", "pay_1"))
            with pytest.raises(SignatureMismatch):
                gateway.verify("order_1", "pay_1", sign("order_1", "pay_2"))
            with pytest.raises(SignatureMismatch):
                gateway.verify("order_1", "pay_1", sign("order_1", "pay_1", secret="other"))

    def test_tampered_signature_writes_nothing(self, client, cart_with_two, db):
        body = payment_body(data={"shippingAddress": ADDRESS})
        last = body["razorpaySignature"][-1]
        body["razorpaySignature"] = body["razorpaySignature"][:-1] + ("0" if last != "0" else "1")

        resp = client.post("/api/razorpay/verify-payment", json=body)

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "INVALID_SIGNATURE"
        assert db.query(Order).count() == 0
        assert db.query(CartItem).count() == 1
        assert db.get(Product, 7).stock == 5

    def test_missing_identifiers(self, client, customer):
        resp = client.post(
            "/api/razorpay/verify-payment", json={"razorpayOrderId": "order_1", "type": "order"}
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "MISSING_REQUIRED_FIELDS"

    def test_unknown_type(self, client, customer):
        resp = client.post("/api/razorpay/verify-payment", json=payment_body(kind="gift"))
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_TYPE"

    def test_missing_secret(self, app, client, cart_with_two, db):
        app.config["RAZORPAY_KEY_SECRET"] = None
        resp = client.post("/api/razorpay/verify-payment", json=payment_body())
        assert resp.status_code == 500
        assert resp.get_json()["code"] == "PAYMENT_GATEWAY_NOT_CONFIGURED"
        assert db.query(Order).count() == 0

    def test_snake_case_names_accepted(self, client, cart_with_two):
        body = payment_body()
        snake = {
            "razorpay_order_id": body["razorpayOrderId"],
            "razorpay_payment_id": body["razorpayPaymentId"],
            "razorpay_signature": body["razorpaySignature"],
            "type": "order",
        }
        resp = client.post("/api/razorpay/verify-payment", json=snake)
        assert resp.status_code == 200

    def test_order_requires_login(self, client, make_product, db):
        make_product(id=7)
        resp = client.post("/api/razorpay/verify-payment", json=payment_body())
        assert resp.status_code == 401
        assert db.query(Order).count() == 0


class TestOrderPayment:
    def test_end_to_end_without_shipping(self, client, cart_with_two, db):
        with mail.record_messages() as outbox:
            resp = client.post(
                "/api/razorpay/verify-payment",
                json=payment_body(data={"shippingAddress": ADDRESS}),
            )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["paymentId"] == "pay_123"
        assert body["orderId"] == "order_ABC"
        assert body["duplicate"] is False

        order = db.get(Order, body["recordId"])
        assert order.status == OrderStatus.PAID
        assert order.total_amount == 1000
        assert order.payment_intent_id == "pay_123"
        assert order.item_list == [
            {"productId": 7, "quantity": 2, "price": 500.0, "name": "Rose Quartz Bracelet"}
        ]
        assert order.address == ADDRESS
        assert order.tracking_id is None
        assert db.query(CartItem).count() == 0
        assert db.get(Product, 7).stock == 3
        assert db.query(OrderTracking).count() == 0
        assert any("confirmed" in m.subject for m in outbox)

    def test_end_to_end_with_shipping(self, client, cart_with_two, db, shipping_ok):
        resp = client.post(
            "/api/razorpay/verify-payment", json=payment_body(data={"shippingAddress": ADDRESS})
        )

        assert resp.status_code == 200
        order = db.get(Order, resp.get_json()["recordId"])
        assert order.status == OrderStatus.PAID
        assert order.shipping_order_id == "555"
        assert order.shipping_shipment_id == "777"
        assert order.tracking_id == "AWB123"
        assert order.courier_name == "Delhivery"
        tracking = db.query(OrderTracking).filter_by(order_id=order.id).all()
        assert [(t.status, t.location) for t in tracking] == [("Processing", "Warehouse")]

    def test_whole_cart_is_cleared(self, client, cart_with_two, make_product, db):
        make_product(id=8, name="Tarot Deck", price=1200.0, stock=3)
        client.post("/api/cart", json={"productId": 8, "quantity": 1})

        # pays for product 7 only
        resp = client.post(
            "/api/razorpay/verify-payment",
            json=payment_body(data={"items": [{"productId": 7, "quantity": 2, "price": 500}]}),
        )

        assert resp.status_code == 200
        assert db.query(CartItem).count() == 0
        assert db.get(Product, 8).stock == 3

    def test_replay_is_idempotent(self, client, cart_with_two, db):
        first = client.post("/api/razorpay/verify-payment", json=payment_body())
        with mail.record_messages() as outbox:
            second = client.post("/api/razorpay/verify-payment", json=payment_body())

        assert second.status_code == 200
        assert second.get_json()["duplicate"] is True
        assert second.get_json()["recordId"] == first.get_json()["recordId"]
        assert db.query(Order).count() == 1
        assert db.get(Product, 7).stock == 3
        assert outbox == []

    def test_short_stock_still_records_order(self, client, cart_with_two, db):
        product = db.get(Product, 7)
        product.stock = 1
        db.commit()

        resp = client.post("/api/razorpay/verify-payment", json=payment_body())

        assert resp.status_code == 200
        db.expire_all()
        order = db.get(Order, resp.get_json()["recordId"])
        assert order.status == OrderStatus.PAID
        assert order.item_list[0]["backordered"] == 1
        assert db.get(Product, 7).stock == 0
        assert db.query(CartItem).count() == 0

    def test_deleted_product_still_records_order(self, client, cart_with_two, db):
        db.delete(db.get(Product, 7))
        db.commit()

        resp = client.post(
            "/api/razorpay/verify-payment", json=payment_body(data={"totalAmount": 1000})
        )

        assert resp.status_code == 200
        order = db.get(Order, resp.get_json()["recordId"])
        assert order.total_amount == 1000
        assert order.item_list == [
            {"productId": 7, "quantity": 2, "price": 0.0, "name": "Product 7", "backordered": 2}
        ]
        assert db.query(CartItem).count() == 0

    def test_bad_payload_rejected_before_signature(self, client, cart_with_two, db):
        body = payment_body(data={"totalAmount": "lots"})
        body["razorpaySignature"] = sign("order_ABC", "pay_other")

        resp = client.post("/api/razorpay/verify-payment", json=body)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_TOTAL_AMOUNT"
        assert db.query(Order).count() == 0
        assert db.query(CartItem).count() == 1

    def test_total_supplied_by_client_is_kept(self, client, cart_with_two, db):
        resp = client.post(
            "/api/razorpay/verify-payment", json=payment_body(data={"totalAmount": 950})
        )
        assert db.get(Order, resp.get_json()["recordId"]).total_amount == 950

    def test_email_failure_does_not_fail_payment(self, client, cart_with_two, db, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(checkout.mailer, "send_order_confirmation", boom)
        resp = client.post("/api/razorpay/verify-payment", json=payment_body())
        assert resp.status_code == 200
        assert db.query(Order).count() == 1


class TestServiceAndCoursePayment:
    def test_service_booking_takes_slot(self, client, db):
        service = Service(heading="Tarot Reading", price=1500)
        db.add(service)
        db.commit()
        db.add(ServiceSlot(service_id=service.id, date="2030-01-02", time="9:00 AM"))
        db.commit()

        resp = client.post(
            "/api/razorpay/verify-payment",
            json=payment_body(
                payment_id="pay_srv",
                kind="service",
                data={
                    "serviceId": service.id,
                    "clientName": "Asha",
                    "clientEmail": "asha@example.com",
                    "date": "2030-01-02",
                    "timeSlot": "9:00 AM",
                    "amount": 1500,
                },
            ),
        )

        assert resp.status_code == 200
        booking = db.get(ServiceBooking, resp.get_json()["recordId"])
        assert booking.status == "paid"
        assert booking.payment_id == "pay_srv"
        db.expire_all()
        assert db.query(ServiceSlot).one().is_available is False

    def test_course_enrollment(self, client, db):
        course = Course(heading="Tarot Foundations", price=5000)
        db.add(course)
        db.commit()

        body = payment_body(
            payment_id="pay_course",
            kind="course",
            data={
                "courseId": course.id,
                "clientName": "Asha",
                "clientEmail": "asha@example.com",
                "deliveryType": "recorded",
            },
        )
        first = client.post("/api/razorpay/verify-payment", json=body)
        second = client.post("/api/razorpay/verify-payment", json=body)

        assert first.status_code == 200
        assert second.get_json()["duplicate"] is True
        assert db.query(CourseEnrollment).count() == 1

    def test_course_bad_delivery_type(self, client, db):
        course = Course(heading="Tarot Foundations", price=5000)
        db.add(course)
        db.commit()
        resp = client.post(
            "/api/razorpay/verify-payment",
            json=payment_body(
                kind="course",
                data={
                    "courseId": course.id,
                    "clientName": "Asha",
                    "clientEmail": "asha@example.com",
                    "deliveryType": "live",
                },
            ),
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_DELIVERY_TYPE"

    def test_missing_service_still_booked(self, client, db):
        resp = client.post(
            "/api/razorpay/verify-payment",
            json=payment_body(
                payment_id="pay_gone",
                kind="service",
                data={
                    "serviceId": 999,
                    "serviceName": "Healing Session",
                    "clientName": "Asha",
                    "clientEmail": "asha@example.com",
                    "date": "2030-01-02",
                    "timeSlot": "9:00 AM",
                },
            ),
        )

        assert resp.status_code == 200
        booking = db.get(ServiceBooking, resp.get_json()["recordId"])
        assert booking.service_id is None
        assert booking.session_type == "Healing Session"
        assert booking.status == "paid"

    def test_missing_course_still_enrolled(self, client, db):
        resp = client.post(
            "/api/razorpay/verify-payment",
            json=payment_body(
                payment_id="pay_gone_course",
                kind="course",
                data={
                    "courseId": 999,
                    "courseName": "Tarot Foundations",
                    "clientName": "Asha",
                    "clientEmail": "asha@example.com",
                    "deliveryType": "recorded",
                },
            ),
        )

        assert resp.status_code == 200
        enrollment = db.get(CourseEnrollment, resp.get_json()["recordId"])
        assert enrollment.course_id is None
        assert enrollment.course_name == "Tarot Foundations"
        assert enrollment.to_dict()["courseName"] == "Tarot Foundations"


class TestCreateOrder:
    def test_amount_in_paise(self, client, gateway_orders):
        resp = client.post("/api/razorpay/create-order", json={"amount": 499.5})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["amount"] == 49950
        assert body["currency"] == "INR"
        assert body["key"] == "rzp_test_key"
        assert gateway_orders.created[0]["amount"] == 49950

    def test_below_minimum(self, client, gateway_orders):
        resp = client.post("/api/razorpay/create-order", json={"amount": 0.5})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_AMOUNT"
        assert gateway_orders.created == []

    def test_prepare_checkout_from_cart(self, client, cart_with_two, gateway_orders, db):
        resp = client.post("/api/orders")
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["totalAmount"] == 1000
        assert body["amount"] == 100000
        assert body["gatewayOrderId"] == "order_test1"
        assert db.query(Order).count() == 0

    def test_prepare_checkout_empty_cart(self, client, customer, gateway_orders):
        resp = client.post("/api/orders")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "EMPTY_CART"
