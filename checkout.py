"""Payment verification and the payment-to-fulfillment handoff.

A client-asserted payment is accepted only after the gateway signature over
``"{order_id}|{payment_id}"`` checks out. Every check that can reject the
payload runs before that, because once the signature is valid the money has
moved: the business record (order, booking or enrollment) is then always
written, in one transaction with its bookkeeping (stock, cart) and keyed by
the payment id, so a replayed confirmation returns the existing record
instead of writing a second one. Shortfalls found after the signature check
(stock ran out, the product or service was deleted) are flagged on the
record and logged. Shipping and email run after the commit and only ever log
their failures.
"""

import json
import logging
from collections import namedtuple

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

import mailer
from auth import current_customer
from db import get_db
from errors import (
    BadRequest,
    ServerError,
    Unauthorized,
    clean_str,
    require_fields,
    require_int,
    valid_email,
)
from models import (
    CartItem,
    Course,
    CourseEnrollment,
    Order,
    OrderStatus,
    Product,
    Service,
    ServiceBooking,
    ServiceSlot,
    User,
)
from payments import RazorpayGateway, SignatureMismatch
from shipping import register_shipment

logger = logging.getLogger(__name__)

razorpay_bp = Blueprint("razorpay", __name__, url_prefix="/api/razorpay")

VerifiedPayment = namedtuple("VerifiedPayment", "gateway_order_id payment_id")

# model: table keyed by the payment id
# prepare: validates the payload before the signature check, may reject
# record: writes the row after the signature check, never rejects
# after_commit: best-effort side effects for a newly written row
PaymentKind = namedtuple("PaymentKind", "model prepare record after_commit")

DELIVERY_TYPES = ("one-to-one", "recorded")


def _field(data, camel, snake):
    value = data.get(camel) or data.get(snake)
    return clean_str(value) if value else None


def snapshot_items(db, user_id, raw_items):
    """Frozen ``{productId, quantity, price, name}`` list for the order row.

    Falls back to the user's cart when the payload carries no items. A
    product that no longer exists keeps the client's price and name (or
    ``0`` and a placeholder); stock is settled later by ``take_stock``.
    """
    if raw_items is None:
        rows = db.query(CartItem).filter_by(user_id=user_id).all()
        raw_items = [
            {
                "productId": r.product_id,
                "quantity": r.quantity,
                "price": r.product.price if r.product else None,
            }
            for r in rows
        ]
    if not isinstance(raw_items, list) or not raw_items:
        raise BadRequest("items must be a list with at least one item", "INVALID_ITEMS")

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise BadRequest("Each item must be an object", "INVALID_ITEMS")
        try:
            product_id = int(raw.get("productId"))
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise BadRequest("Each item must have productId and quantity", "INVALID_ITEMS")
        if quantity < 1:
            raise BadRequest("Item quantity must be at least 1", "INVALID_ITEMS")
        product = db.get(Product, product_id)
        price = raw.get("price")
        if price is None and product is not None:
            price = product.price
        try:
            price = float(price) if price is not None else 0.0
        except (TypeError, ValueError):
            raise BadRequest("Item price must be a number", "INVALID_ITEMS")
        if price < 0:
            raise BadRequest("Item price must not be negative", "INVALID_ITEMS")
        name = raw.get("name") or (product.name if product else f"Product {product_id}")
        items.append({"productId": product_id, "quantity": quantity, "price": price, "name": name})
    return items


def take_stock(db, product_id, quantity):
    """Decrement stock by ``quantity``, or by whatever is left.

    Returns the number of units that could not be taken; a deleted product
    is short by the whole quantity. Stock never goes below zero.
    """
    taken = (
        db.query(Product)
        .filter(Product.id == product_id, Product.stock >= quantity)
        .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
    )
    if taken:
        return 0
    left = db.query(Product.stock).filter(Product.id == product_id).scalar() or 0
    if left <= 0:
        return quantity
    taken = (
        db.query(Product)
        .filter(Product.id == product_id, Product.stock >= left)
        .update({Product.stock: Product.stock - left}, synchronize_session=False)
    )
    return quantity - left if taken else quantity


def find_recorded(db, model, payment_id):
    return db.query(model).filter(_payment_column(model) == payment_id).first()


def _payment_column(model):
    return model.payment_intent_id if model is Order else model.payment_id


def _commit_or_existing(db, model, payment_id):
    """Commit; on a unique-key race return the row that won, else None."""
    try:
        db.commit()
        return None
    except IntegrityError:
        db.rollback()
        existing = find_recorded(db, model, payment_id)
        if existing is None:
            raise
        return existing


def prepare_order(db, principal, data):
    items = snapshot_items(db, principal.subject_id, data.get("items"))
    total = data.get("totalAmount")
    if total is None:
        total = sum(i["price"] * i["quantity"] for i in items)
    else:
        try:
            total = float(total)
        except (TypeError, ValueError):
            raise BadRequest("totalAmount must be a number", "INVALID_TOTAL_AMOUNT")
        if total <= 0:
            raise BadRequest("totalAmount must be greater than 0", "INVALID_TOTAL_AMOUNT")
    return {"items": items, "total": round(total, 2), "address": data.get("shippingAddress")}


def record_order(db, principal, payment, fields):
    items = fields["items"]
    address = fields["address"]
    try:
        for item in items:
            short = take_stock(db, item["productId"], item["quantity"])
            if short:
                item["backordered"] = short
                logger.warning(
                    "Payment %s: %d of %d units of product %s not in stock, backordered",
                    payment.payment_id,
                    short,
                    item["quantity"],
                    item["productId"],
                )
        order = Order(
            user_id=principal.subject_id,
            items=json.dumps(items),
            total_amount=fields["total"],
            status=OrderStatus.PAID,
            payment_intent_id=payment.payment_id,
            gateway_order_id=payment.gateway_order_id,
            shipping_address=json.dumps(address) if address is not None else None,
        )
        db.add(order)
        # the whole cart is consumed, not just the purchased lines
        db.query(CartItem).filter_by(user_id=principal.subject_id).delete(
            synchronize_session=False
        )
    except Exception:
        db.rollback()
        raise

    winner = _commit_or_existing(db, Order, payment.payment_id)
    if winner is not None:
        return winner, False
    logger.info("Order %s recorded as paid for payment %s", order.id, payment.payment_id)
    return order, True


def _contact_fields(data):
    require_fields(data, "clientName", "clientEmail")
    email = clean_str(data["clientEmail"]).lower()
    if not valid_email(email):
        raise BadRequest("Invalid email format", "INVALID_EMAIL")
    return {
        "client_name": clean_str(data["clientName"]),
        "client_email": email,
        "client_phone": clean_str(data.get("clientPhone")) or "",
    }


def _amount(data):
    try:
        return float(data["amount"]) if data.get("amount") is not None else None
    except (TypeError, ValueError):
        raise BadRequest("amount must be a number", "INVALID_AMOUNT")


def prepare_service_booking(db, principal, data):
    require_fields(data, "date", "timeSlot")
    fields = _contact_fields(data)
    service_id = data.get("serviceId")
    fields.update(
        service_id=require_int(service_id) if service_id not in (None, "") else None,
        service_name=clean_str(data.get("serviceName")) or None,
        date=clean_str(data["date"]),
        time_slot=clean_str(data["timeSlot"]),
        notes=clean_str(data.get("notes")),
        amount=_amount(data),
    )
    return fields


def record_service_booking(db, principal, payment, fields):
    fields = dict(fields)
    service_id = fields.pop("service_id")
    service_name = fields.pop("service_name")
    service = db.get(Service, service_id) if service_id is not None else None
    if service_id is not None and service is None:
        logger.warning(
            "Payment %s is for missing service %s, booked without it",
            payment.payment_id,
            service_id,
        )
    booking = ServiceBooking(
        user_id=principal.subject_id if principal else None,
        service_id=service.id if service else None,
        session_type=service_name or (service.heading if service else None),
        status="paid",
        payment_id=payment.payment_id,
        razorpay_order_id=payment.gateway_order_id,
        **fields,
    )
    db.add(booking)
    slot = (
        db.query(ServiceSlot)
        .filter(
            ServiceSlot.date == booking.date,
            ServiceSlot.time == booking.time_slot,
            ServiceSlot.is_available.is_(True),
            (ServiceSlot.service_id == booking.service_id) | ServiceSlot.service_id.is_(None),
        )
        .first()
    )
    if slot is not None:
        slot.is_available = False

    winner = _commit_or_existing(db, ServiceBooking, payment.payment_id)
    if winner is not None:
        return winner, False
    logger.info("Service booking %s recorded for payment %s", booking.id, payment.payment_id)
    return booking, True


def prepare_course_enrollment(db, principal, data):
    require_fields(data, "courseId", "deliveryType")
    fields = _contact_fields(data)
    if data["deliveryType"] not in DELIVERY_TYPES:
        raise BadRequest(
            f"deliveryType must be one of: {', '.join(DELIVERY_TYPES)}", "INVALID_DELIVERY_TYPE"
        )
    fields.update(
        course_id=require_int(data["courseId"], message="Valid course ID is required"),
        course_name=clean_str(data.get("courseName")) or None,
        delivery_type=data["deliveryType"],
        amount=_amount(data),
    )
    return fields


def record_course_enrollment(db, principal, payment, fields):
    fields = dict(fields)
    course_id = fields.pop("course_id")
    course_name = fields.pop("course_name")
    course = db.get(Course, course_id)
    if course is None:
        logger.warning(
            "Payment %s is for missing course %s, enrolled without it",
            payment.payment_id,
            course_id,
        )
    enrollment = CourseEnrollment(
        user_id=principal.subject_id if principal else None,
        course_id=course.id if course else None,
        course_name=course_name or (course.heading if course else None),
        status="paid",
        payment_id=payment.payment_id,
        razorpay_order_id=payment.gateway_order_id,
        **fields,
    )
    db.add(enrollment)
    winner = _commit_or_existing(db, CourseEnrollment, payment.payment_id)
    if winner is not None:
        return winner, False
    logger.info("Course enrollment %s recorded for payment %s", enrollment.id, payment.payment_id)
    return enrollment, True


def fulfil_order(db, order):
    user = db.get(User, order.user_id)
    try:
        register_shipment(db, order, user)
    except Exception:
        db.rollback()
        logger.exception("Shipment registration failed for order %s", order.id)
    try:
        mailer.send_order_confirmation(order, user)
    except Exception:
        logger.exception("Failed to send order confirmation for order %s", order.id)


def confirm_booking(db, booking):
    service = db.get(Service, booking.service_id) if booking.service_id else None
    name = booking.session_type or (service.heading if service else "your session")
    try:
        mailer.send_booking_confirmation(booking, name)
    except Exception:
        logger.exception("Failed to send booking confirmation for booking %s", booking.id)


def confirm_enrollment(db, enrollment):
    try:
        mailer.send_enrollment_confirmation(enrollment, enrollment.course_name or "your course")
    except Exception:
        logger.exception("Failed to send enrollment email for enrollment %s", enrollment.id)


PAYMENT_KINDS = {
    "order": PaymentKind(Order, prepare_order, record_order, fulfil_order),
    "service": PaymentKind(
        ServiceBooking, prepare_service_booking, record_service_booking, confirm_booking
    ),
    "course": PaymentKind(
        CourseEnrollment, prepare_course_enrollment, record_course_enrollment, confirm_enrollment
    ),
}


@razorpay_bp.route("/create-order", methods=["POST"])
def create_order():
    data = request.get_json(silent=True) or {}
    gateway = RazorpayGateway.from_app()
    order = gateway.create_order(
        data.get("amount"),
        currency=data.get("currency") or current_app.config["DEFAULT_CURRENCY"],
        receipt=data.get("receipt"),
        notes={
            "customerName": data.get("customerName") or "",
            "customerEmail": data.get("customerEmail") or "",
            "customerPhone": data.get("customerPhone") or "",
        },
    )
    return (
        jsonify(
            {
                "success": True,
                "orderId": order["id"],
                "amount": order["amount"],
                "currency": order.get("currency"),
                "key": gateway.key_id,
            }
        ),
        201,
    )


@razorpay_bp.route("/verify-payment", methods=["POST"])
def verify_payment():
    data = request.get_json(silent=True) or {}
    gateway_order_id = _field(data, "razorpayOrderId", "razorpay_order_id")
    payment_id = _field(data, "razorpayPaymentId", "razorpay_payment_id")
    signature = _field(data, "razorpaySignature", "razorpay_signature")
    if not gateway_order_id or not payment_id or not signature:
        raise BadRequest("Missing required fields", "MISSING_REQUIRED_FIELDS")

    kind = data.get("type") or "order"
    if kind not in PAYMENT_KINDS:
        raise BadRequest(f"type must be one of: {', '.join(PAYMENT_KINDS)}", "INVALID_TYPE")
    payload = data.get("data") or {}
    if not isinstance(payload, dict):
        raise BadRequest("data must be an object", "INVALID_DATA")

    gateway = RazorpayGateway.from_app()
    if not gateway.configured:
        logger.error("Razorpay secret key not configured")
        raise ServerError("Payment gateway not configured", "PAYMENT_GATEWAY_NOT_CONFIGURED")

    payment_kind = PAYMENT_KINDS[kind]
    principal = current_customer()
    if kind == "order" and principal is None:
        raise Unauthorized("Authentication required")
    db = get_db()
    existing = find_recorded(db, payment_kind.model, payment_id)
    # a replay has nothing left to validate (the cart is already gone)
    fields = payment_kind.prepare(db, principal, payload) if existing is None else None

    try:
        gateway.verify(gateway_order_id, payment_id, signature)
    except SignatureMismatch:
        logger.error("Payment signature verification failed for payment %s", payment_id)
        raise Unauthorized("Invalid payment signature", "INVALID_SIGNATURE")
    logger.info("Payment verified successfully: %s", payment_id)

    if existing is not None:
        row, created = existing, False
    else:
        payment = VerifiedPayment(gateway_order_id, payment_id)
        try:
            row, created = payment_kind.record(db, principal, payment, fields)
        except Exception:
            logger.exception(
                "Payment %s verified but %s could not be recorded; refund may be needed",
                payment_id,
                kind,
            )
            raise

    if created:
        payment_kind.after_commit(db, row)
    else:
        logger.warning("Payment %s already recorded as %s %s", payment_id, kind, row.id)

    return jsonify(
        {
            "success": True,
            "message": "Payment verified and data saved successfully",
            "paymentId": payment_id,
            "orderId": gateway_order_id,
            "recordId": row.id,
            "type": kind,
            "duplicate": not created,
        }
    )
