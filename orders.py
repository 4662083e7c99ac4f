import json
import logging

from flask import Blueprint, current_app, g, jsonify, request

from auth import login_required
from db import get_db
from errors import BadRequest, Forbidden, NotFound, page_args, require_int
from models import CartItem, Order, OrderStatus, OrderTracking, utcnow
from payments import RazorpayGateway

logger = logging.getLogger(__name__)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def record_tracking(db, order, status, description, location=None):
    """Append one row to the order's tracking log (caller commits)."""
    row = OrderTracking(
        order_id=order.id,
        status=status,
        description=description,
        location=location,
    )
    db.add(row)
    return row


def tracking_history(db, order_id):
    return (
        db.query(OrderTracking)
        .filter_by(order_id=order_id)
        .order_by(OrderTracking.created_at.desc(), OrderTracking.id.desc())
        .all()
    )


def delete_order(db, order):
    db.query(OrderTracking).filter_by(order_id=order.id).delete()
    db.delete(order)


def parse_status(value, allowed=None):
    status = OrderStatus.parse(value)
    if status is None or (allowed is not None and status not in allowed):
        names = ", ".join(s.value for s in (allowed or OrderStatus))
        raise BadRequest(f"status must be one of: {names}", "INVALID_STATUS")
    return status


def get_owned_order(db, order_id):
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    if not g.principal.can_access(order.user_id):
        raise Forbidden("Access denied")
    return order


@orders_bp.route("", methods=["GET"])
@login_required
def list_orders():
    db = get_db()
    if request.args.get("id") is not None:
        order = get_owned_order(db, require_int(request.args.get("id")))
        return jsonify(order.to_dict())

    limit, offset = page_args(request.args)
    query = db.query(Order)
    if not g.principal.is_admin:
        query = query.filter(Order.user_id == g.principal.subject_id)
    if request.args.get("status"):
        query = query.filter(Order.status == parse_status(request.args["status"]))
    results = query.order_by(Order.created_at.desc()).limit(limit).offset(offset).all()
    return jsonify([o.to_dict() for o in results])


@orders_bp.route("", methods=["POST"])
@login_required
def prepare_checkout():
    """Snapshot the caller's cart and open a gateway order for its total.

    No order row is written here; that happens once the payment is verified.
    """
    db = get_db()
    rows = db.query(CartItem).filter_by(user_id=g.principal.subject_id).all()
    if not rows:
        raise BadRequest("Cart is empty", "EMPTY_CART")

    items = []
    for row in rows:
        product = row.product
        if product is None or not product.is_active:
            raise NotFound(f"Product {row.product_id} is no longer available", "PRODUCT_NOT_FOUND")
        if row.quantity > (product.stock or 0):
            raise BadRequest(
                f"Only {product.stock or 0} of {product.name} available in stock",
                "INSUFFICIENT_STOCK",
            )
        items.append(
            {
                "productId": product.id,
                "quantity": row.quantity,
                "price": product.price,
                "name": product.name,
            }
        )
    total = round(sum(i["price"] * i["quantity"] for i in items), 2)

    gateway = RazorpayGateway.from_app()
    currency = current_app.config["DEFAULT_CURRENCY"]
    gateway_order = gateway.create_order(
        total,
        currency=currency,
        receipt=f"cart_{g.principal.subject_id[:12]}_{int(utcnow().timestamp())}",
        notes={"customerEmail": g.principal.email, "customerName": g.principal.name},
    )
    return (
        jsonify(
            {
                "gatewayOrderId": gateway_order["id"],
                "amount": gateway_order["amount"],
                "currency": gateway_order.get("currency", currency),
                "key": gateway.key_id,
                "items": items,
                "totalAmount": total,
            }
        ),
        201,
    )


@orders_bp.route("", methods=["PUT"])
@login_required
def update_order():
    db = get_db()
    order = get_owned_order(db, require_int(request.args.get("id")))
    data = request.get_json(silent=True) or {}

    if data.get("status"):
        # customers may only cancel; the customer-side admin role may set anything
        allowed = None if g.principal.is_admin else (OrderStatus.CANCELLED,)
        status = parse_status(data["status"], allowed)
        if status != order.status:
            record_tracking(
                db,
                order,
                status.value,
                f"Status changed from {order.status.value} to {status.value}",
            )
            order.status = status
    if "shippingAddress" in data:
        order.shipping_address = (
            json.dumps(data["shippingAddress"]) if data["shippingAddress"] is not None else None
        )
    order.updated_at = utcnow()
    db.commit()
    return jsonify(order.to_dict())


@orders_bp.route("", methods=["DELETE"])
@login_required
def remove_order():
    db = get_db()
    order = get_owned_order(db, require_int(request.args.get("id")))
    order_id = order.id
    delete_order(db, order)
    db.commit()
    return jsonify({"message": "Order deleted successfully", "id": order_id})


@orders_bp.route("/tracking", methods=["GET"])
@login_required
def order_tracking():
    order_id = require_int(
        request.args.get("orderId"), "INVALID_ORDER_ID", "Valid order ID is required"
    )
    db = get_db()
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    if not g.principal.can_access(order.user_id):
        raise Forbidden("You do not have permission to view this order tracking")
    return jsonify([row.to_dict() for row in tracking_history(db, order_id)])


@orders_bp.route("/track", methods=["GET"])
def track_order():
    """Public order lookup by id, used by the track-order page."""
    raw = request.args.get("orderId") or request.args.get("order_id")
    if not raw:
        raise BadRequest("Order ID is required", "INVALID_ORDER_ID")
    order_id = require_int(raw, "INVALID_ORDER_ID", "Valid order ID is required")
    db = get_db()
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    return jsonify(
        {
            "orderId": order.id,
            "status": order.status.value,
            "amount": order.total_amount,
            "trackingId": order.tracking_id,
            "courierName": order.courier_name,
            "trackingUrl": order.tracking_url,
            "lastUpdated": order.updated_at.isoformat(),
            "placedAt": order.created_at.isoformat(),
            "tracking": [
                {
                    "id": h.id,
                    "status": h.status,
                    "description": h.description,
                    "location": h.location,
                    "createdAt": h.created_at.isoformat(),
                }
                for h in tracking_history(db, order.id)
            ],
        }
    )
