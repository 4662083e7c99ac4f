"""Back-office order management, bearer-authenticated."""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

import mailer
from auth import admin_required
from db import get_db
from errors import BadRequest, NotFound, clean_str, page_args, require_int
from models import ADMIN_STATUSES, Order, OrderTracking, User, utcnow
from orders import delete_order, parse_status, record_tracking, tracking_history

logger = logging.getLogger(__name__)

admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


def _order_or_404(db, order_id):
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    return order


def _requested_ids(data):
    if data.get("orderIds") is not None:
        raw = data["orderIds"]
        if not isinstance(raw, list) or not raw:
            raise BadRequest("orderIds must be a non-empty list", "INVALID_ORDER_ID")
    elif data.get("orderId") not in (None, ""):
        raw = [data["orderId"]]
    else:
        raise BadRequest("Order ID is required", "MISSING_ORDER_ID")
    ids = [require_int(v, "INVALID_ORDER_ID", "Valid order ID is required") for v in raw]
    # keep request order, drop repeats
    return list(dict.fromkeys(ids))


def notify_status_change(order, previous):
    if order.user is None:
        return
    try:
        mailer.send_order_status_update(order, order.user, previous)
    except Exception:
        logger.exception("Failed to send status update email for order %s", order.id)


@admin_orders_bp.route("", methods=["GET"])
@admin_required
def list_orders():
    db = get_db()
    if request.args.get("id") is not None:
        order = _order_or_404(
            db, require_int(request.args.get("id"), message="Valid order ID is required")
        )
        return jsonify(order.to_dict(with_user=True))

    limit, offset = page_args(request.args)
    query = db.query(Order).outerjoin(User, Order.user_id == User.id)
    if request.args.get("status"):
        query = query.filter(Order.status == parse_status(request.args["status"]))
    search = request.args.get("search")
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.email.like(pattern), User.name.like(pattern)))
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    return jsonify([o.to_dict(with_user=True) for o in rows])


@admin_orders_bp.route("", methods=["PUT"])
@admin_required
def update_orders():
    """Set one status on one or many orders.

    Every order gets exactly one tracking row; status emails go out after
    the commit and never fail the request.
    """
    data = request.get_json(silent=True) or {}
    ids = _requested_ids(data)
    if not data.get("status"):
        raise BadRequest("Status is required", "MISSING_STATUS")
    status = parse_status(data["status"], ADMIN_STATUSES)

    db = get_db()
    orders = db.query(Order).filter(Order.id.in_(ids)).all()
    found = {o.id: o for o in orders}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFound(f"Order not found: {', '.join(map(str, missing))}", "ORDER_NOT_FOUND")

    changes = []
    for order_id in ids:
        order = found[order_id]
        previous = order.status
        order.status = status
        if data.get("courierName"):
            order.courier_name = clean_str(data["courierName"])
        if data.get("trackingId"):
            order.tracking_id = clean_str(data["trackingId"])
        order.updated_at = utcnow()
        record_tracking(
            db,
            order,
            status.value,
            f"Status changed from {previous.value} to {status.value}",
        )
        changes.append((order, previous))
    db.commit()
    logger.info("Admin set status %s on orders %s", status.value, ids)

    for order, previous in changes:
        notify_status_change(order, previous)

    if data.get("orderIds") is not None:
        return jsonify(
            {
                "success": True,
                "updated": len(changes),
                "orders": [o.to_dict(with_user=True) for o, _ in changes],
            }
        )
    return jsonify(changes[0][0].to_dict(with_user=True))


@admin_orders_bp.route("", methods=["DELETE"])
@admin_required
def remove_order():
    db = get_db()
    order = _order_or_404(db, require_int(request.args.get("id")))
    order_id = order.id
    delete_order(db, order)
    db.commit()
    logger.info("Admin deleted order %s", order_id)
    return jsonify({"message": "Order deleted successfully", "id": order_id})


@admin_orders_bp.route("/tracking", methods=["GET"])
@admin_required
def get_tracking():
    order_id = require_int(
        request.args.get("orderId"), "INVALID_ORDER_ID", "Valid order ID is required"
    )
    db = get_db()
    _order_or_404(db, order_id)
    return jsonify([row.to_dict() for row in tracking_history(db, order_id)])


@admin_orders_bp.route("/tracking", methods=["POST"])
@admin_required
def add_tracking():
    data = request.get_json(silent=True) or {}
    if data.get("orderId") in (None, "") or not data.get("status") or not data.get("description"):
        raise BadRequest(
            "Missing required fields: orderId, status, and description are required",
            "MISSING_REQUIRED_FIELDS",
        )
    order_id = require_int(data["orderId"], message="Invalid orderId: must be a valid integer")
    status = clean_str(data["status"])
    description = clean_str(data["description"])
    if not status or not description:
        raise BadRequest("Status and description cannot be empty", "MISSING_REQUIRED_FIELDS")

    db = get_db()
    order = _order_or_404(db, order_id)
    row = record_tracking(db, order, status, description, clean_str(data.get("location")) or None)
    db.commit()
    return jsonify(row.to_dict()), 201


@admin_orders_bp.route("/tracking", methods=["PUT"])
@admin_required
def edit_tracking():
    tracking_id = require_int(request.args.get("id"))
    data = request.get_json(silent=True) or {}
    if not any(k in data for k in ("status", "description", "location")):
        raise BadRequest(
            "At least one field (status, description, or location) must be provided for update",
            "NO_UPDATE_FIELDS",
        )

    db = get_db()
    row = db.get(OrderTracking, tracking_id)
    if row is None:
        raise NotFound("Tracking event not found", "TRACKING_NOT_FOUND")
    for key in ("status", "description"):
        if key in data:
            value = clean_str(data[key])
            if not value:
                raise BadRequest(f"{key.title()} cannot be empty", "MISSING_REQUIRED_FIELDS")
            setattr(row, key, value)
    if "location" in data:
        row.location = clean_str(data["location"]) or None
    row.updated_at = utcnow()
    db.commit()
    return jsonify(row.to_dict())
