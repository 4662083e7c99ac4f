"""Admin back office: dashboard stats, users, catalog and booking management.

All routes require an admin bearer token. Order management lives in
``admin_orders``.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from auth import admin_required, check_new_password, customer_sessions, hash_password
from bookings import BOOKING_STATUSES
from db import get_db
from errors import (
    BadRequest,
    Conflict,
    NotFound,
    clean_str,
    page_args,
    require_fields,
    require_int,
    valid_email,
)
from models import (
    REVENUE_STATUSES,
    CartItem,
    ContactMessage,
    Course,
    CourseEnrollment,
    Order,
    OrderStatus,
    Service,
    ServiceBooking,
    ServiceSlot,
    User,
    Verification,
    utcnow,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

USER_ROLES = ("user", "admin")
MESSAGE_STATUSES = ("unread", "read", "replied")
ENROLLMENT_STATUSES = ("pending", "paid", "active", "completed", "cancelled")

SERVICE_FIELDS = {
    "heading": "heading",
    "subheading": "subheading",
    "description": "description",
    "price": "price",
    "category": "category",
    "isActive": "is_active",
}
COURSE_FIELDS = {
    "heading": "heading",
    "subheading": "subheading",
    "description": "description",
    "price": "price",
    "pdfUrl": "pdf_url",
    "isActive": "is_active",
}


def _get_or_404(db, model, raw_id, label, code):
    row = db.get(model, require_int(raw_id))
    if row is None:
        raise NotFound(f"{label} not found", code)
    return row


def _check_choice(value, choices):
    if value not in choices:
        raise BadRequest(
            f"Invalid status. Must be one of: {', '.join(choices)}", "INVALID_STATUS"
        )
    return value


def _apply(row, data, fields):
    for key, attr in fields.items():
        if key not in data:
            continue
        value = data[key]
        if attr == "price":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise BadRequest("Price must be a non-negative number", "INVALID_PRICE")
        elif isinstance(value, str):
            value = value.strip()
        setattr(row, attr, value)


# --- Dashboard ---


@admin_bp.route("/stats", methods=["GET"])
@admin_required
def stats():
    db = get_db()
    revenue = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.status.in_(REVENUE_STATUSES))
        .scalar()
    )
    recent = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5)
    return jsonify(
        {
            "totalUsers": db.query(User).count(),
            "totalOrders": db.query(Order).count(),
            "totalRevenue": round(float(revenue or 0), 2),
            "pendingOrders": db.query(Order).filter(Order.status == OrderStatus.PENDING).count(),
            "recentOrders": [o.to_dict(with_user=True) for o in recent],
        }
    )


# --- Users ---


@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    db = get_db()
    user_id = request.args.get("id") or request.args.get("userId")
    if user_id:
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("User not found", "USER_NOT_FOUND")
        return jsonify(user.to_dict())

    limit, offset = page_args(request.args, default_limit=50)
    query = db.query(User)
    search = request.args.get("search")
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.email.like(pattern), User.name.like(pattern)))
    if request.args.get("role"):
        query = query.filter(User.role == request.args["role"])
    rows = query.order_by(User.created_at.desc()).limit(limit).offset(offset)
    return jsonify([u.to_dict() for u in rows])


@admin_bp.route("/users", methods=["PUT"])
@admin_required
def update_user():
    data = request.get_json(silent=True) or {}
    if not data.get("userId"):
        raise BadRequest("User ID is required", "INVALID_ID")
    db = get_db()
    user = db.get(User, data["userId"])
    if user is None:
        raise NotFound("User not found", "USER_NOT_FOUND")

    if "email" in data:
        email = clean_str(data["email"] or "").lower()
        if not valid_email(email):
            raise BadRequest("Invalid email format", "INVALID_EMAIL")
        other = db.query(User).filter(User.email == email, User.id != user.id).first()
        if other is not None:
            raise Conflict("Email already exists", "EMAIL_EXISTS")
        user.email = email
    if "password" in data:
        check_new_password(data["password"])
        user.password_hash = hash_password(data["password"])
        customer_sessions.revoke_all(db, user.id)
    if data.get("name"):
        user.name = clean_str(data["name"])
    if "role" in data:
        if data["role"] not in USER_ROLES:
            raise BadRequest(f"role must be one of: {', '.join(USER_ROLES)}", "INVALID_ROLE")
        user.role = data["role"]
    user.updated_at = utcnow()
    db.commit()
    return jsonify(user.to_dict())


@admin_bp.route("/users", methods=["DELETE"])
@admin_required
def delete_user():
    user_id = request.args.get("userId") or request.args.get("id")
    if not user_id:
        raise BadRequest("User ID is required", "INVALID_ID")
    db = get_db()
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found", "USER_NOT_FOUND")

    # orders are kept as sales history
    customer_sessions.revoke_all(db, user.id)
    db.query(CartItem).filter_by(user_id=user.id).delete()
    db.query(Verification).filter_by(identifier=user.email).delete()
    db.delete(user)
    db.commit()
    logger.info("Admin deleted user %s", user_id)
    return jsonify({"message": "User deleted successfully", "id": user_id})


# --- Services and courses ---


@admin_bp.route("/services", methods=["GET"])
@admin_required
def list_services():
    db = get_db()
    if request.args.get("id"):
        return jsonify(
            _get_or_404(db, Service, request.args["id"], "Service", "SERVICE_NOT_FOUND").to_dict()
        )
    rows = db.query(Service).order_by(Service.created_at.desc())
    return jsonify([s.to_dict() for s in rows])


@admin_bp.route("/services", methods=["POST"])
@admin_required
def create_service():
    data = request.get_json(silent=True) or {}
    require_fields(data, "heading", "price")
    service = Service(is_active=True)
    _apply(service, data, SERVICE_FIELDS)
    db = get_db()
    db.add(service)
    db.commit()
    return jsonify(service.to_dict()), 201


@admin_bp.route("/services", methods=["PUT"])
@admin_required
def update_service():
    db = get_db()
    service = _get_or_404(db, Service, request.args.get("id"), "Service", "SERVICE_NOT_FOUND")
    _apply(service, request.get_json(silent=True) or {}, SERVICE_FIELDS)
    service.updated_at = utcnow()
    db.commit()
    return jsonify(service.to_dict())


@admin_bp.route("/services", methods=["DELETE"])
@admin_required
def delete_service():
    db = get_db()
    service = _get_or_404(db, Service, request.args.get("id"), "Service", "SERVICE_NOT_FOUND")
    db.query(ServiceSlot).filter_by(service_id=service.id).delete()
    db.delete(service)
    db.commit()
    return jsonify({"message": "Service deleted successfully"})


@admin_bp.route("/courses", methods=["GET"])
@admin_required
def list_courses():
    db = get_db()
    if request.args.get("id"):
        return jsonify(
            _get_or_404(db, Course, request.args["id"], "Course", "COURSE_NOT_FOUND").to_dict()
        )
    rows = db.query(Course).order_by(Course.created_at.desc())
    return jsonify([c.to_dict() for c in rows])


@admin_bp.route("/courses", methods=["POST"])
@admin_required
def create_course():
    data = request.get_json(silent=True) or {}
    require_fields(data, "heading", "price")
    course = Course(is_active=True)
    _apply(course, data, COURSE_FIELDS)
    db = get_db()
    db.add(course)
    db.commit()
    return jsonify(course.to_dict()), 201


@admin_bp.route("/courses", methods=["PUT"])
@admin_required
def update_course():
    db = get_db()
    course = _get_or_404(db, Course, request.args.get("id"), "Course", "COURSE_NOT_FOUND")
    _apply(course, request.get_json(silent=True) or {}, COURSE_FIELDS)
    course.updated_at = utcnow()
    db.commit()
    return jsonify(course.to_dict())


@admin_bp.route("/courses", methods=["DELETE"])
@admin_required
def delete_course():
    db = get_db()
    course = _get_or_404(db, Course, request.args.get("id"), "Course", "COURSE_NOT_FOUND")
    db.delete(course)
    db.commit()
    return jsonify({"message": "Course deleted successfully"})


# --- Service slots ---


@admin_bp.route("/services/slots", methods=["GET"])
@admin_required
def list_slots():
    query = get_db().query(ServiceSlot)
    if request.args.get("serviceId"):
        query = query.filter(ServiceSlot.service_id == require_int(request.args["serviceId"]))
    if request.args.get("date"):
        query = query.filter(ServiceSlot.date == request.args["date"])
    rows = query.order_by(ServiceSlot.date, ServiceSlot.id)
    return jsonify([s.to_dict() for s in rows])


def _new_slot(service_id, date, time, available):
    if not date or not time:
        raise BadRequest("Each slot needs a date and a time", "MISSING_REQUIRED_FIELDS")
    return ServiceSlot(
        service_id=service_id,
        date=clean_str(date),
        time=clean_str(time),
        is_available=True if available is None else bool(available),
    )


@admin_bp.route("/services/slots", methods=["POST"])
@admin_required
def create_slots():
    """Create one slot, or many at once from ``slots: [{date?, time}]``."""
    data = request.get_json(silent=True) or {}
    service_id = require_int(data["serviceId"]) if data.get("serviceId") else None
    db = get_db()
    if service_id is not None and db.get(Service, service_id) is None:
        raise NotFound("Service not found", "SERVICE_NOT_FOUND")

    bulk = data.get("slots")
    if isinstance(bulk, list):
        rows = [
            _new_slot(
                service_id,
                s.get("date") or data.get("date"),
                s.get("time"),
                s.get("isAvailable", data.get("isAvailable")),
            )
            for s in bulk
        ]
        db.add_all(rows)
        db.commit()
        return jsonify([r.to_dict() for r in rows]), 201

    row = _new_slot(service_id, data.get("date"), data.get("time"), data.get("isAvailable"))
    db.add(row)
    db.commit()
    return jsonify(row.to_dict()), 201


@admin_bp.route("/services/slots", methods=["PUT"])
@admin_required
def update_slot():
    db = get_db()
    slot = _get_or_404(db, ServiceSlot, request.args.get("id"), "Slot", "SLOT_NOT_FOUND")
    data = request.get_json(silent=True) or {}
    if "isAvailable" in data:
        slot.is_available = bool(data["isAvailable"])
    if data.get("date"):
        slot.date = clean_str(data["date"])
    if data.get("time"):
        slot.time = clean_str(data["time"])
    slot.updated_at = utcnow()
    db.commit()
    return jsonify(slot.to_dict())


@admin_bp.route("/services/slots", methods=["DELETE"])
@admin_required
def delete_slot():
    db = get_db()
    slot = _get_or_404(db, ServiceSlot, request.args.get("id"), "Slot", "SLOT_NOT_FOUND")
    db.delete(slot)
    db.commit()
    return jsonify({"message": "Slot deleted successfully"})


# --- Bookings and enrollments ---


@admin_bp.route("/bookings", methods=["GET"])
@admin_required
def list_bookings():
    query = get_db().query(ServiceBooking)
    if request.args.get("status"):
        query = query.filter(
            ServiceBooking.status == _check_choice(request.args["status"], BOOKING_STATUSES)
        )
    rows = query.order_by(ServiceBooking.created_at.desc())
    return jsonify([b.to_dict() for b in rows])


@admin_bp.route("/bookings", methods=["PUT"])
@admin_required
def update_booking():
    db = get_db()
    booking = _get_or_404(
        db, ServiceBooking, request.args.get("id"), "Booking", "BOOKING_NOT_FOUND"
    )
    data = request.get_json(silent=True) or {}
    if "status" in data:
        booking.status = _check_choice(data["status"], BOOKING_STATUSES)
    if "notes" in data:
        booking.notes = clean_str(data["notes"]) or None
    booking.updated_at = utcnow()
    db.commit()
    return jsonify(booking.to_dict())


@admin_bp.route("/bookings", methods=["DELETE"])
@admin_required
def delete_booking():
    db = get_db()
    booking = _get_or_404(
        db, ServiceBooking, request.args.get("id"), "Booking", "BOOKING_NOT_FOUND"
    )
    db.delete(booking)
    db.commit()
    return jsonify({"message": "Booking deleted successfully"})


@admin_bp.route("/enrollments", methods=["GET"])
@admin_required
def list_enrollments():
    query = get_db().query(CourseEnrollment)
    if request.args.get("courseId"):
        query = query.filter(CourseEnrollment.course_id == require_int(request.args["courseId"]))
    rows = query.order_by(CourseEnrollment.created_at.desc())
    return jsonify([e.to_dict() for e in rows])


@admin_bp.route("/enrollments", methods=["PUT"])
@admin_required
def update_enrollment():
    db = get_db()
    enrollment = _get_or_404(
        db, CourseEnrollment, request.args.get("id"), "Enrollment", "ENROLLMENT_NOT_FOUND"
    )
    data = request.get_json(silent=True) or {}
    if "status" in data:
        enrollment.status = _check_choice(data["status"], ENROLLMENT_STATUSES)
    enrollment.updated_at = utcnow()
    db.commit()
    return jsonify(enrollment.to_dict())


# --- Contact messages ---


@admin_bp.route("/contact-messages", methods=["GET"])
@admin_required
def list_contact_messages():
    limit, offset = page_args(request.args, default_limit=50)
    query = get_db().query(ContactMessage)
    if request.args.get("status"):
        query = query.filter(
            ContactMessage.status == _check_choice(request.args["status"], MESSAGE_STATUSES)
        )
    rows = query.order_by(ContactMessage.created_at.desc()).limit(limit).offset(offset)
    return jsonify([m.to_dict() for m in rows])


@admin_bp.route("/contact-messages", methods=["PUT"])
@admin_required
def update_contact_message():
    db = get_db()
    message = _get_or_404(
        db, ContactMessage, request.args.get("id"), "Message", "MESSAGE_NOT_FOUND"
    )
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise BadRequest("Status is required", "INVALID_STATUS")
    message.status = _check_choice(data["status"], MESSAGE_STATUSES)
    message.updated_at = utcnow()
    db.commit()
    return jsonify(message.to_dict())


@admin_bp.route("/contact-messages", methods=["DELETE"])
@admin_required
def delete_contact_message():
    db = get_db()
    message = _get_or_404(
        db, ContactMessage, request.args.get("id"), "Message", "MESSAGE_NOT_FOUND"
    )
    db.delete(message)
    db.commit()
    return jsonify({"message": "Message deleted successfully"})
