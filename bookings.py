import logging
from datetime import date, timedelta

from flask import Blueprint, g, jsonify, request

import mailer
from auth import login_required
from db import get_db
from errors import (
    BadRequest,
    Forbidden,
    NotFound,
    clean_str,
    page_args,
    require_fields,
    require_int,
    valid_email,
)
from models import ServiceBooking, ServiceSlot, utcnow

logger = logging.getLogger(__name__)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/sessions")

BOOKING_STATUSES = ("pending", "confirmed", "paid", "completed", "cancelled")
DEFAULT_TIMES = ("9:00 AM", "10:30 AM", "12:00 PM", "2:00 PM", "3:30 PM", "5:00 PM")
DEFAULT_DAYS = 30


def default_slots(start=None, days=DEFAULT_DAYS):
    """Every default time on each of the next ``days`` days, Sundays skipped."""
    start = start or date.today()
    slots = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        if day.weekday() == 6:
            continue
        slots.extend(
            {"date": day.isoformat(), "time": t, "available": True} for t in DEFAULT_TIMES
        )
    return slots


def parse_booking_status(value):
    if value not in BOOKING_STATUSES:
        raise BadRequest(
            f"Invalid status. Must be one of: {', '.join(BOOKING_STATUSES)}", "INVALID_STATUS"
        )
    return value


def parse_duration(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise BadRequest("duration must be a positive integer", "INVALID_DURATION")
    return value


def get_owned_booking(db, booking_id):
    booking = db.get(ServiceBooking, booking_id)
    if booking is None:
        raise NotFound("Session not found", "SESSION_NOT_FOUND")
    if not g.principal.can_access(booking.user_id):
        raise Forbidden("Access denied")
    return booking


@bookings_bp.route("/available", methods=["GET"])
def available_slots():
    db = get_db()
    query = db.query(ServiceSlot).filter(
        ServiceSlot.is_available.is_(True), ServiceSlot.date >= date.today().isoformat()
    )
    if request.args.get("serviceId"):
        service_id = require_int(request.args["serviceId"])
        query = query.filter(
            (ServiceSlot.service_id == service_id) | ServiceSlot.service_id.is_(None)
        )
    slots = query.order_by(ServiceSlot.date, ServiceSlot.id).all()
    if not slots:
        return jsonify(default_slots())
    return jsonify([s.to_dict() for s in slots])


@bookings_bp.route("", methods=["GET"])
@login_required
def list_sessions():
    db = get_db()
    if request.args.get("id") is not None:
        return jsonify(get_owned_booking(db, require_int(request.args.get("id"))).to_dict())

    limit, offset = page_args(request.args)
    query = db.query(ServiceBooking)
    if not g.principal.is_admin:
        query = query.filter(ServiceBooking.user_id == g.principal.subject_id)
    if request.args.get("status"):
        query = query.filter(ServiceBooking.status == parse_booking_status(request.args["status"]))
    rows = query.order_by(ServiceBooking.created_at.desc()).limit(limit).offset(offset)
    return jsonify([b.to_dict() for b in rows])


@bookings_bp.route("", methods=["POST"])
@login_required
def request_session():
    data = request.get_json(silent=True) or {}
    require_fields(data, "sessionType", "date", "time", "duration", "clientName", "clientEmail")
    duration = parse_duration(data["duration"])
    email = clean_str(data["clientEmail"]).lower()
    if not valid_email(email):
        raise BadRequest("Invalid email format", "INVALID_EMAIL")

    booking = ServiceBooking(
        user_id=g.principal.subject_id,
        session_type=clean_str(data["sessionType"]),
        client_name=clean_str(data["clientName"]),
        client_email=email,
        client_phone=clean_str(data.get("clientPhone")),
        date=clean_str(data["date"]),
        time_slot=clean_str(data["time"]),
        duration=duration,
        notes=clean_str(data.get("notes")) or None,
        status="pending",
    )
    db = get_db()
    db.add(booking)
    db.commit()

    try:
        mailer.send_session_request(booking)
    except Exception:
        logger.exception("Failed to send session booking email for booking %s", booking.id)
    return jsonify(booking.to_dict()), 201


@bookings_bp.route("", methods=["PUT"])
@login_required
def update_session():
    db = get_db()
    booking = get_owned_booking(db, require_int(request.args.get("id")))
    data = request.get_json(silent=True) or {}

    for key, attr in (("sessionType", "session_type"), ("date", "date"), ("time", "time_slot"),
                      ("clientName", "client_name")):
        if key in data:
            value = clean_str(data[key])
            if not value:
                raise BadRequest(f"{key} must be a non-empty string", "INVALID_INPUT")
            setattr(booking, attr, value)
    if "clientEmail" in data:
        email = clean_str(data["clientEmail"]).lower() if data["clientEmail"] else ""
        if not valid_email(email):
            raise BadRequest("Invalid email format", "INVALID_EMAIL")
        booking.client_email = email
    if "duration" in data:
        booking.duration = parse_duration(data["duration"])
    if "notes" in data:
        booking.notes = clean_str(data["notes"]) or None
    if "clientPhone" in data:
        booking.client_phone = clean_str(data["clientPhone"])
    if "status" in data:
        booking.status = parse_booking_status(data["status"])
    booking.updated_at = utcnow()
    db.commit()
    return jsonify(booking.to_dict())


@bookings_bp.route("", methods=["DELETE"])
@login_required
def cancel_session():
    db = get_db()
    booking = get_owned_booking(db, require_int(request.args.get("id")))
    deleted = booking.to_dict()
    db.delete(booking)
    db.commit()
    return jsonify({"message": "Session deleted successfully", "session": deleted})
