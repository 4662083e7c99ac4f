"""Transactional email.

Bodies are Jinja templates under ``templates/emails``. ``send_email`` raises
on failure; callers on best-effort paths catch and log.
"""

import logging
from datetime import datetime

from flask import current_app, render_template
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def send_email(to, subject, template, **context):
    context.setdefault("base_url", current_app.config["BASE_URL"])
    context.setdefault("year", datetime.now().year)
    html = render_template(f"emails/{template}.html", **context)
    msg = Message(subject=subject, recipients=[to], html=html, body=subject)
    mail.send(msg)
    logger.info("Email '%s' sent to %s", subject, to)


def send_verification_email(email, name, token):
    url = f"{current_app.config['BASE_URL']}/verify-email?token={token}"
    send_email(email, "Verify your email - Dira Tarot", "verification", name=name, url=url)


def send_password_reset_email(email, name, token):
    url = f"{current_app.config['BASE_URL']}/reset-password?token={token}"
    send_email(email, "Reset your password - Dira Tarot", "password_reset", name=name, url=url)


def send_order_confirmation(order, user):
    send_email(
        user.email,
        f"Order #{order.id} confirmed - Dira Tarot",
        "order_confirmation",
        name=user.name,
        order=order,
        items=order.item_list,
    )


def send_order_status_update(order, user, previous_status):
    send_email(
        user.email,
        f"Order #{order.id} is now {order.status.value.title()} - Dira Tarot",
        "order_status",
        name=user.name,
        order=order,
        previous=previous_status.value if previous_status else None,
    )


def send_booking_confirmation(booking, service_name):
    send_email(
        booking.client_email,
        "Booking Confirmed - Dira",
        "booking_confirmation",
        booking=booking,
        service_name=service_name,
    )


def send_enrollment_confirmation(enrollment, course_name):
    send_email(
        enrollment.client_email,
        "Course Enrollment Confirmed - Dira",
        "enrollment_confirmation",
        enrollment=enrollment,
        course_name=course_name,
    )


def send_session_request(booking):
    send_email(
        booking.client_email,
        "Session Booking Received - Dira",
        "session_booking",
        booking=booking,
    )
